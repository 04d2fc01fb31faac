"""
Order Service

Writes and reads orders. Every write validates first (fulfillment checks,
lifecycle guard), prices the cart, and then persists the header, items and
shipments as one unit of work.
"""

import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Sequence
from uuid import UUID

from backoffice.models.api import (
    OrderCreateRequest,
    OrderItemInput,
    OrderListQuery,
    OrderUpdateRequest,
    Pagination,
)
from backoffice.models.domain import (
    ORDER_TRANSITIONS,
    DeliveryStatus,
    Order,
    OrderStatus,
    PaymentStatus,
)
from backoffice.services.fulfillment import check_fulfillment
from backoffice.services.pricing import OrderPricing, PricingEngine, to_money
from backoffice.stores.base import OrderStore, Row
from backoffice.utils.errors import NotFoundError, StateConflictError, ValidationError

logger = logging.getLogger(__name__)

# Header fields a simple (no items) update may change
SIMPLE_UPDATE_FIELDS = (
    "delivery_date",
    "payment_method",
    "discount_amount",
    "notes",
    "internal_notes",
    "shipping_fee",
    "order_status",
    "payment_status",
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class OrderService:
    """Creates, replaces, updates, cancels and reads orders"""

    def __init__(
        self,
        store: OrderStore,
        pricing: PricingEngine,
        today: Callable[[], date] = date.today,
        max_page_limit: int = 200,
    ):
        self.store = store
        self.pricing = pricing
        self.today = today
        self.max_page_limit = max_page_limit

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _price(self, items: Sequence[OrderItemInput], order_discount: Optional[Decimal]) -> OrderPricing:
        check_fulfillment(items, order_discount)
        pricing = self.pricing.price(items, order_discount)
        if pricing.discount_amount > pricing.items_subtotal:
            raise ValidationError(
                f"Order discount ({pricing.discount_amount}) exceeds items subtotal ({pricing.items_subtotal})"
            )
        return pricing

    def _insert_items(self, order_id: UUID, items: Sequence[OrderItemInput], pricing: OrderPricing) -> None:
        """Insert every item of an order followed by its shipments"""
        for item, priced in zip(items, pricing.items):
            now = _now()
            snapshot = item.snapshot
            row = self.store.insert_order_item({
                "order_id": order_id,
                "variation_id": snapshot.variation_id,
                "product_id": snapshot.product_id,
                "product_code": snapshot.product_code,
                "product_name": snapshot.product_name,
                "bottle_size": snapshot.bottle_size,
                "quantity": item.quantity,
                "unit_price": to_money(item.unit_price),
                "discount_type": priced.discount_type.value,
                "discount_percent": priced.discount_percent,
                "discount_amount": priced.discount_amount,
                "subtotal": priced.subtotal,
                "total": priced.total,
                "notes": item.notes,
                "created_at": now,
                "updated_at": now,
            })
            self.store.insert_shipments([
                {
                    "order_item_id": row["id"],
                    "shipping_address_id": shipment.shipping_address_id,
                    "quantity": shipment.quantity,
                    "shipping_fee": to_money(shipment.shipping_fee),
                    "delivery_status": DeliveryStatus.PENDING.value,
                    "delivery_notes": shipment.delivery_notes,
                    "created_at": now,
                    "updated_at": now,
                }
                for shipment in item.shipments
            ])

    def create_order(self, request: OrderCreateRequest, user_id: Optional[str] = None) -> Order:
        """
        Create an order with its items and shipments.

        Validation happens before any write. If a write fails part way, the
        unit of work is rolled back and the order header is deleted as well,
        so a half-written order never stays visible.

        Raises:
            ValidationError: invalid items or quantities
            PersistenceError: a datastore write failed
        """
        pricing = self._price(request.items, request.discount_amount)

        order_id: Optional[UUID] = None
        try:
            with self.store.transaction():
                now = _now()
                header = self.store.insert_order({
                    "order_number": self.store.next_order_number(),
                    "customer_id": request.customer_id,
                    "order_date": self.today(),
                    "delivery_date": request.delivery_date,
                    **pricing.header_fields(),
                    "payment_method": request.payment_method or None,
                    "payment_status": PaymentStatus.PENDING.value,
                    "order_status": OrderStatus.NEW.value,
                    "notes": request.notes or None,
                    "internal_notes": request.internal_notes or None,
                    "created_by": user_id,
                    "created_at": now,
                    "updated_at": now,
                })
                order_id = header["id"]
                self._insert_items(order_id, request.items, pricing)
        except Exception as e:
            if order_id is not None:
                self._discard_order(order_id, e)
            raise

        logger.info(
            f"Created order {header['order_number']} ({order_id}) with {len(request.items)} items, "
            f"total={pricing.total_amount}"
        )
        return self.get_order(order_id)

    def _discard_order(self, order_id: UUID, error: Exception) -> None:
        """Remove a partially written order after a failed create"""
        logger.warning(f"Order creation failed ({error}); removing partial order {order_id}")
        try:
            self.store.delete_order(order_id)
        except Exception as cleanup_error:
            logger.error(f"Failed to remove partial order {order_id}: {cleanup_error}")

    def update_order(self, order_id: UUID, request: OrderUpdateRequest) -> Order:
        """Full replace when items are sent, otherwise a partial header update"""
        if request.is_full_replace:
            return self.replace_order(order_id, request)
        return self.update_order_fields(order_id, request)

    def replace_order(self, order_id: UUID, request: OrderUpdateRequest) -> Order:
        """
        Replace all items and shipments of a ``new`` order and recompute its totals.

        The status check, item deletion, header update and re-insert run in a
        single unit of work with the header row locked.

        Raises:
            NotFoundError: the order does not exist
            StateConflictError: the order is no longer ``new``
            ValidationError: invalid items or quantities
        """
        items = request.items or []
        with self.store.transaction():
            existing = self.store.get_order(order_id, for_update=True)
            if not existing:
                raise NotFoundError("Order not found")

            status = existing["order_status"]
            if status != OrderStatus.NEW.value:
                raise StateConflictError(
                    f"Cannot edit order items with status: {status}. Only 'new' orders can be fully edited."
                )

            pricing = self._price(items, request.discount_amount)

            self.store.delete_order_items(order_id)
            self.store.update_order(order_id, {
                "delivery_date": request.delivery_date,
                **pricing.header_fields(),
                "payment_method": request.payment_method or None,
                "notes": request.notes or None,
                "internal_notes": request.internal_notes or None,
                "updated_at": _now(),
            })
            self._insert_items(order_id, items, pricing)

        logger.info(f"Replaced items of order {order_id}: {len(items)} items, total={pricing.total_amount}")
        return self.get_order(order_id)

    def update_order_fields(self, order_id: UUID, request: OrderUpdateRequest) -> Order:
        """
        Change only the header fields present in the request. Totals are not
        recomputed. Status changes follow the order lifecycle; cancelling also
        cancels the payment status.
        """
        sent = request.model_fields_set
        fields: Dict[str, Any] = {}
        for name in SIMPLE_UPDATE_FIELDS:
            if name in sent:
                fields[name] = getattr(request, name)

        with self.store.transaction():
            existing = self.store.get_order(order_id, for_update=True)
            if not existing:
                raise NotFoundError("Order not found")

            fields = self._normalize_fields(existing, fields)
            fields["updated_at"] = _now()
            self.store.update_order(order_id, fields)

        logger.info(f"Updated order {order_id}: {sorted(name for name in fields if name != 'updated_at')}")
        return self.get_order(order_id)

    def _normalize_fields(self, existing: Row, fields: Dict[str, Any]) -> Dict[str, Any]:
        current_status = OrderStatus(existing["order_status"])

        for money_field in ("discount_amount", "shipping_fee"):
            if money_field in fields:
                value = to_money(fields[money_field])
                if value < 0:
                    raise ValidationError(f"{money_field} must not be negative")
                fields[money_field] = value

        new_status = fields.pop("order_status", None)
        new_payment = fields.pop("payment_status", None)

        if new_status is not None and new_status != current_status:
            if new_status not in ORDER_TRANSITIONS[current_status]:
                raise StateConflictError(
                    f"Cannot change order status from {current_status.value} to {new_status.value}"
                )
            fields["order_status"] = new_status.value

        order_cancelled = current_status is OrderStatus.CANCELLED or new_status is OrderStatus.CANCELLED
        if new_payment is not None:
            if order_cancelled and new_payment is not PaymentStatus.CANCELLED:
                raise StateConflictError("Cannot change payment status of a cancelled order")
            if not order_cancelled and new_payment is PaymentStatus.CANCELLED:
                raise StateConflictError("Payment status can only be cancelled together with the order")
            fields["payment_status"] = new_payment.value

        if new_status is OrderStatus.CANCELLED:
            fields["payment_status"] = PaymentStatus.CANCELLED.value

        return fields

    def cancel_order(self, order_id: UUID) -> Order:
        """
        Cancel an order and its payment. Cancelling an already cancelled order
        is a no-op.

        Raises:
            NotFoundError: the order does not exist
            StateConflictError: the order is already completed
        """
        with self.store.transaction():
            existing = self.store.get_order(order_id, for_update=True)
            if not existing:
                raise NotFoundError("Order not found")

            status = OrderStatus(existing["order_status"])
            if status is OrderStatus.COMPLETED:
                raise StateConflictError(f"Cannot cancel order with status: {status.value}")

            if status is not OrderStatus.CANCELLED or existing["payment_status"] != PaymentStatus.CANCELLED.value:
                self.store.update_order(order_id, {
                    "order_status": OrderStatus.CANCELLED.value,
                    "payment_status": PaymentStatus.CANCELLED.value,
                    "updated_at": _now(),
                })
                logger.info(f"Cancelled order {order_id}")

        return self.get_order(order_id)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_order(self, order_id: UUID) -> Order:
        """Order header with customer summary, items and shipments"""
        header = self.store.get_order_with_customer(order_id)
        if not header:
            raise NotFoundError("Order not found")

        items = self.store.get_order_items(order_id)
        return Order.model_validate({**header, "items": items})

    def list_orders(self, query: OrderListQuery) -> Dict[str, Any]:
        """One page of orders with their branch names and pagination info"""
        query = query.model_copy(update={
            "limit": min(query.limit, self.max_page_limit),
            "sort_dir": "asc" if query.sort_dir == "asc" else "desc",
        })

        rows, total = self.store.list_orders(query, self.today())
        pagination = Pagination.build(query.page, query.limit, total)
        if not rows:
            return {"orders": [], "pagination": pagination.model_dump()}

        branches = self.store.branch_names(row["id"] for row in rows)
        orders: List[Row] = [{**row, "branch_names": branches.get(row["id"], [])} for row in rows]
        return {"orders": orders, "pagination": pagination.model_dump()}
