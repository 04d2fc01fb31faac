"""
Order Fulfillment Consistency Checks

Pure validation of an order's items before anything is priced or written:
every item must be fully allocated to shipments, and all quantities and
money inputs must be sane. The first violation fails the whole request.
"""

from decimal import Decimal
from typing import Optional, Sequence

from backoffice.models.api import OrderItemInput
from backoffice.models.domain import AmountDiscount
from backoffice.utils.errors import QuantityMismatchError, ValidationError

HUNDRED = Decimal("100")


def check_item(index: int, item: OrderItemInput) -> None:
    """Validate one item and its shipment splits"""
    prefix = f"Item {index + 1} ({item.label})"

    if item.quantity <= 0:
        raise ValidationError(f"{prefix}: quantity must be greater than 0")
    if item.unit_price < 0:
        raise ValidationError(f"{prefix}: unit price must not be negative")

    discount_value = item.discount.value
    if discount_value < 0:
        raise ValidationError(f"{prefix}: discount must not be negative")
    if isinstance(item.discount, AmountDiscount):
        if discount_value > item.quantity * item.unit_price:
            raise ValidationError(f"{prefix}: discount amount exceeds item subtotal")
    elif discount_value > HUNDRED:
        raise ValidationError(f"{prefix}: discount percent must be between 0 and 100")

    if not item.shipments:
        raise ValidationError(f"{prefix}: each item must have at least one shipment")

    for shipment in item.shipments:
        if shipment.quantity <= 0:
            raise ValidationError(f"{prefix}: shipment quantity must be greater than 0")
        if shipment.shipping_fee is not None and shipment.shipping_fee < 0:
            raise ValidationError(f"{prefix}: shipping fee must not be negative")

    shipped = sum(shipment.quantity for shipment in item.shipments)
    if shipped != item.quantity:
        raise QuantityMismatchError(index, item.label, expected=item.quantity, actual=shipped)


def check_fulfillment(items: Optional[Sequence[OrderItemInput]], order_discount: Optional[Decimal] = None) -> None:
    """
    Validate a full item list.

    Raises:
        ValidationError: if the list is empty, an order discount is negative,
            or any item fails ``check_item``
        QuantityMismatchError: if an item's shipments do not sum to its quantity
    """
    if not items:
        raise ValidationError("Order must have at least one item")
    if order_discount is not None and order_discount < 0:
        raise ValidationError("Order discount amount must not be negative")

    for index, item in enumerate(items):
        check_item(index, item)
