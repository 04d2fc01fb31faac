"""
Order Pricing Engine

Computes item discounts and totals, the per-destination shipping fee and
the order-level VAT and grand total for a cart of order items.

One engine instance applies exactly one tax convention:

- ``exclusive``: prices are net; VAT is added on top of the order value.
- ``inclusive``: prices already contain VAT; the tax part is backed out.

In both conventions the stored header satisfies
``total_amount == subtotal - discount_amount + vat_amount + shipping_fee``.
"""

import logging
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Dict, List, Optional, Sequence, Union
from uuid import UUID

from pydantic import BaseModel

from backoffice.models.api import OrderItemInput
from backoffice.models.domain import AmountDiscount, Discount, DiscountType, VatMode
from backoffice.utils.errors import ValidationError

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
HUNDRED = Decimal("100")
ZERO = Decimal("0")

Number = Union[Decimal, int, float, str]


def to_decimal(value: Optional[Number]) -> Decimal:
    """Convert any numeric input to Decimal without binary float noise"""
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def to_money(value: Optional[Number]) -> Decimal:
    """Round a value to currency precision (2 places, half up)"""
    try:
        return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation as e:
        raise ValidationError(f"Amount out of range: {value}") from e


class PricedItem(BaseModel):
    """Computed money fields for one order item."""

    subtotal: Decimal
    discount_type: DiscountType
    discount_percent: Decimal
    discount_amount: Decimal
    total: Decimal


class OrderPricing(BaseModel):
    """Computed money fields for a whole order."""

    vat_mode: VatMode
    vat_rate: Decimal
    items: List[PricedItem]
    items_subtotal: Decimal
    subtotal: Decimal
    discount_amount: Decimal
    shipping_fee: Decimal
    pre_tax_amount: Decimal
    vat_amount: Decimal
    total_amount: Decimal

    def header_fields(self) -> Dict[str, Decimal]:
        """Money columns written to the order header"""
        return {
            "subtotal": self.subtotal,
            "discount_amount": self.discount_amount,
            "vat_amount": self.vat_amount,
            "shipping_fee": self.shipping_fee,
            "total_amount": self.total_amount,
        }


def price_item(quantity: int, unit_price: Number, discount: Discount) -> PricedItem:
    """
    Price one order item.

    Percent discounts are converted to an amount of the item subtotal; amount
    discounts get their equivalent percent back-computed for display (0 when
    the subtotal is 0).
    """
    subtotal = to_decimal(quantity) * to_decimal(unit_price)
    value = to_decimal(discount.value)

    if isinstance(discount, AmountDiscount):
        discount_amount = to_money(value)
        discount_percent = to_money(discount_amount / subtotal * HUNDRED) if subtotal else ZERO
        discount_type = DiscountType.AMOUNT
    else:
        discount_amount = to_money(subtotal * value / HUNDRED)
        discount_percent = to_money(value)
        discount_type = DiscountType.PERCENT

    return PricedItem(
        subtotal=to_money(subtotal),
        discount_type=discount_type,
        discount_percent=discount_percent,
        discount_amount=discount_amount,
        total=to_money(subtotal - discount_amount),
    )


def shipping_fee_by_destination(items: Sequence[OrderItemInput]) -> Dict[UUID, Decimal]:
    """
    Collect one shipping fee per destination.

    The first non-zero fee seen for a destination wins; later shipments to the
    same destination, from any item, add nothing.
    """
    fees: Dict[UUID, Decimal] = {}
    for item in items:
        for shipment in item.shipments:
            fee = to_decimal(shipment.shipping_fee)
            if fee and shipment.shipping_address_id not in fees:
                fees[shipment.shipping_address_id] = fee
    return fees


class PricingEngine:
    """Prices orders under a single, configured tax convention"""

    def __init__(self, vat_mode: Union[VatMode, str] = VatMode.EXCLUSIVE, vat_rate: Number = "0.07"):
        self.vat_mode = VatMode(vat_mode)
        self.vat_rate = to_decimal(vat_rate)
        logger.info(f"Initialized PricingEngine with vat_mode={self.vat_mode.value}, vat_rate={self.vat_rate}")

    def price(self, items: Sequence[OrderItemInput], order_discount: Optional[Number] = None) -> OrderPricing:
        """
        Price a cart of items.

        Args:
            items: Order items with their shipment splits
            order_discount: Order-level discount amount

        Returns:
            OrderPricing with per-item and order-level amounts, all rounded
            to 2 decimal places
        """
        priced_items = [price_item(item.quantity, item.unit_price, item.discount) for item in items]
        items_subtotal = sum((priced.total for priced in priced_items), ZERO)
        shipping_fee = to_money(sum(shipping_fee_by_destination(items).values(), ZERO))
        discount_amount = to_money(order_discount)

        net = items_subtotal - discount_amount + shipping_fee

        if self.vat_mode is VatMode.EXCLUSIVE:
            pre_tax = net
            vat_amount = to_money(net * self.vat_rate)
            total_amount = net + vat_amount
            subtotal = items_subtotal
        else:
            pre_tax = to_money(net / (1 + self.vat_rate))
            vat_amount = net - pre_tax
            total_amount = net
            subtotal = items_subtotal - vat_amount

        pricing = OrderPricing(
            vat_mode=self.vat_mode,
            vat_rate=self.vat_rate,
            items=priced_items,
            items_subtotal=to_money(items_subtotal),
            subtotal=to_money(subtotal),
            discount_amount=discount_amount,
            shipping_fee=shipping_fee,
            pre_tax_amount=to_money(pre_tax),
            vat_amount=to_money(vat_amount),
            total_amount=to_money(total_amount),
        )
        logger.debug(
            f"Priced {len(priced_items)} items: subtotal={pricing.subtotal}, vat={pricing.vat_amount}, "
            f"shipping={pricing.shipping_fee}, total={pricing.total_amount}"
        )
        return pricing
