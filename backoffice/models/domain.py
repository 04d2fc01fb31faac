"""
Domain Models - Pydantic models for back-office entities.

These models represent the order aggregate (orders, items, shipments),
the discount and tax vocabulary used by the pricing engine, and the
CRM configuration values stored alongside it.
"""

from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer, field_validator, model_validator


def _money_number(value: Decimal) -> float:
    return float(value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


# Decimal in Python, a JSON number rounded to cents on the wire. Plain dict
# rows go through FastAPI's encoder, which also emits numbers.
Money = Annotated[Decimal, PlainSerializer(_money_number, return_type=float, when_used="json")]


# ============================================================================
# Enums
# ============================================================================

class OrderStatus(str, Enum):
    """Lifecycle of an order."""
    NEW = "new"
    SHIPPING = "shipping"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    """Payment state of an order."""
    PENDING = "pending"
    VERIFYING = "verifying"
    PAID = "paid"
    CANCELLED = "cancelled"


class DeliveryStatus(str, Enum):
    """Delivery state of a single shipment."""
    PENDING = "pending"
    SHIPPED = "shipped"
    DELIVERED = "delivered"


class DiscountType(str, Enum):
    PERCENT = "percent"
    AMOUNT = "amount"


class VatMode(str, Enum):
    """Tax convention applied to order totals."""
    EXCLUSIVE = "exclusive"
    INCLUSIVE = "inclusive"


# Order statuses an order may move to from each status. Staying in the
# same status is always allowed.
ORDER_TRANSITIONS = {
    OrderStatus.NEW: {OrderStatus.SHIPPING, OrderStatus.CANCELLED},
    OrderStatus.SHIPPING: {OrderStatus.COMPLETED, OrderStatus.CANCELLED},
    OrderStatus.COMPLETED: set(),
    OrderStatus.CANCELLED: set(),
}

UNPAID_STATUSES = (PaymentStatus.PENDING, PaymentStatus.VERIFYING)


# ============================================================================
# Value objects
# ============================================================================

class PercentDiscount(BaseModel):
    """Discount expressed as a percentage of the item subtotal."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["percent"] = "percent"
    value: Decimal = Decimal("0")


class AmountDiscount(BaseModel):
    """Flat discount amount taken off the item subtotal."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["amount"] = "amount"
    value: Decimal = Decimal("0")


Discount = Annotated[Union[PercentDiscount, AmountDiscount], Field(discriminator="kind")]


class ProductSnapshot(BaseModel):
    """
    Product details copied into an order item when the order is written.

    Later catalog edits never change historical orders, so these values are
    stored with the item instead of being looked up again.
    """

    model_config = ConfigDict(frozen=True)

    variation_id: Optional[UUID] = None
    product_id: Optional[UUID] = None
    product_code: str
    product_name: str
    bottle_size: Optional[str] = None


class DayRange(BaseModel):
    """Follow-up day range used for CRM list filters and summary cards."""

    model_config = ConfigDict(populate_by_name=True)

    min_days: int = Field(..., ge=0, alias="minDays")
    max_days: Optional[int] = Field(default=None, ge=0, alias="maxDays")
    label: str = Field(..., min_length=1)
    color: Optional[str] = None

    @model_validator(mode="after")
    def _check_bounds(self):
        if self.max_days is not None and self.max_days < self.min_days:
            raise ValueError(f"maxDays ({self.max_days}) must not be less than minDays ({self.min_days})")
        return self

    @property
    def key(self) -> str:
        return f"{self.min_days}-{self.max_days if self.max_days is not None else 'null'}"

    def contains(self, days: Optional[int]) -> bool:
        if days is None:
            return False
        return days >= self.min_days and (self.max_days is None or days <= self.max_days)


# ============================================================================
# Order aggregate
# ============================================================================

class OrderShipment(BaseModel):
    """Shipment row from the order_shipments table."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    order_item_id: UUID
    shipping_address_id: UUID
    quantity: int
    shipping_fee: Money = Decimal("0")
    delivery_status: DeliveryStatus = DeliveryStatus.PENDING
    delivery_date: Optional[date] = None
    received_date: Optional[date] = None
    delivery_notes: Optional[str] = None
    shipping_address: Optional[Dict[str, Any]] = None


class OrderItem(BaseModel):
    """Item row from the order_items table."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    order_id: UUID
    variation_id: Optional[UUID] = None
    product_id: Optional[UUID] = None
    product_code: str
    product_name: str
    bottle_size: Optional[str] = None
    quantity: int
    unit_price: Money
    discount_type: DiscountType = DiscountType.PERCENT
    discount_percent: Money = Decimal("0")
    discount_amount: Money = Decimal("0")
    subtotal: Money
    total: Money
    notes: Optional[str] = None
    shipments: List[OrderShipment] = Field(default_factory=list)


class Order(BaseModel):
    """Order header from the orders table, optionally with its items."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    order_number: str
    customer_id: UUID
    order_date: Optional[date] = None
    delivery_date: Optional[date] = None
    subtotal: Money
    discount_amount: Money = Decimal("0")
    vat_amount: Money = Decimal("0")
    shipping_fee: Money = Decimal("0")
    total_amount: Money
    payment_method: Optional[str] = None
    payment_status: PaymentStatus
    order_status: OrderStatus
    notes: Optional[str] = None
    internal_notes: Optional[str] = None
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    customer: Optional[Dict[str, Any]] = None
    items: List[OrderItem] = Field(default_factory=list)

    @field_validator("created_by", mode="before")
    @classmethod
    def _stringify_creator(cls, value):
        return str(value) if value is not None else None
