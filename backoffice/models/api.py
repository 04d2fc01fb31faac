"""
API Models - Pydantic models for API requests and responses.

These models define the structure of HTTP request payloads, list query
parameters and the read models returned by the FastAPI endpoints.
"""

from datetime import date
from decimal import Decimal
from typing import Any, List, Optional
from uuid import UUID

from pydantic import AliasChoices, BaseModel, Field, model_validator

from .domain import (
    DayRange,
    Money,
    Discount,
    OrderStatus,
    PaymentStatus,
    PercentDiscount,
    ProductSnapshot,
)


# ============================================================================
# Order write models
# ============================================================================

class ShipmentInput(BaseModel):
    """One shipment split of an order item."""

    shipping_address_id: UUID = Field(..., description="Destination address")
    quantity: int = Field(..., description="Units sent to this destination")
    delivery_notes: Optional[str] = Field(default=None, description="Notes for the driver")
    shipping_fee: Optional[Decimal] = Field(default=None, description="Flat fee for this destination")


class OrderItemInput(BaseModel):
    """
    One line of an order request.

    The discount may be given either as ``discount_type`` + ``discount_value``
    or, for older clients, as ``discount_percent``. Both forms are folded
    into the tagged ``discount`` field; sending both is rejected.
    """

    variation_id: Optional[UUID] = Field(default=None, description="Sellable product variation")
    product_id: Optional[UUID] = Field(
        default=None,
        validation_alias=AliasChoices("product_id", "sellable_product_id"),
        description="Sellable product"
    )
    product_code: str = Field(..., min_length=1, description="Product code at time of order")
    product_name: str = Field(..., min_length=1, description="Product name at time of order")
    bottle_size: Optional[str] = Field(default=None, description="Bottle size label")
    quantity: int = Field(..., description="Ordered units")
    unit_price: Decimal = Field(..., description="Price per unit")
    discount: Discount = Field(default_factory=PercentDiscount, description="Item discount")
    notes: Optional[str] = None
    shipments: List[ShipmentInput] = Field(default_factory=list, description="Shipment splits")

    @model_validator(mode="before")
    @classmethod
    def _resolve_discount(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data

        data = dict(data)
        legacy_percent = data.pop("discount_percent", None)
        discount_type = data.pop("discount_type", None)
        discount_value = data.pop("discount_value", None)
        tagged = discount_type is not None or discount_value is not None

        if data.get("discount") is not None:
            if legacy_percent is not None or tagged:
                raise ValueError("Specify the discount once: use either 'discount' or discount_type/discount_value")
            return data

        if legacy_percent is not None and tagged:
            raise ValueError("Specify either discount_percent or discount_type/discount_value, not both")

        if tagged:
            data["discount"] = {"kind": discount_type or "percent", "value": discount_value or 0}
        elif legacy_percent is not None:
            data["discount"] = {"kind": "percent", "value": legacy_percent}
        return data

    @property
    def snapshot(self) -> ProductSnapshot:
        return ProductSnapshot(
            variation_id=self.variation_id,
            product_id=self.product_id,
            product_code=self.product_code,
            product_name=self.product_name,
            bottle_size=self.bottle_size,
        )

    @property
    def label(self) -> str:
        return f"{self.product_code} {self.product_name}"


class OrderCreateRequest(BaseModel):
    """Request payload for order creation."""

    customer_id: UUID = Field(..., description="Ordering customer")
    delivery_date: Optional[date] = None
    payment_method: Optional[str] = None
    discount_amount: Decimal = Field(default=Decimal("0"), description="Order-level discount amount")
    notes: Optional[str] = None
    internal_notes: Optional[str] = None
    items: List[OrderItemInput] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _null_discount(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("discount_amount") is None:
            data = {key: value for key, value in data.items() if key != "discount_amount"}
        return data


class OrderUpdateRequest(BaseModel):
    """
    Request payload for order updates.

    With ``items`` the order is fully replaced (only allowed while the
    order is ``new``); without it only the header fields that were sent
    are changed.
    """

    items: Optional[List[OrderItemInput]] = None
    delivery_date: Optional[date] = None
    payment_method: Optional[str] = None
    discount_amount: Optional[Decimal] = None
    notes: Optional[str] = None
    internal_notes: Optional[str] = None
    shipping_fee: Optional[Decimal] = None
    order_status: Optional[OrderStatus] = None
    payment_status: Optional[PaymentStatus] = None

    @property
    def is_full_replace(self) -> bool:
        return self.items is not None


# ============================================================================
# List query models
# ============================================================================

class OrderListQuery(BaseModel):
    """Filters, sorting and paging for the order list."""

    customer_id: Optional[UUID] = None
    status: Optional[OrderStatus] = None
    payment_status: Optional[PaymentStatus] = None
    search: Optional[str] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    order_days_min: Optional[int] = Field(default=None, ge=0)
    order_days_max: Optional[int] = Field(default=None, ge=0)
    sort_by: str = "order_date"
    sort_dir: str = "desc"
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=50, ge=1)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


class FollowUpQuery(BaseModel):
    """Filters and sorting for the CRM follow-up customer list."""

    search: Optional[str] = None
    has_orders: Optional[bool] = None
    min_days: Optional[int] = Field(default=None, ge=0)
    max_days: Optional[int] = Field(default=None, ge=0)
    staleness: Optional[str] = None
    sort_by: str = "days_since_last_order"
    sort_dir: str = "desc"


class PaymentFollowUpQuery(BaseModel):
    """Filters, sorting and paging for the payment aging list."""

    search: Optional[str] = None
    min_days: Optional[int] = Field(default=None, ge=0)
    max_days: Optional[int] = Field(default=None, ge=0)
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    sort_by: str = "days_overdue"
    sort_dir: str = "desc"
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1)


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    totalPages: int

    @classmethod
    def build(cls, page: int, limit: int, total: int) -> "Pagination":
        return cls(page=page, limit=limit, total=total, totalPages=-(-total // limit) if total else 0)


# ============================================================================
# CRM read models
# ============================================================================

class CustomerFollowUp(BaseModel):
    """A customer annotated with order-history metrics."""

    id: UUID
    customer_code: Optional[str] = None
    name: str
    contact_person: Optional[str] = None
    phone: Optional[str] = None
    province: Optional[str] = None
    customer_type: Optional[str] = None
    last_order_date: Optional[date] = None
    days_since_last_order: Optional[int] = None
    avg_order_frequency_days: Optional[int] = None
    staleness: str
    total_orders: int = 0
    total_spent: Money = Decimal("0")
    completed_orders: int = 0


class UnpaidOrder(BaseModel):
    """One unpaid order inside a customer's payment aging row."""

    id: UUID
    order_number: str
    order_date: date
    delivery_date: Optional[date] = None
    total_amount: Money
    order_status: str
    payment_status: str
    days_ago: int


class CustomerAging(BaseModel):
    """Unpaid orders of one customer with aging totals."""

    customer_id: UUID
    customer_code: str = "-"
    customer_name: str
    contact_person: str = "-"
    phone: str = "-"
    credit_days: int = 0
    total_pending: Money = Decimal("0")
    order_count: int = 0
    oldest_order_date: date
    newest_order_date: date
    days_overdue: int
    aging_bucket: str
    line_user_id: Optional[str] = None
    line_display_name: Optional[str] = None
    orders: List[UnpaidOrder] = Field(default_factory=list)


# ============================================================================
# Settings / contact models
# ============================================================================

class CrmSettingsUpdate(BaseModel):
    """Request payload for replacing the follow-up day ranges."""

    dayRanges: List[DayRange] = Field(..., description="Follow-up day ranges")


class LineContactLink(BaseModel):
    """Request payload for linking a chat contact to a customer."""

    customer_id: Optional[UUID] = Field(default=None, description="Customer to link, null to unlink")


class HealthCheckResponse(BaseModel):
    """Response for health check endpoint."""

    status: str = Field(..., description="System status: 'healthy' or 'unhealthy'")
    database: str = Field(..., description="Database connection status")
    vat_mode: str = Field(..., description="Configured tax convention")
