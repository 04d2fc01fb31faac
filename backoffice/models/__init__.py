"""
Models package for the back-office API.
"""

# Domain models
from .domain import (
    AmountDiscount,
    DayRange,
    DeliveryStatus,
    Discount,
    DiscountType,
    Order,
    OrderItem,
    OrderShipment,
    OrderStatus,
    PaymentStatus,
    PercentDiscount,
    ProductSnapshot,
    VatMode,
)

# API models
from .api import (
    CrmSettingsUpdate,
    CustomerAging,
    CustomerFollowUp,
    FollowUpQuery,
    HealthCheckResponse,
    LineContactLink,
    OrderCreateRequest,
    OrderItemInput,
    OrderListQuery,
    OrderUpdateRequest,
    Pagination,
    PaymentFollowUpQuery,
    ShipmentInput,
    UnpaidOrder,
)

__all__ = [
    # Domain
    "AmountDiscount",
    "DayRange",
    "DeliveryStatus",
    "Discount",
    "DiscountType",
    "Order",
    "OrderItem",
    "OrderShipment",
    "OrderStatus",
    "PaymentStatus",
    "PercentDiscount",
    "ProductSnapshot",
    "VatMode",
    # API
    "CrmSettingsUpdate",
    "CustomerAging",
    "CustomerFollowUp",
    "FollowUpQuery",
    "HealthCheckResponse",
    "LineContactLink",
    "OrderCreateRequest",
    "OrderItemInput",
    "OrderListQuery",
    "OrderUpdateRequest",
    "Pagination",
    "PaymentFollowUpQuery",
    "ShipmentInput",
    "UnpaidOrder",
]
