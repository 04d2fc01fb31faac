"""
Customer Follow-Up Service

Annotates customers with metrics derived from their non-cancelled order
history (days since last order, average gap between orders, staleness)
and summarizes them for the CRM dashboard.
"""

import logging
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence

from backoffice.models.api import CustomerFollowUp, FollowUpQuery
from backoffice.models.domain import OrderStatus
from backoffice.services.crm_settings import CrmSettingsService
from backoffice.services.pricing import to_decimal, to_money
from backoffice.stores.base import CrmStore

logger = logging.getLogger(__name__)


class StalenessLevel(str, Enum):
    ON_SCHEDULE = "on_schedule"
    MILD = "mild"
    ELEVATED = "elevated"
    SEVERE = "severe"
    NEVER_ORDERED = "never_ordered"


# Used when a customer has no usable order rhythm (fewer than 2 orders)
FIXED_STALENESS_DAYS = (
    (7, StalenessLevel.ON_SCHEDULE),
    (14, StalenessLevel.MILD),
    (30, StalenessLevel.ELEVATED),
)

NEVER_ORDERED_KEY = "never"


def as_date(value: Any) -> Optional[date]:
    """Normalize a date, datetime or ISO string to a date"""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def days_since(day: Optional[date], today: date) -> Optional[int]:
    """Whole days from ``day`` to ``today``; a future date counts as 0"""
    if day is None:
        return None
    return max((today - day).days, 0)


def average_order_frequency(order_dates: Sequence[date]) -> Optional[int]:
    """
    Average gap in whole days between consecutive orders, rounded half up.

    None for fewer than two orders.
    """
    if len(order_dates) < 2:
        return None

    ordered = sorted(order_dates)
    total_gap = sum((later - earlier).days for earlier, later in zip(ordered, ordered[1:]))
    average = Decimal(total_gap) / Decimal(len(ordered) - 1)
    return int(average.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def classify_staleness(days_since_last_order: Optional[int], avg_frequency: Optional[int]) -> StalenessLevel:
    """
    How overdue a customer's next order is.

    Relative to the customer's own rhythm when it is known: at least 2x the
    average gap is severe, 1.5x elevated, above 1x mild. Otherwise fixed
    7/14/30 day buckets apply.
    """
    if days_since_last_order is None:
        return StalenessLevel.NEVER_ORDERED

    if avg_frequency:
        ratio = Decimal(days_since_last_order) / Decimal(avg_frequency)
        if ratio >= 2:
            return StalenessLevel.SEVERE
        if ratio >= Decimal("1.5"):
            return StalenessLevel.ELEVATED
        if ratio > 1:
            return StalenessLevel.MILD
        return StalenessLevel.ON_SCHEDULE

    for limit, level in FIXED_STALENESS_DAYS:
        if days_since_last_order <= limit:
            return level
    return StalenessLevel.SEVERE


def order_day(order: Dict[str, Any]) -> Optional[date]:
    """The date an order counts for in follow-up: delivery date, else order date"""
    return as_date(order.get("delivery_date")) or as_date(order.get("order_date"))


def summarize_orders(orders: Sequence[Dict[str, Any]], today: date) -> Dict[str, Any]:
    """Follow-up metrics for one customer's non-cancelled orders"""
    dates = [day for day in (order_day(order) for order in orders) if day is not None]
    last_order_date = max(dates) if dates else None
    avg_frequency = average_order_frequency(dates)
    days = days_since(last_order_date, today)

    return {
        "last_order_date": last_order_date,
        "days_since_last_order": days,
        "avg_order_frequency_days": avg_frequency,
        "staleness": classify_staleness(days, avg_frequency).value,
        "total_orders": len(orders),
        "total_spent": to_money(sum((to_decimal(order.get("total_amount")) for order in orders), Decimal("0"))),
        "completed_orders": sum(1 for order in orders if order.get("order_status") == OrderStatus.COMPLETED.value),
    }


def _sort_key(sort_by: str):
    if sort_by == "total_orders":
        return lambda customer: customer.total_orders
    if sort_by == "total_spent":
        return lambda customer: customer.total_spent
    if sort_by == "name":
        return lambda customer: customer.name.lower()
    if sort_by == "last_order_date":
        return lambda customer: customer.last_order_date
    return lambda customer: customer.days_since_last_order


class FollowUpService:
    """CRM follow-up list and dashboard summary"""

    def __init__(
        self,
        store: CrmStore,
        settings_service: CrmSettingsService,
        today: Callable[[], date] = date.today,
    ):
        self.store = store
        self.settings_service = settings_service
        self.today = today

    def annotate_customers(self, search: Optional[str] = None) -> List[CustomerFollowUp]:
        """All active customers with their follow-up metrics"""
        customers = self.store.list_active_customers(search)
        if not customers:
            return []

        orders_by_customer: Dict[Any, List[Dict[str, Any]]] = {customer["id"]: [] for customer in customers}
        for order in self.store.list_customer_orders(list(orders_by_customer)):
            if order.get("order_status") == OrderStatus.CANCELLED.value:
                continue
            orders_by_customer.setdefault(order["customer_id"], []).append(order)

        today = self.today()
        return [
            CustomerFollowUp.model_validate({
                **customer,
                **summarize_orders(orders_by_customer[customer["id"]], today),
            })
            for customer in customers
        ]

    def list_customers(self, query: FollowUpQuery) -> Dict[str, Any]:
        """
        Filtered, sorted follow-up list plus a summary over all active
        customers matching the search.
        """
        annotated = self.annotate_customers(query.search)
        day_ranges = self.settings_service.get_day_ranges()

        customers = annotated
        if query.has_orders is True:
            customers = [c for c in customers if c.total_orders > 0]
        elif query.has_orders is False:
            customers = [c for c in customers if c.total_orders == 0]

        if query.min_days is not None:
            customers = [
                c for c in customers
                if c.days_since_last_order is not None and c.days_since_last_order >= query.min_days
            ]
        if query.max_days is not None:
            customers = [
                c for c in customers
                if c.days_since_last_order is not None and c.days_since_last_order <= query.max_days
            ]
        if query.staleness:
            customers = [c for c in customers if c.staleness == query.staleness]

        customers = self._sort(customers, query.sort_by, query.sort_dir)

        range_counts = {
            day_range.key: sum(1 for c in annotated if day_range.contains(c.days_since_last_order))
            for day_range in day_ranges
        }
        range_counts[NEVER_ORDERED_KEY] = sum(1 for c in annotated if c.days_since_last_order is None)

        staleness_counts = {level.value: 0 for level in StalenessLevel}
        for customer in annotated:
            staleness_counts[customer.staleness] += 1

        summary = {
            "totalCustomers": len(annotated),
            "customersWithOrders": sum(1 for c in annotated if c.total_orders > 0),
            "customersNeverOrdered": sum(1 for c in annotated if c.total_orders == 0),
            "rangeCounts": range_counts,
            "stalenessCounts": staleness_counts,
            "dayRanges": [day_range.model_dump(by_alias=True) for day_range in day_ranges],
        }
        logger.debug(f"Follow-up list: {len(customers)} of {len(annotated)} customers after filters")
        return {"customers": customers, "summary": summary}

    def _sort(self, customers: List[CustomerFollowUp], sort_by: str, sort_dir: str) -> List[CustomerFollowUp]:
        """Sort by the requested key; customers missing the key always go last"""
        key = _sort_key(sort_by)
        present = [c for c in customers if key(c) is not None]
        missing = [c for c in customers if key(c) is None]
        present.sort(key=key, reverse=sort_dir != "asc")
        return present + missing
