"""
Payment Aging Service

Groups unpaid (pending or verifying) orders by customer and measures how
long the oldest one has been waiting for payment.
"""

import logging
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Dict, List, Sequence, Tuple

from backoffice.models.api import CustomerAging, Pagination, PaymentFollowUpQuery, UnpaidOrder
from backoffice.models.domain import DayRange, OrderStatus, UNPAID_STATUSES
from backoffice.services.follow_up import as_date
from backoffice.services.pricing import to_decimal, to_money
from backoffice.stores.base import CrmStore

logger = logging.getLogger(__name__)


class AgingBucket(str, Enum):
    ON_TIME = "on_time"
    DUE = "due"
    LATE = "late"
    VERY_LATE = "very_late"
    CRITICAL = "critical"


# (upper bound in days, bucket); anything above the last bound is critical
AGING_LIMITS: Tuple[Tuple[int, AgingBucket], ...] = (
    (7, AgingBucket.ON_TIME),
    (14, AgingBucket.DUE),
    (30, AgingBucket.LATE),
    (60, AgingBucket.VERY_LATE),
)

AGING_DAY_RANGES = [
    DayRange(min_days=0, max_days=7, label="0-7 days", color="green"),
    DayRange(min_days=8, max_days=14, label="8-14 days", color="yellow"),
    DayRange(min_days=15, max_days=30, label="15-30 days", color="orange"),
    DayRange(min_days=31, max_days=60, label="31-60 days", color="red"),
    DayRange(min_days=61, max_days=None, label="60+ days", color="purple"),
]

UNPAID_VALUES = {status.value for status in UNPAID_STATUSES}


def aging_bucket(days_overdue: int) -> AgingBucket:
    for limit, bucket in AGING_LIMITS:
        if days_overdue <= limit:
            return bucket
    return AgingBucket.CRITICAL


def group_unpaid_orders(
    orders: Sequence[Dict[str, Any]],
    contacts: Dict[Any, Dict[str, Any]],
    today: date,
) -> List[CustomerAging]:
    """
    Build one aging row per customer.

    Orders without a customer, already paid or cancelled are skipped.
    ``contacts`` maps customer ids to their linked chat contact.
    """
    grouped: Dict[Any, Dict[str, Any]] = {}

    for order in orders:
        customer_id = order.get("customer_id")
        if not customer_id:
            continue
        if order.get("payment_status") not in UNPAID_VALUES:
            continue
        if order.get("order_status") == OrderStatus.CANCELLED.value:
            continue

        order_date = as_date(order["order_date"])
        days_ago = (today - order_date).days
        total_amount = to_decimal(order.get("total_amount"))

        row = grouped.get(customer_id)
        if row is None:
            contact = contacts.get(customer_id) or {}
            row = grouped[customer_id] = {
                "customer_id": customer_id,
                "customer_code": order.get("customer_code") or "-",
                "customer_name": order.get("customer_name") or "Unknown",
                "contact_person": order.get("contact_person") or "-",
                "phone": order.get("phone") or "-",
                "credit_days": order.get("credit_days") or 0,
                "total_pending": Decimal("0"),
                "order_count": 0,
                "oldest_order_date": order_date,
                "newest_order_date": order_date,
                "days_overdue": days_ago,
                "line_user_id": contact.get("line_user_id"),
                "line_display_name": contact.get("display_name"),
                "orders": [],
            }

        row["total_pending"] += total_amount
        row["order_count"] += 1
        if order_date < row["oldest_order_date"]:
            row["oldest_order_date"] = order_date
            row["days_overdue"] = days_ago
        if order_date > row["newest_order_date"]:
            row["newest_order_date"] = order_date

        row["orders"].append(UnpaidOrder(
            id=order["id"],
            order_number=order["order_number"],
            order_date=order_date,
            delivery_date=as_date(order.get("delivery_date")),
            total_amount=to_money(total_amount),
            order_status=order["order_status"],
            payment_status=order["payment_status"],
            days_ago=days_ago,
        ))

    return [
        CustomerAging(
            **{**row, "total_pending": to_money(row["total_pending"])},
            aging_bucket=aging_bucket(row["days_overdue"]).value,
        )
        for row in grouped.values()
    ]


def _matches_search(row: CustomerAging, search: str) -> bool:
    needle = search.lower()
    return (
        needle in row.customer_name.lower()
        or needle in row.customer_code.lower()
        or search in row.phone
        or needle in row.contact_person.lower()
    )


SORT_KEYS = {
    "days_overdue": lambda row: row.days_overdue,
    "total_pending": lambda row: row.total_pending,
    "order_count": lambda row: row.order_count,
    "oldest_order": lambda row: row.oldest_order_date,
    "name": lambda row: row.customer_name.lower(),
}


class PaymentAgingService:
    """Customer-grouped list of unpaid orders"""

    def __init__(self, store: CrmStore, today: Callable[[], date] = date.today, max_page_limit: int = 200):
        self.store = store
        self.today = today
        self.max_page_limit = max_page_limit

    def _contacts(self, orders: Sequence[Dict[str, Any]]) -> Dict[Any, Dict[str, Any]]:
        customer_ids = list({order["customer_id"] for order in orders if order.get("customer_id")})
        if not customer_ids:
            return {}
        return {
            contact["customer_id"]: contact
            for contact in self.store.list_line_contacts(customer_ids)
            if contact.get("customer_id")
        }

    def list_customers(self, query: PaymentFollowUpQuery) -> Dict[str, Any]:
        """
        Filtered, sorted and paginated aging rows. The summary covers every
        customer with unpaid orders in the date range, before search and day
        filters.
        """
        orders = self.store.list_unpaid_orders(query.date_from, query.date_to)
        everyone = group_unpaid_orders(orders, self._contacts(orders), self.today())

        rows = everyone
        if query.search:
            rows = [row for row in rows if _matches_search(row, query.search)]
        if query.min_days is not None:
            rows = [row for row in rows if row.days_overdue >= query.min_days]
        if query.max_days is not None:
            rows = [row for row in rows if row.days_overdue <= query.max_days]

        key = SORT_KEYS.get(query.sort_by, SORT_KEYS["days_overdue"])
        rows = sorted(rows, key=key, reverse=query.sort_dir != "asc")

        limit = min(query.limit, self.max_page_limit)
        start = (query.page - 1) * limit
        page_rows = rows[start:start + limit]

        summary = {
            "totalCustomers": len(everyone),
            "totalOrders": sum(row.order_count for row in everyone),
            "totalPending": to_money(sum((row.total_pending for row in everyone), Decimal("0"))),
            "customersWithLine": sum(1 for row in everyone if row.line_user_id),
            "rangeCounts": {
                day_range.key: sum(1 for row in everyone if day_range.contains(row.days_overdue))
                for day_range in AGING_DAY_RANGES
            },
            "bucketCounts": {
                bucket.value: sum(1 for row in everyone if row.aging_bucket == bucket.value)
                for bucket in AgingBucket
            },
            "dayRanges": [day_range.model_dump(by_alias=True) for day_range in AGING_DAY_RANGES],
        }
        logger.debug(f"Payment follow-up: {len(rows)} of {len(everyone)} customers after filters")
        return {
            "customers": page_rows,
            "summary": summary,
            "pagination": Pagination.build(query.page, limit, len(rows)).model_dump(),
        }
