"""
Shared fixtures: in-memory stores standing in for PostgreSQL.
"""

import sys
import os
from contextlib import contextmanager
from copy import deepcopy
from datetime import date, datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

# Add the project root to the Python path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from backoffice.stores.base import CrmStore, OrderStore
from backoffice.utils.errors import PersistenceError

TODAY = date(2024, 6, 15)


class InMemoryOrderStore(OrderStore):
    """Dict-backed order store. ``fail_on`` names a method that should raise."""

    def __init__(self):
        self.orders = {}
        self.items = {}
        self.shipments = {}
        self.customers = {}
        self.addresses = {}
        self.counter = 0
        self.fail_on = None
        self.transactions = 0

    def _maybe_fail(self, method):
        if self.fail_on == method:
            raise PersistenceError(f"{method} failed")

    @contextmanager
    def transaction(self):
        """Restores every table when the block raises"""
        self.transactions += 1
        snapshot = deepcopy((self.orders, self.items, self.shipments))
        try:
            yield
        except Exception:
            self.orders, self.items, self.shipments = snapshot
            raise

    def next_order_number(self):
        self.counter += 1
        return f"ORD-{self.counter:05d}"

    def insert_order(self, row):
        self._maybe_fail("insert_order")
        stored = dict(row, id=uuid4(), vat_amount=row.get("vat_amount", Decimal("0")))
        self.orders[stored["id"]] = stored
        return dict(stored)

    def insert_order_item(self, row):
        self._maybe_fail("insert_order_item")
        stored = dict(row, id=uuid4())
        self.items[stored["id"]] = stored
        return dict(stored)

    def insert_shipments(self, rows):
        self._maybe_fail("insert_shipments")
        stored = []
        for row in rows:
            shipment = dict(row, id=uuid4())
            self.shipments[shipment["id"]] = shipment
            stored.append(dict(shipment))
        return stored

    def get_order(self, order_id, for_update=False):
        order = self.orders.get(order_id)
        return dict(order) if order else None

    def get_order_with_customer(self, order_id):
        order = self.get_order(order_id)
        if order is None:
            return None
        customer = self.customers.get(order["customer_id"])
        order["customer"] = dict(customer) if customer else None
        return order

    def get_order_items(self, order_id):
        items = []
        for item in self.items.values():
            if item["order_id"] != order_id:
                continue
            item = dict(item)
            item["shipments"] = [
                dict(shipment, shipping_address=self.addresses.get(shipment["shipping_address_id"]))
                for shipment in self.shipments.values()
                if shipment["order_item_id"] == item["id"]
            ]
            items.append(item)
        return items

    def update_order(self, order_id, fields):
        self._maybe_fail("update_order")
        if order_id not in self.orders:
            return None
        self.orders[order_id].update(fields)
        return dict(self.orders[order_id])

    def delete_order_items(self, order_id):
        item_ids = [item_id for item_id, item in self.items.items() if item["order_id"] == order_id]
        for item_id in item_ids:
            del self.items[item_id]
            for shipment_id in [s for s, row in self.shipments.items() if row["order_item_id"] == item_id]:
                del self.shipments[shipment_id]
        return len(item_ids)

    def delete_order(self, order_id):
        self.delete_order_items(order_id)
        return self.orders.pop(order_id, None) is not None

    def list_orders(self, query, today):
        rows = list(self.orders.values())
        if query.customer_id:
            rows = [row for row in rows if row["customer_id"] == query.customer_id]
        if query.status:
            rows = [row for row in rows if row["order_status"] == query.status.value]
        if query.payment_status:
            rows = [row for row in rows if row["payment_status"] == query.payment_status.value]
        if query.search:
            rows = [row for row in rows if query.search.lower() in row["order_number"].lower()]
        rows.sort(key=lambda row: row["order_number"], reverse=query.sort_dir == "desc")
        page = rows[query.offset:query.offset + query.limit]
        return [dict(row) for row in page], len(rows)

    def branch_names(self, order_ids):
        names = {}
        for order_id in order_ids:
            found = set()
            for item in self.items.values():
                if item["order_id"] != order_id:
                    continue
                for shipment in self.shipments.values():
                    address = self.addresses.get(shipment["shipping_address_id"])
                    if shipment["order_item_id"] == item["id"] and address:
                        found.add(address["address_name"])
            if found:
                names[order_id] = sorted(found)
        return names


class InMemoryCrmStore(CrmStore):
    """List-backed CRM store"""

    def __init__(self):
        self.customers = []
        self.orders = []
        self.contacts = []
        self.settings = {}
        self.roles = {}

    def list_active_customers(self, search=None):
        customers = [c for c in self.customers if c.get("is_active", True)]
        if search:
            needle = search.lower()
            customers = [
                c for c in customers
                if needle in c["name"].lower()
                or needle in (c.get("customer_code") or "").lower()
                or needle in (c.get("phone") or "")
            ]
        return deepcopy(customers)

    def list_customer_orders(self, customer_ids):
        wanted = set(customer_ids)
        return [
            dict(order) for order in self.orders
            if order["customer_id"] in wanted and order["order_status"] != "cancelled"
        ]

    def list_unpaid_orders(self, date_from=None, date_to=None):
        by_id = {c["id"]: c for c in self.customers}
        rows = []
        for order in sorted(self.orders, key=lambda o: o["order_date"]):
            if order["payment_status"] not in ("pending", "verifying") or order["order_status"] == "cancelled":
                continue
            if date_from and order["order_date"] < date_from:
                continue
            if date_to and order["order_date"] > date_to:
                continue
            customer = by_id.get(order["customer_id"], {})
            rows.append(dict(
                order,
                customer_code=customer.get("customer_code"),
                customer_name=customer.get("name"),
                contact_person=customer.get("contact_person"),
                phone=customer.get("phone"),
                credit_days=customer.get("credit_days"),
            ))
        return rows

    def list_line_contacts(self, customer_ids):
        wanted = set(customer_ids)
        return [
            dict(contact) for contact in self.contacts
            if contact.get("customer_id") in wanted and contact.get("status", "active") == "active"
        ]

    def link_line_contact(self, contact_id, customer_id):
        for contact in self.contacts:
            if contact["id"] == contact_id:
                contact["customer_id"] = customer_id
                return True
        return False

    def get_setting(self, key):
        return deepcopy(self.settings.get(key))

    def upsert_setting(self, key, value, description=None):
        self.settings[key] = deepcopy(value)
        return deepcopy(value)

    def get_user_role(self, user_id):
        return self.roles.get(user_id)


def make_item(quantity=10, unit_price="100", shipments=None, **extra):
    """Request payload for one order item"""
    item = {
        "product_code": "OJ-1L",
        "product_name": "Orange Juice",
        "bottle_size": "1L",
        "quantity": quantity,
        "unit_price": unit_price,
        "shipments": shipments if shipments is not None else [
            {"shipping_address_id": str(uuid4()), "quantity": quantity}
        ],
    }
    item.update(extra)
    return item


def customer_row(name="Fresh Mart", **extra):
    row = {
        "id": uuid4(),
        "customer_code": "C-001",
        "name": name,
        "contact_person": "Somchai",
        "phone": "0812345678",
        "province": "Bangkok",
        "customer_type": "retail",
        "credit_days": 30,
        "is_active": True,
    }
    row.update(extra)
    return row


def order_row(customer_id, order_date, **extra):
    row = {
        "id": uuid4(),
        "order_number": f"ORD-{uuid4().hex[:6]}",
        "customer_id": customer_id,
        "order_date": order_date,
        "delivery_date": None,
        "total_amount": Decimal("100.00"),
        "order_status": "completed",
        "payment_status": "paid",
        "created_at": datetime(2024, 1, 1, tzinfo=timezone.utc),
    }
    row.update(extra)
    return row


@pytest.fixture
def order_store():
    return InMemoryOrderStore()


@pytest.fixture
def crm_store():
    return InMemoryCrmStore()


@pytest.fixture
def today():
    return TODAY


@pytest.fixture
def customer_id(order_store):
    customer = customer_row()
    order_store.customers[customer["id"]] = customer
    return customer["id"]
