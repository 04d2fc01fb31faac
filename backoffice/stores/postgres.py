"""
PostgreSQL implementations of the datastore interfaces.

All statements go through the injected ``Database`` so they share its
pool and its per-thread unit of work.
"""

import logging
from collections import defaultdict
from datetime import date, timedelta
from typing import Any, Dict, Iterable, List, Optional, Tuple
from uuid import UUID

from psycopg2.extras import Json, execute_values

from backoffice.models.api import OrderListQuery
from backoffice.stores.base import CrmStore, OrderStore, Row
from backoffice.utils.database import Database

logger = logging.getLogger(__name__)

ORDER_SORT_COLUMNS = {
    "order_date": "o.order_date",
    "order_number": "o.order_number",
    "total_amount": "o.total_amount",
    "delivery_date": "o.delivery_date",
    "created_at": "o.created_at",
}

SHIPMENT_COLUMNS = (
    "order_item_id", "shipping_address_id", "quantity", "shipping_fee",
    "delivery_status", "delivery_notes", "created_at", "updated_at",
)

ADDRESS_COLUMNS = (
    "address_name", "contact_person", "phone", "address_line1", "district",
    "amphoe", "province", "postal_code", "google_maps_link",
)


def _insert_statement(table: str, row: Row) -> Tuple[str, Tuple]:
    columns = list(row)
    query = (
        f"INSERT INTO {table} ({', '.join(columns)}) "
        f"VALUES ({', '.join(['%s'] * len(columns))}) RETURNING *"
    )
    return query, tuple(row[column] for column in columns)


class PostgresOrderStore(OrderStore):
    """Order aggregate tables in PostgreSQL"""

    def __init__(self, db: Database):
        self.db = db

    def transaction(self):
        return self.db.transaction()

    def next_order_number(self) -> str:
        result = self.db.execute_query("SELECT generate_order_number() AS order_number", fetch_one=True)
        return result["order_number"]

    def insert_order(self, row: Row) -> Row:
        query, params = _insert_statement("orders", row)
        return self.db.execute_query(query, params, fetch_one=True)

    def insert_order_item(self, row: Row) -> Row:
        row = dict(row)
        row["sellable_product_id"] = row.pop("product_id", None)
        query, params = _insert_statement("order_items", row)
        item = self.db.execute_query(query, params, fetch_one=True)
        item["product_id"] = item.get("sellable_product_id")
        return item

    def insert_shipments(self, rows: List[Row]) -> List[Row]:
        if not rows:
            return []

        query = f"""
            INSERT INTO order_shipments ({', '.join(SHIPMENT_COLUMNS)})
            VALUES %s
            RETURNING *
        """
        values = [tuple(row.get(column) for column in SHIPMENT_COLUMNS) for row in rows]

        with self.db.get_cursor() as cursor:
            result = execute_values(cursor, query, values, fetch=True)
            return [dict(row) for row in result]

    def get_order(self, order_id: UUID, for_update: bool = False) -> Optional[Row]:
        query = "SELECT * FROM orders WHERE id = %s"
        if for_update:
            query += " FOR UPDATE"
        return self.db.execute_query(query, (order_id,), fetch_one=True)

    def get_order_with_customer(self, order_id: UUID) -> Optional[Row]:
        query = """
            SELECT o.*,
                   CASE WHEN c.id IS NULL THEN NULL ELSE json_build_object(
                       'id', c.id,
                       'customer_code', c.customer_code,
                       'name', c.name,
                       'contact_person', c.contact_person,
                       'phone', c.phone,
                       'email', c.email
                   ) END AS customer
            FROM orders o
            LEFT JOIN customers c ON c.id = o.customer_id
            WHERE o.id = %s
        """
        return self.db.execute_query(query, (order_id,), fetch_one=True)

    def get_order_items(self, order_id: UUID) -> List[Row]:
        items_query = """
            SELECT oi.*, oi.sellable_product_id AS product_id
            FROM order_items oi
            WHERE oi.order_id = %s
            ORDER BY oi.created_at, oi.id
        """
        items = self.db.execute_query(items_query, (order_id,))
        if not items:
            return []

        address_select = ", ".join(f"a.{column} AS address_{column}" for column in ADDRESS_COLUMNS)
        shipments_query = f"""
            SELECT s.*, a.id AS address_id, {address_select}
            FROM order_shipments s
            LEFT JOIN shipping_addresses a ON a.id = s.shipping_address_id
            WHERE s.order_item_id = ANY(%s)
            ORDER BY s.created_at, s.id
        """
        shipments = self.db.execute_query(shipments_query, ([item["id"] for item in items],))

        by_item: Dict[Any, List[Row]] = defaultdict(list)
        for shipment in shipments:
            address_id = shipment.pop("address_id")
            address = {column: shipment.pop(f"address_{column}") for column in ADDRESS_COLUMNS}
            shipment["shipping_address"] = dict(address, id=address_id) if address_id else None
            by_item[shipment["order_item_id"]].append(shipment)

        for item in items:
            item["shipments"] = by_item.get(item["id"], [])
        return items

    def update_order(self, order_id: UUID, fields: Row) -> Optional[Row]:
        if not fields:
            return self.get_order(order_id)

        assignments = ", ".join(f"{column} = %s" for column in fields)
        query = f"UPDATE orders SET {assignments} WHERE id = %s RETURNING *"
        params = tuple(fields.values()) + (order_id,)
        return self.db.execute_query(query, params, fetch_one=True)

    def delete_order(self, order_id: UUID) -> bool:
        # order_items and order_shipments cascade on delete
        return self.db.execute_update("DELETE FROM orders WHERE id = %s", (order_id,)) > 0

    def delete_order_items(self, order_id: UUID) -> int:
        return self.db.execute_update("DELETE FROM order_items WHERE order_id = %s", (order_id,))

    def _order_filters(self, query: OrderListQuery, today: date) -> Tuple[str, List[Any]]:
        clauses: List[str] = []
        params: List[Any] = []

        if query.customer_id:
            clauses.append("o.customer_id = %s")
            params.append(query.customer_id)
        if query.status:
            clauses.append("o.order_status = %s")
            params.append(query.status.value)
        if query.payment_status:
            clauses.append("o.payment_status = %s")
            params.append(query.payment_status.value)
        if query.search:
            clauses.append("(o.order_number ILIKE %s OR c.name ILIKE %s)")
            pattern = f"%{query.search}%"
            params.extend([pattern, pattern])
        if query.date_from:
            clauses.append("o.order_date >= %s")
            params.append(query.date_from)
        if query.date_to:
            clauses.append("o.order_date <= %s")
            params.append(query.date_to)
        if query.order_days_min is not None:
            clauses.append("o.order_date <= %s")
            params.append(today - timedelta(days=query.order_days_min))
        if query.order_days_max is not None:
            clauses.append("o.order_date >= %s")
            params.append(today - timedelta(days=query.order_days_max))

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        return where, params

    def list_orders(self, query: OrderListQuery, today: date) -> Tuple[List[Row], int]:
        where, params = self._order_filters(query, today)

        count_query = f"""
            SELECT COUNT(*) AS total
            FROM orders o
            LEFT JOIN customers c ON c.id = o.customer_id
            {where}
        """
        total = self.db.execute_query(count_query, tuple(params), fetch_one=True)["total"]
        if not total:
            return [], 0

        sort_column = ORDER_SORT_COLUMNS.get(query.sort_by, ORDER_SORT_COLUMNS["order_date"])
        direction = "ASC" if query.sort_dir == "asc" else "DESC"
        list_query = f"""
            SELECT o.id, o.order_number, o.order_date, o.delivery_date, o.customer_id,
                   c.name AS customer_name, c.customer_code,
                   o.subtotal, o.discount_amount, o.vat_amount, o.shipping_fee, o.total_amount,
                   o.payment_method, o.payment_status, o.order_status, o.created_at
            FROM orders o
            LEFT JOIN customers c ON c.id = o.customer_id
            {where}
            ORDER BY {sort_column} {direction} NULLS LAST, o.created_at DESC
            LIMIT %s OFFSET %s
        """
        rows = self.db.execute_query(list_query, tuple(params) + (query.limit, query.offset))
        return rows, total

    def branch_names(self, order_ids: Iterable[UUID]) -> Dict[UUID, List[str]]:
        order_ids = list(order_ids)
        if not order_ids:
            return {}

        query = """
            SELECT DISTINCT oi.order_id, a.address_name
            FROM order_items oi
            JOIN order_shipments s ON s.order_item_id = oi.id
            JOIN shipping_addresses a ON a.id = s.shipping_address_id
            WHERE oi.order_id = ANY(%s) AND a.address_name IS NOT NULL
            ORDER BY a.address_name
        """
        names: Dict[UUID, List[str]] = defaultdict(list)
        for row in self.db.execute_query(query, (order_ids,)):
            names[row["order_id"]].append(row["address_name"])
        return dict(names)


class PostgresCrmStore(CrmStore):
    """Customer, contact and settings tables in PostgreSQL"""

    def __init__(self, db: Database):
        self.db = db

    def list_active_customers(self, search: Optional[str] = None) -> List[Row]:
        query = """
            SELECT id, customer_code, name, contact_person, phone, province,
                   customer_type_new AS customer_type
            FROM customers
            WHERE is_active = TRUE
        """
        params: Tuple = ()
        if search:
            query += " AND (name ILIKE %s OR customer_code ILIKE %s OR phone ILIKE %s)"
            pattern = f"%{search}%"
            params = (pattern, pattern, pattern)
        query += " ORDER BY name"
        return self.db.execute_query(query, params)

    def list_customer_orders(self, customer_ids: List[UUID]) -> List[Row]:
        if not customer_ids:
            return []

        query = """
            SELECT customer_id, order_date, delivery_date, total_amount, order_status
            FROM orders
            WHERE customer_id = ANY(%s) AND order_status <> 'cancelled'
            ORDER BY delivery_date DESC NULLS LAST
        """
        return self.db.execute_query(query, (list(customer_ids),))

    def list_unpaid_orders(self, date_from: Optional[date] = None, date_to: Optional[date] = None) -> List[Row]:
        query = """
            SELECT o.id, o.order_number, o.order_date, o.delivery_date, o.total_amount,
                   o.payment_status, o.order_status, o.payment_method, o.customer_id,
                   c.customer_code, c.name AS customer_name, c.contact_person, c.phone, c.credit_days
            FROM orders o
            LEFT JOIN customers c ON c.id = o.customer_id
            WHERE o.payment_status IN ('pending', 'verifying')
            AND o.order_status <> 'cancelled'
        """
        params: List[Any] = []
        if date_from:
            query += " AND o.order_date >= %s"
            params.append(date_from)
        if date_to:
            query += " AND o.order_date <= %s"
            params.append(date_to)
        query += " ORDER BY o.order_date ASC"
        return self.db.execute_query(query, tuple(params))

    def list_line_contacts(self, customer_ids: List[UUID]) -> List[Row]:
        if not customer_ids:
            return []

        query = """
            SELECT customer_id, line_user_id, display_name
            FROM line_contacts
            WHERE customer_id = ANY(%s) AND status = 'active'
        """
        return self.db.execute_query(query, (list(customer_ids),))

    def link_line_contact(self, contact_id: UUID, customer_id: Optional[UUID]) -> bool:
        query = "UPDATE line_contacts SET customer_id = %s, updated_at = NOW() WHERE id = %s"
        return self.db.execute_update(query, (customer_id, contact_id)) > 0

    def get_setting(self, key: str) -> Optional[Any]:
        row = self.db.execute_query(
            "SELECT setting_value FROM crm_settings WHERE setting_key = %s",
            (key,),
            fetch_one=True
        )
        return row["setting_value"] if row else None

    def upsert_setting(self, key: str, value: Any, description: Optional[str] = None) -> Any:
        query = """
            INSERT INTO crm_settings (setting_key, setting_value, description, updated_at)
            VALUES (%s, %s, %s, NOW())
            ON CONFLICT (setting_key) DO UPDATE
            SET setting_value = EXCLUDED.setting_value,
                description = COALESCE(EXCLUDED.description, crm_settings.description),
                updated_at = NOW()
            RETURNING setting_value
        """
        row = self.db.execute_query(query, (key, Json(value), description), fetch_one=True)
        logger.info(f"Stored CRM setting {key}")
        return row["setting_value"]

    def get_user_role(self, user_id: str) -> Optional[str]:
        row = self.db.execute_query("SELECT role FROM user_profiles WHERE id = %s", (user_id,), fetch_one=True)
        return row["role"] if row else None
