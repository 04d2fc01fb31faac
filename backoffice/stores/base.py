"""
Datastore interfaces used by the services.

Services receive a store instance in their constructor and never reach for
a global client, so the same service code runs against PostgreSQL in
production and against in-memory stores in tests.
"""

from abc import ABC, abstractmethod
from datetime import date
from typing import Any, ContextManager, Dict, Iterable, List, Optional, Tuple
from uuid import UUID

from backoffice.models.api import OrderListQuery

Row = Dict[str, Any]


class OrderStore(ABC):
    """Table-scoped access to orders, order items and order shipments"""

    @abstractmethod
    def transaction(self) -> ContextManager:
        """Unit of work: all writes inside commit or roll back together"""

    @abstractmethod
    def next_order_number(self) -> str:
        """Allocate a new human-readable order number"""

    @abstractmethod
    def insert_order(self, row: Row) -> Row:
        """Insert an order header and return it with its generated id"""

    @abstractmethod
    def insert_order_item(self, row: Row) -> Row:
        """Insert one order item and return it with its generated id"""

    @abstractmethod
    def insert_shipments(self, rows: List[Row]) -> List[Row]:
        """Insert the shipments of one order item"""

    @abstractmethod
    def get_order(self, order_id: UUID, for_update: bool = False) -> Optional[Row]:
        """Fetch an order header; ``for_update`` locks it until the unit of work ends"""

    @abstractmethod
    def get_order_with_customer(self, order_id: UUID) -> Optional[Row]:
        """Fetch an order header with a ``customer`` summary attached"""

    @abstractmethod
    def get_order_items(self, order_id: UUID) -> List[Row]:
        """Fetch an order's items, each with its ``shipments`` list"""

    @abstractmethod
    def update_order(self, order_id: UUID, fields: Row) -> Optional[Row]:
        """Update header columns; returns the new row or None when absent"""

    @abstractmethod
    def delete_order(self, order_id: UUID) -> bool:
        """Delete an order header together with its items and shipments"""

    @abstractmethod
    def delete_order_items(self, order_id: UUID) -> int:
        """Delete all items (and their shipments) of an order"""

    @abstractmethod
    def list_orders(self, query: OrderListQuery, today: date) -> Tuple[List[Row], int]:
        """Return one page of order summaries and the total match count"""

    @abstractmethod
    def branch_names(self, order_ids: Iterable[UUID]) -> Dict[UUID, List[str]]:
        """Distinct shipping address names per order"""


class CrmStore(ABC):
    """Read access to customers and their orders for CRM follow-up"""

    @abstractmethod
    def list_active_customers(self, search: Optional[str] = None) -> List[Row]:
        """Active customers, optionally filtered by name, code or phone"""

    @abstractmethod
    def list_customer_orders(self, customer_ids: List[UUID]) -> List[Row]:
        """Non-cancelled orders of the given customers"""

    @abstractmethod
    def list_unpaid_orders(self, date_from: Optional[date] = None, date_to: Optional[date] = None) -> List[Row]:
        """Pending or verifying, non-cancelled orders with customer columns, oldest first"""

    @abstractmethod
    def list_line_contacts(self, customer_ids: List[UUID]) -> List[Row]:
        """Active chat contacts linked to the given customers"""

    @abstractmethod
    def link_line_contact(self, contact_id: UUID, customer_id: Optional[UUID]) -> bool:
        """Link (or unlink with None) a chat contact; False when the contact is absent"""

    @abstractmethod
    def get_setting(self, key: str) -> Optional[Any]:
        """Stored JSON value of a CRM setting"""

    @abstractmethod
    def upsert_setting(self, key: str, value: Any, description: Optional[str] = None) -> Any:
        """Create or replace a CRM setting and return the stored value"""

    @abstractmethod
    def get_user_role(self, user_id: str) -> Optional[str]:
        """Role of a back-office user, None when the profile is missing"""
