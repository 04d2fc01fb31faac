"""
Datastore access for the back-office services.
"""

from .base import CrmStore, OrderStore
from .postgres import PostgresCrmStore, PostgresOrderStore

__all__ = [
    "CrmStore",
    "OrderStore",
    "PostgresCrmStore",
    "PostgresOrderStore",
]
