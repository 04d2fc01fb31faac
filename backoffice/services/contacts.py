"""
Chat contact linking for CRM follow-up.
"""

import logging
from typing import Optional
from uuid import UUID

from backoffice.stores.base import CrmStore
from backoffice.utils.errors import NotFoundError

logger = logging.getLogger(__name__)


class ContactService:
    def __init__(self, store: CrmStore):
        self.store = store

    def link_customer(self, contact_id: UUID, customer_id: Optional[UUID]) -> None:
        """Link a chat contact to a customer, or unlink it when ``customer_id`` is None"""
        if not self.store.link_line_contact(contact_id, customer_id):
            raise NotFoundError("Contact not found")

        if customer_id is None:
            logger.info(f"Unlinked chat contact {contact_id}")
        else:
            logger.info(f"Linked chat contact {contact_id} to customer {customer_id}")
