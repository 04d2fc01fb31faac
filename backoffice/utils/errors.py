"""
Error taxonomy shared by services, stores and the HTTP layer.

Every error carries the HTTP status it maps to; the application turns
any of them into a ``{"error": message}`` body.
"""

from typing import Optional


class BackofficeError(Exception):
    """Base class for errors reported back to API callers."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class AuthenticationError(BackofficeError):
    """Missing or invalid bearer token."""

    status_code = 401

    def __init__(self, message: str = "Unauthorized. Login required."):
        super().__init__(message)


class ValidationError(BackofficeError):
    """Request content violates an input or fulfillment constraint."""

    status_code = 400


class QuantityMismatchError(ValidationError):
    """An item's shipment quantities do not add up to its ordered quantity."""

    def __init__(self, item_index: int, label: str, expected: int, actual: int):
        super().__init__(
            f"Item {item_index + 1} ({label}): total shipment quantity ({actual}) "
            f"does not match item quantity ({expected})"
        )
        self.item_index = item_index
        self.expected = expected
        self.actual = actual


class StateConflictError(BackofficeError):
    """Mutation not allowed in the entity's current lifecycle state."""

    status_code = 400


class PermissionDeniedError(BackofficeError):
    status_code = 403


class NotFoundError(BackofficeError):
    status_code = 404


class PersistenceError(BackofficeError):
    """
    Datastore write or read failure.

    ``client_fault`` marks failures caused by the request itself (foreign
    key, unique or check violations); those map to 400, the rest to 500.
    """

    def __init__(self, message: str, client_fault: bool = False, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.client_fault = client_fault
        self.cause = cause

    @property
    def status_code(self) -> int:  # type: ignore[override]
        return 400 if self.client_fault else 500
