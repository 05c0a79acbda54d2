"""
Error taxonomy for the order ledger.
"""
from typing import Optional


class LedgerError(Exception):
    """Base class for every error raised by the ledger core."""


class ValidationError(LedgerError):
    """
    Amount, reason or range violation on a ledger or pricing input.
    Surfaced to the caller synchronously and never retried.
    """

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field = field


class NetworkError(LedgerError):
    """REST call failure. Callers fall back to the offline mutation path."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class StaleEventError(LedgerError):
    """An event older than state the synchronizer has already applied."""

    def __init__(self, order_id: str, message: str):
        super().__init__(message)
        self.order_id = order_id
        self.message = message


class InvariantViolation(AssertionError):
    """Money conservation broken. A programming error, not a user error."""
