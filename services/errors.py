"""Typed errors raised by the expense service layer."""
from typing import Iterable, List, Optional


class ExpenseError(Exception):
    """Base class for expense service errors."""


class ExpenseValidationError(ExpenseError, ValueError):
    """Bad input from the caller. Raised before any store access."""

    def __init__(self, message: str, fields: Optional[Iterable[str]] = None):
        super().__init__(message)
        self.message = message
        self.fields: List[str] = list(fields or [])


class MissingIdempotencyKeyError(ExpenseValidationError):
    def __init__(self):
        super().__init__("Idempotency-Key header is required", fields=["Idempotency-Key"])


class StoreUnavailableError(ExpenseError, ConnectionError):
    """
    The underlying store failed. Nothing was committed, so the caller may retry
    with the same idempotency key.
    """
