"""HTTP client for the expense API"""
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional

import requests

from client.idempotency import IdempotencyKeyManager

logger = logging.getLogger(__name__)

IDEMPOTENCY_HEADER = "Idempotency-Key"
DEFAULT_TIMEOUT = 10


class ExpenseAPIError(Exception):
    """The server answered with an error status."""

    def __init__(self, status_code: int, message: str, fields: Optional[List[str]] = None):
        super().__init__(f"{status_code}: {message}")
        self.status_code = status_code
        self.message = message
        self.fields = fields or []


@dataclass(frozen=True)
class ExpenseSummary:
    total: Decimal
    count: int
    category: Optional[str] = None


def summarize_expenses(expenses: List[Dict[str, Any]], category: Optional[str] = None) -> ExpenseSummary:
    """Total and count of the expenses currently shown."""
    total = sum((Decimal(e["amount"]) for e in expenses), Decimal("0"))
    return ExpenseSummary(total=total, count=len(expenses), category=category or None)


class ExpenseClient:
    """
    Submits and lists expenses against the API.

    Each submission carries the key manager's current key. The key is rotated
    only after the server acknowledges the expense; on any error the same key
    is reused by the next call.
    """

    def __init__(
        self,
        base_url: str,
        session: Optional[requests.Session] = None,
        key_manager: Optional[IdempotencyKeyManager] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.key_manager = key_manager or IdempotencyKeyManager()
        self.timeout = timeout

    def submit_expense(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        key = self.key_manager.current()
        logger.info(f"Submitting expense with {IDEMPOTENCY_HEADER}: {key}")
        # Transport errors propagate and leave the key in place
        response = self.session.post(
            f"{self.base_url}/expenses",
            json=fields,
            headers={IDEMPOTENCY_HEADER: key},
            timeout=self.timeout,
        )
        if response.status_code not in (200, 201):
            raise self._error_from(response)

        if response.status_code == 200:
            logger.info(f"Server replayed existing expense for key {key}.")
        self.key_manager.confirm_success()
        self.key_manager.rotate()
        return response.json()

    def list_expenses(self, category: Optional[str] = None, sort: Optional[str] = "date_desc") -> List[Dict[str, Any]]:
        params = {}
        if category:
            params["category"] = category
        if sort:
            params["sort"] = sort

        response = self.session.get(f"{self.base_url}/expenses", params=params, timeout=self.timeout)
        if response.status_code != 200:
            raise self._error_from(response)
        return response.json()

    @staticmethod
    def _error_from(response: requests.Response) -> ExpenseAPIError:
        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        message = body.get("error") or f"Request failed with status {response.status_code}"
        logger.warning(f"Expense API returned {response.status_code}: {message}")
        return ExpenseAPIError(response.status_code, message, body.get("fields"))
