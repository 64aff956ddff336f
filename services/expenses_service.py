"""Service layer for handling expense-related logic."""
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from models.expense import Expense, ExpenseCreate, to_document
from services.errors import ExpenseValidationError, MissingIdempotencyKeyError, StoreUnavailableError
from services.expense_store import ExpenseStore

logger = logging.getLogger(__name__)

SORT_DATE_ASC = "date_asc"
SORT_DATE_DESC = "date_desc"
SORT_OPTIONS = (SORT_DATE_ASC, SORT_DATE_DESC)


class CreateStatus(str, Enum):
    CREATED = "created"
    ALREADY_EXISTS = "already_exists"


@dataclass(frozen=True)
class CreateResult:
    status: CreateStatus
    expense: Expense

    @property
    def created(self) -> bool:
        return self.status == CreateStatus.CREATED


# --- Validation ---

def validate_expense_payload(payload: Any) -> ExpenseCreate:
    """Validates a raw request body. Raises ExpenseValidationError naming the bad fields."""
    if not isinstance(payload, dict):
        raise ExpenseValidationError("Request body must be a JSON object")
    try:
        return ExpenseCreate(**payload)
    except ValidationError as e:
        fields = []
        for err in e.errors():
            name = str(err["loc"][0]) if err["loc"] else "body"
            if name not in fields:
                fields.append(name)
        logger.warning(f"Expense payload rejected, invalid fields: {fields}")
        raise ExpenseValidationError(f"Invalid or missing fields: {', '.join(fields)}", fields=fields) from e


# --- Create ---

async def create_expense(
    store: ExpenseStore,
    idempotency_key: Optional[str],
    payload: Dict[str, Any],
) -> CreateResult:
    """
    Persists an expense at most once per idempotency key.

    - Validates the key and the payload before touching the store.
    - Returns the stored record when the key was already used (replay).
    - Otherwise inserts; if a concurrent request with the same key won the
      insert, the winner's record is fetched and returned as a replay.

    The lookup in front of the insert only saves a write on plain replays; the
    unique index decides who wins.
    """
    if idempotency_key is None or not idempotency_key.strip():
        logger.warning("Expense creation rejected: missing idempotency key.")
        raise MissingIdempotencyKeyError()

    expense_in = validate_expense_payload(payload)
    logger.debug(f"Validated payload for key '{idempotency_key}':\n{json.dumps(expense_in.model_dump(mode='json'), indent=2)}")

    existing = await store.find_by_key(idempotency_key)
    if existing:
        logger.info(f"Idempotent replay for key '{idempotency_key}', returning expense {existing['_id']}.")
        return CreateResult(CreateStatus.ALREADY_EXISTS, Expense.from_document(existing))

    # MongoDB keeps milliseconds only; truncate so a replay reads back the same timestamps
    now = datetime.now(timezone.utc)
    now = now.replace(microsecond=now.microsecond // 1000 * 1000)
    outcome = await store.insert_unique(to_document(expense_in, idempotency_key, now))
    if outcome.inserted:
        logger.info(f"Created expense {outcome.document['_id']} for key '{idempotency_key}'.")
        return CreateResult(CreateStatus.CREATED, Expense.from_document(outcome.document))

    # Lost the race: another request inserted this key between our lookup and insert
    winner = await store.find_by_key(idempotency_key)
    if winner is None:
        logger.error(f"Unique index rejected key '{idempotency_key}' but no document was found.")
        raise StoreUnavailableError("Duplicate key reported but the stored expense could not be read back.")
    logger.warning(f"Concurrent insert for key '{idempotency_key}' resolved to existing expense {winner['_id']}.")
    return CreateResult(CreateStatus.ALREADY_EXISTS, Expense.from_document(winner))


# --- List ---

def is_ascending(sort: Optional[str]) -> bool:
    """Anything other than an explicit 'date_desc' sorts oldest-first."""
    if sort and sort not in SORT_OPTIONS:
        logger.warning(f"Unknown sort option '{sort}', falling back to {SORT_DATE_ASC}.")
    return sort != SORT_DATE_DESC


async def list_expenses(
    store: ExpenseStore,
    category: Optional[str] = None,
    sort: Optional[str] = None,
) -> List[Expense]:
    """Fetches expenses, optionally filtered by category (case-insensitive) and sorted by date."""
    category = category.strip() if category else None
    ascending = is_ascending(sort)
    logger.info(f"Fetching expenses (category={category!r}, {'asc' if ascending else 'desc'})...")

    documents = await store.find_many(category=category, ascending=ascending)
    expenses = [Expense.from_document(doc) for doc in documents]
    logger.info(f"Fetched {len(expenses)} expenses successfully.")
    return expenses
