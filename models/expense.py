"""Pydantic models for Expense data"""
from datetime import date, datetime, time
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from models.money import Money, from_stored, to_decimal128


class ExpenseCreate(BaseModel):
    """
    Payload of a POST /expenses request.

    The idempotency key travels in a header and is not part of the body.
    Categories are free-form: the UI offers a fixed list, the server accepts any
    non-empty label.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    amount: Money
    category: str = Field(..., min_length=1)
    description: Optional[str] = ""
    date: date

    @field_validator("description", mode="before")
    @classmethod
    def default_description(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator("date", mode="before")
    @classmethod
    def accept_iso_datetime(cls, v: Any) -> Any:
        # Only the calendar day is meaningful, drop any time component
        if isinstance(v, datetime):
            return v.date()
        if isinstance(v, str) and ("T" in v or " " in v.strip()):
            try:
                return datetime.fromisoformat(v.strip()).date()
            except ValueError:
                return v
        return v


class Expense(BaseModel):
    """
    Represents a single persisted expense as returned to API consumers.
    The idempotency key is never included.
    """
    id: str
    amount: Money
    category: str
    description: str = ""
    date: date
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "Expense":
        """Builds the API view of a raw MongoDB document."""
        stored_date = doc["date"]
        return cls(
            id=str(doc["_id"]),
            amount=from_stored(doc["amount"]),
            category=doc["category"],
            description=doc.get("description") or "",
            date=stored_date.date() if isinstance(stored_date, datetime) else stored_date,
            created_at=doc["created_at"],
            updated_at=doc["updated_at"],
        )


def to_document(expense_in: ExpenseCreate, idempotency_key: str, now: datetime) -> Dict[str, Any]:
    """Prepares a validated payload for insertion into MongoDB."""
    return {
        "idempotency_key": idempotency_key,
        "amount": to_decimal128(expense_in.amount),
        "category": expense_in.category,
        "description": expense_in.description or "",
        # MongoDB has no date type, store midnight of the expense day
        "date": datetime.combine(expense_in.date, time.min),
        "created_at": now,
        "updated_at": now,
    }
