"""API Routes for expenses"""
import logging
from typing import Annotated, Any, List, Optional

from fastapi import APIRouter, Body, Depends, Header, Query, Request
from fastapi.responses import JSONResponse

from models.expense import Expense
from rate_limit import DEFAULT_RATE_LIMIT, limiter
from services import expenses_service
from services.errors import ExpenseValidationError, StoreUnavailableError
from services.expense_store import ExpenseStore

router = APIRouter()
logger = logging.getLogger(__name__)

SERVER_ERROR_MESSAGE = "Server error"


def error_response(status_code: int, message: str, fields: Optional[List[str]] = None) -> JSONResponse:
    content: dict = {"error": message}
    if fields:
        content["fields"] = fields
    return JSONResponse(status_code=status_code, content=content)


# --- Dependency Function ---
def get_expense_store(request: Request) -> ExpenseStore:
    """Dependency to get the expense store from the application state."""
    store = getattr(request.app.state, "expense_store", None)
    if store is None:
        logger.error("Expense store not found in application state. Check MongoDB connection.")
        raise StoreUnavailableError("Database service not available.")
    return store


ExpenseStoreDep = Annotated[ExpenseStore, Depends(get_expense_store)]

# --- API Routes ---

@router.post(
    "/expenses",
    response_model=Expense,
    status_code=201,
    summary="Create Expense",
    description="Stores an expense at most once per Idempotency-Key. Replays return the stored record with 200.",
    responses={200: {"model": Expense, "description": "Idempotent replay, the existing record is returned."}},
)
@limiter.limit(DEFAULT_RATE_LIMIT)
async def create_expense(
    request: Request,
    store: ExpenseStoreDep,
    payload: Annotated[Any, Body()] = None,
    idempotency_key: Annotated[Optional[str], Header(alias="Idempotency-Key")] = None,
):
    """
    Creates an expense.
    201 on a fresh insert, 200 when the key was already used (including a lost race),
    400 on a missing key or invalid fields, 500 when the store fails.
    """
    logger.info(f"POST /expenses endpoint called with Idempotency-Key: {idempotency_key}")
    try:
        result = await expenses_service.create_expense(store, idempotency_key, payload)
    except ExpenseValidationError as ve:
        logger.warning(f"Validation error creating expense: {ve.message}")
        return error_response(400, ve.message, ve.fields)
    except StoreUnavailableError as se:
        logger.error(f"Store error creating expense: {se}")
        return error_response(500, SERVER_ERROR_MESSAGE)
    except Exception as e:
        logger.exception(f"Unexpected error creating expense: {e}")
        return error_response(500, SERVER_ERROR_MESSAGE)

    status_code = 201 if result.created else 200
    return JSONResponse(status_code=status_code, content=result.expense.model_dump(mode="json"))


@router.get(
    "/expenses",
    response_model=List[Expense],
    summary="List Expenses",
    description="Retrieves expenses, optionally filtered by category (case-insensitive) and sorted by date.",
)
@limiter.limit(DEFAULT_RATE_LIMIT)
async def get_expenses(
    request: Request,
    store: ExpenseStoreDep,
    category: Optional[str] = Query(None, description="Category to match, case-insensitive."),
    sort: Optional[str] = Query(None, description="'date_asc' (default) or 'date_desc'."),
):
    """Fetches expenses matching the optional category filter."""
    logger.info(f"GET /expenses endpoint called. category={category!r} sort={sort!r}")
    try:
        expenses = await expenses_service.list_expenses(store, category=category, sort=sort)
    except StoreUnavailableError as se:
        logger.error(f"Store error fetching expenses: {se}")
        return error_response(500, SERVER_ERROR_MESSAGE)
    except Exception as e:
        logger.exception(f"Unexpected error fetching expenses: {e}")
        return error_response(500, SERVER_ERROR_MESSAGE)

    return JSONResponse(status_code=200, content=[expense.model_dump(mode="json") for expense in expenses])
