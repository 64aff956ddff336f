"""
Pytest fixtures for the expense tracker test suite.

The MongoDB collection is an in-memory mongomock-motor collection, so the
unique index on idempotency_key is enforced exactly as the store expects.
"""
import asyncio
from typing import Any, Dict

import pytest
from fastapi.testclient import TestClient
from mongomock_motor import AsyncMongoMockClient

from services.expense_store import ExpenseStore


@pytest.fixture
def collection():
    client = AsyncMongoMockClient()
    return client["expense_tracker_test"]["expenses"]


@pytest.fixture
def store(collection) -> ExpenseStore:
    expense_store = ExpenseStore(collection)
    # Private loop so the event loop used by async tests is left alone
    loop = asyncio.new_event_loop()
    try:
        loop.run_until_complete(expense_store.ensure_indexes())
    finally:
        loop.close()
    return expense_store


@pytest.fixture
def payload() -> Dict[str, Any]:
    return {
        "amount": "19.99",
        "category": "Food",
        "description": "Lunch",
        "date": "2024-01-15",
    }


@pytest.fixture
def api(store):
    """TestClient bound to the app with the in-memory store and rate limiting off."""
    from main import app
    from rate_limit import limiter

    was_enabled = limiter.enabled
    limiter.enabled = False
    app.state.expense_store = store
    client = TestClient(app)
    yield client
    app.state.expense_store = None
    limiter.enabled = was_enabled
