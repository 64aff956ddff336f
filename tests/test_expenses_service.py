"""Tests for expense creation and listing in the service layer."""
import asyncio

import pytest

from services import expenses_service
from services.errors import ExpenseValidationError, MissingIdempotencyKeyError, StoreUnavailableError
from services.expense_store import ExpenseStore, InsertOutcome, InsertStatus
from services.expenses_service import CreateStatus

pytestmark = pytest.mark.asyncio


class LockstepStore(ExpenseStore):
    """
    Holds every request at the barrier right after its first lookup, so all of
    them see "no such key" before any of them inserts.
    """

    def __init__(self, collection, parties):
        super().__init__(collection)
        self.parties = parties
        self.barrier = asyncio.Barrier(parties)
        self.lookups = 0
        self.inserted = 0

    async def find_by_key(self, idempotency_key):
        doc = await super().find_by_key(idempotency_key)
        self.lookups += 1
        if self.lookups <= self.parties:
            await self.barrier.wait()
        return doc

    async def insert_unique(self, document):
        outcome = await super().insert_unique(document)
        if outcome.inserted:
            self.inserted += 1
        return outcome


class TestCreateExpense:
    async def test_fresh_key_creates(self, store, payload):
        result = await expenses_service.create_expense(store, "key-1", payload)
        assert result.status == CreateStatus.CREATED
        assert result.created
        assert str(result.expense.amount) == "19.99"
        assert result.expense.category == "Food"

    async def test_sequential_replays_return_same_record(self, store, collection, payload):
        results = [await expenses_service.create_expense(store, "key-1", payload) for _ in range(5)]

        assert [r.status for r in results] == [CreateStatus.CREATED] + [CreateStatus.ALREADY_EXISTS] * 4
        assert len({r.expense.id for r in results}) == 1
        assert await collection.count_documents({"idempotency_key": "key-1"}) == 1

    async def test_replay_ignores_changed_payload(self, store, payload):
        """The first submission for a key is the one that counts."""
        first = await expenses_service.create_expense(store, "key-1", payload)
        second = await expenses_service.create_expense(store, "key-1", {**payload, "amount": "500"})
        assert second.status == CreateStatus.ALREADY_EXISTS
        assert second.expense.amount == first.expense.amount

    async def test_gathered_identical_requests_persist_once(self, store, collection, payload):
        """The in-memory collection never yields, so these run back to back; the lockstep test below covers the real race."""
        results = await asyncio.gather(
            *[expenses_service.create_expense(store, "key-1", payload) for _ in range(10)]
        )
        assert sum(1 for r in results if r.created) == 1
        assert len({r.expense.id for r in results}) == 1
        assert await collection.count_documents({}) == 1

    async def test_race_loser_resolves_to_winner(self, collection, payload):
        store = LockstepStore(collection, parties=2)
        await store.ensure_indexes()

        first, second = await asyncio.gather(
            expenses_service.create_expense(store, "key-1", payload),
            expenses_service.create_expense(store, "key-1", payload),
        )

        assert store.inserted == 1
        assert sorted([first.status, second.status]) == sorted([CreateStatus.CREATED, CreateStatus.ALREADY_EXISTS])
        assert first.expense.id == second.expense.id
        assert await collection.count_documents({}) == 1

    async def test_distinct_keys_create_distinct_records(self, store, collection, payload):
        a = await expenses_service.create_expense(store, "key-1", payload)
        b = await expenses_service.create_expense(store, "key-2", payload)
        assert a.expense.id != b.expense.id
        assert await collection.count_documents({}) == 2

    async def test_duplicate_without_readable_winner_is_store_error(self, store, payload, monkeypatch):
        async def no_document(idempotency_key):
            return None

        async def always_duplicate(document):
            return InsertOutcome(InsertStatus.DUPLICATE_KEY)

        monkeypatch.setattr(store, "find_by_key", no_document)
        monkeypatch.setattr(store, "insert_unique", always_duplicate)

        with pytest.raises(StoreUnavailableError):
            await expenses_service.create_expense(store, "key-1", payload)


class TestCreateValidation:
    @pytest.mark.parametrize("key", [None, "", "   "])
    async def test_missing_key(self, store, collection, payload, key):
        with pytest.raises(MissingIdempotencyKeyError) as exc_info:
            await expenses_service.create_expense(store, key, payload)
        assert isinstance(exc_info.value, ExpenseValidationError)
        assert await collection.count_documents({}) == 0

    @pytest.mark.parametrize("amount", ["0", "-5", 0, -0.01, "abc"])
    async def test_non_positive_amount(self, store, collection, payload, amount):
        with pytest.raises(ExpenseValidationError) as exc_info:
            await expenses_service.create_expense(store, "key-1", {**payload, "amount": amount})
        assert exc_info.value.fields == ["amount"]
        assert await collection.count_documents({}) == 0

    @pytest.mark.parametrize("field", ["amount", "category", "date"])
    async def test_missing_required_field(self, store, collection, payload, field):
        body = {k: v for k, v in payload.items() if k != field}
        with pytest.raises(ExpenseValidationError) as exc_info:
            await expenses_service.create_expense(store, "key-1", body)
        assert field in exc_info.value.fields
        assert await collection.count_documents({}) == 0

    async def test_multiple_bad_fields_are_all_named(self, store, payload):
        with pytest.raises(ExpenseValidationError) as exc_info:
            await expenses_service.create_expense(store, "key-1", {"amount": "-1", "category": ""})
        assert set(exc_info.value.fields) == {"amount", "category", "date"}

    async def test_validation_happens_before_store_access(self, store, payload, monkeypatch):
        async def unexpected(*args, **kwargs):
            raise AssertionError("store must not be touched")

        monkeypatch.setattr(store, "find_by_key", unexpected)
        monkeypatch.setattr(store, "insert_unique", unexpected)

        with pytest.raises(ExpenseValidationError):
            await expenses_service.create_expense(store, "key-1", {**payload, "amount": "0"})
        with pytest.raises(MissingIdempotencyKeyError):
            await expenses_service.create_expense(store, None, payload)

    @pytest.mark.parametrize("amount", ["1E+7000", "1E-7000"])
    async def test_amount_outside_decimal128_range(self, store, collection, payload, monkeypatch, amount):
        async def unexpected(*args, **kwargs):
            raise AssertionError("store must not be touched")

        monkeypatch.setattr(store, "find_by_key", unexpected)

        with pytest.raises(ExpenseValidationError) as exc_info:
            await expenses_service.create_expense(store, "key-1", {**payload, "amount": amount})
        assert exc_info.value.fields == ["amount"]
        assert await collection.count_documents({}) == 0

    async def test_non_object_body(self, store):
        with pytest.raises(ExpenseValidationError):
            await expenses_service.create_expense(store, "key-1", ["not", "an", "object"])


class TestListExpenses:
    @pytest.fixture
    def seeded(self, store):
        rows = [
            ("k1", "Food", "2024-01-01"),
            ("k2", "food", "2024-02-01"),
            ("k3", "Transport", "2024-01-15"),
        ]
        loop = asyncio.new_event_loop()
        try:
            for key, category, day in rows:
                body = {"amount": "10.00", "category": category, "date": day}
                loop.run_until_complete(expenses_service.create_expense(store, key, body))
        finally:
            loop.close()
        return store

    async def test_category_filter_is_case_insensitive(self, seeded):
        expenses = await expenses_service.list_expenses(seeded, category="FOOD")
        assert sorted(e.category for e in expenses) == ["Food", "food"]

    async def test_sort_ascending(self, seeded):
        expenses = await expenses_service.list_expenses(seeded, sort="date_asc")
        assert [e.date.isoformat() for e in expenses] == ["2024-01-01", "2024-01-15", "2024-02-01"]

    async def test_sort_descending(self, seeded):
        expenses = await expenses_service.list_expenses(seeded, category="food", sort="date_desc")
        assert [e.date.isoformat() for e in expenses] == ["2024-02-01", "2024-01-01"]

    async def test_default_and_unknown_sort_are_ascending(self, seeded):
        default = await expenses_service.list_expenses(seeded)
        unknown = await expenses_service.list_expenses(seeded, sort="by_amount")
        assert [e.date.isoformat() for e in default] == ["2024-01-01", "2024-01-15", "2024-02-01"]
        assert [e.id for e in unknown] == [e.id for e in default]

    async def test_blank_category_means_no_filter(self, seeded):
        assert len(await expenses_service.list_expenses(seeded, category="  ")) == 3

    async def test_unknown_category_is_empty(self, seeded):
        assert await expenses_service.list_expenses(seeded, category="Housing") == []
