"""MongoDB access for expense documents."""
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorCollection
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import DuplicateKeyError, PyMongoError

from services.errors import StoreUnavailableError

logger = logging.getLogger(__name__)

IDEMPOTENCY_INDEX_NAME = "idempotency_key_unique"


class InsertStatus(str, Enum):
    """Result of an insert against the unique idempotency index."""

    INSERTED = "inserted"
    DUPLICATE_KEY = "duplicate_key"


@dataclass(frozen=True)
class InsertOutcome:
    status: InsertStatus
    document: Optional[Dict[str, Any]] = None

    @property
    def inserted(self) -> bool:
        return self.status == InsertStatus.INSERTED


class ExpenseStore:
    """
    Thin wrapper over the expenses collection.

    The unique index on `idempotency_key` is the only arbiter of "first writer
    wins"; a duplicate key on insert is reported as an InsertOutcome, not raised.
    Any other driver failure is raised as StoreUnavailableError.
    """

    def __init__(self, collection: AsyncIOMotorCollection):
        self.collection = collection

    async def ensure_indexes(self) -> None:
        logger.info(f"Ensuring indexes on collection '{self.collection.name}'...")
        try:
            await self.collection.create_index(
                [("idempotency_key", ASCENDING)], unique=True, name=IDEMPOTENCY_INDEX_NAME
            )
            await self.collection.create_index([("date", ASCENDING)], name="date")
        except PyMongoError as e:
            logger.error(f"Could not create indexes: {e}")
            raise StoreUnavailableError(f"Could not create indexes: {e}") from e

    async def insert_unique(self, document: Dict[str, Any]) -> InsertOutcome:
        doc = dict(document)
        try:
            result = await self.collection.insert_one(doc)
        except DuplicateKeyError:
            logger.info(f"Insert rejected by unique index for key '{document.get('idempotency_key')}'.")
            return InsertOutcome(InsertStatus.DUPLICATE_KEY)
        except PyMongoError as e:
            logger.error(f"Database error inserting expense: {e}")
            raise StoreUnavailableError(f"Database error inserting expense: {e}") from e

        doc["_id"] = result.inserted_id
        return InsertOutcome(InsertStatus.INSERTED, doc)

    async def find_by_key(self, idempotency_key: str) -> Optional[Dict[str, Any]]:
        try:
            return await self.collection.find_one({"idempotency_key": idempotency_key})
        except PyMongoError as e:
            logger.error(f"Database error looking up idempotency key: {e}")
            raise StoreUnavailableError(f"Database error looking up expense: {e}") from e

    async def find_many(self, category: Optional[str] = None, ascending: bool = True) -> List[Dict[str, Any]]:
        """
        Returns the documents matching `category` (case-insensitive, exact) sorted
        by date. Equal dates keep insertion order.
        """
        query: Dict[str, Any] = {}
        if category:
            query["category"] = {"$regex": f"^{re.escape(category)}$", "$options": "i"}

        direction = ASCENDING if ascending else DESCENDING
        documents = []
        try:
            cursor = self.collection.find(query).sort([("date", direction), ("_id", ASCENDING)])
            async for doc in cursor:
                documents.append(doc)
        except PyMongoError as e:
            logger.error(f"Database error fetching expenses: {e}")
            raise StoreUnavailableError(f"Database error fetching expenses: {e}") from e
        return documents
