from __future__ import annotations

import dataclasses
import logging
from typing import Any, AbstractSet, Dict, Iterable, List, Protocol, Sequence, Set

from pymongo import ASCENDING, DESCENDING, AsyncMongoClient
from pymongo.errors import BulkWriteError, OperationFailure, PyMongoError

from .exceptions import PersistenceError
from .models import DeliveryFailureLog, NewsItem, RunLog

logger = logging.getLogger(__name__)

RUN_LOG_COLLECTION = "run_log"
DELIVERY_FAILURE_COLLECTION = "delivery_failure_log"
LINK_INDEX_NAME = "unique_link"

DUPLICATE_KEY = 11000
_INDEX_EXISTS_CODES = {"IndexOptionsConflict", "IndexKeySpecsConflict", "IndexExists"}


class NewsStore(Protocol):
    """What the pipeline and the report need from persistent storage."""

    async def ensure_indexes(self, source_names: Iterable[str]) -> None:  # pragma: no cover - interface
        ...

    async def find_existing_links(self, source: str, links: AbstractSet[str]) -> Set[str]:  # pragma: no cover - interface
        ...

    async def insert_news(self, source: str, items: Sequence[NewsItem]) -> List[NewsItem]:  # pragma: no cover - interface
        ...

    async def append_run_log(self, log: RunLog) -> None:  # pragma: no cover - interface
        ...

    async def append_delivery_failure(self, log: DeliveryFailureLog) -> None:  # pragma: no cover - interface
        ...

    async def run_log_totals(self) -> List[Dict[str, Any]]:  # pragma: no cover - interface
        ...

    async def recent_delivery_failures(self, limit: int = 100) -> List[DeliveryFailureLog]:  # pragma: no cover - interface
        ...


def collection_name(source: str) -> str:
    return f"news_{source}"


def news_to_document(item: NewsItem) -> Dict[str, Any]:
    doc = dataclasses.asdict(item)
    doc.pop("id", None)
    return doc


def only_duplicate_errors(exc: BulkWriteError) -> bool:
    errors = (exc.details or {}).get("writeErrors") or []
    if (exc.details or {}).get("writeConcernErrors"):
        return False
    return bool(errors) and all(e.get("code") == DUPLICATE_KEY for e in errors)


class MongoNewsStore:
    """
    MongoDB implementation of NewsStore.

    Each source gets its own ``news_<source>`` collection with a unique index on
    ``link``. Run logs and delivery failures go to shared append-only collections.
    """

    def __init__(self, client: AsyncMongoClient, database: str) -> None:
        self._client = client
        self._db = client[database]

    @classmethod
    def from_uri(cls, uri: str, database: str) -> "MongoNewsStore":
        return cls(AsyncMongoClient(uri, tz_aware=True), database)

    async def close(self) -> None:
        await self._client.close()

    def _news(self, source: str):
        return self._db[collection_name(source)]

    async def ensure_indexes(self, source_names: Iterable[str]) -> None:
        for name in source_names:
            coll = self._news(name)
            try:
                await coll.create_index([("link", ASCENDING)], unique=True, name=LINK_INDEX_NAME)
                logger.info("Unique index on link ensured for collection %s", coll.name)
            except OperationFailure as e:
                if e.details and e.details.get("codeName") in _INDEX_EXISTS_CODES:
                    logger.info("Unique index already exists for %s", coll.name)
                    continue
                raise PersistenceError(f"Could not create link index for {coll.name}: {e}") from e

    async def find_existing_links(self, source: str, links: AbstractSet[str]) -> Set[str]:
        if not links:
            return set()
        try:
            cursor = self._news(source).find({"link": {"$in": list(links)}}, {"link": 1, "_id": 0})
            return {doc["link"] async for doc in cursor}
        except PyMongoError as e:
            raise PersistenceError(f"Link lookup failed for {source}: {e}") from e

    async def insert_news(self, source: str, items: Sequence[NewsItem]) -> List[NewsItem]:
        """
        Insert a batch and return the items that were actually written, with ids.

        Duplicate links are skipped silently; any other failure raises PersistenceError.
        """
        if not items:
            return []
        docs = [news_to_document(it) for it in items]
        failed_indexes: Set[int] = set()
        try:
            await self._news(source).insert_many(docs, ordered=False)
        except BulkWriteError as e:
            if not only_duplicate_errors(e):
                raise PersistenceError(str(e)) from e
            failed_indexes = {err["index"] for err in e.details["writeErrors"]}
            logger.warning("%s: %d duplicate links ignored on insert", source, len(failed_indexes))
        except PyMongoError as e:
            raise PersistenceError(str(e)) from e

        return [
            dataclasses.replace(item, id=str(doc["_id"]))
            for i, (item, doc) in enumerate(zip(items, docs))
            if i not in failed_indexes and "_id" in doc
        ]

    async def append_run_log(self, log: RunLog) -> None:
        await self._db[RUN_LOG_COLLECTION].insert_one(dataclasses.asdict(log))

    async def append_delivery_failure(self, log: DeliveryFailureLog) -> None:
        await self._db[DELIVERY_FAILURE_COLLECTION].insert_one(dataclasses.asdict(log))

    async def run_log_totals(self) -> List[Dict[str, Any]]:
        pipeline = [
            {
                "$group": {
                    "_id": "$source",
                    "executions": {"$sum": 1},
                    "total_fetched": {"$sum": "$total_fetched"},
                    "new_inserted": {"$sum": "$new_inserted"},
                    "sent": {"$sum": "$sent"},
                    "failed": {"$sum": "$failed"},
                }
            },
            {"$sort": {"_id": ASCENDING}},
        ]
        cursor = await self._db[RUN_LOG_COLLECTION].aggregate(pipeline)
        out = []
        async for row in cursor:
            row["source"] = row.pop("_id")
            out.append(row)
        return out

    async def recent_delivery_failures(self, limit: int = 100) -> List[DeliveryFailureLog]:
        fields = {f.name for f in dataclasses.fields(DeliveryFailureLog)}
        cursor = (
            self._db[DELIVERY_FAILURE_COLLECTION]
            .find({}, {"_id": 0})
            .sort("timestamp", DESCENDING)
            .limit(limit)
        )
        return [
            DeliveryFailureLog(**{k: v for k, v in doc.items() if k in fields})
            async for doc in cursor
        ]
