"""
Document storage substrate.

Every service talks to a ``DocumentStore``: CRUD by key, collection scan and
simple equality / array-membership filters. Two implementations ship here:

- ``MongoDocumentStore`` on top of pymongo's asyncio client, used in production
- ``MemoryDocumentStore`` keeping collections in process, used for demo mode
  and tests

Documents are plain dicts keyed by a string ``_id``. Composite ids are built
with ``compose_id`` so a "/" inside one part cannot move a part boundary.
Collection names are the lowercased entity names (``category``, ``product``,
``pricerole``, ...).
"""

import copy
import logging
from typing import Any, Dict, List, Optional, Protocol, Tuple
from urllib.parse import quote

from pymongo import AsyncMongoClient, ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from errors import StorageUnavailable

logger = logging.getLogger(__name__)


def compose_id(*parts: str) -> str:
    """Percent-escape each part and join with "/": ("a", "b/c") -> "a/b%2Fc"."""
    return "/".join(quote(str(p), safe="") for p in parts)


class DocumentStore(Protocol):
    async def get(self, collection: str, doc_id: str) -> Optional[dict]:
        ...

    async def find(self, collection: str, filter_dict: Optional[dict] = None, limit: int = 0) -> List[dict]:
        ...

    async def put(self, collection: str, doc_id: str, data: dict) -> None:
        """Replace the whole document, creating it when missing."""
        ...

    async def update(self, collection: str, doc_id: str, patch: dict) -> None:
        """Merge top-level fields into the document, creating it when missing."""
        ...

    async def delete(self, collection: str, doc_id: str) -> bool:
        ...

    async def create_if_absent(self, collection: str, doc_id: str, data: dict) -> Tuple[dict, bool]:
        """
        Atomically insert ``data`` under ``doc_id`` unless a document already
        exists there. Returns the stored document and whether it was created.
        """
        ...

    async def close(self) -> None:
        ...


def _matches(doc: dict, filter_dict: dict) -> bool:
    for key, expected in filter_dict.items():
        value = doc.get(key)
        if isinstance(value, list) and not isinstance(expected, list):
            if expected not in value:
                return False
        elif value != expected:
            return False
    return True


class MemoryDocumentStore:
    """In-process store with the same contract as MongoDocumentStore."""

    def __init__(self):
        self._collections: Dict[str, Dict[str, dict]] = {}

    def _col(self, collection: str) -> Dict[str, dict]:
        return self._collections.setdefault(collection, {})

    async def get(self, collection: str, doc_id: str) -> Optional[dict]:
        doc = self._col(collection).get(doc_id)
        return copy.deepcopy(doc) if doc is not None else None

    async def find(self, collection: str, filter_dict: Optional[dict] = None, limit: int = 0) -> List[dict]:
        out = []
        for doc in self._col(collection).values():
            if filter_dict and not _matches(doc, filter_dict):
                continue
            out.append(copy.deepcopy(doc))
            if limit and len(out) >= limit:
                break
        return out

    async def put(self, collection: str, doc_id: str, data: dict) -> None:
        doc = copy.deepcopy(data)
        doc["_id"] = doc_id
        self._col(collection)[doc_id] = doc

    async def update(self, collection: str, doc_id: str, patch: dict) -> None:
        doc = self._col(collection).setdefault(doc_id, {"_id": doc_id})
        doc.update(copy.deepcopy(patch))

    async def delete(self, collection: str, doc_id: str) -> bool:
        return self._col(collection).pop(doc_id, None) is not None

    async def create_if_absent(self, collection: str, doc_id: str, data: dict) -> Tuple[dict, bool]:
        # no await between the check and the insert, so this is atomic on the loop
        col = self._col(collection)
        existing = col.get(doc_id)
        if existing is not None:
            return copy.deepcopy(existing), False
        doc = copy.deepcopy(data)
        doc["_id"] = doc_id
        col[doc_id] = doc
        return copy.deepcopy(doc), True

    async def close(self) -> None:
        pass


class MongoDocumentStore:
    def __init__(self, url: str, database_name: str):
        self._client = AsyncMongoClient(url)
        self._db = self._client[database_name]
        self.name = database_name

    async def get(self, collection: str, doc_id: str) -> Optional[dict]:
        try:
            return await self._db[collection].find_one({"_id": doc_id})
        except PyMongoError as e:
            logger.error("get %s/%s failed", collection, doc_id, exc_info=True)
            raise StorageUnavailable(f"Failed to read {collection}: {e}") from e

    async def find(self, collection: str, filter_dict: Optional[dict] = None, limit: int = 0) -> List[dict]:
        try:
            cursor = self._db[collection].find(filter_dict or {})
            if limit:
                cursor = cursor.limit(limit)
            return await cursor.to_list(length=None)
        except PyMongoError as e:
            logger.error("find on %s failed", collection, exc_info=True)
            raise StorageUnavailable(f"Failed to query {collection}: {e}") from e

    async def put(self, collection: str, doc_id: str, data: dict) -> None:
        doc = dict(data)
        doc["_id"] = doc_id
        try:
            await self._db[collection].replace_one({"_id": doc_id}, doc, upsert=True)
        except PyMongoError as e:
            logger.error("put %s/%s failed", collection, doc_id, exc_info=True)
            raise StorageUnavailable(f"Failed to write {collection}: {e}") from e

    async def update(self, collection: str, doc_id: str, patch: dict) -> None:
        try:
            await self._db[collection].update_one({"_id": doc_id}, {"$set": patch}, upsert=True)
        except PyMongoError as e:
            logger.error("update %s/%s failed", collection, doc_id, exc_info=True)
            raise StorageUnavailable(f"Failed to update {collection}: {e}") from e

    async def delete(self, collection: str, doc_id: str) -> bool:
        try:
            res = await self._db[collection].delete_one({"_id": doc_id})
        except PyMongoError as e:
            logger.error("delete %s/%s failed", collection, doc_id, exc_info=True)
            raise StorageUnavailable(f"Failed to delete from {collection}: {e}") from e
        return res.deleted_count > 0

    async def create_if_absent(self, collection: str, doc_id: str, data: dict) -> Tuple[dict, bool]:
        doc = {k: v for k, v in data.items() if k != "_id"}
        try:
            before = await self._db[collection].find_one_and_update(
                {"_id": doc_id},
                {"$setOnInsert": doc},
                upsert=True,
                return_document=ReturnDocument.BEFORE,
            )
        except DuplicateKeyError:
            # lost an upsert race; the winner's document is the canonical one
            existing = await self.get(collection, doc_id)
            if existing is None:
                raise StorageUnavailable(f"Conflicting write on {collection}/{doc_id}")
            return existing, False
        except PyMongoError as e:
            logger.error("create_if_absent %s/%s failed", collection, doc_id, exc_info=True)
            raise StorageUnavailable(f"Failed to write {collection}: {e}") from e
        if before is not None:
            return before, False
        doc["_id"] = doc_id
        return doc, True

    async def list_collection_names(self) -> List[str]:
        try:
            return await self._db.list_collection_names()
        except PyMongoError as e:
            raise StorageUnavailable(f"Failed to list collections: {e}") from e

    async def close(self) -> None:
        await self._client.close()


def create_store(url: Optional[str], database_name: str) -> Any:
    """Mongo when a URL is configured, otherwise the in-memory store."""
    if url:
        logger.info("Using MongoDB database %s", database_name)
        return MongoDocumentStore(url, database_name)
    logger.warning("DATABASE_URL not set; using in-memory store")
    return MemoryDocumentStore()
