"""
Document store adapter

Thin async wrapper around a MongoDB database. One MongoStore is created at
startup and shared by every request; handlers receive it as a dependency.

Collection names are the lowercased entity name:
- User -> "usuario"
- Product -> "producto"
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from bson import ObjectId
from pymongo import AsyncMongoClient, DESCENDING, ReturnDocument

logger = logging.getLogger(__name__)

USERS = "usuario"
PRODUCTS = "producto"


def parse_object_id(doc_id: str) -> Optional[ObjectId]:
    if not ObjectId.is_valid(doc_id):
        return None
    return ObjectId(doc_id)


def serialize_doc(doc):
    """Stored document -> response body. Stored names are snake_case, the API speaks camelCase."""
    d = dict(doc)
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    if "created_at" in d:
        d["createdAt"] = d.pop("created_at")
    return d


class MongoStore:
    def __init__(self, client: AsyncMongoClient, database_name: str):
        self.client = client
        self.db = client[database_name]
        self.indexes_ready = False

    @classmethod
    def from_url(cls, url: str, database_name: str) -> "MongoStore":
        # tz_aware so created_at comes back as an aware UTC datetime
        client = AsyncMongoClient(url, tz_aware=True)
        return cls(client, database_name)

    async def ping(self) -> None:
        await self.client.admin.command("ping")

    async def ensure_indexes(self) -> None:
        await self.db[USERS].create_index("email", unique=True)
        self.indexes_ready = True

    async def _before_write(self, collection: str) -> None:
        # Email uniqueness relies on the index; build it before the first
        # user write if startup could not.
        if collection == USERS and not self.indexes_ready:
            await self.ensure_indexes()
            logger.info("Unique email index created on %s", USERS)

    async def list_collection_names(self) -> List[str]:
        return await self.db.list_collection_names()

    async def close(self) -> None:
        await self.client.close()

    async def create_document(self, collection: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """Insert a document, stamping created_at. Returns the stored document."""
        await self._before_write(collection)
        doc = dict(data)
        doc["created_at"] = datetime.now(timezone.utc)
        result = await self.db[collection].insert_one(doc)
        doc["_id"] = result.inserted_id
        return doc

    async def get_documents(
        self,
        collection: str,
        filter_dict: Optional[Dict[str, Any]] = None,
        skip: int = 0,
        limit: int = 0,
        sort_field: str = "created_at",
    ) -> List[Dict[str, Any]]:
        """Newest first by default. limit=0 means no limit."""
        cursor = self.db[collection].find(filter_dict or {}).sort(sort_field, DESCENDING)
        if skip:
            cursor = cursor.skip(skip)
        if limit:
            cursor = cursor.limit(limit)
        return await cursor.to_list()

    async def count_documents(self, collection: str, filter_dict: Optional[Dict[str, Any]] = None) -> int:
        return await self.db[collection].count_documents(filter_dict or {})

    async def get_document(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        oid = parse_object_id(doc_id)
        if oid is None:
            return None
        return await self.db[collection].find_one({"_id": oid})

    async def update_document(
        self, collection: str, doc_id: str, fields: Dict[str, Any]
    ) -> Optional[Dict[str, Any]]:
        """$set the given fields. Returns the document after the update, or None."""
        oid = parse_object_id(doc_id)
        if oid is None:
            return None
        await self._before_write(collection)
        return await self.db[collection].find_one_and_update(
            {"_id": oid},
            {"$set": fields},
            upsert=False,
            return_document=ReturnDocument.AFTER,
        )
