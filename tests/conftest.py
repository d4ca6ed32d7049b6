"""
pytest configuration and fixtures.
"""

import copy
import re
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import bson
import pytest
from bson import ObjectId
from fastapi.testclient import TestClient
from pymongo.errors import DuplicateKeyError, ServerSelectionTimeoutError

from config import Settings
from database import USERS, parse_object_id
from main import create_app


def _matches(doc: Dict[str, Any], filt: Dict[str, Any]) -> bool:
    for key, cond in filt.items():
        value = doc.get(key)
        if isinstance(cond, dict) and "$regex" in cond:
            flags = re.IGNORECASE if "i" in cond.get("$options", "") else 0
            if value is None or not re.search(cond["$regex"], str(value), flags):
                return False
        elif isinstance(cond, dict) and "$gte" in cond:
            if value is None or value < cond["$gte"]:
                return False
        elif value != cond:
            return False
    return True


class FakeStore:
    """In-memory stand-in for database.MongoStore."""

    def __init__(self):
        self.collections: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
        self.down = False
        self.closed = False
        self.failure: Optional[Exception] = None
        self._last_ts: Optional[datetime] = None

    def _now(self) -> datetime:
        # Strictly increasing so created_at ordering is deterministic
        ts = datetime.now(timezone.utc)
        if self._last_ts is not None and ts <= self._last_ts:
            ts = self._last_ts + timedelta(microseconds=1)
        self._last_ts = ts
        return ts

    def _check_down(self):
        if self.down:
            raise ServerSelectionTimeoutError("localhost:27017: connection refused")
        if self.failure is not None:
            raise self.failure

    def _check_email(self, collection: str, email: Any, exclude_id: Optional[ObjectId] = None):
        if collection != USERS:
            return
        for other in self.collections[USERS]:
            if other.get("email") == email and other["_id"] != exclude_id:
                raise DuplicateKeyError(
                    "E11000 duplicate key error collection: api.usuario index: email_1", 11000
                )

    def seed(self, collection: str, **fields) -> Dict[str, Any]:
        """Insert directly, bypassing validation. Lets tests pick created_at."""
        doc = dict(fields)
        doc.setdefault("created_at", self._now())
        doc["_id"] = ObjectId()
        self.collections[collection].append(doc)
        return doc

    async def ping(self) -> None:
        self._check_down()

    async def ensure_indexes(self) -> None:
        self._check_down()

    async def close(self) -> None:
        self.closed = True

    async def list_collection_names(self) -> List[str]:
        self._check_down()
        return sorted(self.collections)

    async def create_document(self, collection: str, data: Dict[str, Any]) -> Dict[str, Any]:
        self._check_down()
        # The driver BSON-encodes every document before sending it
        bson.encode(data)
        doc = copy.deepcopy(data)
        self._check_email(collection, doc.get("email"))
        doc["created_at"] = self._now()
        doc["_id"] = ObjectId()
        self.collections[collection].append(doc)
        return copy.deepcopy(doc)

    async def get_documents(self, collection, filter_dict=None, skip=0, limit=0, sort_field="created_at"):
        self._check_down()
        bson.encode({"filter": filter_dict or {}, "skip": skip, "limit": limit})
        docs = [d for d in self.collections[collection] if _matches(d, filter_dict or {})]
        docs.sort(key=lambda d: d[sort_field], reverse=True)
        docs = docs[skip:]
        if limit:
            docs = docs[:limit]
        return copy.deepcopy(docs)

    async def count_documents(self, collection, filter_dict=None) -> int:
        self._check_down()
        return sum(1 for d in self.collections[collection] if _matches(d, filter_dict or {}))

    async def get_document(self, collection, doc_id):
        self._check_down()
        oid = parse_object_id(doc_id)
        for doc in self.collections[collection]:
            if oid is not None and doc["_id"] == oid:
                return copy.deepcopy(doc)
        return None

    async def update_document(self, collection, doc_id, fields):
        self._check_down()
        oid = parse_object_id(doc_id)
        for doc in self.collections[collection]:
            if oid is not None and doc["_id"] == oid:
                bson.encode({"$set": fields})
                if "email" in fields:
                    self._check_email(collection, fields["email"], exclude_id=oid)
                doc.update(copy.deepcopy(fields))
                return copy.deepcopy(doc)
        return None


@pytest.fixture
def settings() -> Settings:
    return Settings(database_url="mongodb://localhost:27017", database_name="test")


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def client(settings, store):
    app = create_app(settings, store=store)
    with TestClient(app) as c:
        yield c


@pytest.fixture
def sample_user() -> Dict[str, Any]:
    return {"name": "Ana Gómez", "email": "ana@example.com", "age": 31, "phone": "3001234567"}


@pytest.fixture
def sample_product() -> Dict[str, Any]:
    return {"name": "Café de origen", "price": 24.5, "category": "Bebidas", "description": "500g molido"}
