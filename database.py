"""
Document storage for users, hostels, complaints, leave requests and attendance.

Two backends share one interface:

- ``MongoStore``: pymongo against ``DATABASE_URL``/``DATABASE_NAME``.
- ``InMemoryStore``: process-local dictionaries, used by tests and local runs.

Records are plain dicts. Every record returned by a store carries a string
``id``; Mongo's ``_id`` never leaves this module. Filters use the Mongo subset
both backends understand: equality on a field and ``{"$in": [...]}``.

``update_document`` is the single write path for mutations. Its ``expected``
filter and ``push`` entries are applied in the same document write, which is
what keeps a complaint's status and its last update entry in agreement when
two transitions race.
"""

import copy
import logging
import threading
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ASCENDING, DESCENDING, MongoClient, ReturnDocument
from pymongo.errors import DuplicateKeyError

from errors import ConflictError

logger = logging.getLogger(__name__)

USER = "user"
HOSTEL = "hostel"
COMPLAINT = "complaint"
LEAVE_REQUEST = "leaverequest"
ATTENDANCE = "attendance"

# collection -> fields that must be unique when present
UNIQUE_FIELDS = {
    USER: ("email", "roll_number"),
    HOSTEL: ("name",),
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _matches(doc: Dict[str, Any], filter_dict: Dict[str, Any]) -> bool:
    for key, expected in filter_dict.items():
        value = doc.get(key)
        if isinstance(expected, dict) and "$in" in expected:
            if value not in expected["$in"]:
                return False
        elif value != expected:
            return False
    return True


@runtime_checkable
class BaseStore(Protocol):
    def create_document(self, collection: str, data: Dict[str, Any]) -> Dict[str, Any]: ...
    def get_document(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]: ...
    def find_document(self, collection: str, filter_dict: Dict[str, Any]) -> Optional[Dict[str, Any]]: ...
    def get_documents(
        self,
        collection: str,
        filter_dict: Optional[Dict[str, Any]] = None,
        limit: Optional[int] = None,
        newest_first: bool = False,
    ) -> List[Dict[str, Any]]: ...
    def count_documents(self, collection: str, filter_dict: Optional[Dict[str, Any]] = None) -> int: ...
    def update_document(
        self,
        collection: str,
        doc_id: str,
        fields: Dict[str, Any],
        expected: Optional[Dict[str, Any]] = None,
        push: Optional[Dict[str, Any]] = None,
    ) -> Optional[Dict[str, Any]]: ...
    def upsert_document(
        self, collection: str, filter_dict: Dict[str, Any], fields: Dict[str, Any]
    ) -> Dict[str, Any]: ...
    def delete_document(self, collection: str, doc_id: str) -> bool: ...


class InMemoryStore:
    """Dictionary-backed store. A single lock serialises writes."""

    def __init__(self) -> None:
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._lock = threading.RLock()

    def _collection(self, name: str) -> Dict[str, Dict[str, Any]]:
        return self._collections.setdefault(name, {})

    def _check_unique(self, collection: str, doc: Dict[str, Any]) -> None:
        for field in UNIQUE_FIELDS.get(collection, ()):
            value = doc.get(field)
            if value is None:
                continue
            for other in self._collection(collection).values():
                if other["id"] != doc["id"] and other.get(field) == value:
                    raise ConflictError(f"{field} already exists", {"field": field})

    def create_document(self, collection: str, data: Dict[str, Any]) -> Dict[str, Any]:
        with self._lock:
            doc = copy.deepcopy(data)
            doc["id"] = str(ObjectId())
            doc.setdefault("created_at", _now())
            doc.setdefault("updated_at", doc["created_at"])
            self._check_unique(collection, doc)
            self._collection(collection)[doc["id"]] = doc
            return copy.deepcopy(doc)

    def get_document(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        doc = self._collection(collection).get(doc_id)
        return copy.deepcopy(doc) if doc else None

    def find_document(self, collection: str, filter_dict: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        found = self.get_documents(collection, filter_dict, limit=1)
        return found[0] if found else None

    def get_documents(self, collection, filter_dict=None, limit=None, newest_first=False):
        with self._lock:
            docs = [d for d in self._collection(collection).values() if _matches(d, filter_dict or {})]
        if newest_first:
            # later inserts win ties on created_at
            docs.reverse()
            docs.sort(key=lambda d: d["created_at"], reverse=True)
        if limit:
            docs = docs[:limit]
        return [copy.deepcopy(d) for d in docs]

    def count_documents(self, collection, filter_dict=None) -> int:
        with self._lock:
            return sum(1 for d in self._collection(collection).values() if _matches(d, filter_dict or {}))

    def update_document(self, collection, doc_id, fields, expected=None, push=None):
        with self._lock:
            current = self._collection(collection).get(doc_id)
            if current is None or not _matches(current, expected or {}):
                return None
            updated = copy.deepcopy(current)
            updated.update(copy.deepcopy(fields))
            for key, value in (push or {}).items():
                updated.setdefault(key, []).append(copy.deepcopy(value))
            updated["updated_at"] = _now()
            self._check_unique(collection, updated)
            self._collection(collection)[doc_id] = updated
            return copy.deepcopy(updated)

    def upsert_document(self, collection, filter_dict, fields):
        with self._lock:
            existing = self.find_document(collection, filter_dict)
            if existing:
                return self.update_document(collection, existing["id"], fields)
            return self.create_document(collection, {**filter_dict, **fields})

    def delete_document(self, collection, doc_id) -> bool:
        with self._lock:
            return self._collection(collection).pop(doc_id, None) is not None


class MongoStore:
    def __init__(self, url: str, db_name: str, client: Optional[MongoClient] = None):
        self.client = client or MongoClient(url, tz_aware=True)
        self.db = self.client[db_name]
        self.ensure_indexes()

    def ensure_indexes(self) -> None:
        self.db[USER].create_index([("email", ASCENDING)], unique=True)
        self.db[USER].create_index(
            [("roll_number", ASCENDING)],
            unique=True,
            partialFilterExpression={"roll_number": {"$type": "string"}},
        )
        self.db[HOSTEL].create_index([("name", ASCENDING)], unique=True)
        self.db[COMPLAINT].create_index([("hostel", ASCENDING), ("created_at", DESCENDING)])
        self.db[COMPLAINT].create_index([("created_by", ASCENDING)])
        self.db[ATTENDANCE].create_index([("student_id", ASCENDING), ("date", ASCENDING)], unique=True)

    @staticmethod
    def _object_id(doc_id: str) -> Optional[ObjectId]:
        try:
            return ObjectId(doc_id)
        except (InvalidId, TypeError):
            return None

    @staticmethod
    def _serialize(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        if doc is None:
            return None
        doc["id"] = str(doc.pop("_id"))
        return doc

    @staticmethod
    def _conflict(exc: DuplicateKeyError) -> ConflictError:
        key_pattern = (exc.details or {}).get("keyPattern") or {}
        field = next(iter(key_pattern), "key")
        return ConflictError(f"{field} already exists", {"field": field})

    def create_document(self, collection, data):
        doc = dict(data)
        doc.pop("id", None)
        doc.setdefault("created_at", _now())
        doc.setdefault("updated_at", doc["created_at"])
        try:
            result = self.db[collection].insert_one(doc)
        except DuplicateKeyError as exc:
            raise self._conflict(exc)
        doc["_id"] = result.inserted_id
        return self._serialize(doc)

    def get_document(self, collection, doc_id):
        oid = self._object_id(doc_id)
        if oid is None:
            return None
        return self._serialize(self.db[collection].find_one({"_id": oid}))

    def find_document(self, collection, filter_dict):
        return self._serialize(self.db[collection].find_one(filter_dict))

    def get_documents(self, collection, filter_dict=None, limit=None, newest_first=False):
        cursor = self.db[collection].find(filter_dict or {})
        if newest_first:
            cursor = cursor.sort("created_at", DESCENDING)
        if limit:
            cursor = cursor.limit(limit)
        return [self._serialize(d) for d in cursor]

    def count_documents(self, collection, filter_dict=None):
        return self.db[collection].count_documents(filter_dict or {})

    def update_document(self, collection, doc_id, fields, expected=None, push=None):
        oid = self._object_id(doc_id)
        if oid is None:
            return None
        update: Dict[str, Any] = {"$set": {**fields, "updated_at": _now()}}
        if push:
            update["$push"] = push
        try:
            doc = self.db[collection].find_one_and_update(
                {"_id": oid, **(expected or {})},
                update,
                return_document=ReturnDocument.AFTER,
            )
        except DuplicateKeyError as exc:
            raise self._conflict(exc)
        return self._serialize(doc)

    def upsert_document(self, collection, filter_dict, fields):
        now = _now()
        update = {"$set": {**fields, "updated_at": now}, "$setOnInsert": {"created_at": now}}
        try:
            doc = self.db[collection].find_one_and_update(
                filter_dict, update, upsert=True, return_document=ReturnDocument.AFTER
            )
        except DuplicateKeyError:
            # a concurrent upsert inserted the same key first; match it this time
            try:
                doc = self.db[collection].find_one_and_update(
                    filter_dict, update, upsert=True, return_document=ReturnDocument.AFTER
                )
            except DuplicateKeyError as exc:
                raise self._conflict(exc)
        return self._serialize(doc)

    def delete_document(self, collection, doc_id):
        oid = self._object_id(doc_id)
        if oid is None:
            return False
        return self.db[collection].delete_one({"_id": oid}).deleted_count == 1


def create_store(backend: str, url: Optional[str] = None, db_name: str = "hostel_complaints") -> BaseStore:
    if backend == "mongodb":
        if not url:
            raise RuntimeError("DATABASE_BACKEND=mongodb requires DATABASE_URL")
        logger.info("Using MongoDB store (database %s)", db_name)
        return MongoStore(url, db_name)
    logger.info("Using in-memory store")
    return InMemoryStore()
