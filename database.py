"""
Document storage

A small document-store interface with two backends sharing it:
MongoStore (pymongo) for deployments and MemoryStore (in-process maps)
for development and tests.
"""
import copy
import re
import threading
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

import structlog
from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient, ReturnDocument

from schemas import utcnow

logger = structlog.get_logger(__name__)

Filter = Dict[str, Any]
Sort = Sequence[Tuple[str, int]]


class DocumentStore(ABC):
    """Collection-oriented document storage."""

    name: str = ""
    backend: str = ""

    @abstractmethod
    def find_one(self, collection: str, filter: Filter) -> Optional[dict]:
        ...

    @abstractmethod
    def find(self, collection: str, filter: Optional[Filter] = None,
             sort: Optional[Sort] = None, limit: int = 0) -> List[dict]:
        ...

    @abstractmethod
    def insert_one(self, collection: str, doc: dict) -> str:
        ...

    @abstractmethod
    def replace_one(self, collection: str, filter: Filter, doc: dict, upsert: bool = False) -> None:
        ...

    @abstractmethod
    def update_one(self, collection: str, filter: Filter,
                   set: Optional[dict] = None, inc: Optional[dict] = None) -> Optional[dict]:
        """Apply $set/$inc to the first match and return the updated document."""

    @abstractmethod
    def delete_one(self, collection: str, filter: Filter) -> bool:
        ...

    @abstractmethod
    def delete_many(self, collection: str, filter: Optional[Filter] = None) -> int:
        ...

    @abstractmethod
    def list_collection_names(self) -> List[str]:
        ...

    def ensure_indexes(self) -> None:
        pass


# ----- MongoDB -----

class MongoStore(DocumentStore):
    backend = "mongo"

    def __init__(self, url: str, name: str, client: Optional[MongoClient] = None):
        self.client = client or MongoClient(url)
        self.db = self.client[name]
        self.name = name

    def find_one(self, collection, filter):
        return self.db[collection].find_one(filter)

    def find(self, collection, filter=None, sort=None, limit=0):
        cursor = self.db[collection].find(filter or {})
        if sort:
            cursor = cursor.sort(list(sort))
        if limit:
            cursor = cursor.limit(limit)
        return list(cursor)

    def insert_one(self, collection, doc):
        result = self.db[collection].insert_one(doc)
        return str(result.inserted_id)

    def replace_one(self, collection, filter, doc, upsert=False):
        self.db[collection].replace_one(filter, doc, upsert=upsert)

    def update_one(self, collection, filter, set=None, inc=None):
        update = {}
        if set:
            update["$set"] = set
        if inc:
            update["$inc"] = inc
        if not update:
            return self.find_one(collection, filter)
        return self.db[collection].find_one_and_update(
            filter, update, return_document=ReturnDocument.AFTER
        )

    def delete_one(self, collection, filter):
        return self.db[collection].delete_one(filter).deleted_count > 0

    def delete_many(self, collection, filter=None):
        return self.db[collection].delete_many(filter or {}).deleted_count

    def list_collection_names(self):
        return self.db.list_collection_names()

    def ensure_indexes(self):
        self.db["cart"].create_index("user_id", unique=True)
        self.db["rating"].create_index([("user_id", ASCENDING), ("item_id", ASCENDING)], unique=True)
        self.db["rating"].create_index("item_id")
        self.db["transaction"].create_index("user_id")
        self.db["transaction"].create_index("status")
        self.db["transaction"].create_index([("created_at", DESCENDING)])
        self.db["item"].create_index("name")
        self.db["item"].create_index("category")
        self.db["item"].create_index("offer_tier")


# ----- In-process -----

_MISSING = object()


def _values_at(value: Any, parts: List[str]) -> List[Any]:
    """Candidate values at a dotted path, descending into arrays like MongoDB."""
    if not parts:
        if isinstance(value, list):
            return [value] + value
        return [value]
    if isinstance(value, list):
        found = []
        for element in value:
            found.extend(_values_at(element, parts))
        return found
    if isinstance(value, dict) and parts[0] in value:
        return _values_at(value[parts[0]], parts[1:])
    return [_MISSING]


def _condition_holds(candidates: List[Any], condition: Any) -> bool:
    if isinstance(condition, dict) and condition and all(k.startswith("$") for k in condition):
        for op, arg in condition.items():
            if op == "$ne":
                if any(c == arg for c in candidates):
                    return False
            elif op == "$in":
                if not any(c in arg for c in candidates if c is not _MISSING):
                    return False
            elif op == "$regex":
                flags = re.IGNORECASE if "i" in condition.get("$options", "") else 0
                pattern = re.compile(arg, flags)
                if not any(isinstance(c, str) and pattern.search(c) for c in candidates):
                    return False
            elif op == "$options":
                continue
            else:
                raise ValueError(f"Unsupported query operator: {op}")
        return True
    return any(c == condition for c in candidates)


def matches(doc: dict, filter: Optional[Filter]) -> bool:
    for key, condition in (filter or {}).items():
        if not _condition_holds(_values_at(doc, key.split(".")), condition):
            return False
    return True


class MemoryStore(DocumentStore):
    """Process-local store; documents are copied on the way in and out."""

    backend = "memory"

    def __init__(self, name: str = "memory"):
        self.name = name
        self._collections: Dict[str, "OrderedDict[ObjectId, dict]"] = {}
        self._lock = threading.RLock()

    def _collection(self, collection: str) -> "OrderedDict[ObjectId, dict]":
        return self._collections.setdefault(collection, OrderedDict())

    def _first(self, collection: str, filter: Filter) -> Optional[dict]:
        for doc in self._collection(collection).values():
            if matches(doc, filter):
                return doc
        return None

    def find_one(self, collection, filter):
        with self._lock:
            doc = self._first(collection, filter)
            return copy.deepcopy(doc) if doc is not None else None

    def find(self, collection, filter=None, sort=None, limit=0):
        with self._lock:
            docs = [copy.deepcopy(d) for d in self._collection(collection).values() if matches(d, filter)]
        for key, direction in reversed(list(sort or [])):
            docs.sort(
                key=lambda d: (d.get(key) is None, d.get(key)),
                reverse=direction == DESCENDING,
            )
        return docs[:limit] if limit else docs

    def insert_one(self, collection, doc):
        doc = copy.deepcopy(doc)
        doc.setdefault("_id", ObjectId())
        with self._lock:
            self._collection(collection)[doc["_id"]] = doc
        return str(doc["_id"])

    def replace_one(self, collection, filter, doc, upsert=False):
        with self._lock:
            current = self._first(collection, filter)
            if current is None:
                if upsert:
                    self.insert_one(collection, doc)
                return
            replacement = copy.deepcopy(doc)
            replacement["_id"] = current["_id"]
            self._collection(collection)[current["_id"]] = replacement

    def update_one(self, collection, filter, set=None, inc=None):
        with self._lock:
            current = self._first(collection, filter)
            if current is None:
                return None
            for key, value in (set or {}).items():
                current[key] = copy.deepcopy(value)
            for key, delta in (inc or {}).items():
                current[key] = current.get(key, 0) + delta
            return copy.deepcopy(current)

    def delete_one(self, collection, filter):
        with self._lock:
            current = self._first(collection, filter)
            if current is None:
                return False
            del self._collection(collection)[current["_id"]]
            return True

    def delete_many(self, collection, filter=None):
        with self._lock:
            docs = self._collection(collection)
            doomed = [key for key, doc in docs.items() if matches(doc, filter)]
            for key in doomed:
                del docs[key]
            return len(doomed)

    def list_collection_names(self):
        with self._lock:
            return [name for name, docs in self._collections.items() if docs]


def open_store(settings) -> DocumentStore:
    if settings.storage == "mongo":
        if not settings.database_url:
            raise RuntimeError("CART_STORAGE=mongo requires DATABASE_URL")
        store = MongoStore(settings.database_url, settings.database_name)
        store.ensure_indexes()
    else:
        store = MemoryStore(settings.database_name)
    logger.info("store_opened", backend=store.backend, database=store.name)
    return store


# ----- Helpers -----

def parse_object_id(id_str: str) -> Optional[ObjectId]:
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        return None


def to_str_id(doc: dict) -> dict:
    if not doc:
        return doc
    d = dict(doc)
    if d.get("_id") is not None:
        d["id"] = str(d.pop("_id"))
    return d


def create_document(store: DocumentStore, collection_name: str, data: Union[BaseModel, dict]) -> str:
    if isinstance(data, BaseModel):
        data = data.model_dump(exclude={"id"})
    else:
        data = dict(data)
        data.pop("id", None)
    now = utcnow()
    data.setdefault("created_at", now)
    data["updated_at"] = now
    return store.insert_one(collection_name, data)


def get_documents(store: DocumentStore, collection_name: str, filter_dict: Optional[Filter] = None,
                  limit: int = 0, sort: Optional[Iterable[Tuple[str, int]]] = None) -> List[dict]:
    return store.find(collection_name, filter_dict or {}, sort=list(sort or []), limit=limit)
