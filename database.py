"""
Document store access.

The service reads and writes plain dict documents through a small
contract (find / find_one / insert / update / delete / count). Three
backends satisfy it:

- MongoStore: MongoDB through pymongo (default)
- JsonApiStore: a REST JSON API in the json-server shape
  (GET /students?studentId=S001, POST, PUT /students/<id>, DELETE)
- MemoryStore: in-process lists, for local demos and tests

DATA_BACKEND selects the backend.
"""

import copy
import logging
import os
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

import requests
from pydantic import BaseModel
from pymongo import MongoClient
from pymongo.errors import PyMongoError

from schemas import camel_case

logger = logging.getLogger(__name__)

COLLECTIONS = (
    "student",
    "course",
    "teacher",
    "enrollment",
    "attendance",
    "exam",
    "exam_result",
    "achievement",
)

# json-server resource for each collection
RESOURCE_PATHS = {
    "student": "students",
    "course": "courses",
    "teacher": "teachers",
    "enrollment": "enrollments",
    "attendance": "attendance",
    "exam": "exams",
    "exam_result": "results",
    "achievement": "achievements",
}

Document = Dict[str, Any]
Filter = Optional[Dict[str, Any]]


class StoreError(Exception):
    """The backing store could not be reached or rejected a request."""


def _field_value(doc: Document, key: str) -> Any:
    """Value of `key`, falling back to its camelCase spelling; snake_case wins when both exist."""
    if key in doc:
        return doc[key]
    return doc.get(camel_case(key))


def _matches(doc: Document, filter_dict: Filter) -> bool:
    return all(_field_value(doc, k) == v for k, v in (filter_dict or {}).items())


def mongo_filter(filter_dict: Filter) -> Dict[str, Any]:
    """Equality filter that matches either spelling of each key."""
    clauses = []
    for key, value in (filter_dict or {}).items():
        alt = camel_case(key)
        clauses.append({key: value} if alt == key else {"$or": [{key: value}, {alt: value}]})
    if not clauses:
        return {}
    return clauses[0] if len(clauses) == 1 else {"$and": clauses}


def _as_document(data: Union[BaseModel, Document]) -> Document:
    if isinstance(data, BaseModel):
        return data.model_dump()
    return dict(data)


class DocumentStore:
    name = "base"

    def find(self, collection: str, filter_dict: Filter = None, limit: Optional[int] = None) -> List[Document]:
        raise NotImplementedError

    def find_one(self, collection: str, filter_dict: Filter) -> Optional[Document]:
        docs = self.find(collection, filter_dict, limit=1)
        return docs[0] if docs else None

    def insert(self, collection: str, doc: Document) -> str:
        raise NotImplementedError

    def update(self, collection: str, filter_dict: Dict[str, Any], changes: Document) -> int:
        raise NotImplementedError

    def delete(self, collection: str, filter_dict: Dict[str, Any]) -> int:
        raise NotImplementedError

    def count(self, collection: str) -> int:
        return len(self.find(collection))

    def status(self) -> Dict[str, Any]:
        return {"store": self.name}


class MongoStore(DocumentStore):
    name = "mongo"

    def __init__(self, url: str, database_name: str, client: Optional[MongoClient] = None):
        self.client = client or MongoClient(url, serverSelectionTimeoutMS=5000)
        self.db = self.client[database_name]

    @staticmethod
    def _strip(doc: Document) -> Document:
        doc.pop("_id", None)
        return doc

    def find(self, collection, filter_dict=None, limit=None):
        try:
            cursor = self.db[collection].find(mongo_filter(filter_dict))
            if limit:
                cursor = cursor.limit(limit)
            return [self._strip(d) for d in cursor]
        except PyMongoError as e:
            raise StoreError(f"find on {collection} failed: {e}") from e

    def insert(self, collection, doc):
        doc = dict(doc)
        doc.setdefault("created_at", datetime.now(timezone.utc))
        try:
            res = self.db[collection].insert_one(doc)
        except PyMongoError as e:
            raise StoreError(f"insert into {collection} failed: {e}") from e
        return str(res.inserted_id)

    def update(self, collection, filter_dict, changes):
        changes = dict(changes, updated_at=datetime.now(timezone.utc))
        try:
            return self.db[collection].update_one(mongo_filter(filter_dict), {"$set": changes}).matched_count
        except PyMongoError as e:
            raise StoreError(f"update on {collection} failed: {e}") from e

    def delete(self, collection, filter_dict):
        try:
            return self.db[collection].delete_one(mongo_filter(filter_dict)).deleted_count
        except PyMongoError as e:
            raise StoreError(f"delete on {collection} failed: {e}") from e

    def count(self, collection):
        try:
            return self.db[collection].count_documents({})
        except PyMongoError as e:
            raise StoreError(f"count on {collection} failed: {e}") from e

    def status(self):
        resp = {"store": self.name, "database_name": self.db.name, "collections": []}
        try:
            resp["collections"] = self.db.list_collection_names()[:10]
            resp["connection_status"] = "Connected"
        except PyMongoError as e:
            resp["connection_status"] = f"Error: {str(e)[:50]}"
        return resp


class JsonApiStore(DocumentStore):
    """
    REST JSON API backend.

    Documents on the API side use camelCase keys; filters are translated
    before they become query parameters. Records are addressed through
    the API's own `id`, which is looked up from the filter first.
    """

    name = "rest"

    def __init__(self, base_url: str, timeout: float = 10, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"Content-Type": "application/json"})

    def _url(self, collection: str, record_id: Optional[str] = None) -> str:
        url = f"{self.base_url}/{RESOURCE_PATHS.get(collection, collection)}"
        return f"{url}/{record_id}" if record_id is not None else url

    def _request(self, method: str, url: str, **kwargs) -> Any:
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
            response.raise_for_status()
        except requests.exceptions.Timeout as e:
            raise StoreError(f"{method} {url} timed out") from e
        except requests.exceptions.RequestException as e:
            raise StoreError(f"{method} {url} failed: {e}") from e
        return response.json() if response.content else None

    def find(self, collection, filter_dict=None, limit=None):
        params = {camel_case(k): v for k, v in (filter_dict or {}).items()}
        docs = self._request("GET", self._url(collection), params=params) or []
        return docs[:limit] if limit else docs

    def insert(self, collection, doc):
        body = {camel_case(k): v for k, v in doc.items()}
        body.setdefault("id", uuid.uuid4().hex)
        created = self._request("POST", self._url(collection), json=body) or body
        return str(created.get("id", body["id"]))

    def update(self, collection, filter_dict, changes):
        existing = self.find_one(collection, filter_dict)
        if existing is None:
            return 0
        body = dict(existing)
        body.update({camel_case(k): v for k, v in changes.items()})
        self._request("PUT", self._url(collection, existing["id"]), json=body)
        return 1

    def delete(self, collection, filter_dict):
        existing = self.find_one(collection, filter_dict)
        if existing is None:
            return 0
        self._request("DELETE", self._url(collection, existing["id"]))
        return 1

    def status(self):
        resp = {"store": self.name, "api_base_url": self.base_url}
        try:
            self._request("GET", self._url("student"), params={"_limit": 1})
            resp["connection_status"] = "Connected"
        except StoreError as e:
            resp["connection_status"] = f"Error: {str(e)[:50]}"
        return resp


class MemoryStore(DocumentStore):
    name = "memory"

    def __init__(self, initial: Optional[Dict[str, List[Document]]] = None):
        self.collections: Dict[str, List[Document]] = {
            k: [dict(d) for d in v] for k, v in (initial or {}).items()
        }

    def find(self, collection, filter_dict=None, limit=None):
        docs = [copy.deepcopy(d) for d in self.collections.get(collection, []) if _matches(d, filter_dict)]
        return docs[:limit] if limit else docs

    def insert(self, collection, doc):
        doc = dict(doc)
        doc.setdefault("id", uuid.uuid4().hex)
        self.collections.setdefault(collection, []).append(doc)
        return str(doc["id"])

    def update(self, collection, filter_dict, changes):
        for doc in self.collections.get(collection, []):
            if _matches(doc, filter_dict):
                doc.update(changes)
                return 1
        return 0

    def delete(self, collection, filter_dict):
        docs = self.collections.get(collection, [])
        for i, doc in enumerate(docs):
            if _matches(doc, filter_dict):
                del docs[i]
                return 1
        return 0

    def status(self):
        return {"store": self.name, "connection_status": "Connected", "collections": sorted(self.collections)[:10]}


# ------------------- CONFIGURED STORE -------------------
DATA_BACKEND = os.getenv("DATA_BACKEND", "mongo")
DATABASE_URL = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "smsdb")
API_BASE_URL = os.getenv("API_BASE_URL", "http://localhost:3000")
API_TIMEOUT = float(os.getenv("API_TIMEOUT", "10"))

_store: Optional[DocumentStore] = None
_store_lock = threading.Lock()


def build_store(backend: str = DATA_BACKEND) -> DocumentStore:
    if backend == "mongo":
        return MongoStore(DATABASE_URL, DATABASE_NAME)
    if backend == "rest":
        return JsonApiStore(API_BASE_URL, timeout=API_TIMEOUT)
    if backend == "memory":
        return MemoryStore()
    raise ValueError(f"Unknown DATA_BACKEND: {backend!r} (expected mongo, rest or memory)")


def get_store() -> DocumentStore:
    """Configured store, built once even when first requested from several threads."""
    global _store
    if _store is None:
        with _store_lock:
            if _store is None:
                _store = build_store()
                logger.info("Using %s document store", _store.name)
    return _store


def create_document(collection: str, data: Union[BaseModel, Document], store: Optional[DocumentStore] = None) -> str:
    store = store or get_store()
    doc = _as_document(data)
    _id = store.insert(collection, doc)
    logger.info("Created %s document %s", collection, _id)
    return _id


def get_documents(collection: str, filter_dict: Filter = None, limit: Optional[int] = None, store: Optional[DocumentStore] = None) -> List[Document]:
    store = store or get_store()
    return store.find(collection, filter_dict, limit)


def fetch_snapshot(store: DocumentStore, *collections: str) -> Dict[str, List[Document]]:
    """Read several collections concurrently; returns once every read has arrived."""
    names = collections or COLLECTIONS
    with ThreadPoolExecutor(max_workers=len(names)) as pool:
        futures = {name: pool.submit(store.find, name) for name in names}
        return {name: future.result() for name, future in futures.items()}
