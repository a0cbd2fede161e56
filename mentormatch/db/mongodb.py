"""
MongoDB Connection Utility and Document Store

MongoDB stores every workflow document:
- students / supervisors (profiles plus matching and pairing state)
- applications, partnership requests, projects
- capacity_changes, audit_logs, notifications (append-only)

Multi-document transactions need a replica set (a single-node replica set
is enough for development).
"""
import logging
from contextlib import contextmanager
from functools import lru_cache
from typing import List, Optional

import pymongo
from pymongo import MongoClient
from pymongo.client_session import ClientSession
from pymongo.collection import Collection
from pymongo.database import Database
from pymongo.errors import ConnectionFailure, PyMongoError

from mentormatch.core.config import get_settings
from mentormatch.core.errors import NotFound, ServiceUnavailable
from mentormatch.db.store import DocumentStore, Transaction, WriteOp, new_id, strip_id

logger = logging.getLogger(__name__)

settings = get_settings()

# Global client (connection pooling handled internally by pymongo)
_client: MongoClient = None
_db: Database = None


def get_mongo_client() -> MongoClient:
    """Get or create MongoDB client (singleton pattern)"""
    global _client
    if _client is None:
        _client = MongoClient(
            settings.mongodb_uri,
            serverSelectionTimeoutMS=int(settings.store_timeout_seconds * 1000),
        )
    return _client


def get_mongo_db() -> Database:
    """Get the mentormatch database"""
    global _db
    if _db is None:
        client = get_mongo_client()
        _db = client[settings.mongodb_db]
    return _db


def test_mongo_connection() -> bool:
    """
    Test if MongoDB is reachable.
    Returns True if connection successful, False otherwise.
    """
    try:
        client = get_mongo_client()
        # ping command checks connection
        client.admin.command('ping')
        return True
    except PyMongoError as e:
        logger.error("MongoDB connection failed: %s", e)
        return False


# Collection name constants (avoid typos)
COLLECTIONS = {
    "students": "students",
    "supervisors": "supervisors",
    "applications": "applications",
    "partnership_requests": "partnership_requests",
    "supervisor_partnership_requests": "supervisor_partnership_requests",
    "projects": "projects",
    "capacity_changes": "capacity_changes",
    "audit_logs": "audit_logs",
    "notifications": "notifications",
}


def init_mongo_indexes():
    """
    Create indexes for better query performance.
    Call this once during app startup.
    """
    db = get_mongo_db()

    db[COLLECTIONS["applications"]].create_index([
        ("studentId", 1),
        ("supervisorId", 1),
        ("status", 1)
    ])
    db[COLLECTIONS["applications"]].create_index([("supervisorId", 1), ("status", 1)])

    # Pending-request lookups run on both sides of every handshake
    for name, requester, target in (
        ("partnership_requests", "requesterId", "targetStudentId"),
        ("supervisor_partnership_requests", "requestingSupervisorId", "targetSupervisorId"),
    ):
        db[COLLECTIONS[name]].create_index([(requester, 1), ("status", 1)])
        db[COLLECTIONS[name]].create_index([(target, 1), ("status", 1)])

    db[COLLECTIONS["projects"]].create_index("supervisorId")
    db[COLLECTIONS["projects"]].create_index("coSupervisorId")
    db[COLLECTIONS["projects"]].create_index("studentIds")
    db[COLLECTIONS["projects"]].create_index("projectCode", unique=True, sparse=True)

    db[COLLECTIONS["capacity_changes"]].create_index([("supervisorId", 1), ("timestamp", -1)])
    db[COLLECTIONS["notifications"]].create_index([("userId", 1), ("createdAt", -1)])
    db[COLLECTIONS["audit_logs"]].create_index([("eventType", 1), ("timestamp", -1)])

    logger.info("MongoDB indexes created successfully")


# ============================================================
# HELPERS: filter translation and id mapping
# ============================================================

def serialize_doc(doc: Optional[dict]) -> Optional[dict]:
    """Expose Mongo's _id as "id"."""
    if doc is None:
        return None
    doc["id"] = str(doc.pop("_id"))
    return doc


def to_mongo_filter(where) -> dict:
    """Translate a (field, op, value) filter list into a Mongo query document."""
    clauses = []
    for field, op, value in where or []:
        key = "_id" if field == "id" else field
        if op == "==":
            clauses.append({key: value})
        elif op == "!=":
            clauses.append({key: {"$ne": value}})
        elif op == "in":
            clauses.append({key: {"$in": list(value)}})
        elif op == "array_contains":
            # Mongo matches a scalar against array elements natively
            clauses.append({key: value})
        else:
            raise ValueError(f"Unsupported filter operator: {op}")
    if not clauses:
        return {}
    if len(clauses) == 1:
        return clauses[0]
    return {"$and": clauses}


# ============================================================
# DOCUMENT STORE
# ============================================================

class _MongoAccess(Transaction):
    """Document operations bound to an optional client session."""

    def __init__(self, db: Database, session: Optional[ClientSession] = None):
        self._db = db
        self._session = session

    def _coll(self, name: str) -> Collection:
        return self._db[name]

    def get(self, collection, doc_id):
        doc = self._coll(collection).find_one({"_id": doc_id}, session=self._session)
        return serialize_doc(doc)

    def query(self, collection, where=None, order_by=None, limit=None):
        cursor = self._coll(collection).find(to_mongo_filter(where), session=self._session)
        if order_by:
            cursor = cursor.sort([("_id" if f == "id" else f, d) for f, d in order_by])
        if limit:
            cursor = cursor.limit(limit)
        return [serialize_doc(doc) for doc in cursor]

    def create(self, collection, data, doc_id=None):
        doc_id = doc_id or new_id()
        doc = strip_id(data)
        doc["_id"] = doc_id
        self._coll(collection).insert_one(doc, session=self._session)
        return doc_id

    def set(self, collection, doc_id, data):
        self._coll(collection).replace_one(
            {"_id": doc_id}, strip_id(data), upsert=True, session=self._session
        )

    def update(self, collection, doc_id, changes):
        result = self._coll(collection).update_one(
            {"_id": doc_id}, {"$set": strip_id(changes)}, session=self._session
        )
        if result.matched_count == 0:
            raise NotFound(collection, doc_id)

    def delete(self, collection, doc_id):
        result = self._coll(collection).delete_one({"_id": doc_id}, session=self._session)
        return result.deleted_count > 0


class MongoDocumentStore(DocumentStore):
    """
    DocumentStore backed by MongoDB.

    Every call runs under pymongo.timeout() so a slow or unreachable server
    surfaces as ServiceUnavailable instead of hanging the caller.
    Transactions use ClientSession.with_transaction, which retries the
    callback on transient write conflicts; concurrent writers to the same
    document therefore re-read and re-validate before they can commit.
    """

    def __init__(
        self,
        db: Optional[Database] = None,
        client: Optional[MongoClient] = None,
        timeout_seconds: Optional[float] = None,
    ):
        self._db = db if db is not None else get_mongo_db()
        self._client = client if client is not None else get_mongo_client()
        self.timeout_seconds = timeout_seconds or settings.store_timeout_seconds

    @contextmanager
    def _guard(self, operation: str):
        try:
            with pymongo.timeout(self.timeout_seconds):
                yield
        except ConnectionFailure as exc:
            logger.error("Document store unreachable during %s: %s", operation, exc)
            raise ServiceUnavailable(f"Document store unavailable during {operation}") from exc
        except PyMongoError as exc:
            if exc.timeout:
                logger.error("Document store timed out during %s: %s", operation, exc)
                raise ServiceUnavailable(f"Document store timed out during {operation}") from exc
            raise

    def _direct(self) -> _MongoAccess:
        return _MongoAccess(self._db)

    def get(self, collection, doc_id):
        with self._guard("get"):
            return self._direct().get(collection, doc_id)

    def query(self, collection, where=None, order_by=None, limit=None):
        with self._guard("query"):
            return self._direct().query(collection, where, order_by, limit)

    def create(self, collection, data, doc_id=None):
        with self._guard("create"):
            return self._direct().create(collection, data, doc_id)

    def set(self, collection, doc_id, data):
        with self._guard("set"):
            self._direct().set(collection, doc_id, data)

    def update(self, collection, doc_id, changes):
        with self._guard("update"):
            self._direct().update(collection, doc_id, changes)

    def delete(self, collection, doc_id):
        with self._guard("delete"):
            return self._direct().delete(collection, doc_id)

    def run_transaction(self, fn):
        with self._guard("transaction"):
            with self._client.start_session() as session:
                return session.with_transaction(
                    lambda s: fn(_MongoAccess(self._db, s))
                )

    def batch_write(self, ops: List[WriteOp]) -> int:
        def _apply(txn: Transaction) -> int:
            for op in ops:
                txn.apply(op)
            return len(ops)

        return self.run_transaction(_apply)

    def ping(self):
        try:
            with pymongo.timeout(self.timeout_seconds):
                self._client.admin.command("ping")
            return True
        except PyMongoError as e:
            logger.error("Document store ping failed: %s", e)
            return False


@lru_cache()
def get_document_store() -> DocumentStore:
    """Process-wide store used by the API (tests inject their own)."""
    return MongoDocumentStore()
