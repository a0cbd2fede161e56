"""
Document Store boundary.

The workflow engine only needs a handful of primitives from persistence:
- get / create / set / update / delete a document by id
- query a collection by equality, inequality, membership and
  array-containment filters, with sort and limit
- run a callable inside one atomic multi-document transaction
- apply a bounded batch of writes atomically

Documents travel as plain dicts carrying their id under "id".

Two implementations live in this package:
- MongoDocumentStore (mentormatch.db.mongodb) for production
- InMemoryDocumentStore (below) for tests and local demos
"""

import copy
import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar

from mentormatch.core.errors import NotFound

T = TypeVar("T")

# (field, op, value) with op in FILTER_OPS
Where = List[Tuple[str, str, Any]]
OrderBy = List[Tuple[str, int]]

FILTER_OPS = ("==", "!=", "in", "array_contains")

ASCENDING = 1
DESCENDING = -1


def new_id() -> str:
    """Generate a document id (string ids keep both backends interchangeable)."""
    return uuid.uuid4().hex


def strip_id(data: dict) -> dict:
    """Drop the synthetic "id" key before a document is written."""
    return {k: v for k, v in data.items() if k not in ("id", "_id")}


def matches(doc: dict, where: Optional[Where]) -> bool:
    """Evaluate a filter list against one in-memory document."""
    for field, op, value in where or []:
        actual = doc.get(field)
        if op == "==":
            if actual != value:
                return False
        elif op == "!=":
            if actual == value:
                return False
        elif op == "in":
            if actual not in value:
                return False
        elif op == "array_contains":
            if not isinstance(actual, list) or value not in actual:
                return False
        else:
            raise ValueError(f"Unsupported filter operator: {op}")
    return True


def sort_docs(docs: List[dict], order_by: Optional[OrderBy]) -> List[dict]:
    # Stable sorts applied last-key-first give a multi-key ordering
    for field, direction in reversed(order_by or []):
        docs = sorted(
            docs,
            key=lambda d: (d.get(field) is None, d.get(field)),
            reverse=direction == DESCENDING,
        )
    return docs


@dataclass
class WriteOp:
    """One entry of an atomic batch."""

    kind: str  # "set" | "update" | "delete"
    collection: str
    doc_id: str
    data: Optional[dict] = None


class DocumentAccess(ABC):
    """Read/write surface shared by stores and transactions."""

    @abstractmethod
    def get(self, collection: str, doc_id: str) -> Optional[dict]:
        ...

    @abstractmethod
    def query(
        self,
        collection: str,
        where: Optional[Where] = None,
        order_by: Optional[OrderBy] = None,
        limit: Optional[int] = None,
    ) -> List[dict]:
        ...

    @abstractmethod
    def create(self, collection: str, data: dict, doc_id: Optional[str] = None) -> str:
        ...

    @abstractmethod
    def set(self, collection: str, doc_id: str, data: dict) -> None:
        ...

    @abstractmethod
    def update(self, collection: str, doc_id: str, changes: dict) -> None:
        """Merge `changes` into an existing document; NotFound if it is absent."""

    @abstractmethod
    def delete(self, collection: str, doc_id: str) -> bool:
        ...

    def apply(self, op: WriteOp) -> None:
        if op.kind == "set":
            self.set(op.collection, op.doc_id, op.data or {})
        elif op.kind == "update":
            self.update(op.collection, op.doc_id, op.data or {})
        elif op.kind == "delete":
            self.delete(op.collection, op.doc_id)
        else:
            raise ValueError(f"Unsupported write kind: {op.kind}")


class Transaction(DocumentAccess):
    """
    Handle passed to run_transaction callbacks.

    Reads observe the transaction's own earlier writes. Nothing becomes
    visible to other callers until the callback returns; if it raises,
    every write is discarded.
    """


class DocumentStore(DocumentAccess):

    @abstractmethod
    def run_transaction(self, fn: Callable[[Transaction], T]) -> T:
        """
        Run `fn` atomically and return its result.

        `fn` may be invoked more than once when the backend retries a
        transient write conflict, so it must not mutate outside state.
        """

    @abstractmethod
    def batch_write(self, ops: List[WriteOp]) -> int:
        """Apply all ops together or not at all. Returns the number applied."""

    @abstractmethod
    def ping(self) -> bool:
        ...


# ============================================================
# IN-MEMORY IMPLEMENTATION
# ============================================================

class _MemoryAccess(Transaction):
    """Operates directly on a {collection: {id: doc}} mapping."""

    def __init__(self, data: Dict[str, Dict[str, dict]]):
        self._data = data

    def _collection(self, name: str) -> Dict[str, dict]:
        return self._data.setdefault(name, {})

    @staticmethod
    def _out(doc_id: str, doc: dict) -> dict:
        out = copy.deepcopy(doc)
        out["id"] = doc_id
        return out

    def get(self, collection, doc_id):
        doc = self._collection(collection).get(doc_id)
        if doc is None:
            return None
        return self._out(doc_id, doc)

    def query(self, collection, where=None, order_by=None, limit=None):
        docs = [
            self._out(doc_id, doc)
            for doc_id, doc in self._collection(collection).items()
            if matches(dict(doc, id=doc_id), where)
        ]
        docs = sort_docs(docs, order_by)
        if limit is not None:
            docs = docs[:limit]
        return docs

    def create(self, collection, data, doc_id=None):
        doc_id = doc_id or new_id()
        self._collection(collection)[doc_id] = copy.deepcopy(strip_id(data))
        return doc_id

    def set(self, collection, doc_id, data):
        self._collection(collection)[doc_id] = copy.deepcopy(strip_id(data))

    def update(self, collection, doc_id, changes):
        docs = self._collection(collection)
        if doc_id not in docs:
            raise NotFound(collection, doc_id)
        docs[doc_id].update(copy.deepcopy(strip_id(changes)))

    def delete(self, collection, doc_id):
        return self._collection(collection).pop(doc_id, None) is not None


class InMemoryDocumentStore(DocumentStore):
    """
    Process-local store with serialisable transactions.

    A transaction holds the store lock for its whole duration, works on a
    deep copy of the data and swaps it in on success. That is slow for large
    data sets but exactly the isolation the engine relies on.
    """

    def __init__(self, data: Optional[Dict[str, Dict[str, dict]]] = None):
        self._lock = threading.RLock()
        self._data: Dict[str, Dict[str, dict]] = copy.deepcopy(data) if data else {}

    def _direct(self) -> _MemoryAccess:
        return _MemoryAccess(self._data)

    def get(self, collection, doc_id):
        with self._lock:
            return self._direct().get(collection, doc_id)

    def query(self, collection, where=None, order_by=None, limit=None):
        with self._lock:
            return self._direct().query(collection, where, order_by, limit)

    def create(self, collection, data, doc_id=None):
        with self._lock:
            return self._direct().create(collection, data, doc_id)

    def set(self, collection, doc_id, data):
        with self._lock:
            self._direct().set(collection, doc_id, data)

    def update(self, collection, doc_id, changes):
        with self._lock:
            self._direct().update(collection, doc_id, changes)

    def delete(self, collection, doc_id):
        with self._lock:
            return self._direct().delete(collection, doc_id)

    def run_transaction(self, fn):
        with self._lock:
            working = copy.deepcopy(self._data)
            result = fn(_MemoryAccess(working))
            self._data = working
            return result

    def batch_write(self, ops):
        def _apply(txn: Transaction) -> int:
            for op in ops:
                txn.apply(op)
            return len(ops)

        return self.run_transaction(_apply)

    def ping(self):
        return True
