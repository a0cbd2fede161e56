"""
Database module - document store boundary and its MongoDB backend.
"""
from mentormatch.db.store import DocumentStore, InMemoryDocumentStore, Transaction, WriteOp
from mentormatch.db.mongodb import (
    MongoDocumentStore,
    get_document_store,
    get_mongo_db,
    test_mongo_connection,
)

__all__ = [
    "DocumentStore",
    "InMemoryDocumentStore",
    "Transaction",
    "WriteOp",
    "MongoDocumentStore",
    "get_document_store",
    "get_mongo_db",
    "test_mongo_connection",
]
