"""
Shared plumbing for workflow services.

A service method does its work in a `_txn_*` function that runs inside one
store transaction and returns `(payload, events)`. `_commit()` runs it,
then emits the events once the writes are durable.
"""

from enum import Enum
from typing import Callable, List, Optional, Tuple, Type, TypeVar

from mentormatch.core.config import Settings, get_settings
from mentormatch.core.errors import NotFound, ValidationError
from mentormatch.db.mongodb import COLLECTIONS, get_document_store
from mentormatch.db.store import DocumentAccess, DocumentStore, Transaction
from mentormatch.services.event_service import EventEmitter, ServiceEvent, build_event_emitter

T = TypeVar("T")
E = TypeVar("E", bound=Enum)

TxnResult = Tuple[T, List[ServiceEvent]]


class WorkflowService:

    def __init__(
        self,
        store: Optional[DocumentStore] = None,
        emitter: Optional[EventEmitter] = None,
        settings: Optional[Settings] = None,
    ):
        self.store = store if store is not None else get_document_store()
        self.emitter = emitter if emitter is not None else build_event_emitter(self.store)
        self.settings = settings or get_settings()

    def _commit(self, fn: Callable[[Transaction], TxnResult]) -> T:
        payload, events = self.store.run_transaction(fn)
        self.emitter.emit(events)
        return payload


def as_enum(enum_cls: Type[E], value, field: str) -> E:
    """Coerce caller input into an enum member or raise ValidationError on `field`."""
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ValidationError(field, f"Invalid {field} '{value}'. Expected one of: {allowed}") from None


def load(access: DocumentAccess, collection: str, doc_id: str, entity: str) -> dict:
    """Read a document or raise NotFound naming the entity."""
    doc = access.get(COLLECTIONS[collection], doc_id) if doc_id else None
    if doc is None:
        raise NotFound(entity, doc_id)
    return doc
