"""
Audit & Notification Emitters

Workflow operations never talk to these sinks directly. Each operation
returns a list of ServiceEvent objects from inside its transaction; once the
transaction has committed the service hands them to EventEmitter.emit().

Emission is best-effort: a failing sink is logged and skipped, it never
fails or rolls back the operation that produced the event.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, List, Optional

from mentormatch.db.mongodb import COLLECTIONS
from mentormatch.db.store import DocumentStore

logger = logging.getLogger(__name__)


@dataclass
class ServiceEvent:
    event_type: str
    actor_id: str
    details: dict = field(default_factory=dict)
    recipients: List[str] = field(default_factory=list)
    notification_type: Optional[str] = None


class NotificationService:
    """Writes in-app notifications (delivery by email etc. happens downstream)."""

    def __init__(self, store: DocumentStore):
        self.store = store

    def notify(self, user_id: str, type: str, payload: dict) -> None:
        self.store.create(COLLECTIONS["notifications"], {
            "userId": user_id,
            "type": type,
            "payload": payload,
            "isRead": False,
            "createdAt": datetime.utcnow(),
        })


class AuditService:
    """Append-only audit trail."""

    def __init__(self, store: DocumentStore):
        self.store = store

    def append(self, event_type: str, actor_id: str, details: dict) -> None:
        self.store.create(COLLECTIONS["audit_logs"], {
            "eventType": event_type,
            "actorId": actor_id,
            "details": details,
            "timestamp": datetime.utcnow(),
        })


class EventEmitter:

    def __init__(self, notifier, auditor):
        self.notifier = notifier
        self.auditor = auditor

    def emit(self, events: Iterable[ServiceEvent]) -> None:
        for event in events:
            if event.notification_type:
                for user_id in event.recipients:
                    try:
                        self.notifier.notify(user_id, event.notification_type, event.details)
                    except Exception:
                        logger.exception(
                            "Notification %s to %s failed", event.notification_type, user_id
                        )
            try:
                self.auditor.append(event.event_type, event.actor_id, event.details)
            except Exception:
                logger.exception("Audit append for %s failed", event.event_type)


def build_event_emitter(store: DocumentStore) -> EventEmitter:
    return EventEmitter(NotificationService(store), AuditService(store))
