"""
Capacity Ledger

The only code path allowed to change a supervisor's `currentCapacity`
or `maxCapacity`. It is not a process of its own: `reserve()` and
`release()` take the caller's open transaction so the capacity change
commits together with the business write that caused it.

Invariant kept here: 0 <= currentCapacity <= maxCapacity.
`availabilityStatus` is re-derived on every change.
"""

from datetime import datetime
from typing import List, Tuple

from mentormatch.core.errors import CapacityExceeded, ValidationError, service_operation
from mentormatch.core.policy import Action, require
from mentormatch.db.mongodb import COLLECTIONS
from mentormatch.db.store import Transaction
from mentormatch.schemas.schemas import Actor, AvailabilityStatus
from mentormatch.services.base_service import WorkflowService, load
from mentormatch.services.event_service import ServiceEvent


def derive_availability(current: int, maximum: int, limited_ratio: float) -> AvailabilityStatus:
    """Map a load ratio onto the three availability buckets."""
    if maximum <= 0 or current >= maximum:
        return AvailabilityStatus.unavailable
    if current / maximum >= limited_ratio:
        return AvailabilityStatus.limited
    return AvailabilityStatus.available


class CapacityLedger(WorkflowService):

    def capacity_of(self, supervisor: dict) -> Tuple[int, int]:
        current = int(supervisor.get("currentCapacity") or 0)
        maximum = supervisor.get("maxCapacity")
        if maximum is None:
            maximum = self.settings.default_max_capacity
        return current, int(maximum)

    def has_room(self, supervisor: dict) -> bool:
        current, maximum = self.capacity_of(supervisor)
        return current < maximum

    def remaining(self, supervisor: dict) -> int:
        current, maximum = self.capacity_of(supervisor)
        return max(0, maximum - current)

    def _write(self, txn: Transaction, supervisor_id: str, current: int, maximum: int) -> None:
        txn.update(COLLECTIONS["supervisors"], supervisor_id, {
            "currentCapacity": current,
            "maxCapacity": maximum,
            "availabilityStatus": derive_availability(
                current, maximum, self.settings.limited_capacity_ratio
            ).value,
            "updatedAt": datetime.utcnow(),
        })

    def reserve(self, txn: Transaction, supervisor_id: str) -> int:
        """Take one slot. Re-reads the supervisor inside `txn`."""
        supervisor = load(txn, "supervisors", supervisor_id, "Supervisor")
        current, maximum = self.capacity_of(supervisor)
        if current >= maximum:
            raise CapacityExceeded(
                f"Maximum capacity reached ({current}/{maximum}). "
                "An administrator must raise the limit first."
            )
        self._write(txn, supervisor_id, current + 1, maximum)
        return current + 1

    def release(self, txn: Transaction, supervisor_id: str) -> int:
        """Give back one slot, never going below zero."""
        supervisor = load(txn, "supervisors", supervisor_id, "Supervisor")
        current, maximum = self.capacity_of(supervisor)
        new_current = max(0, current - 1)
        self._write(txn, supervisor_id, new_current, maximum)
        return new_current

    def set_current(self, txn: Transaction, supervisor_id: str, current: int) -> None:
        """Overwrite the load outright; used only by reconciliation."""
        supervisor = load(txn, "supervisors", supervisor_id, "Supervisor")
        _, maximum = self.capacity_of(supervisor)
        self._write(txn, supervisor_id, max(0, min(current, maximum)), maximum)

    # ============================================================
    # ADMIN OVERRIDE
    # ============================================================

    @service_operation("CapacityLedger.override_max_capacity")
    def override_max_capacity(self, actor: Actor, supervisor_id: str, new_max: int, reason: str):
        require(actor, Action.OVERRIDE_CAPACITY, message="Admin access required")

        if isinstance(new_max, bool) or not isinstance(new_max, int):
            raise ValidationError("max_capacity", "Maximum capacity must be a whole number")
        if new_max < 0:
            raise ValidationError("max_capacity", "Maximum capacity cannot be negative")
        if new_max > self.settings.max_capacity_limit:
            raise ValidationError(
                "max_capacity",
                f"Maximum capacity cannot exceed {self.settings.max_capacity_limit}",
            )
        if not reason or not reason.strip():
            raise ValidationError("reason", "A reason is required")

        return self._commit(
            lambda txn: self._txn_override(txn, actor, supervisor_id, new_max, reason.strip())
        )

    def _txn_override(self, txn, actor, supervisor_id, new_max, reason):
        supervisor = load(txn, "supervisors", supervisor_id, "Supervisor")
        current, old_max = self.capacity_of(supervisor)
        if new_max < current:
            raise ValidationError(
                "max_capacity",
                f"Maximum capacity cannot be less than current capacity ({current})",
            )

        self._write(txn, supervisor_id, current, new_max)
        now = datetime.utcnow()
        txn.create(COLLECTIONS["capacity_changes"], {
            "supervisorId": supervisor_id,
            "supervisorName": supervisor.get("fullName"),
            "adminId": actor.id,
            "oldMaxCapacity": old_max,
            "newMaxCapacity": new_max,
            "reason": reason,
            "timestamp": now,
        })

        status = derive_availability(current, new_max, self.settings.limited_capacity_ratio)
        payload = {
            "supervisorId": supervisor_id,
            "oldMaxCapacity": old_max,
            "newMaxCapacity": new_max,
            "currentCapacity": current,
            "availabilityStatus": status.value,
        }
        events = [ServiceEvent(
            event_type="capacity_overridden",
            actor_id=actor.id,
            details=dict(payload, reason=reason),
            recipients=[supervisor_id],
            notification_type="capacity_changed",
        )]
        return payload, events

    @service_operation("CapacityLedger.capacity_history")
    def capacity_history(self, actor: Actor, supervisor_id: str) -> List[dict]:
        require(actor, Action.VIEW_SUPERVISOR_RECORDS, {"id": supervisor_id})
        return self.store.query(
            COLLECTIONS["capacity_changes"],
            where=[("supervisorId", "==", supervisor_id)],
            order_by=[("timestamp", -1)],
        )
