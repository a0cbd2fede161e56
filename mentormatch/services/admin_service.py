"""
Admin maintenance jobs.

Each job reads the current state, works out the writes needed to bring it
back in line and applies them in batches of `settings.batch_size`. Batches
are atomic on their own but not with each other; every job only writes
what differs from the target state, so re-running after a partial failure
finishes the work without redoing it.
"""

import logging
from datetime import datetime
from typing import Dict, List

from mentormatch.core.errors import ValidationError, service_operation
from mentormatch.core.policy import Action, require
from mentormatch.db.mongodb import COLLECTIONS
from mentormatch.db.store import ASCENDING, WriteOp
from mentormatch.schemas.schemas import Actor, ApplicationStatus, MatchStatus
from mentormatch.services.base_service import WorkflowService
from mentormatch.services.capacity_ledger import CapacityLedger, derive_availability
from mentormatch.services.event_service import ServiceEvent

logger = logging.getLogger(__name__)


class AdminService(WorkflowService):

    def __init__(self, store=None, emitter=None, settings=None, ledger: CapacityLedger = None):
        super().__init__(store, emitter, settings)
        self.ledger = ledger or CapacityLedger(self.store, self.emitter, self.settings)

    def _flush(self, job: str, ops: List[WriteOp]) -> int:
        """Write `ops` in bounded batches; returns the number of batches."""
        size = max(1, self.settings.batch_size)
        batches = 0
        for start in range(0, len(ops), size):
            chunk = ops[start:start + size]
            self.store.batch_write(chunk)
            batches += 1
            logger.info("%s: committed batch %d (%d writes)", job, batches, len(chunk))
        return batches

    def _record(self, actor: Actor, job: str, summary: dict) -> None:
        self.emitter.emit([ServiceEvent(
            event_type="maintenance_run",
            actor_id=actor.id,
            details=dict(summary, job=job),
        )])

    # ============================================================
    # MATCH STATUS REPAIR
    # ============================================================

    @service_operation("AdminService.repair_match_status")
    def repair_match_status(self, actor: Actor) -> dict:
        """Mark every student with an approved application as matched."""
        require(actor, Action.RUN_MAINTENANCE, message="Admin access required")

        approved = self.store.query(
            COLLECTIONS["applications"],
            where=[("status", "==", ApplicationStatus.approved.value)],
            order_by=[("dateApplied", ASCENDING)],
        )

        ops: List[WriteOp] = []
        details = []
        seen = set()
        for application in approved:
            student_id = application["studentId"]
            if student_id in seen:
                continue
            seen.add(student_id)

            student = self.store.get(COLLECTIONS["students"], student_id)
            if student is None:
                continue
            previous = student.get("matchStatus") or MatchStatus.unmatched.value
            if previous == MatchStatus.matched.value and \
                    student.get("assignedSupervisorId") == application["supervisorId"]:
                continue

            changes = {
                "matchStatus": MatchStatus.matched.value,
                "assignedSupervisorId": application["supervisorId"],
                "updatedAt": datetime.utcnow(),
            }
            if application.get("projectId"):
                changes["assignedProjectId"] = application["projectId"]
            ops.append(WriteOp("update", COLLECTIONS["students"], student_id, changes))
            details.append({
                "studentId": student_id,
                "studentName": student.get("fullName") or "Unknown",
                "previousStatus": previous,
                "supervisorId": application["supervisorId"],
            })

        batches = self._flush("repair_match_status", ops)
        summary = {
            "fixed": len(ops),
            "alreadyCorrect": len(seen) - len(ops),
            "batches": batches,
        }
        self._record(actor, "repair_match_status", summary)
        return dict(summary, details=details)

    # ============================================================
    # CAPACITY RECONCILIATION
    # ============================================================

    @service_operation("AdminService.reconcile_capacities")
    def reconcile_capacities(self, actor: Actor) -> dict:
        """
        Recompute currentCapacity from projects.

        A supervisor carries one slot per project they lead and one per
        project they currently co-supervise. Counts above maxCapacity are
        clamped and reported so an admin can raise the limit.
        """
        require(actor, Action.RUN_MAINTENANCE, message="Admin access required")

        load_by_supervisor: Dict[str, int] = {}
        for project in self.store.query(COLLECTIONS["projects"]):
            for key in ("supervisorId", "coSupervisorId"):
                supervisor_id = project.get(key)
                if supervisor_id:
                    load_by_supervisor[supervisor_id] = load_by_supervisor.get(supervisor_id, 0) + 1

        ops: List[WriteOp] = []
        over_capacity = []
        for supervisor in self.store.query(COLLECTIONS["supervisors"]):
            current, maximum = self.ledger.capacity_of(supervisor)
            expected = load_by_supervisor.get(supervisor["id"], 0)
            if expected > maximum:
                over_capacity.append({"supervisorId": supervisor["id"], "load": expected, "maxCapacity": maximum})
                expected = maximum
            status = derive_availability(expected, maximum, self.settings.limited_capacity_ratio).value
            if current == expected and supervisor.get("availabilityStatus") == status \
                    and supervisor.get("maxCapacity") is not None:
                continue
            ops.append(WriteOp("update", COLLECTIONS["supervisors"], supervisor["id"], {
                "currentCapacity": expected,
                "maxCapacity": maximum,
                "availabilityStatus": status,
                "updatedAt": datetime.utcnow(),
            }))

        if over_capacity:
            logger.warning("reconcile_capacities: %d supervisor(s) over capacity", len(over_capacity))

        batches = self._flush("reconcile_capacities", ops)
        summary = {"updated": len(ops), "batches": batches, "overCapacity": over_capacity}
        self._record(actor, "reconcile_capacities", summary)
        return summary

    # ============================================================
    # BULK DEADLINES
    # ============================================================

    @service_operation("AdminService.update_project_deadlines")
    def update_project_deadlines(self, actor: Actor, deadlines: Dict[str, datetime]) -> dict:
        require(actor, Action.RUN_MAINTENANCE, message="Admin access required")
        if not deadlines:
            raise ValidationError("deadlines", "At least one project deadline is required")
        for code, deadline in deadlines.items():
            if not isinstance(deadline, datetime):
                raise ValidationError(f"deadlines.{code}", "Deadline must be a date and time")

        ops: List[WriteOp] = []
        not_found = []
        unchanged = 0
        for code in sorted(deadlines):
            found = self.store.query(COLLECTIONS["projects"], where=[("projectCode", "==", code)], limit=1)
            if not found:
                not_found.append(code)
                continue
            project = found[0]
            if project.get("deadline") == deadlines[code]:
                unchanged += 1
                continue
            ops.append(WriteOp("update", COLLECTIONS["projects"], project["id"], {
                "deadline": deadlines[code],
                "updatedAt": datetime.utcnow(),
            }))

        batches = self._flush("update_project_deadlines", ops)
        summary = {
            "updated": len(ops),
            "unchanged": unchanged,
            "notFound": not_found,
            "batches": batches,
        }
        self._record(actor, "update_project_deadlines", summary)
        return summary
