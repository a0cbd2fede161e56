"""
Project Lifecycle & Cleanup

A project is created when an application is approved and then moves
strictly forward:

    pending_approval -> approved -> in_progress -> completed

Cleanup work is attached to transition edges through TRANSITION_EFFECTS
rather than written into the handler, so each effect can be tested on its
own. Today the only effect is co-supervision teardown on completion.
"""

from datetime import datetime
from typing import Callable, Dict, List, Optional

from mentormatch.core.errors import InvalidTransition, service_operation
from mentormatch.core.policy import Action, require
from mentormatch.db.mongodb import COLLECTIONS
from mentormatch.db.store import Transaction
from mentormatch.schemas.schemas import Actor, ProjectStatus
from mentormatch.services.base_service import WorkflowService, as_enum, load
from mentormatch.services.capacity_ledger import CapacityLedger
from mentormatch.services.event_service import ServiceEvent
from mentormatch.services.links import unlink_supervisors


PROJECT_TRANSITIONS: Dict[ProjectStatus, set] = {
    ProjectStatus.pending_approval: {ProjectStatus.approved},
    ProjectStatus.approved: {ProjectStatus.in_progress},
    ProjectStatus.in_progress: {ProjectStatus.completed},
    ProjectStatus.completed: set(),
}


def code_prefix(year: int, semester: int, department: str) -> str:
    dept_code = (department or "X").strip()[:1].upper() or "X"
    return f"{year}-{semester}-{dept_code}"


def generate_project_code(year: int, semester: int, department: str, number: int) -> str:
    """e.g. 2026-1-C-03"""
    return f"{code_prefix(year, semester, department)}-{number:02d}"


def semester_of(moment: datetime) -> int:
    # Autumn term runs August through February
    return 1 if moment.month >= 8 or moment.month <= 2 else 2


# ============================================================
# TRANSITION EFFECTS
# ============================================================

Effect = Callable[[Transaction, Actor, dict, CapacityLedger], List[ServiceEvent]]


def teardown_co_supervision(
    txn: Transaction, actor: Actor, project: dict, ledger: CapacityLedger,
    reason: str = "project_completed",
) -> List[ServiceEvent]:
    """Detach the co-supervisor, unlink both supervisor records, free the slot."""
    co_supervisor_id = project.get("coSupervisorId")
    if not co_supervisor_id:
        return []

    txn.update(COLLECTIONS["projects"], project["id"], {
        "coSupervisorId": None,
        "coSupervisorName": None,
        "updatedAt": datetime.utcnow(),
    })
    unlink_supervisors(txn, project["supervisorId"], co_supervisor_id)
    ledger.release(txn, co_supervisor_id)

    return [ServiceEvent(
        event_type="co_supervisor_removed",
        actor_id=actor.id,
        details={
            "projectId": project["id"],
            "projectTitle": project.get("title"),
            "supervisorId": project["supervisorId"],
            "coSupervisorId": co_supervisor_id,
            "reason": reason,
        },
        recipients=[co_supervisor_id],
        notification_type="co_supervision_ended",
    )]


TRANSITION_EFFECTS: Dict[ProjectStatus, List[Effect]] = {
    ProjectStatus.completed: [teardown_co_supervision],
}


class ProjectService(WorkflowService):

    def __init__(self, store=None, emitter=None, settings=None, ledger: CapacityLedger = None):
        super().__init__(store, emitter, settings)
        self.ledger = ledger or CapacityLedger(self.store, self.emitter, self.settings)

    # ============================================================
    # CREATION (called from application approval)
    # ============================================================

    def create_for_application(
        self, txn: Transaction, application: dict, supervisor: dict, student_ids: List[str]
    ) -> dict:
        now = datetime.utcnow()
        department = supervisor.get("department") or ""
        prefix = code_prefix(now.year, semester_of(now), department)
        sequence = len(txn.query(COLLECTIONS["projects"], where=[("codePrefix", "==", prefix)])) + 1

        project = {
            "supervisorId": supervisor["id"],
            "supervisorName": supervisor.get("fullName"),
            "coSupervisorId": None,
            "coSupervisorName": None,
            "studentIds": list(student_ids),
            "applicationIds": [application["id"]],
            "title": application.get("projectTitle"),
            "description": application.get("projectDescription"),
            "status": ProjectStatus.pending_approval.value,
            "codePrefix": prefix,
            "projectCode": generate_project_code(now.year, semester_of(now), department, sequence),
            "deadline": None,
            "createdAt": now,
            "updatedAt": now,
        }
        project["id"] = txn.create(COLLECTIONS["projects"], project)
        return project

    def find_live_project(self, txn: Transaction, supervisor_id: str, student_id: str) -> Optional[dict]:
        """A not-yet-completed project of `supervisor_id` that `student_id` belongs to."""
        found = txn.query(COLLECTIONS["projects"], where=[
            ("supervisorId", "==", supervisor_id),
            ("studentIds", "array_contains", student_id),
            ("status", "!=", ProjectStatus.completed.value),
        ], limit=1)
        return found[0] if found else None

    # ============================================================
    # STATUS CHANGES
    # ============================================================

    @service_operation("ProjectService.change_status")
    def change_status(self, actor: Actor, project_id: str, new_status):
        new_status = as_enum(ProjectStatus, new_status, "status")
        return self._commit(lambda txn: self._txn_change_status(txn, actor, project_id, new_status))

    def _txn_change_status(self, txn, actor, project_id, new_status):
        project = load(txn, "projects", project_id, "Project")
        require(
            actor, Action.CHANGE_PROJECT_STATUS, project,
            "Only the project supervisor, co-supervisor or an admin can change project status",
        )

        current = ProjectStatus(project["status"])
        if new_status not in PROJECT_TRANSITIONS[current]:
            raise InvalidTransition(current.value, new_status.value)

        now = datetime.utcnow()
        changes = {"status": new_status.value, "updatedAt": now}
        if new_status == ProjectStatus.completed:
            changes["completedAt"] = now
        txn.update(COLLECTIONS["projects"], project_id, changes)

        events = [ServiceEvent(
            event_type="project_status_changed",
            actor_id=actor.id,
            details={
                "projectId": project_id,
                "projectTitle": project.get("title"),
                "oldStatus": current.value,
                "newStatus": new_status.value,
            },
            recipients=list(project.get("studentIds") or []),
            notification_type="project_status_changed",
        )]
        for effect in TRANSITION_EFFECTS.get(new_status, []):
            events.extend(effect(txn, actor, project, self.ledger))

        payload = {
            "projectId": project_id,
            "previousStatus": current.value,
            "status": new_status.value,
        }
        return payload, events

    @service_operation("ProjectService.get_project")
    def get_project(self, actor: Actor, project_id: str) -> dict:
        project = load(self.store, "projects", project_id, "Project")
        is_member = actor.id in (project.get("studentIds") or [])
        if not is_member:
            require(actor, Action.CHANGE_PROJECT_STATUS, project, "Not permitted to view this project")
        return project
