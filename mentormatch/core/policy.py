"""
Authorization policy - one place that decides who may do what.

Every engine operation calls `require()` (or `can_perform()`) with the
caller, the action and the entity it is about to touch. The entity is the
stored document (dict) the rule inspects: an application, a request, a
project, or a student/supervisor record.
"""

from enum import Enum
from typing import Callable, Dict, Optional

from mentormatch.core.errors import Forbidden
from mentormatch.schemas.schemas import Actor, UserRole


class Action(str, Enum):
    SUBMIT_APPLICATION = "submit_application"
    REVIEW_APPLICATION = "review_application"
    EDIT_APPLICATION = "edit_application"
    RESUBMIT_APPLICATION = "resubmit_application"
    WITHDRAW_APPLICATION = "withdraw_application"
    VIEW_STUDENT_RECORDS = "view_student_records"

    REQUEST_STUDENT_PARTNERSHIP = "request_student_partnership"
    RESPOND_STUDENT_PARTNERSHIP = "respond_student_partnership"
    CANCEL_STUDENT_PARTNERSHIP = "cancel_student_partnership"
    UNPAIR_STUDENT = "unpair_student"

    REQUEST_SUPERVISOR_PARTNERSHIP = "request_supervisor_partnership"
    RESPOND_SUPERVISOR_PARTNERSHIP = "respond_supervisor_partnership"
    CANCEL_SUPERVISOR_PARTNERSHIP = "cancel_supervisor_partnership"
    UNPAIR_SUPERVISOR = "unpair_supervisor"
    VIEW_SUPERVISOR_RECORDS = "view_supervisor_records"

    CHANGE_PROJECT_STATUS = "change_project_status"

    OVERRIDE_CAPACITY = "override_capacity"
    RUN_MAINTENANCE = "run_maintenance"


def _is(actor: Actor, role: UserRole) -> bool:
    return actor.role == role


def _owner(key: str, role: UserRole) -> Callable[[Actor, dict], bool]:
    """Rule: caller has `role` and is the party named by entity[key]."""
    return lambda actor, entity: _is(actor, role) and entity.get(key) == actor.id


def _self_or_admin(role: UserRole) -> Callable[[Actor, dict], bool]:
    return lambda actor, entity: actor.is_admin or (
        _is(actor, role) and entity.get("id") == actor.id
    )


def _reviewer(actor: Actor, entity: dict) -> bool:
    return actor.is_admin or (
        _is(actor, UserRole.supervisor) and entity.get("supervisorId") == actor.id
    )


def _project_staff(actor: Actor, entity: dict) -> bool:
    if actor.is_admin:
        return True
    return _is(actor, UserRole.supervisor) and actor.id in (
        entity.get("supervisorId"),
        entity.get("coSupervisorId"),
    )


def _project_lead_requesting(actor: Actor, entity: dict) -> bool:
    """Entity is the project plus the `requesterId` the request is sent as."""
    return (
        _is(actor, UserRole.supervisor)
        and entity.get("supervisorId") == actor.id
        and entity.get("requesterId") == actor.id
    )


def _admin_only(actor: Actor, entity: dict) -> bool:
    return actor.is_admin


RULES: Dict[Action, Callable[[Actor, dict], bool]] = {
    Action.SUBMIT_APPLICATION: _owner("id", UserRole.student),
    Action.REVIEW_APPLICATION: _reviewer,
    Action.EDIT_APPLICATION: _owner("studentId", UserRole.student),
    Action.RESUBMIT_APPLICATION: _owner("studentId", UserRole.student),
    Action.WITHDRAW_APPLICATION: _owner("studentId", UserRole.student),
    Action.VIEW_STUDENT_RECORDS: _self_or_admin(UserRole.student),

    Action.REQUEST_STUDENT_PARTNERSHIP: _owner("id", UserRole.student),
    Action.RESPOND_STUDENT_PARTNERSHIP: _owner("targetStudentId", UserRole.student),
    Action.CANCEL_STUDENT_PARTNERSHIP: _owner("requesterId", UserRole.student),
    Action.UNPAIR_STUDENT: _self_or_admin(UserRole.student),

    Action.REQUEST_SUPERVISOR_PARTNERSHIP: _project_lead_requesting,
    Action.RESPOND_SUPERVISOR_PARTNERSHIP: _owner("targetSupervisorId", UserRole.supervisor),
    Action.CANCEL_SUPERVISOR_PARTNERSHIP: _owner("requestingSupervisorId", UserRole.supervisor),
    Action.UNPAIR_SUPERVISOR: _self_or_admin(UserRole.supervisor),
    Action.VIEW_SUPERVISOR_RECORDS: _self_or_admin(UserRole.supervisor),

    Action.CHANGE_PROJECT_STATUS: _project_staff,

    Action.OVERRIDE_CAPACITY: _admin_only,
    Action.RUN_MAINTENANCE: _admin_only,
}


def can_perform(actor: Actor, action: Action, entity: Optional[dict] = None) -> bool:
    rule = RULES.get(action)
    if rule is None:
        return False
    return bool(rule(actor, entity or {}))


def require(actor: Actor, action: Action, entity: Optional[dict] = None, message: str = None) -> None:
    """Raise Forbidden unless the caller may perform `action` on `entity`."""
    if not can_perform(actor, action, entity):
        raise Forbidden(message or f"Not permitted to {action.value.replace('_', ' ')}")
