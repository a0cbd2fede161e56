"""
API dependencies - service factories and result translation.

Routes never build services themselves; they depend on the factories below
so tests can swap them through `app.dependency_overrides`.
"""

from functools import lru_cache

from fastapi import HTTPException

from mentormatch.core.errors import ErrorInfo, ServiceResult
from mentormatch.db.mongodb import get_document_store
from mentormatch.db.store import DocumentStore
from mentormatch.schemas.schemas import Actor, ErrorResponse, OperationResponse
from mentormatch.services.admin_service import AdminService
from mentormatch.services.application_service import ApplicationService
from mentormatch.services.capacity_ledger import CapacityLedger
from mentormatch.services.project_service import ProjectService
from mentormatch.services.student_partnership_service import StudentPartnershipService
from mentormatch.services.supervisor_partnership_service import SupervisorPartnershipService


# ============================================================
# SERVICE FACTORIES
# ============================================================

def get_store() -> DocumentStore:
    return get_document_store()


@lru_cache()
def get_capacity_ledger() -> CapacityLedger:
    return CapacityLedger()


@lru_cache()
def get_project_service() -> ProjectService:
    return ProjectService(ledger=get_capacity_ledger())


@lru_cache()
def get_application_service() -> ApplicationService:
    return ApplicationService(ledger=get_capacity_ledger(), projects=get_project_service())


@lru_cache()
def get_student_partnership_service() -> StudentPartnershipService:
    return StudentPartnershipService()


@lru_cache()
def get_supervisor_partnership_service() -> SupervisorPartnershipService:
    return SupervisorPartnershipService(ledger=get_capacity_ledger())


@lru_cache()
def get_admin_service() -> AdminService:
    return AdminService(ledger=get_capacity_ledger())


# ============================================================
# RESULT -> HTTP
# ============================================================

STATUS_BY_KIND = {
    "validation_error": 400,
    "invalid_transition": 400,
    "forbidden": 403,
    "not_found": 404,
    "conflict": 409,
    "already_resolved": 409,
    "capacity_exceeded": 409,
    "service_unavailable": 503,
}

PUBLIC_MESSAGES = {
    "validation_error": "Some of the submitted information is invalid",
    "invalid_transition": "This action is not allowed in the current status",
    "forbidden": "You do not have permission to perform this action",
    "not_found": "The requested item could not be found",
    "conflict": "This action conflicts with the current state",
    "already_resolved": "This request has already been handled",
    "capacity_exceeded": "The supervisor has no remaining capacity",
    "service_unavailable": "The service is temporarily unavailable, please try again",
}


def error_response(error: ErrorInfo, actor: Actor) -> HTTPException:
    """Stable per-kind message; the engine's own message is for admins only."""
    body = ErrorResponse(
        detail=PUBLIC_MESSAGES.get(error.kind, "Something went wrong"),
        kind=error.kind,
        field=error.field,
        internal=error.message if actor.is_admin else None,
    )
    return HTTPException(
        status_code=STATUS_BY_KIND.get(error.kind, 500),
        detail=body.model_dump(exclude_none=True),
    )


def unwrap(result: ServiceResult, actor: Actor, message: str = None) -> OperationResponse:
    if not result.success:
        raise error_response(result.error, actor)
    return OperationResponse(success=True, message=message or result.message, data=result.data)
