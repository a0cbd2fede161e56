"""
Application Routes

POST   /applications                          - Submit application (student)
GET    /applications/mine                     - My applications (student)
GET    /applications/supervisor/{id}          - Applications to a supervisor
GET    /applications/{id}                     - Get one application
PUT    /applications/{id}                     - Edit content (owner, pending / revision requested)
PATCH  /applications/{id}/status              - Review decision (supervisor / admin)
POST   /applications/{id}/resubmit            - Resubmit after revision request (owner)
DELETE /applications/{id}                     - Withdraw (owner)
"""

from typing import Optional

from fastapi import APIRouter, Depends

from mentormatch.api.deps import get_application_service, unwrap
from mentormatch.core.auth import get_current_user
from mentormatch.schemas.schemas import (
    Actor, ApplicationContent, ApplicationCreate, ApplicationStatus,
    ApplicationStatusUpdate, OperationResponse,
)
from mentormatch.services.application_service import ApplicationService

router = APIRouter(prefix="/applications", tags=["Applications"])


@router.post("", response_model=OperationResponse, status_code=201)
async def submit_application(
    data: ApplicationCreate,
    actor: Actor = Depends(get_current_user),
    service: ApplicationService = Depends(get_application_service),
):
    """Submit an application to a supervisor as the calling student."""
    content = ApplicationContent(**data.model_dump(exclude={"supervisor_id"}))
    result = service.submit(actor, actor.id, data.supervisor_id, content)
    return unwrap(result, actor, "Application submitted successfully")


@router.get("/mine", response_model=OperationResponse)
async def my_applications(
    actor: Actor = Depends(get_current_user),
    service: ApplicationService = Depends(get_application_service),
):
    return unwrap(service.list_for_student(actor, actor.id), actor)


@router.get("/supervisor/{supervisor_id}", response_model=OperationResponse)
async def supervisor_applications(
    supervisor_id: str,
    status: Optional[ApplicationStatus] = None,
    actor: Actor = Depends(get_current_user),
    service: ApplicationService = Depends(get_application_service),
):
    """Applications received by a supervisor, newest first. Optional ?status= filter."""
    return unwrap(service.list_for_supervisor(actor, supervisor_id, status), actor)


@router.get("/{application_id}", response_model=OperationResponse)
async def get_application(
    application_id: str,
    actor: Actor = Depends(get_current_user),
    service: ApplicationService = Depends(get_application_service),
):
    return unwrap(service.get_application(actor, application_id), actor)


@router.put("/{application_id}", response_model=OperationResponse)
async def edit_application(
    application_id: str,
    data: ApplicationContent,
    actor: Actor = Depends(get_current_user),
    service: ApplicationService = Depends(get_application_service),
):
    """Save content changes. Does not resubmit."""
    result = service.edit_application(actor, application_id, data)
    return unwrap(result, actor, "Application updated")


@router.patch("/{application_id}/status", response_model=OperationResponse)
async def update_application_status(
    application_id: str,
    data: ApplicationStatusUpdate,
    actor: Actor = Depends(get_current_user),
    service: ApplicationService = Depends(get_application_service),
):
    result = service.set_status(actor, application_id, data.status, data.feedback)
    return unwrap(result, actor, f"Application status changed to {data.status.value}")


@router.post("/{application_id}/resubmit", response_model=OperationResponse)
async def resubmit_application(
    application_id: str,
    actor: Actor = Depends(get_current_user),
    service: ApplicationService = Depends(get_application_service),
):
    result = service.resubmit(actor, application_id)
    return unwrap(result, actor, "Application resubmitted for review")


@router.delete("/{application_id}", response_model=OperationResponse)
async def withdraw_application(
    application_id: str,
    actor: Actor = Depends(get_current_user),
    service: ApplicationService = Depends(get_application_service),
):
    result = service.withdraw(actor, application_id)
    return unwrap(result, actor, "Application withdrawn")
