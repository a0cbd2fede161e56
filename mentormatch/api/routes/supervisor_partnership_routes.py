"""
Supervisor Partnership (Co-supervision) Routes

POST   /supervisor-partnerships/request                 - Ask a colleague to co-supervise a project
POST   /supervisor-partnerships/{id}/respond            - Accept / reject (target supervisor)
DELETE /supervisor-partnerships/{id}                    - Cancel (requester)
POST   /supervisor-partnerships/unpair                  - End my co-supervision
GET    /supervisor-partnerships/partners-with-capacity  - Colleagues who can still take a project
GET    /supervisor-partnerships/supervisors/{id}/requests
"""

from typing import Optional

from fastapi import APIRouter, Depends

from mentormatch.api.deps import error_response, get_supervisor_partnership_service, unwrap
from mentormatch.core.auth import get_current_user
from mentormatch.schemas.schemas import (
    Actor, OperationResponse, PartnershipRespond, RequestStatus,
    SupervisorListResponse, SupervisorPartnershipRequestCreate,
)
from mentormatch.services.supervisor_partnership_service import SupervisorPartnershipService

router = APIRouter(prefix="/supervisor-partnerships", tags=["Supervisor Partnerships"])


@router.post("/request", response_model=OperationResponse, status_code=201)
async def request_co_supervision(
    data: SupervisorPartnershipRequestCreate,
    actor: Actor = Depends(get_current_user),
    service: SupervisorPartnershipService = Depends(get_supervisor_partnership_service),
):
    result = service.request(actor, actor.id, data.target_supervisor_id, data.project_id)
    return unwrap(result, actor, "Co-supervision request sent")


@router.get("/partners-with-capacity", response_model=SupervisorListResponse)
async def partners_with_capacity(
    project_id: Optional[str] = None,
    actor: Actor = Depends(get_current_user),
    service: SupervisorPartnershipService = Depends(get_supervisor_partnership_service),
):
    result = service.get_partners_with_capacity(actor, actor.id, project_id)
    if not result.success:
        raise error_response(result.error, actor)
    return SupervisorListResponse(supervisors=result.data, total=len(result.data))


@router.post("/unpair", response_model=OperationResponse)
async def unpair(
    actor: Actor = Depends(get_current_user),
    service: SupervisorPartnershipService = Depends(get_supervisor_partnership_service),
):
    return unwrap(service.unpair(actor, actor.id), actor, "Co-supervision ended")


@router.post("/{request_id}/respond", response_model=OperationResponse)
async def respond_to_request(
    request_id: str,
    data: PartnershipRespond,
    actor: Actor = Depends(get_current_user),
    service: SupervisorPartnershipService = Depends(get_supervisor_partnership_service),
):
    result = service.respond(actor, request_id, data.action)
    return unwrap(result, actor, f"Co-supervision request {data.action.value}ed")


@router.delete("/{request_id}", response_model=OperationResponse)
async def cancel_request(
    request_id: str,
    actor: Actor = Depends(get_current_user),
    service: SupervisorPartnershipService = Depends(get_supervisor_partnership_service),
):
    return unwrap(service.cancel(actor, request_id), actor, "Co-supervision request cancelled")


@router.get("/supervisors/{supervisor_id}/requests", response_model=OperationResponse)
async def list_requests(
    supervisor_id: str,
    status: Optional[RequestStatus] = RequestStatus.pending,
    actor: Actor = Depends(get_current_user),
    service: SupervisorPartnershipService = Depends(get_supervisor_partnership_service),
):
    return unwrap(service.list_requests(actor, supervisor_id, status), actor)
