"""
Student Partnership Routes

POST   /partnerships/request                 - Send a partnership request
POST   /partnerships/{id}/respond            - Accept / reject (target student)
DELETE /partnerships/{id}                    - Cancel (requester)
POST   /partnerships/unpair                  - End my current partnership
GET    /partnerships/students/{id}/requests  - Incoming + outgoing requests
"""

from typing import Optional

from fastapi import APIRouter, Depends

from mentormatch.api.deps import get_student_partnership_service, unwrap
from mentormatch.core.auth import get_current_user
from mentormatch.schemas.schemas import (
    Actor, OperationResponse, PartnershipRequestCreate, PartnershipRespond, RequestStatus,
)
from mentormatch.services.student_partnership_service import StudentPartnershipService

router = APIRouter(prefix="/partnerships", tags=["Partnerships"])


@router.post("/request", response_model=OperationResponse, status_code=201)
async def request_partnership(
    data: PartnershipRequestCreate,
    actor: Actor = Depends(get_current_user),
    service: StudentPartnershipService = Depends(get_student_partnership_service),
):
    result = service.request(actor, actor.id, data.target_student_id)
    return unwrap(result, actor, "Partnership request sent")


@router.post("/unpair", response_model=OperationResponse)
async def unpair(
    actor: Actor = Depends(get_current_user),
    service: StudentPartnershipService = Depends(get_student_partnership_service),
):
    return unwrap(service.unpair(actor, actor.id), actor, "Partnership ended")


@router.post("/{request_id}/respond", response_model=OperationResponse)
async def respond_to_request(
    request_id: str,
    data: PartnershipRespond,
    actor: Actor = Depends(get_current_user),
    service: StudentPartnershipService = Depends(get_student_partnership_service),
):
    result = service.respond(actor, request_id, data.action)
    return unwrap(result, actor, f"Partnership request {data.action.value}ed")


@router.delete("/{request_id}", response_model=OperationResponse)
async def cancel_request(
    request_id: str,
    actor: Actor = Depends(get_current_user),
    service: StudentPartnershipService = Depends(get_student_partnership_service),
):
    return unwrap(service.cancel(actor, request_id), actor, "Partnership request cancelled")


@router.get("/students/{student_id}/requests", response_model=OperationResponse)
async def list_requests(
    student_id: str,
    status: Optional[RequestStatus] = RequestStatus.pending,
    actor: Actor = Depends(get_current_user),
    service: StudentPartnershipService = Depends(get_student_partnership_service),
):
    return unwrap(service.list_requests(actor, student_id, status), actor)
