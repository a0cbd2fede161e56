"""
Project Routes

GET  /projects/{id}                - Project details (members, staff, admin)
POST /projects/{id}/status-change  - Move the project one step forward
"""

from fastapi import APIRouter, Depends

from mentormatch.api.deps import get_project_service, unwrap
from mentormatch.core.auth import get_current_user
from mentormatch.schemas.schemas import Actor, OperationResponse, ProjectStatusChange
from mentormatch.services.project_service import ProjectService

router = APIRouter(prefix="/projects", tags=["Projects"])


@router.get("/{project_id}", response_model=OperationResponse)
async def get_project(
    project_id: str,
    actor: Actor = Depends(get_current_user),
    service: ProjectService = Depends(get_project_service),
):
    return unwrap(service.get_project(actor, project_id), actor)


@router.post("/{project_id}/status-change", response_model=OperationResponse)
async def change_project_status(
    project_id: str,
    data: ProjectStatusChange,
    actor: Actor = Depends(get_current_user),
    service: ProjectService = Depends(get_project_service),
):
    """Completing a project also ends any co-supervision on it."""
    result = service.change_status(actor, project_id, data.status)
    return unwrap(result, actor, f"Project status changed to {data.status.value}")
