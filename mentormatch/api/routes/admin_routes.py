"""
Admin Routes (admin role only)

PUT  /admin/supervisors/{id}/capacity          - Override a supervisor's max capacity
GET  /admin/supervisors/{id}/capacity-history  - Capacity change audit trail
POST /admin/fix-match-status                   - Repair students' matchStatus from approved applications
POST /admin/reconcile-capacities               - Recompute currentCapacity from projects
PUT  /admin/project-deadlines                  - Bulk set deadlines by project code
"""

from fastapi import APIRouter, Depends

from mentormatch.api.deps import get_admin_service, get_capacity_ledger, unwrap
from mentormatch.core.auth import get_current_admin
from mentormatch.schemas.schemas import Actor, CapacityOverride, DeadlineUpdate, OperationResponse
from mentormatch.services.admin_service import AdminService
from mentormatch.services.capacity_ledger import CapacityLedger

router = APIRouter(prefix="/admin", tags=["Admin"])


@router.put("/supervisors/{supervisor_id}/capacity", response_model=OperationResponse)
async def override_capacity(
    supervisor_id: str,
    data: CapacityOverride,
    admin: Actor = Depends(get_current_admin),
    ledger: CapacityLedger = Depends(get_capacity_ledger),
):
    result = ledger.override_max_capacity(admin, supervisor_id, data.max_capacity, data.reason)
    return unwrap(result, admin, f"Maximum capacity set to {data.max_capacity}")


@router.get("/supervisors/{supervisor_id}/capacity-history", response_model=OperationResponse)
async def capacity_history(
    supervisor_id: str,
    admin: Actor = Depends(get_current_admin),
    ledger: CapacityLedger = Depends(get_capacity_ledger),
):
    return unwrap(ledger.capacity_history(admin, supervisor_id), admin)


@router.post("/fix-match-status", response_model=OperationResponse)
async def fix_match_status(
    admin: Actor = Depends(get_current_admin),
    service: AdminService = Depends(get_admin_service),
):
    result = service.repair_match_status(admin)
    fixed = result.data["fixed"] if result.success else 0
    return unwrap(result, admin, f"Fixed {fixed} student(s) with incorrect matchStatus")


@router.post("/reconcile-capacities", response_model=OperationResponse)
async def reconcile_capacities(
    admin: Actor = Depends(get_current_admin),
    service: AdminService = Depends(get_admin_service),
):
    return unwrap(service.reconcile_capacities(admin), admin, "Capacities reconciled")


@router.put("/project-deadlines", response_model=OperationResponse)
async def update_project_deadlines(
    data: DeadlineUpdate,
    admin: Actor = Depends(get_current_admin),
    service: AdminService = Depends(get_admin_service),
):
    return unwrap(service.update_project_deadlines(admin, data.deadlines), admin, "Deadlines updated")
