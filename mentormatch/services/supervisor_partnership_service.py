"""
Supervisor Partnership (Co-supervision) Protocol

The same handshake as the student protocol, scoped to one project:
- request():  project supervisor asks a colleague to co-supervise
- respond():  accept links both supervisors, sets project.coSupervisorId
              and reserves a slot on the co-supervisor's capacity
- cancel():   requester withdraws a pending request
- unpair():   either supervisor ends the arrangement, freeing the slot

Capacity is re-read inside the accept transaction; a request made while
the target had room can still fail with CapacityExceeded at accept time.
"""

from datetime import datetime
from typing import Dict, List, Optional

from mentormatch.core.errors import (
    AlreadyResolved,
    CapacityExceeded,
    Conflict,
    service_operation,
)
from mentormatch.core.policy import Action, require
from mentormatch.db.mongodb import COLLECTIONS
from mentormatch.db.store import Transaction
from mentormatch.schemas.schemas import (
    Actor,
    AvailabilityStatus,
    ProjectStatus,
    RequestStatus,
    RespondAction,
    SupervisorSummary,
)
from mentormatch.services.base_service import WorkflowService, as_enum, load
from mentormatch.services.capacity_ledger import CapacityLedger, derive_availability
from mentormatch.services.event_service import ServiceEvent
from mentormatch.services.links import (
    link_supervisors,
    pending_involving,
    pending_requests,
    unlink_supervisors,
)
from mentormatch.services.project_service import teardown_co_supervision

REQUESTS = "supervisor_partnership_requests"


class SupervisorPartnershipService(WorkflowService):

    def __init__(self, store=None, emitter=None, settings=None, ledger: CapacityLedger = None):
        super().__init__(store, emitter, settings)
        self.ledger = ledger or CapacityLedger(self.store, self.emitter, self.settings)

    def _ensure_project_open(self, project: dict) -> None:
        if project.get("status") == ProjectStatus.completed.value:
            raise Conflict("Project is already completed")
        if project.get("coSupervisorId"):
            raise Conflict("Project already has a co-supervisor")

    # ============================================================
    # REQUEST
    # ============================================================

    @service_operation("SupervisorPartnershipService.request")
    def request(self, actor: Actor, requester_id: str, target_id: str, project_id: str) -> dict:
        if requester_id == target_id:
            raise Conflict("You cannot request yourself as co-supervisor")
        return self._commit(
            lambda txn: self._txn_request(txn, actor, requester_id, target_id, project_id)
        )

    def _txn_request(self, txn, actor, requester_id, target_id, project_id):
        project = load(txn, "projects", project_id, "Project")
        require(actor, Action.REQUEST_SUPERVISOR_PARTNERSHIP, dict(project, requesterId=requester_id),
                "Only the project's supervisor can request a co-supervisor")
        self._ensure_project_open(project)

        requester = load(txn, "supervisors", requester_id, "Supervisor")
        target = load(txn, "supervisors", target_id, "Supervisor")
        if requester.get("coSupervisorId"):
            raise Conflict("You already have a co-supervision partner")
        if target.get("coSupervisorId"):
            raise Conflict("Target supervisor already has a co-supervision partner")
        if not self.ledger.has_room(target):
            raise CapacityExceeded("Target supervisor has no remaining capacity")

        outgoing = pending_requests(txn, REQUESTS, "requestingSupervisorId", requester_id)
        if any(request["targetSupervisorId"] == target_id for request in outgoing):
            raise Conflict("A co-supervision request to this supervisor is already pending")
        if outgoing:
            raise Conflict("You already have a pending outgoing request. Cancel it before sending another.")
        for request in pending_requests(txn, REQUESTS, "requestingSupervisorId", target_id):
            if request["targetSupervisorId"] == requester_id:
                raise Conflict("This supervisor has already sent you a co-supervision request")
        if pending_requests(txn, REQUESTS, "targetSupervisorId", target_id):
            raise Conflict("Target supervisor already has a pending request")

        now = datetime.utcnow()
        request = {
            "requestingSupervisorId": requester_id,
            "requestingSupervisorName": requester.get("fullName"),
            "targetSupervisorId": target_id,
            "targetSupervisorName": target.get("fullName"),
            "projectId": project_id,
            "projectTitle": project.get("title"),
            "status": RequestStatus.pending.value,
            "createdAt": now,
            "updatedAt": now,
            "respondedAt": None,
        }
        request["id"] = txn.create(COLLECTIONS[REQUESTS], request)

        events = [ServiceEvent(
            event_type="request_created",
            actor_id=actor.id,
            details={
                "requestId": request["id"],
                "requestingSupervisorId": requester_id,
                "targetSupervisorId": target_id,
                "projectId": project_id,
                "projectTitle": project.get("title"),
            },
            recipients=[target_id],
            notification_type="supervisor_partnership_request_received",
        )]
        return request, events

    # ============================================================
    # RESPOND
    # ============================================================

    @service_operation("SupervisorPartnershipService.respond")
    def respond(self, actor: Actor, request_id: str, action) -> dict:
        action = as_enum(RespondAction, action, "action")
        return self._commit(lambda txn: self._txn_respond(txn, actor, request_id, action))

    def _txn_respond(self, txn, actor, request_id, action):
        request = load(txn, REQUESTS, request_id, "Supervisor partnership request")
        require(actor, Action.RESPOND_SUPERVISOR_PARTNERSHIP, request,
                "Only the supervisor who received this request can respond to it")
        if request["status"] != RequestStatus.pending.value:
            raise AlreadyResolved(f"This request has already been {request['status']}")

        now = datetime.utcnow()
        requester_id = request["requestingSupervisorId"]
        target_id = request["targetSupervisorId"]

        if action == RespondAction.reject:
            txn.update(COLLECTIONS[REQUESTS], request_id, {
                "status": RequestStatus.rejected.value,
                "respondedAt": now,
                "updatedAt": now,
            })
            events = [ServiceEvent(
                event_type="request_rejected",
                actor_id=actor.id,
                details={"requestId": request_id, "projectId": request.get("projectId")},
                recipients=[requester_id],
                notification_type="supervisor_partnership_request_rejected",
            )]
            return dict(request, status=RequestStatus.rejected.value), events

        requester = load(txn, "supervisors", requester_id, "Supervisor")
        target = load(txn, "supervisors", target_id, "Supervisor")
        project = load(txn, "projects", request["projectId"], "Project")
        self._ensure_project_open(project)

        current, maximum = self.ledger.capacity_of(target)
        if current >= maximum:
            raise CapacityExceeded(
                f"You have no remaining capacity ({current}/{maximum}) to co-supervise this project"
            )

        link_supervisors(txn, requester, target)
        self.ledger.reserve(txn, target_id)
        txn.update(COLLECTIONS["projects"], project["id"], {
            "coSupervisorId": target_id,
            "coSupervisorName": target.get("fullName"),
            "updatedAt": now,
        })
        txn.update(COLLECTIONS[REQUESTS], request_id, {
            "status": RequestStatus.accepted.value,
            "respondedAt": now,
            "updatedAt": now,
        })

        events = [ServiceEvent(
            event_type="co_supervisor_added",
            actor_id=actor.id,
            details={
                "requestId": request_id,
                "projectId": project["id"],
                "projectTitle": project.get("title"),
                "supervisorId": requester_id,
                "coSupervisorId": target_id,
            },
            recipients=[requester_id],
            notification_type="supervisor_partnership_request_accepted",
        )]
        events.extend(self._cancel_others(txn, actor, [requester_id, target_id], request_id))
        return dict(request, status=RequestStatus.accepted.value), events

    def _cancel_others(
        self, txn: Transaction, actor: Actor, party_ids: List[str], keep_id: str
    ) -> List[ServiceEvent]:
        events = []
        now = datetime.utcnow()
        for other in pending_involving(
            txn, REQUESTS, "requestingSupervisorId", "targetSupervisorId", party_ids
        ):
            if other["id"] == keep_id:
                continue
            txn.update(COLLECTIONS[REQUESTS], other["id"], {
                "status": RequestStatus.cancelled.value,
                "updatedAt": now,
            })
            events.append(ServiceEvent(
                event_type="request_cancelled",
                actor_id=actor.id,
                details={"requestId": other["id"], "reason": "party_paired"},
                recipients=[
                    p for p in (other["requestingSupervisorId"], other["targetSupervisorId"])
                    if p not in party_ids
                ],
                notification_type="supervisor_partnership_request_cancelled",
            ))
        return events

    # ============================================================
    # CANCEL / UNPAIR
    # ============================================================

    @service_operation("SupervisorPartnershipService.cancel")
    def cancel(self, actor: Actor, request_id: str) -> dict:
        return self._commit(lambda txn: self._txn_cancel(txn, actor, request_id))

    def _txn_cancel(self, txn, actor, request_id):
        request = load(txn, REQUESTS, request_id, "Supervisor partnership request")
        require(actor, Action.CANCEL_SUPERVISOR_PARTNERSHIP, request,
                "Only the supervisor who sent this request can cancel it")
        if request["status"] != RequestStatus.pending.value:
            raise AlreadyResolved("Can only cancel pending requests")

        txn.update(COLLECTIONS[REQUESTS], request_id, {
            "status": RequestStatus.cancelled.value,
            "updatedAt": datetime.utcnow(),
        })
        events = [ServiceEvent(
            event_type="request_cancelled",
            actor_id=actor.id,
            details={"requestId": request_id, "reason": "cancelled_by_requester"},
            recipients=[request["targetSupervisorId"]],
            notification_type="supervisor_partnership_request_cancelled",
        )]
        return dict(request, status=RequestStatus.cancelled.value), events

    @service_operation("SupervisorPartnershipService.unpair")
    def unpair(self, actor: Actor, supervisor_id: str) -> dict:
        require(actor, Action.UNPAIR_SUPERVISOR, {"id": supervisor_id},
                "You can only end your own co-supervision")
        return self._commit(lambda txn: self._txn_unpair(txn, actor, supervisor_id))

    def _txn_unpair(self, txn, actor, supervisor_id):
        supervisor = load(txn, "supervisors", supervisor_id, "Supervisor")
        partner_id = supervisor.get("coSupervisorId")
        if not partner_id:
            raise Conflict("You do not currently have a co-supervision partner")

        events: List[ServiceEvent] = []
        for lead_id, co_id in ((supervisor_id, partner_id), (partner_id, supervisor_id)):
            for project in txn.query(COLLECTIONS["projects"], where=[
                ("supervisorId", "==", lead_id),
                ("coSupervisorId", "==", co_id),
            ]):
                events.extend(teardown_co_supervision(txn, actor, project, self.ledger, reason="unpaired"))
        # Links with no project behind them still need clearing
        unlink_supervisors(txn, supervisor_id, partner_id)

        if not events:
            events.append(ServiceEvent(
                event_type="co_supervisor_removed",
                actor_id=actor.id,
                details={"supervisorId": supervisor_id, "formerPartnerId": partner_id, "reason": "unpaired"},
                recipients=[partner_id],
                notification_type="co_supervision_ended",
            ))
        return {"supervisorId": supervisor_id, "formerPartnerId": partner_id}, events

    # ============================================================
    # READS
    # ============================================================

    @service_operation("SupervisorPartnershipService.get_partners_with_capacity")
    def get_partners_with_capacity(
        self, actor: Actor, requester_id: str, project_id: Optional[str] = None
    ) -> List[dict]:
        require(actor, Action.VIEW_SUPERVISOR_RECORDS, {"id": requester_id})
        excluded = {requester_id}
        if project_id:
            project = load(self.store, "projects", project_id, "Project")
            excluded.add(project["supervisorId"])

        partners = []
        for supervisor in self.store.query(COLLECTIONS["supervisors"]):
            if supervisor["id"] in excluded or supervisor.get("coSupervisorId"):
                continue
            if supervisor.get("isActive") is False:
                continue
            current, maximum = self.ledger.capacity_of(supervisor)
            status = derive_availability(current, maximum, self.settings.limited_capacity_ratio)
            if status == AvailabilityStatus.unavailable:
                continue
            partners.append(SupervisorSummary(
                supervisor_id=supervisor["id"],
                full_name=supervisor.get("fullName"),
                department=supervisor.get("department"),
                max_capacity=maximum,
                current_capacity=current,
                remaining_capacity=self.ledger.remaining(supervisor),
                availability_status=status,
            ).model_dump(mode="json"))

        partners.sort(key=lambda s: (-s["remaining_capacity"], s["full_name"] or ""))
        return partners

    @service_operation("SupervisorPartnershipService.list_requests")
    def list_requests(
        self, actor: Actor, supervisor_id: str, status: Optional[str] = "pending"
    ) -> Dict[str, list]:
        require(actor, Action.VIEW_SUPERVISOR_RECORDS, {"id": supervisor_id})
        result = {}
        for key, field in (("incoming", "targetSupervisorId"), ("outgoing", "requestingSupervisorId")):
            where = [(field, "==", supervisor_id)]
            if status is not None:
                where.append(("status", "==", as_enum(RequestStatus, status, "status").value))
            result[key] = self.store.query(COLLECTIONS[REQUESTS], where=where, order_by=[("createdAt", -1)])
        return result
