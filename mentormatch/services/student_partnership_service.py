"""
Student Partnership Protocol

Request / accept / reject / cancel / unpair between two students who want
to apply together. The request document is the source of truth; the
`partnershipStatus` field on each student is a denormalised summary that
is recomputed whenever a request involving that student changes.
"""

from datetime import datetime
from typing import Dict, List, Optional

from mentormatch.core.errors import AlreadyResolved, Conflict, service_operation
from mentormatch.core.policy import Action, require
from mentormatch.db.mongodb import COLLECTIONS
from mentormatch.db.store import Transaction
from mentormatch.schemas.schemas import Actor, PartnershipStatus, RequestStatus, RespondAction
from mentormatch.services.base_service import WorkflowService, as_enum, load
from mentormatch.services.event_service import ServiceEvent
from mentormatch.services.links import (
    link_students,
    pending_involving,
    pending_requests,
    unlink_students,
)

REQUESTS = "partnership_requests"


def derive_partnership_status(txn: Transaction, student: dict) -> PartnershipStatus:
    if student.get("partnerId"):
        return PartnershipStatus.paired
    if pending_requests(txn, REQUESTS, "requesterId", student["id"]):
        return PartnershipStatus.pending_sent
    if pending_requests(txn, REQUESTS, "targetStudentId", student["id"]):
        return PartnershipStatus.pending_received
    return PartnershipStatus.none


def refresh_partnership_status(txn: Transaction, student_id: str) -> None:
    student = txn.get(COLLECTIONS["students"], student_id)
    if student is None:
        return
    status = derive_partnership_status(txn, student)
    if student.get("partnershipStatus") != status.value:
        txn.update(COLLECTIONS["students"], student_id, {
            "partnershipStatus": status.value,
            "updatedAt": datetime.utcnow(),
        })


class StudentPartnershipService(WorkflowService):

    # ============================================================
    # REQUEST
    # ============================================================

    @service_operation("StudentPartnershipService.request")
    def request(self, actor: Actor, requester_id: str, target_id: str) -> dict:
        require(actor, Action.REQUEST_STUDENT_PARTNERSHIP, {"id": requester_id},
                "Students can only send partnership requests for themselves")
        if requester_id == target_id:
            raise Conflict("You cannot send a partnership request to yourself")
        return self._commit(lambda txn: self._txn_request(txn, actor, requester_id, target_id))

    def _txn_request(self, txn, actor, requester_id, target_id):
        requester = load(txn, "students", requester_id, "Student")
        target = load(txn, "students", target_id, "Student")

        if requester.get("partnerId"):
            raise Conflict("You are already paired with another student")
        if target.get("partnerId"):
            raise Conflict("Target student is already paired")

        outgoing = pending_requests(txn, REQUESTS, "requesterId", requester_id)
        if any(request["targetStudentId"] == target_id for request in outgoing):
            raise Conflict("A partnership request to this student is already pending")
        if outgoing:
            raise Conflict("You already have a pending outgoing request. Cancel it before sending another.")
        for request in pending_requests(txn, REQUESTS, "requesterId", target_id):
            if request["targetStudentId"] == requester_id:
                raise Conflict("This student has already sent you a partnership request")
        if pending_requests(txn, REQUESTS, "targetStudentId", target_id):
            raise Conflict("Target student already has a pending request")

        now = datetime.utcnow()
        request = {
            "requesterId": requester_id,
            "requesterName": requester.get("fullName"),
            "targetStudentId": target_id,
            "targetStudentName": target.get("fullName"),
            "status": RequestStatus.pending.value,
            "createdAt": now,
            "updatedAt": now,
            "respondedAt": None,
        }
        request["id"] = txn.create(COLLECTIONS[REQUESTS], request)
        refresh_partnership_status(txn, requester_id)
        refresh_partnership_status(txn, target_id)

        events = [ServiceEvent(
            event_type="request_created",
            actor_id=actor.id,
            details={
                "requestId": request["id"],
                "requesterId": requester_id,
                "requesterName": requester.get("fullName"),
                "targetStudentId": target_id,
            },
            recipients=[target_id],
            notification_type="partnership_request_received",
        )]
        return request, events

    # ============================================================
    # RESPOND
    # ============================================================

    @service_operation("StudentPartnershipService.respond")
    def respond(self, actor: Actor, request_id: str, action) -> dict:
        action = as_enum(RespondAction, action, "action")
        return self._commit(lambda txn: self._txn_respond(txn, actor, request_id, action))

    def _txn_respond(self, txn, actor, request_id, action):
        request = load(txn, REQUESTS, request_id, "Partnership request")
        require(actor, Action.RESPOND_STUDENT_PARTNERSHIP, request,
                "Only the student who received this request can respond to it")
        if request["status"] != RequestStatus.pending.value:
            raise AlreadyResolved(f"This request has already been {request['status']}")

        requester = load(txn, "students", request["requesterId"], "Student")
        target = load(txn, "students", request["targetStudentId"], "Student")
        now = datetime.utcnow()

        if action == RespondAction.reject:
            txn.update(COLLECTIONS[REQUESTS], request_id, {
                "status": RequestStatus.rejected.value,
                "respondedAt": now,
                "updatedAt": now,
            })
            refresh_partnership_status(txn, requester["id"])
            refresh_partnership_status(txn, target["id"])
            events = [ServiceEvent(
                event_type="request_rejected",
                actor_id=actor.id,
                details={"requestId": request_id, "targetStudentId": target["id"]},
                recipients=[requester["id"]],
                notification_type="partnership_request_rejected",
            )]
            return dict(request, status=RequestStatus.rejected.value), events

        link_students(txn, requester, target)
        txn.update(COLLECTIONS[REQUESTS], request_id, {
            "status": RequestStatus.accepted.value,
            "respondedAt": now,
            "updatedAt": now,
        })
        events = [ServiceEvent(
            event_type="request_accepted",
            actor_id=actor.id,
            details={
                "requestId": request_id,
                "requesterId": requester["id"],
                "targetStudentId": target["id"],
            },
            recipients=[requester["id"]],
            notification_type="partnership_request_accepted",
        )]
        events.extend(self._cancel_others(txn, actor, [requester["id"], target["id"]], request_id))
        return dict(request, status=RequestStatus.accepted.value), events

    def _cancel_others(
        self, txn: Transaction, actor: Actor, party_ids: List[str], keep_id: str
    ) -> List[ServiceEvent]:
        """Cancel every other pending request touching the newly paired students."""
        events = []
        affected = set()
        now = datetime.utcnow()
        for other in pending_involving(txn, REQUESTS, "requesterId", "targetStudentId", party_ids):
            if other["id"] == keep_id:
                continue
            txn.update(COLLECTIONS[REQUESTS], other["id"], {
                "status": RequestStatus.cancelled.value,
                "updatedAt": now,
            })
            for party in (other["requesterId"], other["targetStudentId"]):
                if party not in party_ids:
                    affected.add(party)
            events.append(ServiceEvent(
                event_type="request_cancelled",
                actor_id=actor.id,
                details={"requestId": other["id"], "reason": "party_paired"},
                recipients=[p for p in (other["requesterId"], other["targetStudentId"]) if p not in party_ids],
                notification_type="partnership_request_cancelled",
            ))
        for student_id in sorted(affected):
            refresh_partnership_status(txn, student_id)
        return events

    # ============================================================
    # CANCEL / UNPAIR
    # ============================================================

    @service_operation("StudentPartnershipService.cancel")
    def cancel(self, actor: Actor, request_id: str) -> dict:
        return self._commit(lambda txn: self._txn_cancel(txn, actor, request_id))

    def _txn_cancel(self, txn, actor, request_id):
        request = load(txn, REQUESTS, request_id, "Partnership request")
        require(actor, Action.CANCEL_STUDENT_PARTNERSHIP, request,
                "Only the student who sent this request can cancel it")
        if request["status"] != RequestStatus.pending.value:
            raise AlreadyResolved("Can only cancel pending requests")

        now = datetime.utcnow()
        txn.update(COLLECTIONS[REQUESTS], request_id, {
            "status": RequestStatus.cancelled.value,
            "updatedAt": now,
        })
        refresh_partnership_status(txn, request["requesterId"])
        refresh_partnership_status(txn, request["targetStudentId"])

        events = [ServiceEvent(
            event_type="request_cancelled",
            actor_id=actor.id,
            details={"requestId": request_id, "reason": "cancelled_by_requester"},
            recipients=[request["targetStudentId"]],
            notification_type="partnership_request_cancelled",
        )]
        return dict(request, status=RequestStatus.cancelled.value), events

    @service_operation("StudentPartnershipService.unpair")
    def unpair(self, actor: Actor, student_id: str) -> dict:
        require(actor, Action.UNPAIR_STUDENT, {"id": student_id}, "You can only end your own partnership")
        return self._commit(lambda txn: self._txn_unpair(txn, actor, student_id))

    def _txn_unpair(self, txn, actor, student_id):
        student = load(txn, "students", student_id, "Student")
        partner_id = student.get("partnerId")
        if not partner_id:
            raise Conflict("You are not currently paired with a partner")

        partner = txn.get(COLLECTIONS["students"], partner_id)
        # Submitted applications keep their partner snapshot
        unlink_students(txn, student, partner)

        events = [ServiceEvent(
            event_type="partnership_ended",
            actor_id=actor.id,
            details={"studentId": student_id, "formerPartnerId": partner_id},
            recipients=[partner_id],
            notification_type="partnership_ended",
        )]
        return {"studentId": student_id, "formerPartnerId": partner_id}, events

    # ============================================================
    # READS
    # ============================================================

    @service_operation("StudentPartnershipService.list_requests")
    def list_requests(self, actor: Actor, student_id: str, status: Optional[str] = "pending") -> Dict[str, list]:
        require(actor, Action.VIEW_STUDENT_RECORDS, {"id": student_id})
        result = {}
        for key, field in (("incoming", "targetStudentId"), ("outgoing", "requesterId")):
            where = [(field, "==", student_id)]
            if status is not None:
                where.append(("status", "==", as_enum(RequestStatus, status, "status").value))
            result[key] = self.store.query(COLLECTIONS[REQUESTS], where=where, order_by=[("createdAt", -1)])
        return result
