"""
Symmetric link helpers.

`partnerId` (students) and `coSupervisorId` (supervisors) are two fields
that must always point at each other or both be null. These helpers are the
only writers of those fields and always write both sides in the caller's
transaction.
"""

from datetime import datetime

from mentormatch.core.errors import Conflict
from mentormatch.db.mongodb import COLLECTIONS
from mentormatch.db.store import Transaction
from mentormatch.schemas.schemas import PartnershipStatus, RequestStatus


def link_students(txn: Transaction, first: dict, second: dict) -> None:
    for student in (first, second):
        if student.get("partnerId"):
            raise Conflict(f"Student {student['id']} is already paired")
    now = datetime.utcnow()
    for student, other in ((first, second), (second, first)):
        txn.update(COLLECTIONS["students"], student["id"], {
            "partnerId": other["id"],
            "partnershipStatus": PartnershipStatus.paired.value,
            "updatedAt": now,
        })


def unlink_students(txn: Transaction, student: dict, partner: dict = None) -> None:
    """Clear the pairing on `student` and, if it points back, on `partner`."""
    now = datetime.utcnow()
    cleared = {
        "partnerId": None,
        "partnershipStatus": PartnershipStatus.none.value,
        "updatedAt": now,
    }
    txn.update(COLLECTIONS["students"], student["id"], cleared)
    if partner is not None and partner.get("partnerId") == student["id"]:
        txn.update(COLLECTIONS["students"], partner["id"], cleared)


def link_supervisors(txn: Transaction, first: dict, second: dict) -> None:
    for supervisor in (first, second):
        if supervisor.get("coSupervisorId"):
            raise Conflict(f"Supervisor {supervisor['id']} already has a co-supervision partner")
    now = datetime.utcnow()
    for supervisor, other in ((first, second), (second, first)):
        txn.update(COLLECTIONS["supervisors"], supervisor["id"], {
            "coSupervisorId": other["id"],
            "updatedAt": now,
        })


def unlink_supervisors(txn: Transaction, first_id: str, second_id: str) -> None:
    """Clear coSupervisorId on whichever of the two still points at the other."""
    now = datetime.utcnow()
    for supervisor_id, other_id in ((first_id, second_id), (second_id, first_id)):
        supervisor = txn.get(COLLECTIONS["supervisors"], supervisor_id)
        if supervisor is not None and supervisor.get("coSupervisorId") == other_id:
            txn.update(COLLECTIONS["supervisors"], supervisor_id, {
                "coSupervisorId": None,
                "updatedAt": now,
            })


# ============================================================
# PENDING REQUEST LOOKUPS
# ============================================================

def pending_requests(txn: Transaction, collection_key: str, field: str, party_id: str) -> list:
    """Pending requests in which `party_id` appears under `field`."""
    return txn.query(COLLECTIONS[collection_key], where=[
        (field, "==", party_id),
        ("status", "==", RequestStatus.pending.value),
    ])


def pending_involving(
    txn: Transaction, collection_key: str, requester_field: str, target_field: str, party_ids: list
) -> list:
    """Every pending request sent or received by any of `party_ids`, without duplicates."""
    found = {}
    for field in (requester_field, target_field):
        for request in txn.query(COLLECTIONS[collection_key], where=[
            (field, "in", list(party_ids)),
            ("status", "==", RequestStatus.pending.value),
        ]):
            found[request["id"]] = request
    return list(found.values())
