"""
Application State Machine

Governs one student-to-supervisor application:

    pending            -> under_review | approved | rejected | revision_requested
    under_review       -> approved | rejected | revision_requested
    revision_requested -> pending   (only through resubmit())
    approved, rejected -> terminal for the reviewer

Approval is where the workflow touches everything else:
- the supervisor's capacity is reserved through the CapacityLedger
- a Project is created (or the partner's live project is joined)
- the student and partner become `matched`
All of that commits in the same transaction as the status change.
"""

from datetime import datetime
from typing import List, Optional, Tuple, Union

from pydantic import ValidationError as PydanticValidationError

from mentormatch.core.errors import Conflict, InvalidTransition, ValidationError, service_operation
from mentormatch.core.policy import Action, require
from mentormatch.db.mongodb import COLLECTIONS
from mentormatch.db.store import DESCENDING, Transaction
from mentormatch.schemas.schemas import (
    Actor,
    ApplicationContent,
    ApplicationStatus,
    MatchStatus,
)
from mentormatch.services.base_service import WorkflowService, as_enum, load
from mentormatch.services.capacity_ledger import CapacityLedger
from mentormatch.services.event_service import ServiceEvent
from mentormatch.services.project_service import ProjectService, teardown_co_supervision


APPLICATION_TRANSITIONS = {
    ApplicationStatus.pending: {
        ApplicationStatus.under_review,
        ApplicationStatus.approved,
        ApplicationStatus.rejected,
        ApplicationStatus.revision_requested,
    },
    ApplicationStatus.under_review: {
        ApplicationStatus.approved,
        ApplicationStatus.rejected,
        ApplicationStatus.revision_requested,
    },
    ApplicationStatus.revision_requested: {ApplicationStatus.pending},
    ApplicationStatus.approved: set(),
    ApplicationStatus.rejected: set(),
}

# Statuses that keep a student busy with a supervisor
OPEN_STATUSES = [
    ApplicationStatus.pending.value,
    ApplicationStatus.under_review.value,
    ApplicationStatus.revision_requested.value,
]
ACTIVE_STATUSES = OPEN_STATUSES + [ApplicationStatus.approved.value]

EDITABLE_STATUSES = {ApplicationStatus.pending, ApplicationStatus.revision_requested}

# A linked application still waiting on a decision follows its partner's rejection
AWAITING_DECISION = [ApplicationStatus.pending.value, ApplicationStatus.under_review.value]

MAX_FEEDBACK_LENGTH = 1000


def parse_content(content: Union[ApplicationContent, dict, None]) -> ApplicationContent:
    """Validate submitted content, reporting the first offending field."""
    data = content.model_dump() if isinstance(content, ApplicationContent) else dict(content or {})
    try:
        parsed = ApplicationContent.model_validate(data)
    except PydanticValidationError as exc:
        first = exc.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ())) or "content"
        raise ValidationError(field, first.get("msg", "Invalid value")) from None

    if parsed.has_partner:
        if not (parsed.partner_name or "").strip():
            raise ValidationError("partner_name", "Partner name is required when applying with a partner")
        if not parsed.partner_email:
            raise ValidationError("partner_email", "Partner email is required when applying with a partner")
    return parsed


class ApplicationService(WorkflowService):

    def __init__(self, store=None, emitter=None, settings=None,
                 ledger: CapacityLedger = None, projects: ProjectService = None):
        super().__init__(store, emitter, settings)
        self.ledger = ledger or CapacityLedger(self.store, self.emitter, self.settings)
        self.projects = projects or ProjectService(self.store, self.emitter, self.settings, self.ledger)

    # ============================================================
    # SUBMIT
    # ============================================================

    @service_operation("ApplicationService.submit")
    def submit(self, actor: Actor, student_id: str, supervisor_id: str, content) -> dict:
        require(actor, Action.SUBMIT_APPLICATION, {"id": student_id},
                "Students can only submit applications for themselves")
        if not supervisor_id:
            raise ValidationError("supervisor_id", "A supervisor must be selected")
        parsed = parse_content(content)
        return self._commit(lambda txn: self._txn_submit(txn, actor, student_id, supervisor_id, parsed))

    def _txn_submit(self, txn, actor, student_id, supervisor_id, content: ApplicationContent):
        student = load(txn, "students", student_id, "Student")
        supervisor = load(txn, "supervisors", supervisor_id, "Supervisor")

        existing = txn.query(COLLECTIONS["applications"], where=[
            ("studentId", "==", student_id),
            ("supervisorId", "==", supervisor_id),
            ("status", "in", ACTIVE_STATUSES),
        ], limit=1)
        if existing:
            raise ValidationError("supervisor_id", "You already have an active application to this supervisor")

        partner = txn.get(COLLECTIONS["students"], student["partnerId"]) if student.get("partnerId") else None

        now = datetime.utcnow()
        application = {
            "studentId": student_id,
            "studentName": student.get("fullName"),
            "studentEmail": student.get("email"),
            "studentSkills": list(student.get("skills") or []),
            "studentInterests": list(student.get("interests") or []),
            "supervisorId": supervisor_id,
            "supervisorName": supervisor.get("fullName"),
            "projectTitle": content.project_title,
            "projectDescription": content.project_description,
            "isOwnTopic": content.is_own_topic,
            "proposedTopicId": content.proposed_topic_id,
            "hasPartner": bool(partner) or content.has_partner,
            "partnerId": partner["id"] if partner else None,
            "partnerName": partner.get("fullName") if partner else content.partner_name,
            "partnerEmail": partner.get("email") if partner else content.partner_email,
            "status": ApplicationStatus.pending.value,
            "supervisorFeedback": None,
            "projectId": None,
            "dateApplied": now,
            "lastUpdated": now,
            "responseDate": None,
            "resubmittedDate": None,
        }
        application["id"] = txn.create(COLLECTIONS["applications"], application)

        if student.get("matchStatus", MatchStatus.unmatched.value) == MatchStatus.unmatched.value:
            txn.update(COLLECTIONS["students"], student_id, {
                "matchStatus": MatchStatus.pending.value,
                "updatedAt": now,
            })

        events = [ServiceEvent(
            event_type="application_submitted",
            actor_id=actor.id,
            details={
                "applicationId": application["id"],
                "studentId": student_id,
                "studentName": student.get("fullName"),
                "projectTitle": content.project_title,
            },
            recipients=[supervisor_id],
            notification_type="application_submitted",
        )]
        return application, events

    # ============================================================
    # REVIEW
    # ============================================================

    @service_operation("ApplicationService.set_status")
    def set_status(self, actor: Actor, application_id: str, new_status, feedback: Optional[str] = None) -> dict:
        new_status = as_enum(ApplicationStatus, new_status, "status")
        if feedback is not None and len(feedback) > MAX_FEEDBACK_LENGTH:
            raise ValidationError("feedback", f"Feedback cannot exceed {MAX_FEEDBACK_LENGTH} characters")
        return self._commit(
            lambda txn: self._txn_set_status(txn, actor, application_id, new_status, feedback)
        )

    def _txn_set_status(self, txn, actor, application_id, new_status, feedback):
        application = load(txn, "applications", application_id, "Application")
        require(actor, Action.REVIEW_APPLICATION, application,
                "Only the assigned supervisor or an admin can review this application")

        current = ApplicationStatus(application["status"])
        # The way back to pending belongs to the student (resubmit)
        if new_status == ApplicationStatus.pending or new_status not in APPLICATION_TRANSITIONS[current]:
            raise InvalidTransition(current.value, new_status.value)

        now = datetime.utcnow()
        changes = {"status": new_status.value, "lastUpdated": now}
        if feedback is not None:
            changes["supervisorFeedback"] = feedback
        if new_status in (ApplicationStatus.approved, ApplicationStatus.rejected):
            changes["responseDate"] = now

        if new_status == ApplicationStatus.approved:
            project = self._approve(txn, application)
            changes["projectId"] = project["id"]
        txn.update(COLLECTIONS["applications"], application_id, changes)

        events: List[ServiceEvent] = []
        if new_status == ApplicationStatus.rejected:
            self._refresh_match_status(txn, application["studentId"])
            linked = linked_application(txn, application, AWAITING_DECISION)
            if linked is not None:
                events.append(self._reject_linked(txn, actor, linked, feedback, now))

        recipients = [application["studentId"]]
        if application.get("partnerId"):
            recipients.append(application["partnerId"])

        events.insert(0, ServiceEvent(
            event_type="application_status_changed",
            actor_id=actor.id,
            details={
                "applicationId": application_id,
                "projectTitle": application.get("projectTitle"),
                "supervisorId": application["supervisorId"],
                "previousStatus": current.value,
                "newStatus": new_status.value,
                "feedback": feedback,
            },
            recipients=recipients,
            notification_type="application_status_changed",
        ))
        return dict(application, **changes), events

    def _reject_linked(self, txn: Transaction, actor: Actor, linked: dict, feedback, now) -> ServiceEvent:
        """Partners apply together, so the partner's waiting application is rejected as well."""
        note = "Linked partner application was rejected"
        linked_feedback = f"{feedback} ({note})" if feedback else note
        txn.update(COLLECTIONS["applications"], linked["id"], {
            "status": ApplicationStatus.rejected.value,
            "supervisorFeedback": linked_feedback,
            "responseDate": now,
            "lastUpdated": now,
        })
        self._refresh_match_status(txn, linked["studentId"])
        return ServiceEvent(
            event_type="application_status_changed",
            actor_id=actor.id,
            details={
                "applicationId": linked["id"],
                "projectTitle": linked.get("projectTitle"),
                "supervisorId": linked["supervisorId"],
                "previousStatus": linked["status"],
                "newStatus": ApplicationStatus.rejected.value,
                "feedback": linked_feedback,
            },
            recipients=[linked["studentId"]],
            notification_type="application_status_changed",
        )

    def _approve(self, txn: Transaction, application: dict) -> dict:
        student_id = application["studentId"]
        supervisor_id = application["supervisorId"]
        partner_id = application.get("partnerId")

        student = load(txn, "students", student_id, "Student")
        if _matched_elsewhere(student, supervisor_id):
            raise Conflict("Student is already matched with another supervisor")

        # The snapshot is kept for the record; only a current, unassigned partner comes along
        partner = self._current_partner(txn, student_id, partner_id, supervisor_id)
        partner_id = partner["id"] if partner else None

        # A partner's earlier approval may already have placed this student on a project
        project = self.projects.find_live_project(txn, supervisor_id, student_id)
        if project is None and partner_id:
            project = self.projects.find_live_project(txn, supervisor_id, partner_id)

        if project is not None:
            student_ids = list(project.get("studentIds") or [])
            if student_id not in student_ids:
                student_ids.append(student_id)
            application_ids = list(project.get("applicationIds") or [])
            application_ids.append(application["id"])
            txn.update(COLLECTIONS["projects"], project["id"], {
                "studentIds": student_ids,
                "applicationIds": application_ids,
                "updatedAt": datetime.utcnow(),
            })
        else:
            self.ledger.reserve(txn, supervisor_id)
            supervisor = load(txn, "supervisors", supervisor_id, "Supervisor")
            student_ids = [student_id]
            if partner is not None:
                student_ids.append(partner_id)
            project = self.projects.create_for_application(txn, application, supervisor, student_ids)

        for member_id in project_members(project, student_id, partner_id):
            member = txn.get(COLLECTIONS["students"], member_id)
            if member is None:
                continue
            txn.update(COLLECTIONS["students"], member_id, {
                "matchStatus": MatchStatus.matched.value,
                "assignedSupervisorId": supervisor_id,
                "assignedProjectId": project["id"],
                "updatedAt": datetime.utcnow(),
            })
        return project

    def _current_partner(
        self, txn: Transaction, student_id: str, partner_id: Optional[str], supervisor_id: str
    ) -> Optional[dict]:
        if not partner_id:
            return None
        partner = txn.get(COLLECTIONS["students"], partner_id)
        if partner is None or partner.get("partnerId") != student_id:
            return None
        if _matched_elsewhere(partner, supervisor_id):
            return None
        return partner

    def _refresh_match_status(self, txn: Transaction, student_id: str, force: bool = False) -> None:
        """Recompute pending/unmatched from the student's open applications."""
        student = txn.get(COLLECTIONS["students"], student_id)
        if student is None:
            return
        if student.get("matchStatus") == MatchStatus.matched.value and not force:
            return
        still_open = txn.query(COLLECTIONS["applications"], where=[
            ("studentId", "==", student_id),
            ("status", "in", OPEN_STATUSES),
        ], limit=1)
        status = MatchStatus.pending if still_open else MatchStatus.unmatched
        txn.update(COLLECTIONS["students"], student_id, {
            "matchStatus": status.value,
            "updatedAt": datetime.utcnow(),
        })

    # ============================================================
    # STUDENT SIDE: resubmit / edit / withdraw
    # ============================================================

    @service_operation("ApplicationService.resubmit")
    def resubmit(self, actor: Actor, application_id: str) -> dict:
        return self._commit(lambda txn: self._txn_resubmit(txn, actor, application_id))

    def _txn_resubmit(self, txn, actor, application_id):
        application = load(txn, "applications", application_id, "Application")
        require(actor, Action.RESUBMIT_APPLICATION, application,
                "Only the student who submitted this application can resubmit it")

        current = ApplicationStatus(application["status"])
        if current != ApplicationStatus.revision_requested:
            raise InvalidTransition(current.value, ApplicationStatus.pending.value)

        now = datetime.utcnow()
        changes = {
            "status": ApplicationStatus.pending.value,
            "supervisorFeedback": None,
            "resubmittedDate": now,
            "lastUpdated": now,
        }
        txn.update(COLLECTIONS["applications"], application_id, changes)
        self._refresh_match_status(txn, application["studentId"])

        # The partner's copy waiting on the same revision goes back to review too
        linked = linked_application(txn, application, [ApplicationStatus.revision_requested.value])
        if linked is not None:
            txn.update(COLLECTIONS["applications"], linked["id"], {
                "status": ApplicationStatus.pending.value,
                "supervisorFeedback": None,
                "resubmittedDate": now,
                "lastUpdated": now,
            })
            self._refresh_match_status(txn, linked["studentId"])
        linked_id = linked["id"] if linked else None

        events = [ServiceEvent(
            event_type="application_resubmitted",
            actor_id=actor.id,
            details={
                "applicationId": application_id,
                "studentId": application["studentId"],
                "projectTitle": application.get("projectTitle"),
                "linkedApplicationId": linked_id,
            },
            recipients=[application["supervisorId"]],
            notification_type="application_resubmitted",
        )]
        return dict(application, **changes, linkedApplicationId=linked_id), events

    @service_operation("ApplicationService.edit_application")
    def edit_application(self, actor: Actor, application_id: str, content) -> dict:
        parsed = parse_content(content)
        return self._commit(lambda txn: self._txn_edit(txn, actor, application_id, parsed))

    def _txn_edit(self, txn, actor, application_id, content: ApplicationContent):
        application = load(txn, "applications", application_id, "Application")
        require(actor, Action.EDIT_APPLICATION, application,
                "Only the student who submitted this application can edit it")

        current = ApplicationStatus(application["status"])
        if current not in EDITABLE_STATUSES:
            raise Conflict(f"Application can no longer be edited (status: {current.value})")

        changes = {
            "projectTitle": content.project_title,
            "projectDescription": content.project_description,
            "isOwnTopic": content.is_own_topic,
            "proposedTopicId": content.proposed_topic_id,
            "lastUpdated": datetime.utcnow(),
        }
        # A snapshot taken from a real pairing is never overwritten by hand
        if not application.get("partnerId"):
            changes.update({
                "hasPartner": content.has_partner,
                "partnerName": content.partner_name if content.has_partner else None,
                "partnerEmail": content.partner_email if content.has_partner else None,
            })
        txn.update(COLLECTIONS["applications"], application_id, changes)

        events = [ServiceEvent(
            event_type="application_edited",
            actor_id=actor.id,
            details={"applicationId": application_id, "status": current.value},
        )]
        return dict(application, **changes), events

    @service_operation("ApplicationService.withdraw")
    def withdraw(self, actor: Actor, application_id: str) -> dict:
        return self._commit(lambda txn: self._txn_withdraw(txn, actor, application_id))

    def _txn_withdraw(self, txn, actor, application_id):
        application = load(txn, "applications", application_id, "Application")
        require(actor, Action.WITHDRAW_APPLICATION, application,
                "Only the student who submitted this application can withdraw it")

        txn.delete(COLLECTIONS["applications"], application_id)

        events: List[ServiceEvent] = []
        released = False
        if application["status"] == ApplicationStatus.approved.value:
            unassign_events, released = self._unassign(txn, actor, application)
            events.extend(unassign_events)
        else:
            self._refresh_match_status(txn, application["studentId"])

        events.append(ServiceEvent(
            event_type="application_withdrawn",
            actor_id=actor.id,
            details={
                "applicationId": application_id,
                "studentId": application["studentId"],
                "projectTitle": application.get("projectTitle"),
                "previousStatus": application["status"],
                "capacityReleased": released,
            },
            recipients=[application["supervisorId"]],
            notification_type="application_withdrawn",
        ))
        payload = {
            "applicationId": application_id,
            "previousStatus": application["status"],
            "capacityReleased": released,
        }
        return payload, events

    def _unassign(self, txn: Transaction, actor: Actor, application: dict) -> Tuple[List[ServiceEvent], bool]:
        """
        Undo what approval did for this student.

        The project and its slot stay only while another approved application
        still backs them; otherwise the project is dissolved and every member
        left on it is unassigned too. Returns the events and whether the
        supervisor's slot was released.
        """
        events: List[ServiceEvent] = []
        student_id = application["studentId"]
        project = txn.get(COLLECTIONS["projects"], application["projectId"]) if application.get("projectId") else None

        if project is None:
            self.ledger.release(txn, application["supervisorId"])
            self._clear_assignment(txn, student_id)
            return events, True

        remaining = [sid for sid in project.get("studentIds") or [] if sid != student_id]
        backing = txn.query(COLLECTIONS["applications"], where=[
            ("projectId", "==", project["id"]),
            ("status", "==", ApplicationStatus.approved.value),
        ], limit=1)

        if backing:
            txn.update(COLLECTIONS["projects"], project["id"], {
                "studentIds": remaining,
                "applicationIds": [
                    aid for aid in project.get("applicationIds") or [] if aid != application["id"]
                ],
                "updatedAt": datetime.utcnow(),
            })
            self._clear_assignment(txn, student_id)
            return events, False

        events.extend(teardown_co_supervision(txn, actor, project, self.ledger, reason="project_withdrawn"))
        txn.delete(COLLECTIONS["projects"], project["id"])
        self.ledger.release(txn, project["supervisorId"])
        for member_id in [student_id] + remaining:
            self._clear_assignment(txn, member_id)

        if remaining:
            events.append(ServiceEvent(
                event_type="project_dissolved",
                actor_id=actor.id,
                details={
                    "projectId": project["id"],
                    "projectTitle": project.get("title"),
                    "supervisorId": project["supervisorId"],
                    "withdrawnStudentId": student_id,
                },
                recipients=remaining,
                notification_type="project_dissolved",
            ))
        return events, True

    def _clear_assignment(self, txn: Transaction, student_id: str) -> None:
        if txn.get(COLLECTIONS["students"], student_id) is None:
            return
        txn.update(COLLECTIONS["students"], student_id, {
            "assignedSupervisorId": None,
            "assignedProjectId": None,
            "updatedAt": datetime.utcnow(),
        })
        self._refresh_match_status(txn, student_id, force=True)

    # ============================================================
    # READS
    # ============================================================

    @service_operation("ApplicationService.get_application")
    def get_application(self, actor: Actor, application_id: str) -> dict:
        application = load(self.store, "applications", application_id, "Application")
        if application.get("studentId") != actor.id:
            require(actor, Action.REVIEW_APPLICATION, application, "Not permitted to view this application")
        return application

    @service_operation("ApplicationService.list_for_student")
    def list_for_student(self, actor: Actor, student_id: str) -> List[dict]:
        require(actor, Action.VIEW_STUDENT_RECORDS, {"id": student_id})
        return self.store.query(
            COLLECTIONS["applications"],
            where=[("studentId", "==", student_id)],
            order_by=[("dateApplied", DESCENDING)],
        )

    @service_operation("ApplicationService.list_for_supervisor")
    def list_for_supervisor(self, actor: Actor, supervisor_id: str, status=None) -> List[dict]:
        require(actor, Action.VIEW_SUPERVISOR_RECORDS, {"id": supervisor_id})
        where = [("supervisorId", "==", supervisor_id)]
        if status is not None:
            where.append(("status", "==", as_enum(ApplicationStatus, status, "status").value))
        return self.store.query(COLLECTIONS["applications"], where=where, order_by=[("dateApplied", DESCENDING)])


def project_members(project: dict, student_id: str, partner_id: Optional[str]) -> List[str]:
    members = [sid for sid in project.get("studentIds") or [] if sid in (student_id, partner_id)]
    if student_id not in members:
        members.append(student_id)
    return members


def linked_application(txn: Transaction, application: dict, statuses: List[str]) -> Optional[dict]:
    """The partner's application to the same supervisor that names this student back."""
    partner_id = application.get("partnerId")
    if not partner_id:
        return None
    found = txn.query(COLLECTIONS["applications"], where=[
        ("studentId", "==", partner_id),
        ("supervisorId", "==", application["supervisorId"]),
        ("partnerId", "==", application["studentId"]),
        ("status", "in", statuses),
    ], limit=1)
    return found[0] if found else None


def _matched_elsewhere(student: dict, supervisor_id: str) -> bool:
    assigned = student.get("assignedSupervisorId")
    return student.get("matchStatus") == MatchStatus.matched.value and assigned not in (None, supervisor_id)
