import pytest

from mentormatch.core.config import Settings
from mentormatch.db.store import InMemoryDocumentStore
from mentormatch.schemas.schemas import Actor, UserRole
from mentormatch.services.admin_service import AdminService
from mentormatch.services.application_service import ApplicationService
from mentormatch.services.capacity_ledger import CapacityLedger
from mentormatch.services.event_service import EventEmitter
from mentormatch.services.project_service import ProjectService
from mentormatch.services.student_partnership_service import StudentPartnershipService
from mentormatch.services.supervisor_partnership_service import SupervisorPartnershipService


class RecordingNotifier:
    def __init__(self):
        self.sent = []

    def notify(self, user_id, type, payload):
        self.sent.append((user_id, type, payload))

    def types_for(self, user_id):
        return [t for uid, t, _ in self.sent if uid == user_id]


class RecordingAuditor:
    def __init__(self):
        self.entries = []

    def append(self, event_type, actor_id, details):
        self.entries.append((event_type, actor_id, details))

    @property
    def event_types(self):
        return [e for e, _, _ in self.entries]


@pytest.fixture
def settings():
    return Settings(_env_file=None)


@pytest.fixture
def store():
    return InMemoryDocumentStore()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def auditor():
    return RecordingAuditor()


@pytest.fixture
def emitter(notifier, auditor):
    return EventEmitter(notifier, auditor)


@pytest.fixture
def ledger(store, emitter, settings):
    return CapacityLedger(store, emitter, settings)


@pytest.fixture
def projects(store, emitter, settings, ledger):
    return ProjectService(store, emitter, settings, ledger)


@pytest.fixture
def applications(store, emitter, settings, ledger, projects):
    return ApplicationService(store, emitter, settings, ledger=ledger, projects=projects)


@pytest.fixture
def student_partnerships(store, emitter, settings):
    return StudentPartnershipService(store, emitter, settings)


@pytest.fixture
def supervisor_partnerships(store, emitter, settings, ledger):
    return SupervisorPartnershipService(store, emitter, settings, ledger=ledger)


@pytest.fixture
def admin_service(store, emitter, settings, ledger):
    return AdminService(store, emitter, settings, ledger=ledger)


@pytest.fixture
def admin():
    return Actor(id="admin-1", role=UserRole.admin)


@pytest.fixture
def add_student(store):
    def _add(student_id, **fields):
        doc = {
            "fullName": f"Student {student_id}",
            "email": f"{student_id}@uni.test",
            "skills": ["python"],
            "interests": ["ml"],
            "matchStatus": "unmatched",
            "assignedSupervisorId": None,
            "partnerId": None,
            "partnershipStatus": "none",
        }
        doc.update(fields)
        store.create("students", doc, doc_id=student_id)
        return Actor(id=student_id, role=UserRole.student)
    return _add


@pytest.fixture
def add_supervisor(store):
    def _add(supervisor_id, current=0, maximum=5, **fields):
        doc = {
            "fullName": f"Dr. {supervisor_id}",
            "email": f"{supervisor_id}@uni.test",
            "department": "Computer Science",
            "currentCapacity": current,
            "maxCapacity": maximum,
            "availabilityStatus": "available",
            "coSupervisorId": None,
            "isActive": True,
        }
        doc.update(fields)
        store.create("supervisors", doc, doc_id=supervisor_id)
        return Actor(id=supervisor_id, role=UserRole.supervisor)
    return _add


@pytest.fixture
def add_project(store):
    def _add(project_id, supervisor_id, student_ids=("s1",), **fields):
        doc = {
            "supervisorId": supervisor_id,
            "supervisorName": f"Dr. {supervisor_id}",
            "coSupervisorId": None,
            "coSupervisorName": None,
            "studentIds": list(student_ids),
            "applicationIds": [],
            "title": "Traffic forecasting with graph networks",
            "status": "approved",
            "projectCode": None,
            "deadline": None,
        }
        doc.update(fields)
        store.create("projects", doc, doc_id=project_id)
        return project_id
    return _add


@pytest.fixture
def content():
    return {
        "project_title": "Traffic forecasting with graph networks",
        "project_description": "Predict city congestion from sensor data using spatio-temporal GNNs.",
        "is_own_topic": True,
        "has_partner": False,
    }
