from datetime import datetime

import pytest

from mentormatch.core.config import Settings
from mentormatch.services.admin_service import AdminService


def _approved(store, app_id, student_id, supervisor_id, project_id=None):
    store.create("applications", {
        "studentId": student_id,
        "supervisorId": supervisor_id,
        "status": "approved",
        "projectId": project_id,
        "dateApplied": datetime(2026, 3, 1),
    }, doc_id=app_id)


def test_repair_match_status_fixes_then_is_idempotent(store, admin_service, admin, add_student, add_supervisor):
    add_supervisor("sup-1")
    add_student("s1", matchStatus="pending")
    add_student("s2", matchStatus="matched", assignedSupervisorId="sup-1")
    add_student("s3")
    _approved(store, "a1", "s1", "sup-1", project_id="p1")
    _approved(store, "a2", "s2", "sup-1")

    first = admin_service.repair_match_status(admin)
    second = admin_service.repair_match_status(admin)

    assert first.success
    assert first.data["fixed"] == 1
    assert first.data["alreadyCorrect"] == 1
    assert first.data["details"][0]["previousStatus"] == "pending"
    student = store.get("students", "s1")
    assert student["matchStatus"] == "matched"
    assert student["assignedSupervisorId"] == "sup-1"
    assert student["assignedProjectId"] == "p1"
    assert store.get("students", "s3")["matchStatus"] == "unmatched"
    assert second.data["fixed"] == 0
    assert second.data["batches"] == 0


def test_repair_writes_in_bounded_batches(store, emitter, add_student, add_supervisor, admin):
    service = AdminService(store, emitter, Settings(_env_file=None, batch_size=2))
    add_supervisor("sup-1")
    for n in range(5):
        add_student(f"s{n}")
        _approved(store, f"a{n}", f"s{n}", "sup-1")

    result = service.repair_match_status(admin)

    assert result.data["fixed"] == 5
    assert result.data["batches"] == 3
    assert all(s["matchStatus"] == "matched" for s in store.query("students"))


def test_maintenance_requires_admin(admin_service, add_supervisor):
    supervisor = add_supervisor("sup-1")

    assert admin_service.repair_match_status(supervisor).error_kind == "forbidden"
    assert admin_service.reconcile_capacities(supervisor).error_kind == "forbidden"
    assert admin_service.update_project_deadlines(
        supervisor, {"2026-1-C-01": datetime(2026, 6, 1)}
    ).error_kind == "forbidden"


def test_reconcile_counts_led_and_co_supervised_projects(
    store, admin_service, admin, add_supervisor, add_project, auditor
):
    add_supervisor("sup-1", current=0, maximum=5)
    add_supervisor("sup-2", current=4, maximum=5)
    add_supervisor("sup-3", current=1, maximum=1)
    add_project("p1", "sup-1", coSupervisorId="sup-2")
    add_project("p2", "sup-1")
    add_project("p3", "sup-3")
    add_project("p4", "sup-3")

    result = admin_service.reconcile_capacities(admin)

    assert result.success
    assert store.get("supervisors", "sup-1")["currentCapacity"] == 2
    assert store.get("supervisors", "sup-2")["currentCapacity"] == 1
    assert store.get("supervisors", "sup-3")["currentCapacity"] == 1
    assert result.data["overCapacity"] == [{"supervisorId": "sup-3", "load": 2, "maxCapacity": 1}]
    assert "maintenance_run" in auditor.event_types


def test_reconcile_twice_writes_nothing_the_second_time(admin_service, admin, add_supervisor, add_project):
    add_supervisor("sup-1", current=3)
    add_project("p1", "sup-1")

    admin_service.reconcile_capacities(admin)
    again = admin_service.reconcile_capacities(admin)

    assert again.data["updated"] == 0


def test_update_project_deadlines_by_code(store, admin_service, admin, add_supervisor, add_project):
    add_supervisor("sup-1")
    add_project("p1", "sup-1", projectCode="2026-1-C-01")
    add_project("p2", "sup-1", projectCode="2026-1-C-02")
    deadline = datetime(2026, 6, 30, 17, 0)

    first = admin_service.update_project_deadlines(admin, {
        "2026-1-C-01": deadline,
        "2026-1-C-02": deadline,
        "2026-1-C-99": deadline,
    })
    second = admin_service.update_project_deadlines(admin, {"2026-1-C-01": deadline})

    assert first.data["updated"] == 2
    assert first.data["notFound"] == ["2026-1-C-99"]
    assert store.get("projects", "p1")["deadline"] == deadline
    assert second.data["updated"] == 0
    assert second.data["unchanged"] == 1


@pytest.mark.parametrize("deadlines,field", [
    ({}, "deadlines"),
    ({"2026-1-C-01": "next friday"}, "deadlines.2026-1-C-01"),
])
def test_update_project_deadlines_validates_input(admin_service, admin, deadlines, field):
    result = admin_service.update_project_deadlines(admin, deadlines)

    assert result.error_kind == "validation_error"
    assert result.error.field == field
