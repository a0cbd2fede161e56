from datetime import datetime

import pytest

from mentormatch.schemas.schemas import Actor, ProjectStatus, UserRole
from mentormatch.services.project_service import (
    TRANSITION_EFFECTS,
    generate_project_code,
    semester_of,
    teardown_co_supervision,
)


def test_project_code_format():
    assert generate_project_code(2026, 1, "Computer Science", 3) == "2026-1-C-03"
    assert generate_project_code(2026, 2, "", 12) == "2026-2-X-12"


@pytest.mark.parametrize("month,semester", [(9, 1), (1, 1), (3, 2), (7, 2)])
def test_semester_of(month, semester):
    assert semester_of(datetime(2026, month, 1)) == semester


def test_codes_are_sequenced_per_prefix(store, projects, add_supervisor):
    add_supervisor("sup-1")

    def _create(txn):
        supervisor = txn.get("supervisors", "sup-1")
        first = projects.create_for_application(txn, {"id": "a1", "projectTitle": "One"}, supervisor, ["s1"])
        second = projects.create_for_application(txn, {"id": "a2", "projectTitle": "Two"}, supervisor, ["s2"])
        return first["projectCode"], second["projectCode"]

    first_code, second_code = store.run_transaction(_create)

    assert first_code.endswith("-C-01")
    assert second_code.endswith("-C-02")


def test_status_moves_forward_one_step_at_a_time(store, projects, add_supervisor, add_project):
    supervisor = add_supervisor("sup-1")
    add_project("p1", "sup-1", status="pending_approval")

    assert projects.change_status(supervisor, "p1", "in_progress").error_kind == "invalid_transition"
    assert projects.change_status(supervisor, "p1", "approved").success
    assert projects.change_status(supervisor, "p1", "pending_approval").error_kind == "invalid_transition"
    assert projects.change_status(supervisor, "p1", "in_progress").success
    assert projects.change_status(supervisor, "p1", "completed").success
    assert projects.change_status(supervisor, "p1", "in_progress").error_kind == "invalid_transition"

    project = store.get("projects", "p1")
    assert project["status"] == "completed"
    assert project["completedAt"] is not None


def test_students_and_strangers_cannot_change_status(projects, add_supervisor, add_project):
    add_supervisor("sup-1")
    stranger = add_supervisor("sup-2")
    add_project("p1", "sup-1", student_ids=["s1"])
    member = Actor(id="s1", role=UserRole.student)

    assert projects.change_status(stranger, "p1", "in_progress").error_kind == "forbidden"
    assert projects.change_status(member, "p1", "in_progress").error_kind == "forbidden"
    assert projects.get_project(member, "p1").success
    assert projects.get_project(stranger, "p1").error_kind == "forbidden"


def test_co_supervisor_and_admin_can_change_status(projects, admin, add_supervisor, add_project):
    add_supervisor("sup-1", coSupervisorId="sup-2")
    co = add_supervisor("sup-2", coSupervisorId="sup-1", current=1)
    add_project("p1", "sup-1", status="approved", coSupervisorId="sup-2")

    assert projects.change_status(co, "p1", "in_progress").success
    assert projects.change_status(admin, "p1", "completed").success


def test_completion_tears_down_co_supervision(store, projects, add_supervisor, add_project, notifier, auditor):
    lead = add_supervisor("sup-1", current=1, coSupervisorId="sup-2")
    add_supervisor("sup-2", current=2, coSupervisorId="sup-1")
    add_project("p1", "sup-1", status="in_progress", coSupervisorId="sup-2", coSupervisorName="Dr. sup-2")

    result = projects.change_status(lead, "p1", ProjectStatus.completed)

    assert result.success
    assert store.get("supervisors", "sup-1")["coSupervisorId"] is None
    assert store.get("supervisors", "sup-2")["coSupervisorId"] is None
    assert store.get("projects", "p1")["coSupervisorId"] is None
    assert store.get("supervisors", "sup-2")["currentCapacity"] == 1
    assert store.get("supervisors", "sup-1")["currentCapacity"] == 1
    assert notifier.types_for("sup-2") == ["co_supervision_ended"]
    assert "co_supervisor_removed" in auditor.event_types
    assert "project_status_changed" in auditor.event_types


def test_completion_effects_are_registered_on_the_edge():
    assert TRANSITION_EFFECTS[ProjectStatus.completed] == [teardown_co_supervision]
    assert ProjectStatus.in_progress not in TRANSITION_EFFECTS


def test_teardown_without_co_supervisor_is_a_no_op(store, ledger, admin, add_supervisor, add_project):
    add_supervisor("sup-1")
    add_project("p1", "sup-1")

    events = store.run_transaction(
        lambda txn: teardown_co_supervision(txn, admin, txn.get("projects", "p1"), ledger)
    )

    assert events == []
