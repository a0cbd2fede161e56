import threading

import pytest


@pytest.fixture
def pair(add_supervisor, add_project):
    lead = add_supervisor("sup-a", current=1)
    colleague = add_supervisor("sup-b", current=2)
    add_project("proj-1", "sup-a")
    return lead, colleague


def _request(service, requester, target_id, project_id="proj-1"):
    result = service.request(requester, requester.id, target_id, project_id)
    assert result.success, result.error
    return result.data["id"]


def test_request_creates_pending_and_notifies_target(store, supervisor_partnerships, pair, notifier):
    lead, _ = pair

    request_id = _request(supervisor_partnerships, lead, "sup-b")

    request = store.get("supervisor_partnership_requests", request_id)
    assert request["status"] == "pending"
    assert request["projectId"] == "proj-1"
    assert notifier.types_for("sup-b") == ["supervisor_partnership_request_received"]


def test_only_project_supervisor_can_request(supervisor_partnerships, pair, add_supervisor):
    _, colleague = pair
    add_supervisor("sup-c")

    result = supervisor_partnerships.request(colleague, "sup-b", "sup-c", "proj-1")

    assert result.error_kind == "forbidden"


def test_project_supervisor_cannot_request_as_someone_else(supervisor_partnerships, pair, add_supervisor):
    lead, _ = pair
    add_supervisor("sup-c")

    result = supervisor_partnerships.request(lead, "sup-c", "sup-b", "proj-1")

    assert result.error_kind == "forbidden"


def test_request_to_full_supervisor_fails(supervisor_partnerships, pair, add_supervisor):
    lead, _ = pair
    add_supervisor("sup-full", current=3, maximum=3)

    result = supervisor_partnerships.request(lead, "sup-a", "sup-full", "proj-1")

    assert result.error_kind == "capacity_exceeded"


def test_request_to_self_is_a_conflict(supervisor_partnerships, pair):
    lead, _ = pair

    assert supervisor_partnerships.request(lead, "sup-a", "sup-a", "proj-1").error_kind == "conflict"


def test_accept_links_both_and_reserves_capacity(store, supervisor_partnerships, pair, notifier):
    lead, colleague = pair
    request_id = _request(supervisor_partnerships, lead, "sup-b")

    result = supervisor_partnerships.respond(colleague, request_id, "accept")

    assert result.success
    assert store.get("supervisors", "sup-a")["coSupervisorId"] == "sup-b"
    assert store.get("supervisors", "sup-b")["coSupervisorId"] == "sup-a"
    project = store.get("projects", "proj-1")
    assert project["coSupervisorId"] == "sup-b"
    assert project["coSupervisorName"] == "Dr. sup-b"
    assert store.get("supervisors", "sup-b")["currentCapacity"] == 3
    assert store.get("supervisors", "sup-a")["currentCapacity"] == 1
    assert "supervisor_partnership_request_accepted" in notifier.types_for("sup-a")


def test_accept_rechecks_capacity_inside_transaction(store, supervisor_partnerships, pair):
    lead, colleague = pair
    request_id = _request(supervisor_partnerships, lead, "sup-b")
    store.update("supervisors", "sup-b", {"currentCapacity": 5})

    result = supervisor_partnerships.respond(colleague, request_id, "accept")

    assert result.error_kind == "capacity_exceeded"
    assert store.get("supervisors", "sup-b")["coSupervisorId"] is None
    assert store.get("supervisors", "sup-a")["coSupervisorId"] is None
    assert store.get("projects", "proj-1")["coSupervisorId"] is None
    assert store.get("supervisor_partnership_requests", request_id)["status"] == "pending"


def test_accept_when_already_partnered_is_a_conflict(store, supervisor_partnerships, pair, add_supervisor):
    lead, colleague = pair
    add_supervisor("sup-z")
    request_id = _request(supervisor_partnerships, lead, "sup-b")
    store.update("supervisors", "sup-b", {"coSupervisorId": "sup-z"})
    store.update("supervisors", "sup-z", {"coSupervisorId": "sup-b"})

    result = supervisor_partnerships.respond(colleague, request_id, "accept")

    assert result.error_kind == "conflict"
    assert store.get("supervisors", "sup-a")["coSupervisorId"] is None


def test_reject_and_cancel(store, supervisor_partnerships, pair):
    lead, colleague = pair
    rejected = _request(supervisor_partnerships, lead, "sup-b")

    assert supervisor_partnerships.respond(lead, rejected, "reject").error_kind == "forbidden"
    assert supervisor_partnerships.respond(colleague, rejected, "reject").success
    assert store.get("supervisor_partnership_requests", rejected)["status"] == "rejected"

    cancelled = _request(supervisor_partnerships, lead, "sup-b")
    assert supervisor_partnerships.cancel(colleague, cancelled).error_kind == "forbidden"
    assert supervisor_partnerships.cancel(lead, cancelled).success
    assert supervisor_partnerships.cancel(lead, cancelled).error_kind == "already_resolved"


def test_unpair_clears_links_and_releases_slot(store, supervisor_partnerships, pair):
    lead, colleague = pair
    request_id = _request(supervisor_partnerships, lead, "sup-b")
    supervisor_partnerships.respond(colleague, request_id, "accept")

    first = supervisor_partnerships.unpair(colleague, "sup-b")
    second = supervisor_partnerships.unpair(colleague, "sup-b")

    assert first.success
    assert store.get("supervisors", "sup-a")["coSupervisorId"] is None
    assert store.get("supervisors", "sup-b")["coSupervisorId"] is None
    assert store.get("projects", "proj-1")["coSupervisorId"] is None
    assert store.get("supervisors", "sup-b")["currentCapacity"] == 2
    assert second.error_kind == "conflict"


def test_partners_with_capacity(supervisor_partnerships, pair, add_supervisor):
    lead, _ = pair
    add_supervisor("sup-full", current=4, maximum=4)
    add_supervisor("sup-paired", coSupervisorId="sup-x")
    add_supervisor("sup-inactive", isActive=False)
    add_supervisor("sup-free", current=0, maximum=6)

    result = supervisor_partnerships.get_partners_with_capacity(lead, "sup-a", "proj-1")

    assert result.success
    assert [p["supervisor_id"] for p in result.data] == ["sup-free", "sup-b"]
    assert result.data[0]["remaining_capacity"] == 6
    assert result.data[1]["availability_status"] == "available"


def test_partners_with_capacity_unknown_project(supervisor_partnerships, pair):
    lead, _ = pair

    result = supervisor_partnerships.get_partners_with_capacity(lead, "sup-a", "nope")

    assert result.error_kind == "not_found"


def test_concurrent_accepts_reserve_capacity_once(store, supervisor_partnerships, pair):
    lead, colleague = pair
    request_id = _request(supervisor_partnerships, lead, "sup-b")
    barrier = threading.Barrier(2)
    results = []

    def accept():
        barrier.wait()
        results.append(supervisor_partnerships.respond(colleague, request_id, "accept"))

    threads = [threading.Thread(target=accept) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sorted(result.success for result in results) == [False, True]
    assert [result.error_kind for result in results if not result.success] == ["already_resolved"]
    assert store.get("supervisors", "sup-b")["currentCapacity"] == 3
    assert store.get("projects", "proj-1")["coSupervisorId"] == "sup-b"
