def _request(service, requester, target_id):
    result = service.request(requester, requester.id, target_id)
    assert result.success, result.error
    return result.data["id"]


def _status(store, student_id):
    return store.get("students", student_id)["partnershipStatus"]


def test_request_marks_both_sides_pending(store, student_partnerships, add_student, notifier):
    s1 = add_student("s1")
    add_student("s2")

    request_id = _request(student_partnerships, s1, "s2")

    assert store.get("partnership_requests", request_id)["status"] == "pending"
    assert _status(store, "s1") == "pending_sent"
    assert _status(store, "s2") == "pending_received"
    assert notifier.types_for("s2") == ["partnership_request_received"]


def test_request_to_self_is_a_conflict(student_partnerships, add_student):
    s1 = add_student("s1")

    assert student_partnerships.request(s1, "s1", "s1").error_kind == "conflict"


def test_request_to_paired_student_is_a_conflict(student_partnerships, add_student):
    s1 = add_student("s1")
    add_student("s2", partnerId="s3", partnershipStatus="paired")
    add_student("s3", partnerId="s2", partnershipStatus="paired")

    assert student_partnerships.request(s1, "s1", "s2").error_kind == "conflict"


def test_duplicate_and_reverse_requests_are_conflicts(student_partnerships, add_student):
    s1 = add_student("s1")
    s2 = add_student("s2")
    _request(student_partnerships, s1, "s2")

    assert student_partnerships.request(s1, "s1", "s2").error_kind == "conflict"
    assert student_partnerships.request(s2, "s2", "s1").error_kind == "conflict"


def test_only_one_outgoing_request_at_a_time(student_partnerships, add_student):
    s1 = add_student("s1")
    add_student("s2")
    add_student("s3")
    _request(student_partnerships, s1, "s2")

    assert student_partnerships.request(s1, "s1", "s3").error_kind == "conflict"


def test_requesting_for_someone_else_is_forbidden(student_partnerships, add_student):
    add_student("s1")
    s2 = add_student("s2")

    assert student_partnerships.request(s2, "s1", "s2").error_kind == "forbidden"


def test_accept_pairs_both_and_cancels_other_pending_requests(
    store, student_partnerships, add_student, notifier
):
    s1 = add_student("s1")
    s2 = add_student("s2")
    s3 = add_student("s3")
    add_student("s5")
    main_request = _request(student_partnerships, s1, "s2")
    incoming_for_s1 = _request(student_partnerships, s3, "s1")
    outgoing_from_s2 = _request(student_partnerships, s2, "s5")

    result = student_partnerships.respond(s2, main_request, "accept")

    assert result.success
    first, second = store.get("students", "s1"), store.get("students", "s2")
    assert first["partnerId"] == "s2" and second["partnerId"] == "s1"
    assert first["partnershipStatus"] == second["partnershipStatus"] == "paired"

    assert store.get("partnership_requests", main_request)["status"] == "accepted"
    assert store.get("partnership_requests", incoming_for_s1)["status"] == "cancelled"
    assert store.get("partnership_requests", outgoing_from_s2)["status"] == "cancelled"
    assert _status(store, "s3") == "none"
    assert _status(store, "s5") == "none"
    assert "partnership_request_cancelled" in notifier.types_for("s3")
    assert "partnership_request_accepted" in notifier.types_for("s1")


def test_accept_fails_if_requester_was_paired_meanwhile(store, student_partnerships, add_student):
    s1 = add_student("s1")
    s2 = add_student("s2")
    add_student("s9")
    request_id = _request(student_partnerships, s1, "s2")
    store.update("students", "s1", {"partnerId": "s9", "partnershipStatus": "paired"})
    store.update("students", "s9", {"partnerId": "s1", "partnershipStatus": "paired"})

    result = student_partnerships.respond(s2, request_id, "accept")

    assert result.error_kind == "conflict"
    assert store.get("students", "s2")["partnerId"] is None
    assert store.get("partnership_requests", request_id)["status"] == "pending"


def test_only_target_can_respond(student_partnerships, add_student):
    s1 = add_student("s1")
    add_student("s2")
    s3 = add_student("s3")
    request_id = _request(student_partnerships, s1, "s2")

    assert student_partnerships.respond(s3, request_id, "accept").error_kind == "forbidden"
    assert student_partnerships.respond(s1, request_id, "accept").error_kind == "forbidden"


def test_responding_twice_is_already_resolved(student_partnerships, add_student):
    s1 = add_student("s1")
    s2 = add_student("s2")
    request_id = _request(student_partnerships, s1, "s2")
    student_partnerships.respond(s2, request_id, "reject")

    assert student_partnerships.respond(s2, request_id, "accept").error_kind == "already_resolved"


def test_respond_to_missing_request_is_not_found(student_partnerships, add_student):
    s2 = add_student("s2")

    assert student_partnerships.respond(s2, "missing", "accept").error_kind == "not_found"


def test_reject_returns_both_to_none(store, student_partnerships, add_student):
    s1 = add_student("s1")
    s2 = add_student("s2")
    request_id = _request(student_partnerships, s1, "s2")

    result = student_partnerships.respond(s2, request_id, "reject")

    assert result.success
    assert store.get("partnership_requests", request_id)["status"] == "rejected"
    assert _status(store, "s1") == "none"
    assert _status(store, "s2") == "none"


def test_reject_falls_back_to_remaining_incoming_request(store, student_partnerships, add_student):
    s1 = add_student("s1")
    s2 = add_student("s2")
    s3 = add_student("s3")
    rejected = _request(student_partnerships, s1, "s2")
    _request(student_partnerships, s3, "s1")

    student_partnerships.respond(s2, rejected, "reject")

    assert _status(store, "s1") == "pending_received"
    assert _status(store, "s2") == "none"
    assert _status(store, "s3") == "pending_sent"


def test_cancel_only_by_requester(store, student_partnerships, add_student):
    s1 = add_student("s1")
    s2 = add_student("s2")
    request_id = _request(student_partnerships, s1, "s2")

    assert student_partnerships.cancel(s2, request_id).error_kind == "forbidden"
    assert student_partnerships.cancel(s1, request_id).success
    assert store.get("partnership_requests", request_id)["status"] == "cancelled"
    assert _status(store, "s1") == "none"
    assert _status(store, "s2") == "none"
    assert student_partnerships.cancel(s1, request_id).error_kind == "already_resolved"


def test_unpair_twice_second_call_conflicts(store, student_partnerships, add_student):
    s1 = add_student("s1")
    s2 = add_student("s2")
    request_id = _request(student_partnerships, s1, "s2")
    student_partnerships.respond(s2, request_id, "accept")

    first = student_partnerships.unpair(s1, "s1")
    after_first = (store.get("students", "s1"), store.get("students", "s2"))
    second = student_partnerships.unpair(s1, "s1")

    assert first.success
    assert after_first[0]["partnerId"] is None and after_first[1]["partnerId"] is None
    assert after_first[0]["partnershipStatus"] == after_first[1]["partnershipStatus"] == "none"
    assert second.error_kind == "conflict"
    assert (store.get("students", "s1"), store.get("students", "s2")) == after_first


def test_unpair_keeps_application_partner_snapshot(
    store, student_partnerships, applications, add_student, add_supervisor, content
):
    s1 = add_student("s1", partnerId="s2", partnershipStatus="paired")
    add_student("s2", partnerId="s1", partnershipStatus="paired")
    add_supervisor("sup-1")
    app_id = applications.submit(s1, "s1", "sup-1", content).data["id"]

    student_partnerships.unpair(s1, "s1")

    assert store.get("applications", app_id)["partnerId"] == "s2"


def test_list_requests_splits_incoming_and_outgoing(student_partnerships, add_student):
    s1 = add_student("s1")
    add_student("s2")
    s3 = add_student("s3")
    _request(student_partnerships, s1, "s2")
    _request(student_partnerships, s3, "s1")

    result = student_partnerships.list_requests(s1, "s1")

    assert result.success
    assert [r["requesterId"] for r in result.data["incoming"]] == ["s3"]
    assert [r["targetStudentId"] for r in result.data["outgoing"]] == ["s2"]
