from datetime import timedelta

import pytest

from conftest import proof
from extensions import db
from models import ComplaintActivity, ModerationEvent
from utils import workflow
from utils.trust import trust_score
from utils.workflow import (
    AuthorizationError,
    NotFoundError,
    ValidationError,
    add_note,
    citizen_decision,
    classify_complaint,
    get_complaint,
    get_timeline,
    list_complaints,
    list_notes,
    normalize_role,
    reject_complaint,
    request_resolution,
    toggle_upvote,
    update_status,
)

MATCH = {"ai_score": 0.9, "ai_verdict": "LIKELY_MATCH", "ai_reason": "Same stretch, pothole filled."}


def _types(complaint):
    return [a.activity_type for a in get_timeline(complaint.id)]


def test_create_complaint_starts_submitted_with_created_activity(make_complaint):
    complaint = make_complaint()

    assert complaint.status == "submitted"
    assert complaint.display_id.startswith("CMP-")
    assert complaint.times_reopened == 0
    assert complaint.verification is None
    timeline = get_timeline(complaint.id)
    assert [a.activity_type for a in timeline] == ["created"]
    assert timeline[0].actor_id == "citizen-1"
    assert timeline[0].meta["initialStatus"] == "submitted"
    assert timeline[0].meta["locationTagged"] is True


def test_anonymous_complaint_hides_owner(make_complaint):
    complaint = make_complaint(user_id=None, is_anonymous=True)

    assert complaint.display_id.startswith("ANON-")
    assert complaint.user_id is None
    assert complaint.to_payload()["userId"] is None


@pytest.mark.parametrize(
    "overrides",
    [
        {"title": ""},
        {"description": "   "},
        {"user_id": None},
        {"location": {}},
        {"category": "Weather"},
        {"source": "fax"},
    ],
)
def test_create_complaint_rejects_invalid_input(make_complaint, overrides):
    with pytest.raises(ValidationError):
        make_complaint(**overrides)


def test_create_complaint_normalizes_category_case(make_complaint):
    complaint = make_complaint(category="public safety", source="whatsapp")

    assert complaint.category == "Public Safety"
    assert complaint.source == "whatsapp"


def test_happy_path_resolution_verified_by_citizen(make_complaint, ai_verdict):
    ai_verdict["result"] = MATCH
    complaint = make_complaint()

    request_resolution(complaint.id, "official-1", proof())

    assert complaint.status == "pending_verification"
    assert complaint.resolver_id == "official-1"
    assert complaint.resolution_round == 1
    assert complaint.verification_deadline - complaint.proof_uploaded_at == timedelta(hours=48)
    assert complaint.verification == {
        "aiScore": 0.9,
        "aiVerdict": "LIKELY_MATCH",
        "aiReason": "Same stretch, pothole filled.",
        "needsCommunityVote": False,
    }

    citizen_decision(complaint.id, "citizen-1", "verify")

    assert complaint.status == "resolved"
    assert complaint.verification_deadline is None
    assert _types(complaint) == ["created", "admin_resolved", "citizen_verified"]


def test_resolution_without_attachment_is_rejected_without_side_effects(make_complaint):
    complaint = make_complaint()

    with pytest.raises(ValidationError) as excinfo:
        request_resolution(complaint.id, "official-1", {"description": "done"})

    assert excinfo.value.code == "PROOF_REQUIRED"
    assert get_complaint(complaint.id).status == "submitted"
    assert _types(complaint) == ["created"]


def test_resolution_requires_description(make_complaint):
    complaint = make_complaint()

    with pytest.raises(ValidationError):
        request_resolution(complaint.id, "official-1", proof(description=""))


def test_resolution_not_allowed_from_rejected(make_complaint):
    complaint = make_complaint()
    reject_complaint(complaint.id, "official-1", "official", "Duplicate of an existing ticket")

    with pytest.raises(ValidationError) as excinfo:
        request_resolution(complaint.id, "official-1", proof())

    assert excinfo.value.code == "ILLEGAL_TRANSITION"


def test_citizen_cannot_request_resolution(make_complaint):
    complaint = make_complaint()

    with pytest.raises(AuthorizationError):
        request_resolution(complaint.id, "citizen-1", proof(), actor_role="citizen")


def test_ai_failure_leaves_verification_unset(make_complaint, ai_verdict):
    ai_verdict["error"] = "timeout"
    complaint = make_complaint()

    request_resolution(complaint.id, "official-1", proof())

    assert ai_verdict["calls"] == 1
    assert complaint.status == "pending_verification"
    assert complaint.verification is None
    assert complaint.needs_community_vote is False
    citizen_decision(complaint.id, "citizen-1", "verify")
    assert complaint.status == "resolved"


def test_citizen_reopen_records_reason_and_penalizes_resolver(make_complaint):
    complaint = make_complaint()
    request_resolution(complaint.id, "official-1", proof())

    citizen_decision(complaint.id, "citizen-1", "reopen", "still broken")

    assert complaint.status == "reopened"
    assert complaint.times_reopened == 1
    assert complaint.reopen_reason == "still broken"
    last = get_timeline(complaint.id)[-1]
    assert last.activity_type == "citizen_reopened"
    assert last.meta["reason"] == "still broken"
    assert trust_score("official-1") == 90


def test_reopen_from_resolved_and_rework(make_complaint):
    complaint = make_complaint()
    request_resolution(complaint.id, "official-1", proof())
    citizen_decision(complaint.id, "citizen-1", "verify")

    citizen_decision(complaint.id, "citizen-1", "reopen", "Broke again after rain")
    update_status(complaint.id, "official-1", "official", "in_progress")
    request_resolution(complaint.id, "official-1", proof())

    assert complaint.status == "pending_verification"
    assert complaint.resolution_round == 2
    assert complaint.times_reopened == 1


def test_reopen_requires_reason(make_complaint):
    complaint = make_complaint()
    request_resolution(complaint.id, "official-1", proof())

    with pytest.raises(ValidationError):
        citizen_decision(complaint.id, "citizen-1", "reopen", "  ")


def test_only_owner_can_decide(make_complaint):
    complaint = make_complaint()
    request_resolution(complaint.id, "official-1", proof())

    with pytest.raises(AuthorizationError):
        citizen_decision(complaint.id, "someone-else", "verify")


def test_anonymous_complaint_has_no_owner_decision(make_complaint):
    complaint = make_complaint(user_id=None, is_anonymous=True)
    request_resolution(complaint.id, "official-1", proof())

    with pytest.raises(AuthorizationError):
        citizen_decision(complaint.id, "citizen-1", "verify")


def test_verify_requires_pending_verification(make_complaint):
    complaint = make_complaint()

    with pytest.raises(ValidationError) as excinfo:
        citizen_decision(complaint.id, "citizen-1", "verify")

    assert excinfo.value.code == "ILLEGAL_TRANSITION"


def test_duplicate_proof_is_rejected_and_penalized(make_complaint):
    first = make_complaint()
    second = make_complaint(title="Streetlight out")
    request_resolution(first.id, "official-1", proof(content_hash="abc123"))

    with pytest.raises(ValidationError) as excinfo:
        request_resolution(second.id, "official-1", proof(content_hash="abc123"))

    assert excinfo.value.code == "DUPLICATE_PROOF"
    assert get_complaint(second.id).status == "submitted"
    assert ModerationEvent.query.filter_by(official_id="official-1", event_type="DUPLICATE_PROOF").count() == 1
    assert trust_score("official-1") == 80


def test_low_trust_forces_community_vote(make_complaint, ai_verdict):
    from utils.trust import record_penalty

    for _ in range(3):
        record_penalty("official-9", "DUPLICATE_PROOF")
    db.session.commit()
    ai_verdict["result"] = MATCH
    complaint = make_complaint()

    request_resolution(complaint.id, "official-9", proof())

    assert trust_score("official-9") == 40
    assert complaint.needs_community_vote is True


def test_update_status_rejects_immutable_and_managed_fields(make_complaint):
    complaint = make_complaint()

    with pytest.raises(ValidationError) as immutable:
        update_status(complaint.id, "official-1", "official", fields={"user_id": "x"})
    with pytest.raises(ValidationError) as managed:
        update_status(complaint.id, "official-1", "official", fields={"verificationDeadline": None})

    assert immutable.value.code == "IMMUTABLE_FIELD"
    assert managed.value.code == "MANAGED_FIELD"


@pytest.mark.parametrize("target", ["resolved", "pending_verification", "reopened", "flagged"])
def test_update_status_refuses_dedicated_targets(make_complaint, target):
    complaint = make_complaint()

    with pytest.raises(ValidationError) as excinfo:
        update_status(complaint.id, "official-1", "official", target)

    assert excinfo.value.code == "REQUIRES_DEDICATED_OPERATION"
    assert complaint.status == "submitted"


def test_update_status_requires_official_role(make_complaint):
    complaint = make_complaint()

    with pytest.raises(AuthorizationError):
        update_status(complaint.id, "citizen-1", "citizen", "in_progress")


def test_update_status_assigns_and_logs_changes(make_complaint):
    complaint = make_complaint()

    update_status(
        complaint.id,
        "official-1",
        "ward_admin",
        "in_review",
        fields={"assignedTo": "official-2", "priority": "HIGH"},
    )

    assert complaint.status == "in_review"
    assert complaint.assigned_to == "official-2"
    assert complaint.priority == "high"
    last = get_timeline(complaint.id)[-1]
    assert last.activity_type == "admin_updated"
    assert last.actor_role == "official"
    assert set(last.meta["updates"]) == {"assigned_to", "priority", "status"}


def test_update_status_without_changes_is_a_no_op(make_complaint):
    complaint = make_complaint()

    update_status(complaint.id, "official-1", "official", "submitted")

    assert _types(complaint) == ["created"]


def test_escalation_latch_override_is_superadmin_only(make_complaint):
    complaint = make_complaint()

    with pytest.raises(AuthorizationError):
        update_status(complaint.id, "official-1", "official", fields={"escalation_triggered": False})
    update_status(complaint.id, "root", "superadmin", fields={"isOverdue": True})

    assert complaint.is_overdue is True


def test_rejected_is_terminal(make_complaint):
    complaint = make_complaint()
    reject_complaint(complaint.id, "official-1", "official", "Outside municipal limits")

    with pytest.raises(ValidationError) as excinfo:
        update_status(complaint.id, "root", "superadmin", "in_progress")

    assert excinfo.value.code == "ILLEGAL_TRANSITION"
    assert get_timeline(complaint.id)[-1].meta["reason"] == "Outside municipal limits"


def test_officials_cannot_edit_rejected_complaint(make_complaint):
    complaint = make_complaint()
    reject_complaint(complaint.id, "official-1", "official", "Duplicate of CMP-1")

    with pytest.raises(AuthorizationError) as excinfo:
        update_status(complaint.id, "official-2", "ward_admin", fields={"category": "Water"})

    assert excinfo.value.code == "ROLE_NOT_ALLOWED"
    assert complaint.category == "Roads"


def test_reject_requires_reason(make_complaint):
    complaint = make_complaint()

    with pytest.raises(ValidationError):
        reject_complaint(complaint.id, "official-1", "official", "")


def test_unknown_complaint_raises_not_found(app):
    with pytest.raises(NotFoundError):
        get_complaint("does-not-exist")


def test_activity_sequence_and_timestamps_are_monotonic(make_complaint):
    complaint = make_complaint()
    update_status(complaint.id, "official-1", "official", "in_progress")
    request_resolution(complaint.id, "official-1", proof())
    citizen_decision(complaint.id, "citizen-1", "reopen", "not done")
    update_status(complaint.id, "official-1", "official", "in_progress")

    timeline = get_timeline(complaint.id)
    assert [a.sequence for a in timeline] == [1, 2, 3, 4, 5]
    stamps = [a.timestamp for a in timeline]
    assert stamps == sorted(stamps)
    assert ComplaintActivity.query.filter_by(complaint_id=complaint.id).count() == 5


def test_normalize_role_maps_admin_variants():
    assert normalize_role("ward_admin") == "official"
    assert normalize_role("City_Admin") == "official"
    assert normalize_role("superadmin") == "superadmin"
    with pytest.raises(ValidationError):
        normalize_role("mayor")


def test_toggle_upvote(make_complaint):
    complaint = make_complaint()

    toggle_upvote(complaint.id, "neighbour-1")
    toggle_upvote(complaint.id, "neighbour-2")
    assert complaint.upvotes == 2
    toggle_upvote(complaint.id, "neighbour-1")

    assert complaint.upvotes == 1
    assert complaint.upvoted_by == ["neighbour-2"]


def test_notes_filter_public(make_complaint):
    complaint = make_complaint()
    add_note(complaint.id, "official-1", "official", "Crew scheduled for Monday")
    add_note(complaint.id, "official-1", "official", "Contractor is slow", is_public=False)

    assert len(list_notes(complaint.id)) == 2
    assert [n.content for n in list_notes(complaint.id, public_only=True)] == ["Crew scheduled for Monday"]
    with pytest.raises(ValidationError):
        add_note(complaint.id, "official-1", "official", "")


def test_classify_stores_summary(make_complaint, monkeypatch):
    monkeypatch.setattr(
        workflow,
        "classify_complaint_text",
        lambda title, description: {"category": "Roads", "priority": "high", "summary": "Pothole at bus stop."},
    )
    complaint = make_complaint()

    result = classify_complaint(complaint.id)

    assert result["priority"] == "high"
    assert complaint.ai_summary == "Pothole at bus stop."
    assert _types(complaint) == ["created", "ai_analyzed"]
    assert complaint.status == "submitted"


def test_classify_failure_returns_none(make_complaint, monkeypatch):
    from utils.ai_vision import AIVisionError

    def boom(title, description):
        raise AIVisionError("GEMINI_API_KEY is not configured")

    monkeypatch.setattr(workflow, "classify_complaint_text", boom)
    complaint = make_complaint()

    assert classify_complaint(complaint.id) is None
    assert _types(complaint) == ["created"]


def test_list_complaints_filters(make_complaint):
    make_complaint()
    other = make_complaint(title="Water leak", category="Water", location={"address": "Ring Road", "wardCode": "W9"})
    update_status(other.id, "official-1", "official", "in_progress")

    assert [c.id for c in list_complaints({"status": "in_progress"})] == [other.id]
    assert [c.id for c in list_complaints({"ward": "W9"})] == [other.id]
    assert len(list_complaints({"category": "Roads"})) == 1
    with pytest.raises(ValidationError):
        list_complaints({"status": "closed"})
