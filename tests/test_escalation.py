from sqlalchemy.exc import SQLAlchemyError

from conftest import backdate, proof
from extensions import db
from models import Complaint, Notification
from utils import escalation_agent
from utils.escalation_agent import run_escalation_sweep
from utils.workflow import citizen_decision, get_timeline, request_resolution, update_status


def test_stale_complaint_is_escalated_once(make_complaint):
    complaint = backdate(make_complaint(), hours=49)

    result = run_escalation_sweep()

    assert result == {"escalated_count": 1, "errors": []}
    assert complaint.is_overdue is True
    assert complaint.is_escalated is True
    assert complaint.escalation_triggered is True
    assert complaint.escalated_at is not None
    assert complaint.priority == "high"
    assert complaint.status == "submitted"
    last = get_timeline(complaint.id)[-1]
    assert last.activity_type == "admin_updated"
    assert last.actor_id == "system"
    assert last.meta["reason"] == "48h SLA Breach"
    assert last.note == "Auto-escalated to City Admin"

    assert run_escalation_sweep()["escalated_count"] == 0
    assert len(get_timeline(complaint.id)) == 2


def test_recent_complaint_is_not_escalated(make_complaint):
    complaint = backdate(make_complaint(), hours=47)

    assert run_escalation_sweep()["escalated_count"] == 0
    assert complaint.escalation_triggered is False


def test_only_open_statuses_escalate(make_complaint):
    in_review = make_complaint(title="In review")
    update_status(in_review.id, "official-1", "official", "in_review")
    pending = make_complaint(title="Pending")
    request_resolution(pending.id, "official-1", proof())
    reopened = make_complaint(title="Reopened")
    request_resolution(reopened.id, "official-1", proof())
    citizen_decision(reopened.id, "citizen-1", "reopen", "Still leaking")
    for complaint in (in_review, pending, reopened):
        backdate(complaint, hours=72)

    result = run_escalation_sweep()

    assert result["escalated_count"] == 1
    assert reopened.escalation_triggered is True
    assert in_review.escalation_triggered is False
    assert pending.escalation_triggered is False


def test_escalation_never_lowers_priority(make_complaint):
    complaint = backdate(make_complaint(priority="critical"), hours=50)

    run_escalation_sweep()

    assert complaint.priority == "critical"
    assert "priority" not in get_timeline(complaint.id)[-1].meta["updates"]


def test_failure_on_one_complaint_does_not_block_others(make_complaint, monkeypatch):
    bad = backdate(make_complaint(title="Bad row"), hours=60)
    good = backdate(make_complaint(title="Good row"), hours=55)
    bad_id, good_id = bad.id, good.id
    real_log_activity = escalation_agent.log_activity

    def flaky(complaint, *args, **kwargs):
        if complaint.id == bad_id:
            raise SQLAlchemyError("database is locked")
        return real_log_activity(complaint, *args, **kwargs)

    monkeypatch.setattr(escalation_agent, "log_activity", flaky)

    result = run_escalation_sweep()

    assert result["escalated_count"] == 1
    assert [e["complaint_id"] for e in result["errors"]] == [bad_id]
    assert db.session.get(Complaint, good_id).escalation_triggered is True
    assert db.session.get(Complaint, bad_id).escalation_triggered is False


def test_unexpected_error_is_collected_and_sweep_continues(make_complaint, monkeypatch):
    bad = backdate(make_complaint(title="Bad row"), hours=60)
    good = backdate(make_complaint(title="Good row"), hours=55)
    bad_id, good_id = bad.id, good.id
    real_log_activity = escalation_agent.log_activity

    def flaky(complaint, *args, **kwargs):
        if complaint.id == bad_id:
            raise ValueError("boom")
        return real_log_activity(complaint, *args, **kwargs)

    monkeypatch.setattr(escalation_agent, "log_activity", flaky)

    result = run_escalation_sweep()

    assert result["escalated_count"] == 1
    assert result["errors"] == [{"complaint_id": bad_id, "error": "boom"}]
    assert db.session.get(Complaint, good_id).escalation_triggered is True
    assert db.session.get(Complaint, bad_id).escalation_triggered is False


def test_superadmin_reset_allows_re_escalation(make_complaint):
    complaint = backdate(make_complaint(), hours=49)
    run_escalation_sweep()

    update_status(
        complaint.id,
        "root",
        "superadmin",
        fields={"escalation_triggered": False, "is_escalated": False, "is_overdue": False},
    )

    assert run_escalation_sweep()["escalated_count"] == 1


def test_escalation_notifies_city_admin(make_complaint):
    complaint = backdate(make_complaint(), hours=49)

    run_escalation_sweep()

    recipients = {
        n.recipient
        for n in Notification.query.filter_by(complaint_id=complaint.id, event_type="complaint.escalated").all()
    }
    assert recipients == {"citizen-1", "role:city_admin"}


def test_cli_command_reports_count(app, make_complaint):
    backdate(make_complaint(), hours=49)

    result = app.test_cli_runner().invoke(args=["escalation-run"])

    assert result.exit_code == 0
    assert "Escalated 1 complaint(s)" in result.output
