"""Periodic SLA escalation agent that surfaces stale complaints to city admins."""
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from extensions import db
from models import Complaint
from utils.notifications import CITY_ADMIN_RECIPIENT, notify, recipients_for
from utils.workflow import PRIORITY_RANK, SYSTEM_ACTOR, log_activity, utcnow

ESCALATION_ELIGIBLE_STATUSES = ("submitted", "in_progress", "reopened")
ESCALATION_PRIORITY = "high"


def _stale_complaint_ids(threshold: datetime) -> List[str]:
    rows = (
        Complaint.query.with_entities(Complaint.id)
        .filter(
            Complaint.status.in_(ESCALATION_ELIGIBLE_STATUSES),
            Complaint.created_at <= threshold,
            Complaint.escalation_triggered.is_(False),
        )
        .order_by(Complaint.created_at.asc())
        .all()
    )
    return [row.id for row in rows]


def _escalate(complaint: Complaint, now: datetime, sla_hours: int) -> List[str]:
    updates = ["is_overdue", "is_escalated", "escalation_triggered", "escalated_at"]
    complaint.is_overdue = True
    complaint.is_escalated = True
    complaint.escalation_triggered = True
    complaint.escalated_at = now
    if PRIORITY_RANK.get(complaint.priority, 0) < PRIORITY_RANK[ESCALATION_PRIORITY]:
        complaint.priority = ESCALATION_PRIORITY
        updates.append("priority")
    complaint.updated_at = now
    log_activity(
        complaint,
        "admin_updated",
        SYSTEM_ACTOR,
        "system",
        meta={"reason": f"{sla_hours}h SLA Breach", "updates": updates},
        note="Auto-escalated to City Admin",
        now=now,
    )
    return updates


def run_escalation_sweep(now: Optional[datetime] = None) -> Dict:
    """Escalate every eligible complaint older than the SLA exactly once.

    Each complaint is committed on its own so one failure never rolls back the
    others; failures are reported in ``errors``.
    """
    now = now or utcnow()
    sla_hours = int(current_app.config.get("SLA_ESCALATION_HOURS", 48))
    threshold = now - timedelta(hours=sla_hours)

    escalated: List[Complaint] = []
    errors: List[Dict] = []
    for complaint_id in _stale_complaint_ids(threshold):
        try:
            complaint = db.session.get(Complaint, complaint_id)
            if not complaint or complaint.escalation_triggered:
                continue
            _escalate(complaint, now, sla_hours)
            db.session.commit()
            escalated.append(complaint)
        except SQLAlchemyError as exc:
            db.session.rollback()
            errors.append({"complaint_id": complaint_id, "error": str(exc)})
            current_app.logger.warning(
                "Escalation failed for complaint",
                extra={"complaint_id": complaint_id, "error": str(exc)},
            )
        except Exception as exc:
            db.session.rollback()
            errors.append({"complaint_id": complaint_id, "error": str(exc)})
            current_app.logger.exception("Unexpected escalation error", extra={"complaint_id": complaint_id})

    for complaint in escalated:
        current_app.logger.info(
            "Complaint escalated",
            extra={"complaint_id": complaint.id, "priority": complaint.priority, "sla_hours": sla_hours},
        )
        notify(
            complaint.id,
            "complaint.escalated",
            recipients_for(complaint, CITY_ADMIN_RECIPIENT),
            message=f"Complaint {complaint.display_id} breached the {sla_hours}h SLA.",
        )
    current_app.logger.info(
        "Escalation sweep complete",
        extra={"escalated_count": len(escalated), "errors": len(errors)},
    )
    return {"escalated_count": len(escalated), "errors": errors}


def run_escalation_cycle(app) -> Dict:
    with app.app_context():
        return run_escalation_sweep()
