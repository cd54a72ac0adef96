"""Public transparency feed with integrity hashes, and aggregate statistics."""
from __future__ import annotations

import hashlib
import json
from datetime import datetime
from typing import Any, Dict, List, Optional

from flask import current_app
from sqlalchemy import func

from extensions import db
from models import COMPLAINT_STATUSES, Complaint

OPEN_STATUSES = ("submitted", "in_review", "in_progress", "reopened", "pending_verification")


def hash_record(payload: Dict[str, Any]) -> str:
    normalized = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()


def public_audit_feed(limit: Optional[int] = None) -> List[Dict[str, Any]]:
    """Most recently updated complaints, anonymous ones exposed by display id only."""
    default_limit = int(current_app.config.get("PUBLIC_FEED_LIMIT", 50))
    limit = max(1, min(int(limit or default_limit), default_limit))
    complaints = Complaint.query.order_by(Complaint.updated_at.desc()).limit(limit).all()
    feed = []
    for complaint in complaints:
        entry = complaint.public_payload()
        entry["hash"] = hash_record(entry)
        feed.append(entry)
    return feed


def _resolution_hours(complaint: Complaint) -> Optional[float]:
    resolved_at = None
    for activity in complaint.activities:
        if (activity.meta or {}).get("newStatus") == "resolved":
            resolved_at = activity.timestamp
    if not resolved_at or not complaint.created_at:
        return None
    return max(0.0, (resolved_at - complaint.created_at).total_seconds() / 3600)


def public_stats(now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or datetime.utcnow()
    counts = dict(db.session.query(Complaint.status, func.count(Complaint.id)).group_by(Complaint.status).all())
    by_status = {status: counts.get(status, 0) for status in COMPLAINT_STATUSES}
    total = sum(by_status.values())
    by_category = {
        category: count
        for category, count in db.session.query(Complaint.category, func.count(Complaint.id))
        .group_by(Complaint.category)
        .all()
    }
    start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)
    created_today = Complaint.query.filter(Complaint.created_at >= start_of_day).count()

    hours = [
        h
        for h in (_resolution_hours(c) for c in Complaint.query.filter(Complaint.status == "resolved").all())
        if h is not None
    ]
    escalated = Complaint.query.filter(Complaint.is_escalated.is_(True)).count()
    return {
        "total": total,
        "open": sum(by_status[s] for s in OPEN_STATUSES),
        "resolved": by_status["resolved"],
        "createdToday": created_today,
        "byStatus": by_status,
        "byCategory": by_category,
        "escalated": escalated,
        "reopenedTotal": int(db.session.query(func.coalesce(func.sum(Complaint.times_reopened), 0)).scalar() or 0),
        "averageResolutionHours": round(sum(hours) / len(hours), 2) if hours else None,
        "resolutionRate": round(by_status["resolved"] / total, 4) if total else 0.0,
        "generatedAt": now.isoformat(),
    }
