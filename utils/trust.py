"""Deterministic official trust score computation."""
from __future__ import annotations

from typing import Dict

from sqlalchemy import func

from extensions import db
from models import ModerationEvent

BASE_SCORE = 100
EVENT_PENALTIES = {"DUPLICATE_PROOF": 20, "CITIZEN_REOPEN": 10, "COMMUNITY_REOPEN": 10}


def compute_trust_score(official_id: str | None) -> Dict:
    if not official_id:
        return {"score": BASE_SCORE, "penalties": {}, "explanation": "No official on record."}

    rows = (
        db.session.query(ModerationEvent.event_type, func.count(ModerationEvent.id))
        .filter(ModerationEvent.official_id == official_id)
        .group_by(ModerationEvent.event_type)
        .all()
    )
    counts = {event_type: count for event_type, count in rows}
    penalties = {
        event_type: counts.get(event_type, 0) * weight
        for event_type, weight in EVENT_PENALTIES.items()
        if counts.get(event_type)
    }
    score = max(0, min(BASE_SCORE, BASE_SCORE - sum(penalties.values())))
    explanation = "; ".join(f"{k.lower()}: -{v}" for k, v in sorted(penalties.items())) or "No penalties."
    return {"score": score, "penalties": penalties, "events": counts, "explanation": explanation}


def trust_score(official_id: str | None) -> int:
    return compute_trust_score(official_id)["score"]


def record_penalty(official_id: str | None, event_type: str, complaint_id: str | None = None, notes: str | None = None):
    """Stage a moderation event against an official; the caller commits."""
    if not official_id or official_id == "system":
        return None
    if event_type not in EVENT_PENALTIES:
        raise ValueError(f"Unknown moderation event: {event_type}")
    event = ModerationEvent(complaint_id=complaint_id, official_id=official_id, event_type=event_type, notes=notes)
    db.session.add(event)
    return event
