"""Multi-layer resolution verification: AI scoring, community votes, disputes, and the deadline sweep."""
from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from extensions import db
from models import COMMUNITY_VOTE_KINDS, CommunityVote, Complaint, DisputeVote
from utils.ai_vision import AIVisionError, compare_resolution_evidence
from utils.notifications import SUPERADMIN_RECIPIENT, notify, recipients_for
from utils.trust import record_penalty, trust_score
from utils.workflow import (
    SYSTEM_ACTOR,
    ValidationError,
    apply_status,
    get_complaint,
    log_activity,
    utcnow,
)

SUSPICIOUS_VERDICTS = ("UNCERTAIN", "LIKELY_FAKE")
VOTABLE_STATUSES = ("pending_verification", "resolved")
UNDISPUTABLE_STATUSES = ("rejected", "flagged")


def score_resolution(complaint: Complaint) -> Optional[Dict]:
    """Run the AI plausibility check for the current resolution round.

    Best effort: any provider failure leaves ``complaint.verification`` unset and
    the complaint in ``pending_verification`` for the citizen to decide.
    """
    if complaint.status != "pending_verification" or not complaint.resolution_proof:
        return None
    try:
        result = compare_resolution_evidence(complaint, complaint.resolution_proof)
    except AIVisionError as exc:
        current_app.logger.warning(
            "AI verification unavailable; awaiting citizen decision",
            extra={"complaint_id": complaint.id, "error": str(exc)},
        )
        return None
    except Exception:  # pragma: no cover
        current_app.logger.exception("Unexpected AI verification error", extra={"complaint_id": complaint.id})
        return None

    score = trust_score(complaint.resolver_id)
    floor = int(current_app.config.get("TRUST_SCORE_COMMUNITY_FLOOR", 50))
    needs_vote = result["ai_verdict"] in SUSPICIOUS_VERDICTS or score < floor

    complaint.ai_score = result["ai_score"]
    complaint.ai_verdict = result["ai_verdict"]
    complaint.ai_reason = result["ai_reason"]
    complaint.needs_community_vote = needs_vote
    complaint.updated_at = utcnow()
    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.warning("Could not store AI verification", exc_info=True, extra={"complaint_id": complaint.id})
        return None

    current_app.logger.info(
        "AI verification stored",
        extra={
            "complaint_id": complaint.id,
            "verdict": complaint.ai_verdict,
            "trust_score": score,
            "needs_community_vote": needs_vote,
        },
    )
    return complaint.verification


def vote_tally(complaint: Complaint) -> Dict[str, int]:
    rows = (
        db.session.query(CommunityVote.vote, func.count(CommunityVote.id))
        .filter(
            CommunityVote.complaint_id == complaint.id,
            CommunityVote.resolution_round == complaint.resolution_round,
        )
        .group_by(CommunityVote.vote)
        .all()
    )
    tally = {kind: 0 for kind in COMMUNITY_VOTE_KINDS}
    tally.update({vote: count for vote, count in rows})
    return tally


def cast_community_vote(complaint_id, voter_id: str, vote: str) -> Dict:
    """Record or replace a voter's verdict for the current resolution round and apply quorum rules."""
    if vote not in COMMUNITY_VOTE_KINDS:
        raise ValidationError("vote must be 'looks_fixed' or 'not_fixed'", code="INVALID_FIELD")
    if not (voter_id or "").strip():
        raise ValidationError("voter_id is required", code="MISSING_FIELD")

    complaint = get_complaint(complaint_id)
    open_for_votes = complaint.needs_community_vote or complaint.status in VOTABLE_STATUSES
    if complaint.status in UNDISPUTABLE_STATUSES or not open_for_votes:
        raise ValidationError(
            f"Complaint is not open for community verification while {complaint.status}",
            code="VOTING_CLOSED",
        )

    now = utcnow()
    existing = CommunityVote.query.filter_by(
        complaint_id=complaint.id,
        voter_id=voter_id,
        resolution_round=complaint.resolution_round,
    ).first()
    if existing:
        existing.vote = vote
        existing.updated_at = now
    else:
        db.session.add(
            CommunityVote(
                complaint_id=complaint.id,
                voter_id=voter_id,
                resolution_round=complaint.resolution_round,
                vote=vote,
                created_at=now,
                updated_at=now,
            )
        )
    db.session.flush()

    tally = vote_tally(complaint)
    quorum = int(current_app.config.get("COMMUNITY_VOTE_QUORUM", 3))
    transition = None
    if complaint.status == "pending_verification":
        if tally["not_fixed"] >= quorum:
            previous = apply_status(complaint, "reopened", now)
            complaint.times_reopened = (complaint.times_reopened or 0) + 1
            complaint.reopen_reason = "Community voted as not fixed"
            complaint.needs_community_vote = False
            record_penalty(complaint.resolver_id, "COMMUNITY_REOPEN", complaint.id, notes="Community dispute quorum")
            log_activity(
                complaint,
                "citizen_reopened",
                SYSTEM_ACTOR,
                "system",
                meta={
                    "reason": "community dispute quorum reached",
                    "previousStatus": previous,
                    "newStatus": "reopened",
                    "votes": tally,
                },
                now=now,
            )
            transition = "reopened"
        elif tally["looks_fixed"] >= quorum and complaint.ai_verdict != "LIKELY_FAKE":
            previous = apply_status(complaint, "resolved", now)
            complaint.needs_community_vote = False
            log_activity(
                complaint,
                "admin_updated",
                SYSTEM_ACTOR,
                "system",
                meta={
                    "reason": "community confirmation quorum reached",
                    "updates": ["status"],
                    "previousStatus": previous,
                    "newStatus": "resolved",
                    "votes": tally,
                },
                now=now,
            )
            transition = "resolved"
    complaint.updated_at = now
    db.session.commit()

    current_app.logger.info(
        "Community vote recorded",
        extra={"complaint_id": complaint.id, "vote": vote, "tally": tally, "transition": transition},
    )
    recipients = recipients_for(complaint, complaint.resolver_id)
    notify(complaint.id, "complaint.community_vote", recipients, metadata={"votes": tally})
    if transition == "reopened":
        notify(complaint.id, "complaint.reopened", recipients, message="Community voted the issue is not fixed.")
    elif transition == "resolved":
        notify(complaint.id, "complaint.verified", recipients, message="Community confirmed the resolution.")
    return {"status": complaint.status, "votes": tally, "transition": transition}


def cast_dispute_vote(complaint_id, voter_id: str) -> Dict:
    """Count one dispute per voter; flag the complaint once the threshold is exceeded."""
    if not (voter_id or "").strip():
        raise ValidationError("voter_id is required", code="MISSING_FIELD")
    complaint = get_complaint(complaint_id)
    if complaint.status in UNDISPUTABLE_STATUSES:
        raise ValidationError(f"Complaint cannot be disputed while {complaint.status}", code="DISPUTE_CLOSED")

    already = DisputeVote.query.filter_by(complaint_id=complaint.id, voter_id=voter_id).first()
    if already:
        return {"status": complaint.status, "disputeVotes": complaint.dispute_votes, "flagged": False}

    now = utcnow()
    db.session.add(DisputeVote(complaint_id=complaint.id, voter_id=voter_id, created_at=now))
    db.session.flush()
    complaint.dispute_votes = DisputeVote.query.filter_by(complaint_id=complaint.id).count()
    complaint.updated_at = now

    threshold = int(current_app.config.get("DISPUTE_FLAG_THRESHOLD", 3))
    flagged = complaint.dispute_votes > threshold
    if flagged:
        previous = apply_status(complaint, "flagged", now)
        complaint.needs_community_vote = False
        log_activity(
            complaint,
            "admin_updated",
            SYSTEM_ACTOR,
            "system",
            meta={
                "reason": "community dispute threshold exceeded",
                "updates": ["status"],
                "previousStatus": previous,
                "newStatus": "flagged",
                "disputeVotes": complaint.dispute_votes,
            },
            now=now,
        )
    db.session.commit()

    current_app.logger.info(
        "Dispute vote recorded",
        extra={"complaint_id": complaint.id, "dispute_votes": complaint.dispute_votes, "flagged": flagged},
    )
    notify(complaint.id, "complaint.dispute_vote", recipients_for(complaint), metadata={"disputeVotes": complaint.dispute_votes})
    if flagged:
        notify(
            complaint.id,
            "complaint.flagged",
            recipients_for(complaint, complaint.resolver_id, SUPERADMIN_RECIPIENT),
            message="Complaint flagged for superadmin review after community disputes.",
        )
    return {"status": complaint.status, "disputeVotes": complaint.dispute_votes, "flagged": flagged}


def community_queue(limit: Optional[int] = None) -> List[Complaint]:
    max_page = int(current_app.config.get("COMPLAINTS_MAX_PAGE", 100))
    limit = max(1, min(int(limit or max_page), max_page))
    return (
        Complaint.query.filter(
            Complaint.needs_community_vote.is_(True),
            Complaint.status.in_(VOTABLE_STATUSES),
        )
        .order_by(Complaint.verification_deadline.asc())
        .limit(limit)
        .all()
    )


def run_verification_deadline_sweep(now: Optional[datetime] = None) -> Dict:
    """Auto-resolve complaints whose verification window lapsed without a decision."""
    now = now or utcnow()
    due_ids = [
        row.id
        for row in Complaint.query.with_entities(Complaint.id)
        .filter(
            Complaint.status == "pending_verification",
            Complaint.verification_deadline.isnot(None),
            Complaint.verification_deadline <= now,
        )
        .order_by(Complaint.verification_deadline.asc())
        .all()
    ]

    resolved: List[Complaint] = []
    errors: List[Dict] = []
    for complaint_id in due_ids:
        try:
            complaint = db.session.get(Complaint, complaint_id)
            if (
                not complaint
                or complaint.status != "pending_verification"
                or not complaint.verification_deadline
                or complaint.verification_deadline > now
            ):
                continue
            previous = apply_status(complaint, "resolved", now)
            complaint.needs_community_vote = False
            log_activity(
                complaint,
                "admin_updated",
                SYSTEM_ACTOR,
                "system",
                meta={
                    "reason": "verification window elapsed",
                    "updates": ["status"],
                    "previousStatus": previous,
                    "newStatus": "resolved",
                },
                note="Auto-resolved: no citizen response before the verification deadline",
                now=now,
            )
            db.session.commit()
            resolved.append(complaint)
        except SQLAlchemyError as exc:
            db.session.rollback()
            errors.append({"complaint_id": complaint_id, "error": str(exc)})
            current_app.logger.warning(
                "Verification deadline sweep failed for complaint",
                extra={"complaint_id": complaint_id, "error": str(exc)},
            )
        except Exception as exc:
            db.session.rollback()
            errors.append({"complaint_id": complaint_id, "error": str(exc)})
            current_app.logger.exception("Unexpected verification sweep error", extra={"complaint_id": complaint_id})

    for complaint in resolved:
        notify(
            complaint.id,
            "complaint.auto_resolved",
            recipients_for(complaint, complaint.resolver_id),
            message="Verification window elapsed; complaint marked resolved.",
        )
    current_app.logger.info(
        "Verification deadline sweep complete",
        extra={"auto_resolved_count": len(resolved), "errors": len(errors)},
    )
    return {"auto_resolved_count": len(resolved), "errors": errors}
