"""Complaint status transition engine and workflow boundary operations.

Every mutating operation here targets a single complaint, validates the
transition against ``STATUS_TRANSITIONS`` for the acting role, applies the
transition's side effects, appends exactly one activity entry, commits, and
only then calls the notification hook.
"""
from __future__ import annotations

import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, List, Mapping, Optional

from flask import current_app
from sqlalchemy import func

from extensions import db
from models import (
    ACTIVITY_TYPES,
    COMPLAINT_CATEGORIES,
    COMPLAINT_PRIORITIES,
    COMPLAINT_SOURCES,
    COMPLAINT_STATUSES,
    Complaint,
    ComplaintActivity,
    ComplaintNote,
)
from utils.ai_vision import AIVisionError, classify_complaint_text
from utils.notifications import notify, recipients_for
from utils.security import generate_reference
from utils.trust import record_penalty


class WorkflowError(Exception):
    """Base class for rejected workflow operations."""

    status_code = 400
    code = "WORKFLOW_ERROR"

    def __init__(self, message: str, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        if code:
            self.code = code

    def to_payload(self) -> dict:
        return {"error": self.message, "code": self.code}


class ValidationError(WorkflowError):
    status_code = 400
    code = "VALIDATION_ERROR"


class NotFoundError(WorkflowError):
    status_code = 404
    code = "NOT_FOUND"


class AuthorizationError(WorkflowError):
    status_code = 403
    code = "FORBIDDEN"


SYSTEM_ACTOR = "system"

ROLE_ALIASES = {
    "citizen": "citizen",
    "official": "official",
    "admin": "official",
    "ward_admin": "official",
    "dept_admin": "official",
    "city_admin": "official",
    "superadmin": "superadmin",
    "system": "system",
}

OFFICIALS = frozenset({"official", "superadmin"})
CITIZENS = frozenset({"citizen"})
SYSTEM = frozenset({"system"})
SUPERADMIN = frozenset({"superadmin"})

# current status -> target status -> roles allowed to drive that edge
STATUS_TRANSITIONS: Dict[str, Dict[str, frozenset]] = {
    "submitted": {"in_review": OFFICIALS, "in_progress": OFFICIALS, "rejected": OFFICIALS, "pending_verification": OFFICIALS, "flagged": SYSTEM},
    "in_review": {"in_progress": OFFICIALS, "rejected": OFFICIALS, "pending_verification": OFFICIALS, "flagged": SYSTEM},
    "in_progress": {"pending_verification": OFFICIALS, "rejected": OFFICIALS, "flagged": SYSTEM},
    "pending_verification": {"resolved": CITIZENS | SYSTEM, "reopened": CITIZENS | SYSTEM, "flagged": SYSTEM},
    "resolved": {"reopened": CITIZENS, "flagged": SYSTEM},
    "reopened": {"in_progress": OFFICIALS, "rejected": OFFICIALS, "flagged": SYSTEM},
    "flagged": {"in_progress": SUPERADMIN, "rejected": SUPERADMIN},
    "rejected": {},
}

# Targets that carry data the generic update cannot supply.
DEDICATED_OPERATIONS = {
    "pending_verification": "request_resolution (proof required)",
    "resolved": "citizen_decision or community verification",
    "reopened": "citizen_decision or community verification",
    "flagged": "dispute voting",
}

RESOLVABLE_STATUSES: tuple[str, ...] = ("submitted", "in_review", "in_progress")

# Out of the normal official workflow until a superadmin reviews them.
SUPERADMIN_ONLY_STATUSES: tuple[str, ...] = ("flagged", "rejected")

PRIORITY_RANK = {name: rank for rank, name in enumerate(COMPLAINT_PRIORITIES)}

UPDATABLE_FIELDS = {
    "title",
    "description",
    "category",
    "priority",
    "assigned_to",
    "department",
    "address",
    "latitude",
    "longitude",
    "state_code",
    "district_code",
    "ward_code",
    "attachments",
    "is_overdue",
    "is_escalated",
    "escalation_triggered",
}
ESCALATION_LATCH_FIELDS = {"is_overdue", "is_escalated", "escalation_triggered"}
WORKFLOW_MANAGED_FIELDS = {
    "status",
    "resolution_proof",
    "proof_uploaded_at",
    "proof_hash",
    "resolver_id",
    "resolution_round",
    "verification",
    "verification_deadline",
    "ai_score",
    "ai_verdict",
    "ai_reason",
    "needs_community_vote",
    "dispute_votes",
    "reopen_reason",
    "upvotes",
    "upvoted_by",
    "updated_at",
    "escalated_at",
}
FIELD_ALIASES = {
    "assignedTo": "assigned_to",
    "stateCode": "state_code",
    "districtCode": "district_code",
    "wardCode": "ward_code",
    "lat": "latitude",
    "lng": "longitude",
    "isOverdue": "is_overdue",
    "isEscalated": "is_escalated",
    "escalationTriggered": "escalation_triggered",
    "userId": "user_id",
    "createdAt": "created_at",
    "timesReopened": "times_reopened",
    "verificationDeadline": "verification_deadline",
    "resolutionProof": "resolution_proof",
    "needsCommunityVote": "needs_community_vote",
}


def utcnow() -> datetime:
    return datetime.utcnow()


def normalize_role(role: Optional[str]) -> str:
    normalized = ROLE_ALIASES.get((role or "").strip().lower())
    if not normalized:
        raise ValidationError(f"Unknown actor role: {role!r}", code="UNKNOWN_ROLE")
    return normalized


def is_legal_transition(current: str, target: str, role: str) -> bool:
    return role in STATUS_TRANSITIONS.get(current, {}).get(target, frozenset())


def _require_transition(complaint: Complaint, target: str, role: str) -> None:
    allowed = STATUS_TRANSITIONS.get(complaint.status, {})
    if target not in allowed:
        legal = ", ".join(sorted(allowed)) or "none (terminal)"
        raise ValidationError(
            f"Illegal transition {complaint.status} -> {target}; allowed targets: {legal}",
            code="ILLEGAL_TRANSITION",
        )
    if role not in allowed[target]:
        raise AuthorizationError(
            f"Role {role} cannot move a complaint from {complaint.status} to {target}",
            code="ROLE_NOT_ALLOWED",
        )


def apply_status(complaint: Complaint, new_status: str, now: datetime) -> str:
    """Set the status and its invariants. Returns the previous status."""
    if new_status not in COMPLAINT_STATUSES:
        raise ValidationError(f"Unknown status: {new_status}", code="UNKNOWN_STATUS")
    previous = complaint.status
    complaint.status = new_status
    if new_status != "pending_verification":
        complaint.verification_deadline = None
    complaint.updated_at = now
    return previous


def _candidate_ids(value) -> list[str]:
    candidates = [str(value)] if value else []
    try:
        parsed = str(uuid.UUID(str(value)))
        if parsed not in candidates:
            candidates.append(parsed)
    except (TypeError, ValueError):
        pass
    return candidates


def get_complaint(complaint_id) -> Complaint:
    ids = _candidate_ids(complaint_id)
    complaint = Complaint.query.filter(Complaint.id.in_(ids)).first() if ids else None
    if not complaint:
        raise NotFoundError(f"Complaint {complaint_id} not found")
    return complaint


def log_activity(
    complaint: Complaint,
    activity_type: str,
    actor_id: str,
    actor_role: str,
    meta: Optional[Dict[str, Any]] = None,
    note: Optional[str] = None,
    now: Optional[datetime] = None,
) -> ComplaintActivity:
    """Stage the next activity entry for a complaint; the caller commits."""
    if activity_type not in ACTIVITY_TYPES:
        raise ValueError(f"Unknown activity type: {activity_type}")
    last_sequence, last_timestamp = (
        db.session.query(func.max(ComplaintActivity.sequence), func.max(ComplaintActivity.timestamp))
        .filter(ComplaintActivity.complaint_id == complaint.id)
        .one()
    )
    timestamp = now or utcnow()
    if last_timestamp and last_timestamp > timestamp:
        timestamp = last_timestamp
    activity = ComplaintActivity(
        complaint_id=complaint.id,
        sequence=(last_sequence or 0) + 1,
        activity_type=activity_type,
        actor_id=actor_id,
        actor_role=actor_role,
        meta=meta or {},
        note=note,
        timestamp=timestamp,
    )
    db.session.add(activity)
    return activity


def _clean_text(value: Any) -> str:
    return str(value).strip() if value is not None else ""


def _choice(value: Any, choices: tuple[str, ...], field: str, default: str) -> str:
    if value is None or _clean_text(value) == "":
        return default
    lookup = {c.lower(): c for c in choices}
    resolved = lookup.get(_clean_text(value).lower())
    if not resolved:
        raise ValidationError(f"Invalid {field}: {value!r}; expected one of {', '.join(choices)}", code="INVALID_FIELD")
    return resolved


def _location_fields(data: Mapping[str, Any]) -> Dict[str, Any]:
    location = data.get("location") or {}
    if not isinstance(location, Mapping):
        raise ValidationError("location must be an object", code="INVALID_FIELD")

    def pick(*keys):
        for key in keys:
            if location.get(key) not in (None, ""):
                return location.get(key)
            if data.get(key) not in (None, ""):
                return data.get(key)
        return None

    fields = {
        "latitude": pick("lat", "latitude"),
        "longitude": pick("lng", "longitude"),
        "address": pick("address"),
        "state_code": pick("stateCode", "state_code"),
        "district_code": pick("districtCode", "district_code"),
        "ward_code": pick("wardCode", "ward_code"),
    }
    for key in ("latitude", "longitude"):
        if fields[key] is not None:
            try:
                fields[key] = float(fields[key])
            except (TypeError, ValueError):
                raise ValidationError(f"{key} must be numeric", code="INVALID_FIELD")
    if fields["latitude"] is not None and not -90 <= fields["latitude"] <= 90:
        raise ValidationError("latitude out of range", code="INVALID_FIELD")
    if fields["longitude"] is not None and not -180 <= fields["longitude"] <= 180:
        raise ValidationError("longitude out of range", code="INVALID_FIELD")
    has_coordinates = fields["latitude"] is not None and fields["longitude"] is not None
    if not has_coordinates and not fields["address"]:
        raise ValidationError("A location (lat/lng or address) is required", code="MISSING_FIELD")
    return fields


def create_complaint(data: Mapping[str, Any]) -> Complaint:
    """Register an inbound complaint from the web form, WhatsApp, or IVR adapters."""
    is_anonymous = bool(data.get("is_anonymous") or data.get("isAnonymous"))
    user_id = _clean_text(data.get("user_id") or data.get("userId")) or None
    title = _clean_text(data.get("title"))
    description = _clean_text(data.get("description"))

    if not is_anonymous and not user_id:
        raise ValidationError("user_id is required unless the complaint is anonymous", code="MISSING_FIELD")
    if not title:
        raise ValidationError("title is required", code="MISSING_FIELD")
    if not description:
        raise ValidationError("description is required", code="MISSING_FIELD")

    attachments = data.get("attachments") or []
    if not isinstance(attachments, list):
        raise ValidationError("attachments must be a list", code="INVALID_FIELD")

    now = utcnow()
    complaint = Complaint(
        display_id=generate_reference("ANON" if is_anonymous else "CMP"),
        user_id=None if is_anonymous else user_id,
        is_anonymous=is_anonymous,
        source=_choice(data.get("source"), COMPLAINT_SOURCES, "source", "web"),
        title=title,
        description=description,
        category=_choice(data.get("category"), COMPLAINT_CATEGORIES, "category", "General"),
        priority=_choice(data.get("priority"), COMPLAINT_PRIORITIES, "priority", "medium"),
        status="submitted",
        attachments=list(attachments),
        created_at=now,
        updated_at=now,
        **_location_fields(data),
    )
    db.session.add(complaint)
    db.session.flush()

    log_activity(
        complaint,
        "created",
        complaint.user_id or complaint.display_id,
        "citizen",
        meta={
            "initialStatus": "submitted",
            "source": complaint.source,
            "locationTagged": bool(complaint.district_code),
        },
        now=now,
    )
    db.session.commit()
    current_app.logger.info(
        "Complaint created",
        extra={"complaint_id": complaint.id, "source": complaint.source, "anonymous": is_anonymous},
    )
    notify(complaint.id, "complaint.created", recipients_for(complaint, "role:official"), message=complaint.title)
    return complaint


def _normalize_proof(proof: Any) -> Dict[str, Any]:
    if not isinstance(proof, Mapping):
        raise ValidationError("Resolution proof with an attachment and description is required", code="PROOF_REQUIRED")
    attachment = proof.get("attachment")
    if not isinstance(attachment, Mapping):
        attachment = {
            "url": proof.get("attachment_url") or proof.get("imageUrl") or proof.get("webViewLink"),
            "file_id": proof.get("file_id") or proof.get("fileId"),
            "name": proof.get("name"),
        }
    attachment = {k: v for k, v in dict(attachment).items() if v not in (None, "")}
    if not (_clean_text(attachment.get("url")) or _clean_text(attachment.get("file_id"))):
        raise ValidationError("Resolution proof must include an attachment reference", code="PROOF_REQUIRED")
    description = _clean_text(proof.get("description") or proof.get("note"))
    if not description:
        raise ValidationError("Resolution proof must include a text description", code="PROOF_REQUIRED")
    return {
        "attachment": attachment,
        "description": description,
        "content_hash": _clean_text(proof.get("content_hash") or proof.get("contentHash")) or None,
    }


def request_resolution(complaint_id, official_id: str, proof: Any, actor_role: str = "official") -> Complaint:
    """Official claims resolution with proof; opens the verification window."""
    role = normalize_role(actor_role)
    if role not in OFFICIALS:
        raise AuthorizationError("Only officials can submit resolution proof", code="ROLE_NOT_ALLOWED")
    if not _clean_text(official_id):
        raise ValidationError("official_id is required", code="MISSING_FIELD")

    complaint = get_complaint(complaint_id)
    if complaint.status not in RESOLVABLE_STATUSES:
        raise ValidationError(
            f"Cannot request resolution while complaint is {complaint.status}; "
            f"allowed from {', '.join(RESOLVABLE_STATUSES)}",
            code="ILLEGAL_TRANSITION",
        )
    normalized = _normalize_proof(proof)

    content_hash = normalized["content_hash"]
    if content_hash:
        duplicate = Complaint.query.filter(Complaint.proof_hash == content_hash, Complaint.id != complaint.id).first()
        if duplicate:
            record_penalty(official_id, "DUPLICATE_PROOF", complaint.id, notes=f"Proof already used on {duplicate.id}")
            db.session.commit()
            current_app.logger.warning(
                "Duplicate resolution proof rejected",
                extra={"complaint_id": complaint.id, "official_id": official_id, "duplicate_of": duplicate.id},
            )
            raise ValidationError(
                "Duplicate proof: this attachment was already used to resolve another complaint",
                code="DUPLICATE_PROOF",
            )

    now = utcnow()
    window = int(current_app.config.get("VERIFICATION_WINDOW_HOURS", 48))
    previous = apply_status(complaint, "pending_verification", now)
    complaint.resolution_proof = {
        "attachment": normalized["attachment"],
        "description": normalized["description"],
        "uploadedAt": now.isoformat(),
        "contentHash": content_hash,
    }
    complaint.proof_uploaded_at = now
    complaint.proof_hash = content_hash
    complaint.resolver_id = official_id
    complaint.resolution_round = (complaint.resolution_round or 0) + 1
    complaint.verification_deadline = now + timedelta(hours=window)
    complaint.ai_score = None
    complaint.ai_verdict = None
    complaint.ai_reason = None
    complaint.needs_community_vote = False

    log_activity(
        complaint,
        "admin_resolved",
        official_id,
        role,
        meta={
            "previousStatus": previous,
            "newStatus": "pending_verification",
            "verificationDeadline": complaint.verification_deadline.isoformat(),
        },
        note=normalized["description"],
        now=now,
    )
    db.session.commit()
    current_app.logger.info(
        "Resolution proof submitted",
        extra={"complaint_id": complaint.id, "official_id": official_id, "round": complaint.resolution_round},
    )

    from utils.verification import score_resolution  # Local import to avoid circular dependency

    score_resolution(complaint)
    notify(
        complaint.id,
        "complaint.resolution_requested",
        recipients_for(complaint),
        message="Your complaint was marked resolved. Please verify it.",
        metadata={"verificationDeadline": complaint.verification_deadline.isoformat()},
    )
    return complaint


def _canonical_field(name: str) -> str:
    return FIELD_ALIASES.get(name, name)


def _coerce_update(complaint: Complaint, field: str, value: Any) -> Any:
    if field == "category":
        return _choice(value, COMPLAINT_CATEGORIES, "category", complaint.category)
    if field == "priority":
        return _choice(value, COMPLAINT_PRIORITIES, "priority", complaint.priority)
    if field in ("latitude", "longitude"):
        try:
            return float(value) if value is not None else None
        except (TypeError, ValueError):
            raise ValidationError(f"{field} must be numeric", code="INVALID_FIELD")
    if field in ESCALATION_LATCH_FIELDS:
        return bool(value)
    if field == "attachments":
        if not isinstance(value, list):
            raise ValidationError("attachments must be a list", code="INVALID_FIELD")
        return list(value)
    if field in ("title", "description"):
        text = _clean_text(value)
        if not text:
            raise ValidationError(f"{field} cannot be empty", code="INVALID_FIELD")
        return text
    return value if value not in ("",) else None


def update_status(
    complaint_id,
    actor_id: str,
    actor_role: str,
    new_status: Optional[str] = None,
    fields: Optional[Mapping[str, Any]] = None,
    reason: Optional[str] = None,
) -> Complaint:
    """Generic official update: non-proof status edges, assignment, and field edits."""
    role = normalize_role(actor_role)
    if role not in OFFICIALS:
        raise AuthorizationError("Only officials can update complaints", code="ROLE_NOT_ALLOWED")
    complaint = get_complaint(complaint_id)
    if complaint.status in SUPERADMIN_ONLY_STATUSES and role != "superadmin":
        raise AuthorizationError(
            f"Complaint is {complaint.status}; only a superadmin can change it",
            code="ROLE_NOT_ALLOWED",
        )

    updates: Dict[str, Any] = {}
    for raw_name, value in dict(fields or {}).items():
        name = _canonical_field(raw_name)
        if name == "status":
            new_status = new_status or value
            continue
        if name in complaint.immutable_fields:
            raise ValidationError(f"Field {raw_name} is immutable", code="IMMUTABLE_FIELD")
        if name in WORKFLOW_MANAGED_FIELDS:
            raise ValidationError(f"Field {raw_name} is managed by the workflow and cannot be set directly", code="MANAGED_FIELD")
        if name not in UPDATABLE_FIELDS:
            raise ValidationError(f"Unknown field: {raw_name}", code="UNKNOWN_FIELD")
        if name in ESCALATION_LATCH_FIELDS and role != "superadmin":
            raise AuthorizationError("Only a superadmin can override escalation state", code="ROLE_NOT_ALLOWED")
        updates[name] = _coerce_update(complaint, name, value)

    target = _clean_text(new_status) or None
    if target and target not in COMPLAINT_STATUSES:
        raise ValidationError(f"Unknown status: {target}", code="UNKNOWN_STATUS")
    status_changes = bool(target) and target != complaint.status
    if status_changes:
        if target in DEDICATED_OPERATIONS:
            raise ValidationError(
                f"Status {target} cannot be set directly; use {DEDICATED_OPERATIONS[target]}",
                code="REQUIRES_DEDICATED_OPERATION",
            )
        _require_transition(complaint, target, role)

    changed = [name for name, value in updates.items() if getattr(complaint, name) != value]
    if not changed and not status_changes:
        current_app.logger.info("Complaint update had no effect", extra={"complaint_id": complaint.id, "actor_id": actor_id})
        return complaint

    now = utcnow()
    for name in changed:
        setattr(complaint, name, updates[name])
    previous = complaint.status
    if status_changes:
        apply_status(complaint, target, now)
        changed.append("status")
    complaint.updated_at = now

    meta: Dict[str, Any] = {"updates": changed}
    if status_changes:
        meta.update({"previousStatus": previous, "newStatus": target})
    if reason:
        meta["reason"] = reason
    log_activity(complaint, "admin_updated", actor_id, role, meta=meta, note=reason, now=now)
    db.session.commit()
    current_app.logger.info(
        "Complaint updated",
        extra={"complaint_id": complaint.id, "actor_id": actor_id, "updates": changed},
    )

    event_type = "complaint.rejected" if status_changes and target == "rejected" else "complaint.updated"
    notify(complaint.id, event_type, recipients_for(complaint), message=reason, metadata={"updates": changed})
    return complaint


def reject_complaint(complaint_id, actor_id: str, actor_role: str, reason: Optional[str]) -> Complaint:
    if not _clean_text(reason):
        raise ValidationError("A rejection reason is required", code="MISSING_FIELD")
    return update_status(complaint_id, actor_id, actor_role, "rejected", reason=_clean_text(reason))


def citizen_decision(complaint_id, citizen_id: str, decision: str, reason: Optional[str] = None) -> Complaint:
    """Owner verifies or reopens a resolution claim."""
    if decision not in ("verify", "reopen"):
        raise ValidationError("decision must be 'verify' or 'reopen'", code="INVALID_FIELD")
    complaint = get_complaint(complaint_id)
    if complaint.is_anonymous or not complaint.user_id or citizen_id != complaint.user_id:
        raise AuthorizationError("Only the citizen who filed this complaint can verify or reopen it", code="NOT_OWNER")

    now = utcnow()
    if decision == "verify":
        _require_transition(complaint, "resolved", "citizen")
        previous = apply_status(complaint, "resolved", now)
        complaint.needs_community_vote = False
        log_activity(
            complaint,
            "citizen_verified",
            citizen_id,
            "citizen",
            meta={"previousStatus": previous, "newStatus": "resolved"},
            now=now,
        )
        db.session.commit()
        current_app.logger.info("Citizen verified resolution", extra={"complaint_id": complaint.id})
        notify(
            complaint.id,
            "complaint.verified",
            recipients_for(complaint, complaint.resolver_id),
            message="Citizen confirmed the resolution.",
        )
        return complaint

    reopen_reason = _clean_text(reason)
    if not reopen_reason:
        raise ValidationError("A reason is required to reopen a complaint", code="MISSING_FIELD")
    _require_transition(complaint, "reopened", "citizen")
    previous = apply_status(complaint, "reopened", now)
    complaint.times_reopened = (complaint.times_reopened or 0) + 1
    complaint.reopen_reason = reopen_reason[:500]
    complaint.needs_community_vote = False
    record_penalty(complaint.resolver_id, "CITIZEN_REOPEN", complaint.id, notes=reopen_reason[:500])
    log_activity(
        complaint,
        "citizen_reopened",
        citizen_id,
        "citizen",
        meta={"previousStatus": previous, "newStatus": "reopened", "reason": reopen_reason},
        note=reopen_reason,
        now=now,
    )
    db.session.commit()
    current_app.logger.info(
        "Citizen reopened complaint",
        extra={"complaint_id": complaint.id, "times_reopened": complaint.times_reopened},
    )
    notify(
        complaint.id,
        "complaint.reopened",
        recipients_for(complaint, complaint.resolver_id),
        message=reopen_reason,
    )
    return complaint


def get_timeline(complaint_id) -> List[ComplaintActivity]:
    complaint = get_complaint(complaint_id)
    return (
        ComplaintActivity.query.filter_by(complaint_id=complaint.id)
        .order_by(ComplaintActivity.sequence.asc())
        .all()
    )


def classify_complaint(complaint_id) -> Optional[Dict[str, Any]]:
    """Ask the AI provider for category/priority/summary; best effort."""
    complaint = get_complaint(complaint_id)
    try:
        result = classify_complaint_text(complaint.title, complaint.description)
    except AIVisionError as exc:
        current_app.logger.warning(
            "Complaint classification unavailable",
            extra={"complaint_id": complaint.id, "error": str(exc)},
        )
        return None
    except Exception:  # pragma: no cover
        current_app.logger.exception("Unexpected classification error", extra={"complaint_id": complaint.id})
        return None

    now = utcnow()
    complaint.ai_summary = result["summary"]
    complaint.updated_at = now
    log_activity(
        complaint,
        "ai_analyzed",
        SYSTEM_ACTOR,
        "system",
        meta={"category": result["category"], "priority": result["priority"], "summary": result["summary"]},
        now=now,
    )
    db.session.commit()
    return result


def add_note(complaint_id, author_id: str, author_role: str, content: str, is_public: bool = True) -> ComplaintNote:
    role = normalize_role(author_role)
    if not _clean_text(author_id):
        raise ValidationError("author_id is required", code="MISSING_FIELD")
    text = _clean_text(content)
    if not text:
        raise ValidationError("Note content cannot be empty", code="MISSING_FIELD")
    complaint = get_complaint(complaint_id)
    note = ComplaintNote(
        complaint_id=complaint.id,
        author_id=author_id,
        author_role=role,
        content=text,
        is_public=bool(is_public),
        created_at=utcnow(),
    )
    db.session.add(note)
    db.session.commit()
    notify(complaint.id, "complaint.note_added", [r for r in recipients_for(complaint) if r != author_id])
    return note


def list_notes(complaint_id, public_only: bool = False) -> List[ComplaintNote]:
    complaint = get_complaint(complaint_id)
    query = ComplaintNote.query.filter_by(complaint_id=complaint.id)
    if public_only:
        query = query.filter(ComplaintNote.is_public.is_(True))
    return query.order_by(ComplaintNote.created_at.asc()).all()


def toggle_upvote(complaint_id, user_id: str) -> Complaint:
    if not _clean_text(user_id):
        raise ValidationError("user_id is required", code="MISSING_FIELD")
    complaint = get_complaint(complaint_id)
    upvoted_by = list(complaint.upvoted_by or [])
    if user_id in upvoted_by:
        upvoted_by.remove(user_id)
    else:
        upvoted_by.append(user_id)
    complaint.upvoted_by = upvoted_by
    complaint.upvotes = len(upvoted_by)
    complaint.updated_at = utcnow()
    db.session.commit()
    return complaint


def list_complaints(filters: Optional[Mapping[str, Any]] = None, limit: Optional[int] = None) -> List[Complaint]:
    filters = filters or {}
    query = Complaint.query
    status = filters.get("status")
    if status:
        if status not in COMPLAINT_STATUSES:
            raise ValidationError(f"Unknown status: {status}", code="UNKNOWN_STATUS")
        query = query.filter(Complaint.status == status)
    if filters.get("priority"):
        query = query.filter(Complaint.priority == filters["priority"])
    if filters.get("category"):
        query = query.filter(Complaint.category == filters["category"])
    for key, column in (
        ("state", Complaint.state_code),
        ("district", Complaint.district_code),
        ("ward", Complaint.ward_code),
        ("assigned_to", Complaint.assigned_to),
        ("user_id", Complaint.user_id),
    ):
        if filters.get(key):
            query = query.filter(column == filters[key])
    if _truthy(filters.get("needs_community_vote")):
        query = query.filter(Complaint.needs_community_vote.is_(True))
    if _truthy(filters.get("escalated")):
        query = query.filter(Complaint.is_escalated.is_(True))
    max_page = int(current_app.config.get("COMPLAINTS_MAX_PAGE", 100))
    limit = max(1, min(int(limit or max_page), max_page))
    return query.order_by(Complaint.created_at.desc()).limit(limit).all()


def escalated_complaints(limit: Optional[int] = None) -> List[Complaint]:
    return list_complaints({"escalated": True}, limit=limit)


def _truthy(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value or "").strip().lower() in {"1", "true", "yes"}
