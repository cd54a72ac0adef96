"""Workflow event notifications: a pollable outbox plus in-process subscribers."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from extensions import db
from models import Notification

EVENT_TYPES: tuple[str, ...] = (
    "complaint.created",
    "complaint.updated",
    "complaint.resolution_requested",
    "complaint.verified",
    "complaint.reopened",
    "complaint.rejected",
    "complaint.escalated",
    "complaint.flagged",
    "complaint.auto_resolved",
    "complaint.community_vote",
    "complaint.dispute_vote",
    "complaint.note_added",
)

CITY_ADMIN_RECIPIENT = "role:city_admin"
SUPERADMIN_RECIPIENT = "role:superadmin"


@dataclass(frozen=True)
class WorkflowEvent:
    complaint_id: str
    event_type: str
    recipients: tuple[str, ...]
    message: Optional[str] = None
    metadata: Dict = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=datetime.utcnow)


Subscriber = Callable[[WorkflowEvent], None]


def _subscribers() -> List[Subscriber]:
    return current_app.extensions.setdefault("workflow_subscribers", [])


def subscribe(handler: Subscriber) -> Subscriber:
    """Register a callable that receives every WorkflowEvent emitted by this app."""
    subscribers = _subscribers()
    if handler not in subscribers:
        subscribers.append(handler)
    return handler


def unsubscribe(handler: Subscriber) -> None:
    subscribers = _subscribers()
    if handler in subscribers:
        subscribers.remove(handler)


def recipients_for(complaint, *extra: Optional[str]) -> List[str]:
    """Owner, assignee, and any extra targets, deduplicated in order."""
    candidates = [
        None if complaint.is_anonymous else complaint.user_id,
        complaint.assigned_to,
        *extra,
    ]
    seen = set()
    recipients: List[str] = []
    for candidate in candidates:
        if candidate and candidate not in seen:
            seen.add(candidate)
            recipients.append(candidate)
    return recipients


def _is_duplicate(complaint_id: str, event_type: str, recipient: str, window_minutes: int) -> bool:
    if window_minutes <= 0:
        return False
    cutoff = datetime.utcnow() - timedelta(minutes=window_minutes)
    return (
        Notification.query.filter(
            Notification.complaint_id == complaint_id,
            Notification.event_type == event_type,
            Notification.recipient == recipient,
            Notification.created_at >= cutoff,
        ).first()
        is not None
    )


def notify(
    complaint_id: str,
    event_type: str,
    recipients: Iterable[str],
    *,
    message: Optional[str] = None,
    metadata: Optional[Dict] = None,
) -> Optional[WorkflowEvent]:
    """Record and publish a workflow event. Never raises; delivery problems are only logged."""
    event = WorkflowEvent(
        complaint_id=str(complaint_id),
        event_type=event_type,
        recipients=tuple(r for r in recipients if r),
        message=message,
        metadata=dict(metadata or {}),
    )
    window = int(current_app.config.get("NOTIFICATION_DEDUP_MINUTES", 0))
    try:
        for recipient in event.recipients:
            if _is_duplicate(event.complaint_id, event_type, recipient, window):
                continue
            db.session.add(
                Notification(
                    complaint_id=event.complaint_id,
                    event_type=event_type,
                    recipient=recipient,
                    message=message,
                    extra_metadata=event.metadata or None,
                )
            )
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.warning(
            "Notification outbox write failed",
            exc_info=True,
            extra={"complaint_id": event.complaint_id, "event_type": event_type},
        )

    for handler in list(_subscribers()):
        try:
            handler(event)
        except Exception:
            current_app.logger.warning(
                "Notification subscriber failed",
                exc_info=True,
                extra={"complaint_id": event.complaint_id, "event_type": event_type},
            )
    current_app.logger.info(
        "Workflow event emitted",
        extra={"complaint_id": event.complaint_id, "event_type": event_type, "recipients": len(event.recipients)},
    )
    return event


def notifications_for(recipient: str, include_acked: bool = False, limit: int = 50) -> List[Notification]:
    query = Notification.query.filter(Notification.recipient == recipient)
    if not include_acked:
        query = query.filter(Notification.status == "OPEN")
    return query.order_by(Notification.created_at.desc()).limit(limit).all()


def acknowledge_notification(notification_id: str) -> Optional[Notification]:
    notification = db.session.get(Notification, notification_id)
    if not notification:
        return None
    notification.status = "ACKED"
    notification.acknowledged_at = datetime.utcnow()
    db.session.commit()
    return notification


def can_read_mailbox(recipient: str, actor_id: str, role: str, raw_role: Optional[str] = None) -> bool:
    """An actor owns their own id and the shared ``role:`` mailboxes of their role."""
    if role == "superadmin":
        return True
    mailboxes = {actor_id, f"role:{role}"}
    if raw_role:
        mailboxes.add(f"role:{raw_role.strip().lower()}")
    return recipient in mailboxes
