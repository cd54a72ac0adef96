"""Blueprint registration, public transparency routes, and the notification outbox."""
from flask import Blueprint, current_app, g, jsonify, request
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from extensions import csrf, db
from models import Notification
from utils.audit_feed import public_audit_feed, public_stats
from utils.decorators import actor_required
from utils.notifications import acknowledge_notification, can_read_mailbox, notifications_for
from utils.workflow import AuthorizationError, NotFoundError
from .complaints import complaints_bp

main_bp = Blueprint("main", __name__)
csrf.exempt(main_bp)


@main_bp.route("/health", methods=["GET"])
def health():
    try:
        db.session.execute(text("SELECT 1"))
        database = "ok"
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.warning("Health check database probe failed", exc_info=True)
        database = "unavailable"
    status = 200 if database == "ok" else 503
    return jsonify({"status": "ok" if status == 200 else "degraded", "database": database}), status


@main_bp.route("/public/feed", methods=["GET"])
def public_feed():
    limit = request.args.get("limit", type=int)
    entries = public_audit_feed(limit)
    current_app.logger.info("public_feed", extra={"count": len(entries)})
    return jsonify(entries)


@main_bp.route("/public/stats", methods=["GET"])
def stats():
    return jsonify(public_stats())


@main_bp.route("/api/notifications", methods=["GET"])
@actor_required()
def list_notifications():
    recipient = (request.args.get("recipient") or g.actor_id).strip()
    _require_mailbox(recipient)
    include_acked = request.args.get("include_acked", "").lower() in {"1", "true", "yes"}
    limit = min(request.args.get("limit", 50, type=int) or 50, 200)
    items = notifications_for(recipient, include_acked=include_acked, limit=limit)
    return jsonify({"items": [n.to_payload() for n in items], "count": len(items)})


@main_bp.route("/api/notifications/<string:notification_id>/ack", methods=["POST"])
@actor_required()
def ack_notification(notification_id):
    notification = db.session.get(Notification, notification_id)
    if not notification:
        raise NotFoundError(f"Notification {notification_id} not found")
    _require_mailbox(notification.recipient)
    notification = acknowledge_notification(notification.id)
    return jsonify(notification.to_payload())


def _require_mailbox(recipient: str) -> None:
    if not can_read_mailbox(recipient, g.actor_id, g.actor_role, g.get("actor_raw_role")):
        current_app.logger.warning(
            "Notification mailbox access denied",
            extra={"actor_id": g.actor_id, "recipient": recipient},
        )
        raise AuthorizationError("Notifications belong to another recipient", code="NOT_RECIPIENT")


__all__ = ["main_bp", "complaints_bp"]
