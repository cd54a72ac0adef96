"""JSON API for the complaint lifecycle."""
from typing import Any, Dict

from flask import Blueprint, current_app, g, jsonify, request
from flask_wtf import FlaskForm
from wtforms import BooleanField, StringField, TextAreaField
from wtforms.validators import DataRequired, Length, Optional

from extensions import csrf
from utils.decorators import actor_required
from utils.verification import cast_community_vote, cast_dispute_vote, community_queue
from utils.workflow import (
    ValidationError,
    add_note,
    citizen_decision,
    classify_complaint,
    create_complaint,
    escalated_complaints,
    get_complaint,
    get_timeline,
    list_complaints,
    list_notes,
    reject_complaint,
    request_resolution,
    toggle_upvote,
    update_status,
)

complaints_bp = Blueprint("complaints", __name__, url_prefix="/api/complaints")
csrf.exempt(complaints_bp)

OFFICIAL_ROLES = ("official", "superadmin")


class JsonForm(FlaskForm):
    class Meta:
        csrf = False


class ComplaintCreateForm(JsonForm):
    title = StringField("Title", validators=[DataRequired(), Length(max=255)])
    description = TextAreaField("Description", validators=[DataRequired(), Length(max=5000)])
    category = StringField("Category", validators=[Optional(), Length(max=30)])
    priority = StringField("Priority", validators=[Optional(), Length(max=20)])
    source = StringField("Source", validators=[Optional(), Length(max=20)])
    user_id = StringField("User", validators=[Optional(), Length(max=128)])
    is_anonymous = BooleanField("Anonymous")


class NoteForm(JsonForm):
    content = TextAreaField("Note", validators=[DataRequired(), Length(max=2000)])


class ReasonForm(JsonForm):
    reason = TextAreaField("Reason", validators=[Optional(), Length(max=500)])


def _payload() -> Dict[str, Any]:
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object", code="INVALID_BODY")
    return payload


def _validated(form_class):
    form = form_class()
    if not form.validate():
        details = "; ".join(f"{name}: {', '.join(errors)}" for name, errors in form.errors.items())
        raise ValidationError(details or "Invalid request", code="INVALID_FIELD")
    return form


def _limit_arg():
    raw = request.args.get("limit")
    try:
        return int(raw) if raw else None
    except ValueError:
        raise ValidationError("limit must be an integer", code="INVALID_FIELD")


@complaints_bp.route("", methods=["POST"])
def submit_complaint():
    _validated(ComplaintCreateForm)
    complaint = create_complaint(_payload())
    return jsonify(complaint.to_payload()), 201


@complaints_bp.route("", methods=["GET"])
def list_all_complaints():
    complaints = list_complaints(request.args, limit=_limit_arg())
    current_app.logger.info(
        "complaints_list",
        extra={"count": len(complaints), "filters": g.get("sanitized_args") or {}},
    )
    return jsonify({"items": [c.to_payload() for c in complaints], "count": len(complaints)})


@complaints_bp.route("/escalated", methods=["GET"])
def list_escalated():
    complaints = escalated_complaints(limit=_limit_arg())
    return jsonify({"items": [c.to_payload() for c in complaints], "count": len(complaints)})


@complaints_bp.route("/community-queue", methods=["GET"])
def list_community_queue():
    complaints = community_queue(limit=_limit_arg())
    return jsonify({"items": [c.to_payload() for c in complaints], "count": len(complaints)})


@complaints_bp.route("/<string:complaint_id>", methods=["GET"])
def view_complaint(complaint_id):
    return jsonify(get_complaint(complaint_id).to_payload())


@complaints_bp.route("/<string:complaint_id>", methods=["PUT"])
@actor_required(*OFFICIAL_ROLES)
def update_complaint(complaint_id):
    payload = _payload()
    fields = payload.get("fields") or {}
    if not isinstance(fields, dict):
        raise ValidationError("fields must be an object", code="INVALID_FIELD")
    complaint = update_status(
        complaint_id,
        g.actor_id,
        g.actor_role,
        new_status=payload.get("status"),
        fields=fields,
        reason=payload.get("reason"),
    )
    return jsonify(complaint.to_payload())


@complaints_bp.route("/<string:complaint_id>/resolve", methods=["PUT"])
@actor_required(*OFFICIAL_ROLES)
def resolve_complaint(complaint_id):
    payload = _payload()
    complaint = request_resolution(complaint_id, g.actor_id, payload.get("proof"), actor_role=g.actor_role)
    return jsonify(complaint.to_payload())


@complaints_bp.route("/<string:complaint_id>/reject", methods=["PUT"])
@actor_required(*OFFICIAL_ROLES)
def reject(complaint_id):
    form = _validated(ReasonForm)
    complaint = reject_complaint(complaint_id, g.actor_id, g.actor_role, form.reason.data)
    return jsonify(complaint.to_payload())


@complaints_bp.route("/<string:complaint_id>/verify", methods=["PUT"])
@actor_required("citizen")
def verify_resolution(complaint_id):
    complaint = citizen_decision(complaint_id, g.actor_id, "verify")
    return jsonify(complaint.to_payload())


@complaints_bp.route("/<string:complaint_id>/reopen", methods=["PUT"])
@actor_required("citizen")
def reopen_complaint(complaint_id):
    form = _validated(ReasonForm)
    complaint = citizen_decision(complaint_id, g.actor_id, "reopen", form.reason.data)
    return jsonify(complaint.to_payload())


@complaints_bp.route("/<string:complaint_id>/vote-resolution", methods=["POST"])
@actor_required("citizen")
def vote_resolution(complaint_id):
    result = cast_community_vote(complaint_id, g.actor_id, _payload().get("vote"))
    return jsonify(result)


@complaints_bp.route("/<string:complaint_id>/vote-dispute", methods=["POST"])
@actor_required("citizen")
def vote_dispute(complaint_id):
    return jsonify(cast_dispute_vote(complaint_id, g.actor_id))


@complaints_bp.route("/<string:complaint_id>/upvote", methods=["POST"])
@actor_required("citizen")
def upvote(complaint_id):
    complaint = toggle_upvote(complaint_id, g.actor_id)
    return jsonify({"upvotes": complaint.upvotes, "upvoted": g.actor_id in (complaint.upvoted_by or [])})


@complaints_bp.route("/<string:complaint_id>/classify", methods=["POST"])
@actor_required(*OFFICIAL_ROLES)
def classify(complaint_id):
    result = classify_complaint(complaint_id)
    if result is None:
        return jsonify({"classification": None, "available": False}), 202
    return jsonify({"classification": result, "available": True})


@complaints_bp.route("/<string:complaint_id>/timeline", methods=["GET"])
def timeline(complaint_id):
    return jsonify([activity.to_payload() for activity in get_timeline(complaint_id)])


@complaints_bp.route("/<string:complaint_id>/notes", methods=["GET"])
def notes(complaint_id):
    public_only = request.args.get("public_only", "").lower() in {"1", "true", "yes"}
    return jsonify([note.to_payload() for note in list_notes(complaint_id, public_only=public_only)])


@complaints_bp.route("/<string:complaint_id>/notes", methods=["POST"])
@actor_required()
def create_note(complaint_id):
    form = _validated(NoteForm)
    is_public = _payload().get("is_public", True)
    note = add_note(complaint_id, g.actor_id, g.actor_role, form.content.data, is_public=bool(is_public))
    return jsonify(note.to_payload()), 201
