"""Core data models for the complaint lifecycle, verification votes, and notifications."""
import uuid
from datetime import datetime

from extensions import db


def generate_uuid() -> str:
	return str(uuid.uuid4())


def _in_clause(column: str, values: tuple[str, ...]) -> str:
	quoted = ",".join(f"'{v}'" for v in values)
	return f"{column} IN ({quoted})"


COMPLAINT_STATUSES: tuple[str, ...] = (
	"submitted",
	"in_review",
	"in_progress",
	"pending_verification",
	"resolved",
	"rejected",
	"reopened",
	"flagged",
)

COMPLAINT_CATEGORIES: tuple[str, ...] = (
	"Roads",
	"Water",
	"Electricity",
	"Sanitation",
	"Public Safety",
	"General",
)

COMPLAINT_PRIORITIES: tuple[str, ...] = (
	"low",
	"medium",
	"high",
	"critical",
)

COMPLAINT_SOURCES: tuple[str, ...] = (
	"web",
	"whatsapp",
	"ivr",
)

ACTIVITY_TYPES: tuple[str, ...] = (
	"created",
	"ai_analyzed",
	"admin_updated",
	"admin_resolved",
	"citizen_verified",
	"citizen_reopened",
)

ACTOR_ROLES: tuple[str, ...] = (
	"citizen",
	"official",
	"superadmin",
	"system",
)

AI_VERDICTS: tuple[str, ...] = (
	"LIKELY_MATCH",
	"UNCERTAIN",
	"LIKELY_FAKE",
)

COMMUNITY_VOTE_KINDS: tuple[str, ...] = (
	"looks_fixed",
	"not_fixed",
)

MODERATION_EVENT_TYPES: tuple[str, ...] = (
	"DUPLICATE_PROOF",
	"CITIZEN_REOPEN",
	"COMMUNITY_REOPEN",
)

NOTIFICATION_STATUSES: tuple[str, ...] = (
	"OPEN",
	"ACKED",
)


class Complaint(db.Model):
	__tablename__ = "complaints"

	id = db.Column(db.String(36), primary_key=True, default=generate_uuid)
	display_id = db.Column(db.String(20), nullable=False, unique=True, index=True)
	user_id = db.Column(db.String(128), nullable=True, index=True)
	is_anonymous = db.Column(db.Boolean, nullable=False, default=False)
	source = db.Column(db.String(20), nullable=False, default="web", index=True)
	title = db.Column(db.String(255), nullable=False)
	description = db.Column(db.Text, nullable=False)
	category = db.Column(db.String(30), nullable=False, default="General", index=True)
	priority = db.Column(db.String(20), nullable=False, default="medium", index=True)
	status = db.Column(db.String(30), nullable=False, default="submitted", index=True)
	assigned_to = db.Column(db.String(128), nullable=True, index=True)
	department = db.Column(db.String(120), nullable=True)
	latitude = db.Column(db.Float, nullable=True)
	longitude = db.Column(db.Float, nullable=True)
	address = db.Column(db.String(500), nullable=True)
	state_code = db.Column(db.String(20), nullable=True, index=True)
	district_code = db.Column(db.String(40), nullable=True, index=True)
	ward_code = db.Column(db.String(40), nullable=True, index=True)
	attachments = db.Column(db.JSON, nullable=False, default=list)
	ai_summary = db.Column(db.Text, nullable=True)
	resolution_proof = db.Column(db.JSON, nullable=True)
	proof_uploaded_at = db.Column(db.DateTime, nullable=True)
	proof_hash = db.Column(db.String(128), nullable=True, index=True)
	resolver_id = db.Column(db.String(128), nullable=True, index=True)
	resolution_round = db.Column(db.Integer, nullable=False, default=0)
	ai_score = db.Column(db.Float, nullable=True)
	ai_verdict = db.Column(db.String(20), nullable=True)
	ai_reason = db.Column(db.Text, nullable=True)
	needs_community_vote = db.Column(db.Boolean, nullable=False, default=False, index=True)
	verification_deadline = db.Column(db.DateTime, nullable=True, index=True)
	times_reopened = db.Column(db.Integer, nullable=False, default=0)
	reopen_reason = db.Column(db.String(500), nullable=True)
	dispute_votes = db.Column(db.Integer, nullable=False, default=0)
	is_overdue = db.Column(db.Boolean, nullable=False, default=False)
	is_escalated = db.Column(db.Boolean, nullable=False, default=False, index=True)
	escalation_triggered = db.Column(db.Boolean, nullable=False, default=False, index=True)
	escalated_at = db.Column(db.DateTime, nullable=True)
	upvotes = db.Column(db.Integer, nullable=False, default=0)
	upvoted_by = db.Column(db.JSON, nullable=False, default=list)
	created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)
	updated_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)

	__table_args__ = (
		db.CheckConstraint(_in_clause("status", COMPLAINT_STATUSES), name="ck_complaint_status_valid"),
		db.CheckConstraint(_in_clause("category", COMPLAINT_CATEGORIES), name="ck_complaint_category_valid"),
		db.CheckConstraint(_in_clause("priority", COMPLAINT_PRIORITIES), name="ck_complaint_priority_valid"),
		db.CheckConstraint(_in_clause("source", COMPLAINT_SOURCES), name="ck_complaint_source_valid"),
		db.CheckConstraint(
			"ai_verdict IS NULL OR " + _in_clause("ai_verdict", AI_VERDICTS),
			name="ck_complaint_ai_verdict_valid",
		),
		db.CheckConstraint("times_reopened >= 0", name="ck_complaint_reopen_count"),
		db.CheckConstraint("ai_score IS NULL OR (ai_score >= 0 AND ai_score <= 1)", name="ck_complaint_ai_score_range"),
		db.Index("ix_complaints_escalation_scan", "status", "escalation_triggered", "created_at"),
	)

	activities = db.relationship(
		"ComplaintActivity",
		back_populates="complaint",
		order_by="ComplaintActivity.sequence",
		cascade="all, delete-orphan",
	)
	notes = db.relationship(
		"ComplaintNote",
		back_populates="complaint",
		order_by="ComplaintNote.created_at",
		cascade="all, delete-orphan",
	)

	@property
	def immutable_fields(self) -> set[str]:
		return {"id", "display_id", "user_id", "is_anonymous", "source", "created_at", "times_reopened"}

	@property
	def verification(self) -> dict | None:
		if self.ai_verdict is None:
			return None
		return {
			"aiScore": self.ai_score,
			"aiVerdict": self.ai_verdict,
			"aiReason": self.ai_reason,
			"needsCommunityVote": bool(self.needs_community_vote),
		}

	def to_payload(self) -> dict:
		return {
			"id": str(self.id),
			"displayId": self.display_id,
			"userId": None if self.is_anonymous else self.user_id,
			"isAnonymous": bool(self.is_anonymous),
			"source": self.source,
			"title": self.title,
			"description": self.description,
			"category": self.category,
			"priority": self.priority,
			"status": self.status,
			"assignedTo": self.assigned_to,
			"department": self.department,
			"location": {
				"lat": self.latitude,
				"lng": self.longitude,
				"address": self.address,
				"stateCode": self.state_code,
				"districtCode": self.district_code,
				"wardCode": self.ward_code,
			},
			"attachments": list(self.attachments or []),
			"aiSummary": self.ai_summary,
			"resolutionProof": self.resolution_proof,
			"verification": self.verification,
			"verificationDeadline": _iso(self.verification_deadline),
			"timesReopened": self.times_reopened,
			"disputeVotes": self.dispute_votes,
			"isOverdue": bool(self.is_overdue),
			"isEscalated": bool(self.is_escalated),
			"escalationTriggered": bool(self.escalation_triggered),
			"upvotes": self.upvotes,
			"createdAt": _iso(self.created_at),
			"updatedAt": _iso(self.updated_at),
		}

	def public_payload(self) -> dict:
		return {
			"id": self.display_id if self.is_anonymous else str(self.id),
			"title": self.title,
			"category": self.category,
			"status": self.status,
			"priority": self.priority,
			"district": self.district_code,
			"ward": self.ward_code,
			"timestamp": _iso(self.updated_at),
		}


class ComplaintActivity(db.Model):
	__tablename__ = "complaint_activities"

	id = db.Column(db.Integer, primary_key=True)
	complaint_id = db.Column(db.String(36), db.ForeignKey("complaints.id"), nullable=False, index=True)
	sequence = db.Column(db.Integer, nullable=False)
	activity_type = db.Column(db.String(30), nullable=False, index=True)
	actor_id = db.Column(db.String(128), nullable=False)
	actor_role = db.Column(db.String(20), nullable=False)
	note = db.Column(db.String(1000), nullable=True)
	meta = db.Column(db.JSON, nullable=False, default=dict)
	timestamp = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)

	__table_args__ = (
		db.UniqueConstraint("complaint_id", "sequence", name="uq_activity_sequence"),
		db.CheckConstraint(_in_clause("activity_type", ACTIVITY_TYPES), name="ck_activity_type_valid"),
		db.CheckConstraint(_in_clause("actor_role", ACTOR_ROLES), name="ck_activity_actor_role_valid"),
	)

	complaint = db.relationship("Complaint", back_populates="activities")

	def to_payload(self) -> dict:
		return {
			"id": self.id,
			"type": self.activity_type,
			"actorId": self.actor_id,
			"actorRole": self.actor_role,
			"note": self.note,
			"meta": self.meta or {},
			"timestamp": _iso(self.timestamp),
		}


class ComplaintNote(db.Model):
	__tablename__ = "complaint_notes"

	id = db.Column(db.String(36), primary_key=True, default=generate_uuid)
	complaint_id = db.Column(db.String(36), db.ForeignKey("complaints.id"), nullable=False, index=True)
	author_id = db.Column(db.String(128), nullable=False, index=True)
	author_role = db.Column(db.String(20), nullable=False)
	content = db.Column(db.Text, nullable=False)
	is_public = db.Column(db.Boolean, nullable=False, default=True)
	created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)

	complaint = db.relationship("Complaint", back_populates="notes")

	def to_payload(self) -> dict:
		return {
			"id": self.id,
			"complaintId": self.complaint_id,
			"userId": self.author_id,
			"role": self.author_role,
			"content": self.content,
			"isPublic": bool(self.is_public),
			"createdAt": _iso(self.created_at),
		}


class CommunityVote(db.Model):
	__tablename__ = "community_votes"

	id = db.Column(db.Integer, primary_key=True)
	complaint_id = db.Column(db.String(36), db.ForeignKey("complaints.id"), nullable=False, index=True)
	voter_id = db.Column(db.String(128), nullable=False, index=True)
	resolution_round = db.Column(db.Integer, nullable=False, default=1)
	vote = db.Column(db.String(20), nullable=False)
	created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
	updated_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

	__table_args__ = (
		db.UniqueConstraint("complaint_id", "voter_id", "resolution_round", name="uq_community_vote_voter"),
		db.CheckConstraint(_in_clause("vote", COMMUNITY_VOTE_KINDS), name="ck_community_vote_kind"),
	)


class DisputeVote(db.Model):
	__tablename__ = "dispute_votes"

	id = db.Column(db.Integer, primary_key=True)
	complaint_id = db.Column(db.String(36), db.ForeignKey("complaints.id"), nullable=False, index=True)
	voter_id = db.Column(db.String(128), nullable=False, index=True)
	created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

	__table_args__ = (
		db.UniqueConstraint("complaint_id", "voter_id", name="uq_dispute_vote_voter"),
	)


class ModerationEvent(db.Model):
	__tablename__ = "moderation_events"

	id = db.Column(db.String(36), primary_key=True, default=generate_uuid)
	complaint_id = db.Column(db.String(36), db.ForeignKey("complaints.id"), nullable=True, index=True)
	official_id = db.Column(db.String(128), nullable=False, index=True)
	event_type = db.Column(db.String(50), nullable=False, index=True)
	notes = db.Column(db.String(500), nullable=True)
	created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)

	__table_args__ = (
		db.CheckConstraint(_in_clause("event_type", MODERATION_EVENT_TYPES), name="ck_moderation_event"),
	)


class Notification(db.Model):
	__tablename__ = "notifications"

	id = db.Column(db.String(36), primary_key=True, default=generate_uuid)
	complaint_id = db.Column(db.String(36), nullable=False, index=True)
	event_type = db.Column(db.String(60), nullable=False, index=True)
	recipient = db.Column(db.String(128), nullable=False, index=True)
	message = db.Column(db.String(500), nullable=True)
	status = db.Column(db.String(20), nullable=False, default="OPEN", index=True)
	extra_metadata = db.Column("metadata", db.JSON, nullable=True)
	created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)
	acknowledged_at = db.Column(db.DateTime, nullable=True)

	__table_args__ = (
		db.CheckConstraint(_in_clause("status", NOTIFICATION_STATUSES), name="ck_notification_status"),
		db.Index("ix_notification_target", "recipient", "status", "created_at"),
	)

	def to_payload(self) -> dict:
		return {
			"id": self.id,
			"complaintId": self.complaint_id,
			"eventType": self.event_type,
			"recipient": self.recipient,
			"message": self.message,
			"status": self.status,
			"createdAt": _iso(self.created_at),
		}


def _iso(value: datetime | None) -> str | None:
	return value.isoformat() if value else None
