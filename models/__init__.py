"""Core data models for accounts, complaints, tracking counters, and the option directory."""
import uuid
from datetime import datetime

from flask_login import UserMixin
from werkzeug.security import check_password_hash, generate_password_hash

from extensions import db


def generate_uuid() -> str:
	return str(uuid.uuid4())


def _isoformat(value: datetime | None) -> str | None:
	return value.isoformat() if value else None


ROLE_STUDENT = "Student"
ROLE_ADMIN = "Admin"

COMPLAINT_PRIORITIES: tuple[str, ...] = (
	"urgent",
	"high",
	"medium",
	"low",
)

COMPLAINT_STATUSES: tuple[str, ...] = (
	"pending",
	"in_progress",
	"escalated",
	"resolved",
	"reopened",
)

# Allowed workflow moves; anything else is rejected at the API boundary.
STATUS_TRANSITIONS: dict[str, tuple[str, ...]] = {
	"pending": ("in_progress", "escalated", "resolved"),
	"in_progress": ("pending", "escalated", "resolved"),
	"escalated": ("in_progress", "resolved"),
	"resolved": ("reopened",),
	"reopened": ("in_progress", "escalated", "resolved"),
}

OPTION_TYPES: tuple[str, ...] = (
	"category",
	"facilityType",
	"department",
	"subCategory",
	"other",
)

EMAIL_DELIVERY_STATUSES: tuple[str, ...] = (
	"SENT",
	"FAILED",
)


class Role(db.Model):
	__tablename__ = "roles"

	id = db.Column(db.Integer, primary_key=True)
	name = db.Column(db.String(50), unique=True, nullable=False, index=True)
	description = db.Column(db.String(255), nullable=True)

	users = db.relationship("User", back_populates="role", lazy="dynamic")

	@staticmethod
	def get_or_create(name: str, description: str = ""):
		role = Role.query.filter_by(name=name).first()
		if role:
			return role
		role = Role(name=name, description=description)
		db.session.add(role)
		db.session.commit()
		return role


class User(UserMixin, db.Model):
	__tablename__ = "users"

	id = db.Column(db.String(36), primary_key=True, default=generate_uuid)
	full_name = db.Column(db.String(150), nullable=True)
	email = db.Column(db.String(255), unique=True, nullable=False, index=True)
	password_hash = db.Column(db.String(255), nullable=False)
	role_id = db.Column(db.Integer, db.ForeignKey("roles.id"), nullable=False)
	is_active = db.Column(db.Boolean, default=True, nullable=False)
	created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
	last_login_at = db.Column(db.DateTime, nullable=True)

	role = db.relationship("Role", back_populates="users")
	audit_logs = db.relationship("AuditLog", back_populates="user", lazy="dynamic")

	def set_password(self, password: str) -> None:
		self.password_hash = generate_password_hash(password, method="pbkdf2:sha256", salt_length=16)

	def check_password(self, password: str) -> bool:
		return check_password_hash(self.password_hash, password or "")

	@property
	def role_name(self) -> str:
		"""Lowercase role label carried in session tokens (``student`` / ``admin``)."""
		return (self.role.name if self.role else "").lower()

	@property
	def is_admin(self) -> bool:
		return self.role_name == ROLE_ADMIN.lower()

	@property
	def active(self) -> bool:  # Flask-Login compatibility alias
		return self.is_active

	def identity_payload(self) -> dict:
		return {
			"id": str(self.id),
			"name": self.full_name,
			"email": self.email,
			"role": self.role_name,
		}


class AuditLog(db.Model):
	__tablename__ = "audit_logs"

	id = db.Column(db.Integer, primary_key=True)
	user_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=True)
	action_type = db.Column(db.String(50), nullable=False)
	subject_email = db.Column(db.String(255), nullable=True)
	ip_address = db.Column(db.String(64), nullable=True)
	user_agent = db.Column(db.String(255), nullable=True)
	timestamp = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)

	user = db.relationship("User", back_populates="audit_logs")


class OneTimeCode(db.Model):
	"""Pending login code; the unique email column keeps at most one live code per account."""

	__tablename__ = "one_time_codes"

	id = db.Column(db.Integer, primary_key=True)
	email = db.Column(db.String(255), nullable=False, unique=True, index=True)
	code_hash = db.Column(db.String(255), nullable=False)
	expires_at = db.Column(db.DateTime, nullable=False, index=True)
	created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
	ip_address = db.Column(db.String(64), nullable=True)

	def set_code(self, code: str) -> None:
		self.code_hash = generate_password_hash(code, method="pbkdf2:sha256", salt_length=12)

	def is_expired(self, now: datetime) -> bool:
		return now >= self.expires_at

	def matches(self, candidate: str) -> bool:
		return check_password_hash(self.code_hash, candidate or "")


class DepartmentCounter(db.Model):
	"""Per-department sequence; only ever written through the increment-and-fetch in utils.tracking."""

	__tablename__ = "department_counters"

	key = db.Column(db.String(64), primary_key=True)
	seq = db.Column(db.Integer, nullable=False, default=0)


class DynamicOption(db.Model):
	__tablename__ = "dynamic_options"

	id = db.Column(db.String(36), primary_key=True, default=generate_uuid)
	type = db.Column(db.String(20), nullable=False, index=True)
	value = db.Column(db.String(150), nullable=False)
	code = db.Column(db.String(20), nullable=True)
	# Empty string rather than NULL so the unique constraint also holds for top-level options.
	parent_category = db.Column(db.String(150), nullable=False, default="")
	is_active = db.Column(db.Boolean, default=True, nullable=False, index=True)
	created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

	__table_args__ = (
		db.UniqueConstraint("type", "value", "parent_category", name="uq_dynamic_option_scope"),
		db.CheckConstraint(
			"type IN ('category','facilityType','department','subCategory','other')",
			name="ck_dynamic_option_type",
		),
	)

	def to_dict(self) -> dict:
		payload = {
			"_id": str(self.id),
			"type": self.type,
			"value": self.value,
			"isActive": self.is_active,
			"createdAt": _isoformat(self.created_at),
		}
		if self.type == "department":
			payload["code"] = self.code
		if self.type == "subCategory":
			payload["parentCategory"] = self.parent_category
		return payload


class Complaint(db.Model):
	__tablename__ = "complaints"

	id = db.Column(db.String(36), primary_key=True, default=generate_uuid)
	tracking_id = db.Column(db.String(40), unique=True, nullable=False, index=True)
	email = db.Column(db.String(255), nullable=False, index=True)
	department = db.Column(db.String(150), nullable=False, index=True)
	category = db.Column(db.String(150), nullable=False, index=True)
	sub_category = db.Column(db.String(150), nullable=False)
	sub_other = db.Column(db.String(255), nullable=False, default="")
	description = db.Column(db.Text, nullable=False)
	priority = db.Column(db.String(10), nullable=False, default="medium", index=True)
	file_path = db.Column(db.String(500), nullable=False, default="")
	status = db.Column(db.String(20), nullable=False, default="pending", index=True)
	submitted_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
	resolved_at = db.Column(db.DateTime, nullable=True)
	created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)
	updated_at = db.Column(
		db.DateTime,
		default=datetime.utcnow,
		onupdate=datetime.utcnow,
		nullable=False,
		index=True,
	)

	__table_args__ = (
		db.CheckConstraint(
			"status IN ('pending','in_progress','escalated','resolved','reopened')",
			name="ck_complaint_status_valid",
		),
		db.CheckConstraint(
			"priority IN ('urgent','high','medium','low')",
			name="ck_complaint_priority_valid",
		),
	)

	status_history = db.relationship(
		"ComplaintStatusHistory",
		back_populates="complaint",
		order_by="ComplaintStatusHistory.changed_at",
		cascade="all, delete-orphan",
	)
	email_logs = db.relationship("EmailAuditLog", back_populates="complaint", cascade="all, delete-orphan")

	def public_payload(self) -> dict:
		"""Tracking view: enough to follow progress without exposing the submitter."""
		return {
			"trackingId": self.tracking_id,
			"department": self.department,
			"category": self.category,
			"subCategory": self.sub_category,
			"priority": self.priority,
			"status": self.status,
			"submittedAt": _isoformat(self.submitted_at),
			"updatedAt": _isoformat(self.updated_at),
			"resolvedAt": _isoformat(self.resolved_at),
		}

	def to_dict(self) -> dict:
		payload = self.public_payload()
		payload.update(
			{
				"_id": str(self.id),
				"email": self.email,
				"subOther": self.sub_other,
				"description": self.description,
				"filePath": self.file_path,
				"createdAt": _isoformat(self.created_at),
				"history": [h.to_dict() for h in self.status_history],
			}
		)
		return payload


class ComplaintStatusHistory(db.Model):
	__tablename__ = "complaint_status_history"

	id = db.Column(db.Integer, primary_key=True)
	complaint_id = db.Column(db.String(36), db.ForeignKey("complaints.id"), nullable=False, index=True)
	previous_status = db.Column(db.String(20), nullable=True)
	new_status = db.Column(db.String(20), nullable=False, index=True)
	remarks = db.Column(db.String(500), nullable=True)
	changed_by = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=True)
	changed_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)

	complaint = db.relationship("Complaint", back_populates="status_history")
	actor = db.relationship("User")

	def to_dict(self) -> dict:
		return {
			"previousStatus": self.previous_status,
			"status": self.new_status,
			"remarks": self.remarks,
			"changedAt": _isoformat(self.changed_at),
		}


class EmailAuditLog(db.Model):
	__tablename__ = "email_audit_logs"

	id = db.Column(db.Integer, primary_key=True)
	complaint_id = db.Column(db.String(36), db.ForeignKey("complaints.id"), nullable=False, index=True)
	sender_email = db.Column(db.String(255), nullable=False)
	recipient_email = db.Column(db.String(255), nullable=False)
	subject = db.Column(db.String(255), nullable=False)
	email_body_snapshot = db.Column(db.Text, nullable=False)
	sent_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)
	delivery_status = db.Column(db.String(20), nullable=False, index=True)
	error_message = db.Column(db.Text, nullable=True)

	__table_args__ = (
		db.CheckConstraint(
			"delivery_status IN ('SENT','FAILED')",
			name="ck_email_delivery_status",
		),
		db.Index("ix_email_audit_complaint_sent", "complaint_id", "sent_at"),
	)

	complaint = db.relationship("Complaint", back_populates="email_logs")


class Feedback(db.Model):
	__tablename__ = "feedback"

	id = db.Column(db.Integer, primary_key=True)
	complaint_id = db.Column(db.String(40), nullable=False, index=True)
	feedback = db.Column(db.Text, nullable=False)
	resolution = db.Column(db.String(255), nullable=False)
	rating = db.Column(db.Integer, nullable=False)
	created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)

	__table_args__ = (
		db.CheckConstraint("rating >= 0 AND rating <= 5", name="ck_feedback_rating_range"),
	)


class ContactMessage(db.Model):
	__tablename__ = "contact_messages"

	id = db.Column(db.Integer, primary_key=True)
	name = db.Column(db.String(150), nullable=False)
	email = db.Column(db.String(255), nullable=False)
	subject = db.Column(db.String(255), nullable=False)
	message = db.Column(db.Text, nullable=False)
	user_id = db.Column(db.String(64), nullable=False, default="anonymous")
	submitted_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)
