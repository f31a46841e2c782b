"""Complaint intake, public tracking, and admin triage blueprint."""
from datetime import datetime

from flask import Blueprint, abort, current_app, jsonify, request
from flask_login import current_user, login_required
from flask_wtf.file import FileAllowed, FileField
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from wtforms import StringField, TextAreaField
from wtforms.validators import AnyOf, DataRequired, Email, Length, Optional as OptionalValue

from extensions import db
from models import (
    COMPLAINT_PRIORITIES,
    COMPLAINT_STATUSES,
    STATUS_TRANSITIONS,
    Complaint,
    ComplaintStatusHistory,
)
from utils.api import REQUIRED_MESSAGE, ApiForm, first_form_error, json_error, strip_lower, strip_value
from utils.decorators import roles_required
from utils.email_service import send_complaint_confirmation_email, send_resolution_email
from utils.tracking import DepartmentCodeError, issue_tracking_id
from utils.uploads import ALLOWED_ATTACHMENT_EXTENSIONS, AttachmentError, persist_attachment, remove_attachment, validate_attachment

complaints_bp = Blueprint("complaints", __name__, url_prefix="/api")

UNSUPPORTED_FILE_MESSAGE = "Unsupported file format. Allowed: PDF, DOC, DOCX, JPG, JPEG, PNG"


class StatusTransitionError(ValueError):
    """Raised when a workflow move is not allowed from the complaint's current status."""


class ComplaintSubmissionForm(ApiForm):
    email = StringField(
        "Email",
        filters=[strip_value],
        validators=[
            DataRequired(message=REQUIRED_MESSAGE),
            Email(message="Please enter a valid email address"),
            Length(max=255),
        ],
    )
    department = StringField("Department", filters=[strip_value], validators=[DataRequired(message=REQUIRED_MESSAGE), Length(max=150)])
    category = StringField("Category", filters=[strip_value], validators=[DataRequired(message=REQUIRED_MESSAGE), Length(max=150)])
    sub_category = StringField(
        "Sub-Category",
        name="subCategory",
        filters=[strip_value],
        validators=[DataRequired(message=REQUIRED_MESSAGE), Length(max=150)],
    )
    sub_other = StringField("Other", name="subOther", filters=[strip_value], validators=[OptionalValue(), Length(max=255)])
    description = TextAreaField("Description", filters=[strip_value], validators=[DataRequired(message=REQUIRED_MESSAGE), Length(max=5000)])
    priority = StringField(
        "Priority",
        filters=[strip_lower],
        validators=[DataRequired(message=REQUIRED_MESSAGE), AnyOf(COMPLAINT_PRIORITIES, message="Invalid priority")],
    )
    attachment = FileField(
        "Attachment",
        name="file",
        validators=[FileAllowed(sorted(ALLOWED_ATTACHMENT_EXTENSIONS), UNSUPPORTED_FILE_MESSAGE)],
    )

    def resolved_sub_category(self) -> str:
        if (self.sub_category.data or "").lower() == "other":
            return self.sub_other.data
        return self.sub_category.data


class StatusUpdateForm(ApiForm):
    status = StringField(
        "Status",
        filters=[strip_lower],
        validators=[DataRequired(message="Status is required"), AnyOf(COMPLAINT_STATUSES, message="Invalid status")],
    )
    remarks = StringField("Remarks", filters=[strip_value], validators=[OptionalValue(), Length(max=500)])


def _complaint_or_404(complaint_id: str) -> Complaint:
    complaint = db.session.get(Complaint, str(complaint_id))
    if not complaint:
        abort(404, description="Complaint not found")
    return complaint


def _record_status(complaint: Complaint, new_status: str, remarks: str | None = None, previous_status: str | None = None) -> None:
    history = ComplaintStatusHistory(
        complaint=complaint,
        previous_status=previous_status,
        new_status=new_status,
        remarks=remarks,
        changed_by=current_user.id if current_user and current_user.is_authenticated else None,
    )
    complaint.status = new_status
    db.session.add(history)


def apply_status_transition(complaint: Complaint, new_status: str, remarks: str | None = None) -> None:
    current = complaint.status
    if new_status == current:
        raise StatusTransitionError(f"Complaint is already {current}")
    if new_status not in STATUS_TRANSITIONS.get(current, ()):
        raise StatusTransitionError(f"Cannot move complaint from {current} to {new_status}")

    now = datetime.utcnow()
    if new_status == "resolved":
        complaint.resolved_at = now
    elif new_status == "reopened":
        complaint.resolved_at = None
    complaint.updated_at = now
    _record_status(complaint, new_status, remarks=remarks, previous_status=current)


@complaints_bp.route("/submit_complaint", methods=["POST"])
def submit_complaint():
    form = ComplaintSubmissionForm()
    if not form.validate_on_submit():
        return json_error(first_form_error(form), 400)

    sub_category = form.resolved_sub_category()
    if not sub_category:
        return json_error("Please describe the sub-category when choosing other", 400)

    upload = form.attachment.data if form.attachment.data and form.attachment.data.filename else None
    max_bytes = int(current_app.config.get("MAX_ATTACHMENT_BYTES", 5 * 1024 * 1024))
    if upload is not None:
        try:
            validate_attachment(upload, max_bytes=max_bytes)
        except AttachmentError as exc:
            return json_error(str(exc), 400)

    try:
        tracking_id = issue_tracking_id(form.department.data)
    except DepartmentCodeError as exc:
        current_app.logger.warning("Complaint rejected: department code missing", extra={"department": form.department.data})
        return json_error(str(exc), 400)
    except SQLAlchemyError:
        current_app.logger.exception("Tracking sequence allocation failed")
        return json_error("Failed to submit complaint. Please try again.", 500)

    stored = None
    try:
        if upload is not None:
            stored = persist_attachment(upload, current_app.config["UPLOAD_FOLDER"], max_bytes=max_bytes)

        complaint = Complaint(
            tracking_id=tracking_id,
            email=form.email.data,
            department=form.department.data,
            category=form.category.data,
            sub_category=sub_category,
            sub_other=form.sub_other.data or "",
            description=form.description.data,
            priority=form.priority.data,
            file_path=stored["public_path"] if stored else "",
            status="pending",
        )
        db.session.add(complaint)
        _record_status(complaint, "pending", remarks="Complaint submitted")
        db.session.commit()
    except (SQLAlchemyError, OSError, AttachmentError):
        db.session.rollback()
        remove_attachment(stored["path"] if stored else None)
        current_app.logger.exception("Complaint persistence failed", extra={"tracking_id": tracking_id})
        return json_error("Failed to submit complaint. Please try again.", 500)

    current_app.logger.info(
        "Complaint submitted",
        extra={"tracking_id": tracking_id, "priority": complaint.priority, "has_attachment": bool(stored)},
    )

    try:
        send_complaint_confirmation_email(complaint)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Confirmation email failed", extra={"tracking_id": tracking_id})

    return (
        jsonify(
            {
                "message": f"Complaint submitted successfully with priority: {complaint.priority.upper()}",
                "trackingId": tracking_id,
            }
        ),
        201,
    )


@complaints_bp.route("/complaints", methods=["GET"])
@roles_required("Admin")
def list_complaints():
    query = Complaint.query
    status_filter = strip_lower(request.args.get("status"))
    priority_filter = strip_lower(request.args.get("priority"))
    category_filter = strip_value(request.args.get("category"))
    department_filter = strip_value(request.args.get("department"))

    if status_filter and status_filter != "all":
        query = query.filter(Complaint.status == status_filter)
    if priority_filter and priority_filter != "all":
        query = query.filter(Complaint.priority == priority_filter)
    if category_filter and category_filter.lower() != "all":
        query = query.filter(func.lower(Complaint.category) == category_filter.lower())
    if department_filter and department_filter.lower() != "all":
        query = query.filter(func.lower(Complaint.department) == department_filter.lower())

    complaints = query.order_by(Complaint.created_at.desc()).all()
    return jsonify([c.to_dict() for c in complaints])


@complaints_bp.route("/complaints/stats", methods=["GET"])
@roles_required("Admin")
def complaint_stats():
    def _grouped(column) -> dict:
        rows = db.session.query(column, func.count(Complaint.id)).group_by(column).all()
        return {key: count for key, count in rows}

    by_status = _grouped(Complaint.status)
    by_priority = _grouped(Complaint.priority)
    return jsonify(
        {
            "total": sum(by_status.values()),
            "byStatus": {status: by_status.get(status, 0) for status in COMPLAINT_STATUSES},
            "byPriority": {priority: by_priority.get(priority, 0) for priority in COMPLAINT_PRIORITIES},
            "byCategory": _grouped(Complaint.category),
            "byDepartment": _grouped(Complaint.department),
        }
    )


@complaints_bp.route("/complaints/id/<string:complaint_id>", methods=["GET"])
@roles_required("Admin")
def get_complaint(complaint_id):
    return jsonify(_complaint_or_404(complaint_id).to_dict())


@complaints_bp.route("/complaints/<string:tracking_id>", methods=["GET"])
def track_complaint(tracking_id):
    complaint = Complaint.query.filter_by(tracking_id=tracking_id.strip()).first()
    if not complaint:
        return json_error("Complaint not found", 404)
    return jsonify(complaint.public_payload())


@complaints_bp.route("/complaints-by-email", methods=["GET"])
@login_required
def complaints_by_email():
    email = strip_lower(request.args.get("email"))
    if not email:
        return json_error("Email is required", 400)
    if not current_user.is_admin and email != current_user.email.lower():
        abort(403)

    complaints = (
        Complaint.query.filter(func.lower(Complaint.email) == email)
        .order_by(Complaint.created_at.desc())
        .all()
    )
    return jsonify([c.to_dict() for c in complaints])


@complaints_bp.route("/complaints/<string:complaint_id>/status", methods=["PUT"])
@roles_required("Admin")
def update_complaint_status(complaint_id):
    form = StatusUpdateForm()
    if not form.validate_on_submit():
        return json_error(first_form_error(form, default="Status is required"), 400)

    complaint = _complaint_or_404(complaint_id)
    previous = complaint.status
    try:
        apply_status_transition(complaint, form.status.data, remarks=form.remarks.data or None)
        db.session.commit()
    except StatusTransitionError as exc:
        db.session.rollback()
        current_app.logger.warning(
            "Rejected status transition",
            extra={"tracking_id": complaint.tracking_id, "from": previous, "to": form.status.data},
        )
        return json_error(str(exc), 400)
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Status update failed", extra={"complaint_id": complaint_id})
        return json_error("Server error", 500)

    current_app.logger.info(
        "Complaint status updated",
        extra={"tracking_id": complaint.tracking_id, "from": previous, "to": complaint.status, "by": current_user.id},
    )

    if complaint.status == "resolved":
        try:
            send_resolution_email(complaint, remarks=form.remarks.data or None)
        except Exception:
            db.session.rollback()
            current_app.logger.exception("Resolution email failed", extra={"tracking_id": complaint.tracking_id})

    return jsonify(complaint.to_dict())
