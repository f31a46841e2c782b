"""Resolution feedback and contact-us messages."""
from flask import Blueprint, current_app, jsonify
from sqlalchemy.exc import SQLAlchemyError
from wtforms import IntegerField, StringField, TextAreaField
from wtforms.validators import DataRequired, Email, Length, NumberRange, Optional as OptionalValue

from extensions import db
from models import ContactMessage, Feedback
from utils.api import REQUIRED_MESSAGE, ApiForm, first_form_error, json_error, strip_value

feedback_bp = Blueprint("feedback", __name__, url_prefix="/api")


class FeedbackForm(ApiForm):
    complaint_id = StringField(
        "Complaint",
        name="complaintId",
        filters=[lambda v: str(v).strip() if v is not None else v],
        validators=[DataRequired(message=REQUIRED_MESSAGE), Length(max=40)],
    )
    feedback = TextAreaField("Feedback", filters=[strip_value], validators=[DataRequired(message=REQUIRED_MESSAGE), Length(max=5000)])
    resolution = StringField("Resolution", filters=[strip_value], validators=[DataRequired(message=REQUIRED_MESSAGE), Length(max=255)])
    # 0 is a valid rating, so presence is checked on raw_data rather than with DataRequired.
    rating = IntegerField("Rating", validators=[NumberRange(min=0, max=5, message="Rating must be between 0 and 5")])


class ContactForm(ApiForm):
    name = StringField("Name", filters=[strip_value], validators=[DataRequired(message=REQUIRED_MESSAGE), Length(max=150)])
    email = StringField(
        "Email",
        filters=[strip_value],
        validators=[DataRequired(message=REQUIRED_MESSAGE), Email(message="Please enter a valid email address"), Length(max=255)],
    )
    subject = StringField("Subject", filters=[strip_value], validators=[DataRequired(message=REQUIRED_MESSAGE), Length(max=255)])
    message = TextAreaField("Message", filters=[strip_value], validators=[DataRequired(message=REQUIRED_MESSAGE), Length(max=5000)])
    user_id = StringField("User", name="userId", filters=[strip_value], validators=[OptionalValue(), Length(max=64)])


@feedback_bp.route("/submit_feedback", methods=["POST"])
def submit_feedback():
    form = FeedbackForm()
    if not form.validate_on_submit():
        if not form.rating.raw_data:
            return json_error(REQUIRED_MESSAGE, 400)
        return json_error(first_form_error(form), 400)

    entry = Feedback(
        complaint_id=form.complaint_id.data,
        feedback=form.feedback.data,
        resolution=form.resolution.data,
        rating=form.rating.data,
    )
    try:
        db.session.add(entry)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Feedback persistence failed", extra={"complaint_id": form.complaint_id.data})
        return json_error("Server error", 500)

    current_app.logger.info("Feedback received", extra={"complaint_id": entry.complaint_id, "rating": entry.rating})
    return jsonify({"message": "Feedback submitted successfully"}), 201


@feedback_bp.route("/contact", methods=["POST"])
def contact():
    form = ContactForm()
    if not form.validate_on_submit():
        return json_error(first_form_error(form), 400)

    entry = ContactMessage(
        name=form.name.data,
        email=form.email.data,
        subject=form.subject.data,
        message=form.message.data,
        user_id=form.user_id.data or "anonymous",
    )
    try:
        db.session.add(entry)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Contact message persistence failed")
        return json_error("Server error", 500)

    current_app.logger.info("Contact message received", extra={"contact_id": entry.id, "user_id": entry.user_id})
    return jsonify({"message": "Message sent successfully"}), 201
