"""Authentication blueprint: student signup and OTP login, admin login and provisioning."""
from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user, login_required
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from wtforms import PasswordField, StringField
from wtforms.validators import DataRequired, Email, Length, Optional as OptionalValue

from extensions import db
from models import ROLE_ADMIN, ROLE_STUDENT, AuditLog, Role, User
from utils.api import REQUIRED_MESSAGE, ApiForm, first_form_error, json_error, strip_lower, strip_value
from utils.auth_service import (
    AuthenticationError,
    OTPDeliveryError,
    admin_login as authenticate_admin,
    request_login,
    verify_otp as exchange_otp,
)
from utils.decorators import roles_required
from utils.security import password_meets_policy

auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")

VALID_EMAIL_MESSAGE = "Please enter a valid email address"


class CredentialsForm(ApiForm):
    email = StringField(
        "Email",
        filters=[strip_lower],
        validators=[DataRequired(message=REQUIRED_MESSAGE), Email(message=VALID_EMAIL_MESSAGE), Length(max=255)],
    )
    password = PasswordField("Password", validators=[DataRequired(message=REQUIRED_MESSAGE)])


class StudentSignupForm(CredentialsForm):
    name = StringField("Name", filters=[strip_value], validators=[DataRequired(message=REQUIRED_MESSAGE), Length(max=150)])


class AdminSignupForm(CredentialsForm):
    name = StringField("Name", filters=[strip_value], validators=[OptionalValue(), Length(max=150)])


class VerifyOtpForm(ApiForm):
    email = StringField(
        "Email",
        filters=[strip_lower],
        validators=[DataRequired(message=REQUIRED_MESSAGE), Email(message=VALID_EMAIL_MESSAGE)],
    )
    otp = StringField(
        "OTP",
        filters=[lambda v: str(v).strip() if v is not None else v],
        validators=[DataRequired(message=REQUIRED_MESSAGE), Length(max=12)],
    )


def log_action(action: str, user: User | None, email: str | None = None) -> None:
    entry = AuditLog(
        user_id=user.id if user else None,
        action_type=action,
        subject_email=email or (user.email if user else None),
        ip_address=request.remote_addr,
        user_agent=request.headers.get("User-Agent", "unknown"),
    )
    db.session.add(entry)


def _create_account(form: CredentialsForm, role_name: str, description: str):
    password_ok, reason = password_meets_policy(form.password.data)
    if not password_ok:
        return None, json_error(reason, 400)
    if User.query.filter_by(email=form.email.data).first():
        return None, json_error("Email already in use", 400)

    try:
        role = Role.get_or_create(role_name, description=description)
        user = User(full_name=form.name.data or None, email=form.email.data, role=role, is_active=True)
        user.set_password(form.password.data)
        db.session.add(user)
        db.session.flush()
        return user, None
    except IntegrityError:
        db.session.rollback()
        return None, json_error("Email already in use", 400)


@auth_bp.route("/student/signup", methods=["POST"])
def student_signup():
    form = StudentSignupForm()
    if not form.validate_on_submit():
        return json_error(first_form_error(form), 400)

    user, error = _create_account(form, ROLE_STUDENT, "Student submitting complaints")
    if error:
        return error
    log_action("STUDENT_SIGNUP", user)
    db.session.commit()
    current_app.logger.info("Student account created", extra={"user_id": user.id})
    return jsonify({"message": "Student created successfully"}), 201


@auth_bp.route("/student/login", methods=["POST"])
def student_login():
    form = CredentialsForm()
    if not form.validate_on_submit():
        return json_error(first_form_error(form), 400)

    try:
        student = request_login(form.email.data, form.password.data, ip_address=request.remote_addr)
    except AuthenticationError as exc:
        log_action("LOGIN_FAILED", None, email=form.email.data)
        db.session.commit()
        return json_error(str(exc), exc.status_code)
    except OTPDeliveryError as exc:
        return json_error(str(exc), 503)
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Database error during student login")
        return json_error("Login failed", 500)

    log_action("OTP_REQUESTED", student)
    db.session.commit()
    return jsonify({"message": "OTP sent"})


@auth_bp.route("/student/verify-otp", methods=["POST"])
def verify_student_otp():
    form = VerifyOtpForm()
    if not form.validate_on_submit():
        return json_error(first_form_error(form), 400)

    try:
        student, token = exchange_otp(form.email.data, form.otp.data)
    except AuthenticationError as exc:
        log_action("LOGIN_FAILED", None, email=form.email.data)
        db.session.commit()
        return json_error(str(exc), exc.status_code)
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Database error during OTP verification")
        return json_error("OTP verification failed", 500)

    log_action("LOGIN", student)
    db.session.commit()
    return jsonify({"token": token, "user": student.identity_payload()})


@auth_bp.route("/admin/login", methods=["POST"])
def admin_login():
    form = CredentialsForm()
    if not form.validate_on_submit():
        return json_error(first_form_error(form), 400)

    try:
        admin, token = authenticate_admin(form.email.data, form.password.data)
    except AuthenticationError as exc:
        log_action("LOGIN_FAILED", None, email=form.email.data)
        db.session.commit()
        return json_error(str(exc), exc.status_code)

    log_action("ADMIN_LOGIN", admin)
    db.session.commit()
    return jsonify({"token": token, "user": admin.identity_payload()})


@auth_bp.route("/admin/signup", methods=["POST"])
@roles_required("Admin")
def admin_signup():
    form = AdminSignupForm()
    if not form.validate_on_submit():
        return json_error(first_form_error(form), 400)

    user, error = _create_account(form, ROLE_ADMIN, "College complaint desk administrator")
    if error:
        return error
    log_action("ADMIN_CREATED", current_user, email=user.email)
    db.session.commit()
    current_app.logger.info("Admin account created", extra={"user_id": user.id, "created_by": current_user.id})
    return jsonify({"message": "Admin created successfully"}), 201


@auth_bp.route("/me", methods=["GET"])
@login_required
def me():
    return jsonify(current_user.identity_payload())
