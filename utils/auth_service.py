"""Two-step student login: password check, emailed one-time code, code exchange for a session token."""
from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import func

from extensions import db
from models import ROLE_ADMIN, ROLE_STUDENT, OneTimeCode, Role, User
from utils.email_service import EmailDeliveryError, send_otp_email
from utils.security import generate_otp
from utils.tokens import create_session_token

INVALID_OTP_MESSAGE = "Invalid or expired OTP"


class AuthenticationError(Exception):
    """Raised when credentials do not check out."""

    status_code = 401


class AccountNotFoundError(AuthenticationError):
    status_code = 404


class InvalidOTPError(AuthenticationError):
    """Uniform failure for absent, mismatched, and expired codes."""

    def __init__(self, message: str = INVALID_OTP_MESSAGE) -> None:
        super().__init__(message)


class OTPDeliveryError(Exception):
    """Raised when the code could not be sent; no pending code is left behind."""


def _utcnow() -> datetime:
    return datetime.utcnow()


def normalize_email(email: str | None) -> str:
    return (email or "").strip().lower()


def find_account(email: str, role_name: str) -> User | None:
    return (
        User.query.join(Role)
        .filter(func.lower(User.email) == normalize_email(email), Role.name == role_name)
        .first()
    )


def check_credentials(email: str, password: str, role_name: str) -> User:
    user = find_account(email, role_name)
    if not user or not user.is_active:
        raise AccountNotFoundError("Invalid credentials")
    if not user.check_password(password):
        raise AuthenticationError("Invalid credentials")
    return user


def purge_expired_codes(now: datetime | None = None) -> int:
    """Delete every pending code past its expiry; returns how many were removed."""
    now = now or _utcnow()
    removed = OneTimeCode.query.filter(OneTimeCode.expires_at <= now).delete(synchronize_session=False)
    db.session.commit()
    if removed:
        current_app.logger.info("Expired one-time codes purged", extra={"count": removed})
    return removed


def issue_code(email: str, ip_address: str | None = None) -> str:
    """Create the single live code for an email, replacing any earlier one."""
    email = normalize_email(email)
    now = _utcnow()
    ttl_seconds = int(current_app.config.get("OTP_TTL_SECONDS", 300))
    code = generate_otp(int(current_app.config.get("OTP_LENGTH", 6)))

    OneTimeCode.query.filter_by(email=email).delete(synchronize_session=False)
    record = OneTimeCode(email=email, expires_at=now + timedelta(seconds=ttl_seconds), ip_address=ip_address)
    record.set_code(code)
    db.session.add(record)
    db.session.commit()
    return code


def discard_code(email: str) -> None:
    OneTimeCode.query.filter_by(email=normalize_email(email)).delete(synchronize_session=False)
    db.session.commit()


def request_login(email: str, password: str, ip_address: str | None = None) -> User:
    """Verify student credentials and email a fresh login code.

    Credential failures leave any pending code untouched. Delivery failures
    discard the new code so nothing unusable lingers.
    """
    student = check_credentials(email, password, ROLE_STUDENT)
    purge_expired_codes()
    code = issue_code(student.email, ip_address=ip_address)
    try:
        send_otp_email(student.email, code, int(current_app.config.get("OTP_TTL_SECONDS", 300)))
    except EmailDeliveryError as exc:
        discard_code(student.email)
        current_app.logger.warning("OTP email dispatch failed", extra={"user_id": student.id, "error": str(exc)})
        raise OTPDeliveryError("Unable to send OTP. Please try again later.") from exc
    current_app.logger.info("OTP issued", extra={"user_id": student.id})
    return student


def verify_otp(email: str, submitted_code: str) -> tuple[User, str]:
    """Exchange a live code for a student session token; the code is consumed on success."""
    email = normalize_email(email)
    record = OneTimeCode.query.filter_by(email=email).first()
    if record is None:
        raise InvalidOTPError()

    if record.is_expired(_utcnow()):
        db.session.delete(record)
        db.session.commit()
        current_app.logger.info("Expired OTP rejected", extra={"email_domain": email.split("@")[-1]})
        raise InvalidOTPError()

    if not record.matches(str(submitted_code or "").strip()):
        raise InvalidOTPError()

    student = find_account(email, ROLE_STUDENT)
    db.session.delete(record)
    if not student or not student.is_active:
        db.session.commit()
        raise InvalidOTPError()

    student.last_login_at = _utcnow()
    db.session.commit()
    token = create_session_token(student.id, student.role_name)
    return student, token


def admin_login(email: str, password: str) -> tuple[User, str]:
    admin = check_credentials(email, password, ROLE_ADMIN)
    admin.last_login_at = _utcnow()
    db.session.commit()
    return admin, create_session_token(admin.id, admin.role_name)
