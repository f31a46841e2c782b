"""SMTP-backed email dispatcher for login codes and complaint notifications."""
import smtplib
import ssl
from email.message import EmailMessage
from email.utils import formatdate, make_msgid
from typing import Dict, List, Tuple

from flask import current_app, render_template

from extensions import db
from models import Complaint, EmailAuditLog
from utils.email_formatter import (
    format_complaint_receipt_markdown,
    format_otp_markdown,
    format_resolution_markdown,
    markdown_to_email_html,
    markdown_to_plaintext,
)


class EmailDeliveryError(Exception):
    """Raised when email dispatch fails."""


def _render_email_content(template: str, subject: str, markdown_body: str, context: Dict) -> Tuple[str, str]:
    """Return plaintext and HTML bodies using a shared markdown source."""
    text_body = markdown_to_plaintext(markdown_body)
    ctx = dict(context or {})
    preheader = ctx.pop("preheader", "")
    html_body = render_template(
        template,
        subject=subject,
        content_html=markdown_to_email_html(markdown_body),
        preheader=preheader,
        **ctx,
    )
    return text_body, html_body


def _resolve_sender() -> str:
    return current_app.config.get("MAIL_DEFAULT_SENDER") or current_app.config.get("MAIL_USERNAME") or ""


def _frontend_url(path: str) -> str:
    base = (current_app.config.get("FRONTEND_BASE_URL") or "").rstrip("/")
    return f"{base}/{path.lstrip('/')}"


def _complaint_context(complaint: Complaint) -> Dict:
    return {
        "tracking_id": complaint.tracking_id,
        "department": complaint.department,
        "category": complaint.category,
        "sub_category": complaint.sub_category,
        "priority": complaint.priority,
        "status": complaint.status,
        "submitted_at": complaint.submitted_at.strftime("%Y-%m-%d %H:%M UTC") if complaint.submitted_at else "",
        "resolved_at": complaint.resolved_at.strftime("%Y-%m-%d %H:%M UTC") if complaint.resolved_at else "",
    }


def _dispatch_email(subject: str, text_body: str, html_body: str, sender: str, recipients: List[str]) -> None:
    if not recipients:
        raise EmailDeliveryError("No recipients resolved for email dispatch")
    if not sender:
        raise EmailDeliveryError("MAIL_DEFAULT_SENDER is not configured")

    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = sender
    msg["To"] = ", ".join(recipients)
    msg["Reply-To"] = sender
    msg["Date"] = formatdate(localtime=True)
    msg["Message-ID"] = make_msgid()
    msg.set_content(text_body or markdown_to_plaintext(html_body))
    msg.add_alternative(html_body, subtype="html")

    if current_app.config.get("MAIL_SUPPRESS_SEND"):
        current_app.logger.info("Email suppressed", extra={"subject": subject, "recipients": recipients})
        return

    host = current_app.config.get("MAIL_SERVER")
    port = int(current_app.config.get("MAIL_PORT", 25))
    username = current_app.config.get("MAIL_USERNAME")
    password = current_app.config.get("MAIL_PASSWORD")
    use_tls = bool(current_app.config.get("MAIL_USE_TLS"))
    use_ssl = bool(current_app.config.get("MAIL_USE_SSL"))

    if not host:
        raise EmailDeliveryError("MAIL_SERVER is not configured")

    try:
        if use_ssl:
            context = ssl.create_default_context()
            with smtplib.SMTP_SSL(host, port, context=context, timeout=15) as server:
                if username and password:
                    server.login(username, password)
                server.send_message(msg)
        else:
            with smtplib.SMTP(host, port, timeout=15) as server:
                server.ehlo()
                if use_tls:
                    server.starttls(context=ssl.create_default_context())
                if username and password:
                    server.login(username, password)
                server.send_message(msg)
    except Exception as exc:  # pragma: no cover - external I/O
        raise EmailDeliveryError(str(exc)) from exc


def _persist_audit(
    complaint: Complaint,
    sender: str,
    recipient: str,
    subject: str,
    body: str,
    status: str,
    error: str | None = None,
) -> None:
    log = EmailAuditLog(
        complaint_id=complaint.id,
        sender_email=sender or "unconfigured",
        recipient_email=recipient,
        subject=subject,
        email_body_snapshot=body,
        delivery_status=status,
        error_message=error,
    )
    db.session.add(log)


def _send_complaint_email(complaint: Complaint, template: str, subject: str, markdown_body: str, context: Dict) -> bool:
    """Send and audit a complaint notification; failures are logged and recorded, never raised."""
    sender = _resolve_sender()
    text_body, html_body = _render_email_content(template, subject, markdown_body, context)
    try:
        _dispatch_email(subject, text_body, html_body, sender, [complaint.email])
    except EmailDeliveryError as exc:
        current_app.logger.warning(
            "Complaint email dispatch failed",
            extra={"tracking_id": complaint.tracking_id, "subject": subject, "error": str(exc)},
        )
        _persist_audit(complaint, sender, complaint.email, subject, html_body, status="FAILED", error=str(exc))
        db.session.commit()
        return False
    _persist_audit(complaint, sender, complaint.email, subject, html_body, status="SENT")
    db.session.commit()
    return True


def send_otp_email(recipient: str, code: str, ttl_seconds: int) -> None:
    ttl_minutes = max(1, ttl_seconds // 60)
    markdown_body = format_otp_markdown(code, ttl_minutes)
    subject = "Your OTP Code"
    context = {
        "preheader": f"Your login code expires in {ttl_minutes} minutes.",
    }
    text_body, html_body = _render_email_content("email/otp_code.html", subject, markdown_body, context)
    _dispatch_email(subject, text_body, html_body, _resolve_sender(), [recipient])


def send_complaint_confirmation_email(complaint: Complaint) -> bool:
    track_url = _frontend_url("track-complaint")
    context = _complaint_context(complaint)
    markdown_body = format_complaint_receipt_markdown(context, track_url)
    return _send_complaint_email(
        complaint,
        "email/complaint_submitted.html",
        "Complaint Submitted Successfully",
        markdown_body,
        {**context, "track_url": track_url, "preheader": f"Tracking ID {complaint.tracking_id}"},
    )


def send_resolution_email(complaint: Complaint, remarks: str | None = None) -> bool:
    track_url = _frontend_url("track-complaint")
    feedback_url = _frontend_url("feedback")
    context = _complaint_context(complaint)
    markdown_body = format_resolution_markdown(context, feedback_url, track_url, context={"remarks": remarks})
    return _send_complaint_email(
        complaint,
        "email/complaint_resolved.html",
        "Your complaint has been resolved",
        markdown_body,
        {
            **context,
            "track_url": track_url,
            "feedback_url": feedback_url,
            "preheader": f"Complaint {complaint.tracking_id} is resolved.",
        },
    )
