"""Markdown builders for notification emails, rendered to sanitized HTML and plaintext."""
import re
from typing import Dict, List, Optional

import bleach
from markdown_it import MarkdownIt


# Raw HTML stays disabled; user-entered complaint text is escaped before it reaches the parser.
_md = MarkdownIt("commonmark", {"linkify": True, "typographer": True, "html": False}).enable("linkify")

# Only what the notification bodies actually produce.
EMAIL_ALLOWED_TAGS = ["p", "ul", "li", "strong", "em", "h2", "a", "br", "code"]
EMAIL_ALLOWED_ATTRIBUTES = {"a": ["href", "title", "rel"]}

_BODY_STYLE = "font-family: Arial, Helvetica, sans-serif; font-size: 14px; line-height: 1.55; color: #1f2937;"


def _squash(text: str) -> str:
    text = re.sub(r"[\r\t ]+", " ", text or "")
    return re.sub(r" *\n *", "\n", text).strip()


def markdown_to_html(md_text: str) -> str:
    html = _md.render(_squash(md_text))
    return bleach.clean(html, tags=EMAIL_ALLOWED_TAGS, attributes=EMAIL_ALLOWED_ATTRIBUTES, strip=True)


def markdown_to_email_html(md_text: str) -> str:
    return f'<div style="{_BODY_STYLE}">{markdown_to_html(md_text)}</div>'


def markdown_to_plaintext(md_text: str) -> str:
    html = re.sub(r"</(p|li|h2)>", "\n", markdown_to_html(md_text))
    text = bleach.clean(html, tags=[], attributes={}, strip=True)
    lines = (re.sub(r"[ \t]+", " ", line).strip() for line in text.splitlines())
    return "\n".join(line for line in lines if line)


def format_sections(sections: List[Dict[str, object]]) -> str:
    """Join titled blocks, each an optional paragraph followed by an optional bullet list."""
    blocks: List[str] = []
    for section in sections:
        lines: List[str] = []
        title = _squash(str(section.get("title") or ""))
        body = _squash(str(section.get("body") or ""))
        if title:
            lines.append(f"## {title}")
        if body:
            lines.append(body)
        for bullet in section.get("bullets") or []:
            item = _squash(str(bullet)) if bullet is not None else ""
            if item:
                lines.append(f"- {item}")
        if lines:
            blocks.append("\n".join(lines))
    return "\n\n".join(blocks)


def _escape(value: object) -> str:
    """Neutralize markdown control characters in user-supplied values."""
    return re.sub(r"([\\`*_{}\[\]<>#|])", r"\\\1", str(value or ""))


def _complaint_bullets(complaint: Dict[str, object]) -> List[str]:
    return [
        f"**Tracking ID:** {_escape(complaint.get('tracking_id'))}",
        f"**Department:** {_escape(complaint.get('department'))}",
        f"**Category:** {_escape(complaint.get('category'))}",
        f"**Sub-Category:** {_escape(complaint.get('sub_category'))}",
        f"**Priority:** {_escape(str(complaint.get('priority') or '').upper())}",
    ]


def format_otp_markdown(code: str, ttl_minutes: int) -> str:
    sections = [
        {
            "title": "Your login code",
            "body": f"Use **{code}** to finish signing in. It expires in {ttl_minutes} minutes and works once.",
        },
        {
            "title": "Security Reminder",
            "bullets": ["If you did not try to sign in, ignore this email and consider changing your password."],
        },
    ]
    return format_sections(sections)


def format_complaint_receipt_markdown(complaint: Dict[str, object], track_url: str) -> str:
    sections = [
        {
            "title": "Complaint Submitted",
            "body": "Your complaint has been submitted successfully.",
            "bullets": _complaint_bullets(complaint),
        },
        {
            "title": "Track Progress",
            "body": f"Use your tracking ID at {track_url}",
        },
    ]
    return format_sections(sections)


def format_resolution_markdown(
    complaint: Dict[str, object],
    feedback_url: str,
    track_url: str,
    *,
    context: Optional[Dict[str, object]] = None,
) -> str:
    bullets = _complaint_bullets(complaint)
    bullets.append(f"**Submitted At:** {complaint.get('submitted_at')}")
    bullets.append(f"**Resolved At:** {complaint.get('resolved_at')}")
    remarks = (context or {}).get("remarks")
    if remarks:
        bullets.append(f"**Remarks:** {_escape(remarks)}")
    sections = [
        {
            "title": "Complaint Resolved",
            "body": f"Your complaint {_escape(complaint.get('tracking_id'))} has been marked as **RESOLVED**.",
            "bullets": bullets,
        },
        {
            "title": "Tell Us How We Did",
            "body": f"We would love to hear your feedback: {feedback_url}",
        },
        {
            "title": "Track Progress",
            "body": f"You can track your complaint status anytime at {track_url}",
        },
    ]
    return format_sections(sections)
