"""Role gates for the JSON API: no token is a 401, a valid token with the wrong role is a 403."""
from functools import wraps

from flask import abort, current_app, request
from flask_login import current_user, login_required

from extensions import db
from models import AuditLog


def _record_denied(required: frozenset) -> None:
    current_app.logger.warning(
        "Role check failed",
        extra={
            "user_id": current_user.id,
            "role": current_user.role_name,
            "required": sorted(required),
            "path": request.path,
        },
    )
    db.session.add(
        AuditLog(
            user_id=current_user.id,
            action_type="FORBIDDEN",
            subject_email=current_user.email,
            ip_address=request.remote_addr,
            user_agent=request.headers.get("User-Agent", "unknown"),
        )
    )
    db.session.commit()


def roles_required(*roles: str):
    required = frozenset(role.lower() for role in roles)

    def decorator(view):
        @wraps(view)
        @login_required
        def guarded(*args, **kwargs):
            if current_user.role_name not in required:
                _record_denied(required)
                abort(403)
            return view(*args, **kwargs)

        return guarded

    return decorator
