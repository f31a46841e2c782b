"""Signed session tokens issued after a successful login."""
from datetime import datetime, timedelta
from typing import Any, Dict

import jwt
from flask import current_app


class TokenError(Exception):
    """Raised when a session token is missing, malformed, tampered with, or expired."""


def _signing_settings() -> tuple[str, str]:
    secret = current_app.config.get("JWT_SECRET_KEY") or current_app.config["SECRET_KEY"]
    algorithm = current_app.config.get("JWT_ALGORITHM", "HS256")
    return secret, algorithm


def create_session_token(subject_id: str, role: str, issued_at: datetime | None = None) -> str:
    issued_at = issued_at or datetime.utcnow()
    ttl_hours = int(current_app.config.get("SESSION_TOKEN_TTL_HOURS", 24))
    claims = {
        "sub": str(subject_id),
        "role": role,
        "iat": issued_at,
        "exp": issued_at + timedelta(hours=ttl_hours),
    }
    secret, algorithm = _signing_settings()
    return jwt.encode(claims, secret, algorithm=algorithm)


def decode_session_token(token: str) -> Dict[str, Any]:
    secret, algorithm = _signing_settings()
    try:
        claims = jwt.decode(
            token,
            secret,
            algorithms=[algorithm],
            options={"require": ["sub", "role", "exp", "iat"]},
        )
    except jwt.ExpiredSignatureError as exc:
        raise TokenError("Session expired") from exc
    except jwt.InvalidTokenError as exc:
        raise TokenError("Invalid session token") from exc
    return claims
