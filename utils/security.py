"""Security helpers for headers, CORS, one-time codes, and password policy."""
import secrets

from flask import current_app, request

CORS_ALLOWED_HEADERS = "Authorization, Content-Type"
CORS_ALLOWED_METHODS = "GET, POST, PUT, DELETE, OPTIONS"


def apply_security_headers(response, force_https: bool = False):
    """Apply security headers suitable for a JSON API sitting behind a browser frontend."""
    response.headers.setdefault("Content-Security-Policy", "default-src 'none'; frame-ancestors 'none'")
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    if force_https or request.is_secure:
        response.headers.setdefault("Strict-Transport-Security", "max-age=63072000; includeSubDomains; preload")
    return response


def apply_cors_headers(response):
    """Echo the Origin back only when it is one of the configured frontend origins."""
    origin = request.headers.get("Origin")
    allowed = current_app.config.get("CORS_ALLOWED_ORIGINS") or []
    if origin and (origin in allowed or "*" in allowed):
        response.headers["Access-Control-Allow-Origin"] = origin
        response.headers["Access-Control-Allow-Headers"] = CORS_ALLOWED_HEADERS
        response.headers["Access-Control-Allow-Methods"] = CORS_ALLOWED_METHODS
        response.headers["Access-Control-Max-Age"] = "600"
        response.vary.add("Origin")
    return response


def generate_otp(length: int = 6) -> str:
    """Uniform numeric code without a leading zero, e.g. 100000-999999 for six digits."""
    low = 10 ** (length - 1)
    return str(low + secrets.randbelow(9 * low))


def bearer_token(header_value: str | None) -> str | None:
    if not header_value:
        return None
    scheme, _, token = header_value.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def password_meets_policy(password: str) -> tuple[bool, str | None]:
    """Baseline password rules for self-service accounts."""
    if len(password or "") < 8:
        return False, "Password must be at least 8 characters long."
    if not any(c.isalpha() for c in password):
        return False, "Include at least one letter."
    if not any(c.isdigit() for c in password):
        return False, "Include at least one digit."
    return True, None
