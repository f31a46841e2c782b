"""Environment-aware configuration for the Flask application."""
import os
from datetime import timedelta


class BaseConfig:
    def __init__(self) -> None:
        # Defaults for local dev: SQLite db and a non-empty secret. Override via env for production.
        self.SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key-change-me")
        db_url = os.getenv("DATABASE_URL")
        # If DATABASE_URL points to a placeholder host (e.g., db_host) or is missing, fall back to SQLite for local dev.
        if db_url and "db_host" not in db_url:
            self.SQLALCHEMY_DATABASE_URI = db_url
        else:
            self.SQLALCHEMY_DATABASE_URI = os.getenv(
                "SQLITE_URL",
                f"sqlite:///{os.path.join(os.getcwd(), 'instance', 'maintabit.db')}",
            )
        self.SQLALCHEMY_TRACK_MODIFICATIONS = False
        self.SQLALCHEMY_ENGINE_OPTIONS = {
            "pool_size": int(os.getenv("DB_POOL_SIZE", 10)),
            "max_overflow": int(os.getenv("DB_MAX_OVERFLOW", 20)),
            "pool_timeout": int(os.getenv("DB_POOL_TIMEOUT", 30)),
            "pool_recycle": int(os.getenv("DB_POOL_RECYCLE", 1800)),
        }
        self.PREFERRED_URL_SCHEME = os.getenv("PREFERRED_URL_SCHEME", "https")
        self.JSON_SORT_KEYS = False
        self.MAIL_SERVER = os.getenv("MAIL_SERVER", "")
        self.MAIL_PORT = int(os.getenv("MAIL_PORT", 25))
        self.MAIL_USERNAME = os.getenv("MAIL_USERNAME", "")
        self.MAIL_PASSWORD = os.getenv("MAIL_PASSWORD", "")
        self.MAIL_USE_TLS = os.getenv("MAIL_USE_TLS", "true").lower() == "true"
        self.MAIL_USE_SSL = os.getenv("MAIL_USE_SSL", "false").lower() == "true"
        self.MAIL_DEFAULT_SENDER = os.getenv("MAIL_DEFAULT_SENDER", "")
        self.MAIL_SUPPRESS_SEND = os.getenv("MAIL_SUPPRESS_SEND", "false").lower() == "true"
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
        self.LOG_DIR = os.getenv("LOG_DIR", os.path.join(os.getcwd(), "logs"))
        self.JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", self.SECRET_KEY)
        self.JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
        self.SESSION_TOKEN_TTL_HOURS = int(os.getenv("SESSION_TOKEN_TTL_HOURS", 24))
        self.OTP_TTL_SECONDS = int(os.getenv("OTP_TTL_SECONDS", 300))
        self.OTP_LENGTH = int(os.getenv("OTP_LENGTH", 6))
        self.TRACKING_ID_PREFIX = os.getenv("TRACKING_ID_PREFIX", "4649")
        self.UPLOAD_FOLDER = os.getenv(
            "UPLOAD_FOLDER",
            os.path.join(os.getcwd(), "instance", "uploads"),
        )
        self.MAX_ATTACHMENT_BYTES = int(os.getenv("MAX_ATTACHMENT_BYTES", 5 * 1024 * 1024))
        self.MAX_CONTENT_LENGTH = int(os.getenv("MAX_REQUEST_BYTES", 10 * 1024 * 1024))
        self.FRONTEND_BASE_URL = os.getenv("FRONTEND_BASE_URL", "http://localhost:3000").rstrip("/")
        self.CORS_ALLOWED_ORIGINS = [
            origin.strip()
            for origin in os.getenv("CORS_ALLOWED_ORIGINS", "http://localhost:3000").split(",")
            if origin.strip()
        ]
        self.DEFAULT_ADMIN_EMAIL = os.getenv("DEFAULT_ADMIN_EMAIL", "admin@college.com")
        self.DEFAULT_ADMIN_PASSWORD = os.getenv("DEFAULT_ADMIN_PASSWORD", "Admin@12345!")
        # Leave empty to skip creating a demo student account.
        self.DEFAULT_STUDENT_EMAIL = os.getenv("DEFAULT_STUDENT_EMAIL", "")
        self.DEFAULT_STUDENT_PASSWORD = os.getenv("DEFAULT_STUDENT_PASSWORD", "")
        self.SEED_DEFAULT_DATA = os.getenv("SEED_DEFAULT_DATA", "true").lower() == "true"


class DevelopmentConfig(BaseConfig):
    def __init__(self) -> None:
        super().__init__()
        self.DEBUG = True
        self.ENV = "development"
        self.PREFERRED_URL_SCHEME = "http"
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "DEBUG").upper()
        # No relay configured locally: log outgoing mail instead of failing logins.
        if not self.MAIL_SERVER:
            self.MAIL_SUPPRESS_SEND = True


class TestingConfig(BaseConfig):
    def __init__(self) -> None:
        super().__init__()
        self.TESTING = True
        self.DEBUG = False
        self.ENV = "testing"
        self.SECRET_KEY = "test-secret-key"
        self.JWT_SECRET_KEY = "test-jwt-secret-key-with-enough-length"
        self.PREFERRED_URL_SCHEME = "http"
        self.SQLALCHEMY_ENGINE_OPTIONS = {"connect_args": {"check_same_thread": False, "timeout": 30}}
        self.MAIL_SERVER = "smtp.test.invalid"
        self.MAIL_DEFAULT_SENDER = "noreply@college.edu"
        self.MAIL_SUPPRESS_SEND = False
        self.SEED_DEFAULT_DATA = False
        self.DEFAULT_ADMIN_EMAIL = ""
        self.DEFAULT_ADMIN_PASSWORD = ""


class ProductionConfig(BaseConfig):
    def __init__(self) -> None:
        super().__init__()
        self.DEBUG = False
        self.ENV = "production"
        self.SESSION_COOKIE_SECURE = True
        self.PERMANENT_SESSION_LIFETIME = timedelta(days=1)
        # Only enable X-Sendfile when explicitly configured (e.g., behind nginx/apache that supports it)
        self.USE_X_SENDFILE = os.getenv("USE_X_SENDFILE", "false").lower() == "true"
