"""Flask application factory for the MaintaBIT college complaint desk API."""
import os
from typing import Optional

from flask import Flask, jsonify, request
from sqlalchemy import create_engine, text
from sqlalchemy.engine.url import make_url
from sqlalchemy.exc import OperationalError
from werkzeug.exceptions import HTTPException, NotFound
from dotenv import load_dotenv
from utils.logger import init_logging
from utils.security import apply_cors_headers, apply_security_headers, bearer_token
from utils.tokens import TokenError, decode_session_token
from extensions import db, migrate, login_manager


def register_error_handlers(app: Flask) -> None:
    def _json_http_error(error: HTTPException):
        return jsonify({"error": error.description or error.name}), error.code

    @app.errorhandler(400)
    def bad_request(error):
        app.logger.warning("400 Bad Request", extra={"path": request.path, "method": request.method})
        return _json_http_error(error)

    @app.errorhandler(401)
    def unauthorized(error):
        return jsonify({"error": "Authentication required"}), 401

    @app.errorhandler(403)
    def forbidden(error):
        app.logger.warning("403 Forbidden", extra={"path": request.path, "method": request.method})
        return jsonify({"error": "Access denied"}), 403

    @app.errorhandler(404)
    def not_found_error(error):
        app.logger.warning("404 Not Found", extra={"path": request.path, "method": request.method})
        description = error.description if error.description != NotFound.description else "Not found"
        return jsonify({"error": description}), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return jsonify({"error": "Method not allowed"}), 405

    @app.errorhandler(413)
    def payload_too_large(error):
        app.logger.warning("413 Payload Too Large", extra={"path": request.path, "length": request.content_length})
        limit_mb = int(app.config.get("MAX_ATTACHMENT_BYTES", 5 * 1024 * 1024)) // (1024 * 1024)
        return jsonify({"error": f"File size should be less than {limit_mb}MB"}), 413

    @app.errorhandler(500)
    def internal_error(error):
        db.session.rollback()
        app.logger.exception("500 Internal Server Error")
        return jsonify({"error": "Server error"}), 500


def ensure_database_exists(database_uri: str) -> None:
    """Create the target database if it does not exist (PostgreSQL + SQLite support)."""
    url = make_url(database_uri)

    if url.drivername.startswith("sqlite"):
        # For SQLite just make sure the parent directory exists.
        if url.database and url.database != ":memory:":
            os.makedirs(os.path.dirname(url.database) or ".", exist_ok=True)
        return

    if url.drivername.startswith("postgres"):
        db_name = url.database
        admin_url = url.set(database=os.getenv("POSTGRES_DB_ADMIN", "postgres"))
        engine = create_engine(admin_url, isolation_level="AUTOCOMMIT")
        try:
            with engine.connect() as conn:
                exists = conn.execute(
                    text("SELECT 1 FROM pg_database WHERE datname = :name"), {"name": db_name}
                ).scalar()
                if not exists:
                    conn.execute(text(f'CREATE DATABASE "{db_name}"'))
        except OperationalError:
            # If we cannot connect/create, let the normal app startup fail loudly later.
            pass
        finally:
            engine.dispose()


def register_auth(app: Flask) -> None:
    login_manager.init_app(app)

    @login_manager.user_loader
    def load_user(user_id):
        from models import User  # Local import to avoid circular dependency

        if not user_id:
            return None
        return db.session.get(User, str(user_id))

    @login_manager.request_loader
    def load_user_from_bearer(req):
        from models import User

        token = bearer_token(req.headers.get("Authorization"))
        if not token:
            return None
        try:
            claims = decode_session_token(token)
        except TokenError as exc:
            app.logger.info("Rejected session token", extra={"reason": str(exc), "path": req.path})
            return None
        user = db.session.get(User, str(claims["sub"]))
        # A token minted for one role never authorizes another, even if the account's role changed.
        if not user or not user.is_active or user.role_name != str(claims.get("role", "")).lower():
            return None
        return user

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({"error": "Authentication required"}), 401


def register_cli(app: Flask) -> None:
    from utils.auth_service import purge_expired_codes
    from utils.seed import run_seed

    @app.cli.command("otp-purge")
    def otp_purge():
        """Delete expired one-time login codes (schedule this via cron)."""
        removed = purge_expired_codes()
        app.logger.info("Expired one-time codes purged", extra={"removed": removed})

    @app.cli.command("seed")
    def seed():
        """Ensure roles, bootstrap accounts, the option directory, and department codes."""
        run_seed(app)


def create_app(config_name: Optional[str] = None, overrides: Optional[dict] = None) -> Flask:
    """Application factory with environment-aware configuration."""
    load_dotenv()

    app = Flask(__name__, instance_relative_config=True)

    # Resolve configuration
    from config import DevelopmentConfig, ProductionConfig, TestingConfig

    config_key = (config_name or os.getenv("FLASK_CONFIG") or os.getenv("FLASK_ENV") or "production").lower()
    config_map = {
        "development": DevelopmentConfig,
        "dev": DevelopmentConfig,
        "testing": TestingConfig,
        "test": TestingConfig,
        "production": ProductionConfig,
        "prod": ProductionConfig,
    }
    config_class = config_map.get(config_key, ProductionConfig)
    app.config.from_object(config_class())
    if overrides:
        app.config.update(overrides)

    ensure_database_exists(app.config["SQLALCHEMY_DATABASE_URI"])

    os.makedirs(app.instance_path, exist_ok=True)
    os.makedirs(app.config["UPLOAD_FOLDER"], exist_ok=True)

    # Initialize logging early
    logger = init_logging(app)
    app.logger = logger

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)
    register_auth(app)

    # Blueprints
    from routes import main_bp, auth_bp, complaints_bp, options_bp, feedback_bp

    app.register_blueprint(main_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(complaints_bp)
    app.register_blueprint(options_bp)
    app.register_blueprint(feedback_bp)

    register_cli(app)

    # Error handlers
    register_error_handlers(app)

    @app.after_request
    def _after_request(response):
        response = apply_security_headers(response, force_https=app.config.get("PREFERRED_URL_SCHEME") == "https")
        return apply_cors_headers(response)

    # Ensure tables exist so first run creates the database structure automatically.
    with app.app_context():
        import models  # noqa: F401  Register every table before create_all
        from utils.seed import run_seed

        db.create_all()
        run_seed(app)

    return app


# Expose the Flask application for WSGI servers (e.g., gunicorn app:app).
app = create_app()


if __name__ == "__main__":
    port = int(os.getenv("PORT", 5000))
    app.run(host="0.0.0.0", port=port, use_reloader=False)
