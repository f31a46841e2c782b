"""Blueprint registration, service index, health probe, and attachment downloads."""
import os

from flask import Blueprint, abort, current_app, jsonify, send_from_directory
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.utils import secure_filename

from extensions import db
from .auth import auth_bp
from .complaints import complaints_bp
from .feedback import feedback_bp
from .options import options_bp

main_bp = Blueprint("main", __name__)


@main_bp.route("/")
def index():
    return jsonify({"service": "MaintaBIT complaint desk", "status": "ok"})


@main_bp.route("/api/health")
def health():
    try:
        db.session.execute(text("SELECT 1"))
    except SQLAlchemyError:
        current_app.logger.exception("Health check failed: database unreachable")
        return jsonify({"status": "degraded", "database": "unreachable"}), 503
    return jsonify({"status": "ok", "database": "ok"})


@main_bp.route("/uploads/<path:filename>")
def uploaded_file(filename):
    safe_name = secure_filename(filename)
    upload_root = current_app.config["UPLOAD_FOLDER"]
    if not safe_name or safe_name != filename or not os.path.isfile(os.path.join(upload_root, safe_name)):
        abort(404, description="File not found")
    return send_from_directory(upload_root, safe_name)


__all__ = ["main_bp", "auth_bp", "complaints_bp", "options_bp", "feedback_bp"]
