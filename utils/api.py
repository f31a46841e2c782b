"""Helpers shared by the JSON blueprints: form base class and error responses."""
from flask import jsonify
from flask_wtf import FlaskForm

REQUIRED_MESSAGE = "All required fields must be filled"


class ApiForm(FlaskForm):
    """Form bound to JSON or multipart bodies; bearer tokens replace CSRF cookies on this API."""

    class Meta:
        csrf = False


def first_form_error(form: FlaskForm, default: str = REQUIRED_MESSAGE) -> str:
    for errors in form.errors.values():
        if errors:
            return errors[0] if isinstance(errors[0], str) else default
    return default


def json_error(message: str, status: int):
    return jsonify({"error": message}), status


def strip_lower(value):
    return value.strip().lower() if isinstance(value, str) else value


def strip_value(value):
    return value.strip() if isinstance(value, str) else value
