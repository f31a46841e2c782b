"""
MaintaBIT - Test Configuration and Fixtures
"""
import os
import tempfile
from types import SimpleNamespace
from unittest.mock import patch

import pytest

# Set testing environment before the application module builds its default app
_BOOTSTRAP_DIR = tempfile.mkdtemp(prefix="maintabit-tests-")
os.environ['FLASK_CONFIG'] = 'testing'
os.environ['DATABASE_URL'] = f"sqlite:///{os.path.join(_BOOTSTRAP_DIR, 'bootstrap.db')}"
os.environ['LOG_DIR'] = os.path.join(_BOOTSTRAP_DIR, 'logs')
os.environ['UPLOAD_FOLDER'] = os.path.join(_BOOTSTRAP_DIR, 'uploads')
os.environ['CORS_ALLOWED_ORIGINS'] = 'http://localhost:3000'

from app import create_app
from extensions import db
from models import ROLE_ADMIN, ROLE_STUDENT, Role, User
from utils.tokens import create_session_token

STUDENT_PASSWORD = 'Student123'
ADMIN_PASSWORD = 'Admin12345'


@pytest.fixture
def app(tmp_path):
    """Fresh application bound to a per-test SQLite file"""
    application = create_app(
        'testing',
        overrides={
            'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'maintabit-test.db'}",
            'UPLOAD_FOLDER': str(tmp_path / 'uploads'),
            'LOG_DIR': str(tmp_path / 'logs'),
        },
    )
    yield application
    with application.app_context():
        db.session.remove()
        db.engine.dispose()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture(autouse=True)
def mail_outbox():
    """Capture outgoing mail instead of talking to SMTP"""
    sent = []

    def _capture(subject, text_body, html_body, sender, recipients):
        sent.append(
            {
                'subject': subject,
                'text': text_body,
                'html': html_body,
                'sender': sender,
                'recipients': list(recipients),
            }
        )

    with patch('utils.email_service._dispatch_email', side_effect=_capture):
        yield sent


def _create_account(app, email, password, role_name, full_name):
    with app.app_context():
        role = Role.get_or_create(role_name)
        user = User(full_name=full_name, email=email, role=role, is_active=True)
        user.set_password(password)
        db.session.add(user)
        db.session.commit()
        return SimpleNamespace(id=user.id, email=email, password=password)


@pytest.fixture
def student(app):
    return _create_account(app, 'student@college.edu', STUDENT_PASSWORD, ROLE_STUDENT, 'Test Student')


@pytest.fixture
def admin(app):
    return _create_account(app, 'admin@college.edu', ADMIN_PASSWORD, ROLE_ADMIN, 'Desk Admin')


@pytest.fixture
def make_token(app):
    """Mint a session token the way a successful login would"""

    def _make(user_id, role, issued_at=None):
        with app.app_context():
            return create_session_token(user_id, role, issued_at=issued_at)

    return _make


@pytest.fixture
def admin_headers(admin, make_token):
    return {'Authorization': f"Bearer {make_token(admin.id, 'admin')}"}


@pytest.fixture
def student_headers(student, make_token):
    return {'Authorization': f"Bearer {make_token(student.id, 'student')}"}


@pytest.fixture
def complaint_payload():
    return {
        'email': 'student@college.edu',
        'department': 'Computer Engineering',
        'category': 'facility',
        'subCategory': 'Fan',
        'description': 'Ceiling fan in lab 3 is not working',
        'priority': 'high',
    }
