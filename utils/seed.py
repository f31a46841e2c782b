"""Startup seeding: roles, bootstrap accounts, the default option directory, and department codes."""
from flask import Flask

from extensions import db
from models import ROLE_ADMIN, ROLE_STUDENT, DynamicOption, Role, User
from utils.tracking import DEPARTMENT_CODE_FALLBACKS, fallback_department_code

DEFAULT_CATEGORIES: tuple[str, ...] = ("facility", "request", "hostel")

DEFAULT_DEPARTMENTS: tuple[tuple[str, str | None], ...] = (
    ("Computer Science", DEPARTMENT_CODE_FALLBACKS["computer science"]),
    ("Electrical Engineering", DEPARTMENT_CODE_FALLBACKS["electrical engineering"]),
    ("Mechanical Engineering", DEPARTMENT_CODE_FALLBACKS["mechanical engineering"]),
    ("Civil Engineering", DEPARTMENT_CODE_FALLBACKS["civil engineering"]),
    ("Information Technology", None),
)

DEFAULT_SUB_CATEGORIES: dict[str, tuple[str, ...]] = {
    "facility": ("washroom", "Water-Cooler", "Garbage", "tap", "Fan", "Lights"),
    "request": ("wheelchair", "mat", "Table-Cloth", "Sound-System", "Seminar-Hall"),
    "hostel": ("electricity", "cleaning", "water"),
}


def _ensure_account(email: str, password: str, role: Role, full_name: str) -> User | None:
    email = (email or "").lower().strip()
    if not email or not password:
        return None
    user = User.query.filter_by(email=email).first()
    if user:
        updates = False
        if user.role != role:
            user.role = role
            updates = True
        if not user.is_active:
            user.is_active = True
            updates = True
        if updates:
            db.session.add(user)
            db.session.commit()
        return user

    user = User(full_name=full_name, email=email, role=role, is_active=True)
    user.set_password(password)
    db.session.add(user)
    db.session.commit()
    return user


def ensure_default_roles_and_accounts(app: Flask) -> None:
    """Ensure both roles exist and the configured bootstrap accounts can log in."""
    admin_role = Role.get_or_create(ROLE_ADMIN, description="College complaint desk administrator")
    student_role = Role.get_or_create(ROLE_STUDENT, description="Student submitting complaints")

    if _ensure_account(app.config.get("DEFAULT_ADMIN_EMAIL"), app.config.get("DEFAULT_ADMIN_PASSWORD"), admin_role, "System Administrator"):
        app.logger.info("Default admin account ensured", extra={"email": app.config.get("DEFAULT_ADMIN_EMAIL")})
    if _ensure_account(app.config.get("DEFAULT_STUDENT_EMAIL"), app.config.get("DEFAULT_STUDENT_PASSWORD"), student_role, "Test Student"):
        app.logger.info("Default student account ensured", extra={"email": app.config.get("DEFAULT_STUDENT_EMAIL")})


def seed_default_options(app: Flask) -> int:
    """Insert the starter directory once; an existing directory is left alone."""
    if DynamicOption.query.count() > 0:
        app.logger.info("Option directory already populated, skipping seed")
        return 0

    options = [DynamicOption(type="category", value=value) for value in DEFAULT_CATEGORIES]
    options.extend(DynamicOption(type="department", value=value, code=code) for value, code in DEFAULT_DEPARTMENTS)
    for parent, values in DEFAULT_SUB_CATEGORIES.items():
        options.extend(DynamicOption(type="subCategory", value=value, parent_category=parent) for value in values)
    db.session.add_all(options)
    db.session.commit()
    app.logger.info("Option directory seeded", extra={"count": len(options)})
    return len(options)


def ensure_department_codes(app: Flask) -> int:
    """Bring directory entries for known department names in line with the static code table."""
    updated = 0
    for option in DynamicOption.query.filter_by(type="department").all():
        desired = fallback_department_code(option.value)
        if desired and option.code != desired:
            option.code = desired
            updated += 1
    if updated:
        db.session.commit()
    app.logger.info("Department codes ensured", extra={"updated": updated})
    return updated


def run_seed(app: Flask) -> None:
    ensure_default_roles_and_accounts(app)
    if app.config.get("SEED_DEFAULT_DATA", True):
        seed_default_options(app)
    ensure_department_codes(app)
