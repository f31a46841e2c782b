"""Tracking identifier issuance: department code resolution plus an atomic per-department sequence."""
from __future__ import annotations

import re

from flask import current_app
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError

from extensions import db
from models import DepartmentCounter, DynamicOption

DEFAULT_TRACKING_PREFIX = "4649"

# Every code has the same width so prefix + code + sequence never collides across departments.
DEPARTMENT_CODE_LENGTH = 5
DEPARTMENT_CODE_PATTERN = re.compile(rf"^\d{{{DEPARTMENT_CODE_LENGTH}}}$")

# Known departments whose code is used when the directory has none.
DEPARTMENT_CODE_FALLBACKS: dict[str, str] = {
    "computer engineering": "24510",
    "computer science": "24510",
    "civil engineering": "19110",
    "electrical engineering": "29310",
    "mechanical engineering": "61210",
}


class DepartmentCodeError(ValueError):
    """Raised when no department code can be resolved for a submission."""


def _normalize_department(name: str | None) -> str:
    return " ".join((name or "").split()).lower()


def is_valid_department_code(code: str | None) -> bool:
    return bool(code) and DEPARTMENT_CODE_PATTERN.match(code) is not None


def counter_key(department_code: str) -> str:
    return f"complaint_{department_code}"


def fallback_department_code(name: str | None) -> str | None:
    return DEPARTMENT_CODE_FALLBACKS.get(_normalize_department(name))


def resolve_department_code(name: str | None) -> str:
    """Directory entry first, static fallback second; fail before any counter is touched."""
    key = _normalize_department(name)
    if not key:
        raise DepartmentCodeError("Department is required.")

    option = (
        DynamicOption.query.filter(
            DynamicOption.type == "department",
            DynamicOption.is_active.is_(True),
            func.lower(func.trim(DynamicOption.value)) == key,
            DynamicOption.code.isnot(None),
            DynamicOption.code != "",
        )
        .order_by(DynamicOption.created_at.asc())
        .first()
    )
    if option:
        if not is_valid_department_code(option.code):
            current_app.logger.warning(
                "Directory department code has the wrong shape",
                extra={"department": name, "department_code": option.code},
            )
            raise DepartmentCodeError("Department code not configured. Please set code in dynamic options.")
        return option.code

    code = DEPARTMENT_CODE_FALLBACKS.get(key)
    if code:
        return code
    raise DepartmentCodeError("Department code not configured. Please set code in dynamic options.")


def _upsert_increment(dialect_name: str, key: str) -> int:
    if dialect_name == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    else:
        from sqlalchemy.dialects.sqlite import insert

    table = DepartmentCounter.__table__
    stmt = (
        insert(table)
        .values(key=key, seq=1)
        .on_conflict_do_update(index_elements=[table.c.key], set_={"seq": table.c.seq + 1})
        .returning(table.c.seq)
    )
    return db.session.execute(stmt).scalar_one()


def _locked_increment(key: str, attempts: int = 3) -> int:
    """Update-then-read inside one transaction for dialects without ON CONFLICT ... RETURNING."""
    table = DepartmentCounter.__table__
    for _ in range(attempts):
        result = db.session.execute(update(table).where(table.c.key == key).values(seq=table.c.seq + 1))
        if result.rowcount:
            return db.session.execute(select(table.c.seq).where(table.c.key == key)).scalar_one()
        try:
            with db.session.begin_nested():
                db.session.execute(table.insert().values(key=key, seq=1))
            return 1
        except IntegrityError:
            # Another request created the row first; its lock now orders us behind it.
            continue
    raise RuntimeError(f"Could not allocate a sequence for {key}")


def next_sequence(department_code: str) -> int:
    """Atomically increment and return the counter for a department code.

    The increment is committed on its own so the row lock is released at once;
    a number handed out here is never reissued even if the caller later fails.
    """
    key = counter_key(department_code)
    dialect_name = db.session.get_bind().dialect.name
    try:
        if dialect_name in ("sqlite", "postgresql"):
            seq = _upsert_increment(dialect_name, key)
        else:
            seq = _locked_increment(key)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return int(seq)


def compose_tracking_id(department_code: str, sequence: int, prefix: str | None = None) -> str:
    if not is_valid_department_code(department_code):
        raise DepartmentCodeError(f"Department code must be {DEPARTMENT_CODE_LENGTH} digits")
    if prefix is None:
        prefix = current_app.config.get("TRACKING_ID_PREFIX", DEFAULT_TRACKING_PREFIX)
    return f"{prefix}{department_code}{int(sequence)}"


def issue_tracking_id(department: str) -> str:
    code = resolve_department_code(department)
    sequence = next_sequence(code)
    tracking_id = compose_tracking_id(code, sequence)
    current_app.logger.info(
        "Tracking ID issued",
        extra={"department": department, "department_code": code, "sequence": sequence, "tracking_id": tracking_id},
    )
    return tracking_id
