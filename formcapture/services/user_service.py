"""
User Service — user CRUD, login check, role management.
"""

import logging
from datetime import datetime, timezone

from email_validator import EmailNotValidError, validate_email

from formcapture.core.exceptions import ConflictError, NotFoundError, ValidationError
from formcapture.models import db
from formcapture.models.audit import write_activity
from formcapture.models.auth import VALID_ROLES, User
from formcapture.utils.crypto import hash_password, verify_password

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6


def _normalize_email(email: str | None) -> str | None:
    if not email:
        return None
    try:
        return validate_email(email, check_deliverability=False).normalized
    except EmailNotValidError as e:
        raise ValidationError(f"Invalid email: {e}", details={"email": str(e)})


def _check_role(role: str) -> str:
    if role not in VALID_ROLES:
        raise ValidationError(
            f"Invalid role: {role}",
            details={"role": f"Must be one of {sorted(VALID_ROLES)}"},
        )
    return role


def _check_password(password: str | None) -> str:
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters",
            details={"password": "too short"},
        )
    return password


# ═══════════════════════════════════════════════════════════════
# User CRUD
# ═══════════════════════════════════════════════════════════════
def create_user(
    username: str,
    password: str,
    name: str,
    role: str,
    email: str = None,
    department: str = None,
    created_by: int = None,
) -> User:
    """Create a user; usernames are unique (case-insensitive)."""
    username = (username or "").strip()
    if not username:
        raise ValidationError("username is required", details={"username": "required"})
    if not (name or "").strip():
        raise ValidationError("name is required", details={"name": "required"})
    _check_role(role)
    _check_password(password)

    existing = User.query.filter(db.func.lower(User.username) == username.lower()).first()
    if existing:
        raise ConflictError("User", "username", username)

    user = User(
        username=username,
        password_hash=hash_password(password),
        name=name.strip(),
        email=_normalize_email(email),
        role=role,
        department=department,
    )
    db.session.add(user)
    db.session.flush()
    write_activity(
        user_id=created_by, action="created", resource_type="user",
        resource_id=user.id, details={"username": user.username, "role": role},
    )
    db.session.commit()
    logger.info("User created", extra={"user_id": user.id, "role": role})
    return user


def get_user(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if not user:
        raise NotFoundError(resource="User", resource_id=user_id)
    return user


def get_user_by_username(username: str) -> User | None:
    if not username:
        return None
    return User.query.filter(db.func.lower(User.username) == username.strip().lower()).first()


def update_user(user_id: int, data: dict, updated_by: int = None) -> User:
    """Update profile fields, role, active flag and (optionally) password."""
    user = get_user(user_id)

    if "username" in data and data["username"] and data["username"] != user.username:
        clash = get_user_by_username(data["username"])
        if clash and clash.id != user.id:
            raise ConflictError("User", "username", data["username"])
        user.username = data["username"].strip()
    if "name" in data and data["name"]:
        user.name = data["name"].strip()
    if "email" in data:
        user.email = _normalize_email(data["email"])
    if "department" in data:
        user.department = data["department"]
    if "role" in data and data["role"]:
        user.role = _check_role(data["role"])
    if "is_active" in data:
        user.is_active = bool(data["is_active"])
    if data.get("password"):
        user.password_hash = hash_password(_check_password(data["password"]))

    write_activity(
        user_id=updated_by, action="updated", resource_type="user",
        resource_id=user.id,
        details={"fields": sorted(k for k in data if k != "password")},
    )
    db.session.commit()
    return user


def list_users(role: str = None, department: str = None, page: int = 1, per_page: int = 50) -> dict:
    """List users with optional role / department filter and pagination."""
    q = User.query
    if role:
        q = q.filter_by(role=role)
    if department:
        q = q.filter_by(department=department)
    q = q.order_by(User.name.asc())

    total = q.count()
    users = q.offset((page - 1) * per_page).limit(per_page).all()
    return {
        "items": [u.to_dict() for u in users],
        "total": total,
        "page": page,
        "per_page": per_page,
        "pages": (total + per_page - 1) // per_page,
    }


def user_names(user_ids) -> dict[int, str]:
    """Map user ids to display names (missing users are omitted)."""
    ids = {uid for uid in user_ids if uid}
    if not ids:
        return {}
    return {u.id: u.name for u in User.query.filter(User.id.in_(ids)).all()}


# ═══════════════════════════════════════════════════════════════
# Login
# ═══════════════════════════════════════════════════════════════
def authenticate(username: str, password: str) -> User | None:
    """Return the active user matching the credentials, else None."""
    user = get_user_by_username(username)
    if not user or not user.is_active:
        return None
    if not verify_password(password, user.password_hash):
        return None
    user.last_login_at = datetime.now(timezone.utc)
    write_activity(
        user_id=user.id, action="login", resource_type="user", resource_id=user.id,
    )
    db.session.commit()
    return user
