# Overview: Staff accounts for the clinic front desk; bcrypt passwords and credential checks.

"""
Staff Authentication

WHY: Every cash movement carries the user who posted it, so cashiers need
their own credentials rather than a shared terminal login.

MULTI-TENANT: A user belongs to one clinic (tenant_id). Usernames and
emails only have to be unique inside that clinic, so two clinics may both
have an "ana".

SECURITY NOTES:
- bcrypt, cost 12 by default (tests pass a lower cost)
- PASSWORD_RULES are checked before hashing
"""

import re

import bcrypt

from ..extensions import db
from ..models import Location, Tenant, User
from vetcaja.time_utils import utcnow


class PasswordValidationError(Exception):
    """Password does not satisfy PASSWORD_RULES."""


MIN_PASSWORD_LENGTH = 8

PASSWORD_RULES = (
    (re.compile(r"[A-Z]"), "Password must contain at least one uppercase letter"),
    (re.compile(r"[a-z]"), "Password must contain at least one lowercase letter"),
    (re.compile(r"\d"), "Password must contain at least one digit"),
    (re.compile(r"[!@#$%^&*(),.'\":{}|<>]"), "Password must contain at least one special character"),
)


def validate_password_strength(password: str) -> None:
    if len(password) < MIN_PASSWORD_LENGTH:
        raise PasswordValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
    for pattern, message in PASSWORD_RULES:
        if not pattern.search(password):
            raise PasswordValidationError(message)


def hash_password(password: str, rounds: int = 12) -> str:
    validate_password_strength(password)
    digest = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=rounds))
    return digest.decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Constant-time check. A corrupt stored hash simply fails."""
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


def _active_tenant(tenant_id: int) -> Tenant | None:
    clinic = db.session.get(Tenant, tenant_id)
    if clinic is None or not clinic.is_active:
        return None
    return clinic


def create_user(
    username: str,
    email: str,
    password: str,
    tenant_id: int,
    location_id: int | None = None,
    full_name: str | None = None,
    bcrypt_rounds: int = 12,
) -> User:
    """
    Register a staff member in a clinic.

    Raises:
        ValueError: clinic missing or inactive, username/email taken in the
            clinic, or a location of another clinic
        PasswordValidationError: weak password
    """
    if db.session.get(Tenant, tenant_id) is None:
        raise ValueError("Tenant not found")
    if _active_tenant(tenant_id) is None:
        raise ValueError("Tenant is not active")

    clash = db.session.query(User.id).filter(
        User.tenant_id == tenant_id,
        db.or_(User.username == username, User.email == email),
    ).first()
    if clash:
        raise ValueError("Username or email already exists in this tenant")

    if location_id is not None:
        location = db.session.get(Location, location_id)
        if location is None or location.tenant_id != tenant_id:
            raise ValueError("Location does not belong to this tenant")

    user = User(
        tenant_id=tenant_id,
        location_id=location_id,
        username=username,
        email=email,
        full_name=full_name,
        password_hash=hash_password(password, rounds=bcrypt_rounds),
    )
    db.session.add(user)
    db.session.commit()
    return user


def authenticate(username: str, password: str, tenant_id: int | None = None) -> User | None:
    """
    Check credentials; `username` may also be the email.

    Without tenant_id the first matching active user wins, so clinics that
    reuse usernames should always send it. Stamps last_login_at on success.
    """
    query = db.session.query(User).filter(
        db.or_(User.username == username, User.email == username),
        User.is_active.is_(True),
    )
    if tenant_id is not None:
        query = query.filter(User.tenant_id == tenant_id)

    user = query.first()
    if user is None or _active_tenant(user.tenant_id) is None:
        return None
    if not verify_password(password, user.password_hash):
        return None

    user.last_login_at = utcnow()
    db.session.commit()
    return user
