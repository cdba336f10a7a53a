# Overview: Bearer-token sessions that pin each request to one clinic (tenant) and front-desk location.

"""
Staff Sessions

WHY: Cashiers share front-desk terminals. A session must expire on its own
when a terminal is left logged in, and must always say which clinic the
request acts for, since every caja lookup is tenant-scoped.

DESIGN:
- The client holds a random 32-byte hex token; the database only stores its
  SHA-256 digest, so a leaked table cannot be replayed
- tenant_id and location_id are copied onto the session at login; the
  location becomes the default drawer location for caja routes
- A session dies after SESSION_ABSOLUTE_TIMEOUT, or after
  SESSION_IDLE_TIMEOUT without use, or when user/tenant is deactivated
"""

import hashlib
import secrets
from dataclasses import dataclass
from datetime import timedelta

from ..extensions import db
from ..models import SessionToken, Tenant, User
from vetcaja.time_utils import utcnow


SESSION_ABSOLUTE_TIMEOUT = timedelta(hours=24)
SESSION_IDLE_TIMEOUT = timedelta(hours=2)


@dataclass
class SessionContext:
    user: User
    session: SessionToken
    tenant_id: int
    location_id: int | None  # clinic-wide staff have no location


def generate_token() -> str:
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    # Tokens carry 256 bits of entropy; a fast digest is enough
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _find_live(token: str) -> SessionToken | None:
    return db.session.query(SessionToken).filter_by(
        token_hash=hash_token(token),
        is_revoked=False,
    ).first()


def create_session(
    user_id: int,
    user_agent: str | None = None,
    ip_address: str | None = None,
) -> tuple[SessionToken, str]:
    """
    Open a session for a staff user.

    Returns (session_row, plaintext_token). The plaintext is only ever
    handed back here.

    Raises ValueError when the user is unknown or the clinic is inactive.
    """
    user = db.session.get(User, user_id)
    if user is None:
        raise ValueError("User not found")

    clinic = db.session.get(Tenant, user.tenant_id)
    if clinic is None or not clinic.is_active:
        raise ValueError("Tenant is not active")

    token = generate_token()
    issued_at = utcnow()
    row = SessionToken(
        user_id=user.id,
        tenant_id=user.tenant_id,
        location_id=user.location_id,
        token_hash=hash_token(token),
        created_at=issued_at,
        last_used_at=issued_at,
        expires_at=issued_at + SESSION_ABSOLUTE_TIMEOUT,
        user_agent=user_agent,
        ip_address=ip_address,
        is_revoked=False,
    )
    db.session.add(row)
    db.session.commit()
    return row, token


def _revoke(row: SessionToken, reason: str) -> None:
    row.is_revoked = True
    row.revoked_at = utcnow()
    row.revoked_reason = reason
    db.session.commit()


def _rejection_reason(row: SessionToken, now) -> str | None:
    """Why a stored session can no longer be used, or None if it can."""
    if now - row.last_used_at > SESSION_IDLE_TIMEOUT:
        return "Idle timeout"
    if row.user is None or not row.user.is_active:
        return "User account deactivated"
    if row.tenant is None or not row.tenant.is_active:
        return "Tenant deactivated"
    return None


def validate_session(token: str) -> SessionContext | None:
    """
    Resolve a bearer token to its SessionContext and touch last_used_at.

    None for unknown, revoked or expired tokens. Idle sessions and sessions
    of deactivated users or clinics are revoked on the way out.
    """
    row = _find_live(token)
    if row is None:
        return None

    now = utcnow()
    if row.expires_at < now:
        return None

    reason = _rejection_reason(row, now)
    if reason:
        _revoke(row, reason)
        return None

    row.last_used_at = now
    db.session.commit()
    return SessionContext(
        user=row.user,
        session=row,
        tenant_id=row.tenant_id,
        location_id=row.location_id,
    )


def revoke_session(token: str, reason: str = "User logout") -> bool:
    """True if a live session was revoked."""
    row = _find_live(token)
    if row is None:
        return False
    _revoke(row, reason)
    return True
