# Overview: Role-based permission checks for caja staff and the security event audit trail.

"""
Permissions and Security Events

WHY: Cashiers may open, post, hand off and close; only managers reconcile
and read cash reports. Every refusal leaves a SecurityEvent so a manager
can see who probed what.

DESIGN:
- Deny unless a role of the user grants the code (SYSTEM_ADMIN grants all)
- Grants are per tenant role; permission codes are global
- Only denials and auth events are logged, not successful checks
- log_security_event commits on its own so the record survives a rollback
  of the operation that triggered it
"""

from ..extensions import db
from ..models import Permission, Role, RolePermission, SecurityEvent, UserRole
from ..permissions import DEFAULT_ROLE_PERMISSIONS, DEFAULT_ROLES, PERMISSION_DEFINITIONS
from vetcaja.time_utils import utcnow


class PermissionDeniedError(Exception):
    """The user has no role granting the required permission."""


def log_security_event(
    user_id: int | None,
    event_type: str,
    success: bool,
    resource: str | None = None,
    action: str | None = None,
    reason: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    tenant_id: int | None = None,
) -> SecurityEvent:
    """
    Append to the audit trail.

    Event types in use: LOGIN_FAILED, LOGOUT, PERMISSION_DENIED,
    TENANT_CONTEXT_MISSING, CROSS_TENANT_ACCESS_DENIED.
    """
    event = SecurityEvent(
        tenant_id=tenant_id,
        user_id=user_id,
        event_type=event_type,
        success=success,
        resource=resource,
        action=action,
        reason=reason,
        ip_address=ip_address,
        user_agent=user_agent,
        occurred_at=utcnow(),
    )
    db.session.add(event)
    db.session.commit()
    return event


def get_user_permissions(user_id: int) -> set[str]:
    """Union of permission codes over all roles of the user."""
    granted = (
        db.session.query(Permission.code)
        .join(RolePermission, RolePermission.permission_id == Permission.id)
        .join(UserRole, UserRole.role_id == RolePermission.role_id)
        .filter(UserRole.user_id == user_id)
    )
    return {code for (code,) in granted}


def user_has_permission(user_id: int, permission_code: str) -> bool:
    granted = get_user_permissions(user_id)
    return "SYSTEM_ADMIN" in granted or permission_code in granted


def require_permission(
    user_id: int,
    permission_code: str,
    resource: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    tenant_id: int | None = None,
) -> None:
    """Raise PermissionDeniedError (after logging PERMISSION_DENIED) unless granted."""
    if user_has_permission(user_id, permission_code):
        return

    log_security_event(
        user_id=user_id,
        event_type="PERMISSION_DENIED",
        success=False,
        resource=resource,
        action=permission_code,
        reason=f"Missing permission: {permission_code}",
        ip_address=ip_address,
        user_agent=user_agent,
        tenant_id=tenant_id,
    )
    raise PermissionDeniedError(f"Permission denied: {permission_code}")


# =============================================================================
# SEEDING
# =============================================================================

def initialize_permissions() -> int:
    """Insert missing PERMISSION_DEFINITIONS rows. Returns how many were added."""
    known = {code for (code,) in db.session.query(Permission.code)}
    added = 0
    for code, name, description, category in PERMISSION_DEFINITIONS:
        if code in known:
            continue
        db.session.add(Permission(code=code, name=name, description=description, category=category))
        added += 1
    db.session.commit()
    return added


def _tenant_role(tenant_id: int, name: str) -> Role | None:
    return db.session.query(Role).filter_by(tenant_id=tenant_id, name=name).first()


def create_default_roles(tenant_id: int) -> None:
    """admin / manager / cashier for a clinic, if missing."""
    for name, description in DEFAULT_ROLES:
        if _tenant_role(tenant_id, name) is None:
            db.session.add(Role(tenant_id=tenant_id, name=name, description=description))
    db.session.commit()


def assign_default_role_permissions(tenant_id: int) -> int:
    """
    Grant DEFAULT_ROLE_PERMISSIONS to the clinic's roles.

    Re-runnable: existing grants, and roles or codes not in the database,
    are skipped. Returns the number of new grants.
    """
    permission_ids = dict(db.session.query(Permission.code, Permission.id))
    added = 0

    for role_name, codes in DEFAULT_ROLE_PERMISSIONS.items():
        role = _tenant_role(tenant_id, role_name)
        if role is None:
            continue

        existing = {
            permission_id
            for (permission_id,) in db.session.query(RolePermission.permission_id).filter_by(role_id=role.id)
        }
        for code in codes:
            permission_id = permission_ids.get(code)
            if permission_id is None or permission_id in existing:
                continue
            db.session.add(RolePermission(role_id=role.id, permission_id=permission_id))
            existing.add(permission_id)
            added += 1

    db.session.commit()
    return added


def assign_role(user_id: int, tenant_id: int, role_name: str) -> UserRole:
    """Give a user one of the clinic's roles. Raises ValueError for an unknown role."""
    role = _tenant_role(tenant_id, role_name)
    if role is None:
        raise ValueError(f"Role {role_name} not found")

    link = db.session.query(UserRole).filter_by(user_id=user_id, role_id=role.id).first()
    if link is None:
        link = UserRole(user_id=user_id, role_id=role.id)
        db.session.add(link)
        db.session.commit()
    return link
