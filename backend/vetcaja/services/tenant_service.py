"""
Multi-Tenant Service: Tenant Validation and Scoping Helpers

WHY: Centralize tenant validation logic for reuse across services and routes.
Every request is scoped to a tenant, and cross-tenant access is denied
with the same NotFoundError a missing entity would produce.

SECURITY INVARIANTS:
1. Every authenticated request has g.tenant_id set
2. IDs from client input are validated against g.tenant_id
3. Cross-tenant access attempts are logged as security events
"""

from flask import g, has_request_context, request

from ..extensions import db
from ..errors import NotFoundError
from ..models import Location, User
from .permission_service import log_security_event


class TenantAccessError(Exception):
    """Raised when tenant context is missing."""
    pass


def get_current_tenant_id() -> int:
    """
    Get current tenant_id from Flask g context.

    SECURITY: Raises TenantAccessError if tenant_id not set.
    This should never happen after @require_auth, but is a safety check.
    """
    if not hasattr(g, 'tenant_id') or g.tenant_id is None:
        raise TenantAccessError("Tenant context not established")
    return g.tenant_id


def log_cross_tenant_attempt(reason: str, tenant_id: int | None, resource: str | None = None) -> None:
    """Log a cross-tenant probe. Works with or without a request context."""
    user = getattr(g, "current_user", None) if has_request_context() else None
    log_security_event(
        user_id=user.id if user else None,
        event_type="CROSS_TENANT_ACCESS_DENIED",
        success=False,
        resource=resource or (request.path if has_request_context() else None),
        action=request.method if has_request_context() else None,
        reason=reason,
        ip_address=request.remote_addr if has_request_context() else None,
        user_agent=request.headers.get("User-Agent") if has_request_context() else None,
        tenant_id=tenant_id,
    )


def require_location_in_tenant(location_id: int, tenant_id: int) -> Location:
    """
    Validate that a location belongs to the tenant.

    Raises NotFoundError if it doesn't exist or belongs to another tenant.
    """
    location = db.session.get(Location, location_id)

    if not location:
        raise NotFoundError("Location not found", field="location_id")

    if location.tenant_id != tenant_id:
        log_cross_tenant_attempt(
            f"Location {location_id} belongs to tenant {location.tenant_id}, not {tenant_id}",
            tenant_id=tenant_id,
        )
        raise NotFoundError("Location not found", field="location_id")  # Don't reveal it exists elsewhere

    return location


def require_user_in_tenant(user_id: int, tenant_id: int, *, field: str = "user_id") -> User:
    """Validate that a staff user is active and belongs to the tenant."""
    user = db.session.get(User, user_id) if user_id is not None else None

    if not user or not user.is_active:
        raise NotFoundError("User not found", field=field)

    if user.tenant_id != tenant_id:
        log_cross_tenant_attempt(
            f"User {user_id} belongs to tenant {user.tenant_id}, not {tenant_id}",
            tenant_id=tenant_id,
        )
        raise NotFoundError("User not found", field=field)

    return user


def get_tenant_locations(tenant_id: int, active_only: bool = True) -> list[Location]:
    query = db.session.query(Location).filter_by(tenant_id=tenant_id)
    if active_only:
        query = query.filter_by(is_active=True)
    return query.order_by(Location.name).all()
