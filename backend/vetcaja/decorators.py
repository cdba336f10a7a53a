# Overview: Route decorators that establish the caller's tenant context and check role permissions.

from functools import wraps

from flask import g, jsonify, request

from .services import permission_service, session_service
from .services.permission_service import PermissionDeniedError


def _bearer_token() -> str | None:
    header = request.headers.get("Authorization") or ""
    scheme, _, token = header.partition(" ")
    if scheme != "Bearer" or not token:
        return None
    return token


def _audit(event_type: str, reason: str, *, user_id=None, tenant_id=None) -> None:
    permission_service.log_security_event(
        user_id=user_id,
        event_type=event_type,
        success=False,
        resource=request.path,
        action=request.method,
        reason=reason,
        ip_address=request.remote_addr,
        user_agent=request.headers.get("User-Agent"),
        tenant_id=tenant_id,
    )


def require_auth(f):
    """
    Resolve the bearer token and pin the request to its clinic.

    Sets g.current_user, g.tenant_id, g.location_id (None for clinic-wide
    staff) and g.session_context. Answers 401 for a missing, unknown or
    expired token.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = _bearer_token()
        if token is None:
            return jsonify({"error": "Authentication required"}), 401

        context = session_service.validate_session(token)
        if context is None:
            return jsonify({"error": "Invalid or expired token"}), 401

        if not context.tenant_id:
            _audit("TENANT_CONTEXT_MISSING", "Session missing tenant_id", user_id=context.user.id)
            return jsonify({"error": "Invalid session: missing tenant context"}), 401

        g.current_user = context.user
        g.tenant_id = context.tenant_id
        g.location_id = context.location_id
        g.session_context = context
        return f(*args, **kwargs)

    return decorated_function


def require_permission(permission_code: str):
    """403 unless one of the caller's roles grants `permission_code`. Use under @require_auth."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if getattr(g, "current_user", None) is None or getattr(g, "tenant_id", None) is None:
                return jsonify({"error": "Authentication required"}), 401

            try:
                permission_service.require_permission(
                    user_id=g.current_user.id,
                    permission_code=permission_code,
                    resource=request.path,
                    ip_address=request.remote_addr,
                    user_agent=request.headers.get("User-Agent"),
                    tenant_id=g.tenant_id,
                )
            except PermissionDeniedError as exc:
                return jsonify({
                    "error": "Permission denied",
                    "required_permission": permission_code,
                    "message": str(exc),
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator
