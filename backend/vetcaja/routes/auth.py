# Overview: Login, logout and "who am I" endpoints issuing the bearer tokens the caja API expects.

from flask import Blueprint, current_app, g, jsonify, request

from ..services import auth_service, permission_service, session_service
from ..decorators import require_auth


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


def _identity_payload(user) -> dict:
    return {
        "user": user.to_dict(),
        "permissions": sorted(permission_service.get_user_permissions(user.id)),
    }


@auth_bp.post("/login")
def login_route():
    """
    Request body:
    {
        "username": "ana",             (or "email")
        "password": "...",
        "tenant_id": 1                 (needed when clinics share usernames)
    }
    """
    data = request.get_json(silent=True) or {}
    login_name = data.get("username") or data.get("email")
    password = data.get("password")
    tenant_id = data.get("tenant_id")

    if not login_name or not password:
        return jsonify({"error": "username/email and password required"}), 400

    user = auth_service.authenticate(login_name, password, tenant_id=tenant_id)
    if user is None:
        permission_service.log_security_event(
            user_id=None,
            event_type="LOGIN_FAILED",
            success=False,
            resource=request.path,
            action="LOGIN",
            reason=f"Invalid credentials for {login_name}",
            ip_address=request.remote_addr,
            user_agent=request.headers.get("User-Agent"),
            tenant_id=tenant_id,
        )
        return jsonify({"error": "Invalid credentials"}), 401

    try:
        session, token = session_service.create_session(
            user_id=user.id,
            user_agent=request.headers.get("User-Agent"),
            ip_address=request.remote_addr,
        )
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    current_app.logger.info("User %s logged in (tenant %s)", user.id, session.tenant_id)
    payload = _identity_payload(user)
    payload.update({
        "token": token,
        "session": session.to_dict(),
        "tenant_id": session.tenant_id,
        "location_id": session.location_id,
    })
    return jsonify(payload), 200


@auth_bp.post("/logout")
@require_auth
def logout_route():
    token = request.headers["Authorization"].partition(" ")[2]
    session_service.revoke_session(token)

    permission_service.log_security_event(
        user_id=g.current_user.id,
        event_type="LOGOUT",
        success=True,
        resource=request.path,
        action="LOGOUT",
        ip_address=request.remote_addr,
        user_agent=request.headers.get("User-Agent"),
        tenant_id=g.tenant_id,
    )
    return jsonify({"message": "Logged out"}), 200


@auth_bp.get("/me")
@require_auth
def me_route():
    payload = _identity_payload(g.current_user)
    payload.update({"tenant_id": g.tenant_id, "location_id": g.location_id})
    return jsonify(payload), 200
