# Overview: Flask API routes for caja operations; parses input and returns JSON responses.

# backend/vetcaja/routes/caja.py
"""
Caja (Cash Drawer) API Routes

WHY: Front-desk cash custody. Cashiers open a drawer with a counted float,
post cash movements, hand the drawer to the next cashier, and close it with
a manual count. Managers reconcile closed drawers and read reports.

DESIGN:
- Routes only parse input and shape JSON; every operation goes through
  DrawerManager, one transaction per request
- Amounts are integer cents in and out (*_cents fields)
- Domain errors (CajaError) are rendered by the app-level error handler
  as {"error", "kind", "field"} with their HTTP status

SECURITY:
- Every route requires a session; the tenant comes from the session only
- A drawer or shift of another tenant answers 404 like a missing one
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import ValidationError
from ..services import drawer_service, ledger_service, reconciliation_service, shift_service
from ..services.caja_service import DrawerManager
from ..services.concurrency import run_with_retry
from ..decorators import require_auth, require_permission
from vetcaja.time_utils import parse_iso_datetime


caja_bp = Blueprint("caja", __name__, url_prefix="/api/caja")


def _manager() -> DrawerManager:
    return DrawerManager(current_app.config.get("CAJA_CAPABILITIES"))


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def _int_arg(name: str) -> int | None:
    raw = request.args.get(name)
    if raw in (None, ""):
        return None
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an integer", field=name)


def _datetime_arg(name: str):
    try:
        return parse_iso_datetime(request.args.get(name))
    except ValueError:
        raise ValidationError(f"{name} must be an ISO-8601 datetime", field=name)


def _location_param(data: dict | None = None) -> int | None:
    """Explicit location from body/query, else the session's location."""
    if data is not None and "location_id" in data:
        value = data["location_id"]
        if value is not None and (not isinstance(value, int) or isinstance(value, bool)):
            raise ValidationError("location_id must be an integer", field="location_id")
        return value
    if "location_id" in request.args:
        return _int_arg("location_id")
    return g.location_id


def _drawer_payload(drawer) -> dict:
    payload = drawer.to_dict()
    payload["difference_classification"] = (
        reconciliation_service.classify_difference(drawer.difference_cents)
        if drawer.difference_cents is not None else None
    )
    return payload


# =============================================================================
# DRAWERS
# =============================================================================

@caja_bp.post("/drawers")
@require_auth
@require_permission("OPEN_DRAWER")
def open_drawer_route():
    """
    Open a cash drawer.

    Request body:
    {
        "initial_amount_cents": 100000,
        "location_id": 1,            (optional, defaults to the session location)
        "notes": "..."               (optional)
    }
    """
    data = _json_body()
    if "initial_amount_cents" not in data:
        raise ValidationError("initial_amount_cents is required", field="initial_amount_cents")

    drawer = _manager().open_drawer(
        g.tenant_id,
        location_id=_location_param(data),
        initial_amount_cents=data.get("initial_amount_cents"),
        cashier_user_id=g.current_user.id,
        notes=data.get("notes"),
    )
    current_app.logger.info(
        "Drawer %s opened by user %s (tenant %s)", drawer.id, g.current_user.id, g.tenant_id
    )

    shift = shift_service.get_active_shift(drawer.id)
    return jsonify({
        "drawer": _drawer_payload(drawer),
        "shift": shift.to_dict() if shift else None,
    }), 201


@caja_bp.get("/drawers")
@require_auth
@require_permission("VIEW_DRAWERS")
def list_drawers_route():
    drawers = drawer_service.list_drawers(
        g.tenant_id,
        status=request.args.get("status"),
        location_id=_int_arg("location_id"),
        limit=min(_int_arg("limit") or 50, 200),
    )
    return jsonify({"drawers": [_drawer_payload(d) for d in drawers]}), 200


@caja_bp.get("/drawers/current")
@require_auth
@require_permission("VIEW_DRAWERS")
def current_drawer_route():
    """The OPEN drawer for a location (zeros when none is open)."""
    drawer = drawer_service.get_open_drawer(g.tenant_id, _location_param())
    shift = shift_service.get_active_shift(drawer.id) if drawer else None
    return jsonify({
        "drawer": _drawer_payload(drawer) if drawer else None,
        "shift": shift.to_dict() if shift else None,
        "stats": drawer_service.drawer_stats(drawer),
    }), 200


@caja_bp.get("/drawers/<int:drawer_id>")
@require_auth
@require_permission("VIEW_DRAWERS")
def get_drawer_route(drawer_id: int):
    drawer = drawer_service.get_drawer(drawer_id, g.tenant_id)
    return jsonify({
        "drawer": _drawer_payload(drawer),
        "shifts": [s.to_dict() for s in shift_service.get_drawer_shifts(drawer.id)],
        "stats": drawer_service.drawer_stats(drawer),
    }), 200


@caja_bp.post("/drawers/<int:drawer_id>/transactions")
@require_auth
@require_permission("RECORD_CASH_TRANSACTION")
def record_transaction_route(drawer_id: int):
    """
    Post a cash movement.

    Request body:
    {
        "type": "DEPOSIT",
        "amount_cents": 5000,
        "description": "...",
        "related_id": "...",          (optional)
        "related_type": "..."         (optional)
    }
    """
    data = _json_body()
    tx = _manager().record_transaction(
        g.tenant_id,
        drawer_id,
        tx_type=data.get("type"),
        amount_cents=data.get("amount_cents"),
        description=data.get("description"),
        related_id=data.get("related_id"),
        related_type=data.get("related_type"),
        user_id=g.current_user.id,
    )
    return jsonify({"transaction": tx.to_dict()}), 201


@caja_bp.get("/drawers/<int:drawer_id>/transactions")
@require_auth
@require_permission("VIEW_DRAWERS")
def list_transactions_route(drawer_id: int):
    drawer = drawer_service.get_drawer(drawer_id, g.tenant_id)
    transactions = ledger_service.get_drawer_transactions(drawer.id)
    return jsonify({
        "drawer_id": drawer.id,
        "transactions": [tx.to_dict() for tx in transactions],
        "summary": drawer_service.drawer_stats(drawer),
    }), 200


@caja_bp.post("/drawers/<int:drawer_id>/handoff")
@require_auth
@require_permission("HANDOFF_SHIFT")
def handoff_route(drawer_id: int):
    """
    Hand the active shift to another cashier.

    Request body:
    {
        "to_cashier_user_id": 7,
        "from_cashier_user_id": 3,    (optional, defaults to the caller)
        "notes": "..."
    }
    """
    data = _json_body()
    to_cashier = data.get("to_cashier_user_id")
    if not isinstance(to_cashier, int) or isinstance(to_cashier, bool):
        raise ValidationError("to_cashier_user_id is required", field="to_cashier_user_id")

    ended, started = _manager().handoff(
        g.tenant_id,
        drawer_id,
        from_cashier_user_id=data.get("from_cashier_user_id") or g.current_user.id,
        to_cashier_user_id=to_cashier,
        notes=data.get("notes"),
    )
    current_app.logger.info(
        "Drawer %s handed off from user %s to user %s", drawer_id, ended.cashier_user_id, started.cashier_user_id
    )
    return jsonify({"previous_shift": ended.to_dict(), "shift": started.to_dict()}), 200


@caja_bp.post("/drawers/<int:drawer_id>/close")
@require_auth
@require_permission("CLOSE_DRAWER")
def close_drawer_route(drawer_id: int):
    """
    Close a drawer with its manual count.

    Request body:
    {
        "final_amount_cents": 160000,
        "notes": "..."
    }
    """
    data = _json_body()
    if "final_amount_cents" not in data:
        raise ValidationError("final_amount_cents is required", field="final_amount_cents")

    drawer = _manager().close(
        g.tenant_id,
        drawer_id,
        final_amount_cents=data.get("final_amount_cents"),
        closed_by_user_id=g.current_user.id,
        notes=data.get("notes"),
    )
    current_app.logger.info(
        "Drawer %s closed by user %s: expected=%s counted=%s difference=%s",
        drawer.id, g.current_user.id, drawer.expected_amount_cents,
        drawer.final_amount_cents, drawer.difference_cents,
    )
    return jsonify({"drawer": _drawer_payload(drawer)}), 200


@caja_bp.post("/drawers/<int:drawer_id>/reconcile")
@require_auth
@require_permission("RECONCILE_DRAWER")
def reconcile_drawer_route(drawer_id: int):
    drawer = _manager().reconcile(g.tenant_id, drawer_id, reconciled_by_user_id=g.current_user.id)
    current_app.logger.info("Drawer %s reconciled by user %s", drawer.id, g.current_user.id)
    return jsonify({"drawer": _drawer_payload(drawer)}), 200


# =============================================================================
# SHIFTS & REPORTS
# =============================================================================

@caja_bp.get("/shifts")
@require_auth
@require_permission("VIEW_DRAWERS")
def list_shifts_route():
    shifts = shift_service.list_shifts(
        g.tenant_id,
        status=request.args.get("status"),
        drawer_id=_int_arg("drawer_id"),
        cashier_user_id=_int_arg("cashier_user_id"),
        start=_datetime_arg("start"),
        end=_datetime_arg("end"),
        limit=min(_int_arg("limit") or 100, 500),
    )
    return jsonify({"shifts": [s.to_dict() for s in shifts]}), 200


@caja_bp.get("/reports")
@require_auth
@require_permission("VIEW_CASH_REPORTS")
def report_route():
    """
    Query params: period (day|week|month|lastMonth|custom), start_date,
    end_date (YYYY-MM-DD, inclusive, custom only), drawer_id, cashier_user_id.
    """
    manager = _manager()
    options = {
        "period": request.args.get("period", "day"),
        "start_date": request.args.get("start_date"),
        "end_date": request.args.get("end_date"),
        "drawer_id": _int_arg("drawer_id"),
        "cashier_user_id": _int_arg("cashier_user_id"),
    }
    report = run_with_retry(lambda: manager.report(g.tenant_id, **options))
    return jsonify(report), 200


@caja_bp.get("/reports/shifts/<int:shift_id>")
@require_auth
@require_permission("VIEW_CASH_REPORTS")
def shift_report_route(shift_id: int):
    manager = _manager()
    report = run_with_retry(lambda: manager.shift_report(g.tenant_id, shift_id))
    return jsonify(report), 200
