# Overview: Liveness endpoints for load balancers and deploy checks.

import sys
import time

from flask import Blueprint, current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import CashDrawer, DrawerStatus, Permission, Tenant
from vetcaja.time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__)


def check_database() -> dict:
    """A few cheap counts; 'unhealthy' if the database cannot answer."""
    started = time.perf_counter()
    try:
        details = {
            "tenants": db.session.query(Tenant).count(),
            "permissions": db.session.query(Permission).count(),
            "open_drawers": db.session.query(CashDrawer).filter_by(status=DrawerStatus.OPEN).count(),
        }
    except SQLAlchemyError:
        current_app.logger.exception("Database health check failed")
        db.session.rollback()
        return {"status": "unhealthy", "error": "Database error"}

    return {
        "status": "healthy",
        "latency_ms": round((time.perf_counter() - started) * 1000, 2),
        "details": details,
    }


@system_bp.get("/health")
def health():
    """
    200 healthy, 200 degraded (permissions not seeded yet: run `flask system init`),
    503 when the database is unreachable.
    """
    database = check_database()

    if database["status"] == "unhealthy":
        status, code = "unhealthy", 503
    elif database["details"]["permissions"] == 0:
        status, code = "degraded", 200
    else:
        status, code = "healthy", 200

    return {"status": status, "timestamp": to_utc_z(utcnow()), "checks": {"database": database}}, code


@system_bp.get("/version")
def version():
    return {
        "api_version": "1.0.0",
        "environment": "development" if current_app.debug else "production",
        "python_version": sys.version.split()[0],
        "server_time": to_utc_z(utcnow()),
    }
