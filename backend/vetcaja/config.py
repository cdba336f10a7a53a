# backend/vetcaja/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/vetcaja.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///vetcaja.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Plan assigned to tenants created without an explicit plan (see capability_service.PLAN_LIMITS)
    DEFAULT_PLAN = os.environ.get("DEFAULT_PLAN", "BASICO")

    # Capabilities object for DrawerManager; None means PlanCapabilities (Tenant.plan)
    CAJA_CAPABILITIES = None
