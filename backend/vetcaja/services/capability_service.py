# Overview: Capability lookup for plan limits and feature gates, injected into the caja orchestrator.

"""
Tenant Capabilities

WHY: Drawer-count limits and report access depend on the tenant's
subscription plan, which changes outside this engine. The orchestrator
only sees the Capabilities protocol:

    max_drawers(tenant_id) -> int
    has_feature(tenant_id, feature) -> bool

PlanCapabilities answers from Tenant.plan and PLAN_LIMITS.
StaticCapabilities answers fixed values (single-tenant installs, tests).
"""

from __future__ import annotations

from typing import Protocol

from ..extensions import db
from ..errors import NotFoundError
from ..models import Tenant


FEATURE_SHIFT_REPORTS = "shift_reports"
FEATURE_MULTI_DRAWER = "multi_drawer"

PLAN_LIMITS = {
    "BASICO": {
        "max_drawers": 1,
        "features": frozenset(),
    },
    "PROFESIONAL": {
        "max_drawers": 1,
        "features": frozenset({FEATURE_SHIFT_REPORTS}),
    },
    "CLINICA": {
        "max_drawers": 3,
        "features": frozenset({FEATURE_SHIFT_REPORTS, FEATURE_MULTI_DRAWER}),
    },
    "EMPRESA": {
        "max_drawers": 10,
        "features": frozenset({FEATURE_SHIFT_REPORTS, FEATURE_MULTI_DRAWER}),
    },
}


class Capabilities(Protocol):
    def max_drawers(self, tenant_id: int) -> int: ...

    def has_feature(self, tenant_id: int, feature: str) -> bool: ...


class PlanCapabilities:
    """Capabilities derived from the tenant's subscription plan."""

    def _limits(self, tenant_id: int) -> dict:
        tenant = db.session.get(Tenant, tenant_id)
        if not tenant:
            raise NotFoundError("Tenant not found")
        limits = PLAN_LIMITS.get((tenant.plan or "").upper())
        if limits is None:
            raise ValueError(f"Tenant {tenant_id} has unknown plan {tenant.plan!r}")
        return limits

    def max_drawers(self, tenant_id: int) -> int:
        return self._limits(tenant_id)["max_drawers"]

    def has_feature(self, tenant_id: int, feature: str) -> bool:
        return feature in self._limits(tenant_id)["features"]


class StaticCapabilities:
    """Same answer for every tenant."""

    def __init__(self, max_drawers: int = 1, features=()):
        self._max_drawers = max_drawers
        self._features = frozenset(features)

    def max_drawers(self, tenant_id: int) -> int:
        return self._max_drawers

    def has_feature(self, tenant_id: int, feature: str) -> bool:
        return feature in self._features


def validate_plan(plan: str) -> str:
    normalized = (plan or "").strip().upper()
    if normalized not in PLAN_LIMITS:
        raise ValueError(f"Unknown plan: {plan}. Expected one of {', '.join(PLAN_LIMITS)}")
    return normalized
