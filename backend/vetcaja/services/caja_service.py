# Overview: Orchestrator for caja operations; one atomic transaction per drawer operation.

"""
Drawer Manager

Entry point for every cash operation (routes, CLI, the sale hook). Each
method is one unit of work: it loads the drawer under a row lock, runs the
lifecycle/ledger/shift services (which only flush), and commits once.
Any error rolls the whole operation back, leaving the drawer as it was.

CONCURRENCY:
- open: tenant row locked while open drawers are counted; the unique
  open_slot_key rejects a racing second open (IntegrityError -> ConflictError)
- record/handoff/close/reconcile: drawer row locked; version_id on drawers
  and shifts turns lost updates into ConflictError
- reports: read-only, no locks

Plan limits and feature gates come from an injected Capabilities object.
"""

from __future__ import annotations

from datetime import datetime

from ..errors import LimitError, StateError
from ..models import CashDrawer, CashShift, CashTransaction, DrawerStatus
from . import caja_reporting_service, drawer_service, ledger_service, reconciliation_service, shift_service
from .capability_service import FEATURE_SHIFT_REPORTS, Capabilities, PlanCapabilities
from .concurrency import atomic


class DrawerManager:
    def __init__(self, capabilities: Capabilities | None = None):
        self.capabilities = capabilities or PlanCapabilities()

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def open_drawer(
        self,
        tenant_id: int,
        *,
        location_id: int | None,
        initial_amount_cents,
        cashier_user_id: int,
        notes: str | None = None,
        now: datetime | None = None,
    ) -> CashDrawer:
        with atomic("An open drawer already exists for this location"):
            return drawer_service.open_drawer(
                tenant_id=tenant_id,
                location_id=location_id,
                initial_amount_cents=initial_amount_cents,
                cashier_user_id=cashier_user_id,
                notes=notes,
                max_drawers=self.capabilities.max_drawers(tenant_id),
                now=now,
            )

    def close(
        self,
        tenant_id: int,
        drawer_id: int,
        *,
        final_amount_cents,
        closed_by_user_id: int,
        notes: str | None = None,
        now: datetime | None = None,
    ) -> CashDrawer:
        with atomic():
            drawer = drawer_service.get_drawer(drawer_id, tenant_id, lock=True)
            return drawer_service.close_drawer(
                drawer=drawer,
                final_amount_cents=final_amount_cents,
                closed_by_user_id=closed_by_user_id,
                notes=notes,
                now=now,
            )

    def reconcile(
        self,
        tenant_id: int,
        drawer_id: int,
        *,
        reconciled_by_user_id: int,
        now: datetime | None = None,
    ) -> CashDrawer:
        with atomic():
            drawer = drawer_service.get_drawer(drawer_id, tenant_id, lock=True)
            return drawer_service.reconcile_drawer(
                drawer=drawer,
                reconciled_by_user_id=reconciled_by_user_id,
                now=now,
            )

    def handoff(
        self,
        tenant_id: int,
        drawer_id: int,
        *,
        from_cashier_user_id: int,
        to_cashier_user_id: int,
        notes: str | None = None,
        now: datetime | None = None,
    ) -> tuple[CashShift, CashShift]:
        with atomic():
            drawer = drawer_service.get_drawer(drawer_id, tenant_id, lock=True)
            return shift_service.handoff_shift(
                drawer=drawer,
                from_cashier_user_id=from_cashier_user_id,
                to_cashier_user_id=to_cashier_user_id,
                notes=notes,
                now=now,
            )

    # -------------------------------------------------------------------------
    # Ledger
    # -------------------------------------------------------------------------

    def _post(self, drawer: CashDrawer, **kwargs) -> CashTransaction:
        shift = shift_service.get_active_shift(drawer.id) if drawer.status == DrawerStatus.OPEN else None
        return ledger_service.record_transaction(drawer=drawer, shift=shift, **kwargs)

    def record_transaction(
        self,
        tenant_id: int,
        drawer_id: int,
        *,
        tx_type,
        amount_cents,
        description: str | None = None,
        related_id: str | None = None,
        related_type: str | None = None,
        user_id: int | None = None,
        now: datetime | None = None,
    ) -> CashTransaction:
        with atomic():
            drawer = drawer_service.get_drawer(drawer_id, tenant_id, lock=True)
            return self._post(
                drawer,
                tx_type=tx_type,
                amount_cents=amount_cents,
                description=description,
                related_id=related_id,
                related_type=related_type,
                user_id=user_id,
                now=now,
            )

    def record_sale_payment(
        self,
        tenant_id: int,
        *,
        location_id: int | None,
        sale_id,
        amount_cents,
        user_id: int | None = None,
        now: datetime | None = None,
    ) -> CashTransaction:
        """Post the cash part of a sale to the location's OPEN drawer."""
        with atomic():
            drawer = drawer_service.get_open_drawer(tenant_id, location_id, lock=True)
            if drawer is None:
                raise StateError("No open drawer for this location")
            return self._post(
                drawer,
                tx_type=ledger_service.TransactionType.SALE_CASH,
                amount_cents=amount_cents,
                description=f"Sale {sale_id}",
                related_id=str(sale_id),
                related_type="sale",
                user_id=user_id,
                now=now,
            )

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def expected_balance(self, tenant_id: int, drawer_id: int, as_of: datetime | None = None) -> int:
        drawer = drawer_service.get_drawer(drawer_id, tenant_id)
        return reconciliation_service.expected_for_drawer(drawer, as_of=as_of)

    def _require_reports(self, tenant_id: int) -> None:
        if not self.capabilities.has_feature(tenant_id, FEATURE_SHIFT_REPORTS):
            raise LimitError("Shift reports are not included in the current plan")

    def report(self, tenant_id: int, **options) -> dict:
        self._require_reports(tenant_id)
        return caja_reporting_service.build_report(tenant_id, **options)

    def shift_report(self, tenant_id: int, shift_id: int, *, now: datetime | None = None) -> dict:
        self._require_reports(tenant_id)
        return caja_reporting_service.shift_detail(shift_id, tenant_id, now=now)
