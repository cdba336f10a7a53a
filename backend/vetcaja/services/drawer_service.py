# Overview: Service-layer operations for cash drawers; open, close, reconcile and tenant-scoped lookups.

"""
Drawer Lifecycle

State machine:

    OPEN --close--> CLOSED --reconcile--> RECONCILED

No other transitions exist. A CLOSED drawer's financial fields are frozen
(see the before_update guard in models/cash.py) and drawers are never
deleted.

SECURITY: Every lookup takes the caller's tenant_id. A drawer of another
tenant is reported as not found and the probe is logged.

This module flushes but never commits; the caller owns the transaction.
"""

from __future__ import annotations

from datetime import datetime

from ..extensions import db
from ..errors import ConflictError, LimitError, NotFoundError, StateError, ValidationError
from ..models import CashDrawer, DrawerStatus, Tenant, open_slot_key
from . import ledger_service, reconciliation_service, shift_service, tenant_service
from .concurrency import lock_for_update
from vetcaja.time_utils import as_naive_utc, utcnow


_DRAWER_STATUSES = (DrawerStatus.OPEN, DrawerStatus.CLOSED, DrawerStatus.RECONCILED)


# =============================================================================
# LOOKUPS
# =============================================================================

def get_drawer(drawer_id: int, tenant_id: int, *, lock: bool = False) -> CashDrawer:
    """
    Load a drawer owned by the tenant.

    Raises:
        NotFoundError: missing, or owned by another tenant
    """
    query = db.session.query(CashDrawer).filter(CashDrawer.id == drawer_id)
    if lock:
        query = lock_for_update(query)
    drawer = query.first()

    if not drawer:
        raise NotFoundError("Drawer not found", field="drawer_id")

    if drawer.tenant_id != tenant_id:
        tenant_service.log_cross_tenant_attempt(
            f"Drawer {drawer_id} belongs to tenant {drawer.tenant_id}, not {tenant_id}",
            tenant_id=tenant_id,
        )
        raise NotFoundError("Drawer not found", field="drawer_id")

    return drawer


def get_open_drawer(tenant_id: int, location_id: int | None, *, lock: bool = False) -> CashDrawer | None:
    """The OPEN drawer for (tenant, location), if any. location_id None means clinic-wide."""
    query = db.session.query(CashDrawer).filter(
        CashDrawer.open_slot_key == open_slot_key(tenant_id, location_id)
    )
    if lock:
        query = lock_for_update(query)
    return query.first()


def count_open_drawers(tenant_id: int) -> int:
    return db.session.query(CashDrawer).filter_by(
        tenant_id=tenant_id,
        status=DrawerStatus.OPEN,
    ).count()


def list_drawers(
    tenant_id: int,
    *,
    status: str | None = None,
    location_id: int | None = None,
    limit: int = 50,
) -> list[CashDrawer]:
    """Tenant drawers, most recently opened first."""
    query = db.session.query(CashDrawer).filter(CashDrawer.tenant_id == tenant_id)
    if status:
        normalized = status.upper()
        if normalized not in _DRAWER_STATUSES:
            raise ValidationError(f"Unknown drawer status: {status}", field="status")
        query = query.filter(CashDrawer.status == normalized)
    if location_id is not None:
        query = query.filter(CashDrawer.location_id == location_id)
    return query.order_by(CashDrawer.opened_at.desc(), CashDrawer.id.desc()).limit(limit).all()


# =============================================================================
# TRANSITIONS
# =============================================================================

def open_drawer(
    *,
    tenant_id: int,
    location_id: int | None,
    initial_amount_cents,
    cashier_user_id: int,
    notes: str | None = None,
    max_drawers: int | None = None,
    now: datetime | None = None,
) -> CashDrawer:
    """
    Open a drawer with a counted float and start its first shift.

    The tenant row is locked so that concurrent opens count open drawers
    one at a time. The unique open_slot_key is the final guard: a racing
    insert fails with IntegrityError, which the caller maps to ConflictError.

    Raises:
        ValidationError: negative or malformed initial amount
        NotFoundError: location or cashier outside the tenant
        StateError: cashier already holds an active shift
        ConflictError: an OPEN drawer already exists for (tenant, location)
        LimitError: tenant already has max_drawers OPEN drawers
    """
    initial = ledger_service.coerce_amount_cents(
        initial_amount_cents, field="initial_amount_cents", allow_zero=True
    )

    if location_id is not None:
        tenant_service.require_location_in_tenant(location_id, tenant_id)
    tenant_service.require_user_in_tenant(cashier_user_id, tenant_id, field="cashier_user_id")

    lock_for_update(db.session.query(Tenant).filter(Tenant.id == tenant_id)).first()

    if get_open_drawer(tenant_id, location_id):
        raise ConflictError("An open drawer already exists for this location")

    if max_drawers is not None and count_open_drawers(tenant_id) >= max_drawers:
        raise LimitError(f"Plan allows at most {max_drawers} open drawer(s)")

    busy = shift_service.get_cashier_active_shift(cashier_user_id)
    if busy:
        raise StateError(f"Cashier already holds an active shift on drawer {busy.drawer_id}")

    opened_at = now or utcnow()
    drawer = CashDrawer(
        tenant_id=tenant_id,
        location_id=location_id,
        status=DrawerStatus.OPEN,
        open_slot_key=open_slot_key(tenant_id, location_id),
        initial_amount_cents=initial,
        opened_at=opened_at,
        opened_by_user_id=cashier_user_id,
        notes=notes,
    )
    db.session.add(drawer)
    db.session.flush()

    shift_service.start_shift(
        drawer=drawer,
        cashier_user_id=cashier_user_id,
        starting_balance_cents=initial,
        started_at=opened_at,
    )
    return drawer


def close_drawer(
    *,
    drawer: CashDrawer,
    final_amount_cents,
    closed_by_user_id: int,
    notes: str | None = None,
    now: datetime | None = None,
) -> CashDrawer:
    """
    Count and close an OPEN drawer. The caller must hold the drawer lock.

    expected = initial + net(entire ledger); difference = final - expected.
    The ACTIVE shift ends with the manual count as its ending balance.
    """
    if drawer.status != DrawerStatus.OPEN:
        raise StateError(f"Drawer {drawer.id} is {drawer.status}; only an OPEN drawer can be closed")

    final = ledger_service.coerce_amount_cents(
        final_amount_cents, field="final_amount_cents", allow_zero=True
    )

    closed_at = ledger_service.resolve_event_time(drawer, shift_service.require_active_shift(drawer), now)
    expected = reconciliation_service.expected_for_drawer(drawer)

    shift_service.end_final_shift(drawer=drawer, counted_cents=final, ended_at=closed_at)

    drawer.final_amount_cents = final
    drawer.expected_amount_cents = expected
    drawer.difference_cents = reconciliation_service.difference(expected, final)
    drawer.closed_at = closed_at
    drawer.closed_by_user_id = closed_by_user_id
    drawer.status = DrawerStatus.CLOSED
    drawer.open_slot_key = None
    if notes:
        drawer.notes = notes
    db.session.flush()
    return drawer


def reconcile_drawer(
    *,
    drawer: CashDrawer,
    reconciled_by_user_id: int,
    now: datetime | None = None,
) -> CashDrawer:
    """Administrative confirmation of a CLOSED drawer. Financial fields are untouched."""
    if drawer.status != DrawerStatus.CLOSED:
        raise StateError(f"Drawer {drawer.id} is {drawer.status}; only a CLOSED drawer can be reconciled")

    reconciled_at = as_naive_utc(now) if now else utcnow()
    if reconciled_at < as_naive_utc(drawer.closed_at):
        raise ValidationError("Reconciliation cannot precede the close", field="now")

    drawer.status = DrawerStatus.RECONCILED
    drawer.reconciled_at = reconciled_at
    drawer.reconciled_by_user_id = reconciled_by_user_id
    db.session.flush()
    return drawer


# =============================================================================
# STATS
# =============================================================================

def drawer_stats(drawer: CashDrawer | None) -> dict:
    """
    Ledger totals for one drawer plus its current expected balance.

    Passing None (no open drawer) yields zeros.
    """
    if drawer is None:
        return {
            "total_income_cents": 0,
            "total_expenses_cents": 0,
            "net_cents": 0,
            "transaction_count": 0,
            "current_balance_cents": 0,
            "is_drawer_open": False,
        }

    transactions = ledger_service.get_drawer_transactions(drawer.id)
    inflow, outflow = ledger_service.split_totals(transactions)
    return {
        "total_income_cents": inflow,
        "total_expenses_cents": outflow,
        "net_cents": inflow - outflow,
        "transaction_count": len(transactions),
        "current_balance_cents": drawer.initial_amount_cents + inflow - outflow,
        "is_drawer_open": drawer.status == DrawerStatus.OPEN,
    }
