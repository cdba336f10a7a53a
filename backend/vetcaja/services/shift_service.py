# Overview: Service-layer operations for shifts; cashier custody and handoffs on an OPEN drawer.

"""
Shift Tracker

WHY: A drawer can stay OPEN across several cashiers. Each cashier is
accountable for the span of time they held it.

INVARIANTS:
- Exactly one ACTIVE shift per OPEN drawer.
- Shifts of a drawer are contiguous: the next shift starts at the instant
  the previous one ended, with the previous ending balance as its start.
- Every transaction belongs to exactly one shift: postings are attributed
  to the ACTIVE shift while the drawer row is locked, and handoffs take the
  same lock, so attribution matches (created_at, id) interval membership.
- Intermediate handoffs use the computed balance. Only the final shift
  (ended by the drawer close) takes the manual count as ending balance.

This module flushes but never commits; the caller owns the transaction.
"""

from __future__ import annotations

from datetime import datetime

from ..extensions import db
from ..errors import NotFoundError, StateError, ValidationError
from ..models import CashDrawer, CashShift, DrawerStatus, ShiftStatus, User
from . import ledger_service, reconciliation_service


def start_shift(
    *,
    drawer: CashDrawer,
    cashier_user_id: int,
    starting_balance_cents: int,
    started_at: datetime,
    notes: str | None = None,
) -> CashShift:
    """Create the ACTIVE shift for a drawer. Caller guarantees no other ACTIVE shift exists."""
    shift = CashShift(
        tenant_id=drawer.tenant_id,
        drawer_id=drawer.id,
        cashier_user_id=cashier_user_id,
        status=ShiftStatus.ACTIVE,
        started_at=started_at,
        starting_balance_cents=starting_balance_cents,
        notes=notes,
    )
    db.session.add(shift)
    db.session.flush()
    return shift


def get_active_shift(drawer_id: int) -> CashShift | None:
    return db.session.query(CashShift).filter_by(
        drawer_id=drawer_id,
        status=ShiftStatus.ACTIVE,
    ).first()


def require_active_shift(drawer: CashDrawer) -> CashShift:
    shift = get_active_shift(drawer.id)
    if not shift:
        raise StateError(f"Drawer {drawer.id} has no active shift")
    return shift


def get_cashier_active_shift(cashier_user_id: int) -> CashShift | None:
    """Active shift held by a cashier on any drawer (should normally be 0 or 1)."""
    return db.session.query(CashShift).filter_by(
        cashier_user_id=cashier_user_id,
        status=ShiftStatus.ACTIVE,
    ).first()


def handoff_shift(
    *,
    drawer: CashDrawer,
    from_cashier_user_id: int,
    to_cashier_user_id: int,
    notes: str | None = None,
    now: datetime | None = None,
) -> tuple[CashShift, CashShift]:
    """
    Pass custody of an OPEN drawer to another cashier without closing it.

    The caller must hold the drawer lock.

    Returns:
        (handed_off_shift, new_active_shift)

    Raises:
        StateError: drawer not OPEN, from-cashier does not own the active
            shift, or the incoming cashier already holds an active shift
        ValidationError: handoff to self, or `now` before the last event on the drawer
        NotFoundError: incoming cashier not an active user of the tenant
    """
    if drawer.status != DrawerStatus.OPEN:
        raise StateError(f"Drawer {drawer.id} is {drawer.status}; handoff requires an OPEN drawer")

    current = require_active_shift(drawer)
    if current.cashier_user_id != from_cashier_user_id:
        raise StateError("Only the cashier holding the active shift can hand it off")

    if from_cashier_user_id == to_cashier_user_id:
        raise ValidationError("Cannot hand a shift off to the same cashier", field="to_cashier_user_id")

    incoming = db.session.query(User).filter_by(
        id=to_cashier_user_id,
        tenant_id=drawer.tenant_id,
        is_active=True,
    ).first()
    if not incoming:
        raise NotFoundError("Cashier not found", field="to_cashier_user_id")

    busy = get_cashier_active_shift(to_cashier_user_id)
    if busy:
        raise StateError(f"Cashier already holds an active shift on drawer {busy.drawer_id}")

    boundary = ledger_service.resolve_event_time(drawer, current, now)
    ending = reconciliation_service.expected_for_shift(current)

    current.status = ShiftStatus.HANDED_OFF
    current.ended_at = boundary
    current.expected_balance_cents = ending
    current.ending_balance_cents = ending
    current.difference_cents = reconciliation_service.difference(ending, ending)
    current.handed_off_to_user_id = to_cashier_user_id
    if notes:
        current.notes = notes
    db.session.flush()

    new_shift = start_shift(
        drawer=drawer,
        cashier_user_id=to_cashier_user_id,
        starting_balance_cents=ending,
        started_at=boundary,
    )
    return current, new_shift


def end_final_shift(
    *,
    drawer: CashDrawer,
    counted_cents: int,
    ended_at: datetime,
) -> CashShift:
    """
    End the ACTIVE shift as part of closing the drawer.

    expected = starting + net(shift transactions); ending = manual count.
    """
    shift = require_active_shift(drawer)
    expected = reconciliation_service.expected_for_shift(shift)

    shift.status = ShiftStatus.ENDED
    shift.ended_at = ended_at
    shift.expected_balance_cents = expected
    shift.ending_balance_cents = counted_cents
    shift.difference_cents = reconciliation_service.difference(expected, counted_cents)
    db.session.flush()
    return shift


def get_drawer_shifts(drawer_id: int) -> list[CashShift]:
    return db.session.query(CashShift).filter_by(drawer_id=drawer_id).order_by(
        CashShift.started_at.asc(), CashShift.id.asc()
    ).all()


def list_shifts(
    tenant_id: int,
    *,
    status: str | None = None,
    drawer_id: int | None = None,
    cashier_user_id: int | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int = 100,
) -> list[CashShift]:
    """Tenant shifts, newest first. Date window applies to started_at, half-open."""
    query = db.session.query(CashShift).filter(CashShift.tenant_id == tenant_id)
    if status:
        normalized = status.upper()
        if normalized not in (ShiftStatus.ACTIVE, ShiftStatus.HANDED_OFF, ShiftStatus.ENDED):
            raise ValidationError(f"Unknown shift status: {status}", field="status")
        query = query.filter(CashShift.status == normalized)
    if drawer_id is not None:
        query = query.filter(CashShift.drawer_id == drawer_id)
    if cashier_user_id is not None:
        query = query.filter(CashShift.cashier_user_id == cashier_user_id)
    if start is not None:
        query = query.filter(CashShift.started_at >= start)
    if end is not None:
        query = query.filter(CashShift.started_at < end)
    return query.order_by(CashShift.started_at.desc(), CashShift.id.desc()).limit(limit).all()
