# Overview: Service-layer operations for reconciliation; expected balances, differences, accuracy.

"""
Reconciliation Engine

Expected balances are always re-derived from the ledger. No stored running
balance is authoritative; the drawer's expected_amount_cents is a snapshot
taken at close for auditing.

SIGN CONVENTION: difference = counted - expected.
    positive -> surplus (more cash than the ledger explains)
    negative -> shortage
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable

from ..extensions import db
from ..errors import NotFoundError
from ..models import CashDrawer, CashShift
from . import ledger_service


BALANCED = "balanced"
SURPLUS = "surplus"
SHORTAGE = "shortage"


def expected_balance(drawer_id: int, as_of: datetime | None = None) -> int:
    """initial_amount + net(transactions with created_at <= as_of). as_of defaults to now (all entries)."""
    drawer = db.session.get(CashDrawer, drawer_id)
    if not drawer:
        raise NotFoundError("Drawer not found")
    return expected_for_drawer(drawer, as_of=as_of)


def expected_for_drawer(drawer: CashDrawer, as_of: datetime | None = None) -> int:
    transactions = ledger_service.get_drawer_transactions(drawer.id, as_of=as_of)
    return drawer.initial_amount_cents + ledger_service.net_effect(transactions)


def expected_for_shift(shift: CashShift) -> int:
    """starting_balance + net(transactions attributed to the shift)."""
    transactions = ledger_service.get_shift_transactions(shift.id)
    return shift.starting_balance_cents + ledger_service.net_effect(transactions)


def difference(expected: int, counted: int) -> int:
    return counted - expected


def classify_difference(diff: int | None) -> str:
    if not diff:
        return BALANCED
    return SURPLUS if diff > 0 else SHORTAGE


def round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def accuracy(shifts: Iterable[CashShift]) -> int | None:
    """
    Percentage of shifts closed with zero difference, rounded half-up.

    Returns None for an empty set: undefined, not 0% or 100%.
    A shift with no recorded difference counts as exact.
    """
    shifts = list(shifts)
    if not shifts:
        return None
    exact = sum(1 for s in shifts if not s.difference_cents)
    return round_half_up(Decimal(exact) * 100 / Decimal(len(shifts)))
