# Overview: Service-layer operations for the cash ledger; classification table and append-only postings.

"""
Cash Ledger (LedgerStore)

Invariants (authoritative):
- Append-only: a CashTransaction is never updated or deleted once written.
- amount_cents is strictly positive; the sign comes from the type.
- Every TransactionType maps to exactly one Direction. The table is checked
  for completeness at import time; an unclassified type is a programming
  error (LedgerClassificationError), never a silent zero.
- Ordering within a drawer is (created_at, id).
- Event times on a drawer never go backwards: a posting, handoff or close
  cannot be stamped before the active shift started or before the latest
  ledger entry.
- Postings are only accepted while the drawer is OPEN and are attributed to
  the drawer's ACTIVE shift.
- This module flushes but never commits; the caller owns the transaction.
"""

from __future__ import annotations

import enum
import re
from datetime import datetime
from typing import Iterable

from ..extensions import db
from ..errors import LedgerClassificationError, StateError, ValidationError
from ..models import CashDrawer, CashShift, CashTransaction, DrawerStatus, ShiftStatus
from vetcaja.time_utils import as_naive_utc, to_utc_z, utcnow


class TransactionType(str, enum.Enum):
    SALE_CASH = "SALE_CASH"
    DEPOSIT = "DEPOSIT"
    ADJUSTMENT_IN = "ADJUSTMENT_IN"
    RETURN_IN = "RETURN_IN"
    TRANSFER_IN = "TRANSFER_IN"
    REFUND_CASH = "REFUND_CASH"
    WITHDRAWAL = "WITHDRAWAL"
    ADJUSTMENT_OUT = "ADJUSTMENT_OUT"
    TRANSFER_OUT = "TRANSFER_OUT"
    EXPIRY_OUT = "EXPIRY_OUT"


class Direction(str, enum.Enum):
    INFLOW = "INFLOW"
    OUTFLOW = "OUTFLOW"


TRANSACTION_DIRECTIONS: dict[TransactionType, Direction] = {
    TransactionType.SALE_CASH: Direction.INFLOW,
    TransactionType.DEPOSIT: Direction.INFLOW,
    TransactionType.ADJUSTMENT_IN: Direction.INFLOW,
    TransactionType.RETURN_IN: Direction.INFLOW,
    TransactionType.TRANSFER_IN: Direction.INFLOW,
    TransactionType.REFUND_CASH: Direction.OUTFLOW,
    TransactionType.WITHDRAWAL: Direction.OUTFLOW,
    TransactionType.ADJUSTMENT_OUT: Direction.OUTFLOW,
    TransactionType.TRANSFER_OUT: Direction.OUTFLOW,
    TransactionType.EXPIRY_OUT: Direction.OUTFLOW,
}


def _check_classification_complete() -> None:
    missing = [t.value for t in TransactionType if t not in TRANSACTION_DIRECTIONS]
    if missing:
        raise LedgerClassificationError(
            f"Transaction types without a direction: {', '.join(missing)}"
        )


_check_classification_complete()


INFLOW_TYPES = frozenset(t for t, d in TRANSACTION_DIRECTIONS.items() if d is Direction.INFLOW)
OUTFLOW_TYPES = frozenset(t for t, d in TRANSACTION_DIRECTIONS.items() if d is Direction.OUTFLOW)


# =============================================================================
# CLASSIFICATION
# =============================================================================

def parse_transaction_type(value) -> TransactionType:
    """Parse client input into a TransactionType (ValidationError if unknown)."""
    if isinstance(value, TransactionType):
        return value
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("type is required", field="type")
    try:
        return TransactionType(value.strip().upper())
    except ValueError:
        raise ValidationError(f"Unknown transaction type: {value}", field="type")


def direction_of(tx_type) -> Direction:
    """
    Direction for a stored or parsed type.

    Raises LedgerClassificationError for anything outside the table: a stored
    row with an unknown type means the schema and code disagree.
    """
    try:
        return TRANSACTION_DIRECTIONS[TransactionType(tx_type)]
    except (ValueError, KeyError):
        raise LedgerClassificationError(f"Unclassified transaction type: {tx_type!r}")


def split_totals(transactions: Iterable[CashTransaction]) -> tuple[int, int]:
    """Return (total_inflow_cents, total_outflow_cents)."""
    inflow = 0
    outflow = 0
    for tx in transactions:
        if direction_of(tx.type) is Direction.INFLOW:
            inflow += tx.amount_cents
        else:
            outflow += tx.amount_cents
    return inflow, outflow


def net_effect(transactions: Iterable[CashTransaction]) -> int:
    """sum(inflow) - sum(outflow), in cents."""
    inflow, outflow = split_totals(transactions)
    return inflow - outflow


# =============================================================================
# AMOUNTS
# =============================================================================

_INTEGER_RE = re.compile(r"^-?\d+$")


def coerce_amount_cents(value, *, field: str, allow_zero: bool) -> int:
    """
    Validate an amount in cents from client input.

    Accepts ints and plain digit strings. Floats, booleans and scientific
    notation are rejected so that amounts stay exact.
    """
    if value is None or value == "":
        raise ValidationError(f"{field} is required", field=field)
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer number of cents", field=field)
    if isinstance(value, int):
        amount = value
    elif isinstance(value, str):
        stripped = value.strip()
        if not _INTEGER_RE.match(stripped):
            raise ValidationError(f"{field} must be an integer number of cents", field=field)
        amount = int(stripped)
    else:
        raise ValidationError(f"{field} must be an integer number of cents", field=field)

    if allow_zero and amount < 0:
        raise ValidationError(f"{field} cannot be negative", field=field)
    if not allow_zero and amount <= 0:
        raise ValidationError(f"{field} must be positive", field=field)
    return amount


# =============================================================================
# POSTING
# =============================================================================

def latest_entry_at(drawer_id: int) -> datetime | None:
    latest = (
        db.session.query(CashTransaction)
        .filter(CashTransaction.drawer_id == drawer_id)
        .order_by(CashTransaction.created_at.desc(), CashTransaction.id.desc())
        .first()
    )
    return latest.created_at if latest else None


def resolve_event_time(drawer: CashDrawer, shift: CashShift, now: datetime | None = None) -> datetime:
    """
    Timestamp for a posting, handoff or close on the drawer.

    Defaults to the server clock. An explicit `now` may not fall before the
    active shift's start nor before the drawer's latest ledger entry, so every
    entry stays inside the interval of the shift it is attributed to.

    Raises:
        ValidationError: back-dated `now`
    """
    if now is None:
        moment = utcnow()
    else:
        moment = as_naive_utc(now)

    floor = as_naive_utc(shift.started_at)
    latest = latest_entry_at(drawer.id)
    if latest is not None and as_naive_utc(latest) > floor:
        floor = as_naive_utc(latest)

    if moment < floor:
        raise ValidationError(
            f"Timestamp {to_utc_z(moment)} precedes the drawer's last recorded event at {to_utc_z(floor)}",
            field="now",
        )
    return moment


def record_transaction(
    *,
    drawer: CashDrawer,
    shift: CashShift,
    tx_type,
    amount_cents,
    description: str | None = None,
    related_id: str | None = None,
    related_type: str | None = None,
    user_id: int | None = None,
    now: datetime | None = None,
) -> CashTransaction:
    """
    Append a ledger entry to an OPEN drawer.

    The caller must hold the drawer lock and pass the drawer's ACTIVE shift.

    Raises:
        StateError: drawer not OPEN, or shift is not the drawer's active shift
        ValidationError: non-positive amount, unknown type or back-dated `now`
    """
    if drawer.status != DrawerStatus.OPEN:
        raise StateError(f"Drawer {drawer.id} is {drawer.status}; postings require an OPEN drawer")

    parsed_type = parse_transaction_type(tx_type)
    amount = coerce_amount_cents(amount_cents, field="amount_cents", allow_zero=False)

    if shift is None or shift.drawer_id != drawer.id or shift.status != ShiftStatus.ACTIVE:
        raise StateError(f"Drawer {drawer.id} has no active shift to post against")

    tx = CashTransaction(
        tenant_id=drawer.tenant_id,
        drawer_id=drawer.id,
        shift_id=shift.id,
        type=parsed_type.value,
        amount_cents=amount,
        description=(description or "").strip() or None,
        related_id=str(related_id) if related_id is not None else None,
        related_type=related_type,
        created_by_user_id=user_id,
        created_at=resolve_event_time(drawer, shift, now),
    )
    db.session.add(tx)
    db.session.flush()  # assigns the sequence id without committing
    return tx


# =============================================================================
# READS
# =============================================================================

def _ordered(query):
    return query.order_by(CashTransaction.created_at.asc(), CashTransaction.id.asc())


def get_drawer_transactions(drawer_id: int, *, as_of: datetime | None = None) -> list[CashTransaction]:
    """Ledger of a drawer in posting order, optionally up to as_of (inclusive)."""
    query = db.session.query(CashTransaction).filter(CashTransaction.drawer_id == drawer_id)
    if as_of is not None:
        query = query.filter(CashTransaction.created_at <= as_of)
    return _ordered(query).all()


def get_shift_transactions(shift_id: int) -> list[CashTransaction]:
    return _ordered(
        db.session.query(CashTransaction).filter(CashTransaction.shift_id == shift_id)
    ).all()


def get_tenant_transactions(
    tenant_id: int,
    start: datetime,
    end: datetime,
    *,
    drawer_id: int | None = None,
    cashier_user_id: int | None = None,
) -> list[CashTransaction]:
    """Tenant ledger entries with created_at in the half-open window [start, end)."""
    query = db.session.query(CashTransaction).filter(
        CashTransaction.tenant_id == tenant_id,
        CashTransaction.created_at >= start,
        CashTransaction.created_at < end,
    )
    if drawer_id is not None:
        query = query.filter(CashTransaction.drawer_id == drawer_id)
    if cashier_user_id is not None:
        query = query.join(CashShift, CashShift.id == CashTransaction.shift_id).filter(
            CashShift.cashier_user_id == cashier_user_id
        )
    return _ordered(query).all()
