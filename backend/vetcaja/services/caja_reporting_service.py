# Overview: Service-layer operations for caja reporting; read-only aggregation over the cash ledger.

"""
Report Aggregator

All windows are half-open [start, end). Transactions are selected by
created_at, shifts by started_at. Reports only read: they take no locks and
never write, so running one twice over an unchanged ledger returns the same
result.

Every list in the output is sorted so the JSON is deterministic.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import date, datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP

from ..extensions import db
from ..errors import NotFoundError, ValidationError
from ..models import CashShift, CashTransaction, ShiftStatus, User
from . import ledger_service, reconciliation_service, tenant_service
from vetcaja.time_utils import start_of_day, to_utc_z, utcnow


PERIODS = ("day", "week", "month", "lastMonth", "custom")


# =============================================================================
# PERIODS
# =============================================================================

def _parse_date(value, field: str) -> date:
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError as exc:
        raise ValidationError(f"{field} must be YYYY-MM-DD", field=field) from exc


def resolve_period(
    period: str = "day",
    *,
    start_date=None,
    end_date=None,
    now: datetime | None = None,
) -> tuple[datetime, datetime]:
    """
    Turn a named period into a half-open UTC window.

    day: today. week: since Monday. month: since the 1st. lastMonth: the
    whole previous month. custom: inclusive start_date..end_date.
    """
    now = now or utcnow()
    today = start_of_day(now)

    if period == "day":
        return today, today + timedelta(days=1)

    if period == "week":
        monday = today - timedelta(days=today.weekday())
        return monday, today + timedelta(days=1)

    if period == "month":
        return today.replace(day=1), today + timedelta(days=1)

    if period == "lastMonth":
        first_this_month = today.replace(day=1)
        first_last_month = (first_this_month - timedelta(days=1)).replace(day=1)
        return first_last_month, first_this_month

    if period == "custom":
        if not start_date or not end_date:
            raise ValidationError("custom period requires start_date and end_date", field="start_date")
        first = _parse_date(start_date, "start_date")
        last = _parse_date(end_date, "end_date")
        if last < first:
            raise ValidationError("end_date must not be before start_date", field="end_date")
        start = datetime(first.year, first.month, first.day)
        end = datetime(last.year, last.month, last.day) + timedelta(days=1)
        return start, end

    raise ValidationError(f"Unknown period: {period}. Expected one of {', '.join(PERIODS)}", field="period")


# =============================================================================
# SELECTION
# =============================================================================

def _transactions(tenant_id, start, end, drawer_id=None, cashier_user_id=None) -> list[CashTransaction]:
    return ledger_service.get_tenant_transactions(
        tenant_id, start, end, drawer_id=drawer_id, cashier_user_id=cashier_user_id
    )


def _shifts(tenant_id, start, end, drawer_id=None, cashier_user_id=None) -> list[CashShift]:
    query = db.session.query(CashShift).filter(
        CashShift.tenant_id == tenant_id,
        CashShift.started_at >= start,
        CashShift.started_at < end,
    )
    if drawer_id is not None:
        query = query.filter(CashShift.drawer_id == drawer_id)
    if cashier_user_id is not None:
        query = query.filter(CashShift.cashier_user_id == cashier_user_id)
    return query.order_by(CashShift.started_at.asc(), CashShift.id.asc()).all()


def _hours(start: datetime, end: datetime) -> Decimal:
    return Decimal((end - start).total_seconds()) / Decimal(3600)


def _round_tenth(value: Decimal) -> float:
    return float(value.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


def _totals(transactions) -> dict:
    inflow, outflow = ledger_service.split_totals(transactions)
    return {
        "income_cents": inflow,
        "expenses_cents": outflow,
        "net_cents": inflow - outflow,
        "transaction_count": len(transactions),
    }


# =============================================================================
# REPORTS
# =============================================================================

def summarize(tenant_id: int, start: datetime, end: datetime, *, drawer_id=None, cashier_user_id=None) -> dict:
    transactions = _transactions(tenant_id, start, end, drawer_id, cashier_user_id)
    inflow, outflow = ledger_service.split_totals(transactions)
    count = len(transactions)
    avg = reconciliation_service.round_half_up(Decimal(inflow + outflow) / Decimal(count)) if count else 0
    return {
        "total_inflow_cents": inflow,
        "total_outflow_cents": outflow,
        "net_cents": inflow - outflow,
        "transaction_count": count,
        "avg_transaction_value_cents": avg,
    }


def by_transaction_type(tenant_id: int, start: datetime, end: datetime, *, drawer_id=None, cashier_user_id=None) -> dict:
    """{type: {count, total_cents}} for types that occur in the window."""
    buckets: dict[str, dict] = {}
    for tx in _transactions(tenant_id, start, end, drawer_id, cashier_user_id):
        bucket = buckets.setdefault(tx.type, {"count": 0, "total_cents": 0})
        bucket["count"] += 1
        bucket["total_cents"] += tx.amount_cents
    return {key: buckets[key] for key in sorted(buckets)}


def by_drawer(tenant_id: int, start: datetime, end: datetime, *, drawer_id=None, cashier_user_id=None) -> list[dict]:
    transactions = _transactions(tenant_id, start, end, drawer_id, cashier_user_id)
    shifts = _shifts(tenant_id, start, end, drawer_id, cashier_user_id)

    tx_by_drawer = defaultdict(list)
    for tx in transactions:
        tx_by_drawer[tx.drawer_id].append(tx)

    shifts_by_drawer = defaultdict(list)
    for shift in shifts:
        shifts_by_drawer[shift.drawer_id].append(shift)

    rows = []
    for key in sorted(set(tx_by_drawer) | set(shifts_by_drawer)):
        row = {"drawer_id": key}
        row.update(_totals(tx_by_drawer[key]))
        row["shift_count"] = len(shifts_by_drawer[key])
        row["total_difference_cents"] = sum(s.difference_cents or 0 for s in shifts_by_drawer[key])
        rows.append(row)
    return rows


def by_cashier(
    tenant_id: int,
    start: datetime,
    end: datetime,
    *,
    drawer_id=None,
    cashier_user_id=None,
    now: datetime | None = None,
) -> list[dict]:
    """
    Per-cashier shift performance.

    Hours use ended_at for completed shifts and `now` for the ACTIVE one.
    Accuracy is computed over completed shifts only and is None when the
    cashier has none in the window.
    """
    now = now or utcnow()
    shifts = _shifts(tenant_id, start, end, drawer_id, cashier_user_id)
    transactions = _transactions(tenant_id, start, end, drawer_id, cashier_user_id)

    shift_owner = {s.id: s.cashier_user_id for s in shifts}
    missing = {tx.shift_id for tx in transactions} - set(shift_owner)
    if missing:
        # Transactions posted in the window on shifts that started before it
        for shift_id, owner in db.session.query(CashShift.id, CashShift.cashier_user_id).filter(
            CashShift.id.in_(missing)
        ):
            shift_owner[shift_id] = owner

    shifts_by_cashier = defaultdict(list)
    for shift in shifts:
        shifts_by_cashier[shift.cashier_user_id].append(shift)

    tx_count = defaultdict(int)
    for tx in transactions:
        tx_count[shift_owner[tx.shift_id]] += 1

    cashier_ids = sorted(set(shifts_by_cashier) | set(tx_count))
    names = {}
    if cashier_ids:
        names = {u.id: u.display_name for u in db.session.query(User).filter(User.id.in_(cashier_ids))}

    rows = []
    for cashier_id in cashier_ids:
        own = shifts_by_cashier[cashier_id]
        completed = [s for s in own if s.status in ShiftStatus.COMPLETED]
        hours = sum((_hours(s.started_at, s.ended_at or now) for s in own), Decimal(0))
        rows.append({
            "cashier_user_id": cashier_id,
            "cashier_name": names.get(cashier_id),
            "shift_count": len(own),
            "total_hours": _round_tenth(hours),
            "transaction_count": tx_count[cashier_id],
            "total_difference_cents": sum(s.difference_cents or 0 for s in completed),
            "accuracy": reconciliation_service.accuracy(completed),
        })
    return rows


def accuracy_ranking(rows: list[dict]) -> list[dict]:
    """Cashiers by accuracy, best first. Undefined accuracy is left out, not ranked as 0."""
    ranked = [row for row in rows if row["accuracy"] is not None]
    return sorted(ranked, key=lambda r: (-r["accuracy"], -r["shift_count"], r["cashier_user_id"]))


def by_day(tenant_id: int, start: datetime, end: datetime, *, drawer_id=None, cashier_user_id=None) -> list[dict]:
    """UTC calendar-day buckets of the window that have transactions."""
    days = defaultdict(list)
    for tx in _transactions(tenant_id, start, end, drawer_id, cashier_user_id):
        days[tx.created_at.date()].append(tx)

    rows = []
    for day in sorted(days):
        row = {"date": day.isoformat()}
        row.update(_totals(days[day]))
        rows.append(row)
    return rows


def discrepancy_summary(tenant_id: int, start: datetime, end: datetime, *, drawer_id=None, cashier_user_id=None) -> dict:
    """
    Differences over completed shifts in the window.

    worst_discrepancy keeps its sign; on equal magnitude the earlier shift wins.
    """
    completed = [
        s for s in _shifts(tenant_id, start, end, drawer_id, cashier_user_id)
        if s.status in ShiftStatus.COMPLETED
    ]
    worst = 0
    with_difference = 0
    for shift in completed:
        diff = shift.difference_cents or 0
        if diff:
            with_difference += 1
        if abs(diff) > abs(worst):
            worst = diff
    return {
        "total_difference_cents": sum(s.difference_cents or 0 for s in completed),
        "shifts_with_difference": with_difference,
        "worst_discrepancy_cents": worst,
        "completed_shift_count": len(completed),
    }


def build_report(
    tenant_id: int,
    *,
    period: str = "day",
    start_date=None,
    end_date=None,
    drawer_id: int | None = None,
    cashier_user_id: int | None = None,
    now: datetime | None = None,
) -> dict:
    now = now or utcnow()
    start, end = resolve_period(period, start_date=start_date, end_date=end_date, now=now)
    filters = {"drawer_id": drawer_id, "cashier_user_id": cashier_user_id}

    cashiers = by_cashier(tenant_id, start, end, now=now, **filters)
    shifts = _shifts(tenant_id, start, end, **filters)

    return {
        "period": period,
        "start": to_utc_z(start),
        "end": to_utc_z(end),
        "filters": filters,
        "summary": summarize(tenant_id, start, end, **filters),
        "by_type": by_transaction_type(tenant_id, start, end, **filters),
        "by_drawer": by_drawer(tenant_id, start, end, **filters),
        "by_cashier": cashiers,
        "accuracy_ranking": accuracy_ranking(cashiers),
        "by_day": by_day(tenant_id, start, end, **filters),
        "discrepancies": discrepancy_summary(tenant_id, start, end, **filters),
        "shifts": [s.to_dict() for s in shifts],
    }


def get_shift(shift_id: int, tenant_id: int) -> CashShift:
    shift = db.session.get(CashShift, shift_id)
    if not shift:
        raise NotFoundError("Shift not found", field="shift_id")
    if shift.tenant_id != tenant_id:
        tenant_service.log_cross_tenant_attempt(
            f"Shift {shift_id} belongs to tenant {shift.tenant_id}, not {tenant_id}",
            tenant_id=tenant_id,
        )
        raise NotFoundError("Shift not found", field="shift_id")
    return shift


def shift_detail(shift_id: int, tenant_id: int, *, now: datetime | None = None) -> dict:
    """One shift with its ledger, an hourly breakdown and its reconciliation."""
    now = now or utcnow()
    shift = get_shift(shift_id, tenant_id)
    transactions = ledger_service.get_shift_transactions(shift.id)

    hourly = defaultdict(lambda: {"count": 0, "income_cents": 0, "expenses_cents": 0})
    for tx in transactions:
        bucket = hourly[tx.created_at.hour]
        bucket["count"] += 1
        if ledger_service.direction_of(tx.type) is ledger_service.Direction.INFLOW:
            bucket["income_cents"] += tx.amount_cents
        else:
            bucket["expenses_cents"] += tx.amount_cents

    if shift.status == ShiftStatus.ACTIVE:
        expected = reconciliation_service.expected_for_shift(shift)
    else:
        expected = shift.expected_balance_cents

    drawer = shift.drawer
    return {
        "shift": shift.to_dict(),
        "drawer": drawer.to_dict(),
        "transactions": [tx.to_dict() for tx in transactions],
        "totals": _totals(transactions),
        "hourly": [{"hour": hour, **hourly[hour]} for hour in sorted(hourly)],
        "duration_hours": _round_tenth(_hours(shift.started_at, shift.ended_at or now)),
        "reconciliation": {
            "starting_balance_cents": shift.starting_balance_cents,
            "expected_balance_cents": expected,
            "ending_balance_cents": shift.ending_balance_cents,
            "difference_cents": shift.difference_cents,
            "classification": (
                reconciliation_service.classify_difference(shift.difference_cents)
                if shift.difference_cents is not None
                else None
            ),
        },
    }
