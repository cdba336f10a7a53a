from __future__ import annotations

from sqlalchemy import event, inspect

from ..extensions import db
from ..errors import LedgerImmutabilityError
from vetcaja.time_utils import to_utc_z


class DrawerStatus:
    """Drawer lifecycle states. Linear: OPEN -> CLOSED -> RECONCILED."""
    OPEN = "OPEN"
    CLOSED = "CLOSED"
    RECONCILED = "RECONCILED"


class ShiftStatus:
    """Shift states. ACTIVE ends as HANDED_OFF (custody passed) or ENDED (drawer closed)."""
    ACTIVE = "ACTIVE"
    HANDED_OFF = "HANDED_OFF"
    ENDED = "ENDED"

    COMPLETED = (HANDED_OFF, ENDED)


def open_slot_key(tenant_id: int, location_id: int | None) -> str:
    """Value held in CashDrawer.open_slot_key while a drawer is OPEN."""
    return f"{tenant_id}:{location_id if location_id is not None else '*'}"


class CashDrawer(db.Model):
    """
    Physical cash drawer (caja) session at a clinic location.

    WHY: Cash custody accountability. A drawer is opened with a counted
    float, receives ledger postings while OPEN, and is closed with a
    manual count compared against the ledger-derived expected amount.

    LIFECYCLE:
    - OPEN: accepts transactions and shift handoffs
    - CLOSED: financial fields computed and frozen forever
    - RECONCILED: administrative confirmation, financial fields untouched

    UNIQUENESS: open_slot_key is "<tenant>:<location>" while OPEN and NULL
    afterwards. The unique constraint on it is what enforces at most one
    OPEN drawer per (tenant, location); NULLs never collide.

    IMMUTABLE: Drawers are never deleted.
    """
    __tablename__ = "cash_drawers"
    __table_args__ = (
        db.UniqueConstraint("open_slot_key", name="uq_cash_drawers_open_slot"),
        db.Index("ix_cash_drawers_tenant_status", "tenant_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=True, index=True)

    status = db.Column(db.String(16), nullable=False, default=DrawerStatus.OPEN, index=True)
    open_slot_key = db.Column(db.String(64), nullable=True)

    # All amounts in cents
    initial_amount_cents = db.Column(db.Integer, nullable=False)
    final_amount_cents = db.Column(db.Integer, nullable=True)     # Manual count at close
    expected_amount_cents = db.Column(db.Integer, nullable=True)  # initial + net(ledger)
    difference_cents = db.Column(db.Integer, nullable=True)       # final - expected

    opened_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    opened_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    closed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    reconciled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    reconciled_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    notes = db.Column(db.Text, nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    tenant = db.relationship("Tenant", backref=db.backref("cash_drawers", lazy=True))
    location = db.relationship("Location", backref=db.backref("cash_drawers", lazy=True))
    opened_by = db.relationship("User", foreign_keys=[opened_by_user_id])
    closed_by = db.relationship("User", foreign_keys=[closed_by_user_id])
    reconciled_by = db.relationship("User", foreign_keys=[reconciled_by_user_id])
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "location_id": self.location_id,
            "status": self.status,
            "initial_amount_cents": self.initial_amount_cents,
            "final_amount_cents": self.final_amount_cents,
            "expected_amount_cents": self.expected_amount_cents,
            "difference_cents": self.difference_cents,
            "opened_at": to_utc_z(self.opened_at),
            "opened_by_user_id": self.opened_by_user_id,
            "closed_at": to_utc_z(self.closed_at) if self.closed_at else None,
            "closed_by_user_id": self.closed_by_user_id,
            "reconciled_at": to_utc_z(self.reconciled_at) if self.reconciled_at else None,
            "reconciled_by_user_id": self.reconciled_by_user_id,
            "notes": self.notes,
            "version_id": self.version_id,
        }


class CashShift(db.Model):
    """
    Span of time one cashier is accountable for an OPEN drawer.

    A drawer always has exactly one ACTIVE shift while OPEN. A handoff ends
    the current shift (HANDED_OFF) and starts the next one with the computed
    ending balance as its starting balance. Closing the drawer ends the last
    shift (ENDED) using the manual count as its ending balance.

    Shifts of a drawer are contiguous: next.started_at == previous.ended_at.
    """
    __tablename__ = "cash_shifts"
    __table_args__ = (
        db.Index("ix_cash_shifts_drawer_status", "drawer_id", "status"),
        db.Index("ix_cash_shifts_tenant_started", "tenant_id", "started_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    drawer_id = db.Column(db.Integer, db.ForeignKey("cash_drawers.id"), nullable=False, index=True)
    cashier_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default=ShiftStatus.ACTIVE, index=True)

    started_at = db.Column(db.DateTime(timezone=True), nullable=False)
    ended_at = db.Column(db.DateTime(timezone=True), nullable=True)

    starting_balance_cents = db.Column(db.Integer, nullable=False)
    ending_balance_cents = db.Column(db.Integer, nullable=True)
    expected_balance_cents = db.Column(db.Integer, nullable=True)
    difference_cents = db.Column(db.Integer, nullable=True)

    handed_off_to_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    drawer = db.relationship("CashDrawer", backref=db.backref("shifts", lazy=True, order_by="CashShift.id"))
    cashier = db.relationship("User", foreign_keys=[cashier_user_id])
    handed_off_to = db.relationship("User", foreign_keys=[handed_off_to_user_id])
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "drawer_id": self.drawer_id,
            "cashier_user_id": self.cashier_user_id,
            "cashier_name": self.cashier.display_name if self.cashier else None,
            "status": self.status,
            "started_at": to_utc_z(self.started_at),
            "ended_at": to_utc_z(self.ended_at) if self.ended_at else None,
            "starting_balance_cents": self.starting_balance_cents,
            "ending_balance_cents": self.ending_balance_cents,
            "expected_balance_cents": self.expected_balance_cents,
            "difference_cents": self.difference_cents,
            "handed_off_to_user_id": self.handed_off_to_user_id,
            "notes": self.notes,
        }


class CashTransaction(db.Model):
    """
    Immutable cash ledger entry.

    APPEND-ONLY: Never updated or deleted. Corrections are new ADJUSTMENT_*
    entries. `amount_cents` is always positive; direction comes from `type`
    via ledger_service.TRANSACTION_DIRECTIONS.

    ORDERING: (created_at, id). The autoincrement id is the durable
    insertion sequence used as tiebreak for equal timestamps.
    """
    __tablename__ = "cash_transactions"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_cash_transactions_amount_positive"),
        db.Index("ix_cash_transactions_drawer_created", "drawer_id", "created_at", "id"),
        db.Index("ix_cash_transactions_tenant_created", "tenant_id", "created_at"),
        db.Index("ix_cash_transactions_related", "related_id", "related_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    drawer_id = db.Column(db.Integer, db.ForeignKey("cash_drawers.id"), nullable=False, index=True)
    shift_id = db.Column(db.Integer, db.ForeignKey("cash_shifts.id"), nullable=False, index=True)

    type = db.Column(db.String(32), nullable=False, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)

    description = db.Column(db.String(255), nullable=True)
    related_id = db.Column(db.String(64), nullable=True)
    related_type = db.Column(db.String(32), nullable=True)  # e.g., "sale"

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    drawer = db.relationship("CashDrawer", backref=db.backref("transactions", lazy=True))
    shift = db.relationship("CashShift", backref=db.backref("transactions", lazy=True))
    created_by = db.relationship("User", foreign_keys=[created_by_user_id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "drawer_id": self.drawer_id,
            "shift_id": self.shift_id,
            "type": self.type,
            "amount_cents": self.amount_cents,
            "description": self.description,
            "related_id": self.related_id,
            "related_type": self.related_type,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }


# =============================================================================
# IMMUTABILITY GUARDS
# =============================================================================

FROZEN_DRAWER_FIELDS = (
    "tenant_id",
    "location_id",
    "initial_amount_cents",
    "final_amount_cents",
    "expected_amount_cents",
    "difference_cents",
    "opened_at",
    "opened_by_user_id",
    "closed_at",
    "closed_by_user_id",
)

FROZEN_SHIFT_FIELDS = (
    "drawer_id",
    "cashier_user_id",
    "started_at",
    "ended_at",
    "starting_balance_cents",
    "ending_balance_cents",
    "expected_balance_cents",
    "difference_cents",
)


def _previous_value(state, attr_name: str):
    history = state.attrs[attr_name].history
    if history.deleted:
        return history.deleted[0]
    return getattr(state.object, attr_name)


def _changed_fields(state, names) -> list[str]:
    return [name for name in names if state.attrs[name].history.has_changes()]


@event.listens_for(CashTransaction, "before_update")
def _block_transaction_update(mapper, connection, target):
    raise LedgerImmutabilityError(f"Cash transaction {target.id} is immutable")


@event.listens_for(CashTransaction, "before_delete")
def _block_transaction_delete(mapper, connection, target):
    raise LedgerImmutabilityError(f"Cash transaction {target.id} cannot be deleted")


@event.listens_for(CashDrawer, "before_update")
def _guard_settled_drawer(mapper, connection, target):
    state = inspect(target)
    if _previous_value(state, "status") == DrawerStatus.OPEN:
        return
    changed = _changed_fields(state, FROZEN_DRAWER_FIELDS)
    if changed:
        raise LedgerImmutabilityError(
            f"Drawer {target.id} is settled; cannot change {', '.join(changed)}"
        )


@event.listens_for(CashDrawer, "before_delete")
def _block_drawer_delete(mapper, connection, target):
    raise LedgerImmutabilityError(f"Drawer {target.id} cannot be deleted")


@event.listens_for(CashShift, "before_update")
def _guard_completed_shift(mapper, connection, target):
    state = inspect(target)
    if _previous_value(state, "status") == ShiftStatus.ACTIVE:
        return
    changed = _changed_fields(state, FROZEN_SHIFT_FIELDS)
    if changed:
        raise LedgerImmutabilityError(
            f"Shift {target.id} is completed; cannot change {', '.join(changed)}"
        )
