# Overview: Pytest coverage for drawer open/close/reconcile and the one-open-drawer rule.

"""
Drawer Lifecycle Tests

Verifies:
- Opening creates the drawer and its first ACTIVE shift
- At most one OPEN drawer per (tenant, location): ConflictError
- Plan drawer limits: LimitError
- Close computes expected from the whole ledger and difference = counted - expected
- OPEN -> CLOSED -> RECONCILED is the only path
- A failed close leaves the drawer OPEN and unmodified
- Close and reconcile cannot be stamped before earlier events
- The open-slot unique key and version counters turn races into ConflictError
"""

from datetime import timedelta

import pytest
from sqlalchemy import text

from vetcaja.errors import ConflictError, LimitError, NotFoundError, StateError, ValidationError
from vetcaja.models import CashDrawer, DrawerStatus, ShiftStatus
from vetcaja.services import drawer_service, ledger_service, reconciliation_service, shift_service
from vetcaja.services.caja_service import DrawerManager
from vetcaja.services.capability_service import PlanCapabilities, StaticCapabilities


def _post(manager, tenant, drawer, tx_type, amount, when):
    return manager.record_transaction(tenant.id, drawer.id, tx_type=tx_type, amount_cents=amount, now=when)


class TestOpenDrawer:
    def test_open_creates_first_active_shift(self, db_session, open_drawer, cashier_a, t0):
        assert open_drawer.status == DrawerStatus.OPEN
        assert open_drawer.initial_amount_cents == 100000
        assert open_drawer.opened_at == t0
        assert open_drawer.final_amount_cents is None
        assert open_drawer.expected_amount_cents is None

        shifts = open_drawer.shifts
        assert len(shifts) == 1
        assert shifts[0].status == ShiftStatus.ACTIVE
        assert shifts[0].cashier_user_id == cashier_a.id
        assert shifts[0].starting_balance_cents == 100000
        assert shifts[0].started_at == t0

    def test_second_open_same_location_conflicts(self, db_session, manager, tenant_a, location_a, open_drawer, cashier_a2):
        with pytest.raises(ConflictError):
            manager.open_drawer(
                tenant_a.id, location_id=location_a.id, initial_amount_cents=5000, cashier_user_id=cashier_a2.id
            )

        assert db_session.query(CashDrawer).count() == 1

    def test_other_location_may_open_concurrently(self, db_session, manager, tenant_a, location_a2, open_drawer, cashier_a2):
        other = manager.open_drawer(
            tenant_a.id, location_id=location_a2.id, initial_amount_cents=5000, cashier_user_id=cashier_a2.id
        )

        assert other.id != open_drawer.id
        assert drawer_service.count_open_drawers(tenant_a.id) == 2

    def test_clinic_wide_drawer_has_its_own_slot(self, db_session, manager, tenant_a, open_drawer, cashier_a2, manager_a):
        clinic_wide = manager.open_drawer(
            tenant_a.id, location_id=None, initial_amount_cents=0, cashier_user_id=cashier_a2.id
        )
        assert clinic_wide.location_id is None

        with pytest.raises(ConflictError):
            manager.open_drawer(tenant_a.id, location_id=None, initial_amount_cents=0, cashier_user_id=manager_a.id)

    def test_negative_initial_amount_rejected(self, db_session, manager, tenant_a, location_a, cashier_a):
        with pytest.raises(ValidationError) as exc:
            manager.open_drawer(
                tenant_a.id, location_id=location_a.id, initial_amount_cents=-1, cashier_user_id=cashier_a.id
            )
        assert exc.value.field == "initial_amount_cents"
        assert db_session.query(CashDrawer).count() == 0

    def test_zero_float_allowed(self, db_session, manager, tenant_a, location_a, cashier_a):
        drawer = manager.open_drawer(
            tenant_a.id, location_id=location_a.id, initial_amount_cents=0, cashier_user_id=cashier_a.id
        )
        assert drawer.initial_amount_cents == 0

    def test_drawer_limit_blocks_open(self, db_session, tenant_a, location_a, location_a2, cashier_a, cashier_a2):
        single = DrawerManager(StaticCapabilities(max_drawers=1))
        single.open_drawer(tenant_a.id, location_id=location_a.id, initial_amount_cents=0, cashier_user_id=cashier_a.id)

        with pytest.raises(LimitError) as exc:
            single.open_drawer(
                tenant_a.id, location_id=location_a2.id, initial_amount_cents=0, cashier_user_id=cashier_a2.id
            )
        assert exc.value.status_code == 402

    def test_plan_capabilities_read_tenant_plan(self, db_session, tenant_a, location_a, location_a2, cashier_a, cashier_a2):
        tenant_a.plan = "BASICO"
        db_session.commit()
        by_plan = DrawerManager(PlanCapabilities())

        by_plan.open_drawer(tenant_a.id, location_id=location_a.id, initial_amount_cents=0, cashier_user_id=cashier_a.id)
        with pytest.raises(LimitError):
            by_plan.open_drawer(
                tenant_a.id, location_id=location_a2.id, initial_amount_cents=0, cashier_user_id=cashier_a2.id
            )

    def test_cashier_with_active_shift_cannot_open_another(self, db_session, manager, tenant_a, location_a2, open_drawer, cashier_a):
        with pytest.raises(StateError):
            manager.open_drawer(
                tenant_a.id, location_id=location_a2.id, initial_amount_cents=0, cashier_user_id=cashier_a.id
            )

    def test_foreign_location_not_found(self, db_session, manager, tenant_a, location_b, cashier_a):
        with pytest.raises(NotFoundError):
            manager.open_drawer(
                tenant_a.id, location_id=location_b.id, initial_amount_cents=0, cashier_user_id=cashier_a.id
            )


class TestCloseDrawer:
    def _sales_and_withdrawal(self, manager, tenant, drawer, t0):
        _post(manager, tenant, drawer, "SALE_CASH", 50000, t0 + timedelta(minutes=10))
        _post(manager, tenant, drawer, "SALE_CASH", 30000, t0 + timedelta(minutes=20))
        _post(manager, tenant, drawer, "WITHDRAWAL", 20000, t0 + timedelta(minutes=30))

    def test_close_balanced(self, db_session, manager, tenant_a, open_drawer, cashier_a, t0):
        self._sales_and_withdrawal(manager, tenant_a, open_drawer, t0)

        drawer = manager.close(
            tenant_a.id, open_drawer.id, final_amount_cents=160000, closed_by_user_id=cashier_a.id,
            now=t0 + timedelta(hours=8),
        )

        assert drawer.status == DrawerStatus.CLOSED
        assert drawer.expected_amount_cents == 160000
        assert drawer.final_amount_cents == 160000
        assert drawer.difference_cents == 0
        assert drawer.open_slot_key is None
        assert drawer.closed_at == t0 + timedelta(hours=8)

    def test_close_shortage(self, db_session, manager, tenant_a, open_drawer, cashier_a, t0):
        self._sales_and_withdrawal(manager, tenant_a, open_drawer, t0)

        drawer = manager.close(tenant_a.id, open_drawer.id, final_amount_cents=155000, closed_by_user_id=cashier_a.id)

        assert drawer.difference_cents == -5000
        assert reconciliation_service.classify_difference(drawer.difference_cents) == reconciliation_service.SHORTAGE

    def test_close_surplus(self, db_session, manager, tenant_a, open_drawer, cashier_a):
        drawer = manager.close(tenant_a.id, open_drawer.id, final_amount_cents=105000, closed_by_user_id=cashier_a.id)

        assert drawer.difference_cents == 5000
        assert drawer.shifts[-1].difference_cents == 5000

    def test_close_with_empty_ledger_expects_float(self, db_session, manager, tenant_a, open_drawer, cashier_a):
        drawer = manager.close(tenant_a.id, open_drawer.id, final_amount_cents=100000, closed_by_user_id=cashier_a.id)
        assert drawer.expected_amount_cents == 100000

    def test_expected_matches_independent_recomputation(self, db_session, manager, tenant_a, open_drawer, cashier_a, t0):
        amounts = [("SALE_CASH", 1234), ("REFUND_CASH", 99), ("DEPOSIT", 5000), ("EXPIRY_OUT", 1),
                   ("TRANSFER_IN", 700), ("ADJUSTMENT_OUT", 333), ("RETURN_IN", 50), ("TRANSFER_OUT", 2000)]
        for minute, (tx_type, amount) in enumerate(amounts, start=1):
            _post(manager, tenant_a, open_drawer, tx_type, amount, t0 + timedelta(minutes=minute))

        drawer = manager.close(tenant_a.id, open_drawer.id, final_amount_cents=0, closed_by_user_id=cashier_a.id)

        inflow = sum(a for t, a in amounts if ledger_service.direction_of(t) is ledger_service.Direction.INFLOW)
        outflow = sum(a for t, a in amounts if ledger_service.direction_of(t) is ledger_service.Direction.OUTFLOW)
        assert drawer.expected_amount_cents == 100000 + inflow - outflow

    def test_close_ends_active_shift_with_count(self, db_session, manager, tenant_a, open_drawer, cashier_a, t0):
        _post(manager, tenant_a, open_drawer, "SALE_CASH", 50000, t0 + timedelta(minutes=5))
        manager.close(tenant_a.id, open_drawer.id, final_amount_cents=149000, closed_by_user_id=cashier_a.id)

        shift = open_drawer.shifts[-1]
        assert shift.status == ShiftStatus.ENDED
        assert shift.expected_balance_cents == 150000
        assert shift.ending_balance_cents == 149000
        assert shift.difference_cents == -1000

    def test_close_twice_rejected(self, db_session, manager, tenant_a, open_drawer, cashier_a):
        manager.close(tenant_a.id, open_drawer.id, final_amount_cents=100000, closed_by_user_id=cashier_a.id)

        with pytest.raises(StateError):
            manager.close(tenant_a.id, open_drawer.id, final_amount_cents=100000, closed_by_user_id=cashier_a.id)

    def test_failed_close_leaves_drawer_untouched(self, db_session, manager, tenant_a, open_drawer, cashier_a):
        version = open_drawer.version_id

        with pytest.raises(ValidationError):
            manager.close(tenant_a.id, open_drawer.id, final_amount_cents=-10, closed_by_user_id=cashier_a.id)

        db_session.expire_all()
        drawer = db_session.get(CashDrawer, open_drawer.id)
        assert drawer.status == DrawerStatus.OPEN
        assert drawer.final_amount_cents is None
        assert drawer.version_id == version
        assert drawer.shifts[0].status == ShiftStatus.ACTIVE

    def test_location_can_reopen_after_close(self, db_session, manager, tenant_a, location_a, open_drawer, cashier_a):
        manager.close(tenant_a.id, open_drawer.id, final_amount_cents=100000, closed_by_user_id=cashier_a.id)

        again = manager.open_drawer(
            tenant_a.id, location_id=location_a.id, initial_amount_cents=20000, cashier_user_id=cashier_a.id
        )
        assert again.id != open_drawer.id
        assert again.status == DrawerStatus.OPEN


    def test_close_before_last_posting_rejected(self, db_session, manager, tenant_a, open_drawer, cashier_a, t0):
        self._sales_and_withdrawal(manager, tenant_a, open_drawer, t0)

        with pytest.raises(ValidationError):
            manager.close(
                tenant_a.id, open_drawer.id, final_amount_cents=160000, closed_by_user_id=cashier_a.id,
                now=t0 + timedelta(minutes=15),
            )

        db_session.expire_all()
        drawer = db_session.get(CashDrawer, open_drawer.id)
        assert drawer.status == DrawerStatus.OPEN
        assert drawer.closed_at is None
        assert drawer.shifts[0].ended_at is None


class TestReconcileDrawer:
    def test_reconcile_before_close_time_rejected(self, db_session, manager, tenant_a, open_drawer, cashier_a, manager_a, t0):
        manager.close(
            tenant_a.id, open_drawer.id, final_amount_cents=100000, closed_by_user_id=cashier_a.id,
            now=t0 + timedelta(hours=8),
        )

        with pytest.raises(ValidationError):
            manager.reconcile(
                tenant_a.id, open_drawer.id, reconciled_by_user_id=manager_a.id, now=t0 + timedelta(hours=7)
            )

        db_session.expire_all()
        assert db_session.get(CashDrawer, open_drawer.id).status == DrawerStatus.CLOSED

    def test_reconcile_after_close(self, db_session, manager, tenant_a, open_drawer, cashier_a, manager_a):
        closed = manager.close(tenant_a.id, open_drawer.id, final_amount_cents=99000, closed_by_user_id=cashier_a.id)
        difference = closed.difference_cents

        drawer = manager.reconcile(tenant_a.id, open_drawer.id, reconciled_by_user_id=manager_a.id)

        assert drawer.status == DrawerStatus.RECONCILED
        assert drawer.reconciled_by_user_id == manager_a.id
        assert drawer.difference_cents == difference

    def test_reconcile_open_drawer_rejected(self, db_session, manager, tenant_a, open_drawer, manager_a):
        with pytest.raises(StateError):
            manager.reconcile(tenant_a.id, open_drawer.id, reconciled_by_user_id=manager_a.id)

    def test_reconcile_twice_rejected(self, db_session, manager, tenant_a, open_drawer, cashier_a, manager_a):
        manager.close(tenant_a.id, open_drawer.id, final_amount_cents=100000, closed_by_user_id=cashier_a.id)
        manager.reconcile(tenant_a.id, open_drawer.id, reconciled_by_user_id=manager_a.id)

        with pytest.raises(StateError):
            manager.reconcile(tenant_a.id, open_drawer.id, reconciled_by_user_id=manager_a.id)


class TestDrawerReads:
    def test_stats_for_open_drawer(self, db_session, manager, tenant_a, open_drawer, t0):
        _post(manager, tenant_a, open_drawer, "SALE_CASH", 50000, t0 + timedelta(minutes=1))
        _post(manager, tenant_a, open_drawer, "WITHDRAWAL", 20000, t0 + timedelta(minutes=2))

        stats = drawer_service.drawer_stats(open_drawer)

        assert stats == {
            "total_income_cents": 50000,
            "total_expenses_cents": 20000,
            "net_cents": 30000,
            "transaction_count": 2,
            "current_balance_cents": 130000,
            "is_drawer_open": True,
        }

    def test_stats_without_drawer_are_zero(self):
        stats = drawer_service.drawer_stats(None)
        assert stats["is_drawer_open"] is False
        assert stats["current_balance_cents"] == 0

    def test_expected_balance_as_of(self, db_session, manager, tenant_a, open_drawer, t0):
        _post(manager, tenant_a, open_drawer, "DEPOSIT", 1000, t0 + timedelta(minutes=1))
        _post(manager, tenant_a, open_drawer, "DEPOSIT", 2000, t0 + timedelta(minutes=2))

        assert reconciliation_service.expected_balance(open_drawer.id, as_of=t0) == 100000
        assert reconciliation_service.expected_balance(open_drawer.id, as_of=t0 + timedelta(minutes=1)) == 101000
        assert manager.expected_balance(tenant_a.id, open_drawer.id) == 103000

    def test_list_drawers_filters_by_status(self, db_session, manager, tenant_a, location_a2, open_drawer, cashier_a, cashier_a2):
        other = manager.open_drawer(
            tenant_a.id, location_id=location_a2.id, initial_amount_cents=0, cashier_user_id=cashier_a2.id
        )
        manager.close(tenant_a.id, other.id, final_amount_cents=0, closed_by_user_id=cashier_a2.id)

        open_ids = [d.id for d in drawer_service.list_drawers(tenant_a.id, status="open")]
        closed_ids = [d.id for d in drawer_service.list_drawers(tenant_a.id, status="CLOSED")]

        assert open_ids == [open_drawer.id]
        assert closed_ids == [other.id]

        with pytest.raises(ValidationError):
            drawer_service.list_drawers(tenant_a.id, status="LOST")

    def test_current_drawer_by_location(self, db_session, tenant_a, location_a, location_a2, open_drawer):
        assert drawer_service.get_open_drawer(tenant_a.id, location_a.id).id == open_drawer.id
        assert drawer_service.get_open_drawer(tenant_a.id, location_a2.id) is None


class TestDatabaseGuards:
    def test_open_slot_constraint_catches_racing_open(self, db_session, monkeypatch, manager, tenant_a, location_a, open_drawer, cashier_a2):
        version = open_drawer.version_id
        # second open that never saw the first drawer
        monkeypatch.setattr(drawer_service, "get_open_drawer", lambda *args, **kwargs: None)

        with pytest.raises(ConflictError):
            manager.open_drawer(
                tenant_a.id, location_id=location_a.id, initial_amount_cents=5000, cashier_user_id=cashier_a2.id
            )

        db_session.expire_all()
        assert db_session.query(CashDrawer).count() == 1
        drawer = db_session.get(CashDrawer, open_drawer.id)
        assert drawer.status == DrawerStatus.OPEN
        assert drawer.version_id == version
        assert drawer.initial_amount_cents == 100000
        assert shift_service.get_cashier_active_shift(cashier_a2.id) is None

    def test_stale_drawer_version_conflicts(self, db_session, manager, tenant_a, open_drawer, cashier_a):
        loaded_version = open_drawer.version_id
        db_session.execute(
            text("UPDATE cash_drawers SET version_id = version_id + 1 WHERE id = :id"),
            {"id": open_drawer.id},
        )

        with pytest.raises(ConflictError):
            manager.close(tenant_a.id, open_drawer.id, final_amount_cents=100000, closed_by_user_id=cashier_a.id)

        db_session.expire_all()
        drawer = db_session.get(CashDrawer, open_drawer.id)
        assert drawer.status == DrawerStatus.OPEN
        assert drawer.version_id == loaded_version
        assert drawer.final_amount_cents is None
