# Overview: Pytest coverage for the caja HTTP API: auth, permissions, error rendering and the drawer flow.

"""
Caja API Tests

Verifies:
- Every caja endpoint requires a bearer token (401)
- Cashiers cannot reconcile or read reports (403)
- Domain errors render as {"error", "kind", "field"} with their status
- Plan limits answer 402
- Open, post, hand off, close, reconcile and report over HTTP
"""

from datetime import timedelta

import pytest

from vetcaja.models import SecurityEvent
from vetcaja.time_utils import utcnow


class TestAuthentication:
    def test_login_returns_token_and_permissions(self, client, cashier_a, tenant_a):
        response = client.post('/api/auth/login', json={
            'username': 'ana', 'password': 'Password123!', 'tenant_id': tenant_a.id,
        })

        assert response.status_code == 200
        assert response.json['token']
        assert response.json['tenant_id'] == tenant_a.id
        assert 'OPEN_DRAWER' in response.json['permissions']
        assert 'RECONCILE_DRAWER' not in response.json['permissions']

    def test_bad_password_logged(self, client, db_session, cashier_a, tenant_a):
        response = client.post('/api/auth/login', json={
            'username': 'ana', 'password': 'Wrong123!', 'tenant_id': tenant_a.id,
        })

        assert response.status_code == 401
        assert db_session.query(SecurityEvent).filter_by(event_type='LOGIN_FAILED').count() == 1

    def test_missing_credentials(self, client, db_session):
        response = client.post('/api/auth/login', json={'username': 'ana'})
        assert response.status_code == 400

    def test_me_and_logout(self, client, login, cashier_a):
        headers = login(cashier_a)

        me = client.get('/api/auth/me', headers=headers)
        assert me.status_code == 200
        assert me.json['user']['username'] == 'ana'

        assert client.post('/api/auth/logout', headers=headers).status_code == 200
        assert client.get('/api/auth/me', headers=headers).status_code == 401

    @pytest.mark.parametrize("method,path", [
        ('get', '/api/caja/drawers'),
        ('post', '/api/caja/drawers'),
        ('get', '/api/caja/drawers/current'),
        ('post', '/api/caja/drawers/1/close'),
        ('get', '/api/caja/reports'),
    ])
    def test_caja_requires_token(self, client, db_session, method, path):
        response = getattr(client, method)(path)
        assert response.status_code == 401

    def test_garbage_token_rejected(self, client, db_session):
        response = client.get('/api/caja/drawers', headers={'Authorization': 'Bearer not-a-token'})
        assert response.status_code == 401


class TestPermissions:
    def test_cashier_cannot_reconcile(self, client, login, cashier_a, open_drawer):
        response = client.post(f'/api/caja/drawers/{open_drawer.id}/reconcile', headers=login(cashier_a))

        assert response.status_code == 403
        assert response.json['required_permission'] == 'RECONCILE_DRAWER'

    def test_cashier_cannot_read_reports(self, client, db_session, login, cashier_a):
        response = client.get('/api/caja/reports', headers=login(cashier_a))

        assert response.status_code == 403
        assert db_session.query(SecurityEvent).filter_by(event_type='PERMISSION_DENIED').count() == 1

    def test_manager_can_read_reports(self, client, login, manager_a):
        response = client.get('/api/caja/reports?period=week', headers=login(manager_a))
        assert response.status_code == 200
        assert response.json['period'] == 'week'


class TestErrorRendering:
    def test_validation_error_has_kind_and_field(self, client, login, cashier_a, open_drawer):
        response = client.post(
            f'/api/caja/drawers/{open_drawer.id}/transactions',
            headers=login(cashier_a),
            json={'type': 'DEPOSIT', 'amount_cents': 0},
        )

        assert response.status_code == 400
        assert response.json['kind'] == 'validation_error'
        assert response.json['field'] == 'amount_cents'

    def test_unknown_type(self, client, login, cashier_a, open_drawer):
        response = client.post(
            f'/api/caja/drawers/{open_drawer.id}/transactions',
            headers=login(cashier_a),
            json={'type': 'TIP', 'amount_cents': 100},
        )
        assert response.status_code == 400
        assert response.json['field'] == 'type'

    def test_second_open_conflicts(self, client, login, cashier_a2, open_drawer):
        response = client.post('/api/caja/drawers', headers=login(cashier_a2), json={'initial_amount_cents': 0})

        assert response.status_code == 409
        assert response.json['kind'] == 'conflict_error'

    def test_missing_initial_amount(self, client, login, cashier_a):
        response = client.post('/api/caja/drawers', headers=login(cashier_a), json={})
        assert response.status_code == 400
        assert response.json['field'] == 'initial_amount_cents'

    def test_non_integer_location(self, client, login, cashier_a):
        response = client.post(
            '/api/caja/drawers', headers=login(cashier_a),
            json={'initial_amount_cents': 0, 'location_id': 'recepcion'},
        )
        assert response.status_code == 400
        assert response.json['field'] == 'location_id'

    def test_unknown_drawer(self, client, login, cashier_a):
        response = client.get('/api/caja/drawers/424242', headers=login(cashier_a))
        assert response.status_code == 404
        assert response.json['kind'] == 'not_found'

    def test_bad_report_period(self, client, login, manager_a):
        response = client.get('/api/caja/reports?period=quarter', headers=login(manager_a))
        assert response.status_code == 400
        assert response.json['field'] == 'period'

    def test_reconcile_open_drawer_is_state_error(self, client, login, manager_a, open_drawer):
        response = client.post(f'/api/caja/drawers/{open_drawer.id}/reconcile', headers=login(manager_a))
        assert response.status_code == 409
        assert response.json['kind'] == 'state_error'


class TestPlanLimits:
    @pytest.fixture
    def basic_plan(self, db_session, tenant_a):
        tenant_a.plan = 'BASICO'
        db_session.commit()
        return tenant_a

    def test_reports_not_in_plan(self, client, login, basic_plan, manager_a):
        response = client.get('/api/caja/reports', headers=login(manager_a))

        assert response.status_code == 402
        assert response.json['kind'] == 'limit_error'

    def test_second_drawer_over_plan_limit(self, client, login, basic_plan, location_a2, cashier_a2, open_drawer):
        response = client.post(
            '/api/caja/drawers', headers=login(cashier_a2),
            json={'initial_amount_cents': 0, 'location_id': location_a2.id},
        )
        assert response.status_code == 402


class TestDrawerFlow:
    def test_full_shift_day(self, client, login, tenant_a, location_a, cashier_a, cashier_a2, manager_a):
        ana = login(cashier_a)
        bruno = login(cashier_a2)
        marta = login(manager_a)

        opened = client.post('/api/caja/drawers', headers=ana, json={'initial_amount_cents': 100000})
        assert opened.status_code == 201
        drawer_id = opened.json['drawer']['id']
        assert opened.json['drawer']['location_id'] == location_a.id
        assert opened.json['shift']['cashier_user_id'] == cashier_a.id

        for amount in (50000, 30000):
            posted = client.post(
                f'/api/caja/drawers/{drawer_id}/transactions', headers=ana,
                json={'type': 'SALE_CASH', 'amount_cents': amount, 'description': 'Consulta'},
            )
            assert posted.status_code == 201

        handoff = client.post(
            f'/api/caja/drawers/{drawer_id}/handoff', headers=ana,
            json={'to_cashier_user_id': cashier_a2.id},
        )
        assert handoff.status_code == 200
        assert handoff.json['previous_shift']['ending_balance_cents'] == 180000
        assert handoff.json['shift']['starting_balance_cents'] == 180000

        withdrawal = client.post(
            f'/api/caja/drawers/{drawer_id}/transactions', headers=bruno,
            json={'type': 'WITHDRAWAL', 'amount_cents': 20000},
        )
        assert withdrawal.json['transaction']['shift_id'] == handoff.json['shift']['id']

        current = client.get('/api/caja/drawers/current', headers=bruno)
        assert current.json['stats']['current_balance_cents'] == 160000
        assert current.json['shift']['cashier_user_id'] == cashier_a2.id

        closed = client.post(f'/api/caja/drawers/{drawer_id}/close', headers=bruno, json={'final_amount_cents': 155000})
        assert closed.status_code == 200
        assert closed.json['drawer']['status'] == 'CLOSED'
        assert closed.json['drawer']['expected_amount_cents'] == 160000
        assert closed.json['drawer']['difference_cents'] == -5000
        assert closed.json['drawer']['difference_classification'] == 'shortage'

        reconciled = client.post(f'/api/caja/drawers/{drawer_id}/reconcile', headers=marta)
        assert reconciled.status_code == 200
        assert reconciled.json['drawer']['status'] == 'RECONCILED'
        assert reconciled.json['drawer']['difference_cents'] == -5000

        today = utcnow().date()
        report = client.get(
            '/api/caja/reports',
            headers=marta,
            query_string={
                'period': 'custom',
                'start_date': (today - timedelta(days=1)).isoformat(),
                'end_date': (today + timedelta(days=1)).isoformat(),
            },
        )
        assert report.status_code == 200
        assert report.json['summary']['net_cents'] == 60000
        assert report.json['discrepancies']['worst_discrepancy_cents'] == -5000
        assert [row['accuracy'] for row in report.json['by_cashier']] == [100, 0]

        shift_id = handoff.json['previous_shift']['id']
        detail = client.get(f'/api/caja/reports/shifts/{shift_id}', headers=marta)
        assert detail.status_code == 200
        assert detail.json['totals']['income_cents'] == 80000

    def test_ledger_listing(self, client, login, cashier_a, open_drawer):
        headers = login(cashier_a)
        client.post(
            f'/api/caja/drawers/{open_drawer.id}/transactions', headers=headers,
            json={'type': 'DEPOSIT', 'amount_cents': 2500},
        )

        listing = client.get(f'/api/caja/drawers/{open_drawer.id}/transactions', headers=headers)

        assert listing.status_code == 200
        assert [tx['amount_cents'] for tx in listing.json['transactions']] == [2500]
        assert listing.json['summary']['current_balance_cents'] == 102500

    def test_list_drawers_and_shifts(self, client, login, manager_a, open_drawer):
        headers = login(manager_a)

        drawers = client.get('/api/caja/drawers?status=OPEN', headers=headers)
        shifts = client.get(f'/api/caja/shifts?drawer_id={open_drawer.id}', headers=headers)

        assert [d['id'] for d in drawers.json['drawers']] == [open_drawer.id]
        assert len(shifts.json['shifts']) == 1

    def test_handoff_requires_target(self, client, login, cashier_a, open_drawer):
        response = client.post(f'/api/caja/drawers/{open_drawer.id}/handoff', headers=login(cashier_a), json={})
        assert response.status_code == 400


class TestSystem:
    def test_health(self, client, db_session, setup_permissions):
        response = client.get('/health')
        assert response.status_code == 200
        assert response.json['status'] == 'healthy'
