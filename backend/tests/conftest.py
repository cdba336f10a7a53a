"""
Pytest fixtures for vetcaja backend tests.

Provides test database setup, two tenants for isolation tests, staff users
with roles, a DrawerManager with fixed capabilities, and the test client.
"""

from datetime import datetime

import pytest
from vetcaja import create_app
from vetcaja.extensions import db
from vetcaja.models import Tenant, Location, User
from vetcaja.services import permission_service
from vetcaja.services.auth_service import hash_password
from vetcaja.services.caja_service import DrawerManager
from vetcaja.services.capability_service import FEATURE_SHIFT_REPORTS, StaticCapabilities


PASSWORD = "Password123!"

# Fixed clock for deterministic ledgers and reports
T0 = datetime(2026, 3, 10, 9, 0, 0)


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'CAJA_CAPABILITIES': None,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        for table in reversed(db.metadata.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        db.session.rollback()


@pytest.fixture(scope='function')
def setup_permissions(db_session):
    permission_service.initialize_permissions()


@pytest.fixture(scope='function')
def tenant_a(db_session, setup_permissions):
    """Tenant A (multi-drawer plan)."""
    tenant = Tenant(name="Clinica A", code="CLA", plan="CLINICA", is_active=True)
    db_session.add(tenant)
    db_session.commit()
    permission_service.create_default_roles(tenant.id)
    permission_service.assign_default_role_permissions(tenant.id)
    return tenant


@pytest.fixture(scope='function')
def tenant_b(db_session, setup_permissions):
    """Tenant B (second clinic for isolation tests)."""
    tenant = Tenant(name="Clinica B", code="CLB", plan="CLINICA", is_active=True)
    db_session.add(tenant)
    db_session.commit()
    permission_service.create_default_roles(tenant.id)
    permission_service.assign_default_role_permissions(tenant.id)
    return tenant


@pytest.fixture(scope='function')
def location_a(db_session, tenant_a):
    location = Location(tenant_id=tenant_a.id, name="Recepcion")
    db_session.add(location)
    db_session.commit()
    return location


@pytest.fixture(scope='function')
def location_a2(db_session, tenant_a):
    location = Location(tenant_id=tenant_a.id, name="Urgencias")
    db_session.add(location)
    db_session.commit()
    return location


@pytest.fixture(scope='function')
def location_b(db_session, tenant_b):
    location = Location(tenant_id=tenant_b.id, name="Recepcion")
    db_session.add(location)
    db_session.commit()
    return location


def make_user(db_session, tenant, username: str, role: str, location=None, full_name=None) -> User:
    """Create a staff user with a low bcrypt cost and assign one role."""
    user = User(
        tenant_id=tenant.id,
        location_id=location.id if location else None,
        username=username,
        email=f"{username}@{tenant.code.lower()}.test",
        full_name=full_name,
        password_hash=hash_password(PASSWORD, rounds=4),
    )
    db_session.add(user)
    db_session.commit()
    permission_service.assign_role(user.id, tenant.id, role)
    return user


@pytest.fixture(scope='function')
def cashier_a(db_session, tenant_a, location_a):
    return make_user(db_session, tenant_a, "ana", "cashier", location_a, full_name="Ana Cajera")


@pytest.fixture(scope='function')
def cashier_a2(db_session, tenant_a, location_a):
    return make_user(db_session, tenant_a, "bruno", "cashier", location_a, full_name="Bruno Cajero")


@pytest.fixture(scope='function')
def manager_a(db_session, tenant_a, location_a):
    return make_user(db_session, tenant_a, "marta", "manager", location_a)


@pytest.fixture(scope='function')
def cashier_b(db_session, tenant_b, location_b):
    return make_user(db_session, tenant_b, "ana", "cashier", location_b)


@pytest.fixture(scope='function')
def manager():
    """DrawerManager with fixed capabilities (3 drawers, reports enabled)."""
    return DrawerManager(StaticCapabilities(max_drawers=3, features={FEATURE_SHIFT_REPORTS}))


@pytest.fixture(scope='function')
def open_drawer(db_session, manager, tenant_a, location_a, cashier_a):
    """OPEN drawer at location A with a 1000.00 float, opened at T0 by cashier A."""
    return manager.open_drawer(
        tenant_a.id,
        location_id=location_a.id,
        initial_amount_cents=100000,
        cashier_user_id=cashier_a.id,
        now=T0,
    )


def get_auth_token(client, username: str, password: str = PASSWORD, tenant_id: int | None = None) -> str:
    """Helper to get auth token for a user."""
    response = client.post('/api/auth/login', json={
        'username': username,
        'password': password,
        'tenant_id': tenant_id,
    })
    if response.status_code == 200:
        return response.json.get('token')
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def t0():
    return T0


@pytest.fixture(scope='function')
def login(client):
    """Return a helper that logs a user in and builds Authorization headers."""
    def _login(user: User) -> dict:
        token = get_auth_token(client, user.username, tenant_id=user.tenant_id)
        assert token, f"login failed for {user.username}"
        return auth_headers(token)
    return _login
