# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/vetcaja/cli.py
# Commands (from backend/, with FLASK_APP=wsgi.py and the virtualenv active):
#   flask <group> <command> [options]
#
# System bootstrap/repair:
# - flask system init [--tenant "Clinic Name"]
#   Idempotent bootstrap: tenant, location, roles, permissions and default users.
# - flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Tenant management:
# - flask tenants list
# - flask tenants create --name "Clinica Norte" --code NORTE --plan CLINICA
# - flask tenants set-plan 1 PROFESIONAL
#
# Caja inspection:
# - flask caja drawers --tenant-id 1 --status OPEN
# - flask caja expected 12 [--as-of 2026-01-31T18:00:00Z]

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .errors import CajaError
from .models import Tenant, Location, User, CashDrawer
from .services.auth_service import create_user, PasswordValidationError
from .services import capability_service, drawer_service, permission_service, reconciliation_service
from .time_utils import parse_iso_datetime


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--tenant', 'tenant_name', default='Clinica Veterinaria', help='Tenant name')
@click.option('--tenant-code', default='DEFAULT', help='Tenant code')
@with_appcontext
def init_system(tenant_name, tenant_code):
    """
    Initialize a tenant with a front-desk location, roles, permissions and users.

    Creates:
    - Tenant (if none with this code exists) on the DEFAULT_PLAN plan
    - Location "Recepcion"
    - Roles: admin, manager, cashier
    - Users: admin, manager, cashier (password "Password123!")

    SECURITY: Change passwords immediately in production!
    """
    click.echo("START Initializing vetcaja...")

    tenant = db.session.query(Tenant).filter_by(code=tenant_code).first()
    if not tenant:
        tenant = Tenant(
            name=tenant_name,
            code=tenant_code,
            plan=capability_service.validate_plan(current_app.config["DEFAULT_PLAN"]),
            is_active=True,
        )
        db.session.add(tenant)
        db.session.commit()
        click.echo(f"PASS Created tenant: {tenant.name} (ID: {tenant.id}, Plan: {tenant.plan})")
    else:
        click.echo(f"PASS Using existing tenant: {tenant.name} (ID: {tenant.id})")

    location = db.session.query(Location).filter_by(tenant_id=tenant.id).first()
    if not location:
        location = Location(tenant_id=tenant.id, name="Recepcion")
        db.session.add(location)
        db.session.commit()
        click.echo(f"PASS Created location: {location.name} (ID: {location.id})")

    click.echo("\nSECURITY Initializing roles and permissions...")
    permission_service.create_default_roles(tenant.id)
    perm_count = permission_service.initialize_permissions()
    assignment_count = permission_service.assign_default_role_permissions(tenant.id)
    click.echo(f"PASS Created {perm_count} permissions, {assignment_count} role assignments")

    click.echo("\nUSERS Creating default users...")
    default_password = "Password123!"
    domain = f"{tenant_code.lower()}.vetcaja.local"

    for username in ("admin", "manager", "cashier"):
        existing = db.session.query(User).filter_by(tenant_id=tenant.id, username=username).first()
        if existing:
            click.echo(f"WARN  User '{username}' already exists, skipping...")
            continue
        try:
            user = create_user(
                username=username,
                email=f"{username}@{domain}",
                password=default_password,
                tenant_id=tenant.id,
                location_id=location.id,
            )
        except (PasswordValidationError, ValueError) as e:
            click.echo(f"FAIL Failed to create user '{username}': {e}")
            continue
        permission_service.assign_role(user.id, tenant.id, username)
        click.echo(f"PASS Created user: {username} with role '{username}'")

    click.echo("\nDONE vetcaja initialized.")
    click.echo(f"Tenant: {tenant.name} (ID: {tenant.id})  Location: {location.name} (ID: {location.id})")
    click.echo("Default credentials: admin / manager / cashier with Password123! (CHANGE IN PRODUCTION!)")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA, cash ledger included!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'python -m flask system init' to initialize.")


# =============================================================================
# TENANT MANAGEMENT COMMANDS
# =============================================================================

@click.group('tenants')
def tenants_group():
    """Tenant (clinic) management commands."""


@tenants_group.command('list')
@with_appcontext
def list_tenants():
    tenants = db.session.query(Tenant).order_by(Tenant.id).all()

    if not tenants:
        click.echo("No tenants found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<5} {'Name':<30} {'Code':<12} {'Plan':<12} {'Active':<8} {'Users'}")
    click.echo("="*80)

    for tenant in tenants:
        user_count = db.session.query(User).filter_by(tenant_id=tenant.id).count()
        active_str = "Yes" if tenant.is_active else "No"
        click.echo(f"{tenant.id:<5} {tenant.name:<30} {tenant.code or '-':<12} {tenant.plan:<12} {active_str:<8} {user_count}")

    click.echo("="*80 + "\n")


@tenants_group.command('create')
@click.option('--name', required=True, help='Tenant name')
@click.option('--code', required=True, help='Short code (unique)')
@click.option('--plan', default=None, help='Subscription plan (defaults to DEFAULT_PLAN)')
@with_appcontext
def create_tenant_cli(name, code, plan):
    """Create a new tenant with its default roles."""
    if db.session.query(Tenant).filter_by(code=code).first():
        click.echo(f"FAIL Tenant with code '{code}' already exists")
        return

    try:
        plan = capability_service.validate_plan(plan or current_app.config["DEFAULT_PLAN"])
    except ValueError as e:
        click.echo(f"FAIL {e}")
        return

    tenant = Tenant(name=name, code=code, plan=plan, is_active=True)
    db.session.add(tenant)
    db.session.commit()

    permission_service.create_default_roles(tenant.id)
    permission_service.initialize_permissions()
    permission_service.assign_default_role_permissions(tenant.id)

    click.echo(f"PASS Created tenant: {tenant.name} (ID: {tenant.id}, Plan: {tenant.plan})")


@tenants_group.command('set-plan')
@click.argument('tenant_id', type=int)
@click.argument('plan')
@with_appcontext
def set_plan_cli(tenant_id, plan):
    """Change a tenant's plan (drawer limit and report access)."""
    tenant = db.session.get(Tenant, tenant_id)
    if not tenant:
        click.echo(f"FAIL Tenant ID {tenant_id} not found")
        return

    try:
        tenant.plan = capability_service.validate_plan(plan)
    except ValueError as e:
        click.echo(f"FAIL {e}")
        return

    db.session.commit()
    limits = capability_service.PLAN_LIMITS[tenant.plan]
    click.echo(
        f"PASS Tenant {tenant.name} is now on {tenant.plan} "
        f"(max drawers: {limits['max_drawers']}, features: {', '.join(sorted(limits['features'])) or 'none'})"
    )


# =============================================================================
# CAJA INSPECTION COMMANDS
# =============================================================================

@click.group('caja')
def caja_group():
    """Cash drawer inspection commands."""


@caja_group.command('drawers')
@click.option('--tenant-id', type=int, required=True, help='Tenant ID')
@click.option('--status', type=click.Choice(['OPEN', 'CLOSED', 'RECONCILED']), help='Filter by status')
@click.option('--limit', type=int, default=20, help='Max drawers to show')
@with_appcontext
def list_drawers_cli(tenant_id, status, limit):
    drawers = drawer_service.list_drawers(tenant_id, status=status, limit=limit)

    if not drawers:
        click.echo("No drawers found.")
        return

    click.echo("\n" + "="*100)
    click.echo(f"{'ID':<5} {'Location':<9} {'Status':<11} {'Opened':<20} {'Initial':>10} {'Expected':>10} {'Counted':>10} {'Diff':>8}")
    click.echo("="*100)

    for drawer in drawers:
        def fmt(cents):
            return "-" if cents is None else f"{cents / 100:.2f}"

        click.echo(
            f"{drawer.id:<5} {drawer.location_id or '*':<9} {drawer.status:<11} "
            f"{str(drawer.opened_at)[:19]:<20} {fmt(drawer.initial_amount_cents):>10} "
            f"{fmt(drawer.expected_amount_cents):>10} {fmt(drawer.final_amount_cents):>10} "
            f"{fmt(drawer.difference_cents):>8}"
        )

    click.echo("="*100 + "\n")


@caja_group.command('expected')
@click.argument('drawer_id', type=int)
@click.option('--as-of', default=None, help='ISO-8601 timestamp (defaults to now)')
@with_appcontext
def expected_cli(drawer_id, as_of):
    """Expected cash in a drawer, re-derived from its ledger."""
    try:
        as_of_dt = parse_iso_datetime(as_of)
    except ValueError:
        click.echo(f"FAIL Invalid timestamp: {as_of}")
        return

    try:
        expected = reconciliation_service.expected_balance(drawer_id, as_of=as_of_dt)
    except CajaError as e:
        click.echo(f"FAIL {e.message}")
        return

    drawer = db.session.get(CashDrawer, drawer_id)
    click.echo(f"Drawer {drawer_id} ({drawer.status}): expected {expected / 100:.2f} ({expected} cents)")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(tenants_group)
    app.cli.add_command(caja_group)
