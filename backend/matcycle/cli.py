# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/matcycle/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables that do not exist yet.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Sellers:
# - python -m flask sellers create --name "Rok Isk" --prefix RIS
# - python -m flask sellers list
# - python -m flask sellers sync-range 3
#   Recompute range_start/range_end from issued numbers.
#
# QR codes:
# - python -m flask codes generate 3 --count 50
# - python -m flask codes list 3 [--status available]
#
# Mat types:
# - python -m flask mattypes create --code MBW2 --name "Mat 85x150"
#
# Cycles:
# - python -m flask cycles long-on-test [--seller-id 3]
#   Warning/critical on-test cycles, oldest first.

import click
from flask.cli import with_appcontext

from .extensions import db
from .services import code_service, cycle_service, mat_type_service
from .validation import ConflictError, NotFoundError, ValidationError
from .services.allocation_service import AllocationConflict
from .services.code_service import PreconditionFailed


CLI_ERRORS = (ValidationError, ConflictError, NotFoundError, PreconditionFailed, AllocationConflict)


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create missing tables (use migrations for schema changes)."""
    db.create_all()
    click.echo("PASS Database tables created.")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete.")


# =============================================================================
# SELLER COMMANDS
# =============================================================================

@click.group('sellers')
def sellers_group():
    """Seller and prefix management commands."""


@sellers_group.command('create')
@click.option('--name', required=True, help='Seller name')
@click.option('--email', help='Seller email')
@click.option('--prefix', help='Code prefix (2-4 letters)')
@with_appcontext
def create_seller_cli(name, email, prefix):
    """Create a seller, optionally registering a code prefix."""
    try:
        seller = code_service.create_seller(name, email=email, prefix=prefix)
    except CLI_ERRORS as e:
        db.session.rollback()
        click.echo(f"FAIL {e}")
        return

    click.echo(f"PASS Created seller: {seller.name} (ID: {seller.id}, Prefix: {seller.prefix or '-'})")


@sellers_group.command('list')
@click.option('--all', 'include_inactive', is_flag=True, help='Include inactive sellers')
@with_appcontext
def list_sellers_cli(include_inactive):
    """List sellers with their prefix and range."""
    sellers = code_service.list_sellers(include_inactive=include_inactive)

    if not sellers:
        click.echo("No sellers found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<5} {'Name':<30} {'Prefix':<8} {'Range':<16} {'Active'}")
    click.echo("="*80)

    for seller in sellers:
        if seller.range_start is None:
            range_str = "-"
        else:
            range_str = f"{seller.range_start}-{seller.range_end}"
        active_str = "Yes" if seller.is_active else "No"
        click.echo(f"{seller.id:<5} {seller.name:<30} {seller.prefix or '-':<8} {range_str:<16} {active_str}")

    click.echo("="*80 + "\n")


@sellers_group.command('sync-range')
@click.argument('seller_id', type=int)
@with_appcontext
def sync_range_cli(seller_id):
    """Recompute a seller's range from issued numbers."""
    try:
        range_start, range_end = code_service.sync_seller_range(seller_id)
    except CLI_ERRORS as e:
        db.session.rollback()
        click.echo(f"FAIL {e}")
        return

    if range_start is None:
        click.echo(f"PASS Seller {seller_id} has no issued numbers; range cleared.")
    else:
        click.echo(f"PASS Seller {seller_id} range: {range_start}-{range_end}")


# =============================================================================
# CODE COMMANDS
# =============================================================================

@click.group('codes')
def codes_group():
    """QR code generation and inspection commands."""


@codes_group.command('generate')
@click.argument('seller_id', type=int)
@click.option('--count', type=int, required=True, help='Number of codes to generate')
@with_appcontext
def generate_codes_cli(seller_id, count):
    """Generate available codes under a seller's prefix."""
    try:
        codes = code_service.generate_codes(seller_id, count)
    except CLI_ERRORS as e:
        db.session.rollback()
        click.echo(f"FAIL {e}")
        return

    click.echo(f"PASS Generated {len(codes)} codes: {codes[0].code} .. {codes[-1].code}")


@codes_group.command('list')
@click.argument('seller_id', type=int)
@click.option('--status', help='Filter by status (available, pending, active)')
@with_appcontext
def list_codes_cli(seller_id, status):
    """List a seller's codes."""
    try:
        codes = code_service.list_codes(seller_id, status=status)
    except CLI_ERRORS as e:
        click.echo(f"FAIL {e}")
        return

    if not codes:
        click.echo("No codes found.")
        return

    click.echo("\n" + "="*60)
    click.echo(f"{'ID':<6} {'Code':<14} {'Status':<12} {'State'}")
    click.echo("="*60)
    for code in codes:
        click.echo(f"{code.id:<6} {code.code:<14} {code.status:<12} {code.state}")
    click.echo("="*60 + "\n")


# =============================================================================
# MAT TYPE COMMANDS
# =============================================================================

@click.group('mattypes')
def mattypes_group():
    """Mat type catalog commands."""


@mattypes_group.command('create')
@click.option('--code', required=True, help='Mat type code (e.g. MBW2)')
@click.option('--name', required=True, help='Display name')
@with_appcontext
def create_mat_type_cli(code, name):
    """Add a mat type to the catalog."""
    try:
        mat_type = mat_type_service.create_mat_type({"code": code, "name": name})
    except CLI_ERRORS as e:
        db.session.rollback()
        click.echo(f"FAIL {e}")
        return

    click.echo(f"PASS Created mat type: {mat_type.code} ({mat_type.name})")


# =============================================================================
# CYCLE COMMANDS
# =============================================================================

@click.group('cycles')
def cycles_group():
    """Mat cycle inspection commands."""


@cycles_group.command('long-on-test')
@click.option('--seller-id', type=int, help='Only this seller')
@with_appcontext
def long_on_test_cli(seller_id):
    """List on-test cycles past the warning age."""
    flagged = cycle_service.list_long_on_test(salesperson_id=seller_id)

    if not flagged:
        click.echo("No long-on-test cycles.")
        return

    click.echo("\n" + "="*70)
    click.echo(f"{'Cycle':<7} {'Code':<14} {'Seller':<8} {'Days':<6} {'Level'}")
    click.echo("="*70)
    for entry in flagged:
        cycle = entry["cycle"]
        level = entry["level"].upper()
        click.echo(
            f"{cycle.id:<7} {cycle.qr_code.code:<14} {cycle.salesperson_id:<8} "
            f"{entry['days_on_test']:<6} {level}"
        )
    click.echo("="*70 + "\n")


@cycles_group.command('inventory')
@with_appcontext
def inventory_cli():
    """Open cycles per seller, by status."""
    inventory = cycle_service.inventory_by_seller()

    if not inventory["sellers"]:
        click.echo("No sellers found.")
        return

    click.echo("\n" + "="*70)
    click.echo(f"{'Seller':<30} {'Prefix':<8} {'On test':<8} {'Dirty':<6} {'Driver':<7} {'Total'}")
    click.echo("="*70)
    for row in inventory["sellers"] + [dict(inventory["totals"], name="TOTAL", prefix="")]:
        click.echo(
            f"{row['name']:<30} {row['prefix'] or '-':<8} {row['on_test']:<8} "
            f"{row['dirty']:<6} {row['waiting_driver']:<7} {row['total']}"
        )
    click.echo("="*70 + "\n")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(sellers_group)
    app.cli.add_command(codes_group)
    app.cli.add_command(mattypes_group)
    app.cli.add_command(cycles_group)
