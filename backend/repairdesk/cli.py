# Overview: Flask CLI command groups for bootstrap, folio inspection, and cash cuts.

# backend/repairdesk/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init [--org "Org Name"] [--branch-code MTY] [--timezone America/Monterrey]
#   Idempotent bootstrap: creates tables, default organization, branch and cash register.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Folios:
# - python -m flask folios preview LAB --org-id 1 --branch-id 1
#   Show the next folio without consuming it.
# - python -m flask folios next VTA --org-id 1 --branch-id 1
#   Consume and print the next folio (e.g. to burn a number).
#
# Cash:
# - python -m flask cash registers --org-id 1 --branch-id 1
#   List registers with their last cut.
# - python -m flask cash cut --org-id 1 --branch-id 1 --register-id 1 --date 2025-01-31 [--initial 100000]
#   Close the day for a register.

import click
from flask.cli import with_appcontext

from .exceptions import WorkflowError
from .extensions import db
from .models import Branch, CashRegister, Organization
from .services import cash_service, folio_service


def _fail(exc: WorkflowError):
    raise click.ClickException(f"{exc.code}: {exc.message} {exc.details or ''}".strip())


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--org', 'org_name', default='Default Organization', help='Organization name')
@click.option('--org-code', default='DEFAULT', help='Organization code')
@click.option('--branch', 'branch_name', default='Main Branch', help='Branch name')
@click.option('--branch-code', default='MAIN', help='Branch code embedded in folios')
@click.option('--timezone', 'tz_name', default='UTC', help='IANA timezone of the branch')
@with_appcontext
def init_system(org_name, org_code, branch_name, branch_code, tz_name):
    """
    Initialize the workflow engine: tables, organization, branch and one cash register.

    Safe to run repeatedly; existing rows are reused.
    """
    click.echo("START Initializing RepairDesk...")
    db.create_all()

    org = db.session.query(Organization).filter_by(code=org_code).first()
    if not org:
        org = Organization(name=org_name, code=org_code, is_active=True)
        db.session.add(org)
        db.session.commit()
        click.echo(f"PASS Created organization: {org.name} (ID: {org.id}, Code: {org.code})")
    else:
        click.echo(f"PASS Using existing organization: {org.name} (ID: {org.id})")

    branch = db.session.query(Branch).filter_by(org_id=org.id, code=branch_code).first()
    if not branch:
        branch = Branch(org_id=org.id, name=branch_name, code=branch_code, timezone=tz_name)
        db.session.add(branch)
        db.session.commit()
        click.echo(f"PASS Created branch: {branch.name} (ID: {branch.id}, Code: {branch.code})")
    else:
        click.echo(f"PASS Using existing branch: {branch.name} (ID: {branch.id})")

    register = db.session.query(CashRegister).filter_by(branch_id=branch.id).first()
    if not register:
        register = cash_service.create_cash_register(
            org_id=org.id, branch_id=branch.id, code="CAJA-01", name="Main register",
        )
        click.echo(f"PASS Created cash register: {register.code} (ID: {register.id})")
    else:
        click.echo(f"PASS Using existing cash register: {register.code} (ID: {register.id})")

    click.echo("DONE RepairDesk initialized")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Confirm destructive reset')
@with_appcontext
def reset_db(yes):
    """DEV/TEST only: drop and recreate all tables."""
    if not yes:
        raise click.ClickException("Refusing to reset without --yes")
    db.drop_all()
    db.create_all()
    click.echo("PASS Database reset")


@click.group('folios')
def folios_group():
    """Folio sequence inspection."""


@folios_group.command('preview')
@click.argument('prefix')
@click.option('--org-id', type=int, required=True)
@click.option('--branch-id', type=int, required=True)
@with_appcontext
def preview_folio(prefix, org_id, branch_id):
    try:
        click.echo(folio_service.preview_folio(prefix.upper(), branch_id, org_id=org_id))
    except WorkflowError as e:
        _fail(e)


@folios_group.command('next')
@click.argument('prefix')
@click.option('--org-id', type=int, required=True)
@click.option('--branch-id', type=int, required=True)
@with_appcontext
def next_folio(prefix, org_id, branch_id):
    """Consume the next folio of PREFIX for the branch."""
    try:
        click.echo(folio_service.next_folio(prefix.upper(), branch_id, org_id=org_id))
    except WorkflowError as e:
        _fail(e)


@click.group('cash')
def cash_group():
    """Cash registers and daily cuts."""


@cash_group.command('registers')
@click.option('--org-id', type=int, required=True)
@click.option('--branch-id', type=int, required=True)
@with_appcontext
def list_registers(org_id, branch_id):
    try:
        registers = cash_service.list_cash_registers(org_id=org_id, branch_id=branch_id)
    except WorkflowError as e:
        _fail(e)

    if not registers:
        click.echo("No registers found")
        return
    for reg in registers:
        last = reg["last_cut"]
        last_info = f"last cut {last['date']} final={last['final_amount_cents']}" if last else "no cuts"
        click.echo(f"{reg['id']:>4}  {reg['code']:<12} {reg['name']:<24} {last_info}")


@cash_group.command('cut')
@click.option('--org-id', type=int, required=True)
@click.option('--branch-id', type=int, required=True)
@click.option('--register-id', type=int, required=True)
@click.option('--date', 'cut_date', required=True, help='YYYY-MM-DD (branch local day)')
@click.option('--initial', 'initial_cents', type=int, default=None, help='Opening cash in cents')
@click.option('--adjustments', 'adjustments_cents', type=int, default=0, help='Signed adjustments in cents')
@click.option('--notes', default=None)
@with_appcontext
def cash_cut(org_id, branch_id, register_id, cut_date, initial_cents, adjustments_cents, notes):
    """Close the day for a cash register."""
    try:
        cut = cash_service.create_cash_cut(
            org_id=org_id,
            cash_register_id=register_id,
            branch_id=branch_id,
            cut_date=cut_date,
            initial_amount_cents=initial_cents,
            adjustments_cents=adjustments_cents,
            notes=notes,
        )
    except WorkflowError as e:
        _fail(e)

    click.echo(f"PASS Cash cut {cut.id} for {cut.date.isoformat()}")
    click.echo(f"  initial:     {cut.initial_amount_cents}")
    click.echo(f"  cash:        {cut.sales_cash_cents}")
    click.echo(f"  card:        {cut.sales_card_cents}")
    click.echo(f"  transfer:    {cut.sales_transfer_cents}")
    click.echo(f"  advances:    {cut.advances_cents}")
    click.echo(f"  adjustments: {cut.adjustments_cents}")
    click.echo(f"  income:      {cut.total_income_cents}")
    click.echo(f"  final:       {cut.final_amount_cents}")


def register_commands(app):
    app.cli.add_command(system_group)
    app.cli.add_command(folios_group)
    app.cli.add_command(cash_group)
