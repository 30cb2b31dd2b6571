# Overview: Flask CLI commands for bootstrap and custody inspection.

# backend/app/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py.
# - Use: python -m flask custody <command> [options]
#
# Bootstrap:
# - python -m flask custody init-db
#   Create all tables (development; use `flask db upgrade` otherwise).
# - python -m flask custody create-station --name "Highway 44" --code HW44
# - python -m flask custody create-user --username ravi --role employee --station-id 1
# - python -m flask custody issue-token --username ravi
#   Print a bearer token for API calls.
# - python -m flask custody revoke-token <token>
#   Revoke a bearer token before it expires.
# - python -m flask custody set-tolerance --station-id 1 --mode BOTH --cents 10000 --percent 2
#
# Inspection:
# - python -m flask custody pending --station-id 1
# - python -m flask custody chain 42
# - python -m flask custody summary --station-id 1 --start 2026-10-01 --end 2026-10-17

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Station, User
from .roles import ROLE_CHOICES, Role
from .services import handover_service, reconciliation_service, station_service
from .services.session_service import create_session, revoke_session
from .validation import CustodyError, parse_date_field


@click.group("custody")
def custody_group():
    """Cash custody bootstrap and inspection commands."""


@custody_group.command("init-db")
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created")


@custody_group.command("create-station")
@click.option("--name", required=True, help="Station name")
@click.option("--code", default=None, help="Unique station code")
@click.option("--owner-id", type=int, default=None, help="Owner user id")
@click.option("--manager-id", type=int, default=None, help="Designated manager user id")
@with_appcontext
def create_station_cmd(name, code, owner_id, manager_id):
    if code and db.session.query(Station).filter_by(code=code).first():
        click.echo(f"FAIL Station code '{code}' already exists")
        return
    try:
        station = station_service.create_station(name, code, owner_user_id=owner_id, manager_user_id=manager_id)
    except CustodyError as e:
        click.echo(f"FAIL {e.message}")
        return
    click.echo(f"PASS Created station: {station.name} (ID: {station.id})")


@custody_group.command("create-user")
@click.option("--username", required=True)
@click.option("--name", default=None, help="Display name")
@click.option("--role", type=click.Choice(ROLE_CHOICES, case_sensitive=False), default=Role.EMPLOYEE.value)
@click.option("--station-id", type=int, default=None, help="Station the user works at")
@click.option("--owns", type=int, multiple=True, help="Station id(s) this owner owns")
@with_appcontext
def create_user_cmd(username, name, role, station_id, owns):
    if db.session.query(User).filter_by(username=username).first():
        click.echo(f"FAIL User '{username}' already exists")
        return

    user = User(username=username, name=name, role=Role.parse(role).value, station_id=station_id, is_active=True)
    db.session.add(user)
    db.session.flush()

    for owned_id in owns:
        station = db.session.query(Station).filter_by(id=owned_id).first()
        if not station:
            db.session.rollback()
            click.echo(f"FAIL Station {owned_id} not found")
            return
        station.owner_user_id = user.id

    db.session.commit()
    click.echo(f"PASS Created user: {user.username} (ID: {user.id}) with role '{user.role}'")


@custody_group.command("issue-token")
@click.option("--username", required=True)
@with_appcontext
def issue_token(username):
    user = db.session.query(User).filter_by(username=username).first()
    if not user:
        click.echo(f"FAIL User '{username}' not found")
        return
    try:
        session, token = create_session(user.id)
    except ValueError as e:
        click.echo(f"FAIL {e}")
        return
    click.echo(f"PASS Token for {user.username} (expires {session.expires_at.isoformat()}Z):")
    click.echo(token)


@custody_group.command("revoke-token")
@click.argument("token")
@with_appcontext
def revoke_token(token):
    if not revoke_session(token.strip()):
        click.echo("FAIL Token not found or already revoked")
        return
    click.echo("PASS Token revoked")


@custody_group.command("set-tolerance")
@click.option("--station-id", type=int, required=True)
@click.option("--mode", type=click.Choice(reconciliation_service.TOLERANCE_MODES, case_sensitive=False), default=None)
@click.option("--cents", "absolute_cents", type=int, default=None, help="Absolute tolerance in cents")
@click.option("--percent", default=None, help="Percent tolerance, e.g. 2 or 1.5")
@with_appcontext
def set_tolerance(station_id, mode, absolute_cents, percent):
    try:
        policy = reconciliation_service.set_station_tolerance(
            station_id,
            mode=mode.upper() if mode else None,
            absolute_cents=absolute_cents,
            percent=percent,
        )
    except CustodyError as e:
        db.session.rollback()
        click.echo(f"FAIL {e.message}")
        return
    click.echo(
        f"PASS Station {station_id} tolerance: mode={policy.mode} "
        f"cents={policy.absolute_cents} percent={policy.percent}"
    )


@custody_group.command("pending")
@click.option("--station-id", type=int, required=True)
@with_appcontext
def pending(station_id):
    """List pending handovers at a station, oldest first."""
    handovers = handover_service.list_station_handovers(station_id, status="pending", limit=500)[0]
    if not handovers:
        click.echo("No pending handovers")
        return
    for h in reversed(handovers):
        click.echo(
            f"#{h.id:<6} {h.handover_date.isoformat()} {h.handover_type:<20} "
            f"from={h.from_user_id} to={h.to_user_id} expected={h.expected_amount_cents}"
        )


@custody_group.command("chain")
@click.argument("handover_id", type=int)
@with_appcontext
def chain(handover_id):
    """Print the custody chain ending at HANDOVER_ID, root first."""
    try:
        links = handover_service.get_handover_chain(handover_id)
    except CustodyError as e:
        click.echo(f"FAIL {e.message}")
        return

    if links[0].shift_id:
        click.echo(f"shift #{links[0].shift_id}")
    for h in links:
        click.echo(
            f"  -> #{h.id} {h.handover_type:<20} {h.status:<9} "
            f"expected={h.expected_amount_cents} actual={h.actual_amount_cents} "
            f"difference={h.difference_cents}"
        )


@custody_group.command("summary")
@click.option("--station-id", type=int, required=True)
@click.option("--start", "start", required=True, help="YYYY-MM-DD")
@click.option("--end", "end", required=True, help="YYYY-MM-DD")
@with_appcontext
def summary(station_id, start, end):
    """Cash-flow summary for a station over a date range."""
    try:
        result = reconciliation_service.get_cash_flow_summary(
            station_id,
            parse_date_field(start, "start", required=True),
            parse_date_field(end, "end", required=True),
        )
    except CustodyError as e:
        click.echo(f"FAIL {e.message}")
        return

    click.echo(f"Station {station_id}: {start} .. {end}")
    click.echo(f"  opening balance:  {result['opening_balance_cents']}")
    click.echo(f"  shift cash:       {result['shifts']['collected_cash_cents']} ({result['shifts']['count']} shifts)")
    for handover_type, bucket in result["by_type"].items():
        click.echo(f"  {handover_type:<20} count={bucket['count']} amount={bucket['amount_cents']} variance={bucket['variance_cents']}")
    click.echo(f"  deposited:        {result['deposited_cents']}")
    click.echo(f"  pending/disputed: {result['pending_count']}/{result['disputed_count']}")
    click.echo(f"  closing balance:  {result['closing_balance_cents']}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(custody_group)
