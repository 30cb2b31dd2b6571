"""`flask custody` command tests."""

from app.models import Station, StationConfig, User
from app.services import handover_service
from app.services.session_service import validate_session


def test_bootstrap_station_and_users(app, db_session):
    runner = app.test_cli_runner()

    result = runner.invoke(args=["custody", "create-station", "--name", "Highway 44", "--code", "HW44"])
    assert "PASS Created station" in result.output
    station = db_session.query(Station).filter_by(code="HW44").one()

    result = runner.invoke(args=["custody", "create-user", "--username", "omar", "--role", "OWNER",
                                 "--owns", str(station.id)])
    assert "PASS Created user" in result.output
    owner = db_session.query(User).filter_by(username="omar").one()
    assert owner.role == "owner"
    assert db_session.get(Station, station.id).owner_user_id == owner.id

    result = runner.invoke(args=["custody", "create-user", "--username", "omar"])
    assert "FAIL" in result.output

    result = runner.invoke(args=["custody", "issue-token", "--username", "omar"])
    assert "PASS Token for omar" in result.output
    assert len(result.output.strip().splitlines()[-1]) == 64


def test_revoke_token(app, db_session, employee):
    runner = app.test_cli_runner()
    result = runner.invoke(args=["custody", "issue-token", "--username", employee.username])
    token = result.output.strip().splitlines()[-1]
    assert validate_session(token) is not None

    result = runner.invoke(args=["custody", "revoke-token", token])
    assert "PASS Token revoked" in result.output
    assert validate_session(token) is None

    result = runner.invoke(args=["custody", "revoke-token", token])
    assert "FAIL" in result.output


def test_set_tolerance(app, db_session, station):
    runner = app.test_cli_runner()

    result = runner.invoke(args=["custody", "set-tolerance", "--station-id", str(station.id),
                                 "--mode", "both", "--cents", "2500", "--percent", "1.5"])
    assert "mode=BOTH cents=2500 percent=1.5" in result.output
    keys = {c.key: c.value for c in db_session.query(StationConfig).filter_by(station_id=station.id)}
    assert keys["handover_tolerance_cents"] == "2500"

    result = runner.invoke(args=["custody", "set-tolerance", "--station-id", str(station.id), "--cents=-1"])
    assert "FAIL" in result.output


def test_pending_chain_and_summary(app, db_session, station, manager_id, owner_id, confirmed_root):
    root = confirmed_root(300000)
    to_owner = handover_service.create_handover(
        manager_id, station.id, "manager_to_owner", previous_handover_id=root.id,
    )
    runner = app.test_cli_runner()

    result = runner.invoke(args=["custody", "pending", "--station-id", str(station.id)])
    assert f"#{to_owner.id}" in result.output
    assert "manager_to_owner" in result.output

    result = runner.invoke(args=["custody", "chain", str(to_owner.id)])
    lines = result.output.strip().splitlines()
    assert lines[0] == f"shift #{root.shift_id}"
    assert f"#{root.id}" in lines[1]
    assert f"#{to_owner.id}" in lines[2]

    day = root.handover_date.isoformat()
    result = runner.invoke(args=["custody", "summary", "--station-id", str(station.id), "--start", day, "--end", day])
    assert "shift cash:       300000 (1 shifts)" in result.output
    assert "pending/disputed: 1/0" in result.output


def test_chain_unknown_handover(app, db_session):
    result = app.test_cli_runner().invoke(args=["custody", "chain", "999"])
    assert "FAIL Handover 999 not found" in result.output
