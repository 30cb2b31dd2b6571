"""
Pytest fixtures for cash custody backend tests.

Provides an in-memory database, a two-station directory with one user per
role, service identities, bearer-token headers and shift/handover builders.
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from app import create_app
from app.extensions import db
from app.models import NozzleReading, Station, User
from app.roles import Role
from app.services import handover_service, shift_service
from app.services.session_service import create_session, identity_for
from app.time_utils import utcnow


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'HANDOVER_TOLERANCE_MODE': 'ABSOLUTE',
        'HANDOVER_TOLERANCE_CENTS': 10000,
        'HANDOVER_TOLERANCE_PERCENT': '2',
        'AUTO_SHIFT_COLLECTION': False,
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

        app.config['AUTO_SHIFT_COLLECTION'] = False
        app.config.pop('READING_AGGREGATE_PROVIDER', None)

        yield db.session

        # Cleanup after test
        db.session.rollback()


def _user(session, username, role, station_id=None):
    user = User(username=username, name=username.title(), role=role.value, station_id=station_id, is_active=True)
    session.add(user)
    session.flush()
    return user


@pytest.fixture(scope='function')
def station(db_session):
    """Station A with an employee, a designated manager and an owner."""
    station = Station(name="Highway 44", code="HW44", is_active=True)
    db_session.add(station)
    db_session.flush()

    employee = _user(db_session, "ravi", Role.EMPLOYEE, station.id)
    manager = _user(db_session, "meena", Role.MANAGER, station.id)
    owner = _user(db_session, "omar", Role.OWNER)
    station.manager_user_id = manager.id
    station.owner_user_id = owner.id
    db_session.commit()
    return station


@pytest.fixture(scope='function')
def other_station(db_session):
    """Station B, unrelated to station A's staff."""
    station = Station(name="Ring Road", code="RR01", is_active=True)
    db_session.add(station)
    db_session.flush()

    _user(db_session, "kiran", Role.EMPLOYEE, station.id)
    other_owner = _user(db_session, "priya", Role.OWNER)
    station.owner_user_id = other_owner.id
    db_session.commit()
    return station


def _by_username(session, username):
    return session.query(User).filter_by(username=username).one()


@pytest.fixture
def employee(db_session, station):
    return _by_username(db_session, "ravi")


@pytest.fixture
def manager(db_session, station):
    return _by_username(db_session, "meena")


@pytest.fixture
def owner(db_session, station):
    return _by_username(db_session, "omar")


@pytest.fixture
def outsider(db_session, other_station):
    """Employee at station B."""
    return _by_username(db_session, "kiran")


@pytest.fixture
def other_owner(db_session, other_station):
    return _by_username(db_session, "priya")


@pytest.fixture
def admin(db_session):
    user = _user(db_session, "root", Role.SUPER_ADMIN)
    db_session.commit()
    return user


# =============================================================================
# IDENTITIES AND TOKENS
# =============================================================================

@pytest.fixture
def employee_id(employee):
    return identity_for(employee)


@pytest.fixture
def manager_id(manager):
    return identity_for(manager)


@pytest.fixture
def owner_id(owner):
    return identity_for(owner)


@pytest.fixture
def admin_id(admin):
    return identity_for(admin)


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


def _headers_for(user):
    _, token = create_session(user.id)
    return auth_headers(token)


@pytest.fixture
def employee_headers(employee):
    return _headers_for(employee)


@pytest.fixture
def manager_headers(manager):
    return _headers_for(manager)


@pytest.fixture
def owner_headers(owner):
    return _headers_for(owner)


@pytest.fixture
def outsider_headers(outsider):
    return _headers_for(outsider)


@pytest.fixture
def other_owner_headers(other_owner):
    return _headers_for(other_owner)


# =============================================================================
# BUILDERS
# =============================================================================

def add_reading(session, station_id, cash_cents, *, recorded_at=None, online_cents=0, credit_cents=0,
                litres=Decimal("10.000"), is_initial=False):
    reading = NozzleReading(
        station_id=station_id,
        recorded_at=recorded_at or utcnow(),
        litres_sold=litres,
        cash_amount_cents=cash_cents,
        online_amount_cents=online_cents,
        credit_amount_cents=credit_cents,
        total_amount_cents=cash_cents + online_cents + credit_cents,
        is_initial_reading=is_initial,
    )
    session.add(reading)
    session.commit()
    return reading


@pytest.fixture
def ended_shift(db_session, station, employee_id):
    """
    Factory: start a shift an hour ago for the station employee, record
    `expected_cents` of cash readings inside it, and end it reporting
    `actual_cents`.
    """
    def _make(actual_cents=500000, expected_cents=None, actor=None):
        start = utcnow() - timedelta(hours=1)
        shift = shift_service.start_shift(employee_id, start_time=start, shift_date=utcnow().date())
        add_reading(
            db_session,
            station.id,
            actual_cents if expected_cents is None else expected_cents,
            recorded_at=start + timedelta(minutes=30),
        )
        return shift_service.end_shift(shift.id, actor or employee_id, actual_cash_cents=actual_cents)

    return _make


@pytest.fixture
def confirmed_root(ended_shift, station, manager_id):
    """Factory: ended shift -> employee_to_manager confirmed by the manager at the full amount."""
    def _make(amount_cents=500000):
        shift = ended_shift(amount_cents)
        root = handover_service.create_handover(
            manager_id, station.id, "employee_to_manager", shift_id=shift.id,
        )
        return handover_service.confirm_handover(root.id, manager_id, actual_amount_cents=amount_cents)

    return _make
