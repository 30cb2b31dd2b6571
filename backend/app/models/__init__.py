from .stations import Station, StationConfig
from .auth import User, SessionToken
from .readings import NozzleReading
from .shifts import Shift
from .handovers import CashHandover
from .custody_events import CustodyEvent

__all__ = [
    'Station', 'StationConfig',
    'User', 'SessionToken',
    'NozzleReading',
    'Shift',
    'CashHandover',
    'CustodyEvent',
]
