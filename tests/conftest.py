"""
Общие фикстуры тестов: временная БД, фиксированные часы, запись уведомлений
"""
from datetime import datetime, timedelta

import pytest

from database.database import init_db
from database.models import Customer, StationType
from database.repository import (
    BookingRepository, CustomerRepository, SessionRepository, StationRepository
)
from services.availability import (
    AvailabilityChecker, ManualAvailabilityProvider, RpcAvailabilityProvider
)
from services.booking_service import BookingService
from services.notifications import Notifier
from services.station_service import StationService
from utils.cache import TTLCache


class FixedClock:
    """Часы, которые идут только когда их двигают"""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class MonotonicClock:
    """Секундомер для TTL-кэша"""

    def __init__(self):
        self.value = 0.0

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float):
        self.value += seconds


class RecordingNotifier(Notifier):
    """Запоминает все доставленные уведомления"""

    def __init__(self):
        self.delivered = []

    def deliver(self, notification):
        self.delivered.append(notification)

    def levels(self):
        return [n.level.value for n in self.delivered]

    def messages(self):
        return [n.message for n in self.delivered]


@pytest.fixture
def db_path(tmp_path):
    path = str(tmp_path / "lounge.db")
    init_db(path, seed=False)
    return path


@pytest.fixture
def clock():
    return FixedClock(datetime(2024, 5, 20, 14, 0, 0))


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def stations_repo(db_path):
    return StationRepository(db_path)


@pytest.fixture
def sessions_repo(db_path):
    return SessionRepository(db_path)


@pytest.fixture
def bookings_repo(db_path):
    return BookingRepository(db_path)


@pytest.fixture
def customers_repo(db_path):
    return CustomerRepository(db_path)


@pytest.fixture
def console_id(stations_repo):
    return stations_repo.create_station("PS5 #1", StationType.CONSOLE, 200)


@pytest.fixture
def table_id(stations_repo):
    return stations_repo.create_station("Пул", StationType.TABLE, 300)


@pytest.fixture
def make_customer(customers_repo):
    """Фабрика клиентов в БД"""
    counter = iter(range(1000, 10000))

    def _make(**kwargs) -> Customer:
        kwargs.setdefault('name', "Иван")
        kwargs.setdefault('phone', f"+7999000{next(counter)}")
        customer = Customer(id=None, **kwargs)
        customer.id = customers_repo.create_customer(customer)
        return customer

    return _make


@pytest.fixture
def cache_clock():
    return MonotonicClock()


@pytest.fixture
def checker(bookings_repo, sessions_repo, stations_repo, notifier, cache_clock):
    return AvailabilityChecker(
        primary=RpcAvailabilityProvider(bookings_repo, include_open_sessions=True),
        fallback=ManualAvailabilityProvider(bookings_repo, sessions_repo, include_open_sessions=True),
        stations=stations_repo,
        notifier=notifier,
        cache=TTLCache(300, cache_clock),
    )


@pytest.fixture
def booking_service(checker, bookings_repo, notifier, clock):
    return BookingService(checker, bookings_repo, notifier=notifier, clock=clock)


@pytest.fixture
def station_service(stations_repo, sessions_repo, customers_repo, notifier, clock, console_id, table_id):
    service = StationService(stations_repo, sessions_repo, customers_repo, notifier=notifier, clock=clock)
    service.load()
    return service
