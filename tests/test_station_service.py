"""
Тесты жизненного цикла станции и закрытия сессий
"""
import pytest

from database.database import get_db
from services.exceptions import (
    InvalidRateError, NoActiveSessionError, PersistenceError, StationNotFoundError,
    StationOccupiedError
)
from services.station_service import UNKNOWN_CUSTOMER_NAME, StationService
from services.notifications import Notifier


@pytest.fixture
def other_terminal(stations_repo, sessions_repo, customers_repo, clock, station_service):
    """Второй экземпляр сервиса над той же БД"""
    service = StationService(stations_repo, sessions_repo, customers_repo,
                             notifier=Notifier(), clock=clock)
    service.load()
    return service


class TestStartSession:

    def test_free_station_becomes_occupied(self, station_service, stations_repo, notifier,
                                           clock, console_id, make_customer):
        customer = make_customer()

        session = station_service.start_session(console_id, customer.id)

        assert session.id is not None
        assert session.start_time == clock()
        station = station_service.get_station(console_id)
        assert station.is_occupied
        assert station.current_session is session
        assert stations_repo.get_station(console_id).is_occupied
        assert notifier.levels() == ['success']

    def test_occupied_station_cannot_be_started_twice(self, station_service, sessions_repo,
                                                      notifier, console_id):
        first = station_service.start_session(console_id, None)

        with pytest.raises(StationOccupiedError):
            station_service.start_session(console_id, None)

        assert station_service.get_station(console_id).current_session is first
        assert len(sessions_repo.get_open_sessions()) == 1
        assert notifier.levels() == ['success', 'error']

    def test_unknown_station(self, station_service, notifier):
        with pytest.raises(StationNotFoundError):
            station_service.start_session(999, None)
        assert notifier.levels() == ['error']

    def test_start_from_stale_terminal_is_rejected_by_database(self, station_service, other_terminal,
                                                               sessions_repo, console_id):
        other_terminal.start_session(console_id, None)

        # Этот терминал ещё считает станцию свободной
        assert not station_service.get_station(console_id).is_occupied
        with pytest.raises(StationOccupiedError):
            station_service.start_session(console_id, None)

        station = station_service.get_station(console_id)
        assert station.is_occupied
        assert station.current_session.id == sessions_repo.get_open_sessions()[0].id
        assert len(sessions_repo.get_open_sessions()) == 1

    def test_stale_terminal_can_end_after_rejected_start(self, station_service, other_terminal,
                                                         clock, console_id):
        other_terminal.start_session(console_id, None)
        with pytest.raises(StationOccupiedError):
            station_service.start_session(console_id, None)
        clock.advance(minutes=10)

        result = station_service.end_session(console_id)

        assert result.session.duration == 10
        assert not other_terminal.refresh_station(console_id).is_occupied

    def test_storage_failure_leaves_memory_untouched(self, station_service, sessions_repo,
                                                     notifier, console_id, monkeypatch):
        def broken(session):
            raise PersistenceError("Ошибка БД: disk I/O error")

        monkeypatch.setattr(sessions_repo, 'open_session', broken)

        with pytest.raises(PersistenceError):
            station_service.start_session(console_id, None)

        station = station_service.get_station(console_id)
        assert not station.is_occupied
        assert station.current_session is None
        assert notifier.levels() == ['error']


class TestEndSession:

    def test_forty_five_minutes_for_a_guest(self, station_service, stations_repo, sessions_repo,
                                            customers_repo, clock, console_id, make_customer):
        customer = make_customer(total_play_time=30)
        session = station_service.start_session(console_id, customer.id)
        clock.advance(minutes=45)

        result = station_service.end_session(console_id)

        assert result.cart_item.price == 150
        assert result.cart_item.total == 150
        assert result.cart_item.quantity == 1
        assert result.cart_item.type == 'session'
        assert result.cart_item.name == "PS5 #1 (Иван) - 45 мин"
        assert result.session.duration == 45
        assert result.session.end_time == clock()
        assert not result.free_session
        assert not result.discount_applied

        assert customers_repo.get_customer(customer.id).total_play_time == 75
        stored = sessions_repo.get_session(session.id)
        assert stored.end_time == clock()
        assert stored.duration == 45

        station = station_service.get_station(console_id)
        assert not station.is_occupied
        assert station.current_session is None
        assert not stations_repo.get_station(console_id).is_occupied

    def test_sixty_one_seconds_is_two_minutes(self, station_service, clock, console_id):
        station_service.start_session(console_id, None)
        clock.advance(seconds=61)

        result = station_service.end_session(console_id)

        assert result.session.duration == 2

    def test_member_with_enough_hours_plays_free(self, station_service, customers_repo,
                                                 clock, console_id, make_customer):
        customer = make_customer(is_member=True, membership_hours_left=3.0)
        station_service.start_session(console_id, customer.id)
        clock.advance(hours=2)

        result = station_service.end_session(console_id)

        assert result.free_session
        assert not result.discount_applied
        assert result.cart_item.price == 0
        assert result.hours_deducted == pytest.approx(2.0)
        stored = customers_repo.get_customer(customer.id)
        assert stored.membership_hours_left == pytest.approx(1.0)
        assert stored.total_play_time == 120

    def test_member_short_on_hours_pays_half(self, station_service, customers_repo,
                                             clock, console_id, make_customer):
        customer = make_customer(is_member=True, membership_hours_left=2.0)
        station_service.start_session(console_id, customer.id)
        clock.advance(hours=3)

        result = station_service.end_session(console_id)

        assert not result.free_session
        assert result.discount_applied
        assert result.cart_item.price == 300  # ceil(3 * 200) * 0.5
        assert customers_repo.get_customer(customer.id).membership_hours_left == 2.0

    def test_missing_customer_still_closes(self, station_service, clock, table_id):
        station_service.start_session(table_id, 999)
        clock.advance(hours=1)

        result = station_service.end_session(table_id)

        assert result.customer is None
        assert result.cart_item.price == 300
        assert UNKNOWN_CUSTOMER_NAME in result.cart_item.name
        assert not station_service.get_station(table_id).is_occupied

    def test_customer_from_supplied_list_is_used(self, station_service, clock, console_id, make_customer):
        customer = make_customer(is_member=True, membership_hours_left=5.0)
        station_service.start_session(console_id, customer.id)
        clock.advance(minutes=30)

        result = station_service.end_session(console_id, customers=[customer])

        assert result.free_session
        assert result.customer.membership_hours_left == pytest.approx(4.5)

    def test_free_station_has_no_session(self, station_service, notifier, console_id):
        with pytest.raises(NoActiveSessionError):
            station_service.end_session(console_id)
        assert notifier.levels() == ['error']

    def test_second_close_from_another_terminal_deducts_nothing(
            self, station_service, other_terminal, customers_repo, clock, console_id, make_customer):
        customer = make_customer(is_member=True, membership_hours_left=3.0)
        station_service.start_session(console_id, customer.id)
        other_terminal.load()
        clock.advance(hours=1)

        station_service.end_session(console_id)
        with pytest.raises(NoActiveSessionError):
            other_terminal.end_session(console_id)

        stored = customers_repo.get_customer(customer.id)
        assert stored.membership_hours_left == pytest.approx(2.0)
        assert stored.total_play_time == 60

    def test_rejected_close_refreshes_stale_view(self, station_service, other_terminal,
                                                sessions_repo, clock, console_id):
        station_service.start_session(console_id, None)
        other_terminal.load()
        clock.advance(minutes=5)
        station_service.end_session(console_id)

        with pytest.raises(NoActiveSessionError):
            other_terminal.end_session(console_id)

        station = other_terminal.get_station(console_id)
        assert not station.is_occupied
        assert station.current_session is None

        session = other_terminal.start_session(console_id, None)
        assert sessions_repo.get_open_sessions()[0].id == session.id

    def test_start_after_end_opens_new_session(self, station_service, clock, console_id):
        first = station_service.start_session(console_id, None)
        clock.advance(minutes=10)
        station_service.end_session(console_id)

        second = station_service.start_session(console_id, None)

        assert second.id != first.id


class TestCatalogAndReload:

    def test_load_restores_open_sessions(self, station_service, stations_repo, sessions_repo,
                                         customers_repo, clock, console_id, table_id):
        session = station_service.start_session(console_id, None)

        restored = StationService(stations_repo, sessions_repo, customers_repo, clock=clock)
        stations = restored.load()

        assert [station.id for station in stations] == [console_id, table_id]
        assert restored.get_station(console_id).is_occupied
        assert restored.get_station(console_id).current_session.id == session.id
        assert restored.get_station(console_id).current_session.start_time == session.start_time
        assert restored.occupied_stations() == [restored.get_station(console_id)]

    def test_update_station(self, station_service, stations_repo, console_id):
        station_service.update_station(console_id, name="PS5 Pro", hourly_rate=250)

        assert station_service.get_station(console_id).name == "PS5 Pro"
        stored = stations_repo.get_station(console_id)
        assert stored.name == "PS5 Pro"
        assert stored.hourly_rate == 250

    def test_negative_rate_is_rejected(self, station_service, stations_repo, notifier, console_id):
        with pytest.raises(InvalidRateError):
            station_service.update_station(console_id, hourly_rate=-5)

        assert notifier.levels() == ['error']
        assert station_service.get_station(console_id).hourly_rate == 200
        assert stations_repo.get_station(console_id).hourly_rate == 200

    def test_delete_station(self, station_service, stations_repo, table_id):
        assert station_service.delete_station(table_id)

        with pytest.raises(StationNotFoundError):
            station_service.get_station(table_id)
        assert stations_repo.get_station(table_id) is None

    def test_reconcile_start_time_uses_stored_value(self, station_service, db_path, clock, console_id):
        session = station_service.start_session(console_id, None)
        with get_db(db_path) as conn:
            conn.execute("UPDATE sessions SET start_time = ? WHERE id = ?",
                         ("2024-05-20 13:59:58", session.id))

        reconciled = station_service.reconcile_start_time(console_id)

        assert reconciled.second == 58
        assert station_service.get_station(console_id).current_session.start_time == reconciled

    def test_reconcile_on_free_station(self, station_service, console_id):
        assert station_service.reconcile_start_time(console_id) is None
