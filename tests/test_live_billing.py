"""
Тесты пересчёта счёта открытых сессий
"""
import asyncio
from datetime import timedelta

import pytest
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from database.database import get_db
from services.live_billing import LiveBillingMonitor


class RecordingScheduler:
    """Запоминает добавленные задачи вместо запуска"""

    def __init__(self):
        self.jobs = []

    def add_job(self, func, trigger=None, args=None, id=None, **kwargs):
        self.jobs.append({'func': func, 'trigger': trigger, 'args': args or [], 'id': id, **kwargs})


@pytest.fixture
def monitor(station_service, customers_repo, clock):
    return LiveBillingMonitor(station_service, customers_repo, clock=clock)


class TestRecompute:

    def test_nothing_to_bill(self, monitor):
        assert monitor.recompute() == {}

    def test_snapshot_for_member(self, monitor, station_service, clock, console_id, make_customer):
        customer = make_customer(is_member=True, membership_hours_left=2.0)
        station_service.start_session(console_id, customer.id)
        clock.advance(minutes=30)

        snapshots = monitor.recompute()

        billing = snapshots[console_id]
        assert (billing.hours, billing.minutes, billing.seconds) == (0, 30, 0)
        assert billing.cost == 50  # ceil(0.5 * 200) * 0.5
        assert billing.is_member
        assert billing.membership_hours_left == pytest.approx(1.5)

    def test_recompute_is_a_pure_function_of_time(self, monitor, station_service, clock, console_id):
        session = station_service.start_session(console_id, None)
        clock.advance(minutes=10)
        at_ten = monitor.recompute()[console_id]

        clock.advance(minutes=5)
        monitor.recompute()
        again = monitor.recompute(session.start_time + timedelta(minutes=10))[console_id]

        assert again == at_ten

    def test_customer_is_read_once_per_session(self, monitor, station_service, customers_repo,
                                               clock, console_id, make_customer, monkeypatch):
        customer = make_customer()
        station_service.start_session(console_id, customer.id)
        calls = []
        original = customers_repo.get_customer

        def counting(customer_id):
            calls.append(customer_id)
            return original(customer_id)

        monkeypatch.setattr(customers_repo, 'get_customer', counting)

        for _ in range(5):
            clock.advance(seconds=1)
            monitor.recompute()

        assert calls == [customer.id]

    def test_closed_sessions_are_dropped(self, monitor, station_service, clock, console_id):
        station_service.start_session(console_id, None)
        clock.advance(minutes=1)
        monitor.recompute()

        station_service.end_session(console_id)

        assert monitor.recompute() == {}
        assert monitor.snapshots == {}

    def test_snapshot_of_free_station(self, monitor, console_id):
        assert monitor.snapshot(console_id) is None

    def test_monitor_does_not_touch_station_state(self, monitor, station_service, clock, console_id):
        session = station_service.start_session(console_id, None)
        clock.advance(hours=1)

        monitor.recompute()

        station = station_service.get_station(console_id)
        assert station.is_occupied
        assert station.current_session is session
        assert session.end_time is None


class TestScheduling:

    def test_start_registers_tick_job(self, monitor):
        scheduler = RecordingScheduler()

        monitor.start(scheduler)

        job = scheduler.jobs[0]
        assert job['id'] == 'live_billing_tick'
        assert isinstance(job['trigger'], IntervalTrigger)
        assert job['trigger'].interval.total_seconds() == 1

    def test_reconcile_scheduled_once_per_session(self, monitor, station_service, clock, console_id):
        scheduler = RecordingScheduler()
        monitor.start(scheduler)
        station_service.start_session(console_id, None)

        monitor.recompute()
        monitor.recompute()

        reconcile_jobs = [job for job in scheduler.jobs if job['id'] != 'live_billing_tick']
        assert len(reconcile_jobs) == 1
        assert isinstance(reconcile_jobs[0]['trigger'], DateTrigger)
        assert reconcile_jobs[0]['args'] == [console_id]

    def test_without_scheduler_reconciles_immediately(self, monitor, station_service, db_path,
                                                      clock, console_id):
        session = station_service.start_session(console_id, None)
        with get_db(db_path) as conn:
            conn.execute("UPDATE sessions SET start_time = ? WHERE id = ?",
                         ("2024-05-20 13:59:57", session.id))
        clock.advance(seconds=3)

        billing = monitor.recompute()[console_id]

        assert (billing.minutes, billing.seconds) == (0, 6)

    def test_tick_survives_errors(self, monitor, monkeypatch):
        def broken(now=None):
            raise RuntimeError("boom")

        monkeypatch.setattr(monitor, 'recompute', broken)

        asyncio.run(monitor.tick())

