"""
Счёт открытых сессий в реальном времени
"""
import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional, Set

from apscheduler.schedulers.base import BaseScheduler
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from config import settings
from database.models import Customer
from database.repository import CustomerRepository
from services.exceptions import PersistenceError
from services.station_service import StationService
from utils.billing import LiveBilling, compute_live_billing

logger = logging.getLogger(__name__)


class LiveBillingMonitor:
    """
    Пересчёт счёта всех занятых станций.

    Каждый снимок строится только из (now, время начала, тариф, членство),
    поэтому частота пересчёта на точность не влияет. Клиенты читаются из
    БД один раз на сессию.
    """

    def __init__(
        self,
        station_service: StationService,
        customers: CustomerRepository,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.station_service = station_service
        self.customers = customers
        self.clock = clock
        self.scheduler: Optional[BaseScheduler] = None
        self._snapshots: Dict[int, LiveBilling] = {}
        self._customers: Dict[int, Optional[Customer]] = {}
        self._seen_sessions: Set[int] = set()

    @property
    def snapshots(self) -> Dict[int, LiveBilling]:
        return dict(self._snapshots)

    def snapshot(self, station_id: int, now: Optional[datetime] = None) -> Optional[LiveBilling]:
        """Текущий счёт станции или None, если станция свободна"""
        station = self.station_service.get_station(station_id)
        session = station.current_session
        if not station.is_occupied or session is None:
            return None

        customer = self._customer_for(session.id, session.customer_id)
        return compute_live_billing(
            station.id, session.start_time, now or self.clock(), station.hourly_rate, customer
        )

    def recompute(self, now: Optional[datetime] = None) -> Dict[int, LiveBilling]:
        """Пересчёт счёта всех занятых станций на момент now"""
        now = now or self.clock()
        snapshots = {}
        active_sessions = set()

        for station in self.station_service.occupied_stations():
            session = station.current_session
            if session is None:
                continue
            active_sessions.add(session.id)
            if session.id not in self._seen_sessions:
                self._seen_sessions.add(session.id)
                self._schedule_reconcile(station.id)
            snapshots[station.id] = self.snapshot(station.id, now)

        # Забываем закрытые сессии
        for session_id in self._seen_sessions - active_sessions:
            self._customers.pop(session_id, None)
        self._seen_sessions &= active_sessions

        self._snapshots = snapshots
        return self.snapshots

    def start(self, scheduler: BaseScheduler):
        """Регистрация ежесекундного пересчёта в планировщике"""
        self.scheduler = scheduler
        scheduler.add_job(
            self.tick,
            trigger=IntervalTrigger(seconds=settings.BILLING_TICK_SECONDS),
            id='live_billing_tick',
            name='Пересчёт счёта открытых сессий',
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        logger.info(f"Пересчёт счёта запущен, шаг {settings.BILLING_TICK_SECONDS} с")

    async def tick(self):
        """Задача планировщика: ошибки пишутся в лог, планировщик продолжает работу"""
        try:
            self.recompute()
        except Exception as e:
            logger.error(f"Ошибка пересчёта счёта: {e}", exc_info=True)

    def _schedule_reconcile(self, station_id: int):
        if self.scheduler is None:
            self._reconcile(station_id)
            return

        run_date = self.clock() + timedelta(seconds=settings.START_TIME_RECONCILE_DELAY_SECONDS)
        self.scheduler.add_job(
            self._reconcile_job,
            trigger=DateTrigger(run_date=run_date),
            args=[station_id],
            id=f'reconcile_start_{station_id}',
            name=f'Сверка времени начала сессии на станции {station_id}',
            replace_existing=True,
        )

    async def _reconcile_job(self, station_id: int):
        self._reconcile(station_id)

    def _reconcile(self, station_id: int):
        try:
            self.station_service.reconcile_start_time(station_id)
        except PersistenceError as e:
            logger.warning(f"Не удалось сверить время начала на станции {station_id}: {e.message}")

    def _customer_for(self, session_id: int, customer_id: Optional[int]) -> Optional[Customer]:
        if session_id in self._customers:
            return self._customers[session_id]

        customer = None
        if customer_id is not None:
            try:
                customer = self.customers.get_customer(customer_id)
            except PersistenceError as e:
                logger.warning(f"Не удалось загрузить клиента {customer_id}: {e.message}")
                return None
        self._customers[session_id] = customer
        return customer
