"""
Жизненный цикл станции: Свободна <-> Занята.

Все переходы сначала пишутся в БД и только потом отражаются в памяти;
при ошибке записи состояние в памяти не меняется.
"""
import logging
from dataclasses import replace
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional

from database.models import CartItem, Customer, Session, SessionResult, Station
from database.repository import CustomerRepository, SessionRepository, StationRepository
from services.exceptions import (
    ConflictError, EngineError, InvalidRateError, NoActiveSessionError, PersistenceError,
    StationNotFoundError, StationOccupiedError
)
from services.notifications import Notifier
from utils.billing import settle_session

logger = logging.getLogger(__name__)

UNKNOWN_CUSTOMER_NAME = "Неизвестный клиент"


class StationService:
    """Станции и их игровые сессии"""

    def __init__(
        self,
        stations: StationRepository,
        sessions: SessionRepository,
        customers: CustomerRepository,
        notifier: Optional[Notifier] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.stations_repo = stations
        self.sessions_repo = sessions
        self.customers_repo = customers
        self.notifier = notifier or Notifier()
        self.clock = clock
        self._stations: Dict[int, Station] = {}

    def load(self) -> List[Station]:
        """Загрузка станций и открытых сессий из БД"""
        try:
            stations = self.stations_repo.get_stations()
            open_sessions = self.sessions_repo.get_open_sessions()
        except PersistenceError as e:
            self.notifier.error(f"Не удалось загрузить станции: {e.message}")
            raise

        by_station = {session.station_id: session for session in open_sessions}
        for station in stations:
            session = by_station.get(station.id)
            station.current_session = session
            station.is_occupied = session is not None

        self._stations = {station.id: station for station in stations}
        logger.info(f"Загружено станций: {len(stations)}, открытых сессий: {len(by_station)}")
        return self.list_stations()

    def list_stations(self) -> List[Station]:
        return [self._stations[station_id] for station_id in sorted(self._stations)]

    def occupied_stations(self) -> List[Station]:
        return [station for station in self.list_stations() if station.is_occupied]

    def get_station(self, station_id: int) -> Station:
        station = self._stations.get(station_id)
        if station is None:
            raise StationNotFoundError(station_id)
        return station

    def refresh_station(self, station_id: int) -> Optional[Station]:
        """
        Перечитать станцию и её открытую сессию из БД.

        Вызывается, когда БД отклонила переход: состояние в памяти
        устарело, потому что станцию изменили с другого терминала.
        """
        try:
            stored = self.stations_repo.get_station(station_id)
            open_sessions = self.sessions_repo.get_open_sessions()
        except PersistenceError as e:
            logger.warning(f"Не удалось перечитать станцию {station_id}: {e.message}")
            return self._stations.get(station_id)

        if stored is None:
            self._stations.pop(station_id, None)
            return None

        session = next((s for s in open_sessions if s.station_id == station_id), None)
        station = self._stations.setdefault(station_id, stored)
        station.name = stored.name
        station.hourly_rate = stored.hourly_rate
        station.current_session = session
        station.is_occupied = session is not None
        logger.info(f"Станция {station.name} перечитана из БД, занята={station.is_occupied}")
        return station

    def start_session(self, station_id: int, customer_id: Optional[int]) -> Session:
        """Открытие сессии на свободной станции"""
        try:
            station = self.get_station(station_id)
            if station.is_occupied:
                raise StationOccupiedError(station_id, station.name)

            session = Session(
                id=None,
                station_id=station_id,
                customer_id=customer_id,
                start_time=self.clock(),
            )
            try:
                session.id = self.sessions_repo.open_session(session)
            except ConflictError as e:
                # Станцию уже запустили с другого терминала
                self.refresh_station(station_id)
                raise StationOccupiedError(station_id, station.name) from e
        except EngineError as e:
            logger.warning(f"Не удалось начать сессию на станции {station_id}: {e.message}")
            self.notifier.error(f"Не удалось начать сессию: {e.message}")
            raise

        station.is_occupied = True
        station.current_session = session

        logger.info(f"Сессия #{session.id} начата: станция {station.name}, клиент {customer_id}")
        self.notifier.success(f"Сессия на станции «{station.name}» начата")
        return session

    def end_session(self, station_id: int,
                    customers: Optional[Iterable[Customer]] = None) -> SessionResult:
        """
        Закрытие сессии с расчётом стоимости.

        Длительность округляется вверх до целой минуты. Время игры и часы
        членства клиента записываются в той же транзакции, что и закрытие
        сессии. Если клиент не найден, сессия всё равно закрывается и
        выставляется счёт, но данные клиента не меняются.
        """
        try:
            station = self.get_station(station_id)
            if not station.is_occupied or station.current_session is None:
                raise NoActiveSessionError(station_id, station.name)

            session = station.current_session
            end_time = self.clock()
            customer = self._find_customer(session.customer_id, customers)
            settlement = settle_session(session.start_time, end_time, station.hourly_rate, customer)

            closed = replace(session, end_time=end_time, duration=settlement.duration_minutes)
            updated_customer = None
            if customer is not None:
                updated_customer = replace(
                    customer,
                    total_play_time=settlement.total_play_time,
                    membership_hours_left=settlement.membership_hours_left,
                )

            try:
                self.sessions_repo.close_session(closed, updated_customer)
            except ConflictError as e:
                # Сессию уже закрыли с другого терминала
                self.refresh_station(station_id)
                raise NoActiveSessionError(station_id, station.name) from e
        except EngineError as e:
            logger.warning(f"Не удалось завершить сессию на станции {station_id}: {e.message}")
            self.notifier.error(f"Не удалось завершить сессию: {e.message}")
            raise

        station.is_occupied = False
        station.current_session = None

        customer_name = customer.name if customer else UNKNOWN_CUSTOMER_NAME
        label = f"{station.name} ({customer_name}) - {settlement.duration_minutes} мин"
        if settlement.free_session:
            label += " - часы членства"
        elif settlement.discount_applied:
            label += " - скидка члена клуба 50%"

        cart_item = CartItem(
            id=closed.id,
            name=label,
            price=settlement.price,
            quantity=1,
            total=settlement.price,
        )

        logger.info(
            f"Сессия #{closed.id} завершена: {settlement.duration_minutes} мин, "
            f"к оплате {settlement.price}, бесплатно={settlement.free_session}, "
            f"списано часов={settlement.hours_deducted:.4f}"
        )
        self.notifier.success(f"Сессия на станции «{station.name}» завершена")

        return SessionResult(
            session=closed,
            cart_item=cart_item,
            customer=updated_customer,
            free_session=settlement.free_session,
            discount_applied=settlement.discount_applied,
            hours_deducted=settlement.hours_deducted,
        )

    def update_station(self, station_id: int, name: Optional[str] = None,
                       hourly_rate: Optional[float] = None) -> Station:
        """Переименование станции или смена тарифа"""
        try:
            station = self.get_station(station_id)
            if hourly_rate is not None and hourly_rate < 0:
                raise InvalidRateError(hourly_rate)
            if not self.stations_repo.update_station(station_id, name=name, hourly_rate=hourly_rate):
                raise StationNotFoundError(station_id)
        except EngineError as e:
            self.notifier.error(f"Не удалось обновить станцию: {e.message}")
            raise

        if name is not None:
            station.name = name
        if hourly_rate is not None:
            station.hourly_rate = hourly_rate
        self.notifier.success(f"Станция «{station.name}» обновлена")
        return station

    def delete_station(self, station_id: int) -> bool:
        """Удаление станции из каталога"""
        try:
            station = self.get_station(station_id)
            if not self.stations_repo.delete_station(station_id):
                raise StationNotFoundError(station_id)
        except EngineError as e:
            self.notifier.error(f"Не удалось удалить станцию: {e.message}")
            raise

        del self._stations[station_id]
        self.notifier.success(f"Станция «{station.name}» удалена")
        return True

    def reconcile_start_time(self, station_id: int) -> Optional[datetime]:
        """
        Сверка времени начала текущей сессии с сохранённым в БД.

        Возвращает актуальное время начала или None, если сессии нет.
        """
        station = self._stations.get(station_id)
        if station is None or station.current_session is None:
            return None

        session = station.current_session
        stored = self.sessions_repo.get_session(session.id)
        if stored is None or not stored.is_open:
            return session.start_time

        if stored.start_time != session.start_time:
            logger.info(
                f"Время начала сессии #{session.id} скорректировано: "
                f"{session.start_time} -> {stored.start_time}"
            )
            session.start_time = stored.start_time
        return session.start_time

    def _find_customer(self, customer_id: Optional[int],
                       customers: Optional[Iterable[Customer]]) -> Optional[Customer]:
        if customer_id is None:
            return None
        if customers is not None:
            for customer in customers:
                if customer.id == customer_id:
                    return customer
        try:
            customer = self.customers_repo.get_customer(customer_id)
        except PersistenceError as e:
            logger.warning(f"Не удалось загрузить клиента {customer_id}: {e.message}")
            return None
        if customer is None:
            logger.warning(f"Клиент {customer_id} для сессии не найден")
        return customer
