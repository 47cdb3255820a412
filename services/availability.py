"""
Проверка доступности станций на заданное окно времени.

Основной путь - один запрос в БД, считающий пересечения на стороне
хранилища. Запасной путь - выборка активных броней за день и проверка
пересечений в Python. Если недоступны оба, проверка "открывается":
все станции считаются свободными, а окончательное решение принимает
финальная проверка и ограничение БД при записи брони.
"""
import logging
from dataclasses import dataclass
from datetime import date
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional, Set, Tuple

from config import settings
from database.repository import BookingRepository, SessionRepository, StationRepository
from services.exceptions import PersistenceError
from services.notifications import Notifier
from utils.cache import TTLCache
from utils.time_utils import normalize_time, times_overlap

logger = logging.getLogger(__name__)

UNKNOWN_STATION_NAME = "Неизвестная станция"


@dataclass(frozen=True)
class AvailabilityResult:
    """Результат проверки доступности"""
    available: bool
    unavailable_station_ids: FrozenSet[int]
    unavailable_stations: Tuple[Dict, ...] = ()

    @property
    def unavailable_names(self) -> List[str]:
        return [station['name'] for station in self.unavailable_stations]


class AvailabilityProvider:
    """Источник сведений о конфликтах бронирования"""

    def find_conflicts(self, station_ids: List[int], booking_date: date,
                       start_time: str, end_time: str) -> Set[int]:
        """ID станций, занятых в окне [start_time, end_time)"""
        raise NotImplementedError


class RpcAvailabilityProvider(AvailabilityProvider):
    """Проверка одним запросом к БД"""

    def __init__(self, bookings: BookingRepository, include_open_sessions: Optional[bool] = None):
        self.bookings = bookings
        if include_open_sessions is None:
            include_open_sessions = settings.OPEN_SESSIONS_BLOCK_BOOKINGS
        self.include_open_sessions = include_open_sessions

    def find_conflicts(self, station_ids, booking_date, start_time, end_time):
        rows = self.bookings.check_stations_availability(
            booking_date, start_time, end_time, station_ids,
            include_open_sessions=self.include_open_sessions
        )
        return {row['station_id'] for row in rows if not row['is_available']}


class ManualAvailabilityProvider(AvailabilityProvider):
    """Выборка активных броней за день и проверка пересечений на клиенте"""

    def __init__(self, bookings: BookingRepository, sessions: SessionRepository,
                 include_open_sessions: Optional[bool] = None):
        self.bookings = bookings
        self.sessions = sessions
        if include_open_sessions is None:
            include_open_sessions = settings.OPEN_SESSIONS_BLOCK_BOOKINGS
        self.include_open_sessions = include_open_sessions

    def find_conflicts(self, station_ids, booking_date, start_time, end_time):
        requested = set(station_ids)
        conflicts = set()

        for booking in self.bookings.get_active_bookings(booking_date, station_ids):
            if booking.station_id not in requested:
                continue
            if times_overlap(booking.start_time, booking.end_time, start_time, end_time):
                conflicts.add(booking.station_id)

        if self.include_open_sessions:
            # Открытая сессия занимает станцию с момента начала до конца дня
            for session in self.sessions.get_open_sessions():
                if session.station_id not in requested:
                    continue
                if session.start_time.date() != booking_date:
                    continue
                if normalize_time(session.start_time.time().replace(microsecond=0)) < end_time:
                    conflicts.add(session.station_id)

        return conflicts


class AvailabilityChecker:
    """
    Проверка доступности с кэшем и запасной стратегией.

    Результаты кэшируются по (дата, начало, конец, отсортированные ID) на
    AVAILABILITY_CACHE_SECONDS; сбойные проверки в кэш не попадают.
    """

    def __init__(
        self,
        primary: AvailabilityProvider,
        fallback: Optional[AvailabilityProvider],
        stations: StationRepository,
        notifier: Optional[Notifier] = None,
        cache: Optional[TTLCache] = None,
    ):
        self.primary = primary
        self.fallback = fallback
        self.stations = stations
        self.notifier = notifier or Notifier()
        self.cache = cache if cache is not None else TTLCache(settings.AVAILABILITY_CACHE_SECONDS)

    def check(
        self,
        station_ids: Iterable[int],
        booking_date: date,
        start_time,
        end_time,
        use_cache: bool = True,
    ) -> AvailabilityResult:
        """Проверка доступности станций на окно [start_time, end_time)"""
        ids = sorted(set(station_ids))
        if not ids:
            return AvailabilityResult(available=True, unavailable_station_ids=frozenset())

        start = normalize_time(start_time)
        end = normalize_time(end_time)
        if start >= end:
            raise ValueError(f"Время начала {start} должно быть раньше окончания {end}")

        key = (booking_date.isoformat(), start, end, tuple(ids))
        if use_cache:
            cached = self.cache.get(key)
            if cached is not None:
                logger.debug(f"Доступность из кэша: {key}")
                return cached

        try:
            conflicts = self._find_conflicts(ids, booking_date, start, end)
        except PersistenceError as e:
            logger.error(f"Проверка доступности не удалась, все станции считаются свободными: {e}")
            self.notifier.warning(
                "Не удалось проверить занятость станций. Все слоты показаны как свободные."
            )
            return AvailabilityResult(available=True, unavailable_station_ids=frozenset())

        result = AvailabilityResult(
            available=not conflicts,
            unavailable_station_ids=frozenset(conflicts),
            unavailable_stations=tuple(self.describe_stations(sorted(conflicts))),
        )
        self.cache.set(key, result)
        return result

    def invalidate(self):
        """Сброс кэша (после записи новой брони)"""
        self.cache.clear()

    def _find_conflicts(self, ids, booking_date, start, end) -> Set[int]:
        try:
            return self.primary.find_conflicts(ids, booking_date, start, end)
        except PersistenceError as e:
            if self.fallback is None:
                raise
            logger.warning(f"Основная проверка доступности недоступна, используется запасная: {e}")
            return self.fallback.find_conflicts(ids, booking_date, start, end)

    def describe_stations(self, station_ids: List[int]) -> List[Dict]:
        if not station_ids:
            return []
        try:
            names = self.stations.get_station_names(station_ids)
        except PersistenceError as e:
            logger.error(f"Не удалось получить названия станций: {e}")
            names = {}
        return [
            {'id': station_id, 'name': names.get(station_id, UNKNOWN_STATION_NAME)}
            for station_id in station_ids
        ]


def build_availability_checker(
    db_path: Optional[str] = None,
    notifier: Optional[Notifier] = None,
    clock: Optional[Callable[[], float]] = None,
) -> AvailabilityChecker:
    """Сборка проверки доступности поверх SQLite-репозиториев"""
    bookings = BookingRepository(db_path)
    sessions = SessionRepository(db_path)
    cache = TTLCache(settings.AVAILABILITY_CACHE_SECONDS, clock) if clock else None
    return AvailabilityChecker(
        primary=RpcAvailabilityProvider(bookings),
        fallback=ManualAvailabilityProvider(bookings, sessions),
        stations=StationRepository(db_path),
        notifier=notifier,
        cache=cache,
    )
