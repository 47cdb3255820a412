"""
Бронирование станций: список слотов, финальная проверка и запись брони
"""
import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from config import settings
from database.models import Booking, BookingStatus, Station, TimeSlot
from database.repository import BookingRepository
from services.availability import AvailabilityChecker
from services.exceptions import ConflictError, PersistenceError
from services.notifications import Notifier
from utils.time_utils import generate_time_slots, normalize_time, time_str_to_minutes

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GuardResult:
    """Результат финальной проверки перед записью брони"""
    success: bool
    message: Optional[str] = None
    unavailable_stations: Tuple[Dict, ...] = ()


@dataclass(frozen=True)
class BookingResult:
    """Результат попытки забронировать станцию"""
    success: bool
    message: str
    booking: Optional[Booking] = None
    unavailable_stations: Tuple[Dict, ...] = ()


def no_longer_available_message(stations: Sequence[Dict]) -> str:
    """Сообщение о станциях, которые заняли, пока клиент выбирал"""
    names = ', '.join(f"«{station['name']}»" for station in stations) or "Выбранные станции"
    if len(stations) == 1:
        return (f"Станция {names} больше недоступна на выбранное время. "
                f"Выберите другое время или станцию.")
    return (f"Станции {names} больше недоступны на выбранное время. "
            f"Выберите другое время или станцию.")


class BookingService:
    """Сервис бронирования станций"""

    def __init__(
        self,
        checker: AvailabilityChecker,
        bookings: BookingRepository,
        notifier: Optional[Notifier] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.checker = checker
        self.bookings = bookings
        self.notifier = notifier or Notifier()
        self.clock = clock

    def list_slots(self, booking_date: date, station_ids: List[int], slot_minutes: int,
                   now: Optional[datetime] = None) -> List[TimeSlot]:
        """
        Слоты на дату с отметкой доступности.

        Слот доступен, если свободна хотя бы одна из станций.
        """
        slots = generate_time_slots(
            settings.OPEN_TIME, settings.CLOSE_TIME, slot_minutes,
            target_date=booking_date, reference_now=now or self.clock()
        )
        requested = set(station_ids)
        if not requested:
            return slots

        for slot in slots:
            result = self.checker.check(requested, booking_date, slot.start_time, slot.end_time)
            slot.is_available = len(result.unavailable_station_ids) < len(requested)
        return slots

    def available_stations(self, stations: List[Station], booking_date: date,
                           start_time: str, end_time: str) -> List[Station]:
        """Станции, свободные в выбранном окне"""
        result = self.checker.check([s.id for s in stations], booking_date, start_time, end_time)
        return [s for s in stations if s.id not in result.unavailable_station_ids]

    def final_check(self, station_ids: List[int], booking_date: date,
                    start_time: str, end_time: str) -> GuardResult:
        """
        Повторная проверка доступности непосредственно перед записью.

        Кэш не используется. Сужает, но не устраняет окно гонки: последнее
        слово за ограничением БД при вставке.
        """
        try:
            result = self.checker.check(station_ids, booking_date, start_time, end_time,
                                        use_cache=False)
        except ValueError as e:
            return GuardResult(success=False, message=str(e))

        if not result.available:
            return GuardResult(
                success=False,
                message=no_longer_available_message(result.unavailable_stations),
                unavailable_stations=result.unavailable_stations,
            )
        return GuardResult(success=True)

    def create_booking(self, station_id: int, customer_id: int, booking_date: date,
                       start_time: str, end_time: str, notes: Optional[str] = None) -> BookingResult:
        """Финальная проверка и запись брони"""
        guard = self.final_check([station_id], booking_date, start_time, end_time)
        if not guard.success:
            logger.info(f"Бронь станции {station_id} на {booking_date} {start_time} отклонена проверкой")
            self.notifier.warning(guard.message)
            return BookingResult(success=False, message=guard.message,
                                 unavailable_stations=guard.unavailable_stations)

        start = normalize_time(start_time)
        end = normalize_time(end_time)
        booking = Booking(
            id=None,
            station_id=station_id,
            customer_id=customer_id,
            booking_date=booking_date,
            start_time=start,
            end_time=end,
            duration=time_str_to_minutes(end) - time_str_to_minutes(start),
            status=BookingStatus.CONFIRMED.value,
            notes=notes,
        )

        try:
            booking.id = self.bookings.create_booking(booking)
        except ConflictError as e:
            logger.warning(f"БД отклонила пересекающуюся бронь станции {station_id}: {e}")
            stations = self._describe(station_id)
            message = no_longer_available_message(stations)
            self.notifier.warning(message)
            return BookingResult(success=False, message=message, unavailable_stations=stations)
        except PersistenceError as e:
            logger.error(f"Не удалось сохранить бронь станции {station_id}: {e}")
            message = "Не удалось сохранить бронирование. Попробуйте ещё раз."
            self.notifier.error(message)
            return BookingResult(success=False, message=message)

        self.checker.invalidate()
        message = f"Бронирование #{booking.id} создано"
        logger.info(f"{message}: станция {station_id}, {booking_date} {start}-{end}")
        self.notifier.success(message)
        return BookingResult(success=True, message=message, booking=booking)

    def refresh_statuses(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """Перевод броней по статусам в зависимости от текущего времени"""
        now = now or self.clock()
        counts = self.bookings.refresh_statuses(now.date(), now.strftime('%H:%M:%S'))
        if any(counts.values()):
            logger.info(f"Статусы броней обновлены: {counts}")
            self.checker.invalidate()
        return counts

    def _describe(self, station_id: int) -> Tuple[Dict, ...]:
        return tuple(self.checker.describe_stations([station_id]))
