"""
Утилиты для работы со временем и расписанием
"""
from datetime import date, datetime, time, timedelta
from typing import List, Optional, Tuple, Union

from config import settings
from database.models import TimeSlot

TimeLike = Union[str, time]


def time_str_to_minutes(value: TimeLike) -> int:
    """Перевод 'HH:MM' или 'HH:MM:SS' в минуты от начала суток"""
    if isinstance(value, time):
        return value.hour * 60 + value.minute
    parts = value.strip().split(':')
    if len(parts) not in (2, 3):
        raise ValueError(f"Некорректное время: {value!r}")
    hours, minutes = int(parts[0]), int(parts[1])
    if not (0 <= hours <= 24 and 0 <= minutes < 60):
        raise ValueError(f"Некорректное время: {value!r}")
    return hours * 60 + minutes


def minutes_to_time_str(total_minutes: int) -> str:
    """Перевод минут от начала суток в 'HH:MM'"""
    hours, minutes = divmod(total_minutes, 60)
    return f"{hours:02d}:{minutes:02d}"


def normalize_time(value: TimeLike) -> str:
    """
    Приведение времени к каноническому виду 'HH:MM:SS'.

    В таком виде время хранится в БД, и строковое сравнение совпадает
    с хронологическим.
    """
    if isinstance(value, time):
        return value.strftime('%H:%M:%S')
    parts = value.strip().split(':')
    if len(parts) == 2:
        parts.append('00')
    if len(parts) != 3:
        raise ValueError(f"Некорректное время: {value!r}")
    hours, minutes, seconds = (int(p) for p in parts)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"


def times_overlap(start1: TimeLike, end1: TimeLike, start2: TimeLike, end2: TimeLike) -> bool:
    """Пересечение полуинтервалов [start1, end1) и [start2, end2)"""
    s1, e1 = normalize_time(start1), normalize_time(end1)
    s2, e2 = normalize_time(start2), normalize_time(end2)
    return s1 < e2 and s2 < e1


def generate_time_slots(
    open_time: TimeLike,
    close_time: TimeLike,
    slot_minutes: int,
    target_date: Optional[date] = None,
    reference_now: Optional[datetime] = None,
) -> List[TimeSlot]:
    """
    Генерация слотов бронирования в пределах часов работы.

    Слоты идут подряд от открытия, каждый длиной slot_minutes; неполный
    последний слот не выдаётся. Если target_date совпадает с днём
    reference_now, отбрасываются слоты, начинающиеся раньше чем через
    BOOKING_LEAD_MINUTES от текущего момента.
    """
    if not isinstance(slot_minutes, int) or isinstance(slot_minutes, bool) or slot_minutes <= 0:
        raise ValueError(f"Длительность слота должна быть положительным целым, получено {slot_minutes!r}")

    now = reference_now or datetime.now()
    target_date = target_date or now.date()

    current = time_str_to_minutes(open_time)
    end = time_str_to_minutes(close_time)

    earliest = None
    if target_date == now.date():
        earliest = now.hour * 60 + now.minute + settings.BOOKING_LEAD_MINUTES

    slots = []
    while current + slot_minutes <= end:
        slot_end = current + slot_minutes
        if earliest is None or current >= earliest:
            slots.append(TimeSlot(
                start_time=minutes_to_time_str(current),
                end_time=minutes_to_time_str(slot_end),
            ))
        current = slot_end

    return slots


def get_available_dates(today: Optional[date] = None) -> List[date]:
    """Получение списка доступных дат для бронирования"""
    today = today or date.today()
    return [today + timedelta(days=i) for i in range(settings.MAX_BOOKING_DAYS)]


def calculate_elapsed_time(start_time: datetime, now: Optional[datetime] = None) -> Tuple[int, int, int]:
    """Прошедшее время в виде (часы, минуты, секунды)"""
    now = now or datetime.now()
    total_seconds = max(0, int((now - start_time).total_seconds()))
    hours, remainder = divmod(total_seconds, 3600)
    minutes, seconds = divmod(remainder, 60)
    return hours, minutes, seconds


def format_elapsed(hours: int, minutes: int, seconds: int) -> str:
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"


def format_hours_as_duration(hours: float) -> str:
    """Форматирование дробных часов как 'HH:MM:SS'"""
    total_seconds = int(round(max(0.0, hours) * 3600))
    h, remainder = divmod(total_seconds, 3600)
    m, s = divmod(remainder, 60)
    return f"{h:02d}:{m:02d}:{s:02d}"


def format_datetime(dt: datetime) -> str:
    """Форматирование datetime для отображения"""
    return dt.strftime("%d.%m.%Y %H:%M")


def format_date(value: date, today: Optional[date] = None) -> str:
    """Форматирование даты"""
    weekdays = ['Пн', 'Вт', 'Ср', 'Чт', 'Пт', 'Сб', 'Вс']
    weekday = weekdays[value.weekday()]

    today = today or date.today()
    if value == today:
        return f"Сегодня ({weekday})"
    elif value == today + timedelta(days=1):
        return f"Завтра ({weekday})"
    else:
        return f"{value.strftime('%d.%m')} ({weekday})"


def format_time(value: TimeLike) -> str:
    """Форматирование времени как 'HH:MM'"""
    return normalize_time(value)[:5]
