"""
Расчёт стоимости сессий и списания часов членства
"""
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from config import settings
from database.models import Customer
from utils.time_utils import calculate_elapsed_time

_ONE_MICROSECOND = timedelta(microseconds=1)
_MICROSECONDS_PER_MINUTE = 60 * 1_000_000


def _ceil(value: float) -> int:
    # Отсекаем погрешность float (0.1 * 3 и т.п.), чтобы не добавить лишнюю единицу
    return math.ceil(round(value, 9))


def hours_between(start_time: datetime, end_time: datetime) -> float:
    """Дробное количество часов между двумя моментами"""
    return max(0.0, (end_time - start_time).total_seconds() / 3600)


def session_duration_minutes(start_time: datetime, end_time: datetime) -> int:
    """Длительность сессии в минутах, всегда с округлением вверх"""
    elapsed = max(timedelta(0), end_time - start_time)
    microseconds = elapsed // _ONE_MICROSECOND
    return -(-microseconds // _MICROSECONDS_PER_MINUTE)


def calculate_session_cost(hours_elapsed: float, hourly_rate: float, is_member: bool) -> int:
    """
    Стоимость игрового времени.

    Сначала округляется вверх полная стоимость, затем к ней применяется
    скидка члена клуба и результат снова округляется вверх. Порядок
    округлений влияет на итог и должен сохраняться.
    """
    cost = _ceil(hours_elapsed * hourly_rate)
    if is_member:
        cost = _ceil(cost * settings.MEMBER_DISCOUNT_RATE)
    return cost


@dataclass(frozen=True)
class LiveBilling:
    """Текущее состояние счёта открытой сессии (только для отображения)"""
    station_id: int
    hours: int
    minutes: int
    seconds: int
    hours_elapsed: float
    cost: int
    is_member: bool
    membership_hours_left: Optional[float]


def compute_live_billing(
    station_id: int,
    start_time: datetime,
    now: datetime,
    hourly_rate: float,
    customer: Optional[Customer],
) -> LiveBilling:
    """
    Пересчёт счёта на момент now.

    Зависит только от (now, start_time, тариф, членство), поэтому может
    вызываться с любой частотой без накопления погрешности.
    """
    hours, minutes, seconds = calculate_elapsed_time(start_time, now)
    hours_elapsed = hours_between(start_time, now)
    is_member = bool(customer and customer.has_active_membership(now.date()))

    remaining = None
    if customer is not None and customer.is_member:
        remaining = max(0.0, customer.membership_hours_left - hours_elapsed)

    return LiveBilling(
        station_id=station_id,
        hours=hours,
        minutes=minutes,
        seconds=seconds,
        hours_elapsed=hours_elapsed,
        cost=calculate_session_cost(hours_elapsed, hourly_rate, is_member),
        is_member=is_member,
        membership_hours_left=remaining,
    )


@dataclass(frozen=True)
class Settlement:
    """Итоговый расчёт при закрытии сессии"""
    duration_minutes: int
    hours_elapsed: float
    price: int
    free_session: bool
    discount_applied: bool
    hours_deducted: float
    membership_hours_left: Optional[float]
    total_play_time: Optional[int]


def settle_session(
    start_time: datetime,
    end_time: datetime,
    hourly_rate: float,
    customer: Optional[Customer],
) -> Settlement:
    """
    Окончательный расчёт сессии по времени закрытия.

    Если у члена клуба хватает часов на всю сессию, она бесплатна и часы
    списываются. Иначе действует платный тариф (со скидкой для членов),
    а баланс часов не меняется. Бесплатная сессия и скидка взаимоисключающие.
    """
    duration = session_duration_minutes(start_time, end_time)
    hours_elapsed = hours_between(start_time, end_time)

    if customer is None:
        return Settlement(
            duration_minutes=duration,
            hours_elapsed=hours_elapsed,
            price=calculate_session_cost(hours_elapsed, hourly_rate, False),
            free_session=False,
            discount_applied=False,
            hours_deducted=0.0,
            membership_hours_left=None,
            total_play_time=None,
        )

    is_member = customer.has_active_membership(end_time.date())
    hours_left = customer.membership_hours_left
    free_session = is_member and hours_left >= hours_elapsed

    if free_session:
        new_hours_left = max(0.0, hours_left - hours_elapsed)
        return Settlement(
            duration_minutes=duration,
            hours_elapsed=hours_elapsed,
            price=0,
            free_session=True,
            discount_applied=False,
            hours_deducted=hours_left - new_hours_left,
            membership_hours_left=new_hours_left,
            total_play_time=customer.total_play_time + duration,
        )

    return Settlement(
        duration_minutes=duration,
        hours_elapsed=hours_elapsed,
        price=calculate_session_cost(hours_elapsed, hourly_rate, is_member),
        free_session=False,
        discount_applied=is_member,
        hours_deducted=0.0,
        membership_hours_left=hours_left,
        total_play_time=customer.total_play_time + duration,
    )
