"""
Модели данных для работы с БД
"""
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Optional


class StationType(str, Enum):
    """Тип игровой станции"""
    CONSOLE = 'console'
    TABLE = 'table'


class BookingStatus(str, Enum):
    """Статусы бронирования"""
    CONFIRMED = 'confirmed'
    IN_PROGRESS = 'in-progress'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'
    NO_SHOW = 'no-show'


# Статусы, при которых бронь занимает станцию
ACTIVE_BOOKING_STATUSES = (BookingStatus.CONFIRMED.value, BookingStatus.IN_PROGRESS.value)


@dataclass
class Session:
    """Модель игровой сессии"""
    id: Optional[int]
    station_id: int
    customer_id: Optional[int]
    start_time: datetime
    end_time: Optional[datetime] = None
    duration: Optional[int] = None  # минуты, заполняется при закрытии

    @property
    def is_open(self) -> bool:
        return self.end_time is None


@dataclass
class Station:
    """Модель станции (консоль или стол)"""
    id: int
    name: str
    type: StationType
    hourly_rate: float
    is_occupied: bool = False
    current_session: Optional[Session] = None


@dataclass
class Booking:
    """Модель бронирования"""
    id: Optional[int]
    station_id: int
    customer_id: int
    booking_date: date
    start_time: str  # HH:MM:SS
    end_time: str    # HH:MM:SS
    duration: int    # минуты
    status: str = BookingStatus.CONFIRMED.value
    notes: Optional[str] = None


@dataclass
class Customer:
    """Модель клиента (поля, важные для членства и учёта времени)"""
    id: Optional[int]
    name: str
    phone: str
    is_member: bool = False
    membership_hours_left: float = 0.0
    membership_expiry_date: Optional[date] = None
    total_play_time: int = 0  # минуты

    def has_active_membership(self, today: date) -> bool:
        """Членство действует: флаг установлен и срок не истёк"""
        if not self.is_member:
            return False
        if self.membership_expiry_date and self.membership_expiry_date < today:
            return False
        return True


@dataclass
class TimeSlot:
    """Временной слот для бронирования (не хранится в БД)"""
    start_time: str  # HH:MM
    end_time: str    # HH:MM
    is_available: bool = True


@dataclass
class CartItem:
    """Позиция счёта, формируемая при закрытии сессии"""
    id: int
    name: str
    price: int
    quantity: int = 1
    total: int = 0
    type: str = 'session'


@dataclass
class SessionResult:
    """Результат закрытия сессии"""
    session: Session
    cart_item: CartItem
    customer: Optional[Customer]
    free_session: bool = False
    discount_applied: bool = False
    hours_deducted: float = 0.0
