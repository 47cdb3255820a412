"""
Конфигурация проекта
"""
import os
from dataclasses import dataclass
from typing import List


def _parse_ids(value: str) -> List[int]:
    """Разбор списка ID из строки вида '1, 2, 3'"""
    if not value:
        return []
    return [int(item.strip()) for item in value.split(',') if item.strip()]


@dataclass
class Settings:
    """Настройки приложения"""
    # Telegram
    BOT_TOKEN: str = os.getenv('BOT_TOKEN', '')
    ADMIN_IDS: List[int] = None

    # База данных
    DB_PATH: str = os.getenv('DB_PATH', 'data/lounge_bot.db')

    # Режим работы клуба
    OPEN_TIME: str = os.getenv('OPEN_TIME', '11:00')
    CLOSE_TIME: str = os.getenv('CLOSE_TIME', '23:00')

    # Бизнес-правила бронирования
    SLOT_DURATIONS: List[int] = None  # минуты
    BOOKING_LEAD_MINUTES: int = 30
    MAX_BOOKING_DAYS: int = 7
    AVAILABILITY_CACHE_SECONDS: int = 300
    OPEN_SESSIONS_BLOCK_BOOKINGS: bool = True
    BOOKING_STATUS_REFRESH_MINUTES: int = 5

    # Тарификация
    MEMBER_DISCOUNT_RATE: float = 0.5
    BILLING_TICK_SECONDS: int = 1
    START_TIME_RECONCILE_DELAY_SECONDS: int = 3

    def __post_init__(self):
        """Инициализация после создания объекта"""
        # Парсинг ADMIN_IDS из переменной окружения
        if self.ADMIN_IDS is None:
            self.ADMIN_IDS = _parse_ids(os.getenv('ADMIN_IDS', ''))

        if self.SLOT_DURATIONS is None:
            durations = os.getenv('SLOT_DURATIONS', '30,60,90,120')
            self.SLOT_DURATIONS = [int(d.strip()) for d in durations.split(',') if d.strip()]

    def validate(self):
        """Проверка обязательных настроек перед запуском бота"""
        if not self.BOT_TOKEN:
            raise ValueError("BOT_TOKEN не установлен")

    def is_admin(self, user_id: int) -> bool:
        """Проверка, является ли пользователь администратором"""
        return user_id in self.ADMIN_IDS


# Глобальный экземпляр настроек
settings = Settings()
