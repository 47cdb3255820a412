"""
Уведомления о результатах операций (успех, предупреждение, ошибка)
"""
import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Set

from aiogram import Bot

logger = logging.getLogger(__name__)


class NotificationLevel(str, Enum):
    SUCCESS = 'success'
    INFO = 'info'
    WARNING = 'warning'
    ERROR = 'error'


_LEVEL_ICONS = {
    NotificationLevel.SUCCESS: '✅',
    NotificationLevel.INFO: 'ℹ️',
    NotificationLevel.WARNING: '⚠️',
    NotificationLevel.ERROR: '❌',
}


@dataclass(frozen=True)
class Notification:
    level: NotificationLevel
    message: str

    def render(self) -> str:
        return f"{_LEVEL_ICONS[self.level]} {self.message}"


class Notifier:
    """Базовый канал уведомлений: пишет в лог"""

    def notify(self, level: NotificationLevel, message: str):
        notification = Notification(NotificationLevel(level), message)
        if notification.level == NotificationLevel.ERROR:
            logger.error(notification.message)
        elif notification.level == NotificationLevel.WARNING:
            logger.warning(notification.message)
        else:
            logger.info(notification.message)
        self.deliver(notification)

    def deliver(self, notification: Notification):
        """Доставка уведомления; в базовом канале ничего не делает"""

    def success(self, message: str):
        self.notify(NotificationLevel.SUCCESS, message)

    def warning(self, message: str):
        self.notify(NotificationLevel.WARNING, message)

    def error(self, message: str):
        self.notify(NotificationLevel.ERROR, message)


class TelegramNotifier(Notifier):
    """Рассылка уведомлений администраторам в Telegram"""

    def __init__(self, bot: Bot, admin_ids: Iterable[int]):
        self.bot = bot
        self.admin_ids: List[int] = list(admin_ids)
        self._pending: Set[asyncio.Task] = set()

    def deliver(self, notification: Notification):
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(f"Нет активного event loop, уведомление не отправлено: {notification.message}")
            return

        task = loop.create_task(self.send(notification))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def send(self, notification: Notification):
        """Отправка уведомления всем администраторам"""
        text = notification.render()
        for admin_id in self.admin_ids:
            try:
                await self.bot.send_message(admin_id, text)
            except Exception as e:
                logger.error(f"Не удалось отправить уведомление админу {admin_id}: {e}")
