"""
Планировщик периодических задач
"""
import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from config import settings
from services.booking_service import BookingService
from services.live_billing import LiveBillingMonitor

logger = logging.getLogger(__name__)


async def refresh_booking_statuses_job(booking_service: BookingService):
    """Задача обновления статусов броней"""
    try:
        counts = booking_service.refresh_statuses()
        changed = sum(counts.values())
        if changed > 0:
            logger.info(f"Обновлено статусов броней: {changed}")
    except Exception as e:
        logger.error(f"Ошибка при обновлении статусов броней: {e}", exc_info=True)


async def start_scheduler(booking_service: BookingService,
                          billing_monitor: Optional[LiveBillingMonitor] = None) -> AsyncIOScheduler:
    """Запуск планировщика задач"""
    scheduler = AsyncIOScheduler()

    # Статусы броней каждые BOOKING_STATUS_REFRESH_MINUTES минут
    scheduler.add_job(
        refresh_booking_statuses_job,
        trigger=IntervalTrigger(minutes=settings.BOOKING_STATUS_REFRESH_MINUTES),
        args=[booking_service],
        id='refresh_booking_statuses',
        name='Обновление статусов броней',
        replace_existing=True
    )

    if billing_monitor is not None:
        billing_monitor.start(scheduler)

    scheduler.start()
    logger.info("Планировщик задач запущен")

    return scheduler
