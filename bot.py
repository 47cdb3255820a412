"""
Главный файл Telegram-бота игрового клуба: бронирование станций и учёт сессий
"""
import asyncio
import logging

from aiogram import Bot, Dispatcher
from aiogram.fsm.storage.memory import MemoryStorage

from config import settings
from database.database import init_db
from database.repository import (
    BookingRepository, CustomerRepository, SessionRepository, StationRepository
)
from handlers import booking_handlers, station_handlers
from services.availability import build_availability_checker
from services.booking_service import BookingService
from services.live_billing import LiveBillingMonitor
from services.notifications import TelegramNotifier
from services.station_service import StationService
from utils.scheduler import start_scheduler

# Настройка логирования
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


async def main():
    """Основная функция запуска бота"""
    logger.info("Запуск бота...")
    settings.validate()

    # Инициализация БД
    init_db()
    logger.info("База данных инициализирована")

    bot = Bot(token=settings.BOT_TOKEN)
    notifier = TelegramNotifier(bot, settings.ADMIN_IDS)

    # Сервисы
    stations = StationRepository()
    sessions = SessionRepository()
    customers = CustomerRepository()
    bookings = BookingRepository()

    station_service = StationService(stations, sessions, customers, notifier=notifier)
    station_service.load()

    booking_service = BookingService(
        build_availability_checker(notifier=notifier), bookings, notifier=notifier
    )
    billing_monitor = LiveBillingMonitor(station_service, customers)

    # Сервисы передаются в обработчики через данные диспетчера
    storage = MemoryStorage()
    dp = Dispatcher(
        storage=storage,
        station_service=station_service,
        booking_service=booking_service,
        billing_monitor=billing_monitor,
        customers=customers,
        bookings=bookings,
    )

    # Регистрация роутеров
    dp.include_router(station_handlers.router)
    dp.include_router(booking_handlers.router)

    # Статусы броней и счёт открытых сессий
    scheduler = await start_scheduler(booking_service, billing_monitor)

    try:
        logger.info("Бот успешно запущен")
        await dp.start_polling(bot, allowed_updates=dp.resolve_used_update_types())
    finally:
        scheduler.shutdown()
        await bot.session.close()
        logger.info("Бот остановлен")


if __name__ == '__main__':
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Бот остановлен пользователем")
    except Exception as e:
        logger.error(f"Критическая ошибка: {e}", exc_info=True)
