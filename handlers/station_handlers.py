"""
Обработчики команд персонала: станции и игровые сессии
"""
import logging

from aiogram import Router, F
from aiogram.filters import Command, CommandObject
from aiogram.types import Message, CallbackQuery

from config import settings
from database.models import SessionResult, Station
from database.repository import CustomerRepository
from handlers.booking_handlers import is_valid_phone, normalize_phone
from keyboards.keyboards import (
    get_station_actions_keyboard, get_stations_panel_keyboard, station_label
)
from services.exceptions import CustomerNotFoundError, EngineError
from services.live_billing import LiveBillingMonitor
from services.station_service import StationService
from utils.time_utils import format_datetime, format_elapsed, format_hours_as_duration

logger = logging.getLogger(__name__)
router = Router()


def is_admin(user_id: int) -> bool:
    """Проверка прав администратора"""
    return settings.is_admin(user_id)


def _parse_station_id(value: str):
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def find_customer_id(customers: CustomerRepository, phone: str) -> int:
    """ID клиента по телефону"""
    customer = customers.get_customer_by_phone(normalize_phone(phone))
    if customer is None:
        raise CustomerNotFoundError(phone)
    return customer.id


def format_station(station: Station) -> str:
    """Описание станции для панели персонала"""
    text = f"{station_label(station)}\n💵 {station.hourly_rate:g} ₽/ч\n"
    if station.is_occupied and station.current_session:
        text += f"🔴 Занята с {format_datetime(station.current_session.start_time)}"
    else:
        text += "🟢 Свободна"
    return text


def format_session_result(result: SessionResult) -> str:
    """Итог закрытой сессии"""
    item = result.cart_item
    text = (
        f"⏹ Сессия #{result.session.id} завершена\n\n"
        f"🧾 {item.name}\n"
        f"💰 К оплате: {item.total} ₽"
    )
    if result.free_session:
        text += f"\n🎟 Списано часов членства: {format_hours_as_duration(result.hours_deducted)}"
    elif result.discount_applied:
        text += "\n🏷 Применена скидка члена клуба"
    if result.customer is not None and result.customer.is_member:
        text += (f"\n⏳ Остаток часов: "
                 f"{format_hours_as_duration(result.customer.membership_hours_left)}")
    return text


@router.message(Command("stations"))
@router.message(F.text == "🕹 Станции")
async def cmd_stations(message: Message, station_service: StationService):
    """Команда /stations - состояние всех станций"""
    if not is_admin(message.from_user.id):
        await message.answer("⚠️ У вас нет доступа к этой команде")
        return

    await show_stations(message, station_service)


@router.callback_query(F.data == "stations")
async def callback_stations(callback: CallbackQuery, station_service: StationService):
    """Callback обновления панели станций"""
    if not is_admin(callback.from_user.id):
        await callback.answer("⚠️ У вас нет доступа", show_alert=True)
        return

    await show_stations(callback.message, station_service)
    await callback.answer()


async def show_stations(message: Message, station_service: StationService):
    """Показать панель станций"""
    stations = station_service.list_stations()
    if not stations:
        await message.answer("🕹 Станции не настроены")
        return

    busy = len([station for station in stations if station.is_occupied])
    await message.answer(
        f"🕹 Станции: занято {busy} из {len(stations)}",
        reply_markup=get_stations_panel_keyboard(stations)
    )


@router.callback_query(F.data.startswith("station_info:"))
async def callback_station_info(callback: CallbackQuery, station_service: StationService):
    """Карточка станции"""
    if not is_admin(callback.from_user.id):
        await callback.answer("⚠️ У вас нет доступа", show_alert=True)
        return

    try:
        station = station_service.get_station(int(callback.data.split(":")[1]))
    except EngineError as e:
        await callback.answer(f"⚠️ {e.message}", show_alert=True)
        return

    await callback.message.answer(
        format_station(station),
        reply_markup=get_station_actions_keyboard(station)
    )
    await callback.answer()


@router.message(Command("start_session"))
async def cmd_start_session(message: Message, command: CommandObject,
                            station_service: StationService, customers: CustomerRepository):
    """Команда /start_session <id станции> [телефон клиента]"""
    if not is_admin(message.from_user.id):
        await message.answer("⚠️ У вас нет доступа к этой команде")
        return

    args = (command.args or "").split()
    station_id = _parse_station_id(args[0]) if args else None
    if station_id is None:
        await message.answer(
            "⚠️ Использование: /start_session <id станции> [телефон]\n\n"
            "Пример: /start_session 1 +79991234567"
        )
        return

    if len(args) > 1 and not is_valid_phone(args[1]):
        await message.answer("⚠️ Некорректный номер телефона")
        return

    try:
        customer_id = find_customer_id(customers, args[1]) if len(args) > 1 else None
        session = station_service.start_session(station_id, customer_id)
    except EngineError as e:
        await message.answer(f"⚠️ {e.message}")
        return

    station = station_service.get_station(station_id)
    await message.answer(
        f"▶️ Сессия #{session.id} начата\n\n"
        f"{format_station(station)}",
        reply_markup=get_station_actions_keyboard(station)
    )


@router.message(Command("end_session"))
async def cmd_end_session(message: Message, command: CommandObject,
                          station_service: StationService):
    """Команда /end_session <id станции>"""
    if not is_admin(message.from_user.id):
        await message.answer("⚠️ У вас нет доступа к этой команде")
        return

    station_id = _parse_station_id((command.args or "").strip())
    if station_id is None:
        await message.answer(
            "⚠️ Использование: /end_session <id станции>\n\n"
            "Пример: /end_session 1"
        )
        return

    await finish_session(message, station_service, station_id)


@router.callback_query(F.data.startswith("end_session:"))
async def callback_end_session(callback: CallbackQuery, station_service: StationService):
    """Завершение сессии кнопкой из карточки станции"""
    if not is_admin(callback.from_user.id):
        await callback.answer("⚠️ У вас нет доступа", show_alert=True)
        return

    await finish_session(callback.message, station_service, int(callback.data.split(":")[1]))
    await callback.answer()


async def finish_session(message: Message, station_service: StationService, station_id: int):
    """Закрытие сессии и вывод счёта"""
    try:
        result = station_service.end_session(station_id)
    except EngineError as e:
        logger.warning(f"Сессия на станции {station_id} не завершена: {e.message}")
        await message.answer(f"⚠️ {e.message}")
        return

    await message.answer(format_session_result(result))


@router.message(Command("live"))
async def cmd_live(message: Message, station_service: StationService,
                   billing_monitor: LiveBillingMonitor):
    """Команда /live - текущие счета открытых сессий"""
    if not is_admin(message.from_user.id):
        await message.answer("⚠️ У вас нет доступа к этой команде")
        return

    await show_live(message, station_service, billing_monitor)


@router.callback_query(F.data == "live")
async def callback_live(callback: CallbackQuery, station_service: StationService,
                        billing_monitor: LiveBillingMonitor):
    """Callback текущих счетов"""
    if not is_admin(callback.from_user.id):
        await callback.answer("⚠️ У вас нет доступа", show_alert=True)
        return

    await show_live(callback.message, station_service, billing_monitor)
    await callback.answer()


async def show_live(message: Message, station_service: StationService,
                    billing_monitor: LiveBillingMonitor):
    """Показать текущие счета"""
    occupied = station_service.occupied_stations()
    if not occupied:
        await message.answer("💰 Открытых сессий нет")
        return

    text = "💰 Текущие счета:\n\n"
    for station in occupied:
        billing = billing_monitor.snapshot(station.id)
        if billing is None:
            continue
        text += (
            f"{station_label(station)}\n"
            f"   ⏱ {format_elapsed(billing.hours, billing.minutes, billing.seconds)}\n"
            f"   💵 {billing.cost} ₽"
        )
        if billing.is_member:
            text += " (скидка члена клуба)"
        if billing.membership_hours_left is not None:
            text += f"\n   ⏳ Остаток часов: {format_hours_as_duration(billing.membership_hours_left)}"
        text += "\n\n"

    await message.answer(text.rstrip())
