"""
Клавиатуры для Telegram бота
"""
from datetime import date
from typing import List

from aiogram.types import InlineKeyboardMarkup, ReplyKeyboardMarkup, KeyboardButton
from aiogram.utils.keyboard import InlineKeyboardBuilder

from config import settings
from database.models import Booking, Station, StationType, TimeSlot
from utils.time_utils import format_date, format_time

STATION_ICONS = {
    StationType.CONSOLE: "🎮",
    StationType.TABLE: "🎱",
}


def station_label(station: Station) -> str:
    """Название станции с иконкой типа"""
    return f"{STATION_ICONS.get(station.type, '🕹')} {station.name}"


def get_main_menu_keyboard(is_admin: bool = False) -> ReplyKeyboardMarkup:
    """Главное меню"""
    buttons = [
        [KeyboardButton(text="📅 Забронировать станцию")],
        [KeyboardButton(text="📋 Мои бронирования")],
    ]

    if is_admin:
        buttons.append([KeyboardButton(text="🕹 Станции")])

    return ReplyKeyboardMarkup(keyboard=buttons, resize_keyboard=True)


def get_dates_keyboard(dates: List[date]) -> InlineKeyboardMarkup:
    """Клавиатура выбора даты"""
    builder = InlineKeyboardBuilder()

    for value in dates:
        builder.button(
            text=format_date(value),
            callback_data=f"date:{value.isoformat()}"
        )

    builder.button(text="❌ Отмена", callback_data="cancel")
    builder.adjust(1)

    return builder.as_markup()


def get_duration_keyboard() -> InlineKeyboardMarkup:
    """Клавиатура выбора длительности"""
    builder = InlineKeyboardBuilder()

    for minutes in settings.SLOT_DURATIONS:
        hours, rest = divmod(minutes, 60)
        if hours and rest:
            text = f"{hours} ч {rest} мин"
        elif hours:
            text = f"{hours} ч"
        else:
            text = f"{rest} мин"
        builder.button(text=text, callback_data=f"duration:{minutes}")

    builder.button(text="◀️ Назад", callback_data="back_to_date")
    builder.button(text="❌ Отмена", callback_data="cancel")
    builder.adjust(2)

    return builder.as_markup()


def get_slots_keyboard(slots: List[TimeSlot]) -> InlineKeyboardMarkup:
    """Клавиатура выбора слота; занятые слоты не показываются"""
    builder = InlineKeyboardBuilder()

    for slot in slots:
        if not slot.is_available:
            continue
        builder.button(
            text=f"{slot.start_time}-{slot.end_time}",
            callback_data=f"slot:{slot.start_time.replace(':', '-')}:{slot.end_time.replace(':', '-')}"
        )

    builder.button(text="◀️ Назад", callback_data="back_to_duration")
    builder.button(text="❌ Отмена", callback_data="cancel")
    builder.adjust(3)

    return builder.as_markup()


def get_stations_keyboard(stations: List[Station]) -> InlineKeyboardMarkup:
    """Клавиатура выбора станции"""
    builder = InlineKeyboardBuilder()

    for station in stations:
        builder.button(
            text=f"{station_label(station)} - {station.hourly_rate:g} ₽/ч",
            callback_data=f"station:{station.id}"
        )

    builder.button(text="◀️ Назад", callback_data="back_to_slot")
    builder.button(text="❌ Отмена", callback_data="cancel")
    builder.adjust(1)

    return builder.as_markup()


def get_phone_keyboard() -> ReplyKeyboardMarkup:
    """Клавиатура для отправки телефона"""
    return ReplyKeyboardMarkup(
        keyboard=[[KeyboardButton(text="📱 Отправить телефон", request_contact=True)]],
        resize_keyboard=True
    )


def get_confirmation_keyboard() -> InlineKeyboardMarkup:
    """Клавиатура подтверждения бронирования"""
    builder = InlineKeyboardBuilder()

    builder.button(text="✅ Подтвердить", callback_data="confirm_booking")
    builder.button(text="◀️ Изменить", callback_data="back_to_station")
    builder.button(text="❌ Отмена", callback_data="cancel")
    builder.adjust(1)

    return builder.as_markup()


def get_bookings_keyboard(bookings: List[Booking]) -> InlineKeyboardMarkup:
    """Клавиатура списка бронирований клиента"""
    builder = InlineKeyboardBuilder()

    for booking in bookings:
        text = f"🗓 {format_date(booking.booking_date)} {format_time(booking.start_time)}"
        builder.button(text=text, callback_data=f"show_booking:{booking.id}")

    builder.button(text="🏠 Главное меню", callback_data="main_menu")
    builder.adjust(1)

    return builder.as_markup()


def get_station_actions_keyboard(station: Station) -> InlineKeyboardMarkup:
    """Действия со станцией в панели персонала"""
    builder = InlineKeyboardBuilder()

    if station.is_occupied:
        builder.button(text="⏹ Завершить сессию", callback_data=f"end_session:{station.id}")
    builder.button(text="🔄 Обновить", callback_data="stations")
    builder.adjust(1)

    return builder.as_markup()


def get_stations_panel_keyboard(stations: List[Station]) -> InlineKeyboardMarkup:
    """Панель станций для персонала"""
    builder = InlineKeyboardBuilder()

    for station in stations:
        status = "🔴" if station.is_occupied else "🟢"
        builder.button(
            text=f"{status} {station_label(station)}",
            callback_data=f"station_info:{station.id}"
        )

    builder.button(text="💰 Текущие счета", callback_data="live")
    builder.adjust(1)

    return builder.as_markup()
