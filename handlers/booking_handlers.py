"""
Обработчики бронирования станций клиентами
"""
import logging
import re
from datetime import date

from aiogram import Router, F
from aiogram.filters import Command
from aiogram.fsm.context import FSMContext
from aiogram.types import Message, CallbackQuery, ReplyKeyboardRemove

from config import settings
from database.models import Customer
from database.repository import BookingRepository, CustomerRepository
from keyboards.keyboards import (
    get_main_menu_keyboard, get_dates_keyboard, get_duration_keyboard,
    get_slots_keyboard, get_stations_keyboard, get_phone_keyboard,
    get_confirmation_keyboard, get_bookings_keyboard, station_label
)
from services.booking_service import BookingService
from services.exceptions import EngineError, StationNotFoundError
from services.station_service import StationService
from states.booking_states import BookingStates, MyBookingsStates
from utils.time_utils import get_available_dates, format_date, format_time

logger = logging.getLogger(__name__)
router = Router()


def normalize_phone(raw: str) -> str:
    """Приведение номера к виду +79991234567"""
    return '+' + re.sub(r'\D', '', raw)


def is_valid_phone(raw: str) -> bool:
    return len(re.sub(r'\D', '', raw)) >= 10


@router.message(Command("start"))
async def cmd_start(message: Message, state: FSMContext):
    """Обработка команды /start"""
    await state.clear()

    is_admin = settings.is_admin(message.from_user.id)

    await message.answer(
        f"👋 Добро пожаловать в игровой клуб!\n\n"
        f"Здесь вы можете:\n"
        f"📅 Забронировать консоль или стол на удобное время\n"
        f"📋 Просмотреть свои бронирования\n\n"
        f"Выберите действие:",
        reply_markup=get_main_menu_keyboard(is_admin)
    )


@router.message(F.text == "📅 Забронировать станцию")
async def start_booking(message: Message, state: FSMContext):
    """Начало процесса бронирования"""
    await state.clear()

    await message.answer(
        "📅 Выберите дату:",
        reply_markup=get_dates_keyboard(get_available_dates())
    )
    await state.set_state(BookingStates.choosing_date)


@router.callback_query(F.data.startswith("date:"), BookingStates.choosing_date)
async def process_date(callback: CallbackQuery, state: FSMContext):
    """Обработка выбора даты"""
    selected_date = callback.data.split(":")[1]
    await state.update_data(selected_date=selected_date)

    await callback.message.edit_text(
        "⏱ Выберите длительность:",
        reply_markup=get_duration_keyboard()
    )
    await state.set_state(BookingStates.choosing_duration)
    await callback.answer()


@router.callback_query(F.data.startswith("duration:"), BookingStates.choosing_duration)
async def process_duration(callback: CallbackQuery, state: FSMContext,
                           booking_service: BookingService, station_service: StationService):
    """Обработка выбора длительности: показ свободных слотов"""
    duration = int(callback.data.split(":")[1])
    data = await state.get_data()
    selected_date = date.fromisoformat(data['selected_date'])

    station_ids = [station.id for station in station_service.list_stations()]
    slots = booking_service.list_slots(selected_date, station_ids, duration)
    available = [slot for slot in slots if slot.is_available]

    logger.info(f"Слоты на {selected_date} по {duration} мин: {len(available)} из {len(slots)} свободны")

    if not available:
        await callback.answer("На эту дату нет свободных слотов такой длительности", show_alert=True)
        return

    await state.update_data(duration=duration)
    await callback.message.edit_text(
        f"🕐 {format_date(selected_date)}, выберите время:",
        reply_markup=get_slots_keyboard(slots)
    )
    await state.set_state(BookingStates.choosing_slot)
    await callback.answer()


@router.callback_query(F.data.startswith("slot:"), BookingStates.choosing_slot)
async def process_slot(callback: CallbackQuery, state: FSMContext,
                       booking_service: BookingService, station_service: StationService):
    """Обработка выбора слота: показ свободных станций"""
    _, start, end = callback.data.split(":")
    start_time = start.replace('-', ':')
    end_time = end.replace('-', ':')

    data = await state.get_data()
    selected_date = date.fromisoformat(data['selected_date'])

    stations = booking_service.available_stations(
        station_service.list_stations(), selected_date, start_time, end_time
    )
    if not stations:
        await callback.answer(
            "⚠️ К сожалению, на это время всё занято. Выберите другой слот.",
            show_alert=True
        )
        return

    await state.update_data(start_time=start_time, end_time=end_time)
    await callback.message.edit_text(
        f"🕹 Выберите станцию на {start_time}-{end_time}:",
        reply_markup=get_stations_keyboard(stations)
    )
    await state.set_state(BookingStates.choosing_station)
    await callback.answer()


@router.callback_query(F.data.startswith("station:"), BookingStates.choosing_station)
async def process_station(callback: CallbackQuery, state: FSMContext):
    """Обработка выбора станции"""
    station_id = int(callback.data.split(":")[1])
    await state.update_data(station_id=station_id)

    await callback.message.edit_text("📱 Пожалуйста, отправьте ваш контактный телефон.")
    await callback.message.answer(
        "Нажмите кнопку ниже или введите номер вручную:",
        reply_markup=get_phone_keyboard()
    )

    await state.set_state(BookingStates.entering_phone)
    await callback.answer()


@router.message(BookingStates.entering_phone, F.contact)
async def process_contact(message: Message, state: FSMContext,
                          customers: CustomerRepository, station_service: StationService):
    """Обработка контакта"""
    await process_phone_number(message, state, message.contact.phone_number,
                               customers, station_service)


@router.message(BookingStates.entering_phone, F.text)
async def process_phone_text(message: Message, state: FSMContext,
                             customers: CustomerRepository, station_service: StationService):
    """Обработка текстового ввода телефона"""
    if not is_valid_phone(message.text):
        await message.answer("⚠️ Введите корректный номер телефона")
        return

    await process_phone_number(message, state, message.text, customers, station_service)


async def process_phone_number(message: Message, state: FSMContext, raw_phone: str,
                               customers: CustomerRepository, station_service: StationService):
    """Поиск или регистрация клиента и подтверждение брони"""
    phone = normalize_phone(raw_phone)
    data = await state.get_data()

    try:
        customer = customers.get_customer_by_phone(phone)
        if customer is None:
            customer = Customer(id=None, name=message.from_user.full_name or phone, phone=phone)
            customer.id = customers.create_customer(customer)
            logger.info(f"Зарегистрирован клиент #{customer.id} ({phone})")
        station = station_service.get_station(data['station_id'])
    except StationNotFoundError:
        await message.answer(
            "⚠️ Станция больше недоступна. Начните бронирование заново.",
            reply_markup=get_main_menu_keyboard(settings.is_admin(message.from_user.id))
        )
        await state.clear()
        return
    except EngineError as e:
        logger.error(f"Не удалось найти клиента {phone}: {e.message}")
        await message.answer("⚠️ Не удалось сохранить данные. Попробуйте позже.")
        return

    await state.update_data(phone=phone, customer_id=customer.id)

    selected_date = date.fromisoformat(data['selected_date'])
    confirmation_text = (
        f"✅ Подтверждение бронирования:\n\n"
        f"📅 Дата: {format_date(selected_date)}\n"
        f"🕐 Время: {data['start_time']}-{data['end_time']}\n"
        f"🕹 Станция: {station_label(station)}\n"
        f"📱 Телефон: {phone}\n\n"
        f"Подтвердите бронирование:"
    )

    await message.answer("Почти готово!", reply_markup=ReplyKeyboardRemove())
    await message.answer(confirmation_text, reply_markup=get_confirmation_keyboard())
    await state.set_state(BookingStates.confirming)


@router.callback_query(F.data == "confirm_booking", BookingStates.confirming)
async def confirm_booking(callback: CallbackQuery, state: FSMContext,
                          booking_service: BookingService):
    """Подтверждение и создание бронирования"""
    data = await state.get_data()

    result = booking_service.create_booking(
        station_id=data['station_id'],
        customer_id=data['customer_id'],
        booking_date=date.fromisoformat(data['selected_date']),
        start_time=data['start_time'],
        end_time=data['end_time'],
    )

    if not result.success:
        await callback.message.edit_text(f"⚠️ {result.message}")
        await callback.answer()
        await state.clear()
        return

    booking = result.booking
    await callback.message.edit_text(
        f"✅ Бронирование успешно создано!\n\n"
        f"📋 Номер брони: #{booking.id}\n"
        f"📅 {format_date(booking.booking_date)} "
        f"{format_time(booking.start_time)}-{format_time(booking.end_time)}\n\n"
        f"Ждём вас! 🎮"
    )

    await callback.message.answer(
        "Выберите действие:",
        reply_markup=get_main_menu_keyboard(settings.is_admin(callback.from_user.id))
    )

    await state.clear()
    await callback.answer()


@router.message(F.text == "📋 Мои бронирования")
async def my_bookings(message: Message, state: FSMContext):
    """Просмотр бронирований: клиент определяется по телефону"""
    await state.clear()
    await message.answer(
        "📱 Отправьте телефон, указанный при бронировании:",
        reply_markup=get_phone_keyboard()
    )
    await state.set_state(MyBookingsStates.entering_phone)


@router.message(MyBookingsStates.entering_phone, F.contact | F.text)
async def show_my_bookings(message: Message, state: FSMContext,
                           customers: CustomerRepository, bookings: BookingRepository):
    """Список предстоящих бронирований клиента"""
    raw_phone = message.contact.phone_number if message.contact else message.text
    if not is_valid_phone(raw_phone):
        await message.answer("⚠️ Введите корректный номер телефона")
        return

    await state.clear()
    menu = get_main_menu_keyboard(settings.is_admin(message.from_user.id))

    try:
        customer = customers.get_customer_by_phone(normalize_phone(raw_phone))
        upcoming = bookings.get_customer_bookings(customer.id, date.today()) if customer else []
    except EngineError as e:
        logger.error(f"Не удалось получить бронирования: {e.message}")
        await message.answer("⚠️ Не удалось получить бронирования. Попробуйте позже.",
                             reply_markup=menu)
        return

    if not upcoming:
        await message.answer("У вас пока нет активных бронирований.", reply_markup=menu)
        return

    await message.answer("Ваши бронирования:", reply_markup=menu)
    await message.answer("📋 Выберите бронирование:", reply_markup=get_bookings_keyboard(upcoming))


@router.callback_query(F.data.startswith("show_booking:"))
async def show_booking_details(callback: CallbackQuery, bookings: BookingRepository,
                               station_service: StationService):
    """Показать детали бронирования"""
    booking_id = int(callback.data.split(":")[1])
    try:
        booking = bookings.get_booking(booking_id)
    except EngineError as e:
        logger.error(f"Не удалось получить бронирование {booking_id}: {e.message}")
        await callback.answer("⚠️ Не удалось получить бронирование. Попробуйте позже.",
                              show_alert=True)
        return

    if not booking:
        await callback.answer("Бронирование не найдено", show_alert=True)
        return

    try:
        station_name = station_label(station_service.get_station(booking.station_id))
    except StationNotFoundError:
        station_name = "Неизвестная станция"

    await callback.message.edit_text(
        f"📋 Бронирование #{booking.id}\n\n"
        f"📅 {format_date(booking.booking_date)} "
        f"{format_time(booking.start_time)}-{format_time(booking.end_time)}\n"
        f"⏱ Длительность: {booking.duration} мин\n"
        f"🕹 Станция: {station_name}\n"
        f"📌 Статус: {booking.status}"
    )
    await callback.answer()


# Навигация назад
@router.callback_query(F.data == "back_to_date")
async def back_to_date(callback: CallbackQuery, state: FSMContext):
    """Возврат к выбору даты"""
    await callback.message.edit_text(
        "📅 Выберите дату:",
        reply_markup=get_dates_keyboard(get_available_dates())
    )
    await state.set_state(BookingStates.choosing_date)
    await callback.answer()


@router.callback_query(F.data == "back_to_duration")
async def back_to_duration(callback: CallbackQuery, state: FSMContext):
    """Возврат к выбору длительности"""
    await callback.message.edit_text(
        "⏱ Выберите длительность:",
        reply_markup=get_duration_keyboard()
    )
    await state.set_state(BookingStates.choosing_duration)
    await callback.answer()


@router.callback_query(F.data == "back_to_slot")
async def back_to_slot(callback: CallbackQuery, state: FSMContext,
                       booking_service: BookingService, station_service: StationService):
    """Возврат к выбору слота"""
    data = await state.get_data()
    selected_date = date.fromisoformat(data['selected_date'])
    station_ids = [station.id for station in station_service.list_stations()]
    slots = booking_service.list_slots(selected_date, station_ids, data['duration'])

    await callback.message.edit_text(
        f"🕐 {format_date(selected_date)}, выберите время:",
        reply_markup=get_slots_keyboard(slots)
    )
    await state.set_state(BookingStates.choosing_slot)
    await callback.answer()


@router.callback_query(F.data == "back_to_station")
async def back_to_station(callback: CallbackQuery, state: FSMContext,
                          booking_service: BookingService, station_service: StationService):
    """Возврат к выбору станции"""
    data = await state.get_data()
    stations = booking_service.available_stations(
        station_service.list_stations(), date.fromisoformat(data['selected_date']),
        data['start_time'], data['end_time']
    )

    await callback.message.edit_text(
        f"🕹 Выберите станцию на {data['start_time']}-{data['end_time']}:",
        reply_markup=get_stations_keyboard(stations)
    )
    await state.set_state(BookingStates.choosing_station)
    await callback.answer()


@router.callback_query(F.data == "main_menu")
async def callback_main_menu(callback: CallbackQuery, state: FSMContext):
    """Возврат в главное меню"""
    await state.clear()

    await callback.message.answer(
        "🏠 Главное меню",
        reply_markup=get_main_menu_keyboard(settings.is_admin(callback.from_user.id))
    )
    await callback.answer()


@router.callback_query(F.data == "cancel")
async def cancel_booking_process(callback: CallbackQuery, state: FSMContext):
    """Отмена процесса бронирования"""
    await state.clear()

    await callback.message.edit_text("❌ Бронирование отменено")
    await callback.message.answer(
        "Выберите действие:",
        reply_markup=get_main_menu_keyboard(settings.is_admin(callback.from_user.id))
    )
    await callback.answer()
