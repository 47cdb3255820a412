"""
Состояния для FSM (Finite State Machine)
"""
from aiogram.fsm.state import State, StatesGroup


class BookingStates(StatesGroup):
    """Состояния процесса бронирования станции"""
    choosing_date = State()
    choosing_duration = State()
    choosing_slot = State()
    choosing_station = State()
    entering_phone = State()
    confirming = State()


class MyBookingsStates(StatesGroup):
    """Просмотр своих бронирований"""
    entering_phone = State()
