"""
Исключения движка сессий и бронирований
"""


class EngineError(Exception):
    """Базовая ошибка движка; message пригоден для показа пользователю"""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(EngineError):
    """Станция, сессия или клиент не найдены"""


class StationNotFoundError(NotFoundError):
    def __init__(self, station_id):
        super().__init__(f"Станция #{station_id} не найдена")
        self.station_id = station_id


class CustomerNotFoundError(NotFoundError):
    def __init__(self, customer_ref):
        super().__init__(f"Клиент {customer_ref} не найден")
        self.customer_ref = customer_ref


class InvalidStateError(EngineError):
    """Переход недопустим в текущем состоянии станции (устаревшее представление)"""


class StationOccupiedError(InvalidStateError):
    def __init__(self, station_id, station_name: str = None):
        name = station_name or f"#{station_id}"
        super().__init__(f"Станция {name} уже занята")
        self.station_id = station_id


class NoActiveSessionError(InvalidStateError):
    def __init__(self, station_id, station_name: str = None):
        name = station_name or f"#{station_id}"
        super().__init__(f"На станции {name} нет активной сессии")
        self.station_id = station_id


class PersistenceError(EngineError):
    """Ошибка чтения или записи в хранилище"""


class ConflictError(EngineError):
    """Хранилище отклонило запись из-за ограничения уникальности или пересечения"""


class InvalidRateError(EngineError):
    def __init__(self, hourly_rate):
        super().__init__(f"Тариф не может быть отрицательным: {hourly_rate}")
        self.hourly_rate = hourly_rate
