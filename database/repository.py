"""
Репозиторий для работы с данными
"""
from datetime import date, datetime
from typing import Dict, Iterable, List, Optional

from database.database import get_db
from database.models import (
    ACTIVE_BOOKING_STATUSES, Booking, BookingStatus, Customer, Session, Station, StationType
)
from services.exceptions import ConflictError, StationNotFoundError


def _to_db_timestamp(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat(sep=' ') if value else None


def _from_db_timestamp(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _placeholders(values: List) -> str:
    return ', '.join('?' for _ in values)


class StationRepository:
    """Репозиторий для работы со станциями"""

    def __init__(self, db_path: Optional[str] = None):
        self.db_path = db_path

    def get_stations(self) -> List[Station]:
        """Получение всех станций"""
        with get_db(self.db_path) as conn:
            rows = conn.execute("SELECT * FROM stations ORDER BY id").fetchall()
            return [self._row_to_station(row) for row in rows]

    def get_station(self, station_id: int) -> Optional[Station]:
        """Получение станции по ID"""
        with get_db(self.db_path) as conn:
            row = conn.execute("SELECT * FROM stations WHERE id = ?", (station_id,)).fetchone()
            return self._row_to_station(row) if row else None

    def get_station_names(self, station_ids: Iterable[int]) -> Dict[int, str]:
        """Названия станций по списку ID"""
        ids = list(station_ids)
        if not ids:
            return {}
        with get_db(self.db_path) as conn:
            rows = conn.execute(
                f"SELECT id, name FROM stations WHERE id IN ({_placeholders(ids)})", ids
            ).fetchall()
            return {row['id']: row['name'] for row in rows}

    def create_station(self, name: str, station_type: StationType, hourly_rate: float) -> int:
        """Создание станции"""
        with get_db(self.db_path) as conn:
            cursor = conn.execute(
                "INSERT INTO stations (name, type, hourly_rate) VALUES (?, ?, ?)",
                (name, StationType(station_type).value, hourly_rate)
            )
            return cursor.lastrowid

    def update_station(self, station_id: int, is_occupied: Optional[bool] = None,
                       name: Optional[str] = None, hourly_rate: Optional[float] = None) -> bool:
        """Обновление полей станции; возвращает False, если станции нет"""
        fields, params = [], []
        if is_occupied is not None:
            fields.append("is_occupied = ?")
            params.append(int(is_occupied))
        if name is not None:
            fields.append("name = ?")
            params.append(name)
        if hourly_rate is not None:
            fields.append("hourly_rate = ?")
            params.append(hourly_rate)
        if not fields:
            return self.get_station(station_id) is not None

        with get_db(self.db_path) as conn:
            cursor = conn.execute(
                f"UPDATE stations SET {', '.join(fields)} WHERE id = ?",
                (*params, station_id)
            )
            return cursor.rowcount > 0

    def delete_station(self, station_id: int) -> bool:
        """Удаление станции"""
        with get_db(self.db_path) as conn:
            cursor = conn.execute("DELETE FROM stations WHERE id = ?", (station_id,))
            return cursor.rowcount > 0

    @staticmethod
    def _row_to_station(row) -> Station:
        """Преобразование строки БД в объект Station"""
        return Station(
            id=row['id'],
            name=row['name'],
            type=StationType(row['type']),
            hourly_rate=row['hourly_rate'],
            is_occupied=bool(row['is_occupied']),
        )


class SessionRepository:
    """Репозиторий для работы с игровыми сессиями"""

    def __init__(self, db_path: Optional[str] = None):
        self.db_path = db_path

    def get_open_sessions(self) -> List[Session]:
        """Получение всех незакрытых сессий"""
        with get_db(self.db_path) as conn:
            rows = conn.execute(
                "SELECT * FROM sessions WHERE end_time IS NULL ORDER BY start_time"
            ).fetchall()
            return [self._row_to_session(row) for row in rows]

    def get_session(self, session_id: int) -> Optional[Session]:
        """Получение сессии по ID"""
        with get_db(self.db_path) as conn:
            row = conn.execute("SELECT * FROM sessions WHERE id = ?", (session_id,)).fetchone()
            return self._row_to_session(row) if row else None

    def insert_session(self, session: Session) -> int:
        """Создание записи о сессии"""
        with get_db(self.db_path) as conn:
            return self._insert(conn, session)

    def update_session(self, session_id: int, end_time: datetime, duration: int) -> bool:
        """Запись времени окончания и длительности"""
        with get_db(self.db_path) as conn:
            cursor = conn.execute(
                "UPDATE sessions SET end_time = ?, duration = ? WHERE id = ?",
                (_to_db_timestamp(end_time), duration, session_id)
            )
            return cursor.rowcount > 0

    def open_session(self, session: Session) -> int:
        """
        Открытие сессии: запись сессии и отметка станции занятой
        в одной транзакции
        """
        with get_db(self.db_path) as conn:
            session_id = self._insert(conn, session)
            cursor = conn.execute(
                "UPDATE stations SET is_occupied = 1 WHERE id = ?", (session.station_id,)
            )
            if cursor.rowcount == 0:
                raise StationNotFoundError(session.station_id)
            return session_id

    def close_session(self, session: Session, customer: Optional[Customer] = None):
        """
        Закрытие сессии, освобождение станции и обновление клиента
        в одной транзакции.

        Закрывается только открытая сессия: повторное закрытие отклоняется
        целиком, поэтому часы членства не списываются дважды.
        """
        with get_db(self.db_path) as conn:
            cursor = conn.execute(
                "UPDATE sessions SET end_time = ?, duration = ? "
                "WHERE id = ? AND end_time IS NULL",
                (_to_db_timestamp(session.end_time), session.duration, session.id)
            )
            if cursor.rowcount == 0:
                raise ConflictError(f"Сессия #{session.id} уже закрыта")

            conn.execute(
                "UPDATE stations SET is_occupied = 0 WHERE id = ?", (session.station_id,)
            )

            if customer is not None:
                CustomerRepository.write_totals(conn, customer)

    @staticmethod
    def _insert(conn, session: Session) -> int:
        cursor = conn.execute(
            "INSERT INTO sessions (station_id, customer_id, start_time) VALUES (?, ?, ?)",
            (session.station_id, session.customer_id, _to_db_timestamp(session.start_time))
        )
        return cursor.lastrowid

    @staticmethod
    def _row_to_session(row) -> Session:
        """Преобразование строки БД в объект Session"""
        return Session(
            id=row['id'],
            station_id=row['station_id'],
            customer_id=row['customer_id'],
            start_time=_from_db_timestamp(row['start_time']),
            end_time=_from_db_timestamp(row['end_time']),
            duration=row['duration'],
        )


class BookingRepository:
    """Репозиторий для работы с бронированиями"""

    def __init__(self, db_path: Optional[str] = None):
        self.db_path = db_path

    def check_stations_availability(self, booking_date: date, start_time: str, end_time: str,
                                    station_ids: List[int],
                                    include_open_sessions: bool = True) -> List[dict]:
        """
        Доступность станций за один запрос.

        Для каждой существующей станции из списка возвращает
        {'station_id': ..., 'is_available': ...}. Станция занята, если есть
        активная бронь, пересекающая [start_time, end_time), или (при
        include_open_sessions) открытая сессия, начатая в этот день
        раньше end_time.
        """
        if not station_ids:
            return []

        statuses = list(ACTIVE_BOOKING_STATUSES)
        query = f"""
            SELECT s.id AS station_id,
                NOT EXISTS (
                    SELECT 1 FROM bookings b
                    WHERE b.station_id = s.id
                    AND b.booking_date = ?
                    AND b.status IN ({_placeholders(statuses)})
                    AND b.start_time < ? AND ? < b.end_time
                )
        """
        params = [booking_date.isoformat(), *statuses, end_time, start_time]

        if include_open_sessions:
            query += """
                AND NOT EXISTS (
                    SELECT 1 FROM sessions se
                    WHERE se.station_id = s.id
                    AND se.end_time IS NULL
                    AND date(se.start_time) = ?
                    AND time(se.start_time) < ?
                )
            """
            params.extend([booking_date.isoformat(), end_time])

        query += f" AS is_available FROM stations s WHERE s.id IN ({_placeholders(station_ids)})"
        params.extend(station_ids)

        with get_db(self.db_path) as conn:
            rows = conn.execute(query, params).fetchall()
            return [
                {'station_id': row['station_id'], 'is_available': bool(row['is_available'])}
                for row in rows
            ]

    def get_active_bookings(self, booking_date: date, station_ids: List[int]) -> List[Booking]:
        """Активные брони на дату для указанных станций"""
        if not station_ids:
            return []
        statuses = list(ACTIVE_BOOKING_STATUSES)
        with get_db(self.db_path) as conn:
            rows = conn.execute(
                f"""
                SELECT * FROM bookings
                WHERE booking_date = ?
                AND status IN ({_placeholders(statuses)})
                AND station_id IN ({_placeholders(station_ids)})
                ORDER BY start_time
                """,
                (booking_date.isoformat(), *statuses, *station_ids)
            ).fetchall()
            return [self._row_to_booking(row) for row in rows]

    def create_booking(self, booking: Booking) -> int:
        """
        Создание нового бронирования.

        Пересечение с активной бронью отклоняется триггером БД
        и приходит сюда как ConflictError.
        """
        with get_db(self.db_path) as conn:
            cursor = conn.execute("""
                INSERT INTO bookings
                (station_id, customer_id, booking_date, start_time, end_time, duration, status, notes)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                booking.station_id,
                booking.customer_id,
                booking.booking_date.isoformat(),
                booking.start_time,
                booking.end_time,
                booking.duration,
                booking.status,
                booking.notes
            ))
            return cursor.lastrowid

    def get_booking(self, booking_id: int) -> Optional[Booking]:
        """Получение бронирования по ID"""
        with get_db(self.db_path) as conn:
            row = conn.execute("SELECT * FROM bookings WHERE id = ?", (booking_id,)).fetchone()
            return self._row_to_booking(row) if row else None

    def get_customer_bookings(self, customer_id: int, from_date: date) -> List[Booking]:
        """Предстоящие активные бронирования клиента"""
        statuses = list(ACTIVE_BOOKING_STATUSES)
        with get_db(self.db_path) as conn:
            rows = conn.execute(
                f"""
                SELECT * FROM bookings
                WHERE customer_id = ? AND booking_date >= ?
                AND status IN ({_placeholders(statuses)})
                ORDER BY booking_date, start_time
                """,
                (customer_id, from_date.isoformat(), *statuses)
            ).fetchall()
            return [self._row_to_booking(row) for row in rows]

    def refresh_statuses(self, today: date, now_time: str) -> Dict[str, int]:
        """
        Перевод броней по статусам в зависимости от времени.

        confirmed -> in-progress после начала, in-progress -> completed
        после окончания. Бронь, закончившаяся в статусе confirmed,
        считается неявкой (no-show).
        """
        today_str = today.isoformat()
        with get_db(self.db_path) as conn:
            completed = conn.execute(
                "UPDATE bookings SET status = ? WHERE status = ? "
                "AND (booking_date < ? OR (booking_date = ? AND end_time <= ?))",
                (BookingStatus.COMPLETED.value, BookingStatus.IN_PROGRESS.value,
                 today_str, today_str, now_time)
            ).rowcount
            no_show = conn.execute(
                "UPDATE bookings SET status = ? WHERE status = ? "
                "AND (booking_date < ? OR (booking_date = ? AND end_time <= ?))",
                (BookingStatus.NO_SHOW.value, BookingStatus.CONFIRMED.value,
                 today_str, today_str, now_time)
            ).rowcount
            started = conn.execute(
                "UPDATE bookings SET status = ? "
                "WHERE status = ? AND booking_date = ? AND start_time <= ? AND end_time > ?",
                (BookingStatus.IN_PROGRESS.value, BookingStatus.CONFIRMED.value,
                 today_str, now_time, now_time)
            ).rowcount

        return {
            'in-progress': started,
            'completed': completed,
            'no-show': no_show,
        }

    @staticmethod
    def _row_to_booking(row) -> Booking:
        """Преобразование строки БД в объект Booking"""
        return Booking(
            id=row['id'],
            station_id=row['station_id'],
            customer_id=row['customer_id'],
            booking_date=date.fromisoformat(row['booking_date']),
            start_time=row['start_time'],
            end_time=row['end_time'],
            duration=row['duration'],
            status=row['status'],
            notes=row['notes'],
        )


class CustomerRepository:
    """Репозиторий для работы с клиентами"""

    def __init__(self, db_path: Optional[str] = None):
        self.db_path = db_path

    def get_customer(self, customer_id: int) -> Optional[Customer]:
        """Получение клиента по ID"""
        with get_db(self.db_path) as conn:
            row = conn.execute("SELECT * FROM customers WHERE id = ?", (customer_id,)).fetchone()
            return self._row_to_customer(row) if row else None

    def get_customers(self, customer_ids: Iterable[int]) -> List[Customer]:
        """Получение клиентов по списку ID"""
        ids = list(customer_ids)
        if not ids:
            return []
        with get_db(self.db_path) as conn:
            rows = conn.execute(
                f"SELECT * FROM customers WHERE id IN ({_placeholders(ids)})", ids
            ).fetchall()
            return [self._row_to_customer(row) for row in rows]

    def get_customer_by_phone(self, phone: str) -> Optional[Customer]:
        """Поиск клиента по телефону"""
        with get_db(self.db_path) as conn:
            row = conn.execute("SELECT * FROM customers WHERE phone = ?", (phone,)).fetchone()
            return self._row_to_customer(row) if row else None

    def create_customer(self, customer: Customer) -> int:
        """Создание клиента"""
        with get_db(self.db_path) as conn:
            cursor = conn.execute("""
                INSERT INTO customers
                (name, phone, is_member, membership_hours_left, membership_expiry_date, total_play_time)
                VALUES (?, ?, ?, ?, ?, ?)
            """, (
                customer.name,
                customer.phone,
                int(customer.is_member),
                customer.membership_hours_left,
                customer.membership_expiry_date.isoformat() if customer.membership_expiry_date else None,
                customer.total_play_time
            ))
            return cursor.lastrowid

    def update_customer(self, customer_id: int, total_play_time: int,
                        membership_hours_left: float) -> bool:
        """Обновление накопленного времени игры и остатка часов членства"""
        with get_db(self.db_path) as conn:
            cursor = conn.execute(
                "UPDATE customers SET total_play_time = ?, membership_hours_left = ? WHERE id = ?",
                (total_play_time, max(0.0, membership_hours_left), customer_id)
            )
            return cursor.rowcount > 0

    @staticmethod
    def write_totals(conn, customer: Customer):
        """Запись итогов клиента в рамках уже открытой транзакции"""
        conn.execute(
            "UPDATE customers SET total_play_time = ?, membership_hours_left = ? WHERE id = ?",
            (customer.total_play_time, max(0.0, customer.membership_hours_left), customer.id)
        )

    @staticmethod
    def _row_to_customer(row) -> Customer:
        """Преобразование строки БД в объект Customer"""
        expiry = row['membership_expiry_date']
        return Customer(
            id=row['id'],
            name=row['name'],
            phone=row['phone'],
            is_member=bool(row['is_member']),
            membership_hours_left=row['membership_hours_left'],
            membership_expiry_date=date.fromisoformat(expiry) if expiry else None,
            total_play_time=row['total_play_time'],
        )
