"""
Модуль для работы с базой данных SQLite
"""
import logging
import os
import sqlite3
from contextlib import contextmanager
from typing import Generator, Optional

from config import settings
from services.exceptions import ConflictError, PersistenceError

logger = logging.getLogger(__name__)


def get_connection(db_path: Optional[str] = None) -> sqlite3.Connection:
    """Получение подключения к БД"""
    conn = sqlite3.connect(db_path or settings.DB_PATH)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


@contextmanager
def get_db(db_path: Optional[str] = None) -> Generator[sqlite3.Connection, None, None]:
    """
    Контекстный менеджер для работы с БД.

    Ошибки драйвера наружу не выходят: нарушение ограничения превращается
    в ConflictError, любая другая ошибка sqlite - в PersistenceError.
    """
    try:
        conn = get_connection(db_path)
    except sqlite3.Error as e:
        raise PersistenceError(f"Не удалось подключиться к БД: {e}") from e

    try:
        yield conn
        conn.commit()
    except sqlite3.IntegrityError as e:
        conn.rollback()
        raise ConflictError(f"Запись отклонена хранилищем: {e}") from e
    except sqlite3.Error as e:
        conn.rollback()
        raise PersistenceError(f"Ошибка БД: {e}") from e
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def init_db(db_path: Optional[str] = None, seed: bool = True):
    """Инициализация базы данных"""
    path = db_path or settings.DB_PATH

    # Создание директории для БД, если не существует
    db_dir = os.path.dirname(path)
    if db_dir and not os.path.exists(db_dir):
        os.makedirs(db_dir)

    with get_db(path) as conn:
        cursor = conn.cursor()

        # Таблица станций
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS stations (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                type TEXT NOT NULL CHECK (type IN ('console', 'table')),
                hourly_rate REAL NOT NULL,
                is_occupied INTEGER NOT NULL DEFAULT 0
            )
        """)

        # Таблица клиентов
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS customers (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                phone TEXT NOT NULL UNIQUE,
                is_member INTEGER NOT NULL DEFAULT 0,
                membership_hours_left REAL NOT NULL DEFAULT 0
                    CHECK (membership_hours_left >= 0),
                membership_expiry_date DATE,
                total_play_time INTEGER NOT NULL DEFAULT 0
            )
        """)

        # Таблица игровых сессий
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS sessions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                station_id INTEGER NOT NULL,
                customer_id INTEGER,
                start_time TIMESTAMP NOT NULL,
                end_time TIMESTAMP,
                duration INTEGER
            )
        """)

        # Не больше одной открытой сессии на станцию
        cursor.execute("""
            CREATE UNIQUE INDEX IF NOT EXISTS idx_sessions_one_open
            ON sessions(station_id) WHERE end_time IS NULL
        """)

        # Таблица бронирований
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS bookings (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                station_id INTEGER NOT NULL,
                customer_id INTEGER NOT NULL,
                booking_date DATE NOT NULL,
                start_time TEXT NOT NULL,
                end_time TEXT NOT NULL,
                duration INTEGER NOT NULL,
                status TEXT NOT NULL DEFAULT 'confirmed',
                notes TEXT,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                FOREIGN KEY (station_id) REFERENCES stations (id) ON DELETE CASCADE
            )
        """)

        # Индексы для быстрого поиска
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_bookings_date
            ON bookings(booking_date, station_id, status)
        """)

        # Пересекающиеся активные брони одной станции отклоняются при вставке
        cursor.execute("""
            CREATE TRIGGER IF NOT EXISTS trg_bookings_no_overlap
            BEFORE INSERT ON bookings
            WHEN NEW.status IN ('confirmed', 'in-progress')
            BEGIN
                SELECT RAISE(ABORT, 'booking overlaps an active booking')
                WHERE EXISTS (
                    SELECT 1 FROM bookings
                    WHERE station_id = NEW.station_id
                    AND booking_date = NEW.booking_date
                    AND status IN ('confirmed', 'in-progress')
                    AND start_time < NEW.end_time
                    AND NEW.start_time < end_time
                );
            END
        """)

        if seed:
            # Проверка наличия станций
            cursor.execute("SELECT COUNT(*) as count FROM stations")
            if cursor.fetchone()['count'] == 0:
                # Добавление станций по умолчанию
                cursor.executemany(
                    "INSERT INTO stations (name, type, hourly_rate) VALUES (?, ?, ?)",
                    [
                        ("PS5 #1", "console", 150),
                        ("PS5 #2", "console", 150),
                        ("Пул (Зелёный)", "table", 300),
                    ]
                )
                logger.info("Добавлены станции по умолчанию")
