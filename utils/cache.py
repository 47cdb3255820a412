"""
Простой кэш с ограниченным временем жизни записей
"""
import time
from typing import Any, Callable, Dict, Hashable, Optional, Tuple


class TTLCache:
    """
    Кэш в памяти процесса с фиксированным TTL.

    Источник времени передаётся снаружи (по умолчанию time.monotonic),
    чтобы истечение записей можно было проверять в тестах без ожидания.
    """

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds должен быть больше нуля")
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[Hashable, Tuple[float, Any]] = {}

    def get(self, key: Hashable) -> Optional[Any]:
        """Значение по ключу или None, если записи нет или она устарела"""
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    def set(self, key: Hashable, value: Any):
        self._entries[key] = (self._clock() + self.ttl_seconds, value)

    def expire(self, key: Hashable):
        self._entries.pop(key, None)

    def clear(self):
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
