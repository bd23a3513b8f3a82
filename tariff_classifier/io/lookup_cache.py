# tariff_classifier/io/lookup_cache.py
from __future__ import annotations

import threading
import time
from collections import OrderedDict
from typing import Callable, Generic, Optional, Tuple, TypeVar

V = TypeVar("V")


class TTLCache(Generic[V]):
    """
    Ограниченный по размеру кэш с временем жизни записей.

    - запись старше ttl_seconds не отдаётся и удаляется при обращении;
    - при переполнении вытесняется самая старая вставка.
    Потокобезопасен: один кэш делят параллельные запросы.
    """

    def __init__(
        self,
        ttl_seconds: float,
        max_entries: int,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self._ttl = ttl_seconds
        self._max_entries = max_entries
        self._clock = clock
        self._data: "OrderedDict[str, Tuple[float, V]]" = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[V]:
        with self._lock:
            item = self._data.get(key)
            if item is None:
                return None
            stored_at, value = item
            if self._clock() - stored_at >= self._ttl:
                del self._data[key]
                return None
            return value

    def set(self, key: str, value: V) -> None:
        with self._lock:
            if key in self._data:
                del self._data[key]
            while len(self._data) >= self._max_entries:
                self._data.popitem(last=False)
            self._data[key] = (self._clock(), value)

    def clear(self) -> None:
        with self._lock:
            self._data.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)
