# tariff_classifier/classifier/session_store.py
from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from typing import Callable, Optional, Tuple

from tariff_classifier.config import SessionConfig, config
from tariff_classifier.data_models import SessionEntry

logger = logging.getLogger(__name__)


class SessionNotFoundError(KeyError):
    """Сессии нет или она истекла."""


class SessionStore:
    """
    Хранилище состояния диалога: session_id -> (описание товара, последний turn_ref).

    Ограничено по размеру (LRU) и по времени с последнего обращения (TTL),
    чтобы карта сессий не росла бесконечно. Записи неизменяемые: update
    заменяет запись целиком.
    """

    def __init__(
        self,
        session_config: Optional[SessionConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        session_config = session_config or config.sessions
        self._ttl_seconds = session_config.ttl_minutes * 60
        self._max_sessions = session_config.max_sessions
        self._clock = clock
        self._entries: "OrderedDict[str, Tuple[float, SessionEntry]]" = OrderedDict()
        self._lock = threading.Lock()

    def put(self, session_id: str, original_description: str, turn_ref: str) -> None:
        entry = SessionEntry(original_description=original_description, latest_turn_ref=turn_ref)
        with self._lock:
            self._store(session_id, entry)
        logger.debug("Session %s created", session_id)

    def get(self, session_id: str) -> Optional[SessionEntry]:
        with self._lock:
            return self._load(session_id)

    def update(self, session_id: str, new_turn_ref: str) -> SessionEntry:
        with self._lock:
            current = self._load(session_id)
            if current is None:
                raise SessionNotFoundError(session_id)
            entry = SessionEntry(
                original_description=current.original_description,
                latest_turn_ref=new_turn_ref,
            )
            self._store(session_id, entry)
            return entry

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    # ---------- вызываются под self._lock ----------

    def _load(self, session_id: str) -> Optional[SessionEntry]:
        item = self._entries.get(session_id)
        if item is None:
            return None
        touched_at, entry = item
        now = self._clock()
        if now - touched_at >= self._ttl_seconds:
            del self._entries[session_id]
            logger.info("Session %s expired, removing", session_id)
            return None
        self._entries[session_id] = (now, entry)
        self._entries.move_to_end(session_id)
        return entry

    def _store(self, session_id: str, entry: SessionEntry) -> None:
        if session_id in self._entries:
            del self._entries[session_id]
        while len(self._entries) >= self._max_sessions:
            evicted_id, _ = self._entries.popitem(last=False)
            logger.info("Session %s evicted (capacity %d)", evicted_id, self._max_sessions)
        self._entries[session_id] = (self._clock(), entry)
