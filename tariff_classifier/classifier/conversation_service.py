# tariff_classifier/classifier/conversation_service.py
from __future__ import annotations

import logging
import uuid
from typing import Optional, Tuple

from tariff_classifier.classifier.classifier_service import ClassifierService
from tariff_classifier.classifier.session_store import SessionNotFoundError, SessionStore
from tariff_classifier.data_models import ErrorKind, ErrorResult, Result, SessionStatus

logger = logging.getLogger(__name__)


class ConversationService:
    """
    Обёртка для вызывающего слоя: сессии вместо сырых turn_ref.

    После каждого вызова в сессию записывается самый свежий turn_ref,
    старый больше не используется.
    """

    def __init__(self, classifier: ClassifierService, sessions: SessionStore) -> None:
        self._classifier = classifier
        self._sessions = sessions

    async def start(self, description: str) -> Tuple[Optional[str], Result]:
        """
        Новый диалог. session_id равен None, если продолжать нечего:
        модель не ответила ни разу (неверный ввод, сбой первого вызова).
        """
        result = await self._classifier.classify(description)
        if not result.turn_ref:
            logger.info("No session started: %s", type(result).__name__)
            return None, result

        session_id = uuid.uuid4().hex
        self._sessions.put(session_id, description, result.turn_ref)
        logger.info("Session %s started: %s", session_id, type(result).__name__)
        return session_id, result

    def status(self, session_id: str) -> Optional[SessionStatus]:
        entry = self._sessions.get(session_id)
        if entry is None:
            return None
        return SessionStatus(
            session_id=session_id,
            original_description=entry.original_description,
            has_active_conversation=bool(entry.latest_turn_ref),
        )

    async def answer(self, session_id: str, answer: str) -> Result:
        entry = self._sessions.get(session_id)
        if entry is None:
            return ErrorResult(kind=ErrorKind.SESSION_NOT_FOUND, reason=f"Session {session_id} not found")

        result = await self._classifier.continue_with_answer(entry.latest_turn_ref, answer)

        if result.turn_ref and result.turn_ref != entry.latest_turn_ref:
            try:
                self._sessions.update(session_id, result.turn_ref)
            except SessionNotFoundError:
                # сессия истекла или вытеснена, пока шёл запрос к модели;
                # ответ всё равно отдаём, продолжить диалог уже не выйдет
                logger.warning("Session %s disappeared before update", session_id)
        return result
