# tariff_classifier/llm_client/base.py
from __future__ import annotations

from abc import ABC, abstractmethod

from tariff_classifier.data_models import ModelTurn


class LLMError(Exception):
    """Базовая ошибка LLM-клиента."""


class LLMRetryableError(LLMError):
    """Ошибки, при которых можно безопасно повторить запрос (5xx, 429, timeout)."""


class LLMClient(ABC):
    """
    Абстракция reasoning-сервиса.

    Задачи:
    - начать диалог по описанию товара;
    - продолжить диалог по ссылке на предыдущий ход;
    - вернуть «сырой» текст ответа модели вместе с новой ссылкой на ход.

    Разбор текста в вопрос/классификацию здесь НЕ делается (это ResponseParser).
    """

    @abstractmethod
    async def start(self, description: str) -> ModelTurn:
        """
        Первый ход: системная инструкция + описание товара.

        Здесь должны обрабатываться:
        - ретраи;
        - таймауты;
        - исполнение tool-calls модели;
        - маппинг HTTP/сетевых ошибок в LLMError/LLMRetryableError.
        """
        raise NotImplementedError

    @abstractmethod
    async def continue_turn(self, turn_ref: str, message: str) -> ModelTurn:
        """
        Следующий ход в том же диалоге. Возвращённая ссылка заменяет turn_ref.
        """
        raise NotImplementedError
