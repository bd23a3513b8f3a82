# tariff_classifier/classifier/classifier_service.py
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Union

from tariff_classifier.classifier.prompt_builder import PromptBuilder
from tariff_classifier.classifier.response_parser import ResponseParser
from tariff_classifier.config import ClassifierConfig, config
from tariff_classifier.data_models import (
    ClassificationResponse,
    ClassificationResult,
    ErrorKind,
    ErrorResult,
    ExtractionError,
    InvalidCode,
    InvalidReason,
    ModelTurn,
    ProductQuery,
    QuestionResponse,
    QuestionResult,
    Result,
    ValidCode,
)
from tariff_classifier.io.code_repository import CodeRepository
from tariff_classifier.llm_client.base import LLMClient, LLMError

logger = logging.getLogger(__name__)


class ClassifierService:
    """
    Сервис классификации товара с проверкой кода по справочнику.

    Отвечает за:
    - вызов LLM-клиента и разбор ответа;
    - проверку предложенного кода в CodeRepository;
    - один раунд коррекции с реальными кандидатами, если код не прошёл проверку;
    - сведение всех исходов к одному Result (вопрос / классификация / ошибка).

    Исключения наружу не выходят: вызывающий слой всегда получает Result.
    Собственного состояния между вызовами у сервиса нет, поэтому параллельные
    запросы друг другу не мешают.
    """

    def __init__(
        self,
        llm_client: LLMClient,
        repository: CodeRepository,
        parser: Optional[ResponseParser] = None,
        prompt_builder: Optional[PromptBuilder] = None,
        classifier_config: Optional[ClassifierConfig] = None,
    ) -> None:
        self._llm_client = llm_client
        self._repository = repository
        self._parser = parser or ResponseParser()
        self._prompt_builder = prompt_builder or PromptBuilder()
        self._request_timeout = (classifier_config or config.classifier).request_timeout_seconds

    async def classify(self, description: str) -> Result:
        """
        Новая классификация по описанию товара.
        """
        try:
            query = ProductQuery(description=description)
        except ValueError as exc:
            return ErrorResult(kind=ErrorKind.INVALID_INPUT, reason=str(exc))

        return await self._run_with_timeout(lambda: self._llm_client.start(query.description))

    async def continue_with_answer(self, turn_ref: str, answer: str) -> Result:
        """
        Продолжение диалога ответом пользователя на уточняющий вопрос.
        """
        if not isinstance(answer, str) or not answer.strip():
            return ErrorResult(kind=ErrorKind.INVALID_INPUT, reason="Answer must be a non-empty string", turn_ref=turn_ref)

        message = self._prompt_builder.build_answer_message(answer)
        return await self._run_with_timeout(lambda: self._llm_client.continue_turn(turn_ref, message))

    async def _run_with_timeout(self, first_call: Callable[[], Awaitable[ModelTurn]]) -> Result:
        try:
            return await asyncio.wait_for(self._run(first_call), timeout=self._request_timeout)
        except asyncio.TimeoutError:
            logger.error("Classification request timed out after %.0fs", self._request_timeout)
            return ErrorResult(
                kind=ErrorKind.SERVICE_ERROR,
                reason=f"Classification timed out after {self._request_timeout:.0f} seconds",
            )

    async def _run(self, first_call: Callable[[], Awaitable[ModelTurn]]) -> Result:
        # 1) первый ход модели
        try:
            turn = await first_call()
        except LLMError as exc:
            logger.error("Reasoning service call failed: %s", exc)
            return ErrorResult(kind=ErrorKind.SERVICE_ERROR, reason=f"Reasoning service failed: {exc}")

        parsed = self._parser.extract(turn.text)
        if not isinstance(parsed, ClassificationResponse):
            return self._non_classification_result(parsed, turn.turn_ref)

        # 2) проверка кода
        outcome = await self._repository.validate(parsed.code)
        if isinstance(outcome, ValidCode):
            return self._accepted(parsed, outcome, turn.turn_ref, corrected=False)
        if outcome.reason is InvalidReason.LOOKUP_ERROR:
            return self._lookup_error(outcome, turn.turn_ref)

        # 3) ровно один раунд коррекции
        logger.info(
            "Proposed code %s rejected (%s, %d candidates), requesting correction",
            parsed.code,
            outcome.reason.value,
            len(outcome.candidates),
        )
        message = self._prompt_builder.build_correction_message(parsed, outcome)
        try:
            corrected_turn = await self._llm_client.continue_turn(turn.turn_ref, message)
        except LLMError as exc:
            logger.error("Correction request failed: %s", exc)
            return ErrorResult(
                kind=ErrorKind.SERVICE_ERROR,
                reason=f"Reasoning service failed during correction: {exc}",
                turn_ref=turn.turn_ref,
            )

        corrected = self._parser.extract(corrected_turn.text)
        if not isinstance(corrected, ClassificationResponse):
            return self._non_classification_result(corrected, corrected_turn.turn_ref)

        corrected_outcome = await self._repository.validate(corrected.code)
        if isinstance(corrected_outcome, ValidCode):
            return self._accepted(corrected, corrected_outcome, corrected_turn.turn_ref, corrected=True)
        if corrected_outcome.reason is InvalidReason.LOOKUP_ERROR:
            return self._lookup_error(corrected_outcome, corrected_turn.turn_ref)

        # Код так и не подтвердился: отдаём как есть, без новых попыток
        logger.warning(
            "Corrected code %s still invalid (%s)", corrected.code, corrected_outcome.reason.value
        )
        return ClassificationResult(
            code=corrected.code,
            description=None,
            confidence_label=corrected.confidence_label,
            validated=False,
            turn_ref=corrected_turn.turn_ref,
            rationale=corrected.rationale,
            corrected=True,
        )

    @staticmethod
    def _non_classification_result(
        parsed: Union[QuestionResponse, ExtractionError], turn_ref: str
    ) -> Result:
        if isinstance(parsed, QuestionResponse):
            return QuestionResult(
                prompt=parsed.prompt,
                options=list(parsed.options),
                turn_ref=turn_ref,
                rationale=parsed.rationale,
            )
        logger.warning("Could not extract structured response: %s", parsed.reason)
        return ErrorResult(
            kind=ErrorKind.EXTRACTION_ERROR,
            reason=f"Could not read model response: {parsed.reason}",
            turn_ref=turn_ref,
        )

    @staticmethod
    def _accepted(
        parsed: ClassificationResponse, outcome: ValidCode, turn_ref: str, corrected: bool
    ) -> ClassificationResult:
        return ClassificationResult(
            code=outcome.record.code,
            description=outcome.record.description,
            confidence_label=parsed.confidence_label,
            validated=True,
            turn_ref=turn_ref,
            rationale=parsed.rationale,
            record=outcome.record,
            corrected=corrected,
        )

    @staticmethod
    def _lookup_error(outcome: InvalidCode, turn_ref: str) -> ErrorResult:
        return ErrorResult(
            kind=ErrorKind.LOOKUP_ERROR,
            reason=f"HTS database lookup failed: {outcome.cause}",
            turn_ref=turn_ref,
        )
