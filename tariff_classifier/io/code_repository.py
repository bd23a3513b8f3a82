# tariff_classifier/io/code_repository.py
from __future__ import annotations

import asyncio
import logging
from typing import List, Optional, Protocol, Sequence

from sqlalchemy.exc import SQLAlchemyError

from tariff_classifier.config import RepositoryConfig, config
from tariff_classifier.data_models import (
    ClassificationCode,
    CodeRecord,
    InvalidCode,
    InvalidReason,
    ValidCode,
    ValidationOutcome,
)
from tariff_classifier.io.lookup_cache import TTLCache

logger = logging.getLogger(__name__)

# Верхняя граница числа кандидатов, которые уходят в сообщение коррекции
MAX_CANDIDATES = 15


def _shares_subheading(record: CodeRecord, subheading: str) -> bool:
    parsed = ClassificationCode.parse(record.code)
    return parsed is not None and parsed.subheading == subheading


class CodeStore(Protocol):
    """Синхронный источник записей справочника (SqlCodeStore или тестовый фейк)."""

    def find_exact(self, variants: Sequence[str]) -> Optional[CodeRecord]: ...

    def find_by_subheading(self, subheading: str, limit: int) -> List[CodeRecord]: ...

    def find_by_heading(self, heading: str, limit: int) -> List[CodeRecord]: ...


class CodeRepository:
    """
    Проверка кодов HTS по справочнику.

    Отвечает за:
    - проверку формата (ровно 10 цифр без точек);
    - точный поиск по обеим формам записи кода;
    - подбор кандидатов под тем же 6-значным субхедингом;
    - отделение сбоев хранилища (LOOKUP_ERROR) от «кода нет» (NOT_FOUND).

    Кэш передаётся явно; без кэша каждый вызов идёт в хранилище.
    """

    def __init__(
        self,
        store: CodeStore,
        cache: Optional[TTLCache[ValidationOutcome]] = None,
        repo_config: Optional[RepositoryConfig] = None,
    ) -> None:
        repo_config = repo_config or config.repository
        self._store = store
        self._cache = cache
        self._max_candidates = max(0, min(repo_config.max_candidates, MAX_CANDIDATES))
        self._max_heading_results = repo_config.max_heading_results

    @classmethod
    def with_default_cache(
        cls, store: CodeStore, repo_config: Optional[RepositoryConfig] = None
    ) -> "CodeRepository":
        repo_config = repo_config or config.repository
        cache: TTLCache[ValidationOutcome] = TTLCache(
            ttl_seconds=repo_config.cache_ttl_seconds,
            max_entries=repo_config.cache_max_entries,
        )
        return cls(store, cache=cache, repo_config=repo_config)

    async def validate(self, code: str) -> ValidationOutcome:
        if self._cache is not None and isinstance(code, str):
            cached = self._cache.get(code)
            if cached is not None:
                logger.debug("Validation cache hit for %s", code)
                return cached

        outcome = await self._validate_uncached(code)

        # Сбои хранилища не кэшируем: следующий запрос должен попробовать снова
        is_lookup_error = isinstance(outcome, InvalidCode) and outcome.reason is InvalidReason.LOOKUP_ERROR
        if self._cache is not None and isinstance(code, str) and not is_lookup_error:
            self._cache.set(code, outcome)
        return outcome

    async def _validate_uncached(self, code: str) -> ValidationOutcome:
        parsed = ClassificationCode.parse(code)
        if parsed is None:
            logger.info("HTS code %r is malformed", code)
            return InvalidCode(reason=InvalidReason.MALFORMED, submitted_code=str(code))

        try:
            record = await asyncio.to_thread(self._store.find_exact, parsed.variants())
            if record is not None:
                logger.info("HTS code %s found in reference table", parsed.dotted)
                return ValidCode(record=record)

            subheading = parsed.subheading
            candidates = await asyncio.to_thread(
                self._store.find_by_subheading, subheading, self._max_candidates
            )
        except SQLAlchemyError as exc:
            logger.error("HTS lookup failed for %s: %s", code, exc)
            return InvalidCode(
                reason=InvalidReason.LOOKUP_ERROR,
                submitted_code=parsed.dotted,
                cause=str(exc),
            )

        # Хранилище может вернуть лишнее; кандидат обязан делить префикс
        candidates = sorted(
            (c for c in candidates if _shares_subheading(c, subheading)),
            key=lambda c: c.code.replace(".", ""),
        )[: self._max_candidates]

        logger.info(
            "HTS code %s not found; %d candidates under subheading %s",
            parsed.dotted,
            len(candidates),
            subheading,
        )
        return InvalidCode(
            reason=InvalidReason.NOT_FOUND,
            submitted_code=parsed.dotted,
            subheading=subheading,
            candidates=candidates,
        )

    async def lookup_by_subheading(self, subheading: str) -> List[CodeRecord]:
        """Коды под 6-значным субхедингом. Ошибки хранилища пробрасываются."""
        return await asyncio.to_thread(
            self._store.find_by_subheading, subheading, self._max_candidates
        )

    async def lookup_by_heading(self, heading: str) -> List[CodeRecord]:
        """Коды под 4-значным хедингом. Ошибки хранилища пробрасываются."""
        return await asyncio.to_thread(
            self._store.find_by_heading, heading, self._max_heading_results
        )
