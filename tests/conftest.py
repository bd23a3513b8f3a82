import json
from typing import Dict, List, Optional, Sequence

import pytest
from sqlalchemy.exc import OperationalError

from tariff_classifier.config import LLMApiConfig, RetryConfig
from tariff_classifier.data_models import CodeRecord, ModelTurn
from tariff_classifier.io.code_repository import CodeRepository
from tariff_classifier.io.db_io import SqlCodeStore, create_db_engine, init_schema
from tariff_classifier.llm_client.base import LLMClient


MANGO_RECORDS = [
    CodeRecord(code="0804.50.40.10", description="Mangoes, fresh, entered Sep 1 to May 31", context_path="Chapter 08 > 0804 > 0804.50"),
    CodeRecord(code="0804.50.40.20", description="Mangoes, fresh, entered Jun 1 to Aug 31", context_path="Chapter 08 > 0804 > 0804.50"),
    CodeRecord(code="0804.50.40.40", description="Mangoes, dried", context_path="Chapter 08 > 0804 > 0804.50"),
    CodeRecord(code="0804.50.60.00", description="Guavas and mangosteens, dried", context_path="Chapter 08 > 0804 > 0804.50"),
    CodeRecord(code="0804.50.80.00", description="Guavas and mangosteens, fresh", context_path="Chapter 08 > 0804 > 0804.50"),
]

OTHER_RECORDS = [
    CodeRecord(code="0804.10.20.00", description="Dates, fresh or dried, packed in units of 4.5 kg or less"),
    CodeRecord(code="8504.40.95.10", description="Static converters, power supplies for computers"),
]


@pytest.fixture(autouse=True)
def set_dummy_env(monkeypatch):
    # Подставляем фейковый API-ключ, чтобы не зависеть от реального окружения
    monkeypatch.setenv("OPENAI_API_KEY", "test-key")


@pytest.fixture
def llm_config() -> LLMApiConfig:
    # Без пауз между ретраями, чтобы тесты не спали
    return LLMApiConfig(
        base_url="https://llm.test/v1",
        model="test-model",
        retry=RetryConfig(max_retries=2, backoff_factor=0.0),
        vector_store_ids=[],
        max_tool_rounds=3,
    )


@pytest.fixture
def responses_url(llm_config) -> str:
    return f"{llm_config.base_url.rstrip('/')}/{llm_config.endpoint.lstrip('/')}"


@pytest.fixture
def sql_store() -> SqlCodeStore:
    engine = create_db_engine("sqlite:///:memory:")
    init_schema(engine)
    store = SqlCodeStore(engine)
    store.add_records(MANGO_RECORDS + OTHER_RECORDS)
    return store


@pytest.fixture
def repository(sql_store) -> CodeRepository:
    return CodeRepository(sql_store)


class MemoryCodeStore:
    """Хранилище на списке записей, без БД."""

    def __init__(self, records: Sequence[CodeRecord]) -> None:
        self._records = sorted(records, key=lambda r: r.code.replace(".", ""))

    def find_exact(self, variants: Sequence[str]) -> Optional[CodeRecord]:
        for rec in self._records:
            if rec.code in variants or rec.code.replace(".", "") in variants:
                return rec
        return None

    def find_by_subheading(self, subheading: str, limit: int) -> List[CodeRecord]:
        return [r for r in self._records if r.code.replace(".", "").startswith(subheading)][:limit]

    def find_by_heading(self, heading: str, limit: int) -> List[CodeRecord]:
        return [r for r in self._records if r.code.replace(".", "").startswith(heading)][:limit]


@pytest.fixture
def memory_repository() -> CodeRepository:
    return CodeRepository(MemoryCodeStore(MANGO_RECORDS + OTHER_RECORDS))


class CountingStore:
    """Обёртка над хранилищем, считающая обращения."""

    def __init__(self, inner) -> None:
        self.inner = inner
        self.calls: List[str] = []

    def find_exact(self, variants: Sequence[str]) -> Optional[CodeRecord]:
        self.calls.append("find_exact")
        return self.inner.find_exact(variants)

    def find_by_subheading(self, subheading: str, limit: int) -> List[CodeRecord]:
        self.calls.append("find_by_subheading")
        return self.inner.find_by_subheading(subheading, limit)

    def find_by_heading(self, heading: str, limit: int) -> List[CodeRecord]:
        self.calls.append("find_by_heading")
        return self.inner.find_by_heading(heading, limit)


@pytest.fixture
def counting_store(sql_store) -> CountingStore:
    return CountingStore(sql_store)


class ScriptedLLMClient(LLMClient):
    """
    Фейковый reasoning-сервис: отдаёт заранее заданные тексты по очереди
    и запоминает все вызовы.
    """

    def __init__(self, outputs: List[str]) -> None:
        self._outputs = list(outputs)
        self.calls: List[Dict[str, str]] = []

    async def start(self, description: str) -> ModelTurn:
        self.calls.append({"kind": "start", "message": description})
        return self._next()

    async def continue_turn(self, turn_ref: str, message: str) -> ModelTurn:
        self.calls.append({"kind": "continue", "turn_ref": turn_ref, "message": message})
        return self._next()

    def _next(self) -> ModelTurn:
        text = self._outputs.pop(0)
        return ModelTurn(turn_ref=f"resp_{len(self.calls)}", text=text)


def classification_json(code: str, confidence: str = "90%", explanation: str = "I looked at the product.") -> str:
    return json.dumps(
        {
            "responseType": "classification",
            "htsCode": code,
            "confidence": confidence,
            "explanation": explanation,
        }
    )


def question_json(question: str = "Is the mango fresh or dried?") -> str:
    return json.dumps(
        {
            "responseType": "question",
            "question": question,
            "explanation": "Fresh and dried mangoes fall under different statistical suffixes.",
            "options": [
                {"key": "A", "value": "Fresh"},
                {"key": "B", "value": "Dried"},
            ],
        }
    )


class BrokenStore:
    """Хранилище, у которого каждый запрос падает с ошибкой БД."""

    def __init__(self) -> None:
        self.calls = 0

    def find_exact(self, variants: Sequence[str]) -> Optional[CodeRecord]:
        self.calls += 1
        raise OperationalError("SELECT 1", {}, Exception("database is locked"))

    def find_by_subheading(self, subheading: str, limit: int) -> List[CodeRecord]:
        raise OperationalError("SELECT 1", {}, Exception("database is locked"))

    def find_by_heading(self, heading: str, limit: int) -> List[CodeRecord]:
        raise OperationalError("SELECT 1", {}, Exception("database is locked"))
