import pytest

from conftest import ScriptedLLMClient, classification_json, question_json
from tariff_classifier.classifier.classifier_service import ClassifierService
from tariff_classifier.classifier.conversation_service import ConversationService
from tariff_classifier.classifier.session_store import SessionNotFoundError, SessionStore
from tariff_classifier.config import SessionConfig
from tariff_classifier.data_models import ClassificationResult, ErrorKind, ErrorResult, ModelTurn, QuestionResult
from tariff_classifier.llm_client.base import LLMClient, LLMRetryableError


class DummyFailingClient(LLMClient):
    async def start(self, description: str) -> ModelTurn:
        raise LLMRetryableError("Request failed after retries")

    async def continue_turn(self, turn_ref: str, message: str) -> ModelTurn:
        raise LLMRetryableError("Request failed after retries")


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_put_get_update():
    store = SessionStore(SessionConfig(ttl_minutes=30, max_sessions=10))

    store.put("s1", "fresh mango", "resp_1")
    assert store.get("s1").latest_turn_ref == "resp_1"

    updated = store.update("s1", "resp_2")

    assert updated.latest_turn_ref == "resp_2"
    assert updated.original_description == "fresh mango"
    assert store.get("s1") == updated


def test_update_of_unknown_session_raises():
    store = SessionStore(SessionConfig(ttl_minutes=30, max_sessions=10))

    with pytest.raises(SessionNotFoundError):
        store.update("missing", "resp_1")


def test_sessions_expire_after_idle_ttl():
    clock = FakeClock()
    store = SessionStore(SessionConfig(ttl_minutes=30, max_sessions=10), clock=clock)
    store.put("s1", "mango", "resp_1")

    clock.now = 29 * 60
    assert store.get("s1") is not None

    # обращение продлевает жизнь сессии
    clock.now = 29 * 60 + 29 * 60
    assert store.get("s1") is not None

    clock.now += 30 * 60
    assert store.get("s1") is None
    assert len(store) == 0


def test_least_recently_used_session_is_evicted():
    store = SessionStore(SessionConfig(ttl_minutes=30, max_sessions=2))
    store.put("a", "first", "resp_a")
    store.put("b", "second", "resp_b")
    store.get("a")

    store.put("c", "third", "resp_c")

    assert store.get("b") is None
    assert store.get("a") is not None
    assert store.get("c") is not None
    assert len(store) == 2


@pytest.mark.asyncio
async def test_conversation_keeps_latest_turn_ref(memory_repository):
    client = ScriptedLLMClient([question_json(), classification_json("0804.50.40.10")])
    sessions = SessionStore(SessionConfig(ttl_minutes=30, max_sessions=10))
    service = ConversationService(ClassifierService(llm_client=client, repository=memory_repository), sessions)

    session_id, first = await service.start("mango")

    assert isinstance(first, QuestionResult)
    assert sessions.get(session_id).latest_turn_ref == "resp_1"

    second = await service.answer(session_id, "A")

    assert isinstance(second, ClassificationResult)
    assert second.validated is True
    assert client.calls[1]["turn_ref"] == "resp_1"
    assert sessions.get(session_id).latest_turn_ref == "resp_2"
    assert sessions.get(session_id).original_description == "mango"


@pytest.mark.asyncio
async def test_answer_to_unknown_session_is_error(memory_repository):
    client = ScriptedLLMClient([])
    service = ConversationService(
        ClassifierService(llm_client=client, repository=memory_repository),
        SessionStore(SessionConfig(ttl_minutes=30, max_sessions=10)),
    )

    result = await service.answer("nope", "A")

    assert isinstance(result, ErrorResult)
    assert result.kind is ErrorKind.SESSION_NOT_FOUND
    assert client.calls == []


@pytest.mark.asyncio
async def test_invalid_input_does_not_create_session(memory_repository):
    sessions = SessionStore(SessionConfig(ttl_minutes=30, max_sessions=10))
    service = ConversationService(
        ClassifierService(llm_client=ScriptedLLMClient([]), repository=memory_repository), sessions
    )

    session_id, result = await service.start("")

    assert session_id is None
    assert isinstance(result, ErrorResult)
    assert result.kind is ErrorKind.INVALID_INPUT
    assert len(sessions) == 0


@pytest.mark.asyncio
async def test_failed_first_call_starts_no_session(memory_repository):
    client = DummyFailingClient()
    sessions = SessionStore(SessionConfig(ttl_minutes=30, max_sessions=10))
    service = ConversationService(ClassifierService(llm_client=client, repository=memory_repository), sessions)

    session_id, result = await service.start("mango")

    assert session_id is None
    assert isinstance(result, ErrorResult)
    assert result.kind is ErrorKind.SERVICE_ERROR
    assert len(sessions) == 0


@pytest.mark.asyncio
async def test_status_reports_description_and_active_conversation(memory_repository):
    client = ScriptedLLMClient([question_json()])
    service = ConversationService(
        ClassifierService(llm_client=client, repository=memory_repository),
        SessionStore(SessionConfig(ttl_minutes=30, max_sessions=10)),
    )

    session_id, _ = await service.start("fresh mango")
    status = service.status(session_id)

    assert status.to_dict() == {
        "sessionId": session_id,
        "productDescription": "fresh mango",
        "hasActiveConversation": True,
    }
    assert service.status("unknown") is None
