# tariff_classifier/scripts/common.py
from __future__ import annotations

from tariff_classifier.classifier.classifier_service import ClassifierService
from tariff_classifier.classifier.conversation_service import ConversationService
from tariff_classifier.classifier.session_store import SessionStore
from tariff_classifier.config import AppConfig, config
from tariff_classifier.io.code_repository import CodeRepository
from tariff_classifier.io.db_io import SqlCodeStore, create_db_engine, init_schema
from tariff_classifier.llm_client.provider_client import ProviderLLMClient
from tariff_classifier.llm_client.tools import ToolExecutor


def build_code_store(app_config: AppConfig = config) -> SqlCodeStore:
    engine = create_db_engine(app_config.repository.database_url)
    init_schema(engine)
    return SqlCodeStore(engine)


def build_classifier(app_config: AppConfig = config) -> ClassifierService:
    """
    Собирает ClassifierService из конфига: БД -> репозиторий -> LLM-клиент.
    """
    repository = CodeRepository.with_default_cache(build_code_store(app_config), app_config.repository)
    llm_client = ProviderLLMClient(tool_executor=ToolExecutor(repository), llm_config=app_config.llm)
    return ClassifierService(
        llm_client=llm_client,
        repository=repository,
        classifier_config=app_config.classifier,
    )


def build_conversation_service(app_config: AppConfig = config) -> ConversationService:
    return ConversationService(
        classifier=build_classifier(app_config),
        sessions=SessionStore(app_config.sessions),
    )
