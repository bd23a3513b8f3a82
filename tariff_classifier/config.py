# tariff_classifier/config.py
from dataclasses import dataclass, field
import os
from typing import List

from dotenv import load_dotenv

# Загружаем .env
load_dotenv()


def _env_list(name: str) -> List[str]:
    raw = os.getenv(name, "")
    return [item.strip() for item in raw.split(",") if item.strip()]


@dataclass
class RetryConfig:
    max_retries: int = 2
    backoff_factor: float = 1.0  # секунды, растёт линейно с номером попытки
    retry_on_5xx: bool = True
    retry_on_429: bool = True
    retry_on_timeout: bool = True


@dataclass
class LLMApiConfig:
    """
    Конфиг reasoning-сервиса.
    Работаем через OpenAI Responses API: он сам хранит историю диалога,
    нам достаточно передавать previous_response_id.
    """
    provider: str = "openai"
    base_url: str = "https://api.openai.com/v1"
    api_key_env_var: str = "OPENAI_API_KEY"
    timeout_seconds: float = 30.0
    retry: RetryConfig = field(default_factory=RetryConfig)
    model: str = field(default_factory=lambda: os.getenv("OPENAI_MODEL", "gpt-4.1-mini"))
    endpoint: str = "/responses"
    temperature: float = 0.0
    top_p: float = 0.85
    max_output_tokens_start: int = 2000
    max_output_tokens_continue: int = 1500
    # Ограничение на число раундов tool-calls в одном ходе модели
    max_tool_rounds: int = 5
    # При пустом списке file_search не объявляется
    vector_store_ids: List[str] = field(default_factory=lambda: _env_list("OPENAI_VECTOR_STORE_IDS"))
    file_search_max_results: int = 5


@dataclass
class RepositoryConfig:
    database_url: str = field(
        default_factory=lambda: os.getenv("HTS_DATABASE_URL", "sqlite:///data/hts_codes.db")
    )
    # Кандидатов под одним субхедингом отдаём не больше 15
    max_candidates: int = 15
    max_heading_results: int = 50
    cache_ttl_seconds: float = 300.0
    cache_max_entries: int = 1000


@dataclass
class SessionConfig:
    ttl_minutes: int = 30
    max_sessions: int = 5000


@dataclass
class ClassifierConfig:
    # Общий бюджет на один пользовательский вызов (включая раунд коррекции)
    request_timeout_seconds: float = 120.0


@dataclass
class PerformanceConfig:
    # Пороги задержки одного вызова reasoning-сервиса
    slow_threshold_seconds: float = 8.0
    critical_threshold_seconds: float = 15.0
    # Храним последние N замеров на операцию, статистика только за окно
    max_samples: int = 50
    window_seconds: float = 300.0


@dataclass
class AppConfig:
    llm: LLMApiConfig = field(default_factory=LLMApiConfig)
    repository: RepositoryConfig = field(default_factory=RepositoryConfig)
    sessions: SessionConfig = field(default_factory=SessionConfig)
    classifier: ClassifierConfig = field(default_factory=ClassifierConfig)
    performance: PerformanceConfig = field(default_factory=PerformanceConfig)


# Глобальный объект конфига, который можно импортировать как `from tariff_classifier.config import config`
config = AppConfig()
