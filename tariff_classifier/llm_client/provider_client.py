# tariff_classifier/llm_client/provider_client.py
from __future__ import annotations

import asyncio
import logging
import os
from typing import Any, Dict, List, Optional

import httpx

from tariff_classifier.classifier.prompt_builder import PROMPT_SYSTEM_INSTRUCTIONS
from tariff_classifier.config import LLMApiConfig, config
from tariff_classifier.data_models import ModelTurn
from tariff_classifier.llm_client.base import LLMClient, LLMError, LLMRetryableError
from tariff_classifier.llm_client.performance import PerformanceMonitor
from tariff_classifier.llm_client.tools import ToolExecutor, build_tool_declarations

logger = logging.getLogger(__name__)


def extract_output_text(data: Dict[str, Any]) -> str:
    """
    Достаёт итоговый текст из ответа Responses API.

    Сначала смотрим на output_text верхнего уровня, иначе собираем
    output_text-части последнего message.
    """
    output_text = data.get("output_text")
    if isinstance(output_text, str) and output_text.strip():
        return output_text

    messages = [
        item for item in data.get("output") or []
        if isinstance(item, dict) and item.get("type") == "message"
    ]
    if not messages:
        return ""

    parts: List[str] = []
    for content in messages[-1].get("content") or []:
        if isinstance(content, dict) and content.get("type") == "output_text":
            text = content.get("text")
            if isinstance(text, str):
                parts.append(text)
    return "".join(parts)


def _function_calls(data: Dict[str, Any]) -> List[Dict[str, Any]]:
    return [
        item for item in data.get("output") or []
        if isinstance(item, dict) and item.get("type") == "function_call"
    ]


class ProviderLLMClient(LLMClient):
    """
    Реализация LLMClient через HTTP Responses API.

    История диалога хранится на стороне сервиса (store=true), поэтому
    продолжение передаёт только новое сообщение и previous_response_id.
    """

    def __init__(
        self,
        tool_executor: Optional[ToolExecutor] = None,
        llm_config: Optional[LLMApiConfig] = None,
        monitor: Optional[PerformanceMonitor] = None,
    ) -> None:
        self._conf = llm_config or config.llm
        self._monitor = monitor or PerformanceMonitor()
        self._base_url = self._conf.base_url
        self._api_key = os.getenv(self._conf.api_key_env_var, "")
        if not self._api_key:
            # Важно: не падаем молча, а даём явную ошибку конфигурации
            raise LLMError(f"Missing API key in env var {self._conf.api_key_env_var}")

        self._timeout = self._conf.timeout_seconds
        self._retry_conf = self._conf.retry
        self._tool_executor = tool_executor
        self._tools: List[Dict[str, Any]] = (
            build_tool_declarations(self._conf.vector_store_ids, self._conf.file_search_max_results)
            if tool_executor is not None
            else []
        )

    async def _post_with_retries(self, endpoint: str, json: Dict[str, Any]) -> httpx.Response:
        """
        Базовый метод отправки POST-запросов с ретраями по 5xx/429/timeout.
        """
        url = f"{self._base_url.rstrip('/')}/{endpoint.lstrip('/')}"
        attempt = 0
        last_exc: Exception | None = None
        last_status: int | None = None

        while attempt <= self._retry_conf.max_retries:
            try:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.post(url, json=json, headers=self._build_headers())

                retry_5xx = response.status_code >= 500 and self._retry_conf.retry_on_5xx
                retry_429 = response.status_code == 429 and self._retry_conf.retry_on_429
                if retry_5xx or retry_429:
                    last_status = response.status_code
                    last_exc = None
                    attempt += 1
                    if attempt > self._retry_conf.max_retries:
                        break
                    logger.warning(
                        "LLM API returned HTTP %s, retry %d/%d",
                        response.status_code,
                        attempt,
                        self._retry_conf.max_retries,
                    )
                    await self._sleep_backoff(attempt)
                    continue

                return response

            except httpx.TransportError as exc:
                # таймауты, обрывы соединения, ошибки протокола
                last_exc = exc
                if not self._retry_conf.retry_on_timeout:
                    break
                attempt += 1
                if attempt > self._retry_conf.max_retries:
                    break
                logger.warning(
                    "LLM API request failed (%s), retry %d/%d",
                    type(exc).__name__,
                    attempt,
                    self._retry_conf.max_retries,
                )
                await self._sleep_backoff(attempt)
            except (httpx.HTTPError, httpx.InvalidURL) as exc:
                # остальные ошибки httpx повтором не лечатся
                raise LLMError(f"Request to {url} failed: {type(exc).__name__}: {exc}") from exc

        # Если сюда дошли — ретраи не помогли
        if last_exc is not None:
            raise LLMRetryableError(f"Request to {url} failed after retries") from last_exc

        raise LLMRetryableError(f"Request to {url} failed with status {last_status}")

    async def _sleep_backoff(self, attempt: int) -> None:
        # Линейно растущая пауза между попытками
        delay = self._retry_conf.backoff_factor * attempt
        await asyncio.sleep(delay)

    def _build_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

    async def _create_response(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        response = await self._post_with_retries(endpoint=self._conf.endpoint, json=payload)

        if response.status_code >= 400:
            raise LLMError(
                f"LLM API returned HTTP {response.status_code}: {response.text}"
            )

        try:
            data = response.json()
        except ValueError as exc:
            raise LLMError("Failed to parse LLM response as JSON") from exc

        if not isinstance(data, dict) or not isinstance(data.get("id"), str):
            raise LLMError("LLM response has no response id")

        return data

    def _base_payload(self, max_output_tokens: int) -> Dict[str, Any]:
        return {
            "model": self._conf.model,
            "temperature": self._conf.temperature,
            "top_p": self._conf.top_p,
            "max_output_tokens": max_output_tokens,
            "store": True,
        }

    async def _resolve_tool_calls(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Пока модель просит function calls, исполняем их и отвечаем одним
        follow-up запросом на ход. Число раундов ограничено max_tool_rounds.
        """
        rounds = 0
        while True:
            calls = _function_calls(data)
            if not calls:
                return data

            if self._tool_executor is None:
                raise LLMError("Model requested tool calls but no tools are configured")
            if rounds >= self._conf.max_tool_rounds:
                raise LLMError(
                    f"Tool call limit exceeded ({self._conf.max_tool_rounds} rounds)"
                )
            rounds += 1

            logger.info("Executing %d tool calls (round %d)", len(calls), rounds)
            executor = self._tool_executor
            outputs = await self._monitor.track(
                "tool_round",
                lambda: asyncio.gather(*(executor.execute(call) for call in calls)),
            )

            payload = self._base_payload(self._conf.max_output_tokens_start)
            payload["input"] = list(outputs)
            payload["previous_response_id"] = data["id"]
            if self._tools:
                payload["tools"] = self._tools
                payload["parallel_tool_calls"] = True

            data = await self._create_response(payload)

    async def start(self, description: str) -> ModelTurn:
        return await self._monitor.track("start_classification", lambda: self._start(description))

    async def continue_turn(self, turn_ref: str, message: str) -> ModelTurn:
        return await self._monitor.track(
            "continue_classification", lambda: self._continue_turn(turn_ref, message)
        )

    def get_stats(self) -> Dict[str, Any]:
        """Сводка задержек по операциям за последнее окно."""
        return self._monitor.get_stats()

    async def _start(self, description: str) -> ModelTurn:
        payload = self._base_payload(self._conf.max_output_tokens_start)
        payload["input"] = [
            {"role": "system", "content": PROMPT_SYSTEM_INSTRUCTIONS},
            {"role": "user", "content": description},
        ]
        if self._tools:
            payload["tools"] = self._tools
            payload["parallel_tool_calls"] = True

        logger.info("Starting classification (%d chars)", len(description))
        data = await self._create_response(payload)
        data = await self._resolve_tool_calls(data)

        logger.info("Classification turn %s", data["id"])
        return ModelTurn(turn_ref=data["id"], text=extract_output_text(data))

    async def _continue_turn(self, turn_ref: str, message: str) -> ModelTurn:
        # Инструменты на продолжении не объявляем: хватает контекста диалога
        payload = self._base_payload(self._conf.max_output_tokens_continue)
        payload["input"] = [{"role": "user", "content": message}]
        payload["previous_response_id"] = turn_ref

        logger.info("Continuing classification from turn %s", turn_ref)
        data = await self._create_response(payload)
        data = await self._resolve_tool_calls(data)

        logger.info("Classification turn %s", data["id"])
        return ModelTurn(turn_ref=data["id"], text=extract_output_text(data))
