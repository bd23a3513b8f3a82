# tariff_classifier/classifier/response_parser.py
from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, List, Optional, Tuple, Union

from tariff_classifier.data_models import (
    ClassificationResponse,
    ExtractionError,
    QuestionOption,
    QuestionResponse,
    StructuredResponse,
)

logger = logging.getLogger(__name__)

DISCRIMINANT = "responseType"
QUESTION_TYPE = "question"
CLASSIFICATION_TYPE = "classification"

_FENCE_RE = re.compile(r"```[a-zA-Z]*")


def extract_first_json_object(text: str) -> Optional[str]:
    """
    Первый сбалансированный {...} в тексте. Скобки внутри строк не считаются.

    Один проход со стеком открытых скобок: из закрытых пар берётся пара
    с самым ранним началом, незакрытые скобки просто остаются в стеке.
    """
    open_positions: List[int] = []
    best: Optional[Tuple[int, int]] = None
    in_string = False
    escaped = False
    for i, ch in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == "{":
            open_positions.append(i)
        elif not open_positions:
            # текст вне объектов: кавычки и "}" здесь ничего не значат
            continue
        elif ch == '"':
            in_string = True
        elif ch == "}":
            start = open_positions.pop()
            if best is None or start < best[0]:
                best = (start, i)
            if not open_positions:
                # раньше этой пары ничего не начнётся
                break
    if best is None:
        return None
    return text[best[0] : best[1] + 1]


def _require_str(doc: Dict[str, Any], key: str) -> str:
    value = doc.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"field '{key}' must be a non-empty string")
    return value.strip()


def _decode_options(raw_options: Any) -> List[QuestionOption]:
    if not isinstance(raw_options, list) or not raw_options:
        raise ValueError("field 'options' must be a non-empty list")
    options: List[QuestionOption] = []
    for idx, item in enumerate(raw_options):
        if not isinstance(item, dict):
            raise ValueError(f"option {idx} is not an object")
        try:
            options.append(QuestionOption(key=_require_str(item, "key"), label=_require_str(item, "value")))
        except ValueError as exc:
            raise ValueError(f"option {idx}: {exc}") from exc
    return options


def _decode_confidence(value: Any) -> str:
    # bool является подклассом int, его не принимаем
    if isinstance(value, bool):
        raise ValueError("field 'confidence' must be a string or a number")
    if isinstance(value, int):
        return f"{value}%"
    if isinstance(value, float):
        return f"{value:g}%"
    if isinstance(value, str) and value.strip():
        return value.strip()
    raise ValueError("field 'confidence' must be a string or a number")


class ResponseParser:
    """
    Разбор ответа модели в QuestionResponse / ClassificationResponse.

    Метод extract тотален: на любой вход возвращает либо вариант ответа,
    либо ExtractionError, и никогда не бросает исключений.
    """

    def extract(self, raw_text: Any) -> Union[StructuredResponse, ExtractionError]:
        if not isinstance(raw_text, str):
            return ExtractionError(reason="model output is not text")
        if not raw_text.strip():
            return ExtractionError(reason="model output is empty", raw_text=raw_text)

        # 1) основной путь: весь текст является JSON-документом
        doc = self._loads_object(raw_text)

        # 2) запасной путь: убрать ``` и взять первый {...}
        if doc is None:
            stripped = _FENCE_RE.sub("", raw_text)
            span = extract_first_json_object(stripped)
            if span is not None:
                doc = self._loads_object(span)

        if doc is None:
            logger.warning("No JSON object found in model output (%d chars)", len(raw_text))
            return ExtractionError(reason="no JSON object found in model output", raw_text=raw_text)

        try:
            return self._decode(doc)
        except ValueError as exc:
            logger.warning("Model output does not match the response contract: %s", exc)
            return ExtractionError(reason=str(exc), raw_text=raw_text)

    @staticmethod
    def _loads_object(text: str) -> Optional[Dict[str, Any]]:
        try:
            doc = json.loads(text)
        except (ValueError, RecursionError):
            return None
        return doc if isinstance(doc, dict) else None

    def _decode(self, doc: Dict[str, Any]) -> StructuredResponse:
        response_type = doc.get(DISCRIMINANT)

        if response_type == QUESTION_TYPE:
            return QuestionResponse(
                prompt=_require_str(doc, "question"),
                rationale=_require_str(doc, "explanation"),
                options=_decode_options(doc.get("options")),
                raw=doc,
            )

        if response_type == CLASSIFICATION_TYPE:
            return ClassificationResponse(
                code=_require_str(doc, "htsCode"),
                rationale=_require_str(doc, "explanation"),
                confidence_label=_decode_confidence(doc.get("confidence")),
                raw=doc,
            )

        raise ValueError(f"unknown or missing '{DISCRIMINANT}': {response_type!r}")

    def serialize(self, response: StructuredResponse) -> str:
        """
        Обратная операция к extract: вариант -> канонический JSON.
        """
        if isinstance(response, QuestionResponse):
            doc: Dict[str, Any] = {
                DISCRIMINANT: QUESTION_TYPE,
                "question": response.prompt,
                "explanation": response.rationale,
                "options": [{"key": o.key, "value": o.label} for o in response.options],
            }
        elif isinstance(response, ClassificationResponse):
            doc = {
                DISCRIMINANT: CLASSIFICATION_TYPE,
                "htsCode": response.code,
                "confidence": response.confidence_label,
                "explanation": response.rationale,
            }
        else:
            raise TypeError(f"Cannot serialize {type(response).__name__}")
        return json.dumps(doc, ensure_ascii=False)
