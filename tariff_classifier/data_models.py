# tariff_classifier/data_models.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union


@dataclass(frozen=True)
class ProductQuery:
    """
    Входной запрос: свободное текстовое описание товара.
    Живёт только в рамках одного запроса.
    """
    description: str

    def __post_init__(self) -> None:
        if not isinstance(self.description, str) or not self.description.strip():
            raise ValueError("Product description must be a non-empty string")


@dataclass(frozen=True)
class ClassificationCode:
    """
    10-значный код HTS: heading(4) + subheading(2) + tariff(2) + statistical(2).

    Формы "1234.56.78.90" и "1234567890" эквивалентны.
    """
    digits: str

    @classmethod
    def parse(cls, raw: str) -> Optional["ClassificationCode"]:
        """
        Возвращает код или None, если после удаления точек это не ровно 10 цифр.
        """
        if not isinstance(raw, str):
            return None
        clean = raw.strip().replace(".", "")
        # str.isdigit() пропускает не-ASCII цифры вроде "١", поэтому проверяем явно
        if len(clean) != 10 or not all("0" <= ch <= "9" for ch in clean):
            return None
        return cls(digits=clean)

    @property
    def dotted(self) -> str:
        d = self.digits
        return f"{d[0:4]}.{d[4:6]}.{d[6:8]}.{d[8:10]}"

    @property
    def undotted(self) -> str:
        return self.digits

    @property
    def heading(self) -> str:
        return self.digits[:4]

    @property
    def subheading(self) -> str:
        return self.digits[:6]

    def variants(self) -> List[str]:
        return [self.dotted, self.undotted]

    def __str__(self) -> str:
        return self.dotted


@dataclass(frozen=True)
class CodeRecord:
    """
    Запись справочника HTS. Принадлежит CodeRepository, снаружи только читается.
    """
    code: str
    description: str
    full_description: Optional[str] = None
    context_path: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hts_code": self.code,
            "description": self.description,
            "full_description": self.full_description,
            "context_path": self.context_path,
        }


# ---------- Ответ модели (tagged union) ----------


@dataclass(frozen=True)
class QuestionOption:
    key: str
    label: str


@dataclass(frozen=True)
class QuestionResponse:
    """Модели не хватает данных, она задаёт уточняющий вопрос."""
    prompt: str
    rationale: str
    options: List[QuestionOption]
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)


@dataclass(frozen=True)
class ClassificationResponse:
    """
    Модель предлагает код.
    code: строка как её вернула модель, формат проверяет CodeRepository.
    """
    code: str
    rationale: str
    confidence_label: str
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)


@dataclass(frozen=True)
class ExtractionError:
    """Ответ модели не удалось привести ни к одному из вариантов."""
    reason: str
    raw_text: str = field(default="", repr=False)


StructuredResponse = Union[QuestionResponse, ClassificationResponse]


# ---------- Результат валидации ----------


class InvalidReason(str, Enum):
    MALFORMED = "MALFORMED"
    NOT_FOUND = "NOT_FOUND"
    LOOKUP_ERROR = "LOOKUP_ERROR"


@dataclass(frozen=True)
class ValidCode:
    record: CodeRecord


@dataclass(frozen=True)
class InvalidCode:
    """
    candidates заполняется только при NOT_FOUND, когда в справочнике есть коды
    с тем же 6-значным префиксом. Пустой список при NOT_FOUND означает,
    что неверен сам субхединг.
    """
    reason: InvalidReason
    submitted_code: str
    subheading: Optional[str] = None
    candidates: List[CodeRecord] = field(default_factory=list)
    cause: Optional[str] = None


ValidationOutcome = Union[ValidCode, InvalidCode]


# ---------- Состояние диалога ----------


@dataclass(frozen=True)
class SessionEntry:
    original_description: str
    latest_turn_ref: str


@dataclass(frozen=True)
class SessionStatus:
    session_id: str
    original_description: str
    has_active_conversation: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "productDescription": self.original_description,
            "hasActiveConversation": self.has_active_conversation,
        }


@dataclass(frozen=True)
class ModelTurn:
    """Один ход reasoning-сервиса: новая ссылка на ход и итоговый текст."""
    turn_ref: str
    text: str


# ---------- Результат для вызывающего слоя ----------


class ErrorKind(str, Enum):
    INVALID_INPUT = "INVALID_INPUT"
    EXTRACTION_ERROR = "EXTRACTION_ERROR"
    LOOKUP_ERROR = "LOOKUP_ERROR"
    SERVICE_ERROR = "SERVICE_ERROR"
    SESSION_NOT_FOUND = "SESSION_NOT_FOUND"


@dataclass
class QuestionResult:
    prompt: str
    options: List[QuestionOption]
    turn_ref: str
    rationale: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": "question",
            "prompt": self.prompt,
            "options": [{"key": o.key, "label": o.label} for o in self.options],
            "turnRef": self.turn_ref,
        }


@dataclass
class ClassificationResult:
    """
    Итоговая классификация.

    validated=True: код найден в справочнике, description взят из записи.
    validated=False: код так и не подтвердился после раунда коррекции.
    """
    code: str
    description: Optional[str]
    confidence_label: str
    validated: bool
    turn_ref: str
    rationale: str = ""
    record: Optional[CodeRecord] = None
    corrected: bool = False  # код получен после раунда коррекции

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": "classification",
            "code": self.code,
            "description": self.description,
            "confidenceLabel": self.confidence_label,
            "validated": self.validated,
        }


@dataclass
class ErrorResult:
    kind: ErrorKind
    reason: str
    turn_ref: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"type": "error", "reason": self.reason}


Result = Union[QuestionResult, ClassificationResult, ErrorResult]
