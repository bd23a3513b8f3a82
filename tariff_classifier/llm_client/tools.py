# tariff_classifier/llm_client/tools.py
from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from tariff_classifier.data_models import ValidCode
from tariff_classifier.io.code_repository import CodeRepository

logger = logging.getLogger(__name__)


FUNCTION_TOOLS: List[Dict[str, Any]] = [
    {
        "type": "function",
        "name": "lookup_by_heading",
        "description": (
            "Get all subheadings and codes under a 4-digit heading. "
            "Use for category exploration when confidence is 70-84%."
        ),
        "strict": True,
        "parameters": {
            "type": "object",
            "properties": {
                "heading": {
                    "type": "string",
                    "description": "4-digit heading code (e.g., '8504' for electrical transformers)",
                    "pattern": "^[0-9]{4}$",
                }
            },
            "required": ["heading"],
            "additionalProperties": False,
        },
    },
    {
        "type": "function",
        "name": "lookup_by_subheading",
        "description": (
            "Get complete 10-digit HTS codes under a 6-digit subheading. "
            "Use when confident (85%+) about specific subheading."
        ),
        "strict": True,
        "parameters": {
            "type": "object",
            "properties": {
                "subheading": {
                    "type": "string",
                    "description": "6-digit subheading code (e.g., '850440' for static converters)",
                    "pattern": "^[0-9]{6}$",
                }
            },
            "required": ["subheading"],
            "additionalProperties": False,
        },
    },
    {
        "type": "function",
        "name": "validate_hts_code",
        "description": "Validate a final HTS code against the official database before presenting it.",
        "strict": True,
        "parameters": {
            "type": "object",
            "properties": {
                "hts_code": {
                    "type": "string",
                    "description": "Complete 10-digit HTS code (e.g., '8504.40.95.10')",
                    "pattern": "^[0-9]{4}\\.?[0-9]{2}\\.?[0-9]{2}\\.?[0-9]{2}$",
                }
            },
            "required": ["hts_code"],
            "additionalProperties": False,
        },
    },
]

FUNCTION_TOOL_NAMES = {tool["name"] for tool in FUNCTION_TOOLS}

_HEADING_RE = re.compile(r"^[0-9]{4}$")
_SUBHEADING_RE = re.compile(r"^[0-9]{6}$")


def build_tool_declarations(
    vector_store_ids: Optional[List[str]] = None, max_num_results: int = 5
) -> List[Dict[str, Any]]:
    tools: List[Dict[str, Any]] = []
    if vector_store_ids:
        # file_search исполняется на стороне сервиса, нам его выполнять не нужно
        tools.append(
            {
                "type": "file_search",
                "vector_store_ids": list(vector_store_ids),
                "max_num_results": max_num_results,
            }
        )
    tools.extend(FUNCTION_TOOLS)
    return tools


class ToolExecutor:
    """
    Исполняет function calls модели поверх CodeRepository.

    Все вызовы только читают справочник, поэтому их можно гонять параллельно.
    Ошибка одного вызова не роняет ход: модель получает success=false.
    """

    def __init__(self, repository: CodeRepository) -> None:
        self._repository = repository

    async def execute(self, call: Dict[str, Any]) -> Dict[str, Any]:
        name = call.get("name", "")
        call_id = call.get("call_id", "")
        try:
            args = json.loads(call.get("arguments") or "{}")
            if not isinstance(args, dict):
                raise ValueError("arguments must be a JSON object")
            result = await self._dispatch(name, args)
        except (ValueError, KeyError, TypeError, SQLAlchemyError) as exc:
            logger.warning("Tool call %s (%s) failed: %s", name, call_id, exc)
            result = {"success": False, "error": f"Error executing {name}: {exc}"}

        return {
            "type": "function_call_output",
            "call_id": call_id,
            "output": json.dumps(result, ensure_ascii=False),
        }

    async def _dispatch(self, name: str, args: Dict[str, Any]) -> Dict[str, Any]:
        logger.info("Executing tool %s with %s", name, args)

        if name == "lookup_by_heading":
            heading = str(args["heading"]).strip()
            if not _HEADING_RE.match(heading):
                raise ValueError(f"heading must be 4 digits, got {heading!r}")
            records = await self._repository.lookup_by_heading(heading)
            return {
                "success": True,
                "data": [r.to_dict() for r in records],
                "message": f"Found {len(records)} codes for heading: {heading}",
            }

        if name == "lookup_by_subheading":
            subheading = str(args["subheading"]).strip().replace(".", "")
            if not _SUBHEADING_RE.match(subheading):
                raise ValueError(f"subheading must be 6 digits, got {subheading!r}")
            records = await self._repository.lookup_by_subheading(subheading)
            return {
                "success": True,
                "data": [r.to_dict() for r in records],
                "message": f"Found {len(records)} codes for subheading: {subheading}",
            }

        if name == "validate_hts_code":
            hts_code = str(args["hts_code"])
            outcome = await self._repository.validate(hts_code)
            if isinstance(outcome, ValidCode):
                return {
                    "success": True,
                    "data": {"isValid": True, "details": outcome.record.to_dict()},
                    "message": f"HTS code {hts_code} is valid",
                }
            return {
                "success": True,
                "data": {
                    "isValid": False,
                    "reason": outcome.reason.value,
                    "relatedCodes": [c.to_dict() for c in outcome.candidates],
                },
                "message": f"HTS code {hts_code} is NOT valid",
            }

        raise ValueError(f"Unknown function: {name}")
