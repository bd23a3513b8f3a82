# tariff_classifier/classifier/prompt_builder.py
from __future__ import annotations

from dataclasses import dataclass
from typing import List

from tariff_classifier.data_models import (
    ClassificationResponse,
    CodeRecord,
    InvalidCode,
    InvalidReason,
)


PROMPT_OUTPUT_FORMAT = r"""
All responses MUST be a single valid JSON object matching exactly one of these two schemas.

1) QUESTION (when you need more information):
{
  "responseType": "question",
  "question": "Single, specific question asking for the most critical detail",
  "explanation": "Why this detail matters for the classification",
  "options": [
    {"key": "A", "value": "First specific option"},
    {"key": "B", "value": "Second alternative option"}
  ]
}

2) CLASSIFICATION (when confident enough to classify):
{
  "responseType": "classification",
  "htsCode": "1234.56.78.90",
  "confidence": "95%",
  "explanation": "How you arrived at this code and which alternatives you ruled out"
}

No text outside the JSON object.
""".strip()


PROMPT_SYSTEM_INSTRUCTIONS = f"""
You are an experienced US customs broker classifying products in the Harmonized Tariff Schedule (HTS).

Your task:
1) Read the product description.
2) If a detail that changes the classification is missing, ask ONE question at a time,
   most critical detail first: material, then primary use, then specific details.
3) When confident, give a complete 10-digit HTS code in the format XXXX.XX.XX.XX.
4) Use lookup_by_heading / lookup_by_subheading to see the real codes in the database
   and validate_hts_code to check the final code before answering.
5) Do NOT invent codes. A code that does not exist in the database will be rejected.

{PROMPT_OUTPUT_FORMAT}
""".strip()


CORRECTION_REQUIREMENTS = """
Requirements:
- Must be exactly 10 digits in format XXXX.XX.XX.XX
- Must exist in the official HTS database
- Provide your corrected classification using the same JSON schema
""".strip()


ANSWER_SUFFIX = """
Please respond with the same JSON format as before:
- Use "question" responseType if you need more information
- Use "classification" responseType if ready to provide the final HTS classification
""".strip()


@dataclass
class PromptBuilder:
    """
    Строитель сообщений, которые уходят в продолжение диалога.

    Три шаблона коррекции намеренно разные:
    - кандидаты есть: субхединг верный, ошибка в хвосте кода;
    - кандидатов нет: неверна сама категория;
    - код не из 10 цифр: нарушен формат.
    """

    def build_candidates_block(self, candidates: List[CodeRecord]) -> str:
        lines = []
        for index, option in enumerate(candidates, start=1):
            block = f"{index}. {option.code} - {option.description}"
            if option.full_description:
                block += f"\n   Full: {option.full_description}"
            if option.context_path:
                block += f"\n   Context: {option.context_path}"
            lines.append(block)
        return "\n\n".join(lines)

    def build_correction_message(
        self, proposal: ClassificationResponse, outcome: InvalidCode
    ) -> str:
        header = (
            "VALIDATION FAILED for your classification.\n\n"
            f"ORIGINAL CLASSIFICATION: {proposal.code}\n"
        )

        if outcome.reason is InvalidReason.MALFORMED:
            body = (
                "VALIDATION ERROR: HTS code must be exactly 10 digits\n\n"
                f'The code "{proposal.code}" is not a structurally valid HTS code. '
                "Please provide a complete 10-digit code for this product."
            )
        elif outcome.candidates:
            body = (
                "VALIDATION ERROR: HTS code not found in official US HTS database\n\n"
                f"ANALYSIS: Your subheading classification ({outcome.subheading}) appears CORRECT, "
                "but the full code does not exist.\n\n"
                f"Found {len(outcome.candidates)} valid HTS codes under subheading {outcome.subheading}:\n\n"
                f"{self.build_candidates_block(outcome.candidates)}\n\n"
                "Please select the most appropriate HTS code from the above official options, "
                "or explain why a different subheading applies and classify under it."
            )
        else:
            body = (
                "VALIDATION ERROR: Subheading not found in official US HTS database\n\n"
                f"ANALYSIS: No valid codes exist under subheading {outcome.subheading}. "
                "The CATEGORY itself looks wrong, not only the last digits. "
                "Re-examine the chapter and heading for this product and provide a "
                "corrected 10-digit code that exists in the official database."
            )

        return f"{header}{body}\n\n{CORRECTION_REQUIREMENTS}\n\n{PROMPT_OUTPUT_FORMAT}"

    def build_answer_message(self, answer: str) -> str:
        """
        Ответ пользователя на уточняющий вопрос + напоминание о формате.
        """
        return f"{answer.strip()}\n\n{ANSWER_SUFFIX}"
