# tariff_classifier/scripts/debug_one_product.py
import asyncio
import json
import logging
import sys

from tariff_classifier.data_models import QuestionResult
from tariff_classifier.scripts.common import build_conversation_service


async def main(description: str) -> None:
    service = build_conversation_service()

    session_id, result = await service.start(description)
    print("SESSION:", session_id)

    # Пока модель задаёт вопросы, отвечаем из консоли
    while isinstance(result, QuestionResult):
        print("QUESTION:", result.prompt)
        for option in result.options:
            print(f"  [{option.key}] {option.label}")
        answer = input("> ").strip()
        if not answer:
            break
        result = await service.answer(session_id, answer)

    print("RESULT:", json.dumps(result.to_dict(), ensure_ascii=False, indent=2))
    if session_id is not None:
        status = service.status(session_id)
        if status is not None:
            print("STATUS:", json.dumps(status.to_dict(), ensure_ascii=False))


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    product = " ".join(sys.argv[1:]) or "fresh mango"
    asyncio.run(main(product))
