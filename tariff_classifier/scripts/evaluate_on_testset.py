# tariff_classifier/scripts/evaluate_on_testset.py
import argparse
import asyncio
import logging
from typing import List, Tuple

import pandas as pd

from tariff_classifier.data_models import ClassificationCode, ClassificationResult, ErrorResult
from tariff_classifier.scripts.common import build_classifier

logger = logging.getLogger(__name__)

TESTSET_PATH = "hts_testset.xlsx"


def load_testset(path: str = TESTSET_PATH) -> pd.DataFrame:
    if path.lower().endswith(".csv"):
        df = pd.read_csv(path, dtype=str)
    else:
        df = pd.read_excel(path, dtype=str)

    required_cols = ["description", "hts_code"]
    missing = [c for c in required_cols if c not in df.columns]
    if missing:
        raise ValueError(f"Missing columns in testset: {missing}")

    # Убираем строки без описания
    df = df[~df["description"].isna()]
    df["hts_code"] = df["hts_code"].fillna("")
    return df


def _digits(code: str) -> str:
    parsed = ClassificationCode.parse(code or "")
    return parsed.digits if parsed else ""


async def evaluate_on_testset(path: str = TESTSET_PATH, limit: int = 50) -> None:
    """
    Оценивает качество классификации на размеченной выборке.

    Вопросы модели не отвечаются: такие строки считаются отдельно.

    Считает:
    - точность по полному 10-значному коду;
    - точность по субхедингу (первые 6 цифр);
    - долю кодов, подтверждённых справочником;
    - долю ответов, полученных после раунда коррекции.
    """
    df = load_testset(path)
    n = min(limit, len(df))
    df = df.sample(n=n, random_state=24).reset_index(drop=True)

    service = build_classifier()

    total = 0
    exact = 0
    subheading_match = 0
    validated = 0
    corrected = 0
    questions = 0
    errors = 0

    # (true_code, pred_code, description, note)
    mismatches: List[Tuple[str, str, str, str]] = []

    for idx, row in df.iterrows():
        description = str(row["description"]).strip()
        if not description:
            continue

        print(f"Processing sample {idx + 1}/{len(df)}...")
        true_digits = _digits(str(row["hts_code"]))
        result = await service.classify(description)
        total += 1

        if isinstance(result, ErrorResult):
            errors += 1
            mismatches.append((str(row["hts_code"]), "", description, f"{result.kind.value}: {result.reason}"))
            continue
        if not isinstance(result, ClassificationResult):
            questions += 1
            continue

        pred_digits = _digits(result.code)
        validated += int(result.validated)
        corrected += int(result.corrected)
        if true_digits and pred_digits == true_digits:
            exact += 1
        else:
            mismatches.append((str(row["hts_code"]), result.code, description, result.rationale))
        if true_digits and pred_digits[:6] == true_digits[:6]:
            subheading_match += 1

    def share(value: int) -> float:
        return value / total if total else 0.0

    print(f"Total samples: {total}")
    print(f"Exact 10-digit accuracy: {share(exact):.3f}")
    print(f"Subheading accuracy: {share(subheading_match):.3f}")
    print(f"Validated by database: {share(validated):.3f}")
    print(f"Needed correction round: {share(corrected):.3f}")
    print(f"Stopped on a question: {share(questions):.3f}")
    print(f"Errors: {share(errors):.3f}")

    print("\nExamples of mismatches (up to 10):")
    for true_code, pred_code, description, note in mismatches[:10]:
        print("-" * 80)
        print(f"Product: {description}")
        print(f"TRUE code: {true_code} | PRED code: {pred_code}")
        print(f"Note: {note}")


def main() -> int:
    logging.basicConfig(level=logging.WARNING)
    parser = argparse.ArgumentParser(description="Evaluate HTS classification on a labelled testset")
    parser.add_argument("path", nargs="?", default=TESTSET_PATH)
    parser.add_argument("--limit", type=int, default=10)
    args = parser.parse_args()

    asyncio.run(evaluate_on_testset(args.path, limit=args.limit))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
