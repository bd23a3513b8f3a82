# tariff_classifier/scripts/load_hts_codes.py
"""Загрузка справочника HTS из xlsx/csv выгрузки в БД."""
from __future__ import annotations

import argparse
import logging

from tariff_classifier.io.db_io import load_codes_from_table
from tariff_classifier.scripts.common import build_code_store

logger = logging.getLogger(__name__)


def main() -> int:
    logging.basicConfig(level=logging.INFO)

    parser = argparse.ArgumentParser(description="Load an HTS export into the reference database")
    parser.add_argument("path", help="Path to .xlsx or .csv export with hts_code/description columns")
    parser.add_argument("--sheet", default=0, help="Excel sheet name or index")
    args = parser.parse_args()

    sheet = int(args.sheet) if str(args.sheet).isdigit() else args.sheet
    store = build_code_store()
    added = load_codes_from_table(store, args.path, sheet_name=sheet)

    logger.info("Done: %d new codes", added)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
