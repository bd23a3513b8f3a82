# tariff_classifier/io/db_io.py
from __future__ import annotations

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional, Sequence

import pandas as pd
from sqlalchemy import Column, Integer, String, Text, create_engine, or_
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from tariff_classifier.data_models import ClassificationCode, CodeRecord

logger = logging.getLogger(__name__)

Base = declarative_base()


class HtsCodeDB(Base):
    __tablename__ = "hts_codes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    # code храним в точечной форме "0804.50.40.00", digits без точек
    code = Column(String(13), nullable=False, unique=True, index=True)
    digits = Column(String(10), nullable=False, unique=True, index=True)
    heading = Column(String(4), nullable=False, index=True)
    subheading = Column(String(6), nullable=False, index=True)
    description = Column(Text, nullable=False)
    full_description = Column(Text, nullable=True)
    context_path = Column(Text, nullable=True)


def create_db_engine(database_url: str) -> Engine:
    """
    Создаёт engine. Для in-memory SQLite нужен StaticPool и отключённая проверка
    потока: запросы выполняются из asyncio.to_thread.
    """
    if database_url.startswith("sqlite"):
        if ":memory:" in database_url or database_url.rstrip("/") == "sqlite:":
            return create_engine(
                database_url,
                future=True,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        db_path = database_url.split("///", 1)[-1]
        if db_path:
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        return create_engine(database_url, future=True, connect_args={"check_same_thread": False})
    return create_engine(database_url, future=True, pool_pre_ping=True)


def init_schema(engine: Engine) -> None:
    Base.metadata.create_all(engine)


def record_from_row(row: HtsCodeDB) -> CodeRecord:
    """
    Маппит ORM-модель HtsCodeDB в доменный CodeRecord.
    """
    return CodeRecord(
        code=row.code,
        description=row.description or "",
        full_description=row.full_description,
        context_path=row.context_path,
    )


class SqlCodeStore:
    """
    Хранилище справочника поверх SQLAlchemy.

    Методы синхронные; CodeRepository вызывает их через asyncio.to_thread.
    Ошибки SQLAlchemy не перехватываются: их классифицирует репозиторий.
    """

    def __init__(self, engine: Engine) -> None:
        self._engine = engine
        self._session_factory = sessionmaker(
            bind=engine, autoflush=False, autocommit=False, expire_on_commit=False
        )

    @contextmanager
    def get_session(self) -> Iterator[Session]:
        session: Session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def find_exact(self, variants: Sequence[str]) -> Optional[CodeRecord]:
        with self.get_session() as session:
            row = (
                session.query(HtsCodeDB)
                .filter(or_(HtsCodeDB.code.in_(variants), HtsCodeDB.digits.in_(variants)))
                .first()
            )
            return record_from_row(row) if row is not None else None

    def find_by_subheading(self, subheading: str, limit: int) -> List[CodeRecord]:
        with self.get_session() as session:
            rows = (
                session.query(HtsCodeDB)
                .filter(HtsCodeDB.subheading == subheading)
                .order_by(HtsCodeDB.digits.asc())
                .limit(limit)
                .all()
            )
            return [record_from_row(r) for r in rows]

    def find_by_heading(self, heading: str, limit: int) -> List[CodeRecord]:
        with self.get_session() as session:
            rows = (
                session.query(HtsCodeDB)
                .filter(HtsCodeDB.heading == heading)
                .order_by(HtsCodeDB.digits.asc())
                .limit(limit)
                .all()
            )
            return [record_from_row(r) for r in rows]

    def add_records(self, records: Sequence[CodeRecord]) -> int:
        """
        Добавляет записи, пропуская коды, которые уже есть в таблице.
        Коды неверного формата пропускаются.
        """
        added = 0
        with self.get_session() as session:
            existing = {d for (d,) in session.query(HtsCodeDB.digits).all()}
            for rec in records:
                parsed = ClassificationCode.parse(rec.code)
                if parsed is None or parsed.digits in existing:
                    continue
                session.add(
                    HtsCodeDB(
                        code=parsed.dotted,
                        digits=parsed.digits,
                        heading=parsed.heading,
                        subheading=parsed.subheading,
                        description=rec.description,
                        full_description=rec.full_description,
                        context_path=rec.context_path,
                    )
                )
                existing.add(parsed.digits)
                added += 1
        return added


# ---------- Загрузка справочника из выгрузки ----------

COLUMN_MAPPING = {
    "hts_code": "code",
    "HTS Number": "code",
    "htsno": "code",
    "description": "description",
    "Description": "description",
    "full_description": "full_description",
    "context_path": "context_path",
}


def _clean_value(value: object) -> Optional[str]:
    if value is None:
        return None
    s = str(value).strip()
    # из pandas/Excel часто прилетает строка "nan"
    if not s or s.lower() == "nan":
        return None
    return s


def read_code_table(path: str, sheet_name: int | str = 0) -> tuple[List[CodeRecord], int]:
    """
    Читает выгрузку HTS (.xlsx или .csv) и возвращает (записи, число пропущенных строк).

    Строки с кодом не из 10 цифр (заголовки разделов, 8-значные строки)
    пропускаются.
    """
    if str(path).lower().endswith(".csv"):
        df = pd.read_csv(path, dtype=str)
    else:
        df = pd.read_excel(path, sheet_name=sheet_name, dtype=str)

    existing_mapping = {src: dst for src, dst in COLUMN_MAPPING.items() if src in df.columns}
    df = df.rename(columns=existing_mapping)
    missing = [c for c in ("code", "description") if c not in df.columns]
    if missing:
        raise ValueError(f"Missing columns in HTS table: {missing}")

    records: List[CodeRecord] = []
    skipped = 0
    for _, row in df.iterrows():
        parsed = ClassificationCode.parse(_clean_value(row.get("code")) or "")
        description = _clean_value(row.get("description"))
        if parsed is None or description is None:
            skipped += 1
            continue
        records.append(
            CodeRecord(
                code=parsed.dotted,
                description=description,
                full_description=_clean_value(row.get("full_description")),
                context_path=_clean_value(row.get("context_path")),
            )
        )
    return records, skipped


def load_codes_from_table(store: SqlCodeStore, path: str, sheet_name: int | str = 0) -> int:
    records, skipped = read_code_table(path, sheet_name=sheet_name)
    added = store.add_records(records)
    logger.info(
        "Loaded HTS table %s: %d rows read, %d added, %d skipped",
        path,
        len(records),
        added,
        skipped,
    )
    return added
