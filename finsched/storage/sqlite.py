"""
SQLite storage backends.

One ``SQLiteDatabase`` owns the connection and schema; the three store
classes are thin DAOs over it that map rows to domain objects.

Tables
------
- rules: recurrence rules; template and contract link stored as JSON
- records: generated records, ``UNIQUE(series_id, date)`` and ``UNIQUE(number)``
- known_years: the year index

SQLite treats NULLs as distinct in UNIQUE constraints, so standalone
records (``series_id IS NULL``) are never deduplicated by date.
"""

from __future__ import annotations

import json
import sqlite3
from datetime import date, datetime
from pathlib import Path
from typing import Iterable, List, Optional, Tuple, Union

from ..exceptions import RecordConflictError, RecordNotFoundError, SeriesNotFoundError
from ..logging import get_logger
from ..models import (
    DaySelection,
    GeneratedRecord,
    RecordDraft,
    RecordKind,
    RecurrenceRule,
    Schedule,
)
from ..serialization import (
    contract_ref_from_dict,
    contract_ref_to_dict,
    template_from_dict,
    template_to_dict,
)
from .memory import next_record_number

__all__ = [
    "SQLiteDatabase",
    "SQLiteRecordStore",
    "SQLiteRuleRegistry",
    "SQLiteYearIndex",
]

logger = get_logger(__name__)

_SCHEMA = """
    CREATE TABLE IF NOT EXISTS rules (
        id                  TEXT PRIMARY KEY,
        kind                TEXT NOT NULL CHECK(kind IN ('INCOME','EXPENSE')),
        name                TEXT NOT NULL DEFAULT '',
        periodicity         TEXT NOT NULL,
        day_policy          TEXT NOT NULL,
        specific_day        INTEGER,
        start_date          TEXT NOT NULL,
        end_date            TEXT,
        template            TEXT NOT NULL,
        last_year_generated INTEGER,
        total_generated     INTEGER NOT NULL DEFAULT 0,
        contract_ref        TEXT,
        created_at          TEXT,
        updated_at          TEXT
    );

    CREATE TABLE IF NOT EXISTS records (
        id                  INTEGER PRIMARY KEY AUTOINCREMENT,
        kind                TEXT NOT NULL CHECK(kind IN ('INCOME','EXPENSE')),
        date                TEXT NOT NULL,
        number              TEXT UNIQUE,
        concept             TEXT NOT NULL,
        base_amount         REAL NOT NULL DEFAULT 0.0,
        vat_rate            REAL NOT NULL DEFAULT 0.0,
        vat_amount          REAL NOT NULL DEFAULT 0.0,
        withholding_rate    REAL NOT NULL DEFAULT 0.0,
        withholding_amount  REAL NOT NULL DEFAULT 0.0,
        total               REAL NOT NULL DEFAULT 0.0,
        counterparty_name   TEXT NOT NULL DEFAULT '',
        counterparty_tax_id TEXT NOT NULL DEFAULT '',
        category            TEXT NOT NULL DEFAULT '',
        description         TEXT NOT NULL DEFAULT '',
        status              TEXT NOT NULL DEFAULT 'PENDING',
        series_id           TEXT REFERENCES rules(id) ON DELETE SET NULL,
        extra               TEXT NOT NULL DEFAULT '{}',
        UNIQUE(series_id, date)
    );

    CREATE INDEX IF NOT EXISTS idx_records_series ON records(series_id);
    CREATE INDEX IF NOT EXISTS idx_records_date   ON records(date);

    CREATE TABLE IF NOT EXISTS known_years (
        year INTEGER PRIMARY KEY
    );
"""

_RECORD_COLUMNS = (
    "kind", "date", "number", "concept", "base_amount", "vat_rate", "vat_amount",
    "withholding_rate", "withholding_amount", "total", "counterparty_name",
    "counterparty_tax_id", "category", "description", "status", "series_id", "extra",
)


class SQLiteDatabase:
    """
    Connection owner and schema manager.

    Parameters
    ----------
    db_path : str or Path
        Database file, or ``":memory:"``. Parent directories are created.
    """

    def __init__(self, db_path: Union[str, Path] = ":memory:"):
        self.db_path = str(db_path)
        self._conn: Optional[sqlite3.Connection] = None

    def get_connection(self) -> sqlite3.Connection:
        if self._conn is None:
            if self.db_path != ":memory:":
                Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA foreign_keys = ON")
            self._conn.execute("PRAGMA journal_mode = WAL")
        return self._conn

    def initialize(self) -> "SQLiteDatabase":
        """Create the schema if missing."""
        conn = self.get_connection()
        conn.executescript(_SCHEMA)
        conn.commit()
        logger.debug("sqlite_initialized", db_path=self.db_path)
        return self

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def records(self) -> "SQLiteRecordStore":
        return SQLiteRecordStore(self)

    def rules(self) -> "SQLiteRuleRegistry":
        return SQLiteRuleRegistry(self)

    def year_index(self) -> "SQLiteYearIndex":
        return SQLiteYearIndex(self)


def _opt_date(value: Optional[str]) -> Optional[date]:
    return date.fromisoformat(value) if value else None


def _opt_datetime(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _year_range(year: int):
    return f"{year:04d}-01-01", f"{year:04d}-12-31"


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

class SQLiteRecordStore:
    def __init__(self, db: SQLiteDatabase):
        self._db = db

    def _row_to_model(self, row) -> GeneratedRecord:
        return GeneratedRecord(
            id=row["id"],
            kind=RecordKind(row["kind"]),
            date=date.fromisoformat(row["date"]),
            number=row["number"],
            concept=row["concept"],
            base_amount=row["base_amount"],
            vat_rate=row["vat_rate"],
            vat_amount=row["vat_amount"],
            withholding_rate=row["withholding_rate"],
            withholding_amount=row["withholding_amount"],
            total=row["total"],
            counterparty_name=row["counterparty_name"],
            counterparty_tax_id=row["counterparty_tax_id"],
            category=row["category"],
            description=row["description"],
            status=row["status"],
            series_id=row["series_id"],
            extra=json.loads(row["extra"] or "{}"),
        )

    def _values(self, item: Union[RecordDraft, GeneratedRecord], number: Optional[str]) -> tuple:
        return (
            item.kind.value, item.date.isoformat(), number, item.concept,
            item.base_amount, item.vat_rate, item.vat_amount,
            item.withholding_rate, item.withholding_amount, item.total,
            item.counterparty_name, item.counterparty_tax_id, item.category,
            item.description, item.status, item.series_id,
            json.dumps(dict(item.extra), ensure_ascii=False),
        )

    def _next_number(self, conn: sqlite3.Connection, year: int) -> str:
        rows = conn.execute(
            "SELECT number FROM records WHERE kind = 'INCOME' AND number LIKE ?",
            (f"{year:04d}-%",),
        ).fetchall()
        return next_record_number(year, (r["number"] for r in rows))

    def create(self, draft: RecordDraft) -> GeneratedRecord:
        return self.create_or_get(draft)[0]

    def create_or_get(self, draft: RecordDraft) -> Tuple[GeneratedRecord, bool]:
        if draft.series_id is not None:
            existing = self.find_by_series_and_date(draft.series_id, draft.date)
            if existing is not None:
                return existing, False

        conn = self._db.get_connection()
        number = self._next_number(conn, draft.date.year) if draft.kind is RecordKind.INCOME else None
        placeholders = ", ".join("?" for _ in _RECORD_COLUMNS)
        try:
            cursor = conn.execute(
                f"INSERT INTO records ({', '.join(_RECORD_COLUMNS)}) VALUES ({placeholders})",
                self._values(draft, number),
            )
        except sqlite3.IntegrityError as exc:
            conn.rollback()
            message = str(exc)
            if "records.series_id" in message and draft.series_id is not None:
                existing = self.find_by_series_and_date(draft.series_id, draft.date)
                if existing is not None:
                    return existing, False
            if "records.number" in message:
                raise RecordConflictError(f"record number {number} already in use") from exc
            raise
        conn.commit()
        return self.get(cursor.lastrowid), True

    def get(self, record_id: int) -> Optional[GeneratedRecord]:
        row = self._db.get_connection().execute(
            "SELECT * FROM records WHERE id = ?", (record_id,)
        ).fetchone()
        return self._row_to_model(row) if row else None

    def update(self, record: GeneratedRecord) -> GeneratedRecord:
        conn = self._db.get_connection()
        assignments = ", ".join(f"{c} = ?" for c in _RECORD_COLUMNS)
        try:
            cursor = conn.execute(
                f"UPDATE records SET {assignments} WHERE id = ?",
                self._values(record, record.number) + (record.id,),
            )
        except sqlite3.IntegrityError as exc:
            conn.rollback()
            raise RecordConflictError(str(exc)) from exc
        if cursor.rowcount == 0:
            conn.rollback()
            raise RecordNotFoundError(f"record {record.id} not found")
        conn.commit()
        return self.get(record.id)

    def _execute_count(self, sql: str, params: tuple) -> int:
        conn = self._db.get_connection()
        cursor = conn.execute(sql, params)
        conn.commit()
        return cursor.rowcount

    def delete(self, record_id: int) -> bool:
        return self._execute_count("DELETE FROM records WHERE id = ?", (record_id,)) > 0

    def list_all(self) -> List[GeneratedRecord]:
        rows = self._db.get_connection().execute(
            "SELECT * FROM records ORDER BY date, id"
        ).fetchall()
        return [self._row_to_model(r) for r in rows]

    def list_by_series(self, series_id: str) -> List[GeneratedRecord]:
        rows = self._db.get_connection().execute(
            "SELECT * FROM records WHERE series_id = ? ORDER BY date, id", (series_id,)
        ).fetchall()
        return [self._row_to_model(r) for r in rows]

    def find_by_series_and_date(self, series_id: str, on: date) -> Optional[GeneratedRecord]:
        row = self._db.get_connection().execute(
            "SELECT * FROM records WHERE series_id = ? AND date = ?",
            (series_id, on.isoformat()),
        ).fetchone()
        return self._row_to_model(row) if row else None

    def list_by_year(self, year: int, kind: Optional[RecordKind] = None) -> List[GeneratedRecord]:
        start, end = _year_range(year)
        sql = "SELECT * FROM records WHERE date BETWEEN ? AND ?"
        params: tuple = (start, end)
        if kind is not None:
            sql += " AND kind = ?"
            params += (RecordKind(kind).value,)
        rows = self._db.get_connection().execute(sql + " ORDER BY date, id", params).fetchall()
        return [self._row_to_model(r) for r in rows]

    def delete_by_series(self, series_id: str) -> int:
        return self._execute_count("DELETE FROM records WHERE series_id = ?", (series_id,))

    def delete_by_year(self, year: int) -> int:
        return self._execute_count(
            "DELETE FROM records WHERE date BETWEEN ? AND ?", _year_range(year)
        )

    def detach_series(self, series_id: str) -> int:
        return self._execute_count(
            "UPDATE records SET series_id = NULL WHERE series_id = ?", (series_id,)
        )

    def count_by_series(self, series_id: str) -> int:
        row = self._db.get_connection().execute(
            "SELECT COUNT(*) AS n FROM records WHERE series_id = ?", (series_id,)
        ).fetchone()
        return int(row["n"])

    def years(self) -> List[int]:
        rows = self._db.get_connection().execute(
            "SELECT DISTINCT CAST(substr(date, 1, 4) AS INTEGER) AS y FROM records ORDER BY y"
        ).fetchall()
        return [int(r["y"]) for r in rows]


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------

class SQLiteRuleRegistry:
    def __init__(self, db: SQLiteDatabase):
        self._db = db

    def _row_to_model(self, row) -> RecurrenceRule:
        schedule = Schedule(
            periodicity=row["periodicity"],
            day_selection=DaySelection(row["day_policy"], row["specific_day"]),
            start_date=date.fromisoformat(row["start_date"]),
            end_date=_opt_date(row["end_date"]),
        )
        contract = json.loads(row["contract_ref"]) if row["contract_ref"] else None
        return RecurrenceRule(
            id=row["id"],
            kind=RecordKind(row["kind"]),
            name=row["name"],
            schedule=schedule,
            template=template_from_dict(json.loads(row["template"])),
            last_year_generated=row["last_year_generated"],
            total_generated=row["total_generated"],
            contract_ref=contract_ref_from_dict(contract),
            created_at=_opt_datetime(row["created_at"]),
            updated_at=_opt_datetime(row["updated_at"]),
        )

    def _values(self, rule: RecurrenceRule) -> tuple:
        s = rule.schedule
        contract = contract_ref_to_dict(rule.contract_ref)
        return (
            rule.kind.value, rule.name, s.periodicity.value, s.day_selection.policy.value,
            s.day_selection.day, s.start_date.isoformat(),
            s.end_date.isoformat() if s.end_date else None,
            json.dumps(template_to_dict(rule.template), ensure_ascii=False),
            rule.last_year_generated, rule.total_generated,
            json.dumps(contract, ensure_ascii=False) if contract is not None else None,
            rule.created_at.isoformat() if rule.created_at else None,
            rule.updated_at.isoformat() if rule.updated_at else None,
        )

    def add(self, rule: RecurrenceRule) -> RecurrenceRule:
        conn = self._db.get_connection()
        try:
            conn.execute(
                """INSERT INTO rules
                   (kind, name, periodicity, day_policy, specific_day, start_date,
                    end_date, template, last_year_generated, total_generated,
                    contract_ref, created_at, updated_at, id)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                self._values(rule) + (rule.id,),
            )
        except sqlite3.IntegrityError as exc:
            conn.rollback()
            raise RecordConflictError(f"series {rule.id} already exists") from exc
        conn.commit()
        return self.get(rule.id)

    def get(self, rule_id: str) -> Optional[RecurrenceRule]:
        row = self._db.get_connection().execute(
            "SELECT * FROM rules WHERE id = ?", (rule_id,)
        ).fetchone()
        return self._row_to_model(row) if row else None

    def list(self, kind: Optional[RecordKind] = None) -> List[RecurrenceRule]:
        sql = "SELECT * FROM rules"
        params: tuple = ()
        if kind is not None:
            sql += " WHERE kind = ?"
            params = (RecordKind(kind).value,)
        rows = self._db.get_connection().execute(
            sql + " ORDER BY start_date, name, id", params
        ).fetchall()
        return [self._row_to_model(r) for r in rows]

    def update(self, rule: RecurrenceRule) -> RecurrenceRule:
        conn = self._db.get_connection()
        cursor = conn.execute(
            """UPDATE rules SET
               kind=?, name=?, periodicity=?, day_policy=?, specific_day=?,
               start_date=?, end_date=?, template=?, last_year_generated=?,
               total_generated=?, contract_ref=?, created_at=?, updated_at=?
               WHERE id=?""",
            self._values(rule) + (rule.id,),
        )
        if cursor.rowcount == 0:
            conn.rollback()
            raise SeriesNotFoundError(f"series {rule.id} not found")
        conn.commit()
        return self.get(rule.id)

    def remove(self, rule_id: str) -> bool:
        conn = self._db.get_connection()
        cursor = conn.execute("DELETE FROM rules WHERE id = ?", (rule_id,))
        conn.commit()
        return cursor.rowcount > 0

    def _set_field(self, rule_id: str, column: str, value) -> None:
        conn = self._db.get_connection()
        cursor = conn.execute(f"UPDATE rules SET {column} = ? WHERE id = ?", (value, rule_id))
        if cursor.rowcount == 0:
            conn.rollback()
            raise SeriesNotFoundError(f"series {rule_id} not found")
        conn.commit()

    def set_last_year_generated(self, rule_id: str, year: Optional[int]) -> None:
        self._set_field(rule_id, "last_year_generated", year)

    def set_total_generated(self, rule_id: str, total: int) -> None:
        self._set_field(rule_id, "total_generated", total)


# ---------------------------------------------------------------------------
# Year index
# ---------------------------------------------------------------------------

class SQLiteYearIndex:
    def __init__(self, db: SQLiteDatabase):
        self._db = db

    def years(self) -> List[int]:
        rows = self._db.get_connection().execute(
            "SELECT year FROM known_years ORDER BY year"
        ).fetchall()
        return [int(r["year"]) for r in rows]

    def add(self, year: int) -> None:
        self.extend([year])

    def extend(self, years: Iterable[int]) -> None:
        conn = self._db.get_connection()
        conn.executemany(
            "INSERT OR IGNORE INTO known_years (year) VALUES (?)", [(int(y),) for y in years]
        )
        conn.commit()

    def remove(self, year: int) -> None:
        conn = self._db.get_connection()
        conn.execute("DELETE FROM known_years WHERE year = ?", (int(year),))
        conn.commit()
