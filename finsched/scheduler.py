"""
Scheduler facade.

Wires the registry, materializer, mutator and preview service over one
storage backend, and adds series creation (create the rule, then
materialize from its start year through the current year).

Example
-------
>>> from finsched.scheduler import Scheduler
>>> with Scheduler.open("finsched.db") as app:
...     created = app.create_series({
...         "kind": "EXPENSE",
...         "schedule": {"periodicity": "MONTHLY", "start_date": "2025-01-01"},
...         "template": {"concept": "Coworking", "base_amount": 150},
...     })
...     app.mutator.extend_year(2026)
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Any, Callable, Mapping, Optional, Union

from .config import AppSettings, RuleConfig, get_settings
from .materializer import Materializer, SpanResult
from .models import RecurrenceRule
from .mutator import SeriesMutator
from .preview import PreviewResult, PreviewService
from .registry import SeriesRegistry
from .storage.base import RecordStore, RuleRegistry, YearIndex
from .storage.memory import InMemoryRecordStore, InMemoryRuleRegistry, InMemoryYearIndex
from .storage.sqlite import SQLiteDatabase

__all__ = ["CreationResult", "Scheduler"]


@dataclass(frozen=True)
class CreationResult:
    rule: RecurrenceRule
    span: Optional[SpanResult]

    @property
    def created_count(self) -> int:
        return self.span.created_count if self.span is not None else 0


class Scheduler:
    """
    All scheduling services over one set of stores.

    Use ``in_memory()`` for dry runs and tests, ``open(path)`` for a
    SQLite database.
    """

    def __init__(
        self,
        rules: RuleRegistry,
        records: RecordStore,
        year_index: YearIndex,
        settings: Optional[AppSettings] = None,
        today: Optional[Callable[[], date]] = None,
        sleep: Callable[[float], None] = time.sleep,
        database: Optional[SQLiteDatabase] = None,
    ):
        settings = settings or get_settings()
        self._today = today or date.today
        self.database = database
        self.records = records
        self.year_index = year_index
        self.registry = SeriesRegistry(rules, records)
        self.materializer = Materializer(
            self.registry,
            records,
            retry_attempts=settings.retry_attempts,
            backoff_seconds=settings.retry_backoff_seconds,
            sleep=sleep,
        )
        self.mutator = SeriesMutator(
            self.registry, records, self.materializer, year_index, today=self._today
        )
        self.previewer = PreviewService(
            today=self._today, max_occurrences=settings.max_occurrences
        )

    @classmethod
    def in_memory(cls, **kwargs) -> "Scheduler":
        return cls(InMemoryRuleRegistry(), InMemoryRecordStore(), InMemoryYearIndex(), **kwargs)

    @classmethod
    def open(
        cls,
        db_path: Optional[Union[str, Path]] = None,
        settings: Optional[AppSettings] = None,
        **kwargs,
    ) -> "Scheduler":
        settings = settings or get_settings()
        db = SQLiteDatabase(db_path if db_path is not None else settings.db_path).initialize()
        return cls(
            db.rules(), db.records(), db.year_index(), settings=settings, database=db, **kwargs
        )

    def close(self) -> None:
        if self.database is not None:
            self.database.close()

    def __enter__(self) -> "Scheduler":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def preview(self, candidate) -> PreviewResult:
        return self.previewer.preview(candidate)

    def create_series(
        self,
        config: Union[RuleConfig, Mapping[str, Any]],
        through_year: Optional[int] = None,
    ) -> CreationResult:
        """
        Create a rule and materialize it from its start year.

        Parameters
        ----------
        config : RuleConfig or mapping
            Validated or untrusted rule payload.
        through_year : int, optional
            Last year to materialize; defaults to the current year and is
            capped by the rule's end date.

        Raises
        ------
        InvalidRuleError
            Invalid payload; nothing is stored.
        MaterializationError
            Records could not all be created. The rule and the records
            created so far are kept.
        """
        rule = self.registry.create_from_config(config)
        span = self._materialize_initial(rule, through_year)
        return CreationResult(rule=self.registry.get(rule.id), span=span)

    def import_rule(
        self,
        rule: RecurrenceRule,
        materialize: bool = True,
        through_year: Optional[int] = None,
    ) -> Optional[CreationResult]:
        """
        Store a rule read from an export, keeping its id.

        Generation metadata is reset since the records are not part of
        the export. Returns None when a rule with that id already exists.
        """
        if self.registry.rules.get(rule.id) is not None:
            return None
        rule.last_year_generated = None
        rule.total_generated = 0
        stored = self.registry.rules.add(rule)
        span = self._materialize_initial(stored, through_year) if materialize else None
        return CreationResult(rule=self.registry.get(stored.id), span=span)

    def _materialize_initial(
        self, rule: RecurrenceRule, through_year: Optional[int]
    ) -> Optional[SpanResult]:
        last_year = through_year if through_year is not None else self._today().year
        if rule.end_date is not None:
            last_year = min(last_year, rule.end_date.year)
        if rule.start_date.year > last_year:
            return None
        return self.materializer.materialize_span(rule, rule.start_date.year, last_year)
