"""
Materializer: commit a series' occurrences for one year.

Re-running ``materialize`` for the same year creates nothing new:
occurrences that already have a record in the series are skipped,
first by reading the series' records and again by the store, whose
``create_or_get`` is idempotent on ``(series_id, date)``. A record the
store already had counts as skipped, not created.

Store conflicts (``RecordConflictError``, e.g. a clash on the external
record number) are retried with linear backoff. Once the budget is
spent a ``MaterializationError`` reports how many records were created;
those are kept.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Tuple

from .amounts import draft_from_template
from .constants import DEFAULT_RETRY_ATTEMPTS, DEFAULT_RETRY_BACKOFF_SECONDS
from .exceptions import MaterializationError, RecordConflictError
from .logging import get_logger
from .models import GeneratedRecord, RecordDraft, RecurrenceRule
from .recurrence import occurrences_in_year
from .registry import SeriesRegistry
from .storage.base import RecordStore

__all__ = ["MaterializationResult", "SpanResult", "Materializer"]

logger = get_logger(__name__)


@dataclass(frozen=True)
class MaterializationResult:
    """Outcome of one ``materialize(rule, year)`` call."""

    series_id: str
    year: int
    expected_count: int
    created: Tuple[GeneratedRecord, ...] = ()
    skipped_count: int = 0

    @property
    def created_count(self) -> int:
        return len(self.created)


@dataclass
class SpanResult:
    """Aggregate of a multi-year run."""

    series_id: str
    results: List[MaterializationResult] = field(default_factory=list)

    @property
    def created_count(self) -> int:
        return sum(r.created_count for r in self.results)

    @property
    def expected_count(self) -> int:
        return sum(r.expected_count for r in self.results)

    @property
    def by_year(self) -> Dict[int, int]:
        return {r.year: r.created_count for r in self.results}


class Materializer:
    """
    Create the records a rule owes for a target year.

    Parameters
    ----------
    registry : SeriesRegistry
        Receives the updated high-water mark and record count.
    records : RecordStore
        Destination store.
    retry_attempts : int
        Attempts per record on ``RecordConflictError``.
    backoff_seconds : float
        Attempt ``k`` that fails waits ``k * backoff_seconds`` before the next.
    sleep : callable
        Sleeper, injectable for tests.
    """

    def __init__(
        self,
        registry: SeriesRegistry,
        records: RecordStore,
        retry_attempts: int = DEFAULT_RETRY_ATTEMPTS,
        backoff_seconds: float = DEFAULT_RETRY_BACKOFF_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if retry_attempts < 1:
            raise ValueError(f"retry_attempts must be >= 1, got {retry_attempts}")
        self.registry = registry
        self.records = records
        self.retry_attempts = retry_attempts
        self.backoff_seconds = backoff_seconds
        self._sleep = sleep

    def _create_with_retry(self, draft: RecordDraft) -> Tuple[GeneratedRecord, bool]:
        attempt = 1
        while True:
            try:
                return self.records.create_or_get(draft)
            except RecordConflictError as exc:
                if attempt >= self.retry_attempts:
                    raise
                delay = self.backoff_seconds * attempt
                logger.warning(
                    "record_conflict_retry",
                    series_id=draft.series_id,
                    date=draft.date.isoformat(),
                    attempt=attempt,
                    delay=delay,
                    error=str(exc),
                )
                self._sleep(delay)
            attempt += 1

    def materialize(self, rule: RecurrenceRule, target_year: int) -> MaterializationResult:
        """
        Create missing records of ``rule`` dated in ``target_year``.

        Returns
        -------
        MaterializationResult
            Created records and the number of occurrences skipped as
            already present.

        Raises
        ------
        MaterializationError
            When a record cannot be created within the retry budget.
            ``created_count`` counts the records created by this call.
        """
        occurrences = occurrences_in_year(rule.schedule, target_year)
        existing_ids = {}
        for record in self.records.list_by_series(rule.id):
            if record.date.year == target_year:
                existing_ids[record.date] = record.id

        created: List[GeneratedRecord] = []
        skipped = 0
        for occurrence in occurrences:
            if occurrence in existing_ids:
                skipped += 1
                continue
            draft = draft_from_template(rule.kind, rule.template, occurrence, series_id=rule.id)
            try:
                record, inserted = self._create_with_retry(draft)
            except RecordConflictError as exc:
                self._refresh_total(rule)
                logger.error(
                    "materialization_failed",
                    series_id=rule.id,
                    year=target_year,
                    created=len(created),
                    error=str(exc),
                )
                raise MaterializationError(
                    f"could not create record for series {rule.id} on {occurrence.isoformat()} "
                    f"after {self.retry_attempts} attempts",
                    created_count=len(created),
                    series_id=rule.id,
                    year=target_year,
                ) from exc
            existing_ids[occurrence] = record.id
            if inserted:
                created.append(record)
            else:
                skipped += 1

        # the stored mark wins over the caller's copy, which may be stale
        stored = self.registry.rules.get(rule.id)
        current = rule.last_year_generated if stored is None else stored.last_year_generated
        if current is None or target_year > current:
            current = target_year
        rule.last_year_generated = current
        rule.total_generated = self.records.count_by_series(rule.id)
        self.registry.record_progress(rule.id, rule.last_year_generated, rule.total_generated)

        logger.info(
            "series_materialized",
            series_id=rule.id,
            year=target_year,
            created=len(created),
            skipped=skipped,
        )
        return MaterializationResult(
            series_id=rule.id,
            year=target_year,
            expected_count=len(occurrences),
            created=tuple(created),
            skipped_count=skipped,
        )

    def materialize_span(
        self, rule: RecurrenceRule, first_year: int, last_year: int
    ) -> SpanResult:
        """
        ``materialize`` every year in ``[first_year, last_year]``.

        A ``MaterializationError`` propagates with ``created_count``
        covering the whole span so far.
        """
        span = SpanResult(series_id=rule.id)
        for year in range(first_year, last_year + 1):
            try:
                span.results.append(self.materialize(rule, year))
            except MaterializationError as exc:
                exc.created_count += span.created_count
                raise
        return span

    def _refresh_total(self, rule: RecurrenceRule) -> None:
        rule.total_generated = self.records.count_by_series(rule.id)
        self.registry.rules.set_total_generated(rule.id, rule.total_generated)
