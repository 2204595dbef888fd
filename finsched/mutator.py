"""
Series mutator: edits and deletions on live series.

Operations
----------
- edit_one: change one record and detach it from its series
- edit_series: template-only change updates records in place; a schedule
  change regenerates the whole series
- delete_one / delete_series / delete_one_or_series
- extend_year: materialize a new year for every rule still running
- delete_year: drop a year's records and prune the year index edge

Regeneration is not transactional. Records are deleted first, then the
new schedule is materialized; if that stops early the series is left
shorter and a ``RegenerationIncompleteWarning`` is emitted. Callers must
not run other mutations on the same series while it regenerates.
"""

from __future__ import annotations

import warnings
from dataclasses import dataclass, field, replace
from datetime import date
from typing import Any, Callable, Dict, Mapping, Optional

from .amounts import restamp_record
from .config import parse_record_edit
from .exceptions import (
    MaterializationError,
    RecordNotFoundError,
    RegenerationIncompleteWarning,
    ValidationError,
)
from .logging import get_logger
from .materializer import Materializer
from .models import GeneratedRecord, RecordKind, RecurrenceRule, Schedule
from .recurrence import occurrences_in_year
from .registry import SeriesRegistry
from .storage.base import RecordStore, YearIndex

__all__ = [
    "EDITABLE_RECORD_FIELDS",
    "SERIES_TEMPLATE_FIELDS",
    "SeriesEditResult",
    "SeriesDeletionResult",
    "ExtensionResult",
    "YearDeletionResult",
    "SeriesMutator",
]

logger = get_logger(__name__)

EDITABLE_RECORD_FIELDS = frozenset({
    "date",
    "concept",
    "base_amount",
    "vat_rate",
    "withholding_rate",
    "counterparty_name",
    "counterparty_tax_id",
    "category",
    "description",
    "status",
    "extra",
})

SERIES_TEMPLATE_FIELDS = frozenset({
    "concept",
    "base_amount",
    "vat_rate",
    "withholding_rate",
    "counterparty_name",
    "counterparty_tax_id",
    "category",
    "description",
})

_AMOUNT_FIELDS = frozenset({"base_amount", "vat_rate", "withholding_rate"})


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SeriesEditResult:
    series_id: str
    regenerated: bool
    deleted_count: int = 0
    expected_count: int = 0
    created_count: int = 0
    updated_count: int = 0

    @property
    def incomplete(self) -> bool:
        return self.regenerated and self.created_count < self.expected_count


@dataclass(frozen=True)
class SeriesDeletionResult:
    series_id: str
    deleted_records: int = 0
    detached_records: int = 0


@dataclass
class ExtensionResult:
    """
    Per-series created counts of an ``extend_year`` call.

    ``failed`` maps series that could not be fully materialized to the
    error message; their partial counts are still in ``created``.
    """

    year: int
    created: Dict[str, int] = field(default_factory=dict)
    failed: Dict[str, str] = field(default_factory=dict)

    @property
    def total_created(self) -> int:
        return sum(self.created.values())


@dataclass(frozen=True)
class YearDeletionResult:
    year: int
    deleted_count: int
    removed_from_index: bool


# ---------------------------------------------------------------------------
# Mutator
# ---------------------------------------------------------------------------

class SeriesMutator:
    """
    Edit and delete series and their records.

    Parameters
    ----------
    registry : SeriesRegistry
        Rule access and bookkeeping.
    records : RecordStore
        Record persistence.
    materializer : Materializer
        Creates records for regenerations and extensions.
    year_index : YearIndex
        Years currently shown by the application.
    today : callable, optional
        Clock returning today's date.
    """

    def __init__(
        self,
        registry: SeriesRegistry,
        records: RecordStore,
        materializer: Materializer,
        year_index: YearIndex,
        today: Optional[Callable[[], date]] = None,
    ):
        self.registry = registry
        self.records = records
        self.materializer = materializer
        self.year_index = year_index
        self._today = today or date.today

    # ------------------------------------------------------------------
    # Single records
    # ------------------------------------------------------------------

    def _require_record(self, record_id: int) -> GeneratedRecord:
        record = self.records.get(record_id)
        if record is None:
            raise RecordNotFoundError(f"record {record_id} not found")
        return record

    def edit_one(self, record_id: int, **changes: Any) -> GeneratedRecord:
        """
        Update one record and detach it from its series.

        The series rule and its other records are untouched; the edited
        record keeps its values but no longer follows series edits.
        Amounts are re-stamped when the base or a rate changes.

        Raises
        ------
        RecordNotFoundError
            Unknown ``record_id``.
        ValidationError
            A field outside ``EDITABLE_RECORD_FIELDS``, or an amount or
            rate out of range.
        """
        unknown = set(changes) - EDITABLE_RECORD_FIELDS
        if unknown:
            raise ValidationError(f"fields cannot be edited: {', '.join(sorted(unknown))}")
        changes = parse_record_edit(changes)
        record = self._require_record(record_id)
        if "withholding_rate" in changes and changes["withholding_rate"] is None:
            changes["withholding_rate"] = record.kind.default_withholding_rate
        if "extra" in changes:
            extra = dict(record.extra)
            extra.update(changes["extra"] or {})
            changes["extra"] = extra

        previous_series = record.series_id
        updated = replace(record, series_id=None, **changes)
        if _AMOUNT_FIELDS & set(changes):
            updated = restamp_record(updated)
        stored = self.records.update(updated)
        if previous_series is not None and self.registry.rules.get(previous_series) is not None:
            self.registry.rules.set_total_generated(
                previous_series, self.records.count_by_series(previous_series)
            )
        logger.info("record_detached", record_id=record_id, series_id=previous_series)
        return stored

    def delete_one(self, record_id: int) -> GeneratedRecord:
        """Remove one record; its series rule is unaffected."""
        record = self._require_record(record_id)
        self.records.delete(record_id)
        if record.series_id is not None and self.registry.rules.get(record.series_id) is not None:
            self.registry.rules.set_total_generated(
                record.series_id, self.records.count_by_series(record.series_id)
            )
        logger.info("record_deleted", record_id=record_id, series_id=record.series_id)
        return record

    def delete_one_or_series(self, record_id: int, delete_all: bool = False) -> int:
        """
        Delete a record, or every record of its series.

        With ``delete_all`` the series' records go and, once none are
        left, the rule itself. Returns the number of records deleted.
        """
        record = self._require_record(record_id)
        if not delete_all or record.series_id is None:
            self.delete_one(record_id)
            return 1
        series_id = record.series_id
        deleted = self.records.delete_by_series(series_id)
        rule_exists = self.registry.rules.get(series_id) is not None
        if rule_exists and self.records.count_by_series(series_id) == 0:
            self.registry.remove(series_id)
        logger.info("series_records_deleted", series_id=series_id, deleted=deleted)
        return deleted

    # ------------------------------------------------------------------
    # Whole series
    # ------------------------------------------------------------------

    def delete_series(self, series_id: str, delete_records: bool = False) -> SeriesDeletionResult:
        """
        Remove a rule; its records are deleted or detached.

        Detached records keep every stamped value and become standalone.
        """
        self.registry.get(series_id)
        if delete_records:
            result = SeriesDeletionResult(
                series_id, deleted_records=self.records.delete_by_series(series_id)
            )
        else:
            result = SeriesDeletionResult(
                series_id, detached_records=self.records.detach_series(series_id)
            )
        self.registry.remove(series_id)
        return result

    def edit_series(
        self,
        series_id: str,
        template_changes: Optional[Mapping[str, Any]] = None,
        schedule: Optional[Schedule] = None,
    ) -> SeriesEditResult:
        """
        Apply an edit to a whole series.

        Parameters
        ----------
        series_id : str
            Series to edit.
        template_changes : mapping, optional
            Template fields to change. Known fields listed in
            ``SERIES_TEMPLATE_FIELDS`` are copied onto every record; the
            rest are merged into the template only.
        schedule : Schedule, optional
            New schedule. If it differs from the current one the series
            is regenerated.

        Returns
        -------
        SeriesEditResult
        """
        rule = self.registry.get(series_id)
        template_changes = dict(template_changes or {})
        template = rule.template.merged(template_changes) if template_changes else None

        if schedule is not None and schedule != rule.schedule:
            return self._regenerate(rule, schedule, template)

        if template is None:
            return SeriesEditResult(series_id=series_id, regenerated=False)

        resolved = template.for_kind(rule.kind)
        record_changes = {
            k: getattr(resolved, k) for k in template_changes if k in SERIES_TEMPLATE_FIELDS
        }
        self.registry.replace_definition(series_id, template=template)
        updated = 0
        if record_changes:
            for record in self.records.list_by_series(series_id):
                revised = replace(record, **record_changes)
                if _AMOUNT_FIELDS & set(record_changes):
                    revised = restamp_record(revised)
                self.records.update(revised)
                updated += 1
        logger.info("series_updated", series_id=series_id, updated=updated)
        return SeriesEditResult(series_id=series_id, regenerated=False, updated_count=updated)

    def _regeneration_last_year(self, rule: RecurrenceRule, schedule: Schedule) -> int:
        """Last year to rebuild: today, the year index or the old high-water mark."""
        years = [self._today().year, rule.last_year_generated or 0]
        last = max(years + list(self.year_index.years()))
        if schedule.end_date is not None:
            last = min(last, schedule.end_date.year)
        return last

    def _regenerate(
        self,
        rule: RecurrenceRule,
        schedule: Schedule,
        template=None,
    ) -> SeriesEditResult:
        last_year = self._regeneration_last_year(rule, schedule)
        deleted = self.records.delete_by_series(rule.id)
        rule = self.registry.replace_definition(
            rule.id, schedule=schedule, template=template, reset_progress=True
        )
        first_year = schedule.start_date.year
        expected = sum(
            len(occurrences_in_year(schedule, y)) for y in range(first_year, last_year + 1)
        )

        created = 0
        try:
            created = self.materializer.materialize_span(rule, first_year, last_year).created_count
        except MaterializationError as exc:
            created = exc.created_count
            logger.error("regeneration_failed", series_id=rule.id, error=str(exc))

        result = SeriesEditResult(
            series_id=rule.id,
            regenerated=True,
            deleted_count=deleted,
            expected_count=expected,
            created_count=created,
        )
        logger.info(
            "series_regenerated",
            series_id=rule.id,
            deleted=deleted,
            expected=expected,
            created=created,
        )
        if result.incomplete:
            warnings.warn(
                RegenerationIncompleteWarning(
                    f"series {rule.id} regenerated {created} of {expected} records"
                ),
                stacklevel=3,
            )
        return result

    # ------------------------------------------------------------------
    # Years
    # ------------------------------------------------------------------

    def extend_year(self, year: int, kind: Optional[RecordKind] = None) -> ExtensionResult:
        """
        Materialize ``year`` for every rule still running in it.

        A rule is extended when it has started by ``year``, its end date
        (if any) is not before ``year``, and it has not already been
        generated through ``year``. Re-running the same year creates
        nothing. ``year`` is added to the year index.

        A series that fails to materialize does not stop the others; it
        is listed in ``ExtensionResult.failed`` and keeps its high-water
        mark below ``year``, so a later call retries it.
        """
        result = ExtensionResult(year=year)
        for rule in self.registry.list(kind):
            if rule.start_date.year > year:
                continue
            if rule.end_date is not None and rule.end_date.year < year:
                continue
            if rule.last_year_generated is not None and rule.last_year_generated >= year:
                continue
            try:
                outcome = self.materializer.materialize(rule, year)
            except MaterializationError as exc:
                result.created[rule.id] = exc.created_count
                result.failed[rule.id] = str(exc)
                logger.error("year_extension_failed", series_id=rule.id, year=year, error=str(exc))
                continue
            result.created[rule.id] = outcome.created_count
        self.year_index.add(year)
        logger.info(
            "year_extended",
            year=year,
            series=len(result.created),
            created=result.total_created,
            failed=len(result.failed),
        )
        return result

    def delete_year(self, year: int) -> YearDeletionResult:
        """
        Delete every record dated in ``year``, linked or standalone.

        Affected series get their bookkeeping recomputed from the records
        they still have. ``year`` leaves the year index only when it is
        the index's minimum or maximum and not the current year.
        """
        affected = {r.series_id for r in self.records.list_by_year(year) if r.series_id}
        deleted = self.records.delete_by_year(year)
        for series_id in sorted(affected):
            if self.registry.rules.get(series_id) is not None:
                self.registry.refresh_progress(series_id)

        years = self.year_index.years()
        removed = False
        if year in years and year in (min(years), max(years)) and year != self._today().year:
            self.year_index.remove(year)
            removed = True

        logger.info("year_deleted", year=year, deleted=deleted, removed_from_index=removed)
        return YearDeletionResult(year=year, deleted_count=deleted, removed_from_index=removed)
