"""
Series registry.

Owns recurrence rules and their link to the records they produced. The
registry never creates records itself; the Materializer does, and
reports progress back through ``record_progress``.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Callable, List, Mapping, Optional, Union

from .config import RuleConfig, parse_rule_config
from .constants import SERIES_NAME_CONCEPT_CHARS, SERIES_NAME_PREFIX
from .exceptions import RecordNotFoundError, SeriesNotFoundError, ValidationError
from .logging import get_logger
from .models import (
    ContractRef,
    GeneratedRecord,
    Periodicity,
    RecordKind,
    RecordTemplate,
    RecurrenceRule,
    Schedule,
)
from .storage.base import RecordStore, RuleRegistry

__all__ = ["SeriesRegistry", "SeriesMembership", "default_series_name"]

logger = get_logger(__name__)


def default_series_name(template: RecordTemplate) -> str:
    """``"Series <concept>"``, concept cut to 50 characters."""
    return f"{SERIES_NAME_PREFIX} {template.concept[:SERIES_NAME_CONCEPT_CHARS]}"


@dataclass(frozen=True)
class SeriesMembership:
    """Whether a record belongs to a series, and which one."""

    record_id: int
    series_id: Optional[str]
    name: Optional[str] = None
    periodicity: Optional[Periodicity] = None
    records_in_series: int = 0

    @property
    def belongs(self) -> bool:
        return self.series_id is not None


class SeriesRegistry:
    """
    Create, read and bookkeep recurrence rules.

    Parameters
    ----------
    rules : RuleRegistry
        Rule persistence.
    records : RecordStore
        Record persistence, read for linked-record queries.
    id_factory : callable, optional
        Returns a new rule id; UUID4 hex by default.
    clock : callable, optional
        Returns the current timestamp for ``created_at`` / ``updated_at``.
    """

    def __init__(
        self,
        rules: RuleRegistry,
        records: RecordStore,
        id_factory: Optional[Callable[[], str]] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.rules = rules
        self.records = records
        self._id_factory = id_factory or (lambda: uuid.uuid4().hex)
        self._clock = clock or datetime.now

    # ------------------------------------------------------------------
    # Creation / lookup
    # ------------------------------------------------------------------

    def create(
        self,
        kind: Union[RecordKind, str],
        schedule: Schedule,
        template: RecordTemplate,
        name: Optional[str] = None,
        contract_ref: Optional[ContractRef] = None,
    ) -> RecurrenceRule:
        """Persist a new rule with no records yet."""
        now = self._clock()
        rule = RecurrenceRule(
            id=self._id_factory(),
            kind=kind,
            name=(name or "").strip() or default_series_name(template),
            schedule=schedule,
            template=template,
            contract_ref=contract_ref,
            created_at=now,
            updated_at=now,
        )
        stored = self.rules.add(rule)
        logger.info(
            "series_created",
            series_id=stored.id,
            kind=stored.kind.value,
            periodicity=stored.periodicity.value,
        )
        return stored

    def create_from_config(self, config: Union[RuleConfig, Mapping[str, Any]]) -> RecurrenceRule:
        """Validate an untrusted payload, then ``create``."""
        return self.create(**parse_rule_config(config).to_rule_inputs())

    def get(self, series_id: str) -> RecurrenceRule:
        rule = self.rules.get(series_id)
        if rule is None:
            raise SeriesNotFoundError(f"series {series_id} not found")
        return rule

    def list(self, kind: Optional[RecordKind] = None) -> List[RecurrenceRule]:
        return self.rules.list(kind)

    def rename(self, series_id: str, name: str) -> RecurrenceRule:
        name = (name or "").strip()
        if not name:
            raise ValidationError("series name must not be blank")
        rule = replace(self.get(series_id), name=name, updated_at=self._clock())
        return self.rules.update(rule)

    def remove(self, series_id: str) -> None:
        if not self.rules.remove(series_id):
            raise SeriesNotFoundError(f"series {series_id} not found")
        logger.info("series_removed", series_id=series_id)

    # ------------------------------------------------------------------
    # Linked records
    # ------------------------------------------------------------------

    def records_of(self, series_id: str) -> List[GeneratedRecord]:
        self.get(series_id)
        return self.records.list_by_series(series_id)

    def linked_count(self, series_id: str) -> int:
        self.get(series_id)
        return self.records.count_by_series(series_id)

    def membership(self, record_id: int) -> SeriesMembership:
        """Series information for a record; ``belongs`` is False when standalone."""
        record = self.records.get(record_id)
        if record is None:
            raise RecordNotFoundError(f"record {record_id} not found")
        if record.series_id is None:
            return SeriesMembership(record_id=record_id, series_id=None)
        rule = self.rules.get(record.series_id)
        if rule is None:
            return SeriesMembership(record_id=record_id, series_id=None)
        return SeriesMembership(
            record_id=record_id,
            series_id=rule.id,
            name=rule.name,
            periodicity=rule.periodicity,
            records_in_series=self.records.count_by_series(rule.id),
        )

    # ------------------------------------------------------------------
    # Updates driven by the mutator / materializer
    # ------------------------------------------------------------------

    def replace_definition(
        self,
        series_id: str,
        schedule: Optional[Schedule] = None,
        template: Optional[RecordTemplate] = None,
        reset_progress: bool = False,
    ) -> RecurrenceRule:
        """
        Swap the schedule and/or template of a rule.

        With ``reset_progress`` the high-water mark and record count are
        cleared, as a regeneration requires.
        """
        rule = self.get(series_id)
        changes = {"updated_at": self._clock()}
        if schedule is not None:
            changes["schedule"] = schedule
        if template is not None:
            changes["template"] = template
        if reset_progress:
            changes["last_year_generated"] = None
            changes["total_generated"] = 0
        return self.rules.update(replace(rule, **changes))

    def record_progress(
        self,
        series_id: str,
        last_year_generated: Optional[int],
        total_generated: int,
    ) -> None:
        self.rules.set_last_year_generated(series_id, last_year_generated)
        self.rules.set_total_generated(series_id, total_generated)

    def refresh_progress(self, series_id: str) -> None:
        """Recompute bookkeeping from the records the series still has."""
        remaining = self.records.list_by_series(series_id)
        last_year = max((r.date.year for r in remaining), default=None)
        self.record_progress(series_id, last_year, len(remaining))
