"""
Storage protocols.

The scheduling services only talk to these three collaborators, so the
in-memory and SQLite backends are interchangeable:

- RecordStore: generated financial records
- RuleRegistry: persisted recurrence rules
- YearIndex: the set of years the application currently shows

Record store contract
---------------------
``create`` is idempotent on ``(series_id, date)``: when the series
already has a record on that date, the existing record is returned and
nothing is inserted. ``create_or_get`` does the same and also reports
whether a new record was inserted. Standalone records (``series_id=None``) are never
deduplicated. Income records receive the next ``YYYY-NNN`` number of
their year; a numbering collision raises RecordConflictError.
"""

from __future__ import annotations

from datetime import date
from typing import Iterable, List, Optional, Tuple

from typing_extensions import Protocol, runtime_checkable

from ..models import GeneratedRecord, RecordDraft, RecordKind, RecurrenceRule

__all__ = ["RecordStore", "RuleRegistry", "YearIndex"]


@runtime_checkable
class RecordStore(Protocol):
    def create(self, draft: RecordDraft) -> GeneratedRecord: ...

    def create_or_get(self, draft: RecordDraft) -> Tuple[GeneratedRecord, bool]: ...

    def get(self, record_id: int) -> Optional[GeneratedRecord]: ...

    def update(self, record: GeneratedRecord) -> GeneratedRecord: ...

    def delete(self, record_id: int) -> bool: ...

    def list_by_series(self, series_id: str) -> List[GeneratedRecord]: ...

    def find_by_series_and_date(self, series_id: str, on: date) -> Optional[GeneratedRecord]: ...

    def list_by_year(self, year: int, kind: Optional[RecordKind] = None) -> List[GeneratedRecord]: ...

    def delete_by_series(self, series_id: str) -> int: ...

    def delete_by_year(self, year: int) -> int: ...

    def detach_series(self, series_id: str) -> int: ...

    def count_by_series(self, series_id: str) -> int: ...

    def years(self) -> List[int]: ...


@runtime_checkable
class RuleRegistry(Protocol):
    def add(self, rule: RecurrenceRule) -> RecurrenceRule: ...

    def get(self, rule_id: str) -> Optional[RecurrenceRule]: ...

    def list(self, kind: Optional[RecordKind] = None) -> List[RecurrenceRule]: ...

    def update(self, rule: RecurrenceRule) -> RecurrenceRule: ...

    def remove(self, rule_id: str) -> bool: ...

    def set_last_year_generated(self, rule_id: str, year: Optional[int]) -> None: ...

    def set_total_generated(self, rule_id: str, total: int) -> None: ...


@runtime_checkable
class YearIndex(Protocol):
    def years(self) -> List[int]: ...

    def add(self, year: int) -> None: ...

    def remove(self, year: int) -> None: ...

    def extend(self, years: Iterable[int]) -> None: ...
