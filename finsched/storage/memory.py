"""In-memory storage backends, used by tests and dry runs."""

from __future__ import annotations

from dataclasses import replace
from datetime import date
from typing import Dict, Iterable, List, Optional, Set, Tuple

from ..constants import RECORD_NUMBER_FORMAT
from ..exceptions import RecordConflictError, RecordNotFoundError, SeriesNotFoundError
from ..models import GeneratedRecord, RecordDraft, RecordKind, RecurrenceRule

__all__ = [
    "InMemoryRecordStore",
    "InMemoryRuleRegistry",
    "InMemoryYearIndex",
    "next_record_number",
]


def next_record_number(year: int, existing: Iterable[Optional[str]]) -> str:
    """
    Next ``YYYY-NNN`` number for ``year``: highest sequence plus one.

    >>> next_record_number(2025, ["2025-001", "2025-007", "2024-010"])
    '2025-008'
    """
    prefix = f"{year}-"
    highest = 0
    for number in existing:
        if number and number.startswith(prefix):
            tail = number[len(prefix):]
            if tail.isdigit():
                highest = max(highest, int(tail))
    return RECORD_NUMBER_FORMAT.format(year=year, seq=highest + 1)


class InMemoryRecordStore:
    """Dict-backed RecordStore; ids are assigned sequentially from 1."""

    def __init__(self):
        self._records: Dict[int, GeneratedRecord] = {}
        self._next_id = 1

    def __len__(self) -> int:
        return len(self._records)

    def _allocate_number(self, draft: RecordDraft) -> Optional[str]:
        if draft.kind is not RecordKind.INCOME:
            return None
        return next_record_number(
            draft.date.year, (r.number for r in self._records.values())
        )

    def create(self, draft: RecordDraft) -> GeneratedRecord:
        return self.create_or_get(draft)[0]

    def create_or_get(self, draft: RecordDraft) -> Tuple[GeneratedRecord, bool]:
        if draft.series_id is not None:
            existing = self.find_by_series_and_date(draft.series_id, draft.date)
            if existing is not None:
                return existing, False
        number = self._allocate_number(draft)
        if number is not None and any(r.number == number for r in self._records.values()):
            raise RecordConflictError(f"record number {number} already in use")
        record = GeneratedRecord.from_draft(self._next_id, draft, number=number)
        self._records[record.id] = record
        self._next_id += 1
        return record, True

    def get(self, record_id: int) -> Optional[GeneratedRecord]:
        return self._records.get(record_id)

    def update(self, record: GeneratedRecord) -> GeneratedRecord:
        if record.id not in self._records:
            raise RecordNotFoundError(f"record {record.id} not found")
        self._records[record.id] = record
        return record

    def delete(self, record_id: int) -> bool:
        return self._records.pop(record_id, None) is not None

    def list_all(self) -> List[GeneratedRecord]:
        return sorted(self._records.values(), key=lambda r: (r.date, r.id))

    def list_by_series(self, series_id: str) -> List[GeneratedRecord]:
        return [r for r in self.list_all() if r.series_id == series_id]

    def find_by_series_and_date(self, series_id: str, on: date) -> Optional[GeneratedRecord]:
        for record in self._records.values():
            if record.series_id == series_id and record.date == on:
                return record
        return None

    def list_by_year(self, year: int, kind: Optional[RecordKind] = None) -> List[GeneratedRecord]:
        return [
            r for r in self.list_all()
            if r.date.year == year and (kind is None or r.kind is kind)
        ]

    def delete_by_series(self, series_id: str) -> int:
        doomed = [rid for rid, r in self._records.items() if r.series_id == series_id]
        for rid in doomed:
            del self._records[rid]
        return len(doomed)

    def delete_by_year(self, year: int) -> int:
        doomed = [rid for rid, r in self._records.items() if r.date.year == year]
        for rid in doomed:
            del self._records[rid]
        return len(doomed)

    def detach_series(self, series_id: str) -> int:
        attached = [r for r in self._records.values() if r.series_id == series_id]
        for record in attached:
            self._records[record.id] = replace(record, series_id=None)
        return len(attached)

    def count_by_series(self, series_id: str) -> int:
        return sum(1 for r in self._records.values() if r.series_id == series_id)

    def years(self) -> List[int]:
        return sorted({r.date.year for r in self._records.values()})


class InMemoryRuleRegistry:
    """Dict-backed RuleRegistry."""

    def __init__(self):
        self._rules: Dict[str, RecurrenceRule] = {}

    def __len__(self) -> int:
        return len(self._rules)

    def add(self, rule: RecurrenceRule) -> RecurrenceRule:
        if rule.id in self._rules:
            raise RecordConflictError(f"series {rule.id} already exists")
        self._rules[rule.id] = replace(rule)
        return replace(rule)

    def get(self, rule_id: str) -> Optional[RecurrenceRule]:
        rule = self._rules.get(rule_id)
        return replace(rule) if rule is not None else None

    def list(self, kind: Optional[RecordKind] = None) -> List[RecurrenceRule]:
        rules = [
            replace(r) for r in self._rules.values()
            if kind is None or r.kind is RecordKind(kind)
        ]
        return sorted(rules, key=lambda r: (r.schedule.start_date, r.name, r.id))

    def update(self, rule: RecurrenceRule) -> RecurrenceRule:
        if rule.id not in self._rules:
            raise SeriesNotFoundError(f"series {rule.id} not found")
        self._rules[rule.id] = replace(rule)
        return replace(rule)

    def remove(self, rule_id: str) -> bool:
        return self._rules.pop(rule_id, None) is not None

    def _require(self, rule_id: str) -> RecurrenceRule:
        try:
            return self._rules[rule_id]
        except KeyError:
            raise SeriesNotFoundError(f"series {rule_id} not found") from None

    def set_last_year_generated(self, rule_id: str, year: Optional[int]) -> None:
        self._require(rule_id).last_year_generated = year

    def set_total_generated(self, rule_id: str, total: int) -> None:
        self._require(rule_id).total_generated = total


class InMemoryYearIndex:
    """Set-backed YearIndex."""

    def __init__(self, years: Iterable[int] = ()):
        self._years: Set[int] = set(years)

    def years(self) -> List[int]:
        return sorted(self._years)

    def add(self, year: int) -> None:
        self._years.add(int(year))

    def remove(self, year: int) -> None:
        self._years.discard(int(year))

    def extend(self, years: Iterable[int]) -> None:
        self._years.update(int(y) for y in years)
