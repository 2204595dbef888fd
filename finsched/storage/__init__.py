"""Record, rule and year-index storage backends."""

from .base import RecordStore, RuleRegistry, YearIndex
from .memory import InMemoryRecordStore, InMemoryRuleRegistry, InMemoryYearIndex
from .sqlite import SQLiteDatabase, SQLiteRecordStore, SQLiteRuleRegistry, SQLiteYearIndex

__all__ = [
    "RecordStore",
    "RuleRegistry",
    "YearIndex",
    "InMemoryRecordStore",
    "InMemoryRuleRegistry",
    "InMemoryYearIndex",
    "SQLiteDatabase",
    "SQLiteRecordStore",
    "SQLiteRuleRegistry",
    "SQLiteYearIndex",
]
