"""
FinSched: Recurring Financial Record Scheduler

Turns recurrence rules (periodicity + day policy + date range) into
dated income and expense records, and keeps each series in sync as it is
edited, extended into new years or trimmed.

Modules
-------
- dates         : Calendar arithmetic (month ends, business-day rolling)
- recurrence    : Occurrence stepper and schedule descriptions
- preview       : Dry-run of a candidate schedule
- registry      : Series rules and their linked records
- materializer  : Idempotent per-year record creation with retry
- mutator       : Edits, regeneration, year extension and deletion
- storage       : In-memory and SQLite backends
- scheduler     : Facade wiring everything over one backend
"""

from .exceptions import (
    FinSchedError,
    InvalidRuleError,
    MaterializationError,
    RecordConflictError,
    RegenerationIncompleteWarning,
    SeriesNotFoundError,
    RecordNotFoundError,
)
from .models import (
    DayPolicy,
    DaySelection,
    GeneratedRecord,
    Periodicity,
    RecordKind,
    RecordTemplate,
    RecurrenceRule,
    Schedule,
)
from .recurrence import generate_occurrences, occurrences_in_year, describe_schedule
from .preview import PreviewService, PreviewResult, preview
from .registry import SeriesRegistry
from .materializer import Materializer
from .mutator import SeriesMutator
from .scheduler import Scheduler

__version__ = "0.1.0"

__all__ = [
    "FinSchedError",
    "InvalidRuleError",
    "MaterializationError",
    "RecordConflictError",
    "RegenerationIncompleteWarning",
    "SeriesNotFoundError",
    "RecordNotFoundError",
    "DayPolicy",
    "DaySelection",
    "GeneratedRecord",
    "Periodicity",
    "RecordKind",
    "RecordTemplate",
    "RecurrenceRule",
    "Schedule",
    "generate_occurrences",
    "occurrences_in_year",
    "describe_schedule",
    "PreviewService",
    "PreviewResult",
    "preview",
    "SeriesRegistry",
    "Materializer",
    "SeriesMutator",
    "Scheduler",
]
