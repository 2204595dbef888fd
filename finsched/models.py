"""
Domain types for FinSched.

Purpose
-------
Value objects describing a recurring series and the records it produces:

- RecordKind, Periodicity, DayPolicy: closed vocabularies
- DaySelection: day policy plus the day number for SPECIFIC_DAY
- Schedule: periodicity + day selection + inclusive date range
- RecordTemplate: base fields stamped onto every generated record
- ContractRef: link to the external document a rule was extracted from
- RecurrenceRule: persisted series definition with generation metadata
- RecordDraft / GeneratedRecord: a record before and after storage

Design principles
-----------------
- Frozen dataclasses validated in ``__post_init__``
- Schedules compare by value, so "did the schedule change?" is ``!=``
- RecurrenceRule is the one mutable type; only stores and services touch it

Example
-------
>>> from datetime import date
>>> from finsched.models import Schedule, Periodicity, DaySelection, DayPolicy
>>> s = Schedule(
...     periodicity=Periodicity.QUARTERLY,
...     day_selection=DaySelection.specific(15),
...     start_date=date(2024, 2, 1),
...     end_date=date(2024, 11, 30),
... )
>>> s.is_open_ended
False
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from .constants import (
    DEFAULT_EXPENSE_WITHHOLDING_RATE,
    DEFAULT_INCOME_WITHHOLDING_RATE,
    DEFAULT_RECORD_STATUS,
    DEFAULT_VAT_RATE,
    MONTHS_PER_PERIOD,
)
from .exceptions import InvalidRuleError

__all__ = [
    "RecordKind",
    "Periodicity",
    "DayPolicy",
    "DaySelection",
    "Schedule",
    "RecordTemplate",
    "ContractRef",
    "RecurrenceRule",
    "RecordDraft",
    "GeneratedRecord",
    "TEMPLATE_FIELDS",
]


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class RecordKind(str, Enum):
    """Ledger a series writes into."""

    INCOME = "INCOME"
    EXPENSE = "EXPENSE"

    @property
    def default_withholding_rate(self) -> float:
        if self is RecordKind.INCOME:
            return DEFAULT_INCOME_WITHHOLDING_RATE
        return DEFAULT_EXPENSE_WITHHOLDING_RATE


class Periodicity(str, Enum):
    """Distance between consecutive occurrences."""

    MONTHLY = "MONTHLY"
    QUARTERLY = "QUARTERLY"
    SEMIANNUAL = "SEMIANNUAL"
    ANNUAL = "ANNUAL"

    @property
    def months(self) -> int:
        return MONTHS_PER_PERIOD[self.value]


class DayPolicy(str, Enum):
    """Which day of the month an occurrence lands on."""

    LAST_BUSINESS_DAY = "LAST_BUSINESS_DAY"
    FIRST_BUSINESS_DAY = "FIRST_BUSINESS_DAY"
    LAST_CALENDAR_DAY = "LAST_CALENDAR_DAY"
    FIRST_CALENDAR_DAY = "FIRST_CALENDAR_DAY"
    SPECIFIC_DAY = "SPECIFIC_DAY"


def _coerce_enum(enum_cls, value, field_name: str):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).upper())
    except ValueError as exc:
        allowed = ", ".join(m.value for m in enum_cls)
        raise InvalidRuleError(
            f"{field_name} must be one of {allowed}; got {value!r}"
        ) from exc


# ---------------------------------------------------------------------------
# Schedule
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DaySelection:
    """
    Day-of-month policy.

    Parameters
    ----------
    policy : DayPolicy
        Selection policy.
    day : int, optional
        Requested day for SPECIFIC_DAY (1-31). Ignored and normalized to
        None for every other policy.
    """

    policy: DayPolicy
    day: Optional[int] = None

    def __post_init__(self):
        policy = _coerce_enum(DayPolicy, self.policy, "day_policy")
        object.__setattr__(self, "policy", policy)
        if policy is DayPolicy.SPECIFIC_DAY:
            if self.day is None:
                raise InvalidRuleError("SPECIFIC_DAY requires a day between 1 and 31")
            if isinstance(self.day, bool) or not isinstance(self.day, int):
                raise InvalidRuleError(f"specific day must be an integer, got {self.day!r}")
            if not 1 <= self.day <= 31:
                raise InvalidRuleError(f"specific day must be within 1-31, got {self.day}")
        else:
            object.__setattr__(self, "day", None)

    @classmethod
    def specific(cls, day: int) -> "DaySelection":
        return cls(DayPolicy.SPECIFIC_DAY, day)


@dataclass(frozen=True)
class Schedule:
    """
    When a series produces records.

    Parameters
    ----------
    periodicity : Periodicity
        MONTHLY, QUARTERLY, SEMIANNUAL or ANNUAL. Periods are anchored on
        the month of ``start_date``.
    day_selection : DaySelection
        Day policy inside each period's month.
    start_date : date
        First day an occurrence may fall on (inclusive).
    end_date : date, optional
        Last day an occurrence may fall on (inclusive). None means
        open-ended.
    """

    periodicity: Periodicity
    day_selection: DaySelection
    start_date: date
    end_date: Optional[date] = None

    def __post_init__(self):
        object.__setattr__(
            self, "periodicity", _coerce_enum(Periodicity, self.periodicity, "periodicity")
        )
        if not isinstance(self.day_selection, DaySelection):
            raise InvalidRuleError("day_selection must be a DaySelection")
        if self.start_date is None:
            raise InvalidRuleError("start_date is required")
        if self.end_date is not None and self.end_date < self.start_date:
            raise InvalidRuleError(
                f"end_date ({self.end_date}) is before start_date ({self.start_date})"
            )

    @property
    def is_open_ended(self) -> bool:
        return self.end_date is None


# ---------------------------------------------------------------------------
# Template
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RecordTemplate:
    """
    Base field set stamped onto every record of a series.

    Parameters
    ----------
    concept : str
        Short description shown on the record.
    base_amount : float
        Taxable base, before VAT and withholding.
    vat_rate : float
        VAT percentage (default 21).
    withholding_rate : float, optional
        Withholding percentage. None lets the rule pick the default for
        its kind (7 for income, 0 for expense).
    counterparty_name, counterparty_tax_id : str
        Client (income) or supplier (expense).
    category, description, status : str
        Free-text classification, notes and initial status.
    extra : Mapping[str, Any]
        Any other fields; preserved verbatim on each record.
    """

    concept: str
    base_amount: float = 0.0
    vat_rate: float = DEFAULT_VAT_RATE
    withholding_rate: Optional[float] = None
    counterparty_name: str = ""
    counterparty_tax_id: str = ""
    category: str = ""
    description: str = ""
    status: str = DEFAULT_RECORD_STATUS
    extra: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not self.concept or not str(self.concept).strip():
            raise InvalidRuleError("template concept must be a non-empty string")
        if self.base_amount < 0:
            raise InvalidRuleError(f"base_amount must be non-negative, got {self.base_amount}")
        if not 0 <= self.vat_rate <= 100:
            raise InvalidRuleError(f"vat_rate must be within 0-100, got {self.vat_rate}")
        if self.withholding_rate is not None and not 0 <= self.withholding_rate <= 100:
            raise InvalidRuleError(
                f"withholding_rate must be within 0-100, got {self.withholding_rate}"
            )
        object.__setattr__(self, "extra", dict(self.extra or {}))

    def for_kind(self, kind: RecordKind) -> "RecordTemplate":
        """Fill in the kind's default withholding rate if none was given."""
        if self.withholding_rate is not None:
            return self
        return replace(self, withholding_rate=kind.default_withholding_rate)

    def merged(self, changes: Mapping[str, Any]) -> "RecordTemplate":
        """
        New template with ``changes`` applied.

        Known template fields replace their value; unknown keys are
        merged into ``extra``.
        """
        known = {k: v for k, v in changes.items() if k in TEMPLATE_FIELDS and k != "extra"}
        unknown = {k: v for k, v in changes.items() if k not in TEMPLATE_FIELDS}
        extra = dict(self.extra)
        extra.update(changes.get("extra") or {})
        extra.update(unknown)
        return replace(self, extra=extra, **known)


TEMPLATE_FIELDS = frozenset(f.name for f in fields(RecordTemplate))


@dataclass(frozen=True)
class ContractRef:
    """Pointer to the document a rule was created from."""

    document_id: str
    file_url: str = ""
    confidence: Optional[float] = None
    extracted_fields: Mapping[str, Any] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Rule
# ---------------------------------------------------------------------------

@dataclass
class RecurrenceRule:
    """
    A persisted series definition.

    ``last_year_generated`` is the materialization high-water mark: the
    latest year for which occurrences have been committed. It only moves
    forward, except when a regeneration resets it or a year deletion
    recomputes it from the surviving records.
    """

    id: str
    kind: RecordKind
    name: str
    schedule: Schedule
    template: RecordTemplate
    last_year_generated: Optional[int] = None
    total_generated: int = 0
    contract_ref: Optional[ContractRef] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        self.kind = _coerce_enum(RecordKind, self.kind, "kind")
        self.template = self.template.for_kind(self.kind)

    @property
    def periodicity(self) -> Periodicity:
        return self.schedule.periodicity

    @property
    def day_selection(self) -> DaySelection:
        return self.schedule.day_selection

    @property
    def start_date(self) -> date:
        return self.schedule.start_date

    @property
    def end_date(self) -> Optional[date]:
        return self.schedule.end_date

    @property
    def is_open_ended(self) -> bool:
        return self.schedule.is_open_ended


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RecordDraft:
    """Stamped record fields, ready for a store to insert."""

    kind: RecordKind
    date: date
    concept: str
    base_amount: float
    vat_rate: float
    vat_amount: float
    withholding_rate: float
    withholding_amount: float
    total: float
    counterparty_name: str = ""
    counterparty_tax_id: str = ""
    category: str = ""
    description: str = ""
    status: str = DEFAULT_RECORD_STATUS
    series_id: Optional[str] = None
    extra: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class GeneratedRecord:
    """
    A stored financial record.

    ``series_id`` is None for standalone (or detached) records.
    ``number`` is the external ``YYYY-NNN`` number of income records;
    expenses carry None.
    """

    id: int
    kind: RecordKind
    date: date
    concept: str
    base_amount: float
    vat_rate: float
    vat_amount: float
    withholding_rate: float
    withholding_amount: float
    total: float
    counterparty_name: str = ""
    counterparty_tax_id: str = ""
    category: str = ""
    description: str = ""
    status: str = DEFAULT_RECORD_STATUS
    series_id: Optional[str] = None
    number: Optional[str] = None
    extra: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_draft(
        cls, record_id: int, draft: RecordDraft, number: Optional[str] = None
    ) -> "GeneratedRecord":
        values: Dict[str, Any] = {f.name: getattr(draft, f.name) for f in fields(draft)}
        values["extra"] = dict(draft.extra)
        return cls(id=record_id, number=number, **values)

    @property
    def is_detached(self) -> bool:
        return self.series_id is None
