"""
Configuration management module for FinSched.

Purpose
-------
Pydantic models validating untrusted rule input (API payloads, CLI
options, JSON imports, document-extraction bags) before it becomes a
domain object, plus application settings loaded from the environment.

Design Principles
-----------------
- Type-safe: Pydantic enforces types and validates ranges
- Immutable: Frozen models prevent accidental mutation
- Strict: ``extra="forbid"`` rejects misspelled fields
- One failure type: validation errors surface as InvalidRuleError
- Environment-aware: AppSettings reads FINSCHED_* variables and .env

Example
-------
>>> from finsched.config import parse_rule_config
>>> cfg = parse_rule_config({
...     "kind": "EXPENSE",
...     "schedule": {"periodicity": "MONTHLY", "day_policy": "LAST_BUSINESS_DAY",
...                  "start_date": "2024-01-01"},
...     "template": {"concept": "Coworking", "base_amount": 150},
... })
>>> cfg.to_schedule().periodicity
<Periodicity.MONTHLY: 'MONTHLY'>
"""

from __future__ import annotations

import datetime
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Literal, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .constants import (
    DEFAULT_DB_PATH,
    DEFAULT_RECORD_STATUS,
    DEFAULT_RETRY_ATTEMPTS,
    DEFAULT_RETRY_BACKOFF_SECONDS,
    DEFAULT_VAT_RATE,
    MAX_OCCURRENCES,
)
from .exceptions import InvalidRuleError
from .exceptions import ValidationError as RecordValidationError
from .models import (
    ContractRef,
    DayPolicy,
    DaySelection,
    Periodicity,
    RecordKind,
    RecordTemplate,
    Schedule,
)

__all__ = [
    "ScheduleConfig",
    "TemplateConfig",
    "ContractRefConfig",
    "RuleConfig",
    "parse_schedule",
    "parse_rule_config",
    "RecordEditConfig",
    "parse_record_edit",
    "format_validation_error",
    "AppSettings",
    "get_settings",
]


def format_validation_error(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        msg = err.get("msg", "invalid value")
        parts.append(f"{loc}: {msg}" if loc else msg)
    return "; ".join(parts)


# ---------------------------------------------------------------------------
# Schedule Configuration
# ---------------------------------------------------------------------------

class ScheduleConfig(BaseModel):
    """
    Untrusted schedule input.

    Attributes
    ----------
    periodicity : Periodicity
        MONTHLY, QUARTERLY, SEMIANNUAL or ANNUAL (case-insensitive).
    day_policy : DayPolicy
        Day selection policy.
    specific_day : int, optional
        Required for SPECIFIC_DAY, 1-31.
    start_date : date
        Inclusive start. Required.
    end_date : date, optional
        Inclusive end; must not precede ``start_date``.

    Examples
    --------
    >>> ScheduleConfig(periodicity="quarterly", day_policy="SPECIFIC_DAY",
    ...                specific_day=15, start_date="2024-02-01").specific_day
    15
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    periodicity: Periodicity = Field(description="Distance between occurrences")
    day_policy: DayPolicy = Field(
        default=DayPolicy.LAST_BUSINESS_DAY,
        description="Day selection policy"
    )
    specific_day: Optional[int] = Field(
        default=None,
        ge=1,
        le=31,
        description="Day of month for SPECIFIC_DAY"
    )
    start_date: datetime.date = Field(description="Inclusive start date")
    end_date: Optional[datetime.date] = Field(
        default=None,
        description="Inclusive end date; None means open-ended"
    )

    @field_validator("periodicity", "day_policy", mode="before")
    @classmethod
    def upper_case_names(cls, v):
        """Accept lower-case enum names."""
        return v.upper() if isinstance(v, str) else v

    @model_validator(mode="after")
    def check_consistency(self):
        """SPECIFIC_DAY needs a day; the range must not be inverted."""
        if self.day_policy is DayPolicy.SPECIFIC_DAY and self.specific_day is None:
            raise ValueError("specific_day is required when day_policy is SPECIFIC_DAY")
        if self.end_date is not None and self.end_date < self.start_date:
            raise ValueError(
                f"end_date ({self.end_date}) must not be before start_date ({self.start_date})"
            )
        return self

    def to_schedule(self) -> Schedule:
        return Schedule(
            periodicity=self.periodicity,
            day_selection=DaySelection(self.day_policy, self.specific_day),
            start_date=self.start_date,
            end_date=self.end_date,
        )

    @classmethod
    def from_schedule(cls, schedule: Schedule) -> "ScheduleConfig":
        return cls(
            periodicity=schedule.periodicity,
            day_policy=schedule.day_selection.policy,
            specific_day=schedule.day_selection.day,
            start_date=schedule.start_date,
            end_date=schedule.end_date,
        )


# ---------------------------------------------------------------------------
# Template Configuration
# ---------------------------------------------------------------------------

class TemplateConfig(BaseModel):
    """
    Untrusted record template input.

    ``withholding_rate`` left as None takes the kind's default when the
    rule is built.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    concept: str = Field(min_length=1, description="Record concept")
    base_amount: float = Field(default=0.0, ge=0, description="Taxable base")
    vat_rate: float = Field(default=DEFAULT_VAT_RATE, ge=0, le=100, description="VAT %")
    withholding_rate: Optional[float] = Field(
        default=None,
        ge=0,
        le=100,
        description="Withholding %"
    )
    counterparty_name: str = ""
    counterparty_tax_id: str = ""
    category: str = ""
    description: str = ""
    status: str = DEFAULT_RECORD_STATUS
    extra: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("concept")
    @classmethod
    def strip_concept(cls, v: str) -> str:
        """Reject blank concepts."""
        v = v.strip()
        if not v:
            raise ValueError("concept must not be blank")
        return v

    def to_template(self) -> RecordTemplate:
        return RecordTemplate(**self.model_dump())

    @classmethod
    def from_template(cls, template: RecordTemplate) -> "TemplateConfig":
        values = {
            "concept": template.concept,
            "base_amount": template.base_amount,
            "vat_rate": template.vat_rate,
            "withholding_rate": template.withholding_rate,
            "counterparty_name": template.counterparty_name,
            "counterparty_tax_id": template.counterparty_tax_id,
            "category": template.category,
            "description": template.description,
            "status": template.status,
            "extra": dict(template.extra),
        }
        return cls(**values)


class ContractRefConfig(BaseModel):
    """Link to the source document of an extracted rule."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    document_id: str = Field(min_length=1)
    file_url: str = ""
    confidence: Optional[float] = Field(default=None, ge=0, le=100)
    extracted_fields: Dict[str, Any] = Field(default_factory=dict)

    def to_contract_ref(self) -> ContractRef:
        return ContractRef(**self.model_dump())


# ---------------------------------------------------------------------------
# Rule Configuration
# ---------------------------------------------------------------------------

class RuleConfig(BaseModel):
    """
    Complete input for creating a series.

    Examples
    --------
    >>> cfg = RuleConfig(
    ...     kind="INCOME",
    ...     schedule=ScheduleConfig(periodicity="MONTHLY", start_date="2025-01-01"),
    ...     template=TemplateConfig(concept="Retainer", base_amount=1000),
    ... )
    >>> cfg.to_rule_inputs()["template"].withholding_rate is None
    True
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: RecordKind
    name: Optional[str] = Field(default=None, max_length=200)
    schedule: ScheduleConfig
    template: TemplateConfig
    contract_ref: Optional[ContractRefConfig] = None

    @field_validator("kind", mode="before")
    @classmethod
    def upper_case_kind(cls, v):
        return v.upper() if isinstance(v, str) else v

    def to_schedule(self) -> Schedule:
        return self.schedule.to_schedule()

    def to_rule_inputs(self) -> Dict[str, Any]:
        """Keyword arguments for ``SeriesRegistry.create``."""
        return {
            "kind": self.kind,
            "schedule": self.schedule.to_schedule(),
            "template": self.template.to_template(),
            "name": self.name,
            "contract_ref": (
                self.contract_ref.to_contract_ref() if self.contract_ref is not None else None
            ),
        }


def parse_schedule(data: Union[Schedule, ScheduleConfig, Mapping[str, Any]]) -> Schedule:
    """
    Validate ``data`` into a Schedule.

    Raises
    ------
    InvalidRuleError
        If any field is missing or invalid.
    """
    if isinstance(data, Schedule):
        return data
    if isinstance(data, ScheduleConfig):
        return data.to_schedule()
    try:
        config = ScheduleConfig.model_validate(dict(data))
    except ValidationError as exc:
        raise InvalidRuleError(format_validation_error(exc)) from exc
    return config.to_schedule()


def parse_rule_config(data: Union[RuleConfig, Mapping[str, Any]]) -> RuleConfig:
    """
    Validate a rule payload.

    Raises
    ------
    InvalidRuleError
        If any field is missing or invalid.
    """
    if isinstance(data, RuleConfig):
        return data
    try:
        return RuleConfig.model_validate(dict(data))
    except ValidationError as exc:
        raise InvalidRuleError(format_validation_error(exc)) from exc


# ---------------------------------------------------------------------------
# Record Edits
# ---------------------------------------------------------------------------

class RecordEditConfig(BaseModel):
    """
    Field changes to one stored record.

    Amount and rate bounds match TemplateConfig. Only ``withholding_rate``
    may be set to None, meaning the default of the record's kind.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    date: Optional[datetime.date] = None
    concept: Optional[str] = Field(default=None, min_length=1)
    base_amount: Optional[float] = Field(default=None, ge=0)
    vat_rate: Optional[float] = Field(default=None, ge=0, le=100)
    withholding_rate: Optional[float] = Field(default=None, ge=0, le=100)
    counterparty_name: Optional[str] = None
    counterparty_tax_id: Optional[str] = None
    category: Optional[str] = None
    description: Optional[str] = None
    status: Optional[str] = None
    extra: Optional[Dict[str, Any]] = None

    @field_validator("concept")
    @classmethod
    def strip_concept(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip()
        if not v:
            raise ValueError("concept must not be blank")
        return v

    @model_validator(mode="after")
    def check_required(self):
        """Explicit None is only meaningful for the withholding rate."""
        nullable = {"withholding_rate", "extra"}
        for name in sorted(self.model_fields_set - nullable):
            if getattr(self, name) is None:
                raise ValueError(f"{name} must not be null")
        return self


def parse_record_edit(changes: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Validate record field changes; returns only the fields supplied.

    Raises
    ------
    finsched.exceptions.ValidationError
        If a field is unknown or out of range.
    """
    try:
        config = RecordEditConfig.model_validate(dict(changes))
    except ValidationError as exc:
        raise RecordValidationError(format_validation_error(exc)) from exc
    return config.model_dump(exclude_unset=True)


# ---------------------------------------------------------------------------
# Application Settings (Environment Variables)
# ---------------------------------------------------------------------------

class AppSettings(BaseSettings):
    """
    Global application settings loaded from environment variables.

    Supports .env files for local development. Environment variables
    are prefixed with FINSCHED_ (e.g., FINSCHED_LOG_LEVEL=DEBUG).

    Attributes
    ----------
    db_path : Path
        SQLite database file.
    log_level : str
        Logging level: "DEBUG", "INFO", "WARNING", "ERROR".
    log_format : str
        "console" for human-readable logs, "json" for one JSON object per line.
    retry_attempts : int
        Attempts per record on store conflicts (1-10).
    retry_backoff_seconds : float
        Linear backoff base between attempts.
    max_occurrences : int
        Safety cap on dates produced by a single stepper run.

    Examples
    --------
    >>> settings = AppSettings()
    >>> settings.retry_attempts
    3

    # With .env file:
    # FINSCHED_DB_PATH=/tmp/finsched.db
    >>> settings = AppSettings(_env_file=".env")
    """

    model_config = SettingsConfigDict(
        env_prefix="FINSCHED_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    db_path: Path = Field(
        default=DEFAULT_DB_PATH,
        description="SQLite database file"
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level"
    )
    log_format: Literal["console", "json"] = Field(
        default="console",
        description="Log renderer"
    )
    retry_attempts: int = Field(
        default=DEFAULT_RETRY_ATTEMPTS,
        ge=1,
        le=10,
        description="Attempts per record on store conflicts"
    )
    retry_backoff_seconds: float = Field(
        default=DEFAULT_RETRY_BACKOFF_SECONDS,
        ge=0,
        description="Linear backoff base in seconds"
    )
    max_occurrences: int = Field(
        default=MAX_OCCURRENCES,
        ge=1,
        le=10_000,
        description="Stepper safety cap"
    )


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    """Process-wide settings, read once."""
    return AppSettings()
