"""
Custom exceptions for FinSched.

Purpose
-------
Provides a unified exception hierarchy for consistent error handling
across all FinSched modules. All exceptions inherit from FinSchedError,
enabling catch-all handling when needed. Each class carries a stable
``code`` string so API and CLI layers can report failures without
matching on message text.

Exception Hierarchy
-------------------
FinSchedError (base)
├── ValidationError - Data validation failures
│   └── InvalidRuleError - Malformed recurrence rule (INVALID_RULE)
├── MaterializationError - Record creation budget exhausted (MATERIALIZATION_FAILED)
├── RecordConflictError - Store uniqueness conflict, retryable
└── NotFoundError - Missing entity
    ├── SeriesNotFoundError
    └── RecordNotFoundError

RegenerationIncompleteWarning (UserWarning) - REGENERATION_INCOMPLETE

Usage
-----
>>> from finsched.exceptions import InvalidRuleError, FinSchedError
>>>
>>> raise InvalidRuleError("specific_day must be within 1-31, got 32")
>>>
>>> try:
...     mutator.extend_year(2025)
... except FinSchedError as e:
...     print(f"[{e.code}] {e}")
"""

__all__ = [
    "FinSchedError",
    "ValidationError",
    "InvalidRuleError",
    "MaterializationError",
    "RecordConflictError",
    "NotFoundError",
    "SeriesNotFoundError",
    "RecordNotFoundError",
    "RegenerationIncompleteWarning",
]


class FinSchedError(Exception):
    """
    Base exception for all FinSched errors.

    Examples
    --------
    >>> try:
    ...     registry.get("missing")
    ... except FinSchedError as e:
    ...     logger.error("lookup_failed", code=e.code)
    """

    code = "FINSCHED_ERROR"


class ValidationError(FinSchedError, ValueError):
    """
    Data validation failures.

    Raised when an input value fails a check outside of rule parsing,
    e.g. an unknown field name passed to a record edit or a negative
    base amount. Also a ``ValueError`` so callers that only know the
    builtin hierarchy still catch it.
    """

    code = "VALIDATION_ERROR"


class InvalidRuleError(ValidationError):
    """
    Structurally invalid recurrence rule.

    Raised when:
    - ``start_date`` is missing
    - ``end_date`` is earlier than ``start_date``
    - SPECIFIC_DAY selection has a day outside 1-31 (or none at all)
    - periodicity / day policy names are unknown

    Examples
    --------
    >>> raise InvalidRuleError("end_date (2024-01-01) is before start_date (2024-06-01)")
    """

    code = "INVALID_RULE"


class MaterializationError(FinSchedError):
    """
    Record creation could not complete within the retry budget.

    Records created before the failure are kept; ``created_count`` tells
    how many made it so the caller can decide whether to re-run.

    Parameters
    ----------
    message : str
        Human-readable description.
    created_count : int
        Number of records created before the failure.
    series_id : str, optional
        Series being materialized.
    year : int, optional
        Target year of the failed run.
    """

    code = "MATERIALIZATION_FAILED"

    def __init__(
        self,
        message: str,
        created_count: int = 0,
        series_id: str = None,
        year: int = None,
    ):
        super().__init__(message)
        self.created_count = created_count
        self.series_id = series_id
        self.year = year


class RecordConflictError(FinSchedError):
    """
    Uniqueness conflict raised by a record store.

    Typical cause is two writers assigning the same external number
    (``YYYY-NNN``) to income records. The Materializer treats it as
    transient and retries with backoff.
    """

    code = "RECORD_CONFLICT"


class NotFoundError(FinSchedError, LookupError):
    """Requested entity does not exist."""

    code = "NOT_FOUND"


class SeriesNotFoundError(NotFoundError):
    """No recurrence rule with the given id."""

    code = "SERIES_NOT_FOUND"


class RecordNotFoundError(NotFoundError):
    """No generated record with the given id."""

    code = "RECORD_NOT_FOUND"


class RegenerationIncompleteWarning(UserWarning):
    """
    A series regeneration created fewer records than expected.

    Regeneration deletes the old records before re-materializing, so a
    failure midway leaves the series shorter than its schedule implies.
    This is reported, not rolled back.
    """

    code = "REGENERATION_INCOMPLETE"
