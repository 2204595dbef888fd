"""
Calendar arithmetic for FinSched.

Purpose
-------
Resolves the concrete day inside a (year, month) pair for each day
selection policy. Business days are Monday to Friday; no holiday
calendar is applied. Rolling over weekends is delegated to NumPy's
business-day routines (``numpy.busday_offset``) so the weekmask lives
in one place.

Example
-------
>>> from finsched.dates import resolve_occurrence
>>> from finsched.models import DaySelection, DayPolicy
>>> resolve_occurrence(2024, 3, DaySelection(DayPolicy.LAST_BUSINESS_DAY))
datetime.date(2024, 3, 29)
>>> resolve_occurrence(2024, 4, DaySelection.specific(31))
datetime.date(2024, 4, 30)
"""

from __future__ import annotations

import calendar
from datetime import date, datetime
from typing import Tuple, Union

import numpy as np

from .exceptions import InvalidRuleError
from .models import DayPolicy, DaySelection

__all__ = [
    "BUSINESS_WEEKMASK",
    "days_in_month",
    "is_business_day",
    "roll_to_business_day",
    "resolve_occurrence",
    "year_bounds",
    "add_months",
    "month_ordinal",
    "parse_date",
    "format_date",
]

BUSINESS_WEEKMASK = "1111100"


# ---------------------------------------------------------------------------
# Month helpers
# ---------------------------------------------------------------------------

def days_in_month(year: int, month: int) -> int:
    """Number of days in ``month`` of ``year`` (leap-year aware)."""
    return calendar.monthrange(year, month)[1]


def year_bounds(year: int) -> Tuple[date, date]:
    """Return ``(Jan 1, Dec 31)`` of ``year``."""
    return date(year, 1, 1), date(year, 12, 31)


def month_ordinal(year: int, month: int) -> int:
    """Zero-based month counter, ``year * 12 + month - 1``."""
    return year * 12 + month - 1


def add_months(year: int, month: int, n: int) -> Tuple[int, int]:
    """Shift ``(year, month)`` by ``n`` months; ``n`` may be negative."""
    y, m = divmod(month_ordinal(year, month) + n, 12)
    return y, m + 1


# ---------------------------------------------------------------------------
# Business days
# ---------------------------------------------------------------------------

def is_business_day(d: date) -> bool:
    """True for Monday through Friday."""
    return bool(np.is_busday(np.datetime64(d, "D"), weekmask=BUSINESS_WEEKMASK))


def roll_to_business_day(d: date, direction: str) -> date:
    """
    Move ``d`` onto a business day.

    Parameters
    ----------
    d : date
        Starting day; returned unchanged if already a business day.
    direction : {"backward", "forward"}
        Roll toward earlier or later days.
    """
    if direction not in ("backward", "forward"):
        raise ValueError(f"direction must be 'backward' or 'forward', got {direction!r}")
    rolled = np.busday_offset(
        np.datetime64(d, "D"), 0, roll=direction, weekmask=BUSINESS_WEEKMASK
    )
    return rolled.item()


# ---------------------------------------------------------------------------
# Occurrence resolution
# ---------------------------------------------------------------------------

def resolve_occurrence(year: int, month: int, selection: DaySelection) -> date:
    """
    Concrete date selected by ``selection`` within ``(year, month)``.

    Parameters
    ----------
    year : int
        Calendar year, 1-9999.
    month : int
        Calendar month, 1-12.
    selection : DaySelection
        Day policy and, for SPECIFIC_DAY, the requested day. Days past
        the end of a short month clamp to its last day.

    Returns
    -------
    date
    """
    policy = selection.policy
    last = days_in_month(year, month)

    if policy is DayPolicy.FIRST_CALENDAR_DAY:
        return date(year, month, 1)
    if policy is DayPolicy.LAST_CALENDAR_DAY:
        return date(year, month, last)
    if policy is DayPolicy.FIRST_BUSINESS_DAY:
        return roll_to_business_day(date(year, month, 1), "forward")
    if policy is DayPolicy.LAST_BUSINESS_DAY:
        return roll_to_business_day(date(year, month, last), "backward")
    # SPECIFIC_DAY
    return date(year, month, min(selection.day, last))


# ---------------------------------------------------------------------------
# Parsing / formatting
# ---------------------------------------------------------------------------

def parse_date(value: Union[str, date, datetime, None], field: str = "date") -> date:
    """
    Coerce ``value`` to a ``date``.

    Accepts ``date`` / ``datetime`` instances and ISO strings
    (``YYYY-MM-DD``, optionally with a time part which is dropped).

    Raises
    ------
    InvalidRuleError
        If ``value`` is missing or not a valid date.
    """
    if value is None or value == "":
        raise InvalidRuleError(f"{field} is required")
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip()[:10])
        except ValueError as exc:
            raise InvalidRuleError(f"{field} is not a valid ISO date: {value!r}") from exc
    raise InvalidRuleError(f"{field} must be a date or ISO string, got {type(value).__name__}")


def format_date(d: date) -> str:
    """ISO ``YYYY-MM-DD``."""
    return d.isoformat()
