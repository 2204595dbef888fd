"""
Recurrence stepper for FinSched.

Purpose
-------
Turns a Schedule into the ordered list of dates on which the series
should produce a record. The stepper is pure and restartable: the same
schedule and bound always yield the same dates.

Algorithm
---------
1. Put a month cursor on the month of ``start_date``.
2. Resolve the period's date with the day selection policy.
3. Skip it if it falls before ``start_date`` (only possible in the first
   period, e.g. LAST_BUSINESS_DAY rolled back before a mid-month start).
4. Stop once a resolved date exceeds the bound; otherwise advance the
   cursor by 1, 3, 6 or 12 months and repeat.

ANNUAL schedules therefore anchor on the start month, QUARTERLY on every
third month from it, and so on.

Example
-------
>>> from datetime import date
>>> from finsched.models import Schedule, Periodicity, DaySelection
>>> s = Schedule(Periodicity.QUARTERLY, DaySelection.specific(15),
...              date(2024, 2, 1), date(2024, 11, 30))
>>> generate_occurrences(s, 2025)
[datetime.date(2024, 2, 15), datetime.date(2024, 5, 15),
 datetime.date(2024, 8, 15), datetime.date(2024, 11, 15)]
"""

from __future__ import annotations

from datetime import MAXYEAR, date
from itertools import islice
from typing import Iterator, List, Optional, Union

from .constants import MAX_OCCURRENCES
from .dates import month_ordinal, resolve_occurrence, year_bounds
from .models import DayPolicy, DaySelection, Periodicity, Schedule

__all__ = [
    "iter_occurrences",
    "generate_occurrences",
    "occurrences_in_year",
    "effective_bound",
    "periodicity_label",
    "day_selection_label",
    "describe_schedule",
]

Bound = Union[int, date]


def effective_bound(schedule: Schedule, upper_bound: Bound) -> date:
    """``min(upper_bound, schedule.end_date)``; an int means Dec 31 of that year."""
    bound = year_bounds(upper_bound)[1] if isinstance(upper_bound, int) else upper_bound
    if schedule.end_date is not None and schedule.end_date < bound:
        return schedule.end_date
    return bound


def iter_occurrences(
    schedule: Schedule,
    upper_bound: Bound,
    lower_bound: Optional[date] = None,
) -> Iterator[date]:
    """
    Lazily yield occurrence dates up to ``upper_bound``.

    Parameters
    ----------
    schedule : Schedule
        Validated schedule.
    upper_bound : int or date
        Inclusive bound, clipped to ``schedule.end_date``.
    lower_bound : date, optional
        Drop occurrences before this day. The cursor jumps straight to the
        period containing it, keeping the start-month phase, so windows
        far from ``start_date`` do not walk every earlier period.

    Yields
    ------
    date
        Strictly increasing occurrence dates.
    """
    bound = effective_bound(schedule, upper_bound)
    step = schedule.periodicity.months
    start = schedule.start_date
    cursor = month_ordinal(start.year, start.month)

    if lower_bound is not None and lower_bound > start:
        gap = month_ordinal(lower_bound.year, lower_bound.month) - cursor
        cursor += (gap // step) * step

    while True:
        year, month0 = divmod(cursor, 12)
        if year > MAXYEAR:
            return
        occurrence = resolve_occurrence(year, month0 + 1, schedule.day_selection)
        if occurrence > bound:
            return
        if occurrence >= start and (lower_bound is None or occurrence >= lower_bound):
            yield occurrence
        cursor += step


def generate_occurrences(
    schedule: Schedule,
    upper_bound: Bound,
    max_occurrences: int = MAX_OCCURRENCES,
) -> List[date]:
    """
    All occurrences from ``start_date`` through the effective bound.

    At most ``max_occurrences`` dates are returned.
    """
    return list(islice(iter_occurrences(schedule, upper_bound), max_occurrences))


def occurrences_in_year(schedule: Schedule, year: int) -> List[date]:
    """Occurrences of ``schedule`` falling in ``[Jan 1, Dec 31]`` of ``year``."""
    first, last = year_bounds(year)
    if schedule.start_date > last:
        return []
    if schedule.end_date is not None and schedule.end_date < first:
        return []
    return list(iter_occurrences(schedule, last, lower_bound=first))


# ---------------------------------------------------------------------------
# Labels
# ---------------------------------------------------------------------------

_PERIODICITY_LABELS = {
    Periodicity.MONTHLY: "Monthly",
    Periodicity.QUARTERLY: "Quarterly",
    Periodicity.SEMIANNUAL: "Semiannual",
    Periodicity.ANNUAL: "Annual",
}

_PERIOD_NOUNS = {
    Periodicity.MONTHLY: "every month",
    Periodicity.QUARTERLY: "every quarter",
    Periodicity.SEMIANNUAL: "every semester",
    Periodicity.ANNUAL: "every year",
}

_POLICY_LABELS = {
    DayPolicy.LAST_BUSINESS_DAY: "Last business day",
    DayPolicy.FIRST_BUSINESS_DAY: "First business day",
    DayPolicy.LAST_CALENDAR_DAY: "Last day",
    DayPolicy.FIRST_CALENDAR_DAY: "First day",
}


def periodicity_label(periodicity: Periodicity) -> str:
    return _PERIODICITY_LABELS[Periodicity(periodicity)]


def day_selection_label(selection: DaySelection) -> str:
    if selection.policy is DayPolicy.SPECIFIC_DAY:
        return f"Day {selection.day}"
    return _POLICY_LABELS[selection.policy]


def describe_schedule(schedule: Schedule) -> str:
    """
    One-line human description.

    >>> describe_schedule(s)
    'day 15 of every quarter, from 2024-02-01 until 2024-11-30'
    """
    text = (
        f"{day_selection_label(schedule.day_selection).lower()} of "
        f"{_PERIOD_NOUNS[schedule.periodicity]}, from {schedule.start_date.isoformat()}"
    )
    if schedule.end_date is not None:
        text += f" until {schedule.end_date.isoformat()}"
    return text
