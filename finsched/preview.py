"""
Preview service: dry-run a candidate schedule.

Nothing is persisted. When the candidate has no end date the bound is
Dec 31 of the current year; otherwise its own end date. The number of
dates is capped by ``max_occurrences`` and ``truncated`` tells whether
the cap was hit.

Example
-------
>>> from datetime import date
>>> svc = PreviewService(today=lambda: date(2024, 6, 1))
>>> result = svc.preview({"periodicity": "QUARTERLY", "day_policy": "SPECIFIC_DAY",
...                       "specific_day": 15, "start_date": "2024-02-01",
...                       "end_date": "2024-11-30"})
>>> result.count
4
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Any, Callable, Mapping, Optional, Tuple, Union

import pandas as pd

from .amounts import stamp_amounts
from .config import ScheduleConfig, parse_schedule
from .constants import MAX_OCCURRENCES
from .models import RecordKind, RecordTemplate, Schedule
from .recurrence import describe_schedule, iter_occurrences

__all__ = ["PreviewResult", "PreviewService", "preview"]

Candidate = Union[Schedule, ScheduleConfig, Mapping[str, Any]]


@dataclass(frozen=True)
class PreviewResult:
    """Dates a candidate schedule would produce."""

    count: int
    dates: Tuple[date, ...]
    description: str
    bound: date
    truncated: bool = False

    @property
    def first(self) -> Optional[date]:
        return self.dates[0] if self.dates else None

    @property
    def last(self) -> Optional[date]:
        return self.dates[-1] if self.dates else None

    def to_series(
        self,
        template: RecordTemplate,
        kind: RecordKind = RecordKind.EXPENSE,
    ) -> pd.Series:
        """
        Cash-flow preview: stamped total per occurrence.

        Parameters
        ----------
        template : RecordTemplate
            Amounts to stamp on each occurrence.
        kind : RecordKind
            Picks the default withholding rate when the template has none.

        Returns
        -------
        pd.Series
            Totals indexed by a DatetimeIndex named ``date``.
        """
        template = template.for_kind(kind)
        amounts = stamp_amounts(template.base_amount, template.vat_rate, template.withholding_rate)
        index = pd.DatetimeIndex(pd.to_datetime(list(self.dates)), name="date")
        return pd.Series([amounts.total] * len(self.dates), index=index, name="total", dtype=float)


class PreviewService:
    """
    Pure dry-run of a schedule.

    Parameters
    ----------
    today : callable, optional
        Clock returning today's date; defaults to ``date.today``.
    max_occurrences : int
        Cap on returned dates.
    """

    def __init__(
        self,
        today: Optional[Callable[[], date]] = None,
        max_occurrences: int = MAX_OCCURRENCES,
    ):
        self._today = today or date.today
        self.max_occurrences = max_occurrences

    def bound_for(self, schedule: Schedule) -> date:
        if schedule.end_date is not None:
            return schedule.end_date
        return date(self._today().year, 12, 31)

    def preview(self, candidate: Candidate) -> PreviewResult:
        """
        Compute the dates ``candidate`` would produce.

        Raises
        ------
        InvalidRuleError
            If the candidate is structurally invalid (missing start date,
            inverted range, specific day outside 1-31).
        """
        schedule = parse_schedule(candidate)
        bound = self.bound_for(schedule)
        dates = []
        truncated = False
        for occurrence in iter_occurrences(schedule, bound):
            if len(dates) == self.max_occurrences:
                truncated = True
                break
            dates.append(occurrence)
        return PreviewResult(
            count=len(dates),
            dates=tuple(dates),
            description=describe_schedule(schedule),
            bound=bound,
            truncated=truncated,
        )


def preview(candidate: Candidate, today: Optional[Callable[[], date]] = None) -> PreviewResult:
    """Module-level shortcut for ``PreviewService(today).preview(candidate)``."""
    return PreviewService(today=today).preview(candidate)
