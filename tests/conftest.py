"""
Pytest configuration and fixtures for the FinSched test suite.

Fixtures provide in-memory stores, a fixed clock and sample rules so
each test arranges only what it exercises.
"""

from datetime import date
from typing import List

import pytest

from finsched.config import AppSettings
from finsched.exceptions import RecordConflictError
from finsched.models import (
    DayPolicy,
    DaySelection,
    Periodicity,
    RecordKind,
    RecordTemplate,
    Schedule,
)
from finsched.scheduler import Scheduler
from finsched.storage.memory import (
    InMemoryRecordStore,
    InMemoryRuleRegistry,
    InMemoryYearIndex,
)


# ---------------------------------------------------------------------------
# Clock / settings
# ---------------------------------------------------------------------------

@pytest.fixture
def today() -> date:
    """Fixed 'today' for tests: mid-2024."""
    return date(2024, 6, 15)


@pytest.fixture
def clock(today):
    """Callable clock returning the fixed today."""
    return lambda: today


@pytest.fixture
def settings(tmp_path) -> AppSettings:
    """Settings isolated from the environment and any .env file."""
    return AppSettings(
        _env_file=None,
        db_path=tmp_path / "finsched.db",
        retry_attempts=3,
        retry_backoff_seconds=0.5,
    )


@pytest.fixture
def sleeps() -> List[float]:
    """Records backoff delays instead of sleeping."""
    return []


# ---------------------------------------------------------------------------
# Schedules / templates
# ---------------------------------------------------------------------------

@pytest.fixture
def monthly_last_business_day() -> Schedule:
    """Open-ended MONTHLY / LAST_BUSINESS_DAY from 2024-01-01."""
    return Schedule(
        periodicity=Periodicity.MONTHLY,
        day_selection=DaySelection(DayPolicy.LAST_BUSINESS_DAY),
        start_date=date(2024, 1, 1),
    )


@pytest.fixture
def quarterly_day_15() -> Schedule:
    """QUARTERLY / day 15 between 2024-02-01 and 2024-11-30."""
    return Schedule(
        periodicity=Periodicity.QUARTERLY,
        day_selection=DaySelection.specific(15),
        start_date=date(2024, 2, 1),
        end_date=date(2024, 11, 30),
    )


@pytest.fixture
def rent_template() -> RecordTemplate:
    """Office rent expense: base 800, VAT 21, no withholding."""
    return RecordTemplate(
        concept="Office rent",
        base_amount=800.0,
        vat_rate=21.0,
        withholding_rate=0.0,
        counterparty_name="Batan House SL",
        counterparty_tax_id="B12345678",
        category="RENT",
    )


@pytest.fixture
def retainer_template() -> RecordTemplate:
    """Monthly consulting retainer invoiced to a client (default withholding)."""
    return RecordTemplate(
        concept="Consulting retainer",
        base_amount=1000.0,
        counterparty_name="Acme Corp",
    )


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------

@pytest.fixture
def app(settings, clock, sleeps) -> Scheduler:
    """In-memory scheduler with fixed clock and recorded backoff."""
    return Scheduler.in_memory(settings=settings, today=clock, sleep=sleeps.append)


@pytest.fixture
def rent_rule(app, monthly_last_business_day, rent_template):
    """Registered (not yet materialized) monthly rent expense series."""
    return app.registry.create(RecordKind.EXPENSE, monthly_last_business_day, rent_template)


@pytest.fixture
def retainer_rule(app, monthly_last_business_day, retainer_template):
    """Registered (not yet materialized) monthly income series."""
    return app.registry.create(RecordKind.INCOME, monthly_last_business_day, retainer_template)


class FlakyRecordStore(InMemoryRecordStore):
    """
    Record store that raises RecordConflictError on demand.

    The first ``failures`` creates fail, and creates dated on any of
    ``poisoned`` always fail. For dates in ``racing`` another writer
    stores the same record just before the call.
    """

    def __init__(self, failures=0, poisoned=(), racing=()):
        super().__init__()
        self.failures = failures
        self.poisoned = set(poisoned)
        self.racing = set(racing)
        self.calls = 0

    def create_or_get(self, draft):
        self.calls += 1
        if draft.date in self.poisoned:
            raise RecordConflictError(f"record number clash on {draft.date}")
        if self.failures > 0:
            self.failures -= 1
            raise RecordConflictError("record number clash")
        if draft.date in self.racing:
            self.racing.discard(draft.date)
            super().create_or_get(draft)
        return super().create_or_get(draft)


@pytest.fixture
def flaky_app(settings, clock, sleeps):
    """Factory for schedulers over a FlakyRecordStore."""
    def build(**store_kwargs) -> Scheduler:
        return Scheduler(
            InMemoryRuleRegistry(),
            FlakyRecordStore(**store_kwargs),
            InMemoryYearIndex(),
            settings=settings,
            today=clock,
            sleep=sleeps.append,
        )
    return build
