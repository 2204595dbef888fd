"""
Unit tests for the SQLite storage backend.

Tests row mapping, the store uniqueness contract, rule persistence and
the year index against a temporary database file.
"""

from dataclasses import replace
from datetime import date, datetime

import pytest

from finsched.amounts import draft_from_template
from finsched.exceptions import RecordConflictError, RecordNotFoundError, SeriesNotFoundError
from finsched.models import ContractRef, RecordKind, RecurrenceRule
from finsched.scheduler import Scheduler
from finsched.storage.base import RecordStore, RuleRegistry, YearIndex
from finsched.storage.sqlite import SQLiteDatabase


@pytest.fixture
def db(tmp_path):
    database = SQLiteDatabase(tmp_path / "data" / "finsched.db").initialize()
    yield database
    database.close()


@pytest.fixture
def rule(db, monthly_last_business_day, retainer_template):
    return db.rules().add(
        RecurrenceRule(
            id="s1",
            kind=RecordKind.INCOME,
            name="Retainer",
            schedule=monthly_last_business_day,
            template=retainer_template.merged({"payment_method": "transfer"}),
            contract_ref=ContractRef("doc-7", "https://files.example/doc-7.pdf", 88.0,
                                     {"importe": 1000}),
            created_at=datetime(2024, 1, 2, 10, 30),
            updated_at=datetime(2024, 1, 2, 10, 30),
        )
    )


def _draft(rule, on, series=True):
    return draft_from_template(
        rule.kind, rule.template, on, series_id=rule.id if series else None
    )


class TestProtocols:
    """Tests that the DAOs satisfy the storage protocols."""

    def test_runtime_checkable(self, db):
        assert isinstance(db.records(), RecordStore)
        assert isinstance(db.rules(), RuleRegistry)
        assert isinstance(db.year_index(), YearIndex)


class TestSQLiteRecordStore:
    """Tests for SQLiteRecordStore."""

    def test_create_and_get(self, db, rule):
        """Test that every stamped field survives a round trip."""
        store = db.records()

        record = store.create(_draft(rule, date(2024, 1, 31)))

        fetched = store.get(record.id)
        assert fetched == record
        assert fetched.kind is RecordKind.INCOME
        assert fetched.date == date(2024, 1, 31)
        assert fetched.total == 1140.0
        assert fetched.number == "2024-001"
        assert fetched.extra == {"payment_method": "transfer"}

    def test_create_idempotent_on_series_and_date(self, db, rule):
        store = db.records()

        first = store.create(_draft(rule, date(2024, 1, 31)))
        second = store.create(_draft(rule, date(2024, 1, 31)))

        assert second.id == first.id
        assert store.count_by_series(rule.id) == 1

    def test_create_or_get_reports_insert(self, db, rule):
        store = db.records()

        first, inserted = store.create_or_get(_draft(rule, date(2024, 1, 31)))
        again, inserted_again = store.create_or_get(_draft(rule, date(2024, 1, 31)))

        assert inserted
        assert not inserted_again
        assert again.id == first.id

    def test_standalone_records_not_deduplicated(self, db, rule):
        store = db.records()

        store.create(_draft(rule, date(2024, 1, 31), series=False))
        store.create(_draft(rule, date(2024, 1, 31), series=False))

        assert len(store.list_by_year(2024)) == 2

    def test_numbers_per_year(self, db, rule):
        store = db.records()

        store.create(_draft(rule, date(2024, 1, 31)))
        store.create(_draft(rule, date(2024, 2, 29)))
        later = store.create(_draft(rule, date(2025, 1, 31)))

        assert later.number == "2025-001"
        assert [r.number for r in store.list_by_year(2024)] == ["2024-001", "2024-002"]

    def test_number_clash_on_update(self, db, rule):
        """Test that a duplicate number surfaces as RecordConflictError."""
        store = db.records()
        first = store.create(_draft(rule, date(2024, 1, 31)))
        second = store.create(_draft(rule, date(2024, 2, 29)))

        with pytest.raises(RecordConflictError):
            store.update(replace(second, number=first.number))

    def test_update_missing(self, db, rule):
        store = db.records()
        record = store.create(_draft(rule, date(2024, 1, 31)))

        with pytest.raises(RecordNotFoundError):
            store.update(replace(record, id=999))

    def test_list_by_year_kind_filter(self, db, rule):
        store = db.records()
        store.create(_draft(rule, date(2024, 1, 31)))

        assert len(store.list_by_year(2024, RecordKind.INCOME)) == 1
        assert store.list_by_year(2024, RecordKind.EXPENSE) == []

    def test_delete_by_year_and_years(self, db, rule):
        store = db.records()
        store.create(_draft(rule, date(2024, 12, 31)))
        store.create(_draft(rule, date(2025, 1, 31)))

        assert store.years() == [2024, 2025]
        assert store.delete_by_year(2024) == 1
        assert store.years() == [2025]

    def test_detach_series(self, db, rule):
        store = db.records()
        store.create(_draft(rule, date(2024, 1, 31)))
        store.create(_draft(rule, date(2024, 2, 29)))

        assert store.detach_series(rule.id) == 2
        assert store.count_by_series(rule.id) == 0
        assert all(r.series_id is None for r in store.list_by_year(2024))

    def test_rule_removal_detaches_records(self, db, rule):
        """Test the ON DELETE SET NULL link between records and rules."""
        store = db.records()
        record = store.create(_draft(rule, date(2024, 1, 31)))

        db.rules().remove(rule.id)

        assert store.get(record.id).series_id is None


class TestSQLiteRuleRegistry:
    """Tests for SQLiteRuleRegistry."""

    def test_round_trip(self, db, rule):
        fetched = db.rules().get("s1")

        assert fetched.schedule == rule.schedule
        assert fetched.template == rule.template
        assert fetched.template.withholding_rate == 7.0
        assert fetched.contract_ref.document_id == "doc-7"
        assert fetched.contract_ref.extracted_fields == {"importe": 1000}
        assert fetched.created_at == datetime(2024, 1, 2, 10, 30)

    def test_duplicate_id(self, db, rule):
        with pytest.raises(RecordConflictError):
            db.rules().add(rule)

    def test_progress_setters(self, db, rule):
        rules = db.rules()

        rules.set_last_year_generated("s1", 2025)
        rules.set_total_generated("s1", 24)

        fetched = rules.get("s1")
        assert fetched.last_year_generated == 2025
        assert fetched.total_generated == 24

    def test_setters_on_missing_rule(self, db):
        with pytest.raises(SeriesNotFoundError):
            db.rules().set_total_generated("nope", 1)

    def test_list_by_kind(self, db, rule):
        assert [r.id for r in db.rules().list(RecordKind.INCOME)] == ["s1"]
        assert db.rules().list(RecordKind.EXPENSE) == []


class TestSQLiteYearIndex:
    """Tests for SQLiteYearIndex."""

    def test_add_is_idempotent(self, db):
        index = db.year_index()

        index.add(2025)
        index.add(2025)
        index.extend([2024, 2026])

        assert index.years() == [2024, 2025, 2026]

    def test_remove(self, db):
        index = db.year_index()
        index.extend([2024, 2025])

        index.remove(2025)
        index.remove(2030)

        assert index.years() == [2024]


class TestSchedulerOverSQLite:
    """Tests for the scheduler facade on a database file."""

    def test_state_survives_reopen(self, tmp_path, settings, clock, sleeps):
        path = tmp_path / "finsched.db"
        payload = {
            "kind": "EXPENSE",
            "schedule": {"periodicity": "MONTHLY", "day_policy": "LAST_BUSINESS_DAY",
                         "start_date": "2024-01-01"},
            "template": {"concept": "Office rent", "base_amount": 800},
        }
        with Scheduler.open(path, settings=settings, today=clock, sleep=sleeps.append) as app:
            created = app.create_series(payload)
            app.mutator.extend_year(2025)

        with Scheduler.open(path, settings=settings, today=clock) as app:
            rule = app.registry.get(created.rule.id)
            assert rule.last_year_generated == 2025
            assert rule.total_generated == 24
            assert app.year_index.years() == [2025]
            assert len(app.registry.records_of(rule.id)) == 24

    def test_regeneration(self, tmp_path, settings, clock, quarterly_day_15):
        with Scheduler.open(tmp_path / "finsched.db", settings=settings, today=clock) as app:
            created = app.create_series({
                "kind": "INCOME",
                "schedule": {"periodicity": "MONTHLY", "start_date": "2024-01-01"},
                "template": {"concept": "Retainer", "base_amount": 1000},
            })

            result = app.mutator.edit_series(created.rule.id, schedule=quarterly_day_15)

            assert result.deleted_count == 12
            assert result.created_count == 4
            numbers = [r.number for r in app.registry.records_of(created.rule.id)]
            assert numbers == ["2024-001", "2024-002", "2024-003", "2024-004"]
