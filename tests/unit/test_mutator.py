"""
Unit tests for mutator.py module.

Tests single-record edits, series edits and regeneration, year extension
and year deletion.
"""

from datetime import date

import pytest

from finsched.exceptions import (
    InvalidRuleError,
    RecordNotFoundError,
    RegenerationIncompleteWarning,
    SeriesNotFoundError,
    ValidationError,
)
from finsched.models import (
    DayPolicy,
    DaySelection,
    Periodicity,
    RecordKind,
    Schedule,
)


@pytest.fixture
def quarterly_last_business_day():
    return Schedule(
        periodicity=Periodicity.QUARTERLY,
        day_selection=DaySelection(DayPolicy.LAST_BUSINESS_DAY),
        start_date=date(2024, 1, 1),
    )


def _record_on(app, series_id, on):
    return app.records.find_by_series_and_date(series_id, on)


class TestEditOne:
    """Tests for SeriesMutator.edit_one."""

    def test_detaches_and_restamps(self, app, retainer_rule):
        """Test that an edited record leaves its series with new amounts."""
        app.materializer.materialize(retainer_rule, 2024)
        record = _record_on(app, retainer_rule.id, date(2024, 3, 29))

        edited = app.mutator.edit_one(record.id, base_amount=1200.0)
        rule = app.registry.get(retainer_rule.id)

        assert edited.series_id is None
        assert edited.vat_amount == 252.0
        assert edited.withholding_amount == 84.0
        assert edited.total == 1368.0
        assert edited.number == record.number
        assert app.registry.linked_count(retainer_rule.id) == 11
        assert app.registry.get(retainer_rule.id).total_generated == 11
        assert rule.last_year_generated == 2024

    def test_series_untouched(self, app, retainer_rule):
        """Test that other records and the rule keep their values."""
        app.materializer.materialize(retainer_rule, 2024)
        record = _record_on(app, retainer_rule.id, date(2024, 3, 29))

        app.mutator.edit_one(record.id, concept="March, discounted", base_amount=500.0)

        rule = app.registry.get(retainer_rule.id)
        assert rule.template.base_amount == 1000.0
        assert rule.template.concept == "Consulting retainer"
        others = app.registry.records_of(retainer_rule.id)
        assert all(r.base_amount == 1000.0 for r in others)

    def test_date_string_parsed(self, app, rent_rule):
        app.materializer.materialize(rent_rule, 2024)
        record = _record_on(app, rent_rule.id, date(2024, 1, 31))

        edited = app.mutator.edit_one(record.id, date="2024-02-05")

        assert edited.date == date(2024, 2, 5)

    def test_non_amount_edit_keeps_amounts(self, app, rent_rule):
        app.materializer.materialize(rent_rule, 2024)
        record = _record_on(app, rent_rule.id, date(2024, 1, 31))

        edited = app.mutator.edit_one(record.id, status="PAID")

        assert edited.status == "PAID"
        assert edited.total == record.total

    def test_unknown_field(self, app, rent_rule):
        app.materializer.materialize(rent_rule, 2024)
        record = _record_on(app, rent_rule.id, date(2024, 1, 31))

        with pytest.raises(ValidationError, match="number"):
            app.mutator.edit_one(record.id, number="2024-999")

    def test_out_of_range_values_rejected(self, app, rent_rule):
        """Test that record edits obey the same bounds as templates."""
        app.materializer.materialize(rent_rule, 2024)
        record = _record_on(app, rent_rule.id, date(2024, 1, 31))

        with pytest.raises(ValidationError, match="base_amount"):
            app.mutator.edit_one(record.id, base_amount=-500.0, vat_rate=250.0)

        stored = app.records.get(record.id)
        assert stored == record
        assert stored.series_id == rent_rule.id

    @pytest.mark.parametrize("changes", [
        {"vat_rate": 250.0},
        {"withholding_rate": -1},
        {"concept": "   "},
        {"date": "not a date"},
        {"status": None},
    ])
    def test_invalid_values(self, app, rent_rule, changes):
        app.materializer.materialize(rent_rule, 2024)
        record = _record_on(app, rent_rule.id, date(2024, 1, 31))

        with pytest.raises(ValidationError):
            app.mutator.edit_one(record.id, **changes)

    def test_withholding_reset_uses_kind_default(self, app, retainer_rule):
        app.materializer.materialize(retainer_rule, 2024)
        record = _record_on(app, retainer_rule.id, date(2024, 3, 29))

        edited = app.mutator.edit_one(record.id, withholding_rate=None)

        assert edited.withholding_rate == 7.0
        assert edited.withholding_amount == 70.0
        assert edited.total == 1140.0

    def test_missing_record(self, app):
        with pytest.raises(RecordNotFoundError):
            app.mutator.edit_one(999, concept="x")

    def test_rerun_refills_detached_date(self, app, rent_rule):
        """Test that a detached date no longer counts as materialized for its series."""
        app.materializer.materialize(rent_rule, 2024)
        record = _record_on(app, rent_rule.id, date(2024, 1, 31))
        app.mutator.edit_one(record.id, concept="One-off")

        result = app.materializer.materialize(rent_rule, 2024)

        assert result.created_count == 1
        assert app.registry.linked_count(rent_rule.id) == 12


class TestDeleteOne:
    """Tests for delete_one and delete_one_or_series."""

    def test_delete_one(self, app, rent_rule):
        app.materializer.materialize(rent_rule, 2024)
        record = _record_on(app, rent_rule.id, date(2024, 5, 31))

        app.mutator.delete_one(record.id)

        assert app.records.get(record.id) is None
        assert app.registry.get(rent_rule.id).total_generated == 11

    def test_delete_one_or_series_single(self, app, rent_rule):
        app.materializer.materialize(rent_rule, 2024)
        record = _record_on(app, rent_rule.id, date(2024, 5, 31))

        assert app.mutator.delete_one_or_series(record.id) == 1
        assert app.registry.linked_count(rent_rule.id) == 11

    def test_delete_one_or_series_all(self, app, rent_rule):
        """Test that deleting the whole series also removes an emptied rule."""
        app.materializer.materialize(rent_rule, 2024)
        record = _record_on(app, rent_rule.id, date(2024, 5, 31))

        assert app.mutator.delete_one_or_series(record.id, delete_all=True) == 12
        with pytest.raises(SeriesNotFoundError):
            app.registry.get(rent_rule.id)

    def test_delete_all_on_standalone_record(self, app, rent_rule):
        app.materializer.materialize(rent_rule, 2024)
        record = _record_on(app, rent_rule.id, date(2024, 5, 31))
        app.mutator.edit_one(record.id, concept="One-off")

        assert app.mutator.delete_one_or_series(record.id, delete_all=True) == 1
        assert app.registry.linked_count(rent_rule.id) == 11


class TestDeleteSeries:
    """Tests for delete_series."""

    def test_detach(self, app, rent_rule):
        """Test that records survive as standalone by default."""
        app.materializer.materialize(rent_rule, 2024)

        result = app.mutator.delete_series(rent_rule.id)

        assert result.detached_records == 12
        assert result.deleted_records == 0
        remaining = app.records.list_by_year(2024)
        assert len(remaining) == 12
        assert all(r.is_detached for r in remaining)
        assert remaining[0].total == 968.0
        with pytest.raises(SeriesNotFoundError):
            app.registry.get(rent_rule.id)

    def test_cascade(self, app, rent_rule, retainer_rule):
        app.materializer.materialize(rent_rule, 2024)
        app.materializer.materialize(retainer_rule, 2024)

        result = app.mutator.delete_series(rent_rule.id, delete_records=True)

        assert result.deleted_records == 12
        assert len(app.records.list_by_year(2024)) == 12
        assert app.registry.linked_count(retainer_rule.id) == 12

    def test_missing(self, app):
        with pytest.raises(SeriesNotFoundError):
            app.mutator.delete_series("nope")


class TestEditSeries:
    """Tests for edit_series."""

    def test_template_only_updates_records_in_place(self, app, rent_rule):
        """Test that a template edit rewrites linked records without regenerating."""
        app.materializer.materialize(rent_rule, 2024)
        ids_before = [r.id for r in app.registry.records_of(rent_rule.id)]

        result = app.mutator.edit_series(
            rent_rule.id, {"base_amount": 900.0, "payment_method": "card"}
        )

        assert not result.regenerated
        assert result.updated_count == 12
        records = app.registry.records_of(rent_rule.id)
        assert [r.id for r in records] == ids_before
        assert all(r.base_amount == 900.0 and r.total == 1089.0 for r in records)
        rule = app.registry.get(rent_rule.id)
        assert rule.template.base_amount == 900.0
        assert rule.template.extra == {"payment_method": "card"}

    def test_template_edit_skips_detached_records(self, app, rent_rule):
        app.materializer.materialize(rent_rule, 2024)
        record = _record_on(app, rent_rule.id, date(2024, 1, 31))
        app.mutator.edit_one(record.id, status="PAID")

        app.mutator.edit_series(rent_rule.id, {"concept": "HQ rent"})

        assert app.records.get(record.id).concept == "Office rent"

    def test_extra_only_edit_touches_no_record(self, app, rent_rule):
        app.materializer.materialize(rent_rule, 2024)

        result = app.mutator.edit_series(rent_rule.id, {"payment_method": "card"})

        assert result.updated_count == 0

    def test_same_schedule_does_not_regenerate(self, app, rent_rule, monthly_last_business_day):
        app.materializer.materialize(rent_rule, 2024)

        result = app.mutator.edit_series(rent_rule.id, schedule=monthly_last_business_day)

        assert not result.regenerated
        assert app.registry.linked_count(rent_rule.id) == 12

    def test_schedule_change_regenerates(self, app, rent_rule, quarterly_last_business_day):
        """Test MONTHLY to QUARTERLY: 12 records become 4."""
        app.materializer.materialize(rent_rule, 2024)

        result = app.mutator.edit_series(rent_rule.id, schedule=quarterly_last_business_day)

        assert result.regenerated
        assert result.deleted_count == 12
        assert result.expected_count == 4
        assert result.created_count == 4
        assert not result.incomplete
        dates = [r.date for r in app.registry.records_of(rent_rule.id)]
        assert dates == [date(2024, 1, 31), date(2024, 4, 30), date(2024, 7, 31), date(2024, 10, 31)]
        rule = app.registry.get(rent_rule.id)
        assert rule.periodicity is Periodicity.QUARTERLY
        assert rule.last_year_generated == 2024
        assert rule.total_generated == 4

    def test_regeneration_covers_indexed_years(self, app, rent_rule, quarterly_last_business_day):
        """Test that regeneration runs through the latest year in the index."""
        app.mutator.extend_year(2024)
        app.mutator.extend_year(2025)

        result = app.mutator.edit_series(rent_rule.id, schedule=quarterly_last_business_day)

        assert result.deleted_count == 24
        assert result.created_count == 8
        assert app.registry.get(rent_rule.id).last_year_generated == 2025

    def test_regeneration_with_template_change(self, app, rent_rule, quarterly_last_business_day):
        app.materializer.materialize(rent_rule, 2024)

        app.mutator.edit_series(
            rent_rule.id, {"base_amount": 2400.0}, schedule=quarterly_last_business_day
        )

        records = app.registry.records_of(rent_rule.id)
        assert all(r.base_amount == 2400.0 for r in records)

    def test_incomplete_regeneration_warns(self, flaky_app, monthly_last_business_day,
                                           rent_template, quarterly_last_business_day):
        """Test that a regeneration stopped midway is reported, not rolled back."""
        app = flaky_app()
        rule = app.registry.create(RecordKind.EXPENSE, monthly_last_business_day, rent_template)
        app.materializer.materialize(rule, 2024)
        app.records.poisoned.add(date(2024, 7, 31))

        with pytest.warns(RegenerationIncompleteWarning, match="2 of 4"):
            result = app.mutator.edit_series(rule.id, schedule=quarterly_last_business_day)

        assert result.incomplete
        assert result.deleted_count == 12
        assert result.created_count == 2
        assert app.registry.linked_count(rule.id) == 2

    def test_withholding_reset_resolves_kind_default(self, app, retainer_rule):
        """Test that clearing the rate stamps the kind default on every record."""
        app.materializer.materialize(retainer_rule, 2024)
        app.mutator.edit_series(retainer_rule.id, {"withholding_rate": 15.0})

        result = app.mutator.edit_series(retainer_rule.id, {"withholding_rate": None})

        assert result.updated_count == 12
        records = app.registry.records_of(retainer_rule.id)
        assert {(r.withholding_rate, r.withholding_amount, r.total) for r in records} == {
            (7.0, 70.0, 1140.0)
        }
        assert app.registry.get(retainer_rule.id).template.withholding_rate is None

    def test_invalid_template_change_stores_nothing(self, app, rent_rule):
        app.materializer.materialize(rent_rule, 2024)

        with pytest.raises(InvalidRuleError):
            app.mutator.edit_series(rent_rule.id, {"base_amount": -1.0})

        assert app.registry.get(rent_rule.id).template.base_amount == 800.0
        assert {r.base_amount for r in app.registry.records_of(rent_rule.id)} == {800.0}

    def test_regeneration_keeps_years_beyond_index(self, app, rent_rule,
                                                   quarterly_last_business_day):
        """Test that years generated past the index and today are rebuilt."""
        app.materializer.materialize_span(rent_rule, 2024, 2026)
        assert app.year_index.years() == []

        result = app.mutator.edit_series(rent_rule.id, schedule=quarterly_last_business_day)

        assert result.deleted_count == 36
        assert result.expected_count == 12
        assert result.created_count == 12
        assert not result.incomplete
        rule = app.registry.get(rent_rule.id)
        assert rule.last_year_generated == 2026
        assert len(app.records.list_by_year(2026)) == 4

    def test_regeneration_span_clipped_to_new_end_date(self, app, rent_rule):
        app.materializer.materialize_span(rent_rule, 2024, 2026)
        ending = Schedule(Periodicity.QUARTERLY, DaySelection(DayPolicy.LAST_BUSINESS_DAY),
                          date(2024, 1, 1), date(2025, 6, 30))

        result = app.mutator.edit_series(rent_rule.id, schedule=ending)

        assert result.created_count == 6
        assert app.registry.get(rent_rule.id).last_year_generated == 2025

    def test_missing_series(self, app):
        with pytest.raises(SeriesNotFoundError):
            app.mutator.edit_series("nope", {"concept": "x"})


class TestExtendYear:
    """Tests for extend_year."""

    def test_extends_every_running_series(self, app, rent_rule, retainer_rule):
        """Test 12 + 12 records for a new year, then nothing on re-run."""
        app.mutator.extend_year(2024)

        first = app.mutator.extend_year(2025)
        again = app.mutator.extend_year(2025)
        earlier = app.mutator.extend_year(2024)

        assert first.created == {rent_rule.id: 12, retainer_rule.id: 12}
        assert first.total_created == 24
        assert again.total_created == 0
        assert earlier.total_created == 0
        assert app.registry.get(rent_rule.id).last_year_generated == 2025
        assert app.year_index.years() == [2024, 2025]

    def test_income_numbering_restarts_per_year(self, app, retainer_rule):
        app.mutator.extend_year(2024)
        app.mutator.extend_year(2025)

        numbers = [r.number for r in app.records.list_by_year(2025, RecordKind.INCOME)]
        assert numbers[0] == "2025-001"
        assert numbers[-1] == "2025-012"

    def test_skips_rules_outside_year(self, app, quarterly_day_15, rent_template,
                                      monthly_last_business_day, retainer_template):
        ended = app.registry.create(RecordKind.EXPENSE, quarterly_day_15, rent_template)
        future = app.registry.create(
            RecordKind.INCOME,
            Schedule(Periodicity.MONTHLY, DaySelection(DayPolicy.FIRST_BUSINESS_DAY),
                     date(2026, 1, 1)),
            retainer_template,
        )

        result = app.mutator.extend_year(2025)

        assert ended.id not in result.created
        assert future.id not in result.created

    def test_end_date_within_year(self, app, rent_template):
        """Test that a rule ending mid-year still gets that year's occurrences."""
        rule = app.registry.create(
            RecordKind.EXPENSE,
            Schedule(Periodicity.MONTHLY, DaySelection(DayPolicy.LAST_CALENDAR_DAY),
                     date(2024, 1, 1), date(2025, 3, 15)),
            rent_template,
        )

        result = app.mutator.extend_year(2025)

        assert result.created == {rule.id: 2}

    def test_kind_filter(self, app, rent_rule, retainer_rule):
        result = app.mutator.extend_year(2024, kind=RecordKind.INCOME)

        assert list(result.created) == [retainer_rule.id]

    def test_failing_series_does_not_stop_others(self, flaky_app, rent_template,
                                                  retainer_template, monthly_last_business_day):
        """Test that a failed series is reported and the year is still indexed."""
        app = flaky_app(poisoned=[date(2025, 3, 31)])
        rent = app.registry.create(RecordKind.EXPENSE, monthly_last_business_day, rent_template)
        retainer = app.registry.create(
            RecordKind.INCOME,
            Schedule(Periodicity.MONTHLY, DaySelection(DayPolicy.SPECIFIC_DAY, 15),
                     date(2024, 1, 1)),
            retainer_template,
        )

        result = app.mutator.extend_year(2025)

        assert result.created == {rent.id: 2, retainer.id: 12}
        assert list(result.failed) == [rent.id]
        assert app.year_index.years() == [2025]
        assert app.registry.get(rent.id).last_year_generated is None
        assert app.registry.get(retainer.id).last_year_generated == 2025

        app.records.poisoned.clear()
        retry = app.mutator.extend_year(2025)

        assert retry.created == {rent.id: 10}
        assert not retry.failed


class TestDeleteYear:
    """Tests for delete_year."""

    def test_prunes_index_edge(self, app, rent_rule):
        """Test that the highest indexed year leaves the index when not current."""
        app.mutator.extend_year(2024)
        app.mutator.extend_year(2025)

        result = app.mutator.delete_year(2025)

        assert result.deleted_count == 12
        assert result.removed_from_index
        assert app.year_index.years() == [2024]
        rule = app.registry.get(rent_rule.id)
        assert rule.last_year_generated == 2024
        assert rule.total_generated == 12

    def test_current_year_stays_indexed(self, app, rent_rule):
        app.mutator.extend_year(2024)

        result = app.mutator.delete_year(2024)

        assert result.deleted_count == 12
        assert not result.removed_from_index
        assert app.year_index.years() == [2024]
        rule = app.registry.get(rent_rule.id)
        assert rule.last_year_generated is None
        assert rule.total_generated == 0

    def test_middle_year_stays_indexed(self, app, rent_rule):
        app.year_index.extend([2024, 2025, 2026])

        result = app.mutator.delete_year(2025)

        assert not result.removed_from_index
        assert app.year_index.years() == [2024, 2025, 2026]

    def test_deletes_standalone_records(self, app, rent_rule):
        app.materializer.materialize(rent_rule, 2025)
        record = _record_on(app, rent_rule.id, date(2025, 5, 30))
        app.mutator.edit_one(record.id, concept="One-off")

        result = app.mutator.delete_year(2025)

        assert result.deleted_count == 12
        assert app.records.list_by_year(2025) == []

    def test_extend_after_delete_recreates(self, app, rent_rule):
        """Test that a deleted year can be extended again."""
        app.mutator.extend_year(2024)
        app.mutator.extend_year(2025)
        app.mutator.delete_year(2025)

        result = app.mutator.extend_year(2025)

        assert result.created == {rent_rule.id: 12}
