from datetime import date

import pytest

from app.core.errors import (
    DuplicatePeriod,
    IncompleteInput,
    InvalidLotKey,
    NegativeConsumption,
    RecordNotFound,
)
from app.models.reading import ReadingInput, TrendKind
from app.services import ledger
from app.tests.factories import make_record


def entry(**overrides):
    data = {"month": "03", "year": "2025", "previous_reading": "100", "current_reading": "112.5", "tariff": "4.2"}
    data.update(overrides)
    return data


# -------------------------------------------------------------------
# validate_and_build_record
# -------------------------------------------------------------------

def test_build_record_derives_consumption_and_cost():
    record = ledger.validate_and_build_record(entry(), [])
    assert record.period == "2025-03"
    assert record.consumption == 112.5 - 100
    assert record.cost == (112.5 - 100) * 4.2
    assert record.id


@pytest.mark.parametrize(
    "previous,current,tariff",
    [(0, 0, 0), (10, 10.5, 3.1), (471.3, 482.9, 7.77), (1033, 1041, 0)],
)
def test_formula_holds_exactly(previous, current, tariff):
    record = ledger.validate_and_build_record(
        {"month": 1, "year": 2025, "previous_reading": previous, "current_reading": current, "tariff": tariff}, []
    )
    assert record.consumption == current - previous
    assert record.cost == (current - previous) * tariff


def test_build_record_accepts_model_input():
    record = ledger.validate_and_build_record(ReadingInput(**entry(month=12, year=2024)), [])
    assert record.period == "2024-12"


def test_decimal_comma_is_accepted():
    record = ledger.validate_and_build_record(entry(tariff="4,50"), [])
    assert record.tariff == 4.5


@pytest.mark.parametrize("field", ["month", "year", "previous_reading", "current_reading", "tariff"])
def test_missing_field_is_incomplete(field):
    data = entry()
    data[field] = ""
    with pytest.raises(IncompleteInput) as ie:
        ledger.validate_and_build_record(data, [])
    assert ie.value.field == field


@pytest.mark.parametrize("field", ["month", "year", "previous_reading", "current_reading", "tariff"])
def test_boolean_is_not_a_number(field):
    with pytest.raises(IncompleteInput) as ie:
        ledger.validate_and_build_record(entry(**{field: True}), [])
    assert ie.value.field == field


@pytest.mark.parametrize(
    "overrides",
    [
        {"current_reading": "abc"},
        {"tariff": None},
        {"previous_reading": "nan"},
        {"tariff": "-1"},
        {"month": "13"},
        {"month": "0"},
        {"month": "2.5"},
        {"year": "25"},
    ],
)
def test_invalid_values_are_incomplete(overrides):
    with pytest.raises(IncompleteInput):
        ledger.validate_and_build_record(entry(**overrides), [])


def test_negative_consumption_rejected():
    with pytest.raises(NegativeConsumption):
        ledger.validate_and_build_record(entry(previous_reading="120", current_reading="119.9"), [])


def test_duplicate_period_rejected():
    existing = [make_record("2025-03", 90, 100, record_id="a")]
    with pytest.raises(DuplicatePeriod) as ie:
        ledger.validate_and_build_record(entry(), existing, lot_key="7")
    assert ie.value.period == "2025-03"
    assert ie.value.lot_key == "7"


def test_edit_keeps_id_and_may_keep_its_own_period():
    existing = [make_record("2025-03", 90, 100, record_id="a"), make_record("2025-04", 100, 110, record_id="b")]
    record = ledger.validate_and_build_record(entry(current_reading="130"), existing, editing_id="a")
    assert record.id == "a"
    assert record.consumption == 30
    assert record.cost == 30 * 4.2


def test_edit_into_another_records_period_is_duplicate():
    existing = [make_record("2025-03", record_id="a"), make_record("2025-04", record_id="b")]
    with pytest.raises(DuplicatePeriod):
        ledger.validate_and_build_record(entry(month="04"), existing, editing_id="a")


def test_edit_unknown_id():
    with pytest.raises(RecordNotFound):
        ledger.validate_and_build_record(entry(), [make_record("2025-01", record_id="a")], editing_id="zzz")


def test_apply_record_replaces_in_place_or_appends():
    a = make_record("2025-01", record_id="a")
    b = make_record("2025-02", record_id="b")
    new_b = make_record("2025-05", record_id="b")
    c = make_record("2025-03", record_id="c")

    assert [r.id for r in ledger.apply_record([a, b], c)] == ["a", "b", "c"]
    replaced = ledger.apply_record([a, b], new_b)
    assert [r.id for r in replaced] == ["a", "b"]
    assert replaced[1].period == "2025-05"


def test_remove_record_removes_exactly_one():
    records = [make_record("2025-01", record_id="a"), make_record("2025-02", record_id="b")]
    assert [r.id for r in ledger.remove_record(records, "a")] == ["b"]
    with pytest.raises(RecordNotFound):
        ledger.remove_record(records, "x")


# -------------------------------------------------------------------
# periods and lot keys
# -------------------------------------------------------------------

def test_next_period_rolls_the_year():
    assert ledger.next_period("2025-11") == "2025-12"
    assert ledger.next_period("2025-12") == "2026-01"


def test_period_display():
    assert ledger.period_display("2025-03") == "03/2025"


@pytest.mark.parametrize("key", ["12", " 7 ", 42])
def test_valid_lot_keys(key):
    assert ledger.validate_lot_key(key) == str(key).strip()


@pytest.mark.parametrize("key", ["", "abc", "12a", "-3", "1.5", None])
def test_invalid_lot_keys(key):
    with pytest.raises(InvalidLotKey):
        ledger.validate_lot_key(key)


def test_sort_records_is_chronological():
    records = [make_record("2026-01"), make_record("2025-12"), make_record("2025-02")]
    assert [r.period for r in ledger.sort_records(records)] == ["2025-02", "2025-12", "2026-01"]


# -------------------------------------------------------------------
# next_period_suggestion
# -------------------------------------------------------------------

def test_suggestion_follows_last_record():
    suggestion = ledger.next_period_suggestion([make_record("2025-11", 80, 100, tariff=5)])
    assert suggestion.period == "2025-12"
    assert suggestion.previous_reading == 100
    assert suggestion.tariff == 5


def test_suggestion_year_rollover():
    suggestion = ledger.next_period_suggestion([make_record("2025-12", 80, 100, tariff=5)])
    assert suggestion.period == "2026-01"
    assert (suggestion.month, suggestion.year) == ("01", "2026")


def test_suggestion_uses_chronological_last_not_insertion_order():
    records = [make_record("2025-05", 10, 20, tariff=3), make_record("2025-02", 0, 10, tariff=2)]
    suggestion = ledger.next_period_suggestion(records)
    assert suggestion.period == "2025-06"
    assert suggestion.previous_reading == 20
    assert suggestion.tariff == 3


def test_suggestion_for_empty_lot_is_current_month():
    suggestion = ledger.next_period_suggestion([], today=date(2025, 7, 19))
    assert suggestion.period == "2025-07"
    assert suggestion.previous_reading is None
    assert suggestion.tariff is None


# -------------------------------------------------------------------
# compute_dashboard_aggregates
# -------------------------------------------------------------------

def test_dashboard_three_lot_example():
    ledger_snapshot = {
        "1": [make_record("2025-03", consumption=10)],
        "2": [make_record("2025-03", consumption=50)],
        "3": [],
    }
    result = ledger.compute_dashboard_aggregates(ledger_snapshot)

    assert result.total_lots == 3
    assert result.latest_period == "2025-03"
    assert result.latest_period_display == "03/2025"
    assert result.verified_count == 2
    assert result.total_consumption == 60
    assert result.average_consumption == 30
    assert [(e.lot_key, e.consumption) for e in result.ranking] == [("2", 50), ("1", 10)]
    assert [e.lot_key for e in result.anomalies_high] == ["2"]
    assert [e.lot_key for e in result.anomalies_low] == ["1"]
    assert result.all_lots == ["1", "2", "3"]
    assert result.verified_lots == ["1", "2"]


def test_dashboard_empty_ledger():
    result = ledger.compute_dashboard_aggregates({})
    assert result.total_lots == 0
    assert result.verified_count == 0
    assert result.total_consumption == 0
    assert result.average_consumption == 0
    assert result.ranking == []
    assert result.latest_period is None


def test_dashboard_lots_without_records():
    result = ledger.compute_dashboard_aggregates({"4": [], "5": []})
    assert result.total_lots == 2
    assert result.verified_count == 0
    assert result.average_consumption == 0
    assert result.latest_period is None


def test_dashboard_only_counts_latest_period():
    snapshot = {
        "1": [make_record("2025-02", consumption=100), make_record("2025-03", consumption=10, record_id="x")],
        "2": [make_record("2025-02", consumption=40)],
    }
    result = ledger.compute_dashboard_aggregates(snapshot)
    assert result.latest_period == "2025-03"
    assert result.verified_count == 1
    assert result.total_consumption == 10


def test_zero_consumption_is_never_low_anomaly():
    snapshot = {
        "1": [make_record("2025-03", consumption=0)],
        "2": [make_record("2025-03", consumption=20)],
        "3": [make_record("2025-03", consumption=22)],
    }
    result = ledger.compute_dashboard_aggregates(snapshot)
    assert "1" not in [e.lot_key for e in result.anomalies_low]


def test_ranking_ties_keep_snapshot_order():
    snapshot = {
        "10": [make_record("2025-03", consumption=5)],
        "2": [make_record("2025-03", consumption=5)],
        "7": [make_record("2025-03", consumption=9)],
    }
    result = ledger.compute_dashboard_aggregates(snapshot)
    # snapshot is in numeric lot order: 2, 7, 10
    assert [e.lot_key for e in result.ranking] == ["7", "2", "10"]


def test_top_lists():
    snapshot = {str(i): [make_record("2025-03", consumption=i)] for i in range(1, 9)}
    result = ledger.compute_dashboard_aggregates(snapshot, top_n=3)
    assert [e.lot_key for e in result.top_consumers] == ["8", "7", "6"]
    assert [e.lot_key for e in result.top_savers] == ["1", "2", "3"]


def test_deleted_record_drops_out_of_aggregates():
    records = [make_record("2025-03", consumption=50, record_id="gone")]
    snapshot = {"1": [make_record("2025-03", consumption=10)], "2": records}
    snapshot["2"] = ledger.remove_record(records, "gone")
    result = ledger.compute_dashboard_aggregates(snapshot)
    assert result.total_consumption == 10
    assert [e.lot_key for e in result.ranking] == ["1"]


# -------------------------------------------------------------------
# normalize_record
# -------------------------------------------------------------------

def test_normalize_rederives_diverging_amounts():
    raw = {
        "id": 1730000000000,
        "period": "2025-01",
        "previous_reading": 472,
        "current_reading": 482,
        "consumption": 99,
        "tariff": 2,
        "cost": 0,
    }
    record = ledger.normalize_record(raw, lot_key="78")
    assert record.id == "1730000000000"
    assert record.consumption == 10
    assert record.cost == 20


@pytest.mark.parametrize(
    "raw",
    [
        {"id": "a", "period": "2025-1", "previous_reading": 1, "current_reading": 2, "tariff": 1},
        {"id": "a", "period": "2025-01", "previous_reading": 5, "current_reading": 2, "tariff": 1},
        {"id": "a", "period": "2025-01", "current_reading": 2},
    ],
)
def test_normalize_skips_untrusted_records(raw):
    assert ledger.normalize_record(raw) is None


# -------------------------------------------------------------------
# analysis
# -------------------------------------------------------------------

def test_trend_kinds():
    assert ledger.consumption_trend([]) is None

    first = ledger.consumption_trend([make_record("2025-01", consumption=3)])
    assert first.kind == TrendKind.FIRST
    assert first.consumption_liters == 3000

    up = ledger.consumption_trend([make_record("2025-02", consumption=5), make_record("2025-01", consumption=3)])
    assert up.kind == TrendKind.INCREASE
    assert up.difference == 2
    assert up.difference_liters == 2000

    down = ledger.consumption_trend([make_record("2025-01", consumption=5), make_record("2025-02", consumption=3)])
    assert down.kind == TrendKind.DECREASE
    assert down.difference_liters == 2000

    flat = ledger.consumption_trend([make_record("2025-01", consumption=5), make_record("2025-02", consumption=5.0005)])
    assert flat.kind == TrendKind.STABLE


def test_consumption_series_labels():
    series = ledger.consumption_series([make_record("2025-12", consumption=1.5), make_record("2025-11", consumption=2)])
    assert [(p.label, p.consumption_liters) for p in series] == [("11/25", 2000), ("12/25", 1500)]
