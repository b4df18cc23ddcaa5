# backend/app/services/ledger.py

"""
Ledger engine: pure functions over lots and their monthly readings.

Nothing here touches the store or keeps state between calls. Callers pass the
current ledger snapshot (``{lot_key: [ReadingRecord, ...]}``) in explicitly and
get fresh results back.

Periods are zero-padded ``YYYY-MM`` strings everywhere, so a plain string
comparison orders them chronologically. Every period this module produces goes
through :func:`format_period`.
"""

import logging
import math
import re
import uuid
from datetime import date
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from pydantic import ValidationError

from app.core.errors import (
    DuplicatePeriod,
    IncompleteInput,
    InvalidLotKey,
    NegativeConsumption,
    RecordNotFound,
)
from app.models.reading import (
    ChartPoint,
    ConsumptionTrend,
    DashboardAggregates,
    LotEntry,
    PeriodSuggestion,
    ReadingInput,
    ReadingRecord,
    TrendKind,
)

logger = logging.getLogger(__name__)

Ledger = Mapping[str, Sequence[ReadingRecord]]

HIGH_ANOMALY_FACTOR = 1.5
LOW_ANOMALY_FACTOR = 0.5
LITERS_PER_M3 = 1000
TREND_TOLERANCE = 0.001

_LOT_KEY_RE = re.compile(r"^\d+$", re.ASCII)


# -------------------------------------------------------------------
# Periods and lot keys
# -------------------------------------------------------------------

def format_period(year: int, month: int) -> str:
    return f"{year:04d}-{month:02d}"


def parse_period(period: str) -> Tuple[int, int]:
    year, month = period.split("-", 1)
    return int(year), int(month)


def next_period(period: str) -> str:
    year, month = parse_period(period)
    month += 1
    if month > 12:
        month = 1
        year += 1
    return format_period(year, month)


def period_display(period: str) -> str:
    """'2025-03' -> '03/2025'"""
    return "/".join(reversed(period.split("-")))


def validate_lot_key(lot_key: Any) -> str:
    key = str(lot_key if lot_key is not None else "").strip()
    if not _LOT_KEY_RE.match(key):
        raise InvalidLotKey(lot_key)
    return key


def lot_sort_key(lot_key: str):
    if _LOT_KEY_RE.match(lot_key):
        return (0, int(lot_key), lot_key)
    return (1, 0, lot_key)


def sort_records(records: Sequence[ReadingRecord]) -> List[ReadingRecord]:
    """Chronological order: year, then month."""
    return sorted(records, key=lambda r: parse_period(r.period))


# -------------------------------------------------------------------
# Record construction
# -------------------------------------------------------------------

def _to_number(value: Any, field: str) -> float:
    if value is None or isinstance(value, bool):
        raise IncompleteInput(field)
    if isinstance(value, str):
        value = value.strip().replace(",", ".")
        if not value:
            raise IncompleteInput(field)
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise IncompleteInput(field)
    if not math.isfinite(number):
        raise IncompleteInput(field)
    if number < 0:
        raise IncompleteInput(field, "must not be negative")
    return number


def _to_int(value: Any, field: str, low: int, high: int) -> int:
    number = _to_number(value, field)
    if not number.is_integer() or not low <= number <= high:
        raise IncompleteInput(field, f"must be a whole number between {low} and {high}")
    return int(number)


def derive_amounts(previous_reading: float, current_reading: float, tariff: float) -> Tuple[float, float]:
    consumption = current_reading - previous_reading
    return consumption, consumption * tariff


def mint_record_id() -> str:
    return uuid.uuid4().hex


def validate_and_build_record(
    entry: ReadingInput | Mapping[str, Any],
    existing_records: Sequence[ReadingRecord],
    editing_id: Optional[str] = None,
    lot_key: str = "",
) -> ReadingRecord:
    """
    Validate a form entry against the lot's existing records and build the
    resulting record.

    Raises IncompleteInput, NegativeConsumption, DuplicatePeriod, or
    RecordNotFound when ``editing_id`` does not belong to the lot. With
    ``editing_id`` the returned record keeps that id and every field,
    derived ones included, is recomputed.
    """
    if not isinstance(entry, ReadingInput):
        try:
            entry = ReadingInput.model_validate(dict(entry))
        except ValidationError as e:
            loc = e.errors()[0]["loc"]
            field = str(loc[0]) if loc else "entry"
            raise IncompleteInput(field)

    month = _to_int(entry.month, "month", 1, 12)
    year = _to_int(entry.year, "year", 1000, 9999)
    previous_reading = _to_number(entry.previous_reading, "previous_reading")
    current_reading = _to_number(entry.current_reading, "current_reading")
    tariff = _to_number(entry.tariff, "tariff")

    if current_reading < previous_reading:
        raise NegativeConsumption(previous_reading, current_reading)

    period = format_period(year, month)

    if editing_id is not None:
        editing_id = str(editing_id)
        if not any(r.id == editing_id for r in existing_records):
            raise RecordNotFound(lot_key, editing_id)

    if any(r.period == period and r.id != editing_id for r in existing_records):
        raise DuplicatePeriod(lot_key, period)

    consumption, cost = derive_amounts(previous_reading, current_reading, tariff)
    return ReadingRecord(
        id=editing_id if editing_id is not None else mint_record_id(),
        period=period,
        previous_reading=previous_reading,
        current_reading=current_reading,
        consumption=consumption,
        tariff=tariff,
        cost=cost,
    )


def apply_record(existing_records: Sequence[ReadingRecord], record: ReadingRecord) -> List[ReadingRecord]:
    """Replace the record with the same id in place, or append it."""
    updated = []
    replaced = False
    for r in existing_records:
        if r.id == record.id:
            updated.append(record)
            replaced = True
        else:
            updated.append(r)
    if not replaced:
        updated.append(record)
    return updated


def remove_record(existing_records: Sequence[ReadingRecord], record_id: str, lot_key: str = "") -> List[ReadingRecord]:
    record_id = str(record_id)
    remaining = [r for r in existing_records if r.id != record_id]
    if len(remaining) == len(existing_records):
        raise RecordNotFound(lot_key, record_id)
    return remaining


def normalize_record(raw: Mapping[str, Any], lot_key: str = "") -> Optional[ReadingRecord]:
    """
    Turn a stored document into a ReadingRecord with consumption and cost
    re-derived from the readings. Returns None for documents that cannot be
    trusted (bad period, missing fields, negative consumption).
    """
    data = dict(raw)
    try:
        previous_reading = float(data["previous_reading"])
        current_reading = float(data["current_reading"])
        tariff = float(data.get("tariff") or 0)
    except (KeyError, TypeError, ValueError):
        logger.warning(f"Skipping record without readings in lot {lot_key}: {data.get('id')}")
        return None

    if current_reading < previous_reading:
        logger.warning(f"Skipping record with negative consumption in lot {lot_key}: {data.get('id')}")
        return None

    consumption, cost = derive_amounts(previous_reading, current_reading, tariff)
    stored = (data.get("consumption"), data.get("cost"))
    if stored != (None, None) and (
        not _close(stored[0], consumption) or not _close(stored[1], cost)
    ):
        logger.warning(
            f"Stored amounts diverge in lot {lot_key} record {data.get('id')}: "
            f"consumption={stored[0]} cost={stored[1]}, using {consumption} / {cost}"
        )

    data.update(
        previous_reading=previous_reading,
        current_reading=current_reading,
        tariff=tariff,
        consumption=consumption,
        cost=cost,
    )
    try:
        return ReadingRecord.model_validate(data)
    except ValidationError as e:
        logger.warning(f"Skipping invalid record in lot {lot_key}: {e.errors()}")
        return None


def _close(stored: Any, derived: float) -> bool:
    try:
        return math.isclose(float(stored), derived, rel_tol=1e-9, abs_tol=1e-9)
    except (TypeError, ValueError):
        return False


# -------------------------------------------------------------------
# Data-entry pre-fill
# -------------------------------------------------------------------

def next_period_suggestion(
    existing_records: Sequence[ReadingRecord],
    today: Optional[date] = None,
) -> PeriodSuggestion:
    """
    Suggest the period following the lot's last record, carrying its current
    reading and tariff forward. Advisory only.
    """
    ordered = sort_records(existing_records)
    if ordered:
        last = ordered[-1]
        period = next_period(last.period)
        previous_reading: Optional[float] = last.current_reading
        tariff: Optional[float] = last.tariff
    else:
        today = today or date.today()
        period = format_period(today.year, today.month)
        previous_reading = None
        tariff = None

    year, month = period.split("-")
    return PeriodSuggestion(
        period=period,
        month=month,
        year=year,
        previous_reading=previous_reading,
        tariff=tariff,
    )


# -------------------------------------------------------------------
# Dashboard
# -------------------------------------------------------------------

def compute_dashboard_aggregates(ledger: Ledger, top_n: int = 5) -> DashboardAggregates:
    lot_keys = sorted(ledger.keys(), key=lot_sort_key)
    result = DashboardAggregates(total_lots=len(lot_keys), all_lots=lot_keys)
    if not lot_keys:
        return result

    latest_period = ""
    for lot_key in lot_keys:
        for r in ledger[lot_key] or []:
            if r.period > latest_period:
                latest_period = r.period
    if not latest_period:
        return result

    snapshot: List[LotEntry] = []
    for lot_key in lot_keys:
        match = next((r for r in ledger[lot_key] or [] if r.period == latest_period), None)
        if match is not None:
            snapshot.append(LotEntry(lot_key=lot_key, record=match))

    verified_count = len(snapshot)
    total_consumption = sum(e.consumption for e in snapshot)
    average = total_consumption / verified_count if verified_count > 0 else 0.0

    # sorted() keeps equal elements in snapshot order, reverse=True included
    ranking = sorted(snapshot, key=lambda e: e.consumption, reverse=True)
    high_threshold = average * HIGH_ANOMALY_FACTOR
    low_threshold = average * LOW_ANOMALY_FACTOR

    result.latest_period = latest_period
    result.latest_period_display = period_display(latest_period)
    result.latest_period_snapshot = snapshot
    result.verified_count = verified_count
    result.verified_lots = [e.lot_key for e in snapshot]
    result.total_consumption = total_consumption
    result.average_consumption = average
    result.ranking = ranking
    result.anomalies_high = [e for e in ranking if e.consumption > high_threshold]
    result.anomalies_low = [e for e in ranking if 0 < e.consumption < low_threshold]
    result.top_consumers = ranking[:top_n]
    result.top_savers = list(reversed(ranking))[:top_n]
    return result


# -------------------------------------------------------------------
# Per-lot analysis
# -------------------------------------------------------------------

def to_liters(consumption_m3: float) -> float:
    return consumption_m3 * LITERS_PER_M3


def consumption_series(records: Sequence[ReadingRecord]) -> List[ChartPoint]:
    points = []
    for r in sort_records(records):
        year, month = r.period.split("-")
        points.append(
            ChartPoint(
                period=r.period,
                label=f"{month}/{year[2:]}",
                consumption_liters=to_liters(r.consumption),
            )
        )
    return points


def consumption_trend(records: Sequence[ReadingRecord]) -> Optional[ConsumptionTrend]:
    """Compare the latest month with the one before it."""
    ordered = sort_records(records)
    if not ordered:
        return None

    last = ordered[-1]
    base: Dict[str, Any] = {
        "period": last.period,
        "consumption": last.consumption,
        "consumption_liters": to_liters(last.consumption),
    }
    if len(ordered) == 1:
        return ConsumptionTrend(kind=TrendKind.FIRST, **base)

    difference = last.consumption - ordered[-2].consumption
    if difference > TREND_TOLERANCE:
        kind = TrendKind.INCREASE
    elif difference < -TREND_TOLERANCE:
        kind = TrendKind.DECREASE
    else:
        kind = TrendKind.STABLE
    return ConsumptionTrend(
        kind=kind,
        difference=difference,
        difference_liters=abs(to_liters(difference)),
        **base,
    )
