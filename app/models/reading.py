import re
from typing import Optional, List, Union
from pydantic import BaseModel, Field, StrictFloat, StrictInt, field_validator
from enum import Enum

PERIOD_RE = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")

# strict so JSON true/false is not read as 1/0
Number = Union[StrictInt, StrictFloat, str]


class ReadingRecord(BaseModel):
    id: str
    period: str
    previous_reading: float
    current_reading: float
    consumption: float
    tariff: float
    cost: float

    @field_validator("id", mode="before")
    @classmethod
    def _id_to_str(cls, value):
        # records imported from the legacy app carry numeric ids
        return str(value) if value is not None else value

    @field_validator("period")
    @classmethod
    def _zero_padded_period(cls, value: str) -> str:
        # lexical ordering of periods relies on this format
        if not PERIOD_RE.match(value):
            raise ValueError(f"period must be zero-padded YYYY-MM, got '{value}'")
        return value


class ReadingInput(BaseModel):
    """Raw form fields; the ledger engine does its own numeric validation."""

    month: Optional[Number] = None
    year: Optional[Number] = None
    previous_reading: Optional[Number] = None
    current_reading: Optional[Number] = None
    tariff: Optional[Number] = None


class PeriodSuggestion(BaseModel):
    period: str
    month: str
    year: str
    previous_reading: Optional[float] = None
    tariff: Optional[float] = None


class LotEntry(BaseModel):
    """A record tagged with the lot it belongs to."""

    lot_key: str
    record: ReadingRecord

    @property
    def consumption(self) -> float:
        return self.record.consumption


class DashboardAggregates(BaseModel):
    total_lots: int = 0
    latest_period: Optional[str] = None
    latest_period_display: Optional[str] = None
    verified_count: int = 0
    total_consumption: float = 0.0
    average_consumption: float = 0.0
    latest_period_snapshot: List[LotEntry] = []
    ranking: List[LotEntry] = []
    anomalies_high: List[LotEntry] = []
    anomalies_low: List[LotEntry] = []
    all_lots: List[str] = []
    verified_lots: List[str] = []
    top_consumers: List[LotEntry] = []
    top_savers: List[LotEntry] = []


class TrendKind(str, Enum):
    FIRST = "first"
    INCREASE = "increase"
    DECREASE = "decrease"
    STABLE = "stable"


class ConsumptionTrend(BaseModel):
    kind: TrendKind
    period: str
    consumption: float
    consumption_liters: float
    difference: float = 0.0
    difference_liters: float = 0.0


class ChartPoint(BaseModel):
    period: str
    label: str
    consumption_liters: float


class LotDetail(BaseModel):
    lot_key: str
    records: List[ReadingRecord] = Field(default_factory=list)
    suggestion: PeriodSuggestion


class LotAnalysis(BaseModel):
    lot_key: str
    series: List[ChartPoint] = Field(default_factory=list)
    trend: Optional[ConsumptionTrend] = None
