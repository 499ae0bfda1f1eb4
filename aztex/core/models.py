import math
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class DataSource(str, Enum):
    STATISTICS = "statistics"
    GENERATED = "generated"


class Granularity(str, Enum):
    MINUTE = "minute"
    HOUR = "hour"
    DAY = "day"
    MONTH = "month"


class Period(str, Enum):
    ONE_HOUR = "1H"
    ONE_DAY = "1D"
    ONE_WEEK = "1W"
    ONE_MONTH = "1M"
    THREE_MONTHS = "3M"
    SIX_MONTHS = "6M"
    ONE_YEAR = "1Y"

    @property
    def lookback(self) -> timedelta:
        return PERIOD_LOOKBACK[self]


PERIOD_LOOKBACK = {
    Period.ONE_HOUR: timedelta(hours=1),
    Period.ONE_DAY: timedelta(days=1),
    Period.ONE_WEEK: timedelta(days=7),
    Period.ONE_MONTH: timedelta(days=30),
    Period.THREE_MONTHS: timedelta(days=90),
    Period.SIX_MONTHS: timedelta(days=180),
    Period.ONE_YEAR: timedelta(days=365),
}


def _as_utc(v: datetime) -> datetime:
    if v.tzinfo is None:
        return v.replace(tzinfo=timezone.utc)
    return v


def is_valid_price(price) -> bool:
    """True for a finite, strictly positive number."""
    if price is None or isinstance(price, bool):
        return False
    try:
        value = float(price)
    except (TypeError, ValueError):
        return False
    return math.isfinite(value) and value > 0


class Symbol(BaseModel):
    """A tradable mod author as listed in authors.json"""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    ticker: str
    name: str
    author_url: Optional[str] = Field(default=None, alias="authorUrl")
    external_id: str = Field(validation_alias=AliasChoices("curseforgeId", "externalId", "external_id"),
                             serialization_alias="curseforgeId")

    @field_validator("external_id", mode="before")
    @classmethod
    def id_as_text(cls, v):
        # Older authors files store numeric ids
        return str(v) if isinstance(v, (int, float)) and not isinstance(v, bool) else v


class Sample(BaseModel):
    """One point of a symbol's price series.

    ``price`` is optional on purpose: documents written by older versions can
    carry null or NaN prices and must still load. The store refuses to append
    such a sample.
    """
    model_config = ConfigDict(populate_by_name=True)

    timestamp: datetime
    price: Optional[float] = None
    volume: Optional[int] = None
    change: float = 0.0
    data_source: DataSource = Field(default=DataSource.GENERATED, alias="dataSource")

    @field_validator("timestamp")
    @classmethod
    def ensure_tz(cls, v: datetime) -> datetime:
        return _as_utc(v)

    @field_validator("change", mode="before")
    @classmethod
    def change_default(cls, v):
        return 0.0 if v is None else v

    @property
    def is_valid(self) -> bool:
        return is_valid_price(self.price)


class AuthorStats(BaseModel):
    """One entry of the download statistics feed"""
    model_config = ConfigDict(populate_by_name=True)

    name: str
    downloads: float = Field(default=0.0, alias="downloadCount")
    download_rate: float = Field(default=0.0, alias="downloadRate")
    mods: Optional[int] = None
    days_existing: Optional[float] = Field(default=None, alias="daysExisting")

    @field_validator("downloads", "download_rate", mode="before")
    @classmethod
    def none_is_zero(cls, v):
        return 0.0 if v is None else v


class FairValueQuote(BaseModel):
    """Target price derived from download statistics"""
    symbol: str
    price: float
    volume: int
    fetched_at: datetime
    downloads: float = 0.0
    download_rate: float = 0.0


class Candle(BaseModel):
    """Aggregated price bucket"""
    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    price: float
    volume: int
    change: float
    count: int


class PortfolioSample(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    timestamp: datetime
    value: float
    cash: float
    holdings_value: float = Field(alias="holdingsValue")

    @field_validator("timestamp")
    @classmethod
    def ensure_tz(cls, v: datetime) -> datetime:
        return _as_utc(v)


class PortfolioCandle(BaseModel):
    """Aggregated portfolio value bucket"""
    model_config = ConfigDict(populate_by_name=True)

    timestamp: datetime
    value: float
    cash: float
    holdings_value: float = Field(alias="holdingsValue")
    open: float
    high: float
    low: float
    close: float
    count: int


class Holding(BaseModel):
    ticker: str
    shares: float = 0.0


class PriceMove(BaseModel):
    """Outcome proposed by a pricing strategy for one symbol and one tick"""
    price: float
    volume: int
    data_source: DataSource


class TickReport(BaseModel):
    timestamp: datetime
    updated: int = 0
    skipped: int = 0
    real: int = 0
    synthetic: int = 0
