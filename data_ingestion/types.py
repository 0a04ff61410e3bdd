"""
Data Ingestion - Type Definitions.

============================================================
PURPOSE
============================================================
Canonical records shared by normalizers, the aggregator,
the report generator and the HTTP layer.

- Commodity reference data
- Quote / InternationalPrice / ReferenceRate
- NewsItem
- WeatherReading / DailyForecast / City / RegionalPrecipitation
- Aggregate envelope

============================================================
DESIGN PRINCIPLES
============================================================
- Immutable records (frozen dataclasses)
- No I/O and no business logic beyond derived properties
- ``to_dict()`` gives the JSON shape used by the API
============================================================
"""

from dataclasses import dataclass, field, replace
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, Generic, List, Optional, TypeVar


T = TypeVar("T")


# =============================================================
# ENUMS
# =============================================================

class CommodityCategory(str, Enum):
    """Commodity families used for grouping on the dashboard."""
    GRAIN = "grain"
    LIVESTOCK = "livestock"
    SUGAR_ENERGY = "sugar-energy"
    FIBER = "fiber"
    OTHER = "other"


# =============================================================
# REFERENCE DATA
# =============================================================

@dataclass(frozen=True)
class Commodity:
    """Read-mostly reference record identified by its slug."""
    slug: str
    name: str
    category: CommodityCategory
    unit: str
    active: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "slug": self.slug,
            "name": self.name,
            "category": self.category.value,
            "unit": self.unit,
            "active": self.active,
        }


# =============================================================
# PRICES
# =============================================================

@dataclass(frozen=True)
class Quote:
    """
    Spot quote for a commodity at a praça.

    Unique per (commodity, reference_date, market). Only
    ``variation`` may be recomputed after creation.
    """
    commodity: str
    reference_date: date
    value: float
    unit: str
    market: str
    source: str
    variation: Optional[float] = None

    @property
    def identity(self) -> tuple:
        return (self.commodity, self.reference_date, self.market)

    def with_variation(self, variation: Optional[float]) -> "Quote":
        return replace(self, variation=variation)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "commodity": self.commodity,
            "reference_date": self.reference_date.isoformat(),
            "value": self.value,
            "unit": self.unit,
            "market": self.market,
            "source": self.source,
            "variation": self.variation,
        }


@dataclass(frozen=True)
class InternationalPrice:
    """Latest futures price of a commodity on an international exchange."""
    slug: str
    ticker: str
    exchange: str
    price: float
    currency: str
    unit: str
    last_updated: datetime
    previous_close: Optional[float] = None
    open: Optional[float] = None
    high: Optional[float] = None
    low: Optional[float] = None
    volume: Optional[float] = None

    @property
    def change(self) -> Optional[float]:
        if self.previous_close is None:
            return None
        return round(self.price - self.previous_close, 4)

    @property
    def change_percent(self) -> Optional[float]:
        if not self.previous_close:
            return None
        return round((self.price - self.previous_close) / self.previous_close * 100, 2)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "slug": self.slug,
            "ticker": self.ticker,
            "exchange": self.exchange,
            "price": self.price,
            "previous_close": self.previous_close,
            "change": self.change,
            "change_percent": self.change_percent,
            "open": self.open,
            "high": self.high,
            "low": self.low,
            "volume": self.volume,
            "currency": self.currency,
            "unit": self.unit,
            "last_updated": self.last_updated.isoformat(),
        }


@dataclass(frozen=True)
class ReferenceRate:
    """Central bank dollar reference rate (compra/venda) for one day."""
    compra: float
    venda: float
    variation: Optional[float]
    reference_date: date
    source: str = "bcb"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "compra": self.compra,
            "venda": self.venda,
            "variation": self.variation,
            "reference_date": self.reference_date.isoformat(),
            "source": self.source,
        }


@dataclass(frozen=True)
class Parity:
    """
    International price converted to reais at the dollar selling rate.

    ``price_brl`` is per exchange unit (bushel, lb, ton...);
    ``price_brl_per_sack`` is per 60 kg sack and only set for
    bushel-quoted grains.
    """
    slug: str
    exchange: str
    international_price: float
    unit: str
    dollar_rate: float
    price_usd: float
    price_brl: float
    last_updated: datetime
    rate_date: date
    price_brl_per_sack: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "slug": self.slug,
            "exchange": self.exchange,
            "international_price": self.international_price,
            "unit": self.unit,
            "dollar_rate": self.dollar_rate,
            "price_usd": self.price_usd,
            "price_brl": self.price_brl,
            "price_brl_per_sack": self.price_brl_per_sack,
            "last_updated": self.last_updated.isoformat(),
            "rate_date": self.rate_date.isoformat(),
        }


@dataclass(frozen=True)
class InterestRate:
    """SELIC rate (percent per year) at a reference date."""
    value: float
    reference_date: date

    def to_dict(self) -> Dict[str, Any]:
        return {"value": self.value, "reference_date": self.reference_date.isoformat()}


# =============================================================
# NEWS
# =============================================================

@dataclass(frozen=True)
class NewsItem:
    """News article; ``url`` is the natural key."""
    source: str
    title: str
    url: str
    published_at: datetime
    image_url: Optional[str] = None
    summary: Optional[str] = None
    sentiment: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "title": self.title,
            "url": self.url,
            "published_at": self.published_at.isoformat(),
            "image_url": self.image_url,
            "summary": self.summary,
            "sentiment": self.sentiment,
        }


# =============================================================
# WEATHER
# =============================================================

@dataclass(frozen=True)
class DailyForecast:
    day: date
    temp_max: Optional[float]
    temp_min: Optional[float]
    precipitation: Optional[float]
    precipitation_probability: Optional[float]
    weather_code: Optional[int]
    description: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.day.isoformat(),
            "temp_max": self.temp_max,
            "temp_min": self.temp_min,
            "precipitation": self.precipitation,
            "precipitation_probability": self.precipitation_probability,
            "weather_code": self.weather_code,
            "description": self.description,
        }


@dataclass(frozen=True)
class WeatherReading:
    """Live conditions plus short forecast. Never persisted."""
    latitude: float
    longitude: float
    temperature: Optional[float]
    humidity: Optional[float]
    wind_speed: Optional[float]
    precipitation: Optional[float]
    weather_code: Optional[int]
    description: str
    is_day: bool
    as_of: datetime
    forecast: List[DailyForecast] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "latitude": self.latitude,
            "longitude": self.longitude,
            "temperature": self.temperature,
            "humidity": self.humidity,
            "wind_speed": self.wind_speed,
            "precipitation": self.precipitation,
            "weather_code": self.weather_code,
            "description": self.description,
            "is_day": self.is_day,
            "as_of": self.as_of.isoformat(),
            "forecast": [d.to_dict() for d in self.forecast],
        }


@dataclass(frozen=True)
class City:
    """Geocoded city; ``id`` is ``"lat,lon"``."""
    id: str
    name: str
    state: str
    latitude: float
    longitude: float
    country: str = "Brasil"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "state": self.state,
            "country": self.country,
            "latitude": self.latitude,
            "longitude": self.longitude,
        }


@dataclass(frozen=True)
class RegionalPrecipitation:
    """Accumulated rain over the last days at a state's reference point."""
    uf: str
    name: str
    latitude: float
    longitude: float
    accumulated_7_days: float
    daily: List[float] = field(default_factory=list)

    @property
    def description(self) -> str:
        return describe_precipitation(self.accumulated_7_days)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "uf": self.uf,
            "name": self.name,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "accumulated_7_days": self.accumulated_7_days,
            "daily": self.daily,
            "description": self.description,
        }


@dataclass(frozen=True)
class PrecipitationSummary:
    highest: Dict[str, Any]
    lowest: Dict[str, Any]
    national_average: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "highest": self.highest,
            "lowest": self.lowest,
            "national_average": self.national_average,
        }


def describe_precipitation(mm: float) -> str:
    """pt-BR label for an accumulated precipitation amount."""
    if mm <= 1:
        return "Sem chuva"
    if mm <= 10:
        return "Chuva fraca"
    if mm <= 30:
        return "Chuva moderada"
    if mm <= 50:
        return "Chuva forte"
    if mm <= 100:
        return "Chuva muito forte"
    return "Chuva extrema"


# =============================================================
# AGGREGATE ENVELOPE
# =============================================================

@dataclass
class Aggregate(Generic[T]):
    """
    Result of an aggregation (or cache lookup).

    ``sources`` maps source name to its status for the pass that
    produced ``data``; ``degraded`` is set when some sources failed.
    """
    data: T
    fetched_at: datetime
    cached: bool = False
    cache_age_seconds: Optional[float] = None
    sources: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    @property
    def degraded(self) -> bool:
        return any(not status.get("ok", True) for status in self.sources.values())

    def as_cached(self, age_seconds: float) -> "Aggregate[T]":
        return replace(self, cached=True, cache_age_seconds=round(age_seconds, 1))

    def meta(self) -> Dict[str, Any]:
        return {
            "cached": self.cached,
            "cache_age_seconds": self.cache_age_seconds,
            "fetched_at": self.fetched_at.isoformat(),
            "degraded": self.degraded,
            "sources": self.sources,
        }


@dataclass(frozen=True)
class PrecipitationForecast:
    regions: List[RegionalPrecipitation]
    summary: PrecipitationSummary

    def to_dict(self) -> Dict[str, Any]:
        return {
            "regions": [r.to_dict() for r in self.regions],
            "summary": self.summary.to_dict(),
        }
