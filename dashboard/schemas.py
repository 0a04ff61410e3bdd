"""
Pydantic schemas for the market API responses.

Every success body carries ``success: true`` plus cache metadata;
every error body is ``{"success": false, "code", "message", ...}``.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict

# =======================
# COMMON
# =======================

class BaseResponse(BaseModel):
    success: bool = True


class AggregateResponse(BaseResponse):
    cached: bool = False
    cache_age_seconds: Optional[float] = None
    fetched_at: Optional[datetime] = None
    degraded: bool = False
    sources: Dict[str, Dict[str, Any]] = {}


class ErrorResponse(BaseModel):
    model_config = ConfigDict(extra="allow")

    success: bool = False
    code: str
    message: str

# =======================
# 1. NEWS
# =======================

class NewsResponse(AggregateResponse):
    news: List[Dict[str, Any]]
    total: int

# =======================
# 2. PRICES / RATES
# =======================

class CommoditiesResponse(BaseResponse):
    commodities: List[Dict[str, Any]]


class InternationalPricesResponse(AggregateResponse):
    prices: List[Dict[str, Any]]


class InternationalPriceResponse(AggregateResponse):
    price: Dict[str, Any]


class QuotesResponse(AggregateResponse):
    quotes: List[Dict[str, Any]]


class RateResponse(AggregateResponse):
    rate: Optional[Dict[str, Any]] = None


class ParityResponse(AggregateResponse):
    parity: Dict[str, Any]

# =======================
# 3. WEATHER
# =======================

class WeatherResponse(AggregateResponse):
    weather: Optional[Dict[str, Any]] = None


class CitiesResponse(AggregateResponse):
    cities: List[Dict[str, Any]]


class PrecipitationResponse(AggregateResponse):
    regions: List[Dict[str, Any]]
    summary: Dict[str, Any]

# =======================
# 4. REPORTS
# =======================

class ReportResponse(BaseResponse):
    report: Dict[str, Any]
    cached: bool


class UsageResponse(BaseResponse):
    plan: str
    usage: Dict[str, int]
    limits: Dict[str, int]
    remaining: Dict[str, int]
    resetAt: datetime


class CommodityReportsResponse(BaseResponse):
    reports: List[Dict[str, Any]]
    total: int
    available: int

# =======================
# 5. HEALTH
# =======================

class HealthResponse(BaseResponse):
    status: str  # ok / degraded
    sources: Dict[str, Dict[str, Any]]
    usable: int
    total: int
    aggregator: Dict[str, Any]
    cache: Dict[str, Any]
    reports: Dict[str, Any]
