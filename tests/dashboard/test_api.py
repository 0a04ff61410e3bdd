"""
Tests for the market HTTP API.

The app runs against in-memory sources, repositories and a fake
language model; TestClient drives the lifespan (cache sweeper start
and shutdown).
"""

import asyncio
from datetime import date, datetime, timedelta, timezone
from typing import Any, List, Optional
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from core.clock import MockClock
from core.config import Settings
from dashboard.main import create_app
from dashboard.services import MarketServices
from data_ingestion.catalog import COMMODITIES, INTERNATIONAL_TICKERS
from data_ingestion.types import InternationalPrice, NewsItem, ReferenceRate
from data_sources.base import BaseUpstreamSource
from data_sources.exceptions import FetchError
from data_sources.models import SourceKind, SourceMetadata
from data_sources.registry import SourceRegistry
from reporting.llm_client import Completion, DisabledLanguageModel, LanguageModelClient
from storage.cache_policy import QueryType
from storage.repositories import InMemoryReportRepository, InMemoryUsageRepository


# ============================================================
# FIXTURES
# ============================================================

NOW = datetime(2024, 6, 2, 12, 0, tzinfo=timezone.utc)

NEWS = [
    NewsItem(
        source="Canal Rural",
        title="Soja sobe nos portos",
        url="https://www.canalrural.com.br/soja-sobe",
        published_at=NOW - timedelta(hours=1),
    ),
    NewsItem(
        source="Canal Rural",
        title="Boi gordo recua em São Paulo",
        url="https://www.canalrural.com.br/boi-recua",
        published_at=NOW - timedelta(hours=3),
    ),
]

RATE = ReferenceRate(compra=5.30, venda=5.30, variation=3.92, reference_date=date(2024, 5, 31))


class MemorySource(BaseUpstreamSource):
    def __init__(self, name: str, kind: SourceKind, records: Optional[list] = None, error: Optional[Exception] = None):
        super().__init__(max_retries=1)
        self._name = name
        self._kind = kind
        self.records = records or []
        self.error = error

    @property
    def name(self) -> str:
        return self._name

    def metadata(self) -> SourceMetadata:
        return SourceMetadata(name=self._name, display_name=self._name, kind=self._kind)

    async def fetch_raw(self, params: dict[str, Any]) -> Any:
        if self.error is not None:
            raise self.error
        return list(self.records)

    def normalize(self, raw: Any, params: dict[str, Any]) -> list:
        return raw


class FakeLanguageModel(LanguageModelClient):
    def __init__(self):
        self.calls = 0

    @property
    def model(self) -> str:
        return "fake-model"

    async def complete(self, prompt: str, max_tokens: int, temperature: float) -> Completion:
        self.calls += 1
        await asyncio.sleep(0)
        return Completion(
            "### 1. Resumo Executivo\nMercado firme.",
            self.model,
            input_tokens=800,
            output_tokens=400,
            estimated_cost=0.0084,
        )


def default_sources() -> List[BaseUpstreamSource]:
    return [
        MemorySource("rss_canal_rural", SourceKind.NEWS, records=NEWS),
        MemorySource("bcb_dollar", SourceKind.REFERENCE_RATE, records=[RATE]),
        MemorySource("yahoo_finance", SourceKind.INTERNATIONAL, error=FetchError("HTTP 404", status_code=404)),
    ]


def make_services(llm: Optional[LanguageModelClient] = None, sources=None) -> MarketServices:
    registry = SourceRegistry()
    for source in default_sources() if sources is None else sources:
        registry.register(source)
    return MarketServices.build(
        Settings(),
        clock=MockClock(NOW),
        registry=registry,
        llm=llm or FakeLanguageModel(),
        reports=InMemoryReportRepository(),
        usage=InMemoryUsageRepository(),
    )


@pytest.fixture
def services():
    return make_services()


@pytest.fixture
def client(services):
    with TestClient(create_app(services=services)) as client:
        yield client


USER = {"X-User-Id": "user-1"}


# ============================================================
# MARKET DATA
# ============================================================

class TestMarketEndpoints:

    def test_root(self, client):
        assert client.get("/").json()["success"] is True

    def test_news(self, client):
        response = client.get("/api/news", params={"limit": 1})

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["total"] == 1
        assert body["news"][0]["title"] == "Soja sobe nos portos"
        assert body["cached"] is False
        assert body["sources"]["rss_canal_rural"]["ok"] is True
        assert response.headers["cache-control"] == "public, s-maxage=3600, stale-while-revalidate=7200"

    def test_news_second_call_is_cached(self, client):
        client.get("/api/news")
        assert client.get("/api/news").json()["cached"] is True

    def test_degraded_news_gets_short_cache_header(self):
        sources = [
            MemorySource("rss_canal_rural", SourceKind.NEWS, records=NEWS),
            MemorySource("rss_noticias_agricolas", SourceKind.NEWS, error=FetchError("HTTP 503", status_code=503)),
        ]
        with TestClient(create_app(services=make_services(sources=sources))) as client:
            response = client.get("/api/news")

        assert response.json()["degraded"] is True
        assert response.headers["cache-control"] == "public, s-maxage=300, stale-while-revalidate=600"

    def test_cached_news_header_counts_down(self, client, services):
        client.get("/api/news")
        services.clock.advance(seconds=600)

        response = client.get("/api/news")

        assert response.json()["cached"] is True
        assert response.headers["cache-control"] == "public, s-maxage=3000, stale-while-revalidate=6000"

    def test_news_by_commodity(self, client):
        body = client.get("/api/news", params={"slug": "boi-gordo"}).json()
        assert [item["title"] for item in body["news"]] == ["Boi gordo recua em São Paulo"]

    @pytest.mark.parametrize("limit", [0, 101])
    def test_news_limit_validation(self, client, limit):
        response = client.get("/api/news", params={"limit": limit})

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"
        assert response.json()["success"] is False

    def test_dollar_rate(self, client, services):
        response = client.get("/api/rates/dollar")

        assert response.status_code == 200
        assert response.json()["rate"]["venda"] == 5.30
        ttl = int(services.cache.ttl_for(QueryType.REFERENCE_RATE))
        assert response.headers["cache-control"] == f"public, s-maxage={ttl}, stale-while-revalidate={2 * ttl}"

    def test_all_sources_failed(self, client):
        response = client.get("/api/international")

        assert response.status_code == 503
        body = response.json()
        assert body["code"] == "SERVICE_DEGRADED"
        assert body["retryable"] is True
        assert "yahoo_finance:soja" in body["sources"]
        assert len(body["sources"]) == len(INTERNATIONAL_TICKERS)

    def test_unknown_international_slug(self, client):
        response = client.get("/api/international", params={"slug": "mandioca"})
        assert response.status_code == 404
        assert response.json()["code"] == "NOT_FOUND"

    def test_parity(self):
        soja = InternationalPrice(
            slug="soja",
            ticker="ZS=F",
            exchange="CBOT",
            price=1200.0,
            currency="USX",
            unit="cents/bushel",
            last_updated=NOW,
        )
        sources = [
            MemorySource("bcb_dollar", SourceKind.REFERENCE_RATE, records=[RATE]),
            MemorySource("yahoo_finance", SourceKind.INTERNATIONAL, records=[soja]),
        ]
        with TestClient(create_app(services=make_services(sources=sources))) as client:
            response = client.get("/api/parity/soja")

        assert response.status_code == 200
        parity = response.json()["parity"]
        assert parity["dollar_rate"] == 5.30
        assert parity["price_brl"] == 63.6
        assert parity["price_brl_per_sack"] == 140.21

    def test_parity_unknown_slug(self, client):
        response = client.get("/api/parity/mandioca")
        assert response.status_code == 404
        assert response.json()["code"] == "NOT_FOUND"

    def test_commodities(self, client):
        slugs = [c["slug"] for c in client.get("/api/commodities").json()["commodities"]]
        assert "soja" in slugs
        assert "boi-gordo" in slugs

    def test_unknown_route(self, client):
        response = client.get("/api/nope")
        assert response.status_code == 404
        assert response.json()["code"] == "NOT_FOUND"


class TestWeatherEndpoints:

    def test_coordinates_validated(self, client):
        response = client.get("/api/weather", params={"lat": 100, "lon": -55.72})
        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    def test_no_weather_source(self, client):
        response = client.get("/api/weather", params={"lat": -12.54, "lon": -55.72})
        assert response.status_code == 503

    def test_agricultural_cities_without_query(self, client):
        response = client.get("/api/weather/cities")

        assert response.status_code == 200
        assert len(response.json()["cities"]) > 0
        assert response.headers["cache-control"].startswith("public, s-maxage=86400")

    def test_short_query_returns_nothing(self, client):
        assert client.get("/api/weather/cities", params={"q": "so"}).json()["cities"] == []


# ============================================================
# REPORTS
# ============================================================

class TestReportEndpoints:

    def test_user_header_required(self, client):
        response = client.post("/api/reports/daily")

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    def test_daily_report(self, client):
        first = client.post("/api/reports/daily", headers=USER)
        second = client.post("/api/reports/daily", headers=USER)

        assert first.status_code == 200
        assert first.json()["report"]["title"] == "Resumo do Mercado - 02/06/2024"
        assert first.json()["cached"] is False
        assert second.json()["cached"] is True
        assert second.json()["report"]["id"] == first.json()["report"]["id"]

    def test_commodity_report(self, client):
        body = client.post("/api/reports/commodity/soja", headers=USER).json()
        assert body["report"]["commodity_slug"] == "soja"

    def test_commodity_report_listing(self, client):
        client.post("/api/reports/commodity/soja", headers=USER)

        body = client.get("/api/reports/commodity").json()

        assert body["total"] == sum(1 for c in COMMODITIES.values() if c.active)
        assert body["available"] == 1
        soja = next(entry for entry in body["reports"] if entry["slug"] == "soja")
        assert soja["has_report"] is True
        assert soja["generated_at"] == NOW.isoformat()

    def test_unknown_commodity_report(self, client):
        response = client.post("/api/reports/commodity/mandioca", headers=USER)
        assert response.status_code == 404

    def test_quota_exceeded(self, client):
        for slug in ("soja", "milho", "trigo"):
            assert client.post(f"/api/reports/commodity/{slug}", headers=USER).status_code == 200

        response = client.post("/api/reports/daily", headers=USER)

        assert response.status_code == 429
        body = response.json()
        assert body["code"] == "RATE_LIMIT"
        assert body["remaining"]["reports"] == 0
        assert body["resetAt"] == "2024-06-03T00:00:00+00:00"

    def test_usage(self, client):
        client.post("/api/reports/daily", headers={**USER, "X-User-Plan": "pro"})

        body = client.get("/api/reports/usage", headers={**USER, "X-User-Plan": "pro"}).json()

        assert body["plan"] == "pro"
        assert body["usage"] == {"reports": 1, "tokens": 1200}
        assert body["remaining"]["reports"] == 19

    def test_reports_disabled(self):
        services = make_services(llm=DisabledLanguageModel())
        with TestClient(create_app(services=services)) as client:
            response = client.post("/api/reports/daily", headers=USER)

        assert response.status_code == 500
        assert response.json()["code"] == "GENERATION_FAILED"
        assert response.json()["retryable"] is False


# ============================================================
# HEALTH AND ERRORS
# ============================================================

class TestHealthAndErrors:

    def test_health(self, client):
        body = client.get("/api/health").json()

        assert body["total"] == 3
        assert set(body["sources"]) == {"rss_canal_rural", "bcb_dollar", "yahoo_finance"}
        assert body["status"] in ("ok", "degraded")
        assert "hit_rate_pct" in body["cache"]
        assert body["reports"]["in_flight"] == 0

    def test_unexpected_error(self, services):
        app = create_app(services=services)
        with patch.object(services.aggregator, "get_selic", side_effect=RuntimeError("boom")):
            with TestClient(app, raise_server_exceptions=False) as client:
                response = client.get("/api/rates/selic")

        assert response.status_code == 500
        assert response.json() == {"success": False, "code": "API_ERROR", "message": "Erro interno do servidor"}

    @pytest.mark.asyncio
    async def test_services_start_and_shutdown(self):
        services = MarketServices.build(
            Settings(database_url="sqlite://"),
            clock=MockClock(NOW),
            registry=SourceRegistry(),
        )
        assert services.database is not None
        assert services.generator.get_stats()["in_flight"] == 0

        await services.start()
        assert services.cache.running is True
        await services.shutdown()

        assert services.cache.running is False
