"""
Tests for the report context builder.

The aggregator is a MagicMock with AsyncMock methods so each
section can succeed or fail independently.
"""

from datetime import date, datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from core.clock import MockClock
from core.exceptions import AllSourcesFailed, NotFound
from data_ingestion.types import Aggregate, InternationalPrice, NewsItem, Quote, ReferenceRate
from reporting.context_builder import MarketContextBuilder


# ============================================================
# FIXTURES
# ============================================================

NOW = datetime(2024, 6, 2, 12, 0, tzinfo=timezone.utc)

RATE = ReferenceRate(compra=5.2990, venda=5.3000, variation=0.8, reference_date=date(2024, 5, 31))

SOJA_QUOTE = Quote(
    commodity="soja",
    reference_date=date(2024, 5, 31),
    value=131.45,
    unit="R$/sc 60kg",
    market="Paranaguá/PR",
    source="cepea",
    variation=-0.11,
)

SOJA_CBOT = InternationalPrice(
    slug="soja",
    ticker="ZS=F",
    exchange="CBOT",
    price=1180.25,
    currency="USD",
    unit="cents/bushel",
    last_updated=NOW,
    previous_close=1169.75,
)

NEWS = [
    NewsItem(
        source="Canal Rural",
        title="Soja sobe nos portos",
        url="https://www.canalrural.com.br/soja-sobe",
        published_at=NOW - timedelta(hours=2),
    ),
]


def wrap(data):
    return Aggregate(data=data, fetched_at=NOW)


@pytest.fixture
def aggregator():
    aggregator = MagicMock()
    aggregator.get_reference_rate = AsyncMock(return_value=wrap(RATE))
    aggregator.aggregate_spot_quotes = AsyncMock(return_value=wrap([SOJA_QUOTE]))
    aggregator.aggregate_international_prices = AsyncMock(return_value=wrap({"soja": SOJA_CBOT}))
    aggregator.get_international_price = AsyncMock(return_value=wrap(SOJA_CBOT))
    aggregator.aggregate_news = AsyncMock(return_value=wrap(NEWS))
    return aggregator


@pytest.fixture
def builder(aggregator):
    return MarketContextBuilder(aggregator, MockClock(NOW))


def all_failed():
    return AllSourcesFailed("All sources failed", query_type="test", source_errors={"stub": "down"})


# ============================================================
# MARKET CONTEXT
# ============================================================

class TestMarketContext:

    @pytest.mark.asyncio
    async def test_collects_every_section(self, builder, aggregator):
        context = await builder.build_market_context()

        assert context.generated_at == NOW
        assert context.reference_rate == RATE
        assert context.quotes == [SOJA_QUOTE]
        assert context.international == {"soja": SOJA_CBOT}
        assert context.news == NEWS
        aggregator.aggregate_news.assert_awaited_once_with(limit=10)

    @pytest.mark.asyncio
    async def test_failed_section_is_left_out(self, builder, aggregator):
        aggregator.aggregate_international_prices.side_effect = all_failed()
        aggregator.get_reference_rate.side_effect = all_failed()

        context = await builder.build_market_context()
        text = builder.format_market_context(context)

        assert context.international == {}
        assert context.reference_rate is None
        assert "BOLSAS INTERNACIONAIS" not in text
        assert "DÓLAR" not in text
        assert "COMMODITIES (mercado físico):" in text

    @pytest.mark.asyncio
    async def test_formatted_text(self, builder):
        text = builder.format_market_context(await builder.build_market_context())

        assert text.startswith("=== DADOS DE MERCADO (02/06/2024) ===")
        assert "- Compra: R$ 5,2990" in text
        assert "- Venda: R$ 5,3000" in text
        assert "- Variação: +0,80%" in text
        assert "Soja (soja):" in text
        assert "- Preço atual: R$ 131,45/R$/sc 60kg" in text
        assert "- Praça: Paranaguá/PR" in text
        assert "- soja (CBOT ZS=F): 1.180,25 USD/cents/bushel (+0,90%)" in text
        assert "- [Canal Rural] Soja sobe nos portos (há 2h)" in text


# ============================================================
# COMMODITY CONTEXT
# ============================================================

class TestCommodityContext:

    @pytest.mark.asyncio
    async def test_commodity_with_spot_and_international(self, builder, aggregator):
        context = await builder.build_commodity_context("soja")

        assert context.commodity.name == "Soja"
        assert context.quotes == [SOJA_QUOTE]
        assert context.international == SOJA_CBOT
        aggregator.aggregate_spot_quotes.assert_awaited_once_with(["soja"])
        aggregator.aggregate_news.assert_awaited_once_with(limit=10, slug="soja")

    @pytest.mark.asyncio
    async def test_commodity_without_spot_page(self, builder, aggregator):
        context = await builder.build_commodity_context("leite")

        assert context.quotes == []
        aggregator.aggregate_spot_quotes.assert_not_called()
        text = builder.format_commodity_context(context)
        assert "=== LEITE ===" in text
        assert "Preço no mercado físico: indisponível" in text

    @pytest.mark.asyncio
    async def test_commodity_without_ticker(self, builder, aggregator):
        aggregator.aggregate_spot_quotes.return_value = wrap([])

        context = await builder.build_commodity_context("etanol-anidro")

        assert context.international is None
        aggregator.get_international_price.assert_not_called()

    @pytest.mark.asyncio
    async def test_unknown_commodity(self, builder):
        with pytest.raises(NotFound):
            await builder.build_commodity_context("mandioca")

    @pytest.mark.asyncio
    async def test_formatted_commodity_text(self, builder):
        text = builder.format_commodity_context(await builder.build_commodity_context("soja"))

        assert "Categoria: grain" in text
        assert "Preço atual: R$ 131,45/R$/sc 60kg" in text
        assert "Variação: -0,11%" in text
        assert "Data de referência: 31/05/2024" in text
        assert "Bolsa internacional:" in text

    def test_format_news_empty(self):
        assert MarketContextBuilder.format_news([], NOW) == ""
