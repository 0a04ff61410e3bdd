"""
Reporting - Market Context Builder.

============================================================
RESPONSIBILITY
============================================================
Turns aggregator outputs into the text block fed to the
language model.

- daily: reference rate, spot quotes, international prices,
  10 latest news items
- commodity: catalog entry, spot quote, international price,
  related news
- every part is best-effort: a degraded aggregation leaves its
  section out instead of failing the report
============================================================
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from core.clock import SAO_PAULO_OFFSET, ClockProtocol, time_ago
from core.exceptions import MarketDataError, NotFound
from data_ingestion.aggregator import MarketAggregator
from data_ingestion.catalog import INDICATOR_PAGES, INTERNATIONAL_TICKERS, get_commodity
from data_ingestion.types import Commodity, InternationalPrice, NewsItem, Quote, ReferenceRate


logger = logging.getLogger(__name__)

NEWS_IN_CONTEXT = 10


# =============================================================
# FORMATTING
# =============================================================

def format_brl(value: float, decimals: int = 2) -> str:
    """R$ with Brazilian separators: 1234.5 -> 'R$ 1.234,50'."""
    return f"R$ {format_number(value, decimals)}"


def format_number(value: float, decimals: int = 2) -> str:
    return f"{value:,.{decimals}f}".replace(",", "_").replace(".", ",").replace("_", ".")


def format_variation(value: Optional[float]) -> str:
    if value is None:
        return "n/d"
    sign = "+" if value > 0 else ""
    return f"{sign}{format_number(value)}%"


# =============================================================
# CONTEXT RECORDS
# =============================================================

@dataclass
class MarketContext:
    generated_at: datetime
    reference_rate: Optional[ReferenceRate] = None
    quotes: List[Quote] = field(default_factory=list)
    international: Dict[str, InternationalPrice] = field(default_factory=dict)
    news: List[NewsItem] = field(default_factory=list)


@dataclass
class CommodityContext:
    commodity: Commodity
    generated_at: datetime
    quotes: List[Quote] = field(default_factory=list)
    international: Optional[InternationalPrice] = None
    news: List[NewsItem] = field(default_factory=list)


class MarketContextBuilder:
    """Collects prompt context through the aggregator (and its cache)."""

    def __init__(self, aggregator: MarketAggregator, clock: ClockProtocol) -> None:
        self._aggregator = aggregator
        self._clock = clock

    async def _best_effort(self, label: str, coro, default: Any) -> Any:
        try:
            aggregate = await coro
        except MarketDataError as e:
            logger.warning(f"Report context without {label}: {e.message}")
            return default
        return aggregate.data if aggregate.data is not None else default

    async def build_market_context(self) -> MarketContext:
        rate, quotes, international, news = await asyncio.gather(
            self._best_effort("reference rate", self._aggregator.get_reference_rate(), None),
            self._best_effort("spot quotes", self._aggregator.aggregate_spot_quotes(), []),
            self._best_effort("international prices", self._aggregator.aggregate_international_prices(), {}),
            self._best_effort("news", self._aggregator.aggregate_news(limit=NEWS_IN_CONTEXT), []),
        )
        return MarketContext(
            generated_at=self._clock.now(),
            reference_rate=rate,
            quotes=quotes,
            international=international,
            news=news,
        )

    async def build_commodity_context(self, slug: str) -> CommodityContext:
        """
        Raises:
            NotFound: unknown commodity slug
        """
        commodity = get_commodity(slug)
        if commodity is None:
            raise NotFound(f"Commodity '{slug}' not found", context={"slug": slug})

        async def nothing(default: Any) -> Any:
            return default

        quotes_call = (
            self._best_effort("spot quote", self._aggregator.aggregate_spot_quotes([slug]), [])
            if slug in INDICATOR_PAGES else nothing([])
        )
        price_call = (
            self._best_effort("international price", self._aggregator.get_international_price(slug), None)
            if slug in INTERNATIONAL_TICKERS else nothing(None)
        )
        quotes, price, news = await asyncio.gather(
            quotes_call,
            price_call,
            self._best_effort("news", self._aggregator.aggregate_news(limit=NEWS_IN_CONTEXT, slug=slug), []),
        )
        return CommodityContext(
            commodity=commodity,
            generated_at=self._clock.now(),
            quotes=quotes,
            international=price,
            news=news,
        )

    # =========================================================
    # PROMPT TEXT
    # =========================================================

    def format_market_context(self, context: MarketContext) -> str:
        local_day = context.generated_at.astimezone(SAO_PAULO_OFFSET).strftime("%d/%m/%Y")
        lines = [f"=== DADOS DE MERCADO ({local_day}) ===", ""]

        if context.reference_rate is not None:
            rate = context.reference_rate
            lines += [
                "DÓLAR (BCB):",
                f"- Compra: {format_brl(rate.compra, 4)}",
                f"- Venda: {format_brl(rate.venda, 4)}",
                f"- Variação: {format_variation(rate.variation)}",
                "",
            ]

        if context.quotes:
            lines.append("COMMODITIES (mercado físico):")
            for quote in context.quotes:
                commodity = get_commodity(quote.commodity)
                name = commodity.name if commodity else quote.commodity
                lines += [
                    "",
                    f"{name} ({quote.commodity}):",
                    f"- Preço atual: {format_brl(quote.value)}/{quote.unit}",
                    f"- Variação: {format_variation(quote.variation)}",
                    f"- Praça: {quote.market}",
                ]
            lines.append("")

        if context.international:
            lines.append("BOLSAS INTERNACIONAIS:")
            for price in context.international.values():
                lines.append(self._format_international(price))
            lines.append("")

        news = self.format_news(context.news, context.generated_at)
        if news:
            lines += ["NOTÍCIAS RECENTES:", news]

        return "\n".join(lines).strip()

    def format_commodity_context(self, context: CommodityContext) -> str:
        commodity = context.commodity
        lines = [
            f"=== {commodity.name.upper()} ===",
            "",
            f"Categoria: {commodity.category.value}",
            f"Unidade: {commodity.unit}",
        ]
        for quote in context.quotes:
            lines += [
                f"Preço atual: {format_brl(quote.value)}/{quote.unit}",
                f"Variação: {format_variation(quote.variation)}",
                f"Praça: {quote.market}",
                f"Data de referência: {quote.reference_date.strftime('%d/%m/%Y')}",
            ]
        if not context.quotes:
            lines.append("Preço no mercado físico: indisponível")
        if context.international is not None:
            lines += ["", "Bolsa internacional:", self._format_international(context.international)]
        return "\n".join(lines)

    @staticmethod
    def _format_international(price: InternationalPrice) -> str:
        return (
            f"- {price.slug} ({price.exchange} {price.ticker}): "
            f"{format_number(price.price)} {price.currency}/{price.unit} "
            f"({format_variation(price.change_percent)})"
        )

    @staticmethod
    def format_news(news: List[NewsItem], now: datetime) -> str:
        return "\n".join(f"- [{item.source}] {item.title} ({time_ago(item.published_at, now)})" for item in news)
