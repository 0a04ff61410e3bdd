"""
Yahoo Finance chart adapter - international futures prices.

Endpoint used:
- /v8/finance/chart/{ticker}?interval=1d&range=1d

The endpoint rejects non-browser clients, so requests carry a
browser User-Agent. One call per ticker; params: ``{"slug": ...}``.
"""

from typing import Any

from data_ingestion.catalog import INTERNATIONAL_TICKERS
from data_ingestion.normalizers.market_normalizer import normalize_yahoo_chart
from data_ingestion.types import InternationalPrice
from data_sources.base import BaseUpstreamSource
from data_sources.exceptions import NormalizationError
from data_sources.models import SourceKind, SourceMetadata


BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


class YahooFinanceSource(BaseUpstreamSource[InternationalPrice]):

    BASE_URL = "https://query1.finance.yahoo.com/v8/finance/chart"

    @property
    def name(self) -> str:
        return "yahoo_finance"

    def metadata(self) -> SourceMetadata:
        return SourceMetadata(
            name=self.name,
            display_name="Yahoo Finance",
            kind=SourceKind.INTERNATIONAL,
            base_url=self.BASE_URL,
            requires_user_agent=True,
            tags=["futures", "cbot", "ice", "cme"],
        )

    def _get_default_headers(self) -> dict[str, str]:
        return {"Accept": "application/json", "User-Agent": BROWSER_USER_AGENT}

    async def fetch_raw(self, params: dict[str, Any]) -> Any:
        slug = params.get("slug")
        info = INTERNATIONAL_TICKERS.get(slug or "")
        if info is None:
            raise NormalizationError(f"No international ticker for {slug!r}", source_name=self.name)
        return await self._get_json(
            f"{self.BASE_URL}/{info.ticker}",
            params={"interval": "1d", "range": "1d"},
        )

    def normalize(self, raw: Any, params: dict[str, Any]) -> list[InternationalPrice]:
        slug = params["slug"]
        return [normalize_yahoo_chart(slug, INTERNATIONAL_TICKERS[slug], raw)]
