"""
CEPEA/ESALQ indicator pages - spot quotes scraped from HTML tables.

The page layout is the most fragile upstream contract of the
system; parsing lives in ``table_extractors`` so each layout can be
tested against fixture HTML. params: ``{"slug": ...}``.
"""

from typing import Any

from data_ingestion.catalog import CEPEA_BASE_URL, INDICATOR_PAGES, get_commodity
from data_ingestion.normalizers.table_extractors import TableExtractor, extractor_for
from data_ingestion.types import Quote
from data_sources.base import BaseUpstreamSource
from data_sources.exceptions import NormalizationError
from data_sources.models import SourceKind, SourceMetadata
from data_sources.providers.yahoo_finance import BROWSER_USER_AGENT


class CepeaSource(BaseUpstreamSource[Quote]):

    def __init__(self, extractors: dict[str, TableExtractor] | None = None, **kwargs) -> None:
        super().__init__(**kwargs)
        self._extractors = extractors or {}

    @property
    def name(self) -> str:
        return "cepea"

    def metadata(self) -> SourceMetadata:
        return SourceMetadata(
            name=self.name,
            display_name="CEPEA/ESALQ",
            kind=SourceKind.SPOT_QUOTE,
            base_url=CEPEA_BASE_URL,
            requires_user_agent=True,
            tags=["html"],
        )

    def _get_default_headers(self) -> dict[str, str]:
        return {"Accept": "text/html", "User-Agent": BROWSER_USER_AGENT}

    def extractor(self, slug: str) -> TableExtractor:
        if slug not in self._extractors:
            self._extractors[slug] = extractor_for(INDICATOR_PAGES[slug])
        return self._extractors[slug]

    async def fetch_raw(self, params: dict[str, Any]) -> str:
        slug = params.get("slug") or ""
        page = INDICATOR_PAGES.get(slug)
        if page is None:
            raise NormalizationError(f"No indicator page for {slug!r}", source_name=self.name)
        return await self._get_text(page.url)

    def normalize(self, raw: str, params: dict[str, Any]) -> list[Quote]:
        slug = params["slug"]
        page = INDICATOR_PAGES[slug]
        row = self.extractor(slug).extract(raw, label=slug)
        commodity = get_commodity(slug)
        return [
            Quote(
                commodity=slug,
                reference_date=row.reference_date,
                value=row.value,
                unit=commodity.unit if commodity else "",
                market=page.market,
                source=self.name,
                variation=row.variation,
            )
        ]
