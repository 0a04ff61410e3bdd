"""
Banco Central do Brasil - SGS time series adapter.

Endpoints used (public, no auth):
- /dados/serie/bcdata.sgs.{series}/dados/ultimos/{n}?formato=json

Series:
- 1      dollar, free rate, sell (venda)
- 10813  dollar, free rate, buy (compra)
- 432    SELIC target rate (% p.a.)
"""

import asyncio
import logging
from typing import Any

from data_ingestion.normalizers.market_normalizer import (
    build_interest_rate,
    build_reference_rate,
    normalize_sgs_series,
)
from data_ingestion.types import InterestRate, ReferenceRate
from data_sources.base import BaseUpstreamSource
from data_sources.exceptions import FetchError
from data_sources.models import SourceKind, SourceMetadata


logger = logging.getLogger(__name__)

SGS_BASE_URL = "https://api.bcb.gov.br/dados/serie"


def sgs_url(series: int, last: int) -> str:
    return f"{SGS_BASE_URL}/bcdata.sgs.{series}/dados/ultimos/{last}"


class BCBReferenceRateSource(BaseUpstreamSource[ReferenceRate]):
    """
    Dollar reference rate with day-over-day variation.

    The sell series is required; the buy series is best-effort and
    falls back to the sell value when unavailable.
    """

    VENDA_SERIES = 1
    COMPRA_SERIES = 10813
    POINTS = 5  # last business days, only the last two are used

    @property
    def name(self) -> str:
        return "bcb_dollar"

    def metadata(self) -> SourceMetadata:
        return SourceMetadata(
            name=self.name,
            display_name="Banco Central do Brasil - Dólar",
            kind=SourceKind.REFERENCE_RATE,
            base_url=SGS_BASE_URL,
            documentation_url="https://dadosabertos.bcb.gov.br/",
        )

    async def fetch_raw(self, params: dict[str, Any]) -> dict[str, Any]:
        query = {"formato": "json"}
        venda, compra = await asyncio.gather(
            self._get_json(sgs_url(self.VENDA_SERIES, self.POINTS), params=query),
            self._get_json(sgs_url(self.COMPRA_SERIES, self.POINTS), params=query),
            return_exceptions=True,
        )
        if isinstance(venda, BaseException):
            raise venda
        if isinstance(compra, FetchError):
            logger.warning(f"[{self.name}] Buy series unavailable, using sell rate: {compra.message}")
            compra = None
        elif isinstance(compra, BaseException):
            raise compra
        return {"venda": venda, "compra": compra}

    def normalize(self, raw: dict[str, Any], params: dict[str, Any]) -> list[ReferenceRate]:
        venda = normalize_sgs_series(raw["venda"])
        compra = normalize_sgs_series(raw["compra"]) if raw.get("compra") else None
        return [build_reference_rate(venda, compra, source=self.name)]


class BCBSelicSource(BaseUpstreamSource[InterestRate]):
    """SELIC rate, last published point."""

    SELIC_SERIES = 432

    @property
    def name(self) -> str:
        return "bcb_selic"

    def metadata(self) -> SourceMetadata:
        return SourceMetadata(
            name=self.name,
            display_name="Banco Central do Brasil - SELIC",
            kind=SourceKind.INTEREST_RATE,
            base_url=SGS_BASE_URL,
        )

    async def fetch_raw(self, params: dict[str, Any]) -> Any:
        return await self._get_json(sgs_url(self.SELIC_SERIES, 1), params={"formato": "json"})

    def normalize(self, raw: Any, params: dict[str, Any]) -> list[InterestRate]:
        return [build_interest_rate(normalize_sgs_series(raw))]
