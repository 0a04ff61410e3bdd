"""
Data Ingestion - Market Normalizer.

============================================================
RESPONSIBILITY
============================================================
Pure functions mapping price payloads to canonical records.

- Brazilian number / date formats ("1.234,56", "02/06/2024")
- Central bank time series -> ReferenceRate / InterestRate
- Yahoo chart payload -> InternationalPrice
- InternationalPrice + ReferenceRate -> Parity in reais
- Trailing variation recompute for quote series

============================================================
DESIGN PRINCIPLES
============================================================
- No I/O
- Malformed input raises NormalizationError; the calling
  source turns it into a failed result
============================================================
"""

import re
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from data_ingestion.catalog import BUSHEL_WEIGHTS_KG, SACK_KG, TickerInfo
from data_ingestion.types import InterestRate, InternationalPrice, Parity, Quote, ReferenceRate
from data_sources.exceptions import NormalizationError


_BR_DATE = re.compile(r"(\d{1,2})/(\d{1,2})/(\d{4})")
_NUMBER_CHARS = re.compile(r"[^\d.,-]")


# =============================================================
# PRIMITIVES
# =============================================================

def parse_br_number(text: str) -> float:
    """
    Parse a Brazilian formatted number.

    "1.234,56" -> 1234.56, "-0,11%" -> -0.11, "131,45" -> 131.45
    """
    cleaned = _NUMBER_CHARS.sub("", text or "")
    cleaned = cleaned.replace(".", "").replace(",", ".")
    if cleaned in ("", "-", "."):
        raise NormalizationError(f"Not a number: {text!r}", field_name="value", raw_data=text)
    try:
        return float(cleaned)
    except ValueError as e:
        raise NormalizationError(f"Not a number: {text!r}", raw_data=text, original_error=e)


def parse_decimal(text: Any) -> float:
    """Parse a plain decimal that may use either separator ("5.10", "5,10")."""
    if isinstance(text, (int, float)):
        return float(text)
    raw = str(text or "").strip()
    if "," in raw:
        return parse_br_number(raw)
    try:
        return float(raw)
    except ValueError as e:
        raise NormalizationError(f"Not a number: {text!r}", raw_data=text, original_error=e)


def parse_br_date(text: str) -> date:
    """Parse ``DD/MM/YYYY`` (leading zeros optional)."""
    match = _BR_DATE.search(text or "")
    if not match:
        raise NormalizationError(f"Not a date: {text!r}", field_name="date", raw_data=text)
    day, month, year = (int(g) for g in match.groups())
    try:
        return date(year, month, day)
    except ValueError as e:
        raise NormalizationError(f"Invalid date: {text!r}", raw_data=text, original_error=e)


def looks_like_br_date(text: str) -> bool:
    return bool(_BR_DATE.search(text or ""))


def percent_change(previous: float, current: float) -> Optional[float]:
    """Day-over-day variation in percent, rounded to 2 decimals."""
    if not previous:
        return None
    return round((current - previous) / previous * 100, 2)


# =============================================================
# CENTRAL BANK SERIES
# =============================================================

def normalize_sgs_series(points: Any) -> List[Tuple[date, float]]:
    """
    SGS payload ``[{"data": "DD/MM/YYYY", "valor": "5.10"}, ...]``
    to a list of (date, value) in ascending date order.

    ``date``/``value`` keys are accepted as aliases.
    """
    if not isinstance(points, list):
        raise NormalizationError("Series payload is not a list", raw_data=points)

    series: List[Tuple[date, float]] = []
    for point in points:
        if not isinstance(point, dict):
            raise NormalizationError("Series point is not an object", raw_data=point)
        raw_date = point.get("data", point.get("date"))
        raw_value = point.get("valor", point.get("value"))
        if raw_date is None or raw_value is None:
            raise NormalizationError("Series point without date/value", raw_data=point)
        series.append((parse_br_date(raw_date), parse_decimal(raw_value)))

    series.sort(key=lambda item: item[0])
    return series


def build_reference_rate(
    venda_series: Sequence[Tuple[date, float]],
    compra_series: Optional[Sequence[Tuple[date, float]]] = None,
    source: str = "bcb",
) -> ReferenceRate:
    """
    Latest point of the sell series plus variation against the point
    before it. Compra comes from its own series when available.
    """
    if not venda_series:
        raise NormalizationError("Empty reference rate series")

    last_date, venda = venda_series[-1]
    variation = None
    if len(venda_series) >= 2:
        variation = percent_change(venda_series[-2][1], venda)

    compra = venda
    if compra_series:
        same_day = [value for day, value in compra_series if day == last_date]
        compra = same_day[-1] if same_day else compra_series[-1][1]

    return ReferenceRate(
        compra=float(compra),
        venda=float(venda),
        variation=variation,
        reference_date=last_date,
        source=source,
    )


def build_interest_rate(series: Sequence[Tuple[date, float]]) -> InterestRate:
    if not series:
        raise NormalizationError("Empty interest rate series")
    day, value = series[-1]
    return InterestRate(value=value, reference_date=day)


# =============================================================
# INTERNATIONAL PRICES
# =============================================================

def normalize_yahoo_chart(slug: str, info: TickerInfo, payload: Dict[str, Any]) -> InternationalPrice:
    """Map ``/v8/finance/chart`` JSON to an InternationalPrice."""
    try:
        result = payload["chart"]["result"][0]
        meta = result["meta"]
    except (KeyError, IndexError, TypeError) as e:
        raise NormalizationError(f"Chart payload without result for {info.ticker}", raw_data=payload, original_error=e)

    price = meta.get("regularMarketPrice")
    if price is None:
        raise NormalizationError(f"No regularMarketPrice for {info.ticker}", field_name="regularMarketPrice")

    quote: Dict[str, Any] = {}
    indicators = result.get("indicators") or {}
    if indicators.get("quote"):
        quote = indicators["quote"][0] or {}

    market_time = meta.get("regularMarketTime")
    last_updated = (
        datetime.fromtimestamp(market_time, tz=timezone.utc)
        if isinstance(market_time, (int, float))
        else datetime.now(timezone.utc)
    )

    return InternationalPrice(
        slug=slug,
        ticker=info.ticker,
        exchange=info.exchange,
        price=float(price),
        currency=meta.get("currency") or "USD",
        unit=info.unit,
        last_updated=last_updated,
        previous_close=_first_number(meta.get("previousClose"), meta.get("chartPreviousClose")),
        open=_last_number(quote.get("open")),
        high=_last_number(quote.get("high")),
        low=_last_number(quote.get("low")),
        volume=_last_number(quote.get("volume")),
    )


def compute_parity(price: InternationalPrice, rate: ReferenceRate) -> Parity:
    """
    Convert ``price`` to reais at ``rate.venda``.

    Prices quoted in cents ("cents/bushel", "cents/lb") are divided by
    100 first. Bushel-quoted grains also get a per-sack (60 kg) price.
    """
    usd = price.price / 100 if price.unit.startswith("cents/") else price.price
    brl = usd * rate.venda

    per_sack = None
    bushel_kg = BUSHEL_WEIGHTS_KG.get(price.slug)
    if bushel_kg and price.unit.endswith("/bushel"):
        per_sack = round(brl * SACK_KG / bushel_kg, 2)

    return Parity(
        slug=price.slug,
        exchange=price.exchange,
        international_price=price.price,
        unit=price.unit,
        dollar_rate=rate.venda,
        price_usd=round(usd, 4),
        price_brl=round(brl, 2),
        last_updated=price.last_updated,
        rate_date=rate.reference_date,
        price_brl_per_sack=per_sack,
    )


def _first_number(*values: Any) -> Optional[float]:
    for value in values:
        if isinstance(value, (int, float)):
            return float(value)
    return None


def _last_number(values: Any) -> Optional[float]:
    if not isinstance(values, list):
        return None
    numbers = [v for v in values if isinstance(v, (int, float))]
    return float(numbers[-1]) if numbers else None


# =============================================================
# QUOTE SERIES
# =============================================================

def recompute_variations(quotes: Iterable[Quote]) -> List[Quote]:
    """
    Recompute each quote's variation against the previous reading of
    the same (commodity, market), in date order.

    Quotes are otherwise immutable: only ``variation`` changes.
    """
    ordered = sorted(quotes, key=lambda q: (q.commodity, q.market, q.reference_date))
    result: List[Quote] = []
    previous: Dict[Tuple[str, str], Quote] = {}
    for quote in ordered:
        key = (quote.commodity, quote.market)
        prior = previous.get(key)
        if prior is not None:
            quote = quote.with_variation(percent_change(prior.value, quote.value))
        result.append(quote)
        previous[key] = quote
    return result
