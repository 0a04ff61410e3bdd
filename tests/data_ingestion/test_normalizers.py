"""
Tests for the market, news and weather normalizers.

All functions under test are pure; no fixtures touch the network.
"""

from datetime import date, datetime, timedelta, timezone

import pytest

from data_ingestion.catalog import REGIONAL_POINTS, news_keywords
from data_ingestion.normalizers.market_normalizer import (
    build_interest_rate,
    build_reference_rate,
    compute_parity,
    normalize_sgs_series,
    parse_br_date,
    parse_br_number,
    parse_decimal,
    percent_change,
    recompute_variations,
)
from data_ingestion.normalizers.news_normalizer import (
    clean_summary,
    dedupe_by_url,
    fold,
    matches_keywords,
    sort_by_published,
)
from data_ingestion.normalizers.weather_normalizer import (
    normalize_precipitation,
    summarize_precipitation,
)
from data_ingestion.types import (
    InternationalPrice,
    NewsItem,
    Quote,
    ReferenceRate,
    RegionalPrecipitation,
    describe_precipitation,
)
from data_sources.exceptions import NormalizationError


# ============================================================
# FIXTURES
# ============================================================

NOW = datetime(2024, 6, 2, 12, 0, tzinfo=timezone.utc)


def news(url: str, title: str = "Mercado agrícola", hours_ago: float = 0, source: str = "Canal Rural") -> NewsItem:
    return NewsItem(source=source, title=title, url=url, published_at=NOW - timedelta(hours=hours_ago))


def quote(day: int, value: float, market: str = "Paranaguá/PR", commodity: str = "soja") -> Quote:
    return Quote(
        commodity=commodity,
        reference_date=date(2024, 6, day),
        value=value,
        unit="R$/sc 60kg",
        market=market,
        source="cepea",
    )


def region(uf: str, mm: float) -> RegionalPrecipitation:
    return RegionalPrecipitation(uf=uf, name=uf, latitude=0.0, longitude=0.0, accumulated_7_days=mm)


# ============================================================
# BRAZILIAN FORMATS
# ============================================================

class TestBrazilianFormats:

    @pytest.mark.parametrize(
        "text, expected",
        [
            ("131,45", 131.45),
            ("1.234,56", 1234.56),
            ("-0,11%", -0.11),
            ("R$ 2.310,00", 2310.0),
            ("12", 12.0),
        ],
    )
    def test_parse_br_number(self, text, expected):
        assert parse_br_number(text) == pytest.approx(expected)

    @pytest.mark.parametrize("text", ["", "-", "n/d"])
    def test_parse_br_number_rejects_empty(self, text):
        with pytest.raises(NormalizationError):
            parse_br_number(text)

    def test_parse_decimal_accepts_both_separators(self):
        assert parse_decimal("5.10") == 5.10
        assert parse_decimal("5,10") == 5.10
        assert parse_decimal(7) == 7.0
        with pytest.raises(NormalizationError):
            parse_decimal("abc")

    def test_parse_br_date(self):
        assert parse_br_date("02/06/2024") == date(2024, 6, 2)
        assert parse_br_date(" 2/6/2024 ") == date(2024, 6, 2)
        with pytest.raises(NormalizationError):
            parse_br_date("2024-06-02")
        with pytest.raises(NormalizationError):
            parse_br_date("31/02/2024")

    def test_percent_change(self):
        assert percent_change(5.10, 5.30) == 3.92
        assert percent_change(0, 5.30) is None


# ============================================================
# CENTRAL BANK SERIES
# ============================================================

class TestCentralBankSeries:

    def test_series_sorted_ascending(self):
        series = normalize_sgs_series([
            {"data": "02/06/2024", "valor": "5.30"},
            {"data": "01/06/2024", "valor": "5.10"},
        ])
        assert series == [(date(2024, 6, 1), 5.10), (date(2024, 6, 2), 5.30)]

    def test_series_accepts_english_keys(self):
        series = normalize_sgs_series([{"date": "01/06/2024", "value": "5.10"}])
        assert series == [(date(2024, 6, 1), 5.10)]

    @pytest.mark.parametrize(
        "payload",
        [
            {"error": "not found"},
            ["01/06/2024"],
            [{"data": "01/06/2024"}],
        ],
    )
    def test_series_rejects_bad_payloads(self, payload):
        with pytest.raises(NormalizationError):
            normalize_sgs_series(payload)

    def test_reference_rate_from_two_points(self):
        venda = normalize_sgs_series([
            {"data": "01/06/2024", "valor": "5.10"},
            {"data": "02/06/2024", "valor": "5.30"},
        ])
        rate = build_reference_rate(venda)

        assert rate.variation == 3.92
        assert rate.compra == rate.venda == 5.30
        assert rate.reference_date == date(2024, 6, 2)

    def test_reference_rate_prefers_same_day_buy_value(self):
        venda = [(date(2024, 6, 1), 5.10), (date(2024, 6, 2), 5.30)]
        compra = [(date(2024, 6, 1), 5.09), (date(2024, 6, 2), 5.29)]
        assert build_reference_rate(venda, compra).compra == 5.29

        stale_compra = [(date(2024, 5, 31), 5.05)]
        assert build_reference_rate(venda, stale_compra).compra == 5.05

    def test_single_point_has_no_variation(self):
        rate = build_reference_rate([(date(2024, 6, 2), 5.30)])
        assert rate.variation is None

    def test_empty_series_rejected(self):
        with pytest.raises(NormalizationError):
            build_reference_rate([])
        with pytest.raises(NormalizationError):
            build_interest_rate([])

    def test_interest_rate_is_last_point(self):
        rate = build_interest_rate([(date(2024, 5, 8), 10.5), (date(2024, 6, 1), 10.4)])
        assert rate.value == 10.4
        assert rate.reference_date == date(2024, 6, 1)


# ============================================================
# PARITY
# ============================================================

class TestParity:

    RATE = ReferenceRate(compra=5.0, venda=5.0, variation=None, reference_date=date(2024, 5, 31))

    @staticmethod
    def intl(slug: str, value: float, unit: str) -> InternationalPrice:
        return InternationalPrice(
            slug=slug,
            ticker="X=F",
            exchange="CBOT",
            price=value,
            currency="USX",
            unit=unit,
            last_updated=datetime(2024, 5, 31, 21, 0, tzinfo=timezone.utc),
        )

    def test_corn_bushel_weight(self):
        parity = compute_parity(self.intl("milho", 450.0, "cents/bushel"), self.RATE)

        assert parity.price_usd == 4.5
        assert parity.price_brl == 22.5
        assert parity.price_brl_per_sack == round(22.5 * 60 / 25.4012, 2)

    def test_cents_per_pound_has_no_sack_price(self):
        parity = compute_parity(self.intl("boi-gordo", 180.0, "cents/lb"), self.RATE)

        assert parity.price_brl == 9.0
        assert parity.price_brl_per_sack is None
        assert parity.to_dict()["rate_date"] == "2024-05-31"


# ============================================================
# QUOTE SERIES
# ============================================================

class TestRecomputeVariations:

    def test_variation_against_previous_reading_of_same_market(self):
        quotes = [
            quote(3, 132.0),
            quote(1, 130.0),
            quote(2, 131.3),
            quote(2, 120.0, market="Paraná"),
        ]

        result = recompute_variations(quotes)

        by_key = {(q.market, q.reference_date.day): q for q in result}
        assert by_key[("Paranaguá/PR", 1)].variation is None
        assert by_key[("Paranaguá/PR", 2)].variation == 1.0
        assert by_key[("Paranaguá/PR", 3)].variation == 0.53
        assert by_key[("Paraná", 2)].variation is None

    def test_only_variation_changes(self):
        original = [quote(1, 130.0), quote(2, 131.3)]
        result = recompute_variations(original)
        assert [q.identity for q in result] == [q.identity for q in original]
        assert [q.value for q in result] == [130.0, 131.3]


# ============================================================
# NEWS
# ============================================================

class TestNewsMerge:

    def test_dedupe_keeps_first_and_ignores_trailing_slash(self):
        items = [
            news("https://a.example/x/", source="A"),
            news("https://a.example/x", source="B"),
            news("https://a.example/y"),
        ]
        unique = dedupe_by_url(items)
        assert [i.url for i in unique] == ["https://a.example/x/", "https://a.example/y"]
        assert unique[0].source == "A"

    def test_sort_newest_first(self):
        items = [news("u1", hours_ago=5), news("u2", hours_ago=1), news("u3", hours_ago=3)]
        assert [i.url for i in sort_by_published(items)] == ["u2", "u3", "u1"]

    def test_keyword_match_ignores_accents_and_case(self):
        item = news("u", title="CAFÉ arábica dispara na ICE")
        assert matches_keywords(item, ["cafe"])
        assert matches_keywords(item, news_keywords("cafe-arabica"))
        assert not matches_keywords(item, news_keywords("soja"))

    def test_unknown_slug_matches_own_words(self):
        assert news_keywords("palma-de-oleo") == ["palma de oleo"]

    def test_fold(self):
        assert fold("Açúcar Cristal") == "acucar cristal"
        assert fold(None) == ""

    def test_clean_summary_truncates(self):
        html = "<p>" + " ".join(["palavra"] * 100) + "</p>"
        summary = clean_summary(html)
        assert summary.endswith("...")
        assert len(summary) <= 303
        assert clean_summary("") is None


# ============================================================
# PRECIPITATION
# ============================================================

class TestPrecipitation:

    def test_normalize_sums_seven_days(self):
        place = REGIONAL_POINTS[0]
        payload = {"daily": {"precipitation_sum": [1.2, None, 3.4, 0, 10.0, 0.5, 2.0]}}

        result = normalize_precipitation(payload, place)

        assert result.uf == place.state
        assert result.accumulated_7_days == 17.1
        assert result.daily[1] == 0.0
        assert result.description == "Chuva moderada"

    def test_normalize_without_daily_fails(self):
        with pytest.raises(NormalizationError):
            normalize_precipitation({"error": True}, REGIONAL_POINTS[0])

    def test_summary(self):
        summary = summarize_precipitation([region("MT", 42.0), region("RS", 3.0), region("PR", 15.0)])
        assert summary.highest == {"uf": "MT", "name": "MT", "value": 42.0}
        assert summary.lowest["uf"] == "RS"
        assert summary.national_average == 20.0

    def test_summary_of_nothing(self):
        summary = summarize_precipitation([])
        assert summary.national_average == 0.0
        assert summary.highest["uf"] == "-"

    @pytest.mark.parametrize(
        "mm, label",
        [(0.5, "Sem chuva"), (8, "Chuva fraca"), (25, "Chuva moderada"), (45, "Chuva forte"), (80, "Chuva muito forte"), (150, "Chuva extrema")],
    )
    def test_describe_precipitation(self, mm, label):
        assert describe_precipitation(mm) == label
