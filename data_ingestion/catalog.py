"""
Data Ingestion - Reference catalog.

Static reference data: commodities, tickers, indicator pages,
news keywords, cities and regional points. Changes here are
deploy-time changes, not runtime configuration.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from data_ingestion.types import Commodity, CommodityCategory


# =============================================================
# COMMODITIES
# =============================================================

COMMODITIES: Dict[str, Commodity] = {
    c.slug: c
    for c in [
        Commodity("soja", "Soja", CommodityCategory.GRAIN, "R$/sc 60kg"),
        Commodity("milho", "Milho", CommodityCategory.GRAIN, "R$/sc 60kg"),
        Commodity("trigo", "Trigo", CommodityCategory.GRAIN, "R$/t"),
        Commodity("arroz", "Arroz", CommodityCategory.GRAIN, "R$/sc 50kg"),
        Commodity("cafe-arabica", "Café Arábica", CommodityCategory.GRAIN, "R$/sc 60kg"),
        Commodity("cafe-robusta", "Café Robusta", CommodityCategory.GRAIN, "R$/sc 60kg"),
        Commodity("boi-gordo", "Boi Gordo", CommodityCategory.LIVESTOCK, "R$/@"),
        Commodity("bezerro", "Bezerro", CommodityCategory.LIVESTOCK, "R$/cabeça"),
        Commodity("suino", "Suíno Vivo", CommodityCategory.LIVESTOCK, "R$/kg"),
        Commodity("frango", "Frango", CommodityCategory.LIVESTOCK, "R$/kg"),
        Commodity("leite", "Leite", CommodityCategory.LIVESTOCK, "R$/litro"),
        Commodity("acucar-cristal", "Açúcar Cristal", CommodityCategory.SUGAR_ENERGY, "R$/sc 50kg"),
        Commodity("etanol-hidratado", "Etanol Hidratado", CommodityCategory.SUGAR_ENERGY, "R$/m³"),
        Commodity("etanol-anidro", "Etanol Anidro", CommodityCategory.SUGAR_ENERGY, "R$/m³"),
        Commodity("algodao", "Algodão", CommodityCategory.FIBER, "c/lp"),
    ]
}


def get_commodity(slug: str) -> Optional[Commodity]:
    return COMMODITIES.get(slug)


# =============================================================
# INTERNATIONAL TICKERS
# =============================================================

@dataclass(frozen=True)
class TickerInfo:
    ticker: str
    exchange: str
    unit: str


INTERNATIONAL_TICKERS: Dict[str, TickerInfo] = {
    "soja": TickerInfo("ZS=F", "CBOT", "cents/bushel"),
    "milho": TickerInfo("ZC=F", "CBOT", "cents/bushel"),
    "trigo": TickerInfo("ZW=F", "CBOT", "cents/bushel"),
    "cafe-arabica": TickerInfo("KC=F", "ICE", "cents/lb"),
    "cafe-robusta": TickerInfo("RC=F", "ICE", "USD/ton"),
    "boi-gordo": TickerInfo("LE=F", "CME", "cents/lb"),
    "bezerro": TickerInfo("GF=F", "CME", "cents/lb"),
    "suino": TickerInfo("HE=F", "CME", "cents/lb"),
    "acucar-cristal": TickerInfo("SB=F", "ICE", "cents/lb"),
    "algodao": TickerInfo("CT=F", "ICE", "cents/lb"),
    "arroz": TickerInfo("ZR=F", "CBOT", "USD/cwt"),
    "leite": TickerInfo("DC=F", "CME", "USD/cwt"),
}

SACK_KG = 60.0

# kg per bushel of the bushel-quoted grains
BUSHEL_WEIGHTS_KG: Dict[str, float] = {
    "soja": 27.2155,
    "milho": 25.4012,
    "trigo": 27.2155,
}


# =============================================================
# CEPEA INDICATOR PAGES
# =============================================================

CEPEA_BASE_URL = "https://www.cepea.org.br/br/indicador"


@dataclass(frozen=True)
class IndicatorPage:
    """
    Where a spot indicator lives and how to find its table.

    ``keywords`` selects the keyword extractor; without keywords
    the table at ``table_index`` is used.
    """
    page: str
    market: str
    keywords: Tuple[str, ...] = ()
    table_index: int = 0

    @property
    def url(self) -> str:
        return f"{CEPEA_BASE_URL}/{self.page}.aspx"


INDICATOR_PAGES: Dict[str, IndicatorPage] = {
    "soja": IndicatorPage("soja", "Paranaguá/PR"),
    "milho": IndicatorPage("milho", "ESALQ/BM&FBovespa"),
    "boi-gordo": IndicatorPage("boi-gordo", "Indicador CEPEA"),
    "cafe-arabica": IndicatorPage("cafe", "Indicador CEPEA"),
    "bezerro": IndicatorPage("bezerro", "Mato Grosso do Sul"),
    "acucar-cristal": IndicatorPage("acucar", "Cristal SP", keywords=("Cristal",)),
    "etanol-hidratado": IndicatorPage("etanol", "Hidratado SP", keywords=("Hidratado",)),
    "etanol-anidro": IndicatorPage("etanol", "Anidro SP", keywords=("Anidro",)),
    "trigo": IndicatorPage("trigo", "Paraná", keywords=("Paraná", "PR")),
    "frango": IndicatorPage("frango", "Congelado SP", keywords=("Congelado",)),
    "suino": IndicatorPage("suino", "Regional (MG/PR/RS)", keywords=("Vivo",)),
}


# =============================================================
# NEWS
# =============================================================

@dataclass(frozen=True)
class NewsFeed:
    name: str
    url: str


NEWS_FEEDS: List[NewsFeed] = [
    NewsFeed("Canal Rural", "https://www.canalrural.com.br/feed/"),
    NewsFeed("Agrolink", "https://www.agrolink.com.br/rss/"),
]

MAX_ITEMS_PER_FEED = 20

COMMODITY_KEYWORDS: Dict[str, List[str]] = {
    "soja": ["soja", "soybean", "soy", "oleaginosa"],
    "milho": ["milho", "corn", "maize", "cereal"],
    "boi-gordo": ["boi", "gordo", "cattle", "pecuária", "carne", "bovina", "arroba"],
    "bezerro": ["bezerro", "reposição", "pecuária", "cria"],
    "cafe": ["café", "coffee", "arábica", "robusta", "conilon"],
    "cafe-arabica": ["café", "coffee", "arábica"],
    "cafe-robusta": ["café", "coffee", "robusta", "conilon"],
    "acucar": ["açúcar", "sugar", "cana", "sucroalcooleiro"],
    "acucar-cristal": ["açúcar", "sugar", "cana", "sucroalcooleiro"],
    "etanol": ["etanol", "ethanol", "álcool", "biocombustível", "usina"],
    "etanol-hidratado": ["etanol", "hidratado", "álcool", "biocombustível"],
    "etanol-anidro": ["etanol", "anidro", "álcool", "biocombustível"],
    "trigo": ["trigo", "wheat", "farinha"],
    "algodao": ["algodão", "cotton", "pluma", "fibra"],
    "arroz": ["arroz", "rice"],
    "feijao": ["feijão", "beans", "leguminosa"],
    "suino": ["suíno", "porco", "pork", "swine"],
    "frango": ["frango", "aves", "chicken", "avicultura"],
    "leite": ["leite", "milk", "laticínio", "dairy"],
    "mandioca": ["mandioca", "cassava", "fécula"],
}


def news_keywords(slug: str) -> List[str]:
    """Keywords for a commodity; unknown slugs match their own words."""
    return COMMODITY_KEYWORDS.get(slug) or [slug.replace("-", " ")]


# =============================================================
# WEATHER
# =============================================================

@dataclass(frozen=True)
class Place:
    name: str
    state: str
    latitude: float
    longitude: float
    region: str = ""


AGRICULTURAL_CITIES: List[Place] = [
    Place("Sorriso", "MT", -12.54, -55.72),
    Place("Rio Verde", "GO", -17.79, -50.91),
    Place("Londrina", "PR", -23.31, -51.16),
    Place("Cascavel", "PR", -24.95, -53.46),
    Place("Barreiras", "BA", -12.15, -44.99),
    Place("Balsas", "MA", -7.53, -46.03),
    Place("Dourados", "MS", -22.22, -54.80),
    Place("Uberaba", "MG", -19.74, -47.93),
    Place("Ribeirão Preto", "SP", -21.17, -47.81),
    Place("Passo Fundo", "RS", -28.26, -52.40),
]

REGIONAL_POINTS: List[Place] = [
    Place("Porto Velho", "RO", -8.76, -63.90, "Norte"),
    Place("Rio Branco", "AC", -9.97, -67.81, "Norte"),
    Place("Manaus", "AM", -3.10, -60.02, "Norte"),
    Place("Boa Vista", "RR", 2.82, -60.67, "Norte"),
    Place("Belém", "PA", -1.45, -48.50, "Norte"),
    Place("Macapá", "AP", 0.03, -51.05, "Norte"),
    Place("Palmas", "TO", -10.24, -48.35, "Norte"),
    Place("Balsas", "MA", -7.53, -46.03, "Nordeste"),
    Place("Uruçuí", "PI", -7.23, -44.55, "Nordeste"),
    Place("Fortaleza", "CE", -3.71, -38.54, "Nordeste"),
    Place("Natal", "RN", -5.79, -35.21, "Nordeste"),
    Place("João Pessoa", "PB", -7.11, -34.86, "Nordeste"),
    Place("Recife", "PE", -8.05, -34.88, "Nordeste"),
    Place("Maceió", "AL", -9.66, -35.74, "Nordeste"),
    Place("Aracaju", "SE", -10.91, -37.07, "Nordeste"),
    Place("Barreiras", "BA", -12.15, -44.99, "Nordeste"),
    Place("Sorriso", "MT", -12.54, -55.72, "Centro-Oeste"),
    Place("Dourados", "MS", -22.22, -54.80, "Centro-Oeste"),
    Place("Rio Verde", "GO", -17.79, -50.91, "Centro-Oeste"),
    Place("Brasília", "DF", -15.79, -47.88, "Centro-Oeste"),
    Place("Uberaba", "MG", -19.74, -47.93, "Sudeste"),
    Place("Vitória", "ES", -20.29, -40.29, "Sudeste"),
    Place("Campos", "RJ", -21.75, -41.32, "Sudeste"),
    Place("Ribeirão Preto", "SP", -21.17, -47.81, "Sudeste"),
    Place("Cascavel", "PR", -24.95, -53.46, "Sul"),
    Place("Chapecó", "SC", -27.09, -52.62, "Sul"),
    Place("Passo Fundo", "RS", -28.26, -52.40, "Sul"),
]

WEATHER_CODES: Dict[int, str] = {
    0: "Céu Limpo",
    1: "Principalmente Limpo",
    2: "Parcialmente Nublado",
    3: "Nublado",
    45: "Nevoeiro",
    48: "Nevoeiro com Geada",
    51: "Garoa Leve",
    53: "Garoa Moderada",
    55: "Garoa Densa",
    61: "Chuva Leve",
    63: "Chuva Moderada",
    65: "Chuva Forte",
    71: "Neve Leve",
    80: "Pancadas de Chuva Leves",
    81: "Pancadas de Chuva Moderadas",
    82: "Pancadas de Chuva Violentas",
    95: "Tempestade",
    96: "Tempestade com Granizo Leve",
    99: "Tempestade com Granizo Forte",
}


def describe_weather(code: Optional[int]) -> str:
    if code is None:
        return "Desconhecido"
    return WEATHER_CODES.get(code, "Desconhecido")
