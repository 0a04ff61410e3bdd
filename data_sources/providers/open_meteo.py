"""
Open-Meteo adapters - forecast, geocoding and regional precipitation.

Endpoints used (public, no auth):
- api.open-meteo.com/v1/forecast
- geocoding-api.open-meteo.com/v1/search
"""

from typing import Any

from data_ingestion.catalog import Place
from data_ingestion.normalizers.weather_normalizer import (
    normalize_forecast,
    normalize_geocoding,
    normalize_precipitation,
)
from data_ingestion.types import City, RegionalPrecipitation, WeatherReading
from data_sources.base import BaseUpstreamSource
from data_sources.exceptions import NormalizationError
from data_sources.models import SourceKind, SourceMetadata


FORECAST_URL = "https://api.open-meteo.com/v1/forecast"
GEOCODING_URL = "https://geocoding-api.open-meteo.com/v1/search"
TIMEZONE = "America/Sao_Paulo"

MIN_QUERY_LENGTH = 3


class OpenMeteoForecastSource(BaseUpstreamSource[WeatherReading]):
    """Current conditions plus 7-day forecast. params: latitude, longitude."""

    @property
    def name(self) -> str:
        return "open_meteo_forecast"

    def metadata(self) -> SourceMetadata:
        return SourceMetadata(
            name=self.name,
            display_name="Open-Meteo Forecast",
            kind=SourceKind.WEATHER,
            base_url=FORECAST_URL,
            documentation_url="https://open-meteo.com/en/docs",
        )

    async def fetch_raw(self, params: dict[str, Any]) -> Any:
        try:
            latitude = float(params["latitude"])
            longitude = float(params["longitude"])
        except (KeyError, TypeError, ValueError) as e:
            raise NormalizationError("Forecast needs numeric latitude/longitude", self.name, original_error=e)
        return await self._get_json(
            FORECAST_URL,
            params={
                "latitude": latitude,
                "longitude": longitude,
                "current": "temperature_2m,relative_humidity_2m,is_day,weather_code,wind_speed_10m,precipitation",
                "daily": (
                    "weather_code,temperature_2m_max,temperature_2m_min,"
                    "precipitation_sum,precipitation_probability_max"
                ),
                "timezone": TIMEZONE,
                "forecast_days": 7,
            },
        )

    def normalize(self, raw: Any, params: dict[str, Any]) -> list[WeatherReading]:
        return [normalize_forecast(raw, float(params["latitude"]), float(params["longitude"]))]


class OpenMeteoGeocodingSource(BaseUpstreamSource[City]):
    """Brazilian city search. params: query."""

    @property
    def name(self) -> str:
        return "open_meteo_geocoding"

    def metadata(self) -> SourceMetadata:
        return SourceMetadata(
            name=self.name,
            display_name="Open-Meteo Geocoding",
            kind=SourceKind.GEOCODING,
            base_url=GEOCODING_URL,
        )

    async def fetch_raw(self, params: dict[str, Any]) -> Any:
        query = (params.get("query") or "").strip()
        if len(query) < MIN_QUERY_LENGTH:
            return {"results": []}
        return await self._get_json(
            GEOCODING_URL,
            params={"name": query, "count": 5, "language": "pt", "format": "json"},
        )

    def normalize(self, raw: Any, params: dict[str, Any]) -> list[City]:
        return normalize_geocoding(raw)


class OpenMeteoPrecipitationSource(BaseUpstreamSource[RegionalPrecipitation]):
    """7-day precipitation forecast for one regional point. params: place."""

    @property
    def name(self) -> str:
        return "open_meteo_precipitation"

    def metadata(self) -> SourceMetadata:
        return SourceMetadata(
            name=self.name,
            display_name="Open-Meteo Precipitation",
            kind=SourceKind.PRECIPITATION,
            base_url=FORECAST_URL,
        )

    async def fetch_raw(self, params: dict[str, Any]) -> Any:
        place: Place = params["place"]
        return await self._get_json(
            FORECAST_URL,
            params={
                "latitude": place.latitude,
                "longitude": place.longitude,
                "daily": "precipitation_sum,precipitation_probability_max",
                "timezone": TIMEZONE,
                "forecast_days": 7,
            },
        )

    def normalize(self, raw: Any, params: dict[str, Any]) -> list[RegionalPrecipitation]:
        return [normalize_precipitation(raw, params["place"])]
