"""
Data Ingestion - Weather Normalizer.

Open-Meteo forecast / geocoding payloads to WeatherReading, City
and RegionalPrecipitation records.
"""

from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

from data_ingestion.catalog import Place, describe_weather
from data_ingestion.types import (
    City,
    DailyForecast,
    PrecipitationSummary,
    RegionalPrecipitation,
    WeatherReading,
)
from data_sources.exceptions import NormalizationError


def _at(values: Any, index: int) -> Optional[Any]:
    if isinstance(values, list) and index < len(values):
        return values[index]
    return None


def _parse_time(raw: Optional[str]) -> datetime:
    if not raw:
        return datetime.now(timezone.utc)
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError:
        return datetime.now(timezone.utc)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def normalize_forecast(payload: Dict[str, Any], latitude: float, longitude: float) -> WeatherReading:
    if not isinstance(payload, dict) or "current" not in payload:
        raise NormalizationError("Forecast payload without current block", raw_data=payload)

    current = payload["current"] or {}
    daily = payload.get("daily") or {}

    forecast: List[DailyForecast] = []
    for index, day in enumerate(daily.get("time") or []):
        code = _at(daily.get("weather_code"), index)
        forecast.append(
            DailyForecast(
                day=date.fromisoformat(day),
                temp_max=_at(daily.get("temperature_2m_max"), index),
                temp_min=_at(daily.get("temperature_2m_min"), index),
                precipitation=_at(daily.get("precipitation_sum"), index),
                precipitation_probability=_at(daily.get("precipitation_probability_max"), index),
                weather_code=code,
                description=describe_weather(code),
            )
        )

    code = current.get("weather_code")
    return WeatherReading(
        latitude=latitude,
        longitude=longitude,
        temperature=current.get("temperature_2m"),
        humidity=current.get("relative_humidity_2m"),
        wind_speed=current.get("wind_speed_10m"),
        precipitation=current.get("precipitation", forecast[0].precipitation if forecast else None),
        weather_code=code,
        description=describe_weather(code),
        is_day=bool(current.get("is_day", 1)),
        as_of=_parse_time(current.get("time")),
        forecast=forecast,
    )


def normalize_geocoding(payload: Dict[str, Any]) -> List[City]:
    """Brazilian results only; id is ``"lat,lon"``."""
    if not isinstance(payload, dict):
        raise NormalizationError("Geocoding payload is not an object", raw_data=payload)

    cities: List[City] = []
    for result in payload.get("results") or []:
        if result.get("country_code") != "BR":
            continue
        lat, lon = result.get("latitude"), result.get("longitude")
        if lat is None or lon is None:
            continue
        cities.append(
            City(
                id=f"{lat},{lon}",
                name=result.get("name", ""),
                state=result.get("admin1", ""),
                latitude=float(lat),
                longitude=float(lon),
                country=result.get("country", "Brasil"),
            )
        )
    return cities


def normalize_precipitation(payload: Dict[str, Any], place: Place) -> RegionalPrecipitation:
    try:
        daily = payload["daily"]
        values = daily["precipitation_sum"]
    except (KeyError, TypeError) as e:
        raise NormalizationError(f"No daily precipitation for {place.state}", raw_data=payload, original_error=e)

    amounts = [float(v or 0) for v in values]
    return RegionalPrecipitation(
        uf=place.state,
        name=place.name,
        latitude=place.latitude,
        longitude=place.longitude,
        accumulated_7_days=round(sum(amounts), 1),
        daily=amounts,
    )


def summarize_precipitation(regions: List[RegionalPrecipitation]) -> PrecipitationSummary:
    if not regions:
        empty = {"uf": "-", "name": "-", "value": 0.0}
        return PrecipitationSummary(highest=dict(empty), lowest=dict(empty), national_average=0.0)

    highest = max(regions, key=lambda r: r.accumulated_7_days)
    lowest = min(regions, key=lambda r: r.accumulated_7_days)
    average = sum(r.accumulated_7_days for r in regions) / len(regions)
    return PrecipitationSummary(
        highest={"uf": highest.uf, "name": highest.name, "value": highest.accumulated_7_days},
        lowest={"uf": lowest.uf, "name": lowest.name, "value": lowest.accumulated_7_days},
        national_average=round(average, 1),
    )
