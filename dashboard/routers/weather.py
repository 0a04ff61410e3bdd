from typing import Optional

from fastapi import APIRouter, Depends, Query

from dashboard.dependencies import aggregate_fields, cached_response, get_services
from dashboard.schemas import CitiesResponse, PrecipitationResponse, WeatherResponse
from dashboard.services import MarketServices
from storage.cache_policy import QueryType

router = APIRouter(prefix="/api/weather", tags=["Weather"])


@router.get("", response_model=WeatherResponse)
async def get_weather(
    lat: float = Query(..., ge=-90, le=90),
    lon: float = Query(..., ge=-180, le=180),
    force: bool = False,
    services: MarketServices = Depends(get_services),
):
    aggregate = await services.aggregator.get_weather(lat, lon, force=force)
    body = WeatherResponse(
        weather=aggregate.data.to_dict() if aggregate.data else None,
        **aggregate_fields(aggregate),
    )
    return cached_response(body, services, QueryType.WEATHER, aggregate)


@router.get("/cities", response_model=CitiesResponse)
async def get_cities(
    q: Optional[str] = Query(None, max_length=100),
    services: MarketServices = Depends(get_services),
):
    """City search; without ``q`` returns the main agricultural cities."""
    aggregate = None
    if not q:
        cities = services.aggregator.list_agricultural_cities()
        body = CitiesResponse(cities=[c.to_dict() for c in cities], fetched_at=services.clock.now())
    else:
        aggregate = await services.aggregator.search_cities(q)
        body = CitiesResponse(cities=[c.to_dict() for c in aggregate.data], **aggregate_fields(aggregate))
    return cached_response(body, services, QueryType.CITY_SEARCH, aggregate)


@router.get("/precipitation", response_model=PrecipitationResponse)
async def get_precipitation(
    force: bool = False,
    services: MarketServices = Depends(get_services),
):
    aggregate = await services.aggregator.aggregate_precipitation(force=force)
    forecast = aggregate.data.to_dict()
    body = PrecipitationResponse(
        regions=forecast["regions"],
        summary=forecast["summary"],
        **aggregate_fields(aggregate),
    )
    return cached_response(body, services, QueryType.PRECIPITATION, aggregate)
