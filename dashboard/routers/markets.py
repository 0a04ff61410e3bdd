from typing import Optional

from fastapi import APIRouter, Depends, Query

from dashboard.dependencies import aggregate_fields, cached_response, get_services
from dashboard.schemas import (
    CommoditiesResponse,
    InternationalPriceResponse,
    InternationalPricesResponse,
    ParityResponse,
    QuotesResponse,
    RateResponse,
)
from dashboard.services import MarketServices
from data_ingestion.catalog import COMMODITIES
from storage.cache_policy import QueryType

router = APIRouter(prefix="/api", tags=["Markets"])


@router.get("/commodities", response_model=CommoditiesResponse)
def list_commodities():
    return CommoditiesResponse(commodities=[c.to_dict() for c in COMMODITIES.values() if c.active])


@router.get("/international")
async def get_international(
    slug: Optional[str] = Query(None, max_length=50),
    force: bool = False,
    services: MarketServices = Depends(get_services),
):
    """All international futures prices, or one with ``slug``."""
    if slug:
        aggregate = await services.aggregator.get_international_price(slug, force=force)
        body = InternationalPriceResponse(price=aggregate.data.to_dict(), **aggregate_fields(aggregate))
    else:
        aggregate = await services.aggregator.aggregate_international_prices(force=force)
        body = InternationalPricesResponse(
            prices=[p.to_dict() for p in aggregate.data.values()],
            **aggregate_fields(aggregate),
        )
    return cached_response(body, services, QueryType.INTERNATIONAL_PRICES, aggregate)


@router.get("/parity/{slug}", response_model=ParityResponse)
async def get_parity(slug: str, force: bool = False, services: MarketServices = Depends(get_services)):
    """International price of ``slug`` converted at the dollar reference rate."""
    aggregate = await services.aggregator.get_parity(slug, force=force)
    body = ParityResponse(parity=aggregate.data.to_dict(), **aggregate_fields(aggregate))
    return cached_response(body, services, QueryType.INTERNATIONAL_PRICES, aggregate)


@router.get("/quotes", response_model=QuotesResponse)
async def get_quotes(
    slug: Optional[str] = Query(None, max_length=50),
    force: bool = False,
    services: MarketServices = Depends(get_services),
):
    """Spot quotes from the physical market indicators."""
    aggregate = await services.aggregator.aggregate_spot_quotes([slug] if slug else None, force=force)
    body = QuotesResponse(quotes=[q.to_dict() for q in aggregate.data], **aggregate_fields(aggregate))
    return cached_response(body, services, QueryType.SPOT_QUOTES, aggregate)


@router.get("/rates/dollar", response_model=RateResponse)
async def get_dollar(force: bool = False, services: MarketServices = Depends(get_services)):
    aggregate = await services.aggregator.get_reference_rate(force=force)
    body = RateResponse(rate=aggregate.data.to_dict() if aggregate.data else None, **aggregate_fields(aggregate))
    return cached_response(body, services, QueryType.REFERENCE_RATE, aggregate)


@router.get("/rates/selic", response_model=RateResponse)
async def get_selic(force: bool = False, services: MarketServices = Depends(get_services)):
    aggregate = await services.aggregator.get_selic(force=force)
    body = RateResponse(rate=aggregate.data.to_dict() if aggregate.data else None, **aggregate_fields(aggregate))
    return cached_response(body, services, QueryType.SELIC, aggregate)
