from typing import Optional

from fastapi import APIRouter, Depends, Query

from dashboard.dependencies import aggregate_fields, cached_response, get_services
from dashboard.schemas import NewsResponse
from dashboard.services import MarketServices
from storage.cache_policy import QueryType

router = APIRouter(prefix="/api/news", tags=["News"])


@router.get("", response_model=NewsResponse)
async def get_news(
    limit: int = Query(20, ge=1, le=100),
    slug: Optional[str] = Query(None, max_length=50),
    force: bool = False,
    services: MarketServices = Depends(get_services),
):
    """
    Latest agribusiness news from all feeds, newest first.
    ``slug`` narrows to one commodity.
    """
    aggregate = await services.aggregator.aggregate_news(limit=limit, slug=slug or None, force=force)
    body = NewsResponse(
        news=[item.to_dict() for item in aggregate.data],
        total=len(aggregate.data),
        **aggregate_fields(aggregate),
    )
    return cached_response(body, services, QueryType.NEWS, aggregate)
