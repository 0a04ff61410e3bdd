"""
Shared FastAPI dependencies and response helpers.
"""
from typing import Any, Dict, Optional

from fastapi import Header, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from dashboard.services import MarketServices
from data_ingestion.types import Aggregate
from reporting.models import UserContext, UserPlan
from storage.cache_policy import QueryType


def get_services(request: Request) -> MarketServices:
    return request.app.state.services


def get_user(
    x_user_id: str = Header(..., min_length=1, max_length=64),
    x_user_plan: Optional[str] = Header(None),
) -> UserContext:
    """Caller identity from headers; authentication happens upstream."""
    return UserContext(user_id=x_user_id, plan=UserPlan.parse(x_user_plan))


def cache_control(ttl: float) -> str:
    ttl = int(ttl)
    return f"public, s-maxage={ttl}, stale-while-revalidate={2 * ttl}"


def aggregate_fields(aggregate: Aggregate) -> Dict[str, Any]:
    return {
        "cached": aggregate.cached,
        "cache_age_seconds": aggregate.cache_age_seconds,
        "fetched_at": aggregate.fetched_at,
        "degraded": aggregate.degraded,
        "sources": aggregate.sources,
    }


def cached_response(
    body: BaseModel,
    services: MarketServices,
    query_type: QueryType,
    aggregate: Optional[Aggregate] = None,
) -> JSONResponse:
    """
    Serialize ``body`` with the CDN cache header of ``query_type``.

    With ``aggregate``, the header never outlives the aggregator's own
    cache entry: degraded results get the short degraded TTL and cached
    results only their remaining lifetime.
    """
    ttl = services.cache.ttl_for(query_type)
    if aggregate is not None:
        if aggregate.degraded:
            ttl = min(ttl, services.aggregator.config.degraded_ttl_seconds)
        if aggregate.cached and aggregate.cache_age_seconds:
            ttl = max(ttl - aggregate.cache_age_seconds, 0)
    return JSONResponse(
        content=body.model_dump(mode="json"),
        headers={"Cache-Control": cache_control(ttl)},
    )
