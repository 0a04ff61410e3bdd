from fastapi import APIRouter, Depends

from dashboard.dependencies import get_services
from dashboard.schemas import HealthResponse
from dashboard.services import MarketServices

router = APIRouter(prefix="/api/health", tags=["System Health"])


@router.get("", response_model=HealthResponse)
def get_health(services: MarketServices = Depends(get_services)):
    """
    Upstream source health, aggregator counters, cache stats and
    report generation state.
    """
    report = services.aggregator.health_report()
    status = "ok" if report["usable"] == report["total"] else "degraded"
    return HealthResponse(
        status=status,
        sources=report["sources"],
        usable=report["usable"],
        total=report["total"],
        aggregator=report["aggregator"],
        cache=report["cache"],
        reports=services.generator.get_stats(),
    )
