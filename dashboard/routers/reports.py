from fastapi import APIRouter, Depends

from dashboard.dependencies import get_services, get_user
from dashboard.schemas import CommodityReportsResponse, ReportResponse, UsageResponse
from dashboard.services import MarketServices
from reporting.models import UserContext

router = APIRouter(prefix="/api/reports", tags=["AI Reports"])


@router.post("/daily", response_model=ReportResponse)
async def daily_report(
    force: bool = False,
    user: UserContext = Depends(get_user),
    services: MarketServices = Depends(get_services),
):
    report = await services.generator.get_daily_report(user=user, force=force)
    return ReportResponse(report=report.to_dict(), cached=report.cached)


@router.post("/commodity/{slug}", response_model=ReportResponse)
async def commodity_report(
    slug: str,
    force: bool = False,
    user: UserContext = Depends(get_user),
    services: MarketServices = Depends(get_services),
):
    report = await services.generator.get_commodity_report(slug, user=user, force=force)
    return ReportResponse(report=report.to_dict(), cached=report.cached)


@router.get("/commodity", response_model=CommodityReportsResponse)
def list_commodity_reports(services: MarketServices = Depends(get_services)):
    """Which active commodities currently have a valid report."""
    entries = services.generator.list_commodity_reports()
    return CommodityReportsResponse(
        reports=[entry.to_dict() for entry in entries],
        total=len(entries),
        available=sum(1 for entry in entries if entry.has_report),
    )


@router.get("/usage", response_model=UsageResponse)
def usage(
    user: UserContext = Depends(get_user),
    services: MarketServices = Depends(get_services),
):
    """Today's AI usage and remaining quota for the caller."""
    return UsageResponse(**services.generator.usage(user))
