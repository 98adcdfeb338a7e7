"""Aggregate readers, live-update status and realtime subscription state."""

from fastapi import APIRouter, Depends

from portal.dependencies.auth import get_runtime, require_admin_api
from portal.identity import CurrentUser
from portal.runtime import PortalRuntime
from portal.schemas import LiveStatus, ReaderResponse, TodayAnalytics
from portal.schemas.analytics import reader_payload

router = APIRouter(prefix="/analytics", tags=["analytics"])


@router.get("/applications", response_model=ReaderResponse[dict[str, int]])
async def global_application_totals(runtime: PortalRuntime = Depends(get_runtime)):
    """All-time apply counts per listing id."""
    return reader_payload(runtime.global_totals)


@router.get("/today", response_model=ReaderResponse[TodayAnalytics])
async def today_totals(
    admin: CurrentUser = Depends(require_admin_api),
    runtime: PortalRuntime = Depends(get_runtime),
):
    return reader_payload(runtime.today)


@router.get("/monthly", response_model=ReaderResponse[int])
async def monthly_applications(
    admin: CurrentUser = Depends(require_admin_api),
    runtime: PortalRuntime = Depends(get_runtime),
):
    """This reporting month's stored application count."""
    return reader_payload(runtime.monthly_count)


@router.get("/monthly/by-listing", response_model=ReaderResponse[dict[str, int]])
async def monthly_rolling_totals(
    admin: CurrentUser = Depends(require_admin_api),
    runtime: PortalRuntime = Depends(get_runtime),
):
    return reader_payload(runtime.monthly_rolling)


@router.get("/students", response_model=ReaderResponse[int])
async def student_count(
    admin: CurrentUser = Depends(require_admin_api),
    runtime: PortalRuntime = Depends(get_runtime),
):
    return reader_payload(runtime.student_count)


@router.get("/live", response_model=LiveStatus)
async def live_status(runtime: PortalRuntime = Depends(get_runtime)):
    live = runtime.live
    return LiveStatus(
        last_updated=live.last_updated,
        affected_tables=sorted(live.affected_tables),
        is_visible=live.is_visible,
    )


@router.get("/realtime")
async def realtime_state(runtime: PortalRuntime = Depends(get_runtime)):
    """Subscription state per watched table."""
    return {table: runtime.realtime.state(table).value for table in sorted(runtime.realtime.subscriptions)}
