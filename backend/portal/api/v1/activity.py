"""Activity log endpoints: raw event queries and the admin application log."""

from datetime import datetime
from typing import Literal
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from portal.dependencies.auth import get_runtime, require_admin_api
from portal.identity import CurrentUser
from portal.runtime import PortalRuntime
from portal.schemas import ActivityEventRead, ApplicationLogFilters, ApplicationLogs, MutationResponse, ReaderResponse
from portal.schemas.analytics import reader_payload
from portal.services.admin_readers import ApplicationLogReader

router = APIRouter(prefix="/activity", tags=["activity"])


@router.get("", response_model=list[ActivityEventRead])
async def list_events(
    kind: Literal["view", "apply"] = Query(..., description="Event kind"),
    listing_id: UUID | None = Query(None),
    user_id: UUID | None = Query(None),
    start: datetime | None = Query(None, description="Inclusive lower bound (UTC)"),
    end: datetime | None = Query(None, description="Exclusive upper bound (UTC)"),
    admin: CurrentUser = Depends(require_admin_api),
    runtime: PortalRuntime = Depends(get_runtime),
):
    """Newest-first events, one page."""
    return [row async for row in runtime.event_log.query(kind, listing_id, user_id, start, end)]


@router.get("/applications", response_model=ReaderResponse[ApplicationLogs])
async def application_logs(
    job_title: str | None = Query(None),
    username: str | None = Query(None),
    start_date: str | None = Query(None, description="YYYY-MM-DD in the reporting timezone"),
    end_date: str | None = Query(None, description="YYYY-MM-DD in the reporting timezone, inclusive"),
    admin: CurrentUser = Depends(require_admin_api),
    runtime: PortalRuntime = Depends(get_runtime),
):
    filters = ApplicationLogFilters(job_title=job_title, username=username, start_date=start_date, end_date=end_date)
    if filters == runtime.application_logs.filters:
        return reader_payload(runtime.application_logs)
    reader = ApplicationLogReader(runtime.store, runtime.event_log, filters)
    await reader.refetch()
    return reader_payload(reader)


@router.delete("/{event_id}", response_model=MutationResponse)
async def delete_event(
    event_id: UUID,
    admin: CurrentUser = Depends(require_admin_api),
    runtime: PortalRuntime = Depends(get_runtime),
):
    ok = await runtime.application_logs.delete_log(event_id, admin)
    return MutationResponse(ok=ok, message="Log deleted" if ok else "Failed to delete log")
