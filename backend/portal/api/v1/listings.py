"""Internship listing endpoints: browse, admin CRUD, view/apply counters."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query

from portal.client import MutationResult, PortalClient
from portal.dependencies.auth import get_client, get_current_user, get_runtime, require_admin_api
from portal.identity import CurrentUser
from portal.runtime import PortalRuntime
from portal.schemas import (
    ApplyRequest,
    CounterResponse,
    ListingCard,
    ListingCreate,
    ListingFilters,
    ListingRead,
    ListingUpdate,
    MutationResponse,
    ReaderResponse,
)
from portal.schemas.analytics import reader_payload
from portal.services.listing_search import filter_listings

router = APIRouter(prefix="/listings", tags=["listings"])


def _unwrap(result: MutationResult):
    """Raise the mutation's error (mapped by the app's handlers) or return its data."""
    if not result.ok:
        raise result.error
    return result.data


@router.get("", response_model=ReaderResponse[list[ListingCard]])
async def list_listings(
    runtime: PortalRuntime = Depends(get_runtime),
    client: PortalClient = Depends(get_client),
    search: str | None = Query(None, description="Search title, company, location, description, majors, industries"),
    majors: list[str] = Query([]),
    industries: list[str] = Query([]),
    time_posted: str = Query("all", pattern="^(all|24h|7d|30d)$"),
    location: str | None = Query(None),
    tab: str = Query("all", pattern="^(all|starred|viewed)$"),
):
    """Active listings, filtered, with the caller's starred/viewed flags."""
    filters = ListingFilters(
        search=search, majors=majors, industries=industries, time_posted=time_posted, location=location, tab=tab
    )
    reader = runtime.listings
    interactions = client.interactions.data
    matched = filter_listings(reader.data, filters, interactions, now=runtime.clock())
    cards = [
        ListingCard(
            **listing.model_dump(),
            is_starred=client.interactions.is_starred(listing.id),
            is_viewed=client.interactions.is_viewed(listing.id),
            total_applications=runtime.global_totals.count_for(listing.id),
        )
        for listing in matched
    ]
    return reader_payload(reader, cards)


@router.get("/locations", response_model=ReaderResponse[list[str]])
async def list_locations(runtime: PortalRuntime = Depends(get_runtime)):
    return reader_payload(runtime.locations)


@router.get("/{listing_id}", response_model=ListingRead)
async def get_listing(
    listing_id: UUID,
    include_deleted: bool = Query(False, description="Admins only: also return archived listings"),
    runtime: PortalRuntime = Depends(get_runtime),
    user: CurrentUser | None = Depends(get_current_user),
):
    if include_deleted and not (user and user.is_admin):
        raise HTTPException(status_code=403, detail="Admin access required")
    listing = await runtime.listings.get(listing_id, include_deleted=include_deleted)
    if not listing:
        raise HTTPException(status_code=404, detail="Internship not found")
    return listing


@router.post("", response_model=ListingRead, status_code=201)
async def create_listing(
    data: ListingCreate,
    admin: CurrentUser = Depends(require_admin_api),
    client: PortalClient = Depends(get_client),
):
    return _unwrap(await client.add_listing(data.model_dump(exclude_unset=True)))


@router.patch("/{listing_id}", response_model=ListingRead)
async def update_listing(
    listing_id: UUID,
    data: ListingUpdate,
    admin: CurrentUser = Depends(require_admin_api),
    client: PortalClient = Depends(get_client),
):
    return _unwrap(await client.update_listing(listing_id, data.model_dump(exclude_unset=True)))


@router.delete("/{listing_id}", response_model=MutationResponse)
async def delete_listing(
    listing_id: UUID,
    permanent: bool = Query(False, description="Hard delete; cascades to activity and interactions"),
    admin: CurrentUser = Depends(require_admin_api),
    client: PortalClient = Depends(get_client),
):
    result = await client.delete_listing(listing_id, permanent=permanent)
    _unwrap(result)
    return MutationResponse(ok=True, message=result.message)


@router.post("/{listing_id}/restore", response_model=ListingRead)
async def restore_listing(
    listing_id: UUID,
    admin: CurrentUser = Depends(require_admin_api),
    client: PortalClient = Depends(get_client),
):
    return _unwrap(await client.restore_listing(listing_id))


@router.post("/{listing_id}/open", response_model=CounterResponse)
async def open_listing(listing_id: UUID, client: PortalClient = Depends(get_client)):
    """Details opened. Repeats within the debounce window are not counted."""
    return CounterResponse(counted=await client.open_listing(listing_id))


@router.post("/{listing_id}/apply", response_model=CounterResponse)
async def apply_to_listing(listing_id: UUID, body: ApplyRequest, client: PortalClient = Depends(get_client)):
    """Apply link followed or email copied. Works without login."""
    counted, tracked = await client.apply(listing_id, body.method)
    return CounterResponse(counted=counted, tracked=tracked)
