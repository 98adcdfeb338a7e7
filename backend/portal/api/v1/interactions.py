"""Star and viewed flags for the signed-in student."""

from dataclasses import asdict
from uuid import UUID

from fastapi import APIRouter, Depends

from portal.client import PortalClient
from portal.dependencies.auth import get_client, require_user_api
from portal.identity import CurrentUser
from portal.schemas import InteractionRead, MutationResponse, ReaderResponse
from portal.schemas.analytics import reader_payload

router = APIRouter(prefix="/interactions", tags=["interactions"])


@router.get("", response_model=ReaderResponse[list[InteractionRead]])
async def list_interactions(
    user: CurrentUser = Depends(require_user_api),
    client: PortalClient = Depends(get_client),
):
    states = [asdict(state) for state in client.interactions.data.values()]
    return reader_payload(client.interactions, states)


@router.post("/{listing_id}/star", response_model=MutationResponse)
async def toggle_star(
    listing_id: UUID,
    user: CurrentUser = Depends(require_user_api),
    client: PortalClient = Depends(get_client),
):
    result = await client.toggle_star(listing_id)
    if not result.ok:
        raise result.error
    return MutationResponse(ok=True, message=result.message)


@router.post("/{listing_id}/viewed", response_model=MutationResponse)
async def mark_viewed(
    listing_id: UUID,
    user: CurrentUser = Depends(require_user_api),
    client: PortalClient = Depends(get_client),
):
    result = await client.mark_viewed(listing_id)
    if not result.ok:
        raise result.error
    return MutationResponse(ok=True, message=result.message)
