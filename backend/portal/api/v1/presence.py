"""Online-presence endpoints. Browsers call /heartbeat every heartbeat interval."""

from fastapi import APIRouter, Depends

from portal.client import PortalClient
from portal.dependencies.auth import get_client, get_runtime
from portal.runtime import PortalRuntime
from portal.schemas import PresenceStatus

router = APIRouter(prefix="/presence", tags=["presence"])


@router.get("", response_model=PresenceStatus)
async def presence_status(runtime: PortalRuntime = Depends(get_runtime)):
    return PresenceStatus(active_users=runtime.presence.count())


@router.post("/join", response_model=PresenceStatus)
async def join(client: PortalClient = Depends(get_client)):
    await client.presence.join()
    return PresenceStatus(key=client.presence.key, active_users=client.presence.active_users)


@router.post("/heartbeat", response_model=PresenceStatus)
async def heartbeat(client: PortalClient = Depends(get_client)):
    await client.presence.heartbeat()
    return PresenceStatus(key=client.presence.key, active_users=client.presence.active_users)


@router.post("/leave", response_model=PresenceStatus)
async def leave(
    client: PortalClient = Depends(get_client),
    runtime: PortalRuntime = Depends(get_runtime),
):
    await client.presence.leave()
    return PresenceStatus(key=client.presence.key, active_users=runtime.presence.count())
