"""Identity and per-session client dependencies for FastAPI routes."""

import logging
from uuid import UUID

from fastapi import Depends, HTTPException, Request

from portal.client import PortalClient
from portal.datastore.base import eq
from portal.identity import CurrentUser
from portal.runtime import PortalRuntime
from portal.services.presence import new_session_id

logger = logging.getLogger(__name__)


def get_runtime(request: Request) -> PortalRuntime:
    return request.app.state.runtime


async def _load_profile(runtime: PortalRuntime, user_id: str) -> CurrentUser | None:
    try:
        uid = UUID(str(user_id))
    except ValueError:
        return None
    rows = await runtime.store.query("profiles", [eq("id", uid)], limit=1)
    if not rows:
        return None
    profile = rows[0]
    return CurrentUser(id=profile["id"], email=profile["email"], name=profile["name"] or "", role=profile["role"])


async def get_current_user(request: Request, runtime: PortalRuntime = Depends(get_runtime)) -> CurrentUser | None:
    """Return the signed-in user or None.

    The identity provider either stores ``user_id`` in the session or, when
    the API sits behind it, forwards the id in a trusted header.
    """
    user_id = request.session.get("user_id")
    if not user_id and runtime.settings.trust_identity_header:
        user_id = request.headers.get(runtime.settings.identity_header)
    if not user_id:
        return None
    return await _load_profile(runtime, user_id)


async def require_user_api(user: CurrentUser | None = Depends(get_current_user)) -> CurrentUser:
    """Return the signed-in user or raise 401."""
    if not user:
        raise HTTPException(status_code=401, detail="Login required")
    return user


async def require_admin_api(user: CurrentUser = Depends(require_user_api)) -> CurrentUser:
    if not user.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return user


def ensure_session_id(request: Request) -> str:
    """Get or create this browser session's presence key."""
    session_id = request.session.get("presence_session_id")
    if not session_id:
        session_id = new_session_id()
        request.session["presence_session_id"] = session_id
    return session_id


async def get_client(
    request: Request,
    runtime: PortalRuntime = Depends(get_runtime),
    user: CurrentUser | None = Depends(get_current_user),
) -> PortalClient:
    return await runtime.client_for(ensure_session_id(request), user)
