"""Dashboard authentication dependencies.

Dashboard routes are protected by a signed session cookie issued after a
successful Discord login. Two layers are enforced:

    - ``get_session_user``: a valid, unexpired session must be present (401)
    - ``require_vip_user``: the session's user must be in ``VIP_USER_IDS`` (403)

Every refusal is logged with ``security_event=True`` without exposing the
cookie contents.

Used by:
    - prism_keys.service.main: dashboard read endpoints and cooldown removal
"""

from typing import Optional

import structlog
from fastapi import HTTPException, Request, Security, status
from fastapi.security import APIKeyCookie

from .session import SESSION_COOKIE

logger = structlog.get_logger()

# auto_error=False so the 401 carries our own message
session_cookie = APIKeyCookie(name=SESSION_COOKIE, auto_error=False)


async def get_session_user(request: Request, session: Optional[str] = Security(session_cookie)) -> str:
    """Resolve the user id carried by the session cookie.

    Raises:
        HTTPException: 401 when the cookie is missing, tampered with or expired.
    """
    if not session:
        logger.warning("Missing dashboard session", path=request.url.path)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")

    signer = request.app.state.container.get("session_signer")
    user_id = signer.unsign(session)
    if user_id is None:
        logger.warning("Invalid dashboard session", path=request.url.path, security_event=True)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    return user_id


async def require_vip_user(request: Request, user_id: str = Security(get_session_user)) -> str:
    """Allow only allowlisted dashboard viewers.

    Raises:
        HTTPException: 403 when the authenticated user is not a VIP.
    """
    settings = request.app.state.container.get("settings")
    if user_id not in settings.vip_user_ids:
        logger.warning("Dashboard access refused", user_id=user_id, path=request.url.path, security_event=True)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access denied. VIP users only.",
        )
    return user_id
