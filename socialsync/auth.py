"""
Caller identity and shared dependencies for the UI bridge.

Sign-in happens upstream in the UI shell; the bridge trusts the user id it
is handed in the ``X-User-Id`` header (or ``user_id`` query parameter for
WebSockets).
"""
import logging
from typing import Optional

from fastapi import Header, HTTPException, Request, status

from socialsync.exceptions import SessionStateError, SocialSyncError, TransportError, ValidationError
from socialsync.services.registry import SessionRegistry
from socialsync.utils.validators import validate_user_id

logger = logging.getLogger(__name__)


async def get_current_user_id(x_user_id: Optional[str] = Header(default=None)) -> str:
    """FastAPI dependency: the caller's user id."""
    return validate_user_id(x_user_id)


def get_websocket_user_id(user_id: Optional[str]) -> Optional[str]:
    normalized = (user_id or "").strip()
    return normalized or None


def get_registry(request: Request) -> SessionRegistry:
    """FastAPI dependency: the registry built in the app lifespan."""
    registry = getattr(request.app.state, "registry", None)
    if registry is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service is starting up",
        )
    return registry


def to_http_error(error: SocialSyncError) -> HTTPException:
    """Map the error taxonomy onto HTTP status codes."""
    if isinstance(error, ValidationError):
        return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(error))
    if isinstance(error, SessionStateError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(error))
    if isinstance(error, TransportError):
        logger.warning(f"Backend failure surfaced to caller: {error}")
        return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(error))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(error))
