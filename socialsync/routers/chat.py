"""
Chat router: one conversation per (caller, peer).

The controller behind these routes keeps optimistic state; every response
is the session snapshot the UI should render.
"""
import logging
from fastapi import APIRouter, Depends, HTTPException, status

from socialsync.auth import get_current_user_id, get_registry, to_http_error
from socialsync.exceptions import SocialSyncError
from socialsync.schemas.chat import SessionSnapshot
from socialsync.schemas.common import SuccessResponse
from socialsync.schemas.message import MessageSendRequest
from socialsync.services.chat_session import ChatSessionController
from socialsync.services.registry import SessionRegistry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/chats", tags=["Chats"])


def _require_chat(registry: SessionRegistry, user_id: str, peer_id: str) -> ChatSessionController:
    controller = registry.get_chat(user_id, peer_id)
    if controller is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No open chat with {peer_id}",
        )
    return controller


@router.post("/{peer_id}/open", response_model=SessionSnapshot)
async def open_chat(
    peer_id: str,
    user_id: str = Depends(get_current_user_id),
    registry: SessionRegistry = Depends(get_registry),
):
    """
    Open (or re-open after an error) the conversation with ``peer_id``.

    A failed history load returns the snapshot in ``error`` state.
    """
    try:
        controller = await registry.open_chat(user_id, peer_id)
    except SocialSyncError as e:
        raise to_http_error(e)
    return controller.snapshot()


@router.get("/{peer_id}", response_model=SessionSnapshot)
async def get_chat(
    peer_id: str,
    user_id: str = Depends(get_current_user_id),
    registry: SessionRegistry = Depends(get_registry),
):
    """Current snapshot of an open conversation."""
    return _require_chat(registry, user_id, peer_id).snapshot()


@router.post("/{peer_id}/messages", response_model=SessionSnapshot, status_code=status.HTTP_201_CREATED)
async def send_message(
    peer_id: str,
    payload: MessageSendRequest,
    user_id: str = Depends(get_current_user_id),
    registry: SessionRegistry = Depends(get_registry),
):
    """Send a message; on failure the snapshot keeps the text in ``input_buffer``."""
    controller = _require_chat(registry, user_id, peer_id)
    try:
        await controller.send_message(payload.content)
    except SocialSyncError as e:
        raise to_http_error(e)
    return controller.snapshot()


@router.delete("/{peer_id}/messages/{message_id}", response_model=SessionSnapshot)
async def delete_message(
    peer_id: str,
    message_id: str,
    user_id: str = Depends(get_current_user_id),
    registry: SessionRegistry = Depends(get_registry),
):
    """
    Delete one message for everyone's future fetches.

    Peers already showing the message keep it until they reload.
    """
    controller = _require_chat(registry, user_id, peer_id)
    try:
        await controller.delete_message(message_id)
    except SocialSyncError as e:
        raise to_http_error(e)
    return controller.snapshot()


@router.delete("/{peer_id}/messages", response_model=SessionSnapshot)
async def delete_conversation(
    peer_id: str,
    user_id: str = Depends(get_current_user_id),
    registry: SessionRegistry = Depends(get_registry),
):
    """Purge the whole conversation."""
    controller = _require_chat(registry, user_id, peer_id)
    try:
        await controller.delete_conversation()
    except SocialSyncError as e:
        raise to_http_error(e)
    return controller.snapshot()


@router.post("/{peer_id}/refresh", response_model=SessionSnapshot)
async def refresh_chat(
    peer_id: str,
    user_id: str = Depends(get_current_user_id),
    registry: SessionRegistry = Depends(get_registry),
):
    """Pull-to-refresh; retries the initial load when the chat is in ``error``."""
    controller = _require_chat(registry, user_id, peer_id)
    try:
        return await controller.refresh()
    except SocialSyncError as e:
        raise to_http_error(e)


@router.delete("/{peer_id}", response_model=SuccessResponse)
async def close_chat(
    peer_id: str,
    user_id: str = Depends(get_current_user_id),
    registry: SessionRegistry = Depends(get_registry),
):
    """Tear the conversation down and release its realtime channel."""
    closed = await registry.close_chat(user_id, peer_id)
    if not closed:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No open chat with {peer_id}",
        )
    return SuccessResponse(message=f"Chat with {peer_id} closed")
