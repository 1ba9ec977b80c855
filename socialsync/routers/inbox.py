"""Inbox router: the chat list and its unread badge."""
import logging
from fastapi import APIRouter, Depends

from socialsync.auth import get_current_user_id, get_registry, to_http_error
from socialsync.config import settings
from socialsync.exceptions import SocialSyncError
from socialsync.schemas.chat import ChatListResponse
from socialsync.schemas.common import BadgeResponse
from socialsync.services.registry import SessionRegistry
from socialsync.utils.helpers import badge_label

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/inbox", tags=["Inbox"])


@router.get("", response_model=ChatListResponse)
async def get_inbox(
    user_id: str = Depends(get_current_user_id),
    registry: SessionRegistry = Depends(get_registry),
):
    """Friends with last-message previews, most recent conversation first."""
    try:
        chat_list = await registry.chat_list(user_id)
        await chat_list.load()
    except SocialSyncError as e:
        raise to_http_error(e)
    return chat_list.response()


@router.get("/badge", response_model=BadgeResponse)
async def get_inbox_badge(
    user_id: str = Depends(get_current_user_id),
    registry: SessionRegistry = Depends(get_registry),
):
    """Unread messages addressed to the caller, from anyone."""
    try:
        count = await registry.store.get_unread_count(user_id)
    except SocialSyncError as e:
        raise to_http_error(e)
    return BadgeResponse(count=count, label=badge_label(count, settings.badge_cap))


@router.delete("/{friend_id}", response_model=ChatListResponse)
async def delete_chat(
    friend_id: str,
    user_id: str = Depends(get_current_user_id),
    registry: SessionRegistry = Depends(get_registry),
):
    """Purge the conversation with ``friend_id`` and return the reloaded list."""
    try:
        chat_list = await registry.chat_list(user_id)
        await chat_list.delete_chat(friend_id)
    except SocialSyncError as e:
        raise to_http_error(e)
    return chat_list.response()
