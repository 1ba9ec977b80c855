"""
Notifications router.

Serves the merged feed (friend requests, likes, comments), the unseen
badge, the "seen" watermark and friend request actions. Read flags are
per session and reset on every reload of the feed.
"""
from fastapi import APIRouter, Depends, HTTPException, Query, status

from socialsync.auth import get_current_user_id, get_registry, to_http_error
from socialsync.config import settings
from socialsync.exceptions import SocialSyncError
from socialsync.schemas.common import BadgeResponse, SuccessResponse
from socialsync.schemas.notification import NotificationFeed
from socialsync.services.registry import SessionRegistry
from socialsync.utils.helpers import badge_label

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", response_model=NotificationFeed)
async def get_notifications(
    unread_only: bool = Query(False),
    user_id: str = Depends(get_current_user_id),
    registry: SessionRegistry = Depends(get_registry),
):
    """Rebuild and return the feed, newest first."""
    aggregator = registry.notifications(user_id)
    try:
        await aggregator.load()
    except SocialSyncError as e:
        raise to_http_error(e)

    feed = aggregator.feed()
    if unread_only:
        feed.items = aggregator.unread_items()
    return feed


@router.get("/badge", response_model=BadgeResponse)
async def get_notification_badge(
    user_id: str = Depends(get_current_user_id),
    registry: SessionRegistry = Depends(get_registry),
):
    """Unseen count for the tab icon (a fresh pass, feed untouched)."""
    try:
        count = await registry.notifications(user_id).count_unseen()
    except SocialSyncError as e:
        raise to_http_error(e)
    return BadgeResponse(count=count, label=badge_label(count, settings.badge_cap))


@router.post("/seen", response_model=NotificationFeed)
async def mark_all_seen(
    user_id: str = Depends(get_current_user_id),
    registry: SessionRegistry = Depends(get_registry),
):
    """Advance the last-seen watermark to now."""
    aggregator = registry.notifications(user_id)
    await aggregator.mark_all_seen()
    return aggregator.feed()


@router.post("/{item_id}/read", response_model=SuccessResponse)
async def mark_read(
    item_id: str,
    user_id: str = Depends(get_current_user_id),
    registry: SessionRegistry = Depends(get_registry),
):
    """Flag one item as read for this session."""
    if not registry.notifications(user_id).mark_read(item_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Notification {item_id} not found",
        )
    return SuccessResponse(message=f"Notification {item_id} marked as read")


@router.post("/friend-requests/{request_id}/accept", response_model=NotificationFeed)
async def accept_friend_request(
    request_id: str,
    user_id: str = Depends(get_current_user_id),
    registry: SessionRegistry = Depends(get_registry),
):
    """Accept a friend request, then return the re-aggregated feed."""
    aggregator = registry.notifications(user_id)
    try:
        await aggregator.accept_friend_request(request_id)
    except SocialSyncError as e:
        raise to_http_error(e)
    return aggregator.feed()


@router.post("/friend-requests/{request_id}/reject", response_model=NotificationFeed)
async def reject_friend_request(
    request_id: str,
    user_id: str = Depends(get_current_user_id),
    registry: SessionRegistry = Depends(get_registry),
):
    """Reject a friend request, then return the re-aggregated feed."""
    aggregator = registry.notifications(user_id)
    try:
        await aggregator.reject_friend_request(request_id)
    except SocialSyncError as e:
        raise to_http_error(e)
    return aggregator.feed()
