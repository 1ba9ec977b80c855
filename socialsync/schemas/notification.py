"""Normalized notification shapes produced by the aggregator."""
from datetime import datetime
from enum import Enum
from typing import List, Optional, Union
from pydantic import BaseModel, Field

from socialsync.schemas.social import Comment, Friend, Like, Post


class NotificationKind(str, Enum):
    """Source kind of a notification item."""
    FRIEND_REQUEST = "friend_request"
    LIKE = "like"
    COMMENT = "comment"


# Composite id prefixes, one per kind, keep ids unique across sources
KIND_ID_PREFIX = {
    NotificationKind.FRIEND_REQUEST: "friend",
    NotificationKind.LIKE: "like",
    NotificationKind.COMMENT: "comment",
}


class NotificationActor(BaseModel):
    """Who caused the notification, as far as the source row tells us."""

    id: str
    username: Optional[str] = None
    full_name: Optional[str] = None
    avatar_url: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.full_name or self.username or "Unknown User"


class NotificationItem(BaseModel):
    """One entry of the merged notification feed."""

    id: str = Field(..., description="Composite id: kind prefix + source row id")
    kind: NotificationKind
    created_at: datetime
    source_id: str
    data: Union[Friend, Like, Comment]
    post: Optional[Post] = None
    actor: Optional[NotificationActor] = None
    read: bool = False

    @property
    def post_id(self) -> Optional[str]:
        return self.post.id if self.post else None


class NotificationFeed(BaseModel):
    """Response returned by the notifications endpoint."""

    items: List[NotificationItem]
    unseen_count: int
    badge: str
    last_seen: datetime


def composite_id(kind: NotificationKind, source_id: str) -> str:
    """Build the feed-unique id for a source row of the given kind."""
    return f"{KIND_ID_PREFIX[kind]}_{source_id}"
