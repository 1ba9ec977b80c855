"""Pydantic schemas package."""
from socialsync.schemas.message import (
    Profile,
    Message,
    MessageSendRequest,
)
from socialsync.schemas.social import (
    Friend,
    Post,
    Like,
    Comment,
)
from socialsync.schemas.notification import (
    NotificationKind,
    NotificationActor,
    NotificationItem,
    NotificationFeed,
    composite_id,
)
from socialsync.schemas.chat import (
    MessageView,
    SessionSnapshot,
    ChatListEntry,
    ChatListResponse,
)
from socialsync.schemas.common import (
    SuccessResponse,
    BadgeResponse,
)

__all__ = [
    # Messages
    "Profile",
    "Message",
    "MessageSendRequest",
    # Social
    "Friend",
    "Post",
    "Like",
    "Comment",
    # Notifications
    "NotificationKind",
    "NotificationActor",
    "NotificationItem",
    "NotificationFeed",
    "composite_id",
    # Chat
    "MessageView",
    "SessionSnapshot",
    "ChatListEntry",
    "ChatListResponse",
    # Common
    "SuccessResponse",
    "BadgeResponse",
]
