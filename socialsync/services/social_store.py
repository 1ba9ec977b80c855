"""
Friends, posts, likes and comments accessor.

Feeds the notification aggregator and the chat list. Comments come back
with the author's profile flattened onto the row; likes carry the liker id
only.
"""
import logging
from typing import Any, Dict, List, Optional, Sequence

from socialsync.gateway.base import DataGateway, Embed, Order, Row
from socialsync.gateway.filters import And, Eq, In, Or
from socialsync.schemas.social import Comment, Friend, Like, Post

logger = logging.getLogger(__name__)

FRIENDSHIP_EMBEDS = (
    Embed("requester_profile", "profiles", "requester_id"),
    Embed("addressee_profile", "profiles", "addressee_id"),
)
COMMENT_EMBEDS = (Embed("profile", "profiles", "user_id"),)


def flatten_comment(row: Row) -> Comment:
    """Copy the embedded author profile fields onto the comment itself."""
    data: Dict[str, Any] = dict(row)
    profile = data.pop("profile", None) or {}
    data.setdefault("username", profile.get("username"))
    data.setdefault("full_name", profile.get("full_name"))
    data.setdefault("avatar_url", profile.get("avatar_url"))
    return Comment.model_validate(data)


class SocialStore:
    """Read and write social rows through a data gateway."""

    def __init__(self, gateway: DataGateway):
        self.gateway = gateway

    # ------------------------------------------------------------------
    # Friends
    # ------------------------------------------------------------------

    async def get_friend_requests(self, user_id: str) -> List[Friend]:
        """Pending requests addressed to ``user_id``."""
        rows = await self.gateway.select(
            "friends",
            where=And(Eq("addressee_id", user_id), Eq("status", "pending")),
            embeds=FRIENDSHIP_EMBEDS,
        )
        return [Friend.model_validate(r) for r in rows]

    async def get_friends(self, user_id: str) -> List[Friend]:
        """Accepted friendships where ``user_id`` is either side."""
        rows = await self.gateway.select(
            "friends",
            where=And(
                Or(Eq("requester_id", user_id), Eq("addressee_id", user_id)),
                Eq("status", "accepted"),
            ),
            embeds=FRIENDSHIP_EMBEDS,
        )
        return [Friend.model_validate(r) for r in rows]

    async def _set_friend_status(self, request_id: str, status: str) -> Optional[Friend]:
        rows = await self.gateway.update("friends", {"status": status}, where=Eq("id", request_id))
        if not rows:
            logger.warning(f"Friend request {request_id} not found while setting '{status}'")
            return None
        return Friend.model_validate(rows[0])

    async def accept_friend_request(self, request_id: str) -> Optional[Friend]:
        return await self._set_friend_status(request_id, "accepted")

    async def reject_friend_request(self, request_id: str) -> Optional[Friend]:
        return await self._set_friend_status(request_id, "rejected")

    # ------------------------------------------------------------------
    # Posts, likes, comments
    # ------------------------------------------------------------------

    async def get_user_posts(self, user_id: str) -> List[Post]:
        rows = await self.gateway.select(
            "posts",
            where=Eq("user_id", user_id),
            order=Order("created_at", ascending=False),
        )
        return [Post.model_validate(r) for r in rows]

    async def get_post_likes(self, post_id: str) -> List[Like]:
        rows = await self.gateway.select("likes", where=Eq("post_id", post_id))
        return [Like.model_validate(r) for r in rows]

    async def get_post_comments(self, post_id: str) -> List[Comment]:
        rows = await self.gateway.select(
            "comments",
            where=Eq("post_id", post_id),
            order=Order("created_at", ascending=True),
            embeds=COMMENT_EMBEDS,
        )
        return [flatten_comment(r) for r in rows]

    async def get_likes_for_posts(self, post_ids: Sequence[str]) -> List[Like]:
        """All likes on any of the given posts, in one query."""
        if not post_ids:
            return []
        rows = await self.gateway.select("likes", where=In("post_id", post_ids))
        return [Like.model_validate(r) for r in rows]

    async def get_comments_for_posts(self, post_ids: Sequence[str]) -> List[Comment]:
        """All comments on any of the given posts, in one query."""
        if not post_ids:
            return []
        rows = await self.gateway.select(
            "comments",
            where=In("post_id", post_ids),
            order=Order("created_at", ascending=True),
            embeds=COMMENT_EMBEDS,
        )
        return [flatten_comment(r) for r in rows]
