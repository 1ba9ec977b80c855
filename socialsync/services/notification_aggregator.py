"""
Notification aggregator.

Merges three sources into one feed for a user:
  - pending friend requests addressed to them
  - likes on their posts (not their own)
  - comments on their posts (not their own)

Items are rebuilt on every pass and sorted newest first with a stable sort,
so equal timestamps keep kind order (friend requests, likes, comments) and
then fetch order. Unseen = strictly newer than the stored watermark.

Likes and comments are fetched either in one query per kind over all the
user's posts (default) or per post. In per-post mode a failure fetching one
post's likes or comments drops that post's contributions; in batched mode it
drops that kind. Both are logged, neither fails the pass.
"""
import asyncio
import logging
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

from socialsync.config import settings
from socialsync.exceptions import TransportError
from socialsync.schemas.notification import (
    NotificationActor,
    NotificationFeed,
    NotificationItem,
    NotificationKind,
    composite_id,
)
from socialsync.schemas.social import Comment, Friend, Like, Post
from socialsync.services.event_bus import EventBus, NotificationsChanged, event_bus
from socialsync.services.social_store import SocialStore
from socialsync.services.watermark_store import WatermarkStore
from socialsync.utils.helpers import EPOCH, badge_label

logger = logging.getLogger(__name__)


def friend_request_item(request: Friend) -> NotificationItem:
    profile = request.requester_profile
    actor = NotificationActor(
        id=request.requester_id,
        username=profile.username if profile else None,
        full_name=profile.full_name if profile else None,
        avatar_url=profile.avatar_url if profile else None,
    )
    return NotificationItem(
        id=composite_id(NotificationKind.FRIEND_REQUEST, request.id),
        kind=NotificationKind.FRIEND_REQUEST,
        created_at=request.created_at,
        source_id=request.id,
        data=request,
        actor=actor,
    )


def like_item(like: Like, post: Optional[Post]) -> NotificationItem:
    return NotificationItem(
        id=composite_id(NotificationKind.LIKE, like.id),
        kind=NotificationKind.LIKE,
        created_at=like.created_at,
        source_id=like.id,
        data=like,
        post=post,
        actor=NotificationActor(id=like.user_id),
    )


def comment_item(comment: Comment, post: Optional[Post]) -> NotificationItem:
    return NotificationItem(
        id=composite_id(NotificationKind.COMMENT, comment.id),
        kind=NotificationKind.COMMENT,
        created_at=comment.created_at,
        source_id=comment.id,
        data=comment,
        post=post,
        actor=NotificationActor(
            id=comment.user_id,
            username=comment.username,
            full_name=comment.full_name,
            avatar_url=comment.avatar_url,
        ),
    )


def sort_newest_first(items: Sequence[NotificationItem]) -> List[NotificationItem]:
    """Stable descending sort by creation time."""
    return sorted(items, key=lambda item: item.created_at, reverse=True)


def count_newer_than(items: Sequence[NotificationItem], watermark: datetime) -> int:
    return sum(1 for item in items if item.created_at > watermark)


class NotificationAggregator:
    """Builds and tracks the notification feed of one user."""

    def __init__(
        self,
        user_id: str,
        social: SocialStore,
        watermarks: WatermarkStore,
        *,
        batched: Optional[bool] = None,
        badge_cap: Optional[int] = None,
        bus: Optional[EventBus] = None,
    ):
        self.user_id = str(user_id)
        self.social = social
        self.watermarks = watermarks
        self.batched = settings.notification_batched_queries if batched is None else batched
        self.badge_cap = badge_cap or settings.badge_cap
        self.bus = bus or event_bus

        self.items: List[NotificationItem] = []
        self.last_seen: datetime = EPOCH
        self.is_loading = False

    # ------------------------------------------------------------------
    # Collection
    # ------------------------------------------------------------------

    async def _fetch_friend_requests(self) -> List[Friend]:
        try:
            return await self.social.get_friend_requests(self.user_id)
        except TransportError as e:
            logger.warning(f"Friend requests for {self.user_id} unavailable: {e}")
            return []

    async def _fetch_posts(self) -> List[Post]:
        try:
            return await self.social.get_user_posts(self.user_id)
        except TransportError as e:
            logger.warning(f"Posts for {self.user_id} unavailable: {e}")
            return []

    async def _fetch_batched(self, posts: List[Post]) -> Tuple[List[Like], List[Comment]]:
        post_ids = [p.id for p in posts]
        likes, comments = await asyncio.gather(
            self.social.get_likes_for_posts(post_ids),
            self.social.get_comments_for_posts(post_ids),
            return_exceptions=True,
        )
        if isinstance(likes, BaseException):
            if not isinstance(likes, TransportError):
                raise likes
            logger.warning(f"Likes for {self.user_id}'s posts unavailable: {likes}")
            likes = []
        if isinstance(comments, BaseException):
            if not isinstance(comments, TransportError):
                raise comments
            logger.warning(f"Comments for {self.user_id}'s posts unavailable: {comments}")
            comments = []
        return likes, comments

    async def _fetch_post_activity(self, post: Post) -> Tuple[List[Like], List[Comment]]:
        likes, comments = await asyncio.gather(
            self.social.get_post_likes(post.id),
            self.social.get_post_comments(post.id),
            return_exceptions=True,
        )
        for result in (likes, comments):
            if isinstance(result, BaseException):
                if not isinstance(result, TransportError):
                    raise result
                logger.warning(f"Dropping notifications for post {post.id}: {result}")
                return [], []
        return likes, comments

    async def _fetch_fan_out(self, posts: List[Post]) -> Tuple[List[Like], List[Comment]]:
        results = await asyncio.gather(*(self._fetch_post_activity(p) for p in posts))
        likes: List[Like] = []
        comments: List[Comment] = []
        for post_likes, post_comments in results:
            likes.extend(post_likes)
            comments.extend(post_comments)
        return likes, comments

    async def collect(self) -> List[NotificationItem]:
        """One aggregation pass, without touching the stored feed."""
        requests, posts = await asyncio.gather(self._fetch_friend_requests(), self._fetch_posts())

        if not posts:
            likes, comments = [], []
        elif self.batched:
            likes, comments = await self._fetch_batched(posts)
        else:
            likes, comments = await self._fetch_fan_out(posts)

        posts_by_id: Dict[str, Post] = {p.id: p for p in posts}
        items = [friend_request_item(r) for r in requests]
        items.extend(
            like_item(like, posts_by_id.get(like.post_id))
            for like in likes if like.user_id != self.user_id
        )
        items.extend(
            comment_item(comment, posts_by_id.get(comment.post_id))
            for comment in comments if comment.user_id != self.user_id
        )
        return sort_newest_first(items)

    # ------------------------------------------------------------------
    # Feed
    # ------------------------------------------------------------------

    async def load(self) -> List[NotificationItem]:
        """Rebuild the feed; read flags start over."""
        self.is_loading = True
        try:
            items = await self.collect()
            self.last_seen = await self.watermarks.get()
        finally:
            self.is_loading = False
        self.items = items
        logger.info(f"🔔 {len(items)} notifications for {self.user_id} ({self.unseen_count} unseen)")
        await self.bus.publish(NotificationsChanged(user_id=self.user_id))
        return self.items

    @property
    def unseen_count(self) -> int:
        return count_newer_than(self.items, self.last_seen)

    def get_unseen_count(self) -> int:
        return self.unseen_count

    @property
    def badge(self) -> str:
        return badge_label(self.unseen_count, self.badge_cap)

    async def count_unseen(self) -> int:
        """Badge-only pass for polling; the stored feed is left alone."""
        items = await self.collect()
        watermark = await self.watermarks.get()
        return count_newer_than(items, watermark)

    async def mark_all_seen(self, now: Optional[datetime] = None) -> datetime:
        """Advance the watermark (never backwards)."""
        self.last_seen = await self.watermarks.advance(now)
        await self.bus.publish(NotificationsChanged(user_id=self.user_id))
        return self.last_seen

    def mark_read(self, item_id: str) -> bool:
        """Flip the session-local read flag. Returns False for unknown ids."""
        for i, item in enumerate(self.items):
            if item.id == item_id:
                if not item.read:
                    self.items[i] = item.model_copy(update={"read": True})
                return True
        return False

    def unread_items(self) -> List[NotificationItem]:
        return [item for item in self.items if not item.read]

    def feed(self) -> NotificationFeed:
        return NotificationFeed(
            items=self.items,
            unseen_count=self.unseen_count,
            badge=self.badge,
            last_seen=self.last_seen,
        )

    # ------------------------------------------------------------------
    # Friend request actions
    # ------------------------------------------------------------------

    async def accept_friend_request(self, request_id: str) -> List[NotificationItem]:
        await self.social.accept_friend_request(request_id)
        logger.info(f"🤝 {self.user_id} accepted friend request {request_id}")
        return await self.load()

    async def reject_friend_request(self, request_id: str) -> List[NotificationItem]:
        await self.social.reject_friend_request(request_id)
        logger.info(f"{self.user_id} rejected friend request {request_id}")
        return await self.load()
