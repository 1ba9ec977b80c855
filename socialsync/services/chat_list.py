"""
Chat list (inbox).

Accepted friends with a last-message preview and per-friend unread count.
While started, any message addressed to the user or any ``RefreshChatList``
event triggers a silent reload.
"""
import asyncio
import inspect
import logging
from typing import Any, Callable, List, Optional

from socialsync.config import settings
from socialsync.exceptions import TransportError
from socialsync.gateway.base import RealtimeSubscription
from socialsync.schemas.chat import ChatListEntry, ChatListResponse
from socialsync.schemas.message import Message, Profile
from socialsync.schemas.social import Friend
from socialsync.services.event_bus import EventBus, EventSubscription, RefreshChatList, event_bus
from socialsync.services.message_store import MessageStore
from socialsync.services.realtime_subscriber import RealtimeSubscriber
from socialsync.services.social_store import SocialStore
from socialsync.utils.helpers import badge_label, format_time_ago, truncate_preview

logger = logging.getLogger(__name__)


class ChatList:
    """Inbox of one user."""

    def __init__(
        self,
        user_id: str,
        social: SocialStore,
        store: MessageStore,
        subscriber: RealtimeSubscriber,
        *,
        bus: Optional[EventBus] = None,
        on_change: Optional[Callable[["ChatList"], Any]] = None,
    ):
        self.user_id = str(user_id)
        self.social = social
        self.store = store
        self.subscriber = subscriber
        self.bus = bus or event_bus
        self.on_change = on_change

        self.entries: List[ChatListEntry] = []
        self._inbox: Optional[RealtimeSubscription] = None
        self._bus_subscription: Optional[EventSubscription] = None

    @property
    def is_started(self) -> bool:
        return self._inbox is not None

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def _entry_for(self, friendship: Friend) -> ChatListEntry:
        friend_id = friendship.other_party_id(self.user_id)
        friend = friendship.other_party(self.user_id) or Profile(id=friend_id)
        entry = ChatListEntry(friendship_id=friendship.id, friend=friend)

        last, unread = await asyncio.gather(
            self.store.get_last_message(self.user_id, friend_id),
            self.store.get_unread_count_for_friend(self.user_id, friend_id),
            return_exceptions=True,
        )
        for result in (last, unread):
            if isinstance(result, BaseException):
                if not isinstance(result, TransportError):
                    raise result
                logger.warning(f"Chat preview for {friend_id} unavailable: {result}")
                return entry

        if last is not None:
            entry.last_message = truncate_preview(last.content, settings.preview_length)
            entry.last_message_at = last.created_at
            entry.last_message_label = format_time_ago(last.created_at)
        entry.unread_count = unread
        entry.badge = badge_label(unread, settings.chat_badge_cap)
        return entry

    async def load(self) -> List[ChatListEntry]:
        """
        Rebuild the list.

        Raises:
            TransportError: The friend list itself could not be fetched
        """
        friendships = await self.social.get_friends(self.user_id)
        entries = await asyncio.gather(*(self._entry_for(f) for f in friendships))

        with_messages = sorted(
            (e for e in entries if e.last_message_at is not None),
            key=lambda e: e.last_message_at,
            reverse=True,
        )
        without_messages = [e for e in entries if e.last_message_at is None]
        self.entries = with_messages + without_messages

        if self.on_change is not None:
            result = self.on_change(self)
            if inspect.isawaitable(result):
                await result
        return self.entries

    async def reload_silently(self):
        try:
            await self.load()
        except TransportError as e:
            logger.warning(f"Chat list reload for {self.user_id} failed: {e}")

    def total_unread(self) -> int:
        return sum(e.unread_count for e in self.entries)

    @property
    def badge(self) -> str:
        return badge_label(self.total_unread(), settings.badge_cap)

    def response(self) -> ChatListResponse:
        total = self.total_unread()
        return ChatListResponse(entries=self.entries, total_unread=total, badge=self.badge)

    # ------------------------------------------------------------------
    # Live updates
    # ------------------------------------------------------------------

    async def _on_incoming(self, message: Message):
        logger.debug(f"📨 New message for {self.user_id} from {message.sender_id}")
        await self.reload_silently()

    async def _on_refresh(self, event: RefreshChatList):
        if event.user_id is not None and event.user_id != self.user_id:
            return
        await self.reload_silently()

    async def start(self):
        if self.is_started:
            return
        self._inbox = await self.subscriber.subscribe_to_incoming(self.user_id, self._on_incoming)
        self._bus_subscription = self.bus.subscribe(RefreshChatList, self._on_refresh)

    async def stop(self):
        if self._bus_subscription is not None:
            self._bus_subscription.unsubscribe()
            self._bus_subscription = None
        if self._inbox is not None:
            await self._inbox.unsubscribe()
            self._inbox = None

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    async def delete_chat(self, friend_id: str) -> List[ChatListEntry]:
        """Purge the conversation with ``friend_id`` and reload."""
        await self.store.delete_all_messages_with_friend(self.user_id, friend_id)
        return await self.load()
