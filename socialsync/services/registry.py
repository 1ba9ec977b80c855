"""
Per-user wiring for the local UI bridge.

One ``SessionRegistry`` lives for the lifetime of the app. For each user
it lazily builds the chat list, the notification aggregator and one chat
session controller per open conversation, and forwards their changes to
the user's WebSocket connections.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, Optional

from socialsync.config import settings
from socialsync.gateway.base import DataGateway
from socialsync.services.chat_list import ChatList
from socialsync.services.chat_session import ChatSessionController, SessionState
from socialsync.services.event_bus import EventBus, NotificationsChanged, RefreshChatList, event_bus
from socialsync.services.message_store import MessageStore
from socialsync.services.notification_aggregator import NotificationAggregator
from socialsync.services.realtime_subscriber import RealtimeSubscriber
from socialsync.services.scheduler import PollingScheduler, TimerHandle
from socialsync.services.social_store import SocialStore
from socialsync.services.watermark_store import WatermarkStore
from socialsync.services.websocket_manager import (
    CHAT_LIST_REFRESH,
    CHAT_UPDATED,
    NOTIFICATIONS_UPDATED,
    ConnectionManager,
    manager,
)
from socialsync.utils.helpers import badge_label

logger = logging.getLogger(__name__)


@dataclass
class UserContext:
    user_id: str
    chat_list: ChatList
    notifications: NotificationAggregator
    chats: Dict[str, ChatSessionController] = field(default_factory=dict)
    badge_timer: Optional[TimerHandle] = None
    mounts: int = 0


class SessionRegistry:
    """Owns every controller created on behalf of a UI shell."""

    def __init__(
        self,
        gateway: DataGateway,
        *,
        watermarks: Optional[WatermarkStore] = None,
        bus: Optional[EventBus] = None,
        scheduler: Optional[PollingScheduler] = None,
        connections: Optional[ConnectionManager] = None,
    ):
        self.gateway = gateway
        self.store = MessageStore(gateway)
        self.social = SocialStore(gateway)
        self.subscriber = RealtimeSubscriber(gateway)
        self.watermarks = watermarks or WatermarkStore()
        self.bus = bus or event_bus
        self.scheduler = scheduler or PollingScheduler()
        self.connections = connections or manager
        self._users: Dict[str, UserContext] = {}

        self._bus_subscriptions = [
            self.bus.subscribe(RefreshChatList, self._push_chat_list_refresh),
            self.bus.subscribe(NotificationsChanged, self._push_notifications_updated),
        ]

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def user(self, user_id: str) -> UserContext:
        context = self._users.get(user_id)
        if context is None:
            context = UserContext(
                user_id=user_id,
                chat_list=ChatList(user_id, self.social, self.store, self.subscriber, bus=self.bus),
                notifications=NotificationAggregator(user_id, self.social, self.watermarks, bus=self.bus),
            )
            self._users[user_id] = context
        return context

    @property
    def user_count(self) -> int:
        return len(self._users)

    # ------------------------------------------------------------------
    # Chats
    # ------------------------------------------------------------------

    def get_chat(self, user_id: str, peer_id: str) -> Optional[ChatSessionController]:
        context = self._users.get(user_id)
        return context.chats.get(peer_id) if context else None

    async def open_chat(self, user_id: str, peer_id: str) -> ChatSessionController:
        """Return the controller for the conversation, opening it if needed."""
        context = self.user(user_id)
        controller = context.chats.get(peer_id)
        if controller is None:
            controller = ChatSessionController(user_id, self.store, self.subscriber, bus=self.bus)
            controller.add_listener(self._push_chat_updated)
            context.chats[peer_id] = controller
        if controller.state in (SessionState.UNINITIALIZED, SessionState.ERROR):
            await controller.open(peer_id)
        return controller

    async def close_chat(self, user_id: str, peer_id: str) -> bool:
        context = self._users.get(user_id)
        controller = context.chats.pop(peer_id, None) if context else None
        if controller is None:
            return False
        await controller.teardown()
        return True

    async def _push_chat_updated(self, controller: ChatSessionController):
        await self.connections.send_to_user(
            controller.user_id, CHAT_UPDATED, controller.snapshot().model_dump(mode="json")
        )

    # ------------------------------------------------------------------
    # Chat list / notifications
    # ------------------------------------------------------------------

    async def chat_list(self, user_id: str) -> ChatList:
        """Inbox of ``user_id``, listening for live updates."""
        chat_list = self.user(user_id).chat_list
        if not chat_list.is_started:
            await chat_list.start()
        return chat_list

    def notifications(self, user_id: str) -> NotificationAggregator:
        return self.user(user_id).notifications

    async def _push_chat_list_refresh(self, event: RefreshChatList):
        targets = [event.user_id] if event.user_id else list(self._users)
        for user_id in targets:
            await self.connections.send_to_user(user_id, CHAT_LIST_REFRESH, {"reason": event.reason})

    async def _push_notifications_updated(self, event: NotificationsChanged):
        aggregator = self.notifications(event.user_id)
        await self.connections.send_to_user(
            event.user_id,
            NOTIFICATIONS_UPDATED,
            {"unseen_count": aggregator.unseen_count, "badge": aggregator.badge},
        )

    # ------------------------------------------------------------------
    # Badge polling while a UI shell is connected
    # ------------------------------------------------------------------

    async def _refresh_badges(self, user_id: str):
        unseen = await self.notifications(user_id).count_unseen()
        unread = await self.store.get_unread_count(user_id)
        await self.connections.send_to_user(
            user_id,
            NOTIFICATIONS_UPDATED,
            {
                "unseen_count": unseen,
                "badge": badge_label(unseen, settings.badge_cap),
                "unread_messages": unread,
                "unread_badge": badge_label(unread, settings.badge_cap),
            },
        )

    def mount(self, user_id: str) -> TimerHandle:
        """Start badge polling for ``user_id`` (reference counted)."""
        context = self.user(user_id)
        context.mounts += 1
        if context.badge_timer is None:
            context.badge_timer = self.scheduler.every(
                settings.badge_refresh_interval_seconds,
                lambda: self._refresh_badges(user_id),
                name=f"badges:{user_id}",
                run_immediately=True,
            )
        return context.badge_timer

    async def unmount(self, user_id: str):
        context = self._users.get(user_id)
        if context is None or context.mounts == 0:
            return
        context.mounts -= 1
        if context.mounts == 0 and context.badge_timer is not None:
            await self.scheduler.cancel(context.badge_timer)
            context.badge_timer = None

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def shutdown(self):
        """Tear down every session, stop every timer and channel."""
        for subscription in self._bus_subscriptions:
            subscription.unsubscribe()
        self._bus_subscriptions = []

        for context in list(self._users.values()):
            await context.chat_list.stop()
            for controller in list(context.chats.values()):
                await controller.teardown()
            context.chats.clear()
            context.badge_timer = None
        await self.scheduler.cancel_all()
        logger.info(f"🛑 Registry shut down ({len(self._users)} users)")
        self._users.clear()
