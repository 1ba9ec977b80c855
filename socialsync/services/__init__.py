"""Services package."""
from socialsync.services.message_store import MessageStore
from socialsync.services.social_store import SocialStore
from socialsync.services.realtime_subscriber import RealtimeSubscriber
from socialsync.services.chat_session import ChatSessionController, SessionState
from socialsync.services.notification_aggregator import NotificationAggregator
from socialsync.services.chat_list import ChatList
from socialsync.services.watermark_store import WatermarkStore
from socialsync.services.event_bus import EventBus, RefreshChatList, NotificationsChanged, event_bus
from socialsync.services.scheduler import PollingScheduler, TimerHandle

__all__ = [
    "MessageStore",
    "SocialStore",
    "RealtimeSubscriber",
    "ChatSessionController",
    "SessionState",
    "NotificationAggregator",
    "ChatList",
    "WatermarkStore",
    "EventBus",
    "RefreshChatList",
    "NotificationsChanged",
    "event_bus",
    "PollingScheduler",
    "TimerHandle",
]
