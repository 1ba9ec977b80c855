"""
Realtime message subscriber.

One channel per unordered conversation pair (both participants derive the
same name) and one inbox channel per user. Callbacks receive every INSERT
matching the channel filter; duplicates and ordering are the caller's
problem.
"""
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, Union

from socialsync.gateway.base import DataGateway, RealtimeSubscription, Row
from socialsync.gateway.filters import Eq, between
from socialsync.schemas.message import Message

logger = logging.getLogger(__name__)

MessageCallback = Callable[[Message], Union[None, Awaitable[None]]]


def conversation_channel(user_a: str, user_b: str) -> str:
    """Canonical channel name for the pair, independent of argument order."""
    first, second = sorted([str(user_a), str(user_b)])
    return f"messages:{first}:{second}"


def inbox_channel(user_id: str) -> str:
    return f"incoming-messages:{user_id}"


def _as_row_callback(callback: MessageCallback):
    def on_insert(row: Row):
        return callback(Message.model_validate(row))
    return on_insert


class RealtimeSubscriber:
    """Opens message channels on a data gateway."""

    def __init__(self, gateway: DataGateway):
        self.gateway = gateway

    async def subscribe_to_conversation(
        self, user_a: str, user_b: str, callback: MessageCallback
    ) -> RealtimeSubscription:
        channel = conversation_channel(user_a, user_b)
        subscription = await self.gateway.subscribe(
            channel,
            "messages",
            _as_row_callback(callback),
            where=between(user_a, user_b),
        )
        logger.info(f"🔌 Conversation channel {channel} open")
        return subscription

    async def subscribe_to_incoming(self, user_id: str, callback: MessageCallback) -> RealtimeSubscription:
        channel = inbox_channel(user_id)
        subscription = await self.gateway.subscribe(
            channel,
            "messages",
            _as_row_callback(callback),
            where=Eq("receiver_id", user_id),
        )
        logger.info(f"🔌 Inbox channel {channel} open")
        return subscription

    @asynccontextmanager
    async def conversation(
        self, user_a: str, user_b: str, callback: MessageCallback
    ) -> AsyncIterator[RealtimeSubscription]:
        """Scoped conversation subscription, released on every exit path."""
        subscription = await self.subscribe_to_conversation(user_a, user_b, callback)
        try:
            yield subscription
        finally:
            await subscription.unsubscribe()

    @asynccontextmanager
    async def incoming(self, user_id: str, callback: MessageCallback) -> AsyncIterator[RealtimeSubscription]:
        """Scoped inbox subscription, released on every exit path."""
        subscription = await self.subscribe_to_incoming(user_id, callback)
        try:
            yield subscription
        finally:
            await subscription.unsubscribe()
