"""
Chat session controller.

Owns the history of one open conversation and keeps it consistent while
optimistic sends race their own realtime echoes.

States::

    uninitialized -> loading_history -> ready
                          |               |
                          v               v
                        error  ------>  closed
                   (refresh retries)

The conversation channel is opened before history is fetched, so a row
inserted while the fetch is in flight is still seen; both sources are merged
by message id. Sends append a ``Pending`` entry, and the confirmed row
supersedes it whether the send response or the echo lands first.
"""
import asyncio
import inspect
import logging
from datetime import datetime
from enum import Enum
from typing import Any, Callable, List, Optional, Set

from socialsync.exceptions import ReconciliationAnomaly, SessionStateError, TransportError
from socialsync.gateway.base import RealtimeSubscription
from socialsync.schemas.chat import MessageView, SessionSnapshot
from socialsync.schemas.message import Message
from socialsync.services.event_bus import EventBus, RefreshChatList, event_bus
from socialsync.services.message_store import MessageStore
from socialsync.services.realtime_subscriber import RealtimeSubscriber
from socialsync.services.reconciliation import (
    Confirmed,
    Entry,
    Pending,
    is_temp_id,
    make_temp_id,
    merge_history,
    reconcile,
    remove_confirmed,
    rollback,
    to_views,
    upsert,
)
from socialsync.utils.helpers import utcnow
from socialsync.utils.validators import validate_message_content

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    UNINITIALIZED = "uninitialized"
    LOADING_HISTORY = "loading_history"
    READY = "ready"
    ERROR = "error"
    CLOSED = "closed"


class ListenerHandle:
    """Returned by ``add_listener``; ``remove()`` detaches the listener."""

    def __init__(self, listeners: List[Callable], listener: Callable):
        self._listeners = listeners
        self._listener = listener

    def remove(self):
        if self._listener in self._listeners:
            self._listeners.remove(self._listener)


class ChatSessionController:
    """State machine for the conversation between ``user_id`` and one peer."""

    def __init__(
        self,
        user_id: str,
        store: MessageStore,
        subscriber: RealtimeSubscriber,
        *,
        bus: Optional[EventBus] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.user_id = str(user_id)
        self.store = store
        self.subscriber = subscriber
        self.bus = bus or event_bus
        self._clock = clock or utcnow

        self.state = SessionState.UNINITIALIZED
        self.peer_id: Optional[str] = None
        self.entries: List[Entry] = []
        self.input_buffer = ""
        self.last_error: Optional[str] = None
        self.is_refreshing = False

        self._sends_in_flight = 0
        self._generation = 0
        self._subscription: Optional[RealtimeSubscription] = None
        self._listeners: List[Callable[["ChatSessionController"], Any]] = []
        self._background: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Observable state
    # ------------------------------------------------------------------

    @property
    def is_sending(self) -> bool:
        return self._sends_in_flight > 0

    @property
    def messages(self) -> List[MessageView]:
        return to_views(self.entries)

    @property
    def subscription(self) -> Optional[RealtimeSubscription]:
        return self._subscription

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            peer_id=self.peer_id,
            state=self.state.value,
            messages=self.messages,
            is_sending=self.is_sending,
            is_refreshing=self.is_refreshing,
            input_buffer=self.input_buffer,
            last_error=self.last_error,
        )

    def add_listener(self, listener: Callable[["ChatSessionController"], Any]) -> ListenerHandle:
        """Call ``listener(controller)`` after every state change."""
        self._listeners.append(listener)
        return ListenerHandle(self._listeners, listener)

    def set_input(self, text: str):
        self.input_buffer = text

    async def _notify(self):
        for listener in list(self._listeners):
            try:
                result = listener(self)
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Chat listener failed: {e}", exc_info=True)

    def _require(self, *states: SessionState):
        if self.state not in states:
            allowed = ", ".join(s.value for s in states)
            raise SessionStateError(f"Chat session is '{self.state.value}', expected one of: {allowed}")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self, peer_id: str) -> SessionSnapshot:
        """
        Load the conversation with ``peer_id`` and start listening for inserts.

        A failed fetch leaves the controller in ``error`` with the channel
        released; ``refresh()`` retries.
        """
        if self.state == SessionState.CLOSED:
            raise SessionStateError("Chat session has been torn down")

        peer_id = str(peer_id)
        if self.peer_id is not None and self.peer_id != peer_id:
            await self._release_channel()
            self._generation += 1
            self._sends_in_flight = 0
            self.entries = []
            self.input_buffer = ""
        self.peer_id = peer_id
        self.state = SessionState.LOADING_HISTORY
        self.last_error = None
        await self._notify()

        try:
            if self._subscription is None or not self._subscription.active:
                self._subscription = await self.subscriber.subscribe_to_conversation(
                    self.user_id, peer_id, self._on_realtime_message
                )
            started_at = self._clock()
            fetched = await self.store.get_messages(self.user_id, peer_id)
        except TransportError as e:
            logger.error(f"❌ Failed to load chat {self.user_id} <-> {peer_id}: {e}")
            await self._release_channel()
            self.state = SessionState.ERROR
            self.last_error = str(e)
            await self._notify()
            return self.snapshot()

        self.entries = merge_history(self.entries, fetched, since=started_at)
        self.state = SessionState.READY
        logger.info(f"💬 Chat {self.user_id} <-> {peer_id} ready ({len(fetched)} messages)")
        await self._notify()

        await self._mark_seen()
        return self.snapshot()

    async def refresh(self) -> SessionSnapshot:
        """Re-fetch history and merge it by id with what is on screen."""
        if self.state == SessionState.ERROR and self.peer_id is not None:
            return await self.open(self.peer_id)
        self._require(SessionState.READY)

        self.is_refreshing = True
        await self._notify()
        started_at = self._clock()
        try:
            fetched = await self.store.get_messages(self.user_id, self.peer_id)
        except TransportError as e:
            logger.warning(f"Refresh of chat with {self.peer_id} failed: {e}")
            self.last_error = str(e)
            self.is_refreshing = False
            await self._notify()
            return self.snapshot()

        self.entries = merge_history(self.entries, fetched, since=started_at)
        self.is_refreshing = False
        self.last_error = None
        await self._notify()
        await self._mark_seen()
        return self.snapshot()

    async def teardown(self):
        """Release the channel and background work. Safe to call more than once."""
        if self.state == SessionState.CLOSED:
            return
        await self._release_channel()
        self._generation += 1
        self._sends_in_flight = 0

        tasks, self._background = list(self._background), set()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        self.state = SessionState.CLOSED
        await self._notify()
        self._listeners.clear()
        await self.bus.publish(RefreshChatList(user_id=self.user_id, reason="chat_closed"))
        logger.info(f"👋 Chat {self.user_id} <-> {self.peer_id} closed")

    async def _release_channel(self):
        if self._subscription is not None:
            await self._subscription.unsubscribe()
            self._subscription = None

    async def __aenter__(self) -> "ChatSessionController":
        return self

    async def __aexit__(self, *exc_info):
        await self.teardown()

    # ------------------------------------------------------------------
    # Realtime
    # ------------------------------------------------------------------

    async def _on_realtime_message(self, message: Message):
        if self.state not in (SessionState.LOADING_HISTORY, SessionState.READY):
            return
        if self.peer_id is None or not message.involves(self.user_id, self.peer_id):
            return

        self.entries = reconcile(self.entries, message)
        await self._notify()

        if message.sender_id == self.peer_id:
            self._spawn(self._mark_seen())

    def _spawn(self, coro):
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _mark_seen(self):
        """Mark everything the peer sent us as seen; failures only log."""
        if self.peer_id is None:
            return
        try:
            await self.store.mark_messages_as_seen(self.peer_id, self.user_id)
        except TransportError as e:
            logger.warning(f"Mark-seen for {self.peer_id} -> {self.user_id} failed: {e}")

    # ------------------------------------------------------------------
    # Send / delete
    # ------------------------------------------------------------------

    async def send_message(self, text: Optional[str] = None) -> Message:
        """
        Optimistically send ``text`` (default: the input buffer).

        Raises:
            SessionStateError: The session is not ready
            ValidationError: Empty or oversized text; nothing changes
            TransportError: The insert failed; the optimistic entry is
                removed and the input buffer holds the text again

        If the controller is switched to another peer or torn down while the
        insert is in flight, the outcome leaves the current history alone.
        """
        self._require(SessionState.READY)
        raw = text if text is not None else self.input_buffer
        content = validate_message_content(raw)

        peer_id = self.peer_id
        generation = self._generation
        temp_id = make_temp_id()
        optimistic = Message(
            id=temp_id,
            sender_id=self.user_id,
            receiver_id=peer_id,
            content=content,
            created_at=self._clock(),
            seen=False,
        )
        self.entries = self.entries + [Pending(temp_id, optimistic)]
        self.input_buffer = ""
        self._sends_in_flight += 1
        await self._notify()

        try:
            confirmed = await self.store.send_message(self.user_id, peer_id, content)
        except TransportError as e:
            logger.error(f"❌ Send to {peer_id} failed: {e}")
            if generation != self._generation:
                # the conversation was switched or closed while the insert ran
                raise
            self.entries = rollback(self.entries, temp_id)
            self.input_buffer = raw
            self.last_error = str(e)
            self._sends_in_flight -= 1
            await self._notify()
            raise

        if generation != self._generation:
            logger.info(f"Send to {peer_id} confirmed after the chat moved on; not shown")
            return confirmed

        try:
            self.entries = reconcile(self.entries, confirmed, temp_id=temp_id)
        except ReconciliationAnomaly as e:
            logger.warning(f"⚠️ {e}; keeping confirmed row once")
            self.entries = upsert(self.entries, confirmed, temp_id)

        self._sends_in_flight -= 1
        self.last_error = None
        await self._notify()
        await self.bus.publish(RefreshChatList(user_id=self.user_id, reason="message_sent"))
        return confirmed

    async def delete_message(self, message_id: str):
        """Delete a confirmed message remotely, then drop it locally."""
        self._require(SessionState.READY)
        if is_temp_id(message_id):
            raise SessionStateError("Message is still sending and cannot be deleted yet")

        await self.store.delete_message(message_id)
        self.entries = remove_confirmed(self.entries, message_id)
        await self._notify()
        await self.bus.publish(RefreshChatList(user_id=self.user_id, reason="message_deleted"))

    async def delete_conversation(self):
        """Purge the whole conversation remotely, then clear confirmed history."""
        self._require(SessionState.READY)
        await self.store.delete_all_messages_with_friend(self.user_id, self.peer_id)
        self.entries = [e for e in self.entries if not isinstance(e, Confirmed)]
        await self._notify()
        await self.bus.publish(RefreshChatList(user_id=self.user_id, reason="conversation_deleted"))
