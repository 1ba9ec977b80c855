"""
Polling realtime transport.

The hosted backend pushes INSERT events over its own socket protocol; this
transport approximates that feed over plain REST so the gateway contract
stays the same. Each subscription gets one background task that selects
rows newer than a cursor and delivers them oldest first.
"""
import asyncio
import logging
from collections import deque
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable, Dict, Optional, Set

from socialsync.exceptions import TransportError
from socialsync.gateway.base import InsertCallback, Order, RealtimeSubscription
from socialsync.gateway.filters import And, Filter, Gt, comparable

if TYPE_CHECKING:
    from socialsync.gateway.base import DataGateway

logger = logging.getLogger(__name__)

# Ids remembered per channel to drop rows sharing the cursor timestamp
MAX_SEEN_IDS = 500


class _PollingChannel:
    """Background poll loop for a single subscription."""

    def __init__(self, gateway: "DataGateway", subscription: RealtimeSubscription, interval: float, cursor: datetime):
        self._gateway = gateway
        self._subscription = subscription
        self._interval = interval
        self._cursor = cursor
        self._seen: Set[str] = set()
        self._seen_order: deque = deque()
        self._task: Optional[asyncio.Task] = None

    def start(self):
        self._task = asyncio.create_task(self._run_loop())

    async def stop(self):
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _run_loop(self):
        while self._subscription.active:
            try:
                await self.poll_once()
            except TransportError as e:
                logger.warning(f"Realtime poll on {self._subscription.channel_name} failed: {e}")
            await asyncio.sleep(self._interval)

    async def poll_once(self):
        where: Filter = Gt("created_at", self._cursor)
        if self._subscription.where is not None:
            where = And(self._subscription.where, where)

        rows = await self._gateway.select(
            self._subscription.table,
            where=where,
            order=Order("created_at", ascending=True),
        )
        for row in rows:
            row_id = str(row.get("id"))
            if row_id in self._seen:
                continue
            self._remember(row_id)
            created = comparable(row.get("created_at"))
            if isinstance(created, datetime) and created > self._cursor:
                self._cursor = created
            await self._subscription.deliver(row)

    def _remember(self, row_id: str):
        self._seen.add(row_id)
        self._seen_order.append(row_id)
        if len(self._seen_order) > MAX_SEEN_IDS:
            self._seen.discard(self._seen_order.popleft())


class PollingRealtime:
    """Owns every polling channel opened through one gateway."""

    def __init__(
        self,
        gateway: "DataGateway",
        interval: float = 2.0,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._gateway = gateway
        self._interval = interval
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._channels: Dict[int, _PollingChannel] = {}

    @property
    def channel_count(self) -> int:
        return len(self._channels)

    async def subscribe(
        self,
        channel_name: str,
        table: str,
        on_insert: InsertCallback,
        *,
        where: Optional[Filter] = None,
    ) -> RealtimeSubscription:
        subscription = RealtimeSubscription(
            channel_name, table, on_insert, where=where, on_close=self._close_channel,
        )
        channel = _PollingChannel(self._gateway, subscription, self._interval, self._clock())
        self._channels[id(subscription)] = channel
        channel.start()
        logger.info(f"📡 Polling {table} for {channel_name} every {self._interval}s")
        return subscription

    async def _close_channel(self, subscription: RealtimeSubscription):
        channel = self._channels.pop(id(subscription), None)
        if channel is not None:
            await channel.stop()

    async def stop(self):
        """Cancel every channel, e.g. when the gateway closes."""
        channels, self._channels = list(self._channels.values()), {}
        for channel in channels:
            await channel.stop()
