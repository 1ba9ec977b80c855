"""
In-process backend.

Holds tables as lists of row dicts, runs the server procedures the client
relies on, and fans INSERT events out to matching realtime subscriptions.
Used by the test-suite, the demo script and ``backend_mode="memory"``.

Realtime delivery happens before ``insert`` returns, the same way a fast
push channel can beat the write's own response. ``hold_events()`` queues
deliveries until ``release_events()`` so the opposite ordering can be
exercised too.
"""
import copy
import logging
import uuid
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from socialsync.exceptions import TransportError
from socialsync.gateway.base import DataGateway, Embed, InsertCallback, Order, RealtimeSubscription, Row
from socialsync.gateway.filters import Filter, comparable

logger = logging.getLogger(__name__)


@dataclass
class _InjectedFailure:
    operation: str
    table: Optional[str]
    match: Optional[Callable[[Optional[Filter]], bool]]
    remaining: int
    detail: str
    status_code: Optional[int]


class InMemoryGateway(DataGateway):
    """Dict-backed implementation of the gateway contract."""

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self.tables: Dict[str, List[Row]] = defaultdict(list)
        self.calls: List[Tuple[str, str]] = []
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._subscriptions: List[RealtimeSubscription] = []
        self._failures: List[_InjectedFailure] = []
        self._events_held = False
        self._held_events: List[Tuple[RealtimeSubscription, Row]] = []
        self._procedures: Dict[str, Callable[[Row], Any]] = {
            "mark_messages_as_seen": self._mark_messages_as_seen,
        }

    # ------------------------------------------------------------------
    # Test / demo helpers
    # ------------------------------------------------------------------

    def now(self) -> datetime:
        return self._clock()

    def seed(self, table: str, *rows: Row) -> List[Row]:
        """Insert rows directly, without failures or realtime events."""
        stored = [self._stamp(dict(row)) for row in rows]
        self.tables[table].extend(stored)
        return [copy.deepcopy(r) for r in stored]

    def rows(self, table: str) -> List[Row]:
        return [copy.deepcopy(r) for r in self.tables[table]]

    def fail_next(
        self,
        operation: str,
        table: Optional[str] = None,
        *,
        match: Optional[Callable[[Optional[Filter]], bool]] = None,
        times: int = 1,
        detail: str = "injected failure",
        status_code: Optional[int] = 503,
    ):
        """Make the next ``times`` matching calls raise ``TransportError``."""
        self._failures.append(_InjectedFailure(operation, table, match, times, detail, status_code))

    def hold_events(self):
        self._events_held = True

    async def release_events(self):
        """Deliver every queued realtime event in insertion order."""
        self._events_held = False
        pending, self._held_events = self._held_events, []
        for subscription, row in pending:
            await subscription.deliver(row)

    @property
    def subscription_count(self) -> int:
        return sum(1 for s in self._subscriptions if s.active)

    def call_count(self, operation: str, table: Optional[str] = None) -> int:
        return sum(1 for op, t in self.calls if op == operation and (table is None or t == table))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _stamp(self, row: Row) -> Row:
        now = self.now().isoformat()
        row.setdefault("id", str(uuid.uuid4()))
        row.setdefault("created_at", now)
        row.setdefault("updated_at", row["created_at"])
        return row

    def _record(self, operation: str, target: str, where: Optional[Filter] = None):
        self.calls.append((operation, target))
        for failure in self._failures:
            if failure.remaining <= 0 or failure.operation != operation:
                continue
            if failure.table is not None and failure.table != target:
                continue
            if failure.match is not None and not failure.match(where):
                continue
            failure.remaining -= 1
            self._failures = [f for f in self._failures if f.remaining > 0]
            raise TransportError(operation, target, failure.status_code, failure.detail)

    def _with_embeds(self, row: Row, embeds: Sequence[Embed]) -> Row:
        result = copy.deepcopy(row)
        for embed in embeds:
            key = row.get(embed.column)
            related = next((r for r in self.tables[embed.table] if str(r.get("id")) == str(key)), None)
            result[embed.alias] = copy.deepcopy(related) if related is not None else None
        return result

    def _mark_messages_as_seen(self, params: Row) -> None:
        sender_id = str(params["p_sender_id"])
        receiver_id = str(params["p_receiver_id"])
        now = self.now().isoformat()
        for row in self.tables["messages"]:
            if str(row.get("sender_id")) == sender_id and str(row.get("receiver_id")) == receiver_id and not row.get("seen"):
                row["seen"] = True
                row["updated_at"] = now

    # ------------------------------------------------------------------
    # Gateway contract
    # ------------------------------------------------------------------

    async def select(
        self,
        table: str,
        *,
        where: Optional[Filter] = None,
        order: Optional[Order] = None,
        embeds: Sequence[Embed] = (),
        limit: Optional[int] = None,
    ) -> List[Row]:
        self._record("select", table, where)
        rows = [r for r in self.tables[table] if where is None or where.matches(r)]
        if order is not None:
            rows = sorted(rows, key=lambda r: comparable(r.get(order.column)), reverse=not order.ascending)
        if limit is not None:
            rows = rows[:limit]
        return [self._with_embeds(r, embeds) for r in rows]

    async def insert(self, table: str, values: Row, *, embeds: Sequence[Embed] = ()) -> Row:
        self._record("insert", table)
        row = self._stamp(dict(values))
        self.tables[table].append(row)
        confirmed = self._with_embeds(row, embeds)

        for subscription in list(self._subscriptions):
            if not subscription.accepts(table, row):
                continue
            if self._events_held:
                self._held_events.append((subscription, copy.deepcopy(row)))
            else:
                await subscription.deliver(copy.deepcopy(row))
        return confirmed

    async def update(self, table: str, values: Row, *, where: Filter) -> List[Row]:
        self._record("update", table, where)
        now = self.now().isoformat()
        updated = []
        for row in self.tables[table]:
            if where.matches(row):
                row.update(values)
                row["updated_at"] = now
                updated.append(copy.deepcopy(row))
        return updated

    async def delete(self, table: str, *, where: Filter) -> None:
        self._record("delete", table, where)
        self.tables[table] = [r for r in self.tables[table] if not where.matches(r)]

    async def rpc(self, name: str, params: Row) -> Any:
        self._record("rpc", name)
        procedure = self._procedures.get(name)
        if procedure is None:
            raise TransportError("rpc", name, 404, f"Unknown procedure '{name}'")
        return procedure(params)

    async def count(self, table: str, *, where: Optional[Filter] = None) -> int:
        self._record("count", table, where)
        return sum(1 for r in self.tables[table] if where is None or where.matches(r))

    async def subscribe(
        self,
        channel_name: str,
        table: str,
        on_insert: InsertCallback,
        *,
        where: Optional[Filter] = None,
    ) -> RealtimeSubscription:
        self._record("subscribe", channel_name)
        subscription = RealtimeSubscription(
            channel_name, table, on_insert, where=where, on_close=self._remove_subscription,
        )
        self._subscriptions.append(subscription)
        logger.debug(f"Subscribed to {channel_name} ({table})")
        return subscription

    async def _remove_subscription(self, subscription: RealtimeSubscription):
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)
        self._held_events = [(s, r) for s, r in self._held_events if s is not subscription]
