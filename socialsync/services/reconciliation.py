"""
Optimistic-state reconciliation for conversation history.

Every entry of a conversation is either ``Pending`` (written locally,
carrying a temporary id) or ``Confirmed`` (a row the backend returned).
The functions here are pure: they take a list of entries and return a new
one, so the same rules apply whether the send response or the realtime
echo of the write arrives first.

Rules for an incoming confirmed row:
  1. A confirmed entry with the same id is replaced in place; the pending
     entry named by ``temp_id`` (if any) is dropped.
  2. Otherwise the pending entry named by ``temp_id`` is superseded in place.
  3. Without a ``temp_id`` (realtime echo), the earliest pending entry with
     the same sender, receiver and content inside the time window is
     superseded in place.
  4. Otherwise the row is inserted in creation order.
"""
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional, Sequence, Union

from socialsync.config import settings
from socialsync.exceptions import ReconciliationAnomaly
from socialsync.schemas.chat import MessageView
from socialsync.schemas.message import Message


@dataclass(frozen=True)
class Pending:
    """Optimistic entry awaiting confirmation."""
    temp_id: str
    message: Message


@dataclass(frozen=True)
class Confirmed:
    """Entry backed by a server-assigned row."""
    message: Message

    @property
    def id(self) -> str:
        return self.message.id


Entry = Union[Pending, Confirmed]


def make_temp_id(prefix: Optional[str] = None) -> str:
    """Unique temporary id for an optimistic message."""
    return f"{prefix if prefix is not None else settings.temp_id_prefix}{uuid.uuid4().hex}"


def is_temp_id(message_id: str, prefix: Optional[str] = None) -> bool:
    return message_id.startswith(prefix if prefix is not None else settings.temp_id_prefix)


def _same_payload(pending: Message, incoming: Message, window_seconds: float) -> bool:
    if pending.sender_id != incoming.sender_id or pending.receiver_id != incoming.receiver_id:
        return False
    if pending.content != incoming.content:
        return False
    return abs((incoming.created_at - pending.created_at).total_seconds()) <= window_seconds


def _find_confirmed(entries: Sequence[Entry], message_id: str) -> Optional[int]:
    for i, entry in enumerate(entries):
        if isinstance(entry, Confirmed) and entry.message.id == message_id:
            return i
    return None


def _find_pending(entries: Sequence[Entry], temp_id: str) -> Optional[int]:
    for i, entry in enumerate(entries):
        if isinstance(entry, Pending) and entry.temp_id == temp_id:
            return i
    return None


def _find_matching_pending(entries: Sequence[Entry], incoming: Message, window_seconds: float) -> Optional[int]:
    for i, entry in enumerate(entries):
        if isinstance(entry, Pending) and _same_payload(entry.message, incoming, window_seconds):
            return i
    return None


def _keep_profiles(existing: Message, incoming: Message) -> Message:
    """Realtime rows arrive without embeds; keep the ones already on screen."""
    updates = {}
    if incoming.sender_profile is None and existing.sender_profile is not None:
        updates["sender_profile"] = existing.sender_profile
    if incoming.receiver_profile is None and existing.receiver_profile is not None:
        updates["receiver_profile"] = existing.receiver_profile
    return incoming.model_copy(update=updates) if updates else incoming


def _insert_ordered(entries: List[Entry], entry: Entry) -> List[Entry]:
    """Insert after every entry created at or before ``entry``."""
    created: datetime = entry.message.created_at
    position = len(entries)
    while position > 0 and entries[position - 1].message.created_at > created:
        position -= 1
    entries.insert(position, entry)
    return entries


def reconcile(
    entries: Sequence[Entry],
    incoming: Message,
    temp_id: Optional[str] = None,
    window_seconds: Optional[float] = None,
) -> List[Entry]:
    """
    Fold one confirmed row into the history.

    Args:
        entries: Current history, ascending by creation time
        incoming: Row confirmed by the backend (send response or realtime event)
        temp_id: Temporary id of the optimistic entry this row answers, if known
        window_seconds: Max creation-time distance for payload matching

    Returns:
        New entry list holding ``incoming`` exactly once

    Raises:
        ReconciliationAnomaly: ``temp_id`` was given but neither the pending
            entry nor a confirmed entry for ``incoming`` exists
    """
    window = window_seconds if window_seconds is not None else settings.reconcile_window_seconds
    result = list(entries)
    confirmed = Confirmed(incoming)

    existing = _find_confirmed(result, incoming.id)
    if existing is not None:
        result[existing] = Confirmed(_keep_profiles(result[existing].message, incoming))
        if temp_id is not None:
            pending = _find_pending(result, temp_id)
            if pending is not None:
                del result[pending]
        return result

    if temp_id is not None:
        pending = _find_pending(result, temp_id)
        if pending is None:
            raise ReconciliationAnomaly(
                f"No entry for confirmed message {incoming.id} (temporary id {temp_id})",
                temp_id=temp_id,
                message_id=incoming.id,
            )
        result[pending] = confirmed
        return result

    pending = _find_matching_pending(result, incoming, window)
    if pending is not None:
        result[pending] = confirmed
        return result

    return _insert_ordered(result, confirmed)


def upsert(entries: Sequence[Entry], incoming: Message, temp_id: Optional[str] = None) -> List[Entry]:
    """Anomaly fallback: keep ``incoming`` once and drop the named pending entry."""
    result = [
        e for e in entries
        if not (isinstance(e, Pending) and e.temp_id == temp_id)
        and not (isinstance(e, Confirmed) and e.message.id == incoming.id)
    ]
    return _insert_ordered(result, Confirmed(incoming))


def rollback(entries: Sequence[Entry], temp_id: str) -> List[Entry]:
    """Remove the optimistic entry of a failed send."""
    return [e for e in entries if not (isinstance(e, Pending) and e.temp_id == temp_id)]


def remove_confirmed(entries: Sequence[Entry], message_id: str) -> List[Entry]:
    return [e for e in entries if not (isinstance(e, Confirmed) and e.message.id == message_id)]


def merge_history(
    current: Sequence[Entry],
    fetched: Iterable[Message],
    since: Optional[datetime] = None,
    window_seconds: Optional[float] = None,
) -> List[Entry]:
    """
    Merge a freshly fetched history with what is already on screen.

    Fetched rows are authoritative. Confirmed entries missing from the fetch
    survive only if they are newer than the newest fetched row (or ``since``
    when the fetch was empty); older ones were deleted remotely. Pending
    entries survive unless a fetched row new to the client carries the
    same payload.
    """
    window = window_seconds if window_seconds is not None else settings.reconcile_window_seconds
    fetched = sorted(fetched, key=lambda m: m.created_at)
    result: List[Entry] = [Confirmed(m) for m in fetched]
    fetched_ids = {m.id for m in fetched}
    horizon = fetched[-1].created_at if fetched else since

    # rows already confirmed on screen cannot answer a pending send
    claimed = {e.message.id for e in current if isinstance(e, Confirmed)}
    for entry in current:
        if isinstance(entry, Confirmed):
            if entry.message.id in fetched_ids:
                continue
            if horizon is not None and entry.message.created_at > horizon:
                _insert_ordered(result, entry)
            continue

        match = next(
            (m for m in fetched if m.id not in claimed and _same_payload(entry.message, m, window)),
            None,
        )
        if match is not None:
            claimed.add(match.id)
            continue
        result.append(entry)
    return result


def to_views(entries: Iterable[Entry]) -> List[MessageView]:
    """Render entries for the UI, flagging optimistic ones."""
    views = []
    for entry in entries:
        data = entry.message.model_dump()
        if isinstance(entry, Pending):
            data["id"] = entry.temp_id
        views.append(MessageView(**data, pending=isinstance(entry, Pending)))
    return views
