"""
Remote Data Gateway contract.

The backend is consumed as a black box through row CRUD, scalar counts,
server procedures and an INSERT subscription primitive. Every remote
failure surfaces as ``TransportError``.
"""
import asyncio
import inspect
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Union

from socialsync.gateway.filters import Filter

logger = logging.getLogger(__name__)

Row = Dict[str, Any]
InsertCallback = Callable[[Row], Union[None, Awaitable[None]]]


@dataclass(frozen=True)
class Embed:
    """Embed a related row through a foreign key column, under ``alias``."""
    alias: str
    table: str
    column: str


@dataclass(frozen=True)
class Order:
    column: str
    ascending: bool = True

    def render(self) -> str:
        return f"{self.column}.{'asc' if self.ascending else 'desc'}"


class RealtimeSubscription:
    """
    Handle for one realtime channel.

    ``unsubscribe`` is idempotent; after it returns no further callbacks
    are delivered through this handle.
    """

    def __init__(
        self,
        channel_name: str,
        table: str,
        callback: InsertCallback,
        where: Optional[Filter] = None,
        on_close: Optional[Callable[["RealtimeSubscription"], Awaitable[None]]] = None,
    ):
        self.channel_name = channel_name
        self.table = table
        self.where = where
        self._callback = callback
        self._on_close = on_close
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def accepts(self, table: str, row: Row) -> bool:
        if not self._active or table != self.table:
            return False
        return self.where is None or self.where.matches(row)

    async def deliver(self, row: Row):
        """Invoke the callback for one inserted row."""
        if not self._active:
            return
        try:
            result = self._callback(row)
            if inspect.isawaitable(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Realtime callback on {self.channel_name} failed: {e}", exc_info=True)

    async def unsubscribe(self):
        if not self._active:
            return
        self._active = False
        if self._on_close is not None:
            await self._on_close(self)
        logger.debug(f"Unsubscribed from {self.channel_name}")

    def __repr__(self) -> str:
        return f"<RealtimeSubscription(channel={self.channel_name}, active={self._active})>"


class DataGateway(ABC):
    """Row-level access to the remote backend."""

    @abstractmethod
    async def select(
        self,
        table: str,
        *,
        where: Optional[Filter] = None,
        order: Optional[Order] = None,
        embeds: Sequence[Embed] = (),
        limit: Optional[int] = None,
    ) -> List[Row]:
        """Fetch matching rows."""

    @abstractmethod
    async def insert(self, table: str, values: Row, *, embeds: Sequence[Embed] = ()) -> Row:
        """Insert one row and return it as confirmed by the backend."""

    @abstractmethod
    async def update(self, table: str, values: Row, *, where: Filter) -> List[Row]:
        """Update matching rows and return them."""

    @abstractmethod
    async def delete(self, table: str, *, where: Filter) -> None:
        """Hard-delete matching rows."""

    @abstractmethod
    async def rpc(self, name: str, params: Row) -> Any:
        """Invoke a server-side procedure."""

    @abstractmethod
    async def count(self, table: str, *, where: Optional[Filter] = None) -> int:
        """Exact row count for the filter."""

    @abstractmethod
    async def subscribe(
        self,
        channel_name: str,
        table: str,
        on_insert: InsertCallback,
        *,
        where: Optional[Filter] = None,
    ) -> RealtimeSubscription:
        """Start delivering INSERT events matching ``where`` to ``on_insert``."""

    async def aclose(self):
        """Release network resources. Default: nothing to release."""
