"""
Last-seen watermark persisted in local storage.

Stored as an ISO-8601 string in ``storage_entries`` under a purpose key.
Writes never move the watermark backwards and are serialized per store, so
two near-simultaneous opens of the notifications view cannot regress it.
"""
import asyncio
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from socialsync.config import settings
from socialsync.database import async_session_maker
from socialsync.models.storage_entry import StorageEntry
from socialsync.utils.helpers import EPOCH, parse_timestamp, utcnow

logger = logging.getLogger(__name__)


class WatermarkStore:
    """Read and advance timestamp watermarks."""

    def __init__(self, session_maker: Optional[async_sessionmaker[AsyncSession]] = None):
        self._session_maker = session_maker or async_session_maker
        self._lock = asyncio.Lock()

    async def get(self, key: Optional[str] = None) -> datetime:
        """Stored watermark, or the epoch when missing or unparsable."""
        key = key or settings.notifications_last_seen_key
        async with self._session_maker() as session:
            entry = await session.get(StorageEntry, key)
        if entry is None:
            return EPOCH
        parsed = parse_timestamp(entry.value)
        if parsed is None:
            logger.warning(f"Unparsable watermark '{entry.value}' under {key}, using epoch")
            return EPOCH
        return parsed

    async def advance(self, value: Optional[datetime] = None, key: Optional[str] = None) -> datetime:
        """
        Move the watermark to ``value`` (default: now) unless it is already later.

        Returns:
            The watermark in effect after the call
        """
        key = key or settings.notifications_last_seen_key
        target = parse_timestamp(value) if value is not None else utcnow()

        async with self._lock:
            async with self._session_maker() as session:
                result = await session.execute(select(StorageEntry).where(StorageEntry.key == key))
                entry = result.scalar_one_or_none()
                current = parse_timestamp(entry.value) if entry is not None else None

                if current is not None and current >= target:
                    return current

                if entry is None:
                    session.add(StorageEntry(key=key, value=target.isoformat()))
                else:
                    entry.value = target.isoformat()
                await session.commit()

        logger.debug(f"Watermark {key} advanced to {target.isoformat()}")
        return target

    async def clear(self, key: Optional[str] = None):
        key = key or settings.notifications_last_seen_key
        async with self._lock:
            async with self._session_maker() as session:
                entry = await session.get(StorageEntry, key)
                if entry is not None:
                    await session.delete(entry)
                    await session.commit()
