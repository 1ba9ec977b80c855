"""Key/value table backing local device storage."""
from datetime import datetime, timezone
from sqlalchemy import String, Text, DateTime
from sqlalchemy.orm import Mapped, mapped_column

from socialsync.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StorageEntry(Base):
    """A single persisted value keyed by purpose (e.g. notifications last-seen)."""

    __tablename__ = "storage_entries"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )

    def __repr__(self) -> str:
        return f"<StorageEntry(key={self.key}, value={self.value})>"
