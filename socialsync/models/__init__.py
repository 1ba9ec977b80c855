"""Local storage models package."""
from socialsync.models.storage_entry import StorageEntry

__all__ = [
    "StorageEntry",
]
