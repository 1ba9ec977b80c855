"""Error taxonomy shared by the gateway, stores and controllers."""
from typing import Optional


class SocialSyncError(Exception):
    """Base class for all errors raised by this package."""


class TransportError(SocialSyncError):
    """A remote call (fetch, insert, update, delete, RPC, subscribe) failed."""

    def __init__(
        self,
        operation: str,
        table: Optional[str] = None,
        status_code: Optional[int] = None,
        detail: Optional[str] = None,
    ):
        self.operation = operation
        self.table = table
        self.status_code = status_code
        self.detail = detail
        target = f" on {table}" if table else ""
        status = f" (HTTP {status_code})" if status_code else ""
        message = f"{operation}{target} failed{status}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class ValidationError(SocialSyncError):
    """Input rejected locally before any remote call was made."""


class ReconciliationAnomaly(SocialSyncError):
    """An optimistic entry could not be matched against its confirmed row."""

    def __init__(self, message: str, temp_id: Optional[str] = None, message_id: Optional[str] = None):
        self.temp_id = temp_id
        self.message_id = message_id
        super().__init__(message)


class SessionStateError(SocialSyncError):
    """Operation issued while a controller is in a state that cannot accept it."""
