"""Utility functions package."""
from socialsync.utils.helpers import (
    EPOCH,
    badge_label,
    truncate_preview,
    parse_timestamp,
    utcnow,
    format_time_ago,
)
from socialsync.utils.validators import (
    validate_message_content,
    validate_user_id,
)

__all__ = [
    "EPOCH",
    "badge_label",
    "truncate_preview",
    "parse_timestamp",
    "utcnow",
    "format_time_ago",
    "validate_message_content",
    "validate_user_id",
]
