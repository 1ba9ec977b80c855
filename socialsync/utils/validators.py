"""Input validation utilities."""
from typing import Optional
from fastapi import HTTPException, status

from socialsync.config import settings
from socialsync.exceptions import ValidationError


def validate_message_content(content: Optional[str], max_length: Optional[int] = None) -> str:
    """
    Validate and normalize message text before it is sent.

    Args:
        content: Raw text from the input buffer
        max_length: Upper bound, defaults to ``settings.message_max_length``

    Returns:
        The stripped text

    Raises:
        ValidationError: If the text is empty or too long
    """
    max_length = max_length or settings.message_max_length
    normalized = (content or "").strip()

    if not normalized:
        raise ValidationError("Message content is required")

    if len(normalized) > max_length:
        raise ValidationError(f"Message is too long ({len(normalized)} > {max_length} characters)")

    return normalized


def validate_user_id(user_id: Optional[str]) -> str:
    """
    Validate the caller identity supplied by the UI shell.

    Raises:
        HTTPException: If no identity was supplied
    """
    normalized = (user_id or "").strip()
    if not normalized:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-User-Id header is required",
        )
    return normalized
