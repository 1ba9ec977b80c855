"""Common schemas used across the application."""
from typing import Any, Optional
from pydantic import BaseModel, Field


class SuccessResponse(BaseModel):
    """Generic success response."""

    success: bool = True
    message: str = "Operation completed successfully"
    data: Optional[Any] = None


class BadgeResponse(BaseModel):
    """Badge count plus the capped label a tab icon renders."""

    count: int = Field(ge=0, description="Underlying uncapped count")
    label: str = Field(description="Rendered label, e.g. '99+'")
