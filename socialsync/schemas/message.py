"""Message and profile schemas mirroring the remote rows."""
from datetime import datetime
from typing import Any, Optional
from pydantic import BaseModel, Field, field_validator


class Profile(BaseModel):
    """Public profile row, embedded on messages, friendships and comments."""

    id: str
    username: Optional[str] = None
    full_name: Optional[str] = None
    avatar_url: Optional[str] = None
    bio: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> str:
        return str(v)

    @property
    def display_name(self) -> str:
        return self.full_name or self.username or "Unknown User"

    class Config:
        from_attributes = True


class Message(BaseModel):
    """A direct message row.

    Optimistic entries carry a locally generated id starting with the
    configured temporary prefix until the confirmed row replaces them.
    """

    id: str
    sender_id: str
    receiver_id: str
    content: str
    created_at: datetime
    updated_at: Optional[datetime] = None
    seen: bool = False
    sender_profile: Optional[Profile] = None
    receiver_profile: Optional[Profile] = None

    @field_validator("id", "sender_id", "receiver_id", mode="before")
    @classmethod
    def coerce_ids(cls, v: Any) -> str:
        return str(v)

    def involves(self, user_a: str, user_b: str) -> bool:
        """True if this message belongs to the conversation between the two users."""
        return {self.sender_id, self.receiver_id} == {user_a, user_b}

    class Config:
        from_attributes = True


class MessageSendRequest(BaseModel):
    """Schema for sending a message from the UI bridge."""

    content: str = Field(..., min_length=1, description="Message text; length is bounded by settings")
