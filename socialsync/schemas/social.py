"""Schemas for friendships, posts, likes and comments."""
from datetime import datetime
from typing import Any, Optional
from pydantic import BaseModel, field_validator

from socialsync.schemas.message import Profile


class _Row(BaseModel):
    """Common id coercion for remote rows."""

    @field_validator("id", "user_id", "post_id", "requester_id", "addressee_id", mode="before", check_fields=False)
    @classmethod
    def coerce_ids(cls, v: Any) -> Any:
        return str(v) if v is not None else v


class Friend(_Row):
    """Friendship row; status moves pending -> accepted | rejected."""

    id: str
    requester_id: str
    addressee_id: str
    status: str = "pending"
    created_at: datetime
    updated_at: Optional[datetime] = None
    requester_profile: Optional[Profile] = None
    addressee_profile: Optional[Profile] = None

    @field_validator("status")
    @classmethod
    def validate_status(cls, v: str) -> str:
        valid_statuses = ["pending", "accepted", "rejected"]
        v_lower = v.lower()
        if v_lower not in valid_statuses:
            raise ValueError(f"Status must be one of: {valid_statuses}")
        return v_lower

    def other_party(self, user_id: str) -> Optional[Profile]:
        """Profile of whichever side of the friendship is not ``user_id``."""
        if self.requester_id == user_id:
            return self.addressee_profile
        return self.requester_profile

    def other_party_id(self, user_id: str) -> str:
        return self.addressee_id if self.requester_id == user_id else self.requester_id


class Post(_Row):
    """A post owned by a user."""

    id: str
    user_id: str
    content: str = ""
    image_url: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None


class Like(_Row):
    """A like row; carries no embedded profile."""

    id: str
    post_id: str
    user_id: str
    created_at: datetime


class Comment(_Row):
    """A comment row with the author's identity denormalized onto it."""

    id: str
    post_id: str
    user_id: str
    content: str = ""
    created_at: datetime
    updated_at: Optional[datetime] = None
    username: Optional[str] = None
    full_name: Optional[str] = None
    avatar_url: Optional[str] = None
