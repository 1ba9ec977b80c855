"""Schemas describing chat sessions and the chat list."""
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel

from socialsync.schemas.message import Message, Profile


class MessageView(Message):
    """A message as rendered in a conversation, flagged while unconfirmed."""

    pending: bool = False


class SessionSnapshot(BaseModel):
    """Observable state of a chat session controller."""

    peer_id: Optional[str] = None
    state: str
    messages: List[MessageView]
    is_sending: bool = False
    is_refreshing: bool = False
    input_buffer: str = ""
    last_error: Optional[str] = None


class ChatListEntry(BaseModel):
    """One friend row of the inbox."""

    friendship_id: str
    friend: Profile
    last_message: Optional[str] = None
    last_message_at: Optional[datetime] = None
    last_message_label: str = ""
    unread_count: int = 0
    badge: str = ""


class ChatListResponse(BaseModel):
    """Inbox listing with the tab-level unread total."""

    entries: List[ChatListEntry]
    total_unread: int
    badge: str
