"""
Message store accessor.

Typed operations over the ``messages`` table: conversation history, send,
mark-seen, unread counts and hard deletes. Every remote failure surfaces as
``TransportError``; nothing here caches.
"""
import logging
from typing import List, Optional

from socialsync.gateway.base import DataGateway, Embed, Order
from socialsync.gateway.filters import And, Eq, between
from socialsync.schemas.message import Message
from socialsync.utils.validators import validate_message_content

logger = logging.getLogger(__name__)

MESSAGES_TABLE = "messages"
MARK_SEEN_PROCEDURE = "mark_messages_as_seen"

MESSAGE_EMBEDS = (
    Embed("sender_profile", "profiles", "sender_id"),
    Embed("receiver_profile", "profiles", "receiver_id"),
)


class MessageStore:
    """Message operations on top of a data gateway."""

    def __init__(self, gateway: DataGateway):
        self.gateway = gateway

    async def get_messages(self, user_a: str, user_b: str) -> List[Message]:
        """
        Full conversation history between two users, oldest first.

        An empty list means "no messages yet".
        """
        rows = await self.gateway.select(
            MESSAGES_TABLE,
            where=between(user_a, user_b),
            order=Order("created_at", ascending=True),
            embeds=MESSAGE_EMBEDS,
        )
        return [Message.model_validate(row) for row in rows]

    async def get_last_message(self, user_a: str, user_b: str) -> Optional[Message]:
        """Newest message between two users; feeds the inbox preview."""
        rows = await self.gateway.select(
            MESSAGES_TABLE,
            where=between(user_a, user_b),
            order=Order("created_at", ascending=False),
            limit=1,
        )
        return Message.model_validate(rows[0]) if rows else None

    async def send_message(self, sender_id: str, receiver_id: str, content: str) -> Message:
        """
        Insert one unseen message and return the confirmed row.

        The insert is also delivered to every realtime subscriber of the
        conversation, the sender's own included.

        Raises:
            ValidationError: Empty or oversized content (no remote call made)
            TransportError: The insert failed
        """
        text = validate_message_content(content)
        row = await self.gateway.insert(
            MESSAGES_TABLE,
            {
                "sender_id": sender_id,
                "receiver_id": receiver_id,
                "content": text,
                "seen": False,
            },
            embeds=MESSAGE_EMBEDS,
        )
        message = Message.model_validate(row)
        logger.debug(f"Message {message.id} sent {sender_id} -> {receiver_id}")
        return message

    async def mark_messages_as_seen(self, sender_id: str, receiver_id: str):
        """Flip ``seen`` for everything ``sender_id`` sent to ``receiver_id``. Idempotent."""
        await self.gateway.rpc(
            MARK_SEEN_PROCEDURE,
            {"p_sender_id": sender_id, "p_receiver_id": receiver_id},
        )

    async def get_unread_count(self, user_id: str) -> int:
        """Unseen messages addressed to ``user_id`` from anyone."""
        return await self.gateway.count(
            MESSAGES_TABLE,
            where=And(Eq("receiver_id", user_id), Eq("seen", False)),
        )

    async def get_unread_count_for_friend(self, user_id: str, friend_id: str) -> int:
        """Unseen messages ``friend_id`` sent to ``user_id``."""
        return await self.gateway.count(
            MESSAGES_TABLE,
            where=And(Eq("sender_id", friend_id), Eq("receiver_id", user_id), Eq("seen", False)),
        )

    async def delete_message(self, message_id: str):
        """Hard delete. Peers that already rendered the message keep it on screen."""
        await self.gateway.delete(MESSAGES_TABLE, where=Eq("id", message_id))
        logger.info(f"🗑️ Deleted message {message_id}")

    async def delete_all_messages_with_friend(self, user_a: str, user_b: str):
        """Purge the whole conversation in both directions."""
        await self.gateway.delete(MESSAGES_TABLE, where=between(user_a, user_b))
        logger.info(f"🗑️ Purged conversation {user_a} <-> {user_b}")
