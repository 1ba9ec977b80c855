"""
Message Store, Social Store and Realtime Subscriber Tests
Run against the in-memory backend.
"""
import pytest

from socialsync.exceptions import TransportError, ValidationError
from socialsync.services.realtime_subscriber import conversation_channel, inbox_channel


# ============== Message Store Tests ==============

class TestMessageStore:
    """Tests for message store operations"""

    @pytest.mark.asyncio
    async def test_empty_history_is_not_an_error(self, store):
        """Test a conversation without messages returns an empty list"""
        assert await store.get_messages("alice", "bob") == []

    @pytest.mark.asyncio
    async def test_history_is_ascending_and_scoped(self, store, clock):
        """Test history holds both directions in creation order"""
        await store.send_message("alice", "bob", "one")
        clock.advance(1)
        await store.send_message("bob", "alice", "two")
        clock.advance(1)
        await store.send_message("alice", "carol", "elsewhere")
        clock.advance(1)
        await store.send_message("alice", "bob", "three")

        history = await store.get_messages("bob", "alice")
        assert [m.content for m in history] == ["one", "two", "three"]

    @pytest.mark.asyncio
    async def test_send_returns_confirmed_row_with_profiles(self, store):
        """Test the confirmed row carries server id and embedded profiles"""
        message = await store.send_message("alice", "bob", "  hello  ")

        assert message.id
        assert message.content == "hello"
        assert message.seen is False
        assert message.sender_profile.username == "alice"
        assert message.receiver_profile.full_name == "Bob Builder"

    @pytest.mark.asyncio
    async def test_send_validates_before_any_remote_call(self, store, gateway):
        """Test invalid content never reaches the backend"""
        with pytest.raises(ValidationError):
            await store.send_message("alice", "bob", "   ")
        with pytest.raises(ValidationError):
            await store.send_message("alice", "bob", "x" * 1001)
        assert gateway.call_count("insert", "messages") == 0

    @pytest.mark.asyncio
    async def test_unread_count_for_friend(self, store):
        """Test unread counts only messages from that friend to the user"""
        await store.send_message("bob", "alice", "1")
        await store.send_message("bob", "alice", "2")
        await store.send_message("carol", "alice", "3")
        await store.send_message("alice", "bob", "mine")

        assert await store.get_unread_count_for_friend("alice", "bob") == 2
        assert await store.get_unread_count("alice") == 3

    @pytest.mark.asyncio
    async def test_mark_seen_is_idempotent(self, store, gateway):
        """Test marking seen twice yields the same state as once"""
        await store.send_message("bob", "alice", "1")
        await store.send_message("bob", "alice", "2")
        await store.send_message("carol", "alice", "3")

        await store.mark_messages_as_seen("bob", "alice")
        first = gateway.rows("messages")
        await store.mark_messages_as_seen("bob", "alice")
        second = gateway.rows("messages")

        assert [r["seen"] for r in first] == [r["seen"] for r in second]
        assert await store.get_unread_count_for_friend("alice", "bob") == 0
        assert await store.get_unread_count("alice") == 1
        assert gateway.call_count("rpc", "mark_messages_as_seen") == 2

    @pytest.mark.asyncio
    async def test_delete_message(self, store):
        """Test a hard delete removes the row from future fetches"""
        keep = await store.send_message("alice", "bob", "keep")
        drop = await store.send_message("alice", "bob", "drop")

        await store.delete_message(drop.id)

        assert [m.id for m in await store.get_messages("alice", "bob")] == [keep.id]

    @pytest.mark.asyncio
    async def test_delete_all_messages_with_friend(self, store):
        """Test purging a conversation empties it and leaves others alone"""
        await store.send_message("alice", "bob", "a")
        await store.send_message("bob", "alice", "b")
        await store.send_message("alice", "carol", "c")

        await store.delete_all_messages_with_friend("bob", "alice")

        assert await store.get_messages("alice", "bob") == []
        assert len(await store.get_messages("alice", "carol")) == 1

    @pytest.mark.asyncio
    async def test_get_last_message(self, store, clock):
        """Test the newest message of a conversation"""
        assert await store.get_last_message("alice", "bob") is None
        await store.send_message("alice", "bob", "first")
        clock.advance(5)
        await store.send_message("bob", "alice", "last")
        assert (await store.get_last_message("alice", "bob")).content == "last"

    @pytest.mark.asyncio
    async def test_transport_errors_propagate(self, store, gateway):
        """Test backend failures surface as TransportError"""
        gateway.fail_next("select", "messages")
        with pytest.raises(TransportError):
            await store.get_messages("alice", "bob")

        gateway.fail_next("rpc", "mark_messages_as_seen")
        with pytest.raises(TransportError):
            await store.mark_messages_as_seen("bob", "alice")


# ============== Realtime Subscriber Tests ==============

class TestRealtimeSubscriber:
    """Tests for realtime channels"""

    def test_channel_names_are_canonical(self):
        """Test both participants derive the same channel"""
        assert conversation_channel("bob", "alice") == conversation_channel("alice", "bob")
        assert conversation_channel("bob", "alice") == "messages:alice:bob"
        assert inbox_channel("alice") == "incoming-messages:alice"

    @pytest.mark.asyncio
    async def test_conversation_channel_receives_both_directions(self, store, subscriber):
        """Test every insert in the pair reaches the callback, own echo included"""
        received = []
        await subscriber.subscribe_to_conversation("alice", "bob", received.append)

        await store.send_message("alice", "bob", "out")
        await store.send_message("bob", "alice", "in")
        await store.send_message("alice", "carol", "other")

        assert [m.content for m in received] == ["out", "in"]

    @pytest.mark.asyncio
    async def test_inbox_channel_filters_on_receiver(self, store, subscriber):
        """Test the inbox channel sees only messages addressed to the user"""
        received = []

        async def on_message(message):
            received.append(message.sender_id)

        await subscriber.subscribe_to_incoming("alice", on_message)
        await store.send_message("bob", "alice", "1")
        await store.send_message("alice", "bob", "2")
        await store.send_message("carol", "alice", "3")

        assert received == ["bob", "carol"]

    @pytest.mark.asyncio
    async def test_scoped_subscription_releases_on_error(self, store, subscriber, gateway):
        """Test the context manager unsubscribes on every exit path"""
        received = []
        with pytest.raises(RuntimeError):
            async with subscriber.conversation("alice", "bob", received.append) as subscription:
                assert gateway.subscription_count == 1
                raise RuntimeError("view crashed")

        assert not subscription.active
        assert gateway.subscription_count == 0
        await store.send_message("alice", "bob", "after")
        assert received == []

    @pytest.mark.asyncio
    async def test_unsubscribe_is_idempotent(self, subscriber, gateway):
        """Test unsubscribing twice is harmless"""
        subscription = await subscriber.subscribe_to_incoming("alice", lambda m: None)
        await subscription.unsubscribe()
        await subscription.unsubscribe()
        assert gateway.subscription_count == 0

    @pytest.mark.asyncio
    async def test_failing_callback_does_not_break_insert(self, store, subscriber):
        """Test an exception inside a callback is contained"""
        def boom(message):
            raise RuntimeError("consumer bug")

        await subscriber.subscribe_to_incoming("alice", boom)
        message = await store.send_message("bob", "alice", "still delivered")
        assert message.content == "still delivered"


# ============== Social Store Tests ==============

class TestSocialStore:
    """Tests for the friends, posts and comments accessor"""

    @pytest.mark.asyncio
    async def test_friends_from_either_side(self, social, gateway):
        """Test accepted friendships are found whoever sent the request"""
        gateway.seed(
            "friends",
            {"id": "f1", "requester_id": "alice", "addressee_id": "bob", "status": "accepted"},
            {"id": "f2", "requester_id": "carol", "addressee_id": "alice", "status": "accepted"},
            {"id": "f3", "requester_id": "bob", "addressee_id": "alice", "status": "pending"},
        )

        friends = await social.get_friends("alice")
        requests = await social.get_friend_requests("alice")

        assert [f.other_party_id("alice") for f in friends] == ["bob", "carol"]
        assert friends[1].other_party("alice").username == "carol"
        assert [r.id for r in requests] == ["f3"]
        assert requests[0].requester_profile.full_name == "Bob Builder"

    @pytest.mark.asyncio
    async def test_comments_carry_author_identity(self, social, gateway):
        """Test the author profile is flattened onto each comment"""
        gateway.seed("comments", {"id": "c1", "post_id": "p1", "user_id": "bob", "content": "nice"})

        comments = await social.get_comments_for_posts(["p1"])

        assert comments[0].username == "bob"
        assert comments[0].full_name == "Bob Builder"
        assert await social.get_comments_for_posts([]) == []
