"""
Chat Session Controller Tests
Optimistic sends against both arrival orders, rollback, dedup, delete,
refresh and teardown, all on the in-memory backend.
"""
import pytest
import asyncio

from socialsync.exceptions import SessionStateError, TransportError, ValidationError
from socialsync.services.chat_session import ChatSessionController, SessionState
from socialsync.services.event_bus import RefreshChatList


@pytest.fixture
def make_controller(store, subscriber, bus, clock):
    def _make(user_id):
        return ChatSessionController(user_id, store, subscriber, bus=bus, clock=clock)
    return _make


@pytest.fixture
async def alice(make_controller):
    controller = make_controller("alice")
    await controller.open("bob")
    yield controller
    await controller.teardown()


@pytest.fixture
async def bob(make_controller):
    controller = make_controller("bob")
    await controller.open("alice")
    yield controller
    await controller.teardown()


async def settle():
    """Let background tasks run."""
    for _ in range(5):
        await asyncio.sleep(0)


def contents(controller):
    return [m.content for m in controller.messages]


def gate_sends(store, monkeypatch, fail=False):
    """Hold every insert until the returned event is set."""
    gate = asyncio.Event()
    original = store.send_message

    async def gated(sender_id, receiver_id, content):
        await gate.wait()
        if fail:
            raise TransportError("insert", "messages", status_code=503)
        return await original(sender_id, receiver_id, content)

    monkeypatch.setattr(store, "send_message", gated)
    return gate


# ============== Open / Load Tests ==============

class TestOpen:
    """Tests for loading a conversation"""

    @pytest.mark.asyncio
    async def test_open_loads_history_and_subscribes(self, make_controller, store, gateway, clock):
        """Test open reaches ready with history, a channel and a mark-seen call"""
        await store.send_message("bob", "alice", "hey")
        clock.advance(1)
        await store.send_message("alice", "bob", "yo")

        controller = make_controller("alice")
        snapshot = await controller.open("bob")

        assert snapshot.state == "ready"
        assert contents(controller) == ["hey", "yo"]
        assert gateway.subscription_count == 1
        assert gateway.call_count("rpc", "mark_messages_as_seen") == 1
        assert await store.get_unread_count_for_friend("alice", "bob") == 0
        await controller.teardown()

    @pytest.mark.asyncio
    async def test_open_failure_enters_error_and_releases_channel(self, make_controller, gateway):
        """Test a failed history load is visible and leaks no channel"""
        gateway.fail_next("select", "messages")
        controller = make_controller("alice")

        snapshot = await controller.open("bob")

        assert snapshot.state == "error"
        assert "select on messages failed" in snapshot.last_error
        assert gateway.subscription_count == 0

    @pytest.mark.asyncio
    async def test_refresh_from_error_retries_open(self, make_controller, gateway, store):
        """Test refresh is the retry affordance of the error state"""
        await store.send_message("bob", "alice", "hello")
        gateway.fail_next("select", "messages")
        controller = make_controller("alice")
        await controller.open("bob")

        snapshot = await controller.refresh()

        assert snapshot.state == "ready"
        assert contents(controller) == ["hello"]
        assert gateway.subscription_count == 1
        await controller.teardown()

    @pytest.mark.asyncio
    async def test_mark_seen_failure_degrades_silently(self, make_controller, gateway):
        """Test a failing mark-seen call does not block the conversation"""
        gateway.fail_next("rpc", "mark_messages_as_seen")
        controller = make_controller("alice")

        snapshot = await controller.open("bob")

        assert snapshot.state == "ready"
        await controller.teardown()

    @pytest.mark.asyncio
    async def test_row_inserted_during_fetch_is_kept(self, make_controller, store):
        """Test the channel opened before the fetch catches rows the fetch missed"""
        controller = make_controller("alice")
        original = store.get_messages

        async def racing_fetch(user_a, user_b):
            snapshot = await original(user_a, user_b)
            await store.send_message("bob", "alice", "raced the fetch")
            return snapshot

        store.get_messages = racing_fetch
        await controller.open("bob")
        store.get_messages = original

        assert contents(controller) == ["raced the fetch"]
        await controller.teardown()

    @pytest.mark.asyncio
    async def test_operations_before_open_are_rejected(self, make_controller):
        """Test the state machine guards send and delete"""
        controller = make_controller("alice")
        with pytest.raises(SessionStateError):
            await controller.send_message("hi")
        with pytest.raises(SessionStateError):
            await controller.delete_message("m1")
        with pytest.raises(SessionStateError):
            await controller.refresh()


# ============== Send Tests ==============

class TestSend:
    """Tests for the optimistic send protocol"""

    @pytest.mark.asyncio
    async def test_echo_before_response_yields_one_message(self, alice, gateway):
        """Test the realtime echo landing first does not duplicate the message"""
        confirmed = await alice.send_message("hello")

        assert [m.id for m in alice.messages] == [confirmed.id]
        assert not alice.messages[0].pending
        assert len(gateway.rows("messages")) == 1

    @pytest.mark.asyncio
    async def test_response_before_echo_yields_one_message(self, alice, gateway):
        """Test the send response landing first does not duplicate the message"""
        gateway.hold_events()
        confirmed = await alice.send_message("hello")
        assert [m.id for m in alice.messages] == [confirmed.id]

        await gateway.release_events()

        assert [m.id for m in alice.messages] == [confirmed.id]
        assert not alice.messages[0].pending

    @pytest.mark.asyncio
    async def test_peer_sees_message_once(self, alice, bob, gateway):
        """Test the receiving side appends the row exactly once"""
        confirmed = await alice.send_message("hello bob")
        await settle()

        assert [m.id for m in bob.messages] == [confirmed.id]

    @pytest.mark.asyncio
    async def test_optimistic_entry_is_visible_while_in_flight(self, alice):
        """Test the pending entry is shown and the input cleared before the insert"""
        snapshots = []
        alice.add_listener(lambda c: snapshots.append(c.snapshot()))
        alice.set_input("typed text")

        await alice.send_message()

        in_flight = snapshots[0]
        assert in_flight.is_sending
        assert in_flight.input_buffer == ""
        assert [(m.content, m.pending) for m in in_flight.messages] == [("typed text", True)]
        assert in_flight.messages[0].id.startswith("temp_")
        assert not snapshots[-1].is_sending

    @pytest.mark.asyncio
    async def test_failed_send_rolls_back_and_restores_input(self, alice, gateway):
        """Test a rejected insert leaves history as before and keeps the text"""
        await alice.send_message("first")
        before = [m.id for m in alice.messages]
        alice.set_input("retry me")
        gateway.fail_next("insert", "messages")

        with pytest.raises(TransportError):
            await alice.send_message()

        assert [m.id for m in alice.messages] == before
        assert alice.input_buffer == "retry me"
        assert not alice.is_sending
        assert alice.last_error is not None

    @pytest.mark.asyncio
    async def test_invalid_text_changes_nothing(self, alice, gateway):
        """Test validation happens before the optimistic entry"""
        with pytest.raises(ValidationError):
            await alice.send_message("   ")
        assert alice.messages == []
        assert gateway.call_count("insert", "messages") == 0

    @pytest.mark.asyncio
    async def test_rapid_identical_sends_stay_distinct(self, alice, gateway):
        """Test two identical texts in flight become two confirmed messages"""
        gateway.hold_events()
        first = await alice.send_message("ok")
        second = await alice.send_message("ok")
        await gateway.release_events()

        assert [m.id for m in alice.messages] == [first.id, second.id]
        assert not any(m.pending for m in alice.messages)

    @pytest.mark.asyncio
    async def test_vanished_pending_entry_is_resolved(self, alice, store, gateway):
        """Test a response whose pending entry disappeared still shows once"""
        gateway.hold_events()
        original = store.send_message

        async def send_after_local_reset(sender_id, receiver_id, content):
            alice.entries = []
            return await original(sender_id, receiver_id, content)

        store.send_message = send_after_local_reset
        confirmed = await alice.send_message("hello")
        store.send_message = original

        assert [m.id for m in alice.messages] == [confirmed.id]
        await gateway.release_events()
        assert [m.id for m in alice.messages] == [confirmed.id]

    @pytest.mark.asyncio
    async def test_send_confirmed_after_switching_peer_stays_out(self, alice, store, gateway, monkeypatch):
        """Test a send to bob confirmed after opening carol never lands in carol's chat"""
        gate = gate_sends(store, monkeypatch)
        sending = asyncio.create_task(alice.send_message("for bob"))
        await settle()

        await alice.open("carol")
        gate.set()
        confirmed = await sending

        assert confirmed.receiver_id == "bob"
        assert alice.peer_id == "carol"
        assert alice.messages == []
        assert not alice.is_sending
        assert [r["receiver_id"] for r in gateway.rows("messages")] == ["bob"]

    @pytest.mark.asyncio
    async def test_send_failing_after_switching_peer_keeps_new_chat(self, alice, store, monkeypatch):
        """Test a failed send to bob does not restore its text into carol's chat"""
        gate = gate_sends(store, monkeypatch, fail=True)
        sending = asyncio.create_task(alice.send_message("for bob"))
        await settle()

        await alice.open("carol")
        alice.set_input("draft for carol")
        gate.set()
        with pytest.raises(TransportError):
            await sending

        assert alice.peer_id == "carol"
        assert alice.messages == []
        assert alice.input_buffer == "draft for carol"
        assert alice.last_error is None
        assert not alice.is_sending

    @pytest.mark.asyncio
    async def test_send_confirmed_after_teardown_is_dropped(self, alice, store, bus, monkeypatch):
        """Test a send finishing after teardown publishes nothing"""
        events = []
        bus.subscribe(RefreshChatList, events.append)
        gate = gate_sends(store, monkeypatch)
        sending = asyncio.create_task(alice.send_message("late"))
        await settle()

        await alice.teardown()
        gate.set()
        await sending

        assert alice.state == SessionState.CLOSED
        assert not alice.is_sending
        assert [e.reason for e in events] == ["chat_closed"]

    @pytest.mark.asyncio
    async def test_send_publishes_chat_list_refresh(self, alice, bus):
        """Test other screens are told to reload their chat list"""
        events = []
        bus.subscribe(RefreshChatList, events.append)

        await alice.send_message("hi")

        assert events == [RefreshChatList(user_id="alice", reason="message_sent")]

    @pytest.mark.asyncio
    async def test_peer_message_is_marked_seen(self, alice, store):
        """Test realtime messages from the peer are marked seen in the background"""
        await store.send_message("bob", "alice", "are you there?")
        await settle()

        assert contents(alice) == ["are you there?"]
        assert await store.get_unread_count_for_friend("alice", "bob") == 0

    @pytest.mark.asyncio
    async def test_other_conversations_are_ignored(self, alice, store):
        """Test rows outside the pair never reach the history"""
        await store.send_message("carol", "alice", "not for this chat")
        assert alice.messages == []


# ============== Delete Tests ==============

class TestDelete:
    """Tests for delete and purge"""

    @pytest.mark.asyncio
    async def test_delete_is_confirmed_before_local_removal(self, alice, gateway):
        """Test a failed delete keeps the message on screen"""
        confirmed = await alice.send_message("keep me")
        gateway.fail_next("delete", "messages")

        with pytest.raises(TransportError):
            await alice.delete_message(confirmed.id)

        assert [m.id for m in alice.messages] == [confirmed.id]

    @pytest.mark.asyncio
    async def test_delete_removes_locally_but_not_from_peer_view(self, alice, bob):
        """Test deletes are not pushed to a peer that already rendered the row"""
        confirmed = await alice.send_message("oops")
        await settle()

        await alice.delete_message(confirmed.id)

        assert alice.messages == []
        assert [m.id for m in bob.messages] == [confirmed.id]
        await bob.refresh()
        assert bob.messages == []

    @pytest.mark.asyncio
    async def test_pending_message_cannot_be_deleted(self, alice):
        """Test deleting a temporary id is rejected"""
        with pytest.raises(SessionStateError):
            await alice.delete_message("temp_abc")

    @pytest.mark.asyncio
    async def test_delete_conversation(self, alice, store, bus):
        """Test purging empties the history here and on next fetch"""
        events = []
        bus.subscribe(RefreshChatList, events.append)
        await alice.send_message("a")
        await store.send_message("bob", "alice", "b")

        await alice.delete_conversation()

        assert alice.messages == []
        assert await store.get_messages("alice", "bob") == []
        assert events[-1].reason == "conversation_deleted"


# ============== Refresh Tests ==============

class TestRefresh:
    """Tests for pull-to-refresh"""

    @pytest.mark.asyncio
    async def test_refresh_picks_up_rows_missed_by_realtime(self, alice, gateway):
        """Test rows written without a realtime event appear after refresh"""
        gateway.seed("messages", {
            "sender_id": "bob", "receiver_id": "alice", "content": "missed", "seen": False,
        })

        await alice.refresh()

        assert contents(alice) == ["missed"]
        assert not alice.is_refreshing

    @pytest.mark.asyncio
    async def test_refresh_merges_by_identity(self, alice):
        """Test refresh never duplicates rows already shown"""
        await alice.send_message("one")
        await alice.send_message("two")

        await alice.refresh()
        await alice.refresh()

        assert contents(alice) == ["one", "two"]

    @pytest.mark.asyncio
    async def test_refresh_keeps_in_flight_repeat_message(self, alice, store, monkeypatch):
        """Test refreshing while resending the same text keeps the pending copy"""
        first = await alice.send_message("ok")
        gate = gate_sends(store, monkeypatch)
        sending = asyncio.create_task(alice.send_message("ok"))
        await settle()

        await alice.refresh()
        assert [(m.content, m.pending) for m in alice.messages] == [("ok", False), ("ok", True)]

        gate.set()
        second = await sending
        assert [m.id for m in alice.messages] == [first.id, second.id]
        assert not any(m.pending for m in alice.messages)

    @pytest.mark.asyncio
    async def test_refresh_failure_keeps_history(self, alice, gateway):
        """Test a failed refresh leaves the history on screen"""
        await alice.send_message("still here")
        gateway.fail_next("select", "messages")

        snapshot = await alice.refresh()

        assert snapshot.state == "ready"
        assert snapshot.last_error is not None
        assert contents(alice) == ["still here"]


# ============== Teardown Tests ==============

class TestTeardown:
    """Tests for releasing a conversation"""

    @pytest.mark.asyncio
    async def test_teardown_releases_channel(self, make_controller, gateway, store, bus):
        """Test teardown unsubscribes and stops delivering into the controller"""
        events = []
        bus.subscribe(RefreshChatList, events.append)
        controller = make_controller("alice")
        await controller.open("bob")

        await controller.teardown()
        await controller.teardown()
        await store.send_message("bob", "alice", "too late")

        assert controller.state == SessionState.CLOSED
        assert gateway.subscription_count == 0
        assert controller.messages == []
        assert [e.reason for e in events] == ["chat_closed"]
        with pytest.raises(SessionStateError):
            await controller.send_message("hi")
        with pytest.raises(SessionStateError):
            await controller.open("bob")

    @pytest.mark.asyncio
    async def test_context_manager_tears_down_on_error(self, make_controller, gateway):
        """Test scoped use releases the channel on every exit path"""
        with pytest.raises(RuntimeError):
            async with make_controller("alice") as controller:
                await controller.open("bob")
                raise RuntimeError("screen crashed")

        assert gateway.subscription_count == 0

    @pytest.mark.asyncio
    async def test_switching_peer_resubscribes(self, make_controller, gateway, store):
        """Test opening another peer drops the old channel and history"""
        await store.send_message("bob", "alice", "from bob")
        controller = make_controller("alice")
        await controller.open("bob")

        await controller.open("carol")

        assert gateway.subscription_count == 1
        assert controller.subscription.channel_name == "messages:alice:carol"
        assert controller.messages == []
        await controller.teardown()

    @pytest.mark.asyncio
    async def test_listener_handle_detaches(self, alice):
        """Test removed listeners stop receiving updates"""
        calls = []
        handle = alice.add_listener(lambda c: calls.append(c.state))
        handle.remove()

        await alice.send_message("quiet")

        assert calls == []
