"""
REST Gateway and Polling Realtime Tests
HTTP traffic is served by httpx.MockTransport; no network access.
"""
import pytest
import asyncio
import json

import httpx

from socialsync.exceptions import TransportError
from socialsync.gateway import realtime as realtime_module
from socialsync.gateway.base import Embed, Order, RealtimeSubscription
from socialsync.gateway.filters import Eq, between
from socialsync.gateway.realtime import PollingRealtime, _PollingChannel
from socialsync.gateway.rest import RestGateway, parse_content_range, render_select
from socialsync.services.message_store import MessageStore

BASE_URL = "http://backend.test"

MESSAGE_ROW = {
    "id": "m1",
    "sender_id": "alice",
    "receiver_id": "bob",
    "content": "hello",
    "created_at": "2025-01-01T12:00:00+00:00",
    "seen": False,
    "sender_profile": {"id": "alice", "username": "alice"},
    "receiver_profile": {"id": "bob", "username": "bob", "full_name": "Bob Builder"},
}


class Backend:
    """Records requests and answers with a canned response"""

    def __init__(self):
        self.requests = []
        self.error = None
        self.reply(200, json=[])

    def reply(self, status_code: int, **kwargs):
        self._reply = (status_code, kwargs)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        status_code, kwargs = self._reply
        return httpx.Response(status_code, **kwargs)

    @property
    def last(self) -> httpx.Request:
        return self.requests[-1]


@pytest.fixture
def backend():
    return Backend()


@pytest.fixture
async def rest(backend):
    gw = RestGateway(
        BASE_URL,
        anon_key="anon-key",
        access_token="user-token",
        transport=httpx.MockTransport(backend),
    )
    yield gw
    await gw.aclose()


# ============== Rendering Tests ==============

class TestRendering:
    """Tests for query rendering helpers"""

    def test_render_select_with_embeds(self):
        """Test embeds render through their foreign key constraint"""
        embeds = (
            Embed("sender_profile", "profiles", "sender_id"),
            Embed("receiver_profile", "profiles", "receiver_id"),
        )
        assert render_select("messages", embeds) == (
            "*,sender_profile:profiles!messages_sender_id_fkey(*),"
            "receiver_profile:profiles!messages_receiver_id_fkey(*)"
        )
        assert render_select("likes", ()) == "*"

    def test_parse_content_range(self):
        """Test totals are read from the Content-Range header"""
        assert parse_content_range("0-24/3573") == 3573
        assert parse_content_range("*/0") == 0
        assert parse_content_range("*/*") == 0
        assert parse_content_range(None) == 0


# ============== Request Shape Tests ==============

class TestRestGateway:
    """Tests for the HTTP requests the gateway issues"""

    @pytest.mark.asyncio
    async def test_select_request(self, rest, backend):
        """Test select sends filters, order, limit and auth headers"""
        backend.reply(200, json=[{"id": "p1"}])

        rows = await rest.select(
            "posts",
            where=Eq("user_id", "alice"),
            order=Order("created_at", ascending=False),
            limit=5,
        )

        request = backend.last
        assert rows == [{"id": "p1"}]
        assert request.method == "GET"
        assert request.url.path == "/rest/v1/posts"
        assert request.url.params["select"] == "*"
        assert request.url.params["user_id"] == "eq.alice"
        assert request.url.params["order"] == "created_at.desc"
        assert request.url.params["limit"] == "5"
        assert request.headers["apikey"] == "anon-key"
        assert request.headers["authorization"] == "Bearer user-token"

    @pytest.mark.asyncio
    async def test_select_conversation_filter(self, rest, backend):
        """Test a two-way conversation renders as one or= parameter"""
        await rest.select("messages", where=between("alice", "bob"))

        assert backend.last.url.params["or"] == (
            "(and(sender_id.eq.alice,receiver_id.eq.bob),and(sender_id.eq.bob,receiver_id.eq.alice))"
        )

    @pytest.mark.asyncio
    async def test_insert_returns_representation(self, rest, backend):
        """Test insert asks for the created row and returns it"""
        backend.reply(201, json=[MESSAGE_ROW])

        row = await rest.insert("messages", {"sender_id": "alice", "receiver_id": "bob", "content": "hello"})

        request = backend.last
        assert row["id"] == "m1"
        assert request.method == "POST"
        assert request.headers["prefer"] == "return=representation"
        assert json.loads(request.content)["content"] == "hello"

    @pytest.mark.asyncio
    async def test_empty_insert_representation_is_an_error(self, rest, backend):
        """Test a missing created row surfaces as TransportError"""
        backend.reply(201, json=[])

        with pytest.raises(TransportError):
            await rest.insert("messages", {"content": "x"})

    @pytest.mark.asyncio
    async def test_update_and_delete(self, rest, backend):
        """Test update patches and delete removes by filter"""
        backend.reply(200, json=[{"id": "fr1", "status": "accepted"}])
        rows = await rest.update("friends", {"status": "accepted"}, where=Eq("id", "fr1"))
        assert rows[0]["status"] == "accepted"
        assert backend.last.method == "PATCH"
        assert backend.last.url.params["id"] == "eq.fr1"

        backend.reply(204)
        await rest.delete("messages", where=Eq("id", "m1"))
        assert backend.last.method == "DELETE"
        assert backend.last.url.params["id"] == "eq.m1"

    @pytest.mark.asyncio
    async def test_count_reads_content_range(self, rest, backend):
        """Test count issues HEAD with an exact count preference"""
        backend.reply(200, headers={"Content-Range": "0-2/3"})

        total = await rest.count("messages", where=Eq("seen", False))

        assert total == 3
        assert backend.last.method == "HEAD"
        assert backend.last.headers["prefer"] == "count=exact"
        assert backend.last.url.params["seen"] == "eq.false"

    @pytest.mark.asyncio
    async def test_rpc_path_and_body(self, rest, backend):
        """Test procedures are posted under /rpc"""
        backend.reply(204)

        await rest.rpc("mark_messages_as_seen", {"p_sender_id": "bob", "p_receiver_id": "alice"})

        assert backend.last.url.path == "/rest/v1/rpc/mark_messages_as_seen"
        assert json.loads(backend.last.content) == {"p_sender_id": "bob", "p_receiver_id": "alice"}

    @pytest.mark.asyncio
    async def test_error_status_raises_transport_error(self, rest, backend):
        """Test 4xx/5xx responses map to TransportError with status and detail"""
        backend.reply(409, text="duplicate key")

        with pytest.raises(TransportError) as exc_info:
            await rest.insert("messages", {"content": "x"})

        assert exc_info.value.status_code == 409
        assert exc_info.value.operation == "insert"
        assert "duplicate key" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_connection_failure_raises_transport_error(self, rest, backend):
        """Test network errors map to TransportError without a status"""
        backend.error = httpx.ConnectError("connection refused")

        with pytest.raises(TransportError) as exc_info:
            await rest.select("messages")

        assert exc_info.value.status_code is None

    @pytest.mark.asyncio
    async def test_invalid_json_raises_transport_error(self, rest, backend):
        """Test an unreadable body is a transport failure"""
        backend.reply(200, text="<html>oops</html>")

        with pytest.raises(TransportError):
            await rest.select("messages")

    @pytest.mark.asyncio
    async def test_message_store_over_rest(self, rest, backend):
        """Test the message store parses rows served over HTTP"""
        backend.reply(201, json=[MESSAGE_ROW])

        message = await MessageStore(rest).send_message("alice", "bob", "hello")

        assert message.id == "m1"
        assert message.receiver_profile.display_name == "Bob Builder"
        sent = json.loads(backend.last.content)
        assert sent == {"sender_id": "alice", "receiver_id": "bob", "content": "hello", "seen": False}
        assert "sender_profile:profiles!messages_sender_id_fkey(*)" in backend.last.url.params["select"]


# ============== Polling Realtime Tests ==============

async def wait_for(condition, timeout=1.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not condition() and loop.time() < deadline:
        await asyncio.sleep(0.01)


class TestPollingRealtime:
    """Tests for INSERT feeds approximated by polling"""

    @pytest.mark.asyncio
    async def test_delivers_new_matching_rows_once(self, gateway, clock):
        """Test rows after the cursor are delivered once, filtered"""
        gateway.seed("messages", {"sender_id": "bob", "receiver_id": "alice", "content": "before"})
        realtime = PollingRealtime(gateway, interval=0.01, clock=clock)
        received = []
        subscription = await realtime.subscribe(
            "incoming-messages:alice", "messages", received.append, where=Eq("receiver_id", "alice"),
        )

        gateway.seed(
            "messages",
            {"sender_id": "bob", "receiver_id": "alice", "content": "after"},
            {"sender_id": "alice", "receiver_id": "bob", "content": "not mine"},
        )
        await wait_for(lambda: received)
        await asyncio.sleep(0.05)

        assert [r["content"] for r in received] == ["after"]
        await subscription.unsubscribe()
        assert realtime.channel_count == 0

    @pytest.mark.asyncio
    async def test_poll_failure_keeps_channel_alive(self, gateway, clock):
        """Test a failed poll is retried on the next tick"""
        gateway.fail_next("select", "messages")
        realtime = PollingRealtime(gateway, interval=0.01, clock=clock)
        received = []
        await realtime.subscribe("messages:alice:bob", "messages", received.append)

        gateway.seed("messages", {"sender_id": "bob", "receiver_id": "alice", "content": "eventually"})
        await wait_for(lambda: received)

        assert [r["content"] for r in received] == ["eventually"]
        await realtime.stop()
        assert realtime.channel_count == 0

    @pytest.mark.asyncio
    async def test_unsubscribed_channel_stops_polling(self, gateway, clock):
        """Test no selects run after unsubscribe"""
        realtime = PollingRealtime(gateway, interval=0.01, clock=clock)
        subscription = await realtime.subscribe("messages:alice:bob", "messages", lambda row: None)
        await wait_for(lambda: gateway.call_count("select", "messages") > 0)

        await subscription.unsubscribe()
        polls = gateway.call_count("select", "messages")
        await asyncio.sleep(0.05)

        assert gateway.call_count("select", "messages") == polls

    def test_seen_ids_forget_oldest_first(self, gateway, clock, monkeypatch):
        """Test the delivered-id memory evicts in delivery order"""
        monkeypatch.setattr(realtime_module, "MAX_SEEN_IDS", 3)
        subscription = RealtimeSubscription("messages:alice:bob", "messages", lambda row: None)
        channel = _PollingChannel(gateway, subscription, 10.0, clock())

        for row_id in ["m1", "m2", "m3", "m4", "m5"]:
            channel._remember(row_id)

        assert channel._seen == {"m3", "m4", "m5"}
        assert list(channel._seen_order) == ["m3", "m4", "m5"]
