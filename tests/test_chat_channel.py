import asyncio
import json

import pytest

from spliteasy.client.chat_channel import ChatChannel, PendingOperations, backoff_delay, open_chat_channel
from spliteasy.core.errors import AuthenticationError, NetworkError

GROUP_ID, USER_ID = 1, 10

class FakeSocket:
    """Stands in for a websockets connection: frames are fed through ``push``."""

    def __init__(self, *events):
        self.incoming = asyncio.Queue()
        self.sent = []
        self.close_code = None
        self._final_code = 1006
        for event in events:
            self.push(event)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False

    def __aiter__(self):
        return self

    async def __anext__(self):
        frame = await self.incoming.get()
        if frame is None:
            self.close_code = self._final_code
            raise StopAsyncIteration
        return frame

    def push(self, event):
        self.incoming.put_nowait(event if isinstance(event, str) else json.dumps(event))

    def drop(self, code=1006):
        self._final_code = code
        self.incoming.put_nowait(None)

    async def send(self, data):
        self.sent.append(json.loads(data))

    async def close(self, code=1000):
        self.close_code = code
        self.drop(code)

class FakeConnector:
    """Hands out queued sockets; once they run out every attempt is refused."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.urls = []

    def __call__(self, url):
        self.urls.append(url)
        outcome = self.outcomes.pop(0) if self.outcomes else OSError("connection refused")
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

class FakeApi:
    def __init__(self):
        self.messages = []
        self.list_calls = 0
        self.list_error = None
        self.send_error = None
        self.on_send = None
        self.listing_gate = None
        self.listing_held = False
        self._next_id = 1

    def add(self, content, sender_id=USER_ID + 1):
        message = {"id": self._next_id, "groupId": GROUP_ID, "senderId": sender_id, "content": content}
        self._next_id += 1
        self.messages.append(message)
        return message

    async def list_messages(self, group_id, limit=50):
        self.list_calls += 1
        if self.list_error is not None:
            raise self.list_error
        snapshot = [dict(m) for m in self.messages]
        if self.listing_gate is not None:
            # reply with the snapshot only once the test opens the gate
            gate, self.listing_gate = self.listing_gate, None
            self.listing_held = True
            await gate.wait()
        return snapshot

    def hold_next_listing(self):
        self.listing_gate = asyncio.Event()
        self.listing_held = False
        return self.listing_gate

    async def send_message(self, group_id, content):
        if self.send_error is not None:
            raise self.send_error
        message = self.add(content, sender_id=USER_ID)
        if self.on_send is not None:
            await self.on_send(message)
        return dict(message)

    async def delete_message(self, message_id):
        self.messages = [m for m in self.messages if m["id"] != message_id]
        return {"status": "deleted"}

async def until(predicate, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)

def make_channel(api, connector, **kwargs):
    options = {
        "connect": connector,
        "ping_interval": 0.02,
        "poll_interval": 0.02,
        "base_delay": 0.01,
        "max_delay": 0.04,
    }
    options.update(kwargs)
    return ChatChannel(api, "ws://test/api/v1/chat/ws", GROUP_ID, USER_ID, "tok", **options)

def ids(channel):
    return [m["id"] for m in channel.messages]

@pytest.fixture
def api():
    return FakeApi()

def test_backoff_sequence():
    assert [backoff_delay(n) for n in range(1, 7)] == [1, 2, 4, 8, 10, 10]

def test_pending_operations():
    pending = PendingOperations()
    op = pending.begin("hello")

    assert op.startswith("temp-")
    assert op in pending
    assert pending.resolve(op) == "hello"
    assert op not in pending
    assert pending.rollback(op) is None

def test_socket_url_carries_credentials(api):
    channel = make_channel(api, FakeConnector())
    assert channel.url == "ws://test/api/v1/chat/ws?groupId=1&userId=10&token=tok"

async def test_initial_load_and_live_events(api):
    api.add("earlier")
    sock = FakeSocket({"type": "connected", "groupId": GROUP_ID})

    async with make_channel(api, FakeConnector(sock)) as channel:
        assert ids(channel) == [1]
        await until(lambda: channel.connected)

        sock.push({"type": "new_message", "data": {"id": 2, "content": "live"}})
        await until(lambda: ids(channel) == [1, 2])

        # replayed event
        sock.push({"type": "new_message", "data": {"id": 2, "content": "live"}})
        sock.push("{ not json")
        sock.push({"type": "message_deleted", "data": {"messageId": 1}})
        await until(lambda: ids(channel) == [2])

async def test_socket_echo_before_rest_reply_is_not_doubled(api):
    sock = FakeSocket({"type": "connected"})
    channel = make_channel(api, FakeConnector(sock))

    async def echo_first(message):
        sock.push({"type": "new_message", "data": message})
        await until(lambda: message["id"] in ids(channel))

    api.on_send = echo_first

    async with channel:
        await until(lambda: channel.connected)
        sent = await channel.send("hi all")

        assert ids(channel) == [sent["id"]]
        assert not any(str(i).startswith("temp-") for i in ids(channel))

async def test_rest_reply_before_socket_echo_is_not_doubled(api):
    sock = FakeSocket({"type": "connected"})

    async with make_channel(api, FakeConnector(sock)) as channel:
        await until(lambda: channel.connected)
        sent = await channel.send("hi all")
        assert ids(channel) == [sent["id"]]

        sock.push({"type": "new_message", "data": sent})
        await asyncio.sleep(0.03)
        assert ids(channel) == [sent["id"]]

async def test_send_resolving_during_refresh_is_kept(api):
    api.add("earlier")
    sock = FakeSocket({"type": "connected"})

    async with make_channel(api, FakeConnector(sock), poll_interval=60) as channel:
        await until(lambda: channel.connected)

        gate = api.hold_next_listing()
        refresh = asyncio.create_task(channel.refresh())
        await until(lambda: api.listing_held)

        # the listing snapshot was taken before this send reached the server
        sent = await channel.send("on my way")
        gate.set()
        await refresh

        assert ids(channel) == [1, sent["id"]]

async def test_socket_events_during_refresh_survive_it(api):
    api.add("earlier")
    api.add("soon deleted")
    sock = FakeSocket({"type": "connected"})

    async with make_channel(api, FakeConnector(sock), poll_interval=60) as channel:
        await until(lambda: channel.connected)
        assert ids(channel) == [1, 2]

        gate = api.hold_next_listing()
        refresh = asyncio.create_task(channel.refresh())
        await until(lambda: api.listing_held)

        sock.push({"type": "new_message", "data": {"id": 3, "content": "live"}})
        sock.push({"type": "message_deleted", "data": {"messageId": 2}})
        await until(lambda: ids(channel) == [1, 3])

        gate.set()
        await refresh

        # stale snapshot still has 2 and lacks 3
        assert ids(channel) == [1, 3]

async def test_refresh_drops_messages_gone_from_server(api):
    api.add("kept")
    api.add("deleted elsewhere")

    async with make_channel(api, FakeConnector(FakeSocket({"type": "connected"})), poll_interval=60) as channel:
        assert ids(channel) == [1, 2]

        api.messages.pop()
        await channel.refresh()
        assert ids(channel) == [1]

async def test_failed_send_rolls_back(api):
    api.send_error = NetworkError("offline")
    api.add("before")

    async with make_channel(api, FakeConnector(FakeSocket({"type": "connected"}))) as channel:
        with pytest.raises(NetworkError):
            await channel.send("lost")

        assert ids(channel) == [1]

async def test_delete_removes_locally(api):
    api.add("mine")

    async with make_channel(api, FakeConnector(FakeSocket({"type": "connected"}))) as channel:
        await channel.delete(1)
        assert channel.messages == []
        assert api.messages == []

async def test_reconnects_with_backoff_then_gives_up_and_polls(api):
    connector = FakeConnector()

    async with make_channel(api, connector, max_attempts=5) as channel:
        await until(lambda: channel.gave_up)

        assert channel.reconnect_attempts == 5
        # first try plus five retries
        assert len(connector.urls) == 6
        assert not channel.connected

        api.add("sent while we were offline")
        await until(lambda: ids(channel) == [1])

        calls = len(connector.urls)
        await asyncio.sleep(0.05)
        assert len(connector.urls) == calls

async def test_connected_frame_resets_attempts(api):
    sock = FakeSocket({"type": "connected"})
    connector = FakeConnector(OSError("down"), OSError("still down"), sock)

    async with make_channel(api, connector) as channel:
        await until(lambda: channel.connected)
        assert channel.reconnect_attempts == 0
        assert len(connector.urls) == 3

async def test_no_polling_while_connected(api):
    async with make_channel(api, FakeConnector(FakeSocket({"type": "connected"}))) as channel:
        await until(lambda: channel.connected)
        before = api.list_calls
        await asyncio.sleep(0.08)
        assert api.list_calls == before

async def test_dropped_socket_falls_back_to_polling(api):
    sock = FakeSocket({"type": "connected"})

    async with make_channel(api, FakeConnector(sock)) as channel:
        await until(lambda: channel.connected)

        sock.drop(1006)
        await until(lambda: not channel.connected)

        api.add("polled")
        await until(lambda: ids(channel) == [1])

async def test_policy_violation_is_fatal(api):
    sock = FakeSocket()
    sock.drop(1008)
    connector = FakeConnector(sock)
    errors = []

    channel = make_channel(api, connector, on_error=errors.append)
    await channel.start()

    with pytest.raises(AuthenticationError):
        await asyncio.wait_for(channel.wait(), timeout=2)

    assert len(connector.urls) == 1
    assert isinstance(errors[0], AuthenticationError)
    await channel.close()

async def test_rejected_token_while_polling_is_fatal(api):
    channel = make_channel(api, FakeConnector(), max_attempts=0)
    await channel.start()

    api.list_error = AuthenticationError("token expired")

    with pytest.raises(AuthenticationError):
        await asyncio.wait_for(channel.wait(), timeout=2)
    await channel.close()

async def test_keepalive_ping_and_pong(api):
    sock = FakeSocket({"type": "connected"})

    async with make_channel(api, FakeConnector(sock)) as channel:
        await until(lambda: {"type": "ping"} in sock.sent)

        assert channel.last_pong is None
        sock.push({"type": "pong"})
        await until(lambda: channel.last_pong is not None)

async def test_close_stops_socket_and_timers(api):
    sock = FakeSocket({"type": "connected"})
    connector = FakeConnector(sock)
    channel = await open_chat_channel(
        api, "ws://test/api/v1/chat/ws", GROUP_ID, USER_ID, "tok",
        connect=connector, poll_interval=0.02, ping_interval=0.02,
    )
    await until(lambda: channel.connected)

    await channel.close()

    assert sock.close_code == 1000
    assert not channel.connected
    assert not channel._tasks

    calls = api.list_calls
    await asyncio.sleep(0.06)
    assert api.list_calls == calls
    assert len(connector.urls) == 1

    # wait() returns once closed
    await asyncio.wait_for(channel.wait(), timeout=1)

async def test_initial_load_failure_is_not_fatal(api):
    api.list_error = NetworkError("offline")

    async with make_channel(api, FakeConnector(FakeSocket({"type": "connected"}))) as channel:
        await until(lambda: channel.connected)
        assert channel.messages == []
        assert channel.error is None
