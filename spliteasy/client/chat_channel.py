"""
Realtime chat for one group.

The channel keeps ``messages`` in arrival order, fed by three sources: the
REST listing (initial load and polling), socket events and the caller's own
sends. Duplicates are suppressed by message id.

Socket lifecycle: on an abnormal close the channel reconnects after 1s, 2s,
4s, 8s, 10s and then stops trying. While it is not connected the listing is
polled instead. A policy-violation close (bad token, not a member) is fatal
and is never retried. ``close()`` stops every task it started.
"""
import asyncio
import json
import logging
import uuid
from urllib.parse import urlencode

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from spliteasy.core.errors import AuthenticationError, NetworkError

logger = logging.getLogger(__name__)

CLOSE_NORMAL = 1000
CLOSE_ABNORMAL = 1006
CLOSE_POLICY_VIOLATION = 1008

def backoff_delay(attempt: int, base: float = 1.0, cap: float = 10.0) -> float:
    """Delay before reconnect ``attempt`` (1-based): base, 2*base, 4*base ... capped."""
    return min(base * 2 ** (attempt - 1), cap)

class PendingOperations:
    """In-flight optimistic writes keyed by a client-side correlation id."""

    def __init__(self, prefix: str = "temp-"):
        self.prefix = prefix
        self._ops: dict[str, object] = {}

    def begin(self, payload) -> str:
        correlation_id = f"{self.prefix}{uuid.uuid4().hex}"
        self._ops[correlation_id] = payload
        return correlation_id

    def resolve(self, correlation_id: str):
        return self._ops.pop(correlation_id, None)

    # same bookkeeping; the caller undoes its local change
    rollback = resolve

    def __contains__(self, correlation_id) -> bool:
        return correlation_id in self._ops

    def __len__(self) -> int:
        return len(self._ops)

class _RefreshWindow:
    """Ids added or removed locally while one listing request is in flight."""

    def __init__(self):
        self.added = set()
        self.removed = set()

class ChatChannel:
    def __init__(
        self,
        api,
        ws_url: str,
        group_id: int,
        user_id: int,
        token: str,
        *,
        connect=None,
        ping_interval: float = 30.0,
        poll_interval: float = 3.0,
        base_delay: float = 1.0,
        max_delay: float = 10.0,
        max_attempts: int = 5,
        on_error=None,
    ):
        self.api = api
        self.ws_url = ws_url
        self.group_id = group_id
        self.user_id = user_id
        self.token = token

        self.ping_interval = ping_interval
        self.poll_interval = poll_interval
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.max_attempts = max_attempts
        self.on_error = on_error

        self.messages: list[dict] = []
        self.connected = False
        self.reconnect_attempts = 0
        self.gave_up = False
        self.last_pong: float | None = None
        self.error: Exception | None = None

        self._connect = connect or websockets.connect
        self._pending = PendingOperations()
        self._refreshes: list[_RefreshWindow] = []
        self._tasks: set[asyncio.Task] = set()
        self._ws = None
        self._closed = False
        self._done = asyncio.Event()

    @property
    def url(self) -> str:
        query = urlencode({"groupId": self.group_id, "userId": self.user_id, "token": self.token})
        return f"{self.ws_url}?{query}"

    # lifecycle

    async def start(self):
        try:
            await self.refresh()
        except NetworkError:
            logger.warning("initial chat load for group %s failed; polling will retry", self.group_id)

        self._spawn(self._run_socket())
        self._spawn(self._poll())
        return self

    async def close(self):
        if self._closed:
            return
        self._closed = True

        if self._ws is not None:
            try:
                await self._ws.close(code=CLOSE_NORMAL)
            except (OSError, WebSocketException):
                logger.debug("chat socket already gone for group %s", self.group_id)

        current = asyncio.current_task()
        tasks = [t for t in self._tasks if t is not current]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        self.connected = False
        self._done.set()
        logger.info("chat channel for group %s closed", self.group_id)

    async def wait(self):
        """Block until the channel is closed or fails; re-raises a fatal error."""
        await self._done.wait()
        if self.error is not None:
            raise self.error

    async def __aenter__(self):
        return await self.start()

    async def __aexit__(self, *exc_info):
        await self.close()

    # messages

    async def refresh(self):
        """
        Replace the list with the server's latest page.

        The listing is a snapshot from before the await; anything the socket or
        a send added while it was in flight is kept, and anything deleted in the
        meantime stays deleted.
        """
        window = _RefreshWindow()
        self._refreshes.append(window)
        try:
            server_messages = await self.api.list_messages(self.group_id)
        finally:
            self._refreshes.remove(window)

        merged = [m for m in server_messages if m["id"] not in window.removed]
        known = {m["id"] for m in merged}
        for m in self.messages:
            if m["id"] in known:
                continue
            if m["id"] in self._pending or m["id"] in window.added:
                merged.append(m)
        self.messages = merged

    async def send(self, content: str) -> dict:
        """
        Send through the REST API with an optimistic local entry.

        The temporary entry is swapped for the server's message on success and
        removed on failure; failures are re-raised, never retried.
        """
        temp_id = self._pending.begin(content)
        self.messages.append({
            "id": temp_id,
            "groupId": self.group_id,
            "senderId": self.user_id,
            "content": content,
            "createdAt": None,
            "pending": True,
        })

        try:
            message = await self.api.send_message(self.group_id, content)
        except Exception:
            self._pending.rollback(temp_id)
            self._remove_message(temp_id)
            raise

        self._pending.resolve(temp_id)
        self._settle_temp(temp_id, message)
        return message

    async def delete(self, message_id: int):
        await self.api.delete_message(message_id)
        self._remove_message(message_id)

    def _settle_temp(self, temp_id: str, message: dict):
        self._note_added(message["id"])
        if self._index_of(message["id"]) is not None:
            # the socket delivered it first
            self._remove_message(temp_id)
            return

        idx = self._index_of(temp_id)
        if idx is None:
            self.messages.append(message)
        else:
            self.messages[idx] = message

    def _note_added(self, message_id):
        for window in self._refreshes:
            window.added.add(message_id)

    def _index_of(self, message_id):
        for i, m in enumerate(self.messages):
            if m.get("id") == message_id:
                return i
        return None

    def _add_message(self, message: dict) -> bool:
        message_id = message.get("id")
        if message_id is None or self._index_of(message_id) is not None:
            return False
        self.messages.append(message)
        self._note_added(message_id)
        return True

    def _remove_message(self, message_id) -> bool:
        for window in self._refreshes:
            window.removed.add(message_id)
        idx = self._index_of(message_id)
        if idx is None:
            return False
        del self.messages[idx]
        return True

    # socket

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run_socket(self):
        while not self._closed:
            code = await self._connect_once()

            if self._closed:
                return

            if code == CLOSE_NORMAL:
                logger.info("chat socket for group %s closed normally", self.group_id)
                return

            if code == CLOSE_POLICY_VIOLATION:
                self._fail(AuthenticationError("Chat connection rejected by the server"))
                return

            if self.reconnect_attempts >= self.max_attempts:
                self.gave_up = True
                logger.warning(
                    "chat socket for group %s gave up after %d attempts; polling only",
                    self.group_id, self.reconnect_attempts
                )
                return

            self.reconnect_attempts += 1
            delay = backoff_delay(self.reconnect_attempts, self.base_delay, self.max_delay)
            logger.info(
                "chat socket for group %s closed (%s); reconnecting in %.1fs (attempt %d/%d)",
                self.group_id, code, delay, self.reconnect_attempts, self.max_attempts
            )
            await asyncio.sleep(delay)

    async def _connect_once(self) -> int:
        keepalive = None
        try:
            async with self._connect(self.url) as ws:
                self._ws = ws
                keepalive = self._spawn(self._keepalive(ws))

                async for raw in ws:
                    self._handle_frame(raw)

                return ws.close_code if ws.close_code is not None else CLOSE_ABNORMAL
        except ConnectionClosed as e:
            return e.rcvd.code if e.rcvd is not None else CLOSE_ABNORMAL
        except (OSError, WebSocketException, asyncio.TimeoutError) as e:
            logger.debug("chat socket for group %s failed: %s", self.group_id, e)
            return CLOSE_ABNORMAL
        finally:
            self.connected = False
            self._ws = None
            if keepalive is not None:
                keepalive.cancel()

    async def _keepalive(self, ws):
        while True:
            await asyncio.sleep(self.ping_interval)
            if not self.connected:
                continue
            try:
                await ws.send(json.dumps({"type": "ping"}))
            except (OSError, WebSocketException):
                return

    def _handle_frame(self, raw):
        try:
            event = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("ignoring malformed chat frame for group %s", self.group_id)
            return

        kind = event.get("type")
        data = event.get("data") or {}

        if kind == "new_message":
            self._add_message(data)
        elif kind == "message_deleted":
            self._remove_message(data.get("messageId"))
        elif kind == "connected":
            self.connected = True
            self.reconnect_attempts = 0
            self.gave_up = False
        elif kind == "pong":
            self.last_pong = asyncio.get_running_loop().time()

    async def _poll(self):
        while True:
            await asyncio.sleep(self.poll_interval)
            if self.connected:
                continue
            try:
                await self.refresh()
            except NetworkError as e:
                logger.debug("chat poll for group %s failed: %s", self.group_id, e)
            except AuthenticationError as e:
                self._fail(e)
                return

    def _fail(self, error: Exception):
        self.error = error
        logger.error("chat channel for group %s failed: %s", self.group_id, error)

        current = asyncio.current_task()
        for task in list(self._tasks):
            if task is not current:
                task.cancel()

        self.connected = False
        self._done.set()
        if self.on_error is not None:
            self.on_error(error)

async def open_chat_channel(api, ws_url: str, group_id: int, user_id: int, token: str, **kwargs) -> ChatChannel:
    """Start a channel; the caller owns it and must ``close()`` it."""
    channel = ChatChannel(api, ws_url, group_id, user_id, token, **kwargs)
    return await channel.start()
