"""Shared fixtures: a scripted in-memory relay standing in for aiohttp."""
import asyncio
import json
from collections import namedtuple
from typing import Any, List, Optional

import aiohttp
import pytest

from relaychat.core.config import RelaySettings
from relaychat.services.relay.endpoint import RelayEndpointConfig

RELAY_URL = "wss://relay.test/socket"

WSFrame = namedtuple("WSFrame", ["type", "data", "extra"])


class FakeWebSocket:
    """Server side of one websocket: tests push frames in and read frames out."""

    def __init__(self, url: str):
        self.url = url
        self.closed = False
        self.close_code: Optional[int] = None
        self.sent_frames: List[str] = []
        self._inbox: asyncio.Queue = asyncio.Queue()
        self._outbox: asyncio.Queue = asyncio.Queue()

    # client-facing aiohttp surface

    async def send_str(self, data: str) -> None:
        if self.closed:
            raise ConnectionResetError("socket is closed")
        self.sent_frames.append(data)
        await self._outbox.put(data)

    async def receive(self):
        if self.closed and self._inbox.empty():
            return WSFrame(aiohttp.WSMsgType.CLOSED, None, None)
        msg = await self._inbox.get()
        if msg.type == aiohttp.WSMsgType.CLOSE:
            self.closed = True
            self.close_code = msg.data
        return msg

    async def close(self, code: int = 1000, message: bytes = b"") -> bool:
        if self.closed:
            return False
        self.closed = True
        self.close_code = code
        self._inbox.put_nowait(WSFrame(aiohttp.WSMsgType.CLOSED, None, None))
        return True

    def exception(self):
        return None

    # test-facing helpers

    def server_send(self, frame: Any) -> None:
        self._inbox.put_nowait(WSFrame(aiohttp.WSMsgType.TEXT, json.dumps(frame), None))

    def server_close(self, code: int = 1000, reason: str = "bye") -> None:
        self._inbox.put_nowait(WSFrame(aiohttp.WSMsgType.CLOSE, code, reason))

    def server_error(self) -> None:
        self._inbox.put_nowait(WSFrame(aiohttp.WSMsgType.ERROR, None, None))

    async def next_frame(self, timeout: float = 1.0) -> list:
        raw = await asyncio.wait_for(self._outbox.get(), timeout)
        return json.loads(raw)

    def reply(self, frame: list, status: str = "ok", response: Any = None) -> None:
        """Answer a v2 frame [join_ref, ref, topic, event, payload] with phx_reply."""
        join_ref, ref, topic, _event, _payload = frame
        self.server_send([join_ref, ref, topic, "phx_reply",
                          {"status": status, "response": response if response is not None else {}}])

    def broadcast(self, topic: str, event: str, payload: dict, join_ref: Optional[str] = None) -> None:
        self.server_send([join_ref, None, topic, event, payload])


class FakeClientSession:
    """Stands in for aiohttp.ClientSession.ws_connect."""

    def __init__(self):
        self.closed = False
        self.connect_calls: List[str] = []
        self.sockets: List[FakeWebSocket] = []
        self.fail_with: Optional[BaseException] = None
        self._accepted: asyncio.Queue = asyncio.Queue()

    async def ws_connect(self, url: str, **kwargs) -> FakeWebSocket:
        self.connect_calls.append(url)
        if self.fail_with is not None:
            raise self.fail_with
        ws = FakeWebSocket(url)
        self.sockets.append(ws)
        self._accepted.put_nowait(ws)
        return ws

    async def accept(self, timeout: float = 1.0) -> FakeWebSocket:
        """Wait for the client's next connection."""
        return await asyncio.wait_for(self._accepted.get(), timeout)

    async def close(self) -> None:
        self.closed = True


class FakeIdentity:
    def __init__(self, public_key: Optional[bytes] = bytes([0x0A, 0xB1]), exists: Optional[bool] = None):
        self.public_key = public_key
        self._exists = public_key is not None if exists is None else exists

    async def exists(self) -> bool:
        return self._exists


class RecordingProcessor:
    def __init__(self):
        self.received: List[dict] = []

    def receive(self, payload: dict) -> None:
        self.received.append(payload)


class RecordingDispatcher:
    def __init__(self):
        self.pings = 0

    async def ping_all(self) -> None:
        self.pings += 1


class RecordingNotifier:
    def __init__(self):
        self.events: List[tuple] = []

    def info(self, message: str) -> None:
        self.events.append(("info", message))

    def success(self, message: str) -> None:
        self.events.append(("success", message))

    def error(self, message: str) -> None:
        self.events.append(("error", message))

    def levels(self) -> List[str]:
        return [level for level, _ in self.events]


async def until(predicate, timeout: float = 1.0) -> None:
    """Yield to the loop until predicate() holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.001)


@pytest.fixture
def fake_session():
    return FakeClientSession()


@pytest.fixture
def settings():
    return RelaySettings(
        relay_urls=[RELAY_URL],
        push_timeout=0.2,
        heartbeat_interval=30.0,
        connect_timeout=1.0,
    )


@pytest.fixture
def relays(settings):
    return RelayEndpointConfig(settings)


@pytest.fixture
def identity():
    return FakeIdentity()


@pytest.fixture
def processor():
    return RecordingProcessor()


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def notifier():
    return RecordingNotifier()
