"""
Relay WebSocket Session

Owns the transport connection to one relay and multiplexes channels over it.

Connection flow:
1. connect() spawns a task that opens <endpoint>/websocket?uid=<hex>&vsn=<vsn>
2. Open hooks fire and frames buffered while connecting are written
3. Receive loop decodes frames and routes them to member channels
4. Heartbeat on topic "phoenix"; an unanswered heartbeat drops the connection
5. Any close (explicit, server, error, heartbeat) errors joined channels,
   then fires close hooks exactly once
"""
import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import aiohttp

from relaychat.constants import (
    DEFAULT_CONNECT_TIMEOUT,
    DEFAULT_HEARTBEAT_INTERVAL,
    DEFAULT_PUSH_TIMEOUT,
    DEFAULT_VSN,
    HEARTBEAT_EVENT,
    HEARTBEAT_TOPIC,
    WS_CLOSE_ABNORMAL,
    WS_CLOSE_NORMAL,
)
from relaychat.core.logging import get_logger

from .channel import ChannelSubscription
from .endpoint import build_socket_url
from .hooks import HookList
from .protocol import Message, Serializer

logger = get_logger(__name__)


class SocketState(str, Enum):
    CLOSED = "closed"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"


@dataclass(frozen=True)
class SocketCloseEvent:
    """Why a socket session ended. clean is True only for disconnect()."""
    code: int
    reason: Optional[str] = None
    clean: bool = False


class SocketSession:
    """WebSocket connection to a relay speaking the Phoenix channels protocol"""

    def __init__(
        self,
        endpoint: str,
        params: Optional[Dict[str, str]] = None,
        *,
        vsn: str = DEFAULT_VSN,
        timeout: float = DEFAULT_PUSH_TIMEOUT,
        heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        """
        Args:
            endpoint: Relay socket endpoint (e.g. 'wss://relay.example/socket')
            params: Query parameters sent with the handshake
            vsn: Serializer version, '1.0.0' or '2.0.0'
            timeout: Default timeout for channel joins and pushes, in seconds
            heartbeat_interval: Seconds between heartbeats
            connect_timeout: Seconds allowed for the websocket handshake
            session: Shared aiohttp session. When omitted the socket owns one.
        """
        self.endpoint = endpoint
        self.params = dict(params or {})
        self.url = build_socket_url(endpoint, self.params, vsn)
        self.serializer = Serializer(vsn)
        self.timeout = timeout
        self.heartbeat_interval = heartbeat_interval
        self.connect_timeout = connect_timeout

        self.session = session
        self._owns_session = session is None
        self.ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self.state = SocketState.CLOSED
        self.channels: List[ChannelSubscription] = []

        self._ref = 0
        self._pending_heartbeat_ref: Optional[str] = None
        self._outbox: asyncio.Queue = asyncio.Queue()

        self._run_task: Optional[asyncio.Task] = None
        self._writer_task: Optional[asyncio.Task] = None
        self._heartbeat_task: Optional[asyncio.Task] = None
        self._closed = asyncio.Event()
        self._closed.set()

        self._open_hooks = HookList("socket.open")
        self._error_hooks = HookList("socket.error")
        self._close_hooks = HookList("socket.close")
        self._message_hooks = HookList("socket.message")

    # =========================================================================
    # Hooks
    # =========================================================================

    def on_open(self, callback: Callable[[], Any]) -> None:
        self._open_hooks.add(callback)

    def on_error(self, callback: Callable[[BaseException], Any]) -> None:
        self._error_hooks.add(callback)

    def on_close(self, callback: Callable[[SocketCloseEvent], Any]) -> None:
        self._close_hooks.add(callback)

    def on_message(self, callback: Callable[[Message], Any]) -> None:
        self._message_hooks.add(callback)

    # =========================================================================
    # Connection Management
    # =========================================================================

    def make_ref(self) -> str:
        self._ref += 1
        return str(self._ref)

    def is_connected(self) -> bool:
        return self.state is SocketState.OPEN and self.ws is not None and not self.ws.closed

    def connect(self) -> None:
        """Start the handshake in the background. Outcome surfaces through hooks."""
        if self.state in (SocketState.CONNECTING, SocketState.OPEN):
            return
        self.state = SocketState.CONNECTING
        self._closed.clear()
        self._run_task = asyncio.create_task(self._run())

    async def disconnect(self, code: int = WS_CLOSE_NORMAL, reason: Optional[str] = None) -> None:
        """Close the connection. Safe to call repeatedly."""
        await self._shutdown(code, reason, clean=True)

    async def wait_closed(self) -> None:
        await self._closed.wait()

    async def _run(self):
        try:
            if self.session is None or self.session.closed:
                timeout = aiohttp.ClientTimeout(total=None, connect=self.connect_timeout)
                self.session = aiohttp.ClientSession(timeout=timeout)
                self._owns_session = True

            logger.info("[Socket] Connecting...", url=self.url)
            self.ws = await asyncio.wait_for(
                self.session.ws_connect(self.url, autoping=True),
                timeout=self.connect_timeout,
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("[Socket] Connection failed", url=self.url, error=str(e) or type(e).__name__)
            await self._error_hooks.fire(e)
            await self._shutdown(WS_CLOSE_ABNORMAL, str(e) or type(e).__name__, clean=False)
            return

        if self.state is not SocketState.CONNECTING:
            # disconnect() raced the handshake
            await self.ws.close()
            return

        self.state = SocketState.OPEN
        logger.info("[Socket] Connected", url=self.url)

        self._writer_task = asyncio.create_task(self._write_loop())
        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())
        await self._open_hooks.fire()

        await self._receive_loop()

    async def _receive_loop(self):
        code, reason = WS_CLOSE_ABNORMAL, None
        try:
            while self.is_connected():
                msg = await self.ws.receive()

                if msg.type == aiohttp.WSMsgType.TEXT:
                    await self._handle_text(msg.data)

                elif msg.type == aiohttp.WSMsgType.BINARY:
                    logger.warning("[Socket] Ignoring binary frame", size=len(msg.data))

                elif msg.type in (aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSING,
                                  aiohttp.WSMsgType.CLOSED):
                    code = self.ws.close_code or (msg.data if isinstance(msg.data, int) else WS_CLOSE_NORMAL)
                    reason = msg.extra if isinstance(msg.extra, str) else None
                    logger.warning("[Socket] Connection closed by server", code=code, reason=reason)
                    break

                elif msg.type == aiohttp.WSMsgType.ERROR:
                    error = self.ws.exception() or aiohttp.ClientError("websocket error")
                    logger.error("[Socket] WebSocket error", error=str(error))
                    await self._error_hooks.fire(error)
                    reason = str(error)
                    break

        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("[Socket] Receive error", error=str(e), exc_info=True)
            await self._error_hooks.fire(e)
            reason = str(e)

        await self._shutdown(code, reason, clean=False)

    async def _handle_text(self, raw: str):
        try:
            message = self.serializer.decode(raw)
        except ValueError as e:
            logger.warning("[Socket] Undecodable frame", error=str(e))
            return

        if message.topic == HEARTBEAT_TOPIC and message.ref == self._pending_heartbeat_ref:
            self._pending_heartbeat_ref = None

        logger.debug("[Socket] Received", topic=message.topic, push_event=message.event, ref=message.ref)
        await self._message_hooks.fire(message)

        for channel in list(self.channels):
            if channel.is_member(message):
                await channel.trigger(message)

    async def _write_loop(self):
        while True:
            data = await self._outbox.get()
            try:
                await self.ws.send_str(data)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("[Socket] Send failed", error=str(e))
                await self._error_hooks.fire(e)
                await self._shutdown(WS_CLOSE_ABNORMAL, str(e), clean=False)
                return

    async def _heartbeat_loop(self):
        while self.is_connected():
            await asyncio.sleep(self.heartbeat_interval)
            if not self.is_connected():
                return
            if self._pending_heartbeat_ref is not None:
                logger.warning("[Socket] Heartbeat timeout, dropping connection",
                               ref=self._pending_heartbeat_ref)
                await self._shutdown(WS_CLOSE_NORMAL, "heartbeat timeout", clean=False)
                return
            self._pending_heartbeat_ref = self.make_ref()
            self.push(Message(topic=HEARTBEAT_TOPIC, event=HEARTBEAT_EVENT, payload={},
                              ref=self._pending_heartbeat_ref))

    async def _shutdown(self, code: int, reason: Optional[str], clean: bool):
        if self.state in (SocketState.CLOSED, SocketState.CLOSING):
            return
        self.state = SocketState.CLOSING
        logger.info("[Socket] Disconnecting...", code=code, reason=reason, clean=clean)

        current = asyncio.current_task()
        stopping = []
        for task in (self._heartbeat_task, self._writer_task, self._run_task):
            if task is not None and task is not current and not task.done():
                task.cancel()
                stopping.append(task)
        if stopping:
            await asyncio.gather(*stopping, return_exceptions=True)

        if self.ws is not None and not self.ws.closed:
            try:
                await self.ws.close(code=code, message=(reason or "").encode())
            except Exception as e:
                logger.warning("[Socket] Error closing websocket", error=str(e))

        if self._owns_session and self.session is not None and not self.session.closed:
            await self.session.close()

        self.state = SocketState.CLOSED
        self._pending_heartbeat_ref = None
        self._outbox = asyncio.Queue()
        logger.info("[Socket] Disconnected", code=code, clean=clean)

        for channel in list(self.channels):
            await channel.socket_closed()
        await self._close_hooks.fire(SocketCloseEvent(code=code, reason=reason, clean=clean))
        self._closed.set()

    # =========================================================================
    # Channels
    # =========================================================================

    def channel(self, topic: str, params: Optional[Dict[str, Any]] = None) -> ChannelSubscription:
        """Create a channel multiplexed over this connection (not joined yet)."""
        chan = ChannelSubscription(topic, self, params=params, timeout=self.timeout)
        self.channels.append(chan)
        return chan

    def remove(self, channel: ChannelSubscription) -> None:
        if channel in self.channels:
            self.channels.remove(channel)

    def push(self, message: Message) -> None:
        """Queue a frame. Frames queued before the socket opens are sent once it does."""
        logger.debug("[Socket] Push", topic=message.topic, push_event=message.event, ref=message.ref)
        self._outbox.put_nowait(self.serializer.encode(message))
