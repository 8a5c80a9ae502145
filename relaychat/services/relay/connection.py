"""
Relay Connection Manager

Owns the socket session to the selected relay and the user's channels on it.

Connection flow:
1. connect() checks that an identity exists and nothing is connected yet
2. Opens <relay>/websocket?uid=<hex public key>
3. Joins the self channel user:<hex public key>
4. Join ok marks the manager READY; presence pings go out to all peers
5. send() pushes "chat" {"to", "message"} and settles on ok/error/timeout

Any socket close or channel error/close tears the whole session down.
Recovery is a new connect(), either by the caller or by the opt-in
reconnect timer.
"""
import asyncio
from enum import Enum
from functools import partial
from typing import Any, Dict, Optional, Protocol

import aiohttp

from relaychat.constants import (
    CHAT_EVENT,
    MSG_CONNECTED,
    MSG_CONNECTING,
    MSG_JOIN_TIMEOUT,
    MSG_NO_IDENTITY,
    MSG_PUSH_TIMEOUT,
    MSG_RECONNECTING,
    MSG_SEND_NOT_CONNECTED,
    MSG_SOCKET_CLOSE,
    MSG_SOCKET_ERROR,
    MSG_SUBSCRIBE_NOT_CONNECTED,
)
from relaychat.core.config import RelaySettings
from relaychat.core.logging import get_logger

from .channel import ChannelSubscription
from .endpoint import RelaySelector
from .exceptions import NotConnectedError, PushError, PushTimeoutError, RelayConfigError
from .hooks import invoke, spawn
from .notifier import CatalogTranslator, LogNotifier, Notifier, Translator
from .protocol import ReplyStatus, room_topic, user_channel_id, user_topic
from .reconnect import ReconnectTimer
from .socket import SocketCloseEvent, SocketSession

logger = get_logger(__name__)


class Identity(Protocol):
    public_key: Optional[bytes]

    async def exists(self) -> bool: ...


class MessageProcessor(Protocol):
    def receive(self, payload: Dict[str, Any]) -> Any: ...


class MessageDispatcher(Protocol):
    def ping_all(self) -> Any: ...


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    JOINING = "joining"
    READY = "ready"


class ConnectionManager:
    """Connects the local identity to a relay and exchanges chat messages over it"""

    def __init__(
        self,
        identity: Identity,
        relays: RelaySelector,
        processor: MessageProcessor,
        dispatcher: MessageDispatcher,
        notifier: Optional[Notifier] = None,
        translator: Optional[Translator] = None,
        settings: Optional[RelaySettings] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.identity = identity
        self.relays = relays
        self.processor = processor
        self.dispatcher = dispatcher
        self.notifier = notifier or LogNotifier()
        self.intl = translator or CatalogTranslator()
        self.settings = settings or RelaySettings()
        self._session = session

        self.socket: Optional[SocketSession] = None
        self.channel: Optional[ChannelSubscription] = None
        self.rooms: Dict[str, ChannelSubscription] = {}
        self.state = ConnectionState.DISCONNECTED

        self._manual_disconnect = False
        self._reconnect: Optional[ReconnectTimer] = None
        if self.settings.reconnect_enabled:
            self._reconnect = ReconnectTimer(
                self._reconnect_now,
                self.settings.reconnect_backoff,
                self.settings.reconnect_max_attempts,
            )

    @property
    def connected(self) -> bool:
        """True only once the self channel's join has been acknowledged."""
        return self.state is ConnectionState.READY

    # =========================================================================
    # Connection Management
    # =========================================================================

    async def can_connect(self) -> bool:
        return bool(await invoke(self.identity.exists))

    def user_channel_id(self) -> str:
        return user_channel_id(self.identity.public_key)

    async def connect(self) -> None:
        """Open the relay socket and join the self channel. No-op if not possible or already underway."""
        if not await self.can_connect():
            logger.info("[Relay] No identity, not connecting")
            return
        if self.state is not ConnectionState.DISCONNECTED:
            logger.debug("[Relay] Already connected or joining", state=self.state.value)
            return

        self.notifier.info(self.intl.t(MSG_CONNECTING))

        uid = self.user_channel_id()
        if not uid:
            logger.error("[Relay] Cannot connect", reason=self.intl.t(MSG_NO_IDENTITY))
            return

        try:
            relay = self.relays.get_relay()
        except RelayConfigError as e:
            logger.error("[Relay] No relay available", error=str(e))
            self.notifier.error(str(e))
            return

        self._manual_disconnect = False
        socket = SocketSession(
            relay.socket,
            {"uid": uid},
            vsn=self.settings.protocol_vsn,
            timeout=self.settings.push_timeout,
            heartbeat_interval=self.settings.heartbeat_interval,
            connect_timeout=self.settings.connect_timeout,
            session=self._session,
        )
        self.socket = socket
        socket.on_error(self._on_socket_error)
        socket.on_close(partial(self._on_socket_close, socket))

        logger.info("[Relay] Connecting...", relay=relay.socket, uid=uid)
        socket.connect()

        self.state = ConnectionState.JOINING
        self.channel = self.subscribe_to_channel(user_topic(self.identity.public_key))

        # ping for user statuses
        spawn(self.dispatcher.ping_all)

    async def disconnect(self) -> None:
        """Explicitly close the session. Pending reconnect attempts are dropped."""
        self._manual_disconnect = True
        if self._reconnect is not None:
            self._reconnect.reset()
        socket = self.socket
        self._reset()
        if socket is not None:
            logger.info("[Relay] Disconnecting")
            await socket.disconnect()

    def subscribe_to_channel(self, channel_name: str) -> Optional[ChannelSubscription]:
        """Create, wire and join a channel on the current socket."""
        if self.socket is None:
            self.notifier.error(self.intl.t(MSG_SUBSCRIBE_NOT_CONNECTED))
            return None

        channel = self.socket.channel(channel_name, {})
        channel.on_error(partial(self._on_channel_error, channel))
        channel.on_close(partial(self._on_channel_close, channel))
        channel.on(CHAT_EVENT, self._handle_message)

        (channel.join()
            .receive(ReplyStatus.OK, partial(self._handle_connected, channel))
            .receive(ReplyStatus.ERROR, partial(self._handle_join_error, channel))
            .receive(ReplyStatus.TIMEOUT, partial(self._handle_join_timeout, channel)))
        return channel

    def join_room(self, room_name: str) -> Optional[ChannelSubscription]:
        """Join room:<name>,user:<hex> alongside the self channel."""
        if room_name in self.rooms:
            return self.rooms[room_name]
        channel = self.subscribe_to_channel(room_topic(room_name, self.identity.public_key))
        if channel is not None:
            self.rooms[room_name] = channel
        return channel

    async def leave_room(self, room_name: str) -> bool:
        channel = self.rooms.pop(room_name, None)
        if channel is None:
            return False
        await channel.leave()
        return True

    # =========================================================================
    # Sending
    # =========================================================================

    def send(self, to: str, data: str, room: Optional[str] = None) -> asyncio.Future:
        """Push a chat message. The future resolves to the relay's ok response.

        Fails with NotConnectedError (without touching the network) when there
        is no channel, PushError on an error reply, PushTimeoutError when no
        reply arrives in time.
        """
        channel = self.rooms.get(room) if room is not None else self.channel
        loop = asyncio.get_running_loop()

        if channel is None:
            reason = self.intl.t(MSG_SEND_NOT_CONNECTED)
            logger.error("[Relay] Send failed", reason=reason, to=to, room=room)
            future = loop.create_future()
            future.set_exception(NotConnectedError(reason))
            return future

        push = channel.push(CHAT_EVENT, {"to": to, "message": data})
        timeout_reason = self.intl.t(MSG_PUSH_TIMEOUT)

        async def outcome():
            reply = await push
            if reply.ok:
                return reply.response
            if reply.status is ReplyStatus.ERROR:
                raise PushError(reply.response)
            raise PushTimeoutError(timeout_reason, push.timeout)

        return loop.create_task(outcome())

    # =========================================================================
    # Event Handlers
    # =========================================================================

    def _on_socket_error(self, error: BaseException):
        logger.warning("[Relay] Socket error", error=str(error))
        self.notifier.error(self.intl.t(MSG_SOCKET_ERROR))

    async def _on_socket_close(self, socket: SocketSession, event: SocketCloseEvent):
        self.notifier.info(self.intl.t(MSG_SOCKET_CLOSE))
        if socket is not self.socket:
            logger.debug("[Relay] Previous socket closed", code=event.code)
            return
        logger.info("[Relay] Socket closed", code=event.code, reason=event.reason, clean=event.clean)
        self._reset()
        self._schedule_reconnect()

    async def _on_channel_error(self, channel: ChannelSubscription, payload: Dict[str, Any]):
        logger.info("[Relay] Channel errored", topic=channel.topic, payload=payload)
        await self._teardown(channel, "channel error")

    async def _on_channel_close(self, channel: ChannelSubscription, payload: Dict[str, Any]):
        logger.info("[Relay] Channel closed", topic=channel.topic, payload=payload)
        await self._teardown(channel, "channel closed")

    async def _handle_connected(self, channel: ChannelSubscription, response: Any):
        self.notifier.success(self.intl.t(MSG_CONNECTED))
        if channel is self.channel:
            self.state = ConnectionState.READY
            if self._reconnect is not None:
                self._reconnect.reset()
            logger.info("[Relay] Ready", topic=channel.topic)

    async def _handle_join_error(self, channel: ChannelSubscription, response: Any):
        logger.error("[Relay] Join rejected", topic=channel.topic, response=response)
        if channel is self.channel:
            await self._teardown(channel, "join rejected")
        else:
            self._drop_room(channel)

    async def _handle_join_timeout(self, channel: ChannelSubscription, response: Any):
        logger.info("[Relay] Join timed out", topic=channel.topic)
        self.notifier.info(self.intl.t(MSG_JOIN_TIMEOUT))
        if channel is self.channel:
            await self._teardown(channel, "join timed out")
        else:
            self._drop_room(channel)

    async def _handle_message(self, payload: Dict[str, Any]):
        await invoke(self.processor.receive, payload)

    # =========================================================================
    # Teardown / Reconnect
    # =========================================================================

    def _owns(self, channel: ChannelSubscription) -> bool:
        return channel is self.channel or channel in self.rooms.values()

    def _drop_room(self, channel: ChannelSubscription):
        # A room that failed to join cannot be rejoined; forget it so join_room starts over
        for name, room in list(self.rooms.items()):
            if room is channel:
                del self.rooms[name]
                logger.info("[Relay] Room released", room=name, topic=channel.topic)
        channel.socket.remove(channel)

    async def _teardown(self, channel: ChannelSubscription, reason: str):
        """A fault on any owned channel ends the whole session."""
        socket = self.socket
        if socket is None or not self._owns(channel):
            return
        logger.info("[Relay] Tearing down session", reason=reason, topic=channel.topic)
        self._reset()
        await socket.disconnect()
        self._schedule_reconnect()

    def _reset(self):
        self.socket = None
        self.channel = None
        self.rooms.clear()
        self.state = ConnectionState.DISCONNECTED

    def _schedule_reconnect(self):
        if self._reconnect is None or self._manual_disconnect:
            return
        delay = self._reconnect.schedule()
        if delay is not None:
            self.notifier.info(self.intl.t(MSG_RECONNECTING, delay=delay))

    async def _reconnect_now(self):
        logger.info("[Relay] Reconnecting", attempt=self._reconnect.tries)
        await self.connect()
