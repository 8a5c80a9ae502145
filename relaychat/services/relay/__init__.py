"""
Relay Connection Module

Phoenix-channels client for exchanging encrypted chat payloads through a relay.

Connection: <relay socket>/websocket?uid=<hex public key>&vsn=2.0.0

Components:
- connection.py: ConnectionManager, the connect/join/send orchestrator
- socket.py: SocketSession, the websocket transport and channel multiplexer
- channel.py: ChannelSubscription, join/push/on for one topic
- push.py: Push, a correlated request with ok/error/timeout outcome
- protocol.py: frame serializers and channel name derivation
- endpoint.py: relay selection and socket URL building
- reconnect.py: backoff timer for opt-in reconnection
- notifier.py: notification and translation defaults
"""

from .channel import ChannelState, ChannelSubscription
from .connection import ConnectionManager, ConnectionState
from .endpoint import RelayEndpoint, RelayEndpointConfig, build_socket_url
from .exceptions import (
    ChannelError,
    NotConnectedError,
    PushError,
    PushTimeoutError,
    RelayConfigError,
    RelayError,
)
from .protocol import Message, PushReply, ReplyStatus, room_topic, user_channel_id, user_topic
from .push import Push
from .reconnect import ReconnectTimer
from .socket import SocketCloseEvent, SocketSession, SocketState

__all__ = [
    "ChannelError",
    "ChannelState",
    "ChannelSubscription",
    "ConnectionManager",
    "ConnectionState",
    "Message",
    "NotConnectedError",
    "Push",
    "PushError",
    "PushReply",
    "PushTimeoutError",
    "ReconnectTimer",
    "RelayConfigError",
    "RelayEndpoint",
    "RelayEndpointConfig",
    "RelayError",
    "ReplyStatus",
    "SocketCloseEvent",
    "SocketSession",
    "SocketState",
    "build_socket_url",
    "room_topic",
    "user_channel_id",
    "user_topic",
]
