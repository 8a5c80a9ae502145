"""Centralized constants for the relay wire protocol and user-facing strings.

Single source of truth for Phoenix channel event names, protocol defaults
and the translation keys used by the connection manager.
"""

from typing import Dict, FrozenSet, Tuple

# =============================================================================
# PHOENIX CHANNEL EVENTS
# =============================================================================

PHX_JOIN = "phx_join"
PHX_LEAVE = "phx_leave"
PHX_REPLY = "phx_reply"
PHX_ERROR = "phx_error"
PHX_CLOSE = "phx_close"

HEARTBEAT_EVENT = "heartbeat"
HEARTBEAT_TOPIC = "phoenix"

CHAT_EVENT = "chat"

# Events that belong to a channel's lifecycle rather than to application bindings
LIFECYCLE_EVENTS: FrozenSet[str] = frozenset([
    PHX_JOIN,
    PHX_LEAVE,
    PHX_REPLY,
    PHX_ERROR,
    PHX_CLOSE,
])

# =============================================================================
# CHANNEL NAMING
# =============================================================================

USER_TOPIC_PREFIX = "user"
ROOM_TOPIC_PREFIX = "room"

# =============================================================================
# PROTOCOL DEFAULTS
# =============================================================================

TRANSPORT_PATH = "websocket"
SUPPORTED_VSNS: Tuple[str, ...] = ("1.0.0", "2.0.0")
DEFAULT_VSN = "2.0.0"

DEFAULT_PUSH_TIMEOUT = 10.0
DEFAULT_HEARTBEAT_INTERVAL = 30.0
DEFAULT_CONNECT_TIMEOUT = 10.0
DEFAULT_RECONNECT_BACKOFF: Tuple[float, ...] = (1.0, 2.0, 5.0, 10.0)

WS_CLOSE_NORMAL = 1000
WS_CLOSE_ABNORMAL = 1006

# =============================================================================
# TRANSLATION KEYS
# =============================================================================

MSG_CONNECTING = "connection.connecting"
MSG_CONNECTED = "connection.connected"
MSG_SEND_NOT_CONNECTED = "connection.errors.send.notConnected"
MSG_SUBSCRIBE_NOT_CONNECTED = "connection.errors.subscribe.notConnected"
MSG_NO_IDENTITY = "connection.errors.identity.missing"
MSG_JOIN_TIMEOUT = "connection.status.timeout"
MSG_SOCKET_ERROR = "connection.status.socket.error"
MSG_SOCKET_CLOSE = "connection.status.socket.close"
MSG_RECONNECTING = "connection.status.reconnecting"
MSG_PUSH_TIMEOUT = "models.message.errors.timeout"

DEFAULT_MESSAGES: Dict[str, str] = {
    MSG_CONNECTING: "Connecting to relay...",
    MSG_CONNECTED: "Connected to relay",
    MSG_SEND_NOT_CONNECTED: "Cannot send message: not connected to a relay",
    MSG_SUBSCRIBE_NOT_CONNECTED: "Cannot subscribe to channel: not connected to a relay",
    MSG_NO_IDENTITY: "Cannot connect: no public key available",
    MSG_JOIN_TIMEOUT: "Timed out joining channel",
    MSG_SOCKET_ERROR: "Relay connection error",
    MSG_SOCKET_CLOSE: "Relay connection closed",
    MSG_RECONNECTING: "Reconnecting to relay in {delay}s",
    MSG_PUSH_TIMEOUT: "Message delivery timed out",
}
