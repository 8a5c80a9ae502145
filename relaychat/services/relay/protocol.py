"""
Phoenix Channels wire protocol for the relay.

Handles frame encoding/decoding and channel name derivation.

Serializer 1.0.0 (JSON object):
    {"topic": "...", "event": "...", "payload": {...}, "ref": "1", "join_ref": "1"}
Serializer 2.0.0 (JSON array):
    [join_ref, ref, topic, event, payload]

Reply payload:   {"status": "ok" | "error", "response": {...}}

Channel names:
- user channel: user:<hex public key>
- room channel: room:<room name>,user:<hex public key>
"""
import json
from dataclasses import dataclass, field
from typing import Any, Dict, Optional
from enum import Enum

from relaychat.constants import (
    PHX_REPLY,
    ROOM_TOPIC_PREFIX,
    SUPPORTED_VSNS,
    USER_TOPIC_PREFIX,
)


class ReplyStatus(str, Enum):
    """Outcome of a join or push"""
    OK = "ok"
    ERROR = "error"
    TIMEOUT = "timeout"


@dataclass
class Message:
    """A single frame exchanged with the relay"""
    topic: str
    event: str
    payload: Dict[str, Any] = field(default_factory=dict)
    ref: Optional[str] = None
    join_ref: Optional[str] = None

    @property
    def is_reply(self) -> bool:
        return self.event == PHX_REPLY

    def to_dict(self) -> Dict[str, Any]:
        return {
            "topic": self.topic,
            "event": self.event,
            "payload": self.payload,
            "ref": self.ref,
            "join_ref": self.join_ref,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Message":
        return cls(
            topic=data.get("topic", ""),
            event=data.get("event", ""),
            payload=data.get("payload") or {},
            ref=data.get("ref"),
            join_ref=data.get("join_ref"),
        )


@dataclass
class PushReply:
    """Settled outcome of a push: status plus the relay's response body"""
    status: ReplyStatus
    response: Any = None

    @property
    def ok(self) -> bool:
        return self.status is ReplyStatus.OK

    @classmethod
    def from_payload(cls, payload: Any) -> "PushReply":
        """Build from a phx_reply payload. Unknown statuses and malformed payloads count as errors."""
        if not isinstance(payload, dict):
            return cls(status=ReplyStatus.ERROR, response=payload)
        raw_status = payload.get("status")
        try:
            status = ReplyStatus(raw_status)
        except ValueError:
            status = ReplyStatus.ERROR
        if status is ReplyStatus.TIMEOUT:
            # Timeouts are enforced locally, never signalled by the server
            status = ReplyStatus.ERROR
        return cls(status=status, response=payload.get("response"))


class Serializer:
    """Encodes and decodes frames for one protocol version"""

    def __init__(self, vsn: str):
        if vsn not in SUPPORTED_VSNS:
            raise ValueError(f"Unsupported protocol version: {vsn}")
        self.vsn = vsn

    def encode(self, message: Message) -> str:
        if self.vsn == "1.0.0":
            return json.dumps(message.to_dict())
        return json.dumps([
            message.join_ref,
            message.ref,
            message.topic,
            message.event,
            message.payload,
        ])

    def decode(self, raw: str) -> Message:
        data = json.loads(raw)
        if isinstance(data, list):
            if len(data) != 5:
                raise ValueError(f"Malformed frame: expected 5 elements, got {len(data)}")
            join_ref, ref, topic, event, payload = data
            return Message(
                topic=topic,
                event=event,
                payload=payload or {},
                ref=ref,
                join_ref=join_ref,
            )
        if isinstance(data, dict):
            return Message.from_dict(data)
        raise ValueError(f"Malformed frame: {type(data).__name__}")


def to_hex(data: bytes) -> str:
    """Lowercase hex, two digits per byte"""
    return bytes(data).hex()


def user_channel_id(public_key: Optional[bytes]) -> str:
    """Hex id for a public key, or empty string when there is no key"""
    if not public_key:
        return ""
    return to_hex(public_key)


def user_topic(public_key: Optional[bytes]) -> str:
    """Self channel name: user:<hex>"""
    return f"{USER_TOPIC_PREFIX}:{user_channel_id(public_key)}"


def room_topic(room_name: str, public_key: Optional[bytes]) -> str:
    """Room channel name: room:<name>,user:<hex>"""
    return f"{ROOM_TOPIC_PREFIX}:{room_name},{user_topic(public_key)}"
