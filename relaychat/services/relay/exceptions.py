"""Relay client exception hierarchy."""

from typing import Any, Optional


class RelayError(Exception):
    """Base exception for all relay-related errors."""


class RelayConfigError(RelayError):
    """No usable relay endpoint could be resolved."""


class NotConnectedError(RelayError):
    """Operation needs an active socket or channel and there is none."""


class ChannelError(RelayError):
    """Invalid operation for the channel's current state."""


class PushError(RelayError):
    """The relay answered a push with an error reply."""

    def __init__(self, response: Any):
        self.response = response
        super().__init__(f"Push rejected by relay: {response!r}")


class PushTimeoutError(RelayError):
    """No reply arrived for a push within its timeout window."""

    def __init__(self, reason: str, timeout: Optional[float] = None):
        self.reason = reason
        self.timeout = timeout
        super().__init__(reason)
