"""
Relay endpoint selection.

Resolves which relay the client talks to and builds the websocket URL
for it. Selection is only consulted when no socket session is active.
"""
from dataclasses import dataclass
from typing import Dict, List, Optional, Protocol
from urllib.parse import urlencode

from relaychat.constants import DEFAULT_VSN, TRANSPORT_PATH
from relaychat.core.config import RelaySettings
from relaychat.core.logging import get_logger

from .exceptions import RelayConfigError

logger = get_logger(__name__)


@dataclass(frozen=True)
class RelayEndpoint:
    """A relay the client can connect to"""
    socket: str


class RelaySelector(Protocol):
    def get_relay(self) -> RelayEndpoint: ...


class RelayEndpointConfig:
    """Relay list from settings with a single selected entry."""

    def __init__(self, settings: RelaySettings):
        self._relays: List[RelayEndpoint] = [RelayEndpoint(socket=url) for url in settings.relay_urls]
        self._selected = settings.relay_index

    @property
    def relays(self) -> List[RelayEndpoint]:
        return list(self._relays)

    def add_relay(self, socket_url: str) -> RelayEndpoint:
        """Register another relay, ignoring duplicates."""
        for relay in self._relays:
            if relay.socket == socket_url:
                return relay
        relay = RelayEndpoint(socket=socket_url)
        self._relays.append(relay)
        logger.info("[Relay] Added relay", socket=socket_url)
        return relay

    def select(self, index: int) -> RelayEndpoint:
        if not 0 <= index < len(self._relays):
            raise RelayConfigError(f"No relay at index {index} ({len(self._relays)} configured)")
        self._selected = index
        logger.info("[Relay] Selected relay", index=index, socket=self._relays[index].socket)
        return self._relays[index]

    def get_relay(self) -> RelayEndpoint:
        if not self._relays:
            raise RelayConfigError("No relays configured")
        if self._selected >= len(self._relays):
            raise RelayConfigError(
                f"Selected relay index {self._selected} out of range ({len(self._relays)} configured)"
            )
        return self._relays[self._selected]


def build_socket_url(endpoint: str, params: Optional[Dict[str, str]] = None,
                     vsn: str = DEFAULT_VSN) -> str:
    """Transport URL in the form the Phoenix JS client uses.

    wss://relay.example/socket -> wss://relay.example/socket/websocket?uid=...&vsn=2.0.0
    """
    base = endpoint.rstrip("/")
    if not base.endswith(f"/{TRANSPORT_PATH}"):
        base = f"{base}/{TRANSPORT_PATH}"
    query = dict(params or {})
    query["vsn"] = vsn
    return f"{base}?{urlencode(query)}"
