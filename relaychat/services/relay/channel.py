"""
Channel subscriptions over a relay socket.

A channel is one named topic multiplexed over a SocketSession. It is
joined once, buffers pushes while the join is in flight, routes replies
to their pushes by ref, and hands every other inbound event to the
bindings registered with on().

Lifecycle: closed -> joining -> joined -> (leaving) -> closed
           joining|joined -> errored on phx_error or socket loss
"""
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Tuple

from relaychat.constants import (
    LIFECYCLE_EVENTS,
    PHX_CLOSE,
    PHX_ERROR,
    PHX_JOIN,
    PHX_LEAVE,
    PHX_REPLY,
)
from relaychat.core.logging import get_logger

from .exceptions import ChannelError
from .hooks import HookList, invoke
from .protocol import Message, PushReply, ReplyStatus
from .push import Push

if TYPE_CHECKING:
    from .socket import SocketSession

logger = get_logger(__name__)


class ChannelState(str, Enum):
    CLOSED = "closed"
    ERRORED = "errored"
    JOINED = "joined"
    JOINING = "joining"
    LEAVING = "leaving"


class ChannelSubscription:
    """A joined (or joining) topic on a relay socket"""

    def __init__(self, topic: str, socket: "SocketSession",
                 params: Optional[Dict[str, Any]] = None, timeout: float = 10.0):
        self.topic = topic
        self.socket = socket
        self.params = params or {}
        self.timeout = timeout

        self.state = ChannelState.CLOSED
        self.joined_once = False

        self._join_push: Optional[Push] = None
        self._pending: Dict[str, Push] = {}
        self._push_buffer: List[Push] = []

        self._bindings: Dict[str, List[Tuple[int, Callable]]] = {}
        self._binding_ref = 0

        self._error_hooks = HookList(f"{topic}.error")
        self._close_hooks = HookList(f"{topic}.close")

    def __repr__(self) -> str:
        return f"<ChannelSubscription {self.topic} {self.state.value}>"

    @property
    def join_ref(self) -> Optional[str]:
        return self._join_push.ref if self._join_push else None

    @property
    def is_joined(self) -> bool:
        return self.state is ChannelState.JOINED

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def can_push(self) -> bool:
        return self.socket.is_connected() and self.is_joined

    # =========================================================================
    # Hooks
    # =========================================================================

    def on(self, event: str, callback: Callable[[Dict[str, Any]], Any]) -> int:
        """Bind a durable listener for a server event. Returns a ref for off()."""
        self._binding_ref += 1
        self._bindings.setdefault(event, []).append((self._binding_ref, callback))
        return self._binding_ref

    def off(self, event: str, ref: Optional[int] = None) -> None:
        if ref is None:
            self._bindings.pop(event, None)
            return
        bindings = [b for b in self._bindings.get(event, []) if b[0] != ref]
        if bindings:
            self._bindings[event] = bindings
        else:
            self._bindings.pop(event, None)

    def on_error(self, callback: Callable[[Dict[str, Any]], Any]) -> None:
        self._error_hooks.add(callback)

    def on_close(self, callback: Callable[[Dict[str, Any]], Any]) -> None:
        self._close_hooks.add(callback)

    # =========================================================================
    # Join / Push / Leave
    # =========================================================================

    def join(self, timeout: Optional[float] = None) -> Push:
        """Send phx_join. The returned push settles ok, error or timeout."""
        if self.joined_once:
            raise ChannelError(f"Tried to join '{self.topic}' multiple times")
        self.joined_once = True
        self.state = ChannelState.JOINING

        self._join_push = Push(self, PHX_JOIN, self.params, timeout or self.timeout)
        self._join_push.receive(ReplyStatus.OK, self._on_join_ok)
        self._join_push.receive(ReplyStatus.ERROR, self._on_join_error)
        self._join_push.receive(ReplyStatus.TIMEOUT, self._on_join_timeout)

        logger.info("[Channel] Joining", topic=self.topic)
        self._join_push.send()
        return self._join_push

    def push(self, event: str, payload: Optional[Dict[str, Any]] = None,
             timeout: Optional[float] = None) -> Push:
        """Push an event. Buffered until the join succeeds; the timeout runs from now."""
        if not self.joined_once:
            raise ChannelError(f"Tried to push '{event}' to '{self.topic}' before joining")

        push = Push(self, event, payload, timeout or self.timeout)
        if self.can_push():
            push.send()
        else:
            push.start_timeout()
            self._push_buffer.append(push)
            logger.debug("[Channel] Push buffered", topic=self.topic, push_event=event,
                         state=self.state.value)
        return push

    async def leave(self, timeout: Optional[float] = None) -> Push:
        """Send phx_leave and close the channel once it is acknowledged or times out."""
        self.state = ChannelState.LEAVING

        async def close(_response):
            await self._close({"reason": "leave"})

        leave_push = Push(self, PHX_LEAVE, {}, timeout or self.timeout)
        leave_push.receive(ReplyStatus.OK, close)
        leave_push.receive(ReplyStatus.TIMEOUT, close)
        leave_push.send()

        if not self.socket.is_connected():
            await leave_push.settle(PushReply(status=ReplyStatus.OK, response={}))
        return leave_push

    async def _on_join_ok(self, response: Any) -> None:
        self.state = ChannelState.JOINED
        logger.info("[Channel] Joined", topic=self.topic)

        buffered, self._push_buffer = self._push_buffer, []
        for push in buffered:
            push.send()

    async def _on_join_error(self, response: Any) -> None:
        self.state = ChannelState.ERRORED
        logger.warning("[Channel] Join rejected", topic=self.topic, response=response)

    async def _on_join_timeout(self, response: Any) -> None:
        logger.warning("[Channel] Join timed out", topic=self.topic, timeout=self._join_push.timeout)
        # Let the server drop the half-joined channel
        self.socket.push(Message(
            topic=self.topic,
            event=PHX_LEAVE,
            payload={},
            ref=self.socket.make_ref(),
            join_ref=self.join_ref,
        ))
        self.state = ChannelState.ERRORED

    # =========================================================================
    # Inbound Routing
    # =========================================================================

    def is_member(self, message: Message) -> bool:
        """Whether an inbound frame belongs to this channel's current join."""
        if message.topic != self.topic:
            return False
        if message.join_ref and message.event in LIFECYCLE_EVENTS and message.join_ref != self.join_ref:
            logger.debug("[Channel] Dropping stale frame", topic=self.topic, push_event=message.event,
                         join_ref=message.join_ref)
            return False
        return True

    async def trigger(self, message: Message) -> None:
        event = message.event

        if event == PHX_REPLY:
            push = self._pending.get(message.ref)
            if push is None:
                logger.debug("[Channel] Reply for unknown ref", topic=self.topic, ref=message.ref)
                return
            await push.settle(PushReply.from_payload(message.payload))
            return

        if event == PHX_ERROR:
            await self._error(message.payload)
            return

        if event == PHX_CLOSE:
            await self._close(message.payload)
            return

        for _ref, callback in list(self._bindings.get(event, [])):
            try:
                await invoke(callback, message.payload)
            except Exception as e:
                logger.error("[Channel] Binding failed", topic=self.topic, push_event=event,
                             error=str(e), exc_info=True)

    async def socket_closed(self) -> None:
        """Called by the socket when the transport goes away."""
        if self.state in (ChannelState.JOINED, ChannelState.JOINING):
            await self._error({"reason": "socket closed"})

    async def _error(self, payload: Dict[str, Any]) -> None:
        if self.state is ChannelState.CLOSED:
            return
        self.state = ChannelState.ERRORED
        logger.warning("[Channel] Errored", topic=self.topic, payload=payload)
        await self._error_hooks.fire(payload)

    async def _close(self, payload: Dict[str, Any]) -> None:
        if self.state is ChannelState.CLOSED:
            return
        self.state = ChannelState.CLOSED
        self.socket.remove(self)
        logger.info("[Channel] Closed", topic=self.topic)
        await self._close_hooks.fire(payload)

    # =========================================================================
    # Push Tracking
    # =========================================================================

    def _track(self, push: Push) -> None:
        self._pending[push.ref] = push

    def _forget(self, push: Push) -> None:
        self._pending.pop(push.ref, None)
        if push in self._push_buffer:
            self._push_buffer.remove(push)
