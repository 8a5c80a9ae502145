"""
Correlated pushes on a channel.

A push is sent with a fresh ref and settles exactly once: with the
relay's ok or error reply for that ref, or with a timeout if no reply
arrives in time. Awaiting a push yields its PushReply.
"""
import asyncio
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional

from relaychat.core.logging import get_logger, log_push_outcome

from .hooks import HookList, spawn
from .protocol import Message, PushReply, ReplyStatus

if TYPE_CHECKING:
    from .channel import ChannelSubscription

logger = get_logger(__name__)


class Push:
    """One request on a channel and its eventual reply"""

    def __init__(self, channel: "ChannelSubscription", event: str,
                 payload: Optional[Dict[str, Any]] = None, timeout: float = 10.0):
        self.channel = channel
        self.event = event
        self.payload = payload or {}
        self.timeout = timeout
        self.ref: Optional[str] = None
        self.sent = False

        self._reply: Optional[PushReply] = None
        self._future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._timeout_task: Optional[asyncio.Task] = None
        self._hooks: Dict[ReplyStatus, HookList] = {
            status: HookList(f"push.{status.value}") for status in ReplyStatus
        }

    @property
    def settled(self) -> bool:
        return self._reply is not None

    @property
    def reply(self) -> Optional[PushReply]:
        return self._reply

    def receive(self, status: ReplyStatus, callback: Callable[[Any], Any]) -> "Push":
        """Register a hook for one outcome. Fires right away if already settled that way."""
        status = ReplyStatus(status)
        if self._reply is not None:
            if self._reply.status is status:
                spawn(callback, self._reply.response)
            return self
        self._hooks[status].add(callback)
        return self

    def start_timeout(self) -> None:
        """Allocate the ref and start the clock. Only the first call has any effect."""
        if self._timeout_task is not None or self.settled:
            return
        self.ref = self.channel.socket.make_ref()
        self.channel._track(self)
        self._timeout_task = asyncio.create_task(self._expire())

    def send(self) -> None:
        """Write the push to the socket (buffered there until the socket is open)."""
        if self.settled:
            return
        self.start_timeout()
        self.sent = True
        self.channel.socket.push(Message(
            topic=self.channel.topic,
            event=self.event,
            payload=self.payload,
            ref=self.ref,
            join_ref=self.channel.join_ref,
        ))

    async def _expire(self) -> None:
        await asyncio.sleep(self.timeout)
        await self.settle(PushReply(status=ReplyStatus.TIMEOUT))

    async def settle(self, reply: PushReply) -> bool:
        """Record the outcome. Returns False if the push had already settled."""
        if self._reply is not None:
            return False
        self._reply = reply

        task = self._timeout_task
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
        self.channel._forget(self)

        log_push_outcome(logger, self.channel.topic, self.event, reply.status.value, self.ref)

        if not self._future.done():
            self._future.set_result(reply)
        await self._hooks[reply.status].fire(reply.response)
        for hooks in self._hooks.values():
            hooks.clear()
        return True

    def __await__(self):
        return asyncio.shield(self._future).__await__()
