"""A single outbound chat message and its delivery lifecycle."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Awaitable

from loguru import logger

from turnstream.delivery.transport import ChannelTransport, TransportError

# Hard per-message length limit of the transport
MESSAGE_LIMIT = 2000

# New characters required before an initial send or a follow-up edit
EDIT_THRESHOLD = 800


@dataclass(frozen=True)
class Buffering:
    """Nothing sent yet; text accumulates locally."""

    content: str = ""
    kind = "buffering"

    def append(self, text: str) -> "Buffering":
        return replace(self, content=self.content + text)

    def begin_send(self) -> "Sending":
        return Sending(content=self.content, previous=self)


@dataclass(frozen=True)
class Sent:
    """Visible in the channel and still editable."""

    content: str
    handle: Any
    last_edit_length: int
    kind = "sent"

    def append(self, text: str) -> "Sent":
        return replace(self, content=self.content + text)

    def edited(self, length: int) -> "Sent":
        return replace(self, last_edit_length=length)

    def begin_send(self) -> "Sending":
        return Sending(content=self.content, previous=self)


@dataclass(frozen=True)
class Sending:
    """A network call is in flight; appended text is dropped."""

    content: str
    previous: Buffering | Sent
    kind = "sending"

    def append(self, text: str) -> "Sending":
        return self

    def sent(self, handle: Any, length: int) -> Sent:
        return Sent(content=self.content, handle=handle, last_edit_length=length)

    def rollback(self) -> Buffering | Sent:
        return self.previous


@dataclass(frozen=True)
class Finalized:
    """Immutable history."""

    content: str
    handle: Any = None
    kind = "finalized"

    def append(self, text: str) -> "Finalized":
        return self

    def with_handle(self, handle: Any) -> "Finalized":
        return replace(self, handle=handle)


UnitState = Buffering | Sending | Sent | Finalized


class FlushResult(str, Enum):
    OK = "ok"
    SPLIT = "split"
    SKIP = "skip"


class MessageUnit:
    """
    One transport message being built from streamed text.

    State transitions happen before every network await so that re-entrant
    calls (a finalize racing a flush) observe the in-flight state instead of
    issuing a duplicate send.
    """

    def __init__(
        self,
        transport: ChannelTransport,
        *,
        reply_to: Any = None,
        is_reply: bool = False,
        limit: int = MESSAGE_LIMIT,
        edit_threshold: int = EDIT_THRESHOLD,
    ):
        self.transport = transport
        self.reply_to = reply_to
        self.is_reply = is_reply
        self.limit = limit
        self.edit_threshold = edit_threshold
        self.state: UnitState = Buffering()
        self._remainder = ""
        self._inflight: asyncio.Future[Any] | None = None

    @property
    def content(self) -> str:
        return self.state.content

    @property
    def has_content(self) -> bool:
        return bool(self.state.content)

    @property
    def handle(self) -> Any:
        return getattr(self.state, "handle", None)

    @property
    def last_edit_length(self) -> int:
        return getattr(self.state, "last_edit_length", 0)

    @property
    def is_finalized(self) -> bool:
        return isinstance(self.state, Finalized)

    def append(self, text: str) -> None:
        """Add text; dropped while a send is in flight or once finalized."""
        if isinstance(self.state, (Sending, Finalized)):
            logger.debug(f"Dropping {len(text)} chars appended to {self.state.kind} unit")
        self.state = self.state.append(text)

    def take_remainder(self) -> str:
        """Return and clear the text cut off by the last overflow split."""
        remainder, self._remainder = self._remainder, ""
        return remainder

    async def flush(self) -> FlushResult:
        """Send or edit if enough new text has accumulated."""
        state = self.state
        if isinstance(state, (Sending, Finalized)):
            return FlushResult.SKIP

        content = state.content.strip()
        if not content:
            return FlushResult.SKIP

        if len(content) > self.limit:
            await self._split(state, content)
            return FlushResult.SPLIT

        if isinstance(state, Buffering):
            if len(content) < self.edit_threshold:
                return FlushResult.SKIP
            await self._send_initial(state, content)
            return FlushResult.OK

        if len(content) - state.last_edit_length < self.edit_threshold:
            return FlushResult.SKIP
        if await self._edit(state.handle, content):
            return FlushResult.OK
        return FlushResult.SKIP

    async def finalize(self, timeout: float | None = None) -> None:
        """
        Push the final content and freeze the unit. Never raises.

        An in-flight send is awaited first, for at most ``timeout`` seconds.
        If it is still running after that the unit is frozen as is and no
        further call is made, since the pending one may yet land.
        """
        if isinstance(self.state, Finalized):
            return
        if self._inflight is not None and not self._inflight.done():
            done, _ = await asyncio.wait({self._inflight}, timeout=timeout)
            if not done:
                logger.warning(f"Send still in flight after {timeout}s, freezing message unsent")
                frozen = self.state.rollback() if isinstance(self.state, Sending) else self.state
                if not isinstance(frozen, Finalized):
                    self.state = Finalized(
                        content=frozen.content.strip()[: self.limit],
                        handle=getattr(frozen, "handle", None),
                    )
                return

        state = self.state
        if isinstance(state, Finalized):
            return
        if isinstance(state, Sending):
            state = state.rollback()

        content = state.content.strip()[: self.limit]
        handle = getattr(state, "handle", None)
        self.state = Finalized(content=content, handle=handle)
        if not content:
            return

        try:
            if handle is None:
                handle = await self._deliver(content)
                self.state = self.state.with_handle(handle)
            elif len(content) != state.last_edit_length:
                await self.transport.edit(handle, content)
        except Exception as e:
            logger.warning(f"Final delivery of message failed ({len(content)} chars): {e}")

    async def _send_initial(self, state: Buffering, content: str) -> None:
        self.state = state.begin_send()

        async def _call() -> None:
            try:
                handle = await self._deliver(content)
            except TransportError:
                self._rollback()
                raise
            except Exception as e:
                self._rollback()
                raise TransportError(f"Message send failed: {e}") from e
            if isinstance(self.state, Sending):
                self.state = self.state.sent(handle, len(content))

        await self._track(_call())

    async def _edit(self, handle: Any, content: str) -> bool:
        async def _call() -> None:
            await self.transport.edit(handle, content)
            if isinstance(self.state, Sent):
                self.state = self.state.edited(len(content))

        try:
            await self._track(_call())
        except Exception as e:
            logger.warning(f"Edit failed, will retry on next flush: {e}")
            return False
        return True

    async def _split(self, state: Buffering | Sent, content: str) -> None:
        head, rest = content[: self.limit], content[self.limit:]
        self.state = state.begin_send()

        async def _call() -> None:
            try:
                if isinstance(state, Sent):
                    await self.transport.edit(state.handle, head)
                    handle = state.handle
                else:
                    handle = await self._deliver(head)
            except TransportError:
                self._rollback()
                raise
            except Exception as e:
                self._rollback()
                raise TransportError(f"Overflow delivery failed: {e}") from e
            # Set even when finalize froze the unit meanwhile, so the tail is not lost
            self._remainder = rest
            if isinstance(self.state, Sending):
                self.state = Finalized(content=head, handle=handle)

        await self._track(_call())

    def _rollback(self) -> None:
        if isinstance(self.state, Sending):
            self.state = self.state.rollback()

    def _deliver(self, content: str) -> Awaitable[Any]:
        if self.is_reply and self.reply_to is not None:
            return self.transport.reply(self.reply_to, content)
        return self.transport.send(content)

    async def _track(self, call: Awaitable[Any]) -> Any:
        """Run a transport call as a future that ``finalize`` can wait on."""
        self._inflight = asyncio.ensure_future(call)
        try:
            return await self._inflight
        finally:
            self._inflight = None
