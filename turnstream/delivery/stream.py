"""Turns an incrementally generated reply into a sequence of chat messages."""

from __future__ import annotations

import asyncio
import time
from collections import deque
from typing import Any, Callable

from loguru import logger

from turnstream.delivery.scheduling import ScheduledTask
from turnstream.delivery.transport import ChannelTransport
from turnstream.delivery.unit import EDIT_THRESHOLD, MESSAGE_LIMIT, FlushResult, MessageUnit

# A producer pause longer than this starts a new visible message
IDLE_SPLIT_S = 1.0

# Small chunks arriving within this window are processed together
DEBOUNCE_S = 0.3

# Upper bound on how long finalize waits for a running drain
DRAIN_TIMEOUT_S = 10.0


class MessageStream:
    """
    One logical reply, delivered as one or more messages.

    Chunks are queued on ``append`` and applied in arrival order by a single
    drain task. Processing is scheduled on the next loop tick once enough text
    is waiting to be worth a network call, otherwise after a short debounce so
    bursts of tiny chunks coalesce.
    """

    def __init__(
        self,
        transport: ChannelTransport,
        *,
        reply_to: Any = None,
        session_key: str = "",
        clock: Callable[[], float] = time.monotonic,
        debounce_s: float = DEBOUNCE_S,
        idle_split_s: float = IDLE_SPLIT_S,
        drain_timeout_s: float = DRAIN_TIMEOUT_S,
        limit: int = MESSAGE_LIMIT,
        edit_threshold: int = EDIT_THRESHOLD,
    ):
        self.transport = transport
        self.reply_to = reply_to
        self.session_key = session_key
        self.debounce_s = debounce_s
        self.idle_split_s = idle_split_s
        self.drain_timeout_s = drain_timeout_s
        self.limit = limit
        self.edit_threshold = edit_threshold
        self._clock = clock

        self._history: list[MessageUnit] = []
        self._active = self._new_unit(is_reply=reply_to is not None)
        self._pending: deque[tuple[str, float]] = deque()
        self._last_arrival = clock()

        self._processing = False
        self._drained = asyncio.Event()
        self._drained.set()
        self._drain_task: asyncio.Task | None = None
        self._debounce: ScheduledTask | None = None
        self._immediate: ScheduledTask | None = None
        self._closing = False
        self._finalizing: asyncio.Future | None = None
        self._finalized = False
        self.last_error: Exception | None = None

    @property
    def active(self) -> MessageUnit:
        return self._active

    @property
    def units(self) -> list[MessageUnit]:
        """All units in creation order, the active one last."""
        return [*self._history, self._active]

    @property
    def processing(self) -> bool:
        return self._processing

    @property
    def is_finalized(self) -> bool:
        return self._finalized

    def append(self, text: str) -> None:
        """Queue a chunk of generated text."""
        if not text:
            return
        if self._finalized:
            logger.debug(f"Stream {self.session_key} already finalized, dropping {len(text)} chars")
            return

        self._pending.append((text, self._clock()))
        if self._closing:
            # finalize picks it up
            return

        queued = sum(len(chunk) for chunk, _ in self._pending) + len(self._active.content)
        self._cancel_debounce()
        if queued >= self.edit_threshold:
            if self._immediate is None or not self._immediate.active:
                self._immediate = ScheduledTask.soon(self._kick)
        else:
            self._debounce = ScheduledTask.later(self.debounce_s, self._kick)

    def _kick(self) -> None:
        if self._processing or self._closing or not self._pending:
            return
        self._processing = True
        self._drained.clear()
        self._drain_task = asyncio.ensure_future(self._drain())

    async def _drain(self) -> None:
        try:
            while self._pending and not self._finalized:
                text, arrived_at = self._pending.popleft()
                await self._absorb(text, arrived_at)
                await self._flush_with_overflow()
            if self._finalized:
                # finalize stopped waiting for this drain; close the unit it left active
                await self._active.finalize(timeout=self.drain_timeout_s)
        except Exception as e:
            self.last_error = e
            logger.error(f"Chunk processing failed for {self.session_key}: {e}")
        finally:
            self._processing = False
            self._drained.set()

    async def _absorb(self, text: str, arrived_at: float) -> None:
        gap = arrived_at - self._last_arrival
        if gap > self.idle_split_s and self._active.has_content:
            logger.info(f"Idle gap of {gap:.2f}s in {self.session_key}, starting a new message")
            await self._retire(finalize=True)
        self._last_arrival = arrived_at
        self._active.append(text)

    async def _flush_with_overflow(self) -> None:
        while await self._active.flush() is FlushResult.SPLIT:
            remainder = self._active.take_remainder()
            await self._retire(finalize=False)
            self._active.append(remainder)

    async def _retire(self, *, finalize: bool) -> None:
        if finalize:
            await self._active.finalize()
        self._history.append(self._active)
        self._active = self._new_unit(is_reply=False)

    def _new_unit(self, *, is_reply: bool) -> MessageUnit:
        return MessageUnit(
            self.transport,
            reply_to=self.reply_to,
            is_reply=is_reply,
            limit=self.limit,
            edit_threshold=self.edit_threshold,
        )

    async def finalize(self) -> None:
        """
        Deliver everything still queued and freeze the stream. Never raises.

        Concurrent callers share one finalization and all return once the
        last message has been delivered.
        """
        if self._finalizing is None:
            self._closing = True
            self.cancel_timers()
            self._finalizing = asyncio.ensure_future(self._finalize())
        await asyncio.shield(self._finalizing)

    async def _finalize(self) -> None:
        if self._processing:
            try:
                await asyncio.wait_for(self._drained.wait(), timeout=self.drain_timeout_s)
            except asyncio.TimeoutError:
                logger.warning(
                    f"Stream {self.session_key} drain still running after "
                    f"{self.drain_timeout_s}s, finalizing anyway"
                )

        self._finalized = True
        try:
            while self._pending:
                text, arrived_at = self._pending.popleft()
                await self._absorb(text, arrived_at)
            await self._flush_with_overflow()
        except Exception as e:
            self.last_error = e
            logger.warning(f"Final flush failed for {self.session_key}: {e}")

        await self._active.finalize(timeout=self.drain_timeout_s)
        logger.debug(f"Stream {self.session_key} finalized with {len(self.units)} message(s)")

    def cancel_timers(self) -> None:
        """Drop scheduled processing without delivering anything."""
        self._cancel_debounce()
        if self._immediate is not None:
            self._immediate.cancel()

    def _cancel_debounce(self) -> None:
        if self._debounce is not None:
            self._debounce.cancel()
            self._debounce = None
