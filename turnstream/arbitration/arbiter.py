"""Decides whether an inbound chat event gets a reply now, later or never."""

from __future__ import annotations

import asyncio
import time
from enum import Enum
from typing import Callable

from loguru import logger

from turnstream.agent.executor import CANCEL_REPLIES, CancelOutcome, ExecutionGuard, ExecutionResult, ReplyRequest
from turnstream.arbitration.queue import ChannelQueue, ChannelQueueRegistry
from turnstream.bus.events import ChatEvent, TypingEvent

# Minimum wait before answering another agent
AGENT_COOLDOWN_S = 5.0

# How long a human typing signal holds back queued agent replies
TYPING_WINDOW_S = 15.0

CONTEXT_HEADER = "[Recent messages]"

_CANCEL_COMMANDS = {"/cancel", "!cancel"}


class Routing(str, Enum):
    BUFFERED = "buffered"  # Kept as context only
    QUEUED = "queued"  # Agent mention waiting for the ticker
    EXECUTED = "executed"
    DROPPED = "dropped"  # Channel was already responding
    CANCEL_REQUESTED = "cancel_requested"


def is_cancel_command(content: str) -> bool:
    text = (content or "").strip().lower()
    return text in _CANCEL_COMMANDS


class TurnArbiter:
    """
    Turn policy shared by every channel.

    Humans who mention the system (or write in a DM) are answered at once and
    pre-empt any queued agent reply. Agents who mention it are answered only
    after a cooldown, never while a human is typing and never while the
    channel is already responding. Everything else is context.
    """

    def __init__(
        self,
        queues: ChannelQueueRegistry,
        guard: ExecutionGuard,
        *,
        clock: Callable[[], float] = time.monotonic,
        cooldown_s: float = AGENT_COOLDOWN_S,
        typing_window_s: float = TYPING_WINDOW_S,
    ):
        self.queues = queues
        self.guard = guard
        self.cooldown_s = cooldown_s
        self.typing_window_s = typing_window_s
        self._clock = clock
        self._fired: set[asyncio.Task] = set()

    async def handle_event(self, event: ChatEvent, *, allowed: bool = True) -> Routing:
        """
        Buffer ``event`` and act on it.

        ``allowed`` is False for humans outside the channel's allow list; their
        messages are still kept as context.
        """
        queue = self.queues.get_or_create(event.channel_id)
        queue.remember(event)

        if event.is_agent:
            if not event.mentions_self:
                return Routing.BUFFERED
            replaced = queue.pending is not None
            pending = queue.queue_reply(event, self._clock(), self.cooldown_s)
            logger.info(
                f"Queued reply to agent {event.sender_name} in {event.channel_id} "
                f"(ready in {pending.ready_at - pending.queued_at:.1f}s"
                f"{', replacing previous' if replaced else ''})"
            )
            return Routing.QUEUED

        if not (event.mentions_self or event.is_direct) or not allowed:
            return Routing.BUFFERED

        if is_cancel_command(event.content):
            outcome = await self.guard.cancel(event.channel_id)
            await self._report_cancel(event, outcome)
            return Routing.CANCEL_REQUESTED

        dropped = queue.cancel_pending()
        if dropped is not None:
            logger.info(
                f"Human {event.sender_name} pre-empted queued reply to "
                f"{dropped.trigger.sender_name} in {event.channel_id}"
            )

        result = await self.guard.execute_inject(self.build_request(event, queue))
        if result is ExecutionResult.DROPPED:
            return Routing.DROPPED
        return Routing.EXECUTED

    def note_typing(self, event: TypingEvent) -> None:
        """Refresh the human typing window; agents typing are ignored."""
        if event.is_agent:
            return
        self.queues.get_or_create(event.channel_id).note_typing(self._clock(), self.typing_window_s)
        logger.debug(f"{event.user_id} typing in {event.channel_id}")

    def sweep(self, now: float | None = None) -> list[str]:
        """Fire every pending agent reply that may go now; return their channel ids."""
        now = self._clock() if now is None else now
        fired: list[str] = []
        for channel_id, queue in self.queues.items():
            if not queue.ready(now):
                continue
            pending = queue.cancel_pending()
            task = self.guard.start(self.build_request(pending.trigger, queue))
            if task is None:
                continue
            logger.info(f"Firing queued reply to {pending.trigger.sender_name} in {channel_id}")
            self._fired.add(task)
            task.add_done_callback(self._fired.discard)
            fired.append(channel_id)
        return fired

    def build_request(self, event: ChatEvent, queue: ChannelQueue) -> ReplyRequest:
        prompt = event.content
        context = queue.context_before(event.message_id)
        if context:
            transcript = "\n".join(message.render() for message in context)
            prompt = f"{CONTEXT_HEADER}\n{transcript}\n\n{event.sender_name}: {event.content}"
        return ReplyRequest(
            channel_id=event.channel_id,
            session_key=event.session_key,
            sender_name=event.sender_name,
            prompt=prompt,
            message=event.message,
            transport=event.transport,
            trigger_id=event.message_id,
        )

    async def _report_cancel(self, event: ChatEvent, outcome: CancelOutcome) -> None:
        if event.transport is None:
            return
        try:
            if event.message is not None:
                await event.transport.reply(event.message, CANCEL_REPLIES[outcome])
            else:
                await event.transport.send(CANCEL_REPLIES[outcome])
        except Exception as e:
            logger.warning(f"Could not report cancel outcome in {event.channel_id}: {e}")

    async def shutdown(self) -> None:
        """Drop queued replies and stop generations the ticker started."""
        self.queues.clear()
        tasks = list(self._fired)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._fired.clear()
