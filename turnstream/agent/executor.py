"""Runs one generation per channel and streams it into chat messages."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from loguru import logger

from turnstream.agent.injection import Injector, is_cancellation
from turnstream.bus.events import StreamChunk
from turnstream.delivery.registry import StreamRegistry
from turnstream.delivery.stream import MessageStream
from turnstream.delivery.transport import ChannelTransport

if TYPE_CHECKING:
    from turnstream.arbitration.queue import ChannelQueue, ChannelQueueRegistry


class ExecutionResult(str, Enum):
    DROPPED = "dropped"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


class CancelOutcome(str, Enum):
    STOPPED = "stopped"
    DROPPED_PENDING = "dropped_pending"
    NOTHING = "nothing"


CANCEL_REPLIES = {
    CancelOutcome.STOPPED: "Stopped.",
    CancelOutcome.DROPPED_PENDING: "Dropped the queued reply.",
    CancelOutcome.NOTHING: "Nothing to cancel.",
}


@dataclass
class ReplyRequest:
    """Everything needed to generate and deliver one reply."""

    channel_id: str
    session_key: str
    sender_name: str
    prompt: str
    message: Any = None  # Triggering message; the first unit replies to it
    transport: ChannelTransport | None = None
    trigger_id: str = ""


class ExecutionGuard:
    """
    Ensures at most one active generation per channel.

    The channel's ``responding`` flag is set synchronously in ``start`` and
    cleared on every exit path, so a second trigger arriving in between is
    dropped rather than queued.
    """

    def __init__(
        self,
        injector: Injector,
        queues: ChannelQueueRegistry,
        streams: StreamRegistry,
        *,
        ack_emoji: str = "👀",
        done_emoji: str = "✅",
        error_emoji: str = "❌",
        error_reply: str = "Error processing your request.",
    ):
        self.injector = injector
        self.queues = queues
        self.streams = streams
        self.ack_emoji = ack_emoji
        self.done_emoji = done_emoji
        self.error_emoji = error_emoji
        self.error_reply = error_reply
        self._running: dict[str, ReplyRequest] = {}

    def is_responding(self, channel_id: str) -> bool:
        queue = self.queues.get(channel_id)
        return queue is not None and queue.responding

    def start(self, request: ReplyRequest) -> asyncio.Task | None:
        """Claim the channel and schedule the generation, or return None if busy."""
        queue = self.queues.get_or_create(request.channel_id)
        if queue.responding:
            logger.info(
                f"Channel {request.channel_id} is already responding, "
                f"dropping trigger from {request.sender_name}"
            )
            return None

        queue.responding = True
        self._running[request.channel_id] = request
        stream = self.streams.open(request.session_key, request.transport, reply_to=request.message)
        task = asyncio.ensure_future(self._run(request, queue, stream))
        task.add_done_callback(lambda _t: self._release(request, queue))
        return task

    async def execute_inject(self, request: ReplyRequest) -> ExecutionResult:
        task = self.start(request)
        if task is None:
            return ExecutionResult.DROPPED
        return await task

    async def _run(self, request: ReplyRequest, queue: ChannelQueue, stream: MessageStream) -> ExecutionResult:
        result = ExecutionResult.FAILED
        await self._react(request, self.ack_emoji)
        try:
            await self.injector.inject(
                request.session_key,
                request.prompt,
                on_stream=lambda chunk: self._on_chunk(stream, chunk),
                sender=request.sender_name,
                channel_id=request.channel_id,
            )
            result = ExecutionResult.COMPLETED
        except asyncio.CancelledError:
            result = ExecutionResult.CANCELLED
            raise
        except Exception as e:
            if is_cancellation(e):
                logger.info(f"Generation for {request.session_key} cancelled")
                result = ExecutionResult.CANCELLED
            else:
                logger.error(f"Inject failed for {request.session_key}: {e}")
        finally:
            await stream.finalize()
            self.streams.pop(request.session_key, stream)
            self._release(request, queue)
            await self._unreact(request, self.ack_emoji)

        if stream.last_error is not None:
            logger.warning(f"Delivery for {request.session_key} hit a transport error: {stream.last_error}")

        if result is ExecutionResult.COMPLETED:
            queue.clear_through(request.trigger_id)
            await self._react(request, self.done_emoji)
        elif result is ExecutionResult.FAILED:
            await self._react(request, self.error_emoji)
            await self._reply(request, self.error_reply)
        return result

    def _release(self, request: ReplyRequest, queue: ChannelQueue) -> None:
        # Also reached from the task's done callback when it was cancelled before running
        if self._running.get(request.channel_id) is request:
            del self._running[request.channel_id]
            queue.responding = False

    def _on_chunk(self, stream: MessageStream, chunk: StreamChunk) -> None:
        if chunk.is_text:
            stream.append(chunk.content)
        elif chunk.type == "error":
            logger.warning(f"Injector reported an error for {stream.session_key}: {chunk.content}")
        else:
            logger.debug(f"Ignoring {chunk.type} chunk for {stream.session_key}")

    async def cancel(self, channel_id: str) -> CancelOutcome:
        """Drop the pending agent reply and stop the active generation, if any."""
        queue = self.queues.get(channel_id)
        dropped = queue.cancel_pending() if queue is not None else None

        request = self._running.get(channel_id)
        if request is not None:
            stopped = self.injector.cancel_inject(request.session_key)
            stream = self.streams.get(request.session_key)
            if stream is not None:
                await stream.finalize()
            if stopped or stream is not None:
                logger.info(f"Cancelled active generation in {channel_id}")
                return CancelOutcome.STOPPED

        if dropped is not None:
            logger.info(f"Dropped queued reply to {dropped.trigger.sender_name} in {channel_id}")
            return CancelOutcome.DROPPED_PENDING
        return CancelOutcome.NOTHING

    async def _react(self, request: ReplyRequest, emoji: str) -> None:
        if request.transport is None or request.message is None:
            return
        try:
            await request.transport.react(request.message, emoji)
        except Exception as e:
            logger.debug(f"Reaction {emoji} failed: {e}")

    async def _unreact(self, request: ReplyRequest, emoji: str) -> None:
        if request.transport is None or request.message is None:
            return
        try:
            await request.transport.remove_reaction(request.message, emoji)
        except Exception as e:
            logger.debug(f"Removing reaction {emoji} failed: {e}")

    async def _reply(self, request: ReplyRequest, content: str) -> None:
        if request.transport is None:
            return
        try:
            if request.message is not None:
                await request.transport.reply(request.message, content)
            else:
                await request.transport.send(content)
        except Exception as e:
            logger.warning(f"Could not post error reply in {request.channel_id}: {e}")
