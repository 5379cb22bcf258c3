"""Per-channel turn state: recent traffic, a pending agent reply, typing and responding."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Iterator

from turnstream.bus.events import BufferedMessage, ChatEvent

# Recent messages kept per channel as reply context
BUFFER_SIZE = 20


@dataclass
class PendingAgentReply:
    """A reply to another agent's mention, waiting out its cooldown."""

    trigger: ChatEvent
    queued_at: float
    ready_at: float


class ChannelQueue:
    """Mutable turn state for a single channel."""

    def __init__(self, channel_id: str, capacity: int = BUFFER_SIZE):
        self.channel_id = channel_id
        self.buffer: deque[BufferedMessage] = deque(maxlen=capacity)
        self.pending: PendingAgentReply | None = None
        self.typing_until = 0.0
        self.responding = False

    def remember(self, event: ChatEvent) -> None:
        self.buffer.append(
            BufferedMessage(
                sender=event.sender_name,
                content=event.content,
                message_id=event.message_id,
                is_agent=event.is_agent,
            )
        )

    def queue_reply(self, event: ChatEvent, now: float, cooldown_s: float) -> PendingAgentReply:
        """Replace whatever reply was pending with one for ``event``."""
        self.pending = PendingAgentReply(trigger=event, queued_at=now, ready_at=now + cooldown_s)
        return self.pending

    def cancel_pending(self) -> PendingAgentReply | None:
        pending, self.pending = self.pending, None
        return pending

    def note_typing(self, now: float, window_s: float) -> None:
        self.typing_until = max(self.typing_until, now + window_s)

    def is_typing(self, now: float) -> bool:
        return now < self.typing_until

    def ready(self, now: float) -> bool:
        """True when the pending reply may fire."""
        return (
            self.pending is not None
            and not self.responding
            and not self.is_typing(now)
            and now >= self.pending.ready_at
        )

    def context_before(self, trigger_id: str) -> list[BufferedMessage]:
        """Buffered messages other than the trigger itself, oldest first."""
        entries = list(self.buffer)
        if trigger_id:
            return [m for m in entries if m.message_id != trigger_id]
        # Without an id the trigger is the newest entry
        return entries[:-1]

    def clear_through(self, trigger_id: str = "") -> None:
        """
        Forget everything up to and including the trigger.

        Messages that arrived while the reply was being generated stay as
        context for the next one. Unknown ids clear the whole buffer.
        """
        entries = list(self.buffer)
        for index, message in enumerate(entries):
            if trigger_id and message.message_id == trigger_id:
                self.buffer.clear()
                self.buffer.extend(entries[index + 1:])
                return
        self.buffer.clear()


class ChannelQueueRegistry:
    """Owns every ``ChannelQueue``; created at startup, cleared at shutdown."""

    def __init__(self, capacity: int = BUFFER_SIZE):
        self.capacity = capacity
        self._queues: dict[str, ChannelQueue] = {}

    def get(self, channel_id: str) -> ChannelQueue | None:
        return self._queues.get(channel_id)

    def get_or_create(self, channel_id: str) -> ChannelQueue:
        queue = self._queues.get(channel_id)
        if queue is None:
            queue = ChannelQueue(channel_id, capacity=self.capacity)
            self._queues[channel_id] = queue
        return queue

    def items(self) -> Iterator[tuple[str, ChannelQueue]]:
        return iter(list(self._queues.items()))

    def __len__(self) -> int:
        return len(self._queues)

    def clear(self) -> None:
        for queue in self._queues.values():
            queue.cancel_pending()
        self._queues.clear()
