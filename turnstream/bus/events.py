"""Event types exchanged between chat channels and the turn arbiter."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from turnstream.delivery.transport import ChannelTransport


@dataclass
class ChatEvent:
    """A message observed in a chat channel, already classified by the channel."""

    channel: str  # Channel implementation name, e.g. "discord"
    channel_id: str
    sender_id: str
    sender_name: str
    content: str
    is_agent: bool = False  # Sent by another bot/agent rather than a human
    mentions_self: bool = False  # Explicitly mentions this system
    is_direct: bool = False  # Arrived through a private/direct channel
    message_id: str = ""
    message: Any = None  # Transport handle of the message itself (reply target)
    transport: ChannelTransport | None = None
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def session_key(self) -> str:
        """Session identifier for the conversation this event belongs to."""
        return f"{self.channel}-{self.channel_id}"


@dataclass
class TypingEvent:
    """Someone started typing in a channel."""

    channel: str
    channel_id: str
    user_id: str
    is_agent: bool = False


@dataclass
class StreamChunk:
    """An increment emitted by the injection collaborator while generating."""

    type: str  # "text" | "tool_use" | "complete" | "error" | "system"
    content: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def is_text(self) -> bool:
        return self.type == "text" and bool(self.content)


@dataclass(frozen=True)
class BufferedMessage:
    """One entry of a channel's recent-message buffer."""

    sender: str
    content: str
    message_id: str = ""
    is_agent: bool = False

    def render(self) -> str:
        return f"{self.sender}: {self.content}"
