"""Event types for turnstream."""

from turnstream.bus.events import BufferedMessage, ChatEvent, StreamChunk, TypingEvent

__all__ = ["BufferedMessage", "ChatEvent", "StreamChunk", "TypingEvent"]
