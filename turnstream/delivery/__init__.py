"""Streaming delivery of generated text into length-limited chat messages."""

from turnstream.delivery.registry import StreamRegistry
from turnstream.delivery.scheduling import ScheduledTask
from turnstream.delivery.stream import DEBOUNCE_S, DRAIN_TIMEOUT_S, IDLE_SPLIT_S, MessageStream
from turnstream.delivery.transport import ChannelTransport, TransportError
from turnstream.delivery.unit import (
    EDIT_THRESHOLD,
    MESSAGE_LIMIT,
    Buffering,
    Finalized,
    FlushResult,
    MessageUnit,
    Sending,
    Sent,
)

__all__ = [
    "Buffering",
    "ChannelTransport",
    "DEBOUNCE_S",
    "DRAIN_TIMEOUT_S",
    "EDIT_THRESHOLD",
    "Finalized",
    "FlushResult",
    "IDLE_SPLIT_S",
    "MESSAGE_LIMIT",
    "MessageStream",
    "MessageUnit",
    "ScheduledTask",
    "Sending",
    "Sent",
    "StreamRegistry",
    "TransportError",
]
