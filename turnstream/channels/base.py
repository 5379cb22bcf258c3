"""Base channel interface for chat platforms."""

from abc import ABC, abstractmethod
from typing import Any

from loguru import logger

from turnstream.arbitration.arbiter import Routing, TurnArbiter
from turnstream.bus.events import ChatEvent, TypingEvent


class BaseChannel(ABC):
    """
    Abstract base class for chat channel implementations.

    Each channel classifies what it observes into ``ChatEvent`` and
    ``TypingEvent`` values and hands them to the turn arbiter, which decides
    who gets answered and when.
    """

    name: str = "base"

    def __init__(self, config: Any, arbiter: TurnArbiter):
        """
        Initialize the channel.

        Args:
            config: Channel-specific configuration.
            arbiter: The turn arbiter shared by all channels.
        """
        self.config = config
        self.arbiter = arbiter
        self._running = False

    @abstractmethod
    async def start(self) -> None:
        """
        Start the channel and begin listening for messages.

        This should be a long-running async task that connects to the chat
        platform and forwards events via _handle_event()/_handle_typing().
        """
        pass

    @abstractmethod
    async def stop(self) -> None:
        """Stop the channel and clean up resources."""
        pass

    def is_allowed(self, sender_id: str) -> bool:
        """
        Check if a sender may trigger replies.

        Args:
            sender_id: The sender's identifier.

        Returns:
            True if allowed, False otherwise.
        """
        allow_list = getattr(self.config, "allow_from", [])

        # If no allow list, deny everyone
        if not allow_list:
            return False
        if "*" in allow_list:
            return True
        return str(sender_id) in allow_list

    async def _handle_event(self, event: ChatEvent) -> Routing:
        """Forward a classified message to the arbiter."""
        allowed = event.is_agent or self.is_allowed(event.sender_id)
        if not allowed and (event.mentions_self or event.is_direct):
            logger.warning(
                f"Access denied for sender {event.sender_id} on channel {self.name}. "
                f"Add them to allowFrom list in config to grant access."
            )
        return await self.arbiter.handle_event(event, allowed=allowed)

    def _handle_typing(self, event: TypingEvent) -> None:
        self.arbiter.note_typing(event)

    @property
    def is_running(self) -> bool:
        """Check if the channel is running."""
        return self._running
