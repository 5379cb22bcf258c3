"""Transport boundary for outbound chat messages."""

from typing import Any, Protocol


class TransportError(RuntimeError):
    """A send, reply, edit or reaction call to the chat transport failed."""


class ChannelTransport(Protocol):
    """
    Outbound operations for a single chat channel.

    Handles returned by ``send``/``reply`` are opaque to the delivery engine;
    they are only passed back into ``edit``, ``react`` and ``remove_reaction``.
    None of the operations are assumed idempotent.
    """

    async def send(self, content: str) -> Any: ...

    async def reply(self, parent: Any, content: str) -> Any: ...

    async def edit(self, handle: Any, content: str) -> None: ...

    async def react(self, handle: Any, emoji: str) -> None: ...

    async def remove_reaction(self, handle: Any, emoji: str) -> None: ...
