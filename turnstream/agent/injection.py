"""Boundary to the collaborator that generates replies."""

import asyncio
from typing import Callable, Protocol

from turnstream.bus.events import StreamChunk

OnStream = Callable[[StreamChunk], None]

_CANCEL_MARKERS = ("cancelled", "canceled", "aborted")


class InjectionCancelled(RuntimeError):
    """Generation was stopped on request."""


def is_cancellation(exc: BaseException) -> bool:
    """Whether an error raised by an injector means a requested stop."""
    if isinstance(exc, (InjectionCancelled, asyncio.CancelledError)):
        return True
    text = str(exc).lower()
    return any(marker in text for marker in _CANCEL_MARKERS)


class Injector(Protocol):
    """
    Generates a reply for a session, streaming it as it goes.

    ``inject`` calls ``on_stream`` zero or more times before returning the
    final text or raising. ``cancel_inject`` asks a running generation to stop
    and reports whether there was one.
    """

    async def inject(
        self,
        session_key: str,
        text: str,
        *,
        on_stream: OnStream,
        sender: str | None = None,
        channel_id: str | None = None,
    ) -> str: ...

    def cancel_inject(self, session_key: str) -> bool: ...
