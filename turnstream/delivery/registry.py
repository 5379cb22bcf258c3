"""Owned registry of live message streams, keyed by session."""

from __future__ import annotations

import asyncio

from loguru import logger

from turnstream.delivery.stream import MessageStream


class StreamRegistry:
    """
    Holds at most one live stream per session.

    Constructed once at startup; ``close()`` finalizes whatever is still open
    at shutdown so no scheduled processing outlives the event loop.
    """

    def __init__(self, **stream_options):
        self._streams: dict[str, MessageStream] = {}
        self._stream_options = stream_options

    def open(self, session_key: str, transport, *, reply_to=None) -> MessageStream:
        """Create a stream for ``session_key``, replacing any previous one."""
        previous = self._streams.pop(session_key, None)
        if previous is not None:
            logger.debug(f"Replacing live stream for {session_key}")
            previous.cancel_timers()
        stream = MessageStream(
            transport,
            reply_to=reply_to,
            session_key=session_key,
            **self._stream_options,
        )
        self._streams[session_key] = stream
        logger.info(f"New stream for {session_key}")
        return stream

    def get(self, session_key: str) -> MessageStream | None:
        return self._streams.get(session_key)

    def pop(self, session_key: str, stream: MessageStream | None = None) -> MessageStream | None:
        """Remove the entry; when ``stream`` is given only if it is still the live one."""
        current = self._streams.get(session_key)
        if current is None or (stream is not None and current is not stream):
            return None
        return self._streams.pop(session_key)

    def __len__(self) -> int:
        return len(self._streams)

    def __contains__(self, session_key: str) -> bool:
        return session_key in self._streams

    async def close(self) -> None:
        streams = list(self._streams.values())
        self._streams.clear()
        if streams:
            await asyncio.gather(*(s.finalize() for s in streams))
