"""Ticker service - periodic sweep that fires queued agent replies."""

import asyncio
import time
from typing import Any

from loguru import logger

from turnstream.arbitration.arbiter import TurnArbiter

# Default sweep interval
DEFAULT_TICK_INTERVAL_S = 1.0


class TurnTicker:
    """
    Periodic service that lets the arbiter fire replies whose cooldown ran out.

    Each tick is a synchronous sweep; the replies it fires run as their own
    tasks so a slow generation never delays the next tick.
    """

    def __init__(
        self,
        arbiter: TurnArbiter,
        interval_s: float = DEFAULT_TICK_INTERVAL_S,
        enabled: bool = True,
    ):
        self.arbiter = arbiter
        self.interval_s = interval_s
        self.enabled = enabled
        self._running = False
        self._task: asyncio.Task | None = None
        self._started_at: float | None = None
        self._last_run_at: float | None = None
        self._fired_total = 0

    async def start(self) -> None:
        """Start the ticker."""
        if not self.enabled:
            logger.info("Turn ticker disabled")
            return

        self._running = True
        self._started_at = time.time()
        self._task = asyncio.create_task(self._run_loop())
        logger.info(f"Turn ticker started (every {self.interval_s}s)")

    def stop(self) -> None:
        """Stop the ticker."""
        self._running = False
        if self._task:
            self._task.cancel()
            self._task = None

    async def _run_loop(self) -> None:
        """Main ticker loop."""
        while self._running:
            try:
                await asyncio.sleep(self.interval_s)
                if self._running:
                    self._tick()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Turn ticker error: {e}")

    def _tick(self) -> list[str]:
        """Execute a single sweep."""
        self._last_run_at = time.time()
        fired = self.arbiter.sweep()
        self._fired_total += len(fired)
        return fired

    def status(self) -> dict[str, Any]:
        """Return ticker status."""
        def _to_ms(ts: float | None) -> int | None:
            return int(ts * 1000) if ts else None
        return {
            "enabled": self.enabled,
            "running": self._running,
            "interval_s": self.interval_s,
            "started_at_ms": _to_ms(self._started_at),
            "last_run_at_ms": _to_ms(self._last_run_at),
            "fired_total": self._fired_total,
        }
