"""Periodic statistics logging utility."""

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from core.logging.utilities import format_fleet_stats

logger = logging.getLogger(__name__)


class PeriodicStatsLogger:
    """
    Periodic fleet statistics logging with delta tracking.

    The owner provides a callback returning cumulative counters:
    ``active``, ``disabled``, ``sent_bytes``, ``unacked_bytes`` and
    ``sink_connected``. Each cycle logs totals plus bytes sent since the
    previous cycle.
    """

    def __init__(
        self,
        interval_seconds: float,
        get_stats: Callable[[], dict[str, Any]],
        stage: str = "stats",
    ):
        """
        Args:
            interval_seconds: Logging interval in seconds
            get_stats: Callback returning cumulative stats fields
            stage: Stage name for logging context
        """
        self.interval_seconds = interval_seconds
        self.get_stats = get_stats
        self.stage = stage
        self._task: asyncio.Task | None = None
        self._cycle_count = 0
        self._previous_sent = 0

    @property
    def running(self) -> bool:
        return self._task is not None

    def start(self) -> None:
        """Start the periodic logging task."""
        if self._task is not None:
            logger.warning("Periodic logger already running")
            return

        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Stop the periodic logging task."""
        if self._task is None:
            return

        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    def log_cycle(self) -> str:
        """Log one stats line and return the formatted message."""
        stats = self.get_stats()
        sent = stats.get("sent_bytes", 0)

        since_last = None if self._cycle_count == 0 else sent - self._previous_sent
        msg = format_fleet_stats(
            cycle_count=self._cycle_count,
            active=stats.get("active", 0),
            disabled=stats.get("disabled", 0),
            sent_bytes=sent,
            unacked_bytes=stats.get("unacked_bytes", 0),
            sink_connected=stats.get("sink_connected", True),
            since_last=since_last,
            interval_seconds=self.interval_seconds,
        )

        logger.info(
            msg,
            extra={
                "stage": self.stage,
                "cycle": self._cycle_count,
                "active": stats.get("active", 0),
                "disabled": stats.get("disabled", 0),
                "sent_bytes": sent,
                "unacked_bytes": stats.get("unacked_bytes", 0),
            },
        )

        self._previous_sent = sent
        self._cycle_count += 1
        return msg

    async def _run(self) -> None:
        try:
            while True:
                self.log_cycle()
                await asyncio.sleep(self.interval_seconds)
        except asyncio.CancelledError:
            logger.debug("Periodic stats logger task cancelled")
            raise
