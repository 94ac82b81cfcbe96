"""
Fleet stats reporting.

Every ``stats_interval_seconds`` the reporter reads the supervisor's summary,
logs one stats line and refreshes the Prometheus gauges.
"""

from typing import Any

from collector import metrics
from collector.fleet import FleetSupervisor
from collector.pod import PodLifecycle
from core.logging.periodic_logger import PeriodicStatsLogger


class StatsReporter:
    """Periodic console line plus gauges, driven by ``PeriodicStatsLogger``."""

    def __init__(self, supervisor: FleetSupervisor, interval_seconds: float = 5.0):
        self.supervisor = supervisor
        self._periodic = PeriodicStatsLogger(
            interval_seconds=interval_seconds,
            get_stats=self.collect,
            stage="stats",
        )

    def collect(self) -> dict[str, Any]:
        """Read the fleet summary and publish it to the gauges."""
        summary = self.supervisor.summary()
        metrics.update_fleet_gauges(
            {
                PodLifecycle.ACTIVE.value: summary["active"],
                PodLifecycle.DISABLED.value: summary["disabled"],
            },
            summary["unacked_bytes"],
        )
        return summary

    def start(self) -> None:
        self._periodic.start()

    async def stop(self) -> None:
        await self._periodic.stop()


__all__ = ["StatsReporter"]
