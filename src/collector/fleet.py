"""
Fleet supervision: keeps one running Pod per endpoint in the desired set.

The desired set comes from a ``DirectoryClient``. The first fetch must
succeed; afterwards the set is refreshed on a schedule and diffed against the
running Pods by ``target_url``.
"""

import asyncio
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import aiohttp

from collector.directory import DirectoryClient
from collector.models import Endpoint
from collector.offset_store import OffsetStore
from collector.pod import Pod, PodLifecycle
from config.config import CollectorConfig
from core.errors.exceptions import DirectoryError
from core.http.client import create_session
from core.logging.utilities import log_exception

logger = logging.getLogger(__name__)


class FleetState(str, Enum):
    UNINITIALIZED = "uninitialized"
    CONVERGED = "converged"


@dataclass
class ReconcileResult:
    started: list[str] = field(default_factory=list)
    stopped: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.started or self.stopped)


PodFactory = Callable[[Endpoint, aiohttp.ClientSession], Pod]


class FleetSupervisor:
    """
    Owns the set of live Pods and the HTTP sessions they share.

    Source requests and sink POSTs use separate connection pools: a Pod keeps
    its batch stream open while it waits on the sink, so a shared pool full of
    streams would leave no connection for delivery. The source pool is
    unbounded since each Pod holds at most one connection to its endpoint.

    Usage:
        supervisor = FleetSupervisor(config, directory)
        await supervisor.start()      # raises DirectoryError if first fetch fails
        ...
        await supervisor.stop()
    """

    def __init__(
        self,
        config: CollectorConfig,
        directory: DirectoryClient,
        session: aiohttp.ClientSession | None = None,
        pod_factory: PodFactory | None = None,
        sink_session: aiohttp.ClientSession | None = None,
    ):
        self.config = config
        self.directory = directory
        self.offset_store = OffsetStore(config.workspace_path)
        self.state = FleetState.UNINITIALIZED

        self._session = session
        self._owns_session = session is None
        self._sink_session = sink_session
        self._owns_sink_session = sink_session is None
        self._pod_factory = pod_factory or self._create_pod
        self._pods: dict[str, Pod] = {}
        self._refresh_task: asyncio.Task | None = None

    @property
    def pods(self) -> dict[str, Pod]:
        """Running Pods keyed by target URL (a copy)."""
        return dict(self._pods)

    @property
    def session(self) -> aiohttp.ClientSession | None:
        """Pool for discovery and batch streams."""
        return self._session

    @property
    def sink_session(self) -> aiohttp.ClientSession | None:
        """Pool for sink delivery."""
        return self._sink_session

    @property
    def converged(self) -> bool:
        return self.state is FleetState.CONVERGED

    async def start(self) -> ReconcileResult:
        """
        Fetch the desired set, start its Pods and schedule refreshes.

        Raises:
            DirectoryError: The first fetch failed; nothing was started.
        """
        if self._session is None:
            self._session = create_session(max_connections=0, max_connections_per_host=0)
        if self._sink_session is None:
            self._sink_session = create_session()

        try:
            desired = await self.directory.fetch()
        except DirectoryError:
            await self._close_session()
            raise

        result = await self.reconcile(desired)
        self.state = FleetState.CONVERGED
        self._refresh_task = asyncio.create_task(self._refresh_loop(), name="fleet-refresh")

        logger.info(
            "Fleet started",
            extra={"pods": len(self._pods), "started": len(result.started)},
        )
        return result

    async def refresh(self) -> ReconcileResult | None:
        """Re-fetch the desired set and reconcile; keeps the current set on DirectoryError."""
        try:
            desired = await self.directory.fetch()
        except DirectoryError as e:
            log_exception(
                logger,
                e,
                "Directory refresh failed, keeping last known endpoint set",
                level=logging.WARNING,
                include_traceback=False,
                pods=len(self._pods),
            )
            return None
        return await self.reconcile(desired)

    async def reconcile(self, desired: Iterable[Endpoint]) -> ReconcileResult:
        """
        Start Pods for new endpoints and stop Pods for removed ones.

        Endpoints present in both sets are left untouched. Duplicate target
        URLs collapse to their first occurrence.
        """
        wanted: dict[str, Endpoint] = {}
        for endpoint in desired:
            wanted.setdefault(endpoint.target_url, endpoint)

        to_stop = [url for url in self._pods if url not in wanted]
        to_start = [url for url in wanted if url not in self._pods]

        stopping = [self._pods.pop(url) for url in to_stop]
        if stopping:
            await asyncio.gather(*(pod.stop() for pod in stopping))

        for url in to_start:
            pod = self._pod_factory(wanted[url], self._session)
            self._pods[url] = pod
            pod.start()

        result = ReconcileResult(started=to_start, stopped=to_stop)
        if result.changed:
            logger.info(
                "Fleet reconciled",
                extra={
                    "started": len(to_start),
                    "stopped": len(to_stop),
                    "pods": len(self._pods),
                },
            )
        else:
            logger.debug("Fleet unchanged", extra={"pods": len(self._pods)})
        return result

    async def stop(self) -> None:
        """Cancel refreshes and stop every Pod concurrently."""
        if self._refresh_task is not None:
            self._refresh_task.cancel()
            try:
                await self._refresh_task
            except asyncio.CancelledError:
                pass
            self._refresh_task = None

        pods = list(self._pods.values())
        self._pods.clear()
        if pods:
            await asyncio.gather(*(pod.stop() for pod in pods))

        await self._close_session()
        logger.info("Fleet stopped", extra={"stopped": len(pods)})

    def stats(self) -> dict[str, Any]:
        """Stats surface: one entry per Pod plus sink connectivity."""
        pods = list(self._pods.values())
        return {
            "pods": [pod.snapshot() for pod in pods],
            "sinkConnected": any(pod.sink_connected for pod in pods),
        }

    def summary(self) -> dict[str, Any]:
        """Fleet-wide totals for the periodic stats line and gauges."""
        pods = list(self._pods.values())
        return {
            "active": sum(1 for p in pods if p.lifecycle is PodLifecycle.ACTIVE),
            "disabled": sum(1 for p in pods if p.lifecycle is PodLifecycle.DISABLED),
            "sent_bytes": sum(p.state.stats.total_sent_bytes for p in pods),
            "unacked_bytes": sum(p.state.stats.total_unacked_bytes for p in pods),
            "sink_connected": any(p.sink_connected for p in pods),
        }

    async def _refresh_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.reconcile_interval_seconds)
            try:
                await self.refresh()
            except Exception as e:
                log_exception(logger, e, "Unexpected error during fleet refresh")

    def _create_pod(self, endpoint: Endpoint, session: aiohttp.ClientSession) -> Pod:
        return Pod(
            endpoint,
            session,
            self.offset_store,
            self.config.sink_url,
            sink_session=self._sink_session,
            poll_interval_seconds=self.config.poll_interval_seconds,
            start_jitter_seconds=self.config.start_jitter_seconds,
            retry_backoff_seconds=self.config.retry_backoff_seconds,
            supports_start_offset=self.config.supports_start_offset,
            skip_history=self.config.skip_history,
            chunk_size=self.config.chunk_size,
        )

    async def _close_session(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None
        if self._owns_sink_session and self._sink_session is not None:
            await self._sink_session.close()
            self._sink_session = None


__all__ = ["FleetSupervisor", "FleetState", "ReconcileResult"]
