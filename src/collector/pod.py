"""
Per-endpoint collection engine.

A Pod periodically lists its endpoint's batches and streams every batch that
still has undelivered bytes, strictly in ascending id order. All state of one
endpoint (offset cache, framing remainder, retry queue, stats) lives in its
``PodState`` and is never touched by other Pods.
"""

import asyncio
import logging
import random
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

import aiohttp
from pydantic import ValidationError

from collector import metrics
from collector.delivery import (
    DEFAULT_RETRY_BACKOFF_SECONDS,
    DEFAULT_SINK_TIMEOUT_SECONDS,
    DeliveryClient,
    DeliveryStats,
    RetryQueue,
)
from collector.models import BatchDescriptor, Endpoint
from collector.offset_store import OffsetStore
from collector.progress import BatchProgress
from collector.streamer import BatchStreamer, StreamOutcome
from core.errors.exceptions import CollectorError, IntegrityError, PollError
from core.http.client import fetch_json
from core.http.streaming import CHUNK_SIZE
from core.logging.context import set_log_context
from core.logging.utilities import log_exception

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_SECONDS = 60.0
DEFAULT_START_JITTER_SECONDS = 30.0


class PodLifecycle(str, Enum):
    ACTIVE = "active"
    DISABLED = "disabled"
    STOPPED = "stopped"


@dataclass
class PodState:
    """Everything one Pod knows about its endpoint."""

    endpoint: Endpoint
    work_dir: Path
    offsets: dict[int, BatchProgress] = field(default_factory=dict)
    remainder: bytes = b""
    retry_queue: RetryQueue = field(default_factory=RetryQueue)
    lifecycle: PodLifecycle = PodLifecycle.ACTIVE
    stats: DeliveryStats = field(default_factory=DeliveryStats)
    skipped_batches: set[int] = field(default_factory=set)
    last_batch_sizes: dict[int, int] = field(default_factory=dict)


class Pod:
    """
    Collector for one endpoint.

    ``start()`` launches a self-rescheduling task: a random start delay of up
    to ``start_jitter_seconds``, then ``tick()`` every
    ``poll_interval_seconds``. The next tick is only scheduled once the
    previous one has settled, so at most one discovery cycle is in flight.

    ``session`` serves discovery and batch streams; sink POSTs go through
    ``sink_session`` when given, otherwise through ``session``.
    """

    def __init__(
        self,
        endpoint: Endpoint,
        session: aiohttp.ClientSession,
        offset_store: OffsetStore,
        sink_url: str,
        poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
        start_jitter_seconds: float = DEFAULT_START_JITTER_SECONDS,
        retry_backoff_seconds: float = DEFAULT_RETRY_BACKOFF_SECONDS,
        supports_start_offset: bool = True,
        skip_history: bool = False,
        chunk_size: int = CHUNK_SIZE,
        request_timeout: float = DEFAULT_SINK_TIMEOUT_SECONDS,
        sink_session: aiohttp.ClientSession | None = None,
    ):
        self.endpoint = endpoint
        self.state = PodState(endpoint=endpoint, work_dir=offset_store.work_dir(endpoint))

        self._session = session
        self._offset_store = offset_store
        self._poll_interval = poll_interval_seconds
        self._start_jitter = start_jitter_seconds
        self._skip_history = skip_history
        self._request_timeout = request_timeout
        self._history_checked = False

        self.delivery = DeliveryClient(
            endpoint,
            sink_session or session,
            sink_url,
            offset_store,
            retry_backoff_seconds=retry_backoff_seconds,
            request_timeout=request_timeout,
            retry_queue=self.state.retry_queue,
            stats=self.state.stats,
        )
        self.streamer = BatchStreamer(
            endpoint,
            session,
            self.delivery,
            supports_start_offset=supports_start_offset,
            chunk_size=chunk_size,
        )

        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None

    def __repr__(self) -> str:
        return f"Pod(target_url={self.target_url!r}, lifecycle={self.lifecycle.value})"

    @property
    def target_url(self) -> str:
        return self.endpoint.target_url

    @property
    def lifecycle(self) -> PodLifecycle:
        return self.state.lifecycle

    @property
    def sink_connected(self) -> bool:
        return self.delivery.sink_connected

    def start(self) -> None:
        if self._task is not None:
            logger.warning("Pod already started", extra={"target_url": self.target_url})
            return
        self._task = asyncio.create_task(self._run(), name=f"pod:{self.target_url}")

    async def stop(self) -> None:
        """Abort in-flight work, cancel the schedule and the pending retry."""
        if self.state.lifecycle is PodLifecycle.STOPPED:
            return

        self.state.lifecycle = PodLifecycle.STOPPED
        self._stop_event.set()

        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        await self.delivery.close()
        self._offset_store.forget(self.endpoint)
        logger.info(
            "Pod stopped",
            extra={"target_url": self.target_url, "sent_bytes": self.state.stats.total_sent_bytes},
        )

    def snapshot(self) -> dict[str, Any]:
        """Stats entry for this Pod."""
        return {
            "state": self.state.lifecycle.value,
            "targetUrl": self.endpoint.target_url,
            "serviceName": self.endpoint.service_name,
            "stats": self.state.stats.to_dict(),
        }

    async def tick(self) -> None:
        """
        One discovery cycle. Never raises except on cancellation.

        Poll failures disable the Pod until the next successful poll; stream
        failures end the cycle and the batch resumes from its committed offset
        on the next one.
        """
        try:
            await self._tick()
        except CollectorError as e:
            log_exception(
                logger,
                e,
                "Tick ended with error",
                level=logging.WARNING,
                include_traceback=False,
                target_url=self.target_url,
            )
        except Exception as e:
            log_exception(logger, e, "Unexpected error in tick", target_url=self.target_url)

    async def _run(self) -> None:
        set_log_context(service=self.endpoint.service_name, target_url=self.target_url)

        delay = random.uniform(0, self._start_jitter) if self._start_jitter > 0 else 0
        logger.debug("Pod starting", extra={"delay_seconds": delay})
        if await self._wait_stopped(delay):
            return

        while not self._stop_event.is_set():
            await self.tick()
            if await self._wait_stopped(self._poll_interval):
                return

    async def _wait_stopped(self, timeout: float) -> bool:
        """Sleep up to ``timeout``; True if the Pod was stopped meanwhile."""
        if timeout <= 0:
            return self._stop_event.is_set()
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=timeout)
        except TimeoutError:
            return False
        return True

    async def _tick(self) -> None:
        try:
            batches = await self.discover()
        except PollError as e:
            metrics.record_poll_error()
            if self.state.lifecycle is PodLifecycle.ACTIVE:
                self.state.lifecycle = PodLifecycle.DISABLED
                log_exception(
                    logger,
                    e,
                    "Batch discovery failed, Pod disabled until next successful poll",
                    level=logging.WARNING,
                    include_traceback=False,
                    target_url=self.target_url,
                )
            else:
                logger.debug("Batch discovery still failing", extra={"error": str(e)})
            return

        if self.state.lifecycle is PodLifecycle.DISABLED:
            logger.info("Batch discovery recovered", extra={"target_url": self.target_url})
        if self.state.lifecycle is not PodLifecycle.STOPPED:
            self.state.lifecycle = PodLifecycle.ACTIVE

        if not self._history_checked:
            await self._check_history(batches)

        await self._process_batches(batches)

    async def discover(self) -> list[BatchDescriptor]:
        """List the endpoint's batches sorted by id. Raises PollError."""
        response, error = await fetch_json(
            self.target_url, self._session, timeout=self._request_timeout
        )
        if error:
            raise PollError(
                f"Batch list request failed: {error.error_message}",
                context={"http_status": error.status_code},
            )

        data = response.data
        if isinstance(data, dict) and data.get("status") == "error":
            raise PollError(f"Endpoint reported an error: {data}")
        if not isinstance(data, list):
            raise PollError(f"Unexpected batch list payload of type {type(data).__name__}")

        try:
            batches = [BatchDescriptor.model_validate(item) for item in data]
        except ValidationError as e:
            raise PollError(f"Malformed batch descriptor: {e}", cause=e) from e

        batches.sort(key=lambda b: b.id)
        logger.debug("Discovered batches", extra={"records": len(batches)})
        return batches

    async def _check_history(self, batches: list[BatchDescriptor]) -> None:
        """On an endpoint never seen by this workspace, optionally mark existing batches delivered."""
        self._history_checked = True
        existed = await self._offset_store.ensure_work_dir(self.endpoint)
        if existed or not self._skip_history:
            return

        for batch in batches:
            await self._offset_store.write(self.endpoint, batch.id, batch.batch_size)
        logger.info(
            "New endpoint, skipping existing history",
            extra={"target_url": self.target_url, "records": len(batches)},
        )

    async def _process_batches(self, batches: list[BatchDescriptor]) -> None:
        if not batches:
            return

        newest_id = batches[-1].id
        for batch in batches:
            if batch.id in self.state.skipped_batches:
                continue

            previous_size = self.state.last_batch_sizes.get(batch.id)
            if previous_size is not None and batch.batch_size < previous_size:
                self._skip_batch(
                    batch,
                    previous_size,
                    f"Batch {batch.id} shrank from {previous_size} to {batch.batch_size} bytes",
                )
                continue
            self.state.last_batch_sizes[batch.id] = batch.batch_size

            progress = await self._progress_for(batch.id)
            if progress.committed > batch.batch_size:
                self._skip_batch(
                    batch,
                    progress.committed,
                    f"Delivered {progress.committed} bytes of batch {batch.id} "
                    f"but it only has {batch.batch_size}",
                )
                continue

            if progress.is_complete(batch.batch_size):
                continue

            if progress.is_accounted(batch.batch_size):
                # Every byte is with the sink; wait for retries before moving on
                logger.debug(
                    "Batch awaiting retries",
                    extra={"batch_id": batch.id, "offset": progress.committed},
                )
                return

            try:
                outcome = await self.streamer.stream(
                    batch, progress, sealed=batch.id != newest_id
                )
            finally:
                self.state.remainder = self.streamer.remainder

            if outcome is StreamOutcome.SINK_UNAVAILABLE:
                return

            if not progress.is_complete(batch.batch_size):
                logger.debug(
                    "Batch incomplete after stream end",
                    extra={
                        "batch_id": batch.id,
                        "batch_size": batch.batch_size,
                        "offset": progress.committed,
                    },
                )
                return

            logger.info(
                "Batch delivered",
                extra={"batch_id": batch.id, "offset": progress.committed},
            )

    async def _progress_for(self, batch_id: int) -> BatchProgress:
        progress = self.state.offsets.get(batch_id)
        if progress is None:
            committed = await self._offset_store.read(self.endpoint, batch_id)
            progress = BatchProgress(batch_id, committed)
            self.state.offsets[batch_id] = progress
        return progress

    def _skip_batch(self, batch: BatchDescriptor, delivered: int, message: str) -> None:
        self.state.skipped_batches.add(batch.id)
        metrics.record_integrity_error()
        error = IntegrityError(
            message,
            batch_id=batch.id,
            delivered=delivered,
            batch_size=batch.batch_size,
        )
        log_exception(
            logger,
            error,
            "Integrity error, batch skipped",
            include_traceback=False,
            target_url=self.target_url,
            batch_id=batch.id,
            delivered=delivered,
            batch_size=batch.batch_size,
        )


__all__ = ["Pod", "PodLifecycle", "PodState"]
