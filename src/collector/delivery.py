"""
At-least-once forwarding of record envelopes to the ingestion sink.

A record is committed (its bytes folded into the batch's persisted offset)
only after the sink answers 2xx. Failed records go to a per-Pod FIFO retry
queue that is re-attempted after a fixed backoff until the sink accepts them.
"""

import asyncio
import logging
from collections import OrderedDict
from dataclasses import dataclass
from enum import Enum
from typing import Any

import aiohttp

from collector import metrics
from collector.framing import serialize_envelope
from collector.models import Endpoint
from collector.offset_store import OffsetStore
from collector.progress import BatchProgress
from core.errors.exceptions import SinkDeliveryError
from core.http.client import post_json

logger = logging.getLogger(__name__)

DEFAULT_RETRY_BACKOFF_SECONDS = 5.0
DEFAULT_SINK_TIMEOUT_SECONDS = 30.0


class DeliveryOutcome(str, Enum):
    DELIVERED = "delivered"
    QUEUED = "queued"


@dataclass
class RetryPacket:
    """A record the sink has not accepted yet."""

    packet_id: int
    payload: bytes
    size: int
    progress: BatchProgress
    ticket: int

    @property
    def batch_id(self) -> int:
        return self.progress.batch_id


@dataclass
class DeliveryStats:
    total_sent_bytes: int = 0
    total_unacked_bytes: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "totalSentBytes": self.total_sent_bytes,
            "totalUnackedBytes": self.total_unacked_bytes,
        }


class RetryQueue:
    """FIFO of retry packets keyed by packet id."""

    def __init__(self):
        self._packets: OrderedDict[int, RetryPacket] = OrderedDict()

    def __len__(self) -> int:
        return len(self._packets)

    def __contains__(self, packet_id: int) -> bool:
        return packet_id in self._packets

    def push(self, packet: RetryPacket) -> None:
        if packet.packet_id in self._packets:
            return
        self._packets[packet.packet_id] = packet

    def remove(self, packet_id: int) -> RetryPacket | None:
        return self._packets.pop(packet_id, None)

    def snapshot(self) -> list[RetryPacket]:
        """Packets in enqueue order."""
        return list(self._packets.values())

    def clear(self) -> int:
        """Drop every packet; returns the bytes dropped."""
        dropped = sum(p.size for p in self._packets.values())
        self._packets.clear()
        return dropped


class DeliveryClient:
    """
    Sink client owned by one Pod.

    Owns the Pod's retry queue, delivery stats and sink connectivity flag.
    At most one retry task is pending at a time; it sleeps for the backoff,
    replays queued packets in order until one fails, and repeats while the
    queue is non-empty.
    """

    def __init__(
        self,
        endpoint: Endpoint,
        session: aiohttp.ClientSession,
        sink_url: str,
        offset_store: OffsetStore,
        retry_backoff_seconds: float = DEFAULT_RETRY_BACKOFF_SECONDS,
        request_timeout: float = DEFAULT_SINK_TIMEOUT_SECONDS,
        retry_queue: RetryQueue | None = None,
        stats: DeliveryStats | None = None,
    ):
        self.endpoint = endpoint
        self._session = session
        self._sink_url = sink_url
        self._offset_store = offset_store
        self._retry_backoff = retry_backoff_seconds
        self._request_timeout = request_timeout

        self.retry_queue = retry_queue if retry_queue is not None else RetryQueue()
        self.stats = stats if stats is not None else DeliveryStats()
        self.last_delivery_failed = False

        self._next_packet_id = 1
        self._retry_task: asyncio.Task | None = None
        self._closed = False

    @property
    def sink_connected(self) -> bool:
        return not self.last_delivery_failed

    @property
    def retry_pending(self) -> bool:
        return self._retry_task is not None and not self._retry_task.done()

    async def deliver(
        self,
        envelope: dict[str, Any],
        size: int,
        progress: BatchProgress,
        ticket: int,
    ) -> DeliveryOutcome:
        """
        POST one envelope and commit its bytes on success.

        On failure the record is queued for retry and a retry is scheduled;
        its bytes stay uncommitted until the retry succeeds.
        """
        payload = serialize_envelope(envelope)
        try:
            await self._attempt(payload)
        except SinkDeliveryError as e:
            packet = RetryPacket(
                packet_id=self._next_packet_id,
                payload=payload,
                size=size,
                progress=progress,
                ticket=ticket,
            )
            self._next_packet_id += 1
            self.retry_queue.push(packet)
            self.stats.total_unacked_bytes += size
            self._on_failure(e, packet)
            self.schedule_retry()
            return DeliveryOutcome.QUEUED

        await self.acknowledge(progress, ticket)
        self._on_success(size)
        return DeliveryOutcome.DELIVERED

    async def acknowledge(self, progress: BatchProgress, ticket: int) -> None:
        """Ack a reserved record and persist the offset if the prefix advanced."""
        if progress.ack(ticket):
            await self._offset_store.write(self.endpoint, progress.batch_id, progress.committed)

    async def flush_retries(self) -> int:
        """
        Re-attempt queued packets in enqueue order until one fails.

        Returns the number of packets delivered.
        """
        delivered = 0
        for packet in self.retry_queue.snapshot():
            if packet.packet_id not in self.retry_queue:
                continue
            try:
                await self._attempt(packet.payload)
            except SinkDeliveryError as e:
                self._on_failure(e, packet)
                break

            self.retry_queue.remove(packet.packet_id)
            self.stats.total_unacked_bytes -= packet.size
            await self.acknowledge(packet.progress, packet.ticket)
            self._on_success(packet.size)
            delivered += 1

            logger.debug(
                "Retried packet delivered",
                extra={
                    "packet_id": packet.packet_id,
                    "batch_id": packet.batch_id,
                    "bytes": packet.size,
                    "queue_depth": len(self.retry_queue),
                },
            )
        return delivered

    def schedule_retry(self) -> None:
        """Start the retry task unless one is already pending."""
        if self._closed or self.retry_pending:
            return
        self._retry_task = asyncio.create_task(self._retry_loop())

    async def close(self) -> None:
        """Cancel the pending retry and drop queued packets from memory."""
        self._closed = True
        if self._retry_task is not None:
            self._retry_task.cancel()
            try:
                await self._retry_task
            except asyncio.CancelledError:
                pass
            self._retry_task = None

        dropped = self.retry_queue.clear()
        self.stats.total_unacked_bytes = 0
        if dropped:
            logger.info(
                "Dropped unacknowledged packets on close",
                extra={"target_url": self.endpoint.target_url, "bytes": dropped},
            )

    async def _retry_loop(self) -> None:
        while len(self.retry_queue):
            await asyncio.sleep(self._retry_backoff)
            try:
                await self.flush_retries()
            except Exception as e:
                logger.error(
                    "Retry pass failed",
                    extra={"target_url": self.endpoint.target_url, "error": str(e)},
                    exc_info=True,
                )

    async def _attempt(self, payload: bytes) -> None:
        status, error = await post_json(
            self._sink_url,
            payload,
            self._session,
            timeout=self._request_timeout,
        )
        if error:
            raise SinkDeliveryError(
                f"Sink POST failed: {error.error_message}",
                status_code=error.status_code,
                context={"sink_url": self._sink_url},
            )

    def _on_success(self, size: int) -> None:
        self.stats.total_sent_bytes += size
        metrics.record_sent_bytes(size)
        if self.last_delivery_failed:
            self.last_delivery_failed = False
            logger.info(
                "Sink connectivity restored",
                extra={
                    "target_url": self.endpoint.target_url,
                    "queue_depth": len(self.retry_queue),
                },
            )

    def _on_failure(self, error: SinkDeliveryError, packet: RetryPacket) -> None:
        metrics.record_sink_failure()
        if not self.last_delivery_failed:
            self.last_delivery_failed = True
            logger.warning(
                "Sink unavailable, queueing records for retry",
                extra={
                    "target_url": self.endpoint.target_url,
                    "sink_url": self._sink_url,
                    "http_status": error.status_code,
                    "error": str(error),
                    "backoff_seconds": self._retry_backoff,
                },
            )
        logger.debug(
            "Packet queued for retry",
            extra={
                "packet_id": packet.packet_id,
                "batch_id": packet.batch_id,
                "bytes": packet.size,
                "queue_depth": len(self.retry_queue),
                "unacked_bytes": self.stats.total_unacked_bytes,
            },
        )


__all__ = [
    "DeliveryClient",
    "DeliveryOutcome",
    "DeliveryStats",
    "RetryPacket",
    "RetryQueue",
]
