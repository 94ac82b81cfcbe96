"""
Resumable streaming of one batch from a source endpoint.

The batch body is read chunk by chunk; each chunk is framed into records and
every record is delivered before the next chunk is read, so at most one chunk
per Pod is buffered in memory.
"""

import logging
import time
from enum import Enum

import aiohttp

from collector.delivery import DeliveryClient, DeliveryOutcome
from collector.framing import build_envelope, frame, parse_record, record_size
from collector.models import BatchDescriptor, Endpoint
from collector.progress import BatchProgress
from core.errors.exceptions import StreamError
from core.http.streaming import CHUNK_SIZE, open_stream

logger = logging.getLogger(__name__)


class StreamOutcome(str, Enum):
    COMPLETED = "completed"
    SINK_UNAVAILABLE = "sink_unavailable"


class BatchStreamer:
    """
    Streams batches of one endpoint through the framer into the delivery client.

    Resumes at ``progress.frontier``: committed bytes plus records already
    handed to the sink. With ``supports_start_offset`` the server is asked to
    skip those bytes (``&start=N``); otherwise they are read and discarded.
    """

    def __init__(
        self,
        endpoint: Endpoint,
        session: aiohttp.ClientSession,
        delivery: DeliveryClient,
        supports_start_offset: bool = True,
        chunk_size: int = CHUNK_SIZE,
        sock_read_timeout: float | None = 60,
    ):
        self.endpoint = endpoint
        self._session = session
        self._delivery = delivery
        self._supports_start_offset = supports_start_offset
        self._chunk_size = chunk_size
        self._sock_read_timeout = sock_read_timeout
        self.remainder = b""

    def batch_url(self, batch_id: int, start: int = 0) -> str:
        url = f"{self.endpoint.target_url}/batch/{batch_id}?follow"
        if self._supports_start_offset and start > 0:
            url = f"{url}&start={start}"
        return url

    async def stream(
        self,
        batch: BatchDescriptor,
        progress: BatchProgress,
        sealed: bool = False,
    ) -> StreamOutcome:
        """
        Deliver the batch from its frontier until the body ends or the sink fails.

        Args:
            batch: Batch to stream
            progress: Ledger of the batch; records are reserved on it in order
            sealed: The batch can no longer grow (a newer batch exists), so a
                trailing partial line that exactly completes it is flushed

        Raises:
            StreamError: Non-200 response or transport failure mid-stream
        """
        start = progress.frontier
        url = self.batch_url(batch.id, start)
        to_discard = 0 if self._supports_start_offset else start
        self.remainder = b""

        logger.debug(
            "Streaming batch",
            extra={
                "batch_id": batch.id,
                "batch_size": batch.batch_size,
                "start_offset": start,
                "http_url": url,
            },
        )

        started = time.perf_counter()
        response, error = await open_stream(
            url,
            self._session,
            chunk_size=self._chunk_size,
            sock_read_timeout=self._sock_read_timeout,
        )
        if error:
            raise StreamError(
                f"Batch request failed: {error.error_message}",
                context={"batch_id": batch.id, "http_status": error.status_code},
            )

        records = 0
        try:
            async for chunk in response.chunk_iterator:
                if to_discard:
                    if len(chunk) <= to_discard:
                        to_discard -= len(chunk)
                        continue
                    chunk = chunk[to_discard:]
                    to_discard = 0

                lines, self.remainder = frame(self.remainder, chunk)
                for line in lines:
                    if not await self._forward(line, record_size(line), batch, progress):
                        logger.info(
                            "Sink unavailable, pausing batch",
                            extra={
                                "batch_id": batch.id,
                                "offset": progress.committed,
                                "records": records,
                            },
                        )
                        return StreamOutcome.SINK_UNAVAILABLE
                    records += 1
        except (aiohttp.ClientError, TimeoutError) as e:
            raise StreamError(
                f"Batch stream interrupted: {e}",
                cause=e,
                context={"batch_id": batch.id, "offset": progress.committed},
            ) from e
        finally:
            await response.close()

        if self.remainder and sealed and progress.frontier + len(self.remainder) == batch.batch_size:
            final = self.remainder
            self.remainder = b""
            if not await self._forward(final, len(final), batch, progress):
                return StreamOutcome.SINK_UNAVAILABLE
            records += 1

        logger.debug(
            "Batch stream ended",
            extra={
                "batch_id": batch.id,
                "records": records,
                "offset": progress.committed,
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
            },
        )
        return StreamOutcome.COMPLETED

    async def _forward(
        self,
        record: bytes,
        size: int,
        batch: BatchDescriptor,
        progress: BatchProgress,
    ) -> bool:
        """Reserve and deliver one record; False when the sink refused it."""
        ticket = progress.reserve(size)
        envelope = build_envelope(
            parse_record(record),
            batch.id,
            self.endpoint.source_identifier,
        )
        outcome = await self._delivery.deliver(envelope, size, progress, ticket)
        return outcome is DeliveryOutcome.DELIVERED


__all__ = ["BatchStreamer", "StreamOutcome"]
