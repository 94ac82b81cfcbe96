"""
In-memory delivery ledger for one batch.

Records are reserved in stream order before they are sent and acknowledged
when the sink accepts them, possibly out of order when retries are pending.
Only the contiguous acknowledged prefix counts as committed; that prefix is
what the offset store persists, so a crash never skips a record that is still
awaiting retry.
"""

from collections import deque
from dataclasses import dataclass


@dataclass
class _Segment:
    ticket: int
    size: int
    acked: bool = False


class BatchProgress:
    """
    Committed bytes plus reserved (in-flight or retry-pending) records.

    ``committed`` only ever grows. ``frontier`` is the first byte not yet
    handed to the sink: the position a new stream of this batch resumes from.

    Example:
        >>> progress = BatchProgress(batch_id=1, committed=0)
        >>> first = progress.reserve(10)
        >>> second = progress.reserve(5)
        >>> progress.ack(second)   # out of order: nothing commits yet
        False
        >>> progress.ack(first)
        True
        >>> progress.committed
        15
    """

    def __init__(self, batch_id: int, committed: int = 0):
        if committed < 0:
            raise ValueError(f"committed must be >= 0, got {committed}")
        self.batch_id = batch_id
        self._committed = committed
        self._segments: deque[_Segment] = deque()
        self._by_ticket: dict[int, _Segment] = {}
        self._reserved_bytes = 0
        self._next_ticket = 0

    def __repr__(self) -> str:
        return (
            f"BatchProgress(batch_id={self.batch_id}, committed={self._committed}, "
            f"frontier={self.frontier}, pending={len(self._segments)})"
        )

    @property
    def committed(self) -> int:
        return self._committed

    @property
    def frontier(self) -> int:
        return self._committed + self._reserved_bytes

    @property
    def pending(self) -> int:
        """Number of reserved records not yet folded into ``committed``."""
        return len(self._segments)

    def reserve(self, size: int) -> int:
        """Account the next ``size`` bytes of the batch; returns a ticket."""
        if size <= 0:
            raise ValueError(f"size must be positive, got {size}")
        ticket = self._next_ticket
        self._next_ticket += 1
        segment = _Segment(ticket=ticket, size=size)
        self._segments.append(segment)
        self._by_ticket[ticket] = segment
        self._reserved_bytes += size
        return ticket

    def ack(self, ticket: int) -> bool:
        """
        Mark a reserved record delivered.

        Returns True when the committed prefix advanced. Unknown or already
        folded tickets are ignored.
        """
        segment = self._by_ticket.get(ticket)
        if segment is None or segment.acked:
            return False
        segment.acked = True

        advanced = False
        while self._segments and self._segments[0].acked:
            head = self._segments.popleft()
            del self._by_ticket[head.ticket]
            self._reserved_bytes -= head.size
            self._committed += head.size
            advanced = True
        return advanced

    def is_complete(self, batch_size: int) -> bool:
        return self._committed >= batch_size

    def is_accounted(self, batch_size: int) -> bool:
        """Every byte up to ``batch_size`` has been handed to the sink."""
        return self.frontier >= batch_size
