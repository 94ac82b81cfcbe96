"""Tests for the contiguous-prefix delivery ledger."""

import pytest

from collector.progress import BatchProgress


class TestBatchProgress:

    def test_starts_at_committed_offset(self):
        progress = BatchProgress(batch_id=1, committed=20)

        assert progress.committed == 20
        assert progress.frontier == 20
        assert progress.pending == 0

    def test_rejects_negative_committed(self):
        with pytest.raises(ValueError):
            BatchProgress(batch_id=1, committed=-1)

    def test_reserve_moves_frontier_only(self):
        progress = BatchProgress(batch_id=1)
        progress.reserve(10)

        assert progress.committed == 0
        assert progress.frontier == 10
        assert progress.pending == 1

    def test_reserve_rejects_empty_record(self):
        with pytest.raises(ValueError):
            BatchProgress(batch_id=1).reserve(0)

    def test_in_order_acks_commit_immediately(self):
        progress = BatchProgress(batch_id=1)
        first = progress.reserve(10)
        second = progress.reserve(5)

        assert progress.ack(first) is True
        assert progress.committed == 10
        assert progress.ack(second) is True
        assert progress.committed == 15
        assert progress.pending == 0

    def test_out_of_order_ack_waits_for_gap(self):
        progress = BatchProgress(batch_id=1)
        first = progress.reserve(10)
        second = progress.reserve(5)
        third = progress.reserve(3)

        assert progress.ack(second) is False
        assert progress.ack(third) is False
        assert progress.committed == 0
        assert progress.frontier == 18

        assert progress.ack(first) is True
        assert progress.committed == 18

    def test_duplicate_and_unknown_acks_are_ignored(self):
        progress = BatchProgress(batch_id=1)
        ticket = progress.reserve(4)

        assert progress.ack(ticket) is True
        assert progress.ack(ticket) is False
        assert progress.ack(999) is False
        assert progress.committed == 4

    def test_committed_never_decreases(self):
        progress = BatchProgress(batch_id=1, committed=5)
        history = [progress.committed]
        tickets = [progress.reserve(n) for n in (3, 1, 7, 2)]
        for ticket in reversed(tickets):
            progress.ack(ticket)
            history.append(progress.committed)

        assert history == sorted(history)
        assert progress.committed == 18

    def test_complete_and_accounted(self):
        progress = BatchProgress(batch_id=1)
        ticket = progress.reserve(10)

        assert progress.is_accounted(10)
        assert not progress.is_complete(10)

        progress.ack(ticket)
        assert progress.is_complete(10)
