"""Tests for PeriodicStatsLogger."""

import asyncio
from unittest.mock import MagicMock, patch

from core.logging.periodic_logger import PeriodicStatsLogger


def _stats(sent_bytes=0, **overrides):
    values = {
        "active": 2,
        "disabled": 0,
        "sent_bytes": sent_bytes,
        "unacked_bytes": 0,
        "sink_connected": True,
    }
    values.update(overrides)
    return values


class TestPeriodicStatsLoggerInit:

    def test_stores_configuration(self):
        callback = MagicMock(return_value=_stats())
        psl = PeriodicStatsLogger(interval_seconds=5, get_stats=callback, stage="stats")

        assert psl.interval_seconds == 5
        assert psl.get_stats is callback
        assert psl.stage == "stats"
        assert not psl.running


class TestLogCycle:

    def test_first_cycle_has_no_delta(self):
        psl = PeriodicStatsLogger(5, lambda: _stats(sent_bytes=1500))

        assert psl.log_cycle() == "Cycle 0: pods=2 active | sent=1.5 kB | unacked=0 B | sink=up"

    def test_later_cycles_report_bytes_since_last(self):
        totals = iter([1000, 3500])
        psl = PeriodicStatsLogger(5, lambda: _stats(sent_bytes=next(totals)))

        psl.log_cycle()
        line = psl.log_cycle()

        assert line.startswith("Cycle 1: pods=2 active | +2.5 kB this cycle (500 B/s)")

    def test_reports_sink_down(self):
        psl = PeriodicStatsLogger(5, lambda: _stats(sink_connected=False, disabled=1))

        line = psl.log_cycle()

        assert "1 disabled" in line
        assert line.endswith("sink=down")


class TestPeriodicStatsLoggerLifecycle:

    def test_start_creates_task(self):
        psl = PeriodicStatsLogger(5, lambda: _stats())

        with patch("core.logging.periodic_logger.asyncio.create_task") as mock_create:
            mock_create.return_value = MagicMock()
            psl.start()
            psl.start()

        mock_create.assert_called_once()
        assert psl.running

    async def test_runs_until_stopped(self):
        callback = MagicMock(return_value=_stats())
        psl = PeriodicStatsLogger(0.01, callback)

        psl.start()
        await asyncio.sleep(0.05)
        await psl.stop()

        assert callback.call_count >= 2
        assert not psl.running

    async def test_stop_without_start_is_noop(self):
        psl = PeriodicStatsLogger(5, lambda: _stats())

        await psl.stop()

        assert not psl.running
