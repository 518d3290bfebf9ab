"""Unit tests for the CycleMonitor class."""

import logging

import pytest

from union_sentinel.cycle_monitor import CycleMonitor, InteractionStats
from union_sentinel.errors import CorrelationTimeout
from union_sentinel.models import Transfer, TransferState


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


class TestCycleMonitor:
    """Test suite for CycleMonitor."""

    def test_register_dispatch(self, make_broadcast_transfer):
        monitor = CycleMonitor(clock=FakeClock())
        transfer = make_broadcast_transfer()

        monitor.register_dispatch(transfer)

        assert monitor.in_flight() == [transfer]
        assert monitor.stats(transfer.interaction.name).attempts == 1

    def test_register_requires_broadcast(self, make_interaction):
        monitor = CycleMonitor()
        transfer = Transfer(make_interaction(), "muno", 1, "0xrecv", None)
        with pytest.raises(ValueError):
            monitor.register_dispatch(transfer)

    def test_record_failure(self, make_interaction):
        monitor = CycleMonitor()
        transfer = Transfer(make_interaction(), "muno", 1, "0xrecv", None)

        monitor.record_failure(transfer, "insufficient funds")

        assert transfer.state is TransferState.FAILED
        assert transfer.failure_reason == "insufficient funds"
        assert monitor.in_flight() == []
        stats = monitor.stats(transfer.interaction.name)
        assert (stats.attempts, stats.failed_broadcast) == (1, 1)

    def test_mark_completed_records_latency(self, make_broadcast_transfer):
        clock = FakeClock(1000.0)
        monitor = CycleMonitor(clock=clock)
        transfer = make_broadcast_transfer(dispatched_at=1000.0)
        monitor.register_dispatch(transfer)

        assert monitor.mark_tracing(transfer.id)
        clock.now = 1012.5
        assert monitor.mark_completed(transfer.id)

        assert transfer.state is TransferState.COMPLETED
        assert transfer.latency == 12.5
        stats = monitor.stats(transfer.interaction.name)
        assert stats.completed == 1
        assert list(stats.latencies) == [12.5]
        assert monitor.in_flight_count == 0
        assert transfer.id in monitor.history

    def test_mark_completed_from_broadcast(self, make_broadcast_transfer):
        monitor = CycleMonitor(clock=FakeClock(1005.0))
        transfer = make_broadcast_transfer()
        monitor.register_dispatch(transfer)

        assert monitor.mark_completed(transfer.id)
        assert transfer.state is TransferState.COMPLETED

    def test_sweep_times_out_exactly_once(self, make_broadcast_transfer, caplog):
        monitor = CycleMonitor(clock=FakeClock())
        transfer = make_broadcast_transfer(dispatched_at=1000.0)  # budget 35s
        monitor.register_dispatch(transfer)

        assert monitor.sweep_expired(now=1034.0) == []

        with caplog.at_level(logging.WARNING, logger="union_sentinel.cycle_monitor"):
            alerts = monitor.sweep_expired(now=1035.0)

        assert len(alerts) == 1
        assert isinstance(alerts[0], CorrelationTimeout)
        assert alerts[0].transfer_id == transfer.id
        assert alerts[0].budget == 35
        assert transfer.state is TransferState.TIMED_OUT
        assert "TIMEOUT" in caplog.text

        assert monitor.sweep_expired(now=5000.0) == []
        assert monitor.stats(transfer.interaction.name).timed_out == 1

    def test_tracing_transfer_times_out(self, make_broadcast_transfer):
        monitor = CycleMonitor()
        transfer = make_broadcast_transfer(dispatched_at=1000.0)
        monitor.register_dispatch(transfer)
        monitor.mark_tracing(transfer.id)

        monitor.sweep_expired(now=2000.0)
        assert transfer.state is TransferState.TIMED_OUT

    def test_late_completion_is_ignored(self, make_broadcast_transfer):
        monitor = CycleMonitor()
        transfer = make_broadcast_transfer(dispatched_at=1000.0)
        monitor.register_dispatch(transfer)
        monitor.sweep_expired(now=2000.0)

        assert not monitor.mark_completed(transfer.id, observed_at=2001.0)
        assert not monitor.mark_tracing(transfer.id)
        assert transfer.state is TransferState.TIMED_OUT

    def test_history_is_bounded(self, make_interaction):
        monitor = CycleMonitor()
        monitor.MAX_HISTORY = 3
        transfers = [Transfer(make_interaction(), "muno", 1, "0xrecv", None) for _ in range(5)]
        for transfer in transfers:
            monitor.record_failure(transfer, "boom")

        assert list(monitor.history) == [t.id for t in transfers[2:]]

    def test_snapshot(self, make_broadcast_transfer, make_interaction):
        monitor = CycleMonitor(clock=FakeClock(1010.0))
        completed = make_broadcast_transfer()
        pending = make_broadcast_transfer()
        monitor.register_dispatch(completed)
        monitor.register_dispatch(pending)
        monitor.mark_completed(completed.id)

        snapshot = monitor.snapshot()[completed.interaction.name]
        assert snapshot["attempts"] == 2
        assert snapshot["completed"] == 1
        assert snapshot["in_flight"] == 1
        assert snapshot["latency"]["max"] == 10.0

    @pytest.mark.asyncio
    async def test_wait_idle(self, make_broadcast_transfer):
        monitor = CycleMonitor(clock=FakeClock(1001.0))
        transfer = make_broadcast_transfer()
        monitor.register_dispatch(transfer)
        assert not monitor._idle.is_set()

        monitor.mark_completed(transfer.id)
        await monitor.wait_idle()


class TestInteractionStats:
    """Test suite for latency aggregation."""

    def test_empty_summary(self):
        assert InteractionStats().latency_summary() is None

    def test_summary(self):
        stats = InteractionStats()
        stats.latencies.extend(float(v) for v in range(1, 101))

        summary = stats.latency_summary()
        assert summary["min"] == 1.0
        assert summary["max"] == 100.0
        assert summary["mean"] == 50.5
        assert summary["p50"] == 50.0
        assert summary["p95"] == 95.0
