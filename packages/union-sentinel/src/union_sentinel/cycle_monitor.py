"""
Cycle monitor: tracks in-flight transfers to completion or timeout.

The monitor is the single owner of transfer lifecycle bookkeeping after
broadcast, and the system's observability surface: per-interaction attempt,
completion, timeout and failure counts plus a latency distribution.
"""

import asyncio
import logging
import math
import statistics
import time
from collections import OrderedDict, deque
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from .errors import CorrelationTimeout
from .models import Transfer, TransferRecord, TransferState

logger = logging.getLogger(__name__)


def _percentile(ordered: list[float], fraction: float) -> float:
    """Nearest-rank percentile of an already sorted, non-empty list."""
    rank = max(1, math.ceil(fraction * len(ordered)))
    return ordered[rank - 1]


@dataclass(slots=True)
class InteractionStats:
    """Aggregated outcome counters for one interaction."""

    MAX_LATENCY_SAMPLES = 10_000

    attempts: int = 0
    completed: int = 0
    timed_out: int = 0
    failed_broadcast: int = 0
    latencies: deque[float] = field(default_factory=lambda: deque(maxlen=InteractionStats.MAX_LATENCY_SAMPLES))

    @property
    def in_flight(self) -> int:
        return self.attempts - self.completed - self.timed_out - self.failed_broadcast

    def latency_summary(self) -> dict[str, float] | None:
        """min/mean/p50/p95/max of realized latencies, or None without samples."""
        if not self.latencies:
            return None
        ordered = sorted(self.latencies)
        return {
            "min": ordered[0],
            "mean": statistics.fmean(ordered),
            "p50": _percentile(ordered, 0.50),
            "p95": _percentile(ordered, 0.95),
            "max": ordered[-1],
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "attempts": self.attempts,
            "completed": self.completed,
            "timed_out": self.timed_out,
            "failed_broadcast": self.failed_broadcast,
            "in_flight": self.in_flight,
            "latency": self.latency_summary(),
        }


class CycleMonitor:
    """Tracks in-flight transfers and aggregates per-interaction metrics."""

    MAX_HISTORY: int = 10_000  # terminal transfers kept for inspection
    MAX_ALERTS: int = 1_000

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        """Initialize the monitor.

        Args:
            clock: Wall-clock source in seconds; must match the scheduler's
        """
        self.clock = clock
        self._in_flight: dict[str, Transfer] = {}
        self._stats: dict[str, InteractionStats] = {}
        self.history: OrderedDict[str, Transfer] = OrderedDict()
        self.alerts: deque[CorrelationTimeout] = deque(maxlen=self.MAX_ALERTS)
        self._idle = asyncio.Event()
        self._idle.set()

    def _stats_for(self, transfer: Transfer) -> InteractionStats:
        return self._stats.setdefault(transfer.interaction.name, InteractionStats())

    def _retire(self, transfer: Transfer) -> None:
        self._in_flight.pop(transfer.id, None)
        if len(self.history) >= self.MAX_HISTORY:
            self.history.popitem(last=False)
        self.history[transfer.id] = transfer
        if not self._in_flight:
            self._idle.set()

    def register_dispatch(self, transfer: Transfer) -> None:
        """Start tracking a broadcast transfer against its deadline."""
        if transfer.state is not TransferState.BROADCAST or not transfer.tx_hash:
            raise ValueError(f"Only broadcast transfers with a hash can be tracked: {transfer}")
        stats = self._stats_for(transfer)
        stats.attempts += 1
        self._in_flight[transfer.id] = transfer
        self._idle.clear()
        logger.debug(f"Tracking {transfer} until {transfer.deadline:.0f}")

    def record_failure(self, transfer: Transfer, reason: str) -> None:
        """Record a transfer whose broadcast failed. No deadline is registered."""
        transfer.transition(TransferState.FAILED)
        transfer.failure_reason = reason
        stats = self._stats_for(transfer)
        stats.attempts += 1
        stats.failed_broadcast += 1
        self._retire(transfer)
        logger.error(f"Broadcast failed for {transfer}: {reason}")

    def get(self, transfer_id: str) -> Transfer | None:
        return self._in_flight.get(transfer_id)

    def mark_tracing(self, transfer_id: str, record: TransferRecord | None = None) -> bool:
        """The indexer knows the transfer. Returns False if it is no longer in flight."""
        transfer = self._in_flight.get(transfer_id)
        if transfer is None:
            return False
        if record is not None:
            transfer.record = record
        if transfer.state is TransferState.BROADCAST:
            transfer.transition(TransferState.TRACING)
            logger.info(f"Indexer picked up {transfer}")
        return True

    def mark_completed(self, transfer_id: str, observed_at: float | None = None) -> bool:
        """Resolve a transfer whose full cycle was observed.

        Returns:
            True if the transfer completed now, False if it was not in flight
            (already timed out or unknown)
        """
        transfer = self._in_flight.get(transfer_id)
        if transfer is None:
            return False
        if transfer.state is TransferState.BROADCAST:
            transfer.transition(TransferState.TRACING)
        transfer.transition(TransferState.COMPLETED)
        transfer.completed_at = observed_at if observed_at is not None else self.clock()

        stats = self._stats_for(transfer)
        stats.completed += 1
        stats.latencies.append(transfer.latency)
        self._retire(transfer)
        logger.info(f"Completed {transfer} in {transfer.latency:.1f}s")
        return True

    def sweep_expired(self, now: float | None = None) -> list[CorrelationTimeout]:
        """Time out every in-flight transfer past its deadline.

        Each transfer times out at most once: it leaves the in-flight set.
        The chain transfer itself is not touched and may still land.
        """
        now = self.clock() if now is None else now
        expired = [t for t in self._in_flight.values() if now >= t.deadline]
        alerts: list[CorrelationTimeout] = []
        for transfer in expired:
            transfer.transition(TransferState.TIMED_OUT)
            self._stats_for(transfer).timed_out += 1
            self._retire(transfer)

            alert = CorrelationTimeout(
                transfer.id,
                transfer.tx_hash,
                transfer.interaction.name,
                transfer.interaction.expect_full_cycle_seconds,
            )
            self.alerts.append(alert)
            alerts.append(alert)
            logger.warning(f"TIMEOUT: {alert}")
        return alerts

    def in_flight(self) -> list[Transfer]:
        """Snapshot of the transfers still waiting for completion."""
        return list(self._in_flight.values())

    @property
    def in_flight_count(self) -> int:
        return len(self._in_flight)

    async def wait_idle(self) -> None:
        """Wait until no transfer is in flight."""
        await self._idle.wait()

    def stats(self, interaction_name: str) -> InteractionStats:
        return self._stats.setdefault(interaction_name, InteractionStats())

    def snapshot(self) -> dict[str, dict[str, Any]]:
        """Per-interaction metrics, keyed by interaction name."""
        return {name: stats.to_dict() for name, stats in self._stats.items()}

    def log_metrics(self) -> None:
        for name, stats in self._stats.items():
            summary = stats.latency_summary()
            latency = (
                f"p50={summary['p50']:.1f}s p95={summary['p95']:.1f}s max={summary['max']:.1f}s"
                if summary else "no samples"
            )
            logger.info(
                f"{name}: {stats.attempts} attempts, {stats.completed} completed, "
                f"{stats.timed_out} timed out, {stats.failed_broadcast} failed, "
                f"{stats.in_flight} in flight, latency {latency}"
            )
