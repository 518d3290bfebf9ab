"""
Trace correlator: decides when a broadcast transfer has completed its cycle.

Each pass looks at every in-flight transfer. A transfer is complete when its
own traces contain a delivery event and every forward it carries is matched,
in depth-first order, to a hop that was delivered as well.
"""

import asyncio
import logging

from .cycle_monitor import CycleMonitor
from .errors import IndexerQueryError
from .indexer_client import IndexerClient
from .memo import MAX_HOP_DEPTH
from .models import Transfer, TransferState, TransferTrace

logger = logging.getLogger(__name__)

DEFAULT_DELIVERY_TYPES = frozenset({"WRITE_ACK"})


def evaluate_completion(
    trace: TransferTrace,
    forwards_count: int,
    delivery_types: frozenset[str] = DEFAULT_DELIVERY_TYPES,
) -> bool:
    """Whether the transfer and its first `forwards_count` hops were all delivered.

    Hops are matched to forward instructions by position in depth-first
    order. Missing hops mean the cycle is still partial.
    """
    if not trace.is_delivered(delivery_types):
        return False
    if forwards_count <= 0:
        return True
    hops = trace.flatten_hops()
    if len(hops) < forwards_count:
        return False
    return all(hop.is_delivered(delivery_types) for hop in hops[:forwards_count])


class TraceCorrelator:
    """Polls the indexer for the in-flight transfers of a CycleMonitor."""

    def __init__(
        self,
        indexer: IndexerClient,
        monitor: CycleMonitor,
        delivery_types: frozenset[str] = DEFAULT_DELIVERY_TYPES,
        max_concurrent: int = 8,
        poll_interval: float = 5.0,
    ) -> None:
        """
        Initialize the correlator.

        Args:
            indexer: Client for the base and traces lookups
            monitor: Owner of the in-flight set; completions are reported to it
            delivery_types: Trace event types that count as delivery
            max_concurrent: Upper bound on simultaneous indexer queries
            poll_interval: Seconds between passes
        """
        self.indexer = indexer
        self.monitor = monitor
        self.delivery_types = delivery_types
        self.poll_interval = poll_interval
        self.semaphore = asyncio.Semaphore(max_concurrent)
        self.running = False

    @staticmethod
    def hop_depth(transfer: Transfer) -> int:
        """How many hops to fetch and require for a transfer."""
        reported = len(transfer.record.forwards) if transfer.record else 0
        return min(max(reported, transfer.expected_forwards), MAX_HOP_DEPTH)

    async def check(self, transfer: Transfer) -> bool:
        """Look up one transfer; returns True if it completed on this check."""
        if not transfer.tx_hash:
            return False

        if transfer.state is TransferState.BROADCAST or transfer.record is None:
            record = await self.indexer.fetch_base(transfer.tx_hash)
            if record is None:
                logger.debug(f"{transfer} not indexed yet")
                return False
            if not self.monitor.mark_tracing(transfer.id, record):
                return False

        depth = self.hop_depth(transfer)
        trace = await self.indexer.fetch_traces(transfer.tx_hash, depth)
        if trace is None:
            return False
        transfer.last_trace = trace

        if not evaluate_completion(trace, depth, self.delivery_types):
            delivered = sum(hop.is_delivered(self.delivery_types) for hop in trace.flatten_hops())
            logger.debug(f"{transfer} in progress: {delivered}/{depth} hops delivered")
            return False

        return self.monitor.mark_completed(transfer.id)

    async def _check_guarded(self, transfer: Transfer) -> bool:
        async with self.semaphore:
            try:
                return await self.check(transfer)
            except IndexerQueryError as e:
                logger.warning(f"Indexer lookup failed for {transfer}: {e}")
            except Exception as e:
                logger.error(f"Error correlating {transfer}: {e}", exc_info=True)
            return False

    async def poll_once(self) -> int:
        """One pass over the in-flight set. Returns the number of completions."""
        transfers = self.monitor.in_flight()
        if not transfers:
            return 0
        results = await asyncio.gather(*(self._check_guarded(t) for t in transfers))
        completed = sum(results)
        if completed:
            logger.info(f"{completed} of {len(transfers)} in-flight transfers completed")
        return completed

    async def run(self) -> None:
        """Poll until stopped or cancelled."""
        self.running = True
        logger.info(f"Trace correlator started (interval {self.poll_interval}s)")
        while self.running:
            await self.poll_once()
            await asyncio.sleep(self.poll_interval)

    def stop(self) -> None:
        self.running = False
