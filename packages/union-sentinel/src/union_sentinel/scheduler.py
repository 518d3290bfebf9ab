"""
Transfer scheduler: turns interactions into periodic transfer dispatches.

Every tick of an interaction draws a denom, an amount, a receiver and whether
to attach the memo, then dispatches the transfer as its own task so a slow
broadcast never delays the next tick.
"""

import asyncio
import logging
import random
import time
from collections.abc import Callable

from .adapters import ChainAdapter
from .config import Ics20Protocol, Interaction, Ucs01Protocol
from .cycle_monitor import CycleMonitor
from .errors import BroadcastError
from .memo import count_forwards
from .models import Transfer, TransferState

logger = logging.getLogger(__name__)


class TransferScheduler:
    """Builds and dispatches transfers for a set of interactions."""

    def __init__(
        self,
        interactions: tuple[Interaction, ...],
        adapters: dict[str, ChainAdapter],
        monitor: CycleMonitor,
        rng: random.Random | None = None,
        clock: Callable[[], float] = time.time,
        transfer_timeout: int = 3600,
    ) -> None:
        """
        Initialize the scheduler.

        Args:
            interactions: Active interactions
            adapters: Chain adapters keyed by chain name; sends use the source chain's
            monitor: Cycle monitor receiving every dispatch outcome
            rng: Random source for all draws (seed it for reproducible runs)
            clock: Wall-clock source in seconds
            transfer_timeout: Packet timeout, seconds after dispatch
        """
        for interaction in interactions:
            if interaction.source.chain not in adapters:
                raise ValueError(f"No adapter for source chain of {interaction.name}")

        self.interactions = interactions
        self.adapters = adapters
        self.monitor = monitor
        self.rng = rng or random.Random()
        self.clock = clock
        self.transfer_timeout = transfer_timeout
        self.dispatched = 0
        self._dispatches: set[asyncio.Task] = set()

    def build_transfer(self, interaction: Interaction) -> Transfer:
        """Draw the parameters of one transfer for an interaction."""
        denom = self.rng.choice(interaction.denoms)
        amount = self.rng.randint(interaction.amount_min, interaction.amount_max)
        receiver = self.rng.choice(interaction.protocol.receivers)
        # random() is in [0, 1): probability 0 never attaches, 1 always does
        attach_memo = self.rng.random() < interaction.sending_memo_probability
        memo = interaction.memo if attach_memo and interaction.memo else None

        return Transfer(
            interaction=interaction,
            denom=denom,
            amount=amount,
            receiver=receiver,
            memo=memo,
            expected_forwards=count_forwards(memo),
            dispatched_at=self.clock(),
        )

    @staticmethod
    def _route(interaction: Interaction) -> str | None:
        match interaction.protocol:
            case Ucs01Protocol(contract=contract):
                return contract
            case Ics20Protocol(port=port):
                return port
        return None

    def timeout_timestamp(self) -> int:
        """Packet timeout in nanoseconds since epoch."""
        return int((self.clock() + self.transfer_timeout) * 1_000_000_000)

    async def dispatch(self, transfer: Transfer) -> Transfer:
        """Broadcast a transfer and report the outcome to the monitor.

        Failures are recorded on the transfer and never propagate.
        """
        interaction = transfer.interaction
        adapter = self.adapters[interaction.source.chain]
        transfer.dispatched_at = self.clock()
        self.dispatched += 1
        logger.info(
            f"Dispatching {transfer.amount}{transfer.denom} {interaction.name} to "
            f"{transfer.receiver}{' with memo' if transfer.memo else ''}"
        )

        try:
            tx_hash = await adapter.send(
                interaction.source.channel,
                transfer.receiver,
                transfer.denom,
                transfer.amount,
                memo=transfer.memo,
                timeout_timestamp=self.timeout_timestamp(),
                via=self._route(interaction),
            )
        except BroadcastError as e:
            self.monitor.record_failure(transfer, e.reason)
            return transfer
        except Exception as e:
            self.monitor.record_failure(transfer, f"{type(e).__name__}: {e}")
            return transfer

        transfer.tx_hash = tx_hash
        transfer.transition(TransferState.BROADCAST)
        self.monitor.register_dispatch(transfer)
        return transfer

    def _spawn(self, transfer: Transfer) -> asyncio.Task:
        task = asyncio.create_task(self.dispatch(transfer))
        self._dispatches.add(task)
        task.add_done_callback(self._dispatches.discard)
        return task

    async def run_interaction(self, interaction: Interaction) -> None:
        """Dispatch one transfer per send interval until cancelled."""
        interval = interaction.send_packet_interval_seconds
        logger.info(f"Scheduling {interaction.name} every {interval}s")
        while True:
            self._spawn(self.build_transfer(interaction))
            await asyncio.sleep(interval)

    async def run_single(self) -> Transfer:
        """Dispatch exactly one transfer of the single interaction."""
        if not self.interactions:
            raise ValueError("No interaction to dispatch")
        interaction = self.interactions[0]
        logger.info(f"Single mode: dispatching one transfer on {interaction.name}")
        return await self.dispatch(self.build_transfer(interaction))

    @property
    def pending_dispatches(self) -> int:
        return len(self._dispatches)

    async def cancel_pending(self) -> None:
        """Cancel dispatches still waiting on a broadcast."""
        tasks = list(self._dispatches)
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._dispatches.difference_update(tasks)
