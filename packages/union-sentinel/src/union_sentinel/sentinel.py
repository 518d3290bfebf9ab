"""
Union Sentinel service.

Wires the configured chains into adapters and runs the scheduler tasks, the
trace correlator, the timeout sweep and the status logger until shutdown.
"""

import asyncio
import logging
import random
import time
from collections.abc import Callable
from pathlib import Path

from .adapters import ChainAdapter, build_adapter
from .config import MonitoringConfig, SentinelConfig, load_config
from .cycle_monitor import CycleMonitor
from .indexer_client import IndexerClient
from .models import Transfer
from .scheduler import TransferScheduler
from .signer import Signer
from .trace_correlator import TraceCorrelator
from .utils.rofl_utility import RoflUtility

logger = logging.getLogger(__name__)


class Sentinel:
    """
    Main service: coordination and lifecycle management.

    Dispatching is delegated to the TransferScheduler, correlation to the
    TraceCorrelator and bookkeeping to the CycleMonitor.
    """

    EXPIRY_CHECK_INTERVAL = 1.0  # seconds

    def __init__(
        self,
        config: SentinelConfig,
        monitoring: MonitoringConfig,
        local_mode: bool = False,
        rng: random.Random | None = None,
        clock: Callable[[], float] = time.time,
        indexer: IndexerClient | None = None,
        adapters: dict[str, ChainAdapter] | None = None,
    ) -> None:
        """
        Initialize the Sentinel.

        Args:
            config: Validated configuration document
            monitoring: Operational settings
            local_mode: Run without ROFL utilities (every signer needs a local key)
            rng: Random source for the scheduler and backoff jitter
            clock: Wall-clock source in seconds
            indexer: Pre-built indexer client
            adapters: Pre-built adapters keyed by chain name (skips signer setup)
        """
        self.config = config
        self.monitoring = monitoring
        self.local_mode = local_mode
        self.rng = rng or random.Random()
        self.clock = clock
        self.running = False
        self.result: Transfer | None = None
        self.status_log_interval = monitoring.status_log_interval

        self.rofl_util = (
            None if local_mode
            else RoflUtility(monitoring.rofl_appd_url, timeout=monitoring.request_timeout)
        )
        self.monitor = CycleMonitor(clock=clock)
        self.indexer = indexer or IndexerClient.from_config(monitoring, rng=self.rng)
        self.correlator = TraceCorrelator(
            self.indexer,
            self.monitor,
            delivery_types=monitoring.delivery_event_types,
            max_concurrent=monitoring.max_concurrent_queries,
            poll_interval=monitoring.trace_poll_interval,
        )
        self.adapters: dict[str, ChainAdapter] = dict(adapters or {})
        self.scheduler: TransferScheduler | None = None

        self.shutdown_event = asyncio.Event()

    @classmethod
    def from_files(cls, config_path: str | Path, local_mode: bool = False) -> "Sentinel":
        """
        Create a Sentinel from a configuration document and the environment.

        Raises:
            ConfigError: If the document or the environment is invalid
        """
        config = load_config(config_path)
        monitoring = MonitoringConfig.from_env()
        config.log_config()
        monitoring.log_config()
        return cls(config, monitoring, local_mode=local_mode)

    async def init_adapters(self) -> None:
        """Resolve signers and build one adapter per source chain.

        Destination-only chains never sign, so they get no signer or adapter.

        Raises:
            ConfigError: If a signer key cannot be resolved
        """
        for name, chain in self.config.source_chains.items():
            if name in self.adapters:
                continue
            signer = await Signer.from_config(name, chain.signer, self.rofl_util)
            self.adapters[name] = build_adapter(chain, signer, self.monitoring.request_timeout)
            logger.info(f"Adapter for {name} ready ({type(self.adapters[name]).__name__})")

        self.scheduler = TransferScheduler(
            self.config.active_interactions,
            self.adapters,
            self.monitor,
            rng=self.rng,
            clock=self.clock,
            transfer_timeout=self.monitoring.transfer_timeout,
        )

    async def _expiry_loop(self) -> None:
        """Time out transfers that outlived their expected cycle."""
        while self.running:
            self.monitor.sweep_expired()
            await asyncio.sleep(self.EXPIRY_CHECK_INTERVAL)

    async def _periodic_status_logger(self) -> None:
        """Log status periodically while running."""
        while self.running:
            await asyncio.sleep(self.status_log_interval)
            logger.info(
                f"Status: {self.monitor.in_flight_count} transfers in flight, "
                f"{self.scheduler.pending_dispatches if self.scheduler else 0} broadcasts pending"
            )
            self.monitor.log_metrics()

    async def _run_single(self) -> None:
        """Dispatch the single transfer and wait for its outcome."""
        transfer = await self.scheduler.run_single()
        if not transfer.state.is_terminal:
            await self.monitor.wait_idle()
        self.result = transfer
        logger.info(f"Single interaction finished: {transfer}")
        self.stop()

    async def _check_task_health(self, tasks: dict[str, asyncio.Task]) -> bool:
        """Check if any critical task has failed."""
        for name, task in tasks.items():
            if not task.done() or task.cancelled():
                continue
            try:
                await task
            except Exception as e:
                logger.error(f"{name} task failed: {e}", exc_info=True)
                return False
            if name != "single":  # the single-interaction task ends normally
                logger.error(f"{name} task stopped unexpectedly")
                return False
        return True

    async def _cleanup_tasks(self, tasks: dict[str, asyncio.Task]) -> None:
        """Cancel all tasks and pending broadcasts, then release clients."""
        self.correlator.stop()
        if self.scheduler:
            await self.scheduler.cancel_pending()

        for task in tasks.values():
            if not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass  # Expected when cancelling

        await self.indexer.aclose()

    async def run(self) -> None:
        """Main loop of the sentinel service."""
        self.running = True
        logger.info("Union Sentinel starting...")
        logger.info(f"Mode: {'single interaction' if self.config.single_mode else 'periodic'}")

        tasks: dict[str, asyncio.Task] = {}
        try:
            await self.init_adapters()

            tasks = {
                "correlator": asyncio.create_task(self.correlator.run()),
                "expiry": asyncio.create_task(self._expiry_loop()),
                "status": asyncio.create_task(self._periodic_status_logger()),
            }
            if self.config.single_mode:
                tasks["single"] = asyncio.create_task(self._run_single())
            else:
                for interaction in self.config.active_interactions:
                    tasks[f"scheduler:{interaction.name}"] = asyncio.create_task(
                        self.scheduler.run_interaction(interaction)
                    )

            logger.info(f"Started {len(tasks)} tasks")

            while self.running:
                try:
                    await asyncio.wait_for(self.shutdown_event.wait(), timeout=1.0)
                    break  # Shutdown requested
                except asyncio.TimeoutError:
                    pass

                if not await self._check_task_health(tasks):
                    logger.error("Critical task failure, shutting down")
                    break

        except Exception as e:
            logger.error(f"Error in main loop: {e}", exc_info=True)
            raise
        finally:
            await self._cleanup_tasks(tasks)
            self.running = False
            self.monitor.log_metrics()
            logger.info("Union Sentinel stopped")

    def stop(self) -> None:
        """Stop the sentinel service."""
        self.running = False
        self.shutdown_event.set()
