"""
Union Sentinel package.

Cross-chain transfer liveness monitor: periodically dispatches token
transfers between configured chains and verifies, through the transfer
indexer, that each one completes its full cycle within its budget.
"""

from .config import MonitoringConfig, SentinelConfig, load_config
from .cycle_monitor import CycleMonitor, InteractionStats
from .errors import BroadcastError, ConfigError, CorrelationTimeout, IndexerQueryError
from .models import Transfer, TransferState
from .sentinel import Sentinel

__all__ = [
    "Sentinel",
    "SentinelConfig",
    "MonitoringConfig",
    "load_config",
    "CycleMonitor",
    "InteractionStats",
    "Transfer",
    "TransferState",
    "ConfigError",
    "BroadcastError",
    "IndexerQueryError",
    "CorrelationTimeout",
]
__version__ = "0.1.0"
