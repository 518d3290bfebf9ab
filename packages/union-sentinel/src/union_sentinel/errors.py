"""
Error types for the Union Sentinel.

Only ConfigError is fatal, and only at startup. Everything else is recorded
against a single transfer or interaction and the process keeps running.
"""


class SentinelError(Exception):
    """Base class for sentinel errors."""


class ConfigError(SentinelError, ValueError):
    """Invalid configuration document or environment."""


class BroadcastError(SentinelError):
    """A transfer could not be signed or broadcast.

    Attributes:
        reason: Human-readable failure reason recorded on the transfer
    """

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class IndexerQueryError(SentinelError):
    """Network-class indexer failure that survived every retry attempt."""

    def __init__(self, message: str, attempts: int = 0) -> None:
        super().__init__(message)
        self.attempts = attempts


class CorrelationTimeout(SentinelError):
    """A transfer did not complete within its expected cycle.

    Soft signal: it is logged and counted, never raised past the monitor.
    """

    def __init__(self, transfer_id: str, tx_hash: str | None, interaction: str, budget: float) -> None:
        super().__init__(
            f"Transfer {transfer_id} ({tx_hash}) on {interaction} "
            f"did not complete within {budget}s"
        )
        self.transfer_id = transfer_id
        self.tx_hash = tx_hash
        self.interaction = interaction
        self.budget = budget


class InvalidTransitionError(SentinelError):
    """Illegal transfer lifecycle transition."""
