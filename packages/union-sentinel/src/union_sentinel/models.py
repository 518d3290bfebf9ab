"""
Shared data models for the Union Sentinel.

Transfers are the only mutable records: they move through the lifecycle
defined by TRANSITIONS. Everything the indexer reports back is immutable.
"""

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from .errors import InvalidTransitionError

if TYPE_CHECKING:
    from .config import Interaction


class TransferState(Enum):
    """Lifecycle state of a dispatched transfer."""
    PENDING = "pending"
    BROADCAST = "broadcast"
    TRACING = "tracing"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset({
    TransferState.COMPLETED,
    TransferState.FAILED,
    TransferState.TIMED_OUT,
})

TRANSITIONS: dict[TransferState, frozenset[TransferState]] = {
    TransferState.PENDING: frozenset({TransferState.BROADCAST, TransferState.FAILED}),
    TransferState.BROADCAST: frozenset({
        TransferState.TRACING,
        TransferState.FAILED,
        TransferState.TIMED_OUT,
    }),
    TransferState.TRACING: frozenset({TransferState.COMPLETED, TransferState.TIMED_OUT}),
    TransferState.COMPLETED: frozenset(),
    TransferState.FAILED: frozenset(),
    TransferState.TIMED_OUT: frozenset(),
}


@dataclass(frozen=True, slots=True)
class TraceEvent:
    """An on-chain event observed by the indexer.

    Attributes:
        timestamp: ISO-8601 timestamp reported by the indexer
        chain_id: Chain the event happened on
        type: Event type, e.g. SEND_PACKET, RECV_PACKET, WRITE_ACK
        transaction_hash: Transaction that emitted the event (may be absent)
        height: Block height (may be absent)
    """

    timestamp: str
    chain_id: str
    type: str
    transaction_hash: str | None = None
    height: int | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "TraceEvent":
        chain = row.get("chain") or {}
        height = row.get("height")
        return cls(
            timestamp=str(row.get("timestamp") or ""),
            chain_id=str(chain.get("chain_id") or ""),
            type=str(row.get("type") or ""),
            transaction_hash=row.get("transaction_hash"),
            height=int(height) if height is not None else None,
        )

    def __str__(self) -> str:
        return f"{self.type}@{self.chain_id}#{self.height}"


def _parse_traces(rows: list[dict[str, Any]] | None) -> tuple[TraceEvent, ...]:
    events = [TraceEvent.from_row(row) for row in rows or []]
    # Already ordered by the query; sort again so callers can rely on it
    return tuple(sorted(events, key=lambda event: event.timestamp))


def is_delivered(traces: tuple[TraceEvent, ...], delivery_types: frozenset[str]) -> bool:
    """Whether a trace sequence contains a destination-delivery event."""
    return any(event.type in delivery_types for event in traces)


@dataclass(frozen=True, slots=True)
class Hop:
    """A forwarded continuation of a transfer on a further chain."""

    traces: tuple[TraceEvent, ...] = ()
    hops: tuple["Hop", ...] = ()

    @classmethod
    def from_row(cls, row: dict[str, Any], max_depth: int) -> "Hop":
        """Build a hop tree from an indexer row, never deeper than max_depth."""
        return cls(
            traces=_parse_traces(row.get("traces")),
            hops=_parse_hops(row.get("hop"), max_depth - 1),
        )

    def is_delivered(self, delivery_types: frozenset[str]) -> bool:
        return is_delivered(self.traces, delivery_types)

    def walk(self) -> list["Hop"]:
        """Depth-first (pre-order) list of this hop and its descendants."""
        ordered = [self]
        for child in self.hops:
            ordered.extend(child.walk())
        return ordered


def _parse_hops(value: Any, max_depth: int) -> tuple[Hop, ...]:
    if max_depth <= 0 or not value:
        return ()
    # `hop` is an object relation in the indexer schema, but accept lists too
    rows = value if isinstance(value, list) else [value]
    return tuple(Hop.from_row(row, max_depth) for row in rows if row)


@dataclass(frozen=True, slots=True)
class TransferTrace:
    """Result of the traces-and-hops lookup for one transfer."""

    traces: tuple[TraceEvent, ...] = ()
    hops: tuple[Hop, ...] = ()

    @classmethod
    def from_row(cls, row: dict[str, Any], max_depth: int) -> "TransferTrace":
        return cls(
            traces=_parse_traces(row.get("traces")),
            hops=_parse_hops(row.get("hop"), max_depth),
        )

    def is_delivered(self, delivery_types: frozenset[str]) -> bool:
        return is_delivered(self.traces, delivery_types)

    def flatten_hops(self) -> list[Hop]:
        """All hops in depth-first order."""
        ordered: list[Hop] = []
        for hop in self.hops:
            ordered.extend(hop.walk())
        return ordered


@dataclass(frozen=True, slots=True)
class ForwardInstruction:
    """One forward encoded in a transfer, as reported by the base lookup."""

    source_connection_id: str | None
    source_channel_id: str | None
    destination_connection_id: str | None
    destination_channel_id: str | None
    destination_chain_id: str | None
    receiver: str | None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "ForwardInstruction":
        return cls(
            source_connection_id=row.get("source_connection_id"),
            source_channel_id=row.get("source_channel_id"),
            destination_connection_id=row.get("destination_connection_id"),
            destination_channel_id=row.get("destination_channel_id"),
            destination_chain_id=row.get("destination_chain_id"),
            receiver=row.get("receiver"),
        )


@dataclass(frozen=True, slots=True)
class TokenAmount:
    """A token moved by a transfer, with optional asset metadata."""

    denom: str
    amount: str
    display_symbol: str | None = None
    decimals: int | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "TokenAmount":
        asset = row.get("asset") or {}
        return cls(
            denom=str(row.get("denom") or ""),
            amount=str(row.get("amount") or "0"),
            display_symbol=asset.get("display_symbol"),
            decimals=asset.get("decimals"),
        )


@dataclass(frozen=True, slots=True)
class TransferRecord:
    """Row returned by the base lookup for a source transaction hash."""

    source_transaction_hash: str
    sender: str | None
    receiver: str | None
    source_chain_id: str | None
    source_channel_id: str | None
    source_sequence: str | None
    destination_chain_id: str | None
    destination_channel_id: str | None
    destination_sequence: str | None
    source_timestamp: str | None
    destination_timestamp: str | None
    tokens: tuple[TokenAmount, ...] = ()
    forwards: tuple[ForwardInstruction, ...] = ()

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "TransferRecord":
        return cls(
            source_transaction_hash=str(row.get("source_transaction_hash") or ""),
            sender=row.get("normalized_sender") or row.get("sender"),
            receiver=row.get("normalized_receiver") or row.get("receiver"),
            source_chain_id=row.get("source_chain_id"),
            source_channel_id=row.get("source_channel_id"),
            source_sequence=_as_str(row.get("source_sequence")),
            destination_chain_id=row.get("destination_chain_id"),
            destination_channel_id=row.get("destination_channel_id"),
            destination_sequence=_as_str(row.get("destination_sequence")),
            source_timestamp=row.get("source_timestamp"),
            destination_timestamp=row.get("destination_timestamp"),
            tokens=tuple(TokenAmount.from_row(token) for token in row.get("tokens") or []),
            forwards=tuple(ForwardInstruction.from_row(fwd) for fwd in row.get("forwards") or []),
        )


def _as_str(value: Any) -> str | None:
    return None if value is None else str(value)


@dataclass(slots=True)
class Transfer:
    """One dispatch attempt of an interaction.

    Owned by the scheduler until broadcast, then tracked by the cycle
    monitor and the trace correlator until it reaches a terminal state.
    """

    interaction: "Interaction"
    denom: str
    amount: int
    receiver: str
    memo: str | None
    expected_forwards: int = 0
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    dispatched_at: float = field(default_factory=time.time)
    tx_hash: str | None = None
    state: TransferState = TransferState.PENDING
    failure_reason: str | None = None
    completed_at: float | None = None
    record: TransferRecord | None = None
    last_trace: TransferTrace | None = None

    @property
    def deadline(self) -> float:
        return self.dispatched_at + self.interaction.expect_full_cycle_seconds

    @property
    def latency(self) -> float | None:
        if self.completed_at is None:
            return None
        return self.completed_at - self.dispatched_at

    def transition(self, new_state: TransferState) -> None:
        """Move to new_state, rejecting anything TRANSITIONS does not allow."""
        if new_state not in TRANSITIONS[self.state]:
            raise InvalidTransitionError(
                f"Transfer {self.id}: {self.state.value} -> {new_state.value} is not allowed"
            )
        self.state = new_state

    def __str__(self) -> str:
        tx = f"{self.tx_hash[:12]}..." if self.tx_hash else "-"
        return (
            f"Transfer({self.id[:8]}, {self.interaction.name}, "
            f"{self.amount}{self.denom}, tx={tx}, state={self.state.value})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "id": self.id,
            "interaction": self.interaction.name,
            "denom": self.denom,
            "amount": self.amount,
            "receiver": self.receiver,
            "memo": self.memo,
            "tx_hash": self.tx_hash,
            "state": self.state.value,
            "failure_reason": self.failure_reason,
            "dispatched_at": self.dispatched_at,
            "latency": self.latency,
        }
