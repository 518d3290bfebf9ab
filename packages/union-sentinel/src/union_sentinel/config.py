#!/usr/bin/env python3
"""Configuration management for the Union Sentinel.

The configuration document (JSON) describes the chains and the interactions
to drive between them. It is parsed once at startup into frozen dataclasses
and validated eagerly: any error is fatal and nothing is activated.

Operational knobs (indexer endpoint, polling, retries) come from environment
variables through MonitoringConfig.from_env().
"""

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, ClassVar
from urllib.parse import urlparse

from web3 import Web3

from .errors import ConfigError

# Get logger for this module
logger = logging.getLogger(__name__)

_MISSING = object()


def _get(raw: dict[str, Any], key: str, alias: str | None = None, default: Any = _MISSING) -> Any:
    """Read key (snake_case) or its camelCase alias from a raw mapping."""
    if key in raw:
        return raw[key]
    if alias and alias in raw:
        return raw[alias]
    if default is _MISSING:
        raise ConfigError(f"Missing required field '{key}'")
    return default


def _parse_tagged(value: Any, what: str) -> tuple[str, dict[str, Any]]:
    """Split a tagged value: either "tag" or {"tag": {...body}}."""
    match value:
        case str() as tag:
            return tag, {}
        case dict() if len(value) == 1:
            tag, body = next(iter(value.items()))
            if body is None:
                body = {}
            if not isinstance(body, dict):
                raise ConfigError(f"{what} '{tag}' must map to an object")
            return tag, body
        case _:
            raise ConfigError(f"{what} must be a name or a single-key object, got {value!r}")


def _as_int(value: Any, name: str) -> int:
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{name} must be an integer, got {value!r}")
    return value


def _as_number(value: Any, name: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"{name} must be a number, got {value!r}")
    return float(value)


def _as_label(value: Any) -> str:
    if not isinstance(value, str):
        raise ConfigError("Interaction name must be a string")
    return value.strip()


def _check_private_key(key: str) -> None:
    """Basic private key validation (64 hex chars, optional 0x prefix)."""
    if key.startswith('0x'):
        key = key[2:]
    if len(key) != 64:
        raise ConfigError(
            f"Invalid private key length. Expected 64 hex characters, got {len(key)}"
        )
    try:
        int(key, 16)
    except ValueError:
        raise ConfigError("Invalid private key format. Must be hexadecimal") from None


@dataclass(frozen=True, slots=True)
class EvmConnection:
    """Connectivity for an EVM chain.

    Attributes:
        rpc_url: HTTP(S) or WS(S) JSON-RPC endpoint
        chain_id: EIP-155 chain id (fetched from the RPC when omitted)
        gas_limit: Upper bound on the estimated gas of a relay send or approval
    """

    rpc_url: str
    chain_id: int | None = None
    gas_limit: int = 300_000

    SCHEMES: ClassVar[set[str]] = {'http', 'https', 'ws', 'wss'}

    def __post_init__(self) -> None:
        if not self.rpc_url:
            raise ConfigError("EVM rpc_url is required")
        parsed = urlparse(self.rpc_url)
        if parsed.scheme not in self.SCHEMES:
            raise ConfigError(
                f"Invalid RPC URL scheme: {parsed.scheme}. "
                "Expected http, https, ws, or wss"
            )
        if self.gas_limit <= 0:
            raise ConfigError(f"gas_limit must be positive, got {self.gas_limit}")


@dataclass(frozen=True, slots=True)
class CosmosConnection:
    """Connectivity for a Cosmos SDK chain (cosmpy URL format).

    Attributes:
        rpc_url: Endpoint prefixed with its protocol, e.g. rest+https://...
        chain_id: Chain id used in sign docs
        bech32_prefix: Account address prefix
        fee_denom: Denom used to pay fees
        gas_price: Minimum gas price in fee_denom
        gas_limit: Gas limit for transfer transactions
    """

    rpc_url: str
    chain_id: str
    bech32_prefix: str
    fee_denom: str
    gas_price: float = 0.0025
    gas_limit: int = 200_000

    SCHEMES: ClassVar[set[str]] = {'rest+http', 'rest+https', 'grpc+http', 'grpc+https'}

    def __post_init__(self) -> None:
        parsed = urlparse(self.rpc_url or "")
        if parsed.scheme not in self.SCHEMES:
            raise ConfigError(
                f"Invalid Cosmos endpoint: {self.rpc_url!r}. "
                f"Expected one of {', '.join(sorted(self.SCHEMES))} schemes"
            )
        if not self.chain_id:
            raise ConfigError("Cosmos chain_id is required")
        if not self.bech32_prefix:
            raise ConfigError("Cosmos bech32_prefix is required")
        if not self.fee_denom:
            raise ConfigError("Cosmos fee_denom is required")
        if self.gas_price < 0:
            raise ConfigError(f"gas_price must be non-negative, got {self.gas_price}")
        if self.gas_limit <= 0:
            raise ConfigError(f"gas_limit must be positive, got {self.gas_limit}")

    @property
    def rest_url(self) -> str:
        """Plain HTTP(S) URL without the cosmpy protocol prefix."""
        return self.rpc_url.split('+', 1)[1]


@dataclass(frozen=True, slots=True)
class SignerConfig:
    """Where a chain's signing key comes from. Exactly one source is set."""

    private_key: str | None = None
    private_key_env: str | None = None
    rofl_key_id: str | None = None

    def __post_init__(self) -> None:
        sources = [s for s in (self.private_key, self.private_key_env, self.rofl_key_id) if s]
        if len(sources) != 1:
            raise ConfigError(
                "Signer needs exactly one of private_key, private_key_env or rofl_key_id"
            )
        if self.private_key:
            _check_private_key(self.private_key)

    @property
    def uses_rofl(self) -> bool:
        return self.rofl_key_id is not None

    def resolve_local_key(self) -> str:
        """Return the hex key for local signers (reads the env var if needed)."""
        if self.private_key:
            return self.private_key
        if self.private_key_env:
            key = os.environ.get(self.private_key_env, "")
            if not key:
                raise ConfigError(
                    f"{self.private_key_env} environment variable is required for signing"
                )
            _check_private_key(key)
            return key
        raise ConfigError("ROFL signers have no local key")

    def describe(self) -> str:
        if self.private_key:
            return "private key [SET]"
        if self.private_key_env:
            return f"env:{self.private_key_env}"
        return f"rofl:{self.rofl_key_id}"


@dataclass(frozen=True, slots=True)
class NativeModule:
    """Chain-native transfer module (ICS-20 MsgTransfer)."""

    port: str = "transfer"


@dataclass(frozen=True, slots=True)
class ContractModule:
    """Contract-mediated transfers through a relay contract."""

    address: str

    def __post_init__(self) -> None:
        if not self.address or not Web3.is_address(self.address):
            raise ConfigError(f"Invalid transfer contract address: {self.address!r}")
        checksummed = Web3.to_checksum_address(self.address)
        if checksummed != self.address:
            # Use object.__setattr__ since dataclass is frozen
            object.__setattr__(self, 'address', checksummed)


TransferModule = NativeModule | ContractModule
Connection = EvmConnection | CosmosConnection


@dataclass(frozen=True, slots=True)
class ChainConfig:
    """One configured chain: identity, connectivity, signer, transfer module."""

    name: str
    enabled: bool
    connection: Connection
    signer: SignerConfig
    transfer_module: TransferModule

    def __post_init__(self) -> None:
        match (self.transfer_module, self.connection):
            case (ContractModule(), EvmConnection()) | (NativeModule(), CosmosConnection()):
                pass
            case (ContractModule(), _):
                raise ConfigError(f"Chain '{self.name}': contract transfer module needs an evm connection")
            case _:
                raise ConfigError(f"Chain '{self.name}': native transfer module needs a cosmos connection")

    @classmethod
    def from_dict(cls, name: str, raw: dict[str, Any]) -> "ChainConfig":
        if not isinstance(raw, dict):
            raise ConfigError(f"Chain '{name}' must be an object")

        kind, body = _parse_tagged(_get(raw, "connection"), "connection")
        try:
            match kind:
                case "evm":
                    connection: Connection = EvmConnection(**body)
                case "cosmos":
                    connection = CosmosConnection(**body)
                case _:
                    raise ConfigError(f"Chain '{name}': unknown connection kind '{kind}'")
        except TypeError as e:
            raise ConfigError(f"Chain '{name}': invalid {kind} connection: {e}") from None

        signer_raw = _get(raw, "signer")
        if not isinstance(signer_raw, dict):
            raise ConfigError(f"Chain '{name}': signer must be an object")
        try:
            signer = SignerConfig(**signer_raw)
        except TypeError as e:
            raise ConfigError(f"Chain '{name}': invalid signer: {e}") from None

        module_kind, module_body = _parse_tagged(
            _get(raw, "transfer_module", "transferModule"), "transfer_module"
        )
        match module_kind:
            case "native":
                module: TransferModule = NativeModule(port=module_body.get("port", "transfer"))
            case "contract":
                module = ContractModule(address=module_body.get("address", ""))
            case _:
                raise ConfigError(f"Chain '{name}': unknown transfer module '{module_kind}'")

        enabled = _get(raw, "enabled", default=True)
        if not isinstance(enabled, bool):
            raise ConfigError(f"Chain '{name}': enabled must be a boolean")

        return cls(
            name=name,
            enabled=enabled,
            connection=connection,
            signer=signer,
            transfer_module=module,
        )


@dataclass(frozen=True, slots=True)
class Endpoint:
    """A chain-channel pair."""

    chain: str
    channel: str

    @classmethod
    def from_dict(cls, raw: Any, what: str) -> "Endpoint":
        if not isinstance(raw, dict):
            raise ConfigError(f"{what} must be an object with chain and channel")
        chain = _get(raw, "chain")
        channel = _get(raw, "channel")
        if not chain or not channel:
            raise ConfigError(f"{what} needs a non-empty chain and channel")
        return cls(chain=str(chain), channel=str(channel))

    def __str__(self) -> str:
        return f"{self.chain}/{self.channel}"


@dataclass(frozen=True, slots=True)
class Ucs01Protocol:
    """UCS01 relay transfers (contract-mediated)."""

    receivers: tuple[str, ...]
    contract: str | None = None

    NAME: ClassVar[str] = "ucs01"


@dataclass(frozen=True, slots=True)
class Ics20Protocol:
    """ICS-20 fungible token transfers (native module)."""

    receivers: tuple[str, ...]
    port: str = "transfer"

    NAME: ClassVar[str] = "ics20"


Protocol = Ucs01Protocol | Ics20Protocol


def _parse_protocol(raw: Any) -> Protocol:
    name, body = _parse_tagged(raw, "protocol")
    receivers = body.get("receivers")
    if not isinstance(receivers, list) or not receivers or not all(
        isinstance(r, str) and r for r in receivers
    ):
        raise ConfigError(f"protocol '{name}' needs a non-empty list of receivers")
    match name:
        case "ucs01":
            contract = body.get("contract")
            if contract is not None:
                if not Web3.is_address(contract):
                    raise ConfigError(f"protocol 'ucs01' has an invalid contract: {contract!r}")
                contract = Web3.to_checksum_address(contract)
            return Ucs01Protocol(receivers=tuple(receivers), contract=contract)
        case "ics20":
            return Ics20Protocol(receivers=tuple(receivers), port=body.get("port", "transfer"))
        case _:
            raise ConfigError(f"Unknown protocol variant '{name}'. Supported: ucs01, ics20")


@dataclass(frozen=True, slots=True)
class Interaction:
    """A directional, periodic transfer relationship between two endpoints.

    send_packet_interval and expect_full_cycle are opaque units; they are
    converted to seconds with interval_unit_seconds.
    label names the interaction in logs, tasks and stats; it defaults to the
    endpoint pair and must be set when two interactions share one.
    """

    source: Endpoint
    destination: Endpoint
    protocol: Protocol
    memo: str
    sending_memo_probability: float
    denoms: tuple[str, ...]
    send_packet_interval: float
    expect_full_cycle: float
    amount_min: int
    amount_max: int
    interval_unit_seconds: float = 1.0
    label: str = ""

    def __post_init__(self) -> None:
        if not 0.0 <= self.sending_memo_probability <= 1.0:
            raise ConfigError(
                f"sending_memo_probability must be within [0, 1], got {self.sending_memo_probability}"
            )
        if not self.denoms:
            raise ConfigError(f"Interaction {self.name} needs at least one denom")
        if self.amount_min < 1:
            raise ConfigError(f"amount_min must be at least 1, got {self.amount_min}")
        if self.amount_max < self.amount_min:
            raise ConfigError(
                f"amount_max ({self.amount_max}) must be >= amount_min ({self.amount_min})"
            )
        if self.send_packet_interval <= 0:
            raise ConfigError(f"send_packet_interval must be positive, got {self.send_packet_interval}")
        if self.expect_full_cycle <= 0:
            raise ConfigError(f"expect_full_cycle must be positive, got {self.expect_full_cycle}")

    @property
    def name(self) -> str:
        return self.label or f"{self.source}->{self.destination}"

    @property
    def send_packet_interval_seconds(self) -> float:
        return self.send_packet_interval * self.interval_unit_seconds

    @property
    def expect_full_cycle_seconds(self) -> float:
        return self.expect_full_cycle * self.interval_unit_seconds

    @classmethod
    def from_dict(cls, raw: Any, interval_unit_seconds: float = 1.0) -> "Interaction":
        if not isinstance(raw, dict):
            raise ConfigError("Interaction must be an object")

        denoms = _get(raw, "denoms")
        if not isinstance(denoms, list) or not all(isinstance(d, str) and d for d in denoms):
            raise ConfigError("denoms must be a list of non-empty strings")

        memo = _get(raw, "memo", default="")
        if not isinstance(memo, str):
            # Forwarding instructions may be written inline as JSON objects
            memo = json.dumps(memo, separators=(',', ':'))

        return cls(
            source=Endpoint.from_dict(_get(raw, "source"), "source"),
            destination=Endpoint.from_dict(_get(raw, "destination"), "destination"),
            protocol=_parse_protocol(_get(raw, "protocol")),
            memo=memo,
            sending_memo_probability=_as_number(
                _get(raw, "sending_memo_probability", "sendingMemoProbability", 0.0),
                "sending_memo_probability",
            ),
            denoms=tuple(denoms),
            send_packet_interval=_as_number(
                _get(raw, "send_packet_interval", "sendPacketInterval"), "send_packet_interval"
            ),
            expect_full_cycle=_as_number(
                _get(raw, "expect_full_cycle", "expectFullCycle"), "expect_full_cycle"
            ),
            amount_min=_as_int(_get(raw, "amount_min", "amountMin"), "amount_min"),
            amount_max=_as_int(_get(raw, "amount_max", "amountMax"), "amount_max"),
            interval_unit_seconds=interval_unit_seconds,
            label=_as_label(_get(raw, "name", default="")),
        )


@dataclass(frozen=True, slots=True)
class SentinelConfig:
    """The validated configuration document.

    Attributes:
        chains: Chain configs by name (disabled chains included)
        interactions: Periodic interactions (empty in single-interaction mode)
        single_interaction: The one interaction to run once, if in that mode
        interval_unit_seconds: Seconds per interval/budget unit
    """

    chains: dict[str, ChainConfig]
    interactions: tuple[Interaction, ...] = ()
    single_interaction: Interaction | None = None
    interval_unit_seconds: float = 1.0

    def __post_init__(self) -> None:
        if self.single_interaction is not None and self.interactions:
            raise ConfigError("interactions and single_interaction are mutually exclusive")
        if self.single_interaction is None and not self.interactions:
            raise ConfigError("Either interactions or single_interaction must be configured")

        names: set[str] = set()
        for interaction in self.active_interactions:
            if interaction.name in names:
                raise ConfigError(
                    f"Duplicate interaction name '{interaction.name}'; give each a distinct 'name'"
                )
            names.add(interaction.name)
            self._validate_interaction(interaction)

    def _validate_interaction(self, interaction: Interaction) -> None:
        for what, endpoint in (("source", interaction.source), ("destination", interaction.destination)):
            chain = self.chains.get(endpoint.chain)
            if chain is None:
                raise ConfigError(
                    f"Interaction {interaction.name}: {what} chain '{endpoint.chain}' is not configured"
                )
            if not chain.enabled:
                raise ConfigError(
                    f"Interaction {interaction.name}: {what} chain '{endpoint.chain}' is disabled"
                )

        source = self.chains[interaction.source.chain]
        match (interaction.protocol, source.transfer_module):
            case (Ucs01Protocol(), ContractModule()) | (Ics20Protocol(), NativeModule()):
                pass
            case (Ucs01Protocol(), _):
                raise ConfigError(
                    f"Interaction {interaction.name}: ucs01 needs a contract transfer module "
                    f"on '{source.name}'"
                )
            case _:
                raise ConfigError(
                    f"Interaction {interaction.name}: ics20 needs a native transfer module "
                    f"on '{source.name}'"
                )

    @property
    def single_mode(self) -> bool:
        return self.single_interaction is not None

    @property
    def active_interactions(self) -> tuple[Interaction, ...]:
        if self.single_interaction is not None:
            return (self.single_interaction,)
        return self.interactions

    @property
    def active_chains(self) -> dict[str, ChainConfig]:
        """Chains referenced by at least one active interaction."""
        names = {
            endpoint.chain
            for interaction in self.active_interactions
            for endpoint in (interaction.source, interaction.destination)
        }
        return {name: chain for name, chain in self.chains.items() if name in names}

    @property
    def source_chains(self) -> dict[str, ChainConfig]:
        """Chains that active interactions send from."""
        names = {interaction.source.chain for interaction in self.active_interactions}
        return {name: chain for name, chain in self.chains.items() if name in names}

    @classmethod
    def from_dict(cls, raw: Any) -> "SentinelConfig":
        """Parse and validate a configuration document.

        Raises:
            ConfigError: On any invalid or inconsistent setting
        """
        if not isinstance(raw, dict):
            raise ConfigError("Configuration document must be a JSON object")

        unit = _as_number(
            _get(raw, "interval_unit_seconds", "intervalUnitSeconds", 1.0), "interval_unit_seconds"
        )
        if unit <= 0:
            raise ConfigError(f"interval_unit_seconds must be positive, got {unit}")

        chains_raw = _get(raw, "chains", "chainConfigs")
        if not isinstance(chains_raw, dict) or not chains_raw:
            raise ConfigError("chains must be a non-empty object keyed by chain name")
        chains = {name: ChainConfig.from_dict(name, body) for name, body in chains_raw.items()}

        interactions_raw = _get(raw, "interactions", default=None)
        single_raw = _get(raw, "single_interaction", "singleInteraction", None)
        if interactions_raw is not None and not isinstance(interactions_raw, list):
            raise ConfigError("interactions must be a list")

        interactions = tuple(
            Interaction.from_dict(item, unit) for item in interactions_raw or []
        )
        single = Interaction.from_dict(single_raw, unit) if single_raw is not None else None

        return cls(
            chains=chains,
            interactions=interactions,
            single_interaction=single,
            interval_unit_seconds=unit,
        )

    def log_config(self) -> None:
        """Log the configuration in a readable format (secrets hidden)."""
        logger.info("=" * 60)
        logger.info("Union Sentinel Configuration")
        logger.info("=" * 60)
        logger.info(f"Mode: {'SINGLE INTERACTION' if self.single_mode else 'PERIODIC'}")
        logger.info(f"Interval unit: {self.interval_unit_seconds}s")

        logger.info("Chains:")
        for chain in self.chains.values():
            module = (
                f"contract {chain.transfer_module.address}"
                if isinstance(chain.transfer_module, ContractModule)
                else f"native port {chain.transfer_module.port}"
            )
            logger.info(
                f"  {chain.name}: {'enabled' if chain.enabled else 'DISABLED'}, "
                f"{module}, signer {chain.signer.describe()}"
            )

        logger.info("Interactions:")
        for interaction in self.active_interactions:
            logger.info(
                f"  {interaction.name} [{interaction.protocol.NAME}] "
                f"every {interaction.send_packet_interval} units, "
                f"budget {interaction.expect_full_cycle} units, "
                f"amount {interaction.amount_min}-{interaction.amount_max} "
                f"{','.join(interaction.denoms)}, memo p={interaction.sending_memo_probability}"
            )
        logger.info("=" * 60)


def load_config(path: str | Path) -> SentinelConfig:
    """Load and validate the configuration document at path.

    Raises:
        ConfigError: If the file is missing, is not JSON, or fails validation
    """
    config_path = Path(path)
    try:
        with config_path.open() as file:
            raw = json.load(file)
    except FileNotFoundError:
        raise ConfigError(f"Configuration file not found: {config_path}") from None
    except json.JSONDecodeError as e:
        raise ConfigError(f"Configuration file {config_path} is not valid JSON: {e}") from None
    return SentinelConfig.from_dict(raw)


@dataclass(frozen=True, slots=True)
class MonitoringConfig:
    """Operational settings for tracing and monitoring."""

    indexer_url: str
    indexer_secret: str | None = None
    trace_poll_interval: float = 5.0  # seconds between correlator passes
    max_concurrent_queries: int = 8
    indexer_max_attempts: int = 3
    indexer_initial_delay: float = 1.0
    indexer_max_delay: float = 15.0
    indexer_cache_ttl: float = 0.9
    request_timeout: int = 30  # HTTP request timeout in seconds
    transfer_timeout: int = 3600  # packet timeout, seconds after dispatch
    status_log_interval: int = 30
    delivery_event_types: frozenset[str] = field(default_factory=lambda: frozenset({"WRITE_ACK"}))
    rofl_appd_url: str = ""  # empty: default unix socket

    def __post_init__(self) -> None:
        """Validate monitoring configuration."""
        parsed = urlparse(self.indexer_url or "")
        if parsed.scheme not in ('http', 'https'):
            raise ConfigError(f"INDEXER_URL must be an http(s) URL, got {self.indexer_url!r}")
        if self.trace_poll_interval <= 0:
            raise ConfigError(f"Trace poll interval must be positive, got {self.trace_poll_interval}")
        if not 1 <= self.max_concurrent_queries <= 100:
            raise ConfigError(
                f"Max concurrent queries must be within 1-100, got {self.max_concurrent_queries}"
            )
        if not 1 <= self.indexer_max_attempts <= 10:
            raise ConfigError(
                f"Indexer max attempts must be within 1-10, got {self.indexer_max_attempts}"
            )
        if self.indexer_initial_delay <= 0 or self.indexer_max_delay < self.indexer_initial_delay:
            raise ConfigError(
                "Indexer delays must satisfy 0 < initial delay <= max delay, got "
                f"{self.indexer_initial_delay} and {self.indexer_max_delay}"
            )
        if not 0 <= self.indexer_cache_ttl < 1:
            raise ConfigError(f"Indexer cache TTL must be sub-second, got {self.indexer_cache_ttl}")
        if self.request_timeout <= 0 or self.request_timeout > 120:
            raise ConfigError(f"Request timeout must be within 1-120s, got {self.request_timeout}")
        if self.transfer_timeout <= 0:
            raise ConfigError(f"Transfer timeout must be positive, got {self.transfer_timeout}")
        if self.status_log_interval <= 0:
            raise ConfigError(f"Status log interval must be positive, got {self.status_log_interval}")
        if not self.delivery_event_types:
            raise ConfigError("At least one delivery event type is required")

    @classmethod
    def from_env(cls) -> "MonitoringConfig":
        """Load monitoring configuration from environment variables.

        Raises:
            ConfigError: If INDEXER_URL is missing or a value is invalid
        """
        indexer_url = os.environ.get("INDEXER_URL", "")
        if not indexer_url:
            raise ConfigError(
                "INDEXER_URL environment variable is required. "
                "This is the GraphQL endpoint of the transfer indexer."
            )

        delivery_types = os.environ.get("DELIVERY_EVENT_TYPES", "WRITE_ACK")

        try:
            return cls(
                indexer_url=indexer_url,
                indexer_secret=os.environ.get("HASURA_ADMIN_SECRET") or None,
                trace_poll_interval=float(os.environ.get("TRACE_POLL_INTERVAL", "5")),
                max_concurrent_queries=int(os.environ.get("MAX_CONCURRENT_QUERIES", "8")),
                indexer_max_attempts=int(os.environ.get("INDEXER_MAX_ATTEMPTS", "3")),
                indexer_initial_delay=float(os.environ.get("INDEXER_INITIAL_DELAY", "1.0")),
                indexer_max_delay=float(os.environ.get("INDEXER_MAX_DELAY", "15.0")),
                indexer_cache_ttl=float(os.environ.get("INDEXER_CACHE_TTL", "0.9")),
                request_timeout=int(os.environ.get("REQUEST_TIMEOUT", "30")),
                transfer_timeout=int(os.environ.get("TRANSFER_TIMEOUT", "3600")),
                status_log_interval=int(os.environ.get("STATUS_LOG_INTERVAL", "30")),
                delivery_event_types=frozenset(
                    t.strip() for t in delivery_types.split(",") if t.strip()
                ),
                rofl_appd_url=os.environ.get("ROFL_APPD_URL", ""),
            )
        except ValueError as e:
            if isinstance(e, ConfigError):
                raise
            raise ConfigError(f"Invalid monitoring environment value: {e}") from None

    def log_config(self) -> None:
        logger.info("Monitoring Settings:")
        logger.info(f"  Indexer: {self.indexer_url}")
        logger.info(f"  Indexer Secret: {'[SET]' if self.indexer_secret else '[NOT SET]'}")
        logger.info(f"  Trace Poll Interval: {self.trace_poll_interval}s")
        logger.info(f"  Max Concurrent Queries: {self.max_concurrent_queries}")
        logger.info(
            f"  Indexer Retries: {self.indexer_max_attempts} attempts, "
            f"{self.indexer_initial_delay}-{self.indexer_max_delay}s backoff"
        )
        logger.info(f"  Delivery Events: {', '.join(sorted(self.delivery_event_types))}")
