"""
GraphQL client for the transfer indexer.

Two lookups are made per transfer, both keyed by source transaction hash:

- the base lookup returns the transfer row (sender, receiver, channels,
  tokens, forwards) once the indexer has seen the send;
- the traces lookup returns the ordered event traces of the transfer and of
  its forwarded hops, nested to a caller-chosen depth.

Network-class failures (transport errors, 5xx, 429) are retried with capped,
jittered exponential backoff. GraphQL errors and other client errors are not.
"""

import asyncio
import logging
import random
import time
from collections import OrderedDict
from collections.abc import Callable
from typing import Any

import httpx

from .config import MonitoringConfig
from .errors import IndexerQueryError
from .models import TransferRecord, TransferTrace

logger = logging.getLogger(__name__)

ADMIN_SECRET_HEADER = "X-Hasura-Admin-Secret"

BASE_QUERY = """
query TransferBase($source_transaction_hash: String!) @cached(ttl: 1) {
  v1_transfers(where: {source_transaction_hash: {_eq: $source_transaction_hash}}) {
    sender
    normalized_sender
    source_chain_id
    source_connection_id
    source_channel_id
    source_sequence
    source_transaction_hash
    receiver
    normalized_receiver
    destination_chain_id
    destination_connection_id
    destination_channel_id
    destination_sequence
    tokens {
      denom
      amount
      asset {
        denom
        decimals
        display_name
        display_symbol
      }
    }
    source_timestamp
    destination_timestamp
    forwards {
      source_connection_id
      source_channel_id
      destination_connection_id
      destination_channel_id
      destination_chain_id
      receiver
    }
  }
}
"""

_TRACES_SELECTION = """traces(order_by: {timestamp: asc}) {
  timestamp
  chain { chain_id }
  type
  transaction_hash
  height
}"""


def _indent(text: str, level: int) -> str:
    pad = "  " * level
    return "\n".join(pad + line for line in text.splitlines())


def _hop_selection(depth: int) -> str:
    """Selection for `depth` nested hops, each with its own traces."""
    if depth <= 0:
        return ""
    inner = _TRACES_SELECTION
    nested = _hop_selection(depth - 1)
    if nested:
        inner += "\n" + nested
    return "hop {\n" + _indent(inner, 1) + "\n}"


def build_traces_query(depth: int) -> str:
    """Traces-and-hops query nesting `depth` hop levels below the transfer."""
    body = _TRACES_SELECTION
    hops = _hop_selection(depth)
    if hops:
        body += "\n" + hops
    return (
        "query TransferTraces($source_transaction_hash: String!) @cached(ttl: 1) {\n"
        "  v1_transfers(where: {source_transaction_hash: {_eq: $source_transaction_hash}}) {\n"
        + _indent(body, 2)
        + "\n  }\n}\n"
    )


class IndexerClient:
    """Async client for the base and traces lookups."""

    MAX_CACHE_ENTRIES: int = 1024
    RETRYABLE_STATUS: frozenset[int] = frozenset({429, 500, 502, 503, 504})

    def __init__(
        self,
        url: str,
        admin_secret: str | None = None,
        max_attempts: int = 3,
        initial_delay: float = 1.0,
        max_delay: float = 15.0,
        cache_ttl: float = 0.9,
        request_timeout: int = 30,
        client: httpx.AsyncClient | None = None,
        rng: random.Random | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize the indexer client.

        Args:
            url: GraphQL endpoint
            admin_secret: Optional admin secret sent as a request header
            max_attempts: Total attempts per query, including the first
            initial_delay: Backoff before the second attempt, in seconds
            max_delay: Upper bound for a single backoff, in seconds
            cache_ttl: How long identical query results are reused, in seconds
            request_timeout: HTTP request timeout in seconds
            client: Pre-built HTTP client (created when omitted)
            rng: Randomness for backoff jitter
            clock: Monotonic clock used for cache expiry
        """
        self.url = url
        self.max_attempts = max_attempts
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.cache_ttl = cache_ttl
        self.rng = rng or random.Random()
        self.clock = clock

        headers = {"Content-Type": "application/json"}
        if admin_secret:
            headers[ADMIN_SECRET_HEADER] = admin_secret
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(headers=headers, timeout=request_timeout)
        if client is not None:
            client.headers.update(headers)

        self._cache: OrderedDict[tuple[Any, ...], tuple[float, Any]] = OrderedDict()

    @classmethod
    def from_config(cls, config: MonitoringConfig, rng: random.Random | None = None) -> "IndexerClient":
        return cls(
            url=config.indexer_url,
            admin_secret=config.indexer_secret,
            max_attempts=config.indexer_max_attempts,
            initial_delay=config.indexer_initial_delay,
            max_delay=config.indexer_max_delay,
            cache_ttl=config.indexer_cache_ttl,
            request_timeout=config.request_timeout,
            rng=rng,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    def _backoff(self, attempt: int) -> float:
        """Jittered delay after the given (1-based) failed attempt."""
        delay = min(self.initial_delay * 2 ** (attempt - 1), self.max_delay)
        return delay * self.rng.uniform(0.5, 1.0)

    def _cache_get(self, key: tuple[Any, ...]) -> tuple[bool, Any]:
        entry = self._cache.get(key)
        if entry is None:
            return False, None
        expires_at, value = entry
        if self.clock() >= expires_at:
            del self._cache[key]
            return False, None
        return True, value

    def _cache_put(self, key: tuple[Any, ...], value: Any) -> None:
        if self.cache_ttl <= 0:
            return
        self._cache[key] = (self.clock() + self.cache_ttl, value)
        self._cache.move_to_end(key)
        while len(self._cache) > self.MAX_CACHE_ENTRIES:
            self._cache.popitem(last=False)

    async def _post(self, query: str, variables: dict[str, Any]) -> dict[str, Any]:
        """Run one GraphQL query, retrying network-class failures.

        Raises:
            IndexerQueryError: When retries are exhausted, on a non-retryable
                HTTP status or when the response carries GraphQL errors
        """
        payload = {"query": query, "variables": variables}
        last_error: Exception | None = None

        for attempt in range(1, self.max_attempts + 1):
            try:
                response = await self.client.post(self.url, json=payload)
                if response.status_code in self.RETRYABLE_STATUS:
                    raise httpx.HTTPStatusError(
                        f"Indexer returned {response.status_code}",
                        request=response.request,
                        response=response,
                    )
                response.raise_for_status()
            except httpx.HTTPStatusError as e:
                if e.response.status_code not in self.RETRYABLE_STATUS:
                    raise IndexerQueryError(f"Indexer rejected query: {e}", attempts=attempt) from e
                last_error = e
            except httpx.TransportError as e:
                last_error = e
            else:
                body = response.json()
                if body.get("errors"):
                    messages = "; ".join(str(err.get("message", err)) for err in body["errors"])
                    raise IndexerQueryError(f"GraphQL errors: {messages}", attempts=attempt)
                return body.get("data") or {}

            if attempt < self.max_attempts:
                delay = self._backoff(attempt)
                logger.warning(
                    f"Indexer query failed (attempt {attempt}/{self.max_attempts}): "
                    f"{last_error}. Retrying in {delay:.2f}s"
                )
                await asyncio.sleep(delay)

        raise IndexerQueryError(
            f"Indexer unreachable after {self.max_attempts} attempts: {last_error}",
            attempts=self.max_attempts,
        ) from last_error

    async def _first_row(self, key: tuple[Any, ...], query: str, tx_hash: str) -> dict[str, Any] | None:
        hit, cached = self._cache_get(key)
        if hit:
            return cached
        data = await self._post(query, {"source_transaction_hash": tx_hash})
        rows = data.get("v1_transfers") or []
        row = rows[0] if rows else None
        self._cache_put(key, row)
        return row

    async def fetch_base(self, tx_hash: str) -> TransferRecord | None:
        """Base lookup. None when the indexer has not seen the transfer yet."""
        row = await self._first_row(("base", tx_hash), BASE_QUERY, tx_hash)
        if row is None:
            return None
        return TransferRecord.from_row(row)

    async def fetch_traces(self, tx_hash: str, depth: int = 0) -> TransferTrace | None:
        """Traces lookup with hops nested `depth` levels deep."""
        row = await self._first_row(("traces", tx_hash, depth), build_traces_query(depth), tx_hash)
        if row is None:
            return None
        return TransferTrace.from_row(row, depth)
