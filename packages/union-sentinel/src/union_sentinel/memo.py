"""
Forwarding memo inspection.

A packet-forward memo nests one `forward` instruction per extra hop:

    {"forward": {"receiver": "...", "port": "transfer", "channel": "channel-1",
                 "next": {"forward": {...}}}}

`next` may also be a JSON-encoded string. The number of nested instructions
bounds how deep the trace correlator looks for hops.
"""

import json
import logging
from typing import Any

logger = logging.getLogger(__name__)

MAX_HOP_DEPTH = 8


def _as_object(value: Any) -> dict[str, Any] | None:
    if isinstance(value, dict):
        return value
    if isinstance(value, str) and value.strip().startswith("{"):
        try:
            decoded = json.loads(value)
        except json.JSONDecodeError:
            return None
        return decoded if isinstance(decoded, dict) else None
    return None


def count_forwards(memo: str | None, max_depth: int = MAX_HOP_DEPTH) -> int:
    """Number of forward instructions encoded in memo (0 for plain memos).

    Nesting deeper than max_depth is truncated to max_depth.
    """
    depth = 0
    node = _as_object(memo) if memo else None
    while node is not None and isinstance(node.get("forward"), dict):
        if depth == max_depth:
            logger.warning(f"Forwarding memo nests deeper than {max_depth} hops, truncating")
            break
        depth += 1
        node = _as_object(node["forward"].get("next"))
    return depth
