"""
Call builders for the operations the relayer submits.

Each builder returns an unsigned Call — a "transaction recipe" that is
pure, deterministic, and holds no secrets and no network state. The
nonce is a send-time concern and is NOT part of the call.

Builders:
    - ``feeds_create()`` — register a new feed for the signer.
    - ``feeds_put()`` — append a block (and its metadata) to a feed.
    - ``balances_transfer()`` — move tokens between accounts.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

# Token amounts are expressed in whole tokens by callers; the chain
# counts base units with 12 decimals.
TOKEN_DECIMALS = 12


@dataclass(frozen=True)
class Call:
    """An unsigned runtime call.

    Attributes:
        module: Pallet name ("feeds", "balances").
        function: Call name within the pallet ("put", "create").
        args: Positional call arguments, in runtime order.
    """

    module: str
    function: str
    args: tuple[Any, ...] = ()

    @property
    def label(self) -> str:
        """Operation kind for logs, e.g. ``feeds.put``."""
        return f"{self.module}.{self.function}"


def encode_metadata(metadata: dict[str, Any]) -> bytes:
    """Serialize block metadata the way it is stored on-chain (Vec<u8>).

    Canonical JSON: sorted keys, no whitespace, UTF-8. Decode with
    ``json.loads(data.decode("utf-8"))``.
    """
    return json.dumps(
        metadata,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    ).encode("utf-8")


def feeds_create() -> Call:
    return Call(module="feeds", function="create")


def feeds_put(feed_id: int, block: bytes, metadata: dict[str, Any]) -> Call:
    """Build a ``feeds.put`` call.

    Raises:
        ValueError: If feed_id is negative.
    """
    if feed_id < 0:
        raise ValueError(f"feed_id must be >= 0, got: {feed_id}")
    return Call(
        module="feeds",
        function="put",
        args=(feed_id, bytes(block), encode_metadata(metadata)),
    )


def balances_transfer(dest: str, amount: int | float) -> Call:
    """Build a ``balances.transfer`` call.

    Args:
        dest: Destination address.
        amount: Amount in whole tokens; converted to base units.

    Raises:
        ValueError: If dest is empty or amount is not positive.
    """
    if not dest:
        raise ValueError("dest must be non-empty")
    if amount <= 0:
        raise ValueError(f"amount must be positive, got: {amount}")
    return Call(
        module="balances",
        function="transfer",
        args=(dest, int(round(amount * 10**TOKEN_DECIMALS))),
    )
