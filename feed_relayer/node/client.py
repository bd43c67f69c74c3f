"""
Node client protocol — the network boundary.

Defines the interface that the submitter depends on, not a concrete
implementation. This keeps the submitter testable and keeps HTTP and
websocket details out of the submission logic.

Concrete implementations:
    - JsonRpcNodeClient (JSON-RPC over an injectable transport)
    - FakeNodeClient (tests)

The protocol has exactly three methods:
    - account_next_index(address) → int
    - submit_and_watch(extrinsic_hex) → async stream of TxStatusUpdate
    - block_events(block_hash, tx_hash) → list[ChainEvent]

Transport-level failures raise (TransportError or whatever the
transport raises). The submitter converts every raise into a
TRANSPORT_ERROR outcome.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Protocol, runtime_checkable

from feed_relayer.model import ChainEvent, TxStatusUpdate


@runtime_checkable
class NodeClient(Protocol):
    """Interface for the remote node operations the relayer uses."""

    async def account_next_index(self, address: str) -> int:
        """Next valid nonce for address, counting the pending pool.

        Must be queried at send time for every submission. A locally
        cached nonce is reused when several submissions are in flight.
        """
        ...

    def submit_and_watch(self, extrinsic_hex: str) -> AsyncGenerator[TxStatusUpdate, None]:
        """Submit a signed extrinsic and stream its status updates.

        The stream ends after a status from which no further progress
        is expected for the relayer (IN_BLOCK, FINALIZED, DROPPED,
        INVALID, USURPED), or when the node stops reporting.
        """
        ...

    async def block_events(self, block_hash: str, tx_hash: str | None) -> list[ChainEvent]:
        """Events emitted by the given extrinsic in the given block.

        Raises when the extrinsic cannot be located in the block. Events
        of other extrinsics are never returned.
        """
        ...
