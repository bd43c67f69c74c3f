"""
Error taxonomy for the feed relayer.

Expected node failures are not exceptions at the submitter boundary;
they are captured as TransactionOutcome values. The exceptions below
exist for callers that want a raise/await style API (Target, registrar)
and for store initialization, which is fatal.

Hierarchy:
    RelayerError
    ├── TransportError        — network/RPC layer failure talking to the node
    │   └── NodeRpcError      — node answered with a JSON-RPC error object
    ├── TransactionFailed     — included in a block, execution failed
    ├── RegistrationFailed    — feed creation did not complete
    ├── StoreCorruption       — registry unreadable/malformed at startup
    └── RegistryConflict      — identity already mapped to another feed
"""

from __future__ import annotations

from feed_relayer.model import OutcomeKind, TxStatus


class RelayerError(Exception):
    """Base class for all relayer errors."""


class TransportError(RelayerError):
    """The node could not be reached or returned a malformed response."""


class NodeRpcError(TransportError):
    """The node returned a JSON-RPC error object.

    Attributes:
        code: JSON-RPC error code (may be None if absent).
        method: The RPC method that failed.
    """

    def __init__(self, method: str, code: int | None, message: str) -> None:
        super().__init__(f"{method} failed ({code}): {message}")
        self.method = method
        self.code = code


class TransactionFailed(RelayerError):
    """The transaction was included but its execution failed on-chain."""

    def __init__(self, reason: str, *, block_hash: str | None = None) -> None:
        super().__init__(reason)
        self.block_hash = block_hash


class RegistrationFailed(RelayerError):
    """Feed creation did not complete. Nothing was recorded."""

    def __init__(self, identity: str, reason: str) -> None:
        super().__init__(f"feed registration for {identity} failed: {reason}")
        self.identity = identity
        self.reason = reason


class StoreCorruption(RelayerError):
    """The registry backing store is unreadable or malformed.

    Fatal: the one-feed-per-identity invariant cannot be verified.
    """


class RegistryConflict(RelayerError):
    """An identity is already mapped to a different feed id."""

    def __init__(self, identity: str, existing: int, attempted: int) -> None:
        super().__init__(
            f"{identity} is already mapped to feed {existing}, refusing {attempted}"
        )
        self.identity = identity
        self.existing = existing
        self.attempted = attempted


# ---------------------------------------------------------------------------
# Node status → outcome kind
# ---------------------------------------------------------------------------

# Statuses after which the transaction will never be included.
_REJECTED_STATUSES = frozenset({TxStatus.DROPPED, TxStatus.INVALID, TxStatus.USURPED})

# Statuses that mean "in a block"; finality is never awaited.
_INCLUDED_STATUSES = frozenset({TxStatus.IN_BLOCK, TxStatus.FINALIZED})


def classify_node_status(status: TxStatus) -> OutcomeKind:
    """Map a node status notification to an outcome kind.

    IN_BLOCK and FINALIZED both map to INCLUDED_IN_BLOCK; the submitter
    still has to inspect the block's events before reporting success.
    """
    if status in _INCLUDED_STATUSES:
        return OutcomeKind.INCLUDED_IN_BLOCK
    if status in _REJECTED_STATUSES:
        return OutcomeKind.FAILED
    return OutcomeKind.PENDING


def classify_exception(exc: BaseException) -> str:
    """Short, log-safe description of a transport exception."""
    detail = str(exc)
    name = type(exc).__name__
    return f"{name}: {detail}" if detail else name
