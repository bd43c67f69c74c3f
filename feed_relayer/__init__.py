"""
feed-relayer: submit blocks of another chain to feeds on a ledger node.

Public API:

    Caller-facing:
        - ``Target`` — get_feed_id, process_submissions, send_value_transfer.
        - ``RelayerConfig``, ``open_registry``, ``configure_logging``.

    Components:
        - ``TransactionSubmitter`` — sign, send, watch one call.
        - ``FeedRegistrar`` — one feed per identity, single-flight creation.
        - ``SubmissionSequencer`` — ordered, bounded submission of requests.
        - Registry stores: ``JsonFileRegistry``, ``SqliteRegistry``,
          ``MemoryRegistry``.

    Values:
        - ``SubmissionRequest``, ``SubmissionResult``, ``TransactionOutcome``,
          ``OutcomeKind``, ``RequestState``, ``FeedRecord``, ``ChainEvent``.
"""

from feed_relayer.calls import Call, balances_transfer, feeds_create, feeds_put
from feed_relayer.config import RelayerConfig, configure_logging, open_registry
from feed_relayer.errors import (
    NodeRpcError,
    RegistrationFailed,
    RegistryConflict,
    RelayerError,
    StoreCorruption,
    TransactionFailed,
    TransportError,
)
from feed_relayer.model import (
    ChainEvent,
    FeedRecord,
    OutcomeKind,
    RequestState,
    SubmissionRequest,
    SubmissionResult,
    TransactionOutcome,
    TxStatus,
    TxStatusUpdate,
)
from feed_relayer.registrar import FeedRegistrar
from feed_relayer.registry import (
    JsonFileRegistry,
    MemoryRegistry,
    RegistryStore,
    SqliteRegistry,
)
from feed_relayer.sequencer import SequencerHandle, SubmissionSequencer
from feed_relayer.submitter import TransactionSubmitter
from feed_relayer.target import Target

__version__ = "0.1.0"

__all__ = [
    "Call",
    "ChainEvent",
    "FeedRecord",
    "FeedRegistrar",
    "JsonFileRegistry",
    "MemoryRegistry",
    "NodeRpcError",
    "OutcomeKind",
    "RegistrationFailed",
    "RegistryConflict",
    "RegistryStore",
    "RelayerConfig",
    "RelayerError",
    "RequestState",
    "SequencerHandle",
    "SqliteRegistry",
    "StoreCorruption",
    "SubmissionRequest",
    "SubmissionResult",
    "SubmissionSequencer",
    "Target",
    "TransactionFailed",
    "TransactionOutcome",
    "TransactionSubmitter",
    "TransportError",
    "TxStatus",
    "TxStatusUpdate",
    "balances_transfer",
    "configure_logging",
    "feeds_create",
    "feeds_put",
    "open_registry",
]
