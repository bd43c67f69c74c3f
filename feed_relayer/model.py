"""
Value types shared by the relayer components.

Design:
    - **Frozen**: every type here is an immutable dataclass or StrEnum.
    - **Transport-free**: no I/O, no node client imports. The submitter,
      registrar and sequencer exchange these values and nothing else.
    - **Failure-first**: a TransactionOutcome always exists, even when
      the node could not be reached. Failures are values, not raises.

Request lifecycle (one SubmissionRequest):

    QUEUED → SENT → INCLUDED → SUCCESS
                             → ON_CHAIN_FAILURE
                  → TRANSPORT_FAILED

    SUCCESS, ON_CHAIN_FAILURE and TRANSPORT_FAILED are terminal.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from feed_relayer.node.signer import Signer


# =========================================================================
# Node-side notifications
# =========================================================================


class TxStatus(StrEnum):
    """Status notifications emitted by the node for a watched extrinsic."""

    READY = "ready"
    BROADCAST = "broadcast"
    IN_BLOCK = "inBlock"
    FINALIZED = "finalized"
    DROPPED = "dropped"
    INVALID = "invalid"
    USURPED = "usurped"


@dataclass(frozen=True)
class TxStatusUpdate:
    """One status notification for a watched extrinsic.

    Attributes:
        status: The node status.
        block_hash: Hash of the including block (IN_BLOCK/FINALIZED only).
        tx_hash: Extrinsic hash, when the node reports it.
    """

    status: TxStatus
    block_hash: str | None = None
    tx_hash: str | None = None


@dataclass(frozen=True)
class ChainEvent:
    """An event emitted by an extrinsic, already decoded.

    Attributes:
        section: Pallet name, lower camel case ("system", "feeds").
        method: Event name ("ExtrinsicFailed", "FeedCreated").
        data: Positional event fields as plain JSON values.
    """

    section: str
    method: str
    data: tuple[Any, ...] = ()

    @property
    def is_extrinsic_failed(self) -> bool:
        return self.section == "system" and self.method == "ExtrinsicFailed"

    @property
    def is_feed_created(self) -> bool:
        return self.section == "feeds" and self.method == "FeedCreated"


# =========================================================================
# Feeds
# =========================================================================


@dataclass(frozen=True)
class FeedRecord:
    """The single feed registered for a signing identity."""

    identity: str
    feed_id: int

    def __post_init__(self) -> None:
        if not self.identity:
            raise ValueError("identity must be non-empty")
        if isinstance(self.feed_id, bool) or not isinstance(self.feed_id, int):
            raise ValueError(f"feed_id must be an integer, got: {self.feed_id!r}")
        if self.feed_id < 0:
            raise ValueError(f"feed_id must be >= 0, got: {self.feed_id}")


@dataclass(frozen=True)
class SubmissionRequest:
    """One block of another chain to be committed to a feed.

    Attributes:
        feed_id: Target feed (from the registrar).
        payload: Raw block bytes.
        metadata: Structured block metadata (hash, number, ...). Stored
            on-chain as canonical JSON bytes.
        chain: Tag of the source chain, used for logging.
        signer: Identity that signs and pays for the submission.
    """

    feed_id: int
    payload: bytes
    metadata: dict[str, Any]
    chain: str
    signer: Signer


# =========================================================================
# Outcomes
# =========================================================================


class OutcomeKind(StrEnum):
    """Tag of a TransactionOutcome."""

    PENDING = "PENDING"
    INCLUDED_IN_BLOCK = "INCLUDED_IN_BLOCK"
    FAILED = "FAILED"
    TRANSPORT_ERROR = "TRANSPORT_ERROR"


_TERMINAL_KINDS = frozenset(
    {OutcomeKind.INCLUDED_IN_BLOCK, OutcomeKind.FAILED, OutcomeKind.TRANSPORT_ERROR}
)


@dataclass(frozen=True)
class TransactionOutcome:
    """One observation of a submitted transaction.

    Attributes:
        kind: Outcome tag.
        block_hash: Including block (INCLUDED_IN_BLOCK, and FAILED when
            the failure was on-chain).
        tx_hash: Extrinsic hash if known.
        reason: Human-readable failure reason (FAILED, TRANSPORT_ERROR).
        status: The node status that produced this outcome, if any.
        events: Events emitted by the extrinsic (after inclusion).
    """

    kind: OutcomeKind
    block_hash: str | None = None
    tx_hash: str | None = None
    reason: str | None = None
    status: TxStatus | None = None
    events: tuple[ChainEvent, ...] = ()

    @property
    def is_terminal(self) -> bool:
        return self.kind in _TERMINAL_KINDS

    @property
    def succeeded(self) -> bool:
        return self.kind == OutcomeKind.INCLUDED_IN_BLOCK

    @property
    def on_chain(self) -> bool:
        """True for a failure that happened inside an included block."""
        return self.kind == OutcomeKind.FAILED and self.block_hash is not None

    @classmethod
    def pending(cls, status: TxStatus, tx_hash: str | None = None) -> TransactionOutcome:
        return cls(kind=OutcomeKind.PENDING, status=status, tx_hash=tx_hash)

    @classmethod
    def included(
        cls,
        block_hash: str,
        *,
        tx_hash: str | None = None,
        events: tuple[ChainEvent, ...] = (),
    ) -> TransactionOutcome:
        return cls(
            kind=OutcomeKind.INCLUDED_IN_BLOCK,
            block_hash=block_hash,
            tx_hash=tx_hash,
            status=TxStatus.IN_BLOCK,
            events=events,
        )

    @classmethod
    def failed(
        cls,
        reason: str,
        *,
        block_hash: str | None = None,
        tx_hash: str | None = None,
        status: TxStatus | None = None,
        events: tuple[ChainEvent, ...] = (),
    ) -> TransactionOutcome:
        return cls(
            kind=OutcomeKind.FAILED,
            reason=reason,
            block_hash=block_hash,
            tx_hash=tx_hash,
            status=status,
            events=events,
        )

    @classmethod
    def transport_error(cls, reason: str, *, tx_hash: str | None = None) -> TransactionOutcome:
        return cls(kind=OutcomeKind.TRANSPORT_ERROR, reason=reason, tx_hash=tx_hash)


# =========================================================================
# Request state machine
# =========================================================================


class RequestState(StrEnum):
    """Lifecycle state of one SubmissionRequest."""

    QUEUED = "QUEUED"
    SENT = "SENT"
    INCLUDED = "INCLUDED"
    SUCCESS = "SUCCESS"
    ON_CHAIN_FAILURE = "ON_CHAIN_FAILURE"
    TRANSPORT_FAILED = "TRANSPORT_FAILED"


TERMINAL_STATES = frozenset(
    {RequestState.SUCCESS, RequestState.ON_CHAIN_FAILURE, RequestState.TRANSPORT_FAILED}
)

_TRANSITIONS: dict[RequestState, frozenset[RequestState]] = {
    RequestState.QUEUED: frozenset({RequestState.SENT, RequestState.TRANSPORT_FAILED}),
    RequestState.SENT: frozenset(
        {RequestState.SENT, RequestState.INCLUDED, RequestState.TRANSPORT_FAILED}
    ),
    RequestState.INCLUDED: frozenset(
        {RequestState.SUCCESS, RequestState.ON_CHAIN_FAILURE}
    ),
}


def next_state(current: RequestState, outcome: TransactionOutcome) -> RequestState:
    """Advance the request state machine by one observed outcome.

    A FAILED outcome without a block (dropped, invalid, signing failure)
    is classified with the transport failures: the transaction never
    executed on-chain.

    Raises:
        ValueError: If the transition is not allowed (e.g. leaving a
            terminal state).
    """
    if outcome.kind == OutcomeKind.PENDING:
        target = RequestState.SENT
    elif outcome.kind == OutcomeKind.INCLUDED_IN_BLOCK:
        target = RequestState.SUCCESS
    elif outcome.on_chain:
        target = RequestState.ON_CHAIN_FAILURE
    else:
        target = RequestState.TRANSPORT_FAILED

    # Inclusion is observed and resolved in a single outcome; walk
    # through INCLUDED so the recorded path matches the state machine.
    if target in (RequestState.SUCCESS, RequestState.ON_CHAIN_FAILURE):
        if current in (RequestState.QUEUED, RequestState.SENT):
            current = RequestState.INCLUDED

    allowed = _TRANSITIONS.get(current, frozenset())
    if target not in allowed:
        raise ValueError(f"illegal transition {current} -> {target}")
    return target


@dataclass
class SubmissionResult:
    """What happened to one request handed to the sequencer.

    Attributes:
        index: Position of the request in the input sequence (0-based).
        request: The request itself.
        state: Current (eventually terminal) state.
        outcomes: Every outcome observed, in order.
    """

    index: int
    request: SubmissionRequest
    state: RequestState = RequestState.QUEUED
    outcomes: list[TransactionOutcome] = field(default_factory=list)

    @property
    def final(self) -> TransactionOutcome | None:
        return self.outcomes[-1] if self.outcomes else None

    @property
    def done(self) -> bool:
        return self.state in TERMINAL_STATES

    def observe(self, outcome: TransactionOutcome) -> None:
        self.state = next_state(self.state, outcome)
        self.outcomes.append(outcome)
