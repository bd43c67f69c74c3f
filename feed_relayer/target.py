"""
Target — the caller-facing relayer API.

Composes the registry, registrar, submitter and sequencer behind three
operations:

    - ``get_feed_id(signer)`` — feed for an identity, created once.
    - ``process_submissions(requests)`` — stream blocks into feeds.
    - ``send_value_transfer(sender, dest, amount)`` — fund an account;
      returns once the transfer is in a block.

A Target built by ``from_config`` owns its HTTP transport; release it
with ``aclose()`` or by using the Target as an async context manager.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterable, Iterable

from feed_relayer.calls import balances_transfer
from feed_relayer.config import RelayerConfig, open_registry
from feed_relayer.errors import TransactionFailed, TransportError
from feed_relayer.model import OutcomeKind, SubmissionRequest
from feed_relayer.node.client import NodeClient
from feed_relayer.node.jsonrpc_client import EventDecoder, JsonRpcNodeClient
from feed_relayer.node.signer import Signer
from feed_relayer.node.transport import HttpxTransport, JsonRpcTransport
from feed_relayer.registrar import FeedRegistrar
from feed_relayer.registry import RegistryStore
from feed_relayer.sequencer import OutcomeCallback, SequencerHandle, SubmissionSequencer
from feed_relayer.submitter import TransactionSubmitter

logger = logging.getLogger(__name__)


class Target:
    """Relays data to a node on behalf of one or more signing identities.

    Args:
        client: Node client.
        store: Registry store (loaded already; see ``open_registry``).
        explorer_url: Block explorer prefix for inclusion log lines.
        max_in_flight: Concurrent submissions in ``process_submissions``.
        on_outcome: Callback receiving every submission outcome.
    """

    def __init__(
        self,
        client: NodeClient,
        store: RegistryStore,
        *,
        explorer_url: str | None = None,
        max_in_flight: int = 1,
        on_outcome: OutcomeCallback | None = None,
    ) -> None:
        self.submitter = TransactionSubmitter(client, explorer_url=explorer_url)
        self.registrar = FeedRegistrar(store, self.submitter)
        self.sequencer = SubmissionSequencer(
            self.submitter, max_in_flight=max_in_flight, on_outcome=on_outcome
        )
        self._owned_transport: HttpxTransport | None = None

    async def __aenter__(self) -> Target:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the HTTP transport created by ``from_config``, if any.

        A transport passed in by the caller is left for the caller to close.
        """
        if self._owned_transport is not None:
            await self._owned_transport.aclose()
            self._owned_transport = None

    @classmethod
    def from_config(
        cls,
        config: RelayerConfig,
        *,
        decoder: EventDecoder,
        transport: JsonRpcTransport | None = None,
        on_outcome: OutcomeCallback | None = None,
    ) -> Target:
        """Wire a Target from configuration.

        Raises:
            StoreCorruption: If the registry cannot be loaded.
        """
        owned = None if transport is not None else HttpxTransport(timeout=config.http_timeout)
        client = JsonRpcNodeClient(
            config.node_url,
            decoder,
            transport or owned,
            poll_interval=config.poll_interval,
            watch_timeout=config.watch_timeout,
        )
        target = cls(
            client,
            open_registry(config),
            explorer_url=config.explorer_url,
            max_in_flight=config.max_in_flight,
            on_outcome=on_outcome,
        )
        target._owned_transport = owned
        return target

    async def get_feed_id(self, signer: Signer) -> int:
        """Feed id for ``signer``, registering a feed on first use.

        Raises:
            RegistrationFailed: If the feed had to be created and could not be.
        """
        return await self.registrar.get_or_create_feed(signer)

    def process_submissions(
        self,
        requests: AsyncIterable[SubmissionRequest] | Iterable[SubmissionRequest],
        *,
        keep_results: bool = False,
    ) -> SequencerHandle:
        """Start relaying ``requests``; returns a cancellable handle.

        Outcomes are reported through ``on_outcome``. Pass
        ``keep_results=True`` only for finite inputs.
        """
        return self.sequencer.start(requests, keep_results=keep_results)

    async def send_value_transfer(self, sender: Signer, dest: str, amount: int | float) -> None:
        """Transfer ``amount`` whole tokens from ``sender`` to ``dest``.

        Returns once the transfer is in a block (finality not awaited).

        Raises:
            TransactionFailed: If the transfer failed on-chain or was dropped.
            TransportError: If the node could not be reached.
        """
        logger.info("Sending balance %s from %s to %s", amount, sender.address, dest)
        outcome = await self.submitter.submit_until_terminal(
            balances_transfer(dest, amount), sender
        )
        if outcome.kind == OutcomeKind.TRANSPORT_ERROR:
            raise TransportError(outcome.reason or "transport error")
        if outcome.kind == OutcomeKind.FAILED:
            raise TransactionFailed(
                outcome.reason or "transfer failed", block_hash=outcome.block_hash
            )
