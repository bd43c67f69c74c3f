"""
Transaction submitter — sign, send, and watch one call.

One call to ``submit()`` does:
    1. Resolve the nonce from the node (pending pool included).
    2. Sign the call with that nonce.
    3. Submit and watch the node's status notifications.
    4. On inclusion, fetch the extrinsic's events and look for
       system.ExtrinsicFailed.
    5. Yield TransactionOutcome values, ending at the first terminal one.

Every remote-call failure becomes a TRANSPORT_ERROR outcome — nothing
escapes as an exception except cancellation. Retries are a caller
concern.

Nonces are never cached here. Two concurrent submits for the same
signer may still race on the node's pending view; the sequencer
serializes per signer to avoid that.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import aclosing

from feed_relayer.calls import Call
from feed_relayer.errors import classify_exception, classify_node_status
from feed_relayer.model import OutcomeKind, TransactionOutcome, TxStatusUpdate
from feed_relayer.node.client import NodeClient
from feed_relayer.node.signer import Signer

logger = logging.getLogger(__name__)


class TransactionSubmitter:
    """Submits calls to the node and reports their outcomes.

    Args:
        client: Node client for nonce lookup, submission and events.
        explorer_url: Optional block explorer prefix. When set, inclusion
            log lines read ``{explorer_url}{block_hash}``.
    """

    def __init__(self, client: NodeClient, *, explorer_url: str | None = None) -> None:
        self._client = client
        self._explorer_url = explorer_url

    def inclusion_reference(self, block_hash: str) -> str:
        if self._explorer_url:
            return f"{self._explorer_url}{block_hash}"
        return block_hash

    async def submit(self, call: Call, signer: Signer) -> AsyncIterator[TransactionOutcome]:
        """Sign and send ``call`` as ``signer``; stream its outcomes."""
        address = signer.address

        try:
            nonce = await self._client.account_next_index(address)
        except Exception as exc:
            yield self._transport_error(call, address, f"nonce lookup failed: {classify_exception(exc)}")
            return

        try:
            signed = signer.sign(call, nonce)
        except Exception as exc:
            reason = f"signing failed: {classify_exception(exc)}"
            logger.error("%s for %s: %s", call.label, address, reason)
            yield TransactionOutcome.failed(reason)
            return

        logger.debug("%s signed by %s with nonce %d (%s)", call.label, address, nonce, signed.tx_hash)

        tx_hash: str | None = signed.tx_hash
        try:
            async with aclosing(self._client.submit_and_watch(signed.extrinsic_hex)) as updates:
                async for update in updates:
                    tx_hash = update.tx_hash or tx_hash
                    kind = classify_node_status(update.status)

                    if kind == OutcomeKind.PENDING:
                        yield TransactionOutcome.pending(update.status, tx_hash)
                        continue

                    if kind == OutcomeKind.FAILED:
                        reason = f"transaction {update.status}"
                        logger.error("%s for %s: %s", call.label, address, reason)
                        yield TransactionOutcome.failed(reason, tx_hash=tx_hash, status=update.status)
                        return

                    yield await self._inspect_block(call, address, update, tx_hash)
                    return
        except Exception as exc:
            yield self._transport_error(call, address, classify_exception(exc), tx_hash)
            return

        yield self._transport_error(call, address, "status stream ended before inclusion", tx_hash)

    async def submit_until_terminal(self, call: Call, signer: Signer) -> TransactionOutcome:
        """Drain ``submit()`` and return its terminal outcome."""
        final: TransactionOutcome | None = None
        async for outcome in self.submit(call, signer):
            final = outcome
        if final is None or not final.is_terminal:
            raise RuntimeError(f"{call.label} for {signer.address} ended without a terminal outcome")
        return final

    async def _inspect_block(
        self,
        call: Call,
        address: str,
        update: TxStatusUpdate,
        tx_hash: str | None,
    ) -> TransactionOutcome:
        block_hash = update.block_hash
        if block_hash is None:
            raise ValueError(f"{update.status} notification without a block hash")

        events = tuple(await self._client.block_events(block_hash, tx_hash))
        failure = next((e for e in events if e.is_extrinsic_failed), None)
        if failure is not None:
            reason = "extrinsic failed"
            if failure.data:
                reason = f"extrinsic failed: {failure.data[0]}"
            logger.error(
                "%s for %s %s in block %s",
                call.label, address, reason, self.inclusion_reference(block_hash),
            )
            return TransactionOutcome.failed(
                reason,
                block_hash=block_hash,
                tx_hash=tx_hash,
                status=update.status,
                events=events,
            )

        logger.info("Transaction included: %s", self.inclusion_reference(block_hash))
        return TransactionOutcome.included(block_hash, tx_hash=tx_hash, events=events)

    def _transport_error(
        self,
        call: Call,
        address: str,
        reason: str,
        tx_hash: str | None = None,
    ) -> TransactionOutcome:
        logger.error("%s for %s: transport error: %s", call.label, address, reason)
        return TransactionOutcome.transport_error(reason, tx_hash=tx_hash)
