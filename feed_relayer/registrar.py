"""
Feed registrar — exactly one feed per signing identity.

``get_or_create_feed(signer)``:
    1. Registry hit → return it. No network.
    2. Miss → submit ``feeds.create``, wait for inclusion, read the new
       feed id from the ``feeds.FeedCreated`` event, record it, return it.

Single-flight:
    Concurrent calls for the same never-seen identity share one
    in-flight creation. The first caller starts it; later callers await
    the same future and receive the same feed id (or the same error).
    The in-flight entry is dropped once settled, success or failure, so
    a later call retries from scratch after a failure.

Failure:
    Any transport error, on-chain failure, unparsable creation event, or
    registry write failure raises RegistrationFailed. Nothing is recorded.
"""

from __future__ import annotations

import asyncio
import logging

from feed_relayer.calls import feeds_create
from feed_relayer.errors import RegistrationFailed
from feed_relayer.model import ChainEvent, OutcomeKind, TransactionOutcome
from feed_relayer.node.signer import Signer
from feed_relayer.registry import RegistryStore
from feed_relayer.submitter import TransactionSubmitter

logger = logging.getLogger(__name__)


def feed_id_from_events(events: tuple[ChainEvent, ...]) -> int | None:
    """Extract the new feed id from a creation transaction's events.

    Returns None when no FeedCreated event is present or its first
    field is not a non-negative integer (or integer string).
    """
    created = next((e for e in events if e.is_feed_created), None)
    if created is None or not created.data:
        return None
    value = created.data[0]
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        try:
            value = int(value, 0)
        except ValueError:
            return None
    if not isinstance(value, int) or value < 0:
        return None
    return value


class FeedRegistrar:
    """Maps identities to feeds, creating each feed at most once.

    Args:
        store: Registry store consulted before any network call.
        submitter: Submitter used for the creation transaction.
    """

    def __init__(self, store: RegistryStore, submitter: TransactionSubmitter) -> None:
        self._store = store
        self._submitter = submitter
        self._in_flight: dict[str, asyncio.Future[int]] = {}

    @property
    def store(self) -> RegistryStore:
        return self._store

    async def get_or_create_feed(self, signer: Signer) -> int:
        address = signer.address
        logger.info("Checking feed for %s", address)

        feed_id = self._store.lookup(address)
        if feed_id is not None:
            logger.info("Feed already exists: %d", feed_id)
            return feed_id

        pending = self._in_flight.get(address)
        if pending is None or pending.done():
            pending = asyncio.ensure_future(self._create(signer))
            self._in_flight[address] = pending
        else:
            logger.debug("Joining in-flight feed creation for %s", address)

        # Shielded so that one cancelled waiter does not abort the
        # creation every other waiter is sharing.
        return await asyncio.shield(pending)

    async def _create(self, signer: Signer) -> int:
        address = signer.address
        try:
            return await self._create_and_record(signer)
        finally:
            # Cleared before the future settles, so a late caller retries.
            self._in_flight.pop(address, None)

    async def _create_and_record(self, signer: Signer) -> int:
        address = signer.address
        logger.info("Creating feed for signer %s", address)

        outcome = await self._submitter.submit_until_terminal(feeds_create(), signer)
        if outcome.kind != OutcomeKind.INCLUDED_IN_BLOCK:
            raise RegistrationFailed(address, _describe(outcome))

        feed_id = feed_id_from_events(outcome.events)
        if feed_id is None:
            raise RegistrationFailed(
                address, f"no parsable FeedCreated event in block {outcome.block_hash}"
            )
        logger.info("New feed created: %d", feed_id)

        try:
            await asyncio.to_thread(self._store.record, address, feed_id)
        except Exception as exc:
            logger.error("Could not record feed %d for %s: %s", feed_id, address, exc)
            raise RegistrationFailed(address, f"registry write failed: {exc}") from exc
        return feed_id


def _describe(outcome: TransactionOutcome) -> str:
    if outcome.kind == OutcomeKind.TRANSPORT_ERROR:
        return f"transport error: {outcome.reason}"
    if outcome.on_chain:
        return f"on-chain failure in block {outcome.block_hash}: {outcome.reason}"
    return outcome.reason or str(outcome.kind)
