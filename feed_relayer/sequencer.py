"""
Submission sequencer — turns a stream of requests into submissions.

The sequencer:
    - Starts submissions strictly in input order. Request N+1 is not
      handed to the submitter until request N has reached the node (its
      first outcome was observed).
    - Caps in-flight submissions at ``max_in_flight`` (1 = one at a time).
    - Keeps submissions for the same signer strictly sequential, so two
      extrinsics from one account never race on the nonce.
    - Isolates failures: a failed item never stops later items.
    - Produces exactly one SubmissionResult per input item.

Cancellation:
    ``SequencerHandle.cancel()`` stops intake only. Submissions already
    handed to the submitter run to their terminal outcome; a half-sent
    extrinsic cannot be recalled.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterable, AsyncIterator, Callable, Iterable

from feed_relayer.calls import feeds_put
from feed_relayer.model import (
    RequestState,
    SubmissionRequest,
    SubmissionResult,
    TransactionOutcome,
)
from feed_relayer.submitter import TransactionSubmitter

logger = logging.getLogger(__name__)

OutcomeCallback = Callable[[SubmissionRequest, TransactionOutcome], None]


async def _aiter(
    requests: AsyncIterable[SubmissionRequest] | Iterable[SubmissionRequest],
) -> AsyncIterator[SubmissionRequest]:
    if isinstance(requests, AsyncIterable):
        async for request in requests:
            yield request
    else:
        for request in requests:
            yield request


class SequencerHandle:
    """Handle on a running sequencer.

    Finished submissions are released as soon as they are terminal.
    Streaming callers observe them through ``on_outcome``.

    Attributes:
        results: SubmissionResults in input order. Only filled when the
            handle was started with ``keep_results=True``.
        started: Number of requests handed to the submitter so far.
    """

    def __init__(self, *, keep_results: bool = False) -> None:
        self.results: list[SubmissionResult] = []
        self.started = 0
        self._keep_results = keep_results
        self._tasks: set[asyncio.Task[None]] = set()
        self._intake: asyncio.Task[None] | None = None

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def _track(self, result: SubmissionResult, task: asyncio.Task[None]) -> None:
        self.started += 1
        if self._keep_results:
            self.results.append(result)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    @property
    def intake_done(self) -> bool:
        return self._intake is not None and self._intake.done()

    def cancel(self) -> None:
        """Stop taking new requests. In-flight submissions continue."""
        if self._intake is not None and not self._intake.done():
            logger.info("Submission intake cancelled after %d request(s)", self.started)
            self._intake.cancel()

    async def wait(self) -> list[SubmissionResult]:
        """Wait for intake to end and every started submission to finish.

        Raises whatever the request source raised, after in-flight
        submissions have settled.
        """
        if self._intake is None:
            raise RuntimeError("sequencer handle was never started")
        source_error: BaseException | None = None
        try:
            await self._intake
        except asyncio.CancelledError:
            if not self._intake.cancelled():
                raise
        except Exception as exc:
            source_error = exc

        if self._tasks:
            await asyncio.gather(*list(self._tasks))
        if source_error is not None:
            raise source_error
        return list(self.results)


class SubmissionSequencer:
    """Feeds SubmissionRequests into the TransactionSubmitter.

    Args:
        submitter: Submitter for each ``feeds.put``.
        max_in_flight: Maximum concurrent submissions (>= 1).
        on_outcome: Optional callback receiving every observed outcome.
    """

    def __init__(
        self,
        submitter: TransactionSubmitter,
        *,
        max_in_flight: int = 1,
        on_outcome: OutcomeCallback | None = None,
    ) -> None:
        if max_in_flight < 1:
            raise ValueError(f"max_in_flight must be >= 1, got: {max_in_flight}")
        self._submitter = submitter
        self._max_in_flight = max_in_flight
        self._on_outcome = on_outcome
        self._signer_locks: dict[str, asyncio.Lock] = {}

    def start(
        self,
        requests: AsyncIterable[SubmissionRequest] | Iterable[SubmissionRequest],
        *,
        keep_results: bool = False,
    ) -> SequencerHandle:
        """Start consuming ``requests`` in the background.

        Leave ``keep_results`` off for endless streams; every result
        would otherwise be retained for the life of the handle.
        """
        handle = SequencerHandle(keep_results=keep_results)
        handle._intake = asyncio.create_task(self._intake(requests, handle))
        return handle

    async def run(
        self,
        requests: AsyncIterable[SubmissionRequest] | Iterable[SubmissionRequest],
    ) -> list[SubmissionResult]:
        """Consume ``requests`` to the end; return one result per item."""
        return await self.start(requests, keep_results=True).wait()

    def _lock_for(self, address: str) -> asyncio.Lock:
        lock = self._signer_locks.get(address)
        if lock is None:
            lock = self._signer_locks[address] = asyncio.Lock()
        return lock

    async def _intake(
        self,
        requests: AsyncIterable[SubmissionRequest] | Iterable[SubmissionRequest],
        handle: SequencerHandle,
    ) -> None:
        slots = asyncio.Semaphore(self._max_in_flight)
        index = 0
        async for request in _aiter(requests):
            result = SubmissionResult(index=index, request=request)
            index += 1

            await slots.acquire()
            lock = self._lock_for(request.signer.address)
            try:
                await lock.acquire()
            except BaseException:
                slots.release()
                raise

            sent = asyncio.Event()
            handle._track(result, asyncio.create_task(self._process(result, sent, slots, lock)))
            # Next request waits until this one has reached the node.
            await sent.wait()

    async def _process(
        self,
        result: SubmissionResult,
        sent: asyncio.Event,
        slots: asyncio.Semaphore,
        lock: asyncio.Lock,
    ) -> None:
        request = result.request
        address = request.signer.address
        try:
            logger.info("Sending %s block to feed: %d", request.chain, request.feed_id)
            logger.info("Signer: %s", address)
            try:
                call = feeds_put(request.feed_id, request.payload, request.metadata)
            except (TypeError, ValueError) as exc:
                logger.error(
                    "Invalid request #%d (%s block, signer %s) not sent: %s",
                    result.index, request.chain, address, exc,
                )
                self._observe(result, TransactionOutcome.failed(f"invalid request: {exc}"))
                return

            async for outcome in self._submitter.submit(call, request.signer):
                self._observe(result, outcome)
                sent.set()

            if result.state != RequestState.SUCCESS:
                logger.warning(
                    "Request #%d (%s, feed %d, signer %s) ended %s: %s",
                    result.index, call.label, request.feed_id, address,
                    result.state, result.final.reason if result.final else None,
                )
        except Exception:
            logger.exception("Request #%d for %s aborted", result.index, address)
            if not result.done:
                self._observe(result, TransactionOutcome.transport_error("sequencer error"))
        finally:
            sent.set()
            lock.release()
            slots.release()

    def _observe(self, result: SubmissionResult, outcome: TransactionOutcome) -> None:
        result.observe(outcome)
        if self._on_outcome is None:
            return
        try:
            self._on_outcome(result.request, outcome)
        except Exception:
            logger.exception("on_outcome callback failed for request #%d", result.index)
