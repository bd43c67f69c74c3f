"""
Tests for FeedRegistrar.get_or_create_feed().

Test plan:
- Registry hit: returns stored feed, no network call at all
- Scenario: empty store, "acct-1" → one creation, FeedCreated(7) →
  store maps acct-1 → 7, second call returns 7 with zero network calls
- Idempotent: N sequential calls → one creation, same feed id
- Single-flight: M concurrent calls for a new identity → one creation,
  all M receive the same feed id; different identities run concurrently
- Failure: transport error, on-chain failure, unparsable event, store
  write failure → RegistrationFailed, nothing recorded, next call retries
- Cancellation of one waiter does not cancel the shared creation
- A caller woken by a failed creation starts a fresh one; the registry
  write runs in a worker thread
- feed_id_from_events: int, hex/decimal strings, missing, malformed
"""

import asyncio
import threading
from collections.abc import AsyncIterator

import pytest

from feed_relayer.calls import Call
from feed_relayer.errors import RegistrationFailed
from feed_relayer.model import ChainEvent, TxStatus, TxStatusUpdate
from feed_relayer.node.signer import SignResult
from feed_relayer.registrar import FeedRegistrar, feed_id_from_events
from feed_relayer.registry import JsonFileRegistry, MemoryRegistry
from feed_relayer.submitter import TransactionSubmitter

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

BLOCK_HASH = "0x" + "ee" * 32


class FakeSigner:
    def __init__(self, address: str = "acct-1") -> None:
        self._address = address

    @property
    def address(self) -> str:
        return self._address

    @property
    def key_id(self) -> str:
        return f"key-{self._address}"

    def sign(self, call: Call, nonce: int) -> SignResult:
        return SignResult(
            extrinsic_hex=f"{self._address}:{call.label}:{nonce}",
            tx_hash=f"tx-{self._address}-{nonce}",
            key_id=self.key_id,
        )


class FeedNode:
    """Fake node that mints sequential feed ids on feeds.create.

    Args:
        first_feed_id: Id assigned to the first created feed.
        gate: If set, inclusion is held until the event is set.
        fail_with: Exception raised from submit_and_watch.
        fail_times: Raise fail_with only this many times (default: always).
        events: Fixed events to return instead of FeedCreated.
    """

    def __init__(
        self,
        *,
        first_feed_id: int = 7,
        gate: asyncio.Event | None = None,
        fail_with: Exception | None = None,
        fail_times: int | None = None,
        events: list[ChainEvent] | None = None,
    ) -> None:
        self._next_feed_id = first_feed_id
        self._gate = gate
        self._fail_with = fail_with
        self._fail_times = fail_times
        self._events = events
        self._minted: dict[str, int] = {}
        self.calls = 0
        self.submitted: list[str] = []

    async def account_next_index(self, address: str) -> int:
        self.calls += 1
        return 0

    async def submit_and_watch(self, extrinsic_hex: str) -> AsyncIterator[TxStatusUpdate]:
        self.calls += 1
        self.submitted.append(extrinsic_hex)
        if self._fail_with is not None and self._fail_times != 0:
            if self._fail_times is not None:
                self._fail_times -= 1
            raise self._fail_with
        yield TxStatusUpdate(TxStatus.READY)
        if self._gate is not None:
            await self._gate.wait()
        self._minted[extrinsic_hex] = self._next_feed_id
        self._next_feed_id += 1
        yield TxStatusUpdate(TxStatus.IN_BLOCK, block_hash=BLOCK_HASH, tx_hash=extrinsic_hex)

    async def block_events(self, block_hash: str, tx_hash: str | None) -> list[ChainEvent]:
        self.calls += 1
        if self._events is not None:
            return list(self._events)
        assert tx_hash is not None
        return [
            ChainEvent("feeds", "FeedCreated", (self._minted[tx_hash], tx_hash.split(":")[0])),
            ChainEvent("system", "ExtrinsicSuccess", ()),
        ]


def _registrar(node: FeedNode, store: MemoryRegistry | None = None) -> FeedRegistrar:
    return FeedRegistrar(store if store is not None else MemoryRegistry(), TransactionSubmitter(node))


# ---------------------------------------------------------------------------
# Registry hits and the basic scenario
# ---------------------------------------------------------------------------


class TestLookup:
    @pytest.mark.asyncio
    async def test_registry_hit_makes_no_network_call(self) -> None:
        node = FeedNode()
        registrar = _registrar(node, MemoryRegistry({"acct-1": 3}))
        assert await registrar.get_or_create_feed(FakeSigner()) == 3
        assert node.calls == 0
        assert node.submitted == []

    @pytest.mark.asyncio
    async def test_scenario_acct_1_gets_feed_7(self) -> None:
        node = FeedNode(first_feed_id=7)
        store = MemoryRegistry()
        registrar = _registrar(node, store)

        feed_id = await registrar.get_or_create_feed(FakeSigner("acct-1"))
        assert feed_id == 7
        assert len(node.submitted) == 1
        assert store.snapshot() == {"acct-1": 7}

        calls_before = node.calls
        assert await registrar.get_or_create_feed(FakeSigner("acct-1")) == 7
        assert node.calls == calls_before

    @pytest.mark.asyncio
    async def test_persisted_across_restart(self, tmp_path) -> None:
        path = tmp_path / "feeds.json"
        node = FeedNode(first_feed_id=12)
        await _registrar(node, JsonFileRegistry(path)).get_or_create_feed(FakeSigner())

        restarted_node = FeedNode()
        registrar = _registrar(restarted_node, JsonFileRegistry(path))
        assert await registrar.get_or_create_feed(FakeSigner()) == 12
        assert restarted_node.calls == 0


class TestIdempotent:
    @pytest.mark.asyncio
    async def test_sequential_calls_create_once(self) -> None:
        node = FeedNode()
        registrar = _registrar(node)
        ids = [await registrar.get_or_create_feed(FakeSigner()) for _ in range(5)]
        assert ids == [7] * 5
        assert len(node.submitted) == 1
        assert len(node.submitted) == 1

    @pytest.mark.asyncio
    async def test_distinct_identities_get_distinct_feeds(self) -> None:
        node = FeedNode()
        registrar = _registrar(node)
        a = await registrar.get_or_create_feed(FakeSigner("acct-a"))
        b = await registrar.get_or_create_feed(FakeSigner("acct-b"))
        assert a != b
        assert registrar.store.snapshot() == {"acct-a": a, "acct-b": b}


# ---------------------------------------------------------------------------
# Single-flight
# ---------------------------------------------------------------------------


class TestSingleFlight:
    @pytest.mark.asyncio
    async def test_concurrent_calls_share_one_creation(self) -> None:
        gate = asyncio.Event()
        node = FeedNode(gate=gate)
        registrar = _registrar(node)

        tasks = [
            asyncio.create_task(registrar.get_or_create_feed(FakeSigner()))
            for _ in range(6)
        ]
        await asyncio.sleep(0.01)
        assert len(node.submitted) == 1

        gate.set()
        results = await asyncio.gather(*tasks)
        assert results == [7] * 6
        assert len(node.submitted) == 1
        assert len(node.submitted) == 1
        assert registrar.store.snapshot() == {"acct-1": 7}

    @pytest.mark.asyncio
    async def test_different_identities_proceed_concurrently(self) -> None:
        gate = asyncio.Event()
        node = FeedNode(gate=gate)
        registrar = _registrar(node)

        tasks = [
            asyncio.create_task(registrar.get_or_create_feed(FakeSigner(name)))
            for name in ("acct-a", "acct-b")
        ]
        await asyncio.sleep(0.01)
        assert len(node.submitted) == 2

        gate.set()
        a, b = await asyncio.gather(*tasks)
        assert {a, b} == {7, 8}

    @pytest.mark.asyncio
    async def test_all_waiters_see_the_same_failure(self) -> None:
        node = FeedNode(fail_with=ConnectionError("down"))
        registrar = _registrar(node)
        results = await asyncio.gather(
            *(registrar.get_or_create_feed(FakeSigner()) for _ in range(3)),
            return_exceptions=True,
        )
        assert all(isinstance(r, RegistrationFailed) for r in results)
        assert len(node.submitted) == 1

    @pytest.mark.asyncio
    async def test_cancelled_waiter_does_not_cancel_creation(self) -> None:
        gate = asyncio.Event()
        node = FeedNode(gate=gate)
        registrar = _registrar(node)

        first = asyncio.create_task(registrar.get_or_create_feed(FakeSigner()))
        second = asyncio.create_task(registrar.get_or_create_feed(FakeSigner()))
        await asyncio.sleep(0.01)
        first.cancel()
        gate.set()

        assert await second == 7
        assert first.cancelled()
        assert registrar.store.lookup("acct-1") == 7


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------


class TestFailures:
    @pytest.mark.asyncio
    async def test_transport_error_raises_and_records_nothing(self) -> None:
        store = MemoryRegistry()
        registrar = _registrar(FeedNode(fail_with=ConnectionError("down")), store)
        with pytest.raises(RegistrationFailed, match="transport error"):
            await registrar.get_or_create_feed(FakeSigner())
        assert store.snapshot() == {}

    @pytest.mark.asyncio
    async def test_on_chain_failure_raises(self) -> None:
        store = MemoryRegistry()
        node = FeedNode(events=[ChainEvent("system", "ExtrinsicFailed", ("BadOrigin",))])
        with pytest.raises(RegistrationFailed, match="on-chain failure"):
            await _registrar(node, store).get_or_create_feed(FakeSigner())
        assert store.snapshot() == {}

    @pytest.mark.asyncio
    async def test_unparsable_event_raises(self) -> None:
        store = MemoryRegistry()
        node = FeedNode(events=[ChainEvent("feeds", "FeedCreated", ("not-a-number",))])
        with pytest.raises(RegistrationFailed, match="FeedCreated"):
            await _registrar(node, store).get_or_create_feed(FakeSigner())
        assert store.snapshot() == {}

    @pytest.mark.asyncio
    async def test_missing_event_raises(self) -> None:
        node = FeedNode(events=[ChainEvent("system", "ExtrinsicSuccess", ())])
        with pytest.raises(RegistrationFailed):
            await _registrar(node).get_or_create_feed(FakeSigner())

    @pytest.mark.asyncio
    async def test_store_write_failure_raises(self) -> None:
        class BrokenStore(MemoryRegistry):
            def record(self, identity: str, feed_id: int) -> None:
                raise OSError("disk full")

        store = BrokenStore()
        with pytest.raises(RegistrationFailed, match="disk full"):
            await _registrar(FeedNode(), store).get_or_create_feed(FakeSigner())
        assert store.snapshot() == {}

    @pytest.mark.asyncio
    async def test_retry_after_failure_starts_over(self) -> None:
        store = MemoryRegistry()
        failing = _registrar(FeedNode(fail_with=ConnectionError("down")), store)
        with pytest.raises(RegistrationFailed):
            await failing.get_or_create_feed(FakeSigner())

        node = FeedNode(first_feed_id=9)
        registrar = FeedRegistrar(store, TransactionSubmitter(node))
        assert await registrar.get_or_create_feed(FakeSigner()) == 9
        assert len(node.submitted) == 1

    @pytest.mark.asyncio
    async def test_in_flight_entry_cleared_after_failure(self) -> None:
        node = FeedNode(fail_with=ConnectionError("down"))
        registrar = _registrar(node)
        for _ in range(2):
            with pytest.raises(RegistrationFailed):
                await registrar.get_or_create_feed(FakeSigner())
        assert len(node.submitted) == 2

    @pytest.mark.asyncio
    async def test_caller_woken_by_failure_starts_fresh_creation(self) -> None:
        node = FeedNode(fail_with=ConnectionError("boom"), fail_times=1)
        registrar = _registrar(node)
        signer = FakeSigner()

        first = asyncio.create_task(registrar.get_or_create_feed(signer))
        await asyncio.sleep(0)
        creation = registrar._in_flight["acct-1"]

        late: list[asyncio.Task[int]] = []
        creation.add_done_callback(
            lambda _: late.append(asyncio.ensure_future(registrar.get_or_create_feed(signer)))
        )

        with pytest.raises(RegistrationFailed, match="boom"):
            await first
        assert await late[0] == 7
        assert len(node.submitted) == 2
        assert registrar._in_flight == {}

    @pytest.mark.asyncio
    async def test_store_write_runs_off_the_event_loop(self) -> None:
        loop_thread = threading.get_ident()
        writer_threads: list[int] = []

        class RecordingStore(MemoryRegistry):
            def record(self, identity: str, feed_id: int) -> None:
                writer_threads.append(threading.get_ident())
                super().record(identity, feed_id)

        store = RecordingStore()
        assert await _registrar(FeedNode(), store).get_or_create_feed(FakeSigner()) == 7
        assert store.lookup("acct-1") == 7
        assert writer_threads and writer_threads[0] != loop_thread


# ---------------------------------------------------------------------------
# Event parsing
# ---------------------------------------------------------------------------


class TestFeedIdFromEvents:
    def test_integer(self) -> None:
        assert feed_id_from_events((ChainEvent("feeds", "FeedCreated", (4, "acct")),)) == 4

    def test_decimal_string(self) -> None:
        assert feed_id_from_events((ChainEvent("feeds", "FeedCreated", ("15",)),)) == 15

    def test_hex_string(self) -> None:
        assert feed_id_from_events((ChainEvent("feeds", "FeedCreated", ("0x10",)),)) == 16

    def test_first_feed_created_wins(self) -> None:
        events = (
            ChainEvent("system", "ExtrinsicSuccess", ()),
            ChainEvent("feeds", "FeedCreated", (1,)),
            ChainEvent("feeds", "FeedCreated", (2,)),
        )
        assert feed_id_from_events(events) == 1

    @pytest.mark.parametrize(
        "data",
        [(), (-1,), (True,), ("seven",), (None,), (1.5,)],
    )
    def test_unparsable(self, data: tuple) -> None:
        assert feed_id_from_events((ChainEvent("feeds", "FeedCreated", data),)) is None

    def test_no_event(self) -> None:
        assert feed_id_from_events(()) is None
