"""
Node JSON-RPC client — network implementation of NodeClient.

Translates JSON-RPC responses into TxStatusUpdate / ChainEvent values.
Uses an injectable transport (JsonRpcTransport) so the HTTP layer can be
swapped for test fakes without changing parsing logic.

HTTP has no subscriptions, so ``submit_and_watch`` submits once with
``author_submitExtrinsic`` and then polls new block headers until the
extrinsic shows up in a block or the watch timeout expires.

Event storage is returned raw (SCALE). Decoding it needs the chain's
type registry, which is supplied by the caller as an EventDecoder.

No retry loops. No secrets.
"""

from __future__ import annotations

import asyncio
import hashlib
import itertools
import logging
import time
from collections.abc import AsyncGenerator, Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from feed_relayer.errors import NodeRpcError, TransportError
from feed_relayer.model import ChainEvent, TxStatus, TxStatusUpdate
from feed_relayer.node.transport import HttpxTransport, JsonRpcTransport

logger = logging.getLogger(__name__)

# Storage key of System.Events: twox128("System") ++ twox128("Events").
SYSTEM_EVENTS_KEY = (
    "0x26aa394eea5630e07c48ae0c9558cef780d41e5e16056765bc8461851072c9d7"
)


# =====================================================================
# Event decoding seam
# =====================================================================


@dataclass(frozen=True)
class EventRecord:
    """A decoded System.Events entry.

    Attributes:
        extrinsic_index: Index of the emitting extrinsic in its block.
            None for events emitted outside ApplyExtrinsic phase.
        event: The decoded event.
    """

    extrinsic_index: int | None
    event: ChainEvent


@runtime_checkable
class EventDecoder(Protocol):
    """Decodes raw System.Events storage using the chain type registry."""

    def decode_events(self, raw_hex: str, block_hash: str) -> list[EventRecord]:
        ...


def extrinsic_hash(extrinsic_hex: str) -> str:
    """blake2b-256 hash of an encoded extrinsic, "0x"-prefixed."""
    raw = bytes.fromhex(extrinsic_hex.removeprefix("0x"))
    return "0x" + hashlib.blake2b(raw, digest_size=32).hexdigest()


# =====================================================================
# Client
# =====================================================================


class JsonRpcNodeClient:
    """Node client implementing the NodeClient protocol over JSON-RPC.

    Args:
        url: The node HTTP RPC endpoint (e.g. "http://127.0.0.1:9933").
        decoder: Decoder for raw System.Events storage.
        transport: Injectable transport for HTTP POST. Defaults to
            HttpxTransport.
        poll_interval: Seconds between head polls while watching.
        watch_timeout: Seconds to wait for inclusion before reporting
            the extrinsic as DROPPED.
        sleep: Awaitable sleep, injectable for tests.
        clock: Monotonic clock, injectable for tests.
    """

    def __init__(
        self,
        url: str,
        decoder: EventDecoder,
        transport: JsonRpcTransport | None = None,
        *,
        poll_interval: float = 2.0,
        watch_timeout: float = 120.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._url = url
        self._decoder = decoder
        self._transport = transport or HttpxTransport()
        self._poll_interval = poll_interval
        self._watch_timeout = watch_timeout
        self._sleep = sleep
        self._clock = clock
        self._ids = itertools.count(1)

    @property
    def url(self) -> str:
        return self._url

    async def _call(self, method: str, params: list[Any]) -> Any:
        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params,
            "id": next(self._ids),
        }
        response = await self._transport.post_json(self._url, payload)

        error = response.get("error")
        if error is not None:
            if isinstance(error, dict):
                raise NodeRpcError(method, error.get("code"), str(error.get("message", "")))
            raise NodeRpcError(method, None, str(error))
        if "result" not in response:
            raise TransportError(f"{method}: response has neither result nor error")
        return response["result"]

    async def _head_number(self) -> int:
        header = await self._call("chain_getHeader", [])
        return _parse_block_number(header)

    async def _block_extrinsics(self, block_hash: str) -> list[str]:
        signed_block = await self._call("chain_getBlock", [block_hash])
        try:
            extrinsics = signed_block["block"]["extrinsics"]
        except (KeyError, TypeError) as exc:
            raise TransportError(f"malformed block {block_hash}") from exc
        return [x.lower() for x in extrinsics]

    # -----------------------------------------------------------------
    # NodeClient protocol methods
    # -----------------------------------------------------------------

    async def account_next_index(self, address: str) -> int:
        result = await self._call("system_accountNextIndex", [address])
        if isinstance(result, bool) or not isinstance(result, int) or result < 0:
            raise TransportError(f"system_accountNextIndex returned {result!r}")
        return result

    async def submit_and_watch(self, extrinsic_hex: str) -> AsyncGenerator[TxStatusUpdate, None]:
        # The extrinsic can only land in blocks built after it was submitted.
        next_number = await self._head_number() + 1
        tx_hash = await self._call("author_submitExtrinsic", [extrinsic_hex])
        yield TxStatusUpdate(TxStatus.READY, tx_hash=tx_hash)

        needle = extrinsic_hex.lower()
        deadline = self._clock() + self._watch_timeout
        while True:
            head = await self._head_number()
            for number in range(next_number, head + 1):
                block_hash = await self._call("chain_getBlockHash", [number])
                if block_hash is None:
                    raise TransportError(f"no hash for block {number}")
                if needle in await self._block_extrinsics(block_hash):
                    yield TxStatusUpdate(
                        TxStatus.IN_BLOCK, block_hash=block_hash, tx_hash=tx_hash
                    )
                    return
            next_number = max(next_number, head + 1)

            if self._clock() >= deadline:
                logger.warning(
                    "Extrinsic %s not included after %.0fs", tx_hash, self._watch_timeout
                )
                yield TxStatusUpdate(TxStatus.DROPPED, tx_hash=tx_hash)
                return
            await self._sleep(self._poll_interval)

    async def block_events(self, block_hash: str, tx_hash: str | None) -> list[ChainEvent]:
        raw = await self._call("state_getStorage", [SYSTEM_EVENTS_KEY, block_hash])
        if raw is None:
            raise TransportError(f"no events stored for block {block_hash}")
        if tx_hash is None:
            raise TransportError(f"cannot attribute events in {block_hash} without a tx hash")
        hashes = [extrinsic_hash(x) for x in await self._block_extrinsics(block_hash)]
        if tx_hash.lower() not in hashes:
            raise TransportError(f"extrinsic {tx_hash} not found in block {block_hash}")
        index = hashes.index(tx_hash.lower())

        records = self._decoder.decode_events(raw, block_hash)
        return [record.event for record in records if record.extrinsic_index == index]


# =====================================================================
# Response parsing (pure functions, no I/O)
# =====================================================================


def _parse_block_number(header: Any) -> int:
    """Parse the hex block number out of a chain_getHeader result."""
    try:
        number = header["number"]
        return int(number, 16) if isinstance(number, str) else int(number)
    except (KeyError, TypeError, ValueError) as exc:
        raise TransportError(f"malformed header: {header!r}") from exc
