"""
Remote node boundary.

Protocols (for dependency injection):
    - ``NodeClient`` — nonce lookup, submit-and-watch, block events.
    - ``Signer`` — secrets boundary (sign a call with a nonce).
    - ``JsonRpcTransport`` — injectable HTTP POST seam.
    - ``EventDecoder`` — chain type registry for raw event storage.

Concrete:
    - ``JsonRpcNodeClient`` — polling JSON-RPC implementation.
    - ``HttpxTransport`` — default httpx-based transport.
"""

from feed_relayer.node.client import NodeClient
from feed_relayer.node.jsonrpc_client import (
    SYSTEM_EVENTS_KEY,
    EventDecoder,
    EventRecord,
    JsonRpcNodeClient,
    extrinsic_hash,
)
from feed_relayer.node.signer import SignResult, Signer
from feed_relayer.node.transport import HttpxTransport, JsonRpcTransport

__all__ = [
    "SYSTEM_EVENTS_KEY",
    "EventDecoder",
    "EventRecord",
    "HttpxTransport",
    "JsonRpcNodeClient",
    "JsonRpcTransport",
    "NodeClient",
    "SignResult",
    "Signer",
    "extrinsic_hash",
]
