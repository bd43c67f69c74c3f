"""
Transport protocol for node JSON-RPC calls.

Defines the seam where the concrete HTTP implementation plugs in. The
JSON-RPC client depends on this protocol, not on httpx directly, so the
transport can be swapped (tests, proxies) without editing client logic.

Concrete implementations:
    - HttpxTransport (default, uses httpx.AsyncClient)
    - FakeTransport (tests, returns canned responses)
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

import httpx


@runtime_checkable
class JsonRpcTransport(Protocol):
    """Async transport for JSON-RPC POST requests."""

    async def post_json(self, url: str, payload: dict[str, Any]) -> dict[str, Any]:
        """Send a JSON-RPC request and return the parsed response.

        Raises:
            Exception: On transport-level failures (connection refused,
                timeout, TLS error, non-2xx status). The node client
                lets these propagate; the submitter maps them to
                TRANSPORT_ERROR outcomes.
        """
        ...


class HttpxTransport:
    """Default transport using a shared httpx.AsyncClient.

    The client is created lazily on first use and reused, so repeated
    polling does not reopen connections. Call ``aclose()`` on shutdown.
    """

    def __init__(self, timeout: float = 30.0) -> None:
        self._timeout = timeout
        self._client: httpx.AsyncClient | None = None

    async def post_json(self, url: str, payload: dict[str, Any]) -> dict[str, Any]:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        response = await self._client.post(
            url,
            json=payload,
            headers={"Content-Type": "application/json"},
        )
        response.raise_for_status()
        result: dict[str, Any] = response.json()
        return result

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
