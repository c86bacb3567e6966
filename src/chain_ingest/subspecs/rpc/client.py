"""
JSON-RPC client for the remote chain node.

The node speaks JSON-RPC 2.0 over HTTP POST:

- Height: `{"method": "getlatestblockheight", "params": {}}` -> `{"result": <height>}`
- Block: `{"method": "getblock", "params": {"height": N}, "id": N}` -> `{"result": <block>}`
- Errors: `{"error": {"code": ..., "message": ...}}`

Transport problems (connection, timeout, HTTP status, malformed body) raise
TransportError. Explicit error responses raise RemoteError. Callers decide
what a failure means; the client never retries on its own.
"""

from __future__ import annotations

import logging
from types import TracebackType
from typing import Any, Final, Self

import httpx

from chain_ingest.subspecs.sync.config import CONNECT_TIMEOUT, REQUEST_TIMEOUT
from chain_ingest.subspecs.sync.errors import RemoteError, TransportError
from chain_ingest.subspecs.sync.models import BlockPayload, Height

logger = logging.getLogger(__name__)

HEIGHT_METHODS: Final = ("getlatestblockheight", "getblockcount")
"""Methods accepted for querying the node height."""

DEFAULT_HEIGHT_METHOD: Final = "getlatestblockheight"
"""Height method used unless configured otherwise."""

BLOCK_METHOD: Final = "getblock"
"""Method returning one block by height."""

JSON_HEADERS: Final = {
    "Content-Type": "application/json",
    "Accept": "application/json",
}
"""Headers sent with every request."""


class JsonRpcClient:
    """
    Async JSON-RPC client backed by httpx.

    Satisfies both the height source used by the scheduler and the block
    source used by the batch fetcher. Owns its HTTP client unless one is
    injected.
    """

    def __init__(
        self,
        url: str,
        *,
        timeout: float = REQUEST_TIMEOUT,
        connect_timeout: float = CONNECT_TIMEOUT,
        height_method: str = DEFAULT_HEIGHT_METHOD,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """
        Initialize the client.

        Args:
            url: Node endpoint (e.g., "http://127.0.0.1:30003").
            timeout: Overall request timeout in seconds.
            connect_timeout: Connection timeout in seconds.
            height_method: JSON-RPC method used to query the node height.
            client: Optional pre-built HTTP client (for testing).
        """
        if height_method not in HEIGHT_METHODS:
            raise ValueError(f"unsupported height method {height_method!r}")

        self._url = url
        self._height_method = height_method
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout, connect=connect_timeout),
            headers=JSON_HEADERS,
        )

    @property
    def url(self) -> str:
        """Node endpoint."""
        return self._url

    async def call(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        request_id: int = 1,
    ) -> Any:
        """
        Make a single JSON-RPC call.

        Args:
            method: JSON-RPC method name.
            params: Method parameters. Sent as an empty object when omitted.
            request_id: JSON-RPC request id.

        Returns:
            The `result` member of the response.

        Raises:
            TransportError: On network, HTTP or framing failures.
            RemoteError: If the node returned an `error` member.
        """
        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params or {},
            "id": request_id,
        }

        try:
            response = await self._client.post(self._url, json=payload, headers=JSON_HEADERS)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise TransportError(
                f"HTTP error {exc.response.status_code} for method {method}: "
                f"{exc.response.text[:200]}"
            ) from exc
        except httpx.RequestError as exc:
            raise TransportError(f"RPC request failed for method {method}: {exc!r}") from exc

        try:
            data = response.json()
        except ValueError as exc:
            raise TransportError(
                f"Invalid RPC response for method {method}: {response.text[:200]}"
            ) from exc

        if not isinstance(data, dict):
            raise TransportError(f"Invalid RPC response for method {method}: {data!r}")

        if data.get("error") is not None:
            error = data["error"]
            if isinstance(error, dict):
                raise RemoteError(
                    f"RPC error for method {method}: {error.get('message', error)}",
                    code=error.get("code"),
                    data=error.get("data"),
                )
            raise RemoteError(f"RPC error for method {method}: {error}")

        if "result" not in data:
            raise TransportError(f"Invalid RPC response for method {method}: {data!r}")

        return data["result"]

    async def get_latest_height(self) -> Height:
        """
        Get the node's current block height.

        Raises:
            RemoteError: If the result is not a non-negative integer.
        """
        result = await self.call(self._height_method)
        # bool is a subclass of int.
        if not isinstance(result, int) or isinstance(result, bool):
            raise RemoteError(f"{self._height_method} returned a non-integer: {result!r}")
        if result < 0:
            raise RemoteError(f"{self._height_method} returned an invalid height: {result!r}")
        return result

    async def get_block(self, height: Height) -> BlockPayload:
        """
        Get a single block by height.

        Raises:
            RemoteError: If the node has no block at that height.
        """
        result = await self.call(BLOCK_METHOD, {"height": height}, request_id=height)
        if result is None:
            raise RemoteError(f"node returned no block at height {height}")
        if not isinstance(result, dict):
            raise RemoteError(
                f"unexpected block payload at height {height}: {type(result).__name__}"
            )
        return result

    async def close(self) -> None:
        """Release the HTTP client if this instance created it."""
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()
