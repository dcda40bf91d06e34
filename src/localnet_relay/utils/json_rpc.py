"""
Minimal async JSON-RPC client for the non-EVM chain nodes.
"""

import itertools
import logging
from typing import Any

import httpx

from ..errors import JsonRpcError, TransientChainError


class JsonRpcClient:
    """JSON-RPC 2.0 over HTTP using a shared ``httpx.AsyncClient``."""

    def __init__(
        self,
        url: str,
        timeout: float = 30.0,
        headers: dict[str, str] | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        """
        Initialize the client.

        Args:
            url: HTTP endpoint of the node
            timeout: Request timeout in seconds
            headers: Extra headers sent with every request (API keys)
            client: Pre-built client, mostly for tests
        """
        self.url = url
        self._client = client or httpx.AsyncClient(timeout=timeout, headers=headers)
        self._ids = itertools.count(1)
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    async def call(self, method: str, params: Any = None) -> Any:
        """
        Invoke an RPC method.

        Args:
            method: Method name
            params: Positional list or named mapping

        Returns:
            The ``result`` member of the response

        Raises:
            TransientChainError: If the node is unreachable or returns a 5xx
            JsonRpcError: If the response carries an error object
        """
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": [] if params is None else params,
        }
        try:
            response = await self._client.post(self.url, json=payload)
        except (httpx.TransportError, httpx.TimeoutException) as e:
            raise TransientChainError(f"{method} request to {self.url} failed: {e}") from e

        if response.status_code >= 500:
            raise TransientChainError(f"{method} returned HTTP {response.status_code}")

        body = response.json()
        if body.get("error") is not None:
            raise JsonRpcError(method, body["error"])
        if body.get("ok") is False:
            raise JsonRpcError(method, body.get("description") or body)
        return body.get("result")

    async def aclose(self) -> None:
        await self._client.aclose()
