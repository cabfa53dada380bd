"""
Canister Gateway Client

JSON-over-HTTP transport for ledger and archive canister queries.

Each query is a POST to {gateway_url}/canister/{canister_id}/{method}
with the call arguments as the JSON body. Responses use the candid-JSON
convention: optional values are [] or [value], nats are ints or decimal
strings, blobs are lists of byte values.

Public IC boundary nodes only accept CBOR envelopes, so a compatible
gateway must sit between this client and the replica.

Retry and backoff are the gateway's concern; a failed call raises
CanisterCallError and nothing here retries it.
"""

import asyncio
import logging
from typing import Any, Dict, Optional, Protocol

import aiohttp

from .config import ClientConfig
from .types import CanisterCallError


class CanisterHandle(Protocol):
    """Anything that can issue a query against one canister."""

    canister_id: str

    async def call(self, method: str, args: Optional[Dict[str, Any]] = None) -> Any:
        ...


class CanisterClient:
    """Query handle bound to one canister id."""

    def __init__(self, canister_id: str, agent: "GatewayAgent"):
        self.canister_id = canister_id
        self._agent = agent

    async def call(self, method: str, args: Optional[Dict[str, Any]] = None) -> Any:
        return await self._agent.query(self.canister_id, method, args)

    def __repr__(self) -> str:
        return f"CanisterClient({self.canister_id!r})"


class GatewayAgent:
    """
    Shared HTTP session for canister queries.

    Usage:
        async with GatewayAgent(config) as agent:
            ledger = agent.canister("ryjl3-tyaaa-aaaaa-aaaba-cai")
            count = await ledger.call("get_total_tx")
    """

    def __init__(self, config: Optional[ClientConfig] = None):
        self.config = config or ClientConfig()
        self._logger = logging.getLogger("GatewayAgent")
        self._session: Optional[aiohttp.ClientSession] = None
        self._calls = 0

    async def start(self):
        """Open the HTTP session."""
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.config.request_timeout)
            )

    async def stop(self):
        """Close the HTTP session."""
        if self._session:
            await self._session.close()
            self._session = None

    async def __aenter__(self) -> "GatewayAgent":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.stop()

    def canister(self, canister_id: str) -> CanisterClient:
        return CanisterClient(canister_id, self)

    def _url(self, canister_id: str, method: str) -> str:
        return f"{self.config.gateway_url.rstrip('/')}/canister/{canister_id}/{method}"

    async def query(self, canister_id: str, method: str, args: Optional[Dict[str, Any]] = None) -> Any:
        """Issue one query call and return the decoded JSON reply."""
        if self._session is None:
            await self.start()

        self._calls += 1
        try:
            async with self._session.post(
                self._url(canister_id, method),
                json=args or {},
                headers={"Content-Type": "application/json"}
            ) as response:
                if response.status != 200:
                    body = await response.text()
                    self._logger.warning(f"{method} on {canister_id} returned {response.status}")
                    raise CanisterCallError(canister_id, method, response.status, body[:200])
                return await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise CanisterCallError(canister_id, method, detail=str(e) or type(e).__name__) from e

    def get_stats(self) -> Dict:
        return {
            "gateway_url": self.config.gateway_url,
            "calls": self._calls,
            "session_open": self._session is not None,
        }
