"""Minimal JSON-RPC client used to follow the chain head."""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

import aiohttp

from buytracker.models import Network

JSONRPC_VERSION = "2.0"

HEAD_METHODS: Dict[Network, str] = {
    Network.BNB: "eth_blockNumber",
    Network.SOLANA: "getSlot",
}


class RpcError(Exception):
    """The node answered with a JSON-RPC error object or an unusable result."""


class ChainRpcClient:
    """Query block height (BNB) or slot (Solana) over a shared aiohttp session."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        rpc_urls: Mapping[Network, str],
        timeout_seconds: float = 8.0,
    ) -> None:
        self.session = session
        self.rpc_urls = dict(rpc_urls)
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._request_id = 0

    async def call(self, network: Network, method: str, params: Optional[list] = None) -> Any:
        self._request_id += 1
        payload = {
            "jsonrpc": JSONRPC_VERSION,
            "id": self._request_id,
            "method": method,
            "params": params or [],
        }
        async with self.session.post(
            self.rpc_urls[network], json=payload, timeout=self.timeout
        ) as resp:
            resp.raise_for_status()
            data = await resp.json(content_type=None)

        if not isinstance(data, dict):
            raise RpcError(f"{method}: unexpected payload type {type(data).__name__}")
        if data.get("error"):
            raise RpcError(f"{method}: {data['error']}")
        return data.get("result")

    async def latest_block(self, network: Network) -> int:
        result = await self.call(network, HEAD_METHODS[network])
        try:
            if isinstance(result, str):
                return int(result, 16) if result.startswith("0x") else int(result)
            return int(result)
        except (TypeError, ValueError) as exc:
            raise RpcError(f"Unusable head value: {result!r}") from exc
