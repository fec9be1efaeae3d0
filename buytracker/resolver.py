"""Token identity resolution: local address validation plus a DexScreener lookup."""

from __future__ import annotations

import asyncio
import re
from typing import Any, Dict, Optional

import aiohttp

from buytracker.errors import InvalidToken, ResolutionFailed
from buytracker.models import Network, TokenIdentity
from buytracker.utils.formatting import short_address
from buytracker.utils.logging import get_logger

logger = get_logger(__name__)

EVM_ADDRESS_PATTERN = re.compile(r"^0x[a-fA-F0-9]{40}$")
SOLANA_ADDRESS_PATTERN = re.compile(r"^[1-9A-HJ-NP-Za-km-z]{32,44}$")

DEXSCREENER_CHAIN_IDS: Dict[Network, str] = {
    Network.BNB: "bsc",
    Network.SOLANA: "solana",
}


def validate_address(network: Network, address: str) -> str:
    """Return the trimmed address or raise :class:`InvalidToken`."""
    cleaned = (address or "").strip()
    pattern = EVM_ADDRESS_PATTERN if network is Network.BNB else SOLANA_ADDRESS_PATTERN
    if not pattern.match(cleaned):
        raise InvalidToken(f"Invalid {network.display_name} address format: {cleaned!r}")
    return cleaned


def _same_address(network: Network, left: str, right: str) -> bool:
    if network is Network.BNB:
        return left.lower() == right.lower()
    return left == right


class TokenResolver:
    """Resolve ``(network, address)`` to a token name and symbol."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        api_base: str = "https://api.dexscreener.com/latest/dex/tokens",
        timeout_seconds: float = 8.0,
    ) -> None:
        self.session = session
        self.api_base = api_base.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)

    async def resolve(self, network: Network, address: str) -> TokenIdentity:
        address = validate_address(network, address)
        logger.info("token_resolve_started", network=network.value, address=address)

        try:
            async with self.session.get(
                f"{self.api_base}/{address}", timeout=self.timeout
            ) as resp:
                resp.raise_for_status()
                data = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            logger.warning(
                "token_resolve_failed",
                network=network.value,
                address=address,
                error=str(exc) or type(exc).__name__,
            )
            raise ResolutionFailed(f"Token lookup failed: {exc}") from exc

        identity = self._identity_from_pairs(network, address, data)
        if identity:
            logger.info(
                "token_resolved",
                network=network.value,
                name=identity.name,
                symbol=identity.symbol,
            )
            return identity

        if network is Network.SOLANA:
            logger.info("token_resolve_fallback", address=address)
            return TokenIdentity(
                name=f"Solana Token ({short_address(address)})",
                symbol=address[:4].upper(),
            )

        raise ResolutionFailed(f"No listed pair found for {address}")

    @staticmethod
    def _identity_from_pairs(
        network: Network, address: str, data: Any
    ) -> Optional[TokenIdentity]:
        if not isinstance(data, dict):
            return None
        pairs = data.get("pairs") or []
        chain_id = DEXSCREENER_CHAIN_IDS[network]
        for pair in pairs:
            if not isinstance(pair, dict) or pair.get("chainId") != chain_id:
                continue
            for side in ("baseToken", "quoteToken"):
                token = pair.get(side) or {}
                if not _same_address(network, str(token.get("address") or ""), address):
                    continue
                name = str(token.get("name") or "").strip()
                symbol = str(token.get("symbol") or "").strip()
                if name and symbol:
                    return TokenIdentity(name=name, symbol=symbol)
        return None


__all__ = ["TokenResolver", "validate_address"]
