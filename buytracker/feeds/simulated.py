"""Development feed that follows the chain head and fabricates plausible buys.

Swap decoding is not implemented; this feed keeps the full lifecycle
(establish, poll, fault, stop) exercised against a live RPC endpoint while
producing realistic-looking purchases.
"""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import List, Mapping, Optional

import aiohttp
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from buytracker.errors import FeedUnavailable
from buytracker.feeds.base import PollingPurchaseFeed
from buytracker.feeds.rpc import ChainRpcClient, RpcError
from buytracker.models import Network, PurchaseEvent
from buytracker.utils.logging import get_logger

logger = get_logger(__name__)

HEX_CHARS = "0123456789abcdef"
BASE58_CHARS = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"


class SimulatedPurchaseFeed(PollingPurchaseFeed):
    def __init__(
        self,
        network: Network,
        token_address: str,
        min_usd: Decimal,
        scheduler: AsyncIOScheduler,
        native_price_usd: Decimal,
        rpc: Optional[ChainRpcClient] = None,
        probability: float = 0.3,
        interval_seconds: int = 30,
        max_failures: int = 5,
        rng: Optional[random.Random] = None,
    ) -> None:
        super().__init__(
            network,
            token_address,
            min_usd,
            scheduler,
            interval_seconds=interval_seconds,
            max_failures=max_failures,
        )
        self.native_price_usd = native_price_usd
        self.rpc = rpc
        self.probability = probability
        self.rng = rng or random.Random()
        self._last_head: Optional[int] = None

    async def _establish(self) -> None:
        if self.rpc is None:
            return
        try:
            self._last_head = await self.rpc.latest_block(self.network)
        except (aiohttp.ClientError, asyncio.TimeoutError, RpcError) as exc:
            raise FeedUnavailable(
                f"{self.network.display_name} RPC unreachable: {exc}"
            ) from exc
        logger.info(
            "feed_head_established",
            network=self.network.value,
            head=self._last_head,
        )

    async def _fetch(self) -> List[PurchaseEvent]:
        if self.rpc is not None:
            head = await self.rpc.latest_block(self.network)
            if self._last_head is not None and head <= self._last_head:
                return []
            self._last_head = head

        if self.rng.random() >= self.probability:
            return []
        return [self._simulate_buy()]

    def _simulate_buy(self) -> PurchaseEvent:
        rng = self.rng
        if self.network is Network.BNB:
            tx_id = "0x" + "".join(rng.choice(HEX_CHARS) for _ in range(64))
            buyer = "0x" + "".join(rng.choice(HEX_CHARS) for _ in range(40))
        else:
            tx_id = "".join(rng.choice(BASE58_CHARS) for _ in range(88))
            buyer = "".join(rng.choice(BASE58_CHARS) for _ in range(44))

        token_amount = Decimal(rng.randrange(100, 10_000_000)) / 100
        native_amount = Decimal(rng.randrange(1, 20_000)) / 10_000
        usd_amount = (native_amount * self.native_price_usd).quantize(
            Decimal("0.01"), rounding=ROUND_HALF_UP
        )
        return PurchaseEvent(
            tx_id=tx_id,
            token_amount=token_amount,
            native_amount=native_amount,
            usd_amount=usd_amount,
            buyer_address=buyer,
        )


@dataclass
class SimulatedFeedFactory:
    """FeedFactory producing :class:`SimulatedPurchaseFeed` instances."""

    scheduler: AsyncIOScheduler
    native_prices_usd: Mapping[Network, float]
    rpc: Optional[ChainRpcClient] = None
    probability: float = 0.3
    interval_seconds: int = 30
    max_failures: int = 5
    rng: random.Random = field(default_factory=random.Random)

    def __call__(
        self, network: Network, token_address: str, min_usd: Decimal
    ) -> SimulatedPurchaseFeed:
        return SimulatedPurchaseFeed(
            network,
            token_address,
            min_usd,
            self.scheduler,
            native_price_usd=Decimal(str(self.native_prices_usd[network])),
            rpc=self.rpc,
            probability=self.probability,
            interval_seconds=self.interval_seconds,
            max_failures=self.max_failures,
            rng=self.rng,
        )
