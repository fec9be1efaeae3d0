"""Purchase feed contract and the scheduler-driven polling base."""

from __future__ import annotations

import asyncio
import uuid
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import List, Protocol, Union

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from buytracker.models import FeedFault, FeedRecovered, Network, PurchaseEvent
from buytracker.utils.logging import get_logger

logger = get_logger(__name__)

FeedMessage = Union[PurchaseEvent, FeedFault, FeedRecovered]


class PurchaseFeed(ABC):
    """Source of purchase events for one token on one network.

    Events are pushed onto :attr:`events` in emission order. Once
    :meth:`stop` has returned nothing else is published on the channel.
    """

    def __init__(
        self,
        network: Network,
        token_address: str,
        min_usd: Decimal = Decimal("0"),
    ) -> None:
        self.network = network
        self.token_address = token_address
        self.min_usd = min_usd
        self.events: "asyncio.Queue[FeedMessage]" = asyncio.Queue()
        self._opened = False
        self._stopped = False

    @property
    def running(self) -> bool:
        return self._opened and not self._stopped

    @property
    def stopped(self) -> bool:
        return self._stopped

    async def open(self) -> None:
        """Establish upstream resources; raises if the feed cannot start."""
        if self._stopped:
            raise RuntimeError("Feed was stopped and cannot be reopened")
        if self._opened:
            return
        await self._open()
        self._opened = True

    async def stop(self) -> None:
        """Release every upstream resource. Safe to call more than once."""
        if self._stopped:
            return
        self._stopped = True
        await self._close()
        logger.info(
            "feed_stopped",
            network=self.network.value,
            token=self.token_address,
        )

    def publish(self, event: PurchaseEvent) -> bool:
        """Queue ``event`` for the consumer; return whether it was accepted."""
        if self._stopped:
            return False
        if event.usd_amount < self.min_usd:
            logger.debug(
                "feed_event_below_threshold",
                tx_id=event.tx_id,
                usd=str(event.usd_amount),
                min_usd=str(self.min_usd),
            )
            return False
        self.events.put_nowait(event)
        return True

    def publish_status(self, message: Union[FeedFault, FeedRecovered]) -> None:
        if self._stopped:
            return
        self.events.put_nowait(message)

    @abstractmethod
    async def _open(self) -> None:
        ...

    async def _close(self) -> None:
        return None


class FeedFactory(Protocol):
    """Build an unopened feed for a token."""

    def __call__(
        self, network: Network, token_address: str, min_usd: Decimal
    ) -> PurchaseFeed:
        ...


class PollingPurchaseFeed(PurchaseFeed):
    """Feed that polls upstream on an APScheduler interval job.

    A single failed poll is only logged; the job keeps its cadence. After
    ``max_failures`` consecutive failures a :class:`FeedFault` is published
    once, and the next successful poll publishes :class:`FeedRecovered`.
    """

    def __init__(
        self,
        network: Network,
        token_address: str,
        min_usd: Decimal,
        scheduler: AsyncIOScheduler,
        interval_seconds: int = 30,
        max_failures: int = 5,
    ) -> None:
        super().__init__(network, token_address, min_usd)
        self.scheduler = scheduler
        self.interval_seconds = interval_seconds
        self.max_failures = max_failures
        self.job_id = f"feed:{network.value}:{token_address}:{uuid.uuid4().hex[:8]}"
        self._job = None
        self._failures = 0
        self._faulted = False

    async def _open(self) -> None:
        await self._establish()
        self._job = self.scheduler.add_job(
            self._poll,
            trigger="interval",
            seconds=self.interval_seconds,
            id=self.job_id,
            max_instances=1,
            coalesce=True,
        )
        logger.info(
            "feed_started",
            network=self.network.value,
            token=self.token_address,
            interval=self.interval_seconds,
        )

    async def _close(self) -> None:
        if self._job is None:
            return
        try:
            self._job.remove()
        except JobLookupError:
            pass
        self._job = None

    async def _establish(self) -> None:
        """Hook for subclasses that must reach upstream before polling."""
        return None

    @abstractmethod
    async def _fetch(self) -> List[PurchaseEvent]:
        ...

    async def _poll(self) -> None:
        if self._stopped:
            return
        try:
            events = await self._fetch()
        except Exception as exc:  # upstream errors are retried on the next tick
            self._failures += 1
            logger.warning(
                "feed_poll_failed",
                network=self.network.value,
                token=self.token_address,
                failures=self._failures,
                error=str(exc),
            )
            if self._failures >= self.max_failures and not self._faulted:
                self._faulted = True
                self.publish_status(
                    FeedFault(reason=str(exc), consecutive_failures=self._failures)
                )
            return

        if self._faulted:
            self.publish_status(FeedRecovered())
        self._faulted = False
        self._failures = 0

        for event in events:
            self.publish(event)


__all__ = ["FeedMessage", "PurchaseFeed", "PollingPurchaseFeed", "FeedFactory"]
