"""Start, replace and stop per-group purchase watches."""

from __future__ import annotations

import asyncio
import dataclasses
from collections import defaultdict
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import AsyncIterator, Dict, Mapping, Protocol, Tuple

from buytracker.delivery import Delivery
from buytracker.errors import (
    AlreadyWatching,
    FeedUnavailable,
    IncompleteConfig,
    ResolutionFailed,
    StartCancelled,
    StartError,
)
from buytracker.feeds.base import FeedFactory, FeedMessage
from buytracker.models import (
    INACTIVE,
    FeedFault,
    FeedRecovered,
    GroupConfig,
    Network,
    TokenIdentity,
    WatchKey,
    WatchStatus,
)
from buytracker.utils.logging import bind_context, get_logger
from buytracker.watch.formatter import DEFAULT_EXPLORER_URLS, render
from buytracker.watch.registry import Watch, WatchRegistry

logger = get_logger(__name__)


class Resolver(Protocol):
    async def resolve(self, network: Network, address: str) -> TokenIdentity:
        ...


class WatchLifecycleManager:
    """The only component that opens or stops purchase feeds.

    Starts and stops for one group are serialised by a per-group lock, so a
    reconfiguration never leaves two feeds alive for the same key. ``stop`` and
    ``stop_all`` bump a generation counter before waiting on that lock; a
    ``start`` that sees the counter move while it was resolving or opening its
    feed discards its result and raises :class:`StartCancelled`.
    """

    def __init__(
        self,
        registry: WatchRegistry,
        resolver: Resolver,
        feed_factory: FeedFactory,
        delivery: Delivery,
        explorer_urls: Mapping[Network, str] = DEFAULT_EXPLORER_URLS,
        min_usd: Decimal = Decimal("0"),
    ) -> None:
        self.registry = registry
        self.resolver = resolver
        self.feed_factory = feed_factory
        self.delivery = delivery
        self.explorer_urls = dict(explorer_urls)
        self.min_usd = min_usd
        # per-group bookkeeping, dropped once a group has no watch and no caller
        self._group_locks: Dict[int, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._group_generations: Dict[int, int] = defaultdict(int)
        self._key_generations: Dict[WatchKey, int] = defaultdict(int)
        self._group_users: Dict[int, int] = defaultdict(int)

    async def start(
        self, key: WatchKey, config: GroupConfig, exclusive: bool = False
    ) -> TokenIdentity:
        """Start (or replace) the watch for ``key`` and return the token identity.

        Raises:
            InvalidToken: malformed token address.
            ResolutionFailed: identity lookup failed.
            FeedUnavailable: the feed could not be established.
            AlreadyWatching: ``exclusive`` was set and a watch is live.
            StartCancelled: a stop for this key arrived mid-start.
        """
        async with self._using_group(key.group_id):
            generation = self._generation(key)
            config = await self._ensure_identity(config)
            self._check_generation(key, generation)

            async with self._group_locks[key.group_id]:
                self._check_generation(key, generation)
                await self._open_and_register(key, config, generation, exclusive)

        logger.info(
            "watch_started",
            key=str(key),
            network=config.network.value,
            symbol=config.token_identity.symbol,
        )
        return config.token_identity

    async def _open_and_register(
        self,
        key: WatchKey,
        config: GroupConfig,
        generation: Tuple[int, int],
        exclusive: bool,
    ) -> None:
        existing = await self.registry.get(key)
        if existing is not None:
            if exclusive:
                raise AlreadyWatching(f"Watch already active for {key}")
            await self.registry.unregister(key)
            await self._teardown(existing)
            logger.info("watch_replaced", key=str(key))

        feed = self.feed_factory(config.network, config.token_address, self.min_usd)
        try:
            await feed.open()
        except StartError:
            await feed.stop()
            raise
        except Exception as exc:
            await feed.stop()
            logger.warning("feed_open_failed", key=str(key), error=str(exc))
            raise FeedUnavailable(f"Could not open purchase feed: {exc}") from exc

        if self._generation(key) != generation:
            await feed.stop()
            raise StartCancelled(f"Stop requested while starting {key}")

        watch = Watch(key=key, config=config, feed=feed)
        await self.registry.register(key, watch)
        watch.task = asyncio.create_task(self._consume(watch), name=f"watch:{key}")

    async def stop(self, key: WatchKey) -> None:
        """Stop the watch for ``key``. Stopping nothing is not an error."""
        async with self._using_group(key.group_id):
            self._key_generations[key] += 1
            async with self._group_locks[key.group_id]:
                watch = await self.registry.unregister(key)
                if watch is None:
                    logger.debug("watch_stop_noop", key=str(key))
                    return
                await self._teardown(watch)
        logger.info("watch_stopped", key=str(key))

    async def stop_all(self, group_id: int) -> int:
        """Stop every watch of ``group_id``; return how many were running."""
        async with self._using_group(group_id):
            self._group_generations[group_id] += 1
            async with self._group_locks[group_id]:
                watches = await self.registry.list_by_group(group_id)
                for watch in watches:
                    await self.registry.unregister(watch.key)
                    await self._teardown(watch)
        logger.info("group_watches_stopped", group_id=group_id, count=len(watches))
        return len(watches)

    async def get_status(self, key: WatchKey) -> WatchStatus:
        watch = await self.registry.get(key)
        return watch.status() if watch else INACTIVE

    async def shutdown(self) -> None:
        groups = {key.group_id for key in await self.registry.keys()}
        for group_id in groups:
            await self.stop_all(group_id)

    @asynccontextmanager
    async def _using_group(self, group_id: int) -> AsyncIterator[None]:
        """Track callers of a group so its locks and counters can be released."""
        self._group_users[group_id] += 1
        try:
            yield
        finally:
            self._group_users[group_id] -= 1
            if not self._group_users[group_id] and not self.registry.has_group(group_id):
                self._forget_group(group_id)

    def _forget_group(self, group_id: int) -> None:
        self._group_users.pop(group_id, None)
        self._group_locks.pop(group_id, None)
        self._group_generations.pop(group_id, None)
        for key in [key for key in self._key_generations if key.group_id == group_id]:
            del self._key_generations[key]

    def _generation(self, key: WatchKey) -> Tuple[int, int]:
        return self._group_generations[key.group_id], self._key_generations[key]

    def _check_generation(self, key: WatchKey, generation: Tuple[int, int]) -> None:
        if self._generation(key) != generation:
            raise StartCancelled(f"Stop requested while starting {key}")

    async def _ensure_identity(self, config: GroupConfig) -> GroupConfig:
        if config.token_identity is not None:
            return config
        try:
            identity = await self.resolver.resolve(config.network, config.token_address)
        except StartError:
            raise
        except Exception as exc:
            raise ResolutionFailed(f"Token lookup failed: {exc}") from exc
        return dataclasses.replace(config, token_identity=identity)

    async def _teardown(self, watch: Watch) -> None:
        if watch.task is not None:
            watch.task.cancel()
            try:
                await watch.task
            except asyncio.CancelledError:
                pass
            except Exception as exc:
                logger.error(
                    "watch_consumer_crashed", key=str(watch.key), error=str(exc)
                )
            watch.task = None
        try:
            await watch.feed.stop()
        except Exception as exc:  # pragma: no cover - feed implementations log their own errors
            logger.error("feed_stop_failed", key=str(watch.key), error=str(exc))

    async def _consume(self, watch: Watch) -> None:
        # runs in its own task, so the binding stays local to this watch
        bind_context(chat_id=watch.key.group_id, token=watch.key.token_address)
        queue = watch.feed.events
        while True:
            message = await queue.get()
            try:
                await self._handle(watch, message)
            finally:
                queue.task_done()

    async def _handle(self, watch: Watch, message: FeedMessage) -> None:
        if isinstance(message, FeedFault):
            watch.degraded = True
            logger.error(
                "feed_degraded",
                key=str(watch.key),
                reason=message.reason,
                failures=message.consecutive_failures,
            )
            return
        if isinstance(message, FeedRecovered):
            watch.degraded = False
            logger.info("feed_recovered", key=str(watch.key))
            return

        try:
            payload = render(message, watch.config, self.explorer_urls)
        except IncompleteConfig as exc:
            watch.failed += 1
            logger.error("notification_render_failed", key=str(watch.key), error=str(exc))
            return
        except Exception as exc:  # a malformed event must not end the consumer
            watch.failed += 1
            logger.error(
                "notification_render_failed",
                key=str(watch.key),
                tx_id=message.tx_id,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return

        try:
            await self.delivery.deliver(watch.key.group_id, payload)
        except Exception as exc:  # one failed delivery must not stop the feed
            watch.failed += 1
            logger.warning(
                "delivery_failed",
                key=str(watch.key),
                tx_id=message.tx_id,
                failed=watch.failed,
                error=str(exc),
            )
            return

        watch.delivered += 1
        logger.info(
            "buy_notification_sent",
            key=str(watch.key),
            tx_id=message.tx_id[:10],
            usd=payload.usd_amount,
        )


__all__ = ["Resolver", "WatchLifecycleManager"]
