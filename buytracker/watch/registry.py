"""In-process registry of live watches."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from buytracker.errors import AlreadyWatching
from buytracker.feeds.base import PurchaseFeed
from buytracker.models import GroupConfig, WatchKey, WatchStatus, utc_now


@dataclass(eq=False)
class Watch:
    """A live monitoring job: one feed, one consumer task, one config."""

    key: WatchKey
    config: GroupConfig
    feed: PurchaseFeed
    task: Optional["asyncio.Task[None]"] = None
    started_at: datetime = field(default_factory=utc_now)
    degraded: bool = False
    delivered: int = 0
    failed: int = 0

    def status(self) -> WatchStatus:
        return WatchStatus(
            active=True,
            config=self.config,
            degraded=self.degraded,
            delivered=self.delivered,
            failed=self.failed,
            started_at=self.started_at,
        )


class WatchRegistry:
    """Map WatchKey -> Watch, holding at most one entry per key."""

    def __init__(self) -> None:
        self._watches: Dict[WatchKey, Watch] = {}
        self._lock = asyncio.Lock()

    async def register(self, key: WatchKey, watch: Watch, replace: bool = False) -> None:
        async with self._lock:
            if key in self._watches and not replace:
                raise AlreadyWatching(f"Watch already active for {key}")
            self._watches[key] = watch

    async def unregister(self, key: WatchKey) -> Optional[Watch]:
        """Remove and return the watch for ``key``; a missing key is a no-op."""
        async with self._lock:
            return self._watches.pop(key, None)

    async def get(self, key: WatchKey) -> Optional[Watch]:
        async with self._lock:
            return self._watches.get(key)

    async def list_by_group(self, group_id: int) -> List[Watch]:
        async with self._lock:
            return [
                watch for key, watch in self._watches.items() if key.group_id == group_id
            ]

    async def keys(self) -> List[WatchKey]:
        async with self._lock:
            return list(self._watches)

    def has_group(self, group_id: int) -> bool:
        return any(key.group_id == group_id for key in self._watches)

    def __len__(self) -> int:
        return len(self._watches)


__all__ = ["Watch", "WatchRegistry"]
