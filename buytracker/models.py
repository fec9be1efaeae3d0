"""Value types shared by the watch core, feeds and delivery."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Network(str, Enum):
    BNB = "BNB"
    SOLANA = "SOLANA"

    @property
    def native_symbol(self) -> str:
        return "BNB" if self is Network.BNB else "SOL"

    @property
    def display_name(self) -> str:
        return "BNB Chain" if self is Network.BNB else "Solana"

    @classmethod
    def parse(cls, value: str) -> "Network":
        """Map user input such as ``bnb``, ``bsc`` or ``sol`` to a network."""
        cleaned = (value or "").strip().lower()
        if cleaned in {"bnb", "bsc", "bnb chain", "bnbchain"}:
            return cls.BNB
        if cleaned in {"sol", "solana"}:
            return cls.SOLANA
        raise ValueError(f"Unknown network: {value!r}")


@dataclass(frozen=True)
class TokenIdentity:
    name: str
    symbol: str


@dataclass(frozen=True)
class WatchKey:
    group_id: int
    token_address: str

    def __str__(self) -> str:
        return f"{self.group_id}_{self.token_address}"


@dataclass(frozen=True)
class GroupConfig:
    """Snapshot of a group's tracking configuration taken at watch start."""

    network: Network
    token_address: str
    emoji: str
    token_identity: Optional[TokenIdentity] = None
    image_ref: Optional[str] = None
    active: bool = True
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)


@dataclass(frozen=True)
class PurchaseEvent:
    tx_id: str
    token_amount: Decimal
    native_amount: Decimal
    usd_amount: Decimal
    buyer_address: str


@dataclass(frozen=True)
class FeedFault:
    """Terminal error published by a feed after repeated upstream failures."""

    reason: str
    consecutive_failures: int


@dataclass(frozen=True)
class FeedRecovered:
    """Published when a faulted feed completes a poll successfully again."""


@dataclass(frozen=True)
class NotificationPayload:
    title: str
    emoji_line: str
    token_name: str
    token_symbol: str
    token_amount: str
    native_amount: str
    native_symbol: str
    usd_amount: str
    buyer_address: str
    tx_url: str
    image_ref: Optional[str] = None


@dataclass(frozen=True)
class WatchStatus:
    active: bool
    config: Optional[GroupConfig] = None
    degraded: bool = False
    delivered: int = 0
    failed: int = 0
    started_at: Optional[datetime] = None


INACTIVE = WatchStatus(active=False)


__all__ = [
    "utc_now",
    "Network",
    "TokenIdentity",
    "WatchKey",
    "GroupConfig",
    "PurchaseEvent",
    "FeedFault",
    "FeedRecovered",
    "NotificationPayload",
    "WatchStatus",
    "INACTIVE",
]
