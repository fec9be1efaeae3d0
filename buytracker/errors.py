"""Error taxonomy for watch start/stop and notification delivery."""

from __future__ import annotations


class BuyTrackerError(Exception):
    """Base class for all errors raised by the tracking core."""


class StartError(BuyTrackerError):
    """A watch could not be started; nothing was registered."""


class InvalidToken(StartError):
    """The token address is malformed for the selected network."""


class ResolutionFailed(StartError):
    """Token identity lookup failed or timed out."""


class FeedUnavailable(StartError):
    """The purchase feed could not be established."""


class AlreadyWatching(StartError):
    """An exclusive start found a live watch for the same key."""


class StartCancelled(StartError):
    """A stop request for the key arrived while the start was in flight."""


class IncompleteConfig(BuyTrackerError):
    """A configuration reached the formatter without a resolved identity."""


class DeliveryFailed(BuyTrackerError):
    """The chat platform rejected a notification."""


__all__ = [
    "BuyTrackerError",
    "StartError",
    "InvalidToken",
    "ResolutionFailed",
    "FeedUnavailable",
    "AlreadyWatching",
    "StartCancelled",
    "IncompleteConfig",
    "DeliveryFailed",
]
