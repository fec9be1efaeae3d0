"""Purchase feed implementations."""

from .base import FeedFactory, PollingPurchaseFeed, PurchaseFeed

__all__ = ["FeedFactory", "PollingPurchaseFeed", "PurchaseFeed"]
