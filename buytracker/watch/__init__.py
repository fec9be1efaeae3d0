"""Watch registry, lifecycle manager and notification formatter."""

from .formatter import emoji_repeat_count, render
from .manager import WatchLifecycleManager
from .registry import Watch, WatchRegistry

__all__ = [
    "Watch",
    "WatchLifecycleManager",
    "WatchRegistry",
    "emoji_repeat_count",
    "render",
]
