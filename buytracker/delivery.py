"""Deliver rendered buy notifications to Telegram groups."""

from __future__ import annotations

from typing import Optional, Protocol

from telegram.error import BadRequest, TelegramError

from buytracker.errors import DeliveryFailed
from buytracker.models import NotificationPayload
from buytracker.utils.formatting import (
    format_buy_notification,
    format_buy_notification_plain,
)
from buytracker.utils.logging import get_logger

logger = get_logger(__name__)


class Delivery(Protocol):
    async def deliver(self, group_id: int, payload: NotificationPayload) -> None:
        """Send ``payload`` to ``group_id``; raise DeliveryFailed on rejection."""
        ...


class TelegramDelivery:
    """Send a photo with caption when an image is known, otherwise a message."""

    def __init__(self, bot, default_image: Optional[str] = None) -> None:
        self.bot = bot
        self.default_image = default_image

    async def deliver(self, group_id: int, payload: NotificationPayload) -> None:
        image = payload.image_ref or self.default_image
        try:
            try:
                await self._send(group_id, format_buy_notification(payload), image, "MarkdownV2")
            except BadRequest as exc:
                logger.warning(
                    "telegram_markdown_failed", group_id=group_id, error=str(exc)
                )
                await self._send(group_id, format_buy_notification_plain(payload), image, None)
        except TelegramError as exc:
            raise DeliveryFailed(f"Telegram rejected notification: {exc}") from exc

    async def _send(
        self, group_id: int, text: str, image: Optional[str], parse_mode: Optional[str]
    ) -> None:
        if image:
            await self.bot.send_photo(
                chat_id=group_id,
                photo=image,
                caption=text,
                parse_mode=parse_mode,
            )
        else:
            await self.bot.send_message(
                chat_id=group_id,
                text=text,
                parse_mode=parse_mode,
                disable_web_page_preview=True,
            )


__all__ = ["Delivery", "TelegramDelivery"]
