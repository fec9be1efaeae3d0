"""Helpers for Telegram-safe Markdown formatting."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, localcontext
from typing import List

from buytracker.models import GroupConfig, NotificationPayload, WatchStatus

_TWO_PLACES = Decimal("0.01")
_FOUR_PLACES = Decimal("0.0001")


def escape_markdown(text: str) -> str:
    """Escape Telegram MarkdownV2 control characters."""
    if text is None:
        text = ""
    if not isinstance(text, str):
        text = str(text)
    special_chars = r"_*[]()~`>#+-=|{}.!\\"
    return "".join(f"\\{char}" if char in special_chars else char for char in text)


def escape_markdown_url(url: str) -> str:
    """Escape Telegram MarkdownV2-sensitive characters inside link URLs."""
    if not url:
        return ""
    return url.replace("\\", "\\\\").replace("(", "\\(").replace(")", "\\)")


def escape_markdown_code(text: str) -> str:
    """Escape the characters MarkdownV2 treats specially inside `code`."""
    if not text:
        return ""
    return text.replace("\\", "\\\\").replace("`", "\\`")


def _round(amount: Decimal, places: Decimal) -> Decimal:
    """Quantize with enough precision for every integer digit of ``amount``."""
    with localcontext() as ctx:
        ctx.prec = max(ctx.prec, amount.adjusted() - places.as_tuple().exponent + 2)
        return amount.quantize(places, rounding=ROUND_HALF_UP)


def format_token_amount(amount: Decimal) -> str:
    """Group thousands; whole amounts drop the decimals (``1,234`` / ``1,234.50``)."""
    rounded = _round(amount, _TWO_PLACES)
    if rounded == rounded.to_integral_value():
        return f"{int(rounded):,}"
    return f"{rounded:,f}"


def format_native_amount(amount: Decimal) -> str:
    return f"{_round(amount, _FOUR_PLACES):f}"


def format_usd_amount(amount: Decimal) -> str:
    return f"{_round(amount, _TWO_PLACES):,f}"


def short_address(address: str | None) -> str:
    if not address:
        return ""
    if len(address) <= 12:
        return address
    return f"{address[:6]}...{address[-4:]}"


def format_buy_notification(payload: NotificationPayload) -> str:
    """Render a buy payload as a MarkdownV2 caption."""
    lines: List[str] = [
        f"*{escape_markdown(payload.title)}*",
        escape_markdown(payload.emoji_line),
        "",
        f"🔄 *{escape_markdown(payload.token_name)} "
        f"\\({escape_markdown(payload.token_symbol)}\\)*",
        "",
        f"💰 Amount: *{escape_markdown(payload.token_amount)} "
        f"{escape_markdown(payload.token_symbol)}*",
        f"🪙 Value: *{escape_markdown(payload.native_amount)} "
        f"{escape_markdown(payload.native_symbol)}* "
        f"\\({escape_markdown('$' + payload.usd_amount)}\\)",
        f"👤 Buyer: `{escape_markdown_code(payload.buyer_address)}`",
        "",
        f"🔗 [View Transaction]({escape_markdown_url(payload.tx_url)})",
    ]
    return "\n".join(lines)


def format_buy_notification_plain(payload: NotificationPayload) -> str:
    """Plain-text fallback used when Telegram rejects the Markdown caption."""
    lines = [
        payload.title,
        payload.emoji_line,
        "",
        f"🔄 {payload.token_name} ({payload.token_symbol})",
        "",
        f"💰 Amount: {payload.token_amount} {payload.token_symbol}",
        f"🪙 Value: {payload.native_amount} {payload.native_symbol} (${payload.usd_amount})",
        f"👤 Buyer: {payload.buyer_address}",
        "",
        f"🔗 {payload.tx_url}",
    ]
    return "\n".join(lines)


def format_group_config(config: GroupConfig) -> str:
    """Summarise a group configuration for setup/status replies (plain text)."""
    identity = config.token_identity
    token = f"{identity.name} ({identity.symbol})" if identity else "unresolved"
    image = "custom" if config.image_ref else "default"
    return (
        f"• Network: {config.network.display_name}\n"
        f"• Token: {token}\n"
        f"• Contract: {config.token_address}\n"
        f"• Emoji: {config.emoji}\n"
        f"• Image: {image}"
    )


def format_watch_status(status: WatchStatus) -> str:
    if not status.active or status.config is None:
        return "Tracking is not active. Use /setup to configure a token."
    lines = ["✅ Tracking is active", "", format_group_config(status.config)]
    lines.append("")
    lines.append(f"Alerts sent: {status.delivered} · failed: {status.failed}")
    if status.degraded:
        lines.append("⚠️ The purchase feed is having trouble reaching the network.")
    return "\n".join(lines)
