"""Turn purchase observations into deterministic notification payloads."""

from __future__ import annotations

from decimal import Decimal
from typing import Mapping

from buytracker.errors import IncompleteConfig
from buytracker.models import GroupConfig, Network, NotificationPayload, PurchaseEvent
from buytracker.utils.formatting import (
    format_native_amount,
    format_token_amount,
    format_usd_amount,
)

DEFAULT_EXPLORER_URLS: Mapping[Network, str] = {
    Network.BNB: "https://bscscan.com/tx/",
    Network.SOLANA: "https://solscan.io/tx/",
}

# (lower bound in USD, repetitions), highest bound first
EMOJI_TIERS = (
    (Decimal("1000"), 10),
    (Decimal("200"), 5),
    (Decimal("50"), 3),
)
MAX_EMOJI_REPEAT = 10
TITLE = "NEW BUY"


def emoji_repeat_count(usd_amount: Decimal) -> int:
    """Return how many times the group emoji is repeated for a buy."""
    for lower_bound, count in EMOJI_TIERS:
        if usd_amount >= lower_bound:
            return min(count, MAX_EMOJI_REPEAT)
    return 1


def render(
    event: PurchaseEvent,
    config: GroupConfig,
    explorer_urls: Mapping[Network, str] = DEFAULT_EXPLORER_URLS,
) -> NotificationPayload:
    """Build the notification for ``event`` under ``config``.

    Pure: identical inputs always produce an identical payload.

    Raises:
        IncompleteConfig: ``config`` carries no resolved token identity.
    """
    identity = config.token_identity
    if identity is None:
        raise IncompleteConfig(
            f"Token identity missing for {config.network.value}:{config.token_address}"
        )

    return NotificationPayload(
        title=TITLE,
        emoji_line=config.emoji * emoji_repeat_count(event.usd_amount),
        token_name=identity.name,
        token_symbol=identity.symbol,
        token_amount=format_token_amount(event.token_amount),
        native_amount=format_native_amount(event.native_amount),
        native_symbol=config.network.native_symbol,
        usd_amount=format_usd_amount(event.usd_amount),
        buyer_address=event.buyer_address,
        tx_url=f"{explorer_urls[config.network]}{event.tx_id}",
        image_ref=config.image_ref,
    )
