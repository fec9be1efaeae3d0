import dataclasses

import pytest
from telegram.error import BadRequest, Forbidden

from buytracker.delivery import TelegramDelivery
from buytracker.errors import DeliveryFailed
from buytracker.models import NotificationPayload

PAYLOAD = NotificationPayload(
    title="NEW BUY",
    emoji_line="🚀🚀🚀",
    token_name="Token One",
    token_symbol="TK1",
    token_amount="100",
    native_amount="0.0100",
    native_symbol="BNB",
    usd_amount="75.00",
    buyer_address="0xdead",
    tx_url="https://bscscan.com/tx/0xabc",
)


class DummyBot:
    def __init__(self, errors=None) -> None:
        self.errors = list(errors or [])
        self.calls = []

    async def _record(self, method: str, kwargs: dict) -> None:
        self.calls.append((method, kwargs))
        if self.errors:
            raise self.errors.pop(0)

    async def send_message(self, **kwargs) -> None:
        await self._record("send_message", kwargs)

    async def send_photo(self, **kwargs) -> None:
        await self._record("send_photo", kwargs)


@pytest.mark.asyncio
async def test_deliver_sends_markdown_message_without_image() -> None:
    bot = DummyBot()
    await TelegramDelivery(bot).deliver(42, PAYLOAD)

    [(method, kwargs)] = bot.calls
    assert method == "send_message"
    assert kwargs["chat_id"] == 42
    assert kwargs["parse_mode"] == "MarkdownV2"
    assert kwargs["text"].startswith("*NEW BUY*")
    assert kwargs["disable_web_page_preview"] is True


@pytest.mark.asyncio
async def test_deliver_uses_group_image_before_default() -> None:
    bot = DummyBot()
    delivery = TelegramDelivery(bot, default_image="https://img.test/default.png")

    await delivery.deliver(1, PAYLOAD)
    await delivery.deliver(
        1,
        dataclasses.replace(PAYLOAD, image_ref="file-id"),
    )

    photos = [kwargs["photo"] for method, kwargs in bot.calls if method == "send_photo"]
    assert photos == ["https://img.test/default.png", "file-id"]
    assert "Token One" in bot.calls[0][1]["caption"]


@pytest.mark.asyncio
async def test_deliver_falls_back_to_plain_text_on_bad_markdown() -> None:
    bot = DummyBot(errors=[BadRequest("can't parse entities")])
    await TelegramDelivery(bot).deliver(7, PAYLOAD)

    assert [kwargs["parse_mode"] for _, kwargs in bot.calls] == ["MarkdownV2", None]
    assert bot.calls[1][1]["text"].endswith("https://bscscan.com/tx/0xabc")


@pytest.mark.asyncio
async def test_deliver_raises_when_chat_rejects_message() -> None:
    bot = DummyBot(errors=[Forbidden("bot was kicked from the group chat")])

    with pytest.raises(DeliveryFailed):
        await TelegramDelivery(bot).deliver(7, PAYLOAD)
    assert len(bot.calls) == 1


@pytest.mark.asyncio
async def test_deliver_raises_when_plain_fallback_also_fails() -> None:
    bot = DummyBot(errors=[BadRequest("bad markup"), BadRequest("chat not found")])

    with pytest.raises(DeliveryFailed):
        await TelegramDelivery(bot).deliver(7, PAYLOAD)
    assert len(bot.calls) == 2
