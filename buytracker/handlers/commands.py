"""Telegram command handlers."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from typing import List, Optional

from telegram import Update, constants
from telegram.error import TelegramError
from telegram.ext import (
    Application,
    CallbackContext,
    CommandHandler,
    MessageHandler,
    filters,
)

from buytracker.errors import (
    FeedUnavailable,
    InvalidToken,
    ResolutionFailed,
    StartCancelled,
    StartError,
)
from buytracker.models import INACTIVE, GroupConfig, Network, WatchKey
from buytracker.store.db import Database
from buytracker.store.repository import Repository
from buytracker.utils.formatting import format_group_config, format_watch_status
from buytracker.utils.logging import get_logger
from buytracker.watch.manager import WatchLifecycleManager

logger = get_logger(__name__)

DEFAULT_EMOJI = "🚀"
MAX_EMOJI_LENGTH = 8
GROUP_CHAT_TYPES = (constants.ChatType.GROUP, constants.ChatType.SUPERGROUP)
ADMIN_STATUSES = (
    constants.ChatMemberStatus.ADMINISTRATOR,
    constants.ChatMemberStatus.OWNER,
)

SETUP_USAGE = (
    "Usage: /setup <bnb|solana> <token address> [emoji]\n"
    "Send the command as a photo caption to use that photo in buy alerts."
)

WELCOME_TEXT = (
    "👋 Thanks for adding me to this group!\n\n"
    "🔍 I track token buys on BNB Chain and Solana and post an alert here for each one.\n\n"
    "Setup guide:\n"
    "1️⃣ Make me an admin in this group\n"
    "2️⃣ Run /setup <bnb|solana> <token address> [emoji]\n\n"
    "Need help? Type /help for more information."
)

START_ERROR_MESSAGES = {
    InvalidToken: "❌ That does not look like a valid {network} token address.",
    ResolutionFailed: "⚠️ Could not look up that token right now. Please try again shortly.",
    FeedUnavailable: "⚠️ Could not connect to {network}. Please try /setup again shortly.",
    StartCancelled: "Setup was interrupted by /stop. Run /setup again to resume tracking.",
}


@dataclass
class HandlerContext:
    db: Database
    manager: WatchLifecycleManager
    admin_ids: List[int]


def setup(application: Application, handler_context: HandlerContext) -> None:
    """Register handlers on the Telegram application."""
    application.bot_data["ctx"] = handler_context

    application.add_handler(CommandHandler("start", start))
    application.add_handler(CommandHandler("help", help_command))
    application.add_handler(CommandHandler("ping", ping_command))
    application.add_handler(CommandHandler("setup", setup_command))
    application.add_handler(
        MessageHandler(
            filters.PHOTO & filters.CaptionRegex(r"^/setup(@\w+)?(\s|$)"),
            setup_command,
        )
    )
    application.add_handler(CommandHandler("status", status_command))
    application.add_handler(CommandHandler("stop", stop_command))
    application.add_handler(
        MessageHandler(filters.StatusUpdate.NEW_CHAT_MEMBERS, new_members_handler)
    )


def get_ctx(context: CallbackContext) -> HandlerContext:
    return context.application.bot_data["ctx"]


async def start(update: Update, context: CallbackContext) -> None:
    text = (
        "👋 I post an alert in your group every time someone buys your token.\n\n"
        "1️⃣ Add me to your group and make me an admin\n"
        "2️⃣ Run /setup <bnb|solana> <token address> [emoji]\n\n"
        "Type /help to learn more!"
    )
    await update.message.reply_text(text, parse_mode=None)


async def help_command(update: Update, context: CallbackContext) -> None:
    text = (
        "📋 Commands:\n"
        "/setup - configure token tracking in this group\n"
        "/status - show current tracking status\n"
        "/stop - stop token tracking\n"
        "/ping - check that I'm alive\n\n"
        f"{SETUP_USAGE}\n\n"
        "Alerts repeat your emoji by buy size: under $50 ×1, $50+ ×3, "
        "$200+ ×5, $1000+ ×10."
    )
    await update.message.reply_text(text, parse_mode=None)


async def ping_command(update: Update, context: CallbackContext) -> None:
    await update.message.reply_text("pong", parse_mode=None)


async def new_members_handler(update: Update, context: CallbackContext) -> None:
    """Post the setup guide when the bot itself is added to a group."""
    members = update.message.new_chat_members or []
    if not any(member.id == context.bot.id for member in members):
        return
    logger.info("bot_added_to_group", chat_id=update.effective_chat.id)
    await update.message.reply_text(WELCOME_TEXT, parse_mode=None)


async def ensure_group(update: Update) -> bool:
    chat = update.effective_chat
    if chat is not None and chat.type in GROUP_CHAT_TYPES:
        return True
    await update.message.reply_text(
        "Add me to a group and run this command there.", parse_mode=None
    )
    return False


async def ensure_admin(update: Update, context: CallbackContext) -> bool:
    """Allow configured admin ids and the group's own administrators."""
    ctx = get_ctx(context)
    user = update.effective_user
    chat = update.effective_chat
    if user is None or chat is None:
        return False
    if user.id in ctx.admin_ids:
        return True

    try:
        member = await context.bot.get_chat_member(chat.id, user.id)
    except TelegramError as exc:
        logger.warning(
            "admin_check_failed", chat_id=chat.id, user_id=user.id, error=str(exc)
        )
        await update.message.reply_text(
            "I couldn't verify your permissions. Make sure I'm an admin here.",
            parse_mode=None,
        )
        return False

    if member.status in ADMIN_STATUSES:
        return True
    await update.message.reply_text(
        "Only group admins can change token tracking.", parse_mode=None
    )
    return False


def _command_args(update: Update, context: CallbackContext) -> List[str]:
    args = getattr(context, "args", None)
    if args is not None:
        return list(args)
    caption = (update.message.caption or "") if update.message else ""
    return caption.split()[1:]


def _photo_file_id(update: Update) -> Optional[str]:
    photos = getattr(update.message, "photo", None) if update.message else None
    if not photos:
        return None
    return photos[-1].file_id


async def setup_command(update: Update, context: CallbackContext) -> None:
    if not await ensure_group(update):
        return
    if not await ensure_admin(update, context):
        return

    args = _command_args(update, context)
    if len(args) < 2:
        await update.message.reply_text(SETUP_USAGE, parse_mode=None)
        return

    try:
        network = Network.parse(args[0])
    except ValueError:
        await update.message.reply_text(
            "Network must be bnb or solana.\n\n" + SETUP_USAGE, parse_mode=None
        )
        return

    emoji = args[2] if len(args) > 2 else DEFAULT_EMOJI
    if len(emoji) > MAX_EMOJI_LENGTH:
        await update.message.reply_text(
            "Pick a single emoji for buy alerts.", parse_mode=None
        )
        return

    ctx = get_ctx(context)
    chat_id = update.effective_chat.id

    async with ctx.db.session() as session:
        previous = await Repository(session).get_group_config(chat_id)

    image_ref = _photo_file_id(update) or (previous.image_ref if previous else None)
    config = GroupConfig(
        network=network,
        token_address=args[1].strip(),
        emoji=emoji,
        image_ref=image_ref,
    )

    await update.message.reply_text(
        "Validating token address, please wait...", parse_mode=None
    )

    key = WatchKey(chat_id, config.token_address)
    try:
        identity = await ctx.manager.start(key, config)
    except StartError as exc:
        logger.warning(
            "setup_failed",
            chat_id=chat_id,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        template = START_ERROR_MESSAGES.get(
            type(exc), "⚠️ Setup failed. Please try again with /setup."
        )
        await update.message.reply_text(
            template.format(network=network.display_name), parse_mode=None
        )
        return

    if (
        previous is not None
        and previous.active
        and previous.token_address != config.token_address
    ):
        await ctx.manager.stop(WatchKey(chat_id, previous.token_address))

    async with ctx.db.session() as session:
        repo = Repository(session)
        saved = await repo.save_group_config(
            chat_id, dataclasses.replace(config, token_identity=identity)
        )
        # /stop may have landed between start() and the save
        if not (await ctx.manager.get_status(key)).active:
            await repo.deactivate_group(chat_id)
            saved = None

    if saved is None:
        logger.info("setup_superseded_by_stop", chat_id=chat_id)
        await update.message.reply_text(
            START_ERROR_MESSAGES[StartCancelled], parse_mode=None
        )
        return

    logger.info("setup_completed", chat_id=chat_id, symbol=identity.symbol)
    await update.message.reply_text(
        "✅ Setup complete! I'll post an alert for every new buy.\n\n"
        + format_group_config(saved),
        parse_mode=None,
    )


async def status_command(update: Update, context: CallbackContext) -> None:
    ctx = get_ctx(context)
    chat_id = update.effective_chat.id

    async with ctx.db.session() as session:
        config = await Repository(session).get_group_config(chat_id)

    status = INACTIVE
    if config is not None and config.active:
        status = await ctx.manager.get_status(WatchKey(chat_id, config.token_address))
    await update.message.reply_text(format_watch_status(status), parse_mode=None)


async def stop_command(update: Update, context: CallbackContext) -> None:
    if not await ensure_group(update):
        return
    if not await ensure_admin(update, context):
        return

    ctx = get_ctx(context)
    chat_id = update.effective_chat.id

    # stop watches before deactivating; /setup re-checks its watch after saving
    stopped = await ctx.manager.stop_all(chat_id)
    async with ctx.db.session() as session:
        await Repository(session).deactivate_group(chat_id)

    if stopped:
        text = "🛑 Token tracking stopped. Use /setup to start again."
    else:
        text = "Tracking was not active. Use /setup to configure a token."
    await update.message.reply_text(text, parse_mode=None)
