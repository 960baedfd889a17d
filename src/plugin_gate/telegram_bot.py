import logging

from telegram import Update
from telegram.ext import ApplicationBuilder, CommandHandler, ContextTypes

from plugin_gate.app_container import PluginRegistry

logger = logging.getLogger(__name__)

MAX_OUTPUT_CHARS = 3800


def _caller_ids(update: Update):
    chat_id = update.effective_chat.id if update.effective_chat else 0
    user_id = update.message.from_user.id if update.message and update.message.from_user else None
    return chat_id, user_id


async def handle_plugins(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    try:
        if not update.message or not update.effective_chat:
            return
        registry: PluginRegistry = context.bot_data["registry"]
        chat_id, user_id = _caller_ids(update)
        if not await registry.resolver.is_group_valid(chat_id):
            await update.message.reply_text("This chat has no active plugin subscription.")
            return
        names = await registry.resolver.get_available_plugins(chat_id, user_id=user_id)
        if not names:
            await update.message.reply_text("No plugins are available here.")
            return
        text = "Available plugins:\n" + "\n".join(f"- {name}" for name in sorted(names))
        await update.message.reply_text(text[:MAX_OUTPUT_CHARS])
    except Exception as exc:
        logger.exception("Plugins handler error: %s", exc)


async def handle_group(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    try:
        if not update.message or not update.effective_chat:
            return
        registry: PluginRegistry = context.bot_data["registry"]
        chat_id, user_id = _caller_ids(update)
        group = await registry.cache.get_group(chat_id)
        if group is None:
            await update.message.reply_text(f"Chat {chat_id} is not registered.")
            return
        valid = await registry.resolver.is_group_valid(chat_id)
        is_admin = user_id is not None and await registry.resolver.is_group_admin(chat_id, user_id)
        lines = [
            f"Group: {group.name or chat_id}",
            f"Valid until: {group.expired_at or '-'} ({'active' if valid else 'expired'})",
            f"You are admin: {'yes' if is_admin else 'no'}",
        ]
        await update.message.reply_text("\n".join(lines))
    except Exception as exc:
        logger.exception("Group handler error: %s", exc)


async def handle_error(update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
    logger.error("Telegram error: %s", context.error)


def build_application(token: str, registry: PluginRegistry, post_init=None):
    builder = ApplicationBuilder().token(token)
    if post_init is not None:
        builder = builder.post_init(post_init)
    app = builder.build()
    app.bot_data["registry"] = registry
    app.add_handler(CommandHandler("plugins", handle_plugins))
    app.add_handler(CommandHandler("group", handle_group))
    app.add_error_handler(handle_error)
    return app
