# Copyright (c) 2025 sprowii
import threading

from telegram import Update
from telegram.ext import (
    Application,
    CallbackQueryHandler,
    ChatMemberHandler,
    MessageHandler,
    filters,
)

from emperor import config
from emperor.bot.handlers import error_handler, on_callback, on_my_chat_member, on_new_members, on_text
from emperor.bot.jobs import cleanup_caches_job
from emperor.logging_config import log
from emperor.moderation.controller import get_moderation_controller, init_moderation_controller
from emperor.moderation.platform import TelegramPlatform
from emperor.moderation.storage import get_store
from emperor.security.data_protection import check_security_config
from emperor.web.server import run_flask


async def _post_shutdown(application: Application) -> None:
    await get_moderation_controller().shutdown()


def build_application() -> Application:
    application = (
        Application.builder()
        .token(config.TG_TOKEN)
        .concurrent_updates(True)
        .post_shutdown(_post_shutdown)
        .build()
    )
    init_moderation_controller(get_store(), TelegramPlatform(application.bot))

    application.add_error_handler(error_handler)
    application.add_handler(ChatMemberHandler(on_my_chat_member, ChatMemberHandler.MY_CHAT_MEMBER))
    application.add_handler(MessageHandler(filters.StatusUpdate.NEW_CHAT_MEMBERS, on_new_members))
    application.add_handler(CallbackQueryHandler(on_callback, pattern=r"^(fj|cap|cfg):"))
    application.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND & filters.ChatType.GROUPS, on_text))

    application.job_queue.run_repeating(
        cleanup_caches_job,
        interval=config.CACHE_CLEANUP_INTERVAL_SEC,
        first=config.CACHE_CLEANUP_INTERVAL_SEC,
    )
    return application


def main() -> None:
    if not config.TG_TOKEN:
        raise RuntimeError("TG_TOKEN (или BOT_TOKEN) не задан")

    for issue in check_security_config()["issues"]:
        log.warning(issue)

    threading.Thread(target=run_flask, daemon=True).start()
    application = build_application()

    if config.WEBHOOK_URL:
        log.info(f"Запуск в режиме webhook на порту {config.WEBHOOK_PORT}")
        application.run_webhook(
            listen="0.0.0.0",
            port=config.WEBHOOK_PORT,
            url_path=config.TG_TOKEN,
            webhook_url=f"{config.WEBHOOK_URL}/{config.TG_TOKEN}",
            secret_token=config.WEBHOOK_SECRET_TOKEN,
            allowed_updates=Update.ALL_TYPES,
        )
    else:
        log.info("Запуск в режиме polling")
        application.run_polling(allowed_updates=Update.ALL_TYPES, drop_pending_updates=True)


if __name__ == "__main__":
    main()
