# Copyright (c) 2025 sprowii
"""Обработчики обновлений Telegram.

Превращают Update в вызовы ModerationController и отправляют ответ.
"""
from typing import Optional

from telegram import Update
from telegram.constants import ChatMemberStatus, ChatType, ParseMode
from telegram.error import TelegramError
from telegram.ext import ContextTypes

from emperor.logging_config import log
from emperor.moderation.controller import INTERNAL_ERROR_TEXT, IncomingMessage, get_moderation_controller
from emperor.moderation.models import ResultStatus
from emperor.security.data_protection import pseudonymize_chat_id
from emperor.utils.text import split_long_message

_ACTIVE_BOT_STATUSES = (ChatMemberStatus.ADMINISTRATOR, ChatMemberStatus.MEMBER)


async def _send(context: ContextTypes.DEFAULT_TYPE, chat_id: int, text: str, reply_markup=None) -> None:
    chunks = split_long_message(text)
    for index, chunk in enumerate(chunks):
        # Кнопки прикрепляем к последней части
        markup = reply_markup if index == len(chunks) - 1 else None
        try:
            await context.bot.send_message(chat_id, chunk, parse_mode=ParseMode.HTML, reply_markup=markup)
        except TelegramError as exc:
            log.warning(f"Не удалось отправить ответ в чат {pseudonymize_chat_id(chat_id)}: {exc}")
            return


async def on_my_chat_member(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Бота добавили в группу или повысили до админа."""
    change = update.my_chat_member
    if not change or change.new_chat_member.status not in _ACTIVE_BOT_STATUSES:
        return
    chat = change.chat
    if chat.type not in (ChatType.GROUP, ChatType.SUPERGROUP):
        return
    text = await get_moderation_controller().on_bot_added(chat.id, chat.title or "")
    await _send(context, chat.id, text)


async def on_new_members(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    message = update.effective_message
    if not message or not message.new_chat_members:
        return
    controller = get_moderation_controller()
    for user in message.new_chat_members:
        await controller.on_user_join(
            message.chat_id,
            user.id,
            name=user.first_name or user.username or "",
            is_bot=user.is_bot,
        )


async def on_text(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    message = update.effective_message
    user = update.effective_user
    if not message or not message.text or not user:
        return

    replied = message.reply_to_message
    replied_user = replied.from_user if replied else None
    incoming = IncomingMessage(
        chat_id=message.chat_id,
        user_id=user.id,
        text=message.text,
        message_id=message.message_id,
        user_name=user.first_name or user.username or "",
        reply_to_message_id=replied.message_id if replied else None,
        reply_to_user_id=replied_user.id if replied_user else None,
        reply_to_user_name=(replied_user.first_name or replied_user.username or "") if replied_user else "",
        timestamp=message.date.timestamp() if message.date else None,
    )

    reply = await get_moderation_controller().on_message(incoming)
    if reply is None or reply.result.status == ResultStatus.IGNORED or not reply.text:
        return
    await _send(context, message.chat_id, reply.text, reply.reply_markup)


async def on_callback(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    if not query or not query.message:
        return
    chat_id = query.message.chat.id

    reply = await get_moderation_controller().on_callback(chat_id, query.from_user.id, query.data or "")
    try:
        await query.answer(reply.answer or None)
    except TelegramError as exc:
        log.debug(f"answerCallbackQuery не удался: {exc}")

    if reply.edit_text:
        try:
            await query.edit_message_text(reply.edit_text, parse_mode=ParseMode.HTML, reply_markup=reply.reply_markup)
        except TelegramError as exc:
            log.warning(f"Не удалось обновить панель: {exc}")
    if reply.text:
        await _send(context, chat_id, reply.text)


async def error_handler(update: Optional[object], context: ContextTypes.DEFAULT_TYPE) -> None:
    log.error("Exception while handling update", exc_info=context.error)
    if isinstance(update, Update) and update.effective_chat:
        try:
            await context.bot.send_message(chat_id=update.effective_chat.id, text=INTERNAL_ERROR_TEXT)
        except TelegramError:
            pass
