# Copyright (c) 2025 sprowii
"""Центральный контроллер модерации.

Единая точка входа для событий чата: бот добавлен, новый участник,
текстовое сообщение, нажатие кнопки. Антиспам проверяется раньше
команд. Непредвиденные ошибки превращаются в общий ответ об ошибке.
"""
import html
import time
from dataclasses import dataclass
from typing import Optional

from telegram import InlineKeyboardButton, InlineKeyboardMarkup

from emperor import config
from emperor.logging_config import log
from emperor.moderation.actions import (
    TOGGLE_FIELDS,
    ModerationEngine,
    Target,
    toggle_label,
)
from emperor.moderation.admission import (
    CAPTCHA_CALLBACK_PREFIX,
    FORCED_JOIN_CALLBACK_PREFIX,
    AdmissionGate,
    AdmissionSession,
)
from emperor.moderation.classifier import Intent, classify
from emperor.moderation.locks import KeyedLocks
from emperor.moderation.models import ChatConfig, ModerationResult, ResultStatus
from emperor.moderation.permissions import RoleResolver
from emperor.moderation.platform import TelegramPlatform
from emperor.moderation.spam import FloodDetector, LinkSpamDetector
from emperor.moderation.storage import ModerationStore
from emperor.security.data_protection import pseudonymize_chat_id
from emperor.utils.text import mention_html

CONFIG_CALLBACK_PREFIX = "cfg:"

INTERNAL_ERROR_TEXT = "⚠️ Internal error."


@dataclass
class IncomingMessage:
    """Текстовое сообщение группы в виде, удобном для контроллера."""
    chat_id: int
    user_id: int
    text: str
    message_id: int
    user_name: str = ""
    reply_to_message_id: Optional[int] = None
    reply_to_user_id: Optional[int] = None
    reply_to_user_name: str = ""
    timestamp: Optional[float] = None


@dataclass
class Reply:
    """Что ответить в чат."""
    result: ModerationResult
    reply_markup: Optional[InlineKeyboardMarkup] = None

    @property
    def text(self) -> str:
        return self.result.message


@dataclass
class CallbackReply:
    """Ответ на нажатие inline-кнопки.

    Attributes:
        answer: Текст всплывающего уведомления (answerCallbackQuery)
        text: Сообщение в чат (если нужно)
        edit_text: Новый текст сообщения с кнопками (если нужно)
    """
    answer: str = ""
    text: str = ""
    edit_text: str = ""
    reply_markup: Optional[InlineKeyboardMarkup] = None


def build_panel_keyboard(chat: ChatConfig) -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup([
        [InlineKeyboardButton(
            toggle_label(key, getattr(chat, field_name)),
            callback_data=f"{CONFIG_CALLBACK_PREFIX}{key}",
        )]
        for key, field_name in TOGGLE_FIELDS.items()
    ])


def _error_reply() -> Reply:
    return Reply(ModerationResult(status=ResultStatus.ERROR, message=INTERNAL_ERROR_TEXT))


class ModerationController:
    """Объединяет детекторы, классификатор, движок и допуск новичков."""

    def __init__(
        self,
        store: ModerationStore,
        platform: TelegramPlatform,
        resolver: Optional[RoleResolver] = None,
        engine: Optional[ModerationEngine] = None,
        gate: Optional[AdmissionGate] = None,
        flood: Optional[FloodDetector] = None,
        links: Optional[LinkSpamDetector] = None,
        locks: Optional[KeyedLocks] = None
    ):
        self.store = store
        self.platform = platform
        self.locks = locks or KeyedLocks()
        self.resolver = resolver or RoleResolver(store, platform)
        self.engine = engine or ModerationEngine(store, platform, self.resolver, self.locks)
        self.gate = gate or AdmissionGate(store, platform, self.locks)
        self.flood = flood or FloodDetector()
        self.links = links or LinkSpamDetector()

    # ========================================================================
    # BOT ADDED
    # ========================================================================

    async def on_bot_added(self, chat_id: int, title: str = "") -> str:
        """Бота добавили в чат: создать запись чата и определить владельца."""
        defaults = ChatConfig(
            chat_id=chat_id,
            title=title or "",
            force_join_enabled=bool(config.FORCE_JOIN),
            force_join_channel=config.FORCE_JOIN,
        )
        await self.store.upsert_chat_async(defaults)
        owner_id = await self.resolver.ensure_owner(chat_id)
        log.info(f"Бот активирован в чате {pseudonymize_chat_id(chat_id)}")

        text = "🏛 The Empire is active."
        if owner_id is not None:
            text += f" 👑 {mention_html(owner_id, 'Emperor')}"
        return text + '\nReply to a user and say "ban", "mute 10m", "warn", "promote knight"...'

    # ========================================================================
    # NEW MEMBERS
    # ========================================================================

    async def on_user_join(
        self,
        chat_id: int,
        user_id: int,
        name: str = "",
        is_bot: bool = False
    ) -> Optional[AdmissionSession]:
        chat = await self.store.load_chat_async(chat_id)
        if chat is None:
            return None
        return await self.gate.on_member_joined(chat, user_id, name, is_bot)

    # ========================================================================
    # TEXT MESSAGES
    # ========================================================================

    async def on_message(self, message: IncomingMessage) -> Optional[Reply]:
        """Обработать текстовое сообщение группы.

        Returns:
            Reply для ответа в чат или None, если отвечать не нужно
        """
        try:
            return await self._handle_message(message)
        except Exception as exc:
            log.exception(f"Ошибка обработки сообщения в чате {pseudonymize_chat_id(message.chat_id)}: {exc}")
            return _error_reply()

    async def _check_spam(self, chat: ChatConfig, message: IncomingMessage) -> Optional[Reply]:
        """Антифлуд, затем ссылки. Reply означает, что сообщение обработано.

        Проверяются все, кроме владельца. Если Telegram откажет в действии
        против админа, в ответе будет REJECTED.
        """
        chat_id, user_id = message.chat_id, message.user_id
        if chat.owner_id is not None and user_id == chat.owner_id:
            return None
        timestamp = message.timestamp if message.timestamp is not None else time.time()

        if self.flood.register(chat_id, user_id, message.text, now=timestamp):
            result = await self.engine.auto_mute(chat_id, user_id, config.FLOOD_MUTE_SEC, now=timestamp)
            return Reply(result)

        if self.links.is_link_spam(message.text):
            result = await self.engine.auto_warn_link(chat_id, user_id, message.message_id, message.user_name)
            return Reply(result)

        return None

    async def _handle_message(self, message: IncomingMessage) -> Optional[Reply]:
        chat = await self.store.load_chat_async(message.chat_id)
        if chat is None:
            return None

        if chat.antispam_enabled:
            spam_reply = await self._check_spam(chat, message)
            if spam_reply is not None:
                return spam_reply

        command = classify(message.text)
        if command.intent == Intent.NONE:
            return None

        if chat.owner_id is None:
            await self.resolver.ensure_owner(chat.chat_id)

        chat_id, actor_id = message.chat_id, message.user_id
        engine = self.engine

        if command.intent == Intent.PANEL:
            result = await engine.panel(chat_id, actor_id)
            if not result.ok:
                return Reply(result)
            chat = await self.store.load_chat_async(chat_id) or chat
            return Reply(result, build_panel_keyboard(chat))
        if command.intent == Intent.SET_RULES:
            return Reply(await engine.set_rules(chat_id, actor_id, command.argument))
        if command.intent == Intent.SHOW_RULES:
            return Reply(await engine.show_rules(chat_id, actor_id))
        if command.intent == Intent.TAG:
            return Reply(await engine.tag(chat_id, actor_id, command.argument))

        if message.reply_to_message_id is None:
            # Команды модерации работают только ответом на сообщение
            return None

        if command.intent == Intent.PURGE:
            return Reply(await engine.purge(chat_id, actor_id, message.reply_to_message_id, message.message_id))

        if message.reply_to_user_id is None:
            return None
        target = Target(message.reply_to_user_id, message.reply_to_user_name)

        handlers = {
            Intent.BAN: engine.ban,
            Intent.UNBAN: engine.unban,
            Intent.MUTE: engine.mute,
            Intent.UNMUTE: engine.unmute,
            Intent.WARN: engine.warn,
            Intent.UNWARN: engine.unwarn,
            Intent.PROMOTE: engine.promote,
            Intent.DEMOTE: engine.demote,
        }
        handler = handlers.get(command.intent)
        if handler is None:
            return None
        return Reply(await handler(chat_id, actor_id, target, command.text))

    # ========================================================================
    # CALLBACK BUTTONS
    # ========================================================================

    async def on_callback(self, chat_id: int, presser_id: int, data: str) -> CallbackReply:
        """Нажатие inline-кнопки: fj:<uid>, cap:<uid> или cfg:<feature>."""
        try:
            return await self._handle_callback(chat_id, presser_id, data or "")
        except Exception as exc:
            log.exception(f"Ошибка обработки кнопки {data!r}: {exc}")
            return CallbackReply(text=INTERNAL_ERROR_TEXT)

    async def _handle_callback(self, chat_id: int, presser_id: int, data: str) -> CallbackReply:
        if data.startswith(CONFIG_CALLBACK_PREFIX):
            key = data[len(CONFIG_CALLBACK_PREFIX):]
            result = await self.engine.toggle_feature(chat_id, presser_id, key)
            if not result.ok:
                return CallbackReply(answer=html.unescape(result.message))
            chat = await self.store.load_chat_async(chat_id) or ChatConfig(chat_id=chat_id)
            return CallbackReply(
                answer=result.message,
                edit_text=f"🛡 Imperial control panel\n{result.message}",
                reply_markup=build_panel_keyboard(chat),
            )

        for prefix in (FORCED_JOIN_CALLBACK_PREFIX, CAPTCHA_CALLBACK_PREFIX):
            if data.startswith(prefix):
                try:
                    subject_id = int(data[len(prefix):])
                except ValueError:
                    return CallbackReply()
                break
        else:
            return CallbackReply()

        if prefix == CAPTCHA_CALLBACK_PREFIX:
            gate_reply = await self.gate.confirm_captcha(chat_id, presser_id, subject_id)
            return CallbackReply(answer="Verified" if gate_reply.verified else "", text=gate_reply.message)

        chat = await self.store.load_chat_async(chat_id)
        if chat is None:
            return CallbackReply()
        gate_reply = await self.gate.confirm_forced_join(chat, presser_id, subject_id)
        return CallbackReply(text=gate_reply.message)

    # ========================================================================
    # MAINTENANCE
    # ========================================================================

    def cleanup_caches(self) -> int:
        """Очистить истёкшие записи кэшей. Возвращает количество удалённых."""
        return (
            self.resolver.cleanup_expired_cache()
            + self.flood.cleanup_expired()
            + self.gate.cleanup_expired()
        )

    async def shutdown(self) -> None:
        await self.gate.shutdown()


# Глобальный экземпляр контроллера (создаётся при инициализации бота)
_controller: Optional[ModerationController] = None


def get_moderation_controller() -> ModerationController:
    """Получить глобальный экземпляр контроллера.

    Raises:
        RuntimeError: контроллер ещё не инициализирован
    """
    if _controller is None:
        raise RuntimeError("ModerationController не инициализирован")
    return _controller


def init_moderation_controller(store: ModerationStore, platform: TelegramPlatform) -> ModerationController:
    """Инициализировать глобальный контроллер модерации.

    Вызывается при старте бота.
    """
    global _controller
    _controller = ModerationController(store, platform)
    log.info("ModerationController initialized")
    return _controller
