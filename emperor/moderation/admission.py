# Copyright (c) 2025 sprowii
"""Допуск новых участников: обязательная подписка на канал и captcha.

Новичок ограничивается и получает кнопку подтверждения. Обязательная
подписка имеет приоритет над captcha. Если captcha не пройдена за
CAPTCHA_TIMEOUT_SEC и участник всё ещё ограничен, он банится.
Таймер одноразовый и отменяется при подтверждении. VERIFIED и BANNED
конечны: повторное нажатие старой кнопки ничего не меняет.
"""
import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Tuple

from telegram import InlineKeyboardButton, InlineKeyboardMarkup

from emperor import config
from emperor.logging_config import log
from emperor.moderation.errors import PlatformRejected
from emperor.moderation.locks import KeyedLocks
from emperor.moderation.logger import ModLogger
from emperor.moderation.models import ChatConfig
from emperor.moderation.platform import CHANNEL_MEMBER_STATUSES, RESTRICTED_STATUS, TelegramPlatform
from emperor.moderation.storage import ModerationStore
from emperor.security.data_protection import pseudonymize_chat_id, pseudonymize_id
from emperor.utils.cache import TTLCache
from emperor.utils.text import mention_html

FORCED_JOIN_CALLBACK_PREFIX = "fj:"
CAPTCHA_CALLBACK_PREFIX = "cap:"


class AdmissionState(str, Enum):
    UNRESTRICTED = "unrestricted"
    PENDING_FORCED_JOIN = "pending_forced_join"
    PENDING_CAPTCHA = "pending_captcha"
    VERIFIED = "verified"
    BANNED = "banned"


@dataclass
class AdmissionSession:
    """Состояние допуска одного новичка. Живёт только в памяти процесса."""
    chat_id: int
    user_id: int
    state: AdmissionState
    deadline_ts: Optional[float] = None


@dataclass
class GateReply:
    """Ответ на нажатие кнопки подтверждения."""
    verified: bool
    message: str


def forced_join_keyboard(user_id: int) -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup([[
        InlineKeyboardButton("✅ I joined", callback_data=f"{FORCED_JOIN_CALLBACK_PREFIX}{user_id}")
    ]])


def captcha_keyboard(user_id: int) -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup([[
        InlineKeyboardButton("I'm not a robot 🤖❌", callback_data=f"{CAPTCHA_CALLBACK_PREFIX}{user_id}")
    ]])


class AdmissionGate:
    """Машина состояний допуска.

    - UNRESTRICTED: проверки выключены или ограничение не удалось
    - PENDING_FORCED_JOIN -> VERIFIED: подписка подтверждена
    - PENDING_CAPTCHA -> VERIFIED: кнопка нажата вовремя
    - PENDING_CAPTCHA -> BANNED: таймаут, участник всё ещё ограничен
    """

    def __init__(
        self,
        store: ModerationStore,
        platform: TelegramPlatform,
        locks: Optional[KeyedLocks] = None,
        timeout_sec: float = config.CAPTCHA_TIMEOUT_SEC,
        modlog: Optional[ModLogger] = None,
        resolved: Optional[TTLCache[Tuple[int, int], AdmissionSession]] = None
    ):
        self.store = store
        self.platform = platform
        self.locks = locks or KeyedLocks()
        self.timeout_sec = timeout_sec
        self.modlog = modlog or ModLogger(store)
        self._sessions: Dict[Tuple[int, int], AdmissionSession] = {}
        # Задачи таймаута: {(chat_id, user_id): asyncio.Task}
        self._timeout_tasks: Dict[Tuple[int, int], asyncio.Task] = {}
        if resolved is None:
            resolved = TTLCache(config.ADMISSION_RESOLVED_TTL_SEC, max_size=config.ADMISSION_RESOLVED_SIZE)
        # Завершённые сессии: старые кнопки после них игнорируются
        self._resolved: TTLCache[Tuple[int, int], AdmissionSession] = resolved

    def get_session(self, chat_id: int, user_id: int) -> Optional[AdmissionSession]:
        """Текущая или недавно завершённая сессия."""
        key = (chat_id, user_id)
        return self._sessions.get(key) or self._resolved.get(key)

    def has_pending_timer(self, chat_id: int, user_id: int) -> bool:
        return (chat_id, user_id) in self._timeout_tasks

    # ========================================================================
    # JOIN
    # ========================================================================

    async def _send(self, chat_id: int, text: str, markup: Optional[InlineKeyboardMarkup] = None) -> None:
        try:
            await self.platform.send_message(chat_id, text, reply_markup=markup)
        except PlatformRejected:
            pass

    async def on_member_joined(
        self,
        chat: ChatConfig,
        user_id: int,
        name: str = "",
        is_bot: bool = False
    ) -> AdmissionSession:
        """Обработка входа нового участника.

        Args:
            chat: Настройки чата
            user_id: ID нового участника
            name: Имя для приветствия
            is_bot: Боты не проверяются
        """
        chat_id = chat.chat_id
        key = (chat_id, user_id)
        if is_bot:
            return AdmissionSession(chat_id, user_id, AdmissionState.UNRESTRICTED)

        mention = mention_html(user_id, name)
        if chat.welcome_enabled:
            await self._send(chat_id, f"🏛 Welcome, {mention}!")

        forced_join = chat.force_join_enabled and bool(chat.force_join_channel)
        if not forced_join and not chat.captcha_enabled:
            return AdmissionSession(chat_id, user_id, AdmissionState.UNRESTRICTED)

        async with self.locks.hold(key):
            self._cancel_timer(key)
            self._resolved.pop(key)
            try:
                await self.platform.restrict_member(chat_id, user_id, can_send=False)
            except PlatformRejected:
                # Бот не смог ограничить - не мучаем участника проверкой
                self._sessions.pop(key, None)
                return AdmissionSession(chat_id, user_id, AdmissionState.UNRESTRICTED)

            if forced_join:
                session = AdmissionSession(chat_id, user_id, AdmissionState.PENDING_FORCED_JOIN)
                self._sessions[key] = session
                await self._send(
                    chat_id,
                    f"{mention}, join {chat.force_join_channel} and then press <b>I joined</b>.",
                    forced_join_keyboard(user_id),
                )
                return session

            session = AdmissionSession(
                chat_id,
                user_id,
                AdmissionState.PENDING_CAPTCHA,
                deadline_ts=time.time() + self.timeout_sec,
            )
            self._sessions[key] = session
            await self._send(
                chat_id,
                f"{mention}, press the button within {int(self.timeout_sec)}s to prove you are human.",
                captcha_keyboard(user_id),
            )
            self._start_timer(key)
            log.info(
                f"Captcha отправлена пользователю {pseudonymize_id(user_id)} "
                f"в чате {pseudonymize_chat_id(chat_id)}"
            )
            return session

    # ========================================================================
    # CONFIRMATION
    # ========================================================================

    def _resolve(self, key: Tuple[int, int], session: AdmissionSession, state: AdmissionState) -> None:
        """Перевести сессию в конечное состояние. Повторно она не сработает."""
        session.state = state
        self._sessions.pop(key, None)
        self._resolved.set(key, session)

    async def _has_active_mute(self, chat_id: int, user_id: int) -> bool:
        record = await self.store.load_mute_async(chat_id, user_id)
        return record is not None and record.is_active()

    async def _lift(self, chat_id: int, user_id: int) -> None:
        """Снять ограничение новичка, если поверх него не наложен мут."""
        if await self._has_active_mute(chat_id, user_id):
            return
        await self.platform.restrict_member(chat_id, user_id, can_send=True)

    async def _claim_session(
        self,
        key: Tuple[int, int],
        expected: AdmissionState
    ) -> Optional[AdmissionSession]:
        """Сессия, которую может завершить нажатие кнопки. Вызывать под блокировкой.

        Без сессии и без записи о завершении (например, после перезапуска)
        нажатие принимается, только если участник всё ещё restricted и на
        нём нет активного мута.
        """
        session = self._sessions.get(key)
        if session is not None:
            return session if session.state == expected else None
        if key in self._resolved:
            return None

        chat_id, user_id = key
        try:
            status = await self.platform.get_member_status(chat_id, user_id)
        except PlatformRejected:
            return None
        if status != RESTRICTED_STATUS or await self._has_active_mute(chat_id, user_id):
            return None
        return AdmissionSession(chat_id, user_id, expected)

    async def confirm_forced_join(self, chat: ChatConfig, presser_id: int, subject_id: int) -> GateReply:
        """Нажатие «I joined»: проверить подписку на канал и снять ограничение."""
        if presser_id != subject_id:
            return GateReply(False, "Only that user can confirm.")
        if not chat.force_join_channel:
            return GateReply(False, "")

        key = (chat.chat_id, subject_id)
        async with self.locks.hold(key):
            session = await self._claim_session(key, AdmissionState.PENDING_FORCED_JOIN)
            if session is None:
                return GateReply(False, "")

            try:
                status = await self.platform.get_member_status(chat.force_join_channel, subject_id)
            except PlatformRejected:
                return GateReply(False, "Join the channel first, then try again.")
            if status not in CHANNEL_MEMBER_STATUSES:
                return GateReply(False, "You are not a member of the channel yet.")

            try:
                await self._lift(chat.chat_id, subject_id)
            except PlatformRejected as exc:
                return GateReply(False, f"⚠️ {exc.message}")
            self._resolve(key, session, AdmissionState.VERIFIED)
        return GateReply(True, "✅ Verified. Welcome!")

    async def confirm_captcha(self, chat_id: int, presser_id: int, subject_id: int) -> GateReply:
        """Нажатие кнопки captcha. Срабатывает один раз, пока проверка не завершена."""
        if presser_id != subject_id:
            return GateReply(False, "This button is for someone else.")

        key = (chat_id, subject_id)
        async with self.locks.hold(key):
            session = await self._claim_session(key, AdmissionState.PENDING_CAPTCHA)
            if session is None:
                return GateReply(False, "")
            try:
                await self._lift(chat_id, subject_id)
            except PlatformRejected as exc:
                return GateReply(False, f"⚠️ {exc.message}")
            self._cancel_timer(key)
            self._resolve(key, session, AdmissionState.VERIFIED)

        log.info(
            f"Пользователь {pseudonymize_id(subject_id)} успешно прошёл captcha "
            f"в чате {pseudonymize_chat_id(chat_id)}"
        )
        return GateReply(True, "✅ Welcome!")

    # ========================================================================
    # TIMEOUT
    # ========================================================================

    def _start_timer(self, key: Tuple[int, int]) -> None:
        self._timeout_tasks[key] = asyncio.create_task(self._handle_timeout(key))

    def _cancel_timer(self, key: Tuple[int, int]) -> None:
        task = self._timeout_tasks.pop(key, None)
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def _handle_timeout(self, key: Tuple[int, int]) -> None:
        try:
            await asyncio.sleep(self.timeout_sec)
            await self.expire(*key)
        except asyncio.CancelledError:
            # Captcha пройдена
            pass
        finally:
            if self._timeout_tasks.get(key) is asyncio.current_task():
                del self._timeout_tasks[key]

    async def expire(self, chat_id: int, user_id: int) -> bool:
        """Истечение срока captcha. Возвращает True, если участник забанен.

        Бан только если сессия всё ещё ждёт captcha и Telegram сообщает
        статус "restricted".
        """
        key = (chat_id, user_id)
        async with self.locks.hold(key):
            session = self._sessions.get(key)
            if session is None or session.state != AdmissionState.PENDING_CAPTCHA:
                return False
            self._sessions.pop(key, None)

            try:
                status = await self.platform.get_member_status(chat_id, user_id)
            except PlatformRejected:
                return False
            if status != RESTRICTED_STATUS:
                return False

            try:
                await self.platform.ban_member(chat_id, user_id)
            except PlatformRejected:
                return False
            self._resolve(key, session, AdmissionState.BANNED)
            await self.modlog.log_mod_action(chat_id, "auto-ban", user_id, reason="captcha", auto=True)

        log.info(
            f"Пользователь {pseudonymize_id(user_id)} забанен в чате "
            f"{pseudonymize_chat_id(chat_id)} за провал captcha"
        )
        return True

    def cleanup_expired(self) -> int:
        return self._resolved.cleanup_expired()

    async def shutdown(self) -> None:
        """Отменить все таймеры (при остановке бота)."""
        tasks = list(self._timeout_tasks.values())
        self._timeout_tasks.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
