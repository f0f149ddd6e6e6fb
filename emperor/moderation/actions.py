# Copyright (c) 2025 sprowii
"""Движок действий модерации.

Каждое действие: авторизация -> вызов Telegram -> запись в хранилище и
журнал -> ModerationResult. Если Telegram отклонил вызов, хранилище не
меняется.
"""
import functools
import html
import re
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Tuple

from emperor import config
from emperor.logging_config import log
from emperor.moderation.errors import (
    AuthorizationDenied,
    ClassificationAmbiguous,
    ModerationError,
    PlatformRejected,
    TargetProtected,
)
from emperor.moderation.locks import KeyedLocks
from emperor.moderation.logger import ModLogger
from emperor.moderation.models import ChatConfig, ModerationResult, ResultStatus
from emperor.moderation.permissions import RoleResolver
from emperor.moderation.platform import TelegramPlatform
from emperor.moderation.roles import (
    SOVEREIGN_ROLES,
    Capability,
    Role,
    can_act,
    find_role_token,
    has_capability,
    role_label,
)
from emperor.moderation.storage import ModerationStore
from emperor.moderation.warns import WarnEscalation, WarnSystem, format_warn_counter
from emperor.utils.text import extract_duration, human_duration, mention_html

# Ключи панели -> поле ChatConfig
TOGGLE_FIELDS = {
    "antispam": "antispam_enabled",
    "welcome": "welcome_enabled",
    "captcha": "captcha_enabled",
    "fj": "force_join_enabled",
}

TOGGLE_LABELS = {
    "antispam": "Anti-spam",
    "welcome": "Welcome",
    "captcha": "Captcha",
    "fj": "Forced join",
}

# Ключевое слово warn в тексте команды, остаток - причина
_WARN_KEYWORD_RE = re.compile(r"\bwarn\b|اخطار", re.IGNORECASE)

_STATUS_BY_ERROR = (
    (AuthorizationDenied, ResultStatus.DENIED),
    (TargetProtected, ResultStatus.PROTECTED),
    (PlatformRejected, ResultStatus.REJECTED),
    (ClassificationAmbiguous, ResultStatus.AMBIGUOUS),
)


@dataclass
class Target:
    """Пользователь, на чьё сообщение ответили командой."""
    user_id: int
    name: str = ""

    @property
    def mention(self) -> str:
        return mention_html(self.user_id, self.name)


def toggle_label(key: str, enabled: bool) -> str:
    return f"{TOGGLE_LABELS[key]}: {'on ✅' if enabled else 'off ❌'}"


def warn_reason(text: str) -> str:
    reason = _WARN_KEYWORD_RE.sub("", text or "", count=1).strip()
    return reason or "-"


def result_from_error(exc: ModerationError, action: Optional[str] = None) -> ModerationResult:
    status = ResultStatus.ERROR
    for error_type, mapped in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            status = mapped
            break
    return ModerationResult(status=status, message=f"⚠️ {html.escape(exc.message)}", action=action)


def moderation_action(action: str) -> Callable[..., Callable[..., Awaitable[ModerationResult]]]:
    """Превращает ошибки модерации в ModerationResult с нужным статусом."""

    def decorator(func: Callable[..., Awaitable[ModerationResult]]):
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> ModerationResult:
            try:
                return await func(*args, **kwargs)
            except ModerationError as exc:
                log.info(f"Действие {action} не выполнено: {type(exc).__name__}: {exc.message}")
                return result_from_error(exc, action)
        return wrapper

    return decorator


class ModerationEngine:
    """Исполнитель команд модерации. Одна точка входа на каждое намерение."""

    def __init__(
        self,
        store: ModerationStore,
        platform: TelegramPlatform,
        resolver: RoleResolver,
        locks: Optional[KeyedLocks] = None,
        warns: Optional[WarnSystem] = None,
        modlog: Optional[ModLogger] = None
    ):
        self.store = store
        self.platform = platform
        self.resolver = resolver
        self.locks = locks or KeyedLocks()
        self.warns = warns or WarnSystem(store)
        self.modlog = modlog or ModLogger(store)

    # ========================================================================
    # AUTHORIZATION
    # ========================================================================

    async def _authorize(
        self,
        chat_id: int,
        actor_id: int,
        capability: Capability,
        target_id: Optional[int] = None,
        allow_equal: bool = False,
        destructive: bool = False
    ) -> Tuple[Role, Optional[Role]]:
        """Проверка: возможность -> иерархия -> защищённые цели.

        Raises:
            AuthorizationDenied: нет возможности или цель не ниже по рангу
            TargetProtected: владелец, сам актор, бот или админ Telegram
        """
        actor_role = await self.resolver.resolve_role(chat_id, actor_id)
        if not has_capability(actor_role, capability):
            raise AuthorizationDenied(f"Your rank ({role_label(actor_role)}) cannot {capability.value}.")
        if target_id is None:
            return actor_role, None

        target_role = await self.resolver.resolve_role(chat_id, target_id)
        if not can_act(actor_role, target_role, allow_equal):
            raise AuthorizationDenied("You cannot act on an equal or higher rank.")

        if target_role == Role.EMPEROR:
            raise TargetProtected("The Emperor cannot be targeted.")
        if target_id == actor_id:
            raise TargetProtected("You cannot target yourself.")
        if target_id == self.platform.bot_id:
            raise TargetProtected("I will not act against myself.")

        if destructive and actor_role not in SOVEREIGN_ROLES:
            if await self.resolver.is_platform_admin(chat_id, target_id):
                raise TargetProtected("Chat administrators can only be punished by the Emperor or the Queen.")

        return actor_role, target_role

    @staticmethod
    def _require_target(target: Optional[Target]) -> Target:
        if target is None:
            raise ClassificationAmbiguous("Reply to the user's message with the command.")
        return target

    # ========================================================================
    # BAN / UNBAN
    # ========================================================================

    @moderation_action("ban")
    async def ban(self, chat_id: int, actor_id: int, target: Optional[Target], text: str = "") -> ModerationResult:
        target = self._require_target(target)
        await self._authorize(chat_id, actor_id, Capability.BAN, target.user_id, destructive=True)
        async with self.locks.hold((chat_id, target.user_id)):
            await self.platform.ban_member(chat_id, target.user_id)
            await self.modlog.log_mod_action(chat_id, "ban", target.user_id, actor_id=actor_id)
        return ModerationResult(
            status=ResultStatus.OK,
            message=f"🚫 Banned: {target.mention}",
            action="ban",
            target_user_id=target.user_id,
        )

    @moderation_action("unban")
    async def unban(self, chat_id: int, actor_id: int, target: Optional[Target], text: str = "") -> ModerationResult:
        target = self._require_target(target)
        await self._authorize(chat_id, actor_id, Capability.UNBAN, target.user_id)
        async with self.locks.hold((chat_id, target.user_id)):
            await self.platform.unban_member(chat_id, target.user_id)
            await self.modlog.log_mod_action(chat_id, "unban", target.user_id, actor_id=actor_id)
        return ModerationResult(
            status=ResultStatus.OK,
            message=f"✅ Unbanned: {target.mention}",
            action="unban",
            target_user_id=target.user_id,
        )

    # ========================================================================
    # MUTE / UNMUTE
    # ========================================================================

    async def _apply_mute(self, chat_id: int, user_id: int, until_ts: int) -> None:
        """Ограничить в Telegram и отразить в хранилище. Вызывать под блокировкой."""
        await self.platform.restrict_member(chat_id, user_id, can_send=False, until_ts=until_ts)
        await self.store.set_mute_async(chat_id, user_id, until_ts)

    @moderation_action("mute")
    async def mute(
        self,
        chat_id: int,
        actor_id: int,
        target: Optional[Target],
        text: str = "",
        now: Optional[float] = None
    ) -> ModerationResult:
        """Мут на длительность из текста (10s/5m/2h/1d), по умолчанию 10 минут."""
        target = self._require_target(target)
        await self._authorize(chat_id, actor_id, Capability.MUTE, target.user_id, destructive=True)

        seconds = extract_duration(text) or config.DEFAULT_MUTE_SEC
        until_ts = int((now if now is not None else time.time()) + seconds)
        async with self.locks.hold((chat_id, target.user_id)):
            await self._apply_mute(chat_id, target.user_id, until_ts)
            await self.modlog.log_mod_action(
                chat_id, "mute", target.user_id, reason=human_duration(seconds), actor_id=actor_id
            )
        return ModerationResult(
            status=ResultStatus.OK,
            message=f"🔇 {target.mention} muted for {human_duration(seconds)}",
            action="mute",
            target_user_id=target.user_id,
            until_ts=until_ts,
        )

    @moderation_action("unmute")
    async def unmute(self, chat_id: int, actor_id: int, target: Optional[Target], text: str = "") -> ModerationResult:
        target = self._require_target(target)
        await self._authorize(chat_id, actor_id, Capability.UNMUTE, target.user_id)
        async with self.locks.hold((chat_id, target.user_id)):
            await self.platform.restrict_member(chat_id, target.user_id, can_send=True)
            await self.store.delete_mute_async(chat_id, target.user_id)
            await self.modlog.log_mod_action(chat_id, "unmute", target.user_id, actor_id=actor_id)
        return ModerationResult(
            status=ResultStatus.OK,
            message=f"🔊 Unmuted: {target.mention}",
            action="unmute",
            target_user_id=target.user_id,
        )

    @moderation_action("auto-mute")
    async def auto_mute(
        self,
        chat_id: int,
        user_id: int,
        seconds: int,
        reason: str = "flood",
        now: Optional[float] = None
    ) -> ModerationResult:
        """Мут от имени системы, без проверки прав (антифлуд)."""
        until_ts = int((now if now is not None else time.time()) + seconds)
        async with self.locks.hold((chat_id, user_id)):
            await self._apply_mute(chat_id, user_id, until_ts)
            await self.modlog.log_mod_action(chat_id, "auto-mute", user_id, reason=reason, auto=True)
        return ModerationResult(
            status=ResultStatus.OK,
            message=f"🔇 Muted for {human_duration(seconds)} for spamming.",
            action="auto-mute",
            target_user_id=user_id,
            until_ts=until_ts,
        )

    # ========================================================================
    # WARN / UNWARN
    # ========================================================================

    async def _warn_locked(
        self,
        chat_id: int,
        user_id: int,
        reason: str,
        actor_id: Optional[int],
        mention: str
    ) -> ModerationResult:
        """Предупреждение с эскалацией. Вызывать под блокировкой (chat, user)."""
        auto = actor_id is None
        result = await self.warns.add_warn_async(chat_id, user_id, reason)
        await self.modlog.log_mod_action(
            chat_id, "auto-warn" if auto else "warn", user_id, reason=reason, actor_id=actor_id, auto=auto
        )
        counter = format_warn_counter(result.total_warns, result.threshold)

        if result.escalation == WarnEscalation.NONE:
            return ModerationResult(
                status=ResultStatus.OK,
                message=f"⚠️ Warning {counter} for {mention}" + (" (links are not allowed)" if auto else ""),
                action="warn",
                target_user_id=user_id,
                warn_count=result.total_warns,
            )

        try:
            await self.platform.ban_member(chat_id, user_id)
        except PlatformRejected as exc:
            # Предупреждение остаётся, следующее повторит бан
            return ModerationResult(
                status=ResultStatus.REJECTED,
                message=f"⚠️ Warning {counter} for {mention}, but the ban failed: {html.escape(exc.message)}",
                action="warn",
                target_user_id=user_id,
                warn_count=result.total_warns,
            )

        await self.warns.clear_warns_async(chat_id, user_id)
        await self.modlog.log_mod_action(chat_id, "auto-ban", user_id, reason=f"warns:{reason}", auto=True)
        return ModerationResult(
            status=ResultStatus.OK,
            message=f"🚫 {result.threshold} warnings → {mention} banned.",
            action="auto-ban",
            target_user_id=user_id,
            warn_count=0,
        )

    @moderation_action("warn")
    async def warn(self, chat_id: int, actor_id: int, target: Optional[Target], text: str = "") -> ModerationResult:
        """Предупреждение. Текст после ключевого слова сохраняется как причина."""
        target = self._require_target(target)
        await self._authorize(chat_id, actor_id, Capability.WARN, target.user_id, destructive=True)
        async with self.locks.hold((chat_id, target.user_id)):
            return await self._warn_locked(chat_id, target.user_id, warn_reason(text), actor_id, target.mention)

    @moderation_action("auto-warn")
    async def auto_warn_link(
        self,
        chat_id: int,
        user_id: int,
        message_id: Optional[int],
        name: str = ""
    ) -> ModerationResult:
        """Удалить сообщение со ссылкой и выдать предупреждение от имени системы."""
        if message_id is not None:
            try:
                await self.platform.delete_message(chat_id, message_id)
            except PlatformRejected:
                # Сообщение уже удалено или нет прав - предупреждение всё равно выдаём
                pass
        async with self.locks.hold((chat_id, user_id)):
            return await self._warn_locked(chat_id, user_id, "link", None, mention_html(user_id, name))

    @moderation_action("unwarn")
    async def unwarn(self, chat_id: int, actor_id: int, target: Optional[Target], text: str = "") -> ModerationResult:
        target = self._require_target(target)
        await self._authorize(chat_id, actor_id, Capability.UNWARN, target.user_id)
        async with self.locks.hold((chat_id, target.user_id)):
            await self.warns.clear_warns_async(chat_id, target.user_id)
            await self.modlog.log_mod_action(chat_id, "unwarn", target.user_id, actor_id=actor_id)
        return ModerationResult(
            status=ResultStatus.OK,
            message=f"✅ Warnings reset for {target.mention}",
            action="unwarn",
            target_user_id=target.user_id,
        )

    # ========================================================================
    # PROMOTE / DEMOTE
    # ========================================================================

    @moderation_action("promote")
    async def promote(self, chat_id: int, actor_id: int, target: Optional[Target], text: str = "") -> ModerationResult:
        target = self._require_target(target)
        actor_role = await self.resolver.resolve_role(chat_id, actor_id)
        if not has_capability(actor_role, Capability.PROMOTE):
            raise AuthorizationDenied("Only the Emperor or the Queen can promote.")
        role = find_role_token(text)
        if role is None:
            raise ClassificationAmbiguous('Role not found. Example: "promote knight"')
        await self._authorize(chat_id, actor_id, Capability.PROMOTE, target.user_id, allow_equal=True)

        async with self.locks.hold((chat_id, target.user_id)):
            await self.store.set_role_async(chat_id, target.user_id, role.tag)
            await self.modlog.log_mod_action(chat_id, "promote", target.user_id, reason=role.tag, actor_id=actor_id)
        return ModerationResult(
            status=ResultStatus.OK,
            message=f"✅ Promoted: {target.mention} → {role_label(role)}",
            action="promote",
            target_user_id=target.user_id,
        )

    @moderation_action("demote")
    async def demote(self, chat_id: int, actor_id: int, target: Optional[Target], text: str = "") -> ModerationResult:
        target = self._require_target(target)
        await self._authorize(chat_id, actor_id, Capability.DEMOTE, target.user_id)
        async with self.locks.hold((chat_id, target.user_id)):
            await self.store.delete_role_async(chat_id, target.user_id)
            await self.modlog.log_mod_action(chat_id, "demote", target.user_id, actor_id=actor_id)
        return ModerationResult(
            status=ResultStatus.OK,
            message=f"✅ Demoted: {target.mention} → {role_label(Role.CITIZEN)}",
            action="demote",
            target_user_id=target.user_id,
        )

    # ========================================================================
    # PURGE
    # ========================================================================

    @moderation_action("purge")
    async def purge(
        self,
        chat_id: int,
        actor_id: int,
        anchor_message_id: Optional[int],
        current_message_id: int
    ) -> ModerationResult:
        """Удалить все сообщения от anchor до current включительно.

        Ошибки отдельных удалений не прерывают очистку.
        """
        await self._authorize(chat_id, actor_id, Capability.PURGE)
        if anchor_message_id is None:
            raise ClassificationAmbiguous("Reply to the first message to purge from.")

        deleted = failed = 0
        for message_id in range(anchor_message_id, current_message_id + 1):
            try:
                await self.platform.delete_message(chat_id, message_id)
                deleted += 1
            except PlatformRejected:
                failed += 1

        await self.modlog.log_mod_action(
            chat_id, "purge", None, reason=f"{anchor_message_id}..{current_message_id}", actor_id=actor_id
        )
        if failed:
            return ModerationResult(
                status=ResultStatus.PARTIAL,
                message=f"🧹 Purged {deleted} messages, {failed} could not be deleted.",
                action="purge",
            )
        return ModerationResult(status=ResultStatus.OK, message=f"🧹 Purged {deleted} messages.", action="purge")

    # ========================================================================
    # RULES / PANEL / TAG
    # ========================================================================

    async def _load_chat(self, chat_id: int) -> ChatConfig:
        chat = await self.store.load_chat_async(chat_id)
        return chat or ChatConfig(chat_id=chat_id)

    @moderation_action("rules")
    async def show_rules(self, chat_id: int, actor_id: int) -> ModerationResult:
        chat = await self._load_chat(chat_id)
        if not chat.rules:
            return ModerationResult(status=ResultStatus.OK, message="📜 No rules have been set.", action="rules")
        return ModerationResult(
            status=ResultStatus.OK,
            message=f"📜 Rules:\n{html.escape(chat.rules)}",
            action="rules",
        )

    @moderation_action("setrules")
    async def set_rules(self, chat_id: int, actor_id: int, rules_text: str) -> ModerationResult:
        await self._authorize(chat_id, actor_id, Capability.EDIT_RULES)
        await self.store.set_rules_async(chat_id, rules_text.strip())
        await self.modlog.log_mod_action(chat_id, "setrules", None, actor_id=actor_id)
        return ModerationResult(status=ResultStatus.OK, message="📜 Rules updated.", action="setrules")

    @moderation_action("panel")
    async def panel(self, chat_id: int, actor_id: int) -> ModerationResult:
        await self._authorize(chat_id, actor_id, Capability.CONFIGURE)
        return ModerationResult(status=ResultStatus.OK, message="🛡 Imperial control panel", action="panel")

    @moderation_action("configure")
    async def toggle_feature(self, chat_id: int, actor_id: int, key: str) -> ModerationResult:
        """Переключить функцию чата (antispam, welcome, captcha, fj)."""
        await self._authorize(chat_id, actor_id, Capability.CONFIGURE)
        field_name = TOGGLE_FIELDS.get(key)
        if field_name is None:
            raise ClassificationAmbiguous(f"Unknown setting: {key}")

        async with self.locks.hold(chat_id):
            chat = await self._load_chat(chat_id)
            enabled = not getattr(chat, field_name)
            if key == "fj" and enabled:
                channel = config.FORCE_JOIN or chat.force_join_channel
                if not channel:
                    raise ClassificationAmbiguous("No channel is configured for forced join.")
                await self.store.set_force_join_channel_async(chat_id, channel)
            await self.store.set_toggle_async(chat_id, field_name, enabled)
            await self.modlog.log_mod_action(
                chat_id, "configure", None, reason=f"{key}={'on' if enabled else 'off'}", actor_id=actor_id
            )
        return ModerationResult(status=ResultStatus.OK, message=toggle_label(key, enabled), action="configure")

    @moderation_action("tag")
    async def tag(self, chat_id: int, actor_id: int, text: str = "") -> ModerationResult:
        """Упомянуть всех администраторов чата с текстом объявления."""
        await self._authorize(chat_id, actor_id, Capability.TAG)
        admins = await self.platform.get_chat_admins(chat_id)
        mentions = " ".join(
            mention_html(admin.user_id, admin.name) for admin in admins if not admin.is_bot
        )
        lines = ["📣 " + html.escape(text.strip())] if text.strip() else ["📣"]
        lines.append(mentions)
        return ModerationResult(status=ResultStatus.OK, message="\n".join(lines), action="tag")
