# Copyright (c) 2025 sprowii
"""Тонкий адаптер над telegram.Bot для движка модерации.

Все ошибки Telegram превращаются в PlatformRejected с текстом от API,
чтобы движок мог показать причину пользователю.
"""
from dataclasses import dataclass
from typing import Awaitable, List, Optional, TypeVar, Union

from telegram import Bot, ChatPermissions, InlineKeyboardMarkup, ReplyParameters
from telegram.constants import ChatMemberStatus, ParseMode
from telegram.error import TelegramError

from emperor.logging_config import log
from emperor.moderation.errors import PlatformRejected
from emperor.security.data_protection import pseudonymize_chat_id, pseudonymize_id

T = TypeVar("T")

ChatRef = Union[int, str]

MUTED_PERMISSIONS = ChatPermissions(can_send_messages=False)

SEND_PERMISSIONS = ChatPermissions(
    can_send_messages=True,
    can_send_audios=True,
    can_send_documents=True,
    can_send_photos=True,
    can_send_videos=True,
    can_send_video_notes=True,
    can_send_voice_notes=True,
    can_send_polls=True,
    can_send_other_messages=True,
    can_add_web_page_previews=True,
)

ADMIN_STATUSES = frozenset({ChatMemberStatus.OWNER.value, ChatMemberStatus.ADMINISTRATOR.value})
CHANNEL_MEMBER_STATUSES = frozenset({
    ChatMemberStatus.MEMBER.value,
    ChatMemberStatus.ADMINISTRATOR.value,
    ChatMemberStatus.OWNER.value,
})
RESTRICTED_STATUS = ChatMemberStatus.RESTRICTED.value


@dataclass
class ChatAdmin:
    user_id: int
    name: str
    status: str
    is_bot: bool = False

    @property
    def is_creator(self) -> bool:
        return self.status == ChatMemberStatus.OWNER.value


class TelegramPlatform:
    """Возможности платформы, которыми пользуется движок."""

    def __init__(self, bot: Bot):
        self.bot = bot

    @property
    def bot_id(self) -> Optional[int]:
        try:
            return self.bot.id
        except RuntimeError:
            # Бот ещё не инициализирован (get_me не вызывался)
            return None

    async def _call(self, operation: str, awaitable: Awaitable[T]) -> T:
        try:
            return await awaitable
        except TelegramError as exc:
            log.warning(f"Telegram отклонил {operation}: {exc.message}")
            raise PlatformRejected(exc.message, operation) from exc

    async def restrict_member(
        self,
        chat_id: int,
        user_id: int,
        can_send: bool,
        until_ts: Optional[int] = None
    ) -> None:
        """Запретить (can_send=False) или вернуть право писать в чат."""
        permissions = SEND_PERMISSIONS if can_send else MUTED_PERMISSIONS
        await self._call(
            "restrict_member",
            self.bot.restrict_chat_member(
                chat_id=chat_id,
                user_id=user_id,
                permissions=permissions,
                until_date=until_ts or None,
            ),
        )
        log.debug(
            f"restrict_member can_send={can_send} user={pseudonymize_id(user_id)} "
            f"chat={pseudonymize_chat_id(chat_id)}"
        )

    async def ban_member(self, chat_id: int, user_id: int) -> None:
        await self._call("ban_member", self.bot.ban_chat_member(chat_id=chat_id, user_id=user_id))

    async def unban_member(self, chat_id: int, user_id: int) -> None:
        await self._call(
            "unban_member",
            self.bot.unban_chat_member(chat_id=chat_id, user_id=user_id, only_if_banned=True),
        )

    async def get_member_status(self, chat_id: ChatRef, user_id: int) -> str:
        member = await self._call(
            "get_member_status",
            self.bot.get_chat_member(chat_id=chat_id, user_id=user_id),
        )
        return str(member.status)

    async def get_chat_admins(self, chat_id: int) -> List[ChatAdmin]:
        members = await self._call(
            "get_chat_admins",
            self.bot.get_chat_administrators(chat_id=chat_id),
        )
        return [
            ChatAdmin(
                user_id=member.user.id,
                name=member.user.first_name or member.user.username or str(member.user.id),
                status=str(member.status),
                is_bot=member.user.is_bot,
            )
            for member in members
        ]

    async def delete_message(self, chat_id: int, message_id: int) -> None:
        await self._call(
            "delete_message",
            self.bot.delete_message(chat_id=chat_id, message_id=message_id),
        )

    async def send_message(
        self,
        chat_id: int,
        text: str,
        reply_markup: Optional[InlineKeyboardMarkup] = None,
        reply_to_message_id: Optional[int] = None
    ) -> int:
        message = await self._call(
            "send_message",
            self.bot.send_message(
                chat_id=chat_id,
                text=text,
                parse_mode=ParseMode.HTML,
                reply_markup=reply_markup,
                reply_parameters=ReplyParameters(message_id=reply_to_message_id) if reply_to_message_id else None,
            ),
        )
        return message.message_id
