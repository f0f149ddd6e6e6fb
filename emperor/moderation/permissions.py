# Copyright (c) 2025 sprowii
"""Определение эффективной роли пользователя в чате.

Порядок: записанный владелец -> QUEEN из хранилища -> админ Telegram
(CONSUL) -> сохранённая роль -> CITIZEN.

Статус админа кэшируется на 5 минут. Ошибки Telegram не кэшируются и
никогда не повышают роль.
"""
from typing import Optional, Tuple

from emperor import config
from emperor.logging_config import log
from emperor.moderation.errors import PlatformRejected
from emperor.moderation.platform import ADMIN_STATUSES, TelegramPlatform
from emperor.moderation.roles import Role
from emperor.moderation.storage import ModerationStore
from emperor.security.data_protection import pseudonymize_chat_id, pseudonymize_id
from emperor.utils.cache import TTLCache


class RoleResolver:

    def __init__(
        self,
        store: ModerationStore,
        platform: TelegramPlatform,
        admin_cache: Optional[TTLCache[Tuple[int, int], bool]] = None
    ):
        self.store = store
        self.platform = platform
        if admin_cache is None:
            admin_cache = TTLCache(config.ADMIN_CACHE_TTL, max_size=config.ADMIN_CACHE_SIZE)
        self._admin_cache: TTLCache[Tuple[int, int], bool] = admin_cache

    async def resolve_role(self, chat_id: int, user_id: int) -> Role:
        """Эффективная роль пользователя.

        Args:
            chat_id: ID чата
            user_id: ID пользователя

        Returns:
            Role, при любой неопределённости - самая низкая из возможных
        """
        chat = await self.store.load_chat_async(chat_id)
        if chat and chat.owner_id == user_id:
            return Role.EMPEROR

        stored = Role.from_tag(await self.store.get_role_async(chat_id, user_id))
        if stored == Role.QUEEN:
            return Role.QUEEN

        try:
            if await self.is_platform_admin(chat_id, user_id):
                return Role.CONSUL
        except PlatformRejected:
            # Не смогли проверить - используем только сохранённые данные
            pass

        return stored

    async def is_platform_admin(self, chat_id: int, user_id: int) -> bool:
        """Является ли пользователь создателем или администратором чата.

        Raises:
            PlatformRejected: Telegram не ответил; результат не кэшируется
        """
        key = (chat_id, user_id)
        cached = self._admin_cache.get(key)
        if cached is not None:
            return cached

        try:
            status = await self.platform.get_member_status(chat_id, user_id)
        except PlatformRejected as exc:
            log.error(
                f"Ошибка проверки статуса админа для {pseudonymize_id(user_id)} "
                f"в чате {pseudonymize_chat_id(chat_id)}: {exc.message}"
            )
            raise

        is_admin = status in ADMIN_STATUSES
        self._admin_cache.set(key, is_admin)
        return is_admin

    async def ensure_owner(self, chat_id: int) -> Optional[int]:
        """Определить создателя чата и записать его владельцем.

        Владелец записывается только если ещё не был записан.
        Возвращает ID записанного владельца (или None).
        """
        chat = await self.store.load_chat_async(chat_id)
        if chat and chat.owner_id is not None:
            return chat.owner_id

        try:
            admins = await self.platform.get_chat_admins(chat_id)
        except PlatformRejected:
            return None

        creator = next((admin for admin in admins if admin.is_creator), None)
        if creator is None:
            return None

        if await self.store.set_owner_if_absent_async(chat_id, creator.user_id):
            log.info(
                f"Владелец чата {pseudonymize_chat_id(chat_id)} определён: "
                f"{pseudonymize_id(creator.user_id)}"
            )
        chat = await self.store.load_chat_async(chat_id)
        return chat.owner_id if chat else None

    def cleanup_expired_cache(self) -> int:
        """Очистить истёкшие записи кэша. Возвращает количество удалённых."""
        return self._admin_cache.cleanup_expired()
