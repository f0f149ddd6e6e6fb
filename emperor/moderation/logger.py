# Copyright (c) 2025 sprowii
"""Журнал действий модерации.

БЕЗОПАСНОСТЬ:
- В Redis причина хранится зашифрованной (если задан DATA_ENCRYPTION_KEY)
- В application logs используются псевдонимы ID
"""
from typing import Optional

import redis

from emperor.logging_config import log
from emperor.moderation.models import AuditEntry
from emperor.moderation.storage import ModerationStore
from emperor.security.data_protection import safe_log_action


class ModLogger:
    """Записывает действия в журнал чата (modlog:{chat_id}) и в лог приложения."""

    def __init__(self, store: ModerationStore):
        self.store = store

    async def log_action(self, entry: AuditEntry) -> None:
        """Добавить запись в журнал.

        Ошибка Redis не отменяет уже выполненное действие: она только
        логируется.
        """
        try:
            await self.store.append_audit_async(entry)
        except redis.RedisError as exc:
            log.error(f"Failed to save mod action to Redis: {exc}")
        log.info(safe_log_action(
            entry.action,
            entry.target_user_id,
            entry.chat_id,
            entry.actor_id if not entry.auto else None,
            entry.reason,
        ))

    async def log_mod_action(
        self,
        chat_id: int,
        action: str,
        target_user_id: Optional[int],
        reason: str = "-",
        actor_id: Optional[int] = None,
        auto: bool = False
    ) -> AuditEntry:
        """Создать AuditEntry и записать её.

        Args:
            chat_id: ID чата
            action: Тип действия (ban, mute, auto-ban, ...)
            target_user_id: ID цели (None для purge)
            reason: Причина
            actor_id: ID модератора (None для автоматических действий)
            auto: True если действие автоматическое
        """
        entry = AuditEntry.create(
            chat_id=chat_id,
            action=action,
            target_user_id=target_user_id,
            reason=reason,
            actor_id=actor_id,
            auto=auto,
        )
        await self.log_action(entry)
        return entry
