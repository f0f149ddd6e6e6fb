# Copyright (c) 2025 sprowii
"""Хранилище модерации в Redis.

Ключи:
- chat:{chat_id} - HASH настроек чата (owner_id пишется только через HSETNX)
- roles:{chat_id} - HASH user_id -> тег роли
- warns:{chat_id}:{user_id} - HASH count/last_reason
- mutes:{chat_id}:{user_id} - STRING с unix-временем окончания мута
- modlog:{chat_id} - LIST записей аудита (только RPUSH)
"""
import asyncio
import json
from dataclasses import asdict
from functools import partial
from typing import Any, Callable, Dict, List, Optional

import redis

from emperor.config import (
    CHAT_KEY_PREFIX,
    MODLOG_KEY_PREFIX,
    MUTES_KEY_PREFIX,
    REDIS_URL,
    ROLES_KEY_PREFIX,
    WARNS_KEY_PREFIX,
)
from emperor.logging_config import log
from emperor.moderation.models import AuditEntry, ChatConfig, MuteRecord, WarnRecord
from emperor.security.data_protection import decrypt_reason, encrypt_reason

# Запись о муте живёт в Redis ещё сутки после окончания, для истории
MUTE_RECORD_GRACE_SEC = 86400


class ModerationStore:
    """Обёртка над синхронным redis-клиентом.

    Синхронные методы выполняют запросы напрямую, *_async - через
    run_in_executor, чтобы не блокировать event loop.
    """

    def __init__(self, client: redis.Redis):
        self.client = client

    async def _run(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(func, *args, **kwargs))

    # ========================================================================
    # CHAT CONFIG
    # ========================================================================

    @staticmethod
    def _chat_key(chat_id: int) -> str:
        return f"{CHAT_KEY_PREFIX}{chat_id}"

    def upsert_chat(self, defaults: ChatConfig) -> ChatConfig:
        """Создать запись чата, если её нет, и обновить название.

        Существующие настройки и владелец не перезаписываются.
        """
        key = self._chat_key(defaults.chat_id)
        data = defaults.to_redis()
        with self.client.pipeline(transaction=True) as pipe:
            for field_name, value in data.items():
                if field_name != "title":
                    pipe.hsetnx(key, field_name, value)
            pipe.hset(key, "title", defaults.title)
            pipe.execute()
        return self.load_chat(defaults.chat_id)

    def load_chat(self, chat_id: int) -> Optional[ChatConfig]:
        raw = self.client.hgetall(self._chat_key(chat_id))
        if not raw:
            return None
        return ChatConfig.from_redis(chat_id, raw)

    def set_owner_if_absent(self, chat_id: int, owner_id: int) -> bool:
        """Записать владельца, только если он ещё не записан."""
        return bool(self.client.hsetnx(self._chat_key(chat_id), "owner_id", str(owner_id)))

    def set_rules(self, chat_id: int, rules: str) -> None:
        self.client.hset(self._chat_key(chat_id), "rules", rules)

    def set_toggle(self, chat_id: int, name: str, enabled: bool) -> None:
        if not ChatConfig.is_toggle(name):
            raise ValueError(f"Неизвестный переключатель: {name}")
        self.client.hset(self._chat_key(chat_id), name, "1" if enabled else "0")

    def set_force_join_channel(self, chat_id: int, channel: str) -> None:
        self.client.hset(self._chat_key(chat_id), "force_join_channel", channel)

    async def upsert_chat_async(self, defaults: ChatConfig) -> ChatConfig:
        return await self._run(self.upsert_chat, defaults)

    async def load_chat_async(self, chat_id: int) -> Optional[ChatConfig]:
        return await self._run(self.load_chat, chat_id)

    async def set_owner_if_absent_async(self, chat_id: int, owner_id: int) -> bool:
        return await self._run(self.set_owner_if_absent, chat_id, owner_id)

    async def set_rules_async(self, chat_id: int, rules: str) -> None:
        await self._run(self.set_rules, chat_id, rules)

    async def set_toggle_async(self, chat_id: int, name: str, enabled: bool) -> None:
        await self._run(self.set_toggle, chat_id, name, enabled)

    async def set_force_join_channel_async(self, chat_id: int, channel: str) -> None:
        await self._run(self.set_force_join_channel, chat_id, channel)

    # ========================================================================
    # ROLES
    # ========================================================================

    @staticmethod
    def _roles_key(chat_id: int) -> str:
        return f"{ROLES_KEY_PREFIX}{chat_id}"

    def get_role(self, chat_id: int, user_id: int) -> Optional[str]:
        return self.client.hget(self._roles_key(chat_id), str(user_id))

    def set_role(self, chat_id: int, user_id: int, role_tag: str) -> None:
        self.client.hset(self._roles_key(chat_id), str(user_id), role_tag)

    def delete_role(self, chat_id: int, user_id: int) -> bool:
        return self.client.hdel(self._roles_key(chat_id), str(user_id)) > 0

    def list_roles(self, chat_id: int) -> Dict[int, str]:
        raw = self.client.hgetall(self._roles_key(chat_id))
        return {int(user_id): tag for user_id, tag in raw.items()}

    async def get_role_async(self, chat_id: int, user_id: int) -> Optional[str]:
        return await self._run(self.get_role, chat_id, user_id)

    async def set_role_async(self, chat_id: int, user_id: int, role_tag: str) -> None:
        await self._run(self.set_role, chat_id, user_id, role_tag)

    async def delete_role_async(self, chat_id: int, user_id: int) -> bool:
        return await self._run(self.delete_role, chat_id, user_id)

    async def list_roles_async(self, chat_id: int) -> Dict[int, str]:
        return await self._run(self.list_roles, chat_id)

    # ========================================================================
    # WARNS
    # ========================================================================

    @staticmethod
    def _warns_key(chat_id: int, user_id: int) -> str:
        return f"{WARNS_KEY_PREFIX}{chat_id}:{user_id}"

    def incr_warn(self, chat_id: int, user_id: int, reason: str) -> int:
        """Атомарно увеличить счётчик. Возвращает значение после увеличения."""
        key = self._warns_key(chat_id, user_id)
        with self.client.pipeline(transaction=True) as pipe:
            pipe.hincrby(key, "count", 1)
            pipe.hset(key, "last_reason", reason)
            count, _ = pipe.execute()
        return int(count)

    def load_warn(self, chat_id: int, user_id: int) -> WarnRecord:
        raw = self.client.hgetall(self._warns_key(chat_id, user_id))
        return WarnRecord(
            chat_id=chat_id,
            user_id=user_id,
            count=max(0, int(raw.get("count", 0))),
            last_reason=raw.get("last_reason", ""),
        )

    def clear_warns(self, chat_id: int, user_id: int) -> int:
        """Сбросить предупреждения. Возвращает количество до сброса."""
        key = self._warns_key(chat_id, user_id)
        with self.client.pipeline(transaction=True) as pipe:
            pipe.hget(key, "count")
            pipe.delete(key)
            count, _ = pipe.execute()
        return int(count or 0)

    async def incr_warn_async(self, chat_id: int, user_id: int, reason: str) -> int:
        return await self._run(self.incr_warn, chat_id, user_id, reason)

    async def load_warn_async(self, chat_id: int, user_id: int) -> WarnRecord:
        return await self._run(self.load_warn, chat_id, user_id)

    async def clear_warns_async(self, chat_id: int, user_id: int) -> int:
        return await self._run(self.clear_warns, chat_id, user_id)

    # ========================================================================
    # MUTES
    # ========================================================================

    @staticmethod
    def _mute_key(chat_id: int, user_id: int) -> str:
        return f"{MUTES_KEY_PREFIX}{chat_id}:{user_id}"

    def set_mute(self, chat_id: int, user_id: int, until_ts: int) -> None:
        key = self._mute_key(chat_id, user_id)
        with self.client.pipeline(transaction=True) as pipe:
            pipe.set(key, str(until_ts))
            pipe.expireat(key, until_ts + MUTE_RECORD_GRACE_SEC)
            pipe.execute()

    def load_mute(self, chat_id: int, user_id: int) -> Optional[MuteRecord]:
        raw = self.client.get(self._mute_key(chat_id, user_id))
        if raw is None:
            return None
        return MuteRecord(chat_id=chat_id, user_id=user_id, until_ts=int(raw))

    def delete_mute(self, chat_id: int, user_id: int) -> bool:
        return self.client.delete(self._mute_key(chat_id, user_id)) > 0

    async def set_mute_async(self, chat_id: int, user_id: int, until_ts: int) -> None:
        await self._run(self.set_mute, chat_id, user_id, until_ts)

    async def load_mute_async(self, chat_id: int, user_id: int) -> Optional[MuteRecord]:
        return await self._run(self.load_mute, chat_id, user_id)

    async def delete_mute_async(self, chat_id: int, user_id: int) -> bool:
        return await self._run(self.delete_mute, chat_id, user_id)

    # ========================================================================
    # AUDIT LOG
    # ========================================================================

    @staticmethod
    def _modlog_key(chat_id: int) -> str:
        return f"{MODLOG_KEY_PREFIX}{chat_id}"

    def append_audit(self, entry: AuditEntry) -> None:
        data = asdict(entry)
        data["reason"] = encrypt_reason(entry.reason)
        self.client.rpush(self._modlog_key(entry.chat_id), json.dumps(data, ensure_ascii=False))

    def load_audit(
        self,
        chat_id: int,
        limit: int = 20,
        user_id: Optional[int] = None
    ) -> List[AuditEntry]:
        """Последние записи журнала, новые первыми.

        Args:
            chat_id: ID чата
            limit: Максимальное количество записей
            user_id: Если указан, фильтровать по целевому пользователю
        """
        # Загружаем больше записей если нужна фильтрация
        fetch_limit = limit * 5 if user_id else limit
        raw_values = self.client.lrange(self._modlog_key(chat_id), -fetch_limit, -1)

        entries: List[AuditEntry] = []
        for raw in reversed(raw_values):
            try:
                data = json.loads(raw)
                data["reason"] = decrypt_reason(data.get("reason", "")) or ""
                entry = AuditEntry(**data)
            except (json.JSONDecodeError, TypeError) as exc:
                log.warning(f"Некорректная запись журнала модерации: {exc}")
                continue
            if user_id is not None and entry.target_user_id != user_id:
                continue
            entries.append(entry)
            if len(entries) >= limit:
                break
        return entries

    def count_audit(self, chat_id: int) -> int:
        return self.client.llen(self._modlog_key(chat_id))

    async def append_audit_async(self, entry: AuditEntry) -> None:
        await self._run(self.append_audit, entry)


_store: Optional[ModerationStore] = None


def get_store() -> ModerationStore:
    """Глобальное хранилище поверх REDIS_URL (подключение ленивое)."""
    global _store
    if _store is None:
        _store = ModerationStore(redis.Redis.from_url(REDIS_URL, decode_responses=True))
    return _store
