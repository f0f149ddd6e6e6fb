# Copyright (c) 2025 sprowii
"""Модели данных для системы модерации."""
from dataclasses import dataclass, fields
from enum import Enum
from typing import Dict, Optional
import time
import uuid


_TOGGLES = ("welcome_enabled", "antispam_enabled", "captcha_enabled", "force_join_enabled")


@dataclass
class ChatConfig:
    """Настройки конкретного чата.

    Создаются, когда бота добавляют в чат. owner_id заполняется
    автоопределением создателя чата и больше не перезаписывается.
    """
    chat_id: int
    title: str = ""
    owner_id: Optional[int] = None
    rules: str = ""
    welcome_enabled: bool = True
    antispam_enabled: bool = True
    captcha_enabled: bool = True
    force_join_enabled: bool = False
    force_join_channel: str = ""

    def to_redis(self) -> Dict[str, str]:
        """Поля для HSET. owner_id не входит: он пишется только через HSETNX."""
        data = {
            "chat_id": str(self.chat_id),
            "title": self.title,
            "rules": self.rules,
            "force_join_channel": self.force_join_channel,
        }
        for name in _TOGGLES:
            data[name] = "1" if getattr(self, name) else "0"
        return data

    @classmethod
    def from_redis(cls, chat_id: int, raw: Dict[str, str]) -> "ChatConfig":
        known = {f.name for f in fields(cls)}
        kwargs = {}
        for key, value in raw.items():
            if key not in known or key == "chat_id":
                continue
            if key in _TOGGLES:
                kwargs[key] = value == "1"
            elif key == "owner_id":
                kwargs[key] = int(value) if value else None
            else:
                kwargs[key] = value
        return cls(chat_id=chat_id, **kwargs)

    @staticmethod
    def is_toggle(name: str) -> bool:
        return name in _TOGGLES


@dataclass
class WarnRecord:
    """Счётчик предупреждений пользователя в чате."""
    chat_id: int
    user_id: int
    count: int = 0
    last_reason: str = ""


@dataclass
class MuteRecord:
    """Локальное зеркало ограничения Telegram. Снимается платформой сама."""
    chat_id: int
    user_id: int
    until_ts: int

    def is_active(self, now: Optional[float] = None) -> bool:
        return self.until_ts > (now if now is not None else time.time())


@dataclass
class AuditEntry:
    """Запись журнала модерации. Только добавляется, никогда не меняется."""
    id: str
    chat_id: int
    action: str  # ban, unban, mute, auto-mute, warn, auto-ban, promote, purge, ...
    target_user_id: Optional[int]
    actor_id: Optional[int]  # None для автоматических действий
    reason: str
    timestamp: float
    auto: bool = False

    @classmethod
    def create(
        cls,
        chat_id: int,
        action: str,
        target_user_id: Optional[int],
        reason: str = "-",
        actor_id: Optional[int] = None,
        auto: bool = False
    ) -> "AuditEntry":
        """Создать запись с автоматическим ID и timestamp."""
        return cls(
            id=str(uuid.uuid4()),
            chat_id=chat_id,
            action=action,
            target_user_id=target_user_id,
            actor_id=actor_id,
            reason=reason,
            timestamp=time.time(),
            auto=auto,
        )


class ResultStatus(str, Enum):
    OK = "ok"
    DENIED = "denied"
    PROTECTED = "protected"
    REJECTED = "rejected"
    AMBIGUOUS = "ambiguous"
    PARTIAL = "partial"
    IGNORED = "ignored"
    ERROR = "error"


@dataclass
class ModerationResult:
    """Результат операции для ответа в чат."""
    status: ResultStatus
    message: str = ""
    action: Optional[str] = None
    target_user_id: Optional[int] = None
    warn_count: int = 0
    until_ts: Optional[int] = None

    @property
    def ok(self) -> bool:
        return self.status in (ResultStatus.OK, ResultStatus.PARTIAL)

    @classmethod
    def ignored(cls) -> "ModerationResult":
        return cls(status=ResultStatus.IGNORED)
