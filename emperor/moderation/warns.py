# Copyright (c) 2025 sprowii
"""Система предупреждений с эскалацией до бана.

На пороге (3 предупреждения) пользователь банится, счётчик сбрасывается.
Сам бан выполняет движок действий, здесь только счётчик и решение.
"""
from dataclasses import dataclass
from enum import Enum

from emperor import config
from emperor.logging_config import log
from emperor.moderation.storage import ModerationStore
from emperor.security.data_protection import pseudonymize_chat_id, pseudonymize_id


class WarnEscalation(Enum):
    """Результат эскалации после добавления предупреждения."""
    NONE = "none"
    BAN = "ban"


@dataclass
class WarnResult:
    """Результат добавления предупреждения.

    Attributes:
        total_warns: Количество предупреждений после добавления
        escalation: NONE или BAN
    """
    total_warns: int
    escalation: WarnEscalation
    threshold: int = config.WARN_BAN_THRESHOLD


class WarnSystem:

    def __init__(self, store: ModerationStore, threshold: int = config.WARN_BAN_THRESHOLD):
        self.store = store
        self.threshold = threshold

    def _determine_escalation(self, warn_count: int) -> WarnEscalation:
        if warn_count >= self.threshold:
            return WarnEscalation.BAN
        return WarnEscalation.NONE

    async def add_warn_async(self, chat_id: int, user_id: int, reason: str) -> WarnResult:
        """Атомарно добавить предупреждение и определить эскалацию."""
        total = await self.store.incr_warn_async(chat_id, user_id, reason)
        escalation = self._determine_escalation(total)

        log.info(
            f"Warn added: chat={pseudonymize_chat_id(chat_id)}, user={pseudonymize_id(user_id)}, "
            f"total={total}, escalation={escalation.value}"
        )
        return WarnResult(total_warns=total, escalation=escalation, threshold=self.threshold)

    async def clear_warns_async(self, chat_id: int, user_id: int) -> int:
        """Сбросить предупреждения. Возвращает количество до сброса."""
        count = await self.store.clear_warns_async(chat_id, user_id)
        log.info(f"Cleared {count} warns for user {pseudonymize_id(user_id)}")
        return count


def format_warn_counter(count: int, threshold: int = config.WARN_BAN_THRESHOLD) -> str:
    return f"{count}/{threshold}"
