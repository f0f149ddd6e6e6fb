# Copyright (c) 2025 sprowii
"""Ошибки движка модерации.

Ни одна из них не фатальна: движок превращает их в ModerationResult.
"""
from typing import Optional


class ModerationError(Exception):
    """Базовая ошибка модерации. message показывается пользователю."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class AuthorizationDenied(ModerationError):
    """Не пройдена проверка возможности или иерархии."""


class TargetProtected(ModerationError):
    """Цель защищена: владелец чата, сам актор, бот или админ платформы."""


class ClassificationAmbiguous(ModerationError):
    """Команда распознана, но аргумент не понят (например, роль для promote)."""


class PlatformRejected(ModerationError):
    """Telegram отклонил вызов (нет прав у бота, пользователь не найден и т.п.)."""

    def __init__(self, message: str, operation: Optional[str] = None):
        super().__init__(message)
        self.operation = operation
