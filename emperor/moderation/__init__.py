# Copyright (c) 2025 sprowii
"""Движок модерации и разграничения доступа.

Компоненты:
- ModerationController: Центральная точка входа для событий чата
- RoleResolver: Эффективная роль пользователя
- ModerationEngine: Действия модерации (ban, mute, warn, promote, purge, ...)
- WarnSystem: Предупреждения с эскалацией до бана
- FloodDetector, LinkSpamDetector: Антиспам
- AdmissionGate: Обязательная подписка и captcha для новичков
- ModLogger: Журнал действий модерации
"""

from emperor.moderation.actions import ModerationEngine, Target
from emperor.moderation.admission import AdmissionGate, AdmissionSession, AdmissionState
from emperor.moderation.classifier import Command, Intent, classify
from emperor.moderation.controller import (
    IncomingMessage,
    ModerationController,
    get_moderation_controller,
    init_moderation_controller,
)
from emperor.moderation.errors import (
    AuthorizationDenied,
    ClassificationAmbiguous,
    ModerationError,
    PlatformRejected,
    TargetProtected,
)
from emperor.moderation.logger import ModLogger
from emperor.moderation.models import AuditEntry, ChatConfig, ModerationResult, MuteRecord, ResultStatus, WarnRecord
from emperor.moderation.permissions import RoleResolver
from emperor.moderation.roles import Capability, Role, can_act, has_capability
from emperor.moderation.spam import FloodDetector, LinkSpamDetector
from emperor.moderation.warns import WarnEscalation, WarnResult, WarnSystem

__all__ = [
    # Controller
    "ModerationController",
    "IncomingMessage",
    "get_moderation_controller",
    "init_moderation_controller",
    # Roles
    "Role",
    "Capability",
    "RoleResolver",
    "can_act",
    "has_capability",
    # Engine
    "ModerationEngine",
    "Target",
    "Command",
    "Intent",
    "classify",
    # Errors
    "ModerationError",
    "AuthorizationDenied",
    "TargetProtected",
    "PlatformRejected",
    "ClassificationAmbiguous",
    # Models
    "ChatConfig",
    "WarnRecord",
    "MuteRecord",
    "AuditEntry",
    "ModerationResult",
    "ResultStatus",
    # Warns
    "WarnSystem",
    "WarnResult",
    "WarnEscalation",
    # Spam
    "FloodDetector",
    "LinkSpamDetector",
    # Admission
    "AdmissionGate",
    "AdmissionSession",
    "AdmissionState",
    # Logger
    "ModLogger",
]
