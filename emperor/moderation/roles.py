# Copyright (c) 2025 sprowii
"""Иерархия ролей и матрица возможностей.

Ранг роли задаётся значением IntEnum: чем больше, тем выше.
EMPEROR - владелец чата, QUEEN - соправитель с равными полномочиями,
CONSUL - доверенный уровень, выдаваемый администраторам Telegram.
"""
import re
from enum import Enum, IntEnum
from typing import Dict, FrozenSet, List, Optional, Pattern, Tuple


class Role(IntEnum):
    CITIZEN = 0
    BARON = 1
    DUKE = 2
    PRINCESS = 3
    PRINCE = 4
    KNIGHT = 5
    CONSUL = 6
    QUEEN = 7
    EMPEROR = 8

    @property
    def tag(self) -> str:
        return self.name.lower()

    @classmethod
    def from_tag(cls, tag: Optional[str]) -> "Role":
        """Роль по строковому тегу из хранилища. Неизвестный тег = CITIZEN."""
        if not tag:
            return cls.CITIZEN
        try:
            return cls[tag.strip().upper()]
        except KeyError:
            return cls.CITIZEN


class Capability(str, Enum):
    BAN = "ban"
    UNBAN = "unban"
    MUTE = "mute"
    UNMUTE = "unmute"
    WARN = "warn"
    UNWARN = "unwarn"
    PURGE = "purge"
    PROMOTE = "promote"
    DEMOTE = "demote"
    VIEW_RULES = "view_rules"
    EDIT_RULES = "edit_rules"
    CONFIGURE = "configure"
    TAG = "tag"


# Роли, действующие на кого угодно без сравнения рангов
SOVEREIGN_ROLES: FrozenSet[Role] = frozenset({Role.EMPEROR, Role.QUEEN})


_BASE = frozenset({Capability.VIEW_RULES})
_NOBLE = _BASE | {Capability.BAN, Capability.MUTE, Capability.WARN}
_TRUSTED = _NOBLE | {
    Capability.UNBAN,
    Capability.UNMUTE,
    Capability.UNWARN,
    Capability.PURGE,
    Capability.EDIT_RULES,
    Capability.CONFIGURE,
    Capability.TAG,
}
_SOVEREIGN = _TRUSTED | {Capability.PROMOTE, Capability.DEMOTE}

ROLE_CAPABILITIES: Dict[Role, FrozenSet[Capability]] = {
    Role.CITIZEN: _BASE,
    Role.BARON: _NOBLE,
    Role.DUKE: _NOBLE,
    Role.PRINCESS: _NOBLE,
    Role.PRINCE: _NOBLE,
    Role.KNIGHT: _NOBLE,
    Role.CONSUL: _TRUSTED,
    Role.QUEEN: _SOVEREIGN,
    Role.EMPEROR: _SOVEREIGN,
}

ROLE_LABELS: Dict[Role, Tuple[str, str]] = {
    Role.EMPEROR: ("👑 امپراتور", "Emperor"),
    Role.QUEEN: ("👸 ملکه", "Queen"),
    Role.CONSUL: ("👮 کنسول", "Consul"),
    Role.KNIGHT: ("⚔️ شوالیه", "Knight"),
    Role.PRINCE: ("🤴 شاهزاده", "Prince"),
    Role.PRINCESS: ("👸 پرنسس", "Princess"),
    Role.DUKE: ("🎖 دوک", "Duke"),
    Role.BARON: ("🏵 بارون", "Baron"),
    Role.CITIZEN: ("👥 شهروند", "Citizen"),
}

# Роли, которые можно назначить командой promote. Порядок важен:
# princess проверяется раньше prince.
_PROMOTABLE_KEYWORDS: List[Tuple[Role, Pattern[str]]] = [
    (Role.QUEEN, re.compile(r"\bqueen\b|ملکه", re.IGNORECASE)),
    (Role.KNIGHT, re.compile(r"\bknight\b|شوالیه", re.IGNORECASE)),
    (Role.PRINCESS, re.compile(r"\bprincess\b|پرنسس", re.IGNORECASE)),
    (Role.PRINCE, re.compile(r"\bprince\b|شاهزاده", re.IGNORECASE)),
    (Role.DUKE, re.compile(r"\bduke\b|دوک", re.IGNORECASE)),
    (Role.BARON, re.compile(r"\bbaron\b|بارون", re.IGNORECASE)),
    (Role.CITIZEN, re.compile(r"\bcitizen\b|شهروند", re.IGNORECASE)),
]


def has_capability(role: Role, capability: Capability) -> bool:
    return capability in ROLE_CAPABILITIES.get(role, _BASE)


def can_act(actor: Role, target: Optional[Role], allow_equal: bool = False) -> bool:
    """Может ли роль actor применять действие к роли target.

    EMPEROR и QUEEN действуют на кого угодно. Остальные - только на
    строго младший ранг, либо на равный при allow_equal.
    """
    if target is None:
        target = Role.CITIZEN
    if actor in SOVEREIGN_ROLES:
        return True
    if allow_equal:
        return actor >= target
    return actor > target


def find_role_token(text: str) -> Optional[Role]:
    """Найти в тексте команды название назначаемой роли (FA/EN)."""
    for role, pattern in _PROMOTABLE_KEYWORDS:
        if pattern.search(text):
            return role
    return None


def role_label(role: Role) -> str:
    fa, en = ROLE_LABELS[role]
    return f"{fa} ({en})"
