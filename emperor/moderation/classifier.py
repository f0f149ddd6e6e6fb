# Copyright (c) 2025 sprowii
"""Распознавание команд модерации в обычном тексте (FA/EN).

Команды пишутся без слеша, ответом на сообщение цели: "ban", "mute 10m",
"promote knight", "تبعید", "سکوت 10m" и т.д.

Порядок проверки важен: "unban"/"رفع تبعید" содержит ключевое слово
бана, "set rules" - слово "rules".
"""
import re
from dataclasses import dataclass
from enum import Enum
from typing import List, Pattern, Tuple


class Intent(str, Enum):
    BAN = "ban"
    UNBAN = "unban"
    MUTE = "mute"
    UNMUTE = "unmute"
    WARN = "warn"
    UNWARN = "unwarn"
    PROMOTE = "promote"
    DEMOTE = "demote"
    PURGE = "purge"
    PANEL = "panel"
    SHOW_RULES = "rules"
    SET_RULES = "setrules"
    TAG = "tag"
    NONE = "none"


# Намерения, которым нужна цель (ответ на сообщение)
TARGETED_INTENTS = frozenset({
    Intent.BAN,
    Intent.UNBAN,
    Intent.MUTE,
    Intent.UNMUTE,
    Intent.WARN,
    Intent.UNWARN,
    Intent.PROMOTE,
    Intent.DEMOTE,
})


def _kw(*patterns: str) -> Pattern[str]:
    return re.compile("|".join(patterns), re.IGNORECASE)


_KEYWORDS: List[Tuple[Intent, Pattern[str]]] = [
    (Intent.SET_RULES, _kw(r"\bset\s?rules\b", r"تنظیم\s?قوانین")),
    (Intent.TAG, _kw(r"^\s*(?:tag\b|تگ)")),
    (Intent.PANEL, _kw(r"\bpanel\b", r"پنل")),
    (Intent.SHOW_RULES, _kw(r"\brules\b", r"قوانین")),
    (Intent.PROMOTE, _kw(r"\bpromote\b", r"ارتقا", r"تنظیم")),
    (Intent.DEMOTE, _kw(r"\bdemote\b", r"تنزل", r"کاهش\s?رتبه")),
    (Intent.UNBAN, _kw(r"\bunban\b", r"آزاد\s?سازی", r"رفع\s?بن", r"رفع\s?تبعید")),
    (Intent.BAN, _kw(r"\bban\b", r"تبعید")),
    (Intent.UNMUTE, _kw(r"\bunmute\b", r"رفع\s?سکوت", r"آزاد\s?از\s?سکوت")),
    (Intent.MUTE, _kw(r"\bmute\b", r"سکوت", r"میوت")),
    (Intent.UNWARN, _kw(r"\bunwarn\b", r"حذف\s?اخطار", r"ریست\s?اخطار")),
    (Intent.WARN, _kw(r"\bwarn\b", r"اخطار")),
    (Intent.PURGE, _kw(r"\bpurge\b", r"پاکسازی", r"پاک\s?کردن")),
]

_ARGUMENT_PREFIXES = {
    Intent.SET_RULES: _kw(r"^\s*(?:set\s?rules|تنظیم\s?قوانین)"),
    Intent.TAG: _kw(r"^\s*(?:tag|تگ)"),
}


@dataclass
class Command:
    intent: Intent
    text: str
    # Текст после ключевого слова (для setrules и tag)
    argument: str = ""

    @property
    def needs_target(self) -> bool:
        return self.intent in TARGETED_INTENTS


def classify(text: str) -> Command:
    """Определить намерение по тексту сообщения."""
    text = (text or "").strip()
    if not text:
        return Command(Intent.NONE, text)

    for intent, pattern in _KEYWORDS:
        if pattern.search(text):
            argument = ""
            prefix = _ARGUMENT_PREFIXES.get(intent)
            if prefix is not None:
                argument = prefix.sub("", text, count=1).strip()
            return Command(intent, text, argument)

    return Command(Intent.NONE, text)
