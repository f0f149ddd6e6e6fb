# Copyright (c) 2025 sprowii
import html
import re
from typing import List, Optional

DURATION_TOKEN_RE = re.compile(r"^(\d+)([smhd])$", re.IGNORECASE)

_UNIT_SECONDS = {
    "s": 1,
    "m": 60,
    "h": 3600,
    "d": 86400,
}


def parse_duration(token: Optional[str]) -> Optional[int]:
    """Парсинг токена длительности (10s, 5m, 2h, 1d) в секунды.

    Returns:
        Количество секунд или None если формат неверный
    """
    if not token:
        return None
    match = DURATION_TOKEN_RE.match(token.strip())
    if not match:
        return None
    value = int(match.group(1))
    if value <= 0:
        return None
    return value * _UNIT_SECONDS[match.group(2).lower()]


def extract_duration(text: str) -> Optional[int]:
    """Найти первый токен длительности среди слов текста."""
    for part in text.split():
        seconds = parse_duration(part)
        if seconds is not None:
            return seconds
    return None


def human_duration(seconds: int) -> str:
    """Форматирование длительности: 90 -> "1m30s", 3600 -> "1h"."""
    if seconds < 60:
        return f"{seconds}s"
    minutes, rest = divmod(seconds, 60)
    if minutes < 60:
        return f"{minutes}m{rest}s" if rest else f"{minutes}m"
    hours, rest_min = divmod(minutes, 60)
    if hours < 24:
        return f"{hours}h{rest_min}m" if rest_min else f"{hours}h"
    days, rest_h = divmod(hours, 24)
    return f"{days}d{rest_h}h" if rest_h else f"{days}d"


def mention_html(user_id: int, name: Optional[str]) -> str:
    return f'<a href="tg://user?id={user_id}">{html.escape(name or str(user_id))}</a>'


def split_long_message(text: str, max_length: int = 4096) -> List[str]:
    if len(text) <= max_length:
        return [text]
    parts, current = [], ""
    for line in text.split("\n"):
        if len(current) + len(line) + 1 <= max_length:
            current += line + "\n"
        else:
            if current:
                parts.append(current.strip())
            current = line
    if current:
        parts.append(current.strip())
    return parts
