# Copyright (c) 2025 sprowii
"""Антиспам: повторяющиеся сообщения (флуд) и ссылки.

Окна флуда хранятся только в памяти, в ограниченном TTL/LRU кэше.
Само наказание выполняет ModerationEngine.
"""
import re
import time
from dataclasses import dataclass
from typing import Optional, Tuple

from emperor import config
from emperor.utils.cache import TTLCache

LINK_REGEX = re.compile(r"(https?://|t\.me/|telegram\.me/)", re.IGNORECASE)


@dataclass
class FloodWindow:
    """Последнее сообщение пользователя и число его повторов подряд."""
    last_text: str
    count: int
    last_ts: float


class FloodDetector:
    """Детектор одинаковых сообщений подряд.

    Сообщение считается повтором, если текст совпадает с предыдущим и
    пришёл меньше чем через window_sec после него.
    """

    def __init__(
        self,
        repeat_limit: int = config.FLOOD_REPEAT_LIMIT,
        window_sec: float = config.FLOOD_WINDOW_SEC,
        cache: Optional[TTLCache[Tuple[int, int], FloodWindow]] = None
    ):
        self.repeat_limit = repeat_limit
        self.window_sec = window_sec
        if cache is None:
            cache = TTLCache(config.FLOOD_CACHE_TTL_SEC, max_size=config.FLOOD_CACHE_SIZE)
        self._windows: TTLCache[Tuple[int, int], FloodWindow] = cache

    def register(self, chat_id: int, user_id: int, text: str, now: Optional[float] = None) -> bool:
        """Учесть сообщение. Возвращает True, если достигнут порог флуда.

        После срабатывания окно сбрасывается.
        """
        if now is None:
            now = time.time()
        key = (chat_id, user_id)
        window = self._windows.get(key)

        if window and window.last_text == text and now - window.last_ts < self.window_sec:
            window.count += 1
            window.last_ts = now
        else:
            window = FloodWindow(last_text=text, count=1, last_ts=now)
        self._windows.set(key, window)

        if window.count >= self.repeat_limit:
            self._windows.pop(key)
            return True
        return False

    def reset(self, chat_id: int, user_id: int) -> None:
        self._windows.pop((chat_id, user_id))

    def cleanup_expired(self) -> int:
        return self._windows.cleanup_expired()

    def __len__(self) -> int:
        return len(self._windows)


class LinkSpamDetector:

    def __init__(self, pattern: re.Pattern = LINK_REGEX):
        self.pattern = pattern

    def is_link_spam(self, text: Optional[str]) -> bool:
        return bool(text) and self.pattern.search(text) is not None
