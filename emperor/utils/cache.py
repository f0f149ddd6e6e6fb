# Copyright (c) 2025 sprowii
"""Ограниченный in-memory кэш с TTL и LRU-вытеснением."""
import time
from collections import OrderedDict
from typing import Callable, Generic, Optional, Tuple, TypeVar

K = TypeVar("K")
V = TypeVar("V")


class TTLCache(Generic[K, V]):
    """Кэш с ограничением размера (LRU) и временем жизни записей.

    Безопасен для однопоточного asyncio: методы не содержат await.
    """

    def __init__(
        self,
        ttl_sec: float,
        max_size: int = 1000,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._ttl = ttl_sec
        self._max_size = max_size
        self._clock = clock
        self._data: "OrderedDict[K, Tuple[V, float]]" = OrderedDict()

    def get(self, key: K) -> Optional[V]:
        item = self._data.get(key)
        if item is None:
            return None
        value, stored_at = item
        if self._clock() - stored_at >= self._ttl:
            del self._data[key]
            return None
        self._data.move_to_end(key)
        return value

    def set(self, key: K, value: V) -> None:
        if key in self._data:
            self._data.move_to_end(key)
        self._data[key] = (value, self._clock())
        while len(self._data) > self._max_size:
            # Вытесняем давно не использованные записи
            self._data.popitem(last=False)

    def pop(self, key: K) -> Optional[V]:
        item = self._data.pop(key, None)
        return item[0] if item else None

    def cleanup_expired(self) -> int:
        """Удалить истёкшие записи. Возвращает количество удалённых."""
        now = self._clock()
        expired = [key for key, (_, stored_at) in self._data.items() if now - stored_at >= self._ttl]
        for key in expired:
            del self._data[key]
        return len(expired)

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, key: object) -> bool:
        return self.get(key) is not None  # type: ignore[arg-type]
