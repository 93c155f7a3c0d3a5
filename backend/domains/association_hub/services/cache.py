"""
解析结果缓存

进程内、按时间失效的缓存，键为 (entity_type, entity_id)。
过期在读取时判断：过期条目视为未命中，保留到下次写入时被覆盖，不做后台清理。
同一键的并发未命中不做合并，各自完成一次完整解析。
"""

import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

from ..core.models import AssociationResult, EntityType

CacheKey = Tuple[str, str]


def cache_key(entity_type: EntityType, entity_id: str) -> CacheKey:
    return (entity_type.value, entity_id)


@dataclass(frozen=True)
class CacheEntry:
    """缓存条目，整体替换，不原地修改"""

    key: CacheKey
    value: AssociationResult
    stored_at: float
    ttl: float

    def is_fresh(self, now: float) -> bool:
        return now - self.stored_at < self.ttl


class ResultCache:
    """
    解析结果缓存

    Args:
        ttl_seconds: 有效期，0 表示永不命中
        clock: 时间源（秒），测试时可替换为可控时钟
    """

    def __init__(
        self,
        ttl_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[CacheKey, CacheEntry] = {}
        self._hits = 0
        self._misses = 0

    def get(self, key: CacheKey) -> Optional[AssociationResult]:
        entry = self._entries.get(key)
        if entry is None or not entry.is_fresh(self._clock()):
            self._misses += 1
            return None
        self._hits += 1
        return entry.value

    def put(self, key: CacheKey, value: AssociationResult) -> None:
        self._entries[key] = CacheEntry(
            key=key,
            value=value,
            stored_at=self._clock(),
            ttl=self.ttl_seconds,
        )

    def invalidate(self, key: CacheKey) -> bool:
        """移除单个条目，返回条目是否存在"""
        return self._entries.pop(key, None) is not None

    def invalidate_all(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def stats(self) -> Dict[str, int]:
        return {"entries": len(self._entries), "hits": self._hits, "misses": self._misses}
