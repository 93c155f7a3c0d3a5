"""
实体加载（hydration）

把关联边另一端的实体 ID 换成完整的实体记录。

- 只加载核心类型（公司、门店、联系人、商机、销售人员），任务不在此加载
- 平铺集合按 batch_size 分批做多键查询，各批结果拼接
- 销售人员、门店逐个定位
- 每个类别是独立的异步任务，各自有超时；出错或超时的类别
  标记为 failed 并返回空列表，不影响其他类别，也不向调用方抛出
"""

import asyncio
from collections import OrderedDict
from typing import Dict, Iterable, Iterator, List, Sequence

from domains.crm_core.documents import MAX_IN_QUERY_KEYS, Document
from domains.crm_core.logging import get_logger

from ..core.models import (
    ESSENTIAL_TYPES,
    PLURAL_NAMES,
    CategoryLoad,
    Edge,
    EntityType,
    HydratedEntities,
)
from ..core.store import EntityStore

logger = get_logger(__name__)


def chunked(items: Sequence[str], size: int) -> Iterator[List[str]]:
    """按固定大小切分"""
    for start in range(0, len(items), size):
        yield list(items[start:start + size])


class EntityHydrator:
    """
    实体加载器

    Args:
        entities: 实体存储层
        batch_size: 单次多键查询的 ID 数上限
        timeout: 单个类别的加载超时（秒）
    """

    def __init__(
        self,
        entities: EntityStore,
        batch_size: int = MAX_IN_QUERY_KEYS,
        timeout: float = 10.0,
    ):
        self.entities = entities
        self.batch_size = min(batch_size, MAX_IN_QUERY_KEYS)
        self.timeout = timeout

    @staticmethod
    def collect_ids(
        edges: Iterable[Edge],
        entity_type: EntityType,
        entity_id: str,
    ) -> Dict[EntityType, List[str]]:
        """
        按类型收集需要加载的实体 ID

        取每条边上不是被解析实体的那一端，去重并保持出现顺序。
        """
        collected: Dict[EntityType, "OrderedDict[str, None]"] = {
            t: OrderedDict() for t in ESSENTIAL_TYPES
        }
        for edge in edges:
            other_type, other_id = edge.other_end(entity_type, entity_id)
            if other_type not in collected:
                continue
            if not isinstance(other_id, str) or not other_id.strip():
                continue
            collected[other_type][other_id] = None
        return {t: list(ids) for t, ids in collected.items() if ids}

    async def hydrate(
        self,
        edges: Iterable[Edge],
        entity_type: EntityType,
        entity_id: str,
    ) -> HydratedEntities:
        """并发加载所有类别，等待全部完成（含超时降级的类别）"""
        ids_by_type = self.collect_ids(edges, entity_type, entity_id)

        loads = await asyncio.gather(
            *(self._load_category(t, ids_by_type.get(t, [])) for t in ESSENTIAL_TYPES)
        )

        result = {t.plural: load for t, load in zip(ESSENTIAL_TYPES, loads)}
        result[PLURAL_NAMES[EntityType.TASK]] = CategoryLoad.empty()
        return HydratedEntities(loads=result)

    async def _load_category(self, entity_type: EntityType, ids: List[str]) -> CategoryLoad:
        if not ids:
            return CategoryLoad.empty()

        try:
            items = await asyncio.wait_for(self._fetch(entity_type, ids), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "hydration_category_timeout",
                category=entity_type.plural,
                requested=len(ids),
                timeout=self.timeout,
            )
            return CategoryLoad.failed(f"timeout after {self.timeout}s")
        except Exception as e:
            logger.warning(
                "hydration_category_failed",
                category=entity_type.plural,
                requested=len(ids),
                error=str(e),
                error_type=type(e).__name__,
            )
            return CategoryLoad.failed(str(e) or type(e).__name__)

        return CategoryLoad.ok(items)

    async def _fetch(self, entity_type: EntityType, ids: List[str]) -> List[Document]:
        locator = self.entities.locator(entity_type)

        if not locator.batchable:
            return await asyncio.to_thread(locator.locate_many, ids)

        results: List[Document] = []
        for batch in chunked(ids, self.batch_size):
            results.extend(await asyncio.to_thread(locator.locate_many, batch))
        return results
