"""
统一关联解析

对外唯一入口。解析流程:
1. 查缓存，命中直接返回
2. 并发读取显式关联（source 侧 + target 侧）和实体文档，并从文档抽取隐式关联
3. 合并去重
4. 加载关联实体详情
5. 统计、写缓存、返回

显式关联表或实体文档读取失败时抛出 StoreUnavailableError；
实体详情加载失败只影响对应类别，不抛出。
"""

import asyncio
import dataclasses
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from domains.core.exceptions import (
    InvalidEntityTypeError,
    StoreUnavailableError,
    ValidationError,
)
from domains.crm_core.documents import DocumentStore
from domains.crm_core.logging import get_logger
from domains.crm_core.settings import ResolverSettings

from ..core.models import (
    AssociationAction,
    AssociationKind,
    AssociationResult,
    Edge,
    EntityType,
    ExplicitEdge,
    Strength,
)
from ..core.store import EdgeStore, EntityStore
from .cache import CacheKey, ResultCache, cache_key
from .extractor import ImplicitEdgeExtractor
from .hydrator import EntityHydrator
from .merger import merge_edges
from .summarizer import summarize

logger = get_logger(__name__)


def _coerce_entity_type(value: Any) -> EntityType:
    if isinstance(value, EntityType):
        return value
    try:
        return EntityType(value)
    except ValueError:
        raise InvalidEntityTypeError(value) from None


def _coerce_enum(enum_cls, value: Any, field: str):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        choices = ", ".join(m.value for m in enum_cls)
        raise ValidationError(f"{field} 取值无效: {value}（可选: {choices}）", field=field) from None


def _require_id(value: Any, field: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} 不能为空", field=field)
    return value


class AssociationResolver:
    """
    关联解析器（单租户）

    Args:
        edge_store: 显式关联存储
        entity_store: 实体存储
        cache: 解析结果缓存
        extractor: 隐式关联抽取器
        hydrator: 实体加载器
        settings: 解析器配置
        user_id: 执行变更的用户，写入显式关联的 createdBy/updatedBy

    使用示例:
        resolver = AssociationResolver(EdgeStore(docs, "t1"), EntityStore(docs, "t1"))
        result = await resolver.resolve(EntityType.DEAL, "D1")
    """

    def __init__(
        self,
        edge_store: EdgeStore,
        entity_store: EntityStore,
        cache: Optional[ResultCache] = None,
        extractor: Optional[ImplicitEdgeExtractor] = None,
        hydrator: Optional[EntityHydrator] = None,
        settings: Optional[ResolverSettings] = None,
        user_id: Optional[str] = None,
    ):
        self.settings = settings or ResolverSettings()
        self.edge_store = edge_store
        self.entity_store = entity_store
        self.cache = cache if cache is not None else ResultCache(self.settings.cache_ttl_seconds)
        self.extractor = extractor or ImplicitEdgeExtractor()
        self.hydrator = hydrator or EntityHydrator(
            entity_store,
            batch_size=self.settings.batch_size,
            timeout=self.settings.hydration_timeout_seconds,
        )
        self.user_id = user_id
        self._in_flight: Dict[CacheKey, "asyncio.Task[AssociationResult]"] = {}

    @property
    def tenant_id(self) -> str:
        return self.edge_store.tenant_id

    # ==================== 解析 ====================

    async def resolve(self, entity_type: Any, entity_id: str) -> AssociationResult:
        """
        解析实体的全部关联

        Raises:
            InvalidEntityTypeError: 实体类型无效
            ValidationError: 实体 ID 为空
            StoreUnavailableError: 关联表或实体文档读取失败
        """
        entity_type = _coerce_entity_type(entity_type)
        entity_id = _require_id(entity_id, "entity_id")
        key = cache_key(entity_type, entity_id)

        cached = self.cache.get(key)
        if cached is not None:
            logger.debug("association_cache_hit", entity_type=entity_type.value, entity_id=entity_id)
            return cached

        if not self.settings.coalesce_requests:
            return await self._resolve_uncached(entity_type, entity_id, key)

        # 共享解析作为独立任务运行，单个调用方被取消不影响其他等待者
        task = self._in_flight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._resolve_uncached(entity_type, entity_id, key))
            self._in_flight[key] = task
            task.add_done_callback(lambda t: self._finish_in_flight(key, t))
        return await asyncio.shield(task)

    def _finish_in_flight(self, key: CacheKey, task: "asyncio.Task[AssociationResult]") -> None:
        if self._in_flight.get(key) is task:
            del self._in_flight[key]
        if not task.cancelled():
            # 所有等待者都已取消时避免 "exception was never retrieved"
            task.exception()

    async def _resolve_uncached(
        self,
        entity_type: EntityType,
        entity_id: str,
        key: CacheKey,
    ) -> AssociationResult:
        try:
            explicit, implicit = await asyncio.gather(
                asyncio.to_thread(self.edge_store.find_by_source_or_target, entity_type, entity_id),
                self._implicit_edges(entity_type, entity_id),
            )
        except StoreUnavailableError as e:
            logger.error(
                "association_resolve_failed",
                entity_type=entity_type.value,
                entity_id=entity_id,
                store=e.store_name,
                error=e.message,
            )
            raise StoreUnavailableError(
                e.store_name,
                f"解析 {entity_type.value}:{entity_id} 的关联失败: {e.message}",
                details={
                    "store": e.store_name,
                    "entity_type": entity_type.value,
                    "entity_id": entity_id,
                },
                cause=e,
            ) from e

        edges = merge_edges([explicit, implicit])
        entities = await self.hydrator.hydrate(edges, entity_type, entity_id)

        result = AssociationResult(
            entity_type=entity_type,
            entity_id=entity_id,
            edges=tuple(edges),
            entities=entities,
            summary=summarize(edges),
            resolved_at=datetime.now(timezone.utc),
        )
        self.cache.put(key, result)

        logger.info(
            "association_resolved",
            tenant_id=self.tenant_id,
            entity_type=entity_type.value,
            entity_id=entity_id,
            explicit=len(explicit),
            implicit=len(implicit),
            edges=len(edges),
        )
        return result

    async def _implicit_edges(self, entity_type: EntityType, entity_id: str) -> List[Edge]:
        if not self.extractor.has_rule(entity_type):
            return []
        document = await asyncio.to_thread(self.entity_store.get_by_id, entity_type, entity_id)
        return self.extractor.extract(entity_type, entity_id, document)

    # ==================== 查询 ====================

    async def query(
        self,
        entity_type: Any,
        entity_id: str,
        target_types: Optional[Iterable[Any]] = None,
        kinds: Optional[Iterable[Any]] = None,
        strengths: Optional[Iterable[Any]] = None,
        limit: Optional[int] = None,
    ) -> AssociationResult:
        """
        按条件过滤解析结果

        过滤条件作用在边上（另一端的实体类型、关联语义、强度），
        统计按过滤后的边重新计算，实体详情保持不变。
        """
        if limit is not None and limit < 0:
            raise ValidationError("limit 不能为负数", field="limit")

        result = await self.resolve(entity_type, entity_id)
        if target_types is None and kinds is None and strengths is None and limit is None:
            return result

        allowed_types = {_coerce_entity_type(t) for t in target_types} if target_types is not None else None
        allowed_kinds = {_coerce_enum(AssociationKind, k, "kinds") for k in kinds} if kinds is not None else None
        allowed_strengths = {_coerce_enum(Strength, s, "strengths") for s in strengths} if strengths is not None else None

        edges = []
        for edge in result.edges:
            other_type, _ = edge.other_end(result.entity_type, result.entity_id)
            if allowed_types is not None and other_type not in allowed_types:
                continue
            if allowed_kinds is not None and edge.kind not in allowed_kinds:
                continue
            if allowed_strengths is not None and edge.strength not in allowed_strengths:
                continue
            edges.append(edge)

        if limit is not None:
            edges = edges[:limit]

        return dataclasses.replace(result, edges=tuple(edges), summary=summarize(edges))

    # ==================== 变更 ====================

    async def apply_association_change(
        self,
        entity_type: Any,
        entity_id: str,
        target_type: Any,
        target_id: str,
        action: Any,
        kind: Any = AssociationKind.PRIMARY,
        strength: Any = Strength.MEDIUM,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> AssociationResult:
        """
        增删一条显式关联，并返回源实体的最新解析结果

        - add: 两端之间已有同语义的显式关联时更新强度与元数据，否则新建
        - remove: 删除两端之间的全部显式关联；隐式关联不可删除，不受影响

        两端的缓存都会失效。变更与重新解析之间没有事务保证。
        """
        entity_type = _coerce_entity_type(entity_type)
        target_type = _coerce_entity_type(target_type)
        entity_id = _require_id(entity_id, "entity_id")
        target_id = _require_id(target_id, "target_id")
        action = _coerce_enum(AssociationAction, action, "action")
        kind = _coerce_enum(AssociationKind, kind, "kind")
        strength = _coerce_enum(Strength, strength, "strength")

        if action == AssociationAction.ADD:
            await asyncio.to_thread(
                self._upsert_edge, entity_type, entity_id, target_type, target_id, kind, strength, metadata
            )
        else:
            removed = await asyncio.to_thread(
                self._remove_edges, entity_type, entity_id, target_type, target_id
            )
            logger.info(
                "association_removed",
                tenant_id=self.tenant_id,
                source=f"{entity_type.value}:{entity_id}",
                target=f"{target_type.value}:{target_id}",
                removed=removed,
            )

        self.invalidate(entity_type, entity_id)
        self.invalidate(target_type, target_id)
        return await self.resolve(entity_type, entity_id)

    def _upsert_edge(
        self,
        entity_type: EntityType,
        entity_id: str,
        target_type: EntityType,
        target_id: str,
        kind: AssociationKind,
        strength: Strength,
        metadata: Optional[Dict[str, Any]],
    ) -> ExplicitEdge:
        existing = [
            e for e in self.edge_store.find_between(entity_type, entity_id, target_type, target_id)
            if e.kind == kind
        ]
        if existing:
            return self.edge_store.update(
                existing[0].id,
                strength=strength,
                metadata=metadata,
                updated_by=self.user_id,
            )

        return self.edge_store.create(
            self._new_edge(entity_type, entity_id, target_type, target_id, kind, strength, metadata)
        )

    def _new_edge(
        self,
        source_type: EntityType,
        source_id: str,
        target_type: EntityType,
        target_id: str,
        kind: AssociationKind,
        strength: Strength,
        metadata: Optional[Dict[str, Any]],
    ) -> ExplicitEdge:
        return ExplicitEdge(
            id="",
            source_type=source_type,
            source_id=source_id,
            target_type=target_type,
            target_id=target_id,
            kind=kind,
            strength=strength,
            metadata=dict(metadata or {}),
            created_by=self.user_id,
            updated_by=self.user_id,
        )

    def _remove_edges(
        self,
        entity_type: EntityType,
        entity_id: str,
        target_type: EntityType,
        target_id: str,
    ) -> int:
        removed = 0
        for edge in self.edge_store.find_between(entity_type, entity_id, target_type, target_id):
            if self.edge_store.delete(edge.id):
                removed += 1
        return removed

    async def bulk_add(self, changes: Sequence[Mapping[str, Any]]) -> List[str]:
        """
        批量新建显式关联

        每项包含 source_type/source_id/target_type/target_id，可选 kind/strength/metadata。
        两端之间已有同语义显式关联的项跳过。

        Returns:
            新建关联的 ID 列表
        """
        changes = list(changes)
        created, touched = await asyncio.to_thread(self._bulk_add_sync, changes)
        for key in touched:
            self.cache.invalidate(key)

        logger.info("association_bulk_add", tenant_id=self.tenant_id, requested=len(changes), created=len(created))
        return created

    def _bulk_add_sync(self, changes: List[Mapping[str, Any]]) -> Tuple[List[str], Set[CacheKey]]:
        created: List[str] = []
        touched: Set[CacheKey] = set()

        for change in changes:
            source_type = _coerce_entity_type(change.get("source_type"))
            target_type = _coerce_entity_type(change.get("target_type"))
            source_id = _require_id(change.get("source_id"), "source_id")
            target_id = _require_id(change.get("target_id"), "target_id")
            kind = _coerce_enum(AssociationKind, change.get("kind", AssociationKind.PRIMARY), "kind")
            strength = _coerce_enum(Strength, change.get("strength", Strength.MEDIUM), "strength")

            existing = self.edge_store.find_between(source_type, source_id, target_type, target_id)
            if any(e.kind == kind for e in existing):
                logger.debug(
                    "association_exists",
                    source=f"{source_type.value}:{source_id}",
                    target=f"{target_type.value}:{target_id}",
                    kind=kind.value,
                )
                continue

            edge = self.edge_store.create(
                self._new_edge(
                    source_type, source_id, target_type, target_id, kind, strength, change.get("metadata")
                )
            )
            created.append(edge.id)
            touched.add(cache_key(source_type, source_id))
            touched.add(cache_key(target_type, target_id))

        return created, touched

    # ==================== 缓存 ====================

    def invalidate(self, entity_type: Any, entity_id: str) -> bool:
        """使单个实体的缓存失效"""
        return self.cache.invalidate(cache_key(_coerce_entity_type(entity_type), entity_id))

    def invalidate_all(self) -> None:
        self.cache.invalidate_all()


class AssociationResolverFactory:
    """
    按租户划分的解析器工厂

    每个租户一个解析器（各自的 ResultCache），共享同一个文档存储。
    租户数超过 max_tenants 时淘汰最久未访问的租户及其缓存。
    """

    def __init__(self, documents: DocumentStore, settings: Optional[ResolverSettings] = None):
        self.documents = documents
        self.settings = settings or ResolverSettings()
        self._resolvers: "OrderedDict[str, AssociationResolver]" = OrderedDict()

    def _create(self, tenant_id: str) -> AssociationResolver:
        return AssociationResolver(
            edge_store=EdgeStore(self.documents, tenant_id),
            entity_store=EntityStore(
                self.documents,
                tenant_id,
                location_index_enabled=self.settings.location_index_enabled,
            ),
            settings=self.settings,
        )

    def get(self, tenant_id: str, user_id: Optional[str] = None) -> AssociationResolver:
        """
        获取租户的解析器

        指定 user_id 时返回共享缓存的浅拷贝，变更记录该用户。
        """
        tenant_id = _require_id(tenant_id, "tenant_id")
        resolver = self._resolvers.get(tenant_id)
        if resolver is None:
            resolver = self._create(tenant_id)
            self._resolvers[tenant_id] = resolver
            logger.debug("resolver_created", tenant_id=tenant_id)
            self._evict()
        else:
            self._resolvers.move_to_end(tenant_id)

        if user_id is None or user_id == resolver.user_id:
            return resolver

        scoped = AssociationResolver(
            edge_store=resolver.edge_store,
            entity_store=resolver.entity_store,
            cache=resolver.cache,
            extractor=resolver.extractor,
            hydrator=resolver.hydrator,
            settings=resolver.settings,
            user_id=user_id,
        )
        scoped._in_flight = resolver._in_flight
        return scoped

    def _evict(self) -> None:
        while len(self._resolvers) > self.settings.max_tenants:
            tenant_id, resolver = self._resolvers.popitem(last=False)
            resolver.invalidate_all()
            logger.info("resolver_evicted", tenant_id=tenant_id)

    @property
    def tenants(self) -> List[str]:
        return list(self._resolvers.keys())

    def clear(self) -> None:
        """清空所有租户的解析器与缓存"""
        for resolver in self._resolvers.values():
            resolver.invalidate_all()
        self._resolvers.clear()
