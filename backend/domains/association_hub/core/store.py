"""
关联存储层

- EdgeStore: 租户下 crm_associations 集合的显式关联 CRUD
- EntityStore: 实体文档的命名空间解析与按类型读取

两者都基于同步的 DocumentStore，异步上下文中经 asyncio.to_thread 调用。
存储层不做关联唯一性约束，同一端点组合的重复记录在解析时由 EdgeMerger 合并。
"""

import dataclasses
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from domains.core.exceptions import EdgeNotFoundError
from domains.crm_core.documents import Document, DocumentStore, collection_path

from .locators import (
    CollectionLocator,
    EntityLocator,
    LocationLocator,
    SalespersonLocator,
)
from .models import (
    AssociationKind,
    EntityType,
    ExplicitEdge,
    Strength,
)

logger = logging.getLogger(__name__)


def tenant_path(tenant_id: str, *segments: str) -> str:
    """租户下的集合路径"""
    return collection_path("tenants", tenant_id, *segments)


class EdgeStore:
    """显式关联存储层"""

    def __init__(self, documents: DocumentStore, tenant_id: str):
        self.documents = documents
        self.tenant_id = tenant_id
        self.path = tenant_path(tenant_id, "crm_associations")

    def _to_edges(self, docs: Iterable[Document]) -> List[ExplicitEdge]:
        edges = []
        for doc in docs:
            edge = ExplicitEdge.from_document(doc)
            if edge is None:
                logger.warning(f"跳过无法解析的关联记录: {doc.get('id')}")
                continue
            edges.append(edge)
        return edges

    def get(self, edge_id: str) -> Optional[ExplicitEdge]:
        """获取单个关联，不存在返回 None"""
        doc = self.documents.get(self.path, edge_id)
        return ExplicitEdge.from_document(doc) if doc else None

    def find_by_source(self, entity_type: EntityType, entity_id: str) -> List[ExplicitEdge]:
        """查询实体作为 source 的关联"""
        return self._to_edges(
            self.documents.query(
                self.path,
                {"sourceEntityType": entity_type.value, "sourceEntityId": entity_id},
            )
        )

    def find_by_target(self, entity_type: EntityType, entity_id: str) -> List[ExplicitEdge]:
        """查询实体作为 target 的关联"""
        return self._to_edges(
            self.documents.query(
                self.path,
                {"targetEntityType": entity_type.value, "targetEntityId": entity_id},
            )
        )

    def find_by_source_or_target(self, entity_type: EntityType, entity_id: str) -> List[ExplicitEdge]:
        """查询实体作为任一端点的全部关联"""
        return self.find_by_source(entity_type, entity_id) + self.find_by_target(entity_type, entity_id)

    def find_between(
        self,
        source_type: EntityType,
        source_id: str,
        target_type: EntityType,
        target_id: str,
    ) -> List[ExplicitEdge]:
        """查询两个实体之间（按方向）的关联"""
        return self._to_edges(
            self.documents.query(
                self.path,
                {
                    "sourceEntityType": source_type.value,
                    "sourceEntityId": source_id,
                    "targetEntityType": target_type.value,
                    "targetEntityId": target_id,
                },
            )
        )

    def create(self, edge: ExplicitEdge) -> ExplicitEdge:
        """
        创建关联

        Returns:
            带存储 ID 与时间戳的关联
        """
        now = datetime.now(timezone.utc)
        edge = dataclasses.replace(
            edge,
            tenant_id=self.tenant_id,
            created_at=edge.created_at or now,
            updated_at=now,
        )
        edge_id = self.documents.add(self.path, edge.to_document())
        logger.info(
            f"创建关联成功: {edge.source_type.value}:{edge.source_id} "
            f"-[{edge.kind.value}]-> {edge.target_type.value}:{edge.target_id}"
        )
        return dataclasses.replace(edge, id=edge_id)

    def update(
        self,
        edge_id: str,
        kind: Optional[AssociationKind] = None,
        strength: Optional[Strength] = None,
        metadata: Optional[Dict[str, Any]] = None,
        updated_by: Optional[str] = None,
    ) -> ExplicitEdge:
        """
        更新关联的语义、强度或元数据

        Raises:
            EdgeNotFoundError: 关联不存在
        """
        existing = self.get(edge_id)
        if existing is None:
            raise EdgeNotFoundError(edge_id)

        changes: Dict[str, Any] = {"updated_at": datetime.now(timezone.utc)}
        if kind is not None:
            changes["kind"] = kind
        if strength is not None:
            changes["strength"] = strength
        if metadata is not None:
            changes["metadata"] = dict(metadata)
        if updated_by is not None:
            changes["updated_by"] = updated_by

        updated = dataclasses.replace(existing, **changes)
        self.documents.set(self.path, edge_id, updated.to_document())
        logger.info(f"更新关联成功: {edge_id}")
        return updated

    def delete(self, edge_id: str) -> bool:
        """删除关联"""
        deleted = self.documents.delete(self.path, edge_id)
        if deleted:
            logger.info(f"删除关联成功: {edge_id}")
        return deleted


class EntityStore:
    """
    实体存储层

    负责集合命名空间解析:
    - company/contact/deal/task: tenants/{t}/crm_{type 复数}
    - location: tenants/{t}/crm_companies/{companyId}/locations
    - salesperson: tenants/{t}/users，未找到时查全局 users
    """

    FLAT_COLLECTIONS = {
        EntityType.COMPANY: "crm_companies",
        EntityType.CONTACT: "crm_contacts",
        EntityType.DEAL: "crm_deals",
        EntityType.TASK: "crm_tasks",
    }
    GLOBAL_USERS = "users"

    def __init__(
        self,
        documents: DocumentStore,
        tenant_id: str,
        location_index_enabled: bool = True,
    ):
        self.documents = documents
        self.tenant_id = tenant_id

        self._locators: Dict[EntityType, EntityLocator] = {
            entity_type: CollectionLocator(documents, tenant_path(tenant_id, name))
            for entity_type, name in self.FLAT_COLLECTIONS.items()
        }
        self._locators[EntityType.SALESPERSON] = SalespersonLocator(
            documents,
            tenant_path=tenant_path(tenant_id, "users"),
            global_path=self.GLOBAL_USERS,
        )
        self._locators[EntityType.LOCATION] = LocationLocator(
            documents,
            companies_path=tenant_path(tenant_id, "crm_companies"),
            index_path=tenant_path(tenant_id, "crm_location_index"),
            index_enabled=location_index_enabled,
        )

    def locator(self, entity_type: EntityType) -> EntityLocator:
        return self._locators[entity_type]

    def get_by_id(self, entity_type: EntityType, entity_id: str) -> Optional[Document]:
        """按类型获取实体文档，不存在返回 None"""
        return self.locator(entity_type).locate(entity_id)

    def get_many_by_id(self, entity_type: EntityType, entity_ids: Iterable[str]) -> List[Document]:
        """
        按类型批量获取实体文档

        平铺集合单次最多 MAX_IN_QUERY_KEYS 个 ID，分批由调用方负责。
        """
        return self.locator(entity_type).locate_many(entity_ids)

    def register_location(self, company_id: str, location_id: str) -> None:
        """门店创建后写入 门店 -> 公司 索引"""
        locator = self._locators[EntityType.LOCATION]
        locator.register(company_id, location_id)
        logger.debug(f"登记门店索引: {location_id} -> {company_id}")
