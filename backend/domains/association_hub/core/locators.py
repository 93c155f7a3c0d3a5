"""
实体定位策略

不同实体类型在文档库中的存放方式不同:
- 公司/联系人/商机/任务: 租户下的平铺集合，支持多键查询
- 销售人员: 先查租户 users，再查全局 users
- 门店: 嵌套在公司文档的 locations 子集合下，没有平铺索引

每种存放方式对应一个定位器，对外统一提供 locate / locate_many。
"""

import logging
from abc import ABC, abstractmethod
from typing import Iterable, List, Optional

from domains.crm_core.documents import Document, DocumentStore

logger = logging.getLogger(__name__)


class EntityLocator(ABC):
    """定位器基类"""

    # 是否支持多键查询（受 MAX_IN_QUERY_KEYS 限制，由调用方分批）
    batchable: bool = False

    def __init__(self, documents: DocumentStore):
        self.documents = documents

    @abstractmethod
    def locate(self, entity_id: str) -> Optional[Document]:
        """按 ID 获取单个实体，不存在返回 None"""

    def locate_many(self, entity_ids: Iterable[str]) -> List[Document]:
        """
        逐个获取实体

        单个 ID 出错时记录日志并跳过；全部出错时抛出第一个错误，
        让调用方能区分"没有数据"和"加载失败"。
        """
        found: List[Document] = []
        errors: List[Exception] = []
        ids = list(entity_ids)

        for entity_id in ids:
            try:
                doc = self.locate(entity_id)
            except Exception as e:
                logger.warning(f"{type(self).__name__} 加载 {entity_id} 失败: {e}")
                errors.append(e)
                continue
            if doc is not None:
                found.append(doc)

        if ids and len(errors) == len(ids):
            raise errors[0]
        return found


class CollectionLocator(EntityLocator):
    """平铺集合定位器"""

    batchable = True

    def __init__(self, documents: DocumentStore, path: str):
        super().__init__(documents)
        self.path = path

    def locate(self, entity_id: str) -> Optional[Document]:
        return self.documents.get(self.path, entity_id)

    def locate_many(self, entity_ids: Iterable[str]) -> List[Document]:
        return self.documents.get_many(self.path, entity_ids)


def normalize_salesperson(doc: Document) -> Document:
    """
    统一销售人员记录结构

    租户用户与全局用户字段不一致，缺少 firstName/lastName 时从 name 拆分。
    """
    name = doc.get("name")
    parts = name.split() if isinstance(name, str) else []

    normalized = dict(doc)
    normalized["firstName"] = doc.get("firstName") or (parts[0] if parts else "")
    normalized["lastName"] = doc.get("lastName") or (parts[1] if len(parts) > 1 else "")
    normalized["email"] = doc.get("email") or ""
    normalized["displayName"] = doc.get("displayName") or ""
    return normalized


class SalespersonLocator(EntityLocator):
    """销售人员定位器: 租户命名空间优先，回落到全局命名空间"""

    def __init__(self, documents: DocumentStore, tenant_path: str, global_path: str):
        super().__init__(documents)
        self.tenant_path = tenant_path
        self.global_path = global_path

    def locate(self, entity_id: str) -> Optional[Document]:
        doc = self.documents.get(self.tenant_path, entity_id)
        if doc is None:
            doc = self.documents.get(self.global_path, entity_id)
        if doc is None:
            return None
        return normalize_salesperson(doc)


class LocationLocator(EntityLocator):
    """
    门店定位器

    先查 门店 ID -> 公司 ID 二级索引；索引未命中时逐个扫描公司的
    locations 子集合（找到即停止），并回填索引。
    """

    def __init__(
        self,
        documents: DocumentStore,
        companies_path: str,
        index_path: str,
        index_enabled: bool = True,
    ):
        super().__init__(documents)
        self.companies_path = companies_path
        self.index_path = index_path
        self.index_enabled = index_enabled

    def locations_path(self, company_id: str) -> str:
        return f"{self.companies_path}/{company_id}/locations"

    def locate(self, entity_id: str) -> Optional[Document]:
        if self.index_enabled:
            doc = self._locate_via_index(entity_id)
            if doc is not None:
                return doc

        for company_id in self.documents.list_ids(self.companies_path):
            doc = self.documents.get(self.locations_path(company_id), entity_id)
            if doc is not None:
                doc.setdefault("companyId", company_id)
                if self.index_enabled:
                    self.register(company_id, entity_id)
                return doc
        return None

    def _locate_via_index(self, location_id: str) -> Optional[Document]:
        entry = self.documents.get(self.index_path, location_id)
        company_id = entry.get("companyId") if entry else None
        if not company_id:
            return None

        doc = self.documents.get(self.locations_path(company_id), location_id)
        if doc is None:
            # 索引过期（门店已迁移或删除），交给全量扫描
            logger.info(f"门店索引过期: {location_id} -> {company_id}")
            return None
        doc.setdefault("companyId", company_id)
        return doc

    def register(self, company_id: str, location_id: str) -> None:
        """写入门店索引，在门店创建时调用"""
        self.documents.set(self.index_path, location_id, {"companyId": company_id})
