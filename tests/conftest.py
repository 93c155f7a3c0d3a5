"""Pytest configuration for the CRM association resolver."""

import copy
import time
from typing import Any, Dict, Iterable, List, Optional, Tuple

import pytest

from domains.association_hub.core import EdgeStore, EntityStore
from domains.association_hub.services import AssociationResolver, ResultCache
from domains.core.exceptions import StoreUnavailableError, ValidationError
from domains.crm_core.documents import MAX_IN_QUERY_KEYS
from domains.crm_core.settings import ResolverSettings

TENANT = "t1"


class InMemoryDocumentStore:
    """
    DocumentStore 的内存实现

    记录每次调用 (method, path, arg)，支持按 (method, path) 注入失败与延迟。
    """

    store_name = "document_store"

    def __init__(self):
        self.collections: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.call_log: List[Tuple[str, str, Any]] = []
        self._failures: Dict[Tuple[str, str], Exception] = {}
        self._delays: Dict[Tuple[str, str], float] = {}
        self._seq = 0
        self.closed = False

    # ---------- 测试辅助 ----------

    def fail(self, method: str, path: str, error: Optional[Exception] = None) -> None:
        self._failures[(method, path)] = error or StoreUnavailableError(
            self.store_name, f"injected failure: {method} {path}"
        )

    def slow(self, method: str, path: str, seconds: float) -> None:
        self._delays[(method, path)] = seconds

    def heal(self) -> None:
        self._failures.clear()
        self._delays.clear()

    def count(self, method: Optional[str] = None, path: Optional[str] = None) -> int:
        return sum(
            1 for m, p, _ in self.call_log
            if (method is None or m == method) and (path is None or p == path)
        )

    def calls(self, method: str, path: str) -> List[Any]:
        return [arg for m, p, arg in self.call_log if m == method and p == path]

    def reset_calls(self) -> None:
        self.call_log.clear()

    def seed(self, path: str, doc_id: str, data: Dict[str, Any]) -> None:
        self.collections.setdefault(path, {})[doc_id] = copy.deepcopy(data)

    def _record(self, method: str, path: str, arg: Any = None) -> None:
        self.call_log.append((method, path, arg))
        delay = self._delays.get((method, path))
        if delay:
            time.sleep(delay)
        error = self._failures.get((method, path))
        if error is not None:
            raise error

    def _doc(self, path: str, doc_id: str) -> Optional[Dict[str, Any]]:
        data = self.collections.get(path, {}).get(doc_id)
        if data is None:
            return None
        doc = copy.deepcopy(data)
        doc["id"] = doc_id
        return doc

    # ---------- DocumentStore 接口 ----------

    def ensure_schema(self) -> None:
        pass

    def close(self) -> None:
        self.closed = True

    def get(self, path: str, doc_id: str) -> Optional[Dict[str, Any]]:
        self._record("get", path, doc_id)
        return self._doc(path, doc_id)

    def get_many(self, path: str, doc_ids: Iterable[str]) -> List[Dict[str, Any]]:
        ids = list(doc_ids)
        self._record("get_many", path, ids)
        if len(ids) > MAX_IN_QUERY_KEYS:
            raise ValidationError(f"too many ids: {len(ids)}", field="doc_ids")
        return [doc for doc in (self._doc(path, i) for i in ids) if doc is not None]

    def list_ids(self, path: str) -> List[str]:
        self._record("list_ids", path)
        return sorted(self.collections.get(path, {}).keys())

    def query(self, path: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        self._record("query", path, dict(filters))
        return [
            self._doc(path, doc_id)
            for doc_id, data in self.collections.get(path, {}).items()
            if all(data.get(k) == v for k, v in filters.items())
        ]

    def add(self, path: str, data: Dict[str, Any]) -> str:
        self._record("add", path, dict(data))
        self._seq += 1
        doc_id = f"doc{self._seq:04d}"
        self.collections.setdefault(path, {})[doc_id] = copy.deepcopy(data)
        return doc_id

    def set(self, path: str, doc_id: str, data: Dict[str, Any], merge: bool = False) -> None:
        self._record("set", path, doc_id)
        payload = {k: copy.deepcopy(v) for k, v in data.items() if k != "id"}
        collection = self.collections.setdefault(path, {})
        if merge and doc_id in collection:
            collection[doc_id].update(payload)
        else:
            collection[doc_id] = payload

    def delete(self, path: str, doc_id: str) -> bool:
        self._record("delete", path, doc_id)
        return self.collections.get(path, {}).pop(doc_id, None) is not None


class FakeClock:
    """可控时钟"""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def tpath(*segments: str) -> str:
    return "/".join(("tenants", TENANT) + segments)


def explicit_edge_doc(
    source_type: str,
    source_id: str,
    target_type: str,
    target_id: str,
    kind: str = "primary",
    strength: str = "medium",
) -> Dict[str, Any]:
    return {
        "sourceEntityType": source_type,
        "sourceEntityId": source_id,
        "targetEntityType": target_type,
        "targetEntityId": target_id,
        "associationType": kind,
        "strength": strength,
        "metadata": {},
        "tenantId": TENANT,
        "createdAt": "2024-01-01T00:00:00Z",
        "updatedAt": "2024-01-01T00:00:00Z",
    }


@pytest.fixture
def documents() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def resolver_settings() -> ResolverSettings:
    return ResolverSettings(
        cache_ttl_seconds=300,
        batch_size=10,
        hydration_timeout_seconds=2.0,
        coalesce_requests=False,
        location_index_enabled=True,
    )


@pytest.fixture
def make_resolver(documents, clock, resolver_settings):
    """按需构造解析器，可覆盖配置项"""

    def _make(**overrides) -> AssociationResolver:
        settings = resolver_settings.model_copy(update=overrides)
        return AssociationResolver(
            edge_store=EdgeStore(documents, TENANT),
            entity_store=EntityStore(
                documents,
                TENANT,
                location_index_enabled=settings.location_index_enabled,
            ),
            cache=ResultCache(settings.cache_ttl_seconds, clock=clock),
            settings=settings,
        )

    return _make


@pytest.fixture
def resolver(make_resolver) -> AssociationResolver:
    return make_resolver()


@pytest.fixture
def crm_data(documents) -> InMemoryDocumentStore:
    """
    示例数据

    商机 D1 -> 公司 C1、联系人 K1/K2、负责人 S1，另有一条 D1 -> K1 的 weak 显式关联；
    联系人 K3 没有任何关联。
    """
    documents.seed(tpath("crm_deals"), "D1", {
        "name": "Renewal 2024",
        "companyId": "C1",
        "contactIds": ["K1", "K2"],
        "salesOwnerId": "S1",
        "createdAt": "2024-01-01T00:00:00Z",
    })
    documents.seed(tpath("crm_companies"), "C1", {"name": "Acme"})
    documents.seed(tpath("crm_contacts"), "K1", {"name": "Kim", "companyId": "C1"})
    documents.seed(tpath("crm_contacts"), "K2", {"name": "Kai"})
    documents.seed(tpath("crm_contacts"), "K3", {"name": "Kay"})
    documents.seed(tpath("users"), "S1", {"name": "Sam Seller", "email": "sam@example.com"})
    documents.seed(
        tpath("crm_associations"),
        "E1",
        explicit_edge_doc("deal", "D1", "contact", "K1", kind="involvement", strength="weak"),
    )
    return documents
