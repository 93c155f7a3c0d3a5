"""
文档存储

使用示例:
    from domains.crm_core.documents import DocumentStore, collection_path

    store = DocumentStore()
    path = collection_path("tenants", "t1", "crm_deals")
    store.set(path, "D1", {"companyId": "C1", "contactIds": ["K1"]})
    deal = store.get(path, "D1")
"""

from .store import (
    MAX_IN_QUERY_KEYS,
    Document,
    DocumentStore,
    collection_path,
)

__all__ = [
    "MAX_IN_QUERY_KEYS",
    "Document",
    "DocumentStore",
    "collection_path",
]
