"""
多租户文档存储

以 PostgreSQL JSONB 模拟层级式文档数据库:
每个文档由 (path, doc_id) 唯一标识，path 为集合路径，例如
``tenants/t1/crm_companies`` 或 ``tenants/t1/crm_companies/C1/locations``。

多键查询（get_many）与文档数据库的 ``in`` 查询保持一致，
单次最多 MAX_IN_QUERY_KEYS 个 ID。
"""

import logging
import uuid
from typing import Any, Dict, Iterable, List, Optional

import psycopg2.extras

from domains.core.exceptions import ValidationError
from domains.crm_core.base.store import ThreadSafeConnectionMixin

logger = logging.getLogger(__name__)

# 文档数据库 in 查询的键数上限
MAX_IN_QUERY_KEYS = 10

Document = Dict[str, Any]


def collection_path(*segments: str) -> str:
    """拼接集合路径，忽略空段"""
    return "/".join(s.strip("/") for s in segments if s)


def _to_document(row: Dict[str, Any]) -> Document:
    """行数据转文档，文档 ID 以 id 字段注入"""
    data = dict(row.get("data") or {})
    data["id"] = row["doc_id"]
    return data


class DocumentStore(ThreadSafeConnectionMixin):
    """
    文档存储层

    所有方法都是同步的阻塞调用，异步上下文中通过 asyncio.to_thread 调用。
    底层驱动异常统一抛出 StoreUnavailableError。
    """

    store_name = "document_store"

    def __init__(self, database_url: Optional[str] = None):
        """初始化存储层"""
        self._init_connection(database_url)

    def ensure_schema(self) -> None:
        """创建文档表（幂等）"""
        with self._cursor() as cursor:
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS crm_documents (
                    path TEXT NOT NULL,
                    doc_id TEXT NOT NULL,
                    data JSONB NOT NULL DEFAULT '{}'::jsonb,
                    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
                    updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
                    PRIMARY KEY (path, doc_id)
                )
                """
            )
            cursor.execute(
                "CREATE INDEX IF NOT EXISTS crm_documents_data_gin "
                "ON crm_documents USING GIN (data jsonb_path_ops)"
            )

    # ==================== 读取 ====================

    def get(self, path: str, doc_id: str) -> Optional[Document]:
        """
        获取单个文档

        Returns:
            文档字典（含 id 字段），不存在返回 None
        """
        with self._cursor() as cursor:
            cursor.execute(
                "SELECT doc_id, data FROM crm_documents WHERE path = %s AND doc_id = %s",
                (path, doc_id),
            )
            row = cursor.fetchone()
            return _to_document(row) if row else None

    def get_many(self, path: str, doc_ids: Iterable[str]) -> List[Document]:
        """
        按 ID 批量获取文档

        Args:
            path: 集合路径
            doc_ids: 文档 ID，最多 MAX_IN_QUERY_KEYS 个

        Raises:
            ValidationError: ID 数量超过上限
        """
        ids = list(doc_ids)
        if not ids:
            return []
        if len(ids) > MAX_IN_QUERY_KEYS:
            raise ValidationError(
                f"单次查询最多 {MAX_IN_QUERY_KEYS} 个 ID，实际 {len(ids)} 个",
                field="doc_ids",
            )

        with self._cursor() as cursor:
            cursor.execute(
                "SELECT doc_id, data FROM crm_documents WHERE path = %s AND doc_id = ANY(%s)",
                (path, ids),
            )
            return [_to_document(row) for row in cursor.fetchall()]

    def list_ids(self, path: str) -> List[str]:
        """列出集合下所有文档 ID"""
        with self._cursor() as cursor:
            cursor.execute(
                "SELECT doc_id FROM crm_documents WHERE path = %s ORDER BY doc_id",
                (path,),
            )
            return [row["doc_id"] for row in cursor.fetchall()]

    def query(self, path: str, filters: Dict[str, Any]) -> List[Document]:
        """
        按字段相等条件查询

        Args:
            path: 集合路径
            filters: 顶层字段 -> 期望值，全部满足才返回
        """
        with self._cursor() as cursor:
            cursor.execute(
                "SELECT doc_id, data FROM crm_documents WHERE path = %s AND data @> %s "
                "ORDER BY created_at, doc_id",
                (path, psycopg2.extras.Json(filters)),
            )
            return [_to_document(row) for row in cursor.fetchall()]

    # ==================== 写入 ====================

    def add(self, path: str, data: Dict[str, Any]) -> str:
        """新增文档，返回自动生成的 ID"""
        doc_id = uuid.uuid4().hex[:20]
        self.set(path, doc_id, data)
        return doc_id

    def set(self, path: str, doc_id: str, data: Dict[str, Any], merge: bool = False) -> None:
        """
        写入文档

        Args:
            merge: True 时与已有字段合并，否则整体覆盖
        """
        payload = {k: v for k, v in data.items() if k != "id"}
        conflict_update = (
            "data = crm_documents.data || EXCLUDED.data"
            if merge
            else "data = EXCLUDED.data"
        )
        with self._cursor() as cursor:
            cursor.execute(
                f"""
                INSERT INTO crm_documents (path, doc_id, data)
                VALUES (%s, %s, %s)
                ON CONFLICT (path, doc_id)
                DO UPDATE SET {conflict_update}, updated_at = now()
                """,
                (path, doc_id, psycopg2.extras.Json(payload)),
            )
        logger.debug(f"写入文档: {path}/{doc_id}")

    def delete(self, path: str, doc_id: str) -> bool:
        """删除文档，返回是否存在并被删除"""
        with self._cursor() as cursor:
            cursor.execute(
                "DELETE FROM crm_documents WHERE path = %s AND doc_id = %s",
                (path, doc_id),
            )
            deleted = cursor.rowcount > 0
        if deleted:
            logger.debug(f"删除文档: {path}/{doc_id}")
        return deleted
