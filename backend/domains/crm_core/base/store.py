"""
存储层基类

提供 PostgreSQL 存储层的通用功能：
- 连接管理（每线程独立连接）
- 游标上下文管理器
- 驱动异常到 StoreUnavailableError 的转换
"""

import logging
import threading
from contextlib import contextmanager
from typing import Optional

import psycopg2
from psycopg2.extras import RealDictCursor

from domains.core.exceptions import StoreUnavailableError

logger = logging.getLogger(__name__)


def get_database_url() -> str:
    """获取数据库连接 URL"""
    from domains.crm_core.settings import get_settings
    return get_settings().database_url


class ThreadSafeConnectionMixin:
    """
    线程安全的数据库连接管理 Mixin

    使用 threading.local() 让每个线程拥有独立的数据库连接，
    避免 asyncio.to_thread() 多线程环境下的连接竞争和死锁。

    使用方法：
        class MyStore(ThreadSafeConnectionMixin):
            store_name = "my_store"

            def __init__(self, database_url=None):
                self._init_connection(database_url)
    """

    store_name: str = "postgres"

    def _init_connection(self, database_url: Optional[str] = None):
        """初始化连接管理"""
        self.database_url = database_url or get_database_url()
        self._local = threading.local()

    def _get_connection(self) -> psycopg2.extensions.connection:
        """获取当前线程的数据库连接"""
        if not hasattr(self._local, 'conn') or self._local.conn is None or self._local.conn.closed:
            self._local.conn = psycopg2.connect(self.database_url)
            self._local.conn.autocommit = False
        return self._local.conn

    @contextmanager
    def _cursor(self):
        """
        获取游标的上下文管理器

        驱动层异常统一转换为 StoreUnavailableError。
        """
        try:
            conn = self._get_connection()
        except psycopg2.Error as e:
            raise StoreUnavailableError(self.store_name, f"连接失败: {e}", cause=e) from e

        cursor = conn.cursor(cursor_factory=RealDictCursor)
        try:
            yield cursor
            conn.commit()
        except psycopg2.Error as e:
            conn.rollback()
            raise StoreUnavailableError(self.store_name, f"查询失败: {e}", cause=e) from e
        except Exception:
            conn.rollback()
            raise
        finally:
            cursor.close()

    def close(self):
        """关闭当前线程的数据库连接"""
        if hasattr(self._local, 'conn') and self._local.conn and not self._local.conn.closed:
            self._local.conn.close()
            self._local.conn = None
