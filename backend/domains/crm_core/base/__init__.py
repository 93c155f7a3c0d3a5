"""
存储层基础组件
"""

from .store import ThreadSafeConnectionMixin, get_database_url

__all__ = [
    "ThreadSafeConnectionMixin",
    "get_database_url",
]
