"""
association_hub 服务层

导出关联解析相关服务。
"""

from .cache import CacheEntry, ResultCache, cache_key
from .extractor import ImplicitEdgeExtractor, normalize_ids
from .hydrator import EntityHydrator
from .merger import merge_edges
from .resolver import AssociationResolver, AssociationResolverFactory
from .summarizer import summarize

__all__ = [
    "AssociationResolver",
    "AssociationResolverFactory",
    "ImplicitEdgeExtractor",
    "EntityHydrator",
    "ResultCache",
    "CacheEntry",
    "cache_key",
    "merge_edges",
    "normalize_ids",
    "summarize",
]
