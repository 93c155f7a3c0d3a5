"""
关联合并

按 (source_type, source_id, target_type, target_id, kind) 去重，
重复时保留强度更高的边，强度相同保留先出现的。
"""

from typing import Dict, Iterable, List

from ..core.models import Edge, EdgeKey


def merge_edges(edge_lists: Iterable[Iterable[Edge]]) -> List[Edge]:
    """
    合并多组关联边

    Args:
        edge_lists: 多组边（通常是显式边与隐式边）

    Returns:
        去重后的边，顺序不作保证
    """
    merged: Dict[EdgeKey, Edge] = {}

    for edges in edge_lists:
        for edge in edges:
            existing = merged.get(edge.key)
            if existing is None or edge.strength.rank > existing.strength.rank:
                merged[edge.key] = edge

    return list(merged.values())
