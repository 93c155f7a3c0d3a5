"""关联统计"""

from collections import Counter
from typing import Iterable

from ..core.models import AssociationSummary, Edge


def summarize(edges: Iterable[Edge]) -> AssociationSummary:
    """按关联语义与强度计数"""
    edges = list(edges)
    return AssociationSummary(
        total_edges=len(edges),
        by_kind=dict(Counter(e.kind.value for e in edges)),
        by_strength=dict(Counter(e.strength.value for e in edges)),
    )
