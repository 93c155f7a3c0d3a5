"""
CRM 统一关联领域模块

把两类关联合并为一个视图:
- 显式关联: crm_associations 集合中由用户创建的关联记录
- 隐式关联: 实体文档里的外键字段（companyId、contactIds、salesOwnerId 等）

核心功能：
- 关联解析：合并、去重、加载另一端实体、生成统计摘要
- 结果缓存：按租户 + 实体缓存，带 TTL
- 关联变更：新增/删除显式关联并失效两端缓存
"""

from .core.models import AssociationResult, EntityType, ExplicitEdge, ImplicitEdge
from .core.store import EdgeStore, EntityStore
from .services.resolver import AssociationResolver, AssociationResolverFactory

__all__ = [
    'AssociationResult',
    'EntityType',
    'ExplicitEdge',
    'ImplicitEdge',
    'EdgeStore',
    'EntityStore',
    'AssociationResolver',
    'AssociationResolverFactory',
]
