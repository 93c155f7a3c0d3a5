"""
association_hub 核心模块

导出关联相关的数据模型、定位器和存储层。
"""

from .locators import (
    CollectionLocator,
    EntityLocator,
    LocationLocator,
    SalespersonLocator,
    normalize_salesperson,
)
from .models import (
    ESSENTIAL_TYPES,
    PLURAL_NAMES,
    AssociationAction,
    AssociationKind,
    AssociationResult,
    AssociationSummary,
    CategoryLoad,
    Edge,
    EdgeKey,
    EdgeOrigin,
    EntityType,
    ExplicitEdge,
    HydratedEntities,
    ImplicitEdge,
    LoadStatus,
    Strength,
)
from .store import EdgeStore, EntityStore, tenant_path

__all__ = [
    # 类型枚举
    "EntityType",
    "AssociationKind",
    "Strength",
    "EdgeOrigin",
    "AssociationAction",
    "LoadStatus",
    # 常量映射
    "PLURAL_NAMES",
    "ESSENTIAL_TYPES",
    # 数据模型
    "EdgeKey",
    "Edge",
    "ExplicitEdge",
    "ImplicitEdge",
    "CategoryLoad",
    "HydratedEntities",
    "AssociationSummary",
    "AssociationResult",
    # 定位器
    "EntityLocator",
    "CollectionLocator",
    "SalespersonLocator",
    "LocationLocator",
    "normalize_salesperson",
    # 存储层
    "EdgeStore",
    "EntityStore",
    "tenant_path",
]
