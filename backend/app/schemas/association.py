"""
Association 模块 Pydantic Schemas

定义关联解析 API 的请求和响应模型。
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from domains.association_hub.core import (
    AssociationAction,
    AssociationKind,
    EdgeOrigin,
    EntityType,
    LoadStatus,
    Strength,
)


# ==================== 边相关 ====================


class AssociationEdge(BaseModel):
    """关联边"""

    id: str
    origin: EdgeOrigin
    source_type: EntityType
    source_id: str
    target_type: EntityType
    target_id: str
    kind: AssociationKind
    strength: Strength
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime | None = None
    updated_at: datetime | None = None
    derived_from: str | None = None  # 仅隐式边
    created_by: str | None = None  # 仅显式边
    updated_by: str | None = None


class CategoryStatus(BaseModel):
    """单个实体类别的加载状态"""

    status: LoadStatus
    count: int = 0
    reason: str | None = None


class AssociationSummarySchema(BaseModel):
    """关联统计"""

    total_edges: int = 0
    by_kind: dict[str, int] = Field(default_factory=dict)
    by_strength: dict[str, int] = Field(default_factory=dict)


class AssociationResultSchema(BaseModel):
    """关联解析结果"""

    entity_type: EntityType
    entity_id: str
    edges: list[AssociationEdge]
    entities: dict[str, list[dict[str, Any]]]
    entity_status: dict[str, CategoryStatus]
    summary: AssociationSummarySchema
    resolved_at: datetime


# ==================== 变更 ====================


class AssociationChangeRequest(BaseModel):
    """关联变更请求"""

    target_type: EntityType
    target_id: str = Field(..., min_length=1, description="目标实体 ID")
    action: AssociationAction
    kind: AssociationKind = AssociationKind.PRIMARY
    strength: Strength = Strength.MEDIUM
    metadata: dict[str, Any] = Field(default_factory=dict)


class CacheInvalidateResponse(BaseModel):
    """缓存失效响应"""

    entity_type: EntityType
    entity_id: str
    invalidated: bool
