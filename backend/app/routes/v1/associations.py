"""
Association API 路由

提供实体关联解析、变更与缓存管理的 REST API 端点。
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Path, Query

from app.core.deps import get_resolver
from app.schemas.association import (
    AssociationChangeRequest,
    AssociationResultSchema,
    CacheInvalidateResponse,
)
from app.schemas.common import ApiResponse, ErrorResponse
from domains.association_hub.core import AssociationResult
from domains.association_hub.services import AssociationResolver

logger = logging.getLogger(__name__)

router = APIRouter()

ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "参数无效"},
    502: {"model": ErrorResponse, "description": "底层存储不可用"},
}


def _to_schema(result: AssociationResult) -> AssociationResultSchema:
    return AssociationResultSchema.model_validate(result.to_dict())


@router.get(
    "/{entity_type}/{entity_id}",
    response_model=ApiResponse[AssociationResultSchema],
    responses=ERROR_RESPONSES,
)
async def get_associations(
    entity_type: str = Path(..., description="实体类型"),
    entity_id: str = Path(..., description="实体 ID"),
    target_types: Optional[List[str]] = Query(None, description="只保留另一端为这些类型的边"),
    kinds: Optional[List[str]] = Query(None, description="只保留这些关联语义"),
    strengths: Optional[List[str]] = Query(None, description="只保留这些关联强度"),
    limit: Optional[int] = Query(None, ge=0, description="最多返回的边数"),
    resolver: AssociationResolver = Depends(get_resolver),
):
    """
    解析实体的全部关联

    合并显式关联与隐式关联，并返回关联实体详情。
    指定过滤条件时，统计按过滤后的边重新计算。
    """
    result = await resolver.query(
        entity_type,
        entity_id,
        target_types=target_types,
        kinds=kinds,
        strengths=strengths,
        limit=limit,
    )
    return ApiResponse(data=_to_schema(result))


@router.post(
    "/{entity_type}/{entity_id}/changes",
    response_model=ApiResponse[AssociationResultSchema],
    responses=ERROR_RESPONSES,
)
async def apply_association_change(
    request: AssociationChangeRequest,
    entity_type: str = Path(..., description="源实体类型"),
    entity_id: str = Path(..., description="源实体 ID"),
    resolver: AssociationResolver = Depends(get_resolver),
):
    """
    增删显式关联

    - add: 新建关联，已存在同语义关联时更新强度与元数据
    - remove: 删除两端之间的全部显式关联（隐式关联不受影响）

    返回源实体的最新解析结果。
    """
    result = await resolver.apply_association_change(
        entity_type,
        entity_id,
        request.target_type,
        request.target_id,
        request.action,
        kind=request.kind,
        strength=request.strength,
        metadata=request.metadata,
    )
    return ApiResponse(
        data=_to_schema(result),
        message=f"关联已{'添加' if request.action.value == 'add' else '移除'}",
    )


@router.delete(
    "/{entity_type}/{entity_id}/cache",
    response_model=ApiResponse[CacheInvalidateResponse],
    responses=ERROR_RESPONSES,
)
async def invalidate_cache(
    entity_type: str = Path(..., description="实体类型"),
    entity_id: str = Path(..., description="实体 ID"),
    resolver: AssociationResolver = Depends(get_resolver),
):
    """使单个实体的解析缓存失效"""
    invalidated = resolver.invalidate(entity_type, entity_id)
    logger.info(f"缓存失效: {entity_type}:{entity_id} invalidated={invalidated}")
    return ApiResponse(
        data=CacheInvalidateResponse(
            entity_type=entity_type,
            entity_id=entity_id,
            invalidated=invalidated,
        )
    )
