"""Pydantic schemas for API requests and responses."""

from app.schemas.common import ApiResponse, ErrorResponse
from app.schemas.association import (
    AssociationChangeRequest,
    AssociationEdge,
    AssociationResultSchema,
    AssociationSummarySchema,
    CacheInvalidateResponse,
    CategoryStatus,
)

__all__ = [
    "ApiResponse",
    "ErrorResponse",
    "AssociationEdge",
    "CategoryStatus",
    "AssociationSummarySchema",
    "AssociationResultSchema",
    "AssociationChangeRequest",
    "CacheInvalidateResponse",
]
