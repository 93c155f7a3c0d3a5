"""
统一异常体系

提供业务层和基础设施层的统一错误处理，包括:
- 业务异常基类 (ApplicationError)
- 常用业务异常类型
- HTTP 状态码映射
- 关联解析相关异常
"""

from enum import Enum
from typing import Any, Dict, Optional, List
from dataclasses import dataclass


class ErrorCategory(str, Enum):
    """错误分类"""
    VALIDATION = "validation"      # 参数验证错误
    NOT_FOUND = "not_found"        # 资源不存在
    CONFLICT = "conflict"          # 资源冲突
    PERMISSION = "permission"      # 权限不足
    BUSINESS = "business"          # 业务逻辑错误
    EXTERNAL = "external"          # 外部服务错误
    INTERNAL = "internal"          # 内部错误


@dataclass
class ApplicationError(Exception):
    """
    应用层异常基类

    所有业务相关的异常都应继承此类。
    提供统一的错误结构，支持 HTTP 响应转换。

    使用示例:
        raise NotFoundError("关联", "a1b2c3")
        raise ValidationError("参数无效", errors=[{"field": "entity_id", "message": "不能为空"}])
        raise StoreUnavailableError("document_store", "连接被拒绝")
    """
    code: str                                    # 错误码 (如 "NOT_FOUND", "VALIDATION_ERROR")
    message: str                                 # 用户可读的错误信息
    category: ErrorCategory = ErrorCategory.INTERNAL
    details: Optional[Dict[str, Any]] = None    # 附加详情
    cause: Optional[Exception] = None           # 原始异常

    def __post_init__(self):
        super().__init__(self.message)

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"

    @property
    def http_status_code(self) -> int:
        """映射到 HTTP 状态码"""
        mapping = {
            ErrorCategory.VALIDATION: 400,
            ErrorCategory.NOT_FOUND: 404,
            ErrorCategory.CONFLICT: 409,
            ErrorCategory.PERMISSION: 403,
            ErrorCategory.BUSINESS: 422,
            ErrorCategory.EXTERNAL: 502,
            ErrorCategory.INTERNAL: 500,
        }
        return mapping.get(self.category, 500)

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典格式（用于 API 响应）"""
        result = {
            "code": self.code,
            "message": self.message,
            "category": self.category.value,
        }
        if self.details:
            result["details"] = self.details
        return result


# ==================== 常用业务异常 ====================

class NotFoundError(ApplicationError):
    """资源不存在"""
    def __init__(
        self,
        resource_type: str,
        resource_id: Any,
        details: Optional[Dict] = None
    ):
        super().__init__(
            code="NOT_FOUND",
            message=f"{resource_type}不存在: {resource_id}",
            category=ErrorCategory.NOT_FOUND,
            details=details or {"resource_type": resource_type, "resource_id": str(resource_id)}
        )
        self.resource_type = resource_type
        self.resource_id = resource_id


class ValidationError(ApplicationError):
    """参数验证错误"""
    def __init__(
        self,
        message: str,
        errors: Optional[List[Dict[str, Any]]] = None,
        field: Optional[str] = None
    ):
        details = {}
        if errors:
            details["validation_errors"] = errors
        if field:
            details["field"] = field

        super().__init__(
            code="VALIDATION_ERROR",
            message=message,
            category=ErrorCategory.VALIDATION,
            details=details or None
        )
        self.errors = errors
        self.field = field


class ExternalServiceError(ApplicationError):
    """外部服务错误"""
    def __init__(
        self,
        service_name: str,
        message: str,
        details: Optional[Dict] = None,
        cause: Optional[Exception] = None
    ):
        super().__init__(
            code="EXTERNAL_SERVICE_ERROR",
            message=f"{service_name}: {message}",
            category=ErrorCategory.EXTERNAL,
            details=details or {"service": service_name},
            cause=cause
        )


# ==================== 存储相关异常 ====================

class StoreUnavailableError(ExternalServiceError):
    """
    底层存储不可用

    文档存储或关联表查询失败（网络、认证、配额等）。
    解析流程中不做内部重试，直接上抛给调用方。
    """
    def __init__(
        self,
        store_name: str,
        message: str,
        details: Optional[Dict] = None,
        cause: Optional[Exception] = None
    ):
        super().__init__(
            service_name=store_name,
            message=message,
            details=details or {"store": store_name},
            cause=cause
        )
        self.code = "STORE_UNAVAILABLE"
        self.store_name = store_name


# ==================== 关联相关异常 ====================

class InvalidEntityTypeError(ValidationError):
    """实体类型无效"""
    def __init__(self, entity_type: Any):
        super().__init__(
            message=f"无效的实体类型: {entity_type}",
            field="entity_type",
        )
        self.entity_type = entity_type


class EdgeNotFoundError(NotFoundError):
    """显式关联不存在"""
    def __init__(self, edge_id: str):
        super().__init__("关联", edge_id)
        self.edge_id = edge_id


# ==================== 导出 ====================

__all__ = [
    # 基类
    "ErrorCategory",
    "ApplicationError",
    # 通用异常
    "NotFoundError",
    "ValidationError",
    "ExternalServiceError",
    # 存储异常
    "StoreUnavailableError",
    # 关联异常
    "InvalidEntityTypeError",
    "EdgeNotFoundError",
]
