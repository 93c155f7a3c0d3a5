"""
Core - 通用应用基础设施

提供与具体协议无关的基础设施组件:
- 统一异常体系
- 服务生命周期管理

注意: 存储、日志、配置等基础设施在 crm_core 模块中。
"""

from .exceptions import (
    ApplicationError,
    # 关联相关
    EdgeNotFoundError,
    ErrorCategory,
    ExternalServiceError,
    InvalidEntityTypeError,
    NotFoundError,
    # 存储相关
    StoreUnavailableError,
    ValidationError,
)
from .lifecycle import (
    ServiceDefinition,
    ServiceRegistry,
    get_service_registry,
    register_core_services,
    reset_service_registry,
)

__all__ = [
    # Exceptions
    "ErrorCategory",
    "ApplicationError",
    "NotFoundError",
    "ValidationError",
    "ExternalServiceError",
    "StoreUnavailableError",
    "InvalidEntityTypeError",
    "EdgeNotFoundError",
    # Lifecycle
    "ServiceRegistry",
    "ServiceDefinition",
    "get_service_registry",
    "reset_service_registry",
    "register_core_services",
]
