"""Dependency injection for FastAPI routes.

使用 ServiceRegistry 统一管理服务生命周期，路由通过依赖获取当前租户的解析器。
"""

from typing import Annotated, Optional

from fastapi import Depends, Header

from domains.association_hub.services import AssociationResolver, AssociationResolverFactory
from domains.core import get_service_registry, register_core_services
from domains.crm_core.settings import get_settings as get_crm_settings


# ============================================================================
# 初始化服务注册表
# ============================================================================

def _ensure_services_registered():
    """确保服务已注册（延迟初始化）"""
    registry = get_service_registry()
    if not registry.registered_services:
        register_core_services()
    return registry


# ============================================================================
# Service getters - 使用 ServiceRegistry
# ============================================================================

def get_document_store():
    """Get DocumentStore singleton instance."""
    registry = _ensure_services_registered()
    return registry.get("document_store")


def get_resolver_factory() -> AssociationResolverFactory:
    """Get AssociationResolverFactory singleton instance."""
    registry = _ensure_services_registered()
    return registry.get("resolver_factory")


# ============================================================================
# 请求上下文
# ============================================================================

def get_tenant_id(
    x_tenant_id: Annotated[Optional[str], Header(alias="X-Tenant-ID", description="租户 ID")] = None,
) -> str:
    """从请求头读取租户，缺省时使用配置的默认租户"""
    if x_tenant_id and x_tenant_id.strip():
        return x_tenant_id.strip()
    return get_crm_settings().default_tenant_id


def get_user_id(
    x_user_id: Annotated[Optional[str], Header(alias="X-User-ID", description="操作用户 ID")] = None,
) -> Optional[str]:
    return x_user_id.strip() if x_user_id and x_user_id.strip() else None


def get_resolver(
    tenant_id: Annotated[str, Depends(get_tenant_id)],
    user_id: Annotated[Optional[str], Depends(get_user_id)],
    factory: Annotated[AssociationResolverFactory, Depends(get_resolver_factory)],
) -> AssociationResolver:
    """获取当前租户（及操作用户）的解析器"""
    return factory.get(tenant_id, user_id=user_id)
