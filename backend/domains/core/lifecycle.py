"""
服务生命周期管理

应用级服务（文档存储、解析器工厂）统一在这里注册，首次使用时创建，
应用关闭时按创建的逆序释放。

使用示例:
    registry = get_service_registry()
    registry.register("document_store", DocumentStore, cleanup=lambda s: s.close())
    registry.register(
        "resolver_factory",
        lambda: AssociationResolverFactory(registry.get("document_store")),
        dependencies=["document_store"],
    )

    factory = registry.get("resolver_factory")
    await registry.shutdown()
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class ServiceDefinition:
    """已注册服务"""
    name: str
    factory: Callable[[], Any]
    dependencies: list[str] = field(default_factory=list)
    cleanup: Callable[[Any], None] | None = None
    instance: Any | None = None


class ServiceRegistry:
    """服务注册表: 延迟创建，依赖先行，逆序释放"""

    def __init__(self):
        self._services: dict[str, ServiceDefinition] = {}
        self._init_order: list[str] = []

    def register(
        self,
        name: str,
        factory: Callable[[], Any],
        dependencies: list[str] | None = None,
        cleanup: Callable[[Any], None] | None = None,
    ) -> "ServiceRegistry":
        """注册服务，同名覆盖"""
        if name in self._services:
            logger.warning(f"服务 {name} 已注册，将被覆盖")
        self._services[name] = ServiceDefinition(
            name=name,
            factory=factory,
            dependencies=dependencies or [],
            cleanup=cleanup,
        )
        return self

    def get(self, name: str) -> Any:
        """
        获取服务实例，首次访问时先创建依赖再创建自身

        Raises:
            KeyError: 服务未注册
        """
        definition = self._services.get(name)
        if definition is None:
            raise KeyError(f"服务未注册: {name}")
        if definition.instance is not None:
            return definition.instance

        for dep_name in definition.dependencies:
            self.get(dep_name)

        try:
            definition.instance = definition.factory()
        except Exception as e:
            logger.error(f"服务 {name} 初始化失败: {e}")
            raise
        self._init_order.append(name)
        logger.debug(f"服务 {name} 已初始化")
        return definition.instance

    def _release(self, definition: ServiceDefinition) -> None:
        # 单个服务释放失败不影响其余服务
        if definition.cleanup is not None:
            try:
                definition.cleanup(definition.instance)
            except Exception as e:
                logger.warning(f"服务 {definition.name} 清理失败: {e}")
        definition.instance = None

    def release_all(self) -> None:
        """按创建的逆序释放所有已创建的服务"""
        for name in reversed(self._init_order):
            definition = self._services.get(name)
            if definition is not None and definition.instance is not None:
                self._release(definition)
                logger.debug(f"服务 {name} 已关闭")
        self._init_order.clear()

    async def shutdown(self) -> None:
        """应用关闭时调用"""
        logger.info("开始关闭所有服务...")
        self.release_all()
        logger.info("所有服务已关闭")

    @property
    def registered_services(self) -> list[str]:
        return list(self._services.keys())

    @property
    def initialized_services(self) -> list[str]:
        return list(self._init_order)


# ==================== 全局注册表 ====================

_registry: ServiceRegistry | None = None


def get_service_registry() -> ServiceRegistry:
    """获取全局服务注册表"""
    global _registry
    if _registry is None:
        _registry = ServiceRegistry()
    return _registry


def reset_service_registry() -> None:
    """释放已创建的服务并换一个空注册表（用于测试）"""
    global _registry
    if _registry is not None:
        _registry.release_all()
    _registry = ServiceRegistry()


def register_core_services() -> ServiceRegistry:
    """
    注册文档存储与按租户划分的解析器工厂

    工厂函数内延迟导入，domains.core 不依赖具体领域模块。
    """
    registry = get_service_registry()

    def _create_document_store():
        from domains.crm_core.documents import DocumentStore
        from domains.crm_core.settings import get_settings
        return DocumentStore(get_settings().database_url)

    def _create_resolver_factory():
        from domains.association_hub.services import AssociationResolverFactory
        from domains.crm_core.settings import get_settings
        return AssociationResolverFactory(
            registry.get("document_store"),
            settings=get_settings().resolver,
        )

    registry.register("document_store", _create_document_store, cleanup=lambda s: s.close())
    registry.register(
        "resolver_factory",
        _create_resolver_factory,
        dependencies=["document_store"],
        cleanup=lambda f: f.clear(),
    )

    logger.info(f"已注册 {len(registry.registered_services)} 个服务")
    return registry


__all__ = [
    "ServiceRegistry",
    "ServiceDefinition",
    "get_service_registry",
    "reset_service_registry",
    "register_core_services",
]
