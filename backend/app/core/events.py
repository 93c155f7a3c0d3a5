"""Application lifecycle event handlers.

使用 ServiceRegistry 统一管理生命周期。
"""

from typing import Callable

from app.core.async_utils import run_sync
from domains.core import get_service_registry, register_core_services
from domains.crm_core.logging import get_logger

logger = get_logger(__name__)


def create_start_handler() -> Callable:
    """Create startup event handler."""

    async def start_app() -> None:
        logger.info("api_starting", component="api")

        # 注册并初始化核心服务
        try:
            registry = register_core_services()

            # 预热文档存储并确保表结构存在
            try:
                document_store = registry.get("document_store")
                await run_sync(document_store.ensure_schema)
                logger.info("document_store_initialized", component="document_store")
            except Exception as e:
                logger.warning("document_store_init_skipped", component="document_store", error=str(e))

            factory = registry.get("resolver_factory")
            logger.info(
                "resolver_factory_initialized",
                component="resolver",
                cache_ttl_seconds=factory.settings.cache_ttl_seconds,
                coalesce_requests=factory.settings.coalesce_requests,
            )

            logger.info(
                "services_initialized",
                component="registry",
                services=registry.initialized_services,
            )

        except Exception as e:
            logger.error("service_initialization_error", component="registry", error=str(e))

        logger.info("api_started", component="api", status="success")

    return start_app


def create_stop_handler() -> Callable:
    """Create shutdown event handler."""

    async def stop_app() -> None:
        logger.info("api_stopping", component="api")

        # 使用 ServiceRegistry 统一关闭所有服务
        try:
            registry = get_service_registry()
            await registry.shutdown()
        except Exception as e:
            logger.warning("service_registry_stop_error", component="registry", error=str(e))

        logger.info("api_stopped", component="api", status="success")

    return stop_app
