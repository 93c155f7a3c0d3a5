"""
CRM Core - 存储与运行时基础设施

提供:
- 多租户文档存储 (documents)
- PostgreSQL 连接管理 (base)
- 结构化日志 (logging)
- 配置管理 (settings)

注意: 通用应用基础设施（异常、生命周期）在 domains.core 模块中。
"""
