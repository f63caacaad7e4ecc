"""
核心模块包 (Core Module Package)

告警治理引擎的基础组件：配置管理、数据库连接、Redis 客户端、时钟、按键锁与异常处理。

Foundational components of the alert governance engine: configuration,
database connections, Redis client, clock, keyed locks and exception handling.
"""
