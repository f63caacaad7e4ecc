"""
应用配置模块 (Application Configuration Module)

使用 Pydantic Settings 管理告警治理引擎的所有配置项，支持从 .env 文件和环境变量读取。
提供数据库连接、Redis、限流默认值、后台任务周期、营业时间和超时等配置管理。

Uses Pydantic Settings to manage all configuration items for the alert governance
engine, supporting reading from .env files and environment variables. Covers database
connections, Redis, rate-limit defaults, background task intervals, business hours
and timeouts.
"""
import logging

from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """
    应用全局配置类 (Application Global Configuration Class)

    字段名自动映射同名环境变量（不区分大小写），支持 .env 文件加载。

    Field names automatically map to same-named environment variables
    (case insensitive), supporting .env file loading.
    """

    # 数据库配置 (Database Configuration)
    postgres_host: str = "localhost"  # PostgreSQL 主机地址 (PostgreSQL Host)
    postgres_port: int = 5432  # PostgreSQL 端口号 (PostgreSQL Port)
    postgres_db: str = "alert_governance"  # 数据库名称 (Database Name)
    postgres_user: str = "alert_governance"  # 数据库用户名 (Database Username)
    postgres_password: str = "alert_governance_dev_password"  # 数据库密码 (Database Password)

    # Redis 配置 (Redis Configuration)
    redis_host: str = "localhost"  # Redis 主机地址 (Redis Host)
    redis_port: int = 6379  # Redis 端口号 (Redis Port)

    # 并发控制 (Concurrency Control)
    lock_backend: str = "local"  # 按键锁后端：local / redis (Keyed lock backend)
    lock_timeout_seconds: int = 10  # Redis 锁自动过期秒数 (Redis lock auto-expiry)
    lock_blocking_timeout_seconds: int = 5  # 等待锁的最长秒数 (Max seconds to wait for a lock)

    # 超时配置 (Timeout Configuration)
    persistence_timeout_seconds: float = 5.0  # 持久化调用超时 (Persistence call timeout)
    dispatch_timeout_seconds: float = 10.0  # 通知分发超时 (Notification dispatch timeout)

    # 后台任务周期 (Background Task Intervals)
    enable_background_tasks: bool = True  # 是否启动后台任务 (Start background tasks)
    adaptive_adjust_interval_seconds: int = 300  # 自适应调整周期：5 分钟 (Adaptive tick: 5 min)
    window_cleanup_interval_seconds: int = 900  # 窗口清理周期：15 分钟 (Cleanup tick: 15 min)
    escalation_scan_interval_seconds: int = 60  # 升级扫描周期：1 分钟 (Escalation scan: 1 min)
    adaptive_min_adjust_minutes: int = 10  # 两次自适应调整最小间隔 (Min minutes between adjustments)

    # 限流默认值 (Rate Limit Defaults)
    default_window_minutes: int = 60  # 默认窗口长度 (Default window length)
    default_team_limit: int = 500  # 团队维度默认上限 (Team scope default)
    default_metric_limit: int = 100  # 指标维度默认上限 (Metric scope default)
    default_global_limit: int = 1000  # 全局默认上限 (Global scope default)

    # 营业时间默认值 (Business Hours Defaults)
    business_hours_timezone: str = "UTC"  # 默认时区 (Default timezone)
    business_hours_start: str = "09:00"  # 营业开始时间 (Business day start)
    business_hours_end: str = "17:00"  # 营业结束时间 (Business day end)

    # 路由缓存 (Routing Cache)
    severity_rule_cache_ttl_seconds: int = 60  # 严重程度规则缓存秒数 (Severity rule cache TTL)

    # 通知分发 (Notification Dispatch)
    notification_webhook_url: str = ""  # 为空时仅记录日志 (Log-only dispatcher when empty)

    environment: str = "development"  # 运行环境：development/production (Runtime Environment)

    @property
    def database_url(self) -> str:
        """
        构造 PostgreSQL 异步连接 URL (Build PostgreSQL Async Connection URL)

        生成适用于 asyncpg 驱动的连接字符串，用于 SQLAlchemy 异步会话。
        """
        return (
            f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    @property
    def redis_url(self) -> str:
        """构造 Redis 连接 URL (Build Redis Connection URL)"""
        return f"redis://{self.redis_host}:{self.redis_port}/0"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}  # 自动加载 .env 文件 (Auto-load .env file)


# 全局配置实例 (Global Configuration Instance)
settings = Settings()

if settings.lock_backend not in ("local", "redis"):
    logger.warning(
        "LOCK_BACKEND=%s 无效，回退为 local | invalid LOCK_BACKEND, falling back to local",
        settings.lock_backend,
    )
    settings.lock_backend = "local"
