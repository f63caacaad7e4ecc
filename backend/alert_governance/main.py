"""
告警治理引擎应用入口模块 (Alert Governance Engine Application Entry Module)

负责 FastAPI 应用的生命周期管理：启动时创建数据表、组装治理引擎、加载持久化状态并启动后台任务，
关闭时停止后台任务并释放数据库和 Redis 连接。

Main application entry point, responsible for the FastAPI application lifecycle:
creates tables, assembles the governance engine, loads persisted state and starts
the background tasks at startup; stops them and releases connections at shutdown.
"""
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI
from sqlalchemy import text

from alert_governance import __version__
from alert_governance.core.config import settings
from alert_governance.core.database import Base, engine as db_engine
from alert_governance.core.exceptions import register_exception_handlers
from alert_governance.core.redis import close_redis, get_redis
# 导入所有模型以确保 SQLAlchemy 表注册 (Import all models to register tables)
from alert_governance.models import (  # noqa: F401
    Alert, AlertRule, RateLimitConfig, AdaptiveLimit, SuppressionLogEntry,
    SeverityRule, AlertEscalation, EscalationEvent, OnCallSchedule, TeamEscalationConfig,
)
from alert_governance.routers import alerts, on_call, rate_limits, suppression_log
from alert_governance.services.governance import build_engine
from alert_governance.services.policy_seed import seed_default_policies

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    应用生命周期管理器 (Application Lifecycle Manager)
    """
    # 自动创建数据库表结构 (Automatically create database table structure)
    async with db_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    governance = build_engine()
    # 初始化组织级默认严重程度规则 (Seed organisation-wide default severity rules)
    await seed_default_policies(governance.store, governance.clock.now())
    await governance.start()
    app.state.engine = governance

    yield

    # 关闭阶段：停止后台任务并释放资源 (Shutdown: stop tasks and release resources)
    await governance.stop()
    await close_redis()
    await db_engine.dispose()


# 创建 FastAPI 应用实例 (Create FastAPI application instance)
app = FastAPI(
    title="Alert Governance Engine",
    description="Rate limiting, routing and escalation of system-health alerts | 告警限流、路由与升级",
    version=__version__,
    lifespan=lifespan,
)

# 注册全局异常处理器 (Register global exception handlers)
register_exception_handlers(app)

# 注册所有 API 路由模块 (Register all API router modules)
app.include_router(alerts.router)  # 告警治理 (Alert governance)
app.include_router(rate_limits.router)  # 限流管理 (Rate limit management)
app.include_router(suppression_log.router)  # 抑制日志 (Suppression log)
app.include_router(on_call.router)  # 值班查询 (On-call lookup)


@app.get("/health")
@app.get("/api/v1/health")
async def health():
    """
    健康检查接口 (Health Check Endpoint)

    检查数据库、Redis（仅 redis 锁后端）和治理引擎状态。
    """
    checks = {"api": "ok"}

    # 数据库连通性检查 (Database connectivity check)
    try:
        async with db_engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception:
        checks["database"] = "error"

    # Redis 连通性检查，仅在使用分布式锁时 (Redis check, only with the redis lock backend)
    if settings.lock_backend == "redis":
        try:
            r = await get_redis()
            await r.ping()
            checks["redis"] = "ok"
        except Exception:
            checks["redis"] = "error"

    governance = getattr(app.state, "engine", None)
    checks["engine"] = "ok" if governance is not None and governance.started else "stopped"

    status = "ok" if all(v == "ok" for v in checks.values()) else "degraded"
    return {
        "status": status,
        "checks": checks,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
