"""
数据库连接模块 (Database Connection Module)

基于 SQLAlchemy 2.0 异步模式创建数据库引擎和会话管理，为告警治理引擎提供持久化支持。
包含异步引擎创建、会话工厂配置、ORM 基类定义和依赖注入函数。

Creates the database engine and session management based on SQLAlchemy 2.0 async
mode. Includes async engine creation, session factory configuration, the ORM base
class and the dependency injection function.
"""
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from alert_governance.core.config import settings

# 创建异步数据库引擎 (Create Async Database Engine)
engine = create_async_engine(
    settings.database_url,
    echo=False,  # 生产环境关闭 SQL 日志输出 (Disable SQL logging in production)
    pool_pre_ping=True,
)

# 创建异步会话工厂 (Create Async Session Factory)
# 提交后不过期对象，限流窗口等对象会在会话关闭后继续被缓存使用
async_session = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """
    ORM 模型基类 (ORM Model Base Class)

    SQLAlchemy 2.0 的声明式基类，所有数据模型都继承此类。
    """
    pass


async def get_db() -> AsyncSession:
    """
    FastAPI 依赖项：获取数据库会话 (FastAPI Dependency: Get Database Session)

    Yields:
        AsyncSession: 异步数据库会话实例 (Async database session instance)
    """
    async with async_session() as session:
        yield session
