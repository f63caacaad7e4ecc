"""
告警治理引擎测试基础配置

提供 SQLite in-memory 异步数据库、可手动推进的时钟、mock Redis、记录型通知分发器和
FastAPI 异步客户端等通用 fixture。所有测试不依赖外部 PostgreSQL/Redis。
"""
import asyncio
import os
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# 必须在导入 alert_governance 之前设置环境变量，避免真实连接
os.environ["POSTGRES_HOST"] = "localhost"
os.environ["REDIS_HOST"] = "localhost"
os.environ["LOCK_BACKEND"] = "local"
os.environ["ENABLE_BACKGROUND_TASKS"] = "false"
os.environ["NOTIFICATION_WEBHOOK_URL"] = ""

from alert_governance.core.clock import Clock
from alert_governance.core.config import Settings
from alert_governance.core.database import Base
from alert_governance.core.locks import LocalKeyedLock
import alert_governance.models  # noqa: F401
from alert_governance.services.governance import AlertGovernanceEngine
from alert_governance.services.notifier import NotificationDispatcher
from alert_governance.services.stores import MemoryGovernanceStore, SqlGovernanceStore


# ── SQLite 异步引擎 ──────────────────────────────────────────────────
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

engine = create_async_engine(
    TEST_DATABASE_URL,
    echo=False,
    poolclass=StaticPool,
    connect_args={"check_same_thread": False},
)
TestingSessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

# 2026-03-02 是周一 (Monday)
T0 = datetime(2026, 3, 2, 10, 0, tzinfo=timezone.utc)


# ── 手动时钟 ──────────────────────────────────────────────────────────
class ManualClock(Clock):
    """测试用虚拟时钟，只在 advance() 时前进。"""

    def __init__(self, start: datetime = T0):
        self.current = start

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current = self.current + timedelta(**kwargs)
        return self.current

    def set(self, value: datetime) -> datetime:
        self.current = value
        return value


# ── Mock Redis ────────────────────────────────────────────────────────
class FakeRedisLock:
    """模拟 redis.asyncio 的 Lock，同名锁在同一个 FakeRedis 内互斥。"""

    def __init__(self, redis: "FakeRedis", name: str, timeout=None, blocking_timeout=None):
        self.redis = redis
        self.name = name
        self.blocking_timeout = blocking_timeout
        self.released = False

    async def acquire(self) -> bool:
        lock = self.redis.locks.setdefault(self.name, asyncio.Lock())
        try:
            await asyncio.wait_for(lock.acquire(), self.blocking_timeout)
        except asyncio.TimeoutError:
            return False
        self.redis.acquired.append(self.name)
        return True

    async def release(self) -> None:
        self.redis.locks[self.name].release()
        self.released = True


class FakeRedis:
    """内存级 Redis 模拟，支持 get/set/delete、ping 和 lock。"""

    def __init__(self):
        self._store: dict[str, str] = {}
        self.locks: dict[str, asyncio.Lock] = {}
        self.acquired: list[str] = []

    async def get(self, key: str) -> str | None:
        return self._store.get(key)

    async def set(self, key: str, value: str, ex: int | None = None, **kwargs) -> None:
        self._store[key] = value

    async def delete(self, *keys: str) -> None:
        for k in keys:
            self._store.pop(k, None)

    async def ping(self) -> bool:
        return True

    def lock(self, name: str, timeout=None, blocking_timeout=None) -> FakeRedisLock:
        return FakeRedisLock(self, name, timeout=timeout, blocking_timeout=blocking_timeout)

    async def close(self) -> None:
        pass


# ── 记录型通知分发器 ──────────────────────────────────────────────────
class RecordingDispatcher(NotificationDispatcher):
    """把收到的通知请求记录下来，便于断言。"""

    def __init__(self):
        self.sent = []

    async def dispatch(self, request) -> bool:
        self.sent.append(request)
        return True


# ── Fixtures ──────────────────────────────────────────────────────────

@pytest_asyncio.fixture(autouse=True)
async def setup_db():
    """每个测试前创建所有表，测试后清空。"""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def memory_store() -> MemoryGovernanceStore:
    return MemoryGovernanceStore()


@pytest.fixture
def sql_store() -> SqlGovernanceStore:
    return SqlGovernanceStore(TestingSessionLocal)


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def test_settings() -> Settings:
    return Settings(enable_background_tasks=False, notification_webhook_url="")


@pytest_asyncio.fixture
async def governance(memory_store, dispatcher, clock, test_settings) -> AsyncGenerator[AlertGovernanceEngine, None]:
    """基于内存存储的治理引擎，不启动后台任务。"""
    gov = AlertGovernanceEngine(
        memory_store,
        lock=LocalKeyedLock(),
        dispatcher=dispatcher,
        clock=clock,
        config=test_settings,
    )
    await gov.start()
    yield gov
    await gov.stop()


@pytest_asyncio.fixture
async def client(governance) -> AsyncGenerator[AsyncClient, None]:
    """提供挂载了测试引擎的异步 HTTP 测试客户端。"""
    from alert_governance.main import app

    app.state.engine = governance
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.state.engine = None
