"""
按键锁模块 (Keyed Lock Module)

为限流"检查-递增"序列以及升级状态迁移提供按键串行化。
同一作用域键（或同一告警）的修改互斥，不同键之间可以并行。
多个键总是按固定顺序获取，避免并发评估之间死锁。

Per-key serialization for the rate-limit check-then-increment sequence and for
escalation transitions. Mutations of one key are mutually exclusive while
different keys proceed in parallel. Multiple keys are always acquired in one
canonical order so concurrent evaluations cannot deadlock.

后端 (Backends):
- LocalKeyedLock: 单进程 asyncio.Lock (single process)
- RedisKeyedLock: 基于 Redis 的分布式锁，适用于共享存储的多实例部署
  (Redis lock for fleets sharing one store)
"""
import asyncio
import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, Dict, Iterable, List

from redis.exceptions import LockError

logger = logging.getLogger(__name__)


class LockAcquireTimeout(Exception):
    """在限定时间内未获取到锁 (Lock not acquired within the blocking timeout)"""


def _ordered(names: Iterable[str]) -> List[str]:
    return sorted(set(names))


class KeyedLock:
    """按键锁接口 (Keyed lock interface)"""

    @asynccontextmanager
    async def hold(self, *names: str) -> AsyncIterator[None]:
        """按固定顺序获取全部键的锁 (Acquire all keys in canonical order)"""
        async with AsyncExitStack() as stack:
            for name in _ordered(names):
                await stack.enter_async_context(self._hold_one(name))
            yield

    def _hold_one(self, name: str):
        raise NotImplementedError


class LocalKeyedLock(KeyedLock):
    """进程内按键锁 (In-process keyed lock)"""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, name: str) -> asyncio.Lock:
        lock = self._locks.get(name)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[name] = lock
        return lock

    @asynccontextmanager
    async def _hold_one(self, name: str) -> AsyncIterator[None]:
        async with self._lock_for(name):
            yield

    def locked(self, name: str) -> bool:
        lock = self._locks.get(name)
        return lock is not None and lock.locked()


class RedisKeyedLock(KeyedLock):
    """
    Redis 分布式按键锁 (Redis distributed keyed lock)

    锁带自动过期时间，持有者崩溃不会永久阻塞其他实例。
    """

    KEY_PREFIX = "alert_governance:lock"

    def __init__(
        self,
        redis_factory: Callable[[], Awaitable],
        timeout: int = 10,
        blocking_timeout: int = 5,
    ):
        self._redis_factory = redis_factory
        self.timeout = timeout
        self.blocking_timeout = blocking_timeout

    @asynccontextmanager
    async def _hold_one(self, name: str) -> AsyncIterator[None]:
        client = await self._redis_factory()
        lock = client.lock(
            f"{self.KEY_PREFIX}:{name}",
            timeout=self.timeout,
            blocking_timeout=self.blocking_timeout,
        )
        acquired = await lock.acquire()
        if not acquired:
            raise LockAcquireTimeout(f"Timed out acquiring lock {name}")
        try:
            yield
        finally:
            try:
                await lock.release()
            except LockError:
                # 锁已过期并可能被他人持有 (lock expired, possibly taken over)
                logger.warning("Redis lock %s expired before release", name)


def build_keyed_lock(backend: str, redis_factory=None, timeout: int = 10, blocking_timeout: int = 5) -> KeyedLock:
    """根据配置创建按键锁 (Create keyed lock from configuration)"""
    if backend == "redis":
        if redis_factory is None:
            from alert_governance.core.redis import get_redis
            redis_factory = get_redis
        return RedisKeyedLock(redis_factory, timeout=timeout, blocking_timeout=blocking_timeout)
    return LocalKeyedLock()
