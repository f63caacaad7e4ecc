"""
限流窗口存储 (Rate Limit Window Store)

固定窗口计数器以存储为准：持有作用域键的锁时总是先从存储重新读取窗口，再检查和递增，
共享同一存储的多个实例（redis 锁后端）因此不会基于各自的旧副本计数。
进程内缓存只用于列表和统计展示。窗口在 now >= next_reset_at 时重置（毫秒精度，包含边界）。

The store is the source of truth for fixed-window counters: while holding a scope
key lock the window is always re-read from the store before it is checked and
incremented, so instances sharing one store (redis lock backend) never count on a
stale private copy. The in-process cache only backs listings and statistics.
A window resets when now >= next_reset_at (millisecond precision, boundary inclusive).
"""
import logging
from datetime import datetime
from typing import Dict, List, Optional

from alert_governance.core.clock import minutes, to_millis
from alert_governance.core.locks import KeyedLock
from alert_governance.models.rate_limit import RateLimitConfig
from alert_governance.schemas.rate_limit import ScopeKey, ScopeType
from alert_governance.services.scope_resolver import ScopeSpec
from alert_governance.services.stores import GovernanceStore, bounded

logger = logging.getLogger(__name__)


def scope_key_of(config: RateLimitConfig) -> ScopeKey:
    return ScopeKey(ScopeType(config.scope_type), config.scope_value)


def window_expired(config: RateLimitConfig, now: datetime) -> bool:
    return to_millis(now) >= to_millis(config.next_reset_at)


class WindowStore:
    """限流窗口存取 (Rate-limit window access)"""

    def __init__(self, store: GovernanceStore, lock: KeyedLock, persistence_timeout: float = 5.0):
        self.store = store
        self.lock = lock
        self.persistence_timeout = persistence_timeout
        self._windows: Dict[ScopeKey, RateLimitConfig] = {}

    async def reload(self) -> int:
        """从存储刷新全部窗口 (Refresh every window from the store)"""
        configs = await bounded(
            self.store.load_rate_limit_configs(), self.persistence_timeout, "load rate-limit windows",
        )
        self._windows = {scope_key_of(c): c for c in configs}
        return len(configs)

    async def load(self) -> int:
        count = await self.reload()
        logger.info(f"已加载 {count} 个限流窗口 | Loaded {count} rate-limit windows")
        return count

    async def persist(self, config: RateLimitConfig) -> None:
        await bounded(self.store.save_rate_limit_config(config), self.persistence_timeout, "save rate-limit window")

    async def fetch(self, key: ScopeKey) -> Optional[RateLimitConfig]:
        """
        从存储重新读取窗口 (Re-read one window from the store)

        存储中没有时退回缓存副本（例如上次写入失败）。调用方必须持有该作用域键的锁。
        """
        config = await bounded(
            self.store.get_rate_limit_config(key.scope_type.value, key.scope_value),
            self.persistence_timeout,
            "read rate-limit window",
        )
        if config is None:
            return self._windows.get(key)
        self._windows[key] = config
        return config

    def get(self, key: ScopeKey) -> Optional[RateLimitConfig]:
        return self._windows.get(key)

    def snapshot(self) -> List[RateLimitConfig]:
        return list(self._windows.values())

    async def get_or_create(self, spec: ScopeSpec, now: datetime) -> RateLimitConfig:
        """
        获取窗口，不存在时按默认值创建并持久化 (Get the window, creating it with defaults)

        调用方必须持有该作用域键的锁 (caller holds the scope key lock)
        """
        config = await self.fetch(spec.key)
        if config is not None:
            return config
        config = RateLimitConfig(
            scope_type=spec.key.scope_type.value,
            scope_value=spec.key.scope_value,
            max_alerts=spec.max_alerts,
            window_minutes=spec.window_minutes,
            current_count=0,
            window_start=now,
            next_reset_at=now + minutes(spec.window_minutes),
            last_alert_at=None,
            enabled=True,
            created_at=now,
            updated_at=now,
        )
        await self.persist(config)
        self._windows[spec.key] = config
        logger.debug(f"创建限流窗口 {spec.key} | Created window {spec.key} (max={spec.max_alerts})")
        return config

    @staticmethod
    def roll(config: RateLimitConfig, now: datetime) -> bool:
        """窗口到期时重置，返回是否发生重置 (Reset an expired window; returns whether it reset)"""
        if not window_expired(config, now):
            return False
        config.current_count = 0
        config.window_start = now
        config.next_reset_at = now + minutes(config.window_minutes)
        config.updated_at = now
        return True

    async def cleanup_expired(self, now: datetime) -> int:
        """
        重置所有已过期的窗口 (Reset every expired window)

        每个窗口在自己的作用域锁下重新读取并重置，与评估过程互斥。

        Returns:
            被重置的窗口数量
        """
        await self.reload()
        reset = 0
        for key in list(self._windows):
            async with self.lock.hold(key.lock_name):
                config = await self.fetch(key)
                if config is None or not self.roll(config, now):
                    continue
                await self.persist(config)
                reset += 1
        if reset:
            logger.info(f"重置 {reset} 个过期限流窗口 | Reset {reset} expired rate-limit windows")
        return reset
