"""
自适应限流器 (Adaptive Limiter)

为每个作用域维护一个运行时上限：以配置上限为基准，根据观测到的错误率和负载因子周期性调整。
- error_rate > 10%  → 收紧 ×0.8
- error_rate < 1% 且 load_factor < 0.5 → 放宽 ×1.1
- 其他情况保持不变
结果限制在 [base*0.1, base*2] 区间内，同一作用域两次调整至少间隔 10 分钟。
修改前总是在作用域锁内从存储重新读取，多实例共享存储时不会互相覆盖。

Maintains a runtime ceiling per scope derived from the configured limit and adjusted
periodically from the observed error rate and load factor. The result is clamped to
[base*0.1, base*2]; one scope is adjusted at most once per 10 minutes. Every
mutation re-reads the row from the store under the scope lock.
"""
import logging
import math
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from alert_governance.core.exceptions import NotFoundError, ValidationError
from alert_governance.core.locks import KeyedLock
from alert_governance.models.rate_limit import AdaptiveLimit
from alert_governance.schemas.rate_limit import ScopeKey, ScopeType
from alert_governance.services.stores import GovernanceStore, bounded

logger = logging.getLogger(__name__)

TIGHTEN_ERROR_RATE = 0.10  # 收紧阈值 (tighten above)
RELAX_ERROR_RATE = 0.01  # 放宽阈值 (relax below)
RELAX_LOAD_FACTOR = 0.5
TIGHTEN_FACTOR = 0.8
RELAX_FACTOR = 1.1
MIN_RATIO = 0.1
MAX_RATIO = 2.0


def adaptation_factor(error_rate: float, load_factor: float) -> float:
    """根据运行信号计算调整系数 (Factor for the given signals)"""
    if error_rate > TIGHTEN_ERROR_RATE:
        return TIGHTEN_FACTOR
    if error_rate < RELAX_ERROR_RATE and load_factor < RELAX_LOAD_FACTOR:
        return RELAX_FACTOR
    return 1.0


def clamp_limit(value: float, base_limit: int) -> float:
    return max(base_limit * MIN_RATIO, min(base_limit * MAX_RATIO, value))


class AdaptiveLimiter:
    """按作用域的自适应上限 (Per-scope adaptive ceiling)"""

    def __init__(
        self,
        store: GovernanceStore,
        lock: KeyedLock,
        persistence_timeout: float = 5.0,
        min_adjust_minutes: int = 10,
    ):
        self.store = store
        self.lock = lock
        self.persistence_timeout = persistence_timeout
        self.min_adjust_interval = timedelta(minutes=min_adjust_minutes)
        self._limits: Dict[ScopeKey, AdaptiveLimit] = {}

    async def load(self) -> int:
        """从存储刷新全部自适应上限 (Refresh every ceiling from the store)"""
        limits = await bounded(self.store.load_adaptive_limits(), self.persistence_timeout, "load adaptive limits")
        self._limits = {ScopeKey(ScopeType(l.scope_type), l.scope_value): l for l in limits}
        return len(limits)

    async def _persist(self, limit: AdaptiveLimit) -> None:
        await bounded(self.store.save_adaptive_limit(limit), self.persistence_timeout, "save adaptive limit")

    async def fetch(self, key: ScopeKey) -> Optional[AdaptiveLimit]:
        """
        从存储重新读取自适应上限 (Re-read one ceiling from the store)

        调用方必须持有该作用域键的锁 (caller holds the scope key lock)
        """
        limit = await bounded(
            self.store.get_adaptive_limit(key.scope_type.value, key.scope_value),
            self.persistence_timeout,
            "read adaptive limit",
        )
        if limit is None:
            return self._limits.get(key)
        self._limits[key] = limit
        return limit

    def get(self, key: ScopeKey) -> Optional[AdaptiveLimit]:
        return self._limits.get(key)

    def snapshot(self) -> List[AdaptiveLimit]:
        return list(self._limits.values())

    async def effective_limit(self, key: ScopeKey, configured_max: int, now: datetime) -> int:
        """
        当前自适应上限，首次引用时以配置上限初始化 (Current ceiling, initialised on first reference)

        调用方必须持有该作用域键的锁 (caller holds the scope key lock)
        """
        limit = await self.fetch(key)
        if limit is None:
            limit = AdaptiveLimit(
                scope_type=key.scope_type.value,
                scope_value=key.scope_value,
                base_limit=configured_max,
                current_limit=float(configured_max),
                adaptation_factor=1.0,
                error_rate=0.0,
                load_factor=1.0,
                last_adjustment=now,
            )
            await self._persist(limit)
            self._limits[key] = limit
        return math.floor(limit.current_limit)

    async def adjust(self, now: datetime) -> int:
        """
        周期调整所有到期的自适应上限 (Adjust every ceiling that is due)

        Returns:
            本次调整的作用域数量
        """
        await self.load()
        adjusted = 0
        for key in list(self._limits):
            async with self.lock.hold(key.lock_name):
                limit = await self.fetch(key)
                if limit is None or now - limit.last_adjustment < self.min_adjust_interval:
                    continue
                factor = adaptation_factor(limit.error_rate, limit.load_factor)
                previous = limit.current_limit
                limit.current_limit = clamp_limit(previous * factor, limit.base_limit)
                limit.adaptation_factor = factor
                limit.last_adjustment = now
                await self._persist(limit)
                adjusted += 1
                if factor != 1.0:
                    logger.info(
                        f"自适应上限调整 {key}: {previous:.2f} → {limit.current_limit:.2f} "
                        f"(error_rate={limit.error_rate}, load_factor={limit.load_factor})"
                    )
        return adjusted

    async def record_signals(
        self,
        key: ScopeKey,
        error_rate: Optional[float] = None,
        load_factor: Optional[float] = None,
    ) -> AdaptiveLimit:
        """记录外部注入的运行信号 (Record externally fed runtime signals)"""
        if error_rate is not None and not 0 <= error_rate <= 1:
            raise ValidationError("error_rate must be within [0, 1]", detail=str(error_rate))
        if load_factor is not None and load_factor < 0:
            raise ValidationError("load_factor must be >= 0", detail=str(load_factor))
        async with self.lock.hold(key.lock_name):
            limit = await self.fetch(key)
            if limit is None:
                raise NotFoundError(f"No adaptive limit for scope {key}")
            if error_rate is not None:
                limit.error_rate = error_rate
            if load_factor is not None:
                limit.load_factor = load_factor
            await self._persist(limit)
            return limit

    async def rebase(self, key: ScopeKey, base_limit: int) -> None:
        """
        配置上限变更后重设基准 (Re-base after the configured limit changed)

        调用方必须持有该作用域键的锁 (caller holds the scope key lock)
        """
        limit = await self.fetch(key)
        if limit is None:
            return
        limit.base_limit = base_limit
        limit.current_limit = float(base_limit)
        limit.adaptation_factor = 1.0
        await self._persist(limit)
