"""
告警限流器 (Alert Rate Limiter)

按 rule → team → metric → severity → global 的固定顺序检查五个作用域，
遇到第一个拒绝的作用域立即返回；全部通过时对所有适用作用域的计数加一并持久化。
整个"检查-递增"序列在所有适用作用域键的锁内完成，并发评估之间不会超发。

Checks five scopes in the fixed order rule → team → metric → severity → global and
returns on the first rejection. When every scope passes, the counters of all
applicable scopes are incremented and persisted. The whole check-then-increment
sequence runs while holding the locks of every applicable scope key.

全局作用域键包含在每次评估的锁集合中，因此同一进程（或共享同一 redis 锁的整个集群）内
的评估实际上是串行的；这比按键并行更严格，但计数始终精确。
The global scope key is part of every evaluation's lock set, so evaluations are in
effect serialized process-wide (fleet-wide with the redis backend). That is stricter
than per-key parallelism but keeps every counter exact.

失败策略 (Failure policy):
    检查阶段任何内部错误或持久化超时 → 放行（fail open），原因 rate_limit_error；
    递增阶段持久化失败 → 只记录日志，放行结果不变。
"""
import logging
import math
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from alert_governance.core.clock import Clock, seconds_until
from alert_governance.core.exceptions import NotFoundError
from alert_governance.core.locks import KeyedLock
from alert_governance.models.rate_limit import RateLimitConfig
from alert_governance.schemas.rate_limit import RateLimitResult, ScopeKey
from alert_governance.services.adaptive_limiter import AdaptiveLimiter
from alert_governance.services.scope_resolver import ScopeSpec, resolve_scopes
from alert_governance.services.suppression_logger import SuppressionLogger
from alert_governance.services.window_store import WindowStore, scope_key_of

logger = logging.getLogger(__name__)

RECENT_HITS_WINDOW = timedelta(hours=1)


class AlertRateLimiter:
    """多作用域告警限流器 (Multi-scope alert rate limiter)"""

    def __init__(
        self,
        windows: WindowStore,
        adaptive: AdaptiveLimiter,
        suppression: SuppressionLogger,
        lock: KeyedLock,
        clock: Optional[Clock] = None,
    ):
        self.windows = windows
        self.adaptive = adaptive
        self.suppression = suppression
        self.lock = lock
        self.clock = clock or Clock()

    async def evaluate(self, alert, rule) -> RateLimitResult:
        """
        评估告警是否允许发送通知 (Decide whether the alert may notify now)

        Args:
            alert: 告警（rule_id/team_id/metric_name/severity）
            rule: 告警规则（max_alerts_per_hour）

        Returns:
            RateLimitResult
        """
        now = self.clock.now()
        scopes = resolve_scopes(alert, rule)
        try:
            async with self.lock.hold(*(s.key.lock_name for s in scopes)):
                result = await self._check_and_count(scopes, now)
        except Exception as e:
            message = str(e) or type(e).__name__
            logger.warning(f"限流检查失败，放行告警 {alert.id} | Rate limit check failed, failing open: {message}")
            return RateLimitResult(
                allowed=True,
                reason="rate_limit_error",
                reset_at=now,
                metadata={"rate_limit_error": message},
            )

        if not result.allowed:
            logger.info(
                f"告警 {alert.id} 被限流 | Alert suppressed by {result.reason} "
                f"({result.current_count}/{result.max_allowed}, retry after {result.retry_after_seconds}s)"
            )
            await self.suppression.record(alert.id, result, now)
        return result

    async def _check_and_count(self, scopes: List[ScopeSpec], now: datetime) -> RateLimitResult:
        counted: List[RateLimitConfig] = []
        for spec in scopes:
            config = await self.windows.get_or_create(spec, now)
            if self.windows.roll(config, now):
                await self.windows.persist(config)
            if not config.enabled:
                continue
            adaptive_limit = await self.adaptive.effective_limit(spec.key, config.max_alerts, now)
            effective = min(config.max_alerts, adaptive_limit)
            if config.current_count >= effective:
                return RateLimitResult(
                    allowed=False,
                    reason=spec.key.reason,
                    current_count=config.current_count,
                    max_allowed=effective,
                    window_minutes=config.window_minutes,
                    reset_at=config.next_reset_at,
                    retry_after_seconds=seconds_until(config.next_reset_at, now),
                    metadata={
                        "scope_type": spec.key.scope_type.value,
                        "scope_value": spec.key.scope_value,
                        "adaptive_limit": adaptive_limit,
                        "original_limit": config.max_alerts,
                    },
                )
            counted.append(config)

        for config in counted:
            config.current_count += 1
            config.last_alert_at = now
            config.updated_at = now
            try:
                await self.windows.persist(config)
            except Exception as e:
                logger.error(
                    f"持久化限流计数失败 | Failed to persist counter "
                    f"{config.scope_type}:{config.scope_value}: {e}",
                    exc_info=True,
                )

        first = counted[0] if counted else None
        return RateLimitResult(
            allowed=True,
            reason="rate_limit_passed",
            current_count=first.current_count if first else 0,
            max_allowed=first.max_alerts if first else 0,
            window_minutes=first.window_minutes if first else 0,
            reset_at=first.next_reset_at if first else now,
        )

    # ---- 管理操作 (Management operations) ----

    async def refresh(self) -> None:
        """从存储刷新窗口和自适应上限缓存 (Refresh the cached windows and ceilings)"""
        await self.windows.reload()
        await self.adaptive.load()

    async def get_statistics(self) -> dict:
        """限流统计 (Rate-limit statistics)"""
        await self.refresh()
        windows = self.windows.snapshot()
        since = self.clock.now() - RECENT_HITS_WINDOW
        return {
            "total_limits": len(windows),
            "active_limits": sum(1 for w in windows if w.enabled),
            "adaptive_limits": len(self.adaptive.snapshot()),
            "recent_hits": await self.suppression.count_since(since),
        }

    async def update_rate_limit(
        self,
        key: ScopeKey,
        max_alerts: Optional[int] = None,
        window_minutes: Optional[int] = None,
        enabled: Optional[bool] = None,
    ) -> RateLimitConfig:
        """
        修改作用域限流配置 (Update a scope's rate-limit configuration)

        修改 max_alerts 会同时重设该作用域的自适应基准；修改 window_minutes 会重算 next_reset_at。

        Raises:
            NotFoundError: 作用域尚未创建
        """
        async with self.lock.hold(key.lock_name):
            config = await self.windows.fetch(key)
            if config is None:
                raise NotFoundError(f"Rate limit scope {key} not found")
            if max_alerts is not None and max_alerts != config.max_alerts:
                config.max_alerts = max_alerts
                await self.adaptive.rebase(key, max_alerts)
            if window_minutes is not None and window_minutes != config.window_minutes:
                config.window_minutes = window_minutes
                config.next_reset_at = config.window_start + timedelta(minutes=window_minutes)
            if enabled is not None:
                config.enabled = enabled
            config.updated_at = self.clock.now()
            await self.windows.persist(config)
            logger.info(f"更新限流配置 {key} | Updated rate limit {key}")
            return config

    def list_windows(self) -> List[Tuple[RateLimitConfig, Optional[int]]]:
        """窗口快照及其自适应上限 (Window snapshot with adaptive ceilings)"""
        rows = []
        for config in self.windows.snapshot():
            limit = self.adaptive.get(scope_key_of(config))
            rows.append((config, math.floor(limit.current_limit) if limit is not None else None))
        return rows
