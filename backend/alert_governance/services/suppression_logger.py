"""
抑制日志服务 (Suppression Log Service)

功能描述 (Description):
    记录每一条被限流拒绝的告警，保证"没有告警在无记录的情况下被丢弃"。
    日志只允许追加，写入失败只记录错误日志，不影响限流决策。

核心功能 (Core Features):
    1. 抑制记录 (Suppression Recording) - 原因、抑制截止时间、作用域与计数
    2. 查询 (Query) - 按告警、原因、时间过滤
    3. 统计 (Statistics) - 按原因和作用域类型汇总
"""
import logging
from collections import Counter
from datetime import datetime
from typing import List, Optional

from alert_governance.models.suppression import SuppressionLogEntry
from alert_governance.schemas.rate_limit import RateLimitResult
from alert_governance.services.stores import GovernanceStore, bounded

logger = logging.getLogger(__name__)


class SuppressionLogger:
    """抑制日志记录器 (Suppression log recorder)"""

    def __init__(self, store: GovernanceStore, persistence_timeout: float = 5.0):
        self.store = store
        self.persistence_timeout = persistence_timeout

    async def record(self, alert_id: str, result: RateLimitResult, now: datetime) -> Optional[SuppressionLogEntry]:
        """
        记录一次抑制 (Record one suppression)

        Args:
            alert_id: 被拒绝的告警 ID
            result: 限流评估结果（allowed=False）
            now: 当前时间

        Returns:
            写入的日志条目；写入失败时返回 None
        """
        entry = SuppressionLogEntry(
            alert_id=alert_id,
            suppressed=True,
            reason=result.reason,
            suppress_until=result.reset_at,
            details={
                "rate_limit_type": result.metadata.get("scope_type"),
                "scope_value": result.metadata.get("scope_value"),
                "current_count": result.current_count,
                "max_allowed": result.max_allowed,
                "window_minutes": result.window_minutes,
                "retry_after_seconds": result.retry_after_seconds,
            },
            created_at=now,
        )
        try:
            return await bounded(
                self.store.add_suppression_entry(entry), self.persistence_timeout, "record suppression",
            )
        except Exception as e:
            logger.error(
                f"写入抑制日志失败 | Failed to record suppression for alert {alert_id}: {e}",
                exc_info=True,
            )
            return None

    async def list_entries(
        self,
        alert_id: Optional[str] = None,
        reason: Optional[str] = None,
        since: Optional[datetime] = None,
        limit: int = 100,
    ) -> List[SuppressionLogEntry]:
        return await bounded(
            self.store.list_suppression_entries(alert_id=alert_id, reason=reason, since=since, limit=limit),
            self.persistence_timeout,
            "list suppression log",
        )

    async def count_since(self, since: datetime) -> int:
        return await bounded(self.store.count_suppression_entries(since), self.persistence_timeout, "count suppressions")

    async def stats(self, since: Optional[datetime] = None) -> dict:
        """按原因和作用域类型汇总 (Totals by reason and scope type)"""
        entries = await bounded(
            self.store.list_suppression_entries(since=since, limit=None), self.persistence_timeout, "list suppression log",
        )
        by_reason = Counter(e.reason for e in entries)
        by_scope = Counter((e.details or {}).get("rate_limit_type") or "unknown" for e in entries)
        return {
            "total": len(entries),
            "by_reason": dict(by_reason),
            "by_scope_type": dict(by_scope),
        }
