"""
严重程度路由 (Severity Router)

根据告警严重程度（及团队）选出一条严重程度规则：
团队专属规则优先于组织级规则（team_id 为空），同类规则按 priority 升序（1 最高）。
查询结果按 (severity, team_id) 缓存一段时间，规则变更后可调用 invalidate() 清空。

Picks one severity rule for an alert's severity and team. Team-specific rules win
over organisation-wide ones (NULL team_id); ties are broken by ascending priority.
Lookups are cached per (severity, team_id) for a TTL; invalidate() clears the cache.
"""
import logging
from datetime import datetime, timedelta
from typing import Dict, Optional, Tuple

from alert_governance.core.clock import Clock
from alert_governance.models.escalation import SeverityRule
from alert_governance.services.stores import GovernanceStore

logger = logging.getLogger(__name__)


class SeverityRouter:
    """严重程度路由器 (Severity router)"""

    def __init__(self, store: GovernanceStore, clock: Optional[Clock] = None, cache_ttl_seconds: int = 60):
        self.store = store
        self.clock = clock or Clock()
        self.cache_ttl = timedelta(seconds=cache_ttl_seconds)
        self._cache: Dict[Tuple[str, Optional[str]], Tuple[datetime, Optional[SeverityRule]]] = {}

    async def route(self, severity: str, team_id: Optional[str] = None) -> Optional[SeverityRule]:
        """
        为严重程度和团队选择规则 (Select the rule for severity and team)

        Returns:
            匹配的 SeverityRule；没有任何启用规则时返回 None
        """
        now = self.clock.now()
        cache_key = (severity, team_id)
        cached = self._cache.get(cache_key)
        if cached is not None and cached[0] > now:
            return cached[1]

        rules = await self.store.list_severity_rules(severity)
        candidates = [
            r for r in rules
            if r.enabled and r.severity == severity and (r.team_id is None or r.team_id == team_id)
        ]
        candidates.sort(key=lambda r: (0 if r.team_id is not None else 1, r.priority, r.id))
        rule = candidates[0] if candidates else None
        self._cache[cache_key] = (now + self.cache_ttl, rule)
        return rule

    def invalidate(self) -> None:
        self._cache.clear()
