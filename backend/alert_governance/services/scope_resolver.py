"""
限流作用域解析 (Rate Limit Scope Resolution)

根据告警及其告警规则，按固定顺序列出适用的限流作用域及各自的默认上限：
rule → team → metric → severity → global。没有团队的告警跳过 team 作用域。

Enumerates the rate-limit scopes that apply to an alert and its rule, in the fixed
order rule → team → metric → severity → global, together with each scope's default
limit. Team-less alerts skip the team scope.
"""
from dataclasses import dataclass
from typing import List

from alert_governance.core.config import settings
from alert_governance.schemas.rate_limit import ScopeKey, ScopeType

# 严重程度维度默认上限 (Severity scope defaults)
SEVERITY_LIMITS = {
    "critical": 10,
    "high": 20,
    "medium": 50,
    "low": 100,
    "info": 200,
}

GLOBAL_SCOPE_VALUE = "global"


@dataclass(frozen=True)
class ScopeSpec:
    """作用域及其默认配置 (Scope with its default configuration)"""
    key: ScopeKey
    max_alerts: int
    window_minutes: int


def resolve_scopes(alert, rule) -> List[ScopeSpec]:
    """
    解析告警适用的限流作用域 (Resolve applicable scopes)

    Args:
        alert: 具有 rule_id/team_id/metric_name/severity 属性的告警
        rule: 具有 max_alerts_per_hour 属性的告警规则

    Returns:
        按评估顺序排列的 ScopeSpec 列表
    """
    window = settings.default_window_minutes
    scopes = [ScopeSpec(ScopeKey(ScopeType.RULE, str(rule.id)), rule.max_alerts_per_hour, 60)]
    if alert.team_id:
        scopes.append(ScopeSpec(ScopeKey(ScopeType.TEAM, str(alert.team_id)), settings.default_team_limit, window))
    scopes.append(ScopeSpec(ScopeKey(ScopeType.METRIC, alert.metric_name), settings.default_metric_limit, window))
    scopes.append(
        ScopeSpec(
            ScopeKey(ScopeType.SEVERITY, alert.severity),
            SEVERITY_LIMITS.get(alert.severity, SEVERITY_LIMITS["info"]),
            window,
        )
    )
    scopes.append(ScopeSpec(ScopeKey(ScopeType.GLOBAL, GLOBAL_SCOPE_VALUE), settings.default_global_limit, window))
    return scopes
