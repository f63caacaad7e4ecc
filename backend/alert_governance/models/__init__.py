"""
数据模型包 (Data Models Package)

集中导出告警治理引擎的全部 SQLAlchemy ORM 模型：告警与告警规则、限流窗口与自适应上限、
抑制日志、严重程度规则、升级状态与历史、值班排期和团队营业时间配置。

Centrally exports every SQLAlchemy ORM model of the alert governance engine: alerts and
alert rules, rate-limit windows and adaptive limits, the suppression log, severity rules,
escalation state and history, on-call schedules and team business-hours configuration.
"""
from alert_governance.models.alert import Alert, AlertRule
from alert_governance.models.rate_limit import RateLimitConfig, AdaptiveLimit
from alert_governance.models.suppression import SuppressionLogEntry
from alert_governance.models.escalation import SeverityRule, AlertEscalation, EscalationEvent
from alert_governance.models.on_call import OnCallSchedule, TeamEscalationConfig

# 导出所有模型类供外部模块使用 (Export all model classes for external modules)
__all__ = [
    "Alert", "AlertRule", "RateLimitConfig", "AdaptiveLimit", "SuppressionLogEntry",
    "SeverityRule", "AlertEscalation", "EscalationEvent",
    "OnCallSchedule", "TeamEscalationConfig",
]
