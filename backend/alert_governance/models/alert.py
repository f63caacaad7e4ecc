"""
告警模型 (Alert Model)

定义告警规则和告警事件的表结构。告警由外部的指标评估任务创建，
治理引擎只回写终态（resolved / suppressed）。

Defines table structures for alert rules and alert events. Alerts are created by
external metric-evaluation jobs; the engine only writes terminal states back.
"""
from datetime import datetime
from typing import Optional

from sqlalchemy import String, Integer, Float, DateTime, Boolean, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from alert_governance.core.database import Base

SEVERITIES = ["critical", "high", "medium", "low", "info"]


class AlertRule(Base):
    """
    告警规则表 (Alert Rule Table)

    引擎只读取 max_alerts_per_hour，作为规则维度的限流上限。

    The engine only reads max_alerts_per_hour, which feeds the rule scope limit.
    """
    __tablename__ = "alert_rules"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)  # 规则 ID (Rule ID)
    name: Mapped[str] = mapped_column(String(255), nullable=False)  # 规则名称 (Rule Name)
    max_alerts_per_hour: Mapped[int] = mapped_column(Integer, nullable=False, default=10)  # 每小时最多告警数 (Max Alerts per Hour)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True)  # 是否启用 (Is Enabled)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )  # 创建时间 (Creation Time)


class Alert(Base):
    """
    告警事件表 (Alert Event Table)

    一次告警触发，携带严重程度、团队、指标名称等路由与限流所需的属性。
    """
    __tablename__ = "alerts"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)  # 告警 ID (Alert ID)
    rule_id: Mapped[str] = mapped_column(String(64), index=True, nullable=False)  # 告警规则 ID (Alert Rule ID)
    team_id: Mapped[Optional[str]] = mapped_column(String(64), index=True, nullable=True)  # 所属团队 (Owning Team)
    severity: Mapped[str] = mapped_column(String(20), nullable=False)  # 严重程度：critical/high/medium/low/info (Severity)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")  # 状态：active/acknowledged/resolved/suppressed (Status)
    title: Mapped[str] = mapped_column(String(500), nullable=False)  # 告警标题 (Alert Title)
    message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)  # 告警详细消息 (Alert Message)
    metric_name: Mapped[str] = mapped_column(String(255), nullable=False)  # 指标名称 (Metric Name)
    metric_value: Mapped[Optional[float]] = mapped_column(Float, nullable=True)  # 触发时的指标值 (Metric Value at Trigger)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )  # 创建时间 (Creation Time)
