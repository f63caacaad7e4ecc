"""
告警升级模型 (Alert Escalation Model)

定义严重程度规则、告警升级状态记录以及升级历史事件的数据结构。
升级状态只由持久化字段推导，错过的扫描周期可在重启后恢复。

Defines severity rules, the per-alert escalation state record and the escalation
history. The due state is derived purely from persisted fields, so missed ticks
are recovered after a restart.
"""
from datetime import datetime
from typing import Optional

from sqlalchemy import String, Integer, Boolean, Text, DateTime, JSON, func
from sqlalchemy.orm import Mapped, mapped_column

from alert_governance.core.database import Base


class SeverityRule(Base):
    """
    严重程度规则表 (Severity Rule Table)

    按严重程度（可选团队）决定通知对象、升级节奏、营业时间与周末门控以及自动确认/解决时间。
    team_id 为空表示组织级兜底规则；priority 数值越小优先级越高。

    Maps severity (and optionally team) to targets, escalation timing, business-hours
    and weekend gates, and auto-acknowledge/resolve times. NULL team_id is the
    organisation-wide fallback; priority 1 is the highest.
    """
    __tablename__ = "severity_rules"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)  # 规则 ID (Rule ID)
    name: Mapped[str] = mapped_column(String(255), nullable=False)  # 规则名称 (Rule Name)
    severity: Mapped[str] = mapped_column(String(20), nullable=False, index=True)  # 严重程度 (Severity)
    team_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)  # 团队 ID，空为组织级 (Team ID)
    assigned_users: Mapped[list] = mapped_column(JSON, default=list)  # 直接通知的用户 (Assigned Users)
    assigned_channels: Mapped[list] = mapped_column(JSON, default=list)  # 通知渠道 (Assigned Channels)
    initial_delay_minutes: Mapped[int] = mapped_column(Integer, default=0)  # 首次通知延迟 (Initial Delay)
    escalation_interval_minutes: Mapped[int] = mapped_column(Integer, default=30)  # 升级间隔 (Escalation Interval)
    max_escalation_level: Mapped[int] = mapped_column(Integer, default=3)  # 最大升级级别 (Max Level)
    business_hours_only: Mapped[bool] = mapped_column(Boolean, default=False)  # 仅营业时间升级 (Business Hours Only)
    weekend_escalation: Mapped[bool] = mapped_column(Boolean, default=True)  # 周末是否升级 (Weekend Escalation)
    auto_acknowledge_minutes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)  # 自动确认分钟数 (Auto Acknowledge)
    auto_resolve_minutes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)  # 自动解决分钟数 (Auto Resolve)
    priority: Mapped[int] = mapped_column(Integer, default=1)  # 优先级，1 最高 (Priority)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True)  # 是否启用 (Is Enabled)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )  # 创建时间 (Creation Time)


class AlertEscalation(Base):
    """
    告警升级状态表 (Alert Escalation State Table)

    每个被放行并成功路由的告警一条记录。状态：pending → active → acknowledged / auto_resolved / capped。
    """
    __tablename__ = "alert_escalations"

    alert_id: Mapped[str] = mapped_column(String(64), primary_key=True)  # 告警 ID (Alert ID)
    team_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)  # 团队 ID (Team ID)
    severity: Mapped[str] = mapped_column(String(20), nullable=False)  # 严重程度 (Severity)
    title: Mapped[str] = mapped_column(String(500), nullable=False, default="")  # 告警标题，用于通知 (Alert Title)
    severity_rule_id: Mapped[str] = mapped_column(String(64), nullable=False)  # 命中的严重程度规则 (Matched Severity Rule)
    state: Mapped[str] = mapped_column(String(20), nullable=False, index=True)  # 升级状态 (Escalation State)
    level: Mapped[int] = mapped_column(Integer, nullable=False, default=0)  # 当前级别，0 为尚未通知 (Current Level)
    admitted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)  # 放行时间 (Admission Time)
    level_entered_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)  # 进入当前级别时间 (Level Entered)
    next_transition_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True, index=True)  # 下次迁移时间 (Next Transition)
    condition_cleared: Mapped[bool] = mapped_column(Boolean, default=False)  # 告警条件已消除 (Condition Cleared)
    waiting_for_window: Mapped[bool] = mapped_column(Boolean, default=False)  # 等待营业时间/工作日 (Deferred by Gate)
    acknowledged_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)  # 确认时间 (Acknowledged At)
    acknowledged_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)  # 确认人 (Acknowledged By)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)  # 自动解决时间 (Resolved At)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )  # 更新时间 (Update Time)


class EscalationEvent(Base):
    """
    升级历史表 (Escalation History Table)

    只追加；记录每次级别进入、确认、自动确认、自动解决、封顶、延后和无通知对象事件。
    """
    __tablename__ = "escalation_events"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)  # 主键 ID (Primary Key ID)
    alert_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)  # 告警 ID (Alert ID)
    event_type: Mapped[str] = mapped_column(String(30), nullable=False)  # 事件类型 (Event Type)
    level: Mapped[int] = mapped_column(Integer, nullable=False, default=0)  # 事件发生时的级别 (Level)
    targets: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)  # 通知对象 (Targets)
    channels: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)  # 通知渠道 (Channels)
    message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)  # 说明 (Message)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )  # 事件时间 (Event Time)
