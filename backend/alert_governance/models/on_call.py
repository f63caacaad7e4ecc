"""
值班排期模型 (On-Call Schedule Model)

定义团队值班排期与团队营业时间配置。排期类型支持固定、轮换和跟随太阳（follow_the_sun），
rotation_config 以 JSON 存储各类型的参数。

Defines team on-call schedules and team business-hours configuration. Schedule types
are fixed, rotation and follow_the_sun; rotation_config holds each type's parameters.
"""
from datetime import datetime
from typing import Optional

from sqlalchemy import String, Boolean, DateTime, JSON, func
from sqlalchemy.orm import Mapped, mapped_column

from alert_governance.core.database import Base
from alert_governance.models.alert import SEVERITIES


class OnCallSchedule(Base):
    """
    值班排期表 (On-Call Schedule Table)

    rotation_config 示例 (examples):
    - fixed: {"participants": ["u1", "u2"]}
    - rotation: {"participants": ["u1", "u2"], "rotation_hours": 168, "include_backup": true}
    - follow_the_sun: {"regions": [{"name": "apac", "start_hour": 0, "end_hour": 8, "participants": ["u3"]}]}
    """
    __tablename__ = "on_call_schedules"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)  # 排期 ID (Schedule ID)
    team_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)  # 团队 ID (Team ID)
    name: Mapped[str] = mapped_column(String(255), nullable=False)  # 排期名称 (Schedule Name)
    schedule_type: Mapped[str] = mapped_column(String(20), nullable=False, default="fixed")  # rotation/fixed/follow_the_sun
    rotation_config: Mapped[dict] = mapped_column(JSON, default=dict)  # 排期参数 (Schedule Parameters)
    timezone: Mapped[str] = mapped_column(String(64), default="UTC")  # 排期时区 (Schedule Timezone)
    effective_from: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)  # 生效开始 (Effective From)
    effective_until: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)  # 生效结束 (Effective Until)
    applicable_severities: Mapped[list] = mapped_column(JSON, default=lambda: list(SEVERITIES))  # 适用严重程度 (Applicable Severities)
    override_business_hours: Mapped[bool] = mapped_column(Boolean, default=False)  # 忽略营业时间限制 (Override Business Hours)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True)  # 是否启用 (Is Enabled)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )  # 创建时间 (Creation Time)


class TeamEscalationConfig(Base):
    """
    团队升级配置表 (Team Escalation Config Table)

    business_hours 示例 (example):
    {"timezone": "Asia/Shanghai", "weekdays": {"start": "09:00", "end": "18:00"}, "days": [0, 1, 2, 3, 4]}
    """
    __tablename__ = "team_escalation_configs"

    team_id: Mapped[str] = mapped_column(String(64), primary_key=True)  # 团队 ID (Team ID)
    business_hours: Mapped[dict] = mapped_column(JSON, default=dict)  # 营业时间配置 (Business Hours)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True)  # 是否启用 (Is Enabled)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )  # 创建时间 (Creation Time)
