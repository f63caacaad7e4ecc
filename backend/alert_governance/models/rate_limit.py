"""
限流模型 (Rate Limit Models)

按 (scope_type, scope_value) 复合主键存储固定窗口计数器与自适应上限。
两张表的生命周期相互独立：窗口按需创建、从不删除；自适应上限在首次引用时初始化。

Fixed-window counters and adaptive ceilings keyed by the composite primary key
(scope_type, scope_value). The two tables have independent lifetimes.
"""
from datetime import datetime
from typing import Optional

from sqlalchemy import String, Integer, Float, Boolean, DateTime, func
from sqlalchemy.orm import Mapped, mapped_column

from alert_governance.core.database import Base


class RateLimitConfig(Base):
    """
    限流窗口表 (Rate Limit Window Table)

    不变量：now >= next_reset_at 时 current_count 归零；next_reset_at = window_start + window_minutes。

    Invariant: current_count resets exactly when now >= next_reset_at, and
    next_reset_at = window_start + window_minutes.
    """
    __tablename__ = "rate_limit_configs"

    scope_type: Mapped[str] = mapped_column(String(20), primary_key=True)  # 作用域类型：rule/team/metric/severity/global (Scope Type)
    scope_value: Mapped[str] = mapped_column(String(255), primary_key=True)  # 作用域取值 (Scope Value)
    max_alerts: Mapped[int] = mapped_column(Integer, nullable=False)  # 窗口内最大告警数 (Max Alerts per Window)
    window_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=60)  # 窗口长度（分钟）(Window Length)
    current_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)  # 当前计数 (Current Count)
    window_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)  # 窗口开始 (Window Start)
    next_reset_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)  # 下次重置时间 (Next Reset)
    last_alert_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)  # 最近放行时间 (Last Admitted)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True)  # 是否启用 (Is Enabled)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )  # 创建时间 (Creation Time)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )  # 更新时间 (Update Time)


class AdaptiveLimit(Base):
    """
    自适应上限表 (Adaptive Limit Table)

    不变量：base_limit * 0.1 <= current_limit <= base_limit * 2。
    """
    __tablename__ = "adaptive_limits"

    scope_type: Mapped[str] = mapped_column(String(20), primary_key=True)  # 作用域类型 (Scope Type)
    scope_value: Mapped[str] = mapped_column(String(255), primary_key=True)  # 作用域取值 (Scope Value)
    base_limit: Mapped[int] = mapped_column(Integer, nullable=False)  # 基准上限 (Base Limit)
    current_limit: Mapped[float] = mapped_column(Float, nullable=False)  # 当前上限 (Current Limit)
    adaptation_factor: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)  # 最近一次调整系数 (Last Factor)
    error_rate: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)  # 观测错误率 (Observed Error Rate)
    load_factor: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)  # 负载因子 (Load Factor)
    last_adjustment: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)  # 上次调整时间 (Last Adjustment)
