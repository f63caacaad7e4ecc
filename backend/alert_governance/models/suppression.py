"""
抑制日志模型 (Suppression Log Model)

只追加的抑制记录：每一次被限流拒绝的告警都会留下一条，用于审计和统计分析。

Append-only record of every alert rejected by the rate limiter, for audit and analytics.
"""
from datetime import datetime
from typing import Optional

from sqlalchemy import String, Integer, Boolean, DateTime, JSON, func
from sqlalchemy.orm import Mapped, mapped_column

from alert_governance.core.database import Base


class SuppressionLogEntry(Base):
    """抑制日志表 (Suppression Log Table)"""
    __tablename__ = "alert_suppression_log"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)  # 主键 ID (Primary Key ID)
    alert_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)  # 告警 ID (Alert ID)
    suppressed: Mapped[bool] = mapped_column(Boolean, default=True)  # 是否被抑制 (Suppressed)
    reason: Mapped[str] = mapped_column(String(50), nullable=False, index=True)  # 原因，如 rule_rate_limit (Reason)
    suppress_until: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)  # 抑制截止 (Suppressed Until)
    # "metadata" 为 Declarative 保留属性名 (reserved attribute name)
    details: Mapped[Optional[dict]] = mapped_column("metadata", JSON, nullable=True)  # 作用域、计数、重试秒数 (Scope, counts, retry-after)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), index=True
    )  # 记录时间 (Record Time)
