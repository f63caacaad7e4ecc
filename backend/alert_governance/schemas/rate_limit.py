"""
限流模式定义 (Rate Limit Schema Definitions)

定义作用域键、限流评估结果以及限流相关 API 的请求和响应模式。

Defines the scope key, the rate-limit evaluation result and the request/response
schemas of the rate-limit API.
"""
import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class ScopeType(str, enum.Enum):
    """限流作用域类型，按检查顺序排列 (Scope types in evaluation order)"""
    RULE = "rule"
    TEAM = "team"
    METRIC = "metric"
    SEVERITY = "severity"
    GLOBAL = "global"


# 评估顺序：最窄的作用域最先检查 (Evaluation order, narrowest first)
SCOPE_ORDER = [ScopeType.RULE, ScopeType.TEAM, ScopeType.METRIC, ScopeType.SEVERITY, ScopeType.GLOBAL]


@dataclass(frozen=True)
class ScopeKey:
    """作用域键 (Scope key)"""
    scope_type: ScopeType
    scope_value: str

    @property
    def lock_name(self) -> str:
        return f"scope:{self.scope_type.value}:{self.scope_value}"

    @property
    def reason(self) -> str:
        """拒绝原因，如 rule_rate_limit (Rejection reason)"""
        return f"{self.scope_type.value}_rate_limit"

    def __str__(self) -> str:
        return f"{self.scope_type.value}:{self.scope_value}"


class RateLimitResult(BaseModel):
    """限流评估结果 (Rate Limit Evaluation Result)"""
    allowed: bool = Field(..., description="是否放行")
    reason: str = Field(..., description="原因")
    current_count: int = Field(0, description="当前计数")
    max_allowed: int = Field(0, description="生效上限")
    window_minutes: int = Field(0, description="窗口长度（分钟）")
    reset_at: Optional[datetime] = Field(None, description="窗口重置时间")
    retry_after_seconds: Optional[int] = Field(None, description="建议重试秒数")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="附加信息")


class RateLimitWindowResponse(BaseModel):
    """限流窗口响应模式 (Rate Limit Window Response Schema)"""
    scope_type: str
    scope_value: str
    max_alerts: int
    window_minutes: int
    current_count: int
    window_start: datetime
    next_reset_at: datetime
    last_alert_at: Optional[datetime] = None
    enabled: bool
    adaptive_limit: Optional[int] = None

    model_config = {"from_attributes": True}


class RateLimitUpdate(BaseModel):
    """更新限流配置请求模式 (Update Rate Limit Request Schema)"""
    max_alerts: Optional[int] = Field(None, ge=1, description="窗口内最大告警数")
    window_minutes: Optional[int] = Field(None, ge=1, description="窗口长度（分钟）")
    enabled: Optional[bool] = Field(None, description="是否启用")


class RateLimitSignals(BaseModel):
    """作用域运行信号 (Scope runtime signals)"""
    error_rate: Optional[float] = Field(None, ge=0, le=1, description="错误率 0..1")
    load_factor: Optional[float] = Field(None, ge=0, description="负载因子")


class AdaptiveLimitResponse(BaseModel):
    """自适应上限响应模式 (Adaptive Limit Response Schema)"""
    scope_type: str
    scope_value: str
    base_limit: int
    current_limit: float
    adaptation_factor: float
    error_rate: float
    load_factor: float
    last_adjustment: datetime

    model_config = {"from_attributes": True}


class RateLimitStats(BaseModel):
    """限流统计 (Rate Limit Statistics)"""
    total_limits: int
    active_limits: int
    adaptive_limits: int
    recent_hits: int
