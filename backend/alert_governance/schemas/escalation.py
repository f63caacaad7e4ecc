"""
告警升级模式定义 (Alert Escalation Schema Definitions)

定义升级状态、通知请求、值班对象、治理决策以及升级相关 API 的请求和响应模式。

Defines escalation states, notification requests, on-call targets, the governance
decision and the request/response schemas of the escalation API.
"""
import enum
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from alert_governance.schemas.rate_limit import RateLimitResult


class EscalationState(str, enum.Enum):
    """升级状态 (Escalation states)"""
    PENDING = "pending"
    ACTIVE = "active"
    ACKNOWLEDGED = "acknowledged"
    AUTO_RESOLVED = "auto_resolved"
    CAPPED = "capped"


TERMINAL_STATES = {EscalationState.ACKNOWLEDGED.value, EscalationState.AUTO_RESOLVED.value, EscalationState.CAPPED.value}


class OnCallTarget(BaseModel):
    """值班通知对象 (On-call target)"""
    user_id: str
    schedule_id: Optional[str] = None
    role: str = "primary"  # primary / backup / assigned


class NotificationRequest(BaseModel):
    """交给通知分发器的请求 (Request handed to the notification dispatcher)"""
    alert_id: str
    title: str
    severity: str
    level: int
    targets: List[str] = Field(default_factory=list)
    channels: List[str] = Field(default_factory=list)
    kind: str = "escalation"


class GovernanceDecision(BaseModel):
    """一次治理决策的结果 (Outcome of one governance decision)"""
    alert_id: str
    rate_limit: RateLimitResult
    routed: bool = False
    severity_rule_id: Optional[str] = None
    escalation_state: Optional[str] = None
    escalation_level: Optional[int] = None
    metadata: dict = Field(default_factory=dict)  # 放行后路由/升级失败时记录 governance_error


class AlertIn(BaseModel):
    """待评估告警 (Alert to evaluate)"""
    id: str
    rule_id: str
    team_id: Optional[str] = None
    severity: str = Field(..., pattern="^(critical|high|medium|low|info)$")
    title: str
    message: Optional[str] = None
    metric_name: str
    metric_value: Optional[float] = None


class AlertRuleIn(BaseModel):
    """告警规则（仅限流相关字段）(Alert rule, rate-limit fields only)"""
    id: str
    name: str = ""
    max_alerts_per_hour: int = Field(10, ge=1)


class EvaluateRequest(BaseModel):
    """评估请求 (Evaluate request)"""
    alert: AlertIn
    rule: AlertRuleIn


class AcknowledgeRequest(BaseModel):
    """确认告警请求 (Acknowledge request)"""
    acknowledged_by: str = Field(..., min_length=1, description="确认人")


class EscalationResponse(BaseModel):
    """升级状态响应模式 (Escalation State Response Schema)"""
    alert_id: str
    title: str = ""
    team_id: Optional[str] = None
    severity: str
    severity_rule_id: str
    state: str
    level: int
    admitted_at: datetime
    level_entered_at: Optional[datetime] = None
    next_transition_at: Optional[datetime] = None
    condition_cleared: bool
    waiting_for_window: bool
    acknowledged_at: Optional[datetime] = None
    acknowledged_by: Optional[str] = None
    resolved_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class EscalationEventResponse(BaseModel):
    """升级历史响应模式 (Escalation Event Response Schema)"""
    id: Optional[int] = None
    alert_id: str
    event_type: str
    level: int
    targets: Optional[List[str]] = None
    channels: Optional[List[str]] = None
    message: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class EscalationDetail(BaseModel):
    """升级状态与历史 (Escalation state with history)"""
    escalation: EscalationResponse
    events: List[EscalationEventResponse]


class OnCallResponse(BaseModel):
    """值班查询响应 (On-call lookup response)"""
    team_id: str
    severity: str
    at: datetime
    targets: List[OnCallTarget]
