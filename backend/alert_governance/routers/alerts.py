"""
告警治理路由模块 (Alert Governance Router)

功能说明：对外部评估任务产生的告警执行治理决策，并接收确认和条件消除信号
API端点：evaluate / acknowledge / condition-cleared / escalation detail
"""
import logging

from fastapi import APIRouter, Depends

from alert_governance.core.deps import get_engine
from alert_governance.models.alert import Alert, AlertRule
from alert_governance.schemas.escalation import (
    AcknowledgeRequest, EscalationDetail, EscalationEventResponse, EscalationResponse,
    EvaluateRequest, GovernanceDecision,
)
from alert_governance.services.governance import AlertGovernanceEngine
from alert_governance.services.stores import bounded

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/alerts", tags=["alerts"])


@router.post("/evaluate", response_model=GovernanceDecision)
async def evaluate_alert(body: EvaluateRequest, engine: AlertGovernanceEngine = Depends(get_engine)):
    """
    告警治理决策接口 (Evaluate Alert)

    记录收到的告警后依次执行限流、路由和升级调度。告警记录写入失败时仍继续治理。
    """
    now = engine.clock.now()
    alert = Alert(**body.alert.model_dump(), status="active", created_at=now)
    rule = AlertRule(**body.rule.model_dump(), enabled=True, created_at=now)
    try:
        await bounded(engine.store.save_alert(alert), engine.settings.persistence_timeout_seconds, "save alert")
    except Exception as e:
        logger.error(f"记录告警 {alert.id} 失败，继续治理 | Failed to store alert, governing anyway: {e}", exc_info=True)
    return await engine.process_alert(alert, rule)


@router.post("/{alert_id}/acknowledge", response_model=EscalationResponse)
async def acknowledge_alert(
    alert_id: str,
    body: AcknowledgeRequest,
    engine: AlertGovernanceEngine = Depends(get_engine),
):
    """确认告警，停止升级 (Acknowledge an alert)"""
    escalation = await engine.scheduler.acknowledge(alert_id, body.acknowledged_by)
    return EscalationResponse.model_validate(escalation)


@router.post("/{alert_id}/condition-cleared", response_model=EscalationResponse)
async def condition_cleared(alert_id: str, engine: AlertGovernanceEngine = Depends(get_engine)):
    """告警条件已消除 (Mark the alert condition cleared)"""
    escalation = await engine.scheduler.mark_condition_cleared(alert_id)
    return EscalationResponse.model_validate(escalation)


@router.get("/{alert_id}/escalation", response_model=EscalationDetail)
async def get_escalation(alert_id: str, engine: AlertGovernanceEngine = Depends(get_engine)):
    """查询告警升级状态和历史 (Escalation state and history)"""
    escalation, events = await engine.scheduler.get_detail(alert_id)
    return EscalationDetail(
        escalation=EscalationResponse.model_validate(escalation),
        events=[EscalationEventResponse.model_validate(e) for e in events],
    )
