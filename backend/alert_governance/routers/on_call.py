"""
值班查询路由模块 (On-Call Lookup Router)

功能说明：查询团队在某一时刻、某一严重程度下的值班通知对象
"""
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query

from alert_governance.core.clock import ensure_utc
from alert_governance.core.deps import get_engine
from alert_governance.schemas.escalation import OnCallResponse
from alert_governance.services.governance import AlertGovernanceEngine

router = APIRouter(prefix="/api/v1/on-call", tags=["on-call"])


@router.get("/{team_id}", response_model=OnCallResponse)
async def get_on_call(
    team_id: str,
    severity: str = Query("critical", pattern="^(critical|high|medium|low|info)$"),
    at: Optional[datetime] = None,
    engine: AlertGovernanceEngine = Depends(get_engine),
):
    """值班对象查询 (On-call targets)"""
    at = ensure_utc(at) if at is not None else engine.clock.now()
    targets = await engine.on_call(team_id, severity, at)
    return OnCallResponse(team_id=team_id, severity=severity, at=at, targets=targets)
