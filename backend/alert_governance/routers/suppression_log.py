"""
抑制日志路由模块 (Suppression Log Router)

功能说明：查询被限流抑制的告警记录及其统计
"""
from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends, Query

from alert_governance.core.deps import get_engine
from alert_governance.schemas.suppression import SuppressionLogResponse, SuppressionStats
from alert_governance.services.governance import AlertGovernanceEngine

router = APIRouter(prefix="/api/v1/suppression-log", tags=["suppression-log"])


@router.get("", response_model=list[SuppressionLogResponse])
async def list_suppression_log(
    alert_id: Optional[str] = None,
    reason: Optional[str] = None,
    limit: int = Query(100, ge=1, le=1000),
    engine: AlertGovernanceEngine = Depends(get_engine),
):
    """抑制日志列表，最新在前 (Suppression entries, newest first)"""
    entries = await engine.suppression.list_entries(alert_id=alert_id, reason=reason, limit=limit)
    return [SuppressionLogResponse.model_validate(e) for e in entries]


@router.get("/stats", response_model=SuppressionStats)
async def suppression_stats(
    hours: int = Query(24, ge=1, le=24 * 30),
    engine: AlertGovernanceEngine = Depends(get_engine),
):
    """最近若干小时的抑制统计 (Suppression totals over the last N hours)"""
    since = engine.clock.now() - timedelta(hours=hours)
    return SuppressionStats(**await engine.suppression.stats(since))
