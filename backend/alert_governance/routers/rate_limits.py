"""
限流管理路由模块 (Rate Limit Management Router)

功能说明：限流窗口状态展示、统计、配置修改和外部运行信号注入
API端点：list / stats / PATCH config / POST signals
"""
from fastapi import APIRouter, Depends, HTTPException

from alert_governance.core.deps import get_engine
from alert_governance.schemas.rate_limit import (
    AdaptiveLimitResponse, RateLimitSignals, RateLimitStats, RateLimitUpdate,
    RateLimitWindowResponse, ScopeKey, ScopeType,
)
from alert_governance.services.governance import AlertGovernanceEngine

router = APIRouter(prefix="/api/v1/rate-limits", tags=["rate-limits"])


def _scope_key(scope_type: str, scope_value: str) -> ScopeKey:
    try:
        return ScopeKey(ScopeType(scope_type), scope_value)
    except ValueError:
        raise HTTPException(status_code=422, detail=f"Unknown scope type: {scope_type}")


def _window_response(config, adaptive_limit) -> RateLimitWindowResponse:
    response = RateLimitWindowResponse.model_validate(config)
    response.adaptive_limit = adaptive_limit
    return response


@router.get("", response_model=list[RateLimitWindowResponse])
async def list_rate_limits(engine: AlertGovernanceEngine = Depends(get_engine)):
    """限流窗口列表 (List rate-limit windows)"""
    await engine.rate_limiter.refresh()
    return [_window_response(config, adaptive) for config, adaptive in engine.rate_limiter.list_windows()]


@router.get("/stats", response_model=RateLimitStats)
async def rate_limit_stats(engine: AlertGovernanceEngine = Depends(get_engine)):
    """限流统计 (Rate-limit statistics)"""
    return RateLimitStats(**await engine.rate_limiter.get_statistics())


@router.patch("/{scope_type}/{scope_value}", response_model=RateLimitWindowResponse)
async def update_rate_limit(
    scope_type: str,
    scope_value: str,
    body: RateLimitUpdate,
    engine: AlertGovernanceEngine = Depends(get_engine),
):
    """修改作用域限流配置 (Update a scope's rate limit)"""
    key = _scope_key(scope_type, scope_value)
    config = await engine.rate_limiter.update_rate_limit(
        key, max_alerts=body.max_alerts, window_minutes=body.window_minutes, enabled=body.enabled,
    )
    limit = engine.adaptive.get(key)
    return _window_response(config, int(limit.current_limit) if limit is not None else None)


@router.post("/{scope_type}/{scope_value}/signals", response_model=AdaptiveLimitResponse)
async def record_signals(
    scope_type: str,
    scope_value: str,
    body: RateLimitSignals,
    engine: AlertGovernanceEngine = Depends(get_engine),
):
    """注入作用域运行信号 (Feed error rate / load factor for a scope)"""
    key = _scope_key(scope_type, scope_value)
    limit = await engine.adaptive.record_signals(key, error_rate=body.error_rate, load_factor=body.load_factor)
    return AdaptiveLimitResponse.model_validate(limit)
