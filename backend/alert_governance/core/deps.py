"""
FastAPI 依赖项模块 (FastAPI Dependencies Module)

从应用状态中取得治理引擎实例，测试中可以通过 dependency_overrides 替换。

Fetches the governance engine from application state; tests replace it through
dependency_overrides.
"""
from fastapi import HTTPException, Request, status

from alert_governance.services.governance import AlertGovernanceEngine


async def get_engine(request: Request) -> AlertGovernanceEngine:
    """获取当前应用的治理引擎 (Get the application's governance engine)"""
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Governance engine not started")
    return engine
