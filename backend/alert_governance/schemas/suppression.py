"""
抑制日志模式定义 (Suppression Log Schema Definitions)
"""
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel


class SuppressionLogResponse(BaseModel):
    """抑制日志响应模式 (Suppression Log Response Schema)"""
    id: int
    alert_id: str
    suppressed: bool
    reason: str
    suppress_until: Optional[datetime] = None
    details: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class SuppressionStats(BaseModel):
    """抑制统计 (Suppression Statistics)"""
    total: int
    by_reason: Dict[str, int]
    by_scope_type: Dict[str, int]
