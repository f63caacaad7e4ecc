"""
时钟模块 (Clock Module)

为引擎提供可注入的时间源，所有窗口、升级与自适应调整都通过它取得"当前时间"，
测试中可替换为手动推进的虚拟时钟。

Injectable time source. Every window, escalation and adaptive adjustment reads
"now" through it, so tests can drive virtual time deterministically.
"""
import math
from datetime import datetime, timedelta, timezone
from typing import Optional


class Clock:
    """系统时钟，返回带时区的 UTC 时间 (System clock returning aware UTC time)"""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    规范化为带时区的 UTC 时间 (Normalize to aware UTC)

    SQLite 读回的 DateTime(timezone=True) 为 naive 值，按 UTC 解释。
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_millis(value: datetime) -> int:
    """毫秒精度时间戳 (Millisecond-precision timestamp)"""
    return int(ensure_utc(value).timestamp() * 1000)


def seconds_until(target: datetime, now: datetime) -> int:
    """距目标时刻的秒数，按毫秒差向上取整 (Seconds until target, ceil of millisecond delta)"""
    return math.ceil((to_millis(target) - to_millis(now)) / 1000)


def minutes(value: Optional[int]) -> timedelta:
    return timedelta(minutes=value or 0)
