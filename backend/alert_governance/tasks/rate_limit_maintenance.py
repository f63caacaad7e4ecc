"""
限流维护任务 (Rate Limit Maintenance Tasks)

- 自适应上限调整：每 5 分钟执行一次，按错误率和负载因子收紧或放宽各作用域上限
- 过期窗口清理：每 15 分钟执行一次，重置所有已经到期的限流窗口

Adaptive adjustment runs every 5 minutes; expired-window cleanup every 15 minutes.
"""
import logging
import time

logger = logging.getLogger(__name__)


async def run_adaptive_adjustment(engine) -> int:
    """执行一次自适应上限调整 (Run one adaptive adjustment pass)"""
    start = time.monotonic()
    adjusted = await engine.adaptive.adjust(engine.clock.now())
    logger.debug(
        f"Adaptive limit adjustment completed. Duration: {time.monotonic() - start:.2f}s, "
        f"adjusted {adjusted} scopes"
    )
    return adjusted


async def run_window_cleanup(engine) -> int:
    """执行一次过期窗口清理 (Run one expired-window cleanup pass)"""
    start = time.monotonic()
    reset = await engine.windows.cleanup_expired(engine.clock.now())
    logger.debug(
        f"Rate limit window cleanup completed. Duration: {time.monotonic() - start:.2f}s, "
        f"reset {reset} windows"
    )
    return reset
