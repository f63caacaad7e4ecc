"""
周期任务 (Periodic Task)

以固定间隔反复执行一个协程函数的后台任务，由治理引擎的生命周期统一启动和取消。
单次执行出错只记录日志，循环继续。

Background task running a coroutine function at a fixed interval; started and
cancelled by the governance engine's lifecycle. A failing run is logged and the
loop continues.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class PeriodicTask:
    """固定间隔后台任务 (Fixed-interval background task)"""

    def __init__(self, name: str, interval_seconds: float, func: Callable[[], Awaitable]):
        self.name = name
        self.interval_seconds = interval_seconds
        self.func = func
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _loop(self):
        logger.info(f"{self.name} task started (interval {self.interval_seconds}s)")
        while True:
            try:
                # 等待到下次执行时间 (wait for the next run)
                await asyncio.sleep(self.interval_seconds)
                await self.func()
            except asyncio.CancelledError:
                logger.info(f"{self.name} task cancelled")
                break
            except Exception as e:
                logger.error(f"{self.name} task error: {e}", exc_info=True)
        logger.info(f"{self.name} task stopped")

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name=self.name)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
