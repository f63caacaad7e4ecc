"""
告警升级调度任务 (Alert Escalation Scheduler Task)

定时执行告警升级扫描的后台任务，每分钟检查一次到期的升级记录并推进状态。
也可以作为独立进程运行：python -m alert_governance.tasks.escalation_scheduler

Scheduled task for the escalation scan; checks due escalation records every minute.
Can also run as a standalone process.
"""
import asyncio
import logging
import time

logger = logging.getLogger(__name__)


async def run_escalation_scan(engine) -> dict:
    """
    执行告警升级扫描 (Execute Alert Escalation Scan)

    扫描结果中有失败记录时输出告警日志。
    """
    start = time.monotonic()
    scan_result = await engine.scheduler.tick(engine.clock.now())
    execution_time = time.monotonic() - start
    logger.debug(
        f"告警升级扫描完成 - 扫描数: {scan_result['scanned']}, "
        f"迁移数: {scan_result['transitions']}, "
        f"失败数: {scan_result['failed']}, "
        f"执行时间: {execution_time:.2f}秒"
    )
    if scan_result["failed"] > 0:
        logger.warning(f"升级失败 {scan_result['failed']} 个告警，请检查日志")
    return scan_result


async def escalation_scheduler_main():
    """
    升级调度器主循环 (Escalation Scheduler Main Loop)

    独立进程模式：只启动升级扫描，限流维护任务由 API 进程负责。
    """
    from alert_governance.services.governance import build_engine

    engine = build_engine()
    await engine.start(run_background_tasks=False)
    logger.info("启动告警升级调度器")
    try:
        while True:
            try:
                await run_escalation_scan(engine)
                await asyncio.sleep(engine.settings.escalation_scan_interval_seconds)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"升级调度器发生未处理的异常: {str(e)}", exc_info=True)
                # 出现异常时等待 30 秒后重试，避免快速失败循环
                await asyncio.sleep(30)
    finally:
        await engine.stop()


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )
    try:
        asyncio.run(escalation_scheduler_main())
    except KeyboardInterrupt:
        logger.info("升级调度器已停止")
