"""
告警治理引擎 (Alert Governance Engine)

把限流、严重程度路由、值班解析和升级调度组合成一次完整的治理决策，
并统一管理后台周期任务（自适应调整、窗口清理、升级扫描）的启动与停止。

Combines rate limiting, severity routing, on-call resolution and escalation
scheduling into one governance decision, and owns the lifecycle of the background
tasks (adaptive adjustment, window cleanup, escalation scan).

处理流程 (Flow):
    1. 限流评估：拒绝时告警状态回写为 suppressed
    2. 严重程度路由：没有匹配规则时告警放行但不路由（配置缺口，记录警告）
    3. 进入升级调度：创建升级记录并在到期时立即通知第一级
    放行后路由或升级失败不会收回放行结果，决策 metadata 中记录 governance_error
"""
import asyncio
import logging
from datetime import datetime
from typing import List, Optional

from alert_governance.core.clock import Clock
from alert_governance.core.config import Settings, settings as default_settings
from alert_governance.core.locks import KeyedLock, LocalKeyedLock, build_keyed_lock
from alert_governance.schemas.escalation import GovernanceDecision, OnCallTarget
from alert_governance.services.adaptive_limiter import AdaptiveLimiter
from alert_governance.services.escalation_engine import EscalationScheduler
from alert_governance.services.notifier import NotificationDispatcher, build_dispatcher
from alert_governance.services.on_call_service import OnCallResolver
from alert_governance.services.rate_limiter import AlertRateLimiter
from alert_governance.services.severity_router import SeverityRouter
from alert_governance.services.stores import GovernanceStore, bounded
from alert_governance.services.suppression_logger import SuppressionLogger
from alert_governance.services.window_store import WindowStore
from alert_governance.tasks.escalation_scheduler import run_escalation_scan
from alert_governance.tasks.periodic import PeriodicTask
from alert_governance.tasks.rate_limit_maintenance import run_adaptive_adjustment, run_window_cleanup

logger = logging.getLogger(__name__)


class AlertGovernanceEngine:
    """告警治理引擎 (Alert governance engine)"""

    def __init__(
        self,
        store: GovernanceStore,
        lock: Optional[KeyedLock] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
        clock: Optional[Clock] = None,
        config: Optional[Settings] = None,
    ):
        self.settings = config or default_settings
        self.store = store
        self.clock = clock or Clock()
        self.lock = lock or LocalKeyedLock()
        self.dispatcher = dispatcher or build_dispatcher()
        timeout = self.settings.persistence_timeout_seconds

        self.windows = WindowStore(store, self.lock, timeout)
        self.adaptive = AdaptiveLimiter(store, self.lock, timeout, self.settings.adaptive_min_adjust_minutes)
        self.suppression = SuppressionLogger(store, timeout)
        self.rate_limiter = AlertRateLimiter(self.windows, self.adaptive, self.suppression, self.lock, self.clock)
        self.router = SeverityRouter(store, self.clock, self.settings.severity_rule_cache_ttl_seconds)
        self.resolver = OnCallResolver(store, self.clock)
        self.scheduler = EscalationScheduler(
            store,
            self.resolver,
            self.dispatcher,
            self.lock,
            self.clock,
            persistence_timeout=timeout,
            dispatch_timeout=self.settings.dispatch_timeout_seconds,
        )
        self.tasks: List[PeriodicTask] = [
            PeriodicTask(
                "adaptive-limit-adjustment",
                self.settings.adaptive_adjust_interval_seconds,
                lambda: run_adaptive_adjustment(self),
            ),
            PeriodicTask(
                "rate-limit-window-cleanup",
                self.settings.window_cleanup_interval_seconds,
                lambda: run_window_cleanup(self),
            ),
            PeriodicTask(
                "escalation-scan",
                self.settings.escalation_scan_interval_seconds,
                lambda: run_escalation_scan(self),
            ),
        ]
        self.started = False

    async def start(self, run_background_tasks: Optional[bool] = None) -> None:
        """
        加载持久化状态、恢复错过的升级并启动后台任务 (Load state, recover, start tasks)
        """
        if self.started:
            return
        await self.windows.load()
        await self.adaptive.load()
        await self.scheduler.recover(self.clock.now())
        if run_background_tasks is None:
            run_background_tasks = self.settings.enable_background_tasks
        if run_background_tasks:
            for task in self.tasks:
                task.start()
        self.started = True
        logger.info("告警治理引擎已启动 | Alert governance engine started")

    async def stop(self) -> None:
        """停止后台任务并释放分发器 (Stop tasks and release the dispatcher)"""
        await asyncio.gather(*(task.stop() for task in self.tasks))
        await self.dispatcher.close()
        self.started = False
        logger.info("告警治理引擎已停止 | Alert governance engine stopped")

    async def process_alert(self, alert, rule) -> GovernanceDecision:
        """
        对一条告警做完整的治理决策 (Run the full governance decision for one alert)

        Args:
            alert: 告警
            rule: 告警规则（提供 max_alerts_per_hour）

        Returns:
            GovernanceDecision
        """
        result = await self.rate_limiter.evaluate(alert, rule)
        decision = GovernanceDecision(alert_id=alert.id, rate_limit=result)
        if not result.allowed:
            try:
                await bounded(
                    self.store.update_alert_status(alert.id, "suppressed"),
                    self.settings.persistence_timeout_seconds,
                    "mark alert suppressed",
                )
            except Exception as e:
                logger.error(f"回写告警 {alert.id} 抑制状态失败 | Failed to mark alert suppressed: {e}", exc_info=True)
            return decision

        # 放行结果不会被收回：路由或升级失败只记录错误 (admission is never retracted)
        try:
            severity_rule = await self.router.route(alert.severity, alert.team_id)
            if severity_rule is None:
                logger.warning(
                    f"告警 {alert.id} 没有匹配的严重程度规则，放行但不路由 | "
                    f"No severity rule for severity={alert.severity} team={alert.team_id}"
                )
                return decision
            escalation = await self.scheduler.admit(alert, severity_rule, self.clock.now())
        except Exception as e:
            message = str(e) or type(e).__name__
            logger.error(
                f"告警 {alert.id} 已放行但路由或升级失败 | Routing or escalation failed after admission: {message}",
                exc_info=True,
            )
            decision.metadata["governance_error"] = message
            return decision

        decision.routed = True
        decision.severity_rule_id = severity_rule.id
        decision.escalation_state = escalation.state
        decision.escalation_level = escalation.level
        return decision

    async def on_call(self, team_id: str, severity: str, at: Optional[datetime] = None) -> List[OnCallTarget]:
        """查询某时刻的值班对象（按路由规则门控）(On-call targets gated by the routed rule)"""
        at = at or self.clock.now()
        severity_rule = await self.router.route(severity, team_id)
        return await self.resolver.resolve(team_id, severity, at, severity_rule)


def build_engine(store: Optional[GovernanceStore] = None, config: Optional[Settings] = None) -> AlertGovernanceEngine:
    """
    按配置组装引擎 (Assemble the engine from configuration)

    默认使用 SQL 存储、配置的锁后端和通知分发器。
    """
    config = config or default_settings
    if store is None:
        from alert_governance.core.database import async_session
        from alert_governance.services.stores import SqlGovernanceStore
        store = SqlGovernanceStore(async_session)
    lock = build_keyed_lock(
        config.lock_backend,
        timeout=config.lock_timeout_seconds,
        blocking_timeout=config.lock_blocking_timeout_seconds,
    )
    dispatcher = build_dispatcher(config.notification_webhook_url, config.dispatch_timeout_seconds)
    return AlertGovernanceEngine(store, lock=lock, dispatcher=dispatcher, config=config)
