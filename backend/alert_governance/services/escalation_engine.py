"""
告警升级引擎 (Alert Escalation Engine)

驱动已放行告警的升级状态机：pending → active(1..N) → acknowledged / auto_resolved / capped。
每次扫描只处理到期的记录，并且每条记录每次扫描最多迁移一次；到期判断只依赖持久化字段
（admitted_at、level_entered_at、level），错过的扫描或进程重启都能在下一次扫描中恢复。

Drives the escalation state machine of admitted alerts. Each scan processes due
records only, with at most one transition per record per scan. The due state is
derived purely from persisted fields, so missed scans and restarts are recovered
by the next scan.

每条记录的检查顺序 (Per-record check order):
    1. 自动解决 (auto-resolve): 条件已消除且 auto_resolve_minutes 已过
    2. 自动确认 (auto-acknowledge): auto_acknowledge_minutes 已过，已封顶的记录同样适用
    3. 升级或封顶 (escalate or cap): 到期后进入下一级，超过最大级别则封顶
"""
import asyncio
import logging
from datetime import datetime
from typing import List, Optional, Tuple

from alert_governance.core.clock import Clock, minutes
from alert_governance.core.exceptions import ConflictError, NotFoundError
from alert_governance.core.locks import KeyedLock
from alert_governance.models.escalation import AlertEscalation, EscalationEvent, SeverityRule
from alert_governance.schemas.escalation import EscalationState, NotificationRequest
from alert_governance.services.notifier import NotificationDispatcher
from alert_governance.services.on_call_service import OnCallResolver
from alert_governance.services.stores import GovernanceStore, bounded

logger = logging.getLogger(__name__)

SYSTEM_USER = "system"

# 告警已关闭，不再迁移也不再通知 (alert closed: no further transitions or notifications)
CLOSED_STATES = (EscalationState.ACKNOWLEDGED.value, EscalationState.AUTO_RESOLVED.value)


def lock_name(alert_id: str) -> str:
    return f"alert:{alert_id}"


def transition_due_at(escalation: AlertEscalation, rule: SeverityRule) -> datetime:
    """下一次升级/封顶的到期时间 (When the next escalation or cap is due)"""
    if escalation.state == EscalationState.PENDING.value or escalation.level_entered_at is None:
        return escalation.admitted_at + minutes(rule.initial_delay_minutes)
    return escalation.level_entered_at + minutes(rule.escalation_interval_minutes)


class EscalationScheduler:
    """告警升级调度器 (Alert escalation scheduler)"""

    def __init__(
        self,
        store: GovernanceStore,
        resolver: OnCallResolver,
        dispatcher: NotificationDispatcher,
        lock: KeyedLock,
        clock: Optional[Clock] = None,
        persistence_timeout: float = 5.0,
        dispatch_timeout: float = 10.0,
    ):
        self.store = store
        self.resolver = resolver
        self.dispatcher = dispatcher
        self.lock = lock
        self.clock = clock or Clock()
        self.persistence_timeout = persistence_timeout
        self.dispatch_timeout = dispatch_timeout

    async def _bounded(self, coro, operation: str = "escalation store operation"):
        return await bounded(coro, self.persistence_timeout, operation)

    async def _save(self, escalation: AlertEscalation, now: datetime) -> None:
        escalation.updated_at = now
        await self._bounded(self.store.save_escalation(escalation))

    async def _event(
        self,
        escalation: AlertEscalation,
        event_type: str,
        now: datetime,
        message: str = "",
        targets: Optional[List[str]] = None,
        channels: Optional[List[str]] = None,
    ) -> None:
        event = EscalationEvent(
            alert_id=escalation.alert_id,
            event_type=event_type,
            level=escalation.level,
            targets=targets,
            channels=channels,
            message=message,
            created_at=now,
        )
        try:
            await self._bounded(self.store.add_escalation_event(event))
        except Exception as e:
            logger.error(f"记录升级事件失败 | Failed to record {event_type} for alert {escalation.alert_id}: {e}")

    # ---- 生命周期入口 (Lifecycle entry points) ----

    async def admit(self, alert, rule: SeverityRule, now: Optional[datetime] = None) -> AlertEscalation:
        """
        为放行的告警创建升级记录，并在到期时立即推进 (Create the record and advance it if due)

        Args:
            alert: 已放行的告警
            rule: 路由得到的严重程度规则
            now: 当前时间

        Returns:
            最新的升级记录
        """
        now = now or self.clock.now()
        async with self.lock.hold(lock_name(alert.id)):
            existing = await self._bounded(self.store.get_escalation(alert.id))
            if existing is not None:
                return existing
            escalation = AlertEscalation(
                alert_id=alert.id,
                team_id=alert.team_id,
                title=alert.title,
                severity=alert.severity,
                severity_rule_id=rule.id,
                state=EscalationState.PENDING.value,
                level=0,
                admitted_at=now,
                level_entered_at=None,
                next_transition_at=now + minutes(rule.initial_delay_minutes),
                condition_cleared=False,
                waiting_for_window=False,
                acknowledged_at=None,
                acknowledged_by=None,
                resolved_at=None,
            )
            await self._save(escalation, now)
            logger.info(
                f"告警 {alert.id} 进入升级流程 | Escalation admitted with rule {rule.id}, "
                f"first notification at {escalation.next_transition_at}"
            )
        await self.process(alert.id, now)
        return await self._bounded(self.store.get_escalation(alert.id))

    async def process(self, alert_id: str, now: Optional[datetime] = None) -> Optional[str]:
        """
        处理单条记录，最多执行一次迁移 (Process one record, at most one transition)

        Returns:
            执行的迁移类型；没有迁移时返回 None
        """
        now = now or self.clock.now()
        async with self.lock.hold(lock_name(alert_id)):
            escalation = await self._bounded(self.store.get_escalation(alert_id))
            if escalation is None or escalation.state in CLOSED_STATES:
                return None
            rule = await self._bounded(self.store.get_severity_rule(escalation.severity_rule_id))
            if rule is None:
                logger.warning(f"告警 {alert_id} 的严重程度规则已不存在 | Severity rule {escalation.severity_rule_id} missing")
                return None

            if self._auto_resolve_due(escalation, rule, now):
                await self._auto_resolve(escalation, now)
                return EscalationState.AUTO_RESOLVED.value
            if rule.auto_acknowledge_minutes and now >= escalation.admitted_at + minutes(rule.auto_acknowledge_minutes):
                await self._acknowledge(escalation, SYSTEM_USER, now, "auto_acknowledged")
                return "auto_acknowledged"
            if escalation.state == EscalationState.CAPPED.value:
                return None
            if now < transition_due_at(escalation, rule):
                return None
            if escalation.level >= rule.max_escalation_level:
                await self._cap(escalation, rule, now)
                return EscalationState.CAPPED.value
            if not await self.resolver.gates_open(escalation.team_id, escalation.severity, now, rule):
                if not escalation.waiting_for_window:
                    escalation.waiting_for_window = True
                    await self._save(escalation, now)
                    await self._event(escalation, "deferred", now, "outside business hours or weekend")
                    logger.info(f"告警 {alert_id} 升级延后 | Escalation deferred until the gates open")
                    return "deferred"
                return None
            request = await self._enter_next_level(escalation, rule, now)

        if request is not None:
            await self._dispatch(request)
        return "level_entered"

    async def tick(self, now: Optional[datetime] = None) -> dict:
        """
        扫描所有未关闭的升级记录 (Scan every open escalation record)

        Returns:
            dict: 扫描统计
        """
        now = now or self.clock.now()
        escalations = await self._bounded(self.store.list_open_escalations())
        transitions = 0
        failed = 0
        for escalation in escalations:
            try:
                if await self.process(escalation.alert_id, now) is not None:
                    transitions += 1
            except Exception as e:
                failed += 1
                logger.error(f"处理告警 {escalation.alert_id} 升级时发生错误: {e}", exc_info=True)
        result = {"scanned": len(escalations), "transitions": transitions, "failed": failed}
        if transitions or failed:
            logger.info(f"告警升级扫描完成: {result}")
        return result

    async def recover(self, now: Optional[datetime] = None) -> dict:
        """启动时恢复错过的迁移 (Recover transitions missed while stopped)"""
        result = await self.tick(now)
        logger.info(f"升级状态恢复完成 | Escalation recovery finished: {result}")
        return result

    async def acknowledge(self, alert_id: str, by: str, now: Optional[datetime] = None) -> AlertEscalation:
        """
        确认告警，停止升级 (Acknowledge the alert and stop escalation)

        重复确认是幂等的；已自动解决的告警不能再确认。

        Raises:
            NotFoundError: 没有升级记录
            ConflictError: 告警已自动解决
        """
        now = now or self.clock.now()
        async with self.lock.hold(lock_name(alert_id)):
            escalation = await self._bounded(self.store.get_escalation(alert_id))
            if escalation is None:
                raise NotFoundError(f"No escalation for alert {alert_id}")
            if escalation.state == EscalationState.ACKNOWLEDGED.value:
                return escalation
            if escalation.state == EscalationState.AUTO_RESOLVED.value:
                raise ConflictError(f"Alert {alert_id} was already auto-resolved")
            await self._acknowledge(escalation, by, now, "acknowledged")
            return escalation

    async def mark_condition_cleared(self, alert_id: str, now: Optional[datetime] = None) -> AlertEscalation:
        """
        告警条件已消除 (The alert condition has cleared)

        auto_resolve_minutes 已过时立即自动解决，否则由后续扫描处理。

        Raises:
            NotFoundError: 没有升级记录
        """
        now = now or self.clock.now()
        async with self.lock.hold(lock_name(alert_id)):
            escalation = await self._bounded(self.store.get_escalation(alert_id))
            if escalation is None:
                raise NotFoundError(f"No escalation for alert {alert_id}")
            if escalation.state in CLOSED_STATES:
                return escalation
            if not escalation.condition_cleared:
                escalation.condition_cleared = True
                await self._save(escalation, now)
            rule = await self._bounded(self.store.get_severity_rule(escalation.severity_rule_id))
            if rule is not None and self._auto_resolve_due(escalation, rule, now):
                await self._auto_resolve(escalation, now)
            return escalation

    async def get_detail(self, alert_id: str) -> Tuple[AlertEscalation, List[EscalationEvent]]:
        escalation = await self._bounded(self.store.get_escalation(alert_id))
        if escalation is None:
            raise NotFoundError(f"No escalation for alert {alert_id}")
        events = await self._bounded(self.store.list_escalation_events(alert_id))
        return escalation, events

    # ---- 迁移 (Transitions) ----

    @staticmethod
    def _auto_resolve_due(escalation: AlertEscalation, rule: SeverityRule, now: datetime) -> bool:
        if not escalation.condition_cleared or rule.auto_resolve_minutes is None:
            return False
        return now >= escalation.admitted_at + minutes(rule.auto_resolve_minutes)

    async def _auto_resolve(self, escalation: AlertEscalation, now: datetime) -> None:
        escalation.state = EscalationState.AUTO_RESOLVED.value
        escalation.resolved_at = now
        escalation.next_transition_at = None
        escalation.waiting_for_window = False
        await self._save(escalation, now)
        await self._event(escalation, "auto_resolved", now, "condition cleared")
        try:
            await self._bounded(self.store.update_alert_status(escalation.alert_id, "resolved"))
        except Exception as e:
            logger.error(f"回写告警 {escalation.alert_id} 状态失败 | Failed to write back resolved status: {e}")
        logger.info(f"告警 {escalation.alert_id} 已自动解决 | Auto-resolved")

    async def _acknowledge(self, escalation: AlertEscalation, by: str, now: datetime, event_type: str) -> None:
        escalation.state = EscalationState.ACKNOWLEDGED.value
        escalation.acknowledged_at = now
        escalation.acknowledged_by = by
        escalation.next_transition_at = None
        escalation.waiting_for_window = False
        await self._save(escalation, now)
        await self._event(escalation, event_type, now, f"acknowledged by {by}")
        logger.info(f"告警 {escalation.alert_id} 已确认 | Acknowledged by {by}")

    async def _cap(self, escalation: AlertEscalation, rule: SeverityRule, now: datetime) -> None:
        escalation.state = EscalationState.CAPPED.value
        escalation.next_transition_at = None
        escalation.waiting_for_window = False
        await self._save(escalation, now)
        await self._event(escalation, "capped", now, f"max escalation level {rule.max_escalation_level} reached")
        logger.warning(
            f"告警 {escalation.alert_id} 已达到最高升级级别仍未确认 | "
            f"Escalation capped at level {escalation.level} without acknowledgement"
        )

    async def _enter_next_level(
        self, escalation: AlertEscalation, rule: SeverityRule, now: datetime
    ) -> Optional[NotificationRequest]:
        on_call = await self.resolver.resolve(escalation.team_id, escalation.severity, now, rule)
        targets: List[str] = []
        for user_id in [t.user_id for t in on_call] + list(rule.assigned_users or []):
            if user_id not in targets:
                targets.append(user_id)
        channels = list(rule.assigned_channels or [])

        escalation.state = EscalationState.ACTIVE.value
        escalation.level += 1
        escalation.level_entered_at = now
        escalation.next_transition_at = now + minutes(rule.escalation_interval_minutes)
        escalation.waiting_for_window = False
        await self._save(escalation, now)

        if not targets and not channels:
            await self._event(escalation, "no_targets", now, "no on-call targets or channels")
            logger.warning(
                f"告警 {escalation.alert_id} 升级到级别 {escalation.level} 但没有通知对象 | "
                f"No targets for level {escalation.level}"
            )
            return None
        await self._event(
            escalation, "level_entered", now, f"escalated to level {escalation.level}", targets, channels,
        )
        logger.info(f"告警 {escalation.alert_id} 升级到级别 {escalation.level} | targets={targets}")
        return NotificationRequest(
            alert_id=escalation.alert_id,
            title=escalation.title,
            severity=escalation.severity,
            level=escalation.level,
            targets=targets,
            channels=channels,
            kind="initial" if escalation.level == 1 else "escalation",
        )

    async def _dispatch(self, request: NotificationRequest) -> None:
        # 发送前重新读取确认状态 (re-read acknowledgement right before sending)
        current = await self._bounded(self.store.get_escalation(request.alert_id))
        if current is None or current.state in CLOSED_STATES:
            logger.info(f"告警 {request.alert_id} 已确认或关闭，跳过通知 | Skipping notification")
            return
        if current.level != request.level:
            return
        try:
            await asyncio.wait_for(self.dispatcher.dispatch(request), self.dispatch_timeout)
        except Exception as e:
            logger.error(f"发送升级通知失败 | Dispatch failed for alert {request.alert_id}: {e}", exc_info=True)
