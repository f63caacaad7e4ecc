"""
治理存储层 (Governance Store)

为限流窗口、自适应上限、抑制日志、严重程度规则、值班排期和升级状态提供统一的存取接口。
- SqlGovernanceStore：SQLAlchemy 异步会话，每次操作使用一个短会话并立即提交
- MemoryGovernanceStore：进程内字典，用于测试和无数据库的单机运行

Unified access to rate-limit windows, adaptive limits, the suppression log, severity
rules, on-call schedules and escalation state. The SQL store opens one short session
per operation and commits immediately; the memory store keeps plain dictionaries for
tests and database-less single-process runs.
"""
import asyncio
import itertools
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from alert_governance.core.clock import ensure_utc
from alert_governance.core.exceptions import PersistenceError
from alert_governance.models.alert import Alert, AlertRule
from alert_governance.models.escalation import AlertEscalation, EscalationEvent, SeverityRule
from alert_governance.models.on_call import OnCallSchedule, TeamEscalationConfig
from alert_governance.models.rate_limit import AdaptiveLimit, RateLimitConfig
from alert_governance.models.suppression import SuppressionLogEntry
from alert_governance.schemas.escalation import EscalationState

# 告警仍未关闭的升级状态，capped 仍可能被自动解决或人工确认
# (states whose alert is still open; capped can still be auto-resolved or acknowledged)
OPEN_STATES = (EscalationState.PENDING.value, EscalationState.ACTIVE.value, EscalationState.CAPPED.value)

# 需要规范化为 UTC 的时间字段 (datetime fields normalised to aware UTC on load)
_DATETIME_FIELDS = {
    RateLimitConfig: ("window_start", "next_reset_at", "last_alert_at", "created_at", "updated_at"),
    AdaptiveLimit: ("last_adjustment",),
    SuppressionLogEntry: ("suppress_until", "created_at"),
    AlertEscalation: (
        "admitted_at", "level_entered_at", "next_transition_at",
        "acknowledged_at", "resolved_at", "updated_at",
    ),
    EscalationEvent: ("created_at",),
    OnCallSchedule: ("effective_from", "effective_until", "created_at"),
    Alert: ("created_at",),
}


def _normalize(obj):
    for field in _DATETIME_FIELDS.get(type(obj), ()):
        value = obj.__dict__.get(field)
        if isinstance(value, datetime):
            setattr(obj, field, ensure_utc(value))
    return obj


def _key(obj) -> Tuple[str, str]:
    return obj.scope_type, obj.scope_value


async def bounded(awaitable, timeout: float, operation: str = "store operation"):
    """
    在持久化超时内执行存储操作 (Run a store operation within the persistence timeout)

    超时和数据库错误统一转换为 PersistenceError（HTTP 503）。

    Raises:
        PersistenceError: 超时或数据库错误
    """
    try:
        return await asyncio.wait_for(awaitable, timeout)
    except asyncio.TimeoutError:
        raise PersistenceError(f"{operation} timed out", detail=f"timeout={timeout}s")
    except SQLAlchemyError as e:
        raise PersistenceError(f"{operation} failed", detail=str(e))


class GovernanceStore(ABC):
    """治理存储接口 (Governance store interface)"""

    # ---- 限流窗口 (Rate-limit windows) ----
    @abstractmethod
    async def load_rate_limit_configs(self) -> List[RateLimitConfig]: ...

    @abstractmethod
    async def get_rate_limit_config(self, scope_type: str, scope_value: str) -> Optional[RateLimitConfig]: ...

    @abstractmethod
    async def save_rate_limit_config(self, config: RateLimitConfig) -> None: ...

    # ---- 自适应上限 (Adaptive limits) ----
    @abstractmethod
    async def load_adaptive_limits(self) -> List[AdaptiveLimit]: ...

    @abstractmethod
    async def get_adaptive_limit(self, scope_type: str, scope_value: str) -> Optional[AdaptiveLimit]: ...

    @abstractmethod
    async def save_adaptive_limit(self, limit: AdaptiveLimit) -> None: ...

    # ---- 抑制日志 (Suppression log) ----
    @abstractmethod
    async def add_suppression_entry(self, entry: SuppressionLogEntry) -> SuppressionLogEntry: ...

    @abstractmethod
    async def list_suppression_entries(
        self,
        alert_id: Optional[str] = None,
        reason: Optional[str] = None,
        since: Optional[datetime] = None,
        limit: Optional[int] = 100,
    ) -> List[SuppressionLogEntry]: ...

    @abstractmethod
    async def count_suppression_entries(self, since: datetime) -> int: ...

    # ---- 告警 (Alerts) ----
    @abstractmethod
    async def save_alert(self, alert: Alert) -> None: ...

    @abstractmethod
    async def get_alert(self, alert_id: str) -> Optional[Alert]: ...

    @abstractmethod
    async def update_alert_status(self, alert_id: str, status: str) -> bool: ...

    @abstractmethod
    async def save_alert_rule(self, rule: AlertRule) -> None: ...

    # ---- 严重程度规则 (Severity rules) ----
    @abstractmethod
    async def list_severity_rules(self, severity: Optional[str] = None) -> List[SeverityRule]: ...

    @abstractmethod
    async def get_severity_rule(self, rule_id: str) -> Optional[SeverityRule]: ...

    @abstractmethod
    async def save_severity_rule(self, rule: SeverityRule) -> None: ...

    # ---- 值班排期 (On-call schedules) ----
    @abstractmethod
    async def list_on_call_schedules(self, team_id: str) -> List[OnCallSchedule]: ...

    @abstractmethod
    async def save_on_call_schedule(self, schedule: OnCallSchedule) -> None: ...

    @abstractmethod
    async def get_team_config(self, team_id: str) -> Optional[TeamEscalationConfig]: ...

    @abstractmethod
    async def save_team_config(self, config: TeamEscalationConfig) -> None: ...

    # ---- 升级状态 (Escalation state) ----
    @abstractmethod
    async def get_escalation(self, alert_id: str) -> Optional[AlertEscalation]: ...

    @abstractmethod
    async def save_escalation(self, escalation: AlertEscalation) -> None: ...

    @abstractmethod
    async def list_open_escalations(self) -> List[AlertEscalation]: ...

    @abstractmethod
    async def add_escalation_event(self, event: EscalationEvent) -> EscalationEvent: ...

    @abstractmethod
    async def list_escalation_events(self, alert_id: str) -> List[EscalationEvent]: ...


class SqlGovernanceStore(GovernanceStore):
    """基于 SQLAlchemy 异步会话的存储 (SQLAlchemy async store)"""

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    async def _merge(self, obj) -> None:
        async with self._session_factory() as session:
            await session.merge(obj)
            await session.commit()

    async def _add(self, obj):
        async with self._session_factory() as session:
            session.add(obj)
            await session.commit()
            return _normalize(obj)

    async def _all(self, stmt) -> list:
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [_normalize(row) for row in result.scalars().all()]

    async def _get(self, model, ident):
        async with self._session_factory() as session:
            obj = await session.get(model, ident)
            return _normalize(obj) if obj is not None else None

    async def load_rate_limit_configs(self) -> List[RateLimitConfig]:
        return await self._all(select(RateLimitConfig))

    async def get_rate_limit_config(self, scope_type: str, scope_value: str) -> Optional[RateLimitConfig]:
        return await self._get(RateLimitConfig, {"scope_type": scope_type, "scope_value": scope_value})

    async def save_rate_limit_config(self, config: RateLimitConfig) -> None:
        await self._merge(config)

    async def load_adaptive_limits(self) -> List[AdaptiveLimit]:
        return await self._all(select(AdaptiveLimit))

    async def get_adaptive_limit(self, scope_type: str, scope_value: str) -> Optional[AdaptiveLimit]:
        return await self._get(AdaptiveLimit, {"scope_type": scope_type, "scope_value": scope_value})

    async def save_adaptive_limit(self, limit: AdaptiveLimit) -> None:
        await self._merge(limit)

    async def add_suppression_entry(self, entry: SuppressionLogEntry) -> SuppressionLogEntry:
        return await self._add(entry)

    async def list_suppression_entries(self, alert_id=None, reason=None, since=None, limit=100):
        stmt = select(SuppressionLogEntry)
        if alert_id:
            stmt = stmt.where(SuppressionLogEntry.alert_id == alert_id)
        if reason:
            stmt = stmt.where(SuppressionLogEntry.reason == reason)
        if since is not None:
            stmt = stmt.where(SuppressionLogEntry.created_at >= since)
        stmt = stmt.order_by(SuppressionLogEntry.id.desc())
        if limit:
            stmt = stmt.limit(limit)
        return await self._all(stmt)

    async def count_suppression_entries(self, since: datetime) -> int:
        async with self._session_factory() as session:
            result = await session.execute(
                select(func.count(SuppressionLogEntry.id)).where(SuppressionLogEntry.created_at >= since)
            )
            return result.scalar() or 0

    async def save_alert(self, alert: Alert) -> None:
        await self._merge(alert)

    async def get_alert(self, alert_id: str) -> Optional[Alert]:
        return await self._get(Alert, alert_id)

    async def update_alert_status(self, alert_id: str, status: str) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(update(Alert).where(Alert.id == alert_id).values(status=status))
            await session.commit()
            return result.rowcount > 0

    async def save_alert_rule(self, rule: AlertRule) -> None:
        await self._merge(rule)

    async def list_severity_rules(self, severity=None) -> List[SeverityRule]:
        stmt = select(SeverityRule)
        if severity:
            stmt = stmt.where(SeverityRule.severity == severity)
        return await self._all(stmt.order_by(SeverityRule.priority.asc(), SeverityRule.id.asc()))

    async def get_severity_rule(self, rule_id: str) -> Optional[SeverityRule]:
        return await self._get(SeverityRule, rule_id)

    async def save_severity_rule(self, rule: SeverityRule) -> None:
        await self._merge(rule)

    async def list_on_call_schedules(self, team_id: str) -> List[OnCallSchedule]:
        stmt = (
            select(OnCallSchedule)
            .where(OnCallSchedule.team_id == team_id)
            .order_by(OnCallSchedule.created_at.asc(), OnCallSchedule.id.asc())
        )
        return await self._all(stmt)

    async def save_on_call_schedule(self, schedule: OnCallSchedule) -> None:
        await self._merge(schedule)

    async def get_team_config(self, team_id: str) -> Optional[TeamEscalationConfig]:
        return await self._get(TeamEscalationConfig, team_id)

    async def save_team_config(self, config: TeamEscalationConfig) -> None:
        await self._merge(config)

    async def get_escalation(self, alert_id: str) -> Optional[AlertEscalation]:
        return await self._get(AlertEscalation, alert_id)

    async def save_escalation(self, escalation: AlertEscalation) -> None:
        await self._merge(escalation)

    async def list_open_escalations(self) -> List[AlertEscalation]:
        stmt = (
            select(AlertEscalation)
            .where(AlertEscalation.state.in_(OPEN_STATES))
            .order_by(AlertEscalation.admitted_at.asc())
        )
        return await self._all(stmt)

    async def add_escalation_event(self, event: EscalationEvent) -> EscalationEvent:
        return await self._add(event)

    async def list_escalation_events(self, alert_id: str) -> List[EscalationEvent]:
        stmt = (
            select(EscalationEvent)
            .where(EscalationEvent.alert_id == alert_id)
            .order_by(EscalationEvent.id.asc())
        )
        return await self._all(stmt)


class MemoryGovernanceStore(GovernanceStore):
    """进程内存储 (In-process store)"""

    def __init__(self):
        self.rate_limit_configs: Dict[Tuple[str, str], RateLimitConfig] = {}
        self.adaptive_limits: Dict[Tuple[str, str], AdaptiveLimit] = {}
        self.suppression_entries: List[SuppressionLogEntry] = []
        self.alerts: Dict[str, Alert] = {}
        self.alert_rules: Dict[str, AlertRule] = {}
        self.severity_rules: Dict[str, SeverityRule] = {}
        self.schedules: Dict[str, OnCallSchedule] = {}
        self.team_configs: Dict[str, TeamEscalationConfig] = {}
        self.escalations: Dict[str, AlertEscalation] = {}
        self.events: List[EscalationEvent] = []
        self._ids = itertools.count(1)

    async def load_rate_limit_configs(self):
        return list(self.rate_limit_configs.values())

    async def get_rate_limit_config(self, scope_type, scope_value):
        return self.rate_limit_configs.get((scope_type, scope_value))

    async def save_rate_limit_config(self, config):
        self.rate_limit_configs[_key(config)] = config

    async def load_adaptive_limits(self):
        return list(self.adaptive_limits.values())

    async def get_adaptive_limit(self, scope_type, scope_value):
        return self.adaptive_limits.get((scope_type, scope_value))

    async def save_adaptive_limit(self, limit):
        self.adaptive_limits[_key(limit)] = limit

    async def add_suppression_entry(self, entry):
        entry.id = next(self._ids)
        self.suppression_entries.append(entry)
        return entry

    async def list_suppression_entries(self, alert_id=None, reason=None, since=None, limit=100):
        entries = [
            e for e in reversed(self.suppression_entries)
            if (not alert_id or e.alert_id == alert_id)
            and (not reason or e.reason == reason)
            and (since is None or e.created_at >= since)
        ]
        return entries[:limit] if limit else entries

    async def count_suppression_entries(self, since):
        return sum(1 for e in self.suppression_entries if e.created_at >= since)

    async def save_alert(self, alert):
        self.alerts[alert.id] = alert

    async def get_alert(self, alert_id):
        return self.alerts.get(alert_id)

    async def update_alert_status(self, alert_id, status):
        alert = self.alerts.get(alert_id)
        if alert is None:
            return False
        alert.status = status
        return True

    async def save_alert_rule(self, rule):
        self.alert_rules[rule.id] = rule

    async def list_severity_rules(self, severity=None):
        rules = [r for r in self.severity_rules.values() if not severity or r.severity == severity]
        return sorted(rules, key=lambda r: (r.priority, r.id))

    async def get_severity_rule(self, rule_id):
        return self.severity_rules.get(rule_id)

    async def save_severity_rule(self, rule):
        self.severity_rules[rule.id] = rule

    async def list_on_call_schedules(self, team_id):
        # 字典保持插入顺序，即创建顺序 (insertion order is creation order)
        return [s for s in self.schedules.values() if s.team_id == team_id]

    async def save_on_call_schedule(self, schedule):
        self.schedules[schedule.id] = schedule

    async def get_team_config(self, team_id):
        return self.team_configs.get(team_id)

    async def save_team_config(self, config):
        self.team_configs[config.team_id] = config

    async def get_escalation(self, alert_id):
        return self.escalations.get(alert_id)

    async def save_escalation(self, escalation):
        self.escalations[escalation.alert_id] = escalation

    async def list_open_escalations(self):
        return sorted(
            (e for e in self.escalations.values() if e.state in OPEN_STATES),
            key=lambda e: e.admitted_at,
        )

    async def add_escalation_event(self, event):
        event.id = next(self._ids)
        self.events.append(event)
        return event

    async def list_escalation_events(self, alert_id):
        return [e for e in self.events if e.alert_id == alert_id]
