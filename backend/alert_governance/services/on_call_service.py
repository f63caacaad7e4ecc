"""
值班解析服务 (On-Call Resolution Service)

根据团队的值班排期确定某一时刻谁在值班，并结合严重程度规则的营业时间和周末门控决定是否通知。
支持三种排期类型：
- fixed: rotation_config.participants 按顺序全部在岗
- rotation: 按 rotation_hours（默认 168 小时）从 effective_from 起轮换，可附带下一位作为备岗
- follow_the_sun: 按排期时区的本地小时匹配 regions[]，支持跨零点区间

Determines who is on duty for a team at a given instant and applies the severity
rule's business-hours and weekend gates. Invalid schedule data makes that schedule
yield no targets; resolve() never raises.
"""
import logging
import math
from dataclasses import dataclass
from datetime import datetime, time
from typing import List, Optional, Tuple
from zoneinfo import ZoneInfo

from alert_governance.core.clock import Clock, ensure_utc
from alert_governance.core.config import settings
from alert_governance.models.escalation import SeverityRule
from alert_governance.models.on_call import OnCallSchedule
from alert_governance.schemas.escalation import OnCallTarget
from alert_governance.services.stores import GovernanceStore

logger = logging.getLogger(__name__)

DEFAULT_ROTATION_HOURS = 168
WORKING_DAYS = (0, 1, 2, 3, 4)  # 周一至周五 (Monday to Friday)


@dataclass(frozen=True)
class BusinessHours:
    """营业时间定义 (Business hours definition)"""
    timezone: str
    start: time
    end: time
    days: Tuple[int, ...] = WORKING_DAYS


@dataclass(frozen=True)
class GateStatus:
    """门控状态 (Gate status)"""
    weekend_open: bool = True
    business_hours_open: bool = True


def parse_hhmm(value: str) -> time:
    hour, minute = value.split(":")
    return time(int(hour), int(minute))


def default_business_hours() -> BusinessHours:
    return BusinessHours(
        timezone=settings.business_hours_timezone,
        start=parse_hhmm(settings.business_hours_start),
        end=parse_hhmm(settings.business_hours_end),
    )


def is_business_hours(at: datetime, hours: BusinessHours) -> bool:
    """判断某时刻是否在营业时间内 (Whether the instant falls within business hours)"""
    local = ensure_utc(at).astimezone(ZoneInfo(hours.timezone))
    if local.weekday() not in hours.days:
        return False
    return hours.start <= local.time().replace(tzinfo=None) < hours.end


def is_weekend(at: datetime, tz: str) -> bool:
    """判断某时刻在给定时区是否为周末 (Whether the instant is a Saturday or Sunday locally)"""
    return ensure_utc(at).astimezone(ZoneInfo(tz)).weekday() >= 5


def _participants(config: dict, key: str = "participants") -> List[str]:
    participants = config.get(key)
    if not isinstance(participants, list) or not participants:
        raise ValueError(f"missing {key}")
    return [str(p) for p in participants]


def _hour_in_range(hour: int, start: int, end: int) -> bool:
    if start == end:
        return True
    if start < end:
        return start <= hour < end
    # 跨零点区间 (wraps past midnight)
    return hour >= start or hour < end


def on_duty(schedule: OnCallSchedule, at: datetime) -> List[Tuple[str, str]]:
    """
    计算排期在某时刻的在岗人员 (Participants on duty for a schedule)

    Returns:
        [(user_id, role)]，role 为 primary 或 backup

    Raises:
        ValueError / KeyError / TypeError: 排期数据无效
    """
    config = schedule.rotation_config or {}
    if schedule.schedule_type == "fixed":
        return [(p, "primary") for p in _participants(config)]

    if schedule.schedule_type == "rotation":
        participants = _participants(config)
        rotation_hours = float(config.get("rotation_hours", DEFAULT_ROTATION_HOURS))
        if rotation_hours <= 0:
            raise ValueError("rotation_hours must be positive")
        elapsed = (ensure_utc(at) - ensure_utc(schedule.effective_from)).total_seconds()
        index = math.floor(elapsed / (rotation_hours * 3600)) % len(participants)
        duty = [(participants[index], "primary")]
        if config.get("include_backup") and len(participants) > 1:
            duty.append((participants[(index + 1) % len(participants)], "backup"))
        return duty

    if schedule.schedule_type == "follow_the_sun":
        regions = config.get("regions")
        if not isinstance(regions, list) or not regions:
            raise ValueError("missing regions")
        hour = ensure_utc(at).astimezone(ZoneInfo(schedule.timezone or "UTC")).hour
        for region in regions:
            if _hour_in_range(hour, int(region["start_hour"]), int(region["end_hour"])):
                return [(p, "primary") for p in _participants(region)]
        return []

    raise ValueError(f"unknown schedule_type {schedule.schedule_type!r}")


class OnCallResolver:
    """值班解析器 (On-call resolver)"""

    def __init__(self, store: GovernanceStore, clock: Optional[Clock] = None):
        self.store = store
        self.clock = clock or Clock()

    async def business_hours_for(self, team_id: Optional[str]) -> BusinessHours:
        """团队营业时间，未配置时使用全局默认值 (Team business hours, defaults when absent)"""
        default = default_business_hours()
        if not team_id:
            return default
        config = await self.store.get_team_config(team_id)
        if config is None or not config.enabled or not config.business_hours:
            return default
        raw = config.business_hours
        try:
            weekdays = raw.get("weekdays") or {}
            hours = BusinessHours(
                timezone=raw.get("timezone") or default.timezone,
                start=parse_hhmm(weekdays["start"]) if "start" in weekdays else default.start,
                end=parse_hhmm(weekdays["end"]) if "end" in weekdays else default.end,
                days=tuple(int(d) for d in raw.get("days", WORKING_DAYS)),
            )
            ZoneInfo(hours.timezone)
            return hours
        except (KeyError, ValueError, TypeError, AttributeError) as e:
            logger.warning(f"团队 {team_id} 营业时间配置无效，使用默认值 | Invalid business hours: {e}")
            return default

    @staticmethod
    def eligible(schedule: OnCallSchedule, severity: str, at: datetime) -> bool:
        if not schedule.enabled:
            return False
        if severity not in (schedule.applicable_severities or []):
            return False
        at = ensure_utc(at)
        if ensure_utc(schedule.effective_from) > at:
            return False
        return schedule.effective_until is None or at <= ensure_utc(schedule.effective_until)

    async def gate_status(self, team_id: Optional[str], at: datetime, severity_rule: Optional[SeverityRule]) -> GateStatus:
        """营业时间与周末门控 (Business-hours and weekend gates)"""
        if severity_rule is None:
            return GateStatus()
        hours = await self.business_hours_for(team_id)
        weekend_open = severity_rule.weekend_escalation or not is_weekend(at, hours.timezone)
        business_open = not severity_rule.business_hours_only or is_business_hours(at, hours)
        return GateStatus(weekend_open=weekend_open, business_hours_open=business_open)

    async def gates_open(
        self,
        team_id: Optional[str],
        severity: str,
        at: datetime,
        severity_rule: Optional[SeverityRule],
    ) -> bool:
        """
        门控是否放行 (Whether the gates let escalation proceed)

        营业时间门关闭时，只要存在 override_business_hours 的生效排期仍然放行；周末门不可覆盖。
        """
        status = await self.gate_status(team_id, at, severity_rule)
        if not status.weekend_open:
            return False
        if status.business_hours_open:
            return True
        if not team_id:
            return False
        schedules = await self.store.list_on_call_schedules(team_id)
        return any(s.override_business_hours and self.eligible(s, severity, at) for s in schedules)

    async def resolve(
        self,
        team_id: Optional[str],
        severity: str,
        at: Optional[datetime] = None,
        severity_rule: Optional[SeverityRule] = None,
    ) -> List[OnCallTarget]:
        """
        解析某时刻的值班通知对象 (Resolve on-call targets at an instant)

        Args:
            team_id: 团队 ID，为空时没有值班对象
            severity: 告警严重程度
            at: 时刻，默认当前时间
            severity_rule: 命中的严重程度规则，用于门控

        Returns:
            去重后的 OnCallTarget 列表（按排期创建顺序）
        """
        at = ensure_utc(at or self.clock.now())
        if not team_id:
            return []
        try:
            status = await self.gate_status(team_id, at, severity_rule)
            schedules = await self.store.list_on_call_schedules(team_id)
        except Exception as e:
            logger.error(f"加载团队 {team_id} 值班排期失败 | Failed to load schedules: {e}", exc_info=True)
            return []
        if not status.weekend_open:
            return []

        targets: List[OnCallTarget] = []
        seen = set()
        for schedule in schedules:
            if not self.eligible(schedule, severity, at):
                continue
            if not status.business_hours_open and not schedule.override_business_hours:
                continue
            try:
                duty = on_duty(schedule, at)
            except (KeyError, ValueError, TypeError) as e:
                logger.warning(f"值班排期 {schedule.id} 数据无效，已跳过 | Invalid schedule data: {e}")
                continue
            for user_id, role in duty:
                if user_id in seen:
                    continue
                seen.add(user_id)
                targets.append(OnCallTarget(user_id=user_id, schedule_id=schedule.id, role=role))
        return targets
