"""
默认升级策略种子数据模块 (Default Escalation Policy Seed Module)

功能描述 (Description):
    提供组织级的默认严重程度规则，确保没有任何团队配置时告警也能被路由。
    也支持从 YAML 文件批量导入严重程度规则、值班排期和团队营业时间。

默认策略 (Default Policies, initial delay / interval / max level):
    - critical: 5 / 10 / 5
    - high:     15 / 20 / 4
    - medium:   30 / 30 / 3，仅营业时间，周末不升级
    - low:      60 / 60 / 2，仅营业时间，周末不升级，24 小时自动解决
    - info:     120 / 120 / 1，48 小时自动解决

幂等操作 (Idempotent): 已存在的规则不会被覆盖。
"""
import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

import yaml

from alert_governance.core.clock import ensure_utc
from alert_governance.core.exceptions import ValidationError
from alert_governance.models.alert import SEVERITIES
from alert_governance.models.escalation import SeverityRule
from alert_governance.models.on_call import OnCallSchedule, TeamEscalationConfig
from alert_governance.services.stores import GovernanceStore

logger = logging.getLogger(__name__)

# 默认严重程度规则定义列表 (Default Severity Rule Definitions)
DEFAULT_SEVERITY_POLICIES = [
    {
        "severity": "critical",
        "initial_delay_minutes": 5,
        "escalation_interval_minutes": 10,
        "max_escalation_level": 5,
        "business_hours_only": False,
        "weekend_escalation": True,
    },
    {
        "severity": "high",
        "initial_delay_minutes": 15,
        "escalation_interval_minutes": 20,
        "max_escalation_level": 4,
        "business_hours_only": False,
        "weekend_escalation": True,
    },
    {
        "severity": "medium",
        "initial_delay_minutes": 30,
        "escalation_interval_minutes": 30,
        "max_escalation_level": 3,
        "business_hours_only": True,   # 中等告警只在营业时间升级
        "weekend_escalation": False,
    },
    {
        "severity": "low",
        "initial_delay_minutes": 60,
        "escalation_interval_minutes": 60,
        "max_escalation_level": 2,
        "business_hours_only": True,
        "weekend_escalation": False,
        "auto_resolve_minutes": 1440,  # 24 小时
    },
    {
        "severity": "info",
        "initial_delay_minutes": 120,
        "escalation_interval_minutes": 120,
        "max_escalation_level": 1,
        "business_hours_only": False,
        "weekend_escalation": True,
        "auto_resolve_minutes": 2880,  # 48 小时
    },
]


def _severity_rule(data: dict, now: datetime) -> SeverityRule:
    try:
        severity = data["severity"]
        return SeverityRule(
            id=str(data.get("id") or f"default-{severity}"),
            name=data.get("name") or f"Default {severity} policy",
            severity=severity,
            team_id=data.get("team_id"),
            assigned_users=list(data.get("assigned_users", [])),
            assigned_channels=list(data.get("assigned_channels", [])),
            initial_delay_minutes=int(data.get("initial_delay_minutes", 0)),
            escalation_interval_minutes=int(data.get("escalation_interval_minutes", 30)),
            max_escalation_level=int(data.get("max_escalation_level", 3)),
            business_hours_only=bool(data.get("business_hours_only", False)),
            weekend_escalation=bool(data.get("weekend_escalation", True)),
            auto_acknowledge_minutes=data.get("auto_acknowledge_minutes"),
            auto_resolve_minutes=data.get("auto_resolve_minutes"),
            priority=int(data.get("priority", 1)),
            enabled=bool(data.get("enabled", True)),
            created_at=now,
        )
    except (KeyError, TypeError, ValueError) as e:
        raise ValidationError("Invalid severity rule definition", detail=str(e))


def _schedule(data: dict, now: datetime) -> OnCallSchedule:
    try:
        effective_from = data["effective_from"]
        effective_until = data.get("effective_until")
        return OnCallSchedule(
            id=str(data["id"]),
            team_id=str(data["team_id"]),
            name=data.get("name") or str(data["id"]),
            schedule_type=data.get("schedule_type", "fixed"),
            rotation_config=dict(data.get("rotation_config", {})),
            timezone=data.get("timezone", "UTC"),
            effective_from=ensure_utc(_as_datetime(effective_from)),
            effective_until=ensure_utc(_as_datetime(effective_until)) if effective_until else None,
            applicable_severities=list(data.get("applicable_severities", SEVERITIES)),
            override_business_hours=bool(data.get("override_business_hours", False)),
            enabled=bool(data.get("enabled", True)),
            created_at=now,
        )
    except (KeyError, TypeError, ValueError) as e:
        raise ValidationError("Invalid on-call schedule definition", detail=str(e))


def _as_datetime(value) -> datetime:
    # PyYAML 会把 ISO 时间戳直接解析为 datetime (YAML timestamps load as datetime)
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


async def seed_default_policies(store: GovernanceStore, now: datetime) -> int:
    """
    写入缺失的组织级默认规则 (Insert missing organisation-wide default rules)

    Returns:
        新写入的规则数量
    """
    created = 0
    for data in DEFAULT_SEVERITY_POLICIES:
        rule = _severity_rule(data, now)
        if await store.get_severity_rule(rule.id) is not None:
            continue
        await store.save_severity_rule(rule)
        created += 1
    if created:
        logger.info(f"已写入 {created} 条默认严重程度规则 | Seeded {created} default severity rules")
    return created


def load_policy_file(path: str) -> dict:
    """
    从 YAML 文件读取策略 (Read policies from a YAML file)

    Raises:
        FileNotFoundError: 文件不存在
    """
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Policy file not found: {path}")
    with open(p) as f:
        return yaml.safe_load(f) or {}


async def apply_policies(store: GovernanceStore, data: dict, now: datetime, with_defaults: Optional[bool] = None) -> dict:
    """
    写入 YAML 中定义的规则、排期和团队配置 (Write rules, schedules and team configs)

    Returns:
        dict: 各类对象写入数量
    """
    counts = {"severity_rules": 0, "on_call_schedules": 0, "team_configs": 0, "defaults": 0}
    if with_defaults is None:
        with_defaults = bool(data.get("seed_defaults", False))
    if with_defaults:
        counts["defaults"] = await seed_default_policies(store, now)
    for item in data.get("severity_rules", []):
        await store.save_severity_rule(_severity_rule(item, now))
        counts["severity_rules"] += 1
    for item in data.get("on_call_schedules", []):
        await store.save_on_call_schedule(_schedule(item, now))
        counts["on_call_schedules"] += 1
    for item in data.get("team_configs", []):
        if "team_id" not in item:
            raise ValidationError("Invalid team config definition", detail="missing team_id")
        await store.save_team_config(
            TeamEscalationConfig(
                team_id=str(item["team_id"]),
                business_hours=dict(item.get("business_hours", {})),
                enabled=bool(item.get("enabled", True)),
                created_at=now,
            )
        )
        counts["team_configs"] += 1
    logger.info(f"策略导入完成 | Policies applied: {counts}")
    return counts
