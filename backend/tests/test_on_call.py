"""值班解析服务测试。"""
from datetime import datetime, time, timedelta, timezone

import pytest

from alert_governance.models.escalation import SeverityRule
from alert_governance.models.on_call import OnCallSchedule, TeamEscalationConfig
from alert_governance.services.on_call_service import (
    BusinessHours, OnCallResolver, is_business_hours, is_weekend, on_duty, parse_hhmm,
)

from conftest import T0

SATURDAY = datetime(2026, 3, 7, 10, 0, tzinfo=timezone.utc)
MONDAY_NIGHT = datetime(2026, 3, 2, 22, 0, tzinfo=timezone.utc)


def _make_schedule(schedule_id="s1", schedule_type="fixed", rotation_config=None, **overrides):
    data = {
        "id": schedule_id,
        "team_id": "team-a",
        "name": schedule_id,
        "schedule_type": schedule_type,
        "rotation_config": rotation_config if rotation_config is not None else {"participants": ["alice", "bob"]},
        "timezone": "UTC",
        "effective_from": T0 - timedelta(days=1),
        "effective_until": None,
        "applicable_severities": ["critical", "high", "medium", "low", "info"],
        "override_business_hours": False,
        "enabled": True,
    }
    data.update(overrides)
    return OnCallSchedule(**data)


def _make_rule(**overrides):
    data = {
        "id": "rule-1",
        "name": "rule",
        "severity": "medium",
        "team_id": None,
        "assigned_users": [],
        "assigned_channels": [],
        "initial_delay_minutes": 0,
        "escalation_interval_minutes": 30,
        "max_escalation_level": 3,
        "business_hours_only": False,
        "weekend_escalation": True,
        "priority": 1,
        "enabled": True,
    }
    data.update(overrides)
    return SeverityRule(**data)


class TestOnDuty:
    def test_fixed_returns_all_participants(self):
        assert on_duty(_make_schedule(), T0) == [("alice", "primary"), ("bob", "primary")]

    def test_rotation_switches_every_period(self):
        schedule = _make_schedule(
            schedule_type="rotation",
            rotation_config={"participants": ["alice", "bob", "carol"], "rotation_hours": 24},
            effective_from=T0,
        )
        assert on_duty(schedule, T0) == [("alice", "primary")]
        assert on_duty(schedule, T0 + timedelta(hours=24)) == [("bob", "primary")]
        assert on_duty(schedule, T0 + timedelta(hours=71)) == [("carol", "primary")]
        assert on_duty(schedule, T0 + timedelta(hours=72)) == [("alice", "primary")]

    def test_rotation_default_period_is_one_week(self):
        schedule = _make_schedule(schedule_type="rotation", effective_from=T0)
        assert on_duty(schedule, T0 + timedelta(days=6)) == [("alice", "primary")]
        assert on_duty(schedule, T0 + timedelta(days=7)) == [("bob", "primary")]

    def test_rotation_with_backup(self):
        schedule = _make_schedule(
            schedule_type="rotation",
            rotation_config={"participants": ["alice", "bob"], "rotation_hours": 24, "include_backup": True},
            effective_from=T0,
        )
        assert on_duty(schedule, T0 + timedelta(hours=30)) == [("bob", "primary"), ("alice", "backup")]

    def test_follow_the_sun_matches_local_hour(self):
        schedule = _make_schedule(
            schedule_type="follow_the_sun",
            rotation_config={
                "regions": [
                    {"name": "emea", "start_hour": 8, "end_hour": 20, "participants": ["eve"]},
                    {"name": "apac", "start_hour": 20, "end_hour": 8, "participants": ["kai"]},
                ]
            },
        )
        assert on_duty(schedule, T0) == [("eve", "primary")]
        assert on_duty(schedule, MONDAY_NIGHT) == [("kai", "primary")]
        assert on_duty(schedule, T0.replace(hour=3)) == [("kai", "primary")]

    def test_invalid_data_raises(self):
        with pytest.raises(ValueError):
            on_duty(_make_schedule(rotation_config={}), T0)
        with pytest.raises(ValueError):
            on_duty(_make_schedule(schedule_type="lottery"), T0)


class TestGates:
    def test_business_hours_window(self):
        hours = BusinessHours(timezone="UTC", start=time(9), end=time(17))
        assert is_business_hours(T0, hours)
        assert not is_business_hours(MONDAY_NIGHT, hours)
        assert not is_business_hours(SATURDAY, hours)
        assert not is_business_hours(T0.replace(hour=17), hours)

    def test_business_hours_respect_timezone(self):
        hours = BusinessHours(timezone="Asia/Shanghai", start=time(9), end=time(18))
        # 10:00 UTC = 18:00 Shanghai
        assert not is_business_hours(T0, hours)
        assert is_business_hours(T0.replace(hour=2), hours)

    def test_weekend(self):
        assert is_weekend(SATURDAY, "UTC")
        assert not is_weekend(T0, "UTC")

    def test_parse_hhmm(self):
        assert parse_hhmm("09:30") == time(9, 30)


class TestOnCallResolver:
    async def test_resolve_in_creation_order_deduplicated(self, memory_store, clock):
        await memory_store.save_on_call_schedule(_make_schedule("s1"))
        await memory_store.save_on_call_schedule(
            _make_schedule("s2", rotation_config={"participants": ["bob", "carol"]})
        )
        resolver = OnCallResolver(memory_store, clock)
        targets = await resolver.resolve("team-a", "critical", T0)
        assert [t.user_id for t in targets] == ["alice", "bob", "carol"]
        assert targets[2].schedule_id == "s2"

    async def test_no_team_means_no_targets(self, memory_store, clock):
        resolver = OnCallResolver(memory_store, clock)
        assert await resolver.resolve(None, "critical", T0) == []

    async def test_filters_severity_and_effective_range(self, memory_store, clock):
        await memory_store.save_on_call_schedule(_make_schedule("crit-only", applicable_severities=["critical"]))
        await memory_store.save_on_call_schedule(
            _make_schedule("expired", rotation_config={"participants": ["old"]}, effective_until=T0 - timedelta(hours=1))
        )
        await memory_store.save_on_call_schedule(
            _make_schedule("future", rotation_config={"participants": ["new"]}, effective_from=T0 + timedelta(hours=1))
        )
        await memory_store.save_on_call_schedule(
            _make_schedule("off", rotation_config={"participants": ["ghost"]}, enabled=False)
        )
        resolver = OnCallResolver(memory_store, clock)
        assert await resolver.resolve("team-a", "low", T0) == []
        assert [t.user_id for t in await resolver.resolve("team-a", "critical", T0)] == ["alice", "bob"]

    async def test_invalid_schedule_skipped(self, memory_store, clock):
        await memory_store.save_on_call_schedule(_make_schedule("broken", schedule_type="rotation", rotation_config={}))
        await memory_store.save_on_call_schedule(_make_schedule("ok", rotation_config={"participants": ["zed"]}))
        resolver = OnCallResolver(memory_store, clock)
        assert [t.user_id for t in await resolver.resolve("team-a", "critical", T0)] == ["zed"]

    async def test_weekend_gate(self, memory_store, clock):
        await memory_store.save_on_call_schedule(_make_schedule(override_business_hours=True))
        resolver = OnCallResolver(memory_store, clock)
        rule = _make_rule(weekend_escalation=False)
        assert await resolver.resolve("team-a", "medium", SATURDAY, rule) == []
        assert not await resolver.gates_open("team-a", "medium", SATURDAY, rule)
        assert len(await resolver.resolve("team-a", "medium", T0, rule)) == 2

    async def test_business_hours_gate_and_override(self, memory_store, clock):
        await memory_store.save_on_call_schedule(_make_schedule("day"))
        resolver = OnCallResolver(memory_store, clock)
        rule = _make_rule(business_hours_only=True)
        assert await resolver.resolve("team-a", "medium", MONDAY_NIGHT, rule) == []
        assert not await resolver.gates_open("team-a", "medium", MONDAY_NIGHT, rule)

        await memory_store.save_on_call_schedule(
            _make_schedule("night", rotation_config={"participants": ["owl"]}, override_business_hours=True)
        )
        assert [t.user_id for t in await resolver.resolve("team-a", "medium", MONDAY_NIGHT, rule)] == ["owl"]
        assert await resolver.gates_open("team-a", "medium", MONDAY_NIGHT, rule)

    async def test_team_business_hours_config(self, memory_store, clock):
        await memory_store.save_team_config(
            TeamEscalationConfig(
                team_id="team-a",
                business_hours={"timezone": "UTC", "weekdays": {"start": "20:00", "end": "23:00"}},
                enabled=True,
            )
        )
        resolver = OnCallResolver(memory_store, clock)
        hours = await resolver.business_hours_for("team-a")
        assert hours.start == time(20)
        rule = _make_rule(business_hours_only=True)
        assert await resolver.gates_open("team-a", "medium", MONDAY_NIGHT, rule)
        assert not await resolver.gates_open("team-a", "medium", T0, rule)

    async def test_invalid_team_config_falls_back(self, memory_store, clock):
        await memory_store.save_team_config(
            TeamEscalationConfig(team_id="team-a", business_hours={"timezone": "Mars/Olympus"}, enabled=True)
        )
        resolver = OnCallResolver(memory_store, clock)
        hours = await resolver.business_hours_for("team-a")
        assert hours.timezone == "UTC"
        assert hours.start == time(9)

    async def test_store_failure_yields_empty(self, memory_store, clock):
        async def broken(team_id):
            raise RuntimeError("db down")

        memory_store.list_on_call_schedules = broken
        resolver = OnCallResolver(memory_store, clock)
        assert await resolver.resolve("team-a", "critical", T0) == []
