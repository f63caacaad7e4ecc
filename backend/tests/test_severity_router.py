"""严重程度路由测试。"""
from alert_governance.models.escalation import SeverityRule
from alert_governance.services.severity_router import SeverityRouter


def _make_rule(rule_id, severity="critical", team_id=None, priority=1, enabled=True):
    return SeverityRule(
        id=rule_id,
        name=rule_id,
        severity=severity,
        team_id=team_id,
        assigned_users=[],
        assigned_channels=[],
        initial_delay_minutes=0,
        escalation_interval_minutes=30,
        max_escalation_level=3,
        business_hours_only=False,
        weekend_escalation=True,
        priority=priority,
        enabled=enabled,
    )


class TestSeverityRouter:
    async def test_team_rule_wins_over_org_rule(self, memory_store, clock):
        await memory_store.save_severity_rule(_make_rule("org", priority=1))
        await memory_store.save_severity_rule(_make_rule("team", team_id="team-a", priority=5))
        router = SeverityRouter(memory_store, clock)
        assert (await router.route("critical", "team-a")).id == "team"
        assert (await router.route("critical", "team-b")).id == "org"

    async def test_priority_breaks_ties(self, memory_store, clock):
        await memory_store.save_severity_rule(_make_rule("low-priority", priority=3))
        await memory_store.save_severity_rule(_make_rule("high-priority", priority=1))
        router = SeverityRouter(memory_store, clock)
        assert (await router.route("critical")).id == "high-priority"

    async def test_disabled_and_other_severities_ignored(self, memory_store, clock):
        await memory_store.save_severity_rule(_make_rule("disabled", enabled=False))
        await memory_store.save_severity_rule(_make_rule("high", severity="high"))
        router = SeverityRouter(memory_store, clock)
        assert await router.route("critical", "team-a") is None

    async def test_lookup_is_cached_until_ttl(self, memory_store, clock):
        router = SeverityRouter(memory_store, clock, cache_ttl_seconds=60)
        assert await router.route("critical") is None
        await memory_store.save_severity_rule(_make_rule("org"))
        assert await router.route("critical") is None
        clock.advance(seconds=61)
        assert (await router.route("critical")).id == "org"

    async def test_invalidate_clears_cache(self, memory_store, clock):
        router = SeverityRouter(memory_store, clock)
        assert await router.route("critical") is None
        await memory_store.save_severity_rule(_make_rule("org"))
        router.invalidate()
        assert (await router.route("critical")).id == "org"
