"""限流作用域解析测试。"""
from alert_governance.models.alert import Alert, AlertRule
from alert_governance.schemas.rate_limit import ScopeKey, ScopeType
from alert_governance.services.scope_resolver import GLOBAL_SCOPE_VALUE, SEVERITY_LIMITS, resolve_scopes


def _make_alert(**overrides):
    data = {
        "id": "a-1",
        "rule_id": "r1",
        "team_id": "team-a",
        "severity": "critical",
        "title": "CPU high",
        "metric_name": "cpu_usage",
    }
    data.update(overrides)
    return Alert(**data)


class TestResolveScopes:
    def test_order_is_narrowest_first(self):
        scopes = resolve_scopes(_make_alert(), AlertRule(id="r1", name="cpu", max_alerts_per_hour=5))
        assert [s.key.scope_type for s in scopes] == [
            ScopeType.RULE, ScopeType.TEAM, ScopeType.METRIC, ScopeType.SEVERITY, ScopeType.GLOBAL,
        ]

    def test_defaults_per_scope(self):
        scopes = resolve_scopes(_make_alert(), AlertRule(id="r1", name="cpu", max_alerts_per_hour=5))
        by_type = {s.key.scope_type: s for s in scopes}
        assert by_type[ScopeType.RULE].max_alerts == 5
        assert by_type[ScopeType.RULE].window_minutes == 60
        assert by_type[ScopeType.TEAM].max_alerts == 500
        assert by_type[ScopeType.METRIC].max_alerts == 100
        assert by_type[ScopeType.SEVERITY].max_alerts == SEVERITY_LIMITS["critical"] == 10
        assert by_type[ScopeType.GLOBAL].key == ScopeKey(ScopeType.GLOBAL, GLOBAL_SCOPE_VALUE)
        assert by_type[ScopeType.GLOBAL].max_alerts == 1000

    def test_team_scope_skipped_without_team(self):
        scopes = resolve_scopes(_make_alert(team_id=None), AlertRule(id="r1", name="cpu", max_alerts_per_hour=5))
        assert ScopeType.TEAM not in [s.key.scope_type for s in scopes]
        assert len(scopes) == 4

    def test_severity_limits(self):
        assert SEVERITY_LIMITS == {"critical": 10, "high": 20, "medium": 50, "low": 100, "info": 200}

    def test_scope_key_names(self):
        key = ScopeKey(ScopeType.METRIC, "cpu_usage")
        assert key.reason == "metric_rate_limit"
        assert key.lock_name == "scope:metric:cpu_usage"
        assert str(key) == "metric:cpu_usage"
