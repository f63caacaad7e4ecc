"""SQLAlchemy 存储层测试（SQLite in-memory）。"""
from datetime import timedelta

from alert_governance.core.locks import LocalKeyedLock
from alert_governance.models.alert import Alert, AlertRule
from alert_governance.models.escalation import AlertEscalation, EscalationEvent, SeverityRule
from alert_governance.models.on_call import OnCallSchedule, TeamEscalationConfig
from alert_governance.models.suppression import SuppressionLogEntry
from alert_governance.services.governance import AlertGovernanceEngine
from alert_governance.services.policy_seed import seed_default_policies

from conftest import T0


def _make_escalation(alert_id, state="active", admitted_at=T0):
    return AlertEscalation(
        alert_id=alert_id,
        team_id="team-a",
        severity="critical",
        title="t",
        severity_rule_id="default-critical",
        state=state,
        level=1,
        admitted_at=admitted_at,
        level_entered_at=admitted_at,
        next_transition_at=admitted_at + timedelta(minutes=10),
        condition_cleared=False,
        waiting_for_window=False,
        updated_at=admitted_at,
    )


class TestSqlGovernanceStore:
    async def test_suppression_entries_roundtrip(self, sql_store):
        for i in range(3):
            await sql_store.add_suppression_entry(
                SuppressionLogEntry(
                    alert_id=f"a-{i}",
                    suppressed=True,
                    reason="rule_rate_limit" if i < 2 else "global_rate_limit",
                    suppress_until=T0 + timedelta(minutes=30),
                    details={"rate_limit_type": "rule"},
                    created_at=T0 + timedelta(minutes=i),
                )
            )
        entries = await sql_store.list_suppression_entries()
        assert [e.alert_id for e in entries] == ["a-2", "a-1", "a-0"]
        assert entries[0].suppress_until == T0 + timedelta(minutes=30)
        assert entries[0].details == {"rate_limit_type": "rule"}
        assert len(await sql_store.list_suppression_entries(reason="rule_rate_limit")) == 2
        assert await sql_store.count_suppression_entries(T0 + timedelta(minutes=1)) == 2

    async def test_alert_status_update(self, sql_store):
        await sql_store.save_alert(
            Alert(id="a-1", rule_id="r1", severity="low", status="active", title="t", metric_name="m")
        )
        assert await sql_store.update_alert_status("a-1", "suppressed") is True
        assert (await sql_store.get_alert("a-1")).status == "suppressed"
        assert await sql_store.update_alert_status("missing", "suppressed") is False

    async def test_severity_rules_filtered_by_severity(self, sql_store):
        assert await seed_default_policies(sql_store, T0) == 5
        assert await seed_default_policies(sql_store, T0) == 0
        rules = await sql_store.list_severity_rules("medium")
        assert [r.id for r in rules] == ["default-medium"]
        assert rules[0].business_hours_only is True
        assert isinstance(await sql_store.get_severity_rule("default-low"), SeverityRule)

    async def test_schedules_in_creation_order(self, sql_store):
        for i, schedule_id in enumerate(["zeta", "alpha"]):
            await sql_store.save_on_call_schedule(
                OnCallSchedule(
                    id=schedule_id,
                    team_id="team-a",
                    name=schedule_id,
                    schedule_type="fixed",
                    rotation_config={"participants": [schedule_id]},
                    timezone="UTC",
                    effective_from=T0,
                    applicable_severities=["critical"],
                    override_business_hours=False,
                    enabled=True,
                    created_at=T0 + timedelta(minutes=i),
                )
            )
        schedules = await sql_store.list_on_call_schedules("team-a")
        assert [s.id for s in schedules] == ["zeta", "alpha"]
        assert schedules[0].effective_from == T0
        assert schedules[0].effective_from.tzinfo is not None

    async def test_team_config(self, sql_store):
        await sql_store.save_team_config(
            TeamEscalationConfig(team_id="team-a", business_hours={"timezone": "Europe/Berlin"}, enabled=True)
        )
        config = await sql_store.get_team_config("team-a")
        assert config.business_hours["timezone"] == "Europe/Berlin"
        assert await sql_store.get_team_config("team-b") is None

    async def test_open_escalations_and_events(self, sql_store):
        await sql_store.save_escalation(_make_escalation("a-2", admitted_at=T0 + timedelta(minutes=1)))
        await sql_store.save_escalation(_make_escalation("a-1"))
        await sql_store.save_escalation(_make_escalation("a-3", state="acknowledged"))
        await sql_store.save_escalation(_make_escalation("a-4", state="capped", admitted_at=T0 + timedelta(seconds=30)))
        open_ids = [e.alert_id for e in await sql_store.list_open_escalations()]
        assert open_ids == ["a-1", "a-4", "a-2"]

        escalation = await sql_store.get_escalation("a-1")
        escalation.level = 2
        await sql_store.save_escalation(escalation)
        assert (await sql_store.get_escalation("a-1")).level == 2

        await sql_store.add_escalation_event(
            EscalationEvent(alert_id="a-1", event_type="level_entered", level=1, targets=["alice"], channels=[], created_at=T0)
        )
        await sql_store.add_escalation_event(
            EscalationEvent(alert_id="a-1", event_type="capped", level=1, created_at=T0)
        )
        events = await sql_store.list_escalation_events("a-1")
        assert [e.event_type for e in events] == ["level_entered", "capped"]
        assert events[0].targets == ["alice"]


class TestEngineOnSql:
    async def test_rate_limit_state_persisted(self, sql_store, dispatcher, clock, test_settings):
        rule = AlertRule(id="r1", name="cpu", max_alerts_per_hour=5)
        gov = AlertGovernanceEngine(sql_store, LocalKeyedLock(), dispatcher, clock, test_settings)
        await gov.start()
        for i in range(6):
            alert = Alert(
                id=f"a-{i}", rule_id="r1", team_id="team-a", severity="low",
                status="active", title="cpu", metric_name="cpu",
            )
            await sql_store.save_alert(alert)
            decision = await gov.process_alert(alert, rule)
        assert not decision.rate_limit.allowed
        assert (await sql_store.get_alert("a-5")).status == "suppressed"
        await gov.stop()

        configs = {(c.scope_type, c.scope_value): c for c in await sql_store.load_rate_limit_configs()}
        assert configs[("rule", "r1")].current_count == 5
        assert configs[("rule", "r1")].next_reset_at == T0 + timedelta(minutes=60)
        assert len(await sql_store.load_adaptive_limits()) == 5

        restarted = AlertGovernanceEngine(sql_store, LocalKeyedLock(), dispatcher, clock, test_settings)
        await restarted.start()
        alert = Alert(
            id="a-9", rule_id="r1", team_id="team-a", severity="low",
            status="active", title="cpu", metric_name="cpu",
        )
        assert not (await restarted.process_alert(alert, rule)).rate_limit.allowed
        clock.advance(minutes=60)
        assert (await restarted.process_alert(alert, rule)).rate_limit.allowed
        await restarted.stop()
