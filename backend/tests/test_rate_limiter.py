"""多作用域告警限流器测试。"""
import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from alert_governance.core.exceptions import NotFoundError
from alert_governance.core.locks import LocalKeyedLock
from alert_governance.models.alert import Alert, AlertRule
from alert_governance.schemas.rate_limit import ScopeKey, ScopeType
from alert_governance.services.adaptive_limiter import AdaptiveLimiter
from alert_governance.services.rate_limiter import AlertRateLimiter
from alert_governance.services.suppression_logger import SuppressionLogger
from alert_governance.services.window_store import WindowStore

from conftest import T0


def _make_alert(n=0, **overrides):
    data = {
        "id": f"a-{n}",
        "rule_id": "r1",
        "team_id": "team-a",
        "severity": "low",
        "title": "Disk usage high",
        "metric_name": "disk_usage",
    }
    data.update(overrides)
    return Alert(**data)


def _make_limiter(store, clock):
    lock = LocalKeyedLock()
    windows = WindowStore(store, lock)
    adaptive = AdaptiveLimiter(store, lock)
    suppression = SuppressionLogger(store)
    return AlertRateLimiter(windows, adaptive, suppression, lock, clock)


RULE = AlertRule(id="r1", name="disk", max_alerts_per_hour=5)


class TestEvaluate:
    async def test_sixth_alert_rejected_by_rule_scope(self, memory_store, clock):
        limiter = _make_limiter(memory_store, clock)
        for i in range(5):
            result = await limiter.evaluate(_make_alert(i), RULE)
            assert result.allowed
            assert result.reason == "rate_limit_passed"
            assert result.current_count == i + 1

        result = await limiter.evaluate(_make_alert(5), RULE)
        assert not result.allowed
        assert result.reason == "rule_rate_limit"
        assert result.current_count == 5
        assert result.max_allowed == 5
        assert result.window_minutes == 60
        assert result.reset_at == T0 + timedelta(minutes=60)
        assert result.retry_after_seconds == 3600
        assert result.metadata["scope_type"] == "rule"
        assert result.metadata["original_limit"] == 5

    async def test_rejection_is_logged_to_suppression(self, memory_store, clock):
        limiter = _make_limiter(memory_store, clock)
        for i in range(6):
            await limiter.evaluate(_make_alert(i), RULE)
        assert len(memory_store.suppression_entries) == 1
        entry = memory_store.suppression_entries[0]
        assert entry.alert_id == "a-5"
        assert entry.reason == "rule_rate_limit"
        assert entry.suppress_until == T0 + timedelta(minutes=60)
        assert entry.details["rate_limit_type"] == "rule"
        assert entry.details["max_allowed"] == 5

    async def test_rejected_alert_does_not_count(self, memory_store, clock):
        limiter = _make_limiter(memory_store, clock)
        for i in range(8):
            await limiter.evaluate(_make_alert(i), RULE)
        assert memory_store.rate_limit_configs[("rule", "r1")].current_count == 5
        # 被拒绝的告警不计入其他作用域 (rejected alerts do not count anywhere)
        assert memory_store.rate_limit_configs[("team", "team-a")].current_count == 5
        assert memory_store.rate_limit_configs[("global", "global")].current_count == 5

    async def test_eleventh_critical_alert_rejected_by_severity(self, memory_store, clock):
        limiter = _make_limiter(memory_store, clock)
        rule = AlertRule(id="r-big", name="big", max_alerts_per_hour=1000)
        results = []
        for i in range(11):
            alert = _make_alert(i, rule_id="r-big", severity="critical", metric_name=f"m{i}")
            results.append(await limiter.evaluate(alert, rule))
        assert all(r.allowed for r in results[:10])
        assert not results[10].allowed
        assert results[10].reason == "severity_rate_limit"
        assert results[10].max_allowed == 10

    async def test_first_rejecting_scope_wins(self, memory_store, clock):
        limiter = _make_limiter(memory_store, clock)
        rule = AlertRule(id="r1", name="tight", max_alerts_per_hour=1)
        for i in range(10):
            await limiter.evaluate(_make_alert(i, severity="critical"), rule)
        result = await limiter.evaluate(_make_alert(99, severity="critical"), rule)
        assert result.reason == "rule_rate_limit"

    async def test_window_resets_after_expiry(self, memory_store, clock):
        limiter = _make_limiter(memory_store, clock)
        for i in range(6):
            await limiter.evaluate(_make_alert(i), RULE)
        clock.advance(minutes=60)
        result = await limiter.evaluate(_make_alert(7), RULE)
        assert result.allowed
        assert result.current_count == 1

    async def test_retry_after_rounds_up(self, memory_store, clock):
        limiter = _make_limiter(memory_store, clock)
        for i in range(5):
            await limiter.evaluate(_make_alert(i), RULE)
        clock.advance(minutes=59, seconds=59, milliseconds=500)
        result = await limiter.evaluate(_make_alert(5), RULE)
        assert not result.allowed
        assert result.retry_after_seconds == 1

    async def test_disabled_scope_is_skipped(self, memory_store, clock):
        limiter = _make_limiter(memory_store, clock)
        for i in range(5):
            await limiter.evaluate(_make_alert(i), RULE)
        await limiter.update_rate_limit(ScopeKey(ScopeType.RULE, "r1"), enabled=False)
        result = await limiter.evaluate(_make_alert(5), RULE)
        assert result.allowed

    async def test_adaptive_limit_tightens_effective_limit(self, memory_store, clock):
        limiter = _make_limiter(memory_store, clock)
        key = ScopeKey(ScopeType.RULE, "r1")
        await limiter.evaluate(_make_alert(0), RULE)
        await limiter.adaptive.record_signals(key, error_rate=0.5)
        await limiter.adaptive.adjust(clock.advance(minutes=10))
        # floor(5 * 0.8) = 4
        for i in range(1, 4):
            assert (await limiter.evaluate(_make_alert(i), RULE)).allowed
        result = await limiter.evaluate(_make_alert(4), RULE)
        assert not result.allowed
        assert result.max_allowed == 4
        assert result.metadata["adaptive_limit"] == 4
        assert result.metadata["original_limit"] == 5

    async def test_fail_open_on_persistence_error(self, memory_store, clock):
        limiter = _make_limiter(memory_store, clock)
        memory_store.save_rate_limit_config = AsyncMock(side_effect=RuntimeError("db down"))
        result = await limiter.evaluate(_make_alert(0), RULE)
        assert result.allowed
        assert result.reason == "rate_limit_error"
        assert result.metadata["rate_limit_error"] == "db down"

    async def test_fail_open_on_persistence_timeout(self, memory_store, clock):
        lock = LocalKeyedLock()
        limiter = AlertRateLimiter(
            WindowStore(memory_store, lock, persistence_timeout=0.01),
            AdaptiveLimiter(memory_store, lock),
            SuppressionLogger(memory_store),
            lock,
            clock,
        )

        async def slow_save(config):
            await asyncio.sleep(1)

        memory_store.save_rate_limit_config = slow_save
        result = await limiter.evaluate(_make_alert(0), RULE)
        assert result.allowed
        assert result.reason == "rate_limit_error"
        assert result.metadata["rate_limit_error"]

    async def test_suppression_log_failure_keeps_rejection(self, memory_store, clock):
        limiter = _make_limiter(memory_store, clock)
        for i in range(5):
            await limiter.evaluate(_make_alert(i), RULE)
        memory_store.add_suppression_entry = AsyncMock(side_effect=RuntimeError("log down"))
        result = await limiter.evaluate(_make_alert(5), RULE)
        assert not result.allowed
        assert result.reason == "rule_rate_limit"

    async def test_concurrent_evaluations_never_exceed_limit(self, memory_store, clock):
        limiter = _make_limiter(memory_store, clock)

        async def slow_save(config):
            await asyncio.sleep(0)
            memory_store.rate_limit_configs[(config.scope_type, config.scope_value)] = config

        memory_store.save_rate_limit_config = slow_save
        results = await asyncio.gather(*(limiter.evaluate(_make_alert(i), RULE) for i in range(20)))
        assert sum(1 for r in results if r.allowed) == 5
        assert memory_store.rate_limit_configs[("rule", "r1")].current_count == 5


class TestManagement:
    async def test_statistics(self, memory_store, clock):
        limiter = _make_limiter(memory_store, clock)
        for i in range(7):
            await limiter.evaluate(_make_alert(i), RULE)
        stats = await limiter.get_statistics()
        assert stats["total_limits"] == 5
        assert stats["active_limits"] == 5
        assert stats["adaptive_limits"] == 5
        assert stats["recent_hits"] == 2

    async def test_recent_hits_only_last_hour(self, memory_store, clock):
        limiter = _make_limiter(memory_store, clock)
        for i in range(6):
            await limiter.evaluate(_make_alert(i), RULE)
        clock.advance(hours=2)
        stats = await limiter.get_statistics()
        assert stats["recent_hits"] == 0

    async def test_update_unknown_scope(self, memory_store, clock):
        limiter = _make_limiter(memory_store, clock)
        with pytest.raises(NotFoundError):
            await limiter.update_rate_limit(ScopeKey(ScopeType.RULE, "nope"), max_alerts=3)

    async def test_update_max_alerts_rebases_adaptive(self, memory_store, clock):
        limiter = _make_limiter(memory_store, clock)
        await limiter.evaluate(_make_alert(0), RULE)
        key = ScopeKey(ScopeType.RULE, "r1")
        config = await limiter.update_rate_limit(key, max_alerts=2)
        assert config.max_alerts == 2
        assert limiter.adaptive.get(key).base_limit == 2
        await limiter.evaluate(_make_alert(1), RULE)
        assert not (await limiter.evaluate(_make_alert(2), RULE)).allowed

    async def test_update_window_recomputes_reset(self, memory_store, clock):
        limiter = _make_limiter(memory_store, clock)
        await limiter.evaluate(_make_alert(0), RULE)
        config = await limiter.update_rate_limit(ScopeKey(ScopeType.RULE, "r1"), window_minutes=15)
        assert config.next_reset_at == T0 + timedelta(minutes=15)

    async def test_list_windows_includes_adaptive(self, memory_store, clock):
        limiter = _make_limiter(memory_store, clock)
        await limiter.evaluate(_make_alert(0), RULE)
        rows = {(c.scope_type, c.scope_value): adaptive for c, adaptive in limiter.list_windows()}
        assert rows[("rule", "r1")] == 5
        assert rows[("severity", "low")] == 100
