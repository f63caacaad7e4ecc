"""抑制日志服务测试。"""
from datetime import timedelta
from unittest.mock import AsyncMock

from alert_governance.schemas.rate_limit import RateLimitResult
from alert_governance.services.suppression_logger import SuppressionLogger

from conftest import T0


def _rejection(scope_type="rule", reason="rule_rate_limit"):
    return RateLimitResult(
        allowed=False,
        reason=reason,
        current_count=5,
        max_allowed=5,
        window_minutes=60,
        reset_at=T0 + timedelta(minutes=30),
        retry_after_seconds=1800,
        metadata={"scope_type": scope_type, "scope_value": "r1"},
    )


class TestSuppressionLogger:
    async def test_record_writes_details(self, memory_store):
        logger = SuppressionLogger(memory_store)
        entry = await logger.record("a-1", _rejection(), T0)
        assert entry.id is not None
        assert entry.suppressed is True
        assert entry.reason == "rule_rate_limit"
        assert entry.suppress_until == T0 + timedelta(minutes=30)
        assert entry.details == {
            "rate_limit_type": "rule",
            "scope_value": "r1",
            "current_count": 5,
            "max_allowed": 5,
            "window_minutes": 60,
            "retry_after_seconds": 1800,
        }

    async def test_record_failure_returns_none(self, memory_store):
        memory_store.add_suppression_entry = AsyncMock(side_effect=RuntimeError("boom"))
        logger = SuppressionLogger(memory_store)
        assert await logger.record("a-1", _rejection(), T0) is None

    async def test_list_entries_newest_first_with_filters(self, memory_store):
        logger = SuppressionLogger(memory_store)
        await logger.record("a-1", _rejection(), T0)
        await logger.record("a-2", _rejection("team", "team_rate_limit"), T0 + timedelta(minutes=1))
        await logger.record("a-3", _rejection(), T0 + timedelta(minutes=2))

        entries = await logger.list_entries()
        assert [e.alert_id for e in entries] == ["a-3", "a-2", "a-1"]
        assert [e.alert_id for e in await logger.list_entries(reason="team_rate_limit")] == ["a-2"]
        assert [e.alert_id for e in await logger.list_entries(alert_id="a-1")] == ["a-1"]
        assert len(await logger.list_entries(since=T0 + timedelta(minutes=1))) == 2

    async def test_stats_by_reason_and_scope(self, memory_store):
        logger = SuppressionLogger(memory_store)
        await logger.record("a-1", _rejection(), T0)
        await logger.record("a-2", _rejection(), T0)
        await logger.record("a-3", _rejection("global", "global_rate_limit"), T0)
        stats = await logger.stats()
        assert stats["total"] == 3
        assert stats["by_reason"] == {"rule_rate_limit": 2, "global_rate_limit": 1}
        assert stats["by_scope_type"] == {"rule": 2, "global": 1}
        assert await logger.count_since(T0) == 3
        assert await logger.count_since(T0 + timedelta(seconds=1)) == 0
