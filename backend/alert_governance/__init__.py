"""
告警治理引擎 (Alert Governance Engine)

决定每一条系统健康告警是否允许立即通知、通知谁、以及何时继续升级。
由多维度自适应限流器与升级/值班解析引擎两部分组成。

Decides, for every system-health alert, whether a notification may fire now,
who must be notified, and when escalation continues. Combines a multi-scope
adaptive rate limiter with an escalation and on-call resolution engine.
"""

__version__ = "0.4.0"
