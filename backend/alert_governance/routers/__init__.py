"""
告警治理路由模块包 (Alert Governance Router Package)

路由模块组织结构 (Router Module Organization):
- alerts.py: 告警治理决策、确认、条件消除和升级状态查询
- rate_limits.py: 限流窗口查询、统计、配置修改和运行信号注入
- suppression_log.py: 抑制日志查询和统计
- on_call.py: 值班对象查询

所有路由模块在 main.py 中通过 app.include_router() 统一注册，使用 /api/v1/ 前缀。
"""
