"""add alert governance tables (alerts, rate limits, suppression log, escalation, on-call)

Revision ID: 001_governance
Revises:
Create Date: 2026-10-18
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001_governance"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # alert_rules 表
    op.create_table(
        "alert_rules",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("max_alerts_per_hour", sa.Integer(), nullable=False, server_default="10"),
        sa.Column("enabled", sa.Boolean(), server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # alerts 表
    op.create_table(
        "alerts",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("rule_id", sa.String(64), nullable=False, index=True),
        sa.Column("team_id", sa.String(64), nullable=True, index=True),
        sa.Column("severity", sa.String(20), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("metric_name", sa.String(255), nullable=False),
        sa.Column("metric_value", sa.Float(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # rate_limit_configs 表：固定窗口计数器
    op.create_table(
        "rate_limit_configs",
        sa.Column("scope_type", sa.String(20), primary_key=True),
        sa.Column("scope_value", sa.String(255), primary_key=True),
        sa.Column("max_alerts", sa.Integer(), nullable=False),
        sa.Column("window_minutes", sa.Integer(), nullable=False, server_default="60"),
        sa.Column("current_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("window_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("next_reset_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_alert_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("enabled", sa.Boolean(), server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # adaptive_limits 表
    op.create_table(
        "adaptive_limits",
        sa.Column("scope_type", sa.String(20), primary_key=True),
        sa.Column("scope_value", sa.String(255), primary_key=True),
        sa.Column("base_limit", sa.Integer(), nullable=False),
        sa.Column("current_limit", sa.Float(), nullable=False),
        sa.Column("adaptation_factor", sa.Float(), nullable=False, server_default="1.0"),
        sa.Column("error_rate", sa.Float(), nullable=False, server_default="0"),
        sa.Column("load_factor", sa.Float(), nullable=False, server_default="1.0"),
        sa.Column("last_adjustment", sa.DateTime(timezone=True), nullable=False),
    )

    # alert_suppression_log 表：只追加
    op.create_table(
        "alert_suppression_log",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("alert_id", sa.String(64), nullable=False, index=True),
        sa.Column("suppressed", sa.Boolean(), server_default=sa.text("true")),
        sa.Column("reason", sa.String(50), nullable=False, index=True),
        sa.Column("suppress_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), index=True),
    )

    # severity_rules 表
    op.create_table(
        "severity_rules",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("severity", sa.String(20), nullable=False, index=True),
        sa.Column("team_id", sa.String(64), nullable=True, index=True),
        sa.Column("assigned_users", sa.JSON(), nullable=True),
        sa.Column("assigned_channels", sa.JSON(), nullable=True),
        sa.Column("initial_delay_minutes", sa.Integer(), server_default="0"),
        sa.Column("escalation_interval_minutes", sa.Integer(), server_default="30"),
        sa.Column("max_escalation_level", sa.Integer(), server_default="3"),
        sa.Column("business_hours_only", sa.Boolean(), server_default=sa.text("false")),
        sa.Column("weekend_escalation", sa.Boolean(), server_default=sa.text("true")),
        sa.Column("auto_acknowledge_minutes", sa.Integer(), nullable=True),
        sa.Column("auto_resolve_minutes", sa.Integer(), nullable=True),
        sa.Column("priority", sa.Integer(), server_default="1"),
        sa.Column("enabled", sa.Boolean(), server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # alert_escalations 表：每个已路由告警一条
    op.create_table(
        "alert_escalations",
        sa.Column("alert_id", sa.String(64), primary_key=True),
        sa.Column("team_id", sa.String(64), nullable=True, index=True),
        sa.Column("severity", sa.String(20), nullable=False),
        sa.Column("title", sa.String(500), nullable=False, server_default=""),
        sa.Column("severity_rule_id", sa.String(64), nullable=False),
        sa.Column("state", sa.String(20), nullable=False, index=True),
        sa.Column("level", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("admitted_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("level_entered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("next_transition_at", sa.DateTime(timezone=True), nullable=True, index=True),
        sa.Column("condition_cleared", sa.Boolean(), server_default=sa.text("false")),
        sa.Column("waiting_for_window", sa.Boolean(), server_default=sa.text("false")),
        sa.Column("acknowledged_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("acknowledged_by", sa.String(64), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # escalation_events 表：只追加
    op.create_table(
        "escalation_events",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("alert_id", sa.String(64), nullable=False, index=True),
        sa.Column("event_type", sa.String(30), nullable=False),
        sa.Column("level", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("targets", sa.JSON(), nullable=True),
        sa.Column("channels", sa.JSON(), nullable=True),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # on_call_schedules 表
    op.create_table(
        "on_call_schedules",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("team_id", sa.String(64), nullable=False, index=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("schedule_type", sa.String(20), nullable=False, server_default="fixed"),
        sa.Column("rotation_config", sa.JSON(), nullable=True),
        sa.Column("timezone", sa.String(64), server_default="UTC"),
        sa.Column("effective_from", sa.DateTime(timezone=True), nullable=False),
        sa.Column("effective_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("applicable_severities", sa.JSON(), nullable=True),
        sa.Column("override_business_hours", sa.Boolean(), server_default=sa.text("false")),
        sa.Column("enabled", sa.Boolean(), server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # team_escalation_configs 表
    op.create_table(
        "team_escalation_configs",
        sa.Column("team_id", sa.String(64), primary_key=True),
        sa.Column("business_hours", sa.JSON(), nullable=True),
        sa.Column("enabled", sa.Boolean(), server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )


def downgrade() -> None:
    op.drop_table("team_escalation_configs")
    op.drop_table("on_call_schedules")
    op.drop_table("escalation_events")
    op.drop_table("alert_escalations")
    op.drop_table("severity_rules")
    op.drop_table("alert_suppression_log")
    op.drop_table("adaptive_limits")
    op.drop_table("rate_limit_configs")
    op.drop_table("alerts")
    op.drop_table("alert_rules")
