from __future__ import annotations

from alembic import op
import sqlalchemy as sa

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


def _rollup_columns():
    return [
        sa.Column("total_triggers", sa.Integer, nullable=False, server_default="0"),
        sa.Column("total_completions", sa.Integer, nullable=False, server_default="0"),
        sa.Column("avg_conversion_rate", sa.Float, nullable=False, server_default="0"),
        sa.Column("total_execution_time", sa.Integer, nullable=False, server_default="0"),
        sa.Column("avg_execution_time", sa.Float, nullable=False, server_default="0"),
        sa.Column("total_unique_visitors", sa.Integer, nullable=False, server_default="0"),
        sa.Column("total_unique_sessions", sa.Integer, nullable=False, server_default="0"),
    ]


def upgrade():
    op.create_table(
        "workflows",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="Draft"),
        sa.Column("site_id", sa.String(length=64), nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("nodes", sa.JSON, nullable=False),
        sa.Column("edges", sa.JSON, nullable=False),
        sa.Column("is_deleted", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("total_triggers", sa.Integer, nullable=False, server_default="0"),
        sa.Column("total_completions", sa.Integer, nullable=False, server_default="0"),
        sa.Column("total_runs", sa.Integer, nullable=False, server_default="0"),
        sa.Column("successful_runs", sa.Integer, nullable=False, server_default="0"),
        sa.Column("failed_runs", sa.Integer, nullable=False, server_default="0"),
        sa.Column("last_triggered_at", sa.DateTime()),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_workflows_site_id", "workflows", ["site_id"])
    op.create_index("ix_workflows_user_id", "workflows", ["user_id"])
    op.create_index("ix_workflows_site_status", "workflows", ["site_id", "status"])

    op.create_table(
        "workflow_node_stats",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column(
            "workflow_id",
            sa.String(length=64),
            sa.ForeignKey("workflows.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("node_id", sa.String(length=64), nullable=False),
        sa.Column("triggers", sa.Integer, nullable=False, server_default="0"),
        sa.Column("completions", sa.Integer, nullable=False, server_default="0"),
        sa.Column("failures", sa.Integer, nullable=False, server_default="0"),
        sa.Column("skipped", sa.Integer, nullable=False, server_default="0"),
        sa.Column("conditions_passed", sa.Integer, nullable=False, server_default="0"),
        sa.Column("conditions_failed", sa.Integer, nullable=False, server_default="0"),
        sa.UniqueConstraint("workflow_id", "node_id", name="uq_workflow_node_stats_node"),
    )
    op.create_index("ix_workflow_node_stats_workflow_id", "workflow_node_stats", ["workflow_id"])

    op.create_table(
        "workflow_events",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("event_id", sa.String(length=128), unique=True),
        sa.Column("site_id", sa.String(length=64), nullable=False),
        sa.Column("workflow_id", sa.String(length=64), nullable=False),
        sa.Column("visitor_id", sa.String(length=128), nullable=False),
        sa.Column("run_id", sa.String(length=128)),
        sa.Column("event", sa.String(length=32), nullable=False),
        sa.Column("node_id", sa.String(length=64)),
        sa.Column("node_title", sa.String(length=200)),
        sa.Column("node_type", sa.String(length=20)),
        sa.Column("detail", sa.JSON),
        sa.Column("step_order", sa.Integer),
        sa.Column("execution_time", sa.Integer),
        sa.Column("success", sa.Boolean),
        sa.Column("timestamp", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_workflow_events_timestamp", "workflow_events", ["timestamp"])
    op.create_index("ix_workflow_events_workflow_ts", "workflow_events", ["workflow_id", "timestamp"])
    op.create_index("ix_workflow_events_run", "workflow_events", ["workflow_id", "run_id"])

    op.create_table(
        "workflow_daily_aggregations",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("workflow_id", sa.String(length=64), nullable=False),
        sa.Column("site_id", sa.String(length=64), nullable=False),
        sa.Column("date", sa.DateTime(), nullable=False),
        sa.Column("triggers", sa.Integer, nullable=False, server_default="0"),
        sa.Column("completions", sa.Integer, nullable=False, server_default="0"),
        sa.Column("conversion_rate", sa.Float, nullable=False, server_default="0"),
        sa.Column("total_execution_time", sa.Integer, nullable=False, server_default="0"),
        sa.Column("avg_execution_time", sa.Float, nullable=False, server_default="0"),
        sa.Column("unique_visitors", sa.Integer, nullable=False, server_default="0"),
        sa.Column("unique_sessions", sa.Integer, nullable=False, server_default="0"),
        sa.Column("node_performance", sa.JSON, nullable=False),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("workflow_id", "date", name="uq_daily_workflow_date"),
    )
    for column in ("workflow_id", "site_id", "date", "expires_at"):
        op.create_index(
            f"ix_workflow_daily_aggregations_{column}", "workflow_daily_aggregations", [column]
        )

    op.create_table(
        "workflow_weekly_aggregations",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("workflow_id", sa.String(length=64), nullable=False),
        sa.Column("site_id", sa.String(length=64), nullable=False),
        sa.Column("week_start", sa.DateTime(), nullable=False),
        sa.Column("week_end", sa.DateTime(), nullable=False),
        sa.Column("week_number", sa.Integer, nullable=False),
        sa.Column("year", sa.Integer, nullable=False),
        *_rollup_columns(),
        sa.Column("daily_breakdown", sa.JSON, nullable=False),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("workflow_id", "week_start", name="uq_weekly_workflow_week"),
    )
    for column in ("workflow_id", "site_id", "week_start", "expires_at"):
        op.create_index(
            f"ix_workflow_weekly_aggregations_{column}", "workflow_weekly_aggregations", [column]
        )

    op.create_table(
        "workflow_monthly_aggregations",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("workflow_id", sa.String(length=64), nullable=False),
        sa.Column("site_id", sa.String(length=64), nullable=False),
        sa.Column("month", sa.Integer, nullable=False),
        sa.Column("year", sa.Integer, nullable=False),
        sa.Column("month_start", sa.DateTime(), nullable=False),
        sa.Column("month_end", sa.DateTime(), nullable=False),
        *_rollup_columns(),
        sa.Column("weekly_breakdown", sa.JSON, nullable=False),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("workflow_id", "month", "year", name="uq_monthly_workflow_month"),
    )
    for column in ("workflow_id", "site_id", "expires_at"):
        op.create_index(
            f"ix_workflow_monthly_aggregations_{column}", "workflow_monthly_aggregations", [column]
        )

    op.create_table(
        "visitor_tags",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("site_id", sa.String(length=64), nullable=False),
        sa.Column("visitor_id", sa.String(length=128), nullable=False),
        sa.Column("tag", sa.String(length=100), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("site_id", "visitor_id", "tag", name="uq_visitor_tags_tag"),
    )
    op.create_index("ix_visitor_tags_visitor", "visitor_tags", ["site_id", "visitor_id"])


def downgrade():
    op.drop_table("visitor_tags")
    op.drop_table("workflow_monthly_aggregations")
    op.drop_table("workflow_weekly_aggregations")
    op.drop_table("workflow_daily_aggregations")
    op.drop_table("workflow_events")
    op.drop_table("workflow_node_stats")
    op.drop_table("workflows")
