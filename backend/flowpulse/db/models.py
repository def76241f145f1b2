"""Database models."""

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

WORKFLOW_STATUSES = ("Draft", "Active", "Paused")
NODE_TYPES = ("Trigger", "Condition", "Action")

# Counter columns shared by the embedded workflow analytics block.
WORKFLOW_COUNTERS = (
    "total_triggers",
    "total_completions",
    "total_runs",
    "successful_runs",
    "failed_runs",
)
NODE_COUNTERS = (
    "triggers",
    "completions",
    "failures",
    "skipped",
    "conditions_passed",
    "conditions_failed",
)


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class Workflow(Base):
    """Workflow graph owned by the workflow CRUD collaborator.

    This service only reads the graph and mutates the counter columns.
    """

    __tablename__ = "workflows"
    __table_args__ = (Index("ix_workflows_site_status", "site_id", "status"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="Draft", nullable=False)
    site_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    nodes: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list, nullable=False)
    edges: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list, nullable=False)
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    total_triggers: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_completions: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_runs: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    successful_runs: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    failed_runs: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_triggered_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    node_stats: Mapped[list["WorkflowNodeStats"]] = relationship(
        "WorkflowNodeStats",
        back_populates="workflow",
        cascade="all, delete-orphan",
        order_by="WorkflowNodeStats.id",
    )

    def node_ids(self) -> set[str]:
        return {str(node.get("id")) for node in self.nodes or [] if node.get("id") is not None}

    def find_node(self, node_id: str) -> Optional[dict[str, Any]]:
        for node in self.nodes or []:
            if str(node.get("id")) == str(node_id):
                return node
        return None

    def graph_errors(self) -> list[str]:
        """Return violations of the graph invariants (unique node ids, valid edges)."""
        errors: list[str] = []
        seen: set[str] = set()
        for node in self.nodes or []:
            node_id = str(node.get("id"))
            if node_id in seen:
                errors.append(f"duplicate node id {node_id}")
            seen.add(node_id)
        for edge in self.edges or []:
            for end in ("source", "target"):
                if str(edge.get(end)) not in seen:
                    errors.append(f"edge {edge.get('id')} references unknown node {edge.get(end)}")
        return errors


class WorkflowNodeStats(Base):
    """Per-node counters for a workflow, one row per node that saw activity."""

    __tablename__ = "workflow_node_stats"
    __table_args__ = (
        UniqueConstraint("workflow_id", "node_id", name="uq_workflow_node_stats_node"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    workflow_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("workflows.id", ondelete="CASCADE"), nullable=False, index=True
    )
    node_id: Mapped[str] = mapped_column(String(64), nullable=False)
    triggers: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    completions: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    failures: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    skipped: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    conditions_passed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    conditions_failed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    workflow: Mapped["Workflow"] = relationship("Workflow", back_populates="node_stats")


class WorkflowEvent(Base):
    """Raw behavioural event; kept for 24 hours and never updated."""

    __tablename__ = "workflow_events"
    __table_args__ = (
        Index("ix_workflow_events_workflow_ts", "workflow_id", "timestamp"),
        Index("ix_workflow_events_run", "workflow_id", "run_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    event_id: Mapped[Optional[str]] = mapped_column(String(128), unique=True, nullable=True)
    site_id: Mapped[str] = mapped_column(String(64), nullable=False)
    workflow_id: Mapped[str] = mapped_column(String(64), nullable=False)
    visitor_id: Mapped[str] = mapped_column(String(128), nullable=False)
    run_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    event: Mapped[str] = mapped_column(String(32), nullable=False)
    node_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    node_title: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    node_type: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    detail: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    step_order: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    execution_time: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)  # ms
    success: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)


class DailyAggregation(Base):
    """Per-workflow rollup of one UTC day of raw events."""

    __tablename__ = "workflow_daily_aggregations"
    __table_args__ = (UniqueConstraint("workflow_id", "date", name="uq_daily_workflow_date"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    workflow_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    site_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    date: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    triggers: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    completions: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    conversion_rate: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    total_execution_time: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    avg_execution_time: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    unique_visitors: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    unique_sessions: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    node_performance: Mapped[list[dict]] = mapped_column(JSON, default=list, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class WeeklyAggregation(Base):
    """Per-workflow rollup of a Sunday-to-Saturday week of daily rows."""

    __tablename__ = "workflow_weekly_aggregations"
    __table_args__ = (
        UniqueConstraint("workflow_id", "week_start", name="uq_weekly_workflow_week"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    workflow_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    site_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    week_start: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    week_end: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    week_number: Mapped[int] = mapped_column(Integer, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    total_triggers: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_completions: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    avg_conversion_rate: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    total_execution_time: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    avg_execution_time: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    total_unique_visitors: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_unique_sessions: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    daily_breakdown: Mapped[list[dict]] = mapped_column(JSON, default=list, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class MonthlyAggregation(Base):
    """Per-workflow rollup of the weekly rows starting inside a calendar month."""

    __tablename__ = "workflow_monthly_aggregations"
    __table_args__ = (
        UniqueConstraint("workflow_id", "month", "year", name="uq_monthly_workflow_month"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    workflow_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    site_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    month_start: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    month_end: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    total_triggers: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_completions: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    avg_conversion_rate: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    total_execution_time: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    avg_execution_time: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    total_unique_visitors: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_unique_sessions: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    weekly_breakdown: Mapped[list[dict]] = mapped_column(JSON, default=list, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class VisitorTag(Base):
    """One tag on a visitor of a site; the tag set is the rows for (site, visitor)."""

    __tablename__ = "visitor_tags"
    __table_args__ = (
        UniqueConstraint("site_id", "visitor_id", "tag", name="uq_visitor_tags_tag"),
        Index("ix_visitor_tags_visitor", "site_id", "visitor_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    site_id: Mapped[str] = mapped_column(String(64), nullable=False)
    visitor_id: Mapped[str] = mapped_column(String(128), nullable=False)
    tag: Mapped[str] = mapped_column(String(100), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
