"""Event ingestion schemas."""

from datetime import UTC, datetime
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from flowpulse.core.time import as_naive_utc, utcnow
from flowpulse.domain.events import EventKind, parse_kind


class TrackedEvent(BaseModel):
    """One behavioural event after wire-format normalisation."""

    site_id: str = Field(..., min_length=1, max_length=64)
    workflow_id: str = Field(..., min_length=1, max_length=64)
    kind: EventKind = Field(..., alias="event")
    visitor_id: Optional[str] = Field(default=None, max_length=128)
    run_id: Optional[str] = Field(default=None, max_length=128)
    node_id: Optional[str] = Field(default=None, max_length=64)
    node_title: Optional[str] = Field(default=None, max_length=200)
    node_type: Optional[str] = Field(default=None, max_length=20)
    detail: dict[str, Any] = Field(default_factory=dict)
    step_order: Optional[int] = None
    execution_time: Optional[int] = Field(default=None, ge=0)
    success: Optional[bool] = None
    result: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow)
    event_id: Optional[str] = Field(default=None, max_length=128)

    model_config = {"alias_generator": to_camel, "populate_by_name": True}

    @field_validator("kind", mode="before")
    @classmethod
    def resolve_kind(cls, value: Any) -> EventKind:
        kind = parse_kind(value)
        if kind is None:
            raise ValueError(f"unknown event kind {value!r}")
        return kind

    @field_validator("site_id", "workflow_id", "visitor_id", "run_id", "node_id", mode="before")
    @classmethod
    def stringify_ids(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("timestamp", mode="before")
    @classmethod
    def parse_epoch_millis(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            try:
                return datetime.fromtimestamp(value / 1000, tz=UTC)
            except (OverflowError, OSError, ValueError) as exc:
                raise ValueError("timestamp out of range") from exc
        return value

    @field_validator("timestamp")
    @classmethod
    def to_naive_utc(cls, value: datetime) -> datetime:
        return as_naive_utc(value)

    @model_validator(mode="after")
    def require_raw_fields(self) -> "TrackedEvent":
        if self.kind.is_raw:
            if not self.visitor_id:
                raise ValueError(f"visitorId is required for {self.kind.value} events")
            if not self.node_id and self.kind != EventKind.CUSTOM_EVENT:
                raise ValueError(f"nodeId is required for {self.kind.value} events")
        return self

    @property
    def condition_passed(self) -> bool:
        if self.result is not None:
            return self.result.lower() in {"passed", "true", "met"}
        return bool(self.success)


class BatchIngestRequest(BaseModel):
    """Batch ingestion body."""

    events: list[dict[str, Any]] = Field(..., min_length=1, max_length=1000)


class IngestResponse(BaseModel):
    success: bool = True
    processed: int
    stored: int
    duplicates: int = 0
    workflows: int = 0
