"""Action execution schemas."""

from typing import Any, Optional

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel


class ExecutionRequest(BaseModel):
    """Server-side action request sent by the tracker when an Action node fires."""

    workflow_id: str = Field(..., min_length=1, max_length=64)
    node_id: str = Field(..., min_length=1, max_length=64)
    site_id: str = Field(..., min_length=1, max_length=64)
    visitor_id: str = Field(..., min_length=1, max_length=128)
    run_id: Optional[str] = Field(default=None, max_length=128)
    identified_user: Optional[dict[str, Any]] = None
    local_storage_data: Optional[dict[str, Any]] = None

    model_config = {"alias_generator": to_camel, "populate_by_name": True}


class ExecutionResponse(BaseModel):
    success: bool
    result: Optional[dict[str, Any]] = None
    error: Optional[str] = None
    message: str


class EnqueueResponse(BaseModel):
    success: bool = True
    job_id: str = Field(..., serialization_alias="jobId")


class JobStatusResponse(BaseModel):
    job_id: str = Field(..., serialization_alias="jobId")
    state: str
    result: Optional[dict[str, Any]] = None
