"""Analytics response schemas."""

from typing import Any

from pydantic import BaseModel


class AnalyticsEnvelope(BaseModel):
    """Uniform ``{success, data}`` wrapper for analytics reads."""

    success: bool = True
    data: Any
