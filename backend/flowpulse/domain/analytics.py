"""Analytics query helpers."""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

CHART_PERIODS = {"7d": 7, "30d": 30, "90d": 90}


@dataclass(slots=True)
class DateRange:
    start: Optional[datetime] = None
    end: Optional[datetime] = None


@dataclass(slots=True)
class ActivityFilters:
    limit: int = 50
    offset: int = 0
