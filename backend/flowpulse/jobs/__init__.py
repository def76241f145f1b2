"""Jobs module initialization."""

from .lease import LocalLease, RedisLease, get_lease
from .scheduler import JobState, JobType, RollupScheduler, get_scheduler

__all__ = [
    "JobState",
    "JobType",
    "LocalLease",
    "RedisLease",
    "RollupScheduler",
    "get_lease",
    "get_scheduler",
]
