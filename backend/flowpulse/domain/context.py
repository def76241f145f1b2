"""Request-scoped caller context."""

from dataclasses import dataclass
from typing import Optional

from flowpulse.db import Workflow
from flowpulse.domain.exceptions import ForbiddenError

# Internal callers (scheduler, TrackEvent loop) act as this user.
SYSTEM_USER = "system"


@dataclass(slots=True)
class CallerContext:
    """Identity injected by the auth gateway; trusted verbatim."""

    user_id: str
    plan: Optional[str] = None

    @property
    def is_system(self) -> bool:
        return self.user_id == SYSTEM_USER

    def assert_owns(self, workflow: Workflow) -> None:
        """Ensure the caller may read or reset the workflow's analytics."""
        if self.is_system:
            return
        if str(workflow.user_id) != str(self.user_id):
            raise ForbiddenError("Access denied: workflow belongs to another user")
