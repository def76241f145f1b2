"""Domain-level exception hierarchy."""


class DomainError(Exception):
    """Base exception for service-layer errors."""

    def __init__(self, message: str = "Domain error") -> None:
        super().__init__(message)
        self.message = message


class NotFoundError(DomainError):
    """Raised when a workflow, node or other resource cannot be located."""


class ConflictError(DomainError):
    """Raised when a unique constraint or business rule is violated."""


class ForbiddenError(DomainError):
    """Raised when the caller does not own the requested workflow."""


class ValidationError(DomainError):
    """Raised when an event or action payload is malformed."""


class UnauthorizedError(DomainError):
    """Raised when the gateway did not supply a caller identity."""


class UnsupportedActionError(ValidationError):
    """Raised when a node's action kind has no server-side handler."""


class ActionError(Exception):
    """Raised by action handlers when a downstream call fails; retryable."""


class WebhookDeliveryError(ActionError):
    """Raised when a webhook target is unreachable or answers with a non-2xx status."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
