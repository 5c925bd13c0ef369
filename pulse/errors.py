"""Exception hierarchy for the triage service.

Each class carries the HTTP status and error code that ``main.py`` renders,
so callers can tell "forbidden" apart from "not found" without string
matching.
"""

from typing import Optional


class PulseError(Exception):
    """Base class for all service errors."""

    status_code: int = 500
    error_code: str = "INTERNAL_ERROR"

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class ConfigurationError(PulseError):
    """Deployment is missing something the service cannot work around."""

    status_code = 500
    error_code = "CONFIGURATION_ERROR"


class NoFallbackAdminError(ConfigurationError):
    """An unassigned escalation has nobody to route to."""

    error_code = "NO_FALLBACK_ADMIN"

    def __init__(self, detail: Optional[str] = None):
        super().__init__(
            detail
            or "No administrators available to handle escalation. Please contact support."
        )


class AssistantUnavailableError(PulseError):
    """The generative assistant call failed or timed out."""

    status_code = 503
    error_code = "ASSISTANT_UNAVAILABLE"


class AccessDeniedError(PulseError):
    """Caller is authenticated but not allowed to touch the resource."""

    status_code = 403
    error_code = "FORBIDDEN"


class NotFoundError(PulseError):
    """Referenced resource does not exist."""

    status_code = 404
    error_code = "NOT_FOUND"

    def __init__(self, resource_type: str, resource_id: str):
        super().__init__(f"{resource_type} {resource_id} not found")
        self.resource_type = resource_type
        self.resource_id = resource_id


class InvalidTransitionError(PulseError):
    """Requested lifecycle transition is not allowed from the current state."""

    status_code = 409
    error_code = "INVALID_TRANSITION"


class ChatReconciliationError(PulseError):
    """The active-chat protocol did not converge within its attempt budget."""

    status_code = 503
    error_code = "CHAT_RECONCILIATION_FAILED"
