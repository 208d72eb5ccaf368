"""
Error taxonomy for the orchestration core.

Every error carries a stable ``error_code`` so failed jobs can surface it in
their status record next to the human readable message.
"""

from typing import Optional


class OrchestratorError(Exception):
    """Base class for all orchestration errors."""

    default_code = "ORCHESTRATOR_ERROR"

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        provider: Optional[str] = None,
    ):
        self.error_code = error_code or self.default_code
        self.provider = provider
        super().__init__(message)


class InvalidRequest(OrchestratorError):
    """Bad JobSpec / ScheduleConfig, or a provider rejecting a request."""

    default_code = "INVALID_REQUEST"


class ProviderUnavailable(OrchestratorError):
    """Provider could not accept or answer a call. Triggers the retry path."""

    default_code = "PROVIDER_UNAVAILABLE"


class JobTimeout(OrchestratorError):
    """A dispatched job exceeded its deadline."""

    default_code = "TIMEOUT"


class NotFound(OrchestratorError):
    """Unknown job, schedule or batch id."""

    default_code = "NOT_FOUND"


def invalid_from_validation(exc: Exception, what: str) -> InvalidRequest:
    """Convert a pydantic ValidationError into InvalidRequest."""
    errors = getattr(exc, "errors", None)
    if callable(errors):
        details = "; ".join(
            f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg')}"
            for err in errors()
        )
    else:
        details = str(exc)
    return InvalidRequest(f"Invalid {what}: {details}")
