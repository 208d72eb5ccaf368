"""
Media provider contract.

Every generation backend (Sora, Runway, DomoAI, Kling, ...) is wrapped in an
adapter exposing the same three calls. The job queue only ever talks to this
contract and never to a concrete backend.
"""

from enum import Enum
from typing import TYPE_CHECKING, Optional, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict

if TYPE_CHECKING:
    from services.queue.models import JobSpec


class ProviderStatus(str, Enum):
    """Provider-side state of a submitted generation."""
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ProviderHandle(BaseModel):
    """Reference to a generation accepted by a provider."""
    model_config = ConfigDict(frozen=True)

    provider: str
    handle_id: str
    idempotency_key: Optional[str] = None


class PollResult(BaseModel):
    """Answer to a single status poll."""
    model_config = ConfigDict(frozen=True)

    status: ProviderStatus
    result_url: Optional[str] = None
    error: Optional[str] = None


@runtime_checkable
class MediaProvider(Protocol):
    """
    Uniform capability wrapping one external generation backend.

    - submit: may raise ProviderUnavailable or InvalidRequest. Must be safe to
      retry with the same idempotency key.
    - poll: must not block waiting for completion; the caller schedules
      repeated polls.
    - cancel: best-effort, provider-side work may continue.
    """

    name: str

    async def submit(self, spec: "JobSpec", idempotency_key: str) -> ProviderHandle:
        ...

    async def poll(self, handle: ProviderHandle) -> PollResult:
        ...

    async def cancel(self, handle: ProviderHandle) -> None:
        ...
