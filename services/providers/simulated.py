"""
Simulated media provider.

Stands in for a real backend in demos and tests. Generations complete after a
configurable number of polls and the failure modes a real provider shows
(refused submits, stuck jobs, failed renders, late results) can be scripted.
"""

import logging
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional

from core.errors import InvalidRequest, ProviderUnavailable

from .base import PollResult, ProviderHandle, ProviderStatus

if TYPE_CHECKING:
    from services.queue.models import JobSpec

logger = logging.getLogger(__name__)


@dataclass
class _Generation:
    handle: ProviderHandle
    spec: "JobSpec"
    polls: int = 0
    status: ProviderStatus = ProviderStatus.QUEUED
    result_url: Optional[str] = None
    error: Optional[str] = None
    cancelled: bool = False


@dataclass
class SimulatedMediaProvider:
    """
    In-process provider with scriptable behavior.

    Args:
        name: Provider name used for routing and fallback
        polls_until_complete: Polls answered "processing" before completing
        fail_submits: Number of upcoming submits to refuse (-1 = refuse all)
        reject_submits: Refuse submits with InvalidRequest instead
        never_complete: Keep answering "processing" forever
        fail_generation: Report the generation as failed on first poll
        result_url_template: Asset URL pattern, formatted with ``handle_id``
    """

    name: str
    polls_until_complete: int = 1
    fail_submits: int = 0
    reject_submits: bool = False
    never_complete: bool = False
    fail_generation: bool = False
    result_url_template: str = "https://storage.scrollsoul.com/videos/{handle_id}.mp4"

    submitted: list[str] = field(default_factory=list, init=False)
    cancelled: list[str] = field(default_factory=list, init=False)
    poll_count: int = field(default=0, init=False)
    _generations: dict[str, _Generation] = field(default_factory=dict, init=False)
    _by_key: dict[str, str] = field(default_factory=dict, init=False)

    async def submit(self, spec: "JobSpec", idempotency_key: str) -> ProviderHandle:
        self.submitted.append(idempotency_key)

        if self.reject_submits:
            raise InvalidRequest(
                f"{self.name} rejected request {idempotency_key}",
                provider=self.name,
            )

        if self.fail_submits != 0:
            if self.fail_submits > 0:
                self.fail_submits -= 1
            raise ProviderUnavailable(
                f"{self.name} is unavailable",
                error_code="SERVICE_UNAVAILABLE",
                provider=self.name,
            )

        # Same key, same generation
        existing = self._by_key.get(idempotency_key)
        if existing:
            return self._generations[existing].handle

        handle = ProviderHandle(
            provider=self.name,
            handle_id=f"{self.name}-{uuid.uuid4().hex[:12]}",
            idempotency_key=idempotency_key,
        )
        self._generations[handle.handle_id] = _Generation(handle=handle, spec=spec)
        self._by_key[idempotency_key] = handle.handle_id
        logger.debug(f"{self.name} accepted {idempotency_key} as {handle.handle_id}")
        return handle

    async def poll(self, handle: ProviderHandle) -> PollResult:
        self.poll_count += 1
        generation = self._generations.get(handle.handle_id)
        if generation is None:
            return PollResult(
                status=ProviderStatus.FAILED,
                error=f"Unknown handle {handle.handle_id}",
            )

        generation.polls += 1

        if generation.status in (ProviderStatus.COMPLETED, ProviderStatus.FAILED):
            pass
        elif self.fail_generation:
            generation.status = ProviderStatus.FAILED
            generation.error = "Generation failed (content policy)"
        elif self.never_complete or generation.polls <= self.polls_until_complete:
            generation.status = ProviderStatus.PROCESSING
        else:
            generation.status = ProviderStatus.COMPLETED
            generation.result_url = self.result_url_template.format(
                handle_id=handle.handle_id
            )

        return PollResult(
            status=generation.status,
            result_url=generation.result_url,
            error=generation.error,
        )

    async def cancel(self, handle: ProviderHandle) -> None:
        self.cancelled.append(handle.handle_id)
        generation = self._generations.get(handle.handle_id)
        if generation:
            # Provider-side work is not guaranteed to stop
            generation.cancelled = True

    def complete(self, handle_id: str, result_url: Optional[str] = None):
        """Force a generation to report completion on its next poll."""
        generation = self._generations[handle_id]
        generation.status = ProviderStatus.COMPLETED
        generation.result_url = result_url or self.result_url_template.format(
            handle_id=handle_id
        )

    @property
    def handles(self) -> list[str]:
        return list(self._generations)
