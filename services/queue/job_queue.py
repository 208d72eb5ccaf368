"""
Job Queue - priority dispatch of generation jobs to media providers.

Features:
- Priority ordering (content type and duration boosts), FIFO within a tier
- Global and per-provider concurrency limits
- Retry with exponential backoff and fallback-provider substitution
- Poll-driven completion detection with per-attempt deadlines
- Content pipeline run on every completed asset

All state lives in this object. Time only moves through the injected clock
and work only happens in tick(), so the whole lifecycle can be driven
step by step in tests; run() simply calls tick() every poll interval.
"""

import asyncio
import heapq
import itertools
import logging
from datetime import timedelta
from typing import Any, Callable, Iterable, Optional, Union

from pydantic import ValidationError

from core.clock import Clock, SystemClock
from core.config import QueueConfig, get_config
from core.errors import (
    InvalidRequest,
    JobTimeout,
    NotFound,
    OrchestratorError,
    invalid_from_validation,
)
from services.pipeline import ContentPipeline, PipelineOptions
from services.providers import PollResult, ProviderRegistry, ProviderStatus
from services.storage import StateStore

from .models import (
    PROGRESS_COMPLETED,
    PROGRESS_DISPATCHED,
    PROGRESS_PROCESSING,
    PROGRESS_QUEUED,
    Job,
    JobSpec,
    JobState,
    JobStatus,
    QueueStats,
)
from .priority import calculate_priority

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, int, str], None]


class JobQueue:
    """
    Priority job queue for content generation.

    Usage:
        queue = JobQueue(registry)
        job_id = await queue.enqueue(JobSpec(
            content_type="nft-showcase", duration_seconds=20, provider="sora",
        ))

        await queue.start()          # background loop, or
        await queue.tick()           # one step at a time

        status = await queue.status(job_id)
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        pipeline: Optional[ContentPipeline] = None,
        config: Optional[QueueConfig] = None,
        clock: Optional[Clock] = None,
        store: Optional[StateStore] = None,
        on_progress: Optional[ProgressCallback] = None,
    ):
        config = config or get_config().queue
        self.registry = registry
        self.pipeline = pipeline or ContentPipeline()
        self.clock = clock or SystemClock()
        self.store = store
        self.on_progress = on_progress

        self.concurrency = config.concurrency
        self.max_retries = config.max_retries
        self.base_delay = config.base_delay
        self.max_delay = config.max_delay
        self.poll_interval = config.poll_interval
        self.job_timeout = config.job_timeout
        self.per_provider_limit = config.per_provider_limit

        self._jobs: dict[str, Job] = {}
        self._pending: list[tuple[int, int, str]] = []  # (-priority, sequence, job_id)
        self._dispatched: dict[str, Job] = {}
        self._retrying: dict[str, Job] = {}
        self._sequence = itertools.count()

        self._lock = asyncio.Lock()
        self._running = False
        self._task: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def enqueue(
        self,
        spec: Union[JobSpec, dict[str, Any]],
        batch_id: Optional[str] = None,
    ) -> str:
        """
        Add one job to the queue.

        Raises:
            InvalidRequest: bad spec or unknown provider
        """
        spec = self._validate_spec(spec)
        job = self._create_job(spec, batch_id)
        await self._persist(job)
        return job.id

    async def enqueue_batch(
        self,
        specs: Iterable[Union[JobSpec, dict[str, Any]]],
        batch_id: Optional[str] = None,
    ) -> list[str]:
        """
        Add several jobs at once.

        The whole batch is validated before anything is queued. Jobs are
        created grouped by provider so each provider's jobs sit together in
        its rate window; ids come back in the caller's order.
        """
        validated = [self._validate_spec(spec) for spec in specs]

        by_provider: dict[str, list[int]] = {}
        for index, spec in enumerate(validated):
            by_provider.setdefault(spec.provider, []).append(index)

        job_ids: list[str] = [""] * len(validated)
        created: list[Job] = []
        for provider, indexes in by_provider.items():
            for index in indexes:
                job = self._create_job(validated[index], batch_id)
                job_ids[index] = job.id
                created.append(job)

        for job in created:
            await self._persist(job)

        logger.info(
            f"Queued batch of {len(job_ids)} jobs across {len(by_provider)} providers"
            + (f" (batch {batch_id})" if batch_id else "")
        )
        return job_ids

    async def status(self, job_id: str) -> JobStatus:
        """
        Current status of a job.

        Raises:
            NotFound: unknown job id
        """
        return self._get_job(job_id).to_status()

    async def cancel(self, job_id: str) -> bool:
        """
        Cancel a job that has not reached a terminal state.

        A dispatched job is also cancelled at the provider (best-effort); a
        result reported afterwards is discarded.

        Returns:
            True if the job was cancelled, False if it was already terminal
        """
        job = self._get_job(job_id)
        if job.state.is_terminal:
            return False

        was_dispatched = job.state == JobState.DISPATCHED
        handle = job.handle

        job.state = JobState.CANCELLED
        job.completed_at = self.clock.now()
        job.last_error = "Cancelled by caller"
        job.error_code = "CANCELLED"
        self._dispatched.pop(job.id, None)
        self._retrying.pop(job.id, None)

        logger.info(f"Job {job.id} cancelled")
        self._emit_progress(job.id, job.progress, "Cancelled")

        if was_dispatched and handle is not None:
            await self.registry.cancel(handle)

        await self._persist(job)
        return True

    async def get_stats(self) -> QueueStats:
        counts = {state: 0 for state in JobState}
        for job in self._jobs.values():
            counts[job.state] += 1
        return QueueStats(
            waiting=counts[JobState.QUEUED],
            delayed=counts[JobState.RETRYING],
            active=counts[JobState.DISPATCHED],
            completed=counts[JobState.COMPLETED],
            failed=counts[JobState.FAILED],
            cancelled=counts[JobState.CANCELLED],
        )

    async def wait_for(self, job_id: str, poll_every: Optional[float] = None) -> JobStatus:
        """Block until the job is terminal. Needs the background loop running."""
        while True:
            status = await self.status(job_id)
            if status.is_terminal:
                return status
            await asyncio.sleep(poll_every or self.poll_interval)

    # ------------------------------------------------------------------
    # Scheduling loop
    # ------------------------------------------------------------------

    async def tick(self):
        """
        One pass of the scheduling loop:
        1. Move retrying jobs whose backoff elapsed back to the queue
        2. Poll every dispatched job (completion, failure, deadline)
        3. Fill free dispatch slots by priority
        """
        async with self._lock:
            self._release_backoff()
            await self._poll_dispatched()
            await self._dispatch_pending()

    async def run(self):
        """Tick every poll interval until stopped."""
        self._running = True
        logger.info(
            f"Job queue running (concurrency={self.concurrency}, "
            f"poll every {self.poll_interval}s)"
        )

        while self._running:
            try:
                await self.tick()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception(f"Job queue tick failed: {e}")
            await asyncio.sleep(self.poll_interval)

    async def start(self):
        """Start the background loop."""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run())

    async def stop(self):
        """Stop the background loop."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Job queue stopped")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _get_job(self, job_id: str) -> Job:
        job = self._jobs.get(job_id)
        if job is None:
            raise NotFound(f"Job {job_id} not found")
        return job

    def _validate_spec(self, spec: Union[JobSpec, dict[str, Any]]) -> JobSpec:
        if not isinstance(spec, JobSpec):
            try:
                spec = JobSpec.model_validate(spec)
            except ValidationError as e:
                raise invalid_from_validation(e, "job spec") from e

        if not self.registry.is_available(spec.provider):
            raise InvalidRequest(
                f"Provider {spec.provider} is not configured "
                f"(available: {', '.join(self.registry.names) or 'none'})",
                error_code="UNKNOWN_PROVIDER",
                provider=spec.provider,
            )
        return spec

    def _create_job(self, spec: JobSpec, batch_id: Optional[str]) -> Job:
        job = Job(
            spec=spec,
            priority=calculate_priority(spec),
            sequence=next(self._sequence),
            batch_id=batch_id,
            queued_at=self.clock.now(),
        )
        self._jobs[job.id] = job
        self._push_pending(job)

        logger.info(
            f"Job {job.id} queued: {spec.content_type.value} on {job.provider}, "
            f"priority {job.priority}"
        )
        self._emit_progress(job.id, PROGRESS_QUEUED, "Queued")
        return job

    def _push_pending(self, job: Job):
        heapq.heappush(self._pending, (-job.priority, job.sequence, job.id))

    def _provider_load(self, provider: str) -> int:
        return sum(1 for job in self._dispatched.values() if job.provider == provider)

    def _release_backoff(self):
        now = self.clock.now()
        for job in list(self._retrying.values()):
            if job.not_before is None or job.not_before <= now:
                del self._retrying[job.id]
                job.state = JobState.QUEUED
                job.not_before = None
                self._push_pending(job)

    async def _dispatch_pending(self):
        deferred = []

        while len(self._dispatched) < self.concurrency and self._pending:
            entry = heapq.heappop(self._pending)
            job = self._jobs.get(entry[2])
            if job is None or job.state != JobState.QUEUED:
                continue  # Cancelled while waiting

            if self._provider_load(job.provider) >= self.per_provider_limit:
                deferred.append(entry)
                continue

            await self._dispatch(job)

        # Jobs skipped for a saturated provider keep their place
        for entry in deferred:
            heapq.heappush(self._pending, entry)

    async def _dispatch(self, job: Job):
        now = self.clock.now()
        job.state = JobState.DISPATCHED
        job.attempts.append(job.provider)
        job.started_at = job.started_at or now
        job.deadline = now + timedelta(seconds=self.job_timeout)
        self._dispatched[job.id] = job

        if job.advance_progress(PROGRESS_DISPATCHED) or job.retry_count:
            self._emit_progress(job.id, job.progress, f"Submitting to {job.provider}")

        try:
            handle = await self.registry.submit(job.provider, job.spec, job.idempotency_key)
        except OrchestratorError as e:
            if job.state == JobState.DISPATCHED:
                await self._fail_attempt(job, e.error_code, str(e))
            return

        if job.state != JobState.DISPATCHED:
            # Cancelled while the submit was in flight
            await self.registry.cancel(handle)
            return

        job.handle = handle
        logger.info(
            f"Job {job.id} dispatched to {job.provider} "
            f"(handle {handle.handle_id}, attempt {job.retry_count + 1})"
        )
        await self._persist(job)

    async def _poll_dispatched(self):
        for job in list(self._dispatched.values()):
            if job.state != JobState.DISPATCHED or job.handle is None:
                continue

            if self.clock.now() >= job.deadline:
                await self._time_out(job)
                continue

            try:
                result = await self.registry.poll(job.handle)
            except OrchestratorError as e:
                # The deadline bounds how long a job can sit on a flaky provider
                logger.warning(f"Poll of job {job.id} on {job.provider} failed: {e}")
                continue

            if job.state != JobState.DISPATCHED:
                continue  # Cancelled or timed out meanwhile, late result ignored

            await self._handle_poll(job, result)

    async def _handle_poll(self, job: Job, result: PollResult):
        if result.status == ProviderStatus.COMPLETED:
            if result.result_url:
                await self._complete(job, result.result_url)
            else:
                await self._fail_attempt(
                    job,
                    "EMPTY_RESULT",
                    f"{job.provider} reported completion without a result URL",
                )
        elif result.status == ProviderStatus.FAILED:
            await self._fail_attempt(
                job,
                "GENERATION_FAILED",
                result.error or f"{job.provider} generation failed",
            )
        elif result.status == ProviderStatus.PROCESSING:
            if job.advance_progress(PROGRESS_PROCESSING):
                self._emit_progress(job.id, job.progress, f"Processing on {job.provider}")

    async def _complete(self, job: Job, result_url: str):
        self._dispatched.pop(job.id, None)
        job.result_url = result_url

        options = PipelineOptions(
            upscale=job.spec.upscale,
            add_subtitles=job.spec.add_subtitles,
        )
        try:
            pipeline_result = await self.pipeline.run(
                result_url,
                options,
                job_id=job.id,
                quality_threshold=job.spec.quality_threshold,
            )
        except Exception as e:
            logger.exception(f"Content pipeline failed for job {job.id}")
            if job.state == JobState.DISPATCHED:
                job.last_error = f"Content pipeline failed: {type(e).__name__}: {e}"
                job.error_code = "PIPELINE_ERROR"
                await self._mark_failed(job)
            return

        if job.state != JobState.DISPATCHED:
            return  # Cancelled while post-processing

        job.pipeline_result = pipeline_result
        job.state = JobState.COMPLETED
        job.completed_at = self.clock.now()
        job.advance_progress(PROGRESS_COMPLETED)

        logger.info(
            f"Job {job.id} completed on {job.provider}: {result_url}"
            + (" (below quality threshold)" if pipeline_result.below_threshold else "")
        )
        self._emit_progress(job.id, job.progress, "Generation complete")
        await self._persist(job)

    async def _fail_attempt(self, job: Job, error_code: str, message: str):
        """Route a failed attempt into the retry path or terminal failure."""
        self._dispatched.pop(job.id, None)
        job.handle = None
        job.last_error = message
        job.error_code = error_code

        if job.retry_count >= self.max_retries:
            await self._mark_failed(job)
            return

        delay = min(self.base_delay * (2 ** job.retry_count), self.max_delay)
        failed_provider = job.provider

        job.retry_count += 1
        job.provider = self.registry.fallback_for(failed_provider)
        job.state = JobState.RETRYING
        job.not_before = self.clock.now() + timedelta(seconds=delay)
        self._retrying[job.id] = job

        logger.warning(
            f"Job {job.id} failed on {failed_provider} ({error_code}: {message}); "
            f"retry {job.retry_count}/{self.max_retries} on {job.provider} in {delay:.0f}s"
        )
        self._emit_progress(
            job.id,
            job.progress,
            f"Retry {job.retry_count}/{self.max_retries} on {job.provider}",
        )
        await self._persist(job)

    async def _time_out(self, job: Job):
        handle = job.handle
        self._dispatched.pop(job.id, None)

        error = JobTimeout(
            f"Timeout: {job.provider} returned no result within {self.job_timeout:.0f}s",
            provider=job.provider,
        )
        job.last_error = str(error)
        job.error_code = error.error_code
        await self._mark_failed(job)

        if handle is not None:
            await self.registry.cancel(handle)

    async def _mark_failed(self, job: Job):
        self._dispatched.pop(job.id, None)
        self._retrying.pop(job.id, None)
        job.state = JobState.FAILED
        job.completed_at = self.clock.now()
        job.not_before = None

        logger.error(
            f"Job {job.id} failed after {job.retry_count} retries "
            f"(attempts: {' -> '.join(job.attempts)}): {job.last_error}"
        )
        self._emit_progress(job.id, job.progress, f"Failed: {job.last_error}")
        await self._persist(job)

    def _emit_progress(self, job_id: str, percent: int, message: str):
        """Emit progress update via callback."""
        if self.on_progress:
            try:
                self.on_progress(job_id, percent, message)
            except Exception as e:
                logger.warning(f"Progress callback failed: {e}")

    async def _persist(self, job: Job):
        if self.store is None:
            return
        try:
            await self.store.save("job", job.id, job.to_record())
        except Exception as e:
            logger.warning(f"Could not persist job {job.id}: {e}")
