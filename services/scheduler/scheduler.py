"""
Content Scheduler

Fires batches of generation jobs on a cadence and follows each batch until
every job is terminal, then runs the post-actions exactly once:
- auto-publish accepted assets to every configured platform
- one completion notification with the batch counts

Features:
- Hourly / daily / weekly presets and custom cron expressions
- Pause / resume without touching in-flight batches
- Manual triggers that leave the regular cadence alone
- Tick failures are logged and never stop the loop
"""

import asyncio
import logging
import uuid
from typing import Any, Optional, Union

from pydantic import ValidationError

from core.clock import Clock
from core.config import SchedulerConfig, get_config
from core.errors import InvalidRequest, NotFound, invalid_from_validation
from services.queue import JobQueue, JobState, JobStatus
from services.storage import StateStore

from .cadence import next_run_after, resolve_cron
from .collaborators import (
    LoggingNotifier,
    LoggingPublisher,
    Notifier,
    PublishOutcome,
    Publisher,
)
from .models import Batch, BatchSummary, Schedule, ScheduleConfig, ScheduleInfo

logger = logging.getLogger(__name__)


class Scheduler:
    """
    Recurring batch scheduler on top of the job queue.

    Usage:
        scheduler = Scheduler(queue, notifier=WebhookNotifier(url))
        schedule_id = await scheduler.create_schedule(ScheduleConfig(
            frequency="hourly",
            content_types=[ContentTemplate(
                content_type="nft-showcase", duration_seconds=20, provider="sora",
            )],
        ))
        await scheduler.start()
    """

    def __init__(
        self,
        queue: JobQueue,
        publisher: Optional[Publisher] = None,
        notifier: Optional[Notifier] = None,
        config: Optional[SchedulerConfig] = None,
        clock: Optional[Clock] = None,
        store: Optional[StateStore] = None,
    ):
        config = config or get_config().scheduler
        self.queue = queue
        self.publisher = publisher or LoggingPublisher()
        self.notifier = notifier or LoggingNotifier()
        self.clock = clock or queue.clock
        self.store = store
        self.tick_interval = config.tick_interval

        self._schedules: dict[str, Schedule] = {}
        self._batches: dict[str, Batch] = {}

        self._lock = asyncio.Lock()
        self._running = False
        self._task: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # Schedule management
    # ------------------------------------------------------------------

    async def create_schedule(self, config: Union[ScheduleConfig, dict[str, Any]]) -> str:
        """
        Register a schedule and compute its first run.

        Raises:
            InvalidRequest: invalid config, cron expression or duplicate id
        """
        config = self._validate_config(config)
        schedule_id = config.id or str(uuid.uuid4())
        if schedule_id in self._schedules:
            raise InvalidRequest(f"Schedule {schedule_id} already exists")

        cron_expression = resolve_cron(config)
        now = self.clock.now()
        schedule = Schedule(
            id=schedule_id,
            config=config.model_copy(update={"id": schedule_id}),
            cron_expression=cron_expression,
            next_run=next_run_after(cron_expression, now),
            created_at=now,
        )
        self._schedules[schedule_id] = schedule

        logger.info(
            f"Schedule {schedule_id} created with cron '{cron_expression}', "
            f"next run {schedule.next_run.isoformat()}"
        )
        await self._persist_schedule(schedule)
        return schedule_id

    async def update_schedule(
        self,
        schedule_id: str,
        changes: Union[ScheduleConfig, dict[str, Any]],
    ) -> ScheduleInfo:
        """
        Replace or patch a schedule's config. The next run is recomputed;
        batches already in flight keep the config they were created with.
        """
        schedule = self._get_schedule(schedule_id)

        if isinstance(changes, ScheduleConfig):
            data = changes.model_dump()
        else:
            data = {**schedule.config.model_dump(), **changes}
        data["id"] = schedule_id

        config = self._validate_config(data)
        cron_expression = resolve_cron(config)

        schedule.config = config
        schedule.cron_expression = cron_expression
        schedule.next_run = next_run_after(cron_expression, self.clock.now())

        logger.info(f"Schedule {schedule_id} updated, next run {schedule.next_run.isoformat()}")
        await self._persist_schedule(schedule)
        return self._info(schedule)

    async def delete_schedule(self, schedule_id: str) -> None:
        """Forget a schedule. Its in-flight batches still resolve and notify."""
        self._get_schedule(schedule_id)
        del self._schedules[schedule_id]
        logger.info(f"Schedule {schedule_id} deleted")
        if self.store is not None:
            try:
                await self.store.delete("schedule", schedule_id)
            except Exception as e:
                logger.warning(f"Could not delete schedule {schedule_id} from store: {e}")

    async def pause_schedule(self, schedule_id: str) -> ScheduleInfo:
        """Stop future ticks. In-flight batches keep being monitored."""
        schedule = self._get_schedule(schedule_id)
        schedule.paused = True
        logger.info(f"Schedule {schedule_id} paused")
        await self._persist_schedule(schedule)
        return self._info(schedule)

    async def resume_schedule(self, schedule_id: str) -> ScheduleInfo:
        """Restart ticks from now on. Runs missed while paused are not replayed."""
        schedule = self._get_schedule(schedule_id)
        if schedule.paused:
            schedule.paused = False
            schedule.next_run = next_run_after(schedule.cron_expression, self.clock.now())
            logger.info(f"Schedule {schedule_id} resumed, next run {schedule.next_run.isoformat()}")
            await self._persist_schedule(schedule)
        return self._info(schedule)

    async def trigger_schedule(self, schedule_id: str) -> str:
        """
        Fire one tick now without moving the next scheduled run.

        Returns:
            The id of the batch created
        """
        schedule = self._get_schedule(schedule_id)
        async with self._lock:
            batch = await self._fire(schedule, manual=True)
        return batch.id

    async def get_all_schedules(self) -> list[ScheduleInfo]:
        return [self._info(schedule) for schedule in self._schedules.values()]

    async def get_schedule(self, schedule_id: str) -> ScheduleInfo:
        return self._info(self._get_schedule(schedule_id))

    async def get_active_batches(self, schedule_id: Optional[str] = None) -> list[dict]:
        """Batches still waiting for their jobs to finish."""
        return [
            batch.to_record()
            for batch in self._batches.values()
            if schedule_id is None or batch.schedule_id == schedule_id
        ]

    # ------------------------------------------------------------------
    # Scheduling loop
    # ------------------------------------------------------------------

    async def tick(self) -> list[BatchSummary]:
        """
        One pass of the scheduler:
        1. Fire every unpaused schedule whose next run is due
        2. Resolve batches whose jobs are all terminal

        Returns:
            Summaries of the batches resolved in this pass
        """
        async with self._lock:
            now = self.clock.now()
            for schedule in list(self._schedules.values()):
                if schedule.paused or schedule.next_run > now:
                    continue
                # Catch up at most once, however many runs were missed
                schedule.next_run = next_run_after(schedule.cron_expression, now)
                await self._fire(schedule)

            return await self._monitor_batches()

    async def run(self):
        """Tick every interval until stopped."""
        self._running = True
        logger.info(f"Scheduler running (tick every {self.tick_interval}s)")

        while self._running:
            try:
                await self.tick()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception(f"Scheduler tick failed: {e}")
            await asyncio.sleep(self.tick_interval)

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
        logger.info("Scheduler stopped")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _get_schedule(self, schedule_id: str) -> Schedule:
        schedule = self._schedules.get(schedule_id)
        if schedule is None:
            raise NotFound(f"Schedule {schedule_id} not found")
        return schedule

    def _info(self, schedule: Schedule) -> ScheduleInfo:
        active = sum(1 for b in self._batches.values() if b.schedule_id == schedule.id)
        return schedule.to_info(active_batches=active)

    def _validate_config(self, config: Union[ScheduleConfig, dict[str, Any]]) -> ScheduleConfig:
        if isinstance(config, ScheduleConfig):
            return config
        try:
            return ScheduleConfig.model_validate(config)
        except ValidationError as e:
            raise invalid_from_validation(e, "schedule config") from e

    async def _fire(self, schedule: Schedule, manual: bool = False) -> Batch:
        now = self.clock.now()
        config = schedule.config
        batch = Batch(
            schedule_id=schedule.id,
            job_ids=[],
            created_at=now,
            config=config,
        )
        schedule.last_run = now
        schedule.runs += 1

        logger.info(
            f"Executing schedule {schedule.id}"
            + (" (manual trigger)" if manual else "")
            + f": {len(config.content_types)} content types"
        )

        try:
            specs = [
                template.to_job_spec(now, config.quality_threshold)
                for template in config.content_types
            ]
            batch.job_ids = await self.queue.enqueue_batch(specs, batch_id=batch.id)
        except Exception as e:
            # Empty batch, resolves on the next monitoring pass
            batch.error = f"{type(e).__name__}: {e}"
            logger.error(f"Schedule {schedule.id} failed to enqueue batch {batch.id}: {e}")
        else:
            logger.info(f"Scheduled {len(batch.job_ids)} content generation jobs (batch {batch.id})")

        self._batches[batch.id] = batch
        await self._persist_schedule(schedule)
        await self._persist("batch", batch.id, batch.to_record())
        return batch

    async def _monitor_batches(self) -> list[BatchSummary]:
        resolved = []
        for batch in list(self._batches.values()):
            statuses = []
            for job_id in batch.job_ids:
                try:
                    statuses.append(await self.queue.status(job_id))
                except NotFound:
                    logger.error(f"Batch {batch.id} references unknown job {job_id}")
                    statuses.append(None)

            if all(status is None or status.is_terminal for status in statuses):
                resolved.append(await self._resolve(batch, [s for s in statuses if s]))
        return resolved

    async def _resolve(self, batch: Batch, statuses: list[JobStatus]) -> BatchSummary:
        # Removed first so post-actions can never run twice for a batch
        del self._batches[batch.id]
        config = batch.config

        completed = [s for s in statuses if s.state == JobState.COMPLETED]
        cancelled = sum(1 for s in statuses if s.state == JobState.CANCELLED)
        # Jobs the queue no longer knows about count as failed
        failed = len(batch.job_ids) - len(completed) - cancelled

        accepted = []
        below_threshold = 0
        for status in completed:
            result = status.result
            if result is None:
                continue
            if result.below_threshold:
                below_threshold += 1
            else:
                accepted.append(status)

        published = 0
        publish_failures = 0
        if config.auto_publish:
            for status in accepted:
                for platform in config.platforms:
                    outcome = await self._publish(status, platform)
                    if outcome.success:
                        published += 1
                    else:
                        publish_failures += 1

        summary = BatchSummary(
            batch_id=batch.id,
            schedule_id=batch.schedule_id,
            total=len(batch.job_ids),
            completed=len(completed),
            failed=failed,
            cancelled=cancelled,
            below_threshold=below_threshold,
            published=published,
            publish_failures=publish_failures,
            error=batch.error,
            created_at=batch.created_at,
            resolved_at=self.clock.now(),
        )

        logger.info(
            f"Batch {batch.id} resolved: {summary.completed} completed, "
            f"{summary.failed} failed, {summary.published} published"
        )

        if config.notify_on_complete:
            try:
                await self.notifier.notify(summary)
            except Exception as e:
                logger.warning(f"Notification for batch {batch.id} failed: {e}")

        if self.store is not None:
            try:
                await self.store.delete("batch", batch.id)
            except Exception as e:
                logger.warning(f"Could not delete batch {batch.id} from store: {e}")

        return summary

    async def _publish(self, status: JobStatus, platform) -> PublishOutcome:
        try:
            outcome = await self.publisher.publish(status.result, platform)
        except Exception as e:
            outcome = PublishOutcome(success=False, platform=platform.value, error=str(e))

        if not outcome.success:
            logger.warning(
                f"Publishing job {status.job_id} to {platform.value} failed: {outcome.error}"
            )
        return outcome

    async def _persist_schedule(self, schedule: Schedule):
        if schedule.id in self._schedules:
            await self._persist("schedule", schedule.id, schedule.to_record())

    async def _persist(self, kind: str, key: str, data: dict):
        if self.store is None:
            return
        try:
            await self.store.save(kind, key, data)
        except Exception as e:
            logger.warning(f"Could not persist {kind} {key}: {e}")
