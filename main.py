#!/usr/bin/env python3
"""
Content Orchestrator - Main Entry Point

Runs the job queue and scheduler for automated content generation.

Usage:
    # Run the queue and scheduler until interrupted
    python main.py run --schedule hourly --content nft-showcase --content story-chapter

    # Generate a single video and wait for it
    python main.py generate --type nft-showcase --duration 20 --provider sora

    # Offline walkthrough with simulated providers
    python main.py demo
"""

import argparse
import asyncio
import logging
import signal
import sys
from typing import Optional

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("orchestrator")


async def build_orchestrator(simulated: bool = False, fast: bool = False):
    """
    Wire providers, queue and scheduler from configuration.

    HTTP providers are used when KIE_API_KEY is set (unless ``simulated``),
    a Postgres state store when DATABASE_URL is set.

    Returns:
        (queue, scheduler, closers) where closers release the shared HTTP
        client and the database pool on shutdown
    """
    import httpx

    from core.config import QueueConfig, SchedulerConfig, get_config
    from services.pipeline import ContentPipeline
    from services.providers import (
        FallbackChain,
        ProviderRegistry,
        SimulatedMediaProvider,
        build_http_providers,
    )
    from services.queue import JobQueue
    from services.scheduler import LoggingNotifier, Scheduler, WebhookNotifier
    from services.storage import create_postgres_store

    config = get_config()
    issues = config.validate()
    if issues:
        for issue in issues:
            logger.error(f"Config: {issue}")
        raise SystemExit(1)

    fallback = FallbackChain.from_order(config.providers.fallback_order)
    closers = []

    if config.providers.kie_api_key and not simulated:
        client = httpx.AsyncClient(timeout=config.providers.call_timeout)
        closers.append(client.aclose)
        providers = build_http_providers(config.providers, client=client)
        logger.info(f"Using Kie API providers: {', '.join(fallback.providers)}")
    else:
        providers = [SimulatedMediaProvider(name) for name in fallback.providers]
        logger.info("Using simulated providers")

    registry = ProviderRegistry(
        providers,
        fallback,
        call_timeout=config.providers.call_timeout,
    )

    store = None
    if config.database.url:
        store = await create_postgres_store(
            config.database.url,
            min_size=config.database.pool_min_size,
            max_size=config.database.pool_max_size,
        )
        closers.append(store.close)

    pipeline = ContentPipeline(
        quality_threshold=config.pipeline.quality_threshold,
        thumbnail_count=config.pipeline.thumbnail_count,
    )

    def print_progress(job_id: str, percent: int, message: str):
        print(f"  [{percent:3d}%] {job_id[:8]} {message}")

    queue_config = config.queue
    scheduler_config = config.scheduler
    if fast:
        queue_config = QueueConfig(
            concurrency=queue_config.concurrency,
            max_retries=queue_config.max_retries,
            base_delay=0.1,
            max_delay=1.0,
            poll_interval=0.2,
            job_timeout=30.0,
            per_provider_limit=queue_config.per_provider_limit,
        )
        scheduler_config = SchedulerConfig(
            tick_interval=0.2,
            notify_webhook_url=scheduler_config.notify_webhook_url,
        )

    queue = JobQueue(
        registry,
        pipeline=pipeline,
        config=queue_config,
        store=store,
        on_progress=print_progress,
    )

    if scheduler_config.notify_webhook_url:
        notifier = WebhookNotifier(scheduler_config.notify_webhook_url)
    else:
        notifier = LoggingNotifier()

    scheduler = Scheduler(
        queue,
        notifier=notifier,
        config=scheduler_config,
        store=store,
    )
    return queue, scheduler, closers


async def close_all(closers):
    """Release clients and pools, newest first."""
    for close in reversed(closers):
        try:
            await close()
        except Exception as e:
            logger.warning(f"Cleanup failed: {e}")


async def generate_video(
    content_type: str,
    duration: int,
    provider: str,
    priority: int = 5,
    prompt: Optional[str] = None,
) -> Optional[str]:
    """Enqueue one job and block until it is terminal."""
    queue, _, closers = await build_orchestrator()

    try:
        return await _generate(queue, content_type, duration, provider, priority, prompt)
    finally:
        await close_all(closers)


async def _generate(queue, content_type, duration, provider, priority, prompt) -> Optional[str]:
    from core.errors import OrchestratorError

    try:
        job_id = await queue.enqueue({
            "content_type": content_type,
            "duration_seconds": duration,
            "provider": provider,
            "priority": priority,
            "prompt": prompt,
        })
    except OrchestratorError as e:
        logger.error(f"Cannot enqueue job: {e}")
        return None

    logger.info(f"Job {job_id} queued")
    await queue.start()
    try:
        status = await queue.wait_for(job_id, poll_every=1.0)
    finally:
        await queue.stop()

    if status.state.value == "completed":
        result = status.result
        logger.info(f"Video ready: {status.result_url}")
        if result is not None:
            logger.info(
                f"Quality: clarity {result.quality_metrics.visual_clarity}"
                + (" (below threshold)" if result.below_threshold else "")
            )
        return status.result_url

    logger.error(f"Job {job_id} ended {status.state.value}: [{status.error_code}] {status.error}")
    return None


async def run_orchestrator(
    frequency: Optional[str],
    content_types: list[str],
    provider: str,
    platforms: list[str],
    auto_publish: bool,
):
    """Run queue and scheduler loops until SIGINT/SIGTERM."""
    queue, scheduler, closers = await build_orchestrator()
    try:
        await _serve(queue, scheduler, frequency, content_types, provider, platforms, auto_publish)
    finally:
        await close_all(closers)


async def _serve(queue, scheduler, frequency, content_types, provider, platforms, auto_publish):
    if frequency:
        schedule_id = await scheduler.create_schedule({
            "frequency": frequency,
            "content_types": [
                {"content_type": ct, "duration_seconds": 30, "provider": provider}
                for ct in content_types
            ],
            "platforms": platforms,
            "auto_publish": auto_publish,
        })
        info = await scheduler.get_schedule(schedule_id)
        logger.info(f"Schedule {schedule_id} next run at {info.next_run.isoformat()}")

    stop_event = asyncio.Event()

    def handle_signal():
        logger.info("Shutting down orchestrator...")
        stop_event.set()

    loop = asyncio.get_event_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, handle_signal)

    await queue.start()
    await scheduler.start()
    logger.info("Orchestrator running. Press Ctrl+C to stop.")

    await stop_event.wait()

    await scheduler.stop()
    await queue.stop()

    stats = await queue.get_stats()
    logger.info(
        f"Stopped with {stats.completed} completed, {stats.failed} failed, "
        f"{stats.waiting + stats.delayed + stats.active} unfinished jobs"
    )


async def run_demo():
    """Trigger one two-job batch against simulated providers."""
    queue, scheduler, closers = await build_orchestrator(simulated=True, fast=True)

    schedule_id = await scheduler.create_schedule({
        "frequency": "hourly",
        "content_types": [
            {"content_type": "nft-showcase", "duration_seconds": 20, "provider": "sora"},
            {"content_type": "trending-analysis", "duration_seconds": 45, "provider": "runway"},
        ],
        "platforms": ["youtube", "tiktok"],
        "auto_publish": True,
    })

    await queue.start()
    await scheduler.start()
    try:
        batch_id = await scheduler.trigger_schedule(schedule_id)
        logger.info(f"Triggered batch {batch_id}")

        while await scheduler.get_active_batches(schedule_id):
            await asyncio.sleep(0.2)
    finally:
        await scheduler.stop()
        await queue.stop()
        await close_all(closers)

    stats = await queue.get_stats()
    print(f"\nCompleted: {stats.completed}  Failed: {stats.failed}")


def main():
    parser = argparse.ArgumentParser(
        description="Content Orchestrator - automated video generation",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Offline demo
    python main.py demo

    # Generate one video
    python main.py generate --type story-chapter --duration 60 --provider runway

    # Hourly NFT showcases, auto-published to YouTube
    python main.py run --schedule hourly --content nft-showcase --platform youtube --auto-publish
        """,
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    subparsers.add_parser("demo", help="Run an offline demo with simulated providers")

    gen_parser = subparsers.add_parser("generate", help="Generate a single video")
    gen_parser.add_argument(
        "--type",
        "-t",
        dest="content_type",
        default="nft-showcase",
        choices=["nft-showcase", "story-chapter", "collection-highlight", "trending-analysis"],
        help="Content type",
    )
    gen_parser.add_argument("--duration", "-d", type=int, default=20, help="Duration in seconds")
    gen_parser.add_argument("--provider", "-p", default="sora", help="Preferred provider")
    gen_parser.add_argument("--priority", type=int, default=5, help="Priority 1-10")
    gen_parser.add_argument("--prompt", help="Generation prompt")

    run_parser = subparsers.add_parser("run", help="Run the queue and scheduler")
    run_parser.add_argument(
        "--schedule",
        choices=["hourly", "daily", "weekly"],
        help="Create a schedule with this cadence on startup",
    )
    run_parser.add_argument(
        "--content",
        action="append",
        default=[],
        help="Content type per scheduled batch (repeatable)",
    )
    run_parser.add_argument("--provider", default="sora", help="Provider for scheduled jobs")
    run_parser.add_argument(
        "--platform",
        action="append",
        default=[],
        help="Publishing platform (repeatable)",
    )
    run_parser.add_argument("--auto-publish", action="store_true", help="Publish accepted assets")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    if args.command == "demo":
        asyncio.run(run_demo())

    elif args.command == "generate":
        result = asyncio.run(
            generate_video(
                content_type=args.content_type,
                duration=args.duration,
                provider=args.provider,
                priority=args.priority,
                prompt=args.prompt,
            )
        )
        sys.exit(0 if result else 1)

    elif args.command == "run":
        if args.schedule and not args.content:
            parser.error("--schedule needs at least one --content")
        asyncio.run(
            run_orchestrator(
                frequency=args.schedule,
                content_types=args.content,
                provider=args.provider,
                platforms=args.platform,
                auto_publish=args.auto_publish,
            )
        )


if __name__ == "__main__":
    main()
