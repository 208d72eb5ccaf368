"""
State store tests: in-memory store, Postgres store against a mocked pool,
and snapshots written by the queue and scheduler.
"""

import json
import os
import sys
from unittest.mock import AsyncMock, MagicMock

import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from services.queue import JobQueue
from services.scheduler import Scheduler
from services.storage import InMemoryStateStore, PostgresStateStore


class TestInMemoryStateStore:

    @pytest.mark.asyncio
    async def test_save_load_delete(self):
        store = InMemoryStateStore()

        await store.save("job", "j1", {"state": "queued"})
        assert await store.load("job", "j1") == {"state": "queued"}
        assert store.keys("job") == ["j1"]

        await store.delete("job", "j1")
        assert await store.load("job", "j1") is None

    @pytest.mark.asyncio
    async def test_records_are_copies(self):
        store = InMemoryStateStore()
        data = {"attempts": ["sora"]}

        await store.save("job", "j1", data)
        data["attempts"].append("runway")

        assert (await store.load("job", "j1"))["attempts"] == ["sora"]


class TestPostgresStateStore:

    @pytest.fixture
    def mock_conn(self):
        conn = AsyncMock()
        conn.fetch = AsyncMock(return_value=[])
        conn.fetchval = AsyncMock(return_value=None)
        conn.execute = AsyncMock()
        return conn

    @pytest.fixture
    def mock_db_pool(self, mock_conn):
        """Create a mock database pool."""
        pool = AsyncMock()
        pool.acquire = MagicMock(return_value=AsyncMock(
            __aenter__=AsyncMock(return_value=mock_conn),
            __aexit__=AsyncMock(return_value=None)
        ))
        return pool

    @pytest.mark.asyncio
    async def test_ensure_schema(self, mock_db_pool, mock_conn):
        await PostgresStateStore(mock_db_pool).ensure_schema()

        sql = mock_conn.execute.await_args.args[0]
        assert "CREATE TABLE IF NOT EXISTS orchestrator_state" in sql

    @pytest.mark.asyncio
    async def test_save_upserts_json(self, mock_db_pool, mock_conn):
        store = PostgresStateStore(mock_db_pool)

        await store.save("job", "j1", {"state": "completed", "progress": 100})

        sql, kind, key, payload = mock_conn.execute.await_args.args
        assert "ON CONFLICT (kind, key)" in sql
        assert (kind, key) == ("job", "j1")
        assert json.loads(payload) == {"state": "completed", "progress": 100}

    @pytest.mark.asyncio
    async def test_load_decodes_json(self, mock_db_pool, mock_conn):
        mock_conn.fetchval = AsyncMock(return_value='{"state": "failed"}')

        record = await PostgresStateStore(mock_db_pool).load("job", "j1")

        assert record == {"state": "failed"}

    @pytest.mark.asyncio
    async def test_load_missing(self, mock_db_pool):
        assert await PostgresStateStore(mock_db_pool).load("job", "nope") is None

    @pytest.mark.asyncio
    async def test_close_releases_pool(self, mock_db_pool):
        mock_db_pool.close = AsyncMock()

        await PostgresStateStore(mock_db_pool).close()

        mock_db_pool.close.assert_awaited_once()


class TestSnapshots:

    @pytest.mark.asyncio
    async def test_queue_persists_transitions(self, registry, clock, queue_config, spec, drive):
        store = InMemoryStateStore()
        queue = JobQueue(registry, config=queue_config, clock=clock, store=store)
        job_id = await queue.enqueue(spec)

        assert (await store.load("job", job_id))["state"] == "queued"

        await drive(queue, job_id)

        record = await store.load("job", job_id)
        assert record["state"] == "completed"
        assert record["progress"] == 100
        assert record["attempts"] == ["sora"]
        assert record["pipeline_result"]["quality_metrics"]["visual_clarity"] == 85

    @pytest.mark.asyncio
    async def test_store_failure_does_not_break_queue(
        self, registry, clock, queue_config, spec, drive
    ):
        store = AsyncMock()
        store.save = AsyncMock(side_effect=ConnectionError("db down"))
        queue = JobQueue(registry, config=queue_config, clock=clock, store=store)

        job_id = await queue.enqueue(spec)
        status = await drive(queue, job_id)

        assert status.state.value == "completed"
        assert store.save.await_count > 1

    @pytest.mark.asyncio
    async def test_scheduler_removes_resolved_batch(self, queue, clock, scheduler_config):
        store = InMemoryStateStore()
        scheduler = Scheduler(queue, config=scheduler_config, clock=clock, store=store)
        schedule_id = await scheduler.create_schedule({
            "frequency": "daily",
            "content_types": [
                {"content_type": "collection-highlight", "duration_seconds": 30, "provider": "kling"},
            ],
        })

        batch_id = await scheduler.trigger_schedule(schedule_id)
        assert store.keys("batch") == [batch_id]
        assert (await store.load("schedule", schedule_id))["runs"] == 1

        for _ in range(5):
            await queue.tick()
            await scheduler.tick()
            clock.advance(10)

        assert store.keys("batch") == []
        await scheduler.delete_schedule(schedule_id)
        assert store.keys("schedule") == []
