"""
State Store - durable snapshots of jobs, batches and schedules.

The orchestration core keeps its state in memory. A store, when configured,
receives a JSON snapshot after every change so operators can inspect state
and audit outcomes. Records are keyed by (kind, id), kind being one of
"job", "batch" or "schedule".
"""

import json
import logging
from typing import Any, Optional, Protocol

import asyncpg

logger = logging.getLogger(__name__)


class StateStore(Protocol):
    async def save(self, kind: str, key: str, data: dict[str, Any]) -> None:
        ...

    async def load(self, kind: str, key: str) -> Optional[dict[str, Any]]:
        ...

    async def delete(self, kind: str, key: str) -> None:
        ...


class InMemoryStateStore:
    """Dict-backed store for local runs and tests."""

    def __init__(self):
        self._records: dict[tuple[str, str], dict[str, Any]] = {}

    async def save(self, kind: str, key: str, data: dict[str, Any]) -> None:
        # Round-trip through JSON so callers can't share mutable state with the store
        self._records[(kind, key)] = json.loads(json.dumps(data, default=str))

    async def load(self, kind: str, key: str) -> Optional[dict[str, Any]]:
        return self._records.get((kind, key))

    async def delete(self, kind: str, key: str) -> None:
        self._records.pop((kind, key), None)

    def keys(self, kind: str) -> list[str]:
        return [key for (k, key) in self._records if k == kind]


class PostgresStateStore:
    """
    Persists snapshots to PostgreSQL.

    Usage:
        pool = await asyncpg.create_pool(DATABASE_URL)
        store = PostgresStateStore(pool)
        await store.ensure_schema()
        await store.save("job", job_id, job.to_record())
    """

    TABLE = "orchestrator_state"

    def __init__(self, db_pool: asyncpg.Pool):
        self.db_pool = db_pool

    async def ensure_schema(self):
        """Create the key-value table if it does not exist."""
        async with self.db_pool.acquire() as conn:
            await conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {self.TABLE} (
                    kind TEXT NOT NULL,
                    key TEXT NOT NULL,
                    data JSONB NOT NULL,
                    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                    PRIMARY KEY (kind, key)
                )
                """
            )

    async def save(self, kind: str, key: str, data: dict[str, Any]) -> None:
        async with self.db_pool.acquire() as conn:
            await conn.execute(
                f"""
                INSERT INTO {self.TABLE} (kind, key, data, updated_at)
                VALUES ($1, $2, $3::jsonb, NOW())
                ON CONFLICT (kind, key)
                DO UPDATE SET data = EXCLUDED.data, updated_at = NOW()
                """,
                kind,
                key,
                json.dumps(data, default=str),
            )

    async def load(self, kind: str, key: str) -> Optional[dict[str, Any]]:
        async with self.db_pool.acquire() as conn:
            raw = await conn.fetchval(
                f"SELECT data FROM {self.TABLE} WHERE kind = $1 AND key = $2",
                kind,
                key,
            )
            if raw is None:
                return None
            return json.loads(raw) if isinstance(raw, str) else dict(raw)

    async def delete(self, kind: str, key: str) -> None:
        async with self.db_pool.acquire() as conn:
            await conn.execute(
                f"DELETE FROM {self.TABLE} WHERE kind = $1 AND key = $2",
                kind,
                key,
            )

    async def close(self):
        await self.db_pool.close()


async def create_postgres_store(database_url: str, min_size: int = 1, max_size: int = 5) -> PostgresStateStore:
    """Open a pool, make sure the table exists and return the store."""
    pool = await asyncpg.create_pool(database_url, min_size=min_size, max_size=max_size)
    store = PostgresStateStore(pool)
    await store.ensure_schema()
    logger.info(f"State store ready ({PostgresStateStore.TABLE})")
    return store
