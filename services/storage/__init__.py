"""
State storage for jobs, batches and schedules.
"""

from .state_store import (
    InMemoryStateStore,
    PostgresStateStore,
    StateStore,
    create_postgres_store,
)

__all__ = [
    "InMemoryStateStore",
    "PostgresStateStore",
    "StateStore",
    "create_postgres_store",
]
