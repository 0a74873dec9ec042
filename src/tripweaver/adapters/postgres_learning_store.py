"""
PostgreSQL learning-state store.

Persists learned weights and outcome records. Works with any asyncpg-style
pool (``asyncpg.create_pool(...)``); the pool is injected, so this module has
no hard dependency on a driver.

Tables:
    learning_weights   key (PK), value, updates, last_updated
    learning_outcomes  record_id (PK), request_id, user_id, intent, signal,
                       quality_signal, total_cost, payload (JSONB), created_at

Outcome inserts are idempotent on ``record_id``.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict
from typing import Any, Optional, Protocol

from ..domain.entities import OutcomeRecord, WeightEntry
from ..domain.ports import ILearningStateStore

logger = logging.getLogger(__name__)


class IAsyncDBPool(Protocol):
    """Protocol for an asyncpg-style connection pool."""

    def acquire(self): ...
    async def execute(self, query: str, *args) -> str: ...
    async def fetch(self, query: str, *args) -> list[Any]: ...
    async def fetchrow(self, query: str, *args) -> Optional[Any]: ...


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS learning_weights (
    key TEXT PRIMARY KEY,
    value DOUBLE PRECISION NOT NULL,
    updates INTEGER NOT NULL DEFAULT 0,
    last_updated TIMESTAMP
);

CREATE TABLE IF NOT EXISTS learning_outcomes (
    record_id UUID PRIMARY KEY,
    request_id TEXT NOT NULL,
    user_id TEXT NOT NULL,
    intent TEXT NOT NULL,
    signal TEXT NOT NULL,
    quality_signal DOUBLE PRECISION NOT NULL,
    total_cost DOUBLE PRECISION NOT NULL DEFAULT 0,
    payload JSONB NOT NULL,
    created_at TIMESTAMP NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_learning_outcomes_created_at
    ON learning_outcomes (created_at);
"""


class PostgresLearningStateStore(ILearningStateStore):
    """Learning state in PostgreSQL.

    Usage:
        pool = await asyncpg.create_pool(DATABASE_URL)
        store = PostgresLearningStateStore(pool)
        await store.ensure_schema()
        optimizer = LearningOptimizer(config, store=store)
    """

    def __init__(self, db_pool: IAsyncDBPool):
        self.db = db_pool

    async def ensure_schema(self) -> None:
        async with self.db.acquire() as conn:
            await conn.execute(SCHEMA_SQL)
        logger.info("Learning state schema ready")

    async def load_weights(self) -> dict[str, WeightEntry]:
        rows = await self.db.fetch(
            "SELECT key, value, updates, last_updated FROM learning_weights"
        )
        return {
            row["key"]: WeightEntry(
                value=row["value"],
                updates=row["updates"],
                last_updated=row["last_updated"],
            )
            for row in rows
        }

    async def save_weight(self, key: str, entry: WeightEntry) -> None:
        await self.db.execute(
            """
            INSERT INTO learning_weights (key, value, updates, last_updated)
            VALUES ($1, $2, $3, $4)
            ON CONFLICT (key)
            DO UPDATE SET
                value = EXCLUDED.value,
                updates = EXCLUDED.updates,
                last_updated = EXCLUDED.last_updated
            """,
            key,
            entry.value,
            entry.updates,
            entry.last_updated,
        )

    async def append_outcome(self, record: OutcomeRecord) -> None:
        payload = {
            "plan_summary": record.plan_summary,
            "step_metrics": [asdict(m) for m in record.step_metrics],
            "emotional_impact": record.emotional_impact,
            "carbon_delta": record.carbon_delta,
            "feedback": record.feedback,
        }
        await self.db.execute(
            """
            INSERT INTO learning_outcomes (
                record_id, request_id, user_id, intent, signal,
                quality_signal, total_cost, payload, created_at
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
            ON CONFLICT (record_id) DO NOTHING
            """,
            record.record_id,
            record.request_id,
            record.user_id,
            record.intent,
            record.signal.value,
            record.quality_signal,
            record.total_cost,
            json.dumps(payload, default=str),
            record.timestamp,
        )
        logger.debug(f"Stored outcome {record.record_id}")


__all__ = ["IAsyncDBPool", "PostgresLearningStateStore", "SCHEMA_SQL"]
