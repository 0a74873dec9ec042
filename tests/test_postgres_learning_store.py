"""Tests for the PostgreSQL learning-state store (mocked pool)."""

import json
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.tripweaver.adapters import PostgresLearningStateStore
from src.tripweaver.adapters.postgres_learning_store import SCHEMA_SQL
from src.tripweaver.domain.entities import OutcomeRecord, OutcomeSignal, StepMetric, WeightEntry

NOW = datetime(2026, 3, 1, 12, 0, 0)


@pytest.fixture
def mock_db_pool():
    """Create a mock database connection pool."""
    pool = MagicMock()
    conn = AsyncMock()

    pool.acquire = MagicMock()
    pool.acquire.return_value.__aenter__ = AsyncMock(return_value=conn)
    pool.acquire.return_value.__aexit__ = AsyncMock(return_value=None)
    pool.execute = AsyncMock(return_value="INSERT 0 1")
    pool.fetch = AsyncMock(return_value=[])

    return pool, conn


class TestPostgresLearningStateStore:
    """Tests for weight and outcome persistence."""

    async def test_ensure_schema(self, mock_db_pool):
        pool, conn = mock_db_pool
        store = PostgresLearningStateStore(pool)

        await store.ensure_schema()

        conn.execute.assert_awaited_once_with(SCHEMA_SQL)

    async def test_load_weights(self, mock_db_pool):
        pool, _ = mock_db_pool
        pool.fetch.return_value = [
            {"key": "intent:trip_planning", "value": 0.62, "updates": 3, "last_updated": NOW},
            {"key": "provider:ollama", "value": 0.4, "updates": 1, "last_updated": None},
        ]
        store = PostgresLearningStateStore(pool)

        weights = await store.load_weights()

        assert weights["intent:trip_planning"] == WeightEntry(value=0.62, updates=3, last_updated=NOW)
        assert weights["provider:ollama"].value == 0.4

    async def test_save_weight_upserts(self, mock_db_pool):
        pool, _ = mock_db_pool
        store = PostgresLearningStateStore(pool)

        await store.save_weight("intent:book_hotel", WeightEntry(value=0.55, updates=2, last_updated=NOW))

        query, *args = pool.execute.call_args.args
        assert "ON CONFLICT (key)" in query
        assert args == ["intent:book_hotel", 0.55, 2, NOW]

    async def test_append_outcome(self, mock_db_pool):
        pool, _ = mock_db_pool
        store = PostgresLearningStateStore(pool)
        record = OutcomeRecord(
            request_id="req-1",
            user_id="alice",
            intent="trip_planning",
            signal=OutcomeSignal.DEGRADED,
            quality_signal=0.5,
            step_metrics=[StepMetric("itinerary", "itinerary_generation", True, cost=0.0001, provider_id="fallback")],
            carbon_delta=190.2,
            total_cost=0.0036,
            timestamp=NOW,
        )

        await store.append_outcome(record)

        query, *args = pool.execute.call_args.args
        assert "ON CONFLICT (record_id) DO NOTHING" in query
        assert args[0] == record.record_id
        assert args[4] == "degraded"
        payload = json.loads(args[7])
        assert payload["carbon_delta"] == 190.2
        assert payload["step_metrics"][0]["provider_id"] == "fallback"
        assert args[8] == NOW
