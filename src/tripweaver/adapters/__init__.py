"""Persistence adapters for the store ports."""

from .memory_stores import (
    InMemoryLearningStateStore,
    InMemoryMemoryStore,
    InMemoryPeerDirectory,
    InMemoryPreferenceStore,
)
from .postgres_learning_store import PostgresLearningStateStore

__all__ = [
    "InMemoryLearningStateStore",
    "InMemoryMemoryStore",
    "InMemoryPeerDirectory",
    "InMemoryPreferenceStore",
    "PostgresLearningStateStore",
]
