"""Shared fixtures: fast configs, fake generation backends, request contexts."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from src.tripweaver.config import (
    IntentConfig,
    LearningConfig,
    OrchestrationConfig,
    ProviderConfig,
    Settings,
    WorkflowConfig,
)
from src.tripweaver.domain.capabilities import GENERATION_CAPABILITIES
from src.tripweaver.domain.entities import ProviderDescriptor, RequestContext


def make_backend(text="Day 1: Alfama and the castle. Day 2: Belem.", side_effect=None):
    """Generation backend double with an AsyncMock ``complete``."""
    backend = MagicMock()
    backend.model_name = "fake-model"
    backend.complete = AsyncMock(return_value=text, side_effect=side_effect)
    backend.close = AsyncMock()
    return backend


def make_descriptor(
    provider_id="local",
    tags=GENERATION_CAPABILITIES,
    cost=0.0001,
    quality=0.8,
):
    return ProviderDescriptor(
        provider_id=provider_id,
        capability_tags=frozenset(tags),
        cost_per_call=cost,
        quality_score=quality,
    )


def fast_provider_config(**overrides):
    values = dict(
        retry_initial_delay=0.0,
        retry_jitter=False,
        call_timeout_seconds=5.0,
        failure_threshold=5,
        cooldown_seconds=60.0,
        fallback_enabled=True,
    )
    values.update(overrides)
    return ProviderConfig(**values)


def fast_settings(**provider_overrides):
    return Settings(
        intent=IntentConfig(),
        providers=fast_provider_config(**provider_overrides),
        workflow=WorkflowConfig(default_initial_delay=0.0, default_step_timeout=5.0),
        learning=LearningConfig(exploration_rate=0.0),
        orchestration=OrchestrationConfig(),
    )


@pytest.fixture
def settings():
    return fast_settings()


@pytest.fixture
def backend():
    return make_backend()


@pytest.fixture
def context():
    return RequestContext(
        user_id="alice",
        utterance="Plan a 5-day trip to Lisbon under $1000",
        session_attributes={"home_city": "London"},
    )


@pytest.fixture
def backend_factory():
    return make_backend


@pytest.fixture
def descriptor_factory():
    return make_descriptor


@pytest.fixture
def provider_config_factory():
    return fast_provider_config


@pytest.fixture
def settings_factory():
    return fast_settings
