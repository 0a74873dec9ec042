"""
Composition root.

Wires analyzer, providers, agents, workflow, learning and the orchestration
core from ``Settings``. Generation backends are taken from the arguments
when given, otherwise built from the backend settings (Ollama and/or
OpenAI). With no backend at all the core still answers through the
degraded fallback responder.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from .agents import (
    AgentRegistry,
    ContingencyReplanner,
    CrossSessionMemoryAgent,
    EmotionalStateAdapter,
    EnvironmentalImpactAgent,
    PeerMatchingAgent,
    PreferenceInferenceAgent,
)
from .adapters.memory_stores import (
    InMemoryLearningStateStore,
    InMemoryMemoryStore,
    InMemoryPeerDirectory,
    InMemoryPreferenceStore,
)
from .background_worker import BackgroundWorker
from .config import Settings
from .domain.capabilities import (
    BOOKING_ASSISTANCE,
    BUDGET_ANALYSIS,
    CONTINGENCY_REPLANNING,
    EMERGENCY_GUIDANCE,
    GENERAL_GENERATION,
    GENERATION_CAPABILITIES,
    ITINERARY_GENERATION,
    LOCAL_GUIDANCE,
)
from .domain.entities import ProviderDescriptor
from .domain.ports import (
    IGenerationBackend,
    ILearningStateStore,
    IMemoryStore,
    IPeerDirectory,
    IPreferenceStore,
)
from .intent.analyzer import IntentAnalyzer
from .learning.optimizer import LearningOptimizer
from .orchestrator.core import OrchestrationCore
from .providers.base import GenerationBackendConfig
from .providers.cache import ResponseCache
from .providers.fallback import FallbackResponder
from .providers.manager import ProviderManager
from .providers.ollama import OllamaBackend
from .providers.openai import OpenAIBackend
from .workflow.synthesizer import WorkflowSynthesizer

logger = logging.getLogger(__name__)

# Capability profiles for the configurable backends
LOCAL_PROVIDER_TAGS = frozenset(
    {
        GENERAL_GENERATION,
        ITINERARY_GENERATION,
        LOCAL_GUIDANCE,
        BOOKING_ASSISTANCE,
        BUDGET_ANALYSIS,
        EMERGENCY_GUIDANCE,
    }
)
LOCAL_PROVIDER_COST = 0.0001
LOCAL_PROVIDER_QUALITY = 0.8
HOSTED_PROVIDER_COST = 0.002
HOSTED_PROVIDER_QUALITY = 0.95


@dataclass
class StoreBundle:
    """Persistence ports used by the agents and the optimizer."""

    preferences: IPreferenceStore = field(default_factory=InMemoryPreferenceStore)
    memory: IMemoryStore = field(default_factory=InMemoryMemoryStore)
    peers: IPeerDirectory = field(default_factory=InMemoryPeerDirectory)
    learning: Optional[ILearningStateStore] = field(default_factory=InMemoryLearningStateStore)


def backends_from_settings(settings: Settings) -> list[tuple[ProviderDescriptor, IGenerationBackend]]:
    """Backends configured through the environment."""
    backends: list[tuple[ProviderDescriptor, IGenerationBackend]] = []
    cfg = settings.backends

    if cfg.ollama_base_url:
        backend = OllamaBackend(
            GenerationBackendConfig(
                provider_id="ollama",
                model=cfg.ollama_model,
                base_url=cfg.ollama_base_url,
            )
        )
        backends.append(
            (
                ProviderDescriptor(
                    provider_id="ollama",
                    capability_tags=LOCAL_PROVIDER_TAGS,
                    cost_per_call=LOCAL_PROVIDER_COST,
                    quality_score=LOCAL_PROVIDER_QUALITY,
                ),
                backend,
            )
        )

    if cfg.openai_api_key:
        backend = OpenAIBackend(
            GenerationBackendConfig(
                provider_id="openai",
                model=cfg.openai_model,
                api_key=cfg.openai_api_key,
                base_url=cfg.openai_base_url,
            )
        )
        backends.append(
            (
                ProviderDescriptor(
                    provider_id="openai",
                    capability_tags=GENERATION_CAPABILITIES,
                    cost_per_call=HOSTED_PROVIDER_COST,
                    quality_score=HOSTED_PROVIDER_QUALITY,
                ),
                backend,
            )
        )

    if not backends:
        logger.warning("No generation backend configured; responses will be degraded")
    return backends


def build_agent_registry(settings: Settings, stores: StoreBundle) -> AgentRegistry:
    """Registry with the agents enabled in the orchestration settings."""
    flags = settings.orchestration
    registry = AgentRegistry()
    registry.register(PreferenceInferenceAgent(stores.preferences, peers=stores.peers))
    if flags.enable_emotional_intelligence:
        registry.register(EmotionalStateAdapter())
    if flags.enable_cross_session_memory:
        registry.register(CrossSessionMemoryAgent(stores.memory))
    if flags.enable_peer_matching:
        registry.register(PeerMatchingAgent(stores.preferences, stores.peers))
    if flags.enable_carbon_tracking:
        registry.register(EnvironmentalImpactAgent())
    if flags.enable_contingency_planning:
        registry.register(ContingencyReplanner(flags.max_revisions))
    return registry


def create_orchestration_core(
    settings: Optional[Settings] = None,
    backends: Optional[list[tuple[ProviderDescriptor, IGenerationBackend]]] = None,
    stores: Optional[StoreBundle] = None,
) -> OrchestrationCore:
    """Build a fully wired orchestration core.

    Args:
        settings: Configuration (environment defaults when omitted)
        backends: (descriptor, backend) pairs; built from settings when omitted
        stores: Persistence ports; in-memory when omitted
    """
    settings = settings or Settings()
    stores = stores or StoreBundle()

    optimizer = LearningOptimizer(settings.learning, store=stores.learning)

    pcfg = settings.providers
    providers = ProviderManager(
        pcfg,
        cache=ResponseCache(
            ttl_seconds=pcfg.cache_ttl_seconds,
            max_entries=pcfg.cache_max_entries,
            offload_bytes=pcfg.cache_offload_bytes,
            name="provider",
        ),
        fallback=FallbackResponder(pcfg.fallback_cost) if pcfg.fallback_enabled else None,
        explorer=optimizer.explore,
    )
    for descriptor, backend in backends if backends is not None else backends_from_settings(settings):
        providers.register(descriptor, backend)

    registry = build_agent_registry(settings, stores)
    replanner = registry.get(CONTINGENCY_REPLANNING)
    if not isinstance(replanner, ContingencyReplanner):
        replanner = ContingencyReplanner(settings.orchestration.max_revisions)

    synthesizer = WorkflowSynthesizer(
        registry,
        providers,
        settings.workflow,
        plan_cache=ResponseCache(ttl_seconds=settings.workflow.cache_ttl_seconds, name="workflow"),
    )

    return OrchestrationCore(
        analyzer=IntentAnalyzer(settings.intent, weights=optimizer),
        synthesizer=synthesizer,
        providers=providers,
        optimizer=optimizer,
        replanner=replanner,
        worker=BackgroundWorker(
            max_queue_size=settings.orchestration.learning_queue_size,
            max_concurrent=settings.orchestration.learning_workers,
        ),
        config=settings.orchestration,
    )


__all__ = [
    "StoreBundle",
    "backends_from_settings",
    "build_agent_registry",
    "create_orchestration_core",
]
