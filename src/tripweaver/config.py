"""
Configuration for the orchestration core.

Every setting has a default that can be overridden with an environment
variable. Entry points call ``load_dotenv()`` before building ``Settings`` so a
local ``.env`` file is honoured.

Environment Variables:
- INTENT_WIDTH: Maximum candidate intents (default: 10)
- INTENT_COHERENCE_THRESHOLD: Weight needed to resolve an intent (default: 0.7)
- INTENT_INTERFERENCE_SENSITIVITY: Similarity above which candidates merge (default: 0.5)
- INTENT_CONTEXT_WINDOW: Conversation turns considered (default: 100)
- PROVIDER_MAX_RETRIES: Attempts per provider call (default: 3)
- PROVIDER_RETRY_INITIAL_DELAY: First backoff delay in seconds (default: 1.0)
- PROVIDER_FAILURE_THRESHOLD: Consecutive failures that open a circuit (default: 5)
- PROVIDER_COOLDOWN_SECONDS: Open circuit cooldown (default: 60)
- PROVIDER_CACHE_TTL_SECONDS: Response cache TTL (default: 3600)
- PROVIDER_CACHE_OFFLOAD_BYTES: Tracked cache size that triggers LRU eviction
- PROVIDER_FALLBACK_ENABLED: Use the degraded responder (default: true)
- WORKFLOW_MAX_PARALLEL_NODES: Concurrent steps per plan (default: 10)
- WORKFLOW_CACHE_ENABLED / WORKFLOW_CACHE_TTL_SECONDS: Plan result cache
- LEARNING_RATE / LEARNING_DISCOUNT_FACTOR / LEARNING_EXPLORATION_RATE
- LEARNING_RETENTION_DAYS: Outcome history window (default: 90)
- ORCHESTRATION_MAX_REVISIONS: Contingency re-planning depth (default: 2)
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional

from .exceptions import ConfigurationError


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass
class IntentConfig:
    """Configuration for the intent analyzer."""

    width: int = int(os.getenv("INTENT_WIDTH", "10"))
    coherence_threshold: float = float(os.getenv("INTENT_COHERENCE_THRESHOLD", "0.7"))
    interference_sensitivity: float = float(
        os.getenv("INTENT_INTERFERENCE_SENSITIVITY", "0.5")
    )
    context_window: int = int(os.getenv("INTENT_CONTEXT_WINDOW", "100"))

    # Probability mass reserved for "none of the above"
    uncertainty_mass: float = 0.5

    # Weight given to the general_inquiry fallback
    fallback_weight: float = 0.1

    # How strongly learned intent weights bend raw scores
    learning_bias: float = 0.4

    # Discount applied to evidence from earlier conversation turns
    history_decay: float = 0.5

    # Unresolved sets keep at most this many candidates
    top_k: int = 3

    # Related intents at or below this strength are not reported
    related_threshold: float = 0.3

    def __post_init__(self):
        if self.width < 1:
            raise ConfigurationError("width must be >= 1", invalid_keys=["INTENT_WIDTH"])
        if not 0.0 < self.coherence_threshold <= 1.0:
            raise ConfigurationError(
                "coherence_threshold must be in (0, 1]",
                invalid_keys=["INTENT_COHERENCE_THRESHOLD"],
            )
        if self.context_window < 0:
            raise ConfigurationError(
                "context_window must be >= 0", invalid_keys=["INTENT_CONTEXT_WINDOW"]
            )


@dataclass
class ProviderConfig:
    """Configuration for the provider manager and its response cache."""

    max_retries: int = int(os.getenv("PROVIDER_MAX_RETRIES", "3"))
    retry_initial_delay: float = float(os.getenv("PROVIDER_RETRY_INITIAL_DELAY", "1.0"))
    retry_backoff_factor: float = 2.0
    retry_max_delay: float = 30.0
    retry_jitter: bool = True
    call_timeout_seconds: float = float(os.getenv("PROVIDER_CALL_TIMEOUT_SECONDS", "30"))

    failure_threshold: int = int(os.getenv("PROVIDER_FAILURE_THRESHOLD", "5"))
    cooldown_seconds: float = float(os.getenv("PROVIDER_COOLDOWN_SECONDS", "60"))

    cache_enabled: bool = _flag("PROVIDER_CACHE_ENABLED", "true")
    cache_ttl_seconds: float = float(os.getenv("PROVIDER_CACHE_TTL_SECONDS", "3600"))
    cache_max_entries: int = int(os.getenv("PROVIDER_CACHE_MAX_ENTRIES", "1000"))
    cache_offload_bytes: int = int(
        os.getenv("PROVIDER_CACHE_OFFLOAD_BYTES", str(100 * 1024 * 1024))
    )

    fallback_enabled: bool = _flag("PROVIDER_FALLBACK_ENABLED", "true")
    fallback_cost: float = 0.0001

    # Smoothing for the per-provider success-rate moving average
    success_rate_alpha: float = 0.1

    def __post_init__(self):
        if self.max_retries < 1:
            raise ConfigurationError(
                "max_retries must be >= 1", invalid_keys=["PROVIDER_MAX_RETRIES"]
            )
        if self.failure_threshold < 1:
            raise ConfigurationError(
                "failure_threshold must be >= 1",
                invalid_keys=["PROVIDER_FAILURE_THRESHOLD"],
            )


@dataclass
class WorkflowConfig:
    """Configuration for plan synthesis and execution."""

    max_parallel_nodes: int = int(os.getenv("WORKFLOW_MAX_PARALLEL_NODES", "10"))
    cache_enabled: bool = _flag("WORKFLOW_CACHE_ENABLED", "true")
    cache_ttl_seconds: float = float(os.getenv("WORKFLOW_CACHE_TTL_SECONDS", "3600"))
    default_max_attempts: int = 3
    default_initial_delay: float = float(os.getenv("WORKFLOW_RETRY_INITIAL_DELAY", "1.0"))
    default_backoff_factor: float = 2.0
    default_step_timeout: float = float(os.getenv("WORKFLOW_STEP_TIMEOUT_SECONDS", "45"))

    def __post_init__(self):
        if self.max_parallel_nodes < 1:
            raise ConfigurationError(
                "max_parallel_nodes must be >= 1",
                invalid_keys=["WORKFLOW_MAX_PARALLEL_NODES"],
            )


@dataclass
class LearningConfig:
    """Configuration for the learning optimizer."""

    learning_rate: float = float(os.getenv("LEARNING_RATE", "0.1"))
    discount_factor: float = float(os.getenv("LEARNING_DISCOUNT_FACTOR", "0.95"))
    exploration_rate: float = float(os.getenv("LEARNING_EXPLORATION_RATE", "0.3"))
    retention_days: int = int(os.getenv("LEARNING_RETENTION_DAYS", "90"))
    initial_weight: float = 0.5

    # Reward = quality - cost_weight * min(1, cost / cost_reference)
    cost_weight: float = 0.2
    cost_reference: float = 0.05

    def __post_init__(self):
        invalid = []
        if not 0.0 < self.learning_rate < 1.0:
            invalid.append("LEARNING_RATE")
        if not 0.0 < self.discount_factor <= 1.0:
            invalid.append("LEARNING_DISCOUNT_FACTOR")
        if not 0.0 <= self.exploration_rate <= 1.0:
            invalid.append("LEARNING_EXPLORATION_RATE")
        if invalid:
            raise ConfigurationError("Invalid learning configuration", invalid_keys=invalid)


@dataclass
class OrchestrationConfig:
    """Configuration for the orchestration core itself."""

    max_revisions: int = int(os.getenv("ORCHESTRATION_MAX_REVISIONS", "2"))
    learning_queue_size: int = int(os.getenv("ORCHESTRATION_LEARNING_QUEUE_SIZE", "100"))
    learning_workers: int = 2

    enable_emotional_intelligence: bool = _flag("ENABLE_EMOTIONAL_INTELLIGENCE", "true")
    enable_cross_session_memory: bool = _flag("ENABLE_CROSS_SESSION_MEMORY", "true")
    enable_peer_matching: bool = _flag("ENABLE_PEER_MATCHING", "true")
    enable_carbon_tracking: bool = _flag("ENABLE_CARBON_TRACKING", "true")
    enable_contingency_planning: bool = _flag("ENABLE_CONTINGENCY_PLANNING", "true")

    apology_message: str = (
        "I'm sorry, I couldn't put that plan together right now. "
        "Please try again in a moment."
    )


@dataclass
class BackendSettings:
    """Connection settings for the generation backends."""

    ollama_base_url: Optional[str] = os.getenv("OLLAMA_BASE_URL")
    ollama_model: str = os.getenv("OLLAMA_MODEL", "qwen3:4b")
    openai_api_key: Optional[str] = os.getenv("OPENAI_API_KEY")
    openai_model: str = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
    openai_base_url: Optional[str] = os.getenv("OPENAI_BASE_URL")


@dataclass
class Settings:
    """All configuration groups for one orchestration core."""

    intent: IntentConfig = field(default_factory=IntentConfig)
    providers: ProviderConfig = field(default_factory=ProviderConfig)
    workflow: WorkflowConfig = field(default_factory=WorkflowConfig)
    learning: LearningConfig = field(default_factory=LearningConfig)
    orchestration: OrchestrationConfig = field(default_factory=OrchestrationConfig)
    backends: BackendSettings = field(default_factory=BackendSettings)
