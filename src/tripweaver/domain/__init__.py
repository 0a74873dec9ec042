"""Domain entities and port interfaces for the orchestration core."""

from .entities import (
    GENERAL_INQUIRY,
    AggregatedResult,
    BackupPlan,
    CacheEntry,
    ComponentHealth,
    ConversationTurn,
    HealthStatus,
    IntentHypothesis,
    IntentHypothesisSet,
    MemoryFact,
    OutcomeRecord,
    OutcomeSignal,
    PeerMatch,
    PeerProfile,
    PlanStatus,
    ProviderDescriptor,
    ProviderResponse,
    RelatedIntent,
    RequestContext,
    RetryPolicy,
    Step,
    StepContext,
    StepKind,
    StepMetric,
    StepResult,
    StepStatus,
    WeightEntry,
    WorkflowPlan,
)
from .ports import (
    ICapabilityAgent,
    IGenerationBackend,
    ILearningStateStore,
    IMemoryStore,
    IPeerDirectory,
    IPreferenceStore,
    WeightReader,
)

__all__ = [
    # Entities
    "GENERAL_INQUIRY",
    "AggregatedResult",
    "BackupPlan",
    "CacheEntry",
    "ComponentHealth",
    "ConversationTurn",
    "HealthStatus",
    "IntentHypothesis",
    "IntentHypothesisSet",
    "MemoryFact",
    "OutcomeRecord",
    "OutcomeSignal",
    "PeerMatch",
    "PeerProfile",
    "PlanStatus",
    "ProviderDescriptor",
    "ProviderResponse",
    "RelatedIntent",
    "RequestContext",
    "RetryPolicy",
    "Step",
    "StepContext",
    "StepKind",
    "StepMetric",
    "StepResult",
    "StepStatus",
    "WeightEntry",
    "WorkflowPlan",
    # Ports
    "ICapabilityAgent",
    "IGenerationBackend",
    "ILearningStateStore",
    "IMemoryStore",
    "IPeerDirectory",
    "IPreferenceStore",
    "WeightReader",
]
