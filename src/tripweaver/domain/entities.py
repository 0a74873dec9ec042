"""
Domain entities for the orchestration core.

These are pure domain objects with no infrastructure dependencies.
They define the core data structures passed between the intent analyzer,
the workflow synthesizer, the provider manager, the capability agents and
the learning optimizer.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Optional

from ..exceptions import PlanValidationError

# Fallback intent used when nothing else can be scored
GENERAL_INQUIRY = "general_inquiry"

# Namespace for deterministic outcome record ids
OUTCOME_NAMESPACE = uuid.uuid5(uuid.NAMESPACE_URL, "tripweaver/outcome")


# ============================================
# Request Context
# ============================================


@dataclass(frozen=True)
class ConversationTurn:
    """One prior turn of the conversation.

    Attributes:
        role: "user" or "assistant"
        content: Turn text
        timestamp: When the turn happened (if known)
    """

    role: str
    content: str
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class RequestContext:
    """Immutable snapshot of one inbound request.

    Attributes:
        request_id: Unique request identifier (used for tracing and
            for the deterministic outcome record id)
        user_id: User who sent the request
        utterance: Free-form request text
        conversation_history: Prior turns, oldest first
        session_attributes: Read-only session key/value pairs
        timestamp: When the request was received
    """

    user_id: str
    utterance: str
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    conversation_history: tuple[ConversationTurn, ...] = ()
    session_attributes: Mapping[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.utcnow)

    def __post_init__(self):
        if not self.user_id:
            raise ValueError("user_id is required")
        object.__setattr__(
            self, "conversation_history", tuple(self.conversation_history)
        )
        object.__setattr__(
            self,
            "session_attributes",
            MappingProxyType(dict(self.session_attributes)),
        )


# ============================================
# Intent Hypotheses
# ============================================


@dataclass
class IntentHypothesis:
    """A single weighted intent candidate.

    Attributes:
        label: Intent label (e.g., "trip_planning")
        weight: Normalized confidence in [0, 1]
        features: Feature name -> raw contribution
        merged_from: Labels absorbed into this candidate by interference
    """

    label: str
    weight: float
    features: dict[str, float] = field(default_factory=dict)
    merged_from: list[str] = field(default_factory=list)


@dataclass
class RelatedIntent:
    """An intent likely to follow the primary one in the same conversation.

    Attributes:
        label: Related intent label
        strength: Correlation with the primary intent in [0, 1]
        correlation: How the two relate ("sequential" or "parallel")
    """

    label: str
    strength: float
    correlation: str = "sequential"


@dataclass
class IntentHypothesisSet:
    """Weighted candidate intents for one utterance.

    Hypotheses are ordered by descending weight. The set is never empty and
    its weights never sum above 1.
    """

    hypotheses: list[IntentHypothesis]
    coherence: float
    resolved_intent: Optional[str] = None
    slots: dict[str, Any] = field(default_factory=dict)
    is_fallback: bool = False
    # ISO 639-1 code of the utterance ("en" or "ar")
    language: str = "en"
    # Arabic dialect ("gulf", "levantine", "egyptian", "standard"); None for English
    dialect: Optional[str] = None
    related_intents: list[RelatedIntent] = field(default_factory=list)

    def __post_init__(self):
        if not self.hypotheses:
            raise ValueError("hypothesis set must not be empty")
        total = sum(h.weight for h in self.hypotheses)
        if total > 1.0 + 1e-9:
            raise ValueError(f"hypothesis weights sum to {total:.4f} > 1")
        self.hypotheses.sort(key=lambda h: h.weight, reverse=True)

    @property
    def top(self) -> IntentHypothesis:
        return self.hypotheses[0]

    @property
    def is_resolved(self) -> bool:
        return self.resolved_intent is not None

    @property
    def intent(self) -> str:
        """Resolved intent, or the strongest candidate when unresolved."""
        return self.resolved_intent or self.top.label

    def labels(self) -> list[str]:
        return [h.label for h in self.hypotheses]


# ============================================
# Workflow Plan
# ============================================


class StepKind(str, Enum):
    """What executes a step."""

    AGENT = "agent"  # Capability agent from the registry
    PROVIDER = "provider"  # Generation backend via the provider manager
    DISAMBIGUATION = "disambiguation"  # Clarifying question, built locally


class StepStatus(str, Enum):
    """Outcome of a single step."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"
    CACHED = "cached"


class PlanStatus(str, Enum):
    """Outcome of a whole plan execution."""

    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class RetryPolicy:
    """Per-step retry policy (exponential backoff)."""

    max_attempts: int = 3
    backoff_factor: float = 2.0
    initial_delay: float = 1.0
    max_delay: float = 30.0


@dataclass
class Step:
    """A unit of work in a workflow plan.

    Attributes:
        step_id: Unique id within the plan
        name: Human-readable step name
        kind: Agent, provider or disambiguation step
        capability_tag: Agent capability or provider capability to invoke
        depends_on: Step ids that must finish first (only required ones must succeed)
        required: A failed required step aborts the plan
        side_effect_free: Only side-effect-free results may be cached
        retry_policy: Retry policy for this step
        timeout_seconds: Per-attempt timeout (None = unbounded)
        payload: Step input
        quality_floor: Minimum provider quality score for provider steps
    """

    step_id: str
    name: str
    kind: StepKind
    capability_tag: str
    depends_on: tuple[str, ...] = ()
    required: bool = False
    side_effect_free: bool = True
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
    timeout_seconds: Optional[float] = None
    payload: dict[str, Any] = field(default_factory=dict)
    quality_floor: float = 0.0

    def __post_init__(self):
        self.depends_on = tuple(self.depends_on)


@dataclass
class WorkflowPlan:
    """An ordered, dependency-closed set of steps for one request.

    Validated at construction: step ids are unique, every dependency names a
    step of the plan, and the dependency graph is acyclic.
    """

    request_id: str
    intent: str
    steps: list[Step]
    signature: str = ""
    revision: int = 0
    max_parallel_nodes: int = 10
    slots: dict[str, Any] = field(default_factory=dict)
    # Step ids whose text becomes the response message, first success wins
    response_steps: tuple[str, ...] = ()
    # Results reused from an earlier revision; these steps are not run again
    carried_results: dict[str, StepResult] = field(default_factory=dict)
    plan_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=datetime.utcnow)

    def __post_init__(self):
        self._index = {}
        for step in self.steps:
            if step.step_id in self._index:
                raise PlanValidationError(
                    f"Duplicate step id '{step.step_id}'", step_id=step.step_id
                )
            self._index[step.step_id] = step
        for step in self.steps:
            for dep in step.depends_on:
                if dep not in self._index:
                    raise PlanValidationError(
                        f"Step '{step.step_id}' depends on unknown step '{dep}'",
                        step_id=step.step_id,
                    )
        self.topological_order()

    def get_step(self, step_id: str) -> Step:
        return self._index[step_id]

    @property
    def step_ids(self) -> list[str]:
        return [s.step_id for s in self.steps]

    def topological_order(self) -> list[Step]:
        """Return steps so that every step follows its dependencies.

        Raises:
            PlanValidationError: If the dependency graph has a cycle
        """
        remaining = {s.step_id: set(s.depends_on) for s in self.steps}
        ordered: list[Step] = []
        while remaining:
            ready = [sid for sid, deps in remaining.items() if not deps]
            if not ready:
                raise PlanValidationError(
                    f"Dependency cycle among steps: {sorted(remaining)}"
                )
            for sid in ready:
                ordered.append(self._index[sid])
                del remaining[sid]
            for deps in remaining.values():
                deps.difference_update(ready)
        return ordered


# ============================================
# Execution Results
# ============================================


@dataclass
class BackupPlan:
    """A pre-computed alternative in case part of the trip falls through."""

    trigger: str
    alternative: str
    confidence: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "trigger": self.trigger,
            "alternative": self.alternative,
            "confidence": self.confidence,
        }


@dataclass
class StepResult:
    """Result of executing one step."""

    step_id: str
    status: StepStatus
    output: Any = None
    cost: float = 0.0
    latency_ms: float = 0.0
    attempts: int = 0
    provider_id: Optional[str] = None
    cache_hit: bool = False
    degraded: bool = False
    error: Optional[str] = None
    emotional_impact: Optional[float] = None
    carbon_saved: Optional[float] = None
    agent_tag: Optional[str] = None
    backup_plans: list[BackupPlan] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status in (StepStatus.SUCCEEDED, StepStatus.CACHED)

    @property
    def text(self) -> Optional[str]:
        """Textual output, if the step produced one."""
        if isinstance(self.output, str):
            return self.output
        if isinstance(self.output, dict):
            value = self.output.get("text") or self.output.get("message")
            return value if isinstance(value, str) else None
        return None


@dataclass
class AggregatedResult:
    """Combined result of executing a plan."""

    plan_id: str
    status: PlanStatus
    step_results: dict[str, StepResult] = field(default_factory=dict)
    message: str = ""
    total_cost: float = 0.0
    latency_ms: float = 0.0
    cache_hit: bool = False
    degraded: bool = False
    failed_required_step: Optional[str] = None
    agents_used: list[str] = field(default_factory=list)
    emotional_impact: Optional[float] = None
    carbon_saved: Optional[float] = None
    backup_plans: list[BackupPlan] = field(default_factory=list)
    revision: int = 0

    @property
    def failed_steps(self) -> list[str]:
        return [
            sid for sid, r in self.step_results.items() if r.status == StepStatus.FAILED
        ]


@dataclass
class StepContext:
    """Context handed to a capability agent for one step.

    Attributes:
        request: The originating request
        intent: Plan intent
        slots: Extracted slots (destination, budget, ...)
        upstream: Results of this step's dependencies, keyed by step id
    """

    request: RequestContext
    intent: str
    slots: dict[str, Any] = field(default_factory=dict)
    upstream: dict[str, StepResult] = field(default_factory=dict)

    def upstream_text(self) -> Optional[str]:
        """Most relevant upstream text (the last succeeded text output)."""
        for result in reversed(list(self.upstream.values())):
            if result.succeeded and result.text:
                return result.text
        return None


# ============================================
# Providers
# ============================================


@dataclass
class ProviderDescriptor:
    """Registered generation provider.

    Attributes:
        provider_id: Unique provider id
        capability_tags: Capabilities this provider serves
        cost_per_call: Cost charged per call
        quality_score: Static quality estimate in [0, 1]
        success_rate: Moving average of call outcomes
        learned_weight: Weight from the learning optimizer
        total_calls: Calls made (including failures)
        failed_calls: Failed calls
        total_cost: Accumulated cost
    """

    provider_id: str
    capability_tags: frozenset[str]
    cost_per_call: float
    quality_score: float
    success_rate: float = 1.0
    learned_weight: float = 0.5
    total_calls: int = 0
    failed_calls: int = 0
    total_cost: float = 0.0

    def __post_init__(self):
        self.capability_tags = frozenset(self.capability_tags)
        if not self.provider_id:
            raise ValueError("provider_id is required")


@dataclass
class ProviderResponse:
    """Response from a provider invocation (or the fallback responder)."""

    provider_id: str
    text: str
    cost: float = 0.0
    latency_ms: float = 0.0
    cache_hit: bool = False
    degraded: bool = False
    attempts: int = 1
    tokens: Optional[int] = None


@dataclass
class CacheEntry:
    """Response cache entry."""

    key: str
    value: Any
    created_at: float
    expires_at: float
    size_estimate: int = 0
    last_accessed: float = 0.0
    access_count: int = 0

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


# ============================================
# Agent Collaborators
# ============================================


@dataclass
class MemoryFact:
    """A fact remembered about a user across sessions."""

    user_id: str
    content: str
    tags: list[str] = field(default_factory=list)
    id: Optional[uuid.UUID] = None
    source_request_id: Optional[str] = None
    created_at: Optional[datetime] = None

    def __post_init__(self):
        if self.id is None:
            self.id = uuid.uuid4()
        if self.created_at is None:
            self.created_at = datetime.utcnow()


@dataclass
class PeerProfile:
    """Preference vector of a traveller available for peer matching."""

    user_id: str
    preferences: dict[str, float] = field(default_factory=dict)
    display_name: Optional[str] = None


@dataclass
class PeerMatch:
    user_id: str
    similarity: float
    display_name: Optional[str] = None


# ============================================
# Learning
# ============================================


class OutcomeSignal(str, Enum):
    """How a request ended, from the learner's point of view."""

    COMPLETED = "completed"
    DEGRADED = "degraded"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class StepMetric:
    """Per-step metrics carried in an outcome record."""

    step_id: str
    capability_tag: str
    success: bool
    cost: float = 0.0
    latency_ms: float = 0.0
    provider_id: Optional[str] = None


@dataclass
class OutcomeRecord:
    """Everything the learner needs to know about a finished request.

    ``record_id`` is derived from ``request_id`` so the same request always
    yields the same record id; the optimizer uses it to ignore replays.
    """

    request_id: str
    user_id: str
    intent: str
    signal: OutcomeSignal
    quality_signal: float
    step_metrics: list[StepMetric] = field(default_factory=list)
    plan_summary: dict[str, Any] = field(default_factory=dict)
    emotional_impact: Optional[float] = None
    carbon_delta: Optional[float] = None
    feedback: Optional[float] = None
    total_cost: float = 0.0
    record_id: Optional[str] = None
    timestamp: Optional[datetime] = None

    def __post_init__(self):
        if self.record_id is None:
            self.record_id = self.record_id_for(self.request_id)
        if self.timestamp is None:
            self.timestamp = datetime.utcnow()

    @staticmethod
    def record_id_for(request_id: str) -> str:
        return str(uuid.uuid5(OUTCOME_NAMESPACE, request_id))


@dataclass
class WeightEntry:
    """One learned weight."""

    value: float = 0.5
    updates: int = 0
    last_updated: Optional[datetime] = None


# ============================================
# Health
# ============================================


class HealthStatus(str, Enum):
    """Component health, ordered from best to worst."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNAVAILABLE = "unavailable"

    @property
    def severity(self) -> int:
        return _SEVERITY[self]


_SEVERITY = {
    HealthStatus.HEALTHY: 0,
    HealthStatus.DEGRADED: 1,
    HealthStatus.UNAVAILABLE: 2,
}


@dataclass
class ComponentHealth:
    name: str
    status: HealthStatus
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "status": self.status.value, "details": self.details}
