"""
Port interfaces (abstract base classes) for the orchestration core.

These define the contracts that adapters must implement.
Following the Ports & Adapters (Hexagonal) architecture pattern.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Optional, Protocol, runtime_checkable

if TYPE_CHECKING:
    from .entities import (
        MemoryFact,
        OutcomeRecord,
        PeerProfile,
        Step,
        StepContext,
        StepResult,
        WeightEntry,
    )


# ============================================
# Generation Backend Interface
# ============================================


class IGenerationBackend(ABC):
    """Interface for language-model backends (Ollama, OpenAI, ...).

    Backends only know how to turn a prompt into text. Selection, caching,
    retries and circuit breaking live in the provider manager.
    """

    @property
    @abstractmethod
    def model_name(self) -> str:
        """Return the model identifier (e.g., 'qwen3:4b', 'gpt-4o-mini')."""
        pass

    @abstractmethod
    async def complete(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        max_tokens: int = 500,
        temperature: float = 0.7,
    ) -> str:
        """Generate a text completion.

        Args:
            prompt: The prompt to complete
            system_prompt: Optional system prompt
            max_tokens: Maximum tokens to generate
            temperature: Sampling temperature

        Returns:
            Generated text

        Raises:
            ProviderCallError: On any retryable backend failure
        """
        pass

    async def close(self) -> None:
        """Release network resources (no-op by default)."""
        return None


# ============================================
# Capability Agent Interface
# ============================================


class ICapabilityAgent(ABC):
    """A pluggable capability that workflow steps can target.

    Agents declare the capability tags they serve and are looked up by tag
    in the agent registry. They hold no per-request state; anything
    persistent goes through a port.
    """

    @property
    @abstractmethod
    def capability_tags(self) -> frozenset[str]:
        """Capability tags served by this agent."""
        pass

    @property
    def mutates_state(self) -> bool:
        """True if handling a step writes persisted state."""
        return False

    @abstractmethod
    async def handle(self, step: Step, context: StepContext) -> StepResult:
        """Execute one step.

        Args:
            step: Step to execute (its capability_tag is one of ours)
            context: Request, slots and upstream step results

        Returns:
            StepResult for the step
        """
        pass


# ============================================
# Persistence Ports
# ============================================


class IPreferenceStore(ABC):
    """Persisted per-user preference weights."""

    @abstractmethod
    async def get_preferences(self, user_id: str) -> dict[str, float]:
        pass

    @abstractmethod
    async def save_preferences(self, user_id: str, preferences: dict[str, float]) -> None:
        pass


class IMemoryStore(ABC):
    """Facts remembered about a user across sessions."""

    @abstractmethod
    async def recall(self, user_id: str, limit: int = 50) -> list[MemoryFact]:
        """Return the user's most recent facts, newest first."""
        pass

    @abstractmethod
    async def remember(self, fact: MemoryFact) -> None:
        pass


class IPeerDirectory(ABC):
    """Directory of traveller preference profiles."""

    @abstractmethod
    async def list_profiles(self) -> list[PeerProfile]:
        pass

    @abstractmethod
    async def upsert_profile(self, profile: PeerProfile) -> None:
        pass


class ILearningStateStore(ABC):
    """Durable storage for learned weights and outcome history."""

    @abstractmethod
    async def load_weights(self) -> dict[str, WeightEntry]:
        pass

    @abstractmethod
    async def save_weight(self, key: str, entry: WeightEntry) -> None:
        pass

    @abstractmethod
    async def append_outcome(self, record: OutcomeRecord) -> None:
        pass


# ============================================
# Read-only Learning State
# ============================================


@runtime_checkable
class WeightReader(Protocol):
    """Read-only view of learned weights.

    Handed to the intent analyzer and the provider manager so neither can
    write learning state.
    """

    def get_weight(self, key: str) -> float:
        ...
