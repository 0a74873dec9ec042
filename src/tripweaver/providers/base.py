"""
Base Generation Backend Implementation.

Provides common functionality for all generation backends.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional

from ..domain.ports import IGenerationBackend
from ..exceptions import ProviderCallError, RateLimitError, ServerError

logger = logging.getLogger(__name__)


@dataclass
class GenerationBackendConfig:
    """Configuration for generation backends.

    Attributes:
        provider_id: Provider id the backend is registered under
        model: Model name to use
        api_key: API key (not needed for local backends)
        base_url: Optional custom base URL
        timeout: Transport timeout in seconds
        temperature: Default temperature
        max_tokens: Default max tokens
    """

    provider_id: str
    model: str
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    timeout: float = 60.0
    temperature: float = 0.7
    max_tokens: int = 1024
    extra: dict[str, Any] = field(default_factory=dict)


class BaseGenerationBackend(IGenerationBackend, ABC):
    """Base class for generation backend implementations.

    Retries are not done here; the provider manager wraps every call with
    its own retry policy and circuit breaker.
    """

    def __init__(self, config: GenerationBackendConfig):
        """Initialize the backend.

        Args:
            config: Backend configuration
        """
        self.config = config

    @property
    def model_name(self) -> str:
        """Return the model name."""
        return self.config.model

    @property
    def provider_id(self) -> str:
        return self.config.provider_id

    def _error_for_status(self, status_code: int, body: str, retry_after: Optional[str] = None) -> ProviderCallError:
        """Map an HTTP error status onto the provider error hierarchy."""
        message = f"{self.provider_id} API error: {status_code} - {body[:200]}"
        if status_code == 429:
            try:
                delay = float(retry_after) if retry_after else None
            except ValueError:
                delay = None
            return RateLimitError(message, retry_after=delay, provider_id=self.provider_id)
        if status_code >= 500:
            return ServerError(message, status_code=status_code, provider_id=self.provider_id)
        # 4xx other than 429 will not succeed on retry
        return ProviderCallError(
            message,
            provider_id=self.provider_id,
            recoverable=False,
            code="PROVIDER_REQUEST_REJECTED",
        )

    @abstractmethod
    async def complete(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        max_tokens: int = 500,
        temperature: float = 0.7,
    ) -> str:
        """Generate a completion. Must be implemented by subclasses."""
        pass

    async def __aenter__(self):
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()
