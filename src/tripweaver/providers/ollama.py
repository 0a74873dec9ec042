"""
Ollama Generation Backend.

Implements the IGenerationBackend interface for Ollama's local LLM API.
Zero-cost local models (llama, mistral, phi, qwen) are served this way.
"""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from ..exceptions import NetworkError, ProviderCallError, ProviderTimeoutError
from .base import BaseGenerationBackend, GenerationBackendConfig

logger = logging.getLogger(__name__)


class OllamaBackend(BaseGenerationBackend):
    """Ollama local model backend.

    Usage:
        config = GenerationBackendConfig(
            provider_id="mistral_7b",
            model="mistral:7b",
            base_url="http://localhost:11434",
        )
        backend = OllamaBackend(config)
        text = await backend.complete("Plan a weekend in Porto")
    """

    # Default configuration
    DEFAULT_MODEL = "qwen3:4b"
    DEFAULT_BASE_URL = "http://localhost:11434"

    def __init__(
        self,
        config: GenerationBackendConfig,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize the Ollama backend.

        Args:
            config: Backend configuration
            client: Optional pre-built HTTP client (tests pass a mock transport)
        """
        super().__init__(config)

        self.base_url = config.base_url or self.DEFAULT_BASE_URL
        self.client = client or httpx.AsyncClient(
            base_url=self.base_url,
            timeout=config.timeout,
        )

    async def complete(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        max_tokens: int = 500,
        temperature: float = 0.7,
    ) -> str:
        """Generate a completion with Ollama's /api/generate endpoint.

        Raises:
            ProviderTimeoutError: If the HTTP request times out
            NetworkError: If Ollama cannot be reached
            RateLimitError / ServerError / ProviderCallError: On HTTP errors
        """
        payload = {
            "model": self.config.model or self.DEFAULT_MODEL,
            "prompt": prompt,
            "stream": False,
            "options": {
                "temperature": temperature,
                "num_predict": max_tokens,
            },
        }
        if system_prompt:
            payload["system"] = system_prompt

        try:
            response = await self.client.post("/api/generate", json=payload)
            response.raise_for_status()
            data = response.json()

        except httpx.HTTPStatusError as e:
            raise self._error_for_status(
                e.response.status_code,
                e.response.text,
                e.response.headers.get("retry-after"),
            ) from e

        except httpx.TimeoutException as e:
            raise ProviderTimeoutError(
                f"Ollama timeout: {str(e)}",
                timeout_seconds=self.config.timeout,
                provider_id=self.provider_id,
                cause=e,
            ) from e

        except httpx.RequestError as e:
            raise NetworkError(
                f"Ollama connection error: {str(e)}",
                provider_id=self.provider_id,
                cause=e,
            ) from e

        except ValueError as e:
            raise ProviderCallError(
                f"Ollama returned invalid JSON: {str(e)}",
                provider_id=self.provider_id,
                cause=e,
            ) from e

        text = data.get("response", "")
        if not text:
            raise ProviderCallError(
                "No completion returned from Ollama",
                provider_id=self.provider_id,
            )
        return text

    async def close(self) -> None:
        await self.client.aclose()
