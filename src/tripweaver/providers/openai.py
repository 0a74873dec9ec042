"""
OpenAI Generation Backend.

Implements the IGenerationBackend interface for OpenAI chat models (and any
OpenAI-compatible endpoint via ``base_url``).
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import openai
from openai import AsyncOpenAI

from ..exceptions import (
    NetworkError,
    ProviderCallError,
    ProviderTimeoutError,
    RateLimitError,
)
from .base import BaseGenerationBackend, GenerationBackendConfig

logger = logging.getLogger(__name__)


class OpenAIBackend(BaseGenerationBackend):
    """OpenAI chat-completions backend.

    Usage:
        config = GenerationBackendConfig(
            provider_id="openai_free",
            model="gpt-4o-mini",
            api_key="sk-...",
        )
        backend = OpenAIBackend(config)
        text = await backend.complete("Suggest three things to do in Lisbon")
    """

    DEFAULT_MODEL = "gpt-4o-mini"

    def __init__(self, config: GenerationBackendConfig, client: Optional[Any] = None):
        """Initialize the OpenAI backend.

        Args:
            config: Backend configuration
            client: Optional pre-built AsyncOpenAI client
        """
        super().__init__(config)

        # SDK-level retries are disabled; the provider manager owns retries
        self.client = client or AsyncOpenAI(
            api_key=config.api_key,
            base_url=config.base_url,
            timeout=config.timeout,
            max_retries=0,
        )

    async def complete(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        max_tokens: int = 500,
        temperature: float = 0.7,
    ) -> str:
        """Generate a completion with the chat-completions API."""
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        try:
            response = await self.client.chat.completions.create(
                model=self.config.model or self.DEFAULT_MODEL,
                messages=messages,
                max_tokens=max_tokens,
                temperature=temperature,
            )

        except openai.RateLimitError as e:
            logger.warning(f"Rate limited by OpenAI: {e}")
            raise RateLimitError(
                f"Rate limited: {e}",
                provider_id=self.provider_id,
                cause=e,
            ) from e
        except openai.APITimeoutError as e:
            raise ProviderTimeoutError(
                f"OpenAI timeout: {e}",
                timeout_seconds=self.config.timeout,
                provider_id=self.provider_id,
                cause=e,
            ) from e
        except openai.APIConnectionError as e:
            raise NetworkError(
                f"OpenAI connection error: {e}",
                provider_id=self.provider_id,
                cause=e,
            ) from e
        except openai.APIStatusError as e:
            raise self._error_for_status(e.status_code, str(e)) from e
        except openai.APIError as e:
            logger.error(f"OpenAI API error: {e}")
            raise ProviderCallError(
                f"OpenAI API error: {e}",
                provider_id=self.provider_id,
                cause=e,
            ) from e

        if not response.choices or not response.choices[0].message.content:
            raise ProviderCallError(
                "No completion returned from OpenAI",
                provider_id=self.provider_id,
            )
        return response.choices[0].message.content

    async def close(self) -> None:
        await self.client.close()
