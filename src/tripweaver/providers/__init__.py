"""Generation backends and the capability-based provider manager."""

from .base import BaseGenerationBackend, GenerationBackendConfig
from .cache import ResponseCache
from .fallback import FALLBACK_PROVIDER_ID, FallbackResponder
from .manager import ProviderManager, provider_key
from .ollama import OllamaBackend
from .openai import OpenAIBackend

__all__ = [
    "BaseGenerationBackend",
    "GenerationBackendConfig",
    "ResponseCache",
    "FALLBACK_PROVIDER_ID",
    "FallbackResponder",
    "ProviderManager",
    "provider_key",
    "OllamaBackend",
    "OpenAIBackend",
]
