"""
Provider manager.

Selects, calls and caches generation providers by capability tag. Every
provider gets its own circuit breaker; every call goes through that breaker
with bounded retry and a per-call timeout. When nothing is left to try, the
degraded fallback responder answers (if enabled).

Selection order among eligible providers:
    1. cheapest cost_per_call
    2. highest success rate
    3. highest learned weight
The optional explorer (the learning optimizer) may then reorder the list.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import time
from typing import Any, Callable, Optional

from ..config import ProviderConfig
from ..domain.entities import (
    ComponentHealth,
    HealthStatus,
    ProviderDescriptor,
    ProviderResponse,
)
from ..domain.ports import IGenerationBackend, WeightReader
from ..exceptions import (
    CircuitOpenError,
    ConfigurationError,
    ProviderTimeoutError,
    ProviderUnavailableError,
)
from ..resilience import CircuitBreaker, CircuitState, retry_async, with_timeout
from .cache import ResponseCache
from .fallback import FallbackResponder

logger = logging.getLogger(__name__)

# Success rate below which a provider reports degraded
DEGRADED_SUCCESS_RATE = 0.9


def provider_key(provider_id: str) -> str:
    """Learning-state key for a provider."""
    return f"provider:{provider_id}"


class ProviderManager:
    """Capability-based provider selection with caching and fallback.

    Example:
        manager = ProviderManager(ProviderConfig())
        manager.register(
            ProviderDescriptor("mistral_7b", {"itinerary_generation"}, 0.00005, 0.75),
            OllamaBackend(config),
        )
        response = await manager.invoke("itinerary_generation", {"prompt": "..."})
    """

    def __init__(
        self,
        config: Optional[ProviderConfig] = None,
        cache: Optional[ResponseCache] = None,
        fallback: Optional[FallbackResponder] = None,
        explorer: Optional[Callable[[list[str]], list[str]]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the provider manager.

        Args:
            config: Provider configuration
            cache: Response cache (built from config when omitted)
            fallback: Degraded responder (built from config when omitted)
            explorer: Optional reordering hook for exploration
            clock: Monotonic clock shared with the circuit breakers
        """
        self.config = config or ProviderConfig()
        self.cache = cache or ResponseCache(
            ttl_seconds=self.config.cache_ttl_seconds,
            max_entries=self.config.cache_max_entries,
            offload_bytes=self.config.cache_offload_bytes,
            name="providers",
        )
        self.fallback = fallback or FallbackResponder(cost=self.config.fallback_cost)
        self._explorer = explorer
        self._clock = clock

        self._providers: dict[str, ProviderDescriptor] = {}
        self._backends: dict[str, IGenerationBackend] = {}
        self._circuits: dict[str, CircuitBreaker] = {}

        self._requests = 0
        self._cache_hits = 0
        self._fallbacks = 0
        self._unavailable = 0

    # ============================================
    # Registration
    # ============================================

    def register(self, descriptor: ProviderDescriptor, backend: IGenerationBackend) -> None:
        """Register a provider.

        Raises:
            ConfigurationError: If the provider id is already registered
        """
        if descriptor.provider_id in self._providers:
            raise ConfigurationError(
                f"Provider '{descriptor.provider_id}' is already registered",
                invalid_keys=[descriptor.provider_id],
            )
        self._providers[descriptor.provider_id] = descriptor
        self._backends[descriptor.provider_id] = backend
        self._circuits[descriptor.provider_id] = CircuitBreaker(
            failure_threshold=self.config.failure_threshold,
            cooldown=self.config.cooldown_seconds,
            name=descriptor.provider_id,
            clock=self._clock,
        )
        logger.info(
            f"Registered provider '{descriptor.provider_id}' "
            f"(tags={sorted(descriptor.capability_tags)}, cost={descriptor.cost_per_call})"
        )

    def set_explorer(self, explorer: Optional[Callable[[list[str]], list[str]]]) -> None:
        self._explorer = explorer

    @property
    def descriptors(self) -> list[ProviderDescriptor]:
        return list(self._providers.values())

    def get_descriptor(self, provider_id: str) -> ProviderDescriptor:
        return self._providers[provider_id]

    def circuit(self, provider_id: str) -> CircuitBreaker:
        return self._circuits[provider_id]

    def has_capability(self, capability_tag: str) -> bool:
        return any(capability_tag in d.capability_tags for d in self._providers.values())

    # ============================================
    # Selection
    # ============================================

    def eligible_providers(
        self, capability_tag: str, quality_floor: float = 0.0
    ) -> list[ProviderDescriptor]:
        """Providers that can serve the tag now, in preference order."""
        eligible = [
            d
            for d in self._providers.values()
            if capability_tag in d.capability_tags
            and d.quality_score >= quality_floor
            and self._circuits[d.provider_id].allows_request()
        ]
        eligible.sort(key=lambda d: (d.cost_per_call, -d.success_rate, -d.learned_weight))

        if self._explorer and len(eligible) > 1:
            order = self._explorer([d.provider_id for d in eligible])
            eligible = [self._providers[pid] for pid in order]
        return eligible

    # ============================================
    # Invocation
    # ============================================

    async def invoke(
        self,
        capability_tag: str,
        payload: dict[str, Any],
        quality_floor: float = 0.0,
    ) -> ProviderResponse:
        """Serve a generation request for ``capability_tag``.

        Returns:
            ProviderResponse (``cache_hit`` or ``degraded`` set as applicable)

        Raises:
            ProviderUnavailableError: If no provider succeeded and the
                fallback responder is disabled
        """
        self._requests += 1
        started = time.perf_counter()

        if not self.config.cache_enabled:
            return await self._invoke_uncached(capability_tag, payload, quality_floor)

        key = self.cache.make_key(capability_tag, payload)
        response, hit = await self.cache.get_or_compute(
            key,
            lambda: self._invoke_uncached(capability_tag, payload, quality_floor),
            should_cache=lambda r: not r.degraded,
        )
        if not hit:
            return response

        self._cache_hits += 1
        logger.debug(f"Cache hit for '{capability_tag}' ({key[:12]})")
        return dataclasses.replace(
            response,
            cache_hit=True,
            cost=0.0,
            attempts=0,
            latency_ms=(time.perf_counter() - started) * 1000,
        )

    async def _invoke_uncached(
        self,
        capability_tag: str,
        payload: dict[str, Any],
        quality_floor: float,
    ) -> ProviderResponse:
        attempted: list[str] = []

        for descriptor in self.eligible_providers(capability_tag, quality_floor):
            attempted.append(descriptor.provider_id)
            try:
                return await self._call_provider(descriptor, payload)
            except CircuitOpenError as e:
                logger.info(f"Skipping provider '{descriptor.provider_id}': {e.message}")
            except Exception as e:
                logger.warning(
                    f"Provider '{descriptor.provider_id}' failed for "
                    f"'{capability_tag}': {e}"
                )

        self._unavailable += 1
        if self.config.fallback_enabled:
            self._fallbacks += 1
            return self.fallback.respond(capability_tag, payload)

        raise ProviderUnavailableError(
            f"No provider could serve '{capability_tag}'",
            capability_tag=capability_tag,
            attempted=attempted,
        )

    async def _call_provider(
        self, descriptor: ProviderDescriptor, payload: dict[str, Any]
    ) -> ProviderResponse:
        """Call one provider through its circuit with retry and timeout."""
        provider_id = descriptor.provider_id
        backend = self._backends[provider_id]
        circuit = self._circuits[provider_id]
        timeout = payload.get("timeout_seconds", self.config.call_timeout_seconds)
        attempts = 0

        async def timed_completion() -> str:
            try:
                return await with_timeout(
                    backend.complete,
                    timeout,
                    payload.get("prompt", ""),
                    system_prompt=payload.get("system_prompt"),
                    max_tokens=payload.get("max_tokens", 500),
                    temperature=payload.get("temperature", 0.7),
                )
            except asyncio.TimeoutError as e:
                raise ProviderTimeoutError(
                    f"Provider '{provider_id}' timed out after {timeout}s",
                    timeout_seconds=timeout,
                    provider_id=provider_id,
                    cause=e,
                ) from e

        async def attempt() -> str:
            nonlocal attempts
            attempts += 1
            descriptor.total_calls += 1
            try:
                text = await circuit.call(timed_completion)
            except CircuitOpenError:
                descriptor.total_calls -= 1
                raise
            except Exception:
                descriptor.failed_calls += 1
                self._update_success_rate(descriptor, 0.0)
                raise
            self._update_success_rate(descriptor, 1.0)
            return text

        started = time.perf_counter()
        text = await retry_async(
            attempt,
            max_attempts=self.config.max_retries,
            backoff_factor=self.config.retry_backoff_factor,
            initial_delay=self.config.retry_initial_delay,
            max_delay=self.config.retry_max_delay,
            jitter=self.config.retry_jitter,
        )
        latency_ms = (time.perf_counter() - started) * 1000

        descriptor.total_cost += descriptor.cost_per_call
        return ProviderResponse(
            provider_id=provider_id,
            text=text,
            cost=descriptor.cost_per_call,
            latency_ms=latency_ms,
            attempts=attempts,
            tokens=len(text.split()),
        )

    def _update_success_rate(self, descriptor: ProviderDescriptor, outcome: float) -> None:
        alpha = self.config.success_rate_alpha
        descriptor.success_rate = (1 - alpha) * descriptor.success_rate + alpha * outcome

    # ============================================
    # Learning, Metrics and Health
    # ============================================

    def refresh_weights(self, reader: WeightReader) -> None:
        """Copy learned provider weights into the descriptors."""
        for descriptor in self._providers.values():
            descriptor.learned_weight = reader.get_weight(provider_key(descriptor.provider_id))

    def provider_status(self, provider_id: str) -> HealthStatus:
        descriptor = self._providers[provider_id]
        state = self._circuits[provider_id].state
        if state == CircuitState.OPEN:
            return HealthStatus.UNAVAILABLE
        if state == CircuitState.HALF_OPEN or descriptor.success_rate < DEGRADED_SUCCESS_RATE:
            return HealthStatus.DEGRADED
        return HealthStatus.HEALTHY

    def health_check(self) -> ComponentHealth:
        """Per-provider status; the component is as healthy as its best provider."""
        statuses = {pid: self.provider_status(pid) for pid in self._providers}
        if statuses:
            overall = min(statuses.values(), key=lambda s: s.severity)
        else:
            overall = HealthStatus.UNAVAILABLE
        return ComponentHealth(
            name="providers",
            status=overall,
            details={
                "providers": {pid: status.value for pid, status in statuses.items()},
                "fallback_enabled": self.config.fallback_enabled,
            },
        )

    def get_metrics(self) -> dict[str, Any]:
        cache_stats = self.cache.get_stats()
        return {
            "requests": self._requests,
            "cache_hits": self._cache_hits,
            "cache_misses": cache_stats["misses"],
            "cache_hit_rate": self._cache_hits / self._requests if self._requests else 0.0,
            "fallbacks": self._fallbacks,
            "unavailable": self._unavailable,
            "cache": cache_stats,
            "providers": {
                pid: {
                    "calls": d.total_calls,
                    "failures": d.failed_calls,
                    "cost": round(d.total_cost, 6),
                    "success_rate": round(d.success_rate, 4),
                    "learned_weight": round(d.learned_weight, 4),
                    "circuit": self._circuits[pid].get_status(),
                }
                for pid, d in self._providers.items()
            },
        }

    def cleanup(self) -> int:
        """Purge expired cache entries."""
        return self.cache.purge_expired()

    async def close(self) -> None:
        for provider_id, backend in self._backends.items():
            try:
                await backend.close()
            except Exception as e:
                logger.warning(f"Error closing provider '{provider_id}': {e}")


__all__ = ["ProviderManager", "provider_key", "DEGRADED_SUCCESS_RATE"]
