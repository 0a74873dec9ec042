#!/usr/bin/env python3
"""Exception Hierarchy for the TripWeaver orchestration core.

Design Principles:
    - All exceptions inherit from TripWeaverError base class
    - Exceptions preserve context (original error, timestamps, details)
    - Exceptions are categorized by recoverability
    - Only ConfigurationError is expected to reach a caller of the core;
      everything else is handled inside the request pipeline

Exception Hierarchy:
    TripWeaverError (base)
    ├── ConfigurationError (unrecoverable - fix config)
    ├── AmbiguousIntentError (handled by disambiguation)
    ├── ProviderError
    │   ├── ProviderCallError (recoverable - retry)
    │   │   ├── NetworkError
    │   │   ├── RateLimitError
    │   │   ├── ServerError
    │   │   └── ProviderTimeoutError
    │   ├── CircuitOpenError
    │   └── ProviderUnavailableError
    ├── WorkflowError
    │   ├── PlanValidationError
    │   ├── StepFailedError
    │   └── ReplanningExhaustedError
    └── LearningUpdateFailedError
"""
from datetime import datetime
from typing import Any, Optional

# ============================================
# Base Exception
# ============================================

class TripWeaverError(Exception):
    """Base exception for all orchestration errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code (e.g., "STEP_FAILED")
        details: Additional context as a dictionary
        timestamp: When the error occurred
        cause: The original exception that caused this error
        recoverable: Whether this error might be recoverable with retry
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        recoverable: bool = False,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.__class__.__name__.upper()
        self.details = details or {}
        self.timestamp = datetime.utcnow()
        self.cause = cause
        self.recoverable = recoverable

        if cause:
            self.__cause__ = cause

    def __str__(self) -> str:
        parts = [self.message]
        if self.code:
            parts.insert(0, f"[{self.code}]")
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            parts.append(f"({detail_str})")
        return " ".join(parts)

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"code={self.code!r}, "
            f"details={self.details!r}, "
            f"recoverable={self.recoverable})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "code": self.code,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
            "recoverable": self.recoverable,
            "cause": str(self.cause) if self.cause else None,
        }


# ============================================
# Configuration Errors (Unrecoverable)
# ============================================

class ConfigurationError(TripWeaverError):
    """Raised when configuration or component wiring is invalid."""

    def __init__(
        self,
        message: str,
        invalid_keys: Optional[list[str]] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if invalid_keys:
            details["invalid_keys"] = invalid_keys
        super().__init__(
            message,
            code="CONFIGURATION_ERROR",
            details=details,
            recoverable=False,
            **kwargs,
        )


# ============================================
# Intent Errors
# ============================================

class AmbiguousIntentError(TripWeaverError):
    """Raised when no intent clears the coherence threshold.

    Never surfaced raw: the workflow layer answers it with a
    disambiguation step.
    """

    def __init__(
        self,
        message: str = "Intent could not be resolved",
        candidates: Optional[list[str]] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if candidates:
            details["candidates"] = candidates
        super().__init__(
            message,
            code="AMBIGUOUS_INTENT",
            details=details,
            recoverable=True,
            **kwargs,
        )
        self.candidates = candidates or []


# ============================================
# Provider Errors
# ============================================

class ProviderError(TripWeaverError):
    """Base class for generation-backend errors.

    Attributes:
        provider_id: Provider that raised the error (if known)
    """

    def __init__(self, message: str, provider_id: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        if provider_id:
            details["provider_id"] = provider_id
        super().__init__(message, details=details, **kwargs)
        self.provider_id = provider_id


class ProviderCallError(ProviderError):
    """A single backend call failed in a way worth retrying."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("recoverable", True)
        kwargs.setdefault("code", "PROVIDER_CALL_ERROR")
        super().__init__(message, **kwargs)


class NetworkError(ProviderCallError):
    """Raised when the backend cannot be reached."""

    def __init__(self, message: str = "Failed to reach provider", **kwargs):
        kwargs.setdefault("code", "NETWORK_ERROR")
        super().__init__(message, **kwargs)


class RateLimitError(ProviderCallError):
    """Raised when the backend rate limits us (HTTP 429).

    Attributes:
        retry_after: Seconds to wait before retrying
    """

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        retry_after: Optional[float] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if retry_after:
            details["retry_after_seconds"] = retry_after
        super().__init__(
            message,
            code="RATE_LIMIT_EXCEEDED",
            details=details,
            **kwargs,
        )
        self.retry_after = retry_after


class ServerError(ProviderCallError):
    """Raised when the backend returns a 5xx error."""

    def __init__(
        self,
        message: str = "Provider server error",
        status_code: int = 500,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        details["status_code"] = status_code
        super().__init__(
            message,
            code="SERVER_ERROR",
            details=details,
            **kwargs,
        )
        self.status_code = status_code


class ProviderTimeoutError(ProviderCallError):
    """Raised when a backend call exceeds its timeout."""

    def __init__(
        self,
        message: str = "Provider call timed out",
        timeout_seconds: Optional[float] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if timeout_seconds:
            details["timeout_seconds"] = timeout_seconds
        super().__init__(
            message,
            code="PROVIDER_TIMEOUT",
            details=details,
            **kwargs,
        )


class CircuitOpenError(ProviderError):
    """Raised when circuit breaker is open and requests are being rejected.

    Attributes:
        reset_at: When the circuit breaker will allow a probe request
    """

    def __init__(
        self,
        message: str = "Circuit breaker is open, requests rejected",
        reset_at: Optional[datetime] = None,
        failure_count: int = 0,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if reset_at:
            details["reset_at"] = reset_at.isoformat()
        details["failure_count"] = failure_count

        super().__init__(
            message,
            code="CIRCUIT_OPEN",
            details=details,
            recoverable=True,
            **kwargs,
        )
        self.reset_at = reset_at
        self.failure_count = failure_count


class ProviderUnavailableError(ProviderError):
    """Raised when every matching provider is open or exhausted its retries."""

    def __init__(
        self,
        message: str = "No provider available",
        capability_tag: Optional[str] = None,
        attempted: Optional[list[str]] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if capability_tag:
            details["capability_tag"] = capability_tag
        if attempted is not None:
            details["attempted"] = attempted
        super().__init__(
            message,
            code="PROVIDER_UNAVAILABLE",
            details=details,
            recoverable=True,
            **kwargs,
        )
        self.capability_tag = capability_tag
        self.attempted = attempted or []


# ============================================
# Workflow Errors
# ============================================

class WorkflowError(TripWeaverError):
    """Base class for plan synthesis and execution errors."""


class PlanValidationError(WorkflowError):
    """Raised when a plan has unknown dependencies or a cycle."""

    def __init__(self, message: str, step_id: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        if step_id:
            details["step_id"] = step_id
        super().__init__(
            message,
            code="PLAN_INVALID",
            details=details,
            recoverable=False,
            **kwargs,
        )


class StepFailedError(WorkflowError):
    """Raised when a step exhausts its retry policy.

    Attributes:
        step_id: The failed step
        attempts: How many attempts were made
    """

    def __init__(
        self,
        message: str,
        step_id: str,
        attempts: int = 1,
        required: bool = True,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        details["step_id"] = step_id
        details["attempts"] = attempts
        details["required"] = required
        super().__init__(
            message,
            code="STEP_FAILED",
            details=details,
            recoverable=not required,
            **kwargs,
        )
        self.step_id = step_id
        self.attempts = attempts
        self.required = required


class ReplanningExhaustedError(WorkflowError):
    """Raised when contingency re-planning hits its revision cap."""

    def __init__(self, message: str = "Re-planning limit reached", revision: int = 0, **kwargs):
        details = kwargs.pop("details", {})
        details["revision"] = revision
        super().__init__(
            message,
            code="REPLANNING_EXHAUSTED",
            details=details,
            recoverable=False,
            **kwargs,
        )
        self.revision = revision


# ============================================
# Learning Errors (Non-fatal)
# ============================================

class LearningUpdateFailedError(TripWeaverError):
    """Raised when a learning-state update cannot be applied or persisted.

    Always logged and skipped; never affects an in-flight response.
    """

    def __init__(self, message: str, key: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        if key:
            details["key"] = key
        super().__init__(
            message,
            code="LEARNING_UPDATE_FAILED",
            details=details,
            recoverable=True,
            **kwargs,
        )
        self.key = key


__all__ = [
    "TripWeaverError",
    "ConfigurationError",
    "AmbiguousIntentError",
    "ProviderError",
    "ProviderCallError",
    "NetworkError",
    "RateLimitError",
    "ServerError",
    "ProviderTimeoutError",
    "CircuitOpenError",
    "ProviderUnavailableError",
    "WorkflowError",
    "PlanValidationError",
    "StepFailedError",
    "ReplanningExhaustedError",
    "LearningUpdateFailedError",
]
