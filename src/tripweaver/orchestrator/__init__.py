"""Request orchestration: lifecycle state machine and the orchestration core."""

from .core import OrchestrationCore
from .lifecycle import IllegalTransitionError, RequestLifecycle, RequestState, TERMINAL_STATES

__all__ = [
    "OrchestrationCore",
    "IllegalTransitionError",
    "RequestLifecycle",
    "RequestState",
    "TERMINAL_STATES",
]
