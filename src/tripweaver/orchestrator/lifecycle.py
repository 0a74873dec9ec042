"""
Request lifecycle state machine.

    RECEIVED ──┬─> INTENT_RESOLVED ──┐
               └─> INTENT_AMBIGUOUS ─┴─> PLAN_SYNTHESIZED ─> EXECUTING ─┬─> COMPLETED
                                                                  ▲      ├─> FAILED
                                                                  └──────┤   (re-plan)
                                                                         └─> CANCELLED

Any non-terminal state may move to FAILED or CANCELLED.
"""

from __future__ import annotations

import logging
from datetime import datetime
from enum import Enum

from ..exceptions import WorkflowError

logger = logging.getLogger(__name__)


class RequestState(str, Enum):
    RECEIVED = "received"
    INTENT_RESOLVED = "intent_resolved"
    INTENT_AMBIGUOUS = "intent_ambiguous"
    PLAN_SYNTHESIZED = "plan_synthesized"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATES = frozenset({RequestState.COMPLETED, RequestState.FAILED, RequestState.CANCELLED})

_TRANSITIONS: dict[RequestState, frozenset[RequestState]] = {
    RequestState.RECEIVED: frozenset(
        {RequestState.INTENT_RESOLVED, RequestState.INTENT_AMBIGUOUS}
    ),
    RequestState.INTENT_RESOLVED: frozenset({RequestState.PLAN_SYNTHESIZED}),
    RequestState.INTENT_AMBIGUOUS: frozenset({RequestState.PLAN_SYNTHESIZED}),
    RequestState.PLAN_SYNTHESIZED: frozenset({RequestState.EXECUTING}),
    # A contingency re-plan goes back to PLAN_SYNTHESIZED
    RequestState.EXECUTING: frozenset(
        {RequestState.COMPLETED, RequestState.PLAN_SYNTHESIZED}
    ),
}


class IllegalTransitionError(WorkflowError):
    """Raised on a transition the lifecycle does not allow."""

    def __init__(self, current: RequestState, target: RequestState):
        super().__init__(
            f"Illegal transition {current.value} -> {target.value}",
            code="ILLEGAL_TRANSITION",
            details={"from": current.value, "to": target.value},
        )
        self.current = current
        self.target = target


class RequestLifecycle:
    """Tracks one request through its states.

    Example:
        lifecycle = RequestLifecycle(request_id)
        lifecycle.transition(RequestState.INTENT_RESOLVED)
    """

    def __init__(self, request_id: str):
        self.request_id = request_id
        self.state = RequestState.RECEIVED
        self.history: list[tuple[RequestState, datetime]] = [
            (RequestState.RECEIVED, datetime.utcnow())
        ]

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def can_transition(self, target: RequestState) -> bool:
        if self.is_terminal:
            return False
        if target in (RequestState.FAILED, RequestState.CANCELLED):
            return True
        return target in _TRANSITIONS.get(self.state, frozenset())

    def transition(self, target: RequestState) -> None:
        """Move to ``target``.

        Raises:
            IllegalTransitionError: If the move is not allowed
        """
        if not self.can_transition(target):
            raise IllegalTransitionError(self.state, target)
        logger.debug(f"Request {self.request_id}: {self.state.value} -> {target.value}")
        self.state = target
        self.history.append((target, datetime.utcnow()))


__all__ = ["IllegalTransitionError", "RequestLifecycle", "RequestState", "TERMINAL_STATES"]
