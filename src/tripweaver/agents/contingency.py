"""
Contingency replanner.

Two jobs:
    - As a capability agent, emit backup plans for the trip (what to do if
      the weather turns, transport is disrupted, and so on).
    - After a plan fails, build a revised plan that routes failed required
      generation steps to the general generation capability and drops failed
      optional steps. Steps that already succeeded keep their results and
      are not run again. Revisions are capped so re-planning cannot loop.
"""

from __future__ import annotations

import dataclasses
import logging
from typing import Any

from ..domain.capabilities import CONTINGENCY_REPLANNING, GENERAL_GENERATION
from ..domain.entities import (
    AggregatedResult,
    BackupPlan,
    RetryPolicy,
    Step,
    StepContext,
    StepKind,
    StepResult,
    StepStatus,
    WorkflowPlan,
)
from ..exceptions import ReplanningExhaustedError
from .base import BaseCapabilityAgent

logger = logging.getLogger(__name__)


def build_backup_plans(intent: str, slots: dict[str, Any]) -> list[BackupPlan]:
    """Backup plans for a trip, most likely trigger first."""
    destination = slots.get("destination", "your destination")
    plans = [
        BackupPlan(
            trigger="weather_change",
            alternative=f"Swap outdoor sightseeing in {destination} for museums, markets and indoor tours",
            confidence=0.8,
        ),
        BackupPlan(
            trigger="transport_disruption",
            alternative="Rebook on the next rail connection or a flexible-fare flight",
            confidence=0.7,
        ),
    ]
    if intent in ("trip_planning", "book_hotel"):
        plans.append(
            BackupPlan(
                trigger="accommodation_unavailable",
                alternative=f"Hold a refundable option in a neighbouring district of {destination}",
                confidence=0.65,
            )
        )
    if slots.get("budget"):
        plans.append(
            BackupPlan(
                trigger="budget_overrun",
                alternative="Switch to self-catering stays and free walking tours for the remaining days",
                confidence=0.6,
            )
        )
    return plans


class ContingencyReplanner(BaseCapabilityAgent):
    """Backup plans and capped contingency re-planning.

    Args:
        max_revisions: Highest plan revision ``replan`` will produce
    """

    tags = frozenset({CONTINGENCY_REPLANNING})

    def __init__(self, max_revisions: int = 2):
        self.max_revisions = max_revisions

    async def handle(self, step: Step, context: StepContext) -> StepResult:
        plans = build_backup_plans(context.intent, context.slots)
        return self._succeeded(
            step,
            {"backup_plans": [p.to_dict() for p in plans]},
            backup_plans=plans,
        )

    def replan(self, plan: WorkflowPlan, result: AggregatedResult) -> WorkflowPlan:
        """Build revision ``plan.revision + 1`` around the failed steps.

        Raises:
            ReplanningExhaustedError: If ``max_revisions`` has been reached
        """
        if plan.revision >= self.max_revisions:
            raise ReplanningExhaustedError(
                f"Plan {plan.plan_id} reached revision cap {self.max_revisions}",
                revision=plan.revision,
            )

        failed = {
            sid
            for sid, r in result.step_results.items()
            if r.status == StepStatus.FAILED
        }
        dropped = {
            sid for sid in failed if not plan.get_step(sid).required
        }

        steps: list[Step] = []
        for step in plan.steps:
            if step.step_id in dropped:
                continue
            depends_on = tuple(d for d in step.depends_on if d not in dropped)

            if step.step_id in failed and step.kind == StepKind.PROVIDER:
                step = dataclasses.replace(
                    step,
                    capability_tag=GENERAL_GENERATION,
                    quality_floor=0.0,
                    depends_on=depends_on,
                    payload={**step.payload, "replanned_from": step.capability_tag},
                )
            elif step.step_id in failed:
                # A required agent step that failed is allowed to fail next time
                step = dataclasses.replace(
                    step,
                    required=False,
                    depends_on=depends_on,
                    retry_policy=RetryPolicy(max_attempts=1),
                )
            else:
                step = dataclasses.replace(step, depends_on=depends_on)
            steps.append(step)

        # Succeeded steps are not run again; their cost was already paid
        kept = {s.step_id for s in steps}
        carried = {
            sid: dataclasses.replace(r, cost=0.0, latency_ms=0.0, attempts=0)
            for sid, r in result.step_results.items()
            if r.succeeded and sid in kept
        }

        revision = plan.revision + 1
        logger.info(
            f"Re-planned {plan.plan_id} as revision {revision}: "
            f"rerouted={sorted(failed - dropped)}, dropped={sorted(dropped)}, "
            f"carried={sorted(carried)}"
        )
        return WorkflowPlan(
            request_id=plan.request_id,
            intent=plan.intent,
            steps=steps,
            signature=f"{plan.signature}:r{revision}",
            revision=revision,
            max_parallel_nodes=plan.max_parallel_nodes,
            slots=dict(plan.slots),
            response_steps=tuple(s for s in plan.response_steps if s not in dropped),
            carried_results=carried,
        )
