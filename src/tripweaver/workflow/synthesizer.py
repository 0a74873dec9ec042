"""
Workflow synthesizer.

Builds a ``WorkflowPlan`` from an intent hypothesis set and the intent's
template, then hands execution to the ``WorkflowExecutor``. Plans for the
same user, intent, slots and utterance share a signature, which keys the plan
result cache.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
from typing import Any, Optional

from ..agents.registry import AgentRegistry
from ..config import WorkflowConfig
from ..domain.entities import (
    AggregatedResult,
    ComponentHealth,
    IntentHypothesisSet,
    RequestContext,
    RetryPolicy,
    Step,
    StepKind,
    WorkflowPlan,
)
from ..exceptions import AmbiguousIntentError
from ..intent.lexicon import normalize_text
from ..providers.cache import ResponseCache
from ..providers.manager import ProviderManager
from .executor import WorkflowExecutor
from .templates import DISAMBIGUATION_STEP_ID, SYSTEM_PROMPT, StepBlueprint, get_template

logger = logging.getLogger(__name__)


def _describe_slots(slots: dict[str, Any]) -> list[str]:
    lines = []
    if slots.get("destination"):
        lines.append(f"Destination: {slots['destination']}")
    if slots.get("duration_days"):
        lines.append(f"Duration: {slots['duration_days']} days")
    if slots.get("travelers"):
        lines.append(f"Travelers: {slots['travelers']}")
    if slots.get("budget"):
        currency = slots.get("currency", "USD")
        lines.append(f"Keep the total cost under {currency} {slots['budget']:g}")
    return lines


class WorkflowSynthesizer:
    """Plan synthesis plus execution.

    Example:
        synthesizer = WorkflowSynthesizer(registry, provider_manager)
        plan = synthesizer.synthesize(hypotheses, context)
        result = await synthesizer.execute(plan, context)
    """

    def __init__(
        self,
        agents: AgentRegistry,
        providers: ProviderManager,
        config: Optional[WorkflowConfig] = None,
        plan_cache: Optional[ResponseCache] = None,
    ):
        self.agents = agents
        self.providers = providers
        self.config = config or WorkflowConfig()
        self.executor = WorkflowExecutor(agents, providers, self.config, plan_cache)
        self._plans_synthesized = 0

    # ============================================
    # Synthesis
    # ============================================

    def synthesize(self, hypotheses: IntentHypothesisSet, context: RequestContext) -> WorkflowPlan:
        """Build the plan for ``hypotheses``.

        Unresolved hypothesis sets get a disambiguation step that every root
        step of the template depends on.

        Raises:
            PlanValidationError: If the template yields an invalid graph
        """
        intent = hypotheses.intent
        template = get_template(intent)
        slots = dict(hypotheses.slots)

        blueprints = [bp for bp in template.steps if self._available(bp)]
        kept = {bp.step_id for bp in blueprints}
        dropped = [bp.step_id for bp in template.steps if bp.step_id not in kept]
        if dropped:
            logger.debug(f"Dropping steps without a registered agent: {dropped}")

        steps: list[Step] = []
        if not hypotheses.is_resolved:
            ambiguity = AmbiguousIntentError(
                candidates=hypotheses.labels(),
                details={"coherence": round(hypotheses.coherence, 3)},
            )
            logger.info(f"Request {context.request_id}: {ambiguity}")
            steps.append(
                Step(
                    step_id=DISAMBIGUATION_STEP_ID,
                    name="Clarify intent",
                    kind=StepKind.DISAMBIGUATION,
                    capability_tag="disambiguation",
                    payload={"candidates": ambiguity.candidates},
                )
            )

        for bp in blueprints:
            depends_on = tuple(d for d in bp.depends_on if d in kept)
            if not hypotheses.is_resolved and not depends_on:
                depends_on = (DISAMBIGUATION_STEP_ID,)
            steps.append(
                self._build_step(bp, depends_on, intent, slots, context, hypotheses.language)
            )

        plan = WorkflowPlan(
            request_id=context.request_id,
            intent=intent,
            steps=steps,
            signature=self.signature(context, intent, slots, steps),
            max_parallel_nodes=self.config.max_parallel_nodes,
            slots=slots,
            response_steps=tuple(s for s in template.response_steps if s in kept),
        )
        self._plans_synthesized += 1
        logger.info(
            f"Synthesized plan {plan.plan_id} for '{intent}' "
            f"({len(steps)} steps, resolved={hypotheses.is_resolved})"
        )
        return plan

    def _available(self, bp: StepBlueprint) -> bool:
        return bp.kind != StepKind.AGENT or bp.capability_tag in self.agents

    def _build_step(
        self,
        bp: StepBlueprint,
        depends_on: tuple[str, ...],
        intent: str,
        slots: dict[str, Any],
        context: RequestContext,
        language: str = "en",
    ) -> Step:
        side_effect_free = bp.side_effect_free
        max_attempts = bp.max_attempts or self.config.default_max_attempts
        if bp.kind == StepKind.AGENT:
            agent = self.agents.get(bp.capability_tag)
            if agent is not None and agent.mutates_state:
                # A retry would apply the write twice
                side_effect_free = False
                max_attempts = 1

        retry_policy = RetryPolicy(
            max_attempts=max_attempts,
            backoff_factor=self.config.default_backoff_factor,
            initial_delay=self.config.default_initial_delay,
        )

        if bp.kind == StepKind.PROVIDER:
            prompt_lines = [bp.instruction or "", "", f"Traveller request: {context.utterance}"]
            prompt_lines.extend(_describe_slots(slots))
            if language == "ar":
                prompt_lines.append("Reply in Arabic.")
            payload = {
                "prompt": "\n".join(prompt_lines).strip(),
                "system_prompt": SYSTEM_PROMPT,
                "intent": intent,
                "slots": slots,
                "max_tokens": 800,
            }
            # Provider calls are bounded by the provider manager's own timeout
            timeout = bp.timeout_seconds
        else:
            payload = {}
            timeout = bp.timeout_seconds or self.config.default_step_timeout

        return Step(
            step_id=bp.step_id,
            name=bp.step_id.replace("_", " "),
            kind=bp.kind,
            capability_tag=bp.capability_tag,
            depends_on=depends_on,
            required=bp.required,
            side_effect_free=side_effect_free,
            retry_policy=retry_policy,
            timeout_seconds=timeout,
            payload=payload,
            quality_floor=bp.quality_floor,
        )

    @staticmethod
    def signature(
        context: RequestContext,
        intent: str,
        slots: dict[str, Any],
        steps: list[Step],
    ) -> str:
        """Plan signature: user, intent, slots, utterance and step layout."""
        layout = [
            [s.step_id, s.kind.value, s.capability_tag, list(s.depends_on)]
            for s in steps
        ]
        material = json.dumps(
            {
                "user": context.user_id,
                "intent": intent,
                "slots": slots,
                "utterance": normalize_text(context.utterance),
                "layout": layout,
            },
            sort_keys=True,
            default=str,
        )
        return hashlib.sha256(material.encode()).hexdigest()

    # ============================================
    # Execution
    # ============================================

    async def execute(
        self,
        plan: WorkflowPlan,
        context: RequestContext,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> AggregatedResult:
        return await self.executor.execute(plan, context, cancel_event)

    def get_metrics(self) -> dict[str, Any]:
        metrics = self.executor.get_metrics()
        metrics["plans_synthesized"] = self._plans_synthesized
        return metrics

    def health_check(self) -> ComponentHealth:
        return self.executor.health_check()

    def cleanup(self) -> int:
        return self.executor.cleanup()


__all__ = ["WorkflowSynthesizer"]
