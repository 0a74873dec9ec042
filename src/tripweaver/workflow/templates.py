"""
Intent workflow templates.

Each template lists the steps for one intent and which step outputs become
the response message. Agent steps whose capability is not registered are
dropped at synthesis time, so disabling an agent only removes its steps.

trip_planning:

    memory_recall ──> itinerary ──┬─> carbon_estimate
    preference_update             ├─> tone_adaptation
    peer_matching                 ├─> memory_capture
                                  └─> backup_plans
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from ..domain.capabilities import (
    BOOKING_ASSISTANCE,
    BUDGET_ANALYSIS,
    CARBON_ESTIMATION,
    CONTINGENCY_REPLANNING,
    CROSS_SESSION_MEMORY,
    EMERGENCY_GUIDANCE,
    EMOTIONAL_ADAPTATION,
    GENERAL_GENERATION,
    ITINERARY_GENERATION,
    LOCAL_GUIDANCE,
    MEMORY_CAPTURE,
    PEER_MATCHING,
    PREFERENCE_INFERENCE,
)
from ..domain.entities import GENERAL_INQUIRY, StepKind

DISAMBIGUATION_STEP_ID = "disambiguation"

SYSTEM_PROMPT = (
    "You are a friendly, practical travel assistant. Answer concisely, "
    "respect the traveller's budget and time, and prefer lower-carbon options "
    "when they are reasonable."
)


@dataclass(frozen=True)
class StepBlueprint:
    """Template for one step; turned into a ``Step`` by the synthesizer.

    Attributes:
        step_id: Step id within the plan
        kind: Agent or provider step
        capability_tag: Capability to invoke
        depends_on: Upstream step ids
        required: Failure aborts the plan
        side_effect_free: Result may be served from the plan cache
        instruction: Prompt instruction (provider steps only)
        quality_floor: Minimum provider quality (provider steps only)
        timeout_seconds: Per-attempt timeout override
        max_attempts: Retry attempts override
    """

    step_id: str
    kind: StepKind
    capability_tag: str
    depends_on: tuple[str, ...] = ()
    required: bool = False
    side_effect_free: bool = True
    instruction: Optional[str] = None
    quality_floor: float = 0.0
    timeout_seconds: Optional[float] = None
    max_attempts: Optional[int] = None


@dataclass(frozen=True)
class IntentTemplate:
    intent: str
    steps: tuple[StepBlueprint, ...]
    response_steps: tuple[str, ...] = field(default_factory=tuple)


def _agent(step_id: str, tag: str, *depends_on: str, side_effect_free: bool = True) -> StepBlueprint:
    return StepBlueprint(
        step_id=step_id,
        kind=StepKind.AGENT,
        capability_tag=tag,
        depends_on=depends_on,
        side_effect_free=side_effect_free,
    )


def _provider(
    step_id: str,
    tag: str,
    instruction: str,
    *depends_on: str,
    quality_floor: float = 0.0,
    timeout_seconds: Optional[float] = None,
) -> StepBlueprint:
    return StepBlueprint(
        step_id=step_id,
        kind=StepKind.PROVIDER,
        capability_tag=tag,
        depends_on=depends_on,
        required=True,
        instruction=instruction,
        quality_floor=quality_floor,
        timeout_seconds=timeout_seconds,
    )


# Steps shared by most templates
_MEMORY_RECALL = _agent("memory_recall", CROSS_SESSION_MEMORY)
_PREFERENCE_UPDATE = _agent("preference_update", PREFERENCE_INFERENCE, side_effect_free=False)
_PEER_MATCHING = _agent("peer_matching", PEER_MATCHING)


def _follow_ups(primary: str, carbon: bool = False, capture: bool = False, backups: bool = False):
    steps = [_agent("tone_adaptation", EMOTIONAL_ADAPTATION, primary)]
    if carbon:
        steps.append(_agent("carbon_estimate", CARBON_ESTIMATION, primary))
    if capture:
        steps.append(_agent("memory_capture", MEMORY_CAPTURE, primary, side_effect_free=False))
    if backups:
        steps.append(_agent("backup_plans", CONTINGENCY_REPLANNING, primary))
    return tuple(steps)


def _guidance_template(intent: str, instruction: str) -> IntentTemplate:
    return IntentTemplate(
        intent=intent,
        steps=(
            _PREFERENCE_UPDATE,
            _MEMORY_RECALL,
            _provider("guidance", LOCAL_GUIDANCE, instruction, "memory_recall"),
            *_follow_ups("guidance"),
        ),
        response_steps=("tone_adaptation", "guidance"),
    )


TEMPLATES: dict[str, IntentTemplate] = {
    "trip_planning": IntentTemplate(
        intent="trip_planning",
        steps=(
            _MEMORY_RECALL,
            _PREFERENCE_UPDATE,
            _PEER_MATCHING,
            _provider(
                "itinerary",
                ITINERARY_GENERATION,
                "Create a day-by-day itinerary for this trip.",
                "memory_recall",
                quality_floor=0.5,
            ),
            *_follow_ups("itinerary", carbon=True, capture=True, backups=True),
        ),
        response_steps=("tone_adaptation", "itinerary"),
    ),
    "book_flight": IntentTemplate(
        intent="book_flight",
        steps=(
            _MEMORY_RECALL,
            _PREFERENCE_UPDATE,
            _provider(
                "booking",
                BOOKING_ASSISTANCE,
                "Suggest suitable flight options and what to check before booking.",
                "memory_recall",
            ),
            *_follow_ups("booking", carbon=True, capture=True, backups=True),
        ),
        response_steps=("tone_adaptation", "booking"),
    ),
    "book_hotel": IntentTemplate(
        intent="book_hotel",
        steps=(
            _MEMORY_RECALL,
            _PREFERENCE_UPDATE,
            _provider(
                "booking",
                BOOKING_ASSISTANCE,
                "Suggest suitable places to stay and what to check before booking.",
                "memory_recall",
            ),
            *_follow_ups("booking", capture=True, backups=True),
        ),
        response_steps=("tone_adaptation", "booking"),
    ),
    "budget_inquiry": IntentTemplate(
        intent="budget_inquiry",
        steps=(
            _PREFERENCE_UPDATE,
            _provider(
                "budget_breakdown",
                BUDGET_ANALYSIS,
                "Break down the expected costs and suggest where to save.",
            ),
            *_follow_ups("budget_breakdown"),
        ),
        response_steps=("tone_adaptation", "budget_breakdown"),
    ),
    "get_recommendations": _guidance_template(
        "get_recommendations", "Recommend places and activities that fit this traveller."
    ),
    "check_weather": _guidance_template(
        "check_weather", "Describe the typical weather and what to pack."
    ),
    "find_restaurants": _guidance_template(
        "find_restaurants", "Suggest places to eat and dishes worth trying."
    ),
    "cultural_info": _guidance_template(
        "cultural_info", "Explain the local customs, etiquette and cultural highlights."
    ),
    "emergency_help": IntentTemplate(
        intent="emergency_help",
        steps=(
            _provider(
                "guidance",
                EMERGENCY_GUIDANCE,
                "Give calm, step-by-step guidance for this travel emergency.",
            ),
            _agent("tone_adaptation", EMOTIONAL_ADAPTATION, "guidance"),
        ),
        response_steps=("tone_adaptation", "guidance"),
    ),
    GENERAL_INQUIRY: IntentTemplate(
        intent=GENERAL_INQUIRY,
        steps=(
            _provider("answer", GENERAL_GENERATION, "Answer the traveller's question helpfully."),
            _agent("tone_adaptation", EMOTIONAL_ADAPTATION, "answer"),
        ),
        response_steps=("tone_adaptation", "answer"),
    ),
}

def get_template(intent: str) -> IntentTemplate:
    """Template for ``intent`` (general_inquiry for unknown intents)."""
    return TEMPLATES.get(intent, TEMPLATES[GENERAL_INQUIRY])


__all__ = [
    "DISAMBIGUATION_STEP_ID",
    "SYSTEM_PROMPT",
    "IntentTemplate",
    "StepBlueprint",
    "TEMPLATES",
    "get_template",
]
