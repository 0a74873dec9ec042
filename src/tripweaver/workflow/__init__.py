"""Workflow synthesis and dependency-scheduled execution."""

from .executor import WorkflowExecutor
from .synthesizer import WorkflowSynthesizer
from .templates import (
    DISAMBIGUATION_STEP_ID,
    SYSTEM_PROMPT,
    TEMPLATES,
    IntentTemplate,
    StepBlueprint,
    get_template,
)

__all__ = [
    "WorkflowExecutor",
    "WorkflowSynthesizer",
    "DISAMBIGUATION_STEP_ID",
    "SYSTEM_PROMPT",
    "TEMPLATES",
    "IntentTemplate",
    "StepBlueprint",
    "get_template",
]
