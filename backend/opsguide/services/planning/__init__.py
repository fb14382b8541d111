"""Step planning: fixed task plans and shared step derivation rules."""
from opsguide.services.planning.step_planner import (
    StepPlanner,
    extract_steps_from_reasoning,
    get_step_planner,
    template_for,
)
from opsguide.services.planning.step_rules import (
    derive_step_metadata,
    derive_step_type,
    is_auto_executable,
    requires_approval,
    resolve_endpoint,
)

__all__ = [
    "StepPlanner",
    "extract_steps_from_reasoning",
    "get_step_planner",
    "template_for",
    "derive_step_metadata",
    "derive_step_type",
    "is_auto_executable",
    "requires_approval",
    "resolve_endpoint",
]
