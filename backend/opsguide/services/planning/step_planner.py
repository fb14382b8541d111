"""
Deterministic remediation plans per task.

Each plan carries a description, runbook path, API spec path and four ordered
steps; step metadata is derived from the step names by the shared step rules.
"""
import re
from typing import Dict, List, NamedTuple, Optional, Sequence, Tuple

from opsguide.core.logging import get_logger
from opsguide.models.domain import StepPlan, TaskId
from opsguide.services.planning.step_rules import derive_step_metadata

logger = get_logger(__name__)

RUNBOOK_DIR = "knowledge/runbooks"
API_SPEC_DIR = "knowledge/api-specs"

NUMBERED_STEP_PATTERN = re.compile(r"^\d+\.\s+(.+)$")


class PlanTemplate(NamedTuple):
    description: str
    runbook: str
    api_spec: str
    steps: Tuple[str, ...]


def _template(description: str, runbook: str, api_spec: str, *steps: str) -> PlanTemplate:
    return PlanTemplate(
        description=description,
        runbook=f"{RUNBOOK_DIR}/{runbook}",
        api_spec=f"{API_SPEC_DIR}/{api_spec}",
        steps=steps,
    )


PLAN_TEMPLATES: Dict[TaskId, PlanTemplate] = {
    TaskId.CANCEL_ORDER: _template(
        "Order cancellation request identified",
        "cancel-order-runbook.md",
        "order-management-api.md",
        "Validate order exists and is cancellable",
        "Check user permissions",
        "Execute cancellation via API",
        "Verify cancellation completed",
    ),
    TaskId.UPDATE_ORDER_STATUS: _template(
        "Order status update request identified",
        "update-order-status-runbook.md",
        "order-management-api.md",
        "Validate order exists",
        "Check status transition is valid",
        "Update order status via API",
        "Verify status change completed",
    ),
    TaskId.CANCEL_CASE: _template(
        "Case cancellation request identified",
        "cancel-case-runbook.md",
        "case-management-api.md",
        "Validate case exists and is cancellable",
        "Check user permissions",
        "Execute cancellation via API",
        "Verify cancellation completed",
    ),
    TaskId.UPDATE_CASE_STATUS: _template(
        "Case status update request identified",
        "update-case-status-runbook.md",
        "case-management-api.md",
        "Validate case exists",
        "Check status transition is valid",
        "Update case status via API",
        "Verify status change completed",
    ),
    TaskId.UPDATE_SAMPLES: _template(
        "Sample update request identified",
        "update-samples-runbook.md",
        "sample-management-api.md",
        "Validate case and samples exist",
        "Check sample update permissions",
        "Execute sample update via API",
        "Verify sample update completed",
    ),
    TaskId.UPDATE_STAIN: _template(
        "Stain update request identified",
        "update-stain-runbook.md",
        "slide-management-api.md",
        "Validate slide and stain exist",
        "Check stain update permissions",
        "Execute stain update via API",
        "Verify stain update completed",
    ),
}

GENERIC_TEMPLATE = _template(
    "Generic operational request identified",
    "generic-operation-runbook.md",
    "generic-api.md",
    "Analyze request requirements",
    "Identify target system and API",
    "Execute operation via appropriate API",
    "Verify operation completed successfully",
)


def template_for(task_id: Optional[TaskId]) -> PlanTemplate:
    """Plan template for a task; None and GENERIC_OPERATION get the generic plan."""
    if task_id is None:
        return GENERIC_TEMPLATE
    return PLAN_TEMPLATES.get(task_id, GENERIC_TEMPLATE)


def extract_steps_from_reasoning(text: Optional[str]) -> List[str]:
    """
    Pull numbered steps ("1. Do X") out of free-form reasoning text.

    Lines are trimmed before matching and the number prefix is dropped.
    """
    if not text:
        return []
    steps = []
    for line in text.splitlines():
        match = NUMBERED_STEP_PATTERN.match(line.strip())
        if match:
            steps.append(match.group(1).strip())
    return steps


class StepPlanner:
    """Builds StepPlans from fixed templates or externally supplied step names."""

    def plan(self, task_id: Optional[TaskId]) -> StepPlan:
        template = template_for(task_id)
        return self.plan_from_steps(
            task_id,
            template.steps,
            description=template.description,
            runbook=template.runbook,
        )

    def plan_from_steps(
        self,
        task_id: Optional[TaskId],
        steps: Sequence[str],
        description: Optional[str] = None,
        runbook: Optional[str] = None,
    ) -> StepPlan:
        """
        Build a plan around the given step names.

        Description and runbook default to the task's template; the API spec
        always comes from the template.
        """
        template = template_for(task_id)
        step_names = list(steps) or list(template.steps)
        plan = StepPlan(
            description=description or template.description,
            runbook=runbook or template.runbook,
            api_spec=template.api_spec,
            steps=step_names,
            step_metadata=[derive_step_metadata(name, task_id) for name in step_names],
        )
        logger.debug(
            "step_plan_built",
            task_id=task_id.value if task_id else None,
            step_count=len(step_names),
        )
        return plan


_step_planner: Optional[StepPlanner] = None


def get_step_planner() -> StepPlanner:
    """Global singleton accessor."""
    global _step_planner
    if _step_planner is None:
        _step_planner = StepPlanner()
    return _step_planner
