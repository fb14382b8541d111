"""
Step derivation rules shared by the planner and the execution engine.

All derivations work on the lower-cased step name and are expressed as ordered
(value, predicate) tables; the first matching rule wins.
"""
from typing import Any, Callable, Dict, FrozenSet, NamedTuple, Optional, Tuple

from opsguide.models.domain import StepMetadata, StepType, TaskId

Predicate = Callable[[str], bool]

ACTION_CANCEL = "cancel"
ACTION_UPDATE = "update"

CANCEL_PARAMETERS: Dict[str, Any] = {
    "reason": "operational_request",
    "notify_stakeholders": True,
}


def _contains(*words: str) -> Predicate:
    return lambda name: any(word in name for word in words)


STEP_TYPE_RULES: Tuple[Tuple[StepType, Predicate], ...] = (
    (StepType.VALIDATION, lambda n: "validate" in n or ("check" in n and "exist" in n)),
    (StepType.PERMISSION_CHECK, _contains("permission")),
    (StepType.API_EXECUTION, _contains("execute", "via")),
    (StepType.VERIFICATION, _contains("verify", "confirm")),
)
DEFAULT_STEP_TYPE = StepType.VALIDATION

AUTO_EXECUTABLE_RULES: Tuple[Predicate, ...] = (
    _contains("validate"),
    lambda n: "check" in n and ("permission" in n or "exist" in n),
    _contains("verify"),
)

APPROVAL_RULES: Tuple[Predicate, ...] = (
    _contains("execute", "run"),
    lambda n: "cancel" in n and "via" in n,
    lambda n: "update" in n and "via" in n,
)

ENTITY_KEYWORDS: Tuple[str, ...] = ("case", "order", "sample", "slide", "stain")

TASK_ENTITIES: Dict[TaskId, str] = {
    TaskId.CANCEL_ORDER: "order",
    TaskId.UPDATE_ORDER_STATUS: "order",
    TaskId.CANCEL_CASE: "case",
    TaskId.UPDATE_CASE_STATUS: "case",
    TaskId.UPDATE_SAMPLES: "sample",
    TaskId.UPDATE_STAIN: "slide",
}


class EndpointRule(NamedTuple):
    step_types: FrozenSet[StepType]
    entities: Optional[FrozenSet[str]]
    action: Optional[str]
    method: str
    endpoint: str
    parameters: Dict[str, Any]


class ResolvedEndpoint(NamedTuple):
    endpoint: Optional[str]
    method: str
    parameters: Dict[str, Any]


_READS = frozenset({StepType.VALIDATION, StepType.VERIFICATION})
_EXECUTION = frozenset({StepType.API_EXECUTION})
_SLIDE = frozenset({"slide", "stain"})

ENDPOINT_RULES: Tuple[EndpointRule, ...] = (
    EndpointRule(_READS, frozenset({"case"}), None, "GET", "/api/v2/cases/{case_id}/status", {}),
    EndpointRule(_READS, frozenset({"order"}), None, "GET", "/api/v2/orders/{order_id}/status", {}),
    EndpointRule(_READS, frozenset({"sample"}), None, "GET", "/api/v2/samples/{sample_id}/status", {}),
    EndpointRule(_READS, _SLIDE, None, "GET", "/api/v2/slides/{slide_id}/status", {}),
    EndpointRule(frozenset({StepType.PERMISSION_CHECK}), None, None, "GET",
                 "/api/v2/users/{user_id}/roles", {}),
    EndpointRule(_EXECUTION, frozenset({"case"}), ACTION_CANCEL, "POST",
                 "/api/v2/cases/{case_id}/cancel", CANCEL_PARAMETERS),
    EndpointRule(_EXECUTION, frozenset({"order"}), ACTION_CANCEL, "POST",
                 "/api/v2/orders/{order_id}/cancel", CANCEL_PARAMETERS),
    EndpointRule(_EXECUTION, frozenset({"case"}), ACTION_UPDATE, "PATCH",
                 "/api/v2/cases/{case_id}/status", {"action": "update_status"}),
    EndpointRule(_EXECUTION, frozenset({"order"}), ACTION_UPDATE, "PATCH",
                 "/api/v2/orders/{order_id}/status", {"action": "update_status"}),
    EndpointRule(_EXECUTION, frozenset({"sample"}), ACTION_UPDATE, "PATCH",
                 "/api/v2/samples/{sample_id}", {"action": "update_samples"}),
    EndpointRule(_EXECUTION, _SLIDE, ACTION_UPDATE, "PATCH",
                 "/api/v2/slides/{slide_id}/stain", {"action": "update_stain"}),
)


def derive_step_type(step_name: str) -> StepType:
    name = step_name.lower()
    for step_type, predicate in STEP_TYPE_RULES:
        if predicate(name):
            return step_type
    return DEFAULT_STEP_TYPE


def is_auto_executable(step_name: str) -> bool:
    name = step_name.lower()
    return any(predicate(name) for predicate in AUTO_EXECUTABLE_RULES)


def requires_approval(step_name: str) -> bool:
    name = step_name.lower()
    return any(predicate(name) for predicate in APPROVAL_RULES)


def entity_keyword(step_name: str, task_id: Optional[TaskId]) -> Optional[str]:
    """Entity named in the step, else the entity the task operates on."""
    name = step_name.lower()
    for keyword in ENTITY_KEYWORDS:
        if keyword in name:
            return keyword
    return TASK_ENTITIES.get(task_id) if task_id is not None else None


def action_keyword(step_name: str, task_id: Optional[TaskId]) -> Optional[str]:
    """Action named in the step, else the action implied by the task."""
    name = step_name.lower()
    if ACTION_CANCEL in name:
        return ACTION_CANCEL
    if ACTION_UPDATE in name:
        return ACTION_UPDATE
    if task_id is None:
        return None
    if task_id.is_cancel:
        return ACTION_CANCEL
    if task_id.is_update:
        return ACTION_UPDATE
    return None


def _default_method(step_type: StepType, action: Optional[str]) -> str:
    if step_type == StepType.API_EXECUTION:
        if action == ACTION_CANCEL:
            return "POST"
        if action == ACTION_UPDATE:
            return "PATCH"
    return "GET"


def resolve_endpoint(
    step_name: str,
    step_type: StepType,
    task_id: Optional[TaskId],
) -> ResolvedEndpoint:
    """
    Look up the downstream endpoint template for a step.

    Returns:
        ResolvedEndpoint; endpoint is None when no table row matches
    """
    entity = entity_keyword(step_name, task_id)
    action = action_keyword(step_name, task_id)

    for rule in ENDPOINT_RULES:
        if step_type not in rule.step_types:
            continue
        if rule.entities is not None and entity not in rule.entities:
            continue
        if rule.action is not None and rule.action != action:
            continue
        return ResolvedEndpoint(rule.endpoint, rule.method, dict(rule.parameters))

    return ResolvedEndpoint(None, _default_method(step_type, action), {})


def derive_step_metadata(step_name: str, task_id: Optional[TaskId]) -> StepMetadata:
    step_type = derive_step_type(step_name)
    resolved = resolve_endpoint(step_name, step_type, task_id)
    return StepMetadata(
        step_name=step_name,
        auto_executable=is_auto_executable(step_name),
        requires_approval=requires_approval(step_name),
        step_type=step_type,
        api_endpoint=resolved.endpoint,
        http_method=resolved.method,
        api_parameters=resolved.parameters,
    )
