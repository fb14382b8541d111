"""
Unit tests for step rules and the step planner.

Tests verify:
- Every task gets its fixed four-step plan
- Step types, approval flags and endpoints derived from step names
- Numbered step extraction from reasoning text
"""
import pytest

from opsguide.models.domain import StepType, TaskId
from opsguide.services.planning.step_planner import (
    GENERIC_TEMPLATE,
    PLAN_TEMPLATES,
    StepPlanner,
    extract_steps_from_reasoning,
    template_for,
)
from opsguide.services.planning.step_rules import (
    CANCEL_PARAMETERS,
    derive_step_type,
    is_auto_executable,
    requires_approval,
    resolve_endpoint,
)


@pytest.fixture
def planner():
    return StepPlanner()


def test_cancel_case_plan(planner):
    plan = planner.plan(TaskId.CANCEL_CASE)

    assert plan.runbook == "knowledge/runbooks/cancel-case-runbook.md"
    assert plan.api_spec == "knowledge/api-specs/case-management-api.md"
    assert plan.steps == [
        "Validate case exists and is cancellable",
        "Check user permissions",
        "Execute cancellation via API",
        "Verify cancellation completed",
    ]
    assert [m.step_type for m in plan.step_metadata] == [
        StepType.VALIDATION,
        StepType.PERMISSION_CHECK,
        StepType.API_EXECUTION,
        StepType.VERIFICATION,
    ]
    assert [m.requires_approval for m in plan.step_metadata] == [False, False, True, False]
    assert [m.auto_executable for m in plan.step_metadata] == [True, True, False, True]


def test_cancel_case_endpoints(planner):
    metadata = planner.plan(TaskId.CANCEL_CASE).step_metadata

    assert metadata[0].api_endpoint == "/api/v2/cases/{case_id}/status"
    assert metadata[1].api_endpoint == "/api/v2/users/{user_id}/roles"
    assert metadata[2].api_endpoint == "/api/v2/cases/{case_id}/cancel"
    assert metadata[2].http_method == "POST"
    assert metadata[2].api_parameters == CANCEL_PARAMETERS
    assert metadata[3].api_endpoint == "/api/v2/cases/{case_id}/status"


@pytest.mark.parametrize("task_id", list(PLAN_TEMPLATES))
def test_every_plan_has_four_consistent_steps(planner, task_id):
    plan = planner.plan(task_id)

    assert len(plan.steps) == 4
    assert [m.step_name for m in plan.step_metadata] == plan.steps
    for metadata in plan.step_metadata:
        assert not (metadata.auto_executable and metadata.requires_approval)


def test_null_task_gets_generic_plan(planner):
    plan = planner.plan(None)

    assert plan.description == GENERIC_TEMPLATE.description
    assert plan.steps == list(GENERIC_TEMPLATE.steps)
    assert template_for(TaskId.GENERIC_OPERATION) is GENERIC_TEMPLATE


def test_generic_plan_has_unresolved_endpoints(planner):
    metadata = planner.plan(None).step_metadata

    assert metadata[0].api_endpoint is None
    assert metadata[0].http_method == "GET"
    assert metadata[2].step_type == StepType.API_EXECUTION
    assert metadata[2].api_endpoint is None


@pytest.mark.parametrize(
    "task_id,step_index,method,endpoint",
    [
        (TaskId.CANCEL_ORDER, 2, "POST", "/api/v2/orders/{order_id}/cancel"),
        (TaskId.UPDATE_ORDER_STATUS, 2, "PATCH", "/api/v2/orders/{order_id}/status"),
        (TaskId.UPDATE_CASE_STATUS, 2, "PATCH", "/api/v2/cases/{case_id}/status"),
        (TaskId.UPDATE_SAMPLES, 2, "PATCH", "/api/v2/samples/{sample_id}"),
        (TaskId.UPDATE_STAIN, 2, "PATCH", "/api/v2/slides/{slide_id}/stain"),
        (TaskId.UPDATE_STAIN, 0, "GET", "/api/v2/slides/{slide_id}/status"),
    ],
)
def test_execution_endpoints_per_task(planner, task_id, step_index, method, endpoint):
    metadata = planner.plan(task_id).step_metadata[step_index]

    assert metadata.http_method == method
    assert metadata.api_endpoint == endpoint


@pytest.mark.parametrize(
    "step_name,expected",
    [
        ("Validate order exists", StepType.VALIDATION),
        ("Check order exists", StepType.VALIDATION),
        ("Check sample update permissions", StepType.PERMISSION_CHECK),
        ("Update order status via API", StepType.API_EXECUTION),
        ("Confirm the stain was applied", StepType.VERIFICATION),
        ("Identify target system and API", StepType.VALIDATION),
    ],
)
def test_derive_step_type(step_name, expected):
    assert derive_step_type(step_name) == expected


def test_approval_and_auto_flags():
    assert requires_approval("Run the cleanup job")
    assert requires_approval("Update order status via API")
    assert not requires_approval("Check status transition is valid")
    assert is_auto_executable("Check user permissions")
    assert not is_auto_executable("Check status transition is valid")


def test_step_entity_overrides_task_entity():
    resolved = resolve_endpoint("Validate order exists", StepType.VALIDATION, TaskId.CANCEL_CASE)

    assert resolved.endpoint == "/api/v2/orders/{order_id}/status"


def test_unresolved_execution_keeps_action_method():
    resolved = resolve_endpoint("Execute cancellation via API", StepType.API_EXECUTION, None)

    assert resolved.endpoint is None
    assert resolved.method == "POST"


def test_extract_steps_from_reasoning():
    text = (
        "Here is the plan:\n"
        "  1. Verify the case is not already closed\n"
        "2.Check permissions\n"
        "3. Execute cancellation via POST /api/v2/cases/{case_id}/cancel\n"
        "\n"
        "Risks: none"
    )

    assert extract_steps_from_reasoning(text) == [
        "Verify the case is not already closed",
        "Execute cancellation via POST /api/v2/cases/{case_id}/cancel",
    ]
    assert extract_steps_from_reasoning("") == []
    assert extract_steps_from_reasoning(None) == []


def test_plan_from_steps_uses_template_paths(planner):
    plan = planner.plan_from_steps(
        TaskId.CANCEL_ORDER,
        ["Validate order exists", "Execute cancellation via API"],
        description="AI-enhanced cancel order request",
    )

    assert plan.description == "AI-enhanced cancel order request"
    assert plan.runbook == "knowledge/runbooks/cancel-order-runbook.md"
    assert plan.api_spec == "knowledge/api-specs/order-management-api.md"
    assert plan.step_metadata[1].api_endpoint == "/api/v2/orders/{order_id}/cancel"


def test_plan_from_empty_steps_falls_back_to_template(planner):
    plan = planner.plan_from_steps(TaskId.UPDATE_SAMPLES, [])

    assert plan.steps == list(PLAN_TEMPLATES[TaskId.UPDATE_SAMPLES].steps)
