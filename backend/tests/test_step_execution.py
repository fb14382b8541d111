"""
Unit tests for the step execution engine.

Downstream calls go to an in-memory stub that records every request, or to a
real DownstreamClient over httpx.MockTransport.
"""
import json
import uuid

import httpx
import pytest

from opsguide.core.errors import DownstreamError
from opsguide.models.domain import StepStatus, StepType
from opsguide.models.requests import StepExecutionRequest
from opsguide.services.execution.downstream import DownstreamClient
from opsguide.services.execution.step_execution import (
    StepExecutionEngine,
    fill_placeholders,
    resolve_entity_id,
)


class StubDownstream:
    """Answers from a (method, path) map, or raises a fixed error."""

    def __init__(self, responses=None, error=None):
        self.responses = responses or {}
        self.error = error
        self.calls = []

    def request(self, method, path, json=None):
        self.calls.append((method, path, json))
        if self.error is not None:
            raise self.error
        return self.responses.get((method, path), {})


def _step(step_name, task_id="CANCEL_CASE", **overrides):
    fields = {
        "request_id": "req-1",
        "step_name": step_name,
        "task_id": task_id,
        "extracted_entities": {"case_id": "2024-001", "entity_type": "case"},
    }
    fields.update(overrides)
    return StepExecutionRequest(**fields)


def test_execution_step_requires_approval():
    downstream = StubDownstream()
    engine = StepExecutionEngine(downstream=downstream, fail_open=True)

    response = engine.execute(_step("Execute cancellation via API"), "alice")

    assert response.status == StepStatus.APPROVAL_REQUIRED
    assert response.type == StepType.API_EXECUTION
    assert response.requires_approval is True
    assert response.started_at is None
    assert response.completed_at is None
    assert response.result is None
    assert downstream.calls == []


def test_skip_approval_must_be_true():
    engine = StepExecutionEngine(downstream=StubDownstream(), fail_open=True)

    response = engine.execute(_step("Execute cancellation via API", skip_approval=False), "alice")

    assert response.status == StepStatus.APPROVAL_REQUIRED


def test_api_execution_posts_cancel_body():
    downstream = StubDownstream(
        responses={("POST", "/api/v2/cases/2024-001/cancel"): {"cancellation_id": "cx-9"}}
    )
    engine = StepExecutionEngine(downstream=downstream, fail_open=False)

    response = engine.execute(_step("Execute cancellation via API", skip_approval=True), "alice")

    assert response.status == StepStatus.COMPLETED
    assert response.requires_approval is True
    assert response.result.success is True
    assert response.result.data == {"entity_id": "2024-001", "execution_id": "cx-9"}
    assert json.loads(response.result.api_response) == {"cancellation_id": "cx-9"}
    assert downstream.calls == [
        (
            "POST",
            "/api/v2/cases/2024-001/cancel",
            {"reason": "operational_request", "notify_stakeholders": True},
        )
    ]
    assert response.metadata == {
        "api_endpoint": "/api/v2/cases/2024-001/cancel",
        "http_method": "POST",
    }


def test_update_body_carries_target_status():
    downstream = StubDownstream()
    engine = StepExecutionEngine(downstream=downstream, fail_open=False)

    request = _step(
        "Update order status via API",
        task_id="UPDATE_ORDER_STATUS",
        extracted_entities={"order_id": "2024-001", "target_status": "completed"},
        skip_approval=True,
    )
    response = engine.execute(request, "alice")

    assert response.status == StepStatus.COMPLETED
    assert downstream.calls == [
        ("PATCH", "/api/v2/orders/2024-001/status", {"status": "completed"})
    ]
    # No id in the response body: a fresh one is generated
    uuid.UUID(response.result.data["execution_id"])


def test_caller_endpoint_overrides_rules():
    downstream = StubDownstream()
    engine = StepExecutionEngine(downstream=downstream, fail_open=False)

    request = _step(
        "Execute cancellation via API",
        skip_approval=True,
        api_endpoint="/api/v3/cases/{case_id}/abort",
        http_method="put",
        api_parameters={"force": True},
    )
    engine.execute(request, "alice")

    assert downstream.calls == [("PUT", "/api/v3/cases/2024-001/abort", {"force": True})]


def test_validation_rejects_terminal_status():
    downstream = StubDownstream(
        responses={("GET", "/api/v2/cases/2024-001/status"): {"status": "cancelled"}}
    )
    engine = StepExecutionEngine(downstream=downstream, fail_open=True)

    response = engine.execute(_step("Validate case exists and is cancellable"), "alice")

    assert response.status == StepStatus.COMPLETED
    assert response.requires_approval is False
    assert response.started_at is not None
    assert response.result.success is False
    assert response.result.data == {"entity_id": "2024-001", "status": "cancelled", "valid": False}


def test_permission_check_uses_user_id():
    downstream = StubDownstream(
        responses={("GET", "/api/v2/users/alice/roles"): {"has_permission": False}}
    )
    engine = StepExecutionEngine(downstream=downstream, fail_open=True)

    response = engine.execute(_step("Check user permissions"), "alice")

    assert response.type == StepType.PERMISSION_CHECK
    assert response.result.success is False
    assert response.result.data == {"user_id": "alice", "has_permission": False}


def test_verification_accepts_completed_status():
    downstream = StubDownstream(
        responses={("GET", "/api/v2/cases/2024-001/status"): {"status": "completed"}}
    )
    engine = StepExecutionEngine(downstream=downstream, fail_open=True)

    response = engine.execute(_step("Verify cancellation completed"), "alice")

    assert response.type == StepType.VERIFICATION
    assert response.result.success is True
    assert response.result.data["verified"] is True


def test_fail_open_substitutes_success():
    downstream = StubDownstream(error=DownstreamError("Downstream unreachable", method="POST"))
    engine = StepExecutionEngine(downstream=downstream, fail_open=True)

    request = _step("Execute cancellation via API", skip_approval=True)
    first = engine.execute(request, "alice")
    second = engine.execute(request, "alice")

    assert first.status == StepStatus.COMPLETED
    assert first.result.success is True
    assert first.metadata["fail_open"] is True
    assert "Downstream unreachable" in first.metadata["downstream_error"]
    assert json.loads(first.result.api_response) == {"status": "success"}
    # Same request and step name give the same substituted execution id
    assert first.result.data["execution_id"] == second.result.data["execution_id"]


def test_fail_closed_reports_failure():
    downstream = StubDownstream(error=DownstreamError("Downstream returned HTTP 503", status_code=503))
    engine = StepExecutionEngine(downstream=downstream, fail_open=False)

    response = engine.execute(_step("Validate case exists and is cancellable"), "alice")

    assert response.status == StepStatus.FAILED
    assert response.result.success is False
    assert response.result.message.startswith("Execution failed:")
    assert response.error_message == "Downstream returned HTTP 503"
    assert response.completed_at is not None


def test_unresolved_endpoint_fails_open_without_calling_downstream():
    downstream = StubDownstream()
    engine = StepExecutionEngine(downstream=downstream, fail_open=True)

    response = engine.execute(_step("Analyze request requirements", task_id=None), "alice")

    assert response.status == StepStatus.COMPLETED
    assert response.metadata["fail_open"] is True
    assert response.metadata["api_endpoint"] is None
    assert downstream.calls == []


def test_unexpected_errors_are_not_failed_open():
    downstream = StubDownstream(error=RuntimeError("boom"))
    engine = StepExecutionEngine(downstream=downstream, fail_open=True)

    response = engine.execute(_step("Verify cancellation completed"), "alice")

    assert response.status == StepStatus.FAILED
    assert response.error_message == "boom"


def test_malformed_entity_id_fails_open_through_real_client():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json={"status": "pending"})

    downstream = DownstreamClient(
        base_url="http://downstream.test",
        transport=httpx.MockTransport(handler),
    )
    engine = StepExecutionEngine(downstream=downstream, fail_open=True)
    request = _step(
        "Validate case exists",
        extracted_entities={"case_id": "2024\x01001", "entity_type": "case"},
    )

    response = engine.execute(request, "alice")

    assert response.status == StepStatus.COMPLETED
    assert response.result.success is True
    assert response.metadata["fail_open"] is True
    assert "Downstream request failed" in response.metadata["downstream_error"]
    assert calls == []


def test_fill_placeholders():
    assert fill_placeholders("/a/{case_id}/b/{user_id}", "E1", "u1") == "/a/E1/b/u1"
    assert fill_placeholders("/a/{order_id}/{slide_id}", "E1", "u1") == "/a/E1/E1"


def test_resolve_entity_id_priority():
    assert resolve_entity_id({"entity_id": "job-1", "case_id": "2024-001"}) == "job-1"
    assert resolve_entity_id({"case_id": "2024-001", "order_id": "2024-002"}) == "2024-001"
    assert resolve_entity_id({"entity_type": "case"}) == ""


@pytest.mark.parametrize(
    "step_name,expected_type",
    [
        ("Validate case exists and is cancellable", StepType.VALIDATION),
        ("Check user permissions", StepType.PERMISSION_CHECK),
        ("Verify cancellation completed", StepType.VERIFICATION),
    ],
)
def test_step_type_rederived_from_name(step_name, expected_type):
    engine = StepExecutionEngine(downstream=StubDownstream(), fail_open=True)

    assert engine.execute(_step(step_name), "alice").type == expected_type
