"""
Step execution engine.

Executes one step of a previously returned plan against the downstream API:
- Step type and approval requirement are re-derived from the step name with
  the same rules the planner uses
- Steps that need approval stop at APPROVAL_REQUIRED unless skipApproval is true
- Downstream failures are replaced by a deterministic success result when
  fail-open is enabled (STEP_EXECUTION_FAIL_OPEN); every substitution is
  flagged in the response metadata and counted
"""
import json
import re
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from opsguide.core.config import get_settings
from opsguide.core.errors import DownstreamError
from opsguide.core.logging import get_logger
from opsguide.core.metrics import record_step_execution, record_step_fail_open
from opsguide.models.domain import StepStatus, StepType, TaskId
from opsguide.models.requests import StepExecutionRequest
from opsguide.models.responses import StepExecutionResponse, StepResult
from opsguide.services.execution.downstream import DownstreamClient, get_downstream_client
from opsguide.services.planning.step_rules import (
    CANCEL_PARAMETERS,
    derive_step_type,
    requires_approval,
    resolve_endpoint,
)

logger = get_logger(__name__)

ENTITY_ID_KEYS = ("entity_id", "case_id", "order_id", "sample_id", "slide_id")
EXECUTION_ID_KEYS = ("cancellation_id", "transition_id", "execution_id")

INVALID_STATUSES = frozenset({"cancelled", "closed", "archived"})
VERIFIED_STATUSES = frozenset({"cancelled", "completed", "closed"})

PLACEHOLDER_PATTERN = re.compile(r"\{(\w+)\}")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def resolve_entity_id(entities: Dict[str, Any]) -> str:
    for key in ENTITY_ID_KEYS:
        value = entities.get(key)
        if value:
            return str(value)
    return ""


def fill_placeholders(template: str, entity_id: str, user_id: str) -> str:
    """Replace {user_id} with the user id and every other {name} with the entity id."""
    return PLACEHOLDER_PATTERN.sub(
        lambda m: user_id if m.group(1) == "user_id" else entity_id,
        template,
    )


class StepContext:
    """Everything a step handler needs, resolved once per execution."""

    def __init__(self, request: StepExecutionRequest, user_id: str, step_type: StepType):
        self.request = request
        self.user_id = user_id
        self.step_type = step_type
        self.task_id = TaskId.parse(request.task_id)
        self.entities: Dict[str, Any] = dict(request.extracted_entities or {})
        self.entity_id = resolve_entity_id(self.entities)

        resolved = resolve_endpoint(request.step_name, step_type, self.task_id)
        template = request.api_endpoint or resolved.endpoint
        self.path = fill_placeholders(template, self.entity_id, user_id) if template else None
        self.method = (request.http_method or resolved.method).upper()
        self.parameters = dict(request.api_parameters or {})

    def execution_body(self) -> Dict[str, Any]:
        if self.parameters:
            return self.parameters
        if self.task_id is not None and self.task_id.is_cancel:
            return dict(CANCEL_PARAMETERS)
        if self.task_id is not None and self.task_id.is_update:
            target_status = self.entities.get("target_status")
            if target_status:
                return {"status": target_status}
        return {}


class StepExecutionEngine:
    """Runs single plan steps; stateless apart from its downstream client."""

    def __init__(
        self,
        downstream: Optional[DownstreamClient] = None,
        fail_open: Optional[bool] = None,
    ):
        self._downstream = downstream
        self.fail_open = (
            get_settings().step_execution_fail_open if fail_open is None else fail_open
        )
        self._handlers: Dict[StepType, Callable[[StepContext], StepResult]] = {
            StepType.VALIDATION: self._validate,
            StepType.PERMISSION_CHECK: self._check_permissions,
            StepType.API_EXECUTION: self._execute_api_call,
            StepType.VERIFICATION: self._verify,
        }
        self._fail_open_results: Dict[StepType, Callable[[StepContext], StepResult]] = {
            StepType.VALIDATION: self._assumed_valid,
            StepType.PERMISSION_CHECK: self._assumed_permitted,
            StepType.API_EXECUTION: self._assumed_executed,
            StepType.VERIFICATION: self._assumed_verified,
        }

    @property
    def downstream(self) -> DownstreamClient:
        if self._downstream is None:
            self._downstream = get_downstream_client()
        return self._downstream

    def execute(self, request: StepExecutionRequest, user_id: str) -> StepExecutionResponse:
        """
        Execute one step.

        Args:
            request: Step to run, with the plan's entities and optional overrides
            user_id: Acting user (fills {user_id})

        Returns:
            APPROVAL_REQUIRED without timestamps, or COMPLETED/FAILED with a result
        """
        step_type = derive_step_type(request.step_name)
        needs_approval = requires_approval(request.step_name)

        if needs_approval and request.skip_approval is not True:
            record_step_execution(step_type.value, StepStatus.APPROVAL_REQUIRED.value)
            logger.info(
                "step_approval_required",
                request_id=request.request_id,
                step_name=request.step_name,
                step_type=step_type.value,
            )
            return StepExecutionResponse(
                step_id=str(uuid.uuid4()),
                request_id=request.request_id,
                step_name=request.step_name,
                status=StepStatus.APPROVAL_REQUIRED,
                type=step_type,
                requires_approval=True,
            )

        return self._run(request, user_id, step_type, needs_approval)

    def _run(
        self,
        request: StepExecutionRequest,
        user_id: str,
        step_type: StepType,
        needs_approval: bool,
    ) -> StepExecutionResponse:
        step_id = str(uuid.uuid4())
        started_at = _utcnow()
        metadata: Dict[str, Any] = {}
        error_message = None

        logger.info(
            "step_execution_started",
            request_id=request.request_id,
            step_id=step_id,
            step_name=request.step_name,
            step_type=step_type.value,
        )

        try:
            context = StepContext(request, user_id, step_type)
            metadata["api_endpoint"] = context.path
            metadata["http_method"] = context.method
            result = self._dispatch(context, metadata)
            status = StepStatus.COMPLETED
        except Exception as e:
            logger.error(
                "step_execution_failed",
                request_id=request.request_id,
                step_id=step_id,
                step_name=request.step_name,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            status = StepStatus.FAILED
            error_message = str(e)
            result = StepResult(success=False, message=f"Execution failed: {e}")

        record_step_execution(step_type.value, status.value)
        logger.info(
            "step_execution_completed",
            request_id=request.request_id,
            step_id=step_id,
            status=status.value,
            success=result.success,
        )

        return StepExecutionResponse(
            step_id=step_id,
            request_id=request.request_id,
            step_name=request.step_name,
            status=status,
            type=step_type,
            requires_approval=needs_approval,
            started_at=started_at,
            completed_at=_utcnow(),
            result=result,
            error_message=error_message,
            metadata=metadata,
        )

    def _dispatch(self, context: StepContext, metadata: Dict[str, Any]) -> StepResult:
        try:
            if context.path is None:
                raise DownstreamError(
                    f"No downstream endpoint for step '{context.request.step_name}'",
                    method=context.method,
                )
            return self._handlers[context.step_type](context)
        except DownstreamError as e:
            if not self.fail_open:
                raise
            record_step_fail_open(context.step_type.value)
            logger.warning(
                "step_downstream_fail_open",
                request_id=context.request.request_id,
                step_name=context.request.step_name,
                method=e.method,
                path=e.path,
                status_code=e.status_code,
                error=str(e),
                error_type=type(e).__name__,
            )
            metadata["fail_open"] = True
            metadata["downstream_error"] = str(e)
            return self._fail_open_results[context.step_type](context)

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def _validate(self, context: StepContext) -> StepResult:
        response = self.downstream.request("GET", context.path)
        status = str(response.get("status", "unknown"))
        is_valid = status not in INVALID_STATUSES
        return StepResult(
            success=is_valid,
            message=(
                "Entity exists and is in valid state"
                if is_valid
                else "Entity exists but is not in valid state"
            ),
            data={"entity_id": context.entity_id, "status": status, "valid": is_valid},
            status_code=200,
        )

    def _check_permissions(self, context: StepContext) -> StepResult:
        response = self.downstream.request("GET", context.path)
        has_permission = bool(response.get("has_permission", True))
        return StepResult(
            success=has_permission,
            message=(
                "User has required permissions"
                if has_permission
                else "User lacks required permissions"
            ),
            data={"user_id": context.user_id, "has_permission": has_permission},
            status_code=200,
        )

    def _execute_api_call(self, context: StepContext) -> StepResult:
        body = context.execution_body() if context.method != "GET" else None
        response = self.downstream.request(context.method, context.path, json=body)
        execution_id = next(
            (str(response[key]) for key in EXECUTION_ID_KEYS if response.get(key)),
            str(uuid.uuid4()),
        )
        return StepResult(
            success=True,
            message="API call executed successfully",
            data={"entity_id": context.entity_id, "execution_id": execution_id},
            status_code=200,
            api_response=json.dumps(response),
        )

    def _verify(self, context: StepContext) -> StepResult:
        response = self.downstream.request("GET", context.path)
        status = str(response.get("status", "unknown"))
        is_verified = status in VERIFIED_STATUSES
        return StepResult(
            success=is_verified,
            message=(
                "Execution verified successfully"
                if is_verified
                else "Execution verification pending"
            ),
            data={"entity_id": context.entity_id, "verified": is_verified, "status": status},
            status_code=200,
        )

    # ------------------------------------------------------------------
    # Fail-open results
    # ------------------------------------------------------------------

    @staticmethod
    def _assumed_valid(context: StepContext) -> StepResult:
        return StepResult(
            success=True,
            message="Entity exists and is in valid state",
            data={"entity_id": context.entity_id, "status": "valid"},
            status_code=200,
        )

    @staticmethod
    def _assumed_permitted(context: StepContext) -> StepResult:
        return StepResult(
            success=True,
            message="User has required permissions",
            data={"user_id": context.user_id, "has_permission": True},
            status_code=200,
        )

    @staticmethod
    def _assumed_executed(context: StepContext) -> StepResult:
        execution_id = uuid.uuid5(
            uuid.NAMESPACE_URL,
            f"{context.request.request_id}:{context.request.step_name}",
        )
        return StepResult(
            success=True,
            message="API call executed successfully",
            data={"entity_id": context.entity_id, "execution_id": str(execution_id)},
            status_code=200,
            api_response=json.dumps({"status": "success"}),
        )

    @staticmethod
    def _assumed_verified(context: StepContext) -> StepResult:
        return StepResult(
            success=True,
            message="Execution verified successfully",
            data={"entity_id": context.entity_id, "verified": True},
            status_code=200,
        )


_step_execution_engine: Optional[StepExecutionEngine] = None


def get_step_execution_engine() -> StepExecutionEngine:
    """Global singleton accessor."""
    global _step_execution_engine
    if _step_execution_engine is None:
        _step_execution_engine = StepExecutionEngine()
    return _step_execution_engine
