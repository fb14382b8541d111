"""
Decision endpoint.

POST /v1/request?mode={fast|augmented|core|rag}
Body: {requestId?, userId?, query, context?, environment?}
Header: X-User-ID (overrides body userId when present)
"""
import time
import uuid
from typing import Optional

from fastapi import APIRouter, Header, Query
from fastapi.responses import JSONResponse

from opsguide.core.errors import InputError
from opsguide.core.logging import get_logger, set_user_id
from opsguide.core.metrics import record_decision_request
from opsguide.core.tracing import record_exception
from opsguide.models.domain import OperationalRequest
from opsguide.models.requests import DecisionRequest
from opsguide.models.responses import STATUS_ERROR, DecisionArtifact, build_error_artifact
from opsguide.services.ai.orchestration import (
    MODE_FAST,
    get_decision_orchestrator,
    resolve_mode,
)

logger = get_logger(__name__)

router = APIRouter()

DEFAULT_ENVIRONMENT = "dev"


def build_operational_request(
    body: DecisionRequest,
    header_user_id: Optional[str],
    request_id: str,
) -> OperationalRequest:
    """
    Validate a decision request and freeze it into an OperationalRequest.

    Raises:
        InputError: Blank query or no user id in body or header
    """
    if not body.query or not body.query.strip():
        raise InputError("Query is required", field="query")

    # X-User-ID overrides body userId
    user_id = header_user_id if header_user_id and header_user_id.strip() else body.user_id
    if not user_id or not user_id.strip():
        raise InputError("User id is required (body userId or X-User-ID header)", field="userId")

    return OperationalRequest(
        request_id=request_id,
        user_id=user_id,
        query=body.query,
        context=body.context or {},
        environment=body.environment or DEFAULT_ENVIRONMENT,
    )


def _artifact_response(artifact: DecisionArtifact, status_code: int = 200) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=artifact.model_dump(mode="json", by_alias=True),
    )


@router.post("/request", response_model=DecisionArtifact)
async def process_request(
    body: DecisionRequest,
    mode: str = Query(MODE_FAST, description="fast (alias core) or augmented (alias rag)"),
    x_user_id: Optional[str] = Header(None, alias="X-User-ID"),
):
    """
    Classify an operational request and return a decision artifact.

    Returns 400 with the error artifact for invalid input and 500 with the
    error artifact for internal failures.
    """
    start_time = time.time()
    resolved_mode = resolve_mode(mode)
    request_id = body.request_id or str(uuid.uuid4())

    try:
        operational_request = build_operational_request(body, x_user_id, request_id)
    except InputError as e:
        record_decision_request(resolved_mode, STATUS_ERROR)
        logger.warning(
            "decision_request_invalid",
            request_id=request_id,
            field=e.field,
            error=str(e),
        )
        return _artifact_response(build_error_artifact(str(e), request_id), status_code=400)

    set_user_id(operational_request.user_id)

    try:
        artifact = await get_decision_orchestrator().process(operational_request, resolved_mode)
    except Exception as e:
        record_exception(e)
        record_decision_request(resolved_mode, STATUS_ERROR)
        logger.error(
            "decision_request_failed",
            request_id=request_id,
            mode=resolved_mode,
            error=str(e),
            error_type=type(e).__name__,
            exc_info=True,
        )
        return _artifact_response(build_error_artifact(str(e), request_id), status_code=500)

    logger.info(
        "decision_request_completed",
        request_id=request_id,
        mode=resolved_mode,
        status=artifact.status,
        latency_ms=int((time.time() - start_time) * 1000),
    )
    return _artifact_response(artifact)
