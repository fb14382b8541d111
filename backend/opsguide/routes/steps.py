"""
Step execution endpoint.

POST /v1/steps/execute
Header: X-User-ID (default: anonymous)
"""
from typing import Optional

from fastapi import APIRouter, Header
from fastapi.responses import JSONResponse

from opsguide.core.logging import get_logger, set_user_id
from opsguide.models.requests import StepExecutionRequest
from opsguide.models.responses import StepExecutionResponse
from opsguide.services.execution.step_execution import get_step_execution_engine

logger = get_logger(__name__)

router = APIRouter()

ANONYMOUS_USER = "anonymous"


# Sync handler: FastAPI runs it in the worker threadpool, so blocking downstream
# calls never stall the event loop.
@router.post("/steps/execute", response_model=StepExecutionResponse)
def execute_step(
    body: StepExecutionRequest,
    x_user_id: Optional[str] = Header(None, alias="X-User-ID"),
):
    """
    Execute one step of a previously returned plan.

    Steps that require approval return APPROVAL_REQUIRED unless skipApproval is true.
    """
    user_id = x_user_id or ANONYMOUS_USER
    set_user_id(user_id)

    response = get_step_execution_engine().execute(body, user_id)
    return JSONResponse(
        content=response.model_dump(mode="json", by_alias=True, exclude_none=True),
    )
