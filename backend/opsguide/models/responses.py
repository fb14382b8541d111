"""
Response models for API endpoints.

These models define the structure of the decision artifact and of step
execution results.
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import Field

from opsguide.models.domain import (
    CamelModel,
    StepMetadata,
    StepPlan,
    StepStatus,
    StepType,
)

STATUS_PROCESSED = "processed"
STATUS_PROCESSED_WITH_RAG = "processed_with_rag"
STATUS_PROCESSED_WITH_FALLBACK = "processed_with_fallback"
STATUS_ERROR = "error"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InputEcho(CamelModel):
    query: str
    environment: str
    user_id: str


class ClassificationData(CamelModel):
    use_case: str
    task_id: Optional[str] = None
    confidence: float
    service: str
    environment: str


class NextSteps(CamelModel):
    description: str
    runbook: str
    api_spec: str
    steps: List[str] = Field(default_factory=list)
    step_metadata: List[StepMetadata] = Field(default_factory=list)

    @classmethod
    def from_plan(cls, plan: StepPlan) -> "NextSteps":
        return cls(
            description=plan.description,
            runbook=plan.runbook,
            api_spec=plan.api_spec,
            steps=list(plan.steps),
            step_metadata=list(plan.step_metadata),
        )


class DecisionArtifact(CamelModel):
    """Structured answer to a decision request."""

    request_id: Optional[str] = None
    status: str
    timestamp: datetime = Field(default_factory=_utcnow)
    input: InputEcho
    classification: ClassificationData
    extracted_entities: Dict[str, Any] = Field(default_factory=dict)
    next_steps: Optional[NextSteps] = None


def build_error_artifact(message: str, request_id: Optional[str] = None) -> DecisionArtifact:
    """Fixed-shape artifact returned for input and internal errors."""
    return DecisionArtifact(
        request_id=request_id,
        status=STATUS_ERROR,
        input=InputEcho(query="", environment="dev", user_id=""),
        classification=ClassificationData(
            use_case="ERROR",
            task_id="ERROR",
            confidence=0.0,
            service="System",
            environment="dev",
        ),
        next_steps=NextSteps(
            description=f"Error: {message}",
            runbook="knowledge/runbooks/error-handling.md",
            api_spec="knowledge/api-specs/error-api.md",
            steps=[
                "Review error message",
                "Check request format",
                "Retry with corrected data",
            ],
        ),
    )


class StepResult(CamelModel):
    success: bool
    message: str
    data: Dict[str, Any] = Field(default_factory=dict)
    status_code: Optional[int] = None
    api_response: Optional[str] = None


class StepExecutionResponse(CamelModel):
    """
    Outcome of one step execution call.

    APPROVAL_REQUIRED responses carry identity, type and requiresApproval only.
    """

    step_id: str
    request_id: str
    step_name: str
    status: StepStatus
    type: StepType
    requires_approval: bool
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    result: Optional[StepResult] = None
    error_message: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
