"""
Domain types shared by the classifier, planner, orchestrator and execution engine.

Task and step taxonomies are closed enums; everything produced by the core is
immutable once built.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model: snake_case attributes, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class FrozenCamelModel(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class UseCase(str, Enum):
    """Use cases handled by the service. Only operational asks exist today."""
    OPERATIONAL_ASK = "U2"


class TaskId(str, Enum):
    """Recognized operational intents."""
    CANCEL_ORDER = "CANCEL_ORDER"
    UPDATE_ORDER_STATUS = "UPDATE_ORDER_STATUS"
    CANCEL_CASE = "CANCEL_CASE"
    UPDATE_CASE_STATUS = "UPDATE_CASE_STATUS"
    UPDATE_SAMPLES = "UPDATE_SAMPLES"
    UPDATE_STAIN = "UPDATE_STAIN"
    GENERIC_OPERATION = "GENERIC_OPERATION"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["TaskId"]:
        """Lenient lookup for wire values; unknown or empty values map to None."""
        if not value:
            return None
        try:
            return cls(value.strip().upper())
        except ValueError:
            return None

    @property
    def is_cancel(self) -> bool:
        return self.value.startswith("CANCEL_")

    @property
    def is_update(self) -> bool:
        return self.value.startswith("UPDATE_")


class StepType(str, Enum):
    VALIDATION = "VALIDATION"
    PERMISSION_CHECK = "PERMISSION_CHECK"
    API_EXECUTION = "API_EXECUTION"
    VERIFICATION = "VERIFICATION"


class StepStatus(str, Enum):
    """
    Step lifecycle states.

    The execution engine only produces APPROVAL_REQUIRED, RUNNING, COMPLETED
    and FAILED. PENDING, APPROVED and CANCELLED are reserved for an approval
    workflow.
    """
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    APPROVAL_REQUIRED = "APPROVAL_REQUIRED"
    APPROVED = "APPROVED"
    CANCELLED = "CANCELLED"


class OperationalRequest(FrozenCamelModel):
    """A validated inbound decision request."""

    request_id: str
    user_id: str
    query: str
    context: Dict[str, Any] = Field(default_factory=dict)
    environment: str = "dev"
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("query")
    @classmethod
    def validate_query(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("query must not be blank")
        return value


class ClassificationResult(FrozenCamelModel):
    """Output of the pattern classifier."""

    use_case: UseCase = UseCase.OPERATIONAL_ASK
    task_id: Optional[TaskId] = None
    confidence: float
    extracted_entities: Dict[str, Any] = Field(default_factory=dict)
    environment: str
    service: str


class StepMetadata(FrozenCamelModel):
    """Execution metadata derived from a step name."""

    step_name: str
    auto_executable: bool
    requires_approval: bool
    step_type: StepType
    api_endpoint: Optional[str] = None
    http_method: str = "GET"
    api_parameters: Dict[str, Any] = Field(default_factory=dict)


class StepPlan(FrozenCamelModel):
    """Ordered remediation plan for one task."""

    description: str
    runbook: str
    api_spec: str
    steps: List[str]
    step_metadata: List[StepMetadata]


class KnowledgeChunk(FrozenCamelModel):
    """One retrieved knowledge base passage."""

    content: str
    source: str
    type: str
    score: float = 0.0
