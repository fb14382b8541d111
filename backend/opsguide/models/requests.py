"""Request models for API endpoints."""
from typing import Any, Dict, Optional

from pydantic import Field

from opsguide.models.domain import CamelModel


class DecisionRequest(CamelModel):
    """
    Body of POST /v1/request.

    Fields are optional at this layer so that a missing or blank query is
    answered with the structured error artifact instead of a 422.
    """

    request_id: Optional[str] = None
    user_id: Optional[str] = None
    query: Optional[str] = None
    context: Dict[str, Any] = Field(default_factory=dict)
    environment: Optional[str] = None


class StepExecutionRequest(CamelModel):
    """Body of POST /v1/steps/execute: one step from a previously returned plan."""

    request_id: str
    step_index: Optional[int] = None
    step_name: str
    task_id: Optional[str] = None
    extracted_entities: Optional[Dict[str, Any]] = None
    context: Optional[Dict[str, Any]] = None
    skip_approval: Optional[bool] = None
    api_endpoint: Optional[str] = None
    http_method: Optional[str] = None
    api_parameters: Optional[Dict[str, Any]] = None
