"""Pydantic models for the domain, API requests and API responses."""

from .domain import (
    ClassificationResult,
    KnowledgeChunk,
    OperationalRequest,
    StepMetadata,
    StepPlan,
    StepStatus,
    StepType,
    TaskId,
    UseCase,
)
from .requests import DecisionRequest, StepExecutionRequest
from .responses import (
    DecisionArtifact,
    NextSteps,
    StepExecutionResponse,
    StepResult,
    build_error_artifact,
)

__all__ = [
    "ClassificationResult",
    "DecisionArtifact",
    "DecisionRequest",
    "KnowledgeChunk",
    "NextSteps",
    "OperationalRequest",
    "StepExecutionRequest",
    "StepExecutionResponse",
    "StepMetadata",
    "StepPlan",
    "StepResult",
    "StepStatus",
    "StepType",
    "TaskId",
    "UseCase",
    "build_error_artifact",
]
