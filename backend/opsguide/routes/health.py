"""
Health and service info endpoints.
"""
from datetime import datetime, timezone

from fastapi import APIRouter

from opsguide import __version__
from opsguide.core.logging import get_logger
from opsguide.services.ai.knowledge import knowledge_retrieval_ready
from opsguide.services.ai.llm_client import get_llm_client
from opsguide.services.execution.downstream import get_downstream_client

logger = get_logger(__name__)
router = APIRouter()

SERVICE_NAME = "opsguide"


@router.get("/health")
async def health_check():
    """
    Health check endpoint.

    Returns:
        Service status plus component states, including circuit breaker
        snapshots for the LLM provider and the downstream API.
    """
    llm_client = get_llm_client()

    return {
        "status": "healthy",
        "service": SERVICE_NAME,
        "version": __version__,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "components": {
            "pattern_classification": "active",
            "entity_extraction": "active",
            "step_planning": "active",
            "knowledge_retrieval": "active" if knowledge_retrieval_ready() else "unavailable",
            "llm_reasoning": "active" if llm_client.api_key else "disabled",
            "step_execution": "active",
        },
        "circuit_breakers": {
            "llm": llm_client.circuit_breaker.get_metrics(),
            "downstream_api": get_downstream_client().circuit_breaker.get_metrics(),
        },
    }


@router.get("/")
async def service_info():
    """Service description, endpoints, supported tasks and modes."""
    return {
        "service": SERVICE_NAME,
        "version": __version__,
        "description": "Operational request classification with deterministic and AI-augmented remediation plans",
        "endpoints": {
            "POST /v1/request": "Submit operational request",
            "POST /v1/steps/execute": "Execute one remediation step",
            "GET /v1/health": "Health check",
            "GET /metrics": "Prometheus metrics",
        },
        "supported_tasks": [
            "CANCEL_ORDER: cancel order ORDER-2024-001",
            "UPDATE_ORDER_STATUS: change order status to completed",
            "CANCEL_CASE: cancel case CASE-2024-001",
            "UPDATE_CASE_STATUS: change case status to completed",
            "UPDATE_SAMPLES: update samples within case",
            "UPDATE_STAIN: update stain of a slide",
        ],
        "modes": {
            "fast": "Pattern matching only (alias: core)",
            "augmented": "Knowledge retrieval and LLM reasoning with fast-path fallback (alias: rag)",
        },
    }
