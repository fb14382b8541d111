"""
Prometheus metrics endpoint.

GET /metrics
Refreshes the circuit breaker gauges for the LLM provider and the downstream
API, then returns the registry in Prometheus text format.
"""
from fastapi import APIRouter, Response
from fastapi.responses import PlainTextResponse

from opsguide.core.logging import get_logger
from opsguide.core.metrics import (
    get_metrics,
    get_metrics_content_type,
    update_circuit_breaker_metrics,
)
from opsguide.services.ai.llm_client import get_llm_client
from opsguide.services.execution.downstream import get_downstream_client

logger = get_logger(__name__)
router = APIRouter()


@router.get("", response_class=PlainTextResponse)
async def metrics():
    """Scrape endpoint; unauthenticated like any Prometheus target."""
    try:
        update_circuit_breaker_metrics(
            breaker.get_metrics()
            for breaker in (
                get_llm_client().circuit_breaker,
                get_downstream_client().circuit_breaker,
            )
        )
        metrics_data = get_metrics()
    except Exception as e:
        logger.error(
            "metrics_endpoint_error",
            error=str(e),
            error_type=type(e).__name__,
            exc_info=True,
        )
        return Response(
            content=b"# Error collecting metrics\n",
            media_type=get_metrics_content_type(),
        )
    return Response(content=metrics_data, media_type=get_metrics_content_type())
