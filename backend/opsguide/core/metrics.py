"""
Prometheus metrics for OpsGuide.

Metric groups:
- RED metrics for the HTTP surface
- Decision metrics: classifications, decision requests, orchestration nodes, fallbacks
- Step execution metrics: executions, fail-open substitutions, downstream calls
- LLM metrics: requests, errors, tokens, cost
- Resilience metrics: circuit breaker state per dependency
- Resource metrics: CPU and memory

Naming follows Prometheus conventions: counters end in _total, durations in _seconds.
"""
from typing import Iterable, Optional

import psutil
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from opsguide.core.logging import get_logger

logger = get_logger(__name__)

registry = REGISTRY

LATENCY_BUCKETS = [0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]

# ============================================================================
# RED METRICS
# ============================================================================

http_requests_total = Counter(
    "http_requests_total",
    "Total number of HTTP requests",
    ["method", "endpoint", "status"],
    registry=registry,
)

http_errors_total = Counter(
    "http_errors_total",
    "Total number of HTTP errors",
    ["method", "endpoint", "status_code"],
    registry=registry,
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "endpoint"],
    buckets=LATENCY_BUCKETS,
    registry=registry,
)

# ============================================================================
# DECISION METRICS
# ============================================================================

classifications_total = Counter(
    "opsguide_classifications_total",
    "Total number of pattern classifications by resolved task id",
    ["task_id"],
    registry=registry,
)

decision_requests_total = Counter(
    "opsguide_decision_requests_total",
    "Total number of decision requests by mode and resulting status",
    ["mode", "status"],
    registry=registry,
)

orchestration_node_latency_seconds = Histogram(
    "opsguide_orchestration_node_latency_seconds",
    "Latency of augmented pipeline nodes in seconds",
    ["node"],
    buckets=LATENCY_BUCKETS,
    registry=registry,
)

orchestration_fallback_total = Counter(
    "opsguide_orchestration_fallback_total",
    "Total number of augmented pipeline runs that fell back to the fast path",
    ["node"],
    registry=registry,
)

# ============================================================================
# STEP EXECUTION METRICS
# ============================================================================

step_executions_total = Counter(
    "opsguide_step_executions_total",
    "Total number of step executions by step type and final status",
    ["step_type", "status"],
    registry=registry,
)

step_fail_open_total = Counter(
    "opsguide_step_fail_open_total",
    "Total number of downstream failures replaced by a success result",
    ["step_type"],
    registry=registry,
)

downstream_requests_total = Counter(
    "opsguide_downstream_requests_total",
    "Total number of downstream operational API calls",
    ["method", "outcome"],
    registry=registry,
)

downstream_request_latency_seconds = Histogram(
    "opsguide_downstream_request_latency_seconds",
    "Downstream operational API latency in seconds",
    ["method"],
    buckets=LATENCY_BUCKETS,
    registry=registry,
)

# ============================================================================
# LLM METRICS
# ============================================================================

llm_requests_total = Counter(
    "opsguide_llm_requests_total",
    "Total number of LLM requests",
    ["agent", "model"],
    registry=registry,
)

llm_request_latency_seconds = Histogram(
    "opsguide_llm_request_latency_seconds",
    "LLM request latency in seconds",
    ["agent", "model"],
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
    registry=registry,
)

llm_errors_total = Counter(
    "opsguide_llm_errors_total",
    "Total number of LLM errors",
    ["agent", "error_type"],
    registry=registry,
)

llm_tokens_total = Counter(
    "opsguide_llm_tokens_total",
    "Total number of LLM tokens",
    ["agent", "model", "direction"],
    registry=registry,
)

llm_cost_usd_total = Counter(
    "opsguide_llm_cost_usd_total",
    "Estimated LLM cost in USD",
    ["agent", "model"],
    registry=registry,
)

# ============================================================================
# RESILIENCE METRICS
# ============================================================================

circuit_breaker_state = Gauge(
    "opsguide_circuit_breaker_state",
    "Circuit breaker state (0=closed, 1=half_open, 2=open)",
    ["circuit_breaker"],
    registry=registry,
)

CIRCUIT_STATE_VALUES = {"closed": 0, "half_open": 1, "open": 2}

# ============================================================================
# RESOURCE METRICS
# ============================================================================

system_cpu_usage_percent = Gauge(
    "system_cpu_usage_percent",
    "System CPU usage percentage",
    registry=registry,
)

system_memory_usage_bytes = Gauge(
    "system_memory_usage_bytes",
    "System memory usage in bytes",
    registry=registry,
)


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def normalize_endpoint(path: str) -> str:
    """
    Strip query strings and trailing slashes so label cardinality stays bounded.

    Examples:
        /v1/request?mode=rag -> /v1/request
        /v1/ -> /v1
    """
    path = path.split("?", 1)[0]
    if len(path) > 1:
        path = path.rstrip("/")
    return path or "/"


def record_http_request(
    method: str,
    endpoint: str,
    status_code: int,
    duration_seconds: float,
) -> None:
    """Record RED metrics for one HTTP request."""
    normalized = normalize_endpoint(endpoint)
    http_requests_total.labels(
        method=method, endpoint=normalized, status=str(status_code)
    ).inc()
    if status_code >= 400:
        http_errors_total.labels(
            method=method, endpoint=normalized, status_code=str(status_code)
        ).inc()
    http_request_duration_seconds.labels(method=method, endpoint=normalized).observe(
        duration_seconds
    )


def record_classification(task_id: Optional[str]) -> None:
    classifications_total.labels(task_id=task_id or "none").inc()


def record_decision_request(mode: str, status: str) -> None:
    decision_requests_total.labels(mode=mode, status=status).inc()


def record_orchestration_node(node: str, duration_seconds: float) -> None:
    orchestration_node_latency_seconds.labels(node=node).observe(duration_seconds)


def record_orchestration_fallback(node: str) -> None:
    orchestration_fallback_total.labels(node=node).inc()


def record_step_execution(step_type: str, status: str) -> None:
    step_executions_total.labels(step_type=step_type, status=status).inc()


def record_step_fail_open(step_type: str) -> None:
    step_fail_open_total.labels(step_type=step_type).inc()


def record_downstream_request(method: str, outcome: str, duration_seconds: float) -> None:
    """
    Record one downstream API call.

    Args:
        method: HTTP method
        outcome: "success", "http_error", "timeout", "transport_error", "circuit_open" or "error"
        duration_seconds: Wall time of the call
    """
    downstream_requests_total.labels(method=method, outcome=outcome).inc()
    downstream_request_latency_seconds.labels(method=method).observe(duration_seconds)


def record_llm_request(agent: str, model: str, duration_seconds: float) -> None:
    llm_requests_total.labels(agent=agent, model=model).inc()
    llm_request_latency_seconds.labels(agent=agent, model=model).observe(duration_seconds)


def record_llm_error(agent: str, error_type: str) -> None:
    llm_errors_total.labels(agent=agent, error_type=error_type).inc()


def record_llm_tokens_and_cost(
    agent: str,
    model: str,
    input_tokens: int,
    output_tokens: int,
    cost_usd: float,
) -> None:
    if input_tokens:
        llm_tokens_total.labels(agent=agent, model=model, direction="input").inc(input_tokens)
    if output_tokens:
        llm_tokens_total.labels(agent=agent, model=model, direction="output").inc(output_tokens)
    if cost_usd > 0:
        llm_cost_usd_total.labels(agent=agent, model=model).inc(cost_usd)


def update_resource_metrics() -> None:
    """Refresh CPU and memory gauges; called when metrics are scraped."""
    try:
        system_cpu_usage_percent.set(psutil.cpu_percent(interval=None))
        system_memory_usage_bytes.set(psutil.virtual_memory().used)
    except Exception as e:
        logger.warning(
            "metrics_resource_update_failed",
            error=str(e),
            error_type=type(e).__name__,
        )


def update_circuit_breaker_metrics(snapshots: Iterable[dict]) -> None:
    """Set the state gauge from CircuitBreaker.get_metrics() snapshots."""
    for snapshot in snapshots:
        circuit_breaker_state.labels(circuit_breaker=snapshot["name"]).set(
            CIRCUIT_STATE_VALUES[snapshot["state"]]
        )


def get_metrics() -> bytes:
    """Prometheus text exposition of the registry."""
    update_resource_metrics()
    return generate_latest(registry)


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
