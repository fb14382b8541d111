import os

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import __version__
from .core.errors import InputError
from .core.logging import configure_logging, get_logger, get_trace_id
from .core.middleware import TraceIDMiddleware
from .core.tracing import (
    StatusCode,
    configure_tracing,
    get_trace_id_from_context,
    instrument_fastapi,
    record_exception,
    set_span_status,
    shutdown_tracing,
)
from .models.responses import build_error_artifact
from .routes import decisions, health, metrics, steps
from .services.ai.knowledge import initialize_knowledge_retrieval
from .services.ai.orchestration import shutdown_decision_orchestrator
from .services.execution.downstream import close_downstream_client

# Configure structured logging
# Use JSON output in production (containerized), console output in development
log_level = os.getenv("LOG_LEVEL", "INFO")
json_output = os.getenv("LOG_JSON", "true").lower() == "true"
configure_logging(log_level=log_level, json_output=json_output)

logger = get_logger(__name__)

# Spans are exported only when OTEL_EXPORTER_OTLP_ENDPOINT is set
configure_tracing()

app = FastAPI(
    title="OpsGuide API",
    description="Operational request classification, remediation planning and step execution",
    version=__version__,
)

# CORS for local dev; restrict in production
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Add trace ID middleware (must be after CORS middleware)
app.add_middleware(TraceIDMiddleware)

instrument_fastapi(app)


@app.on_event("startup")
async def startup_event():
    """Initialize services on application startup."""
    logger.info("app_startup_started")

    # Augmented requests fall back to the fast path while the index is unavailable
    if initialize_knowledge_retrieval():
        logger.info("app_startup_knowledge_retrieval_ready")
    else:
        logger.warning(
            "app_startup_knowledge_retrieval_unavailable",
            message="Knowledge index not available. Augmented mode will fall back to fast mode.",
        )

    logger.info("app_startup_completed")


@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup resources on application shutdown."""
    logger.info("app_shutdown_started")
    shutdown_decision_orchestrator()
    close_downstream_client()
    shutdown_tracing()
    logger.info("app_shutdown_completed")


def _error_response(status_code: int, message: str) -> JSONResponse:
    trace_id = get_trace_id() or get_trace_id_from_context()
    artifact = build_error_artifact(message)
    response = JSONResponse(
        status_code=status_code,
        content=artifact.model_dump(mode="json", by_alias=True),
    )
    if trace_id:
        response.headers["X-Trace-ID"] = trace_id
    return response


# Error handlers
@app.exception_handler(InputError)
async def input_error_handler(request: Request, exc: InputError):
    """Invalid input outside the decision route's own validation."""
    set_span_status(StatusCode.ERROR, str(exc))
    logger.warning(
        "input_error",
        error=str(exc),
        field=exc.field,
        path=request.url.path,
        method=request.method,
    )
    return _error_response(400, str(exc))


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle general exceptions."""
    record_exception(exc)
    logger.error(
        "unhandled_exception",
        error=str(exc),
        error_type=type(exc).__name__,
        path=request.url.path,
        method=request.method,
        exc_info=True,
    )
    return _error_response(500, str(exc))


# Include routers
app.include_router(decisions.router, prefix="/v1", tags=["Decisions"])
app.include_router(steps.router, prefix="/v1", tags=["Steps"])
app.include_router(health.router, prefix="/v1", tags=["Health"])
app.include_router(metrics.router, prefix="/metrics", tags=["Metrics"])
