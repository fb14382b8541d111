"""
Request context middleware.

For every HTTP request:
- Resolve the trace id (X-Trace-ID > X-Request-ID > OpenTelemetry span > new UUID)
- Generate a request id
- Bind trace id, request id and X-User-ID into the logging context
- Open an http.request span, record RED metrics, log start and completion
- Echo X-Trace-ID and X-Request-ID on the response
"""
import time
from typing import Callable

from fastapi import HTTPException, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from .logging import (
    generate_request_id,
    generate_trace_id,
    get_logger,
    set_request_id,
    set_trace_id,
    set_user_id,
)
from .metrics import record_http_request
from .tracing import (
    StatusCode,
    extract_trace_context,
    get_trace_id_from_context,
    get_tracer,
    record_exception,
    set_span_attribute,
    set_span_status,
)

logger = get_logger(__name__)


def _hex_to_uuid(trace_hex: str) -> str:
    if len(trace_hex) != 32:
        return trace_hex
    return "-".join(
        (trace_hex[0:8], trace_hex[8:12], trace_hex[12:16], trace_hex[16:20], trace_hex[20:32])
    )


class TraceIDMiddleware(BaseHTTPMiddleware):
    """Binds correlation ids for logs, spans and response headers."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        extract_trace_context(dict(request.headers))

        trace_id = request.headers.get("X-Trace-ID") or request.headers.get("X-Request-ID")
        if not trace_id:
            otel_trace_id = get_trace_id_from_context()
            trace_id = _hex_to_uuid(otel_trace_id) if otel_trace_id else generate_trace_id()

        request_id = generate_request_id()
        user_id = request.headers.get("X-User-ID")

        set_trace_id(trace_id)
        set_request_id(request_id)
        if user_id:
            set_user_id(user_id)

        tracer = get_tracer()
        with tracer.start_as_current_span("http.request"):
            set_span_attribute("http.method", request.method)
            set_span_attribute("http.route", request.url.path)
            if user_id:
                set_span_attribute("user.id", user_id)

            start_time = time.time()
            request.state.start_time = start_time
            logger.info(
                "request_started",
                method=request.method,
                path=request.url.path,
                query_params=dict(request.query_params),
            )

            try:
                response = await call_next(request)
            except HTTPException as exc:
                set_span_attribute("http.status_code", exc.status_code)
                set_span_attribute("error", True)
                raise
            except Exception as e:
                process_time = time.time() - start_time
                record_exception(e)
                set_span_status(StatusCode.ERROR, str(e))
                set_span_attribute("http.status_code", 500)
                record_http_request(
                    method=request.method,
                    endpoint=request.url.path,
                    status_code=500,
                    duration_seconds=process_time,
                )
                logger.error(
                    "request_failed",
                    method=request.method,
                    path=request.url.path,
                    error=str(e),
                    error_type=type(e).__name__,
                    latency_ms=int(process_time * 1000),
                    exc_info=True,
                )
                raise
            else:
                process_time = time.time() - start_time
                set_span_attribute("http.status_code", response.status_code)
                record_http_request(
                    method=request.method,
                    endpoint=request.url.path,
                    status_code=response.status_code,
                    duration_seconds=process_time,
                )
                logger.info(
                    "request_completed",
                    method=request.method,
                    path=request.url.path,
                    status_code=response.status_code,
                    latency_ms=int(process_time * 1000),
                )

                response.headers["X-Trace-ID"] = trace_id
                response.headers["X-Request-ID"] = request_id
                return response
            finally:
                set_trace_id(None)
                set_request_id(None)
                set_user_id(None)
