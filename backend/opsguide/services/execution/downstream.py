"""
Synchronous client for the downstream operational API.

Every failure mode (timeout, transport error, non-2xx status, non-object JSON,
open circuit) surfaces as DownstreamError so the step engine has a single
recovery point.

Environment configuration (see opsguide.core.config):
- DOWNSTREAM_API_BASE: Base URL (default: http://localhost:8094)
- DOWNSTREAM_API_TIMEOUT_SECONDS: Per-request timeout (default: 5.0)
"""
import time
from typing import Any, Dict, Optional

import httpx

from opsguide.core.circuit_breaker import CircuitBreaker, CircuitBreakerOpenError
from opsguide.core.config import get_settings
from opsguide.core.errors import DownstreamError
from opsguide.core.logging import get_logger
from opsguide.core.metrics import record_downstream_request
from opsguide.core.tracing import get_tracer, inject_trace_context

logger = get_logger(__name__)


class DownstreamClient:
    """Thin JSON-over-HTTP client with circuit breaker protection."""

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 5.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._client = httpx.Client(
            base_url=self.base_url,
            timeout=timeout_seconds,
            transport=transport,
        )
        self.circuit_breaker = CircuitBreaker(
            name="downstream_api",
            failure_threshold=0.5,
            time_window_seconds=60,
            open_duration_seconds=30,
            half_open_test_percentage=0.1,
        )

    def _send(
        self,
        method: str,
        path: str,
        json_body: Optional[Dict[str, Any]],
        headers: Dict[str, str],
    ) -> httpx.Response:
        response = self._client.request(method, path, json=json_body, headers=headers)
        response.raise_for_status()
        return response

    def request(
        self,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Perform one call and return the decoded JSON object.

        Args:
            method: HTTP method
            path: Path relative to the base URL, placeholders already filled
            json: Optional request body

        Returns:
            Response body as a dict ({} for an empty body)

        Raises:
            DownstreamError: On any failure
        """
        method = method.upper()
        headers = {"Accept": "application/json"}
        outcome = "success"
        start = time.perf_counter()

        with get_tracer().start_as_current_span("downstream.request") as span:
            span.set_attribute("http.method", method)
            span.set_attribute("http.target", path)
            inject_trace_context(headers)
            try:
                response = self.circuit_breaker.call(self._send, method, path, json, headers)
            except CircuitBreakerOpenError as e:
                outcome = "circuit_open"
                raise DownstreamError(str(e), method=method, path=path) from e
            except httpx.TimeoutException as e:
                outcome = "timeout"
                raise DownstreamError(
                    f"Downstream timeout after {self.timeout_seconds}s", method=method, path=path
                ) from e
            except httpx.HTTPStatusError as e:
                outcome = "http_error"
                raise DownstreamError(
                    f"Downstream returned HTTP {e.response.status_code}",
                    method=method,
                    path=path,
                    status_code=e.response.status_code,
                ) from e
            except httpx.HTTPError as e:
                outcome = "transport_error"
                raise DownstreamError(
                    f"Downstream unreachable: {e}", method=method, path=path
                ) from e
            except Exception as e:
                # httpx.InvalidURL and friends sit outside the HTTPError tree
                outcome = "error"
                raise DownstreamError(
                    f"Downstream request failed: {e}", method=method, path=path
                ) from e
            finally:
                duration = time.perf_counter() - start
                record_downstream_request(method, outcome, duration)
                logger.debug(
                    "downstream_request_completed",
                    method=method,
                    path=path,
                    outcome=outcome,
                    latency_ms=int(duration * 1000),
                )

            span.set_attribute("http.status_code", response.status_code)

        if not response.content:
            return {}
        try:
            body = response.json()
        except ValueError as e:
            raise DownstreamError(
                "Downstream returned invalid JSON",
                method=method,
                path=path,
                status_code=response.status_code,
            ) from e
        if not isinstance(body, dict):
            raise DownstreamError(
                "Downstream returned a non-object JSON body",
                method=method,
                path=path,
                status_code=response.status_code,
            )
        return body

    def close(self) -> None:
        self._client.close()


_downstream_client: Optional[DownstreamClient] = None


def get_downstream_client() -> DownstreamClient:
    """Global downstream client built from settings."""
    global _downstream_client
    if _downstream_client is None:
        settings = get_settings()
        _downstream_client = DownstreamClient(
            base_url=settings.downstream_api_base,
            timeout_seconds=settings.downstream_timeout_seconds,
        )
    return _downstream_client


def close_downstream_client() -> None:
    global _downstream_client
    if _downstream_client is not None:
        _downstream_client.close()
        _downstream_client = None
