"""
Unit tests for the downstream API client.

Requests are served by httpx.MockTransport; no network access.
"""
import json
import time

import httpx
import pytest
from prometheus_client import REGISTRY

from opsguide.core.circuit_breaker import CircuitState
from opsguide.core.errors import DownstreamError
from opsguide.services.execution.downstream import DownstreamClient


def _client(handler) -> DownstreamClient:
    return DownstreamClient(
        base_url="http://downstream.test/",
        timeout_seconds=1.0,
        transport=httpx.MockTransport(handler),
    )


def test_returns_json_object():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"status": "pending"})

    client = _client(handler)

    assert client.request("get", "/api/v2/cases/2024-001/status") == {"status": "pending"}
    assert seen[0].method == "GET"
    assert str(seen[0].url) == "http://downstream.test/api/v2/cases/2024-001/status"
    assert seen[0].headers["Accept"] == "application/json"


def test_sends_json_body():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"cancellation_id": "cx-1"})

    client = _client(handler)
    body = {"reason": "operational_request", "notify_stakeholders": True}

    assert client.request("POST", "/api/v2/cases/2024-001/cancel", json=body) == {
        "cancellation_id": "cx-1"
    }
    assert json.loads(seen[0].content) == body


def test_empty_body_is_empty_dict():
    client = _client(lambda request: httpx.Response(204))

    assert client.request("PATCH", "/api/v2/samples/2024-001") == {}


def test_http_error_status_is_mapped():
    client = _client(lambda request: httpx.Response(404, json={"detail": "not found"}))

    with pytest.raises(DownstreamError) as exc_info:
        client.request("GET", "/api/v2/orders/2024-001/status")

    assert exc_info.value.status_code == 404
    assert exc_info.value.method == "GET"
    assert exc_info.value.path == "/api/v2/orders/2024-001/status"


def test_timeout_is_mapped():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    client = _client(handler)

    with pytest.raises(DownstreamError) as exc_info:
        client.request("GET", "/api/v2/orders/2024-001/status")

    assert "timeout" in str(exc_info.value)
    assert exc_info.value.status_code is None


def test_transport_error_is_mapped():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    client = _client(handler)

    with pytest.raises(DownstreamError) as exc_info:
        client.request("GET", "/api/v2/orders/2024-001/status")

    assert "unreachable" in str(exc_info.value)


@pytest.mark.parametrize(
    "content",
    [b"not json", b"[1, 2, 3]"],
)
def test_non_object_body_is_rejected(content):
    client = _client(lambda request: httpx.Response(200, content=content))

    with pytest.raises(DownstreamError):
        client.request("GET", "/api/v2/orders/2024-001/status")


def test_open_circuit_rejects_without_calling():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json={})

    client = _client(handler)
    client.circuit_breaker._state = CircuitState.OPEN
    client.circuit_breaker._opened_at = time.time()

    with pytest.raises(DownstreamError) as exc_info:
        client.request("GET", "/api/v2/orders/2024-001/status")

    assert "OPEN" in str(exc_info.value)
    assert calls == []


def test_invalid_url_maps_to_downstream_error():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json={})

    client = _client(handler)
    labels = {"method": "GET", "outcome": "error"}
    before = REGISTRY.get_sample_value("opsguide_downstream_requests_total", labels) or 0.0

    with pytest.raises(DownstreamError) as exc_info:
        client.request("GET", "/api/v2/cases/2024\x01001/status")

    assert exc_info.value.method == "GET"
    assert isinstance(exc_info.value.__cause__, httpx.InvalidURL)
    assert calls == []
    assert REGISTRY.get_sample_value("opsguide_downstream_requests_total", labels) == before + 1
