"""
Async LLM client for the reasoning node.

Design constraints:
- No provider SDKs; httpx against an OpenAI-compatible /chat/completions API
- Every failure raises to the caller, which falls back to the fast path

Environment configuration (see opsguide.core.config):
- LLM_API_BASE: Base URL for API (default: https://api.openai.com/v1)
- LLM_API_KEY: API key / bearer token; unset disables the client
- LLM_MODEL: Model name (default: gpt-4o-mini)
- LLM_TIMEOUT_SECONDS: Request timeout in seconds (default: 15.0)
- LLM_COST_PER_1K_TOKENS: Optional cost hint for metrics (USD, float)
"""
import time
from typing import Any, Dict, List, Optional

import httpx

from opsguide.core.circuit_breaker import CircuitBreaker, CircuitBreakerOpenError
from opsguide.core.config import get_settings
from opsguide.core.logging import get_logger
from opsguide.core.metrics import (
    record_llm_error,
    record_llm_request,
    record_llm_tokens_and_cost,
)

logger = get_logger(__name__)


class LLMClient:
    """Async HTTP client for chat completions."""

    def __init__(
        self,
        api_base: str,
        api_key: Optional[str],
        model: str,
        timeout_seconds: float = 15.0,
        cost_per_1k_tokens: float = 0.0,
    ):
        self.api_base = api_base.rstrip("/")
        self.api_key = api_key
        self.model = model
        self.timeout_seconds = timeout_seconds
        self.cost_per_1k_tokens = cost_per_1k_tokens

        self.circuit_breaker = CircuitBreaker(
            name="llm",
            failure_threshold=0.5,
            time_window_seconds=60,
            open_duration_seconds=30,
            half_open_test_percentage=0.1,
        )

    async def _post(self, path: str, json_payload: Dict[str, Any]) -> httpx.Response:
        """Low-level POST helper (isolated for circuit breaker)."""
        headers = {
            "Content-Type": "application/json",
        }
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        url = f"{self.api_base}{path}"
        async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
            response = await client.post(url, headers=headers, json=json_payload)
        # Raised inside the breaker so 5xx/4xx count as failures.
        response.raise_for_status()
        return response

    async def chat(
        self,
        agent: str,
        messages: List[Dict[str, str]],
        max_tokens: int = 1024,
        temperature: float = 0.1,
    ) -> Dict[str, Any]:
        """
        Call the chat completion endpoint.

        Args:
            agent: Logical agent name ("reasoning")
            messages: OpenAI-style chat messages
            max_tokens: Max tokens for completion
            temperature: Sampling temperature

        Returns:
            Raw JSON response from the API.

        Raises:
            RuntimeError: No API key configured
            CircuitBreakerOpenError, httpx.HTTPError: Call rejected or failed
        """
        if not self.api_key:
            record_llm_error(agent, "missing_api_key")
            raise RuntimeError("LLM API key not configured")

        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }

        start = time.time()

        try:
            response: httpx.Response = await self.circuit_breaker.call_async(
                self._post,
                "/chat/completions",
                json_payload=payload,
            )
        except CircuitBreakerOpenError:
            record_llm_error(agent, "circuit_open")
            logger.warning("llm_circuit_open", agent=agent)
            raise
        except httpx.TimeoutException as exc:
            record_llm_error(agent, "timeout")
            logger.warning(
                "llm_timeout",
                agent=agent,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise
        except httpx.HTTPError as exc:
            record_llm_error(agent, "http_error")
            logger.warning(
                "llm_http_error",
                agent=agent,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise
        finally:
            record_llm_request(agent, self.model, time.time() - start)

        data = response.json()

        usage = data.get("usage") or {}
        input_tokens = int(usage.get("prompt_tokens") or 0)
        output_tokens = int(usage.get("completion_tokens") or 0)
        total_tokens = input_tokens + output_tokens
        cost_usd = 0.0
        if self.cost_per_1k_tokens > 0 and total_tokens > 0:
            cost_usd = (total_tokens / 1000.0) * self.cost_per_1k_tokens

        record_llm_tokens_and_cost(
            agent=agent,
            model=self.model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost_usd=cost_usd,
        )

        return data


def extract_message_text(data: Dict[str, Any]) -> str:
    """Return the first choice's message content from a chat completion response."""
    choices = data.get("choices") or []
    if not choices:
        raise ValueError("LLM response has no choices")
    content = (choices[0].get("message") or {}).get("content")
    if not content:
        raise ValueError("LLM response has empty content")
    return content


_llm_client: Optional[LLMClient] = None


def get_llm_client() -> LLMClient:
    """Global LLM client instance built from settings."""
    global _llm_client
    if _llm_client is None:
        settings = get_settings()
        _llm_client = LLMClient(
            api_base=settings.llm_api_base,
            api_key=settings.llm_api_key,
            model=settings.llm_model,
            timeout_seconds=settings.llm_timeout_seconds,
            cost_per_1k_tokens=settings.llm_cost_per_1k_tokens,
        )
    return _llm_client
