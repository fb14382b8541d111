"""
Exception hierarchy for OpsGuide.

- InputError: request rejected at the boundary (HTTP 400)
- PipelineError: augmented pipeline failure, recovered by the fast-path fallback
- DownstreamError: operational API failure, recovered by fail-open substitution
"""
from typing import Optional


class OpsGuideError(Exception):
    """Base class for all OpsGuide errors."""


class InputError(OpsGuideError):
    """Raised when a request is missing required input (e.g. a blank query)."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class PipelineError(OpsGuideError):
    """Raised when a node of the augmented decision pipeline fails."""

    def __init__(self, node: str, message: str):
        super().__init__(f"{node}: {message}")
        self.node = node


class DownstreamError(OpsGuideError):
    """Raised when a call to the downstream operational API fails."""

    def __init__(
        self,
        message: str,
        method: Optional[str] = None,
        path: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.method = method
        self.path = path
        self.status_code = status_code
