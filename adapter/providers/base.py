"""
LLM Provider Abstraction Layer
==============================

Abstract interface for inference providers (Gemini, scripted mock, ...).

BOUNDARY ENFORCEMENT:
- Providers are stateless invocation handlers
- Failures are explicit ProviderResponse values, never exceptions
- Providers never retry; retry policy belongs to callers
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from ..contracts import InferenceRequest


class ProviderErrorCode(Enum):
    """Explicit failure codes for provider invocations."""
    TIMEOUT = "timeout"
    RATE_LIMITED = "rate_limited"
    INVALID_RESPONSE = "invalid_response"
    CONTENT_FILTERED = "content_filtered"
    API_ERROR = "api_error"
    NETWORK_ERROR = "network_error"


@dataclass(frozen=True)
class ProviderVersion:
    """Immutable provider version info, recorded with every trace."""
    provider_id: str       # "gemini" | "mock"
    model_id: str          # "gemini-2.5-flash"
    api_version: str


@dataclass(frozen=True)
class ProviderResponse:
    """
    Immutable response from a provider.

    INVARIANT: Either (success=True, content set) or (success=False, error set)
    content is the raw text returned by the model; it is NOT parsed here.
    """
    success: bool
    content: Optional[str] = None

    error_code: Optional[ProviderErrorCode] = None
    error_message: Optional[str] = None

    provider_version: Optional[ProviderVersion] = None
    invoked_at: Optional[datetime] = None
    latency_ms: float = 0.0

    def __post_init__(self):
        if self.success and self.content is None:
            raise ValueError("Successful response must have content")
        if not self.success and self.error_code is None:
            raise ValueError("Failed response must have error_code")


@dataclass(frozen=True)
class InvocationParams:
    """Frozen invocation parameters."""
    temperature: float = 0.0
    max_tokens: int = 2048
    timeout_seconds: float = 20.0


class LLMProvider(ABC):
    """
    Abstract provider interface.

    GUARANTEES:
    - invoke() MUST return ProviderResponse, never raise
    - Timeouts inside the provider map to TIMEOUT
    """

    @abstractmethod
    async def invoke(
        self,
        request: InferenceRequest,
        prompt: str,
        params: InvocationParams
    ) -> ProviderResponse:
        """Invoke the model with the rendered prompt and any media parts."""

    @abstractmethod
    def get_version(self) -> ProviderVersion:
        """Get provider version info."""

    @property
    @abstractmethod
    def provider_id(self) -> str:
        """Unique provider identifier."""

    async def aclose(self) -> None:
        """Release network resources. Default: nothing to release."""
