"""
Mock LLM Provider
=================

Scripted provider for tests and offline runs.

GUARANTEES:
- No network access
- Per-kind scripted responses (dict, raw text, or callable)
- Explicit failure modes can be triggered
- Every invocation is counted per kind
"""

from __future__ import annotations
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Union
import asyncio
import json

from ..contracts import InferenceRequest, RequestKind
from .base import (
    LLMProvider,
    ProviderVersion,
    ProviderResponse,
    ProviderErrorCode,
    InvocationParams,
)


ScriptedResponse = Union[Dict[str, Any], str, Callable[[InferenceRequest], Any]]


class MockProvider(LLMProvider):
    """
    Scripted provider.

    A kind without a script answers with "{}", which the hardener turns
    into the kind's default record.
    """

    def __init__(
        self,
        responses: Optional[Dict[RequestKind, ScriptedResponse]] = None,
        latency_ms: float = 0.0,
        failure_mode: Optional[ProviderErrorCode] = None
    ):
        """
        Args:
            responses: Response per kind. A callable receives the request.
            latency_ms: Simulated latency (awaited, so timeouts can fire)
            failure_mode: If set, all invocations fail with this error
        """
        self._responses: Dict[RequestKind, ScriptedResponse] = dict(responses or {})
        self._latency_ms = latency_ms
        self._failure_mode = failure_mode
        self._calls: Counter = Counter()
        self._requests: List[InferenceRequest] = []
        self._version = ProviderVersion(
            provider_id="mock",
            model_id="mock-scripted-v1",
            api_version="1.0.0",
        )

    @property
    def provider_id(self) -> str:
        return "mock"

    def get_version(self) -> ProviderVersion:
        return self._version

    def script(self, kind: RequestKind, response: ScriptedResponse) -> None:
        """Set or replace the scripted response for a kind."""
        self._responses[kind] = response

    def set_failure_mode(self, failure_mode: Optional[ProviderErrorCode]) -> None:
        self._failure_mode = failure_mode

    def call_count(self, kind: Optional[RequestKind] = None) -> int:
        """Invocations so far, for one kind or in total."""
        if kind is None:
            return sum(self._calls.values())
        return self._calls[kind]

    @property
    def requests(self) -> List[InferenceRequest]:
        """Requests received, oldest first (copy)."""
        return list(self._requests)

    async def invoke(
        self,
        request: InferenceRequest,
        prompt: str,
        params: InvocationParams
    ) -> ProviderResponse:
        invoked_at = datetime.now(timezone.utc)
        self._calls[request.kind] += 1
        self._requests.append(request)

        if self._latency_ms:
            await asyncio.sleep(self._latency_ms / 1000.0)

        if self._failure_mode is not None:
            return ProviderResponse(
                success=False,
                error_code=self._failure_mode,
                error_message=f"Mock provider configured to fail: {self._failure_mode.value}",
                provider_version=self._version,
                invoked_at=invoked_at,
                latency_ms=self._latency_ms,
            )

        scripted = self._responses.get(request.kind, {})
        if callable(scripted):
            scripted = scripted(request)

        content = scripted if isinstance(scripted, str) else json.dumps(scripted, sort_keys=True)

        return ProviderResponse(
            success=True,
            content=content,
            provider_version=self._version,
            invoked_at=invoked_at,
            latency_ms=self._latency_ms,
        )
