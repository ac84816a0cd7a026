"""
Inference Client
================

The single call path from the engine to the inference service.

GUARANTEES:
===========
1. infer() never raises; every failure is an InferenceOutcome with error set
2. Every call is bounded by timeout_seconds (hard cancellation point)
3. No retries; retry policy lives in callers
4. Every call is traced
5. No business logic: raw output is parsed, never validated or defaulted
"""

from __future__ import annotations
from collections import deque
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Optional, Sequence
import asyncio
import json
import logging
import time

from .contracts import (
    InferenceError,
    InferenceErrorCode,
    InferenceOutcome,
    InferenceRequest,
    InvocationTrace,
    MediaPart,
    RequestKind,
)
from .prompts import CanonicalPrompt
from .schemas import TEMPERATURES
from .providers.base import (
    InvocationParams,
    LLMProvider,
    ProviderErrorCode,
    ProviderResponse,
)

logger = logging.getLogger(__name__)


_PROVIDER_ERROR_MAP = {
    ProviderErrorCode.TIMEOUT: InferenceErrorCode.TIMEOUT,
    ProviderErrorCode.RATE_LIMITED: InferenceErrorCode.RATE_LIMITED,
    ProviderErrorCode.INVALID_RESPONSE: InferenceErrorCode.INVALID_RESPONSE,
    ProviderErrorCode.CONTENT_FILTERED: InferenceErrorCode.CONTENT_FILTERED,
    ProviderErrorCode.API_ERROR: InferenceErrorCode.API_ERROR,
    ProviderErrorCode.NETWORK_ERROR: InferenceErrorCode.NETWORK_ERROR,
}


def extract_json_object(raw: str) -> Dict[str, Any]:
    """
    Parse the outermost {...} span of raw model text.

    Models sometimes wrap JSON in prose or code fences.
    Raises ValueError if no JSON object can be recovered.
    """
    if not isinstance(raw, str):
        raise ValueError("Response content is not text")
    start = raw.find("{")
    end = raw.rfind("}")
    if start == -1 or end < start:
        raise ValueError("No JSON object in response")
    try:
        parsed = json.loads(raw[start:end + 1])
    except json.JSONDecodeError as e:
        raise ValueError(f"Response is not valid JSON: {e}")
    if not isinstance(parsed, dict):
        raise ValueError("Response JSON is not an object")
    return parsed


class InferenceClient:
    """
    Timeout-bounded, traced inference client.

    EXPLICIT FAILURE STATES:
    - Exceeded timeout_seconds → TIMEOUT
    - Provider failure → mapped InferenceErrorCode
    - Unparseable body → INVALID_RESPONSE
    - Provider raised despite its contract → INTERNAL_ERROR
    """

    def __init__(
        self,
        provider: LLMProvider,
        timeout_seconds: float = 20.0,
        max_tokens: int = 2048,
        max_traces: int = 1000
    ):
        self._provider = provider
        self._timeout_seconds = timeout_seconds
        self._max_tokens = max_tokens
        self._traces: Deque[InvocationTrace] = deque(maxlen=max_traces)

    @property
    def timeout_seconds(self) -> float:
        return self._timeout_seconds

    @property
    def provider(self) -> LLMProvider:
        return self._provider

    async def infer(
        self,
        kind: RequestKind,
        payload: Dict[str, Any],
        media: Sequence[MediaPart] = ()
    ) -> InferenceOutcome:
        """
        Send one request and return (raw, error) as an InferenceOutcome.

        NEVER raises, NEVER blocks longer than timeout_seconds.
        """
        request = InferenceRequest(kind=kind, payload=dict(payload), media=tuple(media))
        request_hash = request.content_hash()
        started_at = datetime.now(timezone.utc)
        start_time = time.monotonic()

        try:
            prompt = CanonicalPrompt.create(request)
            params = InvocationParams(
                temperature=TEMPERATURES.get(kind, 0.0),
                max_tokens=self._max_tokens,
                timeout_seconds=self._timeout_seconds,
            )
            response = await asyncio.wait_for(
                self._provider.invoke(request, prompt.prompt_text, params),
                timeout=self._timeout_seconds,
            )
        except asyncio.TimeoutError:
            return self._fail(
                request, request_hash, started_at, start_time,
                InferenceErrorCode.TIMEOUT,
                f"Inference timed out after {self._timeout_seconds}s",
            )
        except Exception as e:
            return self._fail(
                request, request_hash, started_at, start_time,
                InferenceErrorCode.INTERNAL_ERROR, str(e),
            )

        return self._handle_response(request, request_hash, started_at, start_time, response)

    def _handle_response(
        self,
        request: InferenceRequest,
        request_hash: str,
        started_at: datetime,
        start_time: float,
        response: ProviderResponse
    ) -> InferenceOutcome:
        if not response.success:
            return self._fail(
                request, request_hash, started_at, start_time,
                _PROVIDER_ERROR_MAP.get(response.error_code, InferenceErrorCode.INTERNAL_ERROR),
                response.error_message or "Provider error",
            )

        try:
            raw = extract_json_object(response.content)
        except ValueError as e:
            return self._fail(
                request, request_hash, started_at, start_time,
                InferenceErrorCode.INVALID_RESPONSE, str(e),
            )

        latency_ms = (time.monotonic() - start_time) * 1000
        self._record_trace(request, request_hash, started_at, success=True)
        return InferenceOutcome.ok(request.kind, raw, latency_ms=latency_ms)

    def _fail(
        self,
        request: InferenceRequest,
        request_hash: str,
        started_at: datetime,
        start_time: float,
        code: InferenceErrorCode,
        message: str
    ) -> InferenceOutcome:
        logger.warning("Inference %s failed (%s): %s", request.kind.value, code.value, message)
        self._record_trace(request, request_hash, started_at, success=False, error_code=code)
        error = InferenceError(
            code=code,
            message=message,
            kind=request.kind,
            occurred_at=datetime.now(timezone.utc),
            request_hash=request_hash,
        )
        return InferenceOutcome.failed(
            request.kind, error, latency_ms=(time.monotonic() - start_time) * 1000
        )

    def _record_trace(
        self,
        request: InferenceRequest,
        request_hash: str,
        started_at: datetime,
        success: bool,
        error_code: Optional[InferenceErrorCode] = None
    ) -> None:
        self._traces.append(InvocationTrace(
            trace_id=f"trace_{request_hash[:12]}_{int(started_at.timestamp() * 1000)}",
            kind=request.kind,
            request_hash=request_hash,
            started_at=started_at,
            completed_at=datetime.now(timezone.utc),
            success=success,
            provider_id=self._provider.provider_id,
            error_code=error_code,
        ))

    def get_traces(self) -> List[InvocationTrace]:
        """Recorded traces, oldest first (copy)."""
        return list(self._traces)

    async def aclose(self) -> None:
        await self._provider.aclose()
