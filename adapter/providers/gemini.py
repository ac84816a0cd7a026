"""
Gemini Provider
===============

Calls the Generative Language REST API (``models/{model}:generateContent``)
over httpx with structured JSON output.

FAILURE MAPPING:
- httpx.TimeoutException       → TIMEOUT
- httpx.NetworkError           → NETWORK_ERROR
- HTTP 429                     → RATE_LIMITED
- other non-2xx                → API_ERROR
- blocked prompt / SAFETY stop → CONTENT_FILTERED
- no text in candidates        → INVALID_RESPONSE
"""

from __future__ import annotations
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
import logging
import time

import httpx

from ..contracts import InferenceRequest
from ..schemas import schema_for
from .base import (
    LLMProvider,
    ProviderVersion,
    ProviderResponse,
    ProviderErrorCode,
    InvocationParams,
)

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
DEFAULT_MODEL = "gemini-2.5-flash"


class GeminiProvider(LLMProvider):
    """
    Gemini REST provider.

    The httpx client is created lazily and reused across calls; pass one
    in to control transport (tests use httpx.MockTransport).
    """

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_MODEL,
        base_url: str = DEFAULT_BASE_URL,
        client: Optional[httpx.AsyncClient] = None
    ):
        self._api_key = api_key
        self._model = model
        self._base_url = base_url.rstrip("/")
        self._client = client
        self._owns_client = client is None
        self._version = ProviderVersion(
            provider_id="gemini",
            model_id=model,
            api_version=self._base_url.rsplit("/", 1)[-1],
        )

    @property
    def provider_id(self) -> str:
        return "gemini"

    def get_version(self) -> ProviderVersion:
        return self._version

    def _get_client(self, timeout: float) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=timeout)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def build_body(
        self,
        request: InferenceRequest,
        prompt: str,
        params: InvocationParams
    ) -> Dict[str, Any]:
        """Request body: inline media parts first, prompt text last."""
        parts: List[Dict[str, Any]] = [
            {"inlineData": {"mimeType": m.mime_type, "data": m.data}}
            for m in request.media
        ]
        parts.append({"text": prompt})

        return {
            "contents": [{"role": "user", "parts": parts}],
            "generationConfig": {
                "responseMimeType": "application/json",
                "responseSchema": schema_for(request.kind),
                "temperature": params.temperature,
                "maxOutputTokens": params.max_tokens,
            },
        }

    async def invoke(
        self,
        request: InferenceRequest,
        prompt: str,
        params: InvocationParams
    ) -> ProviderResponse:
        invoked_at = datetime.now(timezone.utc)
        start_time = time.time()
        url = f"{self._base_url}/models/{self._model}:generateContent"

        try:
            client = self._get_client(params.timeout_seconds)
            response = await client.post(
                url,
                json=self.build_body(request, prompt, params),
                headers={"x-goog-api-key": self._api_key},
                timeout=params.timeout_seconds,
            )
        except httpx.TimeoutException:
            return self._failure(ProviderErrorCode.TIMEOUT, "Gemini request timed out", invoked_at, start_time)
        except httpx.NetworkError as e:
            return self._failure(ProviderErrorCode.NETWORK_ERROR, str(e), invoked_at, start_time)
        except httpx.HTTPError as e:
            return self._failure(ProviderErrorCode.API_ERROR, str(e), invoked_at, start_time)

        if response.status_code == 429:
            return self._failure(ProviderErrorCode.RATE_LIMITED, "HTTP 429", invoked_at, start_time)
        if response.status_code >= 400:
            logger.warning("Gemini %s returned HTTP %s", request.kind.value, response.status_code)
            return self._failure(
                ProviderErrorCode.API_ERROR, f"HTTP {response.status_code}", invoked_at, start_time
            )

        try:
            data = response.json()
        except ValueError as e:
            return self._failure(ProviderErrorCode.INVALID_RESPONSE, f"Body is not JSON: {e}", invoked_at, start_time)

        return self._extract_text(data, invoked_at, start_time)

    def _extract_text(self, data: Any, invoked_at: datetime, start_time: float) -> ProviderResponse:
        """Pull the model text out of a generateContent response body."""
        if not isinstance(data, dict):
            return self._failure(ProviderErrorCode.INVALID_RESPONSE, "Unexpected body shape", invoked_at, start_time)

        feedback = data.get("promptFeedback") or {}
        if isinstance(feedback, dict) and feedback.get("blockReason"):
            return self._failure(
                ProviderErrorCode.CONTENT_FILTERED,
                f"Prompt blocked: {feedback['blockReason']}",
                invoked_at, start_time,
            )

        candidates = data.get("candidates") or []
        if not candidates or not isinstance(candidates[0], dict):
            return self._failure(ProviderErrorCode.INVALID_RESPONSE, "No candidates", invoked_at, start_time)

        candidate = candidates[0]
        if candidate.get("finishReason") == "SAFETY":
            return self._failure(ProviderErrorCode.CONTENT_FILTERED, "Candidate blocked", invoked_at, start_time)

        parts = (candidate.get("content") or {}).get("parts") or []
        text = "".join(p.get("text", "") for p in parts if isinstance(p, dict))
        if not text:
            return self._failure(ProviderErrorCode.INVALID_RESPONSE, "Empty candidate text", invoked_at, start_time)

        return ProviderResponse(
            success=True,
            content=text,
            provider_version=self._version,
            invoked_at=invoked_at,
            latency_ms=(time.time() - start_time) * 1000,
        )

    def _failure(
        self,
        code: ProviderErrorCode,
        message: str,
        invoked_at: datetime,
        start_time: float
    ) -> ProviderResponse:
        return ProviderResponse(
            success=False,
            error_code=code,
            error_message=message,
            provider_version=self._version,
            invoked_at=invoked_at,
            latency_ms=(time.time() - start_time) * 1000,
        )
