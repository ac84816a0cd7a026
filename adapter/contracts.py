"""
Adapter Contracts

Typed request/response schemas for engine ↔ inference-service communication.

BOUNDARY ENFORCEMENT:
=====================
- All types are FROZEN (immutable)
- Every request carries an explicit RequestKind
- An outcome is either a raw JSON object OR a typed error, never both

WHY SEPARATE CONTRACTS:
=======================
The engine's domain records (safety_engine/contracts/) describe hardened,
schema-complete data. These adapter contracts describe what crosses the
wire BEFORE hardening: untrusted, possibly partial, possibly missing.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Tuple
import hashlib
import json


# =============================================================================
# REQUEST KINDS
# =============================================================================

class RequestKind(Enum):
    """
    Every inference call belongs to exactly one kind.

    Each kind has one fixed response schema (see schemas.py).
    """
    ENVIRONMENT_ANALYSIS = "environment_analysis"
    VISION_ANALYSIS = "vision_analysis"
    SOS_TRIAGE = "sos_triage"
    ROUTE_PLAN = "route_plan"
    MESSAGE_GENERATION = "message_generation"
    ANOMALY_DETECTION = "anomaly_detection"
    INTENT_PARSE = "intent_parse"


# =============================================================================
# ERROR TYPES
# =============================================================================

class InferenceErrorCode(Enum):
    """
    Explicit failure codes for inference calls.

    Callers treat every code identically to "no response" and hand
    the outcome to the hardener.
    """
    TIMEOUT = "timeout"
    RATE_LIMITED = "rate_limited"
    NETWORK_ERROR = "network_error"
    API_ERROR = "api_error"
    CONTENT_FILTERED = "content_filtered"
    INVALID_RESPONSE = "invalid_response"
    INTERNAL_ERROR = "internal_error"


@dataclass(frozen=True)
class InferenceError:
    """Explicit inference error with enough context to audit it."""
    code: InferenceErrorCode
    message: str
    kind: RequestKind
    occurred_at: datetime
    request_hash: Optional[str] = None


# =============================================================================
# INPUT CONTRACTS (Engine → Inference service)
# =============================================================================

@dataclass(frozen=True)
class MediaPart:
    """Inline media attached to a request (base64 payload, no data-URL prefix)."""
    mime_type: str
    data: str

    @property
    def media_type(self) -> str:
        """Top-level media type: "image" | "audio" | ..."""
        return self.mime_type.split("/", 1)[0]


@dataclass(frozen=True)
class InferenceRequest:
    """
    Immutable inference request.

    payload must be JSON-serializable; it is rendered into the prompt
    and hashed for tracing.
    """
    kind: RequestKind
    payload: Dict[str, Any]
    media: Tuple[MediaPart, ...] = field(default_factory=tuple)

    def content_hash(self) -> str:
        """Deterministic hash over kind, payload and media."""
        body = json.dumps(self.payload, sort_keys=True, default=str)
        media = "|".join(
            f"{m.mime_type}:{hashlib.sha256(m.data.encode()).hexdigest()[:16]}"
            for m in self.media
        )
        return hashlib.sha256(
            f"{self.kind.value}|{body}|{media}".encode()
        ).hexdigest()


# =============================================================================
# OUTPUT CONTRACTS (Inference service → Engine)
# =============================================================================

@dataclass(frozen=True)
class InferenceOutcome:
    """
    Result of one inference call.

    INVARIANT: exactly one of (raw, error) is set.
    raw is the parsed JSON object exactly as the service returned it;
    it has NOT been validated against the kind's schema.
    """
    kind: RequestKind
    raw: Optional[Dict[str, Any]] = None
    error: Optional[InferenceError] = None
    latency_ms: float = 0.0

    def __post_init__(self):
        if (self.raw is None) == (self.error is None):
            raise ValueError("InferenceOutcome requires exactly one of raw or error")

    @property
    def success(self) -> bool:
        return self.error is None

    @staticmethod
    def ok(kind: RequestKind, raw: Dict[str, Any], latency_ms: float = 0.0) -> InferenceOutcome:
        return InferenceOutcome(kind=kind, raw=raw, latency_ms=latency_ms)

    @staticmethod
    def failed(kind: RequestKind, error: InferenceError, latency_ms: float = 0.0) -> InferenceOutcome:
        return InferenceOutcome(kind=kind, error=error, latency_ms=latency_ms)


@dataclass(frozen=True)
class InvocationTrace:
    """
    Trace of a single inference invocation.

    Every call is traced, successful or not.
    """
    trace_id: str
    kind: RequestKind
    request_hash: str
    started_at: datetime
    completed_at: datetime
    success: bool
    provider_id: str
    error_code: Optional[InferenceErrorCode] = None

    def duration_ms(self) -> float:
        return (self.completed_at - self.started_at).total_seconds() * 1000
