"""
Test Fixtures

Deterministic engines, scripted inference responses and profiles.
Everything runs on MockProvider + ManualClock; no network, no sleeps
beyond what a test asks for.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple
import asyncio

from adapter import InferenceClient, RequestKind
from adapter.providers import MockProvider, ProviderErrorCode
from safety_engine import EngineConfig, ManualClock, SafetyEngine
from safety_engine.contracts import Contact, SubjectProfile
from safety_engine.hardening import Hardener
from safety_engine.observability import AuditLog, MetricsCollector


# =============================================================================
# FIXED TIMESTAMPS (deterministic)
# =============================================================================

EPOCH = datetime(2026, 1, 1, 0, 0, 0, tzinfo=timezone.utc)


# =============================================================================
# MEDIA
# =============================================================================

PNG_DATA_URL = "data:image/png;base64,iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNk"
WEBM_AUDIO_DATA_URL = "data:audio/webm;codecs=opus;base64,GkXfo59ChoEBQveBAULygQRC84EIQoKEd2Vib"
BROKEN_DATA_URL = "not-a-data-url"


# =============================================================================
# SCRIPTED RESPONSES
# =============================================================================

ENVIRONMENT_GREEN: Dict[str, Any] = {
    "safetyScore": {
        "score": 88,
        "color": "Green",
        "reason": "Busy, well-lit area.",
        "advice": "Enjoy your walk.",
        "nextRiskTrend": "STEADY",
    },
    "zoneClassification": {
        "zone": "GREEN",
        "dangerScore": 12,
        "riskFactors": ["None observed"],
        "recommendation": "Normal caution.",
        "zoneDescription": "Commercial district with steady foot traffic.",
        "crowdIndex": 60,
        "lightingIndex": 90,
        "hazardIndex": 5,
        "nearestSafeZone": "Central Plaza",
    },
}

ENVIRONMENT_RED: Dict[str, Any] = {
    "safetyScore": {
        "score": 25,
        "color": "Red",
        "reason": "Active high-severity incident nearby.",
        "advice": "Leave the area.",
    },
    "zoneClassification": {
        "zone": "RED",
        "dangerScore": 85,
        "riskFactors": ["Active incident"],
        "recommendation": "Avoid.",
        "zoneDescription": "Reported violence.",
    },
}

TRIAGE_CRITICAL: Dict[str, Any] = {
    "severity": "CRITICAL",
    "transcript": "Help, someone is chasing me",
    "imageAnalysis": "",
    "recommendedResponse": "Police",
    "adminBrief": "Subject reports pursuit; high panic.",
    "touristMessage": "Police are on the way. Move to a lit public place.",
    "panicScore": 0.9,
    "urgencyScore": 0.95,
}

TRIAGE_MEDIUM: Dict[str, Any] = {
    "severity": "MEDIUM",
    "transcript": "",
    "imageAnalysis": "Crowded street, no visible threat.",
    "recommendedResponse": "None",
    "adminBrief": "Mild distress, no threat indicators.",
    "touristMessage": "Stay where you are; we are checking in.",
}

INTENT_LOST: Dict[str, Any] = {
    "intent": "LOST_DISORIENTED",
    "reasoning": "Subject cannot find their hotel.",
    "confidence": 0.92,
    "context_clues": ["can't find", "hotel"],
    "implied_severity": 2,
}

ANOMALY_DETECTED: Dict[str, Any] = {
    "is_anomaly": True,
    "type": "ROUTE_DEVIATION",
    "severity": 4,
    "confidence": 0.8,
    "anomaly_id": "A-1",
    "trigger_reason": "Left planned route into unlit area.",
    "suggested_action": "Alert control room.",
}

ANOMALY_CLEAR: Dict[str, Any] = {
    "is_anomaly": False,
    "type": "NONE",
    "severity": 1,
    "confidence": 0.9,
    "trigger_reason": "",
    "suggested_action": "",
}


# =============================================================================
# PROFILES
# =============================================================================

def make_profile(name: str = "Aiko Tanaka", battery_level: int = 80, zone_name: str = "Old Town") -> SubjectProfile:
    return SubjectProfile(
        name=name,
        age=29,
        gender="F",
        nationality="Japan",
        contacts=(Contact(name="Ren Tanaka", relation="Brother", phone="+81-90-0000-0000"),),
        language="ja",
        planned_route=("Old Town", "Harbour"),
        lat=35.0116,
        lng=135.7681,
        zone_name=zone_name,
        battery_level=battery_level,
    )


# =============================================================================
# BUILDERS
# =============================================================================

def build_engine(
    responses: Optional[Dict[RequestKind, Any]] = None,
    failure_mode: Optional[ProviderErrorCode] = None,
    latency_ms: float = 0.0,
    timeout_seconds: float = 5.0,
    clock: Optional[ManualClock] = None
) -> Tuple[SafetyEngine, MockProvider, ManualClock]:
    clock = clock or ManualClock.starting_at(EPOCH)
    provider = MockProvider(responses=responses, latency_ms=latency_ms, failure_mode=failure_mode)
    config = EngineConfig(provider="mock", inference_timeout_seconds=timeout_seconds)
    return SafetyEngine(config, provider=provider, clock=clock), provider, clock


def build_client(
    responses: Optional[Dict[RequestKind, Any]] = None,
    failure_mode: Optional[ProviderErrorCode] = None,
    latency_ms: float = 0.0,
    timeout_seconds: float = 5.0
) -> Tuple[InferenceClient, MockProvider]:
    provider = MockProvider(responses=responses, latency_ms=latency_ms, failure_mode=failure_mode)
    return InferenceClient(provider, timeout_seconds=timeout_seconds), provider


def build_hardener() -> Tuple[Hardener, AuditLog, MetricsCollector]:
    clock = ManualClock.starting_at(EPOCH)
    audit = AuditLog(clock)
    metrics = MetricsCollector(clock)
    return Hardener(audit, metrics), audit, metrics


def run(coro):
    """Drive a coroutine to completion on a fresh event loop."""
    return asyncio.run(coro)
