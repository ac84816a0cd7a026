"""
Response Hardener
=================

Turns untrusted inference output into complete, frozen records.

GUARANTEES:
===========
1. Every harden_* function is TOTAL: any input (None, lists, wrong
   types, NaN, partial objects) yields a valid record; nothing raises
2. Missing fields get schema defaults field by field
3. An absent or non-object result yields the kind's failure default
4. Numbers are clamped to their documented ranges
5. Defaults bias toward caution, never toward "safe"

The one exception to rule 5 is anomaly detection: a dead backend must
not invent incidents, so its failure default is "no anomaly".
"""

from __future__ import annotations
from typing import Any, Callable, Dict, Optional, Tuple
import logging
import math

from adapter import InferenceOutcome, RequestKind
from adapter.schemas import (
    CROWD_LEVELS,
    INTENTS,
    LIGHTING_CONDITIONS,
    RISK_TRENDS,
    SAFETY_COLORS,
    TRIAGE_RESPONSES,
    TRIAGE_SEVERITIES,
    VISION_RISK_LEVELS,
    ZONES,
)

from .contracts import (
    AnomalyAssessment,
    DispatchRecommendation,
    EmergencyMessage,
    EnvironmentAnalysis,
    Intent,
    IntentAssessment,
    RiskTrend,
    RoutePlan,
    SafetyColor,
    SafetyScoreDetails,
    TriageResult,
    TriageSeverity,
    VisionAnalysis,
    Zone,
    ZoneClassification,
)
from .observability import AuditEventType, AuditLog, MetricsCollector

logger = logging.getLogger(__name__)


# =============================================================================
# FIELD COERCION
# =============================================================================

def _as_dict(raw: Any) -> Optional[Dict[str, Any]]:
    return raw if isinstance(raw, dict) else None


def _number(value: Any) -> Optional[float]:
    """Finite float from value, or None. Booleans are not numbers here."""
    if isinstance(value, bool):
        return None
    if not isinstance(value, (int, float, str)):
        return None
    try:
        number = float(value.strip() if isinstance(value, str) else value)
    except (ValueError, OverflowError):
        return None
    return number if math.isfinite(number) else None


def _clamped_int(value: Any, low: int, high: int, default: Optional[int]) -> Optional[int]:
    number = _number(value)
    if number is None:
        return default
    return max(low, min(high, int(round(number))))


def _clamped_float(value: Any, low: float, high: float, default: Optional[float]) -> Optional[float]:
    number = _number(value)
    if number is None:
        return default
    return max(low, min(high, number))


def _text(value: Any, default: str) -> str:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return default


def _optional_text(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _choice(value: Any, allowed: Tuple[str, ...], default: Optional[str]) -> Optional[str]:
    """Case-insensitive match against a closed value set."""
    if not isinstance(value, str):
        return default
    wanted = value.strip().lower()
    for option in allowed:
        if option.lower() == wanted:
            return option
    return default


def _text_tuple(value: Any, default: Tuple[str, ...]) -> Tuple[str, ...]:
    if not isinstance(value, (list, tuple)):
        return default
    items = tuple(item.strip() for item in value if isinstance(item, str) and item.strip())
    return items if items else default


# =============================================================================
# SAFETY SCORE AND ZONE
# =============================================================================

def band_color(score: int) -> SafetyColor:
    """Color band for a safety score: >80 Green, >60 Yellow, >40 Orange, else Red."""
    if score > 80:
        return SafetyColor.GREEN
    if score > 60:
        return SafetyColor.YELLOW
    if score > 40:
        return SafetyColor.ORANGE
    return SafetyColor.RED


SAFETY_SCORE_FAILURE = SafetyScoreDetails(
    score=70,
    color=SafetyColor.YELLOW,
    reason="AI offline - fallback estimate.",
    advice="Stay alert.",
    trend=RiskTrend.STEADY,
)

ZONE_FAILURE = ZoneClassification(
    zone=Zone.YELLOW,
    danger_score=45,
    risk_factors=("Classifier Offline",),
    recommendation="Proceed with caution.",
    description="AI unavailable - fallback zone.",
)


def harden_safety_score(raw: Any) -> SafetyScoreDetails:
    data = _as_dict(raw)
    if data is None:
        return SAFETY_SCORE_FAILURE

    score = _clamped_int(data.get("score"), 0, 100, 45)
    band = band_color(score)
    supplied = _choice(data.get("color"), SAFETY_COLORS, None)
    color = band
    if supplied is not None and SafetyColor(supplied).rank >= band.rank:
        color = SafetyColor(supplied)

    trend = _choice(data.get("nextRiskTrend"), RISK_TRENDS, None)
    return SafetyScoreDetails(
        score=score,
        color=color,
        reason=_text(data.get("reason"), "No reason provided."),
        advice=_text(data.get("advice"), "Stay alert."),
        trend=RiskTrend(trend) if trend else None,
    )


def harden_zone(raw: Any) -> ZoneClassification:
    data = _as_dict(raw)
    if data is None:
        return ZONE_FAILURE

    return ZoneClassification(
        zone=Zone(_choice(data.get("zone"), ZONES, Zone.YELLOW.value)),
        danger_score=_clamped_int(data.get("dangerScore"), 0, 100, 45),
        risk_factors=_text_tuple(data.get("riskFactors"), ("Unspecified",)),
        recommendation=_text(data.get("recommendation"), "Proceed carefully."),
        description=_text(data.get("zoneDescription"), "AI could not determine detailed description."),
        crowd_index=_clamped_int(data.get("crowdIndex"), 0, 100, None),
        lighting_index=_clamped_int(data.get("lightingIndex"), 0, 100, None),
        hazard_index=_clamped_int(data.get("hazardIndex"), 0, 100, None),
        nearest_safe_zone=_optional_text(data.get("nearestSafeZone")),
    )


def harden_environment(raw: Any) -> EnvironmentAnalysis:
    data = _as_dict(raw)
    if data is None or ("safetyScore" not in data and "zoneClassification" not in data):
        return EnvironmentAnalysis(
            safety_score=SAFETY_SCORE_FAILURE,
            zone_classification=ZONE_FAILURE,
            degraded=True,
        )
    return EnvironmentAnalysis(
        safety_score=harden_safety_score(data.get("safetyScore")),
        zone_classification=harden_zone(data.get("zoneClassification")),
    )


# =============================================================================
# TRIAGE, VISION, ROUTE, MESSAGES
# =============================================================================

TRIAGE_FAILURE = TriageResult(
    severity=TriageSeverity.HIGH,
    transcript="Audio unavailable.",
    image_analysis="Image not processed.",
    recommended_response=DispatchRecommendation.POLICE,
    admin_brief="AI offline - treat as high risk.",
    tourist_message="We are alerting responders.",
    panic_score=0.6,
    urgency_score=0.7,
    degraded=True,
)


def harden_triage(raw: Any) -> TriageResult:
    data = _as_dict(raw)
    if data is None:
        return TRIAGE_FAILURE

    return TriageResult(
        severity=TriageSeverity(_choice(data.get("severity"), TRIAGE_SEVERITIES, "HIGH")),
        transcript=_text(data.get("transcript"), ""),
        image_analysis=_text(data.get("imageAnalysis"), ""),
        recommended_response=DispatchRecommendation(
            _choice(data.get("recommendedResponse"), TRIAGE_RESPONSES, "Police")
        ),
        admin_brief=_text(data.get("adminBrief"), "No brief available - treat as high risk."),
        tourist_message=_text(data.get("touristMessage"), "We are alerting responders."),
        panic_score=_clamped_float(data.get("panicScore"), 0.0, 1.0, None),
        urgency_score=_clamped_float(data.get("urgencyScore"), 0.0, 1.0, None),
    )


VISION_FAILURE = VisionAnalysis(
    risk_level="MEDIUM",
    factors=("Vision module offline",),
    narrative="Unable to analyze the image.",
    degraded=True,
)


def harden_vision(raw: Any) -> VisionAnalysis:
    data = _as_dict(raw)
    if data is None:
        return VISION_FAILURE

    return VisionAnalysis(
        risk_level=_choice(data.get("riskLevel"), VISION_RISK_LEVELS, "MEDIUM"),
        factors=_text_tuple(data.get("factors"), ("Unspecified",)),
        narrative=_text(data.get("narrative"), "No description available."),
        crowd_level=_choice(data.get("crowdLevel"), CROWD_LEVELS, None),
        lighting_condition=_choice(data.get("lightingCondition"), LIGHTING_CONDITIONS, None),
    )


ROUTE_FAILURE = RoutePlan(
    narrative="AI routing temporarily offline. Using fallback safety suggestions.",
    steps=(
        "Walk toward a well-lit main street.",
        "Avoid narrow or isolated areas.",
        "Stay near commercial zones or populated walkways.",
    ),
    warnings=("AI service offline - proceed with caution.",),
    obstruction_notes="Unknown due to fallback mode.",
    degraded=True,
)


def harden_route(raw: Any) -> RoutePlan:
    data = _as_dict(raw)
    if data is None:
        return ROUTE_FAILURE

    steps = _text_tuple(data.get("steps"), ())
    if not steps:
        steps = ROUTE_FAILURE.steps
    return RoutePlan(
        narrative=_text(data.get("narrative"), "Follow well-lit, populated streets."),
        steps=steps,
        warnings=_text_tuple(data.get("warnings"), ()),
        obstruction_notes=_optional_text(data.get("obstructionNotes")),
    )


def harden_messages(raw: Any) -> Tuple[EmergencyMessage, ...]:
    """Well-formed messages only; anything else is dropped."""
    if isinstance(raw, dict):
        raw = raw.get("messages")
    if not isinstance(raw, (list, tuple)):
        return ()

    messages = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        language = _optional_text(item.get("language"))
        sms = _optional_text(item.get("sms"))
        target = _optional_text(item.get("target"))
        if not (language and sms and target):
            continue
        messages.append(EmergencyMessage(
            language=language,
            sms=sms,
            target=target,
            voice=_text(item.get("voice"), ""),
        ))
    return tuple(messages)


# =============================================================================
# ANOMALY AND INTENT
# =============================================================================

NO_ANOMALY = AnomalyAssessment(
    is_anomaly=False,
    anomaly_type="NONE",
    severity=1,
    confidence=0.0,
    trigger_reason="",
    suggested_action="",
    degraded=True,
)


def harden_anomaly(raw: Any) -> AnomalyAssessment:
    data = _as_dict(raw)
    if data is None:
        return NO_ANOMALY

    return AnomalyAssessment(
        # Only an explicit boolean true raises an anomaly.
        is_anomaly=data.get("is_anomaly") is True,
        anomaly_type=_text(data.get("type"), "UNSPECIFIED"),
        severity=_clamped_int(data.get("severity"), 1, 5, 3),
        confidence=_clamped_float(data.get("confidence"), 0.0, 1.0, 0.0),
        trigger_reason=_text(data.get("trigger_reason"), "Unusual movement pattern detected."),
        suggested_action=_text(data.get("suggested_action"), "Monitor subject and alert control room."),
        anomaly_id=_optional_text(data.get("anomaly_id")),
    )


INTENT_FAILURE = IntentAssessment(
    intent=Intent.SAFETY_CONCERN,
    reasoning="Intent parsing unavailable.",
    confidence=0.0,
    context_clues=(),
    implied_severity=4,
    degraded=True,
)


def harden_intent(raw: Any) -> IntentAssessment:
    data = _as_dict(raw)
    if data is None:
        return INTENT_FAILURE

    return IntentAssessment(
        intent=Intent(_choice(data.get("intent"), INTENTS, Intent.OTHER.value)),
        reasoning=_text(data.get("reasoning"), ""),
        confidence=_clamped_float(data.get("confidence"), 0.0, 1.0, 0.0),
        context_clues=_text_tuple(data.get("context_clues"), ()),
        implied_severity=_clamped_int(data.get("implied_severity"), 1, 5, 3),
    )


# =============================================================================
# DISPATCH
# =============================================================================

_HARDENERS: Dict[RequestKind, Callable[[Any], Any]] = {
    RequestKind.ENVIRONMENT_ANALYSIS: harden_environment,
    RequestKind.VISION_ANALYSIS: harden_vision,
    RequestKind.SOS_TRIAGE: harden_triage,
    RequestKind.ROUTE_PLAN: harden_route,
    RequestKind.MESSAGE_GENERATION: harden_messages,
    RequestKind.ANOMALY_DETECTION: harden_anomaly,
    RequestKind.INTENT_PARSE: harden_intent,
}


def harden(kind: RequestKind, raw: Any) -> Any:
    """Harden raw output for a kind. Never raises."""
    hardener = _HARDENERS[kind]
    try:
        return hardener(raw)
    except Exception:
        logger.exception("Hardener for %s failed; using failure default", kind.value)
        return hardener(None)


class Hardener:
    """
    Recovery point for inference outcomes.

    Failed outcomes become the kind's failure default; the failure is
    logged, audited and counted in inference_failures_total.
    """

    def __init__(self, audit: AuditLog, metrics: MetricsCollector):
        self._audit = audit
        self._metrics = metrics

    def recover(self, outcome: InferenceOutcome, entity_id: Optional[str] = None) -> Any:
        kind = outcome.kind
        self._metrics.record(
            "inference_latency_ms", outcome.latency_ms, {"kind": kind.value}
        )
        if outcome.success:
            return harden(kind, outcome.raw)

        error = outcome.error
        logger.warning(
            "Recovering %s failure (%s) with conservative default",
            kind.value, error.code.value,
        )
        self._audit.record(
            AuditEventType.INFERENCE_FAILURE,
            component="hardener",
            action="recover_failure",
            entity_id=entity_id,
            kind=kind.value,
            code=error.code.value,
            message=error.message,
        )
        self._metrics.increment(
            "inference_failures_total", {"kind": kind.value, "code": error.code.value}
        )
        return harden(kind, None)
