"""
Triage Pipeline
===============

Classifies SOS signals and plain reports.

PATHS:
======
- triage(): one SOS_TRIAGE call with whatever media parses
- analyze_incident(): local critical-keyword filter, then INTENT_PARSE
  mapped through a fixed intent table
- analyze_image / plan_safe_route / generate_emergency_messages:
  single-call helpers around the other request kinds

Every inference result passes through the Hardener, so nothing here
raises because the inference service failed.
"""

from __future__ import annotations
from typing import Any, Dict, Optional, Sequence, Tuple
import logging
import re

from adapter import (
    InferenceClient,
    RequestKind,
    parse_audio_data_url,
    parse_image_data_url,
)

from .contracts import (
    DispatchRecommendation,
    EmergencyMessage,
    IncidentAnalysis,
    IncidentCategory,
    Intent,
    RoutePlan,
    TriageResult,
    TriageSeverity,
    VisionAnalysis,
)
from .hardening import VISION_FAILURE, Hardener
from .observability import MetricsCollector

logger = logging.getLogger(__name__)


CRITICAL_KEYWORDS: Tuple[str, ...] = (
    "pistol", "gun", "weapon", "armed", "shooting",
    "threat", "attack", "knife", "bomb", "robbery",
    "assault", "hostage", "injured", "bleeding",
)

_IRREGULAR_FORMS = {"knife": "knives", "robbery": "robberies"}


def _keyword_pattern(keywords: Sequence[str]) -> "re.Pattern[str]":
    forms = []
    for word in keywords:
        if word in _IRREGULAR_FORMS:
            forms.append(re.escape(_IRREGULAR_FORMS[word]))
        forms.append(re.escape(word) + r"\w*")
    return re.compile(r"\b(" + "|".join(forms) + r")", re.IGNORECASE)


_CRITICAL_PATTERN = _keyword_pattern(CRITICAL_KEYWORDS)


def detect_critical_keyword(description: str) -> Optional[str]:
    """First word starting with a critical keyword (any inflection), or None."""
    if not description:
        return None
    match = _CRITICAL_PATTERN.search(description)
    return match.group(1).lower() if match else None


# Intent → (category, severity, recommended dispatch)
INTENT_TABLE: Dict[Intent, Tuple[IncidentCategory, int, DispatchRecommendation]] = {
    Intent.WEAPON_VIOLENCE: (IncidentCategory.CRIME, 5, DispatchRecommendation.POLICE),
    Intent.MEDICAL_EMERGENCY: (IncidentCategory.MEDICAL, 4, DispatchRecommendation.MEDICAL),
    Intent.SAFETY_CONCERN: (IncidentCategory.CRIME, 4, DispatchRecommendation.POLICE),
    Intent.LOST_DISORIENTED: (IncidentCategory.LOST, 3, DispatchRecommendation.TOURIST_POLICE),
    Intent.THEFT_LOSS: (IncidentCategory.CRIME, 3, DispatchRecommendation.POLICE),
    Intent.OTHER: (IncidentCategory.OTHER, 2, DispatchRecommendation.NONE),
}

LOW_CONFIDENCE_SUFFIX = " (Low confidence)"

MESSAGE_LANGUAGES: Tuple[str, ...] = ("English", "Spanish", "Japanese")
MESSAGE_TARGETS: Tuple[str, ...] = ("Family", "Police")


def severity_for(triage: TriageResult) -> int:
    """Incident severity for a triage result: CRITICAL is 5, anything else 4."""
    return 5 if triage.severity is TriageSeverity.CRITICAL else 4


class TriagePipeline:
    """Inference-backed classification for reports, SOS signals and media."""

    def __init__(
        self,
        client: InferenceClient,
        hardener: Hardener,
        metrics: MetricsCollector,
        confidence_threshold: float = 0.6
    ):
        self._client = client
        self._hardener = hardener
        self._metrics = metrics
        self._confidence_threshold = confidence_threshold

    async def triage(
        self,
        description: Optional[str],
        image_data_url: Optional[str] = None,
        audio_data_url: Optional[str] = None,
        subject_id: Optional[str] = None
    ) -> TriageResult:
        media = []
        if audio_data_url:
            audio = parse_audio_data_url(audio_data_url)
            if audio:
                media.append(audio)
            else:
                logger.warning("Invalid audio data URL; skipping attachment")
        if image_data_url:
            image = parse_image_data_url(image_data_url)
            if image:
                media.append(image)
            else:
                logger.warning("Invalid image data URL; skipping attachment")

        text = (description or "").strip()
        payload: Dict[str, Any] = {"description": text}
        payload["attachments"] = [m.media_type for m in media]
        if not text and not media:
            payload["evidence"] = "NO_EVIDENCE"

        outcome = await self._client.infer(RequestKind.SOS_TRIAGE, payload, media)
        return self._hardener.recover(outcome, entity_id=subject_id)

    async def analyze_incident(self, description: str) -> IncidentAnalysis:
        keyword = detect_critical_keyword(description)
        if keyword:
            self._metrics.increment("critical_keyword_overrides_total")
            logger.info("Critical keyword %r short-circuits intent parsing", keyword)
            return IncidentAnalysis(
                category=IncidentCategory.CRIME,
                severity=5,
                recommended_dispatch=DispatchRecommendation.POLICE,
                analysis=f"Critical keyword detected: {keyword}",
                confidence=1.0,
                critical_override=True,
            )

        outcome = await self._client.infer(RequestKind.INTENT_PARSE, {"description": description})
        intent = self._hardener.recover(outcome)
        category, severity, dispatch = INTENT_TABLE[intent.intent]

        analysis = intent.reasoning or f"Classified as {intent.intent.value}"
        if intent.confidence < self._confidence_threshold:
            analysis += LOW_CONFIDENCE_SUFFIX

        return IncidentAnalysis(
            category=category,
            severity=severity,
            recommended_dispatch=dispatch,
            analysis=analysis,
            confidence=intent.confidence,
        )

    async def analyze_image(self, image_data_url: str, context: Optional[Dict[str, Any]] = None) -> VisionAnalysis:
        image = parse_image_data_url(image_data_url)
        if image is None:
            logger.warning("Invalid image data URL; returning vision fallback")
            return VISION_FAILURE
        outcome = await self._client.infer(RequestKind.VISION_ANALYSIS, dict(context or {}), [image])
        return self._hardener.recover(outcome)

    async def plan_safe_route(self, start: str, destination: str) -> RoutePlan:
        outcome = await self._client.infer(
            RequestKind.ROUTE_PLAN, {"start": start, "destination": destination}
        )
        return self._hardener.recover(outcome)

    async def generate_emergency_messages(
        self,
        incident: Dict[str, Any],
        languages: Sequence[str] = MESSAGE_LANGUAGES,
        targets: Sequence[str] = MESSAGE_TARGETS
    ) -> Tuple[EmergencyMessage, ...]:
        payload = dict(incident)
        payload["languages"] = list(languages)
        payload["targets"] = list(targets)
        outcome = await self._client.infer(RequestKind.MESSAGE_GENERATION, payload)
        return self._hardener.recover(outcome)
