"""
Canonical Prompt Generation
===========================

Pure functions for generating prompts from request payloads.

INVARIANT: Same (kind, payload) → same prompt_hash
No UI context, no runtime state beyond the payload itself.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict
import hashlib
import json

from .contracts import InferenceRequest, RequestKind


@dataclass(frozen=True)
class CanonicalPrompt:
    """
    Frozen prompt with hash for deterministic tracking.

    INVARIANT: Same kind + payload → same prompt_hash
    """
    kind: RequestKind
    prompt_text: str
    prompt_hash: str

    @staticmethod
    def create(request: InferenceRequest) -> 'CanonicalPrompt':
        """
        Factory method for creating canonical prompts.

        This is the ONLY way to create prompts.
        """
        prompt_text = PromptTemplates.render(request.kind, request.payload)
        return CanonicalPrompt(
            kind=request.kind,
            prompt_text=prompt_text,
            prompt_hash=hashlib.sha256(prompt_text.encode()).hexdigest(),
        )


def _canonical_json(payload: Dict[str, Any]) -> str:
    return json.dumps(payload, sort_keys=True, default=str)


class PromptTemplates:
    """
    Prompt templates for each request kind.

    All templates are pure functions of the payload.
    """

    @staticmethod
    def render(kind: RequestKind, payload: Dict[str, Any]) -> str:
        """Render prompt for given kind."""
        renderers = {
            RequestKind.ENVIRONMENT_ANALYSIS: PromptTemplates._environment_prompt,
            RequestKind.VISION_ANALYSIS: PromptTemplates._vision_prompt,
            RequestKind.SOS_TRIAGE: PromptTemplates._triage_prompt,
            RequestKind.ROUTE_PLAN: PromptTemplates._route_prompt,
            RequestKind.MESSAGE_GENERATION: PromptTemplates._message_prompt,
            RequestKind.ANOMALY_DETECTION: PromptTemplates._anomaly_prompt,
            RequestKind.INTENT_PARSE: PromptTemplates._intent_prompt,
        }
        renderer = renderers.get(kind)
        if renderer is None:
            raise ValueError(f"Unknown request kind: {kind}")
        return renderer(payload)

    @staticmethod
    def _environment_prompt(payload: Dict[str, Any]) -> str:
        return f"""TASK: Environment Safety Analysis
You are Sentinel AI. Analyze ONLY the JSON below, no external knowledge.

INPUT:
{_canonical_json(payload)}

INSTRUCTIONS:
1. SAFETY SCORE (0-100)
   - If SOS is active the score must be below 15.
   - If battery is below 20% subtract 8.
   - Severity 4-5 incidents in the list lower the score heavily.
   - Provide "reason" and "advice".
   - Optionally predict "nextRiskTrend": UP, STEADY or DOWN.
2. ZONE CLASSIFICATION
   - RED: active high-severity incidents OR distress signals in subject state.
   - YELLOW: moderate incidents, late-night conditions, suspicious patterns.
   - GREEN: no active threats.
   - Do NOT assume real-world geography.
3. OPTIONAL FIELDS (never break structure)
   - crowdIndex, lightingIndex, hazardIndex (0-100)
   - nearestSafeZone (semantic area name)

Return ONLY JSON following the provided schema."""

    @staticmethod
    def _vision_prompt(payload: Dict[str, Any]) -> str:
        return f"""TASK: Visual Risk Analysis
You are Sentinel Vision AI. Analyze ONLY what is VISIBLE in the attached image.

CONTEXT:
{_canonical_json(payload)}

INSTRUCTIONS:
- No assumptions about city, country, culture or identities.
- No assumptions about unseen dangers.
1. Overall riskLevel: LOW, MEDIUM or HIGH.
2. factors: visible factors contributing to risk.
3. narrative: short factual description (max 2 sentences).
4. Optional: crowdLevel (LOW/MEDIUM/HIGH), lightingCondition (BRIGHT/DIM/DARK).

Return ONLY JSON following the provided schema."""

    @staticmethod
    def _triage_prompt(payload: Dict[str, Any]) -> str:
        description = payload.get("description") or "None"
        return f"""TASK: SOS Triage
You are Sentinel Emergency Intelligence.

TEXT DESCRIPTION:
"{description}"

EVIDENCE:
{_canonical_json({k: v for k, v in payload.items() if k != "description"})}

INSTRUCTIONS:
1. Transcribe attached audio if present. Return "" if silent or invalid.
2. Describe visible hazards in an attached image ONLY. No guessing.
3. Determine severity:
   LOW = no threat / stable
   MEDIUM = uncertainty, mild distress
   HIGH = visible threat indicators
   CRITICAL = violence, injury, collapse, weapon, extreme panic
4. Optional panicScore and urgencyScore (0-1).
5. recommendedResponse: Police, Medical or None.
6. adminBrief (technical summary) and touristMessage (calming message).

Return ONLY JSON following the provided schema."""

    @staticmethod
    def _route_prompt(payload: Dict[str, Any]) -> str:
        return f"""TASK: Safe Walking Route
You are Sentinel Navigation AI.

ROUTE:
From "{payload.get('start', '')}" to "{payload.get('destination', '')}".

INSTRUCTIONS:
- Do NOT generate coordinates or assume real-world geography.
- Prefer well-lit main streets; avoid alleyways and low-visibility paths.
- Give safety reasons in the narrative, not geographic claims.
- Add obstructionNotes only if relevant.

Return ONLY JSON following the provided schema."""

    @staticmethod
    def _message_prompt(payload: Dict[str, Any]) -> str:
        return f"""TASK: Emergency Message Generation

INCIDENT:
{_canonical_json(payload)}

INSTRUCTIONS:
Write one SMS and one voice script per (language, target).
LANGUAGES: {", ".join(payload.get("languages", []))}
TARGETS: {", ".join(payload.get("targets", []))}

Return ONLY JSON following the provided schema."""

    @staticmethod
    def _anomaly_prompt(payload: Dict[str, Any]) -> str:
        return f"""TASK: Movement Anomaly Detection
You are Sentinel Anomaly Detection AI.

SUBJECT STATE AND RECENT SAMPLES:
{_canonical_json(payload)}

INSTRUCTIONS:
Detect unusual behaviour such as sudden location drop-off, route deviation,
entering an unusual zone or a distress movement pattern.
If an anomaly is found set is_anomaly=true, severity 1-5, trigger_reason
and suggested_action (monitor / alert control room).

Return ONLY JSON following the provided schema."""

    @staticmethod
    def _intent_prompt(payload: Dict[str, Any]) -> str:
        return f"""TASK: Incident Intent Classification

REPORT:
"{payload.get('description', '')}"

INSTRUCTIONS:
Determine the underlying intent:
WEAPON_VIOLENCE, MEDICAL_EMERGENCY, LOST_DISORIENTED,
SAFETY_CONCERN, THEFT_LOSS, OTHER.
Provide reasoning, confidence (0-1), context_clues and implied_severity (1-5).

Return ONLY JSON following the provided schema."""
