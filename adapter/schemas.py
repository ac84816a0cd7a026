"""
Per-Kind Response Schemas
=========================

One fixed output schema per RequestKind.

The schemas are sent to the provider as its structured-output schema
(OpenAPI subset, upper-case type names) and the enum tuples are shared
with the hardener so both sides agree on the closed value sets.
"""

from __future__ import annotations
from typing import Any, Dict, Tuple

from .contracts import RequestKind


# =============================================================================
# CLOSED VALUE SETS
# =============================================================================

ZONES: Tuple[str, ...] = ("RED", "YELLOW", "GREEN")
SAFETY_COLORS: Tuple[str, ...] = ("Green", "Yellow", "Orange", "Red")
RISK_TRENDS: Tuple[str, ...] = ("UP", "STEADY", "DOWN")
VISION_RISK_LEVELS: Tuple[str, ...] = ("LOW", "MEDIUM", "HIGH")
CROWD_LEVELS: Tuple[str, ...] = ("LOW", "MEDIUM", "HIGH")
LIGHTING_CONDITIONS: Tuple[str, ...] = ("BRIGHT", "DIM", "DARK")
TRIAGE_SEVERITIES: Tuple[str, ...] = ("LOW", "MEDIUM", "HIGH", "CRITICAL")
TRIAGE_RESPONSES: Tuple[str, ...] = ("Police", "Medical", "None")
INTENTS: Tuple[str, ...] = (
    "WEAPON_VIOLENCE",
    "MEDICAL_EMERGENCY",
    "LOST_DISORIENTED",
    "SAFETY_CONCERN",
    "THEFT_LOSS",
    "OTHER",
)


def _string(enum: Tuple[str, ...] = (), nullable: bool = False) -> Dict[str, Any]:
    schema: Dict[str, Any] = {"type": "STRING"}
    if enum:
        schema["enum"] = list(enum)
    if nullable:
        schema["nullable"] = True
    return schema


def _integer(nullable: bool = False) -> Dict[str, Any]:
    schema: Dict[str, Any] = {"type": "INTEGER"}
    if nullable:
        schema["nullable"] = True
    return schema


def _number(nullable: bool = False) -> Dict[str, Any]:
    schema: Dict[str, Any] = {"type": "NUMBER"}
    if nullable:
        schema["nullable"] = True
    return schema


def _string_list() -> Dict[str, Any]:
    return {"type": "ARRAY", "items": {"type": "STRING"}}


# =============================================================================
# SCHEMAS
# =============================================================================

SAFETY_SCORE_SCHEMA: Dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "score": _integer(),
        "color": _string(SAFETY_COLORS),
        "reason": _string(),
        "advice": _string(),
        "nextRiskTrend": _string(RISK_TRENDS, nullable=True),
    },
    "required": ["score", "color", "reason", "advice"],
}

ZONE_SCHEMA: Dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "zone": _string(ZONES),
        "dangerScore": _integer(),
        "riskFactors": _string_list(),
        "recommendation": _string(),
        "zoneDescription": _string(),
        "crowdIndex": _integer(nullable=True),
        "lightingIndex": _integer(nullable=True),
        "hazardIndex": _integer(nullable=True),
        "nearestSafeZone": _string(nullable=True),
    },
    "required": ["zone", "dangerScore", "riskFactors", "recommendation", "zoneDescription"],
}

ENVIRONMENT_SCHEMA: Dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "safetyScore": SAFETY_SCORE_SCHEMA,
        "zoneClassification": ZONE_SCHEMA,
    },
    "required": ["safetyScore", "zoneClassification"],
}

VISION_SCHEMA: Dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "riskLevel": _string(VISION_RISK_LEVELS),
        "factors": _string_list(),
        "narrative": _string(),
        "crowdLevel": _string(CROWD_LEVELS, nullable=True),
        "lightingCondition": _string(LIGHTING_CONDITIONS, nullable=True),
    },
    "required": ["riskLevel", "factors", "narrative"],
}

TRIAGE_SCHEMA: Dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "severity": _string(TRIAGE_SEVERITIES),
        "transcript": _string(),
        "imageAnalysis": _string(),
        "recommendedResponse": _string(TRIAGE_RESPONSES),
        "adminBrief": _string(),
        "touristMessage": _string(),
        "panicScore": _number(nullable=True),
        "urgencyScore": _number(nullable=True),
    },
    "required": [
        "severity", "transcript", "imageAnalysis",
        "recommendedResponse", "adminBrief", "touristMessage",
    ],
}

ROUTE_SCHEMA: Dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "narrative": _string(),
        "steps": _string_list(),
        "warnings": _string_list(),
        "obstructionNotes": _string(nullable=True),
    },
    "required": ["narrative", "steps", "warnings"],
}

MESSAGE_SCHEMA: Dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "messages": {
            "type": "ARRAY",
            "items": {
                "type": "OBJECT",
                "properties": {
                    "language": _string(),
                    "sms": _string(),
                    "voice": _string(),
                    "target": _string(),
                },
                "required": ["language", "sms", "target"],
            },
        },
    },
    "required": ["messages"],
}

ANOMALY_SCHEMA: Dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "is_anomaly": {"type": "BOOLEAN"},
        "type": _string(),
        "severity": _integer(),
        "confidence": _number(),
        "anomaly_id": _string(nullable=True),
        "trigger_reason": _string(),
        "suggested_action": _string(),
    },
    "required": ["is_anomaly", "type", "severity", "confidence", "trigger_reason", "suggested_action"],
}

INTENT_SCHEMA: Dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "intent": _string(INTENTS),
        "reasoning": _string(),
        "confidence": _number(),
        "context_clues": _string_list(),
        "implied_severity": _integer(),
    },
    "required": ["intent", "reasoning", "confidence", "context_clues", "implied_severity"],
}


RESPONSE_SCHEMAS: Dict[RequestKind, Dict[str, Any]] = {
    RequestKind.ENVIRONMENT_ANALYSIS: ENVIRONMENT_SCHEMA,
    RequestKind.VISION_ANALYSIS: VISION_SCHEMA,
    RequestKind.SOS_TRIAGE: TRIAGE_SCHEMA,
    RequestKind.ROUTE_PLAN: ROUTE_SCHEMA,
    RequestKind.MESSAGE_GENERATION: MESSAGE_SCHEMA,
    RequestKind.ANOMALY_DETECTION: ANOMALY_SCHEMA,
    RequestKind.INTENT_PARSE: INTENT_SCHEMA,
}

# Sampling temperature per kind; structured classification stays near 0.
TEMPERATURES: Dict[RequestKind, float] = {
    RequestKind.ENVIRONMENT_ANALYSIS: 0.15,
    RequestKind.VISION_ANALYSIS: 0.1,
    RequestKind.SOS_TRIAGE: 0.15,
    RequestKind.ROUTE_PLAN: 0.2,
    RequestKind.MESSAGE_GENERATION: 0.4,
    RequestKind.ANOMALY_DETECTION: 0.1,
    RequestKind.INTENT_PARSE: 0.0,
}


def schema_for(kind: RequestKind) -> Dict[str, Any]:
    """Response schema for a kind."""
    return RESPONSE_SCHEMAS[kind]
