"""
Response Hardener Tests

AXIOM UNDER TEST:
=================
Hardening is total. Whatever the inference service returns, the engine
gets a complete, in-range record, and missing data never reads as safe.
"""

import math

import pytest
from hypothesis import given, settings, strategies as st

from adapter import InferenceErrorCode, RequestKind
from safety_engine.contracts import (
    DispatchRecommendation,
    Intent,
    RiskTrend,
    SafetyColor,
    TriageSeverity,
    Zone,
)
from safety_engine.hardening import (
    NO_ANOMALY,
    ROUTE_FAILURE,
    SAFETY_SCORE_FAILURE,
    TRIAGE_FAILURE,
    VISION_FAILURE,
    ZONE_FAILURE,
    band_color,
    harden,
    harden_anomaly,
    harden_environment,
    harden_intent,
    harden_messages,
    harden_route,
    harden_safety_score,
    harden_triage,
    harden_vision,
    harden_zone,
)
from safety_engine.observability import AuditEventType

from .fixtures import build_client, build_hardener, run


# =============================================================================
# STRATEGIES (Generators)
# =============================================================================

json_scalars = st.one_of(
    st.none(),
    st.booleans(),
    st.integers(),
    st.floats(allow_nan=True, allow_infinity=True),
    st.text(max_size=12),
)

json_values = st.recursive(
    json_scalars,
    lambda children: st.one_of(
        st.lists(children, max_size=4),
        st.dictionaries(st.text(max_size=8), children, max_size=4),
    ),
    max_leaves=20,
)

# Objects that use the real field names with garbage values.
SAFETY_KEYS = ["score", "color", "reason", "advice", "nextRiskTrend"]
ZONE_KEYS = ["zone", "dangerScore", "riskFactors", "recommendation", "zoneDescription",
             "crowdIndex", "lightingIndex", "hazardIndex", "nearestSafeZone"]
TRIAGE_KEYS = ["severity", "transcript", "imageAnalysis", "recommendedResponse",
               "adminBrief", "touristMessage", "panicScore", "urgencyScore"]
ANOMALY_KEYS = ["is_anomaly", "type", "severity", "confidence", "trigger_reason",
                "suggested_action", "anomaly_id"]
INTENT_KEYS = ["intent", "reasoning", "confidence", "context_clues", "implied_severity"]


def shaped(keys):
    return st.dictionaries(st.sampled_from(keys), json_values, max_size=len(keys))


def anything(keys):
    return st.one_of(json_values, shaped(keys))


# =============================================================================
# TOTALITY
# =============================================================================

class TestTotality:

    @settings(max_examples=200)
    @given(anything(SAFETY_KEYS))
    def test_safety_score(self, raw):
        result = harden_safety_score(raw)
        assert 0 <= result.score <= 100
        assert result.color.rank >= band_color(result.score).rank

    @settings(max_examples=200)
    @given(anything(ZONE_KEYS))
    def test_zone(self, raw):
        result = harden_zone(raw)
        assert isinstance(result.zone, Zone)
        assert 0 <= result.danger_score <= 100
        assert result.risk_factors

    @given(st.one_of(json_values, st.fixed_dictionaries({
        "safetyScore": anything(SAFETY_KEYS),
        "zoneClassification": anything(ZONE_KEYS),
    })))
    def test_environment(self, raw):
        result = harden_environment(raw)
        assert 0 <= result.safety_score.score <= 100
        assert isinstance(result.zone_classification.zone, Zone)

    @settings(max_examples=200)
    @given(anything(TRIAGE_KEYS))
    def test_triage(self, raw):
        result = harden_triage(raw)
        assert isinstance(result.severity, TriageSeverity)
        assert isinstance(result.recommended_response, DispatchRecommendation)
        for score in (result.panic_score, result.urgency_score):
            assert score is None or 0.0 <= score <= 1.0

    @settings(max_examples=200)
    @given(anything(ANOMALY_KEYS))
    def test_anomaly(self, raw):
        result = harden_anomaly(raw)
        assert 1 <= result.severity <= 5
        assert 0.0 <= result.confidence <= 1.0

    @settings(max_examples=200)
    @given(anything(INTENT_KEYS))
    def test_intent(self, raw):
        result = harden_intent(raw)
        assert isinstance(result.intent, Intent)
        assert 1 <= result.implied_severity <= 5

    @given(json_values)
    def test_vision_route_messages(self, raw):
        assert harden_vision(raw).factors
        assert harden_route(raw).steps
        for message in harden_messages(raw):
            assert message.language and message.sms and message.target


# =============================================================================
# SCORE BANDS
# =============================================================================

class TestBandColor:

    @pytest.mark.parametrize("score,color", [
        (0, SafetyColor.RED),
        (40, SafetyColor.RED),
        (41, SafetyColor.ORANGE),
        (60, SafetyColor.ORANGE),
        (61, SafetyColor.YELLOW),
        (80, SafetyColor.YELLOW),
        (81, SafetyColor.GREEN),
        (100, SafetyColor.GREEN),
    ])
    def test_boundaries(self, score, color):
        assert band_color(score) == color

    def test_bands_are_monotonic(self):
        ranks = [band_color(score).rank for score in range(0, 101)]
        assert ranks == sorted(ranks, reverse=True)

    def test_less_cautious_color_is_overridden(self):
        result = harden_safety_score({"score": 30, "color": "Green"})
        assert result.color == SafetyColor.RED

    def test_more_cautious_color_is_kept(self):
        result = harden_safety_score({"score": 90, "color": "orange"})
        assert result.color == SafetyColor.ORANGE

    def test_missing_score_is_cautious(self):
        result = harden_safety_score({"reason": "quiet street"})
        assert result.score == 45
        assert result.color == SafetyColor.ORANGE

    def test_nan_and_out_of_range(self):
        assert harden_safety_score({"score": float("nan")}).score == 45
        assert harden_safety_score({"score": 250}).score == 100
        assert harden_safety_score({"score": "-3"}).score == 0

    def test_boolean_is_not_a_score(self):
        assert harden_safety_score({"score": True}).score == 45


# =============================================================================
# DEFAULTS
# =============================================================================

class TestDefaults:

    def test_zone_field_defaults(self):
        result = harden_zone({})
        assert result.zone == Zone.YELLOW
        assert result.danger_score == 45
        assert result.risk_factors == ("Unspecified",)

    def test_zone_failure(self):
        result = harden_zone(None)
        assert result == ZONE_FAILURE
        assert result.risk_factors == ("Classifier Offline",)
        assert result.crowd_index is None
        assert result.lighting_index is None
        assert result.hazard_index is None

    def test_safety_score_failure(self):
        result = harden_safety_score("offline")
        assert result == SAFETY_SCORE_FAILURE
        assert result.score == 70
        assert result.color == SafetyColor.YELLOW
        assert result.trend == RiskTrend.STEADY

    def test_environment_without_known_keys_is_degraded(self):
        result = harden_environment({"unexpected": 1})
        assert result.degraded
        assert result.zone_classification == ZONE_FAILURE

    def test_partial_environment_is_not_degraded(self):
        result = harden_environment({"zoneClassification": {"zone": "red"}})
        assert not result.degraded
        assert result.zone_classification.zone == Zone.RED
        assert result.safety_score == SAFETY_SCORE_FAILURE

    def test_triage_failure_is_high_police(self):
        result = harden_triage(None)
        assert result == TRIAGE_FAILURE
        assert result.severity == TriageSeverity.HIGH
        assert result.recommended_response == DispatchRecommendation.POLICE
        assert result.degraded

    def test_triage_field_defaults(self):
        result = harden_triage({"severity": "apocalyptic"})
        assert result.severity == TriageSeverity.HIGH
        assert result.recommended_response == DispatchRecommendation.POLICE
        assert not result.degraded

    def test_intent_failure(self):
        result = harden_intent([])
        assert result.intent == Intent.SAFETY_CONCERN
        assert result.confidence == 0.0
        assert result.degraded

    def test_unknown_intent_is_other(self):
        result = harden_intent({"intent": "ALIENS", "confidence": 0.99})
        assert result.intent == Intent.OTHER
        assert result.implied_severity == 3

    def test_anomaly_requires_literal_true(self):
        assert not harden_anomaly({"is_anomaly": "true"}).is_anomaly
        assert not harden_anomaly({"is_anomaly": 1}).is_anomaly
        assert harden_anomaly({"is_anomaly": True}).is_anomaly

    def test_anomaly_failure_invents_nothing(self):
        assert harden_anomaly(None) == NO_ANOMALY
        assert not NO_ANOMALY.is_anomaly

    def test_vision_and_route_failures(self):
        assert harden_vision(None) == VISION_FAILURE
        assert harden_route(None) == ROUTE_FAILURE
        assert len(ROUTE_FAILURE.steps) == 3

    def test_route_without_steps_gets_fallback_steps(self):
        result = harden_route({"narrative": "Head north.", "steps": []})
        assert result.narrative == "Head north."
        assert result.steps == ROUTE_FAILURE.steps

    def test_messages_drop_malformed_items(self):
        raw = {"messages": [
            {"language": "English", "sms": "Help", "target": "Family"},
            {"language": "Spanish", "sms": "", "target": "Police"},
            "garbage",
        ]}
        messages = harden_messages(raw)
        assert [m.language for m in messages] == ["English"]

    def test_messages_accept_bare_list(self):
        messages = harden_messages([{"language": "Japanese", "sms": "Tasukete", "target": "Police"}])
        assert messages[0].target == "Police"

    def test_dispatch_table_covers_every_kind(self):
        for kind in RequestKind:
            harden(kind, None)


# =============================================================================
# RECOVERY
# =============================================================================

class TestHardenerRecover:

    def test_failure_is_audited_and_counted(self):
        client, _ = build_client(latency_ms=200, timeout_seconds=0.01)
        hardener, audit, metrics = build_hardener()

        outcome = run(client.infer(RequestKind.SOS_TRIAGE, {}))
        result = hardener.recover(outcome, entity_id="T-1")

        assert result == TRIAGE_FAILURE
        entries = audit.get_entries(AuditEventType.INFERENCE_FAILURE)
        assert len(entries) == 1
        assert entries[0].entity_id == "T-1"
        assert entries[0].meta("code") == InferenceErrorCode.TIMEOUT.value
        assert metrics.total("inference_failures_total") == 1

    def test_success_is_hardened_not_counted(self):
        client, _ = build_client({RequestKind.ENVIRONMENT_ANALYSIS: {"safetyScore": {"score": 95}}})
        hardener, audit, metrics = build_hardener()

        outcome = run(client.infer(RequestKind.ENVIRONMENT_ANALYSIS, {}))
        result = hardener.recover(outcome)

        assert result.safety_score.score == 95
        assert audit.entry_count == 0
        assert metrics.total("inference_failures_total") == 0
        assert len(metrics.get_metric("inference_latency_ms")) == 1
        assert not math.isnan(metrics.get_latest("inference_latency_ms").value)
