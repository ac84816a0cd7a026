"""
State Machine Tests

AXIOM UNDER TEST:
=================
Open → Dispatched → Resolved (or Open → Resolved) is the only lifecycle;
an active SOS always means DANGER; identity fields never leave the
store unless the incident grants disclosure.
"""

from dataclasses import replace
import asyncio

import pytest

from adapter import RequestKind
from adapter.providers import MockProvider, ProviderErrorCode
from safety_engine import EngineConfig, ManualClock, SafetyEngine
from safety_engine.contracts import (
    ActiveSosError,
    DispatchRecommendation,
    IncidentCategory,
    IncidentKind,
    IncidentNotFoundError,
    IncidentStatus,
    InvalidTransitionError,
    Subject,
    SubjectNotFoundError,
    SubjectStatus,
    UnitType,
    ValidationError,
)
from safety_engine.hardening import TRIAGE_FAILURE
from safety_engine.state_machine import derive_public_id, next_status

from .fixtures import (
    ANOMALY_CLEAR,
    ANOMALY_DETECTED,
    ENVIRONMENT_GREEN,
    ENVIRONMENT_RED,
    EPOCH,
    INTENT_LOST,
    PNG_DATA_URL,
    TRIAGE_CRITICAL,
    TRIAGE_MEDIUM,
    build_engine,
    make_profile,
    run,
)


SCRIPTED = {
    RequestKind.SOS_TRIAGE: TRIAGE_CRITICAL,
    RequestKind.INTENT_PARSE: INTENT_LOST,
    RequestKind.ANOMALY_DETECTION: ANOMALY_DETECTED,
    RequestKind.ENVIRONMENT_ANALYSIS: ENVIRONMENT_GREEN,
}


# =============================================================================
# PURE HELPERS
# =============================================================================

class TestTransitionTable:

    @pytest.mark.parametrize("current,action,target", [
        (IncidentStatus.OPEN, "dispatch", IncidentStatus.DISPATCHED),
        (IncidentStatus.OPEN, "resolve", IncidentStatus.RESOLVED),
        (IncidentStatus.DISPATCHED, "resolve", IncidentStatus.RESOLVED),
    ])
    def test_allowed(self, current, action, target):
        assert next_status(current, action) == target

    @pytest.mark.parametrize("current,action", [
        (IncidentStatus.DISPATCHED, "dispatch"),
        (IncidentStatus.RESOLVED, "dispatch"),
        (IncidentStatus.RESOLVED, "resolve"),
        (IncidentStatus.OPEN, "reopen"),
    ])
    def test_rejected(self, current, action):
        with pytest.raises(InvalidTransitionError):
            next_status(current, action)

    def test_public_id_is_stable_and_opaque(self):
        first = derive_public_id("T-abc", "salt")
        assert first == derive_public_id("T-abc", "salt")
        assert first != derive_public_id("T-abc", "pepper")
        assert first.startswith("DID:")
        assert "abc" not in first

    def test_subject_invariant(self):
        with pytest.raises(ValueError):
            Subject(
                subject_id="T-1",
                public_id="DID:X",
                name="X",
                last_location=None,
                status=SubjectStatus.WARNING,
                is_sos_active=True,
            )


# =============================================================================
# SUBJECTS
# =============================================================================

class TestSubjects:

    def test_register(self):
        engine, _, clock = build_engine()
        subject = run(engine.register_subject(make_profile(battery_level=55)))

        assert subject.subject_id.startswith("T-")
        assert subject.public_id.startswith("DID:")
        assert subject.status == SubjectStatus.SAFE
        assert subject.safety_score == 90
        assert not subject.is_sos_active
        assert subject.battery_level == 55
        assert subject.last_location.timestamp == clock.now()
        assert engine.subject(subject.subject_id) is subject

        titles = [n.title for n in engine.notification_history()]
        assert titles == ["Identity Verified"]
        assert subject.name not in engine.notification_history()[0].message

    @pytest.mark.parametrize("overrides", [
        {"name": "   "},
        {"battery_level": 101},
        {"lat": 91.0},
        {"lng": -181.0},
    ])
    def test_register_rejects_bad_input(self, overrides):
        engine, _, _ = build_engine()
        with pytest.raises(ValidationError):
            run(engine.register_subject(replace(make_profile(), **overrides)))
        assert engine.subjects() == ()

    def test_unknown_subject(self):
        engine, _, _ = build_engine()
        with pytest.raises(SubjectNotFoundError):
            engine.subject("T-missing")
        with pytest.raises(SubjectNotFoundError):
            run(engine.report_incident("T-missing", IncidentKind.SOS))

    def test_telemetry_window(self):
        clock = ManualClock.starting_at(EPOCH)
        config = EngineConfig(provider="mock", anomaly_window=3)
        engine = SafetyEngine(config, provider=MockProvider(), clock=clock)

        async def scenario():
            subject = await engine.register_subject(make_profile())
            for i in range(5):
                clock.advance(10)
                await engine.update_telemetry(subject.subject_id, 35.0 + i, 135.0, f"Z{i}", 90 - i)
            return subject

        subject = run(scenario())
        samples = engine._machine.samples(subject.subject_id)
        assert [s.zone_name for s in samples] == ["Z2", "Z3", "Z4"]
        assert samples[-1].recorded_at == clock.now()
        latest = engine.subject(subject.subject_id)
        assert latest.last_location.zone_name == "Z4"
        assert latest.battery_level == 86

    def test_telemetry_rejects_bad_battery(self):
        engine, _, _ = build_engine()

        async def scenario():
            subject = await engine.register_subject(make_profile())
            await engine.update_telemetry(subject.subject_id, 0.0, 0.0, "Z", -1)

        with pytest.raises(ValidationError):
            run(scenario())


# =============================================================================
# INCIDENT LIFECYCLE
# =============================================================================

class TestIncidentLifecycle:

    def test_sos_marks_subject_in_danger(self):
        engine, _, _ = build_engine(SCRIPTED)

        async def scenario():
            subject = await engine.register_subject(make_profile())
            return subject, await engine.report_incident(subject.subject_id, IncidentKind.SOS)

        subject, incident = run(scenario())

        assert incident.incident_id.startswith("INC-")
        assert incident.status == IncidentStatus.OPEN
        assert incident.severity == 5
        assert incident.disclosure_granted
        assert incident.recommended_dispatch == DispatchRecommendation.POLICE
        assert incident.triage.severity.value == "CRITICAL"
        stored = engine.subject(subject.subject_id)
        assert stored.status == SubjectStatus.DANGER
        assert stored.is_sos_active

    def test_dispatch_then_resolve(self):
        engine, _, clock = build_engine(SCRIPTED)

        async def scenario():
            subject = await engine.register_subject(make_profile())
            incident = await engine.report_incident(subject.subject_id, IncidentKind.SOS)
            clock.advance(30)
            dispatched = await engine.dispatch(incident.incident_id, UnitType.MEDICAL)
            clock.advance(600)
            resolved = await engine.resolve(incident.incident_id)
            return subject, dispatched, resolved

        subject, dispatched, resolved = run(scenario())

        assert dispatched.status == IncidentStatus.DISPATCHED
        assert dispatched.dispatched_unit == UnitType.MEDICAL
        assert dispatched.description.endswith("[Medical Dispatched]")
        assert resolved.status == IncidentStatus.RESOLVED
        assert resolved.resolved_at > dispatched.dispatched_at
        assert resolved.disclosure_granted
        stored = engine.subject(subject.subject_id)
        assert stored.status == SubjectStatus.SAFE
        assert not stored.is_sos_active

    def test_double_resolve_is_rejected(self):
        engine, _, _ = build_engine(SCRIPTED)

        async def scenario():
            subject = await engine.register_subject(make_profile())
            incident = await engine.report_incident(subject.subject_id, IncidentKind.REPORT, "lost my way")
            await engine.resolve(incident.incident_id)
            await engine.resolve(incident.incident_id)

        with pytest.raises(InvalidTransitionError):
            run(scenario())

    def test_dispatch_after_resolve_is_rejected(self):
        engine, _, _ = build_engine(SCRIPTED)

        async def scenario():
            subject = await engine.register_subject(make_profile())
            incident = await engine.report_incident(subject.subject_id, IncidentKind.SOS)
            await engine.resolve(incident.incident_id)
            await engine.dispatch(incident.incident_id, UnitType.POLICE)

        with pytest.raises(InvalidTransitionError):
            run(scenario())

    def test_dispatch_rejects_unknown_unit(self):
        engine, _, _ = build_engine(SCRIPTED)

        async def scenario():
            subject = await engine.register_subject(make_profile())
            incident = await engine.report_incident(subject.subject_id, IncidentKind.SOS)
            await engine.dispatch(incident.incident_id, "Fire")

        with pytest.raises(ValidationError):
            run(scenario())

    def test_unknown_incident(self):
        engine, _, _ = build_engine()
        with pytest.raises(IncidentNotFoundError):
            run(engine.dispatch("INC-missing", UnitType.POLICE))

    def test_second_active_sos_is_rejected(self):
        engine, provider, _ = build_engine(SCRIPTED)

        async def scenario():
            subject = await engine.register_subject(make_profile())
            await engine.report_incident(subject.subject_id, IncidentKind.SOS)
            await engine.report_incident(subject.subject_id, IncidentKind.SOS)

        with pytest.raises(ActiveSosError):
            run(scenario())
        assert provider.call_count(RequestKind.SOS_TRIAGE) == 1

    def test_concurrent_sos_creates_one_incident(self):
        engine, _, _ = build_engine(SCRIPTED, latency_ms=20)

        async def scenario():
            subject = await engine.register_subject(make_profile())
            return await asyncio.gather(
                engine.report_incident(subject.subject_id, IncidentKind.SOS),
                engine.report_incident(subject.subject_id, IncidentKind.SOS),
                return_exceptions=True,
            )

        results = run(scenario())
        errors = [r for r in results if isinstance(r, ActiveSosError)]
        assert len(errors) == 1
        assert len([i for i in engine.incidents() if i.kind is IncidentKind.SOS]) == 1

    def test_sos_allowed_again_after_resolve(self):
        engine, _, _ = build_engine(SCRIPTED)

        async def scenario():
            subject = await engine.register_subject(make_profile())
            first = await engine.report_incident(subject.subject_id, IncidentKind.SOS)
            await engine.resolve(first.incident_id)
            return await engine.report_incident(subject.subject_id, IncidentKind.SOS)

        second = run(scenario())
        assert second.status == IncidentStatus.OPEN
        assert engine.incidents()[0] is second

    def test_resolving_non_sos_leaves_subject_untouched(self):
        engine, _, _ = build_engine(SCRIPTED)

        async def scenario():
            subject = await engine.register_subject(make_profile())
            sid = subject.subject_id
            await engine.report_incident(sid, IncidentKind.SOS)
            report = await engine.report_incident(sid, IncidentKind.REPORT, "lost my way")
            anomaly = await engine.run_anomaly_detection(sid)

            before = engine.subject(sid)
            await engine.resolve(report.incident_id)
            after_report = engine.subject(sid)
            await engine.resolve(anomaly.incident_id)
            return before, after_report, engine.subject(sid)

        before, after_report, after_anomaly = run(scenario())

        assert before.is_sos_active
        assert before.status == SubjectStatus.DANGER
        assert after_report == before
        assert after_anomaly == before

    def test_concurrent_dispatch_and_resolve_do_not_interleave(self):
        engine, _, _ = build_engine(SCRIPTED)

        async def scenario():
            subject = await engine.register_subject(make_profile())
            incident = await engine.report_incident(subject.subject_id, IncidentKind.SOS)
            results = await asyncio.gather(
                engine.resolve(incident.incident_id),
                engine.dispatch(incident.incident_id, UnitType.POLICE),
                return_exceptions=True,
            )
            return incident, results

        incident, (resolved, dispatched) = run(scenario())

        assert resolved.status == IncidentStatus.RESOLVED
        assert isinstance(dispatched, InvalidTransitionError)
        stored = engine.incident(incident.incident_id)
        assert stored.status == IncidentStatus.RESOLVED
        assert stored.dispatched_unit is None
        assert "Dispatched]" not in stored.description

    def test_resolve_releases_incident_lock(self):
        engine, _, _ = build_engine(SCRIPTED)
        incident_locks = engine._machine._locks.incidents

        async def scenario():
            subject = await engine.register_subject(make_profile())
            incident = await engine.report_incident(subject.subject_id, IncidentKind.SOS)
            await engine.dispatch(incident.incident_id, UnitType.MEDICAL)
            held = len(incident_locks)
            await engine.resolve(incident.incident_id)
            with pytest.raises(InvalidTransitionError):
                await engine.resolve(incident.incident_id)
            with pytest.raises(InvalidTransitionError):
                await engine.dispatch(incident.incident_id, UnitType.POLICE)
            return held

        assert run(scenario()) == 1
        assert len(incident_locks) == 0

    def test_missing_entities_create_no_locks(self):
        engine, _, _ = build_engine(SCRIPTED)
        locks = engine._machine._locks

        async def scenario():
            with pytest.raises(SubjectNotFoundError):
                await engine.update_telemetry("T-missing", 35.0, 135.0, "Harbour", 50)
            with pytest.raises(IncidentNotFoundError):
                await engine.dispatch("INC-missing", UnitType.POLICE)
            with pytest.raises(IncidentNotFoundError):
                await engine.resolve("INC-missing")

        run(scenario())
        assert len(locks.subjects) == 0
        assert len(locks.incidents) == 0


# =============================================================================
# REPORTS
# =============================================================================

class TestReports:

    def test_report_uses_intent_and_masks_identity(self):
        engine, provider, _ = build_engine(SCRIPTED)

        async def scenario():
            subject = await engine.register_subject(make_profile())
            incident = await engine.report_incident(subject.subject_id, IncidentKind.REPORT, "can't find my hotel")
            return subject, incident

        subject, incident = run(scenario())

        assert incident.category == IncidentCategory.LOST
        assert incident.severity == 3
        assert not incident.disclosure_granted
        assert incident.triage is None
        assert provider.call_count(RequestKind.SOS_TRIAGE) == 0
        assert engine.subject(subject.subject_id).status == SubjectStatus.SAFE

        new_report = engine.notification_history()[-1]
        assert new_report.title == "New Report"
        assert subject.public_id in new_report.message
        assert subject.name not in new_report.message

    def test_report_with_media_is_triaged(self):
        engine, provider, _ = build_engine({RequestKind.SOS_TRIAGE: TRIAGE_MEDIUM})

        async def scenario():
            subject = await engine.register_subject(make_profile())
            return await engine.report_incident(subject.subject_id, IncidentKind.REPORT, "", PNG_DATA_URL)

        incident = run(scenario())
        assert provider.call_count(RequestKind.SOS_TRIAGE) == 1
        assert incident.severity == 4
        assert incident.ai_analysis == "Mild distress, no threat indicators."
        assert not incident.disclosure_granted

    def test_empty_report_is_rejected(self):
        engine, provider, _ = build_engine(SCRIPTED)

        async def scenario():
            subject = await engine.register_subject(make_profile())
            await engine.report_incident(subject.subject_id, IncidentKind.REPORT, "   ")

        with pytest.raises(ValidationError):
            run(scenario())
        assert provider.call_count() == 0

    def test_anomaly_kind_cannot_be_reported(self):
        engine, _, _ = build_engine()

        async def scenario():
            subject = await engine.register_subject(make_profile())
            await engine.report_incident(subject.subject_id, IncidentKind.ANOMALY, "odd")

        with pytest.raises(ValidationError):
            run(scenario())

    def test_inference_failure_still_creates_incident(self):
        engine, _, _ = build_engine(failure_mode=ProviderErrorCode.API_ERROR)

        async def scenario():
            subject = await engine.register_subject(make_profile())
            return await engine.report_incident(subject.subject_id, IncidentKind.SOS)

        incident = run(scenario())
        assert incident.triage == TRIAGE_FAILURE
        assert incident.severity == 4
        assert incident.recommended_dispatch == DispatchRecommendation.POLICE
        assert engine.metrics.total("inference_failures_total") == 1


# =============================================================================
# ENVIRONMENT AND ANOMALIES
# =============================================================================

class TestEnvironment:

    def test_red_environment_raises_danger_and_warns(self):
        engine, _, _ = build_engine({RequestKind.ENVIRONMENT_ANALYSIS: ENVIRONMENT_RED})

        async def scenario():
            subject = await engine.register_subject(make_profile())
            return await engine.poll_subject(subject.subject_id)

        updated = run(scenario())
        assert updated.status == SubjectStatus.DANGER
        assert updated.safety_score == 25
        assert engine.notification_history()[-1].title == "AI Safety Warning"

    def test_green_environment_keeps_sos_status(self):
        engine, _, _ = build_engine(SCRIPTED)

        async def scenario():
            subject = await engine.register_subject(make_profile())
            await engine.report_incident(subject.subject_id, IncidentKind.SOS)
            return await engine.poll_subject(subject.subject_id)

        updated = run(scenario())
        assert updated.safety_score == 88
        assert updated.status == SubjectStatus.DANGER
        assert updated.is_sos_active

    def test_degraded_environment_leaves_subject_unchanged(self):
        engine, _, _ = build_engine(failure_mode=ProviderErrorCode.TIMEOUT)

        async def scenario():
            subject = await engine.register_subject(make_profile())
            return subject, await engine.poll_subject(subject.subject_id)

        before, after = run(scenario())
        assert after is before

    def test_environment_payload_lists_active_zone_incidents(self):
        engine, provider, _ = build_engine(SCRIPTED)

        async def scenario():
            subject = await engine.register_subject(make_profile())
            await engine.report_incident(subject.subject_id, IncidentKind.SOS)
            await engine.assess_environment(subject.subject_id)

        run(scenario())
        payload = [r for r in provider.requests if r.kind is RequestKind.ENVIRONMENT_ANALYSIS][0].payload
        assert payload["incidents"][0]["type"] == "SOS"
        assert payload["subject"]["isSosActive"] is True
        assert "name" not in payload["subject"]


class TestAnomalyDetection:

    def test_anomaly_creates_incident(self):
        engine, provider, _ = build_engine(SCRIPTED)

        async def scenario():
            subject = await engine.register_subject(make_profile())
            return await engine.run_anomaly_detection(subject.subject_id)

        incident = run(scenario())

        assert incident.incident_id.startswith("ANOM-")
        assert incident.kind == IncidentKind.ANOMALY
        assert incident.category == IncidentCategory.OTHER
        assert incident.severity == 4
        assert incident.description == "Left planned route into unlit area."
        assert incident.ai_analysis == "Alert control room."
        assert not incident.disclosure_granted
        assert engine.notification_history()[-1].title == "AI Anomaly Detected"

        payload = provider.requests[-1].payload
        assert len(payload["recentSamples"]) == 1
        assert payload["subject"]["plannedRoute"] == ["Old Town", "Harbour"]

    def test_no_anomaly_no_incident(self):
        engine, _, _ = build_engine({RequestKind.ANOMALY_DETECTION: ANOMALY_CLEAR})

        async def scenario():
            subject = await engine.register_subject(make_profile())
            return await engine.run_anomaly_detection(subject.subject_id)

        assert run(scenario()) is None
        assert engine.incidents() == ()

    def test_failure_invents_no_anomaly(self):
        engine, _, _ = build_engine(failure_mode=ProviderErrorCode.RATE_LIMITED)

        async def scenario():
            subject = await engine.register_subject(make_profile())
            return await engine.run_anomaly_detection(subject.subject_id)

        assert run(scenario()) is None
        assert engine.incidents() == ()
