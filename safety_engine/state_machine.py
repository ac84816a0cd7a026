"""
Incident & Subject State Machine
================================

Owns the Subject and Incident stores and every transition on them.

INCIDENT LIFECYCLE:
===================
    Open ──dispatch──▶ Dispatched ──resolve──▶ Resolved
      └──────────────resolve─────────────────▲

No other transition exists; anything else raises InvalidTransitionError.

GUARANTEES:
===========
1. Records are frozen; every change stores a new record
2. Mutations run under per-entity locks (incident before subject)
3. Inference runs OUTSIDE entity locks; SOS creation re-checks the
   active-SOS rule under the subject lock
4. is_sos_active ⇒ status == DANGER holds for every stored Subject
5. disclosure_granted is fixed at incident creation
6. Inference failure never drops a report: the hardener's defaults
   still yield an incident
"""

from __future__ import annotations
from collections import deque
from dataclasses import replace
from typing import Any, Deque, Dict, Optional, Tuple
import hashlib
import logging
import secrets
import uuid

from adapter import InferenceClient, RequestKind

from .changes import ChangeFeed
from .clock import SystemClock
from .contracts import (
    ActiveSosError,
    EnvironmentAnalysis,
    IdentityView,
    Incident,
    IncidentCategory,
    IncidentKind,
    IncidentLocation,
    IncidentNotFoundError,
    IncidentStatus,
    InvalidTransitionError,
    Location,
    LocationSample,
    NotificationKind,
    SafetyColor,
    Subject,
    SubjectNotFoundError,
    SubjectProfile,
    SubjectStatus,
    UnitType,
    ValidationError,
)
from .disclosure import DisclosureGate, grants_disclosure
from .hardening import Hardener
from .locks import EntityLocks
from .notifications import NotificationCenter
from .observability import AuditEventType, AuditLog, MetricsCollector
from .triage import TriagePipeline, severity_for

logger = logging.getLogger(__name__)


SOS_DESCRIPTION = "SOS ALERT - CRITICAL"

_TRANSITIONS: Dict[Tuple[IncidentStatus, str], IncidentStatus] = {
    (IncidentStatus.OPEN, "dispatch"): IncidentStatus.DISPATCHED,
    (IncidentStatus.OPEN, "resolve"): IncidentStatus.RESOLVED,
    (IncidentStatus.DISPATCHED, "resolve"): IncidentStatus.RESOLVED,
}

_STATUS_FOR_COLOR = {
    SafetyColor.GREEN: SubjectStatus.SAFE,
    SafetyColor.YELLOW: SubjectStatus.SAFE,
    SafetyColor.ORANGE: SubjectStatus.WARNING,
    SafetyColor.RED: SubjectStatus.DANGER,
}


def derive_public_id(subject_id: str, salt: str) -> str:
    """Non-reversible identifier shown in place of a masked identity."""
    digest = hashlib.sha256(f"{salt}|{subject_id}".encode()).hexdigest()
    return f"DID:{digest[:16].upper()}"


def next_status(current: IncidentStatus, action: str) -> IncidentStatus:
    """Target status for an action, or InvalidTransitionError."""
    target = _TRANSITIONS.get((current, action))
    if target is None:
        raise InvalidTransitionError(
            f"Cannot {action} an incident in status {current.value}"
        )
    return target


class SafetyStateMachine:
    """Subject/Incident stores plus the operations that change them."""

    def __init__(
        self,
        client: InferenceClient,
        hardener: Hardener,
        triage: TriagePipeline,
        notifications: NotificationCenter,
        changes: ChangeFeed,
        audit: AuditLog,
        metrics: MetricsCollector,
        clock=None,
        anomaly_window: int = 20,
        id_salt: Optional[str] = None
    ):
        self._client = client
        self._hardener = hardener
        self._triage = triage
        self._notifications = notifications
        self._changes = changes
        self._audit = audit
        self._metrics = metrics
        self._clock = clock or SystemClock()
        self._anomaly_window = anomaly_window
        self._salt = id_salt or secrets.token_hex(16)
        self._gate = DisclosureGate(audit)
        self._locks = EntityLocks()

        self._subjects: Dict[str, Subject] = {}
        self._incidents: Dict[str, Incident] = {}
        self._samples: Dict[str, Deque[LocationSample]] = {}

    # =========================================================================
    # OBSERVATION (immutable snapshots)
    # =========================================================================

    def subject(self, subject_id: str) -> Subject:
        subject = self._subjects.get(subject_id)
        if subject is None:
            raise SubjectNotFoundError(f"Unknown subject: {subject_id}", entity_id=subject_id)
        return subject

    def subjects(self) -> Tuple[Subject, ...]:
        return tuple(self._subjects.values())

    def incident(self, incident_id: str) -> Incident:
        incident = self._incidents.get(incident_id)
        if incident is None:
            raise IncidentNotFoundError(f"Unknown incident: {incident_id}", entity_id=incident_id)
        return incident

    def incidents(self) -> Tuple[Incident, ...]:
        """All incidents, most recent first."""
        return tuple(reversed(list(self._incidents.values())))

    def incidents_for(self, subject_id: str) -> Tuple[Incident, ...]:
        return tuple(i for i in self.incidents() if i.subject_id == subject_id)

    def incidents_in_zone(self, zone_name: str) -> Tuple[Incident, ...]:
        return tuple(i for i in self.incidents() if i.location.zone_name == zone_name)

    def samples(self, subject_id: str) -> Tuple[LocationSample, ...]:
        self.subject(subject_id)
        return tuple(self._samples.get(subject_id, ()))

    def active_sos(self, subject_id: str) -> Optional[Incident]:
        for incident in self._incidents.values():
            if (incident.subject_id == subject_id
                    and incident.kind is IncidentKind.SOS
                    and incident.is_active):
                return incident
        return None

    # =========================================================================
    # SUBJECTS
    # =========================================================================

    async def register_subject(self, profile: SubjectProfile) -> Subject:
        if not profile.name or not profile.name.strip():
            raise ValidationError("Subject name is required")
        self._validate_position(profile.lat, profile.lng, profile.battery_level)

        subject_id = f"T-{uuid.uuid4().hex[:12]}"
        now = self._clock.now()
        subject = Subject(
            subject_id=subject_id,
            public_id=derive_public_id(subject_id, self._salt),
            name=profile.name.strip(),
            age=profile.age,
            gender=profile.gender,
            nationality=profile.nationality,
            contacts=tuple(profile.contacts),
            language=profile.language or "en",
            planned_route=tuple(profile.planned_route),
            last_location=Location(
                lat=profile.lat,
                lng=profile.lng,
                timestamp=now,
                zone_name=profile.zone_name or "Unknown",
            ),
            battery_level=profile.battery_level,
        )

        async with self._locks.hold(subject_id=subject_id):
            self._subjects[subject_id] = subject
            self._samples[subject_id] = deque(maxlen=self._anomaly_window)
            self._append_sample(subject)

        self._metrics.record("subjects_registered", float(len(self._subjects)))
        self._audit.record(
            AuditEventType.STATE_CHANGE, component="state_machine",
            action="subject_registered", entity_id=subject_id,
        )
        self._changes.publish("subject.registered", subject_id)
        self._notifications.notify(
            "Identity Verified",
            f"Tracking activated for {subject.public_id}",
            NotificationKind.SUCCESS,
        )
        return subject

    async def update_telemetry(
        self,
        subject_id: str,
        lat: float,
        lng: float,
        zone_name: str,
        battery_level: int
    ) -> Subject:
        self._validate_position(lat, lng, battery_level)
        self.subject(subject_id)
        async with self._locks.hold(subject_id=subject_id):
            subject = self.subject(subject_id)
            updated = replace(
                subject,
                last_location=Location(
                    lat=lat, lng=lng, timestamp=self._clock.now(),
                    zone_name=zone_name or subject.last_location.zone_name,
                ),
                battery_level=battery_level,
            )
            self._subjects[subject_id] = updated
            self._append_sample(updated)
        self._changes.publish("subject.updated", subject_id)
        return updated

    async def apply_environment(self, subject_id: str, analysis: EnvironmentAnalysis) -> Subject:
        """
        Apply a polling result: score always, status only when no SOS is
        active. A degraded (fallback) analysis leaves the subject as is.
        """
        self.subject(subject_id)
        async with self._locks.hold(subject_id=subject_id):
            subject = self.subject(subject_id)
            if analysis.degraded:
                logger.info("Skipping fallback environment for %s", subject_id)
                return subject

            score = analysis.safety_score
            status = subject.status
            if not subject.is_sos_active:
                status = _STATUS_FOR_COLOR[score.color]
            updated = replace(subject, safety_score=score.score, status=status)
            if updated == subject:
                return subject
            self._subjects[subject_id] = updated

        self._changes.publish("subject.updated", subject_id)
        if status is SubjectStatus.DANGER and subject.status is not SubjectStatus.DANGER:
            self._notifications.notify(
                "AI Safety Warning",
                f"{subject.public_id} entered a high-risk area: {score.reason}",
                NotificationKind.AI_WARNING,
            )
        return updated

    # =========================================================================
    # INCIDENTS
    # =========================================================================

    async def report_incident(
        self,
        subject_id: str,
        kind: IncidentKind,
        description: str = "",
        image_data_url: Optional[str] = None,
        audio_data_url: Optional[str] = None
    ) -> Incident:
        if kind is IncidentKind.ANOMALY:
            raise ValidationError("ANOMALY incidents are created by anomaly detection only")
        subject = self.subject(subject_id)
        if kind is IncidentKind.SOS:
            self._reject_second_sos(subject_id)

        description = (description or "").strip()
        has_media = bool(image_data_url or audio_data_url)
        if kind is IncidentKind.REPORT and not description and not has_media:
            raise ValidationError("A report needs a description or media", entity_id=subject_id)

        triage_result = None
        if kind is IncidentKind.SOS or has_media:
            triage_result = await self._triage.triage(
                description, image_data_url, audio_data_url, subject_id=subject_id
            )
            category = IncidentCategory.CRIME
            severity = severity_for(triage_result)
            dispatch = triage_result.recommended_response
            ai_analysis = triage_result.admin_brief
        else:
            analysis = await self._triage.analyze_incident(description)
            category = analysis.category
            severity = analysis.severity
            dispatch = analysis.recommended_dispatch
            ai_analysis = analysis.analysis

        async with self._locks.hold(subject_id=subject_id):
            subject = self.subject(subject_id)
            if kind is IncidentKind.SOS:
                self._reject_second_sos(subject_id)

            incident = Incident(
                incident_id=f"INC-{uuid.uuid4().hex[:12]}",
                subject_id=subject_id,
                kind=kind,
                category=category,
                severity=severity,
                status=IncidentStatus.OPEN,
                created_at=self._clock.now(),
                location=self._location_of(subject),
                description=SOS_DESCRIPTION if kind is IncidentKind.SOS else description,
                disclosure_granted=grants_disclosure(kind),
                ai_analysis=ai_analysis,
                triage=triage_result,
                recommended_dispatch=dispatch,
            )
            self._incidents[incident.incident_id] = incident
            if kind is IncidentKind.SOS:
                self._subjects[subject_id] = replace(
                    subject, status=SubjectStatus.DANGER, is_sos_active=True
                )

        self._record_created(incident)
        if kind is IncidentKind.SOS:
            self._changes.publish("subject.updated", subject_id)
            self._notifications.notify(
                "CRITICAL ALERT",
                f"SOS triggered by {subject.name} in {incident.location.zone_name}",
                NotificationKind.DANGER,
            )
        else:
            self._notifications.notify(
                "New Report",
                f"{category.value} report filed by {subject.public_id}",
                NotificationKind.INFO,
            )
        return incident

    async def dispatch(self, incident_id: str, unit: UnitType) -> Incident:
        if not isinstance(unit, UnitType):
            raise ValidationError(f"Unknown unit: {unit}", entity_id=incident_id)

        # closed incidents never get a lock
        next_status(self.incident(incident_id).status, "dispatch")
        async with self._locks.hold(incident_id=incident_id):
            incident = self.incident(incident_id)
            status = next_status(incident.status, "dispatch")
            updated = replace(
                incident,
                status=status,
                description=f"{incident.description} [{unit.value} Dispatched]",
                dispatched_unit=unit,
                dispatched_at=self._clock.now(),
            )
            self._incidents[incident_id] = updated

        self._audit.record(
            AuditEventType.STATE_CHANGE, component="state_machine",
            action="incident_dispatched", entity_id=incident_id, unit=unit.value,
        )
        self._changes.publish("incident.dispatched", incident_id)
        self._notifications.notify(
            "Units Dispatched", f"{unit.value} units en route", NotificationKind.SUCCESS
        )
        return updated

    async def resolve(self, incident_id: str) -> Incident:
        incident = self.incident(incident_id)
        next_status(incident.status, "resolve")
        async with self._locks.hold(incident_id=incident_id, subject_id=incident.subject_id):
            incident = self.incident(incident_id)
            status = next_status(incident.status, "resolve")
            updated = replace(incident, status=status, resolved_at=self._clock.now())
            self._incidents[incident_id] = updated

            subject_reset = False
            if incident.kind is IncidentKind.SOS:
                subject = self._subjects.get(incident.subject_id)
                if subject is not None:
                    self._subjects[subject.subject_id] = replace(
                        subject, status=SubjectStatus.SAFE, is_sos_active=False
                    )
                    subject_reset = True
        self._locks.incidents.discard(incident_id)

        self._audit.record(
            AuditEventType.STATE_CHANGE, component="state_machine",
            action="incident_resolved", entity_id=incident_id,
        )
        self._changes.publish("incident.resolved", incident_id)
        if subject_reset:
            self._changes.publish("subject.updated", incident.subject_id)
        self._notifications.notify("Case Resolved", "Incident closed", NotificationKind.SUCCESS)
        return updated

    async def run_anomaly_detection(self, subject_id: str) -> Optional[Incident]:
        """ANOMALY incident when the hardened result says so, else None."""
        subject = self.subject(subject_id)
        payload = self.anomaly_payload(subject)
        outcome = await self._client.infer(RequestKind.ANOMALY_DETECTION, payload)
        assessment = self._hardener.recover(outcome, entity_id=subject_id)
        if not assessment.is_anomaly:
            return None

        async with self._locks.hold(subject_id=subject_id):
            subject = self.subject(subject_id)
            incident = Incident(
                incident_id=f"ANOM-{uuid.uuid4().hex[:12]}",
                subject_id=subject_id,
                kind=IncidentKind.ANOMALY,
                category=IncidentCategory.OTHER,
                severity=assessment.severity,
                status=IncidentStatus.OPEN,
                created_at=self._clock.now(),
                location=self._location_of(subject),
                description=assessment.trigger_reason,
                disclosure_granted=grants_disclosure(IncidentKind.ANOMALY),
                ai_analysis=assessment.suggested_action,
            )
            self._incidents[incident.incident_id] = incident

        self._record_created(incident, anomaly_type=assessment.anomaly_type)
        self._notifications.notify(
            "AI Anomaly Detected",
            f"{assessment.anomaly_type}: {assessment.trigger_reason}",
            NotificationKind.AI_DETECT,
        )
        return incident

    # =========================================================================
    # IDENTITY DISCLOSURE
    # =========================================================================

    def identity_for(self, incident_id: str) -> IdentityView:
        incident = self.incident(incident_id)
        return self._gate.view(incident, self.subject(incident.subject_id))

    def disclosed_identity(self, incident_id: str) -> IdentityView:
        incident = self.incident(incident_id)
        return self._gate.require(incident, self.subject(incident.subject_id))

    # =========================================================================
    # HELPERS
    # =========================================================================

    def anomaly_payload(self, subject: Subject) -> Dict[str, Any]:
        """Inference context for anomaly detection; carries no identity fields."""
        return {
            "subject": {
                "status": subject.status.value,
                "isSosActive": subject.is_sos_active,
                "batteryLevel": subject.battery_level,
                "plannedRoute": list(subject.planned_route),
                "zone": subject.last_location.zone_name,
            },
            "recentSamples": [
                {
                    "lat": s.lat,
                    "lng": s.lng,
                    "zone": s.zone_name,
                    "battery": s.battery_level,
                    "at": s.recorded_at.isoformat(),
                }
                for s in self._samples.get(subject.subject_id, ())
            ],
        }

    def environment_payload(self, subject: Subject) -> Dict[str, Any]:
        """Inference context for environment analysis."""
        zone = subject.last_location.zone_name
        return {
            "subject": {
                "status": subject.status.value,
                "isSosActive": subject.is_sos_active,
                "batteryLevel": subject.battery_level,
                "zone": zone,
            },
            "timeOfDay": self._clock.now().strftime("%H:%M"),
            "incidents": [
                {
                    "type": i.kind.value,
                    "category": i.category.value,
                    "severity": i.severity,
                    "status": i.status.value,
                }
                for i in self.incidents_in_zone(zone)
                if i.is_active
            ],
        }

    def _reject_second_sos(self, subject_id: str) -> None:
        active = self.active_sos(subject_id)
        if active is not None:
            raise ActiveSosError(
                f"Subject already has an active SOS ({active.incident_id})",
                entity_id=subject_id,
            )

    def _append_sample(self, subject: Subject) -> None:
        loc = subject.last_location
        self._samples[subject.subject_id].append(LocationSample(
            lat=loc.lat,
            lng=loc.lng,
            zone_name=loc.zone_name,
            recorded_at=loc.timestamp,
            battery_level=subject.battery_level,
        ))

    def _record_created(self, incident: Incident, **metadata: str) -> None:
        self._metrics.increment("incidents_created_total", {"kind": incident.kind.value})
        self._audit.record(
            AuditEventType.STATE_CHANGE, component="state_machine",
            action="incident_created", entity_id=incident.incident_id,
            kind=incident.kind.value, severity=str(incident.severity), **metadata,
        )
        self._changes.publish("incident.created", incident.incident_id)

    @staticmethod
    def _location_of(subject: Subject) -> IncidentLocation:
        loc = subject.last_location
        return IncidentLocation(lat=loc.lat, lng=loc.lng, zone_name=loc.zone_name)

    @staticmethod
    def _validate_position(lat: float, lng: float, battery_level: int) -> None:
        if not -90.0 <= lat <= 90.0 or not -180.0 <= lng <= 180.0:
            raise ValidationError(f"Coordinates out of range: ({lat}, {lng})")
        if not 0 <= battery_level <= 100:
            raise ValidationError(f"Battery level out of range: {battery_level}")
