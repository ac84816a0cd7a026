"""
Safety Engine
=============

Facade that builds every process-wide component once and exposes the
reporting and observation boundaries.

COMPONENT GRAPH (constructed here, passed by reference):
========================================================
    InferenceClient ─▶ Hardener ─▶ ClassificationCache
                              └──▶ TriagePipeline ─▶ SafetyStateMachine
    NotificationCenter, ChangeFeed, AuditLog, MetricsCollector
    EnvironmentPoller (calls poll_subject every poll interval)

All returned records are frozen snapshots.
"""

from __future__ import annotations
from typing import Any, Dict, Optional, Tuple
import logging

from adapter import InferenceClient
from adapter.providers import GeminiProvider, LLMProvider, MockProvider

from .cache import CacheStats, ClassificationCache
from .changes import ChangeFeed
from .clock import SystemClock
from .config import EngineConfig
from .contracts import (
    EmergencyMessage,
    EnvironmentAnalysis,
    IdentityView,
    Incident,
    IncidentKind,
    Notification,
    RoutePlan,
    Subject,
    SubjectProfile,
    UnitType,
    VisionAnalysis,
    ZoneClassification,
)
from .hardening import Hardener
from .notifications import NotificationCenter
from .observability import AuditLog, MetricsCollector
from .scheduler import EnvironmentPoller
from .state_machine import SafetyStateMachine
from .triage import TriagePipeline

logger = logging.getLogger(__name__)


def build_provider(config: EngineConfig) -> LLMProvider:
    if config.provider == "mock":
        return MockProvider()
    return GeminiProvider(
        api_key=config.gemini_api_key or "",
        model=config.gemini_model,
        base_url=config.gemini_base_url,
    )


class SafetyEngine:
    """
    Process-wide engine instance.

    Polling only runs after start(); tests drive polling explicitly
    through poll_subject().
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        provider: Optional[LLMProvider] = None,
        clock=None
    ):
        self._config = config or EngineConfig()
        self._clock = clock or SystemClock()

        self.audit = AuditLog(self._clock)
        self.metrics = MetricsCollector(self._clock)
        self.changes = ChangeFeed(self._clock)

        self._client = InferenceClient(
            provider or build_provider(self._config),
            timeout_seconds=self._config.inference_timeout_seconds,
            max_tokens=self._config.inference_max_tokens,
            max_traces=self._config.max_traces,
        )
        self._hardener = Hardener(self.audit, self.metrics)
        self._cache = ClassificationCache(
            self._client,
            self._hardener,
            clock=self._clock,
            ttl_seconds=self._config.cache_ttl_seconds,
            max_entries=self._config.cache_max_entries,
        )
        self._triage = TriagePipeline(
            self._client,
            self._hardener,
            self.metrics,
            confidence_threshold=self._config.intent_confidence_threshold,
        )
        self._notifications = NotificationCenter(
            clock=self._clock,
            ttl_seconds=self._config.notification_ttl_seconds,
            on_change=self.changes.publish,
        )
        self._machine = SafetyStateMachine(
            self._client,
            self._hardener,
            self._triage,
            self._notifications,
            self.changes,
            self.audit,
            self.metrics,
            clock=self._clock,
            anomaly_window=self._config.anomaly_window,
        )
        self._poller = EnvironmentPoller(
            self.poll_subject, interval_seconds=self._config.poll_interval_seconds
        )
        self._polling = False

    @classmethod
    def from_env(cls, provider: Optional[LLMProvider] = None) -> 'SafetyEngine':
        return cls(EngineConfig.from_env(), provider=provider)

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def client(self) -> InferenceClient:
        return self._client

    @property
    def poller(self) -> EnvironmentPoller:
        return self._poller

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def start(self) -> None:
        """Begin environment polling for every registered subject."""
        self._polling = True
        for subject in self._machine.subjects():
            self._poller.register(subject.subject_id)
        logger.info("Safety engine started (provider=%s)", self._client.provider.provider_id)

    async def aclose(self) -> None:
        self._polling = False
        await self._poller.stop()
        self._notifications.close()
        await self._client.aclose()

    # =========================================================================
    # REPORTING BOUNDARY
    # =========================================================================

    async def register_subject(self, profile: SubjectProfile) -> Subject:
        subject = await self._machine.register_subject(profile)
        if self._polling:
            self._poller.register(subject.subject_id)
        return subject

    async def update_telemetry(
        self,
        subject_id: str,
        lat: float,
        lng: float,
        zone_name: str,
        battery_level: int
    ) -> Subject:
        return await self._machine.update_telemetry(subject_id, lat, lng, zone_name, battery_level)

    async def report_incident(
        self,
        subject_id: str,
        kind: IncidentKind,
        description: str = "",
        image_data_url: Optional[str] = None,
        audio_data_url: Optional[str] = None
    ) -> Incident:
        return await self._machine.report_incident(
            subject_id, kind, description, image_data_url, audio_data_url
        )

    async def dispatch(self, incident_id: str, unit: UnitType) -> Incident:
        return await self._machine.dispatch(incident_id, unit)

    async def resolve(self, incident_id: str) -> Incident:
        return await self._machine.resolve(incident_id)

    async def run_anomaly_detection(self, subject_id: str) -> Optional[Incident]:
        return await self._machine.run_anomaly_detection(subject_id)

    # =========================================================================
    # ENVIRONMENT
    # =========================================================================

    async def assess_environment(self, subject_id: str) -> EnvironmentAnalysis:
        subject = self._machine.subject(subject_id)
        return await self._cache.lookup(
            subject_id,
            subject.last_location.zone_name,
            lambda: self._machine.environment_payload(subject),
        )

    async def zone_classification(self, subject_id: str) -> ZoneClassification:
        analysis = await self.assess_environment(subject_id)
        return analysis.zone_classification

    async def apply_environment(self, subject_id: str, analysis: EnvironmentAnalysis) -> Subject:
        return await self._machine.apply_environment(subject_id, analysis)

    async def poll_subject(self, subject_id: str) -> Subject:
        """One polling cycle: cached environment analysis, then apply it."""
        analysis = await self.assess_environment(subject_id)
        return await self._machine.apply_environment(subject_id, analysis)

    # =========================================================================
    # MEDIA, ROUTES, MESSAGES
    # =========================================================================

    async def analyze_image(self, image_data_url: str) -> VisionAnalysis:
        return await self._triage.analyze_image(image_data_url)

    async def plan_safe_route(self, start: str, destination: str) -> RoutePlan:
        return await self._triage.plan_safe_route(start, destination)

    async def generate_emergency_messages(self, incident_id: str) -> Tuple[EmergencyMessage, ...]:
        incident = self._machine.incident(incident_id)
        identity = self._machine.identity_for(incident_id)
        payload: Dict[str, Any] = {
            "type": incident.kind.value,
            "category": incident.category.value,
            "severity": incident.severity,
            "description": incident.description,
            "zone": incident.location.zone_name,
            "tourist": identity.name if identity.disclosed else identity.public_id,
        }
        return await self._triage.generate_emergency_messages(payload)

    # =========================================================================
    # IDENTITY
    # =========================================================================

    def identity_for(self, incident_id: str) -> IdentityView:
        return self._machine.identity_for(incident_id)

    def disclosed_identity(self, incident_id: str) -> IdentityView:
        return self._machine.disclosed_identity(incident_id)

    # =========================================================================
    # OBSERVATION BOUNDARY
    # =========================================================================

    def subjects(self) -> Tuple[Subject, ...]:
        return self._machine.subjects()

    def subject(self, subject_id: str) -> Subject:
        return self._machine.subject(subject_id)

    def incidents(self) -> Tuple[Incident, ...]:
        return self._machine.incidents()

    def incident(self, incident_id: str) -> Incident:
        return self._machine.incident(incident_id)

    def cached_zone(self, subject_id: str) -> Optional[ZoneClassification]:
        """Zone from a live cache entry, without any inference call."""
        subject = self._machine.subject(subject_id)
        analysis = self._cache.peek(subject_id, subject.last_location.zone_name)
        return analysis.zone_classification if analysis else None

    def notifications(self) -> Tuple[Notification, ...]:
        return self._notifications.live()

    def notification_history(self) -> Tuple[Notification, ...]:
        return self._notifications.history()

    def dismiss_notification(self, notification_id: str) -> bool:
        return self._notifications.dismiss(notification_id)

    def cache_stats(self) -> CacheStats:
        return self._cache.get_stats()
