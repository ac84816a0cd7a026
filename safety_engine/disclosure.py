"""
Identity Disclosure Gate

Full identity is readable only for incidents whose disclosure_granted
flag is set (SOS incidents, fixed at creation). Every other read gets
the masked view; the strict accessor rejects and audits.
"""

from __future__ import annotations
import logging

from .contracts import (
    DisclosureDeniedError,
    IdentityView,
    Incident,
    IncidentKind,
    Subject,
)
from .observability import AuditEventType, AuditLog

logger = logging.getLogger(__name__)


def grants_disclosure(kind: IncidentKind) -> bool:
    return kind is IncidentKind.SOS


def masked_view(incident: Incident, subject: Subject) -> IdentityView:
    return IdentityView(
        incident_id=incident.incident_id,
        public_id=subject.public_id,
        disclosed=False,
    )


def full_view(incident: Incident, subject: Subject) -> IdentityView:
    return IdentityView(
        incident_id=incident.incident_id,
        public_id=subject.public_id,
        disclosed=True,
        name=subject.name,
        age=subject.age,
        nationality=subject.nationality,
        primary_contact=subject.primary_contact,
    )


class DisclosureGate:

    def __init__(self, audit: AuditLog):
        self._audit = audit

    def view(self, incident: Incident, subject: Subject) -> IdentityView:
        """Full view when granted, masked otherwise. Never raises."""
        if incident.disclosure_granted:
            self._audit.record(
                AuditEventType.POLICY,
                component="disclosure",
                action="identity_disclosed",
                entity_id=incident.incident_id,
            )
            return full_view(incident, subject)
        return masked_view(incident, subject)

    def require(self, incident: Incident, subject: Subject) -> IdentityView:
        """Full view or DisclosureDeniedError."""
        if not incident.disclosure_granted:
            logger.warning(
                "Disclosure denied for %s incident %s",
                incident.kind.value, incident.incident_id,
            )
            self._audit.record(
                AuditEventType.POLICY,
                component="disclosure",
                action="disclosure_denied",
                entity_id=incident.incident_id,
                kind=incident.kind.value,
            )
            raise DisclosureDeniedError(
                f"Identity disclosure is not granted for {incident.kind.value} incident",
                entity_id=incident.incident_id,
            )
        return self.view(incident, subject)
