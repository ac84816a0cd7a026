"""
API Mapper
==========

Transforms frozen engine records into JSON DTOs.

Subject DTOs never carry identity fields; identity is only reachable
through the incident identity endpoint, which goes through the
disclosure gate.
"""
from dataclasses import asdict
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from ..changes import ChangeEvent
from ..contracts import (
    EnvironmentAnalysis,
    IdentityView,
    Incident,
    Notification,
    Subject,
    TriageResult,
    ZoneClassification,
)


def _plain(value: Any) -> Any:
    """Enums to values, datetimes to ISO strings, tuples to lists."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return value


def map_subject(subject: Subject) -> Dict[str, Any]:
    loc = subject.last_location
    return {
        "subject_id": subject.subject_id,
        "public_id": subject.public_id,
        "status": subject.status.value,
        "safety_score": subject.safety_score,
        "is_sos_active": subject.is_sos_active,
        "battery_level": subject.battery_level,
        "last_location": {
            "lat": loc.lat,
            "lng": loc.lng,
            "zone_name": loc.zone_name,
            "timestamp": loc.timestamp.isoformat(),
        },
    }


def map_triage(triage: Optional[TriageResult]) -> Optional[Dict[str, Any]]:
    return _plain(asdict(triage)) if triage else None


def map_incident(incident: Incident) -> Dict[str, Any]:
    return {
        "incident_id": incident.incident_id,
        "subject_id": incident.subject_id,
        "kind": incident.kind.value,
        "category": incident.category.value,
        "severity": incident.severity,
        "status": incident.status.value,
        "created_at": incident.created_at.isoformat(),
        "location": _plain(asdict(incident.location)),
        "description": incident.description,
        "ai_analysis": incident.ai_analysis,
        "triage": map_triage(incident.triage),
        "recommended_dispatch": incident.recommended_dispatch.value,
        "dispatched_unit": incident.dispatched_unit.value if incident.dispatched_unit else None,
        "disclosure_granted": incident.disclosure_granted,
        "resolved_at": incident.resolved_at.isoformat() if incident.resolved_at else None,
    }


def map_identity(view: IdentityView) -> Dict[str, Any]:
    return _plain(asdict(view))


def map_zone(zone: ZoneClassification) -> Dict[str, Any]:
    return _plain(asdict(zone))


def map_environment(analysis: EnvironmentAnalysis) -> Dict[str, Any]:
    return _plain(asdict(analysis))


def map_notification(notification: Notification) -> Dict[str, Any]:
    return _plain(asdict(notification))


def map_change(event: ChangeEvent) -> Dict[str, Any]:
    return _plain(asdict(event))


def map_record(record: Any) -> Any:
    """Generic DTO for any other frozen record (or tuple of records)."""
    if isinstance(record, tuple):
        return [map_record(r) for r in record]
    return _plain(asdict(record))
