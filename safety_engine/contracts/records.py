"""
Domain Records

Every record here is a frozen dataclass. State changes produce new
records via dataclasses.replace, so any snapshot handed to the
observation boundary can never change underneath its reader.

INVARIANTS ENFORCED AT CONSTRUCTION:
====================================
- Subject: is_sos_active ⇒ status == DANGER; score and battery in [0,100]
- Incident: severity in 1..5
- ZoneClassification / SafetyScoreDetails: numeric fields in range
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple


# =============================================================================
# ENUMERATIONS
# =============================================================================

class SubjectStatus(Enum):
    SAFE = "safe"
    WARNING = "warning"
    DANGER = "danger"


class IncidentKind(Enum):
    SOS = "SOS"
    REPORT = "REPORT"
    ANOMALY = "ANOMALY"


class IncidentCategory(Enum):
    MEDICAL = "Medical"
    CRIME = "Crime"
    LOST = "Lost"
    OTHER = "Other"


class IncidentStatus(Enum):
    """Lifecycle order is OPEN → DISPATCHED → RESOLVED; no regressions."""
    OPEN = "Open"
    DISPATCHED = "Dispatched"
    RESOLVED = "Resolved"


class UnitType(Enum):
    """Units an operator can dispatch."""
    POLICE = "Police"
    MEDICAL = "Medical"


class DispatchRecommendation(Enum):
    """What the analysis recommends; broader than dispatchable units."""
    POLICE = "Police"
    MEDICAL = "Medical"
    TOURIST_POLICE = "Tourist Police"
    NONE = "None"


class Zone(Enum):
    RED = "RED"
    YELLOW = "YELLOW"
    GREEN = "GREEN"


class SafetyColor(Enum):
    GREEN = "Green"
    YELLOW = "Yellow"
    ORANGE = "Orange"
    RED = "Red"

    @property
    def rank(self) -> int:
        """Caution rank: higher is more severe."""
        return _COLOR_RANK[self]


_COLOR_RANK = {
    SafetyColor.GREEN: 0,
    SafetyColor.YELLOW: 1,
    SafetyColor.ORANGE: 2,
    SafetyColor.RED: 3,
}


class RiskTrend(Enum):
    UP = "UP"
    STEADY = "STEADY"
    DOWN = "DOWN"


class TriageSeverity(Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class Intent(Enum):
    WEAPON_VIOLENCE = "WEAPON_VIOLENCE"
    MEDICAL_EMERGENCY = "MEDICAL_EMERGENCY"
    LOST_DISORIENTED = "LOST_DISORIENTED"
    SAFETY_CONCERN = "SAFETY_CONCERN"
    THEFT_LOSS = "THEFT_LOSS"
    OTHER = "OTHER"


class NotificationKind(Enum):
    DANGER = "danger"
    SUCCESS = "success"
    INFO = "info"
    AI_WARNING = "ai-warning"
    AI_DETECT = "ai-detect"


def _check_range(name: str, value, low, high) -> None:
    if value is not None and not low <= value <= high:
        raise ValueError(f"{name} must be within [{low}, {high}], got {value}")


# =============================================================================
# SUBJECT
# =============================================================================

@dataclass(frozen=True)
class Contact:
    name: str
    relation: str
    phone: str


@dataclass(frozen=True)
class Location:
    """Last known position of a subject."""
    lat: float
    lng: float
    timestamp: datetime
    zone_name: str


@dataclass(frozen=True)
class LocationSample:
    """One telemetry sample kept in a subject's recent window."""
    lat: float
    lng: float
    zone_name: str
    recorded_at: datetime
    battery_level: int


@dataclass(frozen=True)
class Subject:
    """
    A monitored tourist.

    name/age/nationality/contacts are sensitive; public_id is the
    non-reversible identifier shown whenever identity is masked.
    """
    subject_id: str
    public_id: str
    name: str
    last_location: Location
    age: Optional[int] = None
    gender: Optional[str] = None
    nationality: Optional[str] = None
    contacts: Tuple[Contact, ...] = field(default_factory=tuple)
    language: str = "en"
    planned_route: Tuple[str, ...] = field(default_factory=tuple)
    status: SubjectStatus = SubjectStatus.SAFE
    safety_score: int = 90
    is_sos_active: bool = False
    battery_level: int = 100

    def __post_init__(self):
        if self.is_sos_active and self.status is not SubjectStatus.DANGER:
            raise ValueError("An active SOS requires status DANGER")
        _check_range("safety_score", self.safety_score, 0, 100)
        _check_range("battery_level", self.battery_level, 0, 100)

    @property
    def primary_contact(self) -> Optional[Contact]:
        return self.contacts[0] if self.contacts else None


@dataclass(frozen=True)
class SubjectProfile:
    """Registration input; omitted fields take engine defaults."""
    name: str
    age: Optional[int] = None
    gender: Optional[str] = None
    nationality: Optional[str] = None
    contacts: Tuple[Contact, ...] = field(default_factory=tuple)
    language: str = "en"
    planned_route: Tuple[str, ...] = field(default_factory=tuple)
    lat: float = 0.0
    lng: float = 0.0
    zone_name: str = "Unknown"
    battery_level: int = 100


# =============================================================================
# INFERENCE-DERIVED RECORDS (always produced by the hardener)
# =============================================================================

@dataclass(frozen=True)
class SafetyScoreDetails:
    score: int
    color: SafetyColor
    reason: str
    advice: str
    trend: Optional[RiskTrend] = None

    def __post_init__(self):
        _check_range("score", self.score, 0, 100)


@dataclass(frozen=True)
class ZoneClassification:
    """
    Zone verdict. Optional indices are a valid value or None (absent);
    they are never partially present.
    """
    zone: Zone
    danger_score: int
    risk_factors: Tuple[str, ...]
    recommendation: str
    description: str
    crowd_index: Optional[int] = None
    lighting_index: Optional[int] = None
    hazard_index: Optional[int] = None
    nearest_safe_zone: Optional[str] = None

    def __post_init__(self):
        _check_range("danger_score", self.danger_score, 0, 100)
        _check_range("crowd_index", self.crowd_index, 0, 100)
        _check_range("lighting_index", self.lighting_index, 0, 100)
        _check_range("hazard_index", self.hazard_index, 0, 100)


@dataclass(frozen=True)
class EnvironmentAnalysis:
    """Combined environment verdict; the unit the classification cache stores."""
    safety_score: SafetyScoreDetails
    zone_classification: ZoneClassification
    degraded: bool = False  # True when built from a failed/absent inference result


@dataclass(frozen=True)
class TriageResult:
    severity: TriageSeverity
    transcript: str
    image_analysis: str
    recommended_response: DispatchRecommendation
    admin_brief: str
    tourist_message: str
    panic_score: Optional[float] = None
    urgency_score: Optional[float] = None
    degraded: bool = False

    def __post_init__(self):
        _check_range("panic_score", self.panic_score, 0.0, 1.0)
        _check_range("urgency_score", self.urgency_score, 0.0, 1.0)


@dataclass(frozen=True)
class VisionAnalysis:
    risk_level: str  # LOW | MEDIUM | HIGH
    factors: Tuple[str, ...]
    narrative: str
    crowd_level: Optional[str] = None
    lighting_condition: Optional[str] = None
    degraded: bool = False


@dataclass(frozen=True)
class RoutePlan:
    narrative: str
    steps: Tuple[str, ...]
    warnings: Tuple[str, ...]
    obstruction_notes: Optional[str] = None
    degraded: bool = False


@dataclass(frozen=True)
class EmergencyMessage:
    language: str
    sms: str
    target: str
    voice: str = ""


@dataclass(frozen=True)
class AnomalyAssessment:
    is_anomaly: bool
    anomaly_type: str
    severity: int
    confidence: float
    trigger_reason: str
    suggested_action: str
    anomaly_id: Optional[str] = None
    degraded: bool = False

    def __post_init__(self):
        _check_range("severity", self.severity, 1, 5)
        _check_range("confidence", self.confidence, 0.0, 1.0)


@dataclass(frozen=True)
class IntentAssessment:
    intent: Intent
    reasoning: str
    confidence: float
    context_clues: Tuple[str, ...]
    implied_severity: int
    degraded: bool = False

    def __post_init__(self):
        _check_range("confidence", self.confidence, 0.0, 1.0)
        _check_range("implied_severity", self.implied_severity, 1, 5)


@dataclass(frozen=True)
class IncidentAnalysis:
    """Outcome of the plain-report path (keyword filter or intent parse)."""
    category: IncidentCategory
    severity: int
    recommended_dispatch: DispatchRecommendation
    analysis: str
    confidence: float
    critical_override: bool = False


# =============================================================================
# INCIDENT
# =============================================================================

@dataclass(frozen=True)
class IncidentLocation:
    lat: float
    lng: float
    zone_name: str


@dataclass(frozen=True)
class Incident:
    """
    A discrete safety event.

    disclosure_granted is computed once at creation (kind == SOS) and is
    carried unchanged through every later replace().
    """
    incident_id: str
    subject_id: str
    kind: IncidentKind
    category: IncidentCategory
    severity: int
    status: IncidentStatus
    created_at: datetime
    location: IncidentLocation
    description: str
    disclosure_granted: bool
    ai_analysis: Optional[str] = None
    triage: Optional[TriageResult] = None
    recommended_dispatch: DispatchRecommendation = DispatchRecommendation.NONE
    dispatched_unit: Optional[UnitType] = None
    dispatched_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None

    def __post_init__(self):
        _check_range("severity", self.severity, 1, 5)

    @property
    def is_active(self) -> bool:
        return self.status is not IncidentStatus.RESOLVED


@dataclass(frozen=True)
class IdentityView:
    """
    What a dispatch operator may see about an incident's subject.

    When disclosed is False every personal field is None (masked).
    """
    incident_id: str
    public_id: str
    disclosed: bool
    name: Optional[str] = None
    age: Optional[int] = None
    nationality: Optional[str] = None
    primary_contact: Optional[Contact] = None


# =============================================================================
# NOTIFICATION
# =============================================================================

@dataclass(frozen=True)
class Notification:
    notification_id: str
    title: str
    message: str
    kind: NotificationKind
    created_at: datetime
    expires_at: datetime
