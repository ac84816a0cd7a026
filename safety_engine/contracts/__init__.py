"""
Safety Engine Contracts

Immutable records and the domain error taxonomy shared by every layer.
"""

from .base import (
    ErrorCode,
    SafetyEngineError,
    SubjectNotFoundError,
    IncidentNotFoundError,
    InvalidTransitionError,
    ActiveSosError,
    DisclosureDeniedError,
    ValidationError,
)
from .records import (
    SubjectStatus, IncidentKind, IncidentCategory, IncidentStatus,
    UnitType, DispatchRecommendation, Zone, SafetyColor, RiskTrend,
    TriageSeverity, Intent, NotificationKind,
    Contact, Location, LocationSample, Subject, SubjectProfile,
    SafetyScoreDetails, ZoneClassification, EnvironmentAnalysis,
    TriageResult, VisionAnalysis, RoutePlan, EmergencyMessage,
    AnomalyAssessment, IntentAssessment, IncidentAnalysis,
    IncidentLocation, Incident, IdentityView, Notification,
)

__all__ = [
    # Errors
    'ErrorCode', 'SafetyEngineError', 'SubjectNotFoundError',
    'IncidentNotFoundError', 'InvalidTransitionError', 'ActiveSosError',
    'DisclosureDeniedError', 'ValidationError',
    # Enums
    'SubjectStatus', 'IncidentKind', 'IncidentCategory', 'IncidentStatus',
    'UnitType', 'DispatchRecommendation', 'Zone', 'SafetyColor', 'RiskTrend',
    'TriageSeverity', 'Intent', 'NotificationKind',
    # Records
    'Contact', 'Location', 'LocationSample', 'Subject', 'SubjectProfile',
    'SafetyScoreDetails', 'ZoneClassification', 'EnvironmentAnalysis',
    'TriageResult', 'VisionAnalysis', 'RoutePlan', 'EmergencyMessage',
    'AnomalyAssessment', 'IntentAssessment', 'IncidentAnalysis',
    'IncidentLocation', 'Incident', 'IdentityView', 'Notification',
]
