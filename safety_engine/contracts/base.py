"""
Base Contracts and Error Taxonomy

Domain errors are typed exceptions carrying an explicit ErrorCode.
Inference failures never appear here: they are absorbed by the hardener
and surface only as conservative records plus audit entries.

ERROR CLASSES:
==============
- Not found:          SubjectNotFoundError, IncidentNotFoundError
- Invalid transition: InvalidTransitionError, ActiveSosError
- Policy violation:   DisclosureDeniedError
- Bad input:          ValidationError
"""

from __future__ import annotations
from enum import Enum, auto
from typing import Optional, Tuple


class ErrorCode(Enum):
    """
    Explicit error codes for domain rejections.
    No silent fallbacks - every rejection is enumerated.
    """
    SUBJECT_NOT_FOUND = auto()
    INCIDENT_NOT_FOUND = auto()
    INVALID_STATE_TRANSITION = auto()
    ACTIVE_SOS_EXISTS = auto()
    DISCLOSURE_DENIED = auto()
    INVALID_INPUT = auto()


class SafetyEngineError(Exception):
    """Base class for every explicit rejection raised by the engine."""

    code: ErrorCode = ErrorCode.INVALID_INPUT

    def __init__(self, message: str, entity_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.entity_id = entity_id

    def context(self) -> Tuple[Tuple[str, str], ...]:
        """Audit-friendly context tuple."""
        items = [("code", self.code.name)]
        if self.entity_id:
            items.append(("entity_id", self.entity_id))
        return tuple(items)


class SubjectNotFoundError(SafetyEngineError):
    code = ErrorCode.SUBJECT_NOT_FOUND


class IncidentNotFoundError(SafetyEngineError):
    code = ErrorCode.INCIDENT_NOT_FOUND


class InvalidTransitionError(SafetyEngineError):
    code = ErrorCode.INVALID_STATE_TRANSITION


class ActiveSosError(SafetyEngineError):
    """A subject already has an Open or Dispatched SOS incident."""
    code = ErrorCode.ACTIVE_SOS_EXISTS


class DisclosureDeniedError(SafetyEngineError):
    """Full identity requested for an incident whose gate is closed."""
    code = ErrorCode.DISCLOSURE_DENIED


class ValidationError(SafetyEngineError):
    code = ErrorCode.INVALID_INPUT
