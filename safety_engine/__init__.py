"""
Sentinel Safety Engine

Turns subject telemetry, reports and media into classified incidents
through an untrusted inference service, and enforces the incident
lifecycle and identity-disclosure policy.

LAYERS:
=======
- contracts/      frozen records and the domain error taxonomy
- hardening       total canonicalization of inference output
- cache           coalescing TTL cache for environment analyses
- triage          SOS triage, report intent classification
- state_machine   subject/incident stores and transitions
- notifications   short-lived operator notifications
- engine          facade wiring everything together
- api/            FastAPI surface
"""

from .config import EngineConfig
from .engine import SafetyEngine
from .clock import ManualClock, SystemClock

__all__ = ['EngineConfig', 'SafetyEngine', 'ManualClock', 'SystemClock']
