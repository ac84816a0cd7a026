"""
Inference Adapter Package

ARCHITECTURAL BOUNDARY:
=======================
This package is the ONLY allowed interface between the safety engine and
the external inference service.

DIRECTION OF DEPENDENCY:
========================
safety_engine → adapter → provider (network)

NEVER:
- adapter importing from safety_engine
- safety_engine calling a provider directly

DESIGN PRINCIPLES:
==================
1. Pure interface - no business logic, no defaults
2. Typed request/outcome contracts only
3. Every call is timeout-bounded and traced
4. Model outputs are UNTRUSTED until hardened by the engine
"""

from .contracts import (
    RequestKind,
    MediaPart,
    InferenceRequest,
    InferenceOutcome,
    InferenceError,
    InferenceErrorCode,
    InvocationTrace,
)
from .client import InferenceClient, extract_json_object
from .media import parse_image_data_url, parse_audio_data_url

__all__ = [
    # Contracts
    'RequestKind', 'MediaPart', 'InferenceRequest', 'InferenceOutcome',
    'InferenceError', 'InferenceErrorCode', 'InvocationTrace',
    # Client
    'InferenceClient', 'extract_json_object',
    # Media
    'parse_image_data_url', 'parse_audio_data_url',
]
