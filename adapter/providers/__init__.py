"""
LLM Providers Package
=====================

Provider implementations for inference invocation.

Available providers:
- MockProvider: Scripted provider for tests and offline runs
- GeminiProvider: Generative Language REST API over httpx
"""

from .base import (
    LLMProvider,
    ProviderVersion,
    ProviderResponse,
    ProviderErrorCode,
    InvocationParams,
)
from .mock import MockProvider
from .gemini import GeminiProvider

__all__ = [
    'LLMProvider',
    'ProviderVersion',
    'ProviderResponse',
    'ProviderErrorCode',
    'InvocationParams',
    'MockProvider',
    'GeminiProvider',
]
