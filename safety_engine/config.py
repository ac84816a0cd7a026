"""
Engine Configuration

Frozen settings with defaults; from_env() overlays SENTINEL_* variables
(and GEMINI_API_KEY) after loading a .env file via python-dotenv.
"""

from __future__ import annotations
from dataclasses import dataclass, fields
from typing import Optional
import logging
import os

from dotenv import load_dotenv

from adapter.providers.gemini import DEFAULT_BASE_URL, DEFAULT_MODEL

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EngineConfig:
    """Configuration for the safety engine."""
    inference_timeout_seconds: float = 20.0
    inference_max_tokens: int = 2048
    cache_ttl_seconds: float = 45.0
    cache_max_entries: int = 10_000
    poll_interval_seconds: float = 45.0
    notification_ttl_seconds: float = 5.0
    intent_confidence_threshold: float = 0.6
    anomaly_window: int = 20
    max_traces: int = 1000
    provider: str = "gemini"  # gemini | mock
    gemini_api_key: Optional[str] = None
    gemini_model: str = DEFAULT_MODEL
    gemini_base_url: str = DEFAULT_BASE_URL

    def __post_init__(self):
        if self.inference_timeout_seconds <= 0:
            raise ValueError("inference_timeout_seconds must be positive")
        if self.cache_ttl_seconds <= 0:
            raise ValueError("cache_ttl_seconds must be positive")
        if self.anomaly_window < 1:
            raise ValueError("anomaly_window must be at least 1")
        if self.provider not in ("gemini", "mock"):
            raise ValueError(f"Unknown provider: {self.provider}")

    @classmethod
    def from_env(cls, dotenv_path: Optional[str] = None) -> 'EngineConfig':
        """
        Build config from the environment.

        Each field maps to SENTINEL_<FIELD_NAME>; the API key is also
        read from GEMINI_API_KEY.
        """
        load_dotenv(dotenv_path)
        overrides = {}
        for f in fields(cls):
            value = os.getenv(f"SENTINEL_{f.name.upper()}")
            if value is None:
                continue
            default = f.default
            if isinstance(default, bool):
                overrides[f.name] = value.lower() in ("1", "true", "yes")
            elif isinstance(default, int):
                overrides[f.name] = int(value)
            elif isinstance(default, float):
                overrides[f.name] = float(value)
            else:
                overrides[f.name] = value

        if "gemini_api_key" not in overrides:
            overrides["gemini_api_key"] = os.getenv("GEMINI_API_KEY")

        config = cls(**overrides)
        if config.provider == "gemini" and not config.gemini_api_key:
            logger.warning("GEMINI_API_KEY is not set; inference calls will fail and be hardened")
        return config
