"""
Media Part Parsing

Data URLs (``data:<mime>;base64,<payload>``) from the reporting boundary
are converted to MediaPart. Anything that does not match returns None;
callers decide whether to skip or fail.
"""

from __future__ import annotations
from typing import Optional
import re

from .contracts import MediaPart


_IMAGE_DATA_URL = re.compile(r"^data:(image/[a-zA-Z0-9+.\-]+);base64,(.+)$", re.DOTALL)
# Recorders append codec parameters (";codecs=opus") before the base64 marker.
_AUDIO_DATA_URL = re.compile(r"^data:(audio/[a-zA-Z0-9+.\-]+)[^,]*;base64,(.+)$", re.DOTALL)


def parse_image_data_url(data_url: Optional[str]) -> Optional[MediaPart]:
    """Parse an image data URL into a MediaPart, or None."""
    if not data_url or not isinstance(data_url, str):
        return None
    match = _IMAGE_DATA_URL.match(data_url.strip())
    if not match:
        return None
    return MediaPart(mime_type=match.group(1), data=match.group(2))


def parse_audio_data_url(data_url: Optional[str]) -> Optional[MediaPart]:
    """Parse an audio data URL into a MediaPart, or None."""
    if not data_url or not isinstance(data_url, str):
        return None
    match = _AUDIO_DATA_URL.match(data_url.strip())
    if not match:
        return None
    return MediaPart(mime_type=match.group(1), data=match.group(2))
