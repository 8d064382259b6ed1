from __future__ import annotations

from typing import Any, Optional

# Substring matching mirrors how marketplaces embed extensions in URIs
# (``.../track.mp3?filename=...`` and similar).
AUDIO_EXTENSIONS = (
    ".mp3",
    ".wav",
    ".wave",
    ".ogg",
    ".oga",
    ".m4a",
    ".aac",
    ".mp4",
    ".flac",
    ".wma",
    ".opus",
    ".webm",
    ".3gp",
)

AUDIO_MIME_TYPES = (
    "audio/mpeg",
    "audio/mp3",
    "audio/wav",
    "audio/wave",
    "audio/x-wav",
    "audio/vnd.wave",
    "audio/ogg",
    "audio/vorbis",
    "audio/flac",
    "audio/x-flac",
    "audio/aac",
    "audio/mp4",
    "audio/x-m4a",
    "audio/webm",
    "audio/opus",
    "audio/3gpp",
)

IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".gif", ".svg", ".webp", ".avif")

# Hosts that serve images without a file extension in the path.
IMAGE_HOST_PATTERNS = (
    "/thumbnails/",
    "/display/",
    "assets.objkt.media",
    "imgproxy",
    "data:image/",
)


def _text(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def is_audio_url(url: Any) -> bool:
    text = _text(url)
    if not text:
        return False
    lower = text.lower()
    return any(ext in lower for ext in AUDIO_EXTENSIONS)


def is_audio_mime(mime_type: Any) -> bool:
    text = _text(mime_type)
    if not text:
        return False
    lower = text.lower()
    return any(candidate in lower for candidate in AUDIO_MIME_TYPES)


def is_image_url(url: Any) -> bool:
    text = _text(url)
    if not text:
        return False
    lower = text.lower()
    if any(ext in lower for ext in IMAGE_EXTENSIONS):
        return True
    return any(pattern in lower for pattern in IMAGE_HOST_PATTERNS)


def is_image_mime(mime_type: Any) -> bool:
    text = _text(mime_type)
    return bool(text) and text.lower().startswith("image/")


def is_audio_entry(entry: Any) -> bool:
    """True for a ``formats``/``media`` entry that points at an audio file."""
    if not isinstance(entry, dict):
        return False
    return is_audio_mime(entry.get("mimeType") or entry.get("mime_type")) or is_audio_url(entry.get("uri"))


def is_image_entry(entry: Any) -> bool:
    if not isinstance(entry, dict):
        return False
    return is_image_mime(entry.get("mimeType") or entry.get("mime_type")) or is_image_url(entry.get("uri"))
