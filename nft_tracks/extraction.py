from __future__ import annotations

import base64
import re
from typing import Any, Callable, Iterable, List, Optional, Sequence, Tuple

from .ipfs import DEFAULT_GATEWAY, resolve_ipfs
from .media_types import is_audio_entry, is_audio_url, is_image_entry, is_image_url
from .models import ExtractedFields, TokenMetadata

DEFAULT_TITLE = "Untitled Track"
DEFAULT_ARTIST = "Unknown Artist"
DEFAULT_DURATION_SECONDS = 180

TITLE_ATTRIBUTES = ("title", "track_name", "song_name", "name")
ARTIST_ATTRIBUTES = ("artist", "creator", "author", "musician", "producer", "composer", "by", "made_by")
ARTIST_ALTERNATE_FIELDS = ("created_by", "performer", "band", "singer")
DURATION_ATTRIBUTES = ("duration", "length", "time")
COLLECTION_FIELDS = ("collection", "album", "series")
COLLECTION_ATTRIBUTES = ("collection", "series", "album", "label", "release")
COVER_FIELDS = (
    "display_uri",
    "displayUri",
    "thumbnail_uri",
    "thumbnailUri",
    "image",
    "image_uri",
    "imageUri",
    "artifact_uri",
    "artifactUri",
)
ARTIFACT_FIELDS = ("artifact_uri", "artifactUri")

PLACEHOLDER_COLORS = ("#3985ff", "#f97316", "#10b981", "#ef4444", "#8f5cf6", "#f59e42", "#34d399")

HMS_PATTERN = re.compile(r"^(\d+):(\d{1,2}):(\d{1,2})$")
MS_PATTERN = re.compile(r"^(\d+):(\d{1,2})$")
UNIT_PATTERN = re.compile(
    r"^(\d+)\s*(?:m|min|mins|minutes?)\.?\s*(\d+)\s*(?:s|sec|secs|seconds?)?\.?$",
    re.IGNORECASE,
)
INT_PATTERN = re.compile(r"\d+")
TITLE_DESCRIPTION_PATTERN = re.compile(r"^([^-\n]+)")
ARTIST_DESCRIPTION_PATTERN = re.compile(r"^[^-\n]+-\s*([^\n]+)")

Probe = Callable[[TokenMetadata], Optional[Any]]


def _text(value: Any) -> Optional[str]:
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    return None


def _field(name: str) -> Probe:
    def probe(meta: TokenMetadata) -> Optional[str]:
        return _text(meta.get(name))

    probe.__name__ = f"field:{name}"
    return probe


def _attribute(names: Sequence[str]) -> Probe:
    def probe(meta: TokenMetadata) -> Optional[str]:
        return attribute_value(meta, names)

    probe.__name__ = f"attribute:{'|'.join(names)}"
    return probe


def iter_attributes(meta: TokenMetadata) -> Iterable[Tuple[str, Any]]:
    """Yield ``(lowercased name, value)`` pairs from an ``attributes`` list.

    Both the TZIP-21 ``{"name", "value"}`` shape and the OpenSea-style
    ``{"trait_type", "value"}`` shape are accepted.
    """
    attributes = meta.get("attributes")
    if not isinstance(attributes, list):
        return
    for attr in attributes:
        if not isinstance(attr, dict):
            continue
        name = attr.get("name") or attr.get("trait_type")
        if not isinstance(name, str):
            continue
        yield name.strip().lower(), attr.get("value")


def attribute_value(meta: TokenMetadata, names: Sequence[str]) -> Optional[str]:
    wanted = set(names)
    for name, value in iter_attributes(meta):
        if name not in wanted:
            continue
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        text = _text(value)
        if text:
            return text
    return None


def _list_of_dicts(value: Any) -> List[dict]:
    if not isinstance(value, list):
        return []
    return [entry for entry in value if isinstance(entry, dict)]


def parse_duration(value: Any, default: int = DEFAULT_DURATION_SECONDS) -> int:
    """Parse a duration in seconds from the shapes seen in token metadata.

    Accepts numbers, ``"225"``, ``"HH:MM:SS"``, ``"MM:SS"``, ``"3m 45s"`` and
    ``"3 min 45 sec"``. As a last resort the first two integers found are read
    as minutes and seconds. Anything else yields ``default``.
    """
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return int(value) if value >= 0 else default
    if not isinstance(value, str):
        return default
    text = value.strip()
    if not text:
        return default
    if text.isdigit():
        return int(text)
    match = HMS_PATTERN.match(text)
    if match:
        hours, minutes, seconds = (int(group) for group in match.groups())
        return hours * 3600 + minutes * 60 + seconds
    match = MS_PATTERN.match(text)
    if match:
        minutes, seconds = (int(group) for group in match.groups())
        return minutes * 60 + seconds
    match = UNIT_PATTERN.match(text)
    if match:
        minutes, seconds = (int(group) for group in match.groups())
        return minutes * 60 + seconds
    numbers = INT_PATTERN.findall(text)
    if len(numbers) >= 2:
        return int(numbers[0]) * 60 + int(numbers[1])
    return default


def _creators_first(meta: TokenMetadata) -> Optional[str]:
    creators = meta.get("creators")
    if isinstance(creators, list):
        for creator in creators:
            if isinstance(creator, dict):
                creator = creator.get("name") or creator.get("address")
            text = _text(creator)
            if text:
                return text
        return None
    return _text(creators)


def _title_from_description(meta: TokenMetadata) -> Optional[str]:
    description = _text(meta.get("description"))
    if not description:
        return None
    match = TITLE_DESCRIPTION_PATTERN.match(description)
    return _text(match.group(1)) if match else None


def _artist_from_description(meta: TokenMetadata) -> Optional[str]:
    description = _text(meta.get("description"))
    if not description:
        return None
    match = ARTIST_DESCRIPTION_PATTERN.match(description)
    return _text(match.group(1)) if match else None


def _first_alternate_artist(meta: TokenMetadata) -> Optional[str]:
    for name in ARTIST_ALTERNATE_FIELDS:
        text = _text(meta.get(name))
        if text:
            return text
    return None


def _numeric_duration(meta: TokenMetadata) -> Optional[int]:
    value = meta.get("duration")
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        return None
    return int(value)


def _string_duration(meta: TokenMetadata) -> Optional[int]:
    text = _text(meta.get("duration"))
    if not text:
        return None
    parsed = parse_duration(text, default=-1)
    return parsed if parsed > 0 else None


def _formats_duration(meta: TokenMetadata) -> Optional[int]:
    for entry in _list_of_dicts(meta.get("formats")):
        raw = entry.get("duration")
        if not raw:
            continue
        parsed = parse_duration(raw, default=-1)
        if parsed > 0:
            return parsed
    return None


def _attribute_duration(meta: TokenMetadata) -> Optional[int]:
    raw = attribute_value(meta, DURATION_ATTRIBUTES)
    if raw is None:
        return None
    parsed = parse_duration(raw, default=-1)
    return parsed if parsed > 0 else None


def _first_collection_field(meta: TokenMetadata) -> Optional[str]:
    for name in COLLECTION_FIELDS:
        value = meta.get(name)
        if isinstance(value, dict):
            value = value.get("name")
        text = _text(value)
        if text:
            return text
    return None


def _cover_field(meta: TokenMetadata) -> Optional[str]:
    for name in COVER_FIELDS:
        uri = _text(meta.get(name))
        if uri and is_image_url(uri):
            return uri
    return None


def _cover_format(meta: TokenMetadata) -> Optional[str]:
    for entry in _list_of_dicts(meta.get("formats")):
        uri = _text(entry.get("uri"))
        if uri and is_image_entry(entry):
            return uri
    return None


def _audio_artifact(meta: TokenMetadata) -> Optional[str]:
    for name in ARTIFACT_FIELDS:
        uri = _text(meta.get(name))
        if uri and is_audio_url(uri):
            return uri
    return None


def _audio_format(meta: TokenMetadata) -> Optional[str]:
    for entry in _list_of_dicts(meta.get("formats")):
        uri = _text(entry.get("uri"))
        if uri and is_audio_entry(entry):
            return uri
    return None


def _audio_field(meta: TokenMetadata) -> Optional[str]:
    uri = _text(meta.get("audio"))
    return uri if uri and is_audio_url(uri) else None


def _audio_media(meta: TokenMetadata) -> Optional[str]:
    for entry in _list_of_dicts(meta.get("media")):
        uri = _text(entry.get("uri"))
        if uri and is_audio_entry(entry):
            return uri
    return None


TITLE_PROBES: Tuple[Probe, ...] = (
    _field("name"),
    _field("title"),
    _attribute(TITLE_ATTRIBUTES),
    _title_from_description,
)

ARTIST_PROBES: Tuple[Probe, ...] = (
    _creators_first,
    _field("artist"),
    _attribute(ARTIST_ATTRIBUTES),
    _artist_from_description,
    _first_alternate_artist,
)

DURATION_PROBES: Tuple[Probe, ...] = (
    _numeric_duration,
    _string_duration,
    _formats_duration,
    _attribute_duration,
)

COLLECTION_PROBES: Tuple[Probe, ...] = (
    _first_collection_field,
    _attribute(COLLECTION_ATTRIBUTES),
)

COVER_PROBES: Tuple[Probe, ...] = (
    _cover_field,
    _cover_format,
)

AUDIO_PROBES: Tuple[Probe, ...] = (
    _audio_artifact,
    _audio_format,
    _audio_field,
    _audio_media,
)


def first_match(meta: TokenMetadata, probes: Iterable[Probe]) -> Optional[Any]:
    for probe in probes:
        value = probe(meta)
        if value is not None and value != "":
            return value
    return None


def placeholder_cover(title: str) -> str:
    """Deterministic SVG cover keyed by the title's length and initials."""
    color = PLACEHOLDER_COLORS[len(title) % len(PLACEHOLDER_COLORS)]
    initials = "".join(word[0] for word in title.split() if word)[:2].upper() or "??"
    initials = initials.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")
    svg = (
        '<svg width="48" height="48" viewBox="0 0 48 48" fill="none" xmlns="http://www.w3.org/2000/svg">'
        f'<rect width="48" height="48" rx="8" fill="{color}"/>'
        '<text x="24" y="30" text-anchor="middle" fill="white" font-family="Arial, sans-serif" '
        f'font-size="16" font-weight="bold">{initials}</text>'
        "</svg>"
    )
    encoded = base64.b64encode(svg.encode("utf-8")).decode("ascii")
    return f"data:image/svg+xml;base64,{encoded}"


def fallback_collection_name(contract_address: str) -> str:
    return f"Collection {contract_address[:8]}..."


class FieldExtractor:
    def __init__(self, gateway: str = DEFAULT_GATEWAY) -> None:
        self.gateway = gateway

    def extract(
        self,
        meta: TokenMetadata,
        *,
        contract_address: str,
        contract_alias: Optional[str] = None,
    ) -> ExtractedFields:
        title = first_match(meta, TITLE_PROBES) or DEFAULT_TITLE
        artist = first_match(meta, ARTIST_PROBES) or DEFAULT_ARTIST
        duration = first_match(meta, DURATION_PROBES) or DEFAULT_DURATION_SECONDS
        collection = (
            _text(contract_alias)
            or first_match(meta, COLLECTION_PROBES)
            or fallback_collection_name(contract_address)
        )
        cover = first_match(meta, COVER_PROBES)
        audio = first_match(meta, AUDIO_PROBES)
        return ExtractedFields(
            title=title,
            artist=artist,
            duration_seconds=int(duration),
            collection_name=collection,
            cover_url=self.resolve(cover) if cover else placeholder_cover(title),
            audio_url=self.resolve(audio) if audio else None,
            description=_text(meta.get("description")),
        )

    def resolve(self, uri: str) -> str:
        return resolve_ipfs(uri, self.gateway)
