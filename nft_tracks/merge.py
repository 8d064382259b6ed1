from __future__ import annotations

from typing import Dict, Iterable, List, Mapping

from .extraction import DEFAULT_ARTIST, DEFAULT_DURATION_SECONDS, DEFAULT_TITLE, placeholder_cover
from .ipfs import DEFAULT_GATEWAY, resolve_ipfs
from .models import (
    PROVENANCE_MERGED,
    PROVENANCE_ON_CHAIN,
    PROVENANCE_SECONDARY,
    ExtractedFields,
    MusicTrack,
    RawToken,
    SecondaryIndexRecord,
    TokenKey,
    TokenPair,
    track_id,
)

SecondaryIndex = Mapping[TokenKey, SecondaryIndexRecord]


def build_index(records: Iterable[SecondaryIndexRecord]) -> Dict[TokenKey, SecondaryIndexRecord]:
    index: Dict[TokenKey, SecondaryIndexRecord] = {}
    for record in records:
        index.setdefault(record.key, record)
    return index


def merge_track(
    raw: RawToken,
    fields: ExtractedFields,
    index: SecondaryIndex,
    gateway: str = DEFAULT_GATEWAY,
) -> MusicTrack:
    """Combine on-chain fields with the curated index entry for the same token.

    The index wins for title, artist, duration, cover and audio whenever it
    carries a value; collection and description always come from the chain.
    """
    record = index.get(raw.key)
    title = fields.title
    artist = fields.artist
    duration = fields.duration_seconds
    cover = fields.cover_url
    audio = fields.audio_url
    provenance = PROVENANCE_ON_CHAIN
    if record is not None:
        provenance = PROVENANCE_MERGED
        title = record.title or title
        artist = record.artist or artist
        if record.duration_seconds and record.duration_seconds > 0:
            duration = record.duration_seconds
        if record.thumbnail_uri:
            cover = resolve_ipfs(record.thumbnail_uri, gateway)
        if record.audio_uri:
            audio = resolve_ipfs(record.audio_uri, gateway)
    return MusicTrack(
        id=track_id(raw.contract_address, raw.token_id),
        title=title,
        artist=artist,
        cover_url=cover,
        duration_seconds=duration,
        collection_name=fields.collection_name,
        contract_address=raw.contract_address,
        token_id=raw.token_id,
        audio_url=audio,
        description=fields.description,
        provenance=provenance,
    )


def track_from_index_record(record: SecondaryIndexRecord, gateway: str = DEFAULT_GATEWAY) -> MusicTrack:
    """Build a track from an index record alone, for lookups without on-chain metadata."""
    title = record.title or DEFAULT_TITLE
    return MusicTrack(
        id=track_id(record.contract_address, record.token_id),
        title=title,
        artist=record.artist or DEFAULT_ARTIST,
        cover_url=resolve_ipfs(record.thumbnail_uri, gateway) if record.thumbnail_uri else placeholder_cover(title),
        duration_seconds=record.duration_seconds or DEFAULT_DURATION_SECONDS,
        collection_name=f"Contract {record.contract_address[:8]}...",
        contract_address=record.contract_address,
        token_id=record.token_id,
        audio_url=resolve_ipfs(record.audio_uri, gateway) if record.audio_uri else None,
        description=record.description,
        provenance=PROVENANCE_SECONDARY,
    )


def dedupe_tracks(tracks: Iterable[MusicTrack]) -> List[MusicTrack]:
    unique: List[MusicTrack] = []
    seen: set[str] = set()
    for track in tracks:
        if track.id in seen:
            continue
        seen.add(track.id)
        unique.append(track)
    return unique


def token_pairs(tokens: Iterable[RawToken]) -> List[TokenPair]:
    pairs: List[TokenPair] = []
    seen: set[TokenKey] = set()
    for token in tokens:
        if token.key in seen:
            continue
        seen.add(token.key)
        pairs.append(TokenPair(token.contract_address, token.token_id))
    return pairs
