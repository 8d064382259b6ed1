from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Tuple

TokenMetadata = Dict[str, Any]
TokenKey = Tuple[str, str]

PROVENANCE_ON_CHAIN = "on-chain"
PROVENANCE_SECONDARY = "secondary-index"
PROVENANCE_MERGED = "merged"

REASON_AUDIO_ARTIFACT = "audio-artifact"
REASON_WEAK_SIGNALS = "weak-signal-count"
REASON_REJECTED = "rejected"


def token_key(contract_address: str, token_id: object) -> TokenKey:
    return contract_address, str(token_id)


def track_id(contract_address: str, token_id: object) -> str:
    return f"{contract_address}_{token_id}"


@dataclass(slots=True)
class RawToken:
    owner_address: str
    contract_address: str
    token_id: str
    standard: str = "fa2"
    raw_metadata: Optional[TokenMetadata] = None
    contract_alias: Optional[str] = None

    @property
    def key(self) -> TokenKey:
        return token_key(self.contract_address, self.token_id)


@dataclass(frozen=True, slots=True)
class TokenPair:
    contract_address: str
    token_id: str

    @classmethod
    def parse(cls, value: str) -> "TokenPair":
        contract, sep, token = value.partition(":")
        if not sep or not contract or not token:
            raise ValueError(f"Expected CONTRACT:TOKEN_ID, got {value!r}")
        return cls(contract.strip(), token.strip())


@dataclass(frozen=True, slots=True)
class ClassificationVerdict:
    is_music: bool
    reason: str
    signals: Tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class ExtractedFields:
    title: str
    artist: str
    duration_seconds: int
    collection_name: str
    cover_url: str
    audio_url: Optional[str] = None
    description: Optional[str] = None


@dataclass(frozen=True, slots=True)
class MusicTrack:
    id: str
    title: str
    artist: str
    cover_url: str
    duration_seconds: int
    collection_name: str
    contract_address: str
    token_id: str
    audio_url: Optional[str] = None
    description: Optional[str] = None
    provenance: str = PROVENANCE_ON_CHAIN

    def to_record(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "title": self.title,
            "artist": self.artist,
            "cover_url": self.cover_url,
            "duration_seconds": self.duration_seconds,
            "collection_name": self.collection_name,
            "contract_address": self.contract_address,
            "token_id": self.token_id,
            "audio_url": self.audio_url,
            "description": self.description,
            "provenance": self.provenance,
        }


@dataclass(frozen=True, slots=True)
class SecondaryIndexRecord:
    contract_address: str
    token_id: str
    title: Optional[str] = None
    artist: Optional[str] = None
    audio_uri: Optional[str] = None
    thumbnail_uri: Optional[str] = None
    duration_seconds: Optional[int] = None
    description: Optional[str] = None
    record_id: Optional[int] = None

    @property
    def key(self) -> TokenKey:
        return token_key(self.contract_address, self.token_id)


class LoadingState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    LOADED = "loaded"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class EngineSnapshot:
    tracks: Tuple[MusicTrack, ...] = ()
    loading_state: LoadingState = LoadingState.IDLE
    error: Optional[str] = None
    retry_count: int = 0
    wallet_address: Optional[str] = None


@dataclass(slots=True)
class ScanStats:
    tokens_seen: int = 0
    metadata_missing: int = 0
    rejected: int = 0
    failed: int = 0
    matched_index: int = 0


class EngineError(Exception):
    """Base class for errors surfaced by the discovery engine."""


class NetworkError(EngineError):
    """Raised when an upstream HTTP call fails or returns an unusable payload."""


class ScanCancelled(EngineError):
    """Raised inside a scan whose cancel token was triggered."""
