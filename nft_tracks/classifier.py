from __future__ import annotations

from typing import Any, List, Optional

from .config import ClassifierSettings
from .extraction import ARTIFACT_FIELDS, iter_attributes
from .media_types import is_audio_entry, is_audio_mime, is_audio_url
from .models import (
    REASON_AUDIO_ARTIFACT,
    REASON_REJECTED,
    REASON_WEAK_SIGNALS,
    ClassificationVerdict,
    TokenMetadata,
)

SIGNAL_TAG = "tag"
SIGNAL_MUSIC_FIELD = "music-field"
SIGNAL_TYPE = "type"

MUSIC_FIELDS = ("genre", "genres", "bpm", "tempo")


class MusicClassifier:
    """Decides whether token metadata describes a playable music asset.

    Hard audio evidence (an audio artifact, format entry or MIME type) is
    decisive. Without it, independent weak signals are counted and the token
    is accepted only when enough of them agree.
    """

    def __init__(self, settings: Optional[ClassifierSettings] = None) -> None:
        self.settings = settings or ClassifierSettings()
        self._tags = set(self.settings.music_tags)
        self._attributes = set(self.settings.music_attributes)

    def classify(self, meta: TokenMetadata) -> ClassificationVerdict:
        if self.has_audio_artifact(meta):
            return ClassificationVerdict(True, REASON_AUDIO_ARTIFACT, ("audio",))
        signals = self.weak_signals(meta)
        if len(signals) >= self.settings.weak_signal_threshold:
            return ClassificationVerdict(True, REASON_WEAK_SIGNALS, tuple(signals))
        return ClassificationVerdict(False, REASON_REJECTED, tuple(signals))

    def has_audio_artifact(self, meta: TokenMetadata) -> bool:
        if any(is_audio_url(meta.get(name)) for name in ARTIFACT_FIELDS):
            return True
        formats = meta.get("formats")
        if isinstance(formats, list) and any(is_audio_entry(entry) for entry in formats):
            return True
        return is_audio_mime(meta.get("mimeType") or meta.get("mime_type"))

    def weak_signals(self, meta: TokenMetadata) -> List[str]:
        signals: List[str] = []
        if self._has_music_tag(meta):
            signals.append(SIGNAL_TAG)
        if self._has_music_field(meta) or self._has_music_attribute(meta):
            signals.append(SIGNAL_MUSIC_FIELD)
        if self._type_mentions_music(meta):
            signals.append(SIGNAL_TYPE)
        return signals

    def _has_music_tag(self, meta: TokenMetadata) -> bool:
        tags = meta.get("tags")
        if isinstance(tags, str):
            tags = [tags]
        if not isinstance(tags, list):
            return False
        return any(isinstance(tag, str) and tag.strip().lower() in self._tags for tag in tags)

    @staticmethod
    def _has_music_field(meta: TokenMetadata) -> bool:
        return any(_present(meta.get(name)) for name in MUSIC_FIELDS)

    def _has_music_attribute(self, meta: TokenMetadata) -> bool:
        return any(name in self._attributes for name, _ in iter_attributes(meta))

    def _type_mentions_music(self, meta: TokenMetadata) -> bool:
        value = meta.get("type")
        return isinstance(value, str) and self.settings.type_keyword in value.lower()


def _present(value: Any) -> bool:
    if isinstance(value, bool) or value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (list, tuple)):
        return len(value) > 0
    if isinstance(value, (int, float)):
        return value > 0
    return False
