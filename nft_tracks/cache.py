from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Optional, Tuple

from .models import MusicTrack

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


@dataclass(frozen=True, slots=True)
class CacheEntry:
    tracks: Tuple[MusicTrack, ...]
    fetched_at: float


class TrackCache:
    """In-memory per-wallet track cache with a fixed time-to-live."""

    def __init__(self, ttl_seconds: float = 300.0, clock: Optional[Clock] = None) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock or time.monotonic
        self._entries: Dict[str, CacheEntry] = {}

    def get(self, wallet: str) -> Optional[Tuple[MusicTrack, ...]]:
        entry = self._entries.get(wallet)
        if entry is None:
            return None
        if not self._is_fresh(entry):
            logger.debug("Cache entry for %s is stale", wallet)
            return None
        logger.debug("Cache hit for %s (%s tracks)", wallet, len(entry.tracks))
        return entry.tracks

    def set(self, wallet: str, tracks: Iterable[MusicTrack]) -> Tuple[MusicTrack, ...]:
        stored = tuple(tracks)
        self._entries[wallet] = CacheEntry(tracks=stored, fetched_at=self._clock())
        return stored

    def invalidate(self, wallet: str) -> bool:
        return self._entries.pop(wallet, None) is not None

    def sweep(self) -> int:
        stale = [wallet for wallet, entry in self._entries.items() if not self._is_fresh(entry)]
        for wallet in stale:
            del self._entries[wallet]
        if stale:
            logger.debug("Evicted %s stale cache entries", len(stale))
        return len(stale)

    def clear(self) -> None:
        self._entries.clear()

    def entry(self, wallet: str) -> Optional[CacheEntry]:
        return self._entries.get(wallet)

    def __contains__(self, wallet: object) -> bool:
        return wallet in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def _is_fresh(self, entry: CacheEntry) -> bool:
        return self._clock() - entry.fetched_at < self.ttl_seconds
