from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Optional, Sequence

from ..models import MusicTrack


@dataclass(frozen=True, slots=True)
class CheckLine:
    label: str
    status: str
    detail: Optional[str] = None

    def render(self) -> str:
        if self.detail:
            return f"{self.label}: {self.status} ({self.detail})"
        return f"{self.label}: {self.status}"


def ok(label: str, detail: Optional[str] = None) -> str:
    return CheckLine(label, "OK", detail).render()


def warning(label: str, detail: Optional[str] = None) -> str:
    return CheckLine(label, "WARNING", detail).render()


def error(label: str, detail: Optional[str] = None) -> str:
    return CheckLine(label, "ERROR", detail).render()


def skipped(label: str, detail: Optional[str] = None) -> str:
    return CheckLine(label, "SKIPPED", detail).render()


def enabled(label: str, detail: Optional[str] = None) -> str:
    return CheckLine(label, "ENABLED", detail).render()


def disabled(label: str, detail: Optional[str] = None) -> str:
    return CheckLine(label, "DISABLED", detail).render()


def format_duration(seconds: int) -> str:
    minutes, secs = divmod(max(int(seconds), 0), 60)
    hours, minutes = divmod(minutes, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


def render_track(index: int, track: MusicTrack) -> list[str]:
    lines = [f"[{index}] {track.artist} - {track.title} ({format_duration(track.duration_seconds)})"]
    lines.append(f"    Collection: {track.collection_name}")
    lines.append(f"    Token: {track.contract_address}:{track.token_id}")
    lines.append(f"    Audio: {track.audio_url or '<none>'}")
    if track.provenance:
        lines.append(f"    Source: {track.provenance}")
    return lines


def print_tracks(tracks: Sequence[MusicTrack], *, json_output: bool = False, empty: str = "No tracks found.") -> None:
    if json_output:
        print(json.dumps([track.to_record() for track in tracks], indent=2, sort_keys=True))
        return
    if not tracks:
        print(empty)
        return
    for idx, track in enumerate(tracks, 1):
        for line in render_track(idx, track):
            print(line)
