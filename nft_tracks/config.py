from __future__ import annotations

from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

DEFAULT_MUSIC_TAGS = ["music", "audio", "song", "track"]
DEFAULT_MUSIC_ATTRIBUTES = ["genre", "bpm", "tempo", "key", "album", "artist"]


def _strip_slash(value: str) -> str:
    return value.rstrip("/")


class IndexerSettings(BaseModel):
    base_url: str = "https://api.tzkt.io/v1"
    page_size: int = Field(default=1000, gt=0)
    # 10 pages of 1000 bounds a scan at 10,000 tokens.
    max_pages: int = Field(default=10, gt=0)
    timeout_seconds: float = Field(default=15.0, gt=0)

    @field_validator("base_url")
    @classmethod
    def _normalize_url(cls, value: str) -> str:
        return _strip_slash(value)


class IpfsSettings(BaseModel):
    gateway: str = "https://ipfs.io"

    @field_validator("gateway")
    @classmethod
    def _normalize_gateway(cls, value: str) -> str:
        value = _strip_slash(value)
        if value.endswith("/ipfs"):
            value = value[: -len("/ipfs")]
        return value


class ClassifierSettings(BaseModel):
    weak_signal_threshold: int = Field(default=2, ge=1)
    music_tags: List[str] = Field(default_factory=lambda: list(DEFAULT_MUSIC_TAGS))
    music_attributes: List[str] = Field(default_factory=lambda: list(DEFAULT_MUSIC_ATTRIBUTES))
    type_keyword: str = "music"

    @field_validator("music_tags", "music_attributes")
    @classmethod
    def _lowercase(cls, values: List[str]) -> List[str]:
        return [v.strip().lower() for v in values if v and v.strip()]


class SecondaryIndexSettings(BaseModel):
    enabled: bool = False
    url: Optional[str] = None
    api_key: Optional[str] = None
    table: str = "music_nfts"
    # PostgREST servers cap responses at max-rows (1000 by default).
    page_size: int = Field(default=1000, gt=0, le=1000)
    token_batch_size: int = Field(default=50, gt=0)
    search_limit: int = Field(default=500, gt=0)
    timeout_seconds: float = Field(default=15.0, gt=0)

    @field_validator("url")
    @classmethod
    def _normalize_url(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return _strip_slash(value)

    @property
    def configured(self) -> bool:
        return bool(self.enabled and self.url and self.api_key)


class ScanSettings(BaseModel):
    batch_width: int = Field(default=10, gt=0)
    batch_pause_seconds: float = Field(default=0.1, ge=0)
    progress_every: int = Field(default=50, gt=0)


class CacheSettings(BaseModel):
    ttl_seconds: float = Field(default=300.0, gt=0)
    sweep_interval_seconds: float = Field(default=60.0, gt=0)


class RetrySettings(BaseModel):
    max_retries: int = Field(default=3, ge=0)
    base_delay_seconds: float = Field(default=1.0, ge=0)
    backoff_factor: float = Field(default=2.0, ge=1)


class Settings(BaseModel):
    indexer: IndexerSettings = IndexerSettings()
    ipfs: IpfsSettings = IpfsSettings()
    classifier: ClassifierSettings = ClassifierSettings()
    secondary_index: SecondaryIndexSettings = SecondaryIndexSettings()
    scan: ScanSettings = ScanSettings()
    cache: CacheSettings = CacheSettings()
    retry: RetrySettings = RetrySettings()

    @classmethod
    def load(cls, path: Path) -> "Settings":
        with path.open("r", encoding="utf-8") as fh:
            raw = yaml.safe_load(fh)
        return cls.model_validate(raw or {})

    @classmethod
    def default(cls) -> "Settings":
        return cls()


def find_config(explicit_path: Optional[Path]) -> Optional[Path]:
    if explicit_path:
        if not explicit_path.exists():
            raise FileNotFoundError(f"Config file not found: {explicit_path}")
        return explicit_path
    cwd = Path.cwd()
    for candidate in (cwd / "config.yaml", cwd / "config.yml"):
        if candidate.exists():
            return candidate
    return None
