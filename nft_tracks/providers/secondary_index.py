from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from ..cancellation import CancelToken, check
from ..config import SecondaryIndexSettings
from ..extraction import DEFAULT_ARTIST, DEFAULT_TITLE
from ..models import NetworkError, SecondaryIndexRecord, TokenPair
from .http import JsonHttpClient

logger = logging.getLogger(__name__)

AUDIO_COLUMN = "audio_ipfs_uri"
OWNER_COLUMN = "artist_address"


def record_from_row(row: Mapping[str, Any]) -> Optional[SecondaryIndexRecord]:
    contract = row.get("contract_address")
    token_id = row.get("token_id")
    if not contract or token_id is None:
        return None
    duration = row.get("duration_seconds")
    try:
        duration_seconds = int(duration) if duration else None
    except (TypeError, ValueError):
        duration_seconds = None
    return SecondaryIndexRecord(
        contract_address=str(contract),
        token_id=str(token_id),
        title=_clean(row.get("track_title")),
        artist=_clean(row.get("artist_name")),
        audio_uri=_clean(row.get(AUDIO_COLUMN)),
        thumbnail_uri=_clean(row.get("thumbnail_ipfs_uri")),
        duration_seconds=duration_seconds,
        description=_clean(row.get("description")),
        record_id=row.get("id") if isinstance(row.get("id"), int) else None,
    )


def _clean(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    stripped = value.strip()
    return stripped or None


def dedup_key(record: SecondaryIndexRecord) -> Tuple[str, str]:
    return (record.title or DEFAULT_TITLE).lower(), (record.artist or DEFAULT_ARTIST).lower()


def dedupe_records(records: Iterable[SecondaryIndexRecord]) -> List[SecondaryIndexRecord]:
    """Drop near-duplicate releases sharing a normalized (title, artist); first wins."""
    unique: List[SecondaryIndexRecord] = []
    seen: set[Tuple[str, str]] = set()
    for record in records:
        key = dedup_key(record)
        if key in seen:
            continue
        seen.add(key)
        unique.append(record)
    return unique


def chunked(items: Sequence[TokenPair], size: int) -> Iterable[Sequence[TokenPair]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


def pairs_filter(pairs: Sequence[TokenPair]) -> str:
    conditions = ",".join(
        f"and(contract_address.eq.{pair.contract_address},token_id.eq.{pair.token_id})" for pair in pairs
    )
    return f"({conditions})"


def search_filter(term: str) -> str:
    # Double quotes let PostgREST accept commas and parentheses inside the pattern.
    safe = term.replace("\\", "").replace('"', "").strip()
    return f'(track_title.ilike."*{safe}*",artist_name.ilike."*{safe}*")'


class SecondaryIndexClient:
    """Client for the curated audio-NFT table behind a PostgREST endpoint."""

    def __init__(self, settings: SecondaryIndexSettings, http: Optional[JsonHttpClient] = None) -> None:
        if not settings.url or not settings.api_key:
            raise ValueError("Secondary index url and api_key required")
        self.settings = settings
        self.endpoint = f"{settings.url}/rest/v1/{settings.table}"
        self.http = http or JsonHttpClient(
            timeout_seconds=settings.timeout_seconds,
            headers={
                "apikey": settings.api_key,
                "Authorization": f"Bearer {settings.api_key}",
            },
        )

    async def fetch_by_wallet(self, address: str, cancel: Optional[CancelToken] = None) -> List[SecondaryIndexRecord]:
        if not address:
            return []
        rows = await self._fetch_pages({OWNER_COLUMN: f"eq.{address}"}, cancel)
        records = dedupe_records(self._to_records(rows))
        logger.info("Secondary index returned %s tracks for %s", len(records), address)
        return records

    async def fetch_by_tokens(
        self,
        pairs: Sequence[TokenPair],
        cancel: Optional[CancelToken] = None,
        *,
        dedupe: bool = True,
    ) -> List[SecondaryIndexRecord]:
        """Index rows for explicit tokens.

        With ``dedupe=False`` every row is kept so callers keying by
        (contract, token_id) see one record per token even when distinct
        tokens share a (title, artist).
        """
        usable = [pair for pair in pairs if _numeric_token_id(pair)]
        if len(usable) < len(pairs):
            logger.debug("Ignoring %s token pairs with non-numeric ids", len(pairs) - len(usable))
        if not usable:
            return []
        rows: List[Mapping[str, Any]] = []
        for batch in chunked(usable, self.settings.token_batch_size):
            check(cancel)
            rows.extend(await self._fetch_pages({"or": pairs_filter(batch)}, cancel))
        records = self._to_records(rows)
        if dedupe:
            records = dedupe_records(records)
        logger.info("Secondary index matched %s of %s token pairs", len(records), len(usable))
        return records

    async def search(self, address: str, term: str, cancel: Optional[CancelToken] = None) -> List[SecondaryIndexRecord]:
        if not address:
            return []
        if not term.strip():
            return await self.fetch_by_wallet(address, cancel)
        check(cancel)
        params = self._base_params()
        params.update(
            {
                OWNER_COLUMN: f"eq.{address}",
                "or": search_filter(term),
                "limit": self.settings.search_limit,
            }
        )
        rows = await self._get_rows(params)
        records = dedupe_records(self._to_records(rows))
        logger.info("Found %s tracks matching %r for %s", len(records), term, address)
        return records

    async def _fetch_pages(
        self,
        filters: Mapping[str, str],
        cancel: Optional[CancelToken],
    ) -> List[Mapping[str, Any]]:
        rows: List[Mapping[str, Any]] = []
        page_size = self.settings.page_size
        offset = 0
        while True:
            check(cancel)
            params = self._base_params()
            params.update(filters)
            params.update({"offset": offset, "limit": page_size})
            page = await self._get_rows(params)
            rows.extend(page)
            if len(page) < page_size:
                break
            offset += page_size
        return rows

    async def _get_rows(self, params: Dict[str, Any]) -> List[Mapping[str, Any]]:
        payload = await self.http.get_json(self.endpoint, params=params)
        if payload is None:
            return []
        if not isinstance(payload, list):
            raise NetworkError(f"Unexpected secondary index payload: {type(payload).__name__}")
        return [row for row in payload if isinstance(row, dict)]

    @staticmethod
    def _base_params() -> Dict[str, Any]:
        return {
            "select": "*",
            AUDIO_COLUMN: "not.is.null",
            "order": "id.desc",
        }

    @staticmethod
    def _to_records(rows: Iterable[Mapping[str, Any]]) -> List[SecondaryIndexRecord]:
        records: List[SecondaryIndexRecord] = []
        for row in rows:
            record = record_from_row(row)
            if record is not None and record.audio_uri:
                records.append(record)
        return records

    async def close(self) -> None:
        await self.http.close()


def _numeric_token_id(pair: TokenPair) -> bool:
    return pair.token_id.isdigit()
