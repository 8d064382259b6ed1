from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from .cancellation import CancelToken, check
from .classifier import MusicClassifier
from .config import ScanSettings
from .extraction import FieldExtractor
from .merge import build_index, dedupe_tracks, merge_track, token_pairs
from .models import ExtractedFields, MusicTrack, NetworkError, RawToken, ScanStats, SecondaryIndexRecord, TokenKey
from .providers.secondary_index import SecondaryIndexClient
from .providers.tzkt import TzktTokenFetcher

logger = logging.getLogger(__name__)

Candidate = Tuple[RawToken, ExtractedFields]


class DiscoveryPipeline:
    """Wallet scan: fetch balances, gate each token, extract fields, merge the curated index."""

    def __init__(
        self,
        fetcher: TzktTokenFetcher,
        classifier: MusicClassifier,
        extractor: FieldExtractor,
        index_client: Optional[SecondaryIndexClient] = None,
        settings: Optional[ScanSettings] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.fetcher = fetcher
        self.classifier = classifier
        self.extractor = extractor
        self.index_client = index_client
        self.settings = settings or ScanSettings()
        self._sleep = sleep

    async def run(self, wallet: str, cancel: Optional[CancelToken] = None) -> List[MusicTrack]:
        stats = ScanStats()
        tokens = await self.fetcher.fetch_wallet_tokens(wallet, cancel)
        stats.tokens_seen = len(tokens)
        candidates = await self._process_tokens(tokens, stats, cancel)
        index = await self._load_index([raw for raw, _ in candidates], cancel)
        check(cancel)
        tracks = []
        for raw, fields in candidates:
            track = merge_track(raw, fields, index, self.extractor.gateway)
            if raw.key in index:
                stats.matched_index += 1
            tracks.append(track)
        tracks = dedupe_tracks(tracks)
        logger.info(
            "Found %s music NFTs among %s tokens for %s "
            "(%s without metadata, %s rejected, %s failed, %s enhanced from index)",
            len(tracks),
            stats.tokens_seen,
            wallet,
            stats.metadata_missing,
            stats.rejected,
            stats.failed,
            stats.matched_index,
        )
        return tracks

    async def _process_tokens(
        self,
        tokens: Sequence[RawToken],
        stats: ScanStats,
        cancel: Optional[CancelToken],
    ) -> List[Candidate]:
        candidates: List[Candidate] = []
        width = self.settings.batch_width
        processed = 0
        for start in range(0, len(tokens), width):
            check(cancel)
            batch = tokens[start : start + width]
            results = await asyncio.gather(
                *(self.process_token(token, stats) for token in batch),
                return_exceptions=True,
            )
            for token, result in zip(batch, results):
                processed += 1
                if isinstance(result, BaseException):
                    if not isinstance(result, Exception):
                        raise result
                    stats.failed += 1
                    logger.warning(
                        "Failed to process token %s/%s: %s",
                        token.contract_address,
                        token.token_id,
                        result,
                    )
                elif result is not None:
                    candidates.append(result)
                if processed % self.settings.progress_every == 0:
                    logger.info(
                        "Progress: %s/%s tokens processed, %s music NFTs found",
                        processed,
                        len(tokens),
                        len(candidates),
                    )
            if start + width < len(tokens) and self.settings.batch_pause_seconds:
                await self._sleep(self.settings.batch_pause_seconds)
        return candidates

    async def process_token(self, token: RawToken, stats: Optional[ScanStats] = None) -> Optional[Candidate]:
        metadata = await self.fetcher.resolve_metadata(token)
        if not metadata:
            if stats is not None:
                stats.metadata_missing += 1
            logger.debug("No metadata for %s/%s", token.contract_address, token.token_id)
            return None
        verdict = self.classifier.classify(metadata)
        if not verdict.is_music:
            if stats is not None:
                stats.rejected += 1
            logger.debug(
                "Token %s/%s rejected (signals: %s)",
                token.contract_address,
                token.token_id,
                ", ".join(verdict.signals) or "none",
            )
            return None
        fields = self.extractor.extract(
            metadata,
            contract_address=token.contract_address,
            contract_alias=token.contract_alias,
        )
        return token, fields

    async def _load_index(
        self,
        tokens: Sequence[RawToken],
        cancel: Optional[CancelToken],
    ) -> Dict[TokenKey, SecondaryIndexRecord]:
        if self.index_client is None or not tokens:
            return {}
        try:
            records = await self.index_client.fetch_by_tokens(token_pairs(tokens), cancel, dedupe=False)
        except NetworkError as exc:
            logger.warning("Secondary index unavailable, using on-chain metadata only: %s", exc)
            return {}
        return build_index(records)
