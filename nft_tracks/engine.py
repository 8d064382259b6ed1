from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from .cache import TrackCache
from .cancellation import CancelToken, check
from .classifier import MusicClassifier
from .config import Settings
from .extraction import FieldExtractor
from .ipfs import DEFAULT_GATEWAY
from .merge import dedupe_tracks, track_from_index_record
from .models import EngineSnapshot, LoadingState, MusicTrack, NetworkError, ScanCancelled, TokenPair
from .pipeline import DiscoveryPipeline
from .providers.secondary_index import SecondaryIndexClient
from .providers.tzkt import TzktTokenFetcher
from .retry import RetryPolicy

logger = logging.getLogger(__name__)


class TrackEngine:
    """
    Stateful front door used by the player layer.

    Holds the current wallet and its track list and walks the
    IDLE -> LOADING -> LOADED | ERROR state machine. Fresh cache entries are
    served without I/O; misses run the discovery pipeline under the retry
    policy. Loads for the same wallet share one in-flight task, and switching
    wallets cancels the previous scan before it can write to the cache.
    """

    def __init__(
        self,
        pipeline: DiscoveryPipeline,
        cache: TrackCache,
        retry: RetryPolicy,
        *,
        index_client: Optional[SecondaryIndexClient] = None,
        gateway: str = DEFAULT_GATEWAY,
        sweep_interval_seconds: float = 60.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.pipeline = pipeline
        self.cache = cache
        self.retry = retry
        self.index_client = index_client
        self.gateway = gateway
        self.sweep_interval_seconds = sweep_interval_seconds
        self._sleep = sleep
        self._wallet: Optional[str] = None
        self._tracks: Tuple[MusicTrack, ...] = ()
        self._state = LoadingState.IDLE
        self._error: Optional[str] = None
        self._retry_count = 0
        self._inflight: Dict[str, Tuple[asyncio.Task, CancelToken]] = {}
        self._sweeper: Optional[asyncio.Task] = None

    @classmethod
    def create(cls, settings: Settings) -> "TrackEngine":
        gateway = settings.ipfs.gateway
        index_client: Optional[SecondaryIndexClient] = None
        if settings.secondary_index.configured:
            index_client = SecondaryIndexClient(settings.secondary_index)
        elif settings.secondary_index.enabled:
            logger.warning("Secondary index enabled but url/api_key missing; using on-chain metadata only")
        pipeline = DiscoveryPipeline(
            TzktTokenFetcher(settings.indexer),
            MusicClassifier(settings.classifier),
            FieldExtractor(gateway),
            index_client=index_client,
            settings=settings.scan,
        )
        return cls(
            pipeline,
            TrackCache(settings.cache.ttl_seconds),
            RetryPolicy.from_settings(settings.retry),
            index_client=index_client,
            gateway=gateway,
            sweep_interval_seconds=settings.cache.sweep_interval_seconds,
        )

    @property
    def wallet_address(self) -> Optional[str]:
        return self._wallet

    @property
    def loading_state(self) -> LoadingState:
        return self._state

    def snapshot(self) -> EngineSnapshot:
        return EngineSnapshot(
            tracks=self._tracks,
            loading_state=self._state,
            error=self._error,
            retry_count=self._retry_count,
            wallet_address=self._wallet,
        )

    async def set_wallet(self, address: Optional[str]) -> EngineSnapshot:
        """Follow the wallet collaborator; ``None`` clears everything back to IDLE."""
        address = address.strip() if address else None
        if address == self._wallet:
            if address is None or self._state is not LoadingState.IDLE:
                return self.snapshot()
        previous = self._wallet
        if previous and previous != address:
            self._cancel_scan(previous, reason=f"wallet changed from {previous}")
        self._wallet = address
        self._retry_count = 0
        self._error = None
        if address is None:
            self._tracks = ()
            self._state = LoadingState.IDLE
            return self.snapshot()
        return await self._load(address)

    async def load(self) -> EngineSnapshot:
        """Serve the current wallet from cache or scan it; ERROR is left only via ``refresh()``."""
        if self._wallet is None or self._state is LoadingState.ERROR:
            return self.snapshot()
        return await self._load(self._wallet)

    async def refresh(self) -> EngineSnapshot:
        """Drop the cached entry for the current wallet and scan again without backoff."""
        wallet = self._wallet
        if wallet is None:
            return self.snapshot()
        if wallet not in self._inflight:
            self.cache.invalidate(wallet)
        self._retry_count = 0
        return await self._load(wallet)

    async def fetch_by_tokens(self, pairs: Sequence[TokenPair]) -> List[MusicTrack]:
        if self.index_client is None or not pairs:
            return []
        try:
            records = await self.index_client.fetch_by_tokens(pairs)
        except NetworkError as exc:
            logger.warning("Secondary index lookup for %s pairs failed: %s", len(pairs), exc)
            return []
        return dedupe_tracks(track_from_index_record(record, self.gateway) for record in records)

    async def search(self, term: str, wallet: Optional[str] = None) -> List[MusicTrack]:
        """Search the curated index within the current wallet, or ``wallet`` when given."""
        address = wallet or self._wallet
        if self.index_client is None or address is None:
            return []
        try:
            records = await self.index_client.search(address, term)
        except NetworkError as exc:
            logger.warning("Secondary index search for %r failed: %s", term, exc)
            return []
        return dedupe_tracks(track_from_index_record(record, self.gateway) for record in records)

    async def _load(self, wallet: str) -> EngineSnapshot:
        self._state = LoadingState.LOADING
        self._error = None
        cached = self.cache.get(wallet)
        if cached is not None:
            logger.debug("Using cached tracks for %s", wallet)
            self._apply_loaded(wallet, cached)
            return self.snapshot()
        task = self._ensure_scan(wallet)
        try:
            tracks = await asyncio.shield(task)
        except ScanCancelled:
            logger.debug("Scan for %s cancelled", wallet)
            return self.snapshot()
        except Exception as exc:
            if wallet == self._wallet:
                logger.error("Failed to load tracks for %s: %s", wallet, exc)
                self._tracks = ()
                self._error = f"Failed to load music NFTs: {exc}"
                self._state = LoadingState.ERROR
            return self.snapshot()
        self._apply_loaded(wallet, tracks)
        return self.snapshot()

    def _apply_loaded(self, wallet: str, tracks: Tuple[MusicTrack, ...]) -> None:
        if wallet != self._wallet:
            return
        self._tracks = tracks
        self._state = LoadingState.LOADED
        self._error = None
        self._retry_count = 0

    def _ensure_scan(self, wallet: str) -> asyncio.Task:
        existing = self._inflight.get(wallet)
        if existing is not None:
            logger.debug("Joining in-flight scan for %s", wallet)
            return existing[0]
        cancel = CancelToken()
        task = asyncio.create_task(self._scan(wallet, cancel), name=f"scan:{wallet}")
        self._inflight[wallet] = (task, cancel)

        def _forget(done: asyncio.Task) -> None:
            current = self._inflight.get(wallet)
            if current is not None and current[0] is done:
                del self._inflight[wallet]
            if not done.cancelled():
                # Marks the exception retrieved when every waiter has gone away.
                done.exception()

        task.add_done_callback(_forget)
        return task

    async def _scan(self, wallet: str, cancel: CancelToken) -> Tuple[MusicTrack, ...]:
        def on_retry(attempt: int, exc: Exception, delay: float) -> None:
            if wallet == self._wallet:
                self._retry_count = attempt

        tracks = await self.retry.run(
            lambda: self.pipeline.run(wallet, cancel),
            label=f"Scan for {wallet}",
            on_retry=on_retry,
        )
        check(cancel)
        return self.cache.set(wallet, tracks)

    def _cancel_scan(self, wallet: str, reason: str) -> None:
        entry = self._inflight.pop(wallet, None)
        if entry is None:
            return
        _, cancel = entry
        cancel.cancel(reason)
        logger.info("Cancelled scan for %s (%s)", wallet, reason)

    async def _sweep_forever(self) -> None:
        while True:
            await self._sleep(self.sweep_interval_seconds)
            self.cache.sweep()

    def start(self) -> None:
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(self._sweep_forever(), name="cache-sweeper")

    async def aclose(self) -> None:
        pending = [task for task, _ in self._inflight.values()]
        for wallet in list(self._inflight):
            self._cancel_scan(wallet, reason="engine closed")
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        if self._sweeper is not None:
            self._sweeper.cancel()
            await asyncio.gather(self._sweeper, return_exceptions=True)
            self._sweeper = None
        await self.pipeline.fetcher.close()
        if self.index_client is not None:
            await self.index_client.close()

    async def __aenter__(self) -> "TrackEngine":
        self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()
