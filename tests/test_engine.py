import asyncio
import unittest

from nft_tracks.cache import TrackCache
from nft_tracks.cancellation import check
from nft_tracks.config import SecondaryIndexSettings, Settings
from nft_tracks.engine import TrackEngine
from nft_tracks.models import (
    LoadingState,
    MusicTrack,
    NetworkError,
    SecondaryIndexRecord,
    TokenPair,
)
from nft_tracks.retry import RetryPolicy

WALLET_A = "tz1AAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAA"
WALLET_B = "tz1BBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBB"
CONTRACT = "KT1MusicContract000000000000000000"


def _track(wallet: str, token_id: str = "1") -> MusicTrack:
    return MusicTrack(
        id=f"{CONTRACT}_{token_id}",
        title=f"Song for {wallet[:4]}",
        artist="Artist",
        cover_url="",
        duration_seconds=180,
        collection_name="Collection",
        contract_address=CONTRACT,
        token_id=token_id,
    )


class _Closable:
    def __init__(self) -> None:
        self.closed = False

    async def close(self) -> None:
        self.closed = True


class _PipelineStub:
    def __init__(self, failures: int = 0, error: Exception | None = None) -> None:
        self.runs: list[str] = []
        self.failures = failures
        self.error = error
        self.gates: dict[str, asyncio.Event] = {}
        self.fetcher = _Closable()

    async def run(self, wallet, cancel=None):
        self.runs.append(wallet)
        gate = self.gates.get(wallet)
        if gate is not None:
            await gate.wait()
        check(cancel)
        if self.error is not None:
            raise self.error
        if self.failures:
            self.failures -= 1
            raise NetworkError("HTTP 502")
        return [_track(wallet)]


class _IndexStub(_Closable):
    def __init__(self, records=(), error=None) -> None:
        super().__init__()
        self.records = list(records)
        self.error = error
        self.searches: list[tuple[str, str]] = []

    async def fetch_by_tokens(self, pairs, cancel=None):
        if self.error is not None:
            raise self.error
        return list(self.records)

    async def search(self, address, term, cancel=None):
        self.searches.append((address, term))
        if self.error is not None:
            raise self.error
        return list(self.records)


class _Sleeper:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class _SweepSleeper:
    """First tick moves the clock past the TTL; the second parks the sweeper."""

    def __init__(self, clock) -> None:
        self.clock = clock
        self.delays: list[float] = []
        self.second_tick = asyncio.Event()

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        if len(self.delays) == 1:
            self.clock.now += 301
            return
        self.second_tick.set()
        await asyncio.Event().wait()


class _Clock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class TestTrackEngine(unittest.IsolatedAsyncioTestCase):
    def _engine(self, pipeline=None, index=None) -> TrackEngine:
        self.pipeline = pipeline or _PipelineStub()
        self.clock = _Clock()
        self.sleeper = _Sleeper()
        return TrackEngine(
            self.pipeline,  # type: ignore[arg-type]
            TrackCache(300, clock=self.clock),
            RetryPolicy(sleep=self.sleeper),
            index_client=index,  # type: ignore[arg-type]
            gateway="https://gw.example",
        )

    async def test_starts_idle(self) -> None:
        snapshot = self._engine().snapshot()
        self.assertIs(snapshot.loading_state, LoadingState.IDLE)
        self.assertEqual(snapshot.tracks, ())

    async def test_load_within_ttl_reuses_cached_tracks(self) -> None:
        engine = self._engine()

        first = await engine.set_wallet(WALLET_A)
        self.clock.now += 120
        second = await engine.load()

        self.assertIs(first.loading_state, LoadingState.LOADED)
        self.assertEqual(self.pipeline.runs, [WALLET_A])
        self.assertIs(first.tracks, second.tracks)

    async def test_expired_entry_triggers_new_scan(self) -> None:
        engine = self._engine()
        await engine.set_wallet(WALLET_A)
        self.clock.now += 301
        await engine.load()
        self.assertEqual(self.pipeline.runs, [WALLET_A, WALLET_A])

    async def test_refresh_bypasses_cache(self) -> None:
        engine = self._engine()
        await engine.set_wallet(WALLET_A)
        snapshot = await engine.refresh()
        self.assertEqual(len(self.pipeline.runs), 2)
        self.assertIs(snapshot.loading_state, LoadingState.LOADED)

    async def test_clearing_wallet_returns_to_idle(self) -> None:
        engine = self._engine()
        await engine.set_wallet(WALLET_A)
        snapshot = await engine.set_wallet(None)
        self.assertIs(snapshot.loading_state, LoadingState.IDLE)
        self.assertEqual(snapshot.tracks, ())
        self.assertIsNone(snapshot.wallet_address)

    async def test_transient_failures_are_retried(self) -> None:
        engine = self._engine(_PipelineStub(failures=2))

        snapshot = await engine.set_wallet(WALLET_A)

        self.assertIs(snapshot.loading_state, LoadingState.LOADED)
        self.assertEqual(snapshot.retry_count, 0)
        self.assertEqual(len(self.pipeline.runs), 3)
        self.assertEqual(self.sleeper.delays, [1.0, 2.0])

    async def test_exhausted_retries_surface_error(self) -> None:
        engine = self._engine(_PipelineStub(failures=10))

        snapshot = await engine.set_wallet(WALLET_A)

        self.assertIs(snapshot.loading_state, LoadingState.ERROR)
        self.assertEqual(snapshot.retry_count, 3)
        self.assertTrue(snapshot.error.startswith("Failed to load music NFTs:"))
        self.assertEqual(len(self.pipeline.runs), 4)
        self.assertNotIn(WALLET_A, engine.cache)

    async def test_refresh_after_error_resets_retry_count(self) -> None:
        engine = self._engine(_PipelineStub(failures=4))
        await engine.set_wallet(WALLET_A)

        snapshot = await engine.refresh()

        self.assertIs(snapshot.loading_state, LoadingState.LOADED)
        self.assertEqual(snapshot.retry_count, 0)
        self.assertIsNone(snapshot.error)

    async def test_load_in_error_state_does_not_rescan(self) -> None:
        engine = self._engine(_PipelineStub(failures=10))
        failed = await engine.set_wallet(WALLET_A)
        runs = len(self.pipeline.runs)

        snapshot = await engine.load()

        self.assertIs(snapshot.loading_state, LoadingState.ERROR)
        self.assertEqual(snapshot, failed)
        self.assertEqual(len(self.pipeline.runs), runs)

    async def test_unexpected_errors_are_not_retried(self) -> None:
        engine = self._engine(_PipelineStub(error=KeyError("metadata")))
        snapshot = await engine.set_wallet(WALLET_A)
        self.assertIs(snapshot.loading_state, LoadingState.ERROR)
        self.assertEqual(len(self.pipeline.runs), 1)

    async def test_concurrent_loads_share_one_scan(self) -> None:
        engine = self._engine()
        gate = asyncio.Event()
        self.pipeline.gates[WALLET_A] = gate

        first = asyncio.create_task(engine.set_wallet(WALLET_A))
        await asyncio.sleep(0)
        second = asyncio.create_task(engine.load())
        await asyncio.sleep(0)
        self.assertIs(engine.loading_state, LoadingState.LOADING)
        gate.set()
        snapshots = await asyncio.gather(first, second)

        self.assertEqual(self.pipeline.runs, [WALLET_A])
        self.assertTrue(all(s.loading_state is LoadingState.LOADED for s in snapshots))

    async def test_wallet_change_cancels_previous_scan(self) -> None:
        engine = self._engine()
        gate = asyncio.Event()
        self.pipeline.gates[WALLET_A] = gate

        pending = asyncio.create_task(engine.set_wallet(WALLET_A))
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        switched = await engine.set_wallet(WALLET_B)
        gate.set()
        await pending

        self.assertEqual(switched.wallet_address, WALLET_B)
        self.assertNotIn(WALLET_A, engine.cache)
        final = engine.snapshot()
        self.assertIs(final.loading_state, LoadingState.LOADED)
        self.assertEqual(final.wallet_address, WALLET_B)
        self.assertEqual(final.tracks[0].title, f"Song for {WALLET_B[:4]}")

    async def test_fetch_by_tokens_converts_index_records(self) -> None:
        index = _IndexStub(
            [
                SecondaryIndexRecord(CONTRACT, "5", title="Indexed", audio_uri="ipfs://QmA"),
                SecondaryIndexRecord(CONTRACT, "5", title="Indexed again", audio_uri="ipfs://QmB"),
            ]
        )
        engine = self._engine(index=index)

        tracks = await engine.fetch_by_tokens([TokenPair(CONTRACT, "5")])

        self.assertEqual(len(tracks), 1)
        self.assertEqual(tracks[0].audio_url, "https://gw.example/ipfs/QmA")

    async def test_index_lookups_degrade_to_empty(self) -> None:
        self.assertEqual(await self._engine().fetch_by_tokens([TokenPair(CONTRACT, "5")]), [])
        engine = self._engine(index=_IndexStub(error=NetworkError("HTTP 500")))
        self.assertEqual(await engine.fetch_by_tokens([TokenPair(CONTRACT, "5")]), [])
        self.assertEqual(await engine.search("lofi", wallet=WALLET_A), [])

    async def test_search_is_scoped_to_current_wallet(self) -> None:
        index = _IndexStub([SecondaryIndexRecord(CONTRACT, "7", title="Lofi", audio_uri="ipfs://QmL")])
        engine = self._engine(index=index)
        self.assertEqual(await engine.search("lofi"), [])

        await engine.set_wallet(WALLET_A)
        tracks = await engine.search("lofi")

        self.assertEqual([t.title for t in tracks], ["Lofi"])
        self.assertEqual(index.searches, [(WALLET_A, "lofi")])

    async def test_sweeper_evicts_stale_entries(self) -> None:
        clock = _Clock()
        cache = TrackCache(300, clock=clock)
        cache.set(WALLET_A, [_track(WALLET_A)])
        sleeper = _SweepSleeper(clock)
        engine = TrackEngine(
            _PipelineStub(),  # type: ignore[arg-type]
            cache,
            RetryPolicy(sleep=_Sleeper()),
            sweep_interval_seconds=60,
            sleep=sleeper,
        )

        engine.start()
        try:
            await asyncio.wait_for(sleeper.second_tick.wait(), timeout=1.0)
        finally:
            await engine.aclose()

        self.assertEqual(sleeper.delays[:2], [60, 60])
        self.assertNotIn(WALLET_A, cache)

    async def test_aclose_releases_clients_and_sweeper(self) -> None:
        index = _IndexStub()
        engine = self._engine(index=index)
        async with engine:
            self.assertIsNotNone(engine._sweeper)
        self.assertIsNone(engine._sweeper)
        self.assertTrue(self.pipeline.fetcher.closed)
        self.assertTrue(index.closed)

    async def test_create_wires_secondary_index_when_configured(self) -> None:
        settings = Settings(
            secondary_index=SecondaryIndexSettings(enabled=True, url="https://index.example", api_key="anon")
        )
        engine = TrackEngine.create(settings)
        try:
            self.assertIsNotNone(engine.index_client)
            self.assertEqual(engine.cache.ttl_seconds, 300)
        finally:
            await engine.aclose()

        engine = TrackEngine.create(Settings(secondary_index=SecondaryIndexSettings(enabled=True)))
        try:
            self.assertIsNone(engine.index_client)
        finally:
            await engine.aclose()


if __name__ == "__main__":
    unittest.main()
