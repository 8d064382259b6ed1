import io
import json
import logging
import unittest
from contextlib import redirect_stdout
from unittest import mock

from nft_tracks.cli import QUIET_LOGGERS, build_parser, configure_logging
from nft_tracks.commands import tracks as cmd_tracks
from nft_tracks.commands.output import format_duration
from nft_tracks.models import EngineSnapshot, LoadingState, MusicTrack, TokenPair


def _track() -> MusicTrack:
    return MusicTrack(
        id="KT1C_1",
        title="Night Drive",
        artist="Ada",
        cover_url="",
        duration_seconds=245,
        collection_name="Roads",
        contract_address="KT1C",
        token_id="1",
        audio_url="https://gw.example/ipfs/QmA",
    )


class _EngineStub:
    def __init__(self, snapshot: EngineSnapshot, index_client=None) -> None:
        self._snapshot = snapshot
        self.index_client = index_client
        self.searches: list[tuple[str, str | None]] = []

    async def set_wallet(self, address):
        return self._snapshot

    async def fetch_by_tokens(self, pairs):
        return [_track()]

    async def search(self, term, wallet=None):
        self.searches.append((term, wallet))
        return [_track()]


class TestParser(unittest.TestCase):
    def test_tokens_parses_pairs(self) -> None:
        args = build_parser().parse_args(["tokens", "KT1A:1", "KT1B:22", "--json"])
        self.assertEqual(args.pairs, [TokenPair("KT1A", "1"), TokenPair("KT1B", "22")])
        self.assertTrue(args.json)

    def test_tokens_rejects_malformed_pair(self) -> None:
        with redirect_stdout(io.StringIO()), self.assertRaises(SystemExit):
            with mock.patch("sys.stderr", new_callable=io.StringIO):
                build_parser().parse_args(["tokens", "KT1A"])

    def test_doctor_online_flag(self) -> None:
        args = build_parser().parse_args(["--log-level", "debug", "doctor", "--online"])
        self.assertTrue(args.online)
        self.assertEqual(args.log_level, "debug")

    def test_logging_quiets_transport_loggers(self) -> None:
        root = logging.getLogger()
        saved_handlers, saved_level = list(root.handlers), root.level
        try:
            configure_logging("debug")
            self.assertEqual(root.level, logging.DEBUG)
            self.assertEqual(logging.getLogger("aiohttp").level, logging.WARNING)
        finally:
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)
        self.assertEqual(QUIET_LOGGERS, ("aiohttp", "asyncio"))

    def test_format_duration(self) -> None:
        self.assertEqual(format_duration(245), "4:05")
        self.assertEqual(format_duration(3825), "1:03:45")


class TestTrackCommands(unittest.IsolatedAsyncioTestCase):
    async def test_scan_prints_json_records(self) -> None:
        engine = _EngineStub(EngineSnapshot(tracks=(_track(),), loading_state=LoadingState.LOADED))
        out = io.StringIO()
        with redirect_stdout(out):
            ok = await cmd_tracks.scan(engine, "tz1A", json_output=True)  # type: ignore[arg-type]
        self.assertTrue(ok)
        records = json.loads(out.getvalue())
        self.assertEqual(records[0]["id"], "KT1C_1")
        self.assertEqual(records[0]["duration_seconds"], 245)

    async def test_scan_reports_error_state(self) -> None:
        snapshot = EngineSnapshot(
            loading_state=LoadingState.ERROR,
            error="Failed to load music NFTs: HTTP 502",
            retry_count=3,
        )
        out = io.StringIO()
        with redirect_stdout(out):
            ok = await cmd_tracks.scan(_EngineStub(snapshot), "tz1A")  # type: ignore[arg-type]
        self.assertFalse(ok)
        self.assertIn("retries: 3", out.getvalue())

    async def test_scan_text_output(self) -> None:
        engine = _EngineStub(EngineSnapshot(tracks=(_track(),), loading_state=LoadingState.LOADED))
        out = io.StringIO()
        with redirect_stdout(out):
            await cmd_tracks.scan(engine, "tz1A")  # type: ignore[arg-type]
        self.assertIn("[1] Ada - Night Drive (4:05)", out.getvalue())

    async def test_index_commands_require_configuration(self) -> None:
        engine = _EngineStub(EngineSnapshot())
        with redirect_stdout(io.StringIO()):
            self.assertFalse(await cmd_tracks.tokens(engine, [TokenPair("KT1A", "1")]))  # type: ignore[arg-type]
            self.assertFalse(await cmd_tracks.search(engine, "tz1A", "lofi"))  # type: ignore[arg-type]

    async def test_search_passes_wallet(self) -> None:
        engine = _EngineStub(EngineSnapshot(), index_client=object())
        with redirect_stdout(io.StringIO()):
            self.assertTrue(await cmd_tracks.search(engine, "tz1A", "lofi"))  # type: ignore[arg-type]
        self.assertEqual(engine.searches, [("lofi", "tz1A")])


if __name__ == "__main__":
    unittest.main()
