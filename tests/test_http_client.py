import asyncio
import unittest
from unittest import mock

import aiohttp

from nft_tracks.models import NetworkError
from nft_tracks.providers.http import JsonHttpClient


class _Response:
    def __init__(self, status: int, text: str) -> None:
        self.status = status
        self._text = text

    async def text(self) -> str:
        return self._text

    async def __aenter__(self) -> "_Response":
        return self

    async def __aexit__(self, *exc_info) -> None:
        return None


class _SessionStub:
    closed = False

    def __init__(self, response=None, error=None) -> None:
        self.response = response
        self.error = error
        self.requests: list[tuple[str, dict, dict]] = []

    def get(self, url, params=None, headers=None):
        self.requests.append((url, dict(params or {}), dict(headers or {})))
        if self.error is not None:
            raise self.error
        return self.response


class TestJsonHttpClient(unittest.IsolatedAsyncioTestCase):
    async def test_decodes_json_and_merges_headers(self) -> None:
        session = _SessionStub(_Response(200, '[{"id": 1}]'))
        client = JsonHttpClient(timeout_seconds=5, headers={"apikey": "anon"}, session=session)  # type: ignore[arg-type]

        payload = await client.get_json("https://x.example/rows", params={"limit": 1}, headers={"X-Trace": "1"})

        self.assertEqual(payload, [{"id": 1}])
        _url, params, headers = session.requests[0]
        self.assertEqual(params, {"limit": 1})
        self.assertEqual(headers["apikey"], "anon")
        self.assertEqual(headers["X-Trace"], "1")
        self.assertIn("nft-tracks", headers["User-Agent"])

    async def test_empty_body_is_none(self) -> None:
        client = JsonHttpClient(timeout_seconds=5, session=_SessionStub(_Response(200, "")))  # type: ignore[arg-type]
        self.assertIsNone(await client.get_json("https://x.example"))

    async def test_http_error_status(self) -> None:
        client = JsonHttpClient(timeout_seconds=5, session=_SessionStub(_Response(503, "unavailable")))  # type: ignore[arg-type]
        with self.assertRaisesRegex(NetworkError, "HTTP 503"):
            await client.get_json("https://x.example")

    async def test_transport_errors_are_wrapped(self) -> None:
        for exc in (aiohttp.ClientConnectionError("refused"), asyncio.TimeoutError()):
            client = JsonHttpClient(timeout_seconds=5, session=_SessionStub(error=exc))  # type: ignore[arg-type]
            with self.assertRaises(NetworkError):
                await client.get_json("https://x.example")

    async def test_invalid_json(self) -> None:
        client = JsonHttpClient(timeout_seconds=5, session=_SessionStub(_Response(200, "<html>")))  # type: ignore[arg-type]
        with self.assertRaisesRegex(NetworkError, "Invalid JSON"):
            await client.get_json("https://x.example")

    async def test_injected_session_is_not_closed(self) -> None:
        session = _SessionStub(_Response(200, "{}"))
        session.close = mock.AsyncMock()  # type: ignore[attr-defined]
        client = JsonHttpClient(timeout_seconds=5, session=session)  # type: ignore[arg-type]
        await client.close()
        session.close.assert_not_called()


if __name__ == "__main__":
    unittest.main()
