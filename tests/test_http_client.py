from __future__ import annotations

import unittest
from unittest.mock import patch

from aiohttp import web
from aiohttp import test_utils

import config
from utils.http_client import ResilientHttpClient, format_source_stats_brief


class ResilientHttpClientTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.hits = {"flaky": 0}

        async def flaky(_request: web.Request) -> web.Response:
            self.hits["flaky"] += 1
            if self.hits["flaky"] == 1:
                return web.json_response({"status": 503}, status=503)
            return web.json_response({"status": 200, "data": {"amountsOut": ["1", "2"]}})

        async def rejected(_request: web.Request) -> web.Response:
            return web.json_response({"status": 400, "msg": "bad path"}, status=400)

        async def echo(request: web.Request) -> web.Response:
            body = await request.json()
            return web.json_response({"data": body, "key": request.headers.get("x-api-key", "")})

        app = web.Application()
        app.router.add_get("/flaky", flaky)
        app.router.add_get("/rejected", rejected)
        app.router.add_post("/echo", echo)
        self.server = test_utils.TestServer(app)
        await self.server.start_server()

        self._patches = [
            patch.object(config, "HTTP_BACKOFF_BASE_SECONDS", 0.05),
            patch.object(config, "HTTP_BACKOFF_MAX_SECONDS", 0.05),
            patch.object(config, "HTTP_JITTER_SECONDS", 0.0),
        ]
        for p in self._patches:
            p.start()
        self.client = ResilientHttpClient(timeout_seconds=5, source_limits={"expand_quote": 2})

    async def asyncTearDown(self) -> None:
        await self.client.close()
        await self.server.close()
        for p in self._patches:
            p.stop()

    async def test_server_error_is_retried(self) -> None:
        result = await self.client.get_json(str(self.server.make_url("/flaky")), source="expand_quote", max_attempts=3)

        self.assertTrue(result.ok)
        self.assertEqual(result.data["data"]["amountsOut"], ["1", "2"])
        self.assertEqual(self.hits["flaky"], 2)
        stats = self.client.snapshot_stats()
        self.assertEqual(stats["expand_quote"]["retries"], 1)
        self.assertEqual(stats["expand_quote"]["ok"], 1)

    async def test_client_error_returns_body_without_retry(self) -> None:
        result = await self.client.get_json(str(self.server.make_url("/rejected")), source="expand_quote", max_attempts=3)

        self.assertFalse(result.ok)
        self.assertEqual(result.status, 400)
        self.assertEqual(result.data, {"status": 400, "msg": "bad path"})
        self.assertEqual(result.error, "http_status_400")
        self.assertEqual(self.client.snapshot_stats(reset=True)["expand_quote"]["fail"], 1)
        self.assertEqual(self.client.snapshot_stats(), {})

    async def test_post_sends_json_and_headers(self) -> None:
        result = await self.client.post_json(
            str(self.server.make_url("/echo")),
            {"chainId": "137", "rawTransaction": "0xabc"},
            source="expand_tx",
            headers={"x-api-key": "k-1"},
        )

        self.assertTrue(result.ok)
        self.assertEqual(result.data, {"data": {"chainId": "137", "rawTransaction": "0xabc"}, "key": "k-1"})


class StatsFormattingTests(unittest.TestCase):
    def test_brief_line_is_sorted_by_source(self) -> None:
        line = format_source_stats_brief(
            {
                "expand_tx": {"ok": 1, "fail": 1, "rate_limited": 0, "error_percent": 50.0, "latency_avg_ms": 120.4},
                "expand_quote": {"ok": 9, "fail": 0, "rate_limited": 2, "error_percent": 0.0, "latency_avg_ms": 30.0},
            }
        )
        self.assertEqual(
            line,
            "expand_quote:ok=9/fail=0/429=2/err=0.0%/avg=30ms; expand_tx:ok=1/fail=1/429=0/err=50.0%/avg=120ms",
        )
        self.assertEqual(format_source_stats_brief({}), "none")


if __name__ == "__main__":
    unittest.main()
