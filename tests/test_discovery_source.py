from __future__ import annotations

import json
import sys
import tempfile
import textwrap
import unittest
from pathlib import Path

from monitor.discovery import ScraperDiscovery, parse_candidates
from trading.errors import DiscoveryUnavailable
from trading.models import Candidate


class ParseCandidatesTests(unittest.TestCase):
    def test_valid_rows_become_candidates(self) -> None:
        raw = json.dumps(
            [
                {"blockchain": "Polygon", "ticker": "AAA", "contract_address": "0x" + "1" * 40},
                {"blockchain": "Ethereum", "ticker": "", "contractAddress": "0x" + "2" * 40},
            ]
        )
        self.assertEqual(
            parse_candidates(raw),
            [
                Candidate("Polygon", "AAA", "0x" + "1" * 40),
                Candidate("Ethereum", "N/A", "0x" + "2" * 40),
            ],
        )

    def test_incomplete_rows_are_dropped(self) -> None:
        raw = json.dumps([{"blockchain": "Polygon"}, "junk", {"blockchain": "Polygon", "contract_address": "0xabc"}])
        with self.assertLogs("monitor.discovery", level="WARNING"):
            rows = parse_candidates(raw)
        self.assertEqual([r.contract_address for r in rows], ["0xabc"])

    def test_empty_list_is_not_an_error(self) -> None:
        self.assertEqual(parse_candidates("[]\n"), [])

    def test_unusable_output_raises(self) -> None:
        for raw in ("", "   ", "Traceback (most recent call last)", '{"blockchain": "Polygon"}'):
            with self.assertRaises(DiscoveryUnavailable):
                parse_candidates(raw)


class ScraperDiscoveryTests(unittest.IsolatedAsyncioTestCase):
    def _script(self, tmpdir: str, body: str) -> str:
        path = Path(tmpdir) / "scraper.py"
        path.write_text(textwrap.dedent(body), encoding="utf-8")
        return str(path)

    async def test_reads_candidates_from_stdout(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            script = self._script(
                tmpdir,
                """
                import json, sys
                print("scraping...", file=sys.stderr)
                print(json.dumps([{"blockchain": "Polygon", "ticker": "NEW", "contract_address": "0x%s"}]))
                """
                % ("3" * 40),
            )
            discovery = ScraperDiscovery(script, python_executable=sys.executable, timeout_seconds=30)
            with self.assertLogs("monitor.discovery", level="INFO"):
                rows = await discovery.fetch_candidates()
        self.assertEqual(rows, [Candidate("Polygon", "NEW", "0x" + "3" * 40)])

    async def test_non_zero_exit_is_unavailable(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            script = self._script(tmpdir, "import sys\nprint('[]')\nsys.exit(3)\n")
            discovery = ScraperDiscovery(script, python_executable=sys.executable, timeout_seconds=30)
            with self.assertRaises(DiscoveryUnavailable) as ctx:
                await discovery.fetch_candidates()
        self.assertIn("code 3", str(ctx.exception))

    async def test_timeout_kills_scraper(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            script = self._script(tmpdir, "import time\ntime.sleep(30)\n")
            discovery = ScraperDiscovery(script, python_executable=sys.executable, timeout_seconds=0.5)
            with self.assertRaises(DiscoveryUnavailable) as ctx:
                await discovery.fetch_candidates()
        self.assertIn("timed out", str(ctx.exception))

    async def test_missing_script_is_unavailable(self) -> None:
        discovery = ScraperDiscovery("/definitely/not/here/scraper.py", python_executable=sys.executable)
        with self.assertRaises(DiscoveryUnavailable):
            await discovery.fetch_candidates()


if __name__ == "__main__":
    unittest.main()
