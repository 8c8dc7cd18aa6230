"""New-listing discovery via the external roadmap scraper process."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import time
from typing import Any

import config
from trading.errors import DiscoveryUnavailable, short_error_text
from trading.models import Candidate

logger = logging.getLogger(__name__)


def parse_candidates(raw: str) -> list[Candidate]:
    """Decode the scraper's stdout; rows missing a chain or address are dropped."""
    text = str(raw or "").strip()
    if not text:
        raise DiscoveryUnavailable("scraper printed nothing")
    try:
        payload: Any = json.loads(text)
    except ValueError as exc:
        raise DiscoveryUnavailable(f"scraper output is not JSON: {short_error_text(exc)}") from exc
    if not isinstance(payload, list):
        raise DiscoveryUnavailable(f"scraper output is not a list: {type(payload).__name__}")
    candidates: list[Candidate] = []
    for row in payload:
        try:
            candidates.append(Candidate.from_record(row))
        except ValueError as exc:
            logger.warning("DISCOVERY_ROW_SKIP reason=%s", short_error_text(exc))
    return candidates


class ScraperDiscovery:
    def __init__(
        self,
        script_path: str | None = None,
        *,
        python_executable: str | None = None,
        timeout_seconds: float | None = None,
    ) -> None:
        self.script_path = str(script_path or getattr(config, "SCRAPER_SCRIPT", ""))
        self.python_executable = str(python_executable or getattr(config, "SCRAPER_PYTHON", "python3"))
        self.timeout_seconds = float(timeout_seconds or getattr(config, "SCRAPER_TIMEOUT_SECONDS", 300.0))

    async def fetch_candidates(self) -> list[Candidate]:
        if not os.path.isfile(self.script_path):
            raise DiscoveryUnavailable(f"scraper script not found: {self.script_path}")
        started = time.monotonic()
        try:
            proc = await asyncio.create_subprocess_exec(
                self.python_executable,
                self.script_path,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise DiscoveryUnavailable(f"scraper could not start: {short_error_text(exc)}") from exc

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout_seconds)
        except asyncio.TimeoutError as exc:
            proc.kill()
            await proc.wait()
            raise DiscoveryUnavailable(f"scraper timed out after {self.timeout_seconds:.0f}s") from exc

        err_text = stderr.decode("utf-8", errors="replace").strip()
        if err_text:
            logger.warning("SCRAPER_STDERR %s", short_error_text(err_text, limit=500))
        if proc.returncode != 0:
            raise DiscoveryUnavailable(f"scraper exited with code {proc.returncode}")

        candidates = parse_candidates(stdout.decode("utf-8", errors="replace"))
        logger.info(
            "DISCOVERY_OK candidates=%s elapsed=%.1fs script=%s",
            len(candidates),
            time.monotonic() - started,
            self.script_path,
        )
        return candidates
