"""Discovery loop and runtime wiring."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, Protocol, Sequence

import config
from monitor.discovery import ScraperDiscovery
from monitor.price_oracle import PriceOracle
from trading.acquisition import AcquisitionPipeline
from trading.errors import DiscoveryError, short_error_text
from trading.journal import TradeJournal
from trading.models import Candidate, SaleManifest, format_amount
from trading.portfolio import PortfolioCoordinator
from trading.position_monitor import SleepFn
from trading.swap_executor import SwapExecutorCache, TransactionSigner
from utils.http_client import ResilientHttpClient, format_source_stats_brief

logger = logging.getLogger(__name__)


class DiscoverySource(Protocol):
    async def fetch_candidates(self) -> list[Candidate]: ...


class DiscoveryLoop:
    """Polls discovery on a fixed cadence and launches each batch without waiting for it."""

    def __init__(
        self,
        discovery: DiscoverySource,
        pipeline: AcquisitionPipeline,
        *,
        interval_seconds: float | None = None,
        dedup_ttl_seconds: float | None = None,
        resume_rounds: int | None = None,
        resume_delay_seconds: float | None = None,
        http: ResilientHttpClient | None = None,
        journal: TradeJournal | None = None,
        sleep: SleepFn = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._discovery = discovery
        self._pipeline = pipeline
        if interval_seconds is None:
            interval_seconds = float(getattr(config, "DISCOVERY_INTERVAL_SECONDS", 600.0))
        if dedup_ttl_seconds is None:
            dedup_ttl_seconds = float(getattr(config, "DISCOVERY_DEDUP_TTL_SECONDS", 86400.0))
        if resume_rounds is None:
            resume_rounds = int(getattr(config, "SELL_RESUME_ROUNDS", 1))
        if resume_delay_seconds is None:
            resume_delay_seconds = float(getattr(config, "SELL_RESUME_DELAY_SECONDS", 60.0))
        self._interval = max(0.0, float(interval_seconds))
        self._dedup_ttl = max(0.0, float(dedup_ttl_seconds))
        self._resume_rounds = max(0, int(resume_rounds))
        self._resume_delay = max(0.0, float(resume_delay_seconds))
        self._http = http
        self._journal = journal
        self._sleep = sleep
        self._clock = clock
        self._seen_until: dict[tuple[str, str], float] = {}
        self._batches: set[asyncio.Task] = set()
        self.cycles = 0

    @property
    def in_flight(self) -> int:
        return len(self._batches)

    def _fresh(self, candidates: Sequence[Candidate]) -> list[Candidate]:
        if self._dedup_ttl <= 0:
            return list(candidates)
        now = self._clock()
        self._seen_until = {k: until for k, until in self._seen_until.items() if until > now}
        fresh: list[Candidate] = []
        for candidate in candidates:
            key = candidate.key
            if key in self._seen_until:
                logger.info("CANDIDATE_SKIP token=%s chain=%s reason=duplicate_candidate", candidate.ticker, candidate.blockchain)
                if self._journal is not None:
                    self._journal.record_candidate(
                        candidate, decision_stage="discovery", decision="skip", reason="duplicate_candidate"
                    )
                continue
            self._seen_until[key] = now + self._dedup_ttl
            fresh.append(candidate)
        return fresh

    async def run_cycle(self) -> asyncio.Task | None:
        """One discovery attempt; returns the background batch task, if one was started."""
        self.cycles += 1
        if self._http is not None:
            logger.info("HTTP_STATS %s", format_source_stats_brief(self._http.snapshot_stats(reset=True)))
        try:
            candidates = await self._discovery.fetch_candidates()
        except DiscoveryError as exc:
            logger.warning("DISCOVERY_FAILED cycle=%s err=%s", self.cycles, short_error_text(exc))
            return None
        except Exception:
            logger.exception("DISCOVERY_CRASH cycle=%s", self.cycles)
            return None

        candidates = self._fresh(candidates)
        if not candidates:
            logger.info("DISCOVERY_EMPTY cycle=%s in_flight=%s", self.cycles, self.in_flight)
            return None

        logger.info(
            "BATCH_START cycle=%s candidates=%s tickers=%s",
            self.cycles,
            len(candidates),
            ",".join(c.ticker for c in candidates),
        )
        task = asyncio.create_task(self._process_batch(candidates), name=f"batch:{self.cycles}")
        self._batches.add(task)
        task.add_done_callback(self._on_batch_done)
        return task

    async def _process_batch(self, candidates: Sequence[Candidate]) -> SaleManifest:
        manifest = await self._pipeline.run(candidates)
        for round_no in range(1, self._resume_rounds + 1):
            if not manifest.failed:
                break
            logger.warning(
                "SELL_RESUME round=%s/%s failed=%s delay=%.0fs",
                round_no,
                self._resume_rounds,
                len(manifest.failed),
                self._resume_delay,
            )
            await self._sleep(self._resume_delay)
            manifest = await self._pipeline.coordinator.retry_failed(manifest)
        return manifest

    def _on_batch_done(self, task: asyncio.Task) -> None:
        self._batches.discard(task)
        if task.cancelled():
            logger.info("BATCH_CANCELLED task=%s", task.get_name())
            return
        exc = task.exception()
        if exc is not None:
            logger.error("BATCH_CRASHED task=%s err=%s", task.get_name(), short_error_text(exc), exc_info=exc)
            return
        manifest: SaleManifest = task.result()
        logger.info(
            "BATCH_DONE task=%s positions=%s failed=%s realized_total=%s",
            task.get_name(),
            len(manifest.disposals),
            len(manifest.failed),
            format_amount(manifest.realized_total),
        )

    async def run(self, max_cycles: int | None = None) -> None:
        logger.info("DISCOVERY_LOOP start interval=%.0fs", self._interval)
        while max_cycles is None or self.cycles < max_cycles:
            await self.run_cycle()
            if max_cycles is not None and self.cycles >= max_cycles:
                break
            await self._sleep(self._interval)

    async def drain(self) -> None:
        """Wait for every in-flight batch to finish."""
        while self._batches:
            await asyncio.gather(*list(self._batches), return_exceptions=True)

    async def close(self) -> None:
        batches = list(self._batches)
        for task in batches:
            task.cancel()
        if batches:
            await asyncio.gather(*batches, return_exceptions=True)


@dataclass
class Runtime:
    http: ResilientHttpClient
    oracle: PriceOracle
    journal: TradeJournal
    coordinator: PortfolioCoordinator
    pipeline: AcquisitionPipeline
    loop: DiscoveryLoop

    async def close(self) -> None:
        await self.loop.close()
        await self.http.close()


def build_runtime() -> Runtime:
    http = ResilientHttpClient(
        timeout_seconds=float(getattr(config, "HTTP_TIMEOUT_SECONDS", 15.0)),
        headers={"Accept": "application/json", "Content-Type": "application/json"},
        source_limits={"expand_quote": 8, "expand_tx": 2},
    )
    oracle = PriceOracle(http)
    executors = SwapExecutorCache(http, TransactionSigner(), oracle)
    journal = TradeJournal()
    coordinator = PortfolioCoordinator(oracle, executors, journal=journal)
    pipeline = AcquisitionPipeline(executors, coordinator, journal=journal)
    loop = DiscoveryLoop(ScraperDiscovery(), pipeline, http=http, journal=journal)
    return Runtime(http=http, oracle=oracle, journal=journal, coordinator=coordinator, pipeline=pipeline, loop=loop)
