"""Races the stop-loss monitors of one batch and liquidates the whole batch on the first trigger."""

from __future__ import annotations

import asyncio
import logging
from decimal import Decimal
from typing import Callable, Sequence

import config
from monitor.price_oracle import PriceOracle
from trading.errors import ExecutionError, SwapUnconfirmed, short_error_text
from trading.journal import TradeJournal
from trading.models import ChainRoute, Disposal, MonitorPhase, Position, SaleManifest, format_amount
from trading.position_monitor import PositionMonitor, SleepFn, resolve_stop_loss_fraction
from trading.swap_executor import SwapExecutor

logger = logging.getLogger(__name__)

ExecutorFactory = Callable[[ChainRoute], SwapExecutor]


class PortfolioCoordinator:
    def __init__(
        self,
        oracle: PriceOracle,
        executor_for: ExecutorFactory,
        *,
        stop_loss_fraction: Decimal | float | str | None = None,
        poll_interval_seconds: float | None = None,
        sell_retry_attempts: int | None = None,
        sell_retry_delay_seconds: float | None = None,
        journal: TradeJournal | None = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self._oracle = oracle
        self._executor_for = executor_for
        self._stop_loss_fraction = resolve_stop_loss_fraction(stop_loss_fraction)
        self._poll_interval = poll_interval_seconds
        if sell_retry_attempts is None:
            sell_retry_attempts = int(getattr(config, "SELL_RETRY_ATTEMPTS", 3) or 1)
        if sell_retry_delay_seconds is None:
            sell_retry_delay_seconds = float(getattr(config, "SELL_RETRY_DELAY_SECONDS", 5.0) or 0.0)
        self._sell_attempts = max(1, int(sell_retry_attempts))
        self._sell_retry_delay = max(0.0, float(sell_retry_delay_seconds))
        self._journal = journal
        self._sleep = sleep
        self._monitors: dict[Position, PositionMonitor] = {}

    def monitor_for(self, position: Position) -> PositionMonitor | None:
        return self._monitors.get(position)

    def _build_monitor(self, position: Position) -> PositionMonitor:
        monitor = PositionMonitor(
            position,
            self._oracle,
            stop_loss_fraction=self._stop_loss_fraction,
            poll_interval_seconds=self._poll_interval,
            on_transition=self._journal.record_transition if self._journal is not None else None,
            sleep=self._sleep,
        )
        self._monitors[position] = monitor
        return monitor

    async def run(self, positions: Sequence[Position]) -> SaleManifest:
        """Monitor every position until one triggers, then sell it and liquidate the rest."""
        manifest = SaleManifest()
        if not positions:
            return manifest
        monitors = [self._build_monitor(p) for p in positions]
        logger.info("PORTFOLIO_START positions=%s", len(monitors))

        primary = await self._race(monitors)
        manifest.disposals.append(await self._dispose(primary, primary=True, reason=primary.state.trigger_reason))
        for monitor in monitors:
            if monitor is primary:
                continue
            monitor.force_trigger("liquidation")
            manifest.disposals.append(await self._dispose(monitor, primary=False, reason="liquidation"))

        await self._finish(manifest)
        return manifest

    async def retry_failed(self, manifest: SaleManifest) -> SaleManifest:
        """Re-attempt failed sells whose monitors are still TRIGGERED; no price re-check.

        A sell that was broadcast but never confirmed is only re-checked by its receipt.
        It is sold again only when that receipt shows a revert.
        """
        out = SaleManifest()
        for disposal in manifest.disposals:
            monitor = self._monitors.get(disposal.position)
            if disposal.ok or monitor is None or monitor.phase is not MonitorPhase.TRIGGERED:
                out.disposals.append(disposal)
                continue
            if disposal.unconfirmed:
                out.disposals.append(await self._reconcile(monitor, disposal))
                continue
            logger.info("AUTO_SELL resume token=%s previous_attempts=%s", disposal.position.ticker, disposal.attempts)
            retried = await self._dispose(monitor, primary=disposal.primary, reason=disposal.reason)
            retried.attempts += disposal.attempts
            out.disposals.append(retried)
        await self._finish(out)
        return out

    async def _reconcile(self, monitor: PositionMonitor, disposal: Disposal) -> Disposal:
        position = monitor.position
        executor = self._executor_for(position.route)
        try:
            confirmed = await executor.confirm_swap(disposal.pending_tx_hash, disposal.expected_amount)
        except SwapUnconfirmed as exc:
            disposal.error = short_error_text(exc)
            logger.error("AUTO_SELL still_unconfirmed token=%s tx=%s err=%s", position.ticker, disposal.pending_tx_hash, disposal.error)
            if self._journal is not None:
                self._journal.record_disposal(disposal)
            return disposal

        if not confirmed:
            logger.warning("AUTO_SELL reverted token=%s tx=%s selling again", position.ticker, disposal.pending_tx_hash)
            retried = await self._dispose(monitor, primary=disposal.primary, reason=disposal.reason)
            retried.attempts += disposal.attempts
            return retried

        realized = disposal.expected_amount if disposal.expected_amount is not None else Decimal("0")
        if disposal.expected_amount is None:
            logger.warning("SWAP_OUTPUT_UNKNOWN token=%s tx=%s", position.ticker, disposal.pending_tx_hash)
        disposal.error = ""
        disposal.error_code = ""
        disposal.realized_amount = realized
        monitor.mark_sold(realized)
        logger.info(
            "AUTO_SELL confirmed token=%s chain=%s realized=%s tx=%s",
            position.ticker,
            position.blockchain,
            format_amount(realized),
            disposal.pending_tx_hash,
        )
        return disposal

    async def _race(self, monitors: list[PositionMonitor]) -> PositionMonitor:
        order: dict[asyncio.Task, int] = {
            asyncio.create_task(m.watch(), name=f"monitor:{m.position.ticker}"): idx for idx, m in enumerate(monitors)
        }
        pending: set[asyncio.Task] = set(order)
        winner: PositionMonitor | None = None
        try:
            while pending and winner is None:
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                # Same-tick finishers resolve by registration order.
                for task in sorted(done, key=order.__getitem__):
                    monitor = monitors[order[task]]
                    if task.cancelled():
                        continue
                    exc = task.exception()
                    if exc is not None:
                        logger.error(
                            "MONITOR_CRASHED token=%s err=%s",
                            monitor.position.ticker,
                            short_error_text(exc),
                            exc_info=exc,
                        )
                        continue
                    if winner is None:
                        winner = monitor
        finally:
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

        if winner is None:
            winner = monitors[0]
            logger.error("MONITORS_LOST positions=%s liquidating batch", len(monitors))
            winner.force_trigger("monitor_lost")
        logger.warning(
            "PRIMARY_TRIGGER token=%s chain=%s reason=%s value=%s hwm=%s",
            winner.position.ticker,
            winner.position.blockchain,
            winner.state.trigger_reason,
            winner.state.trigger_value,
            winner.high_water_mark,
        )
        return winner

    async def _dispose(self, monitor: PositionMonitor, *, primary: bool, reason: str) -> Disposal:
        position = monitor.position
        disposal = Disposal(position=position, reason=reason, primary=primary)
        executor = self._executor_for(position.route)
        for attempt in range(1, self._sell_attempts + 1):
            disposal.attempts += 1
            logger.info(
                "AUTO_SELL start token=%s chain=%s amount=%s primary=%s reason=%s attempt=%s/%s",
                position.ticker,
                position.blockchain,
                format_amount(position.held_amount),
                primary,
                reason,
                attempt,
                self._sell_attempts,
            )
            try:
                result = await executor.execute_swap(position.token_path_out, position.held_amount)
            except SwapUnconfirmed as exc:
                # Already broadcast; another attempt could sell twice.
                disposal.error = short_error_text(exc)
                disposal.error_code = exc.code
                disposal.pending_tx_hash = exc.tx_hash
                disposal.expected_amount = exc.expected_amount
                logger.error(
                    "AUTO_SELL unconfirmed token=%s attempt=%s/%s tx=%s err=%s",
                    position.ticker,
                    attempt,
                    self._sell_attempts,
                    exc.tx_hash,
                    disposal.error,
                )
                break
            except ExecutionError as exc:
                disposal.error = short_error_text(exc)
                disposal.error_code = exc.code
                logger.error(
                    "AUTO_SELL failed token=%s attempt=%s/%s code=%s err=%s",
                    position.ticker,
                    attempt,
                    self._sell_attempts,
                    exc.code,
                    disposal.error,
                )
                if attempt < self._sell_attempts:
                    await self._sleep(self._sell_retry_delay)
                continue
            except Exception as exc:
                disposal.error = short_error_text(exc)
                disposal.error_code = "E_UNEXPECTED"
                logger.exception("AUTO_SELL crashed token=%s", position.ticker)
                break

            disposal.error = ""
            disposal.error_code = ""
            disposal.realized_amount = result.amount_out
            monitor.mark_sold(result.amount_out)
            logger.info(
                "AUTO_SELL done token=%s chain=%s realized=%s tx=%s",
                position.ticker,
                position.blockchain,
                format_amount(result.amount_out),
                result.swap_tx_hash,
            )
            return disposal

        # Sell exhausted: monitor stays TRIGGERED so retry_failed can pick it up.
        logger.error(
            "AUTO_SELL gave_up token=%s chain=%s attempts=%s err=%s",
            position.ticker,
            position.blockchain,
            disposal.attempts,
            disposal.error,
        )
        if self._journal is not None:
            self._journal.record_disposal(disposal)
        return disposal

    async def _finish(self, manifest: SaleManifest) -> None:
        for disposal in manifest.disposals:
            if disposal.ok:
                self._monitors.pop(disposal.position, None)
        logger.info(
            "PORTFOLIO_DONE sold=%s failed=%s realized_total=%s",
            len(manifest.disposals) - len(manifest.failed),
            len(manifest.failed),
            format_amount(manifest.realized_total),
        )
        if self._journal is not None:
            await asyncio.to_thread(self._journal.write_manifest, manifest)
