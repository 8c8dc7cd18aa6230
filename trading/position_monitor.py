"""Trailing stop-loss state machine for one held position.

WATCHING -> TRIGGERED -> SOLD. The high-water mark only ever rises; the trigger fires when a
quote drops strictly below `high_water_mark * (1 - stop_loss_fraction)`, evaluated on every
poll against the ceiling as updated by that same poll. Once triggered, polling stops and the
state never returns to WATCHING, even if the sell fails.
"""

from __future__ import annotations

import asyncio
import logging
from decimal import Decimal
from typing import Awaitable, Callable

import config
from monitor.price_oracle import PriceOracle
from trading.errors import TransientFeedError, short_error_text
from trading.models import MonitorPhase, MonitorState, Position, to_decimal

logger = logging.getLogger(__name__)

TransitionListener = Callable[[MonitorState, str], None]
SleepFn = Callable[[float], Awaitable[None]]


def resolve_stop_loss_fraction(value: Decimal | float | str | None = None) -> Decimal:
    """Configured or explicit trailing fraction; must lie strictly between 0 and 1."""
    fraction = to_decimal(value if value is not None else getattr(config, "STOP_LOSS_FRACTION", 0.001))
    if not (Decimal("0") < fraction < Decimal("1")):
        raise ValueError(f"stop_loss_fraction must be in (0, 1), got {fraction}")
    return fraction


class PositionMonitor:
    def __init__(
        self,
        position: Position,
        oracle: PriceOracle,
        *,
        stop_loss_fraction: Decimal | float | str | None = None,
        poll_interval_seconds: float | None = None,
        on_transition: TransitionListener | None = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        fraction = resolve_stop_loss_fraction(stop_loss_fraction)
        if poll_interval_seconds is None:
            poll_interval_seconds = float(getattr(config, "POLL_INTERVAL_SECONDS", 5.0))
        self._state = MonitorState(position=position, stop_loss_fraction=fraction)
        self._oracle = oracle
        self._poll_interval = max(0.0, float(poll_interval_seconds))
        self._on_transition = on_transition
        self._sleep = sleep

    @property
    def position(self) -> Position:
        return self._state.position

    @property
    def state(self) -> MonitorState:
        return self._state

    @property
    def phase(self) -> MonitorPhase:
        return self._state.phase

    @property
    def high_water_mark(self) -> Decimal:
        return self._state.high_water_mark

    @property
    def triggered(self) -> bool:
        return self._state.phase is not MonitorPhase.WATCHING

    def _notify(self, event: str) -> None:
        if self._on_transition is None:
            return
        try:
            self._on_transition(self._state, event)
        except Exception:
            logger.exception("MONITOR_LISTENER_FAILED token=%s event=%s", self.position.ticker, event)

    def evaluate(self, value: Decimal) -> bool:
        """Apply one observed position value; True once the stop-loss has fired."""
        state = self._state
        if state.phase is not MonitorPhase.WATCHING:
            return True
        state.last_value = value
        if value > state.high_water_mark:
            state.high_water_mark = value
            logger.info(
                "HWM_UPDATE token=%s chain=%s hwm=%s",
                self.position.ticker,
                self.position.blockchain,
                value,
            )
            self._notify("high_water_mark")
        threshold = state.stop_threshold()
        if value < threshold:
            state.phase = MonitorPhase.TRIGGERED
            state.trigger_value = value
            state.trigger_reason = "stop_loss"
            logger.warning(
                "STOP_LOSS_TRIGGER token=%s chain=%s value=%s hwm=%s threshold=%s fraction=%s",
                self.position.ticker,
                self.position.blockchain,
                value,
                state.high_water_mark,
                threshold,
                state.stop_loss_fraction,
            )
            self._notify("stop_loss")
            return True
        return False

    async def poll(self) -> bool:
        """Fetch one quote and evaluate it. Feed failures are logged and change nothing."""
        if self.triggered:
            return True
        position = self.position
        self._state.polls += 1
        try:
            quote = await self._oracle.get_quote(position.route.dex_id, position.token_path_out, position.held_amount)
        except TransientFeedError as exc:
            self._state.feed_errors += 1
            logger.warning(
                "PRICE_FEED_ERROR token=%s chain=%s errors=%s err=%s",
                position.ticker,
                position.blockchain,
                self._state.feed_errors,
                short_error_text(exc),
            )
            return False
        logger.debug("POSITION_VALUE token=%s value=%s hwm=%s", position.ticker, quote.output_amount, self.high_water_mark)
        return self.evaluate(quote.output_amount)

    async def watch(self) -> "PositionMonitor":
        """Poll, then wait a fixed delay, until the stop-loss fires."""
        logger.info(
            "MONITOR_START token=%s chain=%s amount=%s fraction=%s interval=%.1fs",
            self.position.ticker,
            self.position.blockchain,
            self.position.held_amount,
            self._state.stop_loss_fraction,
            self._poll_interval,
        )
        while not await self.poll():
            await self._sleep(self._poll_interval)
        return self

    def force_trigger(self, reason: str) -> None:
        """Move to TRIGGERED without a price check (batch liquidation)."""
        if self.triggered:
            return
        self._state.phase = MonitorPhase.TRIGGERED
        self._state.trigger_reason = str(reason or "liquidation")
        logger.info("FORCED_TRIGGER token=%s chain=%s reason=%s", self.position.ticker, self.position.blockchain, reason)
        self._notify(self._state.trigger_reason)

    def mark_sold(self, realized_amount: Decimal) -> None:
        if self._state.phase is not MonitorPhase.TRIGGERED:
            raise RuntimeError(f"cannot mark {self.position.ticker} sold from phase {self._state.phase.value}")
        self._state.phase = MonitorPhase.SOLD
        self._state.realized_amount = realized_amount
        self.position.sold = True
        self._notify("sold")
