"""Buys discovered candidates and hands the resulting positions to the portfolio coordinator."""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Callable, Sequence

import config
from trading.errors import ConfigurationGap, ExecutionError, SwapUnconfirmed, short_error_text
from trading.journal import TradeJournal
from trading.models import Candidate, ChainRoute, Position, SaleManifest, format_amount, to_decimal
from trading.portfolio import ExecutorFactory, PortfolioCoordinator
from trading.routing import resolve_route

logger = logging.getLogger(__name__)

RouteResolver = Callable[[str], ChainRoute]


class AcquisitionPipeline:
    def __init__(
        self,
        executor_for: ExecutorFactory,
        coordinator: PortfolioCoordinator,
        *,
        amount_in: Decimal | str | None = None,
        route_resolver: RouteResolver = resolve_route,
        journal: TradeJournal | None = None,
    ) -> None:
        self._executor_for = executor_for
        self._coordinator = coordinator
        self._amount_in = to_decimal(amount_in if amount_in is not None else getattr(config, "BUY_AMOUNT_IN", "1000"))
        if self._amount_in <= 0:
            raise ValueError(f"BUY_AMOUNT_IN must be positive, got {self._amount_in}")
        self._resolve_route = route_resolver
        self._journal = journal

    def _record(self, candidate: Candidate, *, stage: str, decision: str, reason: str, **extra: object) -> None:
        if self._journal is not None:
            self._journal.record_candidate(candidate, decision_stage=stage, decision=decision, reason=reason, **extra)

    async def buy(self, candidate: Candidate) -> Position | None:
        """Buy one candidate; None when it was skipped or the buy failed."""
        try:
            route = self._resolve_route(candidate.blockchain)
        except ConfigurationGap as exc:
            logger.info(
                "CANDIDATE_SKIP token=%s chain=%s reason=missing_route detail=%s",
                candidate.ticker,
                candidate.blockchain,
                exc,
            )
            self._record(candidate, stage="route", decision="skip", reason="missing_route", detail=str(exc))
            return None

        path = (route.quote_asset_address, candidate.contract_address)
        logger.info(
            "AUTO_BUY start token=%s chain=%s address=%s amount_in=%s",
            candidate.ticker,
            candidate.blockchain,
            candidate.contract_address,
            format_amount(self._amount_in),
        )
        try:
            result = await self._executor_for(route).execute_swap(path, self._amount_in)
        except ExecutionError as exc:
            logger.error(
                "AUTO_BUY failed token=%s chain=%s code=%s err=%s",
                candidate.ticker,
                candidate.blockchain,
                exc.code,
                short_error_text(exc),
            )
            if isinstance(exc, SwapUnconfirmed):
                # Tokens may have arrived; the hash is kept so the buy can be reconciled by hand.
                self._record(candidate, stage="buy", decision="fail", reason="buy_unconfirmed", tx_hash=exc.tx_hash)
            else:
                self._record(candidate, stage="buy", decision="fail", reason="buy_fail", error=short_error_text(exc))
            return None

        if result.amount_out <= 0:
            logger.error("AUTO_BUY zero_output token=%s chain=%s tx=%s", candidate.ticker, candidate.blockchain, result.swap_tx_hash)
            self._record(candidate, stage="buy", decision="fail", reason="zero_output", tx_hash=result.swap_tx_hash)
            return None

        position = Position.from_buy(candidate, route, result)
        logger.info(
            "AUTO_BUY done token=%s chain=%s bought=%s tx=%s",
            candidate.ticker,
            candidate.blockchain,
            format_amount(position.held_amount),
            result.swap_tx_hash,
        )
        self._record(
            candidate,
            stage="buy",
            decision="open",
            reason="buy_ok",
            position_id=position.position_id,
            held_amount=format_amount(position.held_amount),
            tx_hash=result.swap_tx_hash,
        )
        return position

    async def acquire(self, candidates: Sequence[Candidate]) -> list[Position]:
        positions: list[Position] = []
        for candidate in candidates:
            position = await self.buy(candidate)
            if position is not None:
                positions.append(position)
        logger.info("ACQUIRE_DONE candidates=%s positions=%s", len(candidates), len(positions))
        return positions

    async def run(self, candidates: Sequence[Candidate]) -> SaleManifest:
        positions = await self.acquire(candidates)
        if not positions:
            return SaleManifest()
        return await self._coordinator.run(positions)

    @property
    def coordinator(self) -> PortfolioCoordinator:
        return self._coordinator
