"""expand.network DEX quote client."""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Sequence

import config
from trading.errors import TransientFeedError
from trading.models import Quote, format_amount, to_decimal
from utils.http_client import ResilientHttpClient

logger = logging.getLogger(__name__)

QUOTE_SOURCE = "expand_quote"


class PriceOracle:
    def __init__(self, http: ResilientHttpClient, *, api_base: str | None = None, api_key: str | None = None) -> None:
        self._http = http
        self._api_base = str(api_base or getattr(config, "EXPAND_API_BASE", "https://api.expand.network")).rstrip("/")
        self._api_key = str(api_key if api_key is not None else getattr(config, "X_API_KEY", "") or "")

    async def get_quote(self, dex_id: str, path: Sequence[str], amount_in: Decimal | str) -> Quote:
        hops = tuple(str(p) for p in path)
        if len(hops) < 2:
            raise TransientFeedError(f"quote path needs at least two hops: {hops!r}")
        amount = to_decimal(amount_in)
        result = await self._http.get_json(
            f"{self._api_base}/dex/getprice",
            source=QUOTE_SOURCE,
            params={"dexId": str(dex_id), "path": ",".join(hops), "amountIn": format_amount(amount)},
            headers={"x-api-key": self._api_key},
        )
        if not result.ok:
            raise TransientFeedError(
                f"quote request failed dex={dex_id} status={result.status} err={result.error}",
                detail=result.data,
            )
        amounts = self._parse_amounts_out(result.data)
        return Quote(input_amount=amount, output_amount=amounts[-1], path=hops, amounts_out=amounts)

    @staticmethod
    def _parse_amounts_out(payload: Any) -> tuple[Decimal, ...]:
        data = payload.get("data") if isinstance(payload, dict) else None
        raw = data.get("amountsOut") if isinstance(data, dict) else None
        if not isinstance(raw, (list, tuple)) or not raw:
            raise TransientFeedError(f"quote payload missing amountsOut: {payload!r}"[:300], detail=payload)
        try:
            return tuple(to_decimal(x) for x in raw)
        except ValueError as exc:
            raise TransientFeedError(f"quote payload has malformed amountsOut: {exc}", detail=payload) from exc
