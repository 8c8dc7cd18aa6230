"""Value types shared by the acquisition, monitoring and liquidation stages."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any

from utils.addressing import normalize_address
from utils.log_contracts import position_id_for


def to_decimal(value: Any) -> Decimal:
    """Parse a decimal string/number coming off the wire; raises ValueError on junk."""
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value).strip())
        except (InvalidOperation, TypeError) as exc:
            raise ValueError(f"not a decimal amount: {value!r}") from exc
    if not result.is_finite():
        raise ValueError(f"not a finite amount: {value!r}")
    return result


def format_amount(value: Decimal) -> str:
    """Plain (non-exponent) decimal string for the swap/quote APIs."""
    text = format(value, "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text or "0"


class MonitorPhase(str, Enum):
    WATCHING = "WATCHING"
    TRIGGERED = "TRIGGERED"
    SOLD = "SOLD"


@dataclass(frozen=True)
class ChainRoute:
    blockchain: str
    chain_id: str
    dex_id: str
    quote_asset_address: str


@dataclass(frozen=True)
class Candidate:
    blockchain: str
    ticker: str
    contract_address: str

    @classmethod
    def from_record(cls, row: Any) -> "Candidate":
        if not isinstance(row, dict):
            raise ValueError(f"candidate row is not an object: {row!r}")
        blockchain = str(row.get("blockchain", "") or "").strip()
        address = str(row.get("contract_address", row.get("contractAddress", "")) or "").strip()
        if not blockchain or not address:
            raise ValueError(f"candidate row lacks blockchain/contract_address: {row!r}")
        ticker = str(row.get("ticker", "") or "").strip() or "N/A"
        return cls(blockchain=blockchain, ticker=ticker, contract_address=address)

    @property
    def key(self) -> tuple[str, str]:
        return self.blockchain.strip().lower(), normalize_address(self.contract_address)


@dataclass(frozen=True)
class Quote:
    input_amount: Decimal
    output_amount: Decimal
    path: tuple[str, ...]
    amounts_out: tuple[Decimal, ...] = ()


@dataclass(frozen=True)
class SwapResult:
    path: tuple[str, ...]
    amount_in: Decimal
    amount_out: Decimal
    swap_tx_hash: str = ""
    approval_tx_hash: str = ""


@dataclass(eq=False)
class Position:
    ticker: str
    contract_address: str
    blockchain: str
    quote_asset: str
    held_amount: Decimal
    route: ChainRoute
    token_path_out: tuple[str, ...]
    token_path_in: tuple[str, ...]
    cost_amount: Decimal = Decimal("0")
    buy_tx_hash: str = ""
    opened_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    sold: bool = False

    @classmethod
    def from_buy(cls, candidate: Candidate, route: ChainRoute, swap: SwapResult) -> "Position":
        token = candidate.contract_address
        quote_asset = route.quote_asset_address
        return cls(
            ticker=candidate.ticker,
            contract_address=token,
            blockchain=candidate.blockchain,
            quote_asset=quote_asset,
            held_amount=swap.amount_out,
            route=route,
            token_path_out=(token, quote_asset),
            token_path_in=(quote_asset, token),
            cost_amount=swap.amount_in,
            buy_tx_hash=swap.swap_tx_hash,
        )

    @property
    def position_id(self) -> str:
        return position_id_for(self.blockchain, self.contract_address, self.buy_tx_hash)

    def describe(self) -> dict[str, Any]:
        return {
            "position_id": self.position_id,
            "ticker": self.ticker,
            "blockchain": self.blockchain,
            "contract_address": self.contract_address,
            "quote_asset": self.quote_asset,
            "held_amount": format_amount(self.held_amount),
            "cost_amount": format_amount(self.cost_amount),
            "buy_tx_hash": self.buy_tx_hash,
            "opened_at": self.opened_at.isoformat(),
            "sold": self.sold,
        }


@dataclass
class MonitorState:
    position: Position
    stop_loss_fraction: Decimal
    high_water_mark: Decimal = Decimal("0")
    phase: MonitorPhase = MonitorPhase.WATCHING
    last_value: Decimal | None = None
    trigger_value: Decimal | None = None
    trigger_reason: str = ""
    realized_amount: Decimal | None = None
    polls: int = 0
    feed_errors: int = 0

    def stop_threshold(self) -> Decimal:
        return self.high_water_mark * (Decimal("1") - self.stop_loss_fraction)


@dataclass
class Disposal:
    position: Position
    reason: str
    primary: bool = False
    realized_amount: Decimal | None = None
    error: str = ""
    error_code: str = ""
    attempts: int = 0
    # Set when the swap was broadcast but never confirmed; it is reconciled, never re-sent.
    pending_tx_hash: str = ""
    expected_amount: Decimal | None = None

    @property
    def ok(self) -> bool:
        return self.realized_amount is not None and not self.error

    @property
    def unconfirmed(self) -> bool:
        return bool(self.pending_tx_hash) and not self.ok

    def as_dict(self) -> dict[str, Any]:
        row = self.position.describe()
        row.update(
            {
                "reason": self.reason,
                "primary": self.primary,
                "ok": self.ok,
                "realized_amount": None if self.realized_amount is None else format_amount(self.realized_amount),
                "error": self.error,
                "error_code": self.error_code,
                "attempts": self.attempts,
                "pending_tx_hash": self.pending_tx_hash,
            }
        )
        return row


@dataclass
class SaleManifest:
    disposals: list[Disposal] = field(default_factory=list)

    @property
    def primary(self) -> Disposal | None:
        for disposal in self.disposals:
            if disposal.primary:
                return disposal
        return None

    @property
    def failed(self) -> list[Disposal]:
        return [d for d in self.disposals if not d.ok]

    @property
    def realized_total(self) -> Decimal:
        return sum((d.realized_amount for d in self.disposals if d.ok and d.realized_amount is not None), Decimal("0"))

    def as_dict(self) -> dict[str, Any]:
        return {"disposals": [d.as_dict() for d in self.disposals]}
