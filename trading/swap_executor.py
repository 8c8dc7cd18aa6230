"""Approve-then-swap execution through expand.network transaction preparation.

expand.network builds the unsigned approval and swap transactions; we complete missing
nonce/gas fields from an RPC node (when configured), sign locally with eth_account and
hand the raw bytes back to expand.network for broadcast.
"""

from __future__ import annotations

import asyncio
import logging
from decimal import Decimal
from typing import Any, Sequence

from eth_account import Account
from web3 import HTTPProvider, Web3

import config
from monitor.price_oracle import PriceOracle
from trading.errors import (
    ApprovalRejected,
    ExecutionError,
    SwapTransportError,
    SwapUnconfirmed,
    TransactionRejected,
    TransientFeedError,
    short_error_text,
)
from trading.models import ChainRoute, SwapResult, format_amount, to_decimal
from utils.http_client import HttpResult, ResilientHttpClient

logger = logging.getLogger(__name__)

TX_SOURCE = "expand_tx"

_SIGNABLE_KEYS = {
    "nonce",
    "gas",
    "gasPrice",
    "maxFeePerGas",
    "maxPriorityFeePerGas",
    "to",
    "value",
    "data",
    "chainId",
    "type",
    "accessList",
}
_INT_KEYS = {"nonce", "gas", "gasPrice", "maxFeePerGas", "maxPriorityFeePerGas", "value", "chainId", "type"}


def _as_int(value: Any) -> int:
    if isinstance(value, int):
        return value
    text = str(value).strip().lower()
    if text.startswith("0x"):
        return int(text, 16)
    return int(Decimal(text))


class TransactionSigner:
    """Local signer for the configured wallet; thread-safe for `asyncio.to_thread` use."""

    def __init__(
        self,
        private_key: str | None = None,
        wallet_address: str | None = None,
        rpc_url: str | None = None,
    ) -> None:
        key = str(private_key if private_key is not None else getattr(config, "PRIVATE_KEY", "") or "")
        wallet = str(wallet_address if wallet_address is not None else getattr(config, "WALLET_ADDRESS", "") or "")
        if not key:
            raise ValueError("PRIVATE_KEY is empty")
        if not wallet:
            raise ValueError("WALLET_ADDRESS is empty")
        self.account = Account.from_key(key)
        self.wallet = Web3.to_checksum_address(wallet)
        if self.account.address.lower() != self.wallet.lower():
            raise ValueError("WALLET_ADDRESS does not match PRIVATE_KEY")

        rpc = str(rpc_url if rpc_url is not None else getattr(config, "RPC_URL", "") or "").strip()
        self.w3: Web3 | None = None
        if rpc:
            timeout = float(getattr(config, "RPC_TIMEOUT_SECONDS", 10.0) or 10.0)
            self.w3 = Web3(HTTPProvider(rpc, request_kwargs={"timeout": timeout}))
        # One broadcast at a time per wallet so pending-nonce lookups don't collide.
        self.submit_lock = asyncio.Lock()

    def complete(self, prepared: dict[str, Any], chain_id: str) -> dict[str, Any]:
        tx: dict[str, Any] = {}
        for key, value in prepared.items():
            if key not in _SIGNABLE_KEYS or value is None or value == "":
                continue
            tx[key] = _as_int(value) if key in _INT_KEYS else value
        if "to" in tx:
            tx["to"] = Web3.to_checksum_address(str(tx["to"]))
        tx.setdefault("value", 0)
        tx.setdefault("chainId", _as_int(chain_id))
        if "gas" not in tx:
            tx["gas"] = _as_int(getattr(config, "SWAP_GAS_LIMIT", "229880"))
        if "nonce" not in tx:
            if self.w3 is None:
                raise SwapTransportError("prepared transaction has no nonce and RPC_URL is unset")
            tx["nonce"] = int(self.w3.eth.get_transaction_count(self.wallet, "pending"))
        if "gasPrice" not in tx and "maxFeePerGas" not in tx:
            if self.w3 is None:
                raise SwapTransportError("prepared transaction has no gas price and RPC_URL is unset")
            tx["gasPrice"] = int(self.w3.eth.gas_price)
        return tx

    def sign(self, tx: dict[str, Any]) -> str:
        signed = self.account.sign_transaction(tx)
        raw_tx = getattr(signed, "raw_transaction", None)
        if raw_tx is None:
            raw_tx = getattr(signed, "rawTransaction", None)
        if raw_tx is None:
            raise TransactionRejected("signed transaction is missing raw bytes")
        return Web3.to_hex(raw_tx)

    def wait_for_receipt(self, tx_hash: str) -> int | None:
        """Receipt status (1 ok, 0 reverted) or None when no RPC node is configured."""
        if self.w3 is None or not tx_hash:
            return None
        timeout = int(float(getattr(config, "TX_RECEIPT_TIMEOUT_SECONDS", 120.0) or 120.0))
        receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout)
        return int(receipt.status)


class SwapExecutor:
    def __init__(
        self,
        route: ChainRoute,
        http: ResilientHttpClient,
        signer: TransactionSigner,
        oracle: PriceOracle,
        *,
        api_base: str | None = None,
        api_key: str | None = None,
        spender_address: str | None = None,
    ) -> None:
        self.route = route
        self._http = http
        self._signer = signer
        self._oracle = oracle
        self._api_base = str(api_base or getattr(config, "EXPAND_API_BASE", "https://api.expand.network")).rstrip("/")
        self._api_key = str(api_key if api_key is not None else getattr(config, "X_API_KEY", "") or "")
        self._spender = str(spender_address if spender_address is not None else getattr(config, "SPENDER_ADDRESS", "") or "")

    @property
    def dex_id(self) -> str:
        return self.route.dex_id

    async def _post(self, endpoint: str, body: dict[str, Any]) -> HttpResult:
        return await self._http.post_json(
            f"{self._api_base}{endpoint}",
            body,
            source=TX_SOURCE,
            headers={"x-api-key": self._api_key},
        )

    @staticmethod
    def _unwrap(result: HttpResult, *, what: str, rejected: type[ExecutionError]) -> dict[str, Any]:
        body = result.data if isinstance(result.data, dict) else {}
        if not result.ok:
            if 400 <= int(result.status) < 500:
                raise rejected(f"{what} rejected status={result.status} body={body}"[:400], detail=result.data)
            raise SwapTransportError(f"{what} transport failure status={result.status} err={result.error}")
        try:
            body_status = int(body.get("status", 200) or 200)
        except (TypeError, ValueError):
            body_status = 200
        if body_status >= 400:
            raise rejected(f"{what} rejected status={body_status} msg={body.get('msg', '')}"[:400], detail=body)
        data = body.get("data")
        if not isinstance(data, dict):
            raise SwapTransportError(f"{what} returned no transaction payload")
        return data

    async def _broadcast(self, prepared: dict[str, Any], *, what: str, rejected: type[ExecutionError]) -> str:
        async with self._signer.submit_lock:
            try:
                tx = await asyncio.to_thread(self._signer.complete, prepared, self.route.chain_id)
                raw_tx = await asyncio.to_thread(self._signer.sign, tx)
            except ExecutionError:
                raise
            except (ValueError, TypeError) as exc:
                raise rejected(f"{what} could not be signed: {short_error_text(exc)}") from exc
            except Exception as exc:
                raise SwapTransportError(f"{what} signing rpc failure: {short_error_text(exc)}") from exc
            sent = self._unwrap(
                await self._post("/chain/sendtransaction", {"chainId": self.route.chain_id, "rawTransaction": raw_tx}),
                what=f"{what} broadcast",
                rejected=rejected,
            )
        return str(sent.get("transactionHash", sent.get("hash", "")) or "")

    async def _receipt_status(self, tx_hash: str) -> int | None:
        return await asyncio.to_thread(self._signer.wait_for_receipt, tx_hash)

    async def confirm_swap(self, tx_hash: str, expected_amount: Decimal | None = None) -> bool:
        """Re-read the receipt of an already broadcast swap; True once it succeeded, False if it reverted."""
        try:
            status = await self._receipt_status(tx_hash)
        except Exception as exc:
            raise SwapUnconfirmed(
                f"swap still unconfirmed hash={tx_hash}: {short_error_text(exc)}",
                tx_hash=tx_hash,
                expected_amount=expected_amount,
            ) from exc
        return status is None or status == 1

    async def approve_token(self, amount_in: Decimal, token_address: str) -> str:
        prepared = self._unwrap(
            await self._post(
                "/fungibletoken/approve",
                {
                    "from": self._signer.wallet,
                    "tokenAddress": token_address,
                    "amount": format_amount(amount_in),
                    "to": self._spender,
                    "gas": str(getattr(config, "SWAP_GAS_LIMIT", "229880")),
                    "chainId": self.route.chain_id,
                },
            ),
            what="approval",
            rejected=ApprovalRejected,
        )
        tx_hash = await self._broadcast(prepared, what="approval", rejected=ApprovalRejected)
        try:
            status = await self._receipt_status(tx_hash)
        except Exception as exc:
            raise SwapTransportError(f"approval receipt wait failed hash={tx_hash}: {short_error_text(exc)}") from exc
        if status is not None and status != 1:
            raise ApprovalRejected(f"approval reverted hash={tx_hash}")
        logger.info("SWAP_APPROVED chain=%s token=%s amount=%s tx=%s", self.route.blockchain, token_address, amount_in, tx_hash)
        return tx_hash

    async def prepare_swap(self, amount_in: Decimal, path: Sequence[str]) -> dict[str, Any]:
        return self._unwrap(
            await self._post(
                "/dex/swap",
                {
                    "dexId": self.route.dex_id,
                    "amountIn": format_amount(amount_in),
                    "amountOutMin": str(getattr(config, "SWAP_AMOUNT_OUT_MIN", "0")),
                    "path": list(path),
                    "to": self._signer.wallet,
                    "poolFees": str(getattr(config, "SWAP_POOL_FEES", "3000")),
                    "from": self._signer.wallet,
                    "gas": str(getattr(config, "SWAP_GAS_LIMIT", "229880")),
                },
            ),
            what="swap",
            rejected=TransactionRejected,
        )

    async def _quote_out(self, path: tuple[str, ...], amount: Decimal) -> Decimal | None:
        try:
            quote = await self._oracle.get_quote(self.route.dex_id, path, amount)
        except TransientFeedError as exc:
            logger.warning("SWAP_QUOTE_UNAVAILABLE path=%s err=%s", ",".join(path), short_error_text(exc))
            return None
        return quote.output_amount

    async def execute_swap(self, path: Sequence[str], amount_in: Decimal | str) -> SwapResult:
        hops = tuple(str(p) for p in path)
        try:
            amount = to_decimal(amount_in)
        except ValueError as exc:
            raise TransactionRejected(str(exc)) from exc
        if amount <= 0 or len(hops) < 2:
            raise TransactionRejected(f"invalid swap request amount={amount_in} path={hops}")

        approval_hash = await self.approve_token(amount, hops[0])
        expected_out = await self._quote_out(hops, amount)
        prepared = await self.prepare_swap(amount, hops)
        swap_hash = await self._broadcast(prepared, what="swap", rejected=TransactionRejected)
        # From here on the swap is on-chain or pending; failures must not lead to a resubmit.
        if not await self.confirm_swap(swap_hash, expected_out):
            raise TransactionRejected(f"swap reverted hash={swap_hash}")

        realized = await self._quote_out(hops, amount)
        if realized is None:
            realized = expected_out
        if realized is None:
            # The swap went through; we just could not price it.
            logger.warning("SWAP_OUTPUT_UNKNOWN path=%s tx=%s", ",".join(hops), swap_hash)
            realized = Decimal("0")
        logger.info(
            "SWAP_DONE chain=%s path=%s amount_in=%s amount_out=%s tx=%s",
            self.route.blockchain,
            ",".join(hops),
            format_amount(amount),
            format_amount(realized),
            swap_hash,
        )
        return SwapResult(
            path=hops,
            amount_in=amount,
            amount_out=realized,
            swap_tx_hash=swap_hash,
            approval_tx_hash=approval_hash,
        )


class SwapExecutorCache:
    """One executor per chain route, sharing the HTTP session, signer and oracle."""

    def __init__(self, http: ResilientHttpClient, signer: TransactionSigner, oracle: PriceOracle) -> None:
        self._http = http
        self._signer = signer
        self._oracle = oracle
        self._executors: dict[ChainRoute, SwapExecutor] = {}

    def __call__(self, route: ChainRoute) -> SwapExecutor:
        executor = self._executors.get(route)
        if executor is None:
            executor = SwapExecutor(route, self._http, self._signer, self._oracle)
            self._executors[route] = executor
        return executor
