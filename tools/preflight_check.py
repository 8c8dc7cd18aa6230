"""Readiness report for the sniper environment (never trades, never broadcasts)."""

from __future__ import annotations

import argparse
import json
import os
import sys
from dataclasses import asdict, dataclass, field
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

from dotenv import dotenv_values
from eth_account import Account
from web3 import HTTPProvider, Web3

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from trading.routing import CHAIN_IDS, DEX_IDS, QUOTE_ASSETS, supported_blockchains  # noqa: E402


@dataclass
class CheckEvent:
    level: str
    code: str
    message: str


@dataclass
class Report:
    ok: bool = True
    errors: list[CheckEvent] = field(default_factory=list)
    warnings: list[CheckEvent] = field(default_factory=list)
    infos: list[CheckEvent] = field(default_factory=list)
    summary: dict[str, Any] = field(default_factory=dict)

    def add(self, level: str, code: str, message: str) -> None:
        event = CheckEvent(level=level, code=code, message=message)
        if level == "error":
            self.ok = False
            self.errors.append(event)
        elif level == "warning":
            self.warnings.append(event)
        else:
            self.infos.append(event)


def _decimal(value: Any) -> Decimal | None:
    try:
        out = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    return out if out.is_finite() else None


def _load_env(env_file: Path | None) -> dict[str, str]:
    env: dict[str, str] = {}
    if env_file is not None and env_file.exists():
        env = {str(k): str(v) for k, v in dotenv_values(env_file).items() if k is not None and v is not None}
    merged = dict(os.environ)
    for key, value in env.items():
        merged.setdefault(key, value)
    return merged


def _check_wallet(report: Report, env: dict[str, str]) -> None:
    for key in ("PRIVATE_KEY", "WALLET_ADDRESS", "X_API_KEY", "SPENDER_ADDRESS"):
        if not str(env.get(key, "") or "").strip():
            report.add("error", "missing_key", f"Required key is empty: {key}")

    wallet = str(env.get("WALLET_ADDRESS", "") or "").strip()
    spender = str(env.get("SPENDER_ADDRESS", "") or "").strip()
    if wallet and not Web3.is_address(wallet):
        report.add("error", "wallet_invalid", "WALLET_ADDRESS is not a valid EVM address.")
    if spender and not Web3.is_address(spender):
        report.add("error", "spender_invalid", "SPENDER_ADDRESS is not a valid EVM address.")

    private_key = str(env.get("PRIVATE_KEY", "") or "").strip()
    if private_key and wallet:
        try:
            account = Account.from_key(private_key)
        except (ValueError, TypeError) as exc:
            report.add("error", "private_key_invalid", f"PRIVATE_KEY parse failed: {exc}")
        else:
            if account.address.lower() != wallet.lower():
                report.add("error", "wallet_key_mismatch", "WALLET_ADDRESS does not match the PRIVATE_KEY address.")
            else:
                report.summary["wallet_address"] = account.address


def _check_trading(report: Report, env: dict[str, str]) -> None:
    fraction = _decimal(env.get("STOP_LOSS_FRACTION", "0.001"))
    if fraction is None or not (Decimal("0") < fraction < Decimal("1")):
        report.add("error", "stop_loss_invalid", f"STOP_LOSS_FRACTION must be in (0, 1): {env.get('STOP_LOSS_FRACTION')!r}")
    elif fraction < Decimal("0.01"):
        report.add("warning", "stop_loss_tight", f"STOP_LOSS_FRACTION={fraction} will fire on ordinary quote noise.")

    amount = _decimal(env.get("BUY_AMOUNT_IN", "1000"))
    if amount is None or amount <= 0:
        report.add("error", "buy_amount_invalid", f"BUY_AMOUNT_IN must be positive: {env.get('BUY_AMOUNT_IN')!r}")

    for key, default in (("POLL_INTERVAL_SECONDS", "5"), ("DISCOVERY_INTERVAL_SECONDS", "600")):
        value = _decimal(env.get(key, default))
        if value is None or value < 0:
            report.add("error", "interval_invalid", f"{key} must be a non-negative number.")
    report.summary["stop_loss_fraction"] = str(fraction)
    report.summary["buy_amount_in"] = str(amount)


def _check_routing(report: Report) -> None:
    supported = supported_blockchains()
    report.summary["routable_blockchains"] = supported
    partial = sorted((set(CHAIN_IDS) | set(DEX_IDS) | set(QUOTE_ASSETS)) - set(supported))
    if partial:
        report.add("info", "routing_partial", f"Candidates on these chains will be skipped: {', '.join(partial)}")
    if not supported:
        report.add("error", "routing_empty", "No blockchain has a complete routing entry.")


def _check_scraper(report: Report, env: dict[str, str]) -> None:
    script = str(env.get("SCRAPER_SCRIPT", os.path.join("scripts", "Roadmap_Scraper.py")) or "").strip()
    path = Path(script)
    if not path.is_absolute():
        path = Path(PROJECT_ROOT) / path
    report.summary["scraper_script"] = str(path)
    if not path.is_file():
        report.add("error", "scraper_missing", f"SCRAPER_SCRIPT not found: {path}")


def _check_rpc(report: Report, env: dict[str, str], timeout_s: float) -> None:
    rpc = str(env.get("RPC_URL", "") or "").strip()
    if not rpc:
        report.add("warning", "rpc_missing", "RPC_URL is empty; prepared transactions must carry nonce and gas price.")
        return
    try:
        w3 = Web3(HTTPProvider(rpc, request_kwargs={"timeout": timeout_s}))
        if not w3.is_connected():
            report.add("error", "rpc_unreachable", "RPC_URL did not answer.")
            return
        report.summary["rpc_chain_id"] = int(w3.eth.chain_id)
        report.summary["rpc_block_number"] = int(w3.eth.block_number)
    except Exception as exc:
        report.add("error", "rpc_probe_failed", f"RPC probe failed: {exc}")


def run_checks(env_file: Path | None, *, probe_rpc: bool = False, rpc_timeout_s: float = 8.0) -> Report:
    report = Report()
    if env_file is not None and not env_file.exists():
        report.add("warning", "env_missing", f".env file not found: {env_file}; using process environment only")
    env = _load_env(env_file)
    _check_wallet(report, env)
    _check_trading(report, env)
    _check_routing(report)
    _check_scraper(report, env)
    if probe_rpc:
        _check_rpc(report, env, rpc_timeout_s)
    return report


def _print_report(report: Report) -> None:
    print("=== SNIPER PREFLIGHT CHECK ===")
    print(f"status: {'PASS' if report.ok else 'FAIL'}")
    if report.summary:
        print("")
        print("Summary:")
        for key, value in report.summary.items():
            print(f"- {key}: {value}")
    for title, rows in (("Errors", report.errors), ("Warnings", report.warnings), ("Info", report.infos)):
        if not rows:
            continue
        print("")
        print(f"{title}:")
        for row in rows:
            print(f"- [{row.code}] {row.message}")


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Check sniper configuration without trading.")
    parser.add_argument("--env-file", default=os.path.join(PROJECT_ROOT, ".env"))
    parser.add_argument("--probe-rpc", action="store_true", help="Also connect to RPC_URL.")
    parser.add_argument("--rpc-timeout", type=float, default=8.0)
    parser.add_argument("--json", action="store_true", help="Print the report as JSON.")
    return parser.parse_args()


def main() -> int:
    args = _parse_args()
    report = run_checks(Path(args.env_file), probe_rpc=args.probe_rpc, rpc_timeout_s=args.rpc_timeout)
    if args.json:
        print(json.dumps(asdict(report), ensure_ascii=False, indent=2))
    else:
        _print_report(report)
    return 0 if report.ok else 1


if __name__ == "__main__":
    sys.exit(main())
