"""Application configuration."""

import os
from pathlib import Path

from dotenv import load_dotenv


def _load_dotenv_safe(dotenv_path: str | None = None, *, override: bool = False) -> None:
    """Load dotenv using UTF-8-SIG so BOM-prefixed files don't break first key parsing."""
    try:
        load_dotenv(dotenv_path=dotenv_path, override=override, encoding="utf-8-sig")
    except TypeError:
        # Older python-dotenv versions may not expose the `encoding` argument.
        load_dotenv(dotenv_path=dotenv_path, override=override)


# Base environment first, then the optional per-instance override file.
_load_dotenv_safe()
_BOT_ENV_FILE = os.getenv("BOT_ENV_FILE", "").strip()
if _BOT_ENV_FILE:
    _bot_env_path = Path(_BOT_ENV_FILE).expanduser()
    if not _bot_env_path.is_absolute():
        _bot_env_path = (Path.cwd() / _bot_env_path).resolve()
    if not _bot_env_path.exists():
        raise FileNotFoundError(f"BOT_ENV_FILE does not exist: {_bot_env_path}")
    if not _bot_env_path.is_file():
        raise IsADirectoryError(f"BOT_ENV_FILE is not a file: {_bot_env_path}")
    try:
        _load_dotenv_safe(str(_bot_env_path), override=True)
    except (OSError, UnicodeError, ValueError) as exc:
        raise RuntimeError(f"Failed to load BOT_ENV_FILE '{_bot_env_path}': {exc}") from exc


def _env_float(name: str, default: float, *, minimum: float | None = None) -> float:
    raw = os.getenv(name, "")
    try:
        value = float(raw) if str(raw).strip() else float(default)
    except ValueError:
        value = float(default)
    if minimum is not None:
        value = max(minimum, value)
    return value


def _env_int(name: str, default: int, *, minimum: int | None = None) -> int:
    return int(_env_float(name, float(default), minimum=None if minimum is None else float(minimum)))


BOT_INSTANCE_ID = os.getenv("BOT_INSTANCE_ID", "").strip()
RUN_TAG = os.getenv("RUN_TAG", BOT_INSTANCE_ID).strip()

# Wallet / expand.network credentials.
PRIVATE_KEY = os.getenv("PRIVATE_KEY", "").strip()
WALLET_ADDRESS = os.getenv("WALLET_ADDRESS", "").strip()
X_API_KEY = os.getenv("X_API_KEY", "").strip()
SPENDER_ADDRESS = os.getenv("SPENDER_ADDRESS", "").strip()
RPC_URL = os.getenv("RPC_URL", "").strip()
RPC_TIMEOUT_SECONDS = _env_float("RPC_TIMEOUT_SECONDS", 10.0, minimum=1.0)
TX_RECEIPT_TIMEOUT_SECONDS = _env_float("TX_RECEIPT_TIMEOUT_SECONDS", 120.0, minimum=1.0)
EXPAND_API_BASE = os.getenv("EXPAND_API_BASE", "https://api.expand.network").rstrip("/")

# Trading.
BUY_AMOUNT_IN = os.getenv("BUY_AMOUNT_IN", "1000").strip() or "1000"
STOP_LOSS_FRACTION = _env_float("STOP_LOSS_FRACTION", 0.001)
POLL_INTERVAL_SECONDS = _env_float("POLL_INTERVAL_SECONDS", 5.0, minimum=0.0)
SWAP_GAS_LIMIT = os.getenv("SWAP_GAS_LIMIT", "229880").strip() or "229880"
SWAP_POOL_FEES = os.getenv("SWAP_POOL_FEES", "3000").strip() or "3000"
SWAP_AMOUNT_OUT_MIN = os.getenv("SWAP_AMOUNT_OUT_MIN", "0").strip() or "0"
SELL_RETRY_ATTEMPTS = _env_int("SELL_RETRY_ATTEMPTS", 3, minimum=1)
SELL_RETRY_DELAY_SECONDS = _env_float("SELL_RETRY_DELAY_SECONDS", 5.0, minimum=0.0)
SELL_RESUME_ROUNDS = _env_int("SELL_RESUME_ROUNDS", 1, minimum=0)
SELL_RESUME_DELAY_SECONDS = _env_float("SELL_RESUME_DELAY_SECONDS", 60.0, minimum=0.0)

# Discovery.
DISCOVERY_INTERVAL_SECONDS = _env_float("DISCOVERY_INTERVAL_SECONDS", 600.0, minimum=1.0)
DISCOVERY_DEDUP_TTL_SECONDS = _env_float("DISCOVERY_DEDUP_TTL_SECONDS", 86400.0, minimum=0.0)
SCRAPER_PYTHON = os.getenv("SCRAPER_PYTHON", "python3").strip() or "python3"
SCRAPER_SCRIPT = os.getenv("SCRAPER_SCRIPT", os.path.join("scripts", "Roadmap_Scraper.py")).strip()
SCRAPER_TIMEOUT_SECONDS = _env_float("SCRAPER_TIMEOUT_SECONDS", 300.0, minimum=1.0)

# HTTP transport.
HTTP_TIMEOUT_SECONDS = _env_float("HTTP_TIMEOUT_SECONDS", 15.0, minimum=1.0)
HTTP_RETRY_ATTEMPTS = _env_int("HTTP_RETRY_ATTEMPTS", 3, minimum=1)
HTTP_BACKOFF_BASE_SECONDS = _env_float("HTTP_BACKOFF_BASE_SECONDS", 0.5, minimum=0.05)
HTTP_BACKOFF_MAX_SECONDS = _env_float("HTTP_BACKOFF_MAX_SECONDS", 8.0, minimum=0.05)
HTTP_JITTER_SECONDS = _env_float("HTTP_JITTER_SECONDS", 0.25, minimum=0.0)
HTTP_RATE_LIMIT_DELAY_SECONDS = _env_float("HTTP_RATE_LIMIT_DELAY_SECONDS", 2.0, minimum=0.0)
HTTP_DEFAULT_CONCURRENCY = _env_int("HTTP_DEFAULT_CONCURRENCY", 8, minimum=1)
HTTP_CONNECTOR_LIMIT = _env_int("HTTP_CONNECTOR_LIMIT", 30, minimum=1)
HTTP_429_COOLDOWN_SECONDS = _env_float("HTTP_429_COOLDOWN_SECONDS", 30.0, minimum=0.0)

# Logging / journal.
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").strip() or "INFO"
LOG_DIR = os.getenv("LOG_DIR", "logs").strip() or "logs"
APP_LOG_FILE = os.getenv("APP_LOG_FILE", os.path.join(LOG_DIR, "app.log"))
TRADE_JOURNAL_FILE = os.getenv("TRADE_JOURNAL_FILE", os.path.join(LOG_DIR, "trade_decisions.jsonl"))
SALE_MANIFEST_FILE = os.getenv("SALE_MANIFEST_FILE", os.path.join("data", "last_sale_manifest.json"))
