"""Stable log contracts shared by the trade journal writers."""

from __future__ import annotations

import hashlib
import re
from datetime import datetime, timezone
from typing import Any

from utils.addressing import normalize_address

LOG_SCHEMA_VERSION = "2024-09-02.v1"

SCHEMA_CANDIDATE_DECISION = "candidate_decision.v1"
SCHEMA_POSITION_EVENT = "position_event.v1"
SCHEMA_SALE_MANIFEST = "sale_manifest.v1"

_STAGE_PREFIX: dict[str, str] = {
    "discovery": "DISCOVERY",
    "route": "ROUTE",
    "buy": "EXEC",
    "monitor": "MONITOR",
    "sell": "EXIT",
    "unknown": "UNKNOWN",
}

_REASON_CODE_OVERRIDES: dict[str, str] = {
    "discovery_unavailable": "DISCOVERY_UNAVAILABLE",
    "duplicate_candidate": "DISCOVERY_DUPLICATE",
    "missing_route": "ROUTE_MISSING_MAPPING",
    "buy_ok": "EXEC_BUY",
    "buy_fail": "EXEC_BUY_FAIL",
    "buy_unconfirmed": "EXEC_BUY_UNCONFIRMED",
    "zero_output": "EXEC_BUY_ZERO_OUTPUT",
    "high_water_mark": "MONITOR_HIGH_WATER_MARK",
    "stop_loss": "EXIT_STOP_LOSS",
    "liquidation": "EXIT_LIQUIDATION",
    "monitor_lost": "EXIT_MONITOR_LOST",
    "sold": "EXIT_SOLD",
    "sell_fail": "EXEC_SELL_FAIL",
    "sell_unconfirmed": "EXEC_SELL_UNCONFIRMED",
}

REASON_CODE_TAXONOMY: dict[str, dict[str, str]] = {
    "DISCOVERY_UNAVAILABLE": {"severity": "WARN", "category": "discovery", "title": "Discovery source unavailable"},
    "DISCOVERY_DUPLICATE": {"severity": "INFO", "category": "discovery", "title": "Candidate already seen"},
    "ROUTE_MISSING_MAPPING": {"severity": "WARN", "category": "route", "title": "No chain routing entry"},
    "EXEC_BUY": {"severity": "INFO", "category": "execute", "title": "Buy swap completed"},
    "EXEC_BUY_FAIL": {"severity": "WARN", "category": "execute", "title": "Buy swap failed"},
    "EXEC_BUY_UNCONFIRMED": {"severity": "ERROR", "category": "execute", "title": "Buy broadcast, receipt unknown"},
    "EXEC_BUY_ZERO_OUTPUT": {"severity": "WARN", "category": "execute", "title": "Buy returned nothing"},
    "MONITOR_HIGH_WATER_MARK": {"severity": "INFO", "category": "monitor", "title": "New high-water mark"},
    "EXIT_STOP_LOSS": {"severity": "WARN", "category": "exit", "title": "Trailing stop-loss triggered"},
    "EXIT_LIQUIDATION": {"severity": "INFO", "category": "exit", "title": "Liquidated with batch"},
    "EXIT_MONITOR_LOST": {"severity": "ERROR", "category": "exit", "title": "All monitors lost"},
    "EXIT_SOLD": {"severity": "INFO", "category": "exit", "title": "Position sold"},
    "EXEC_SELL_FAIL": {"severity": "ERROR", "category": "execute", "title": "Sell swap failed"},
    "EXEC_SELL_UNCONFIRMED": {"severity": "ERROR", "category": "execute", "title": "Sell broadcast, receipt unknown"},
}


def _safe_float(value: Any, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return float(default)


def _as_ts(value: Any) -> float:
    if value is None or value == "":
        return datetime.now(timezone.utc).timestamp()
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).strip()
    try:
        dt = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return datetime.now(timezone.utc).timestamp()
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.timestamp()


def _iso_from_ts(ts: float) -> str:
    return datetime.fromtimestamp(float(ts), tz=timezone.utc).isoformat()


def _normalize_reason_text(value: Any) -> str:
    text = str(value or "").strip().lower()
    if not text:
        return ""
    text = re.sub(r"[^a-z0-9]+", "_", text)
    return re.sub(r"_+", "_", text).strip("_")


def _sanitize_code_token(value: str) -> str:
    text = re.sub(r"[^A-Z0-9]+", "_", str(value or "").strip().upper())
    text = re.sub(r"_+", "_", text).strip("_")
    return text or "UNKNOWN"


def _stage_prefix(value: Any) -> str:
    stage = _normalize_reason_text(value) or "unknown"
    return _STAGE_PREFIX.get(stage, "UNKNOWN")


def reason_code_for_event(*, reason: Any, decision_stage: Any = "", decision: Any = "") -> str:
    normalized_reason = _normalize_reason_text(reason)
    if not normalized_reason:
        normalized_decision = _normalize_reason_text(decision)
        if normalized_decision:
            return f"{_stage_prefix(decision_stage)}_{_sanitize_code_token(normalized_decision)}"
        return "UNKNOWN"
    override = _REASON_CODE_OVERRIDES.get(normalized_reason)
    if override:
        return override
    return f"{_stage_prefix(decision_stage)}_{_sanitize_code_token(normalized_reason)}"


def reason_code_meta(code: str) -> dict[str, str]:
    key = _sanitize_code_token(code)
    if key in REASON_CODE_TAXONOMY:
        return dict(REASON_CODE_TAXONOMY[key])
    return {"severity": "INFO", "category": "unknown", "title": key.replace("_", " ").title()}


def _digest_seed(*parts: Any) -> str:
    seed = "|".join(str(p or "").strip() for p in parts)
    return hashlib.sha1(seed.encode("utf-8", errors="ignore")).hexdigest()


def position_id_for(blockchain: Any, contract_address: Any, trace_id: Any = "") -> str:
    return f"pos_{_digest_seed(str(blockchain or '').lower(), normalize_address(contract_address), trace_id)[:20]}"


def _trace_id(payload: dict[str, Any]) -> str:
    raw = str(payload.get("trace_id", "") or "").strip()
    if raw:
        return raw
    address = normalize_address(payload.get("contract_address", ""))
    ticker = str(payload.get("ticker", "") or "").strip().upper()
    ts = _as_ts(payload.get("ts", payload.get("timestamp")))
    return f"tr_{_digest_seed(address, ticker, f'{ts:.6f}')[:20]}"


def _decision_id(payload: dict[str, Any], *, run_tag: str) -> str:
    raw = str(payload.get("decision_id", "") or "").strip()
    if raw:
        return raw
    ts = _as_ts(payload.get("ts", payload.get("timestamp")))
    return "dec_" + _digest_seed(
        run_tag,
        payload.get("trace_id", ""),
        payload.get("decision_stage", ""),
        payload.get("decision", ""),
        payload.get("reason", ""),
        normalize_address(payload.get("contract_address", "")),
        f"{ts:.6f}",
    )[:20]


def stamp_event(event: dict[str, Any], *, schema_name: str, event_type: str, run_tag: str = "") -> dict[str, Any]:
    payload = dict(event or {})
    ts = _as_ts(payload.get("ts", payload.get("timestamp")))
    payload["ts"] = float(ts)
    payload["timestamp"] = str(payload.get("timestamp", "") or _iso_from_ts(ts))
    payload.setdefault("schema_version", LOG_SCHEMA_VERSION)
    payload.setdefault("schema_name", schema_name)
    payload.setdefault("event_type", str(event_type or "event"))
    if run_tag:
        payload.setdefault("run_tag", str(run_tag))
    payload["trace_id"] = _trace_id(payload)
    payload["decision_id"] = _decision_id(payload, run_tag=str(payload.get("run_tag", run_tag or "")))
    return payload


def _apply_reason(payload: dict[str, Any]) -> None:
    payload["reason"] = str(payload.get("reason", "") or "")
    payload["reason_code"] = str(
        payload.get("reason_code", "")
        or reason_code_for_event(
            reason=payload.get("reason", ""),
            decision_stage=payload.get("decision_stage", ""),
            decision=payload.get("decision", ""),
        )
    ).strip().upper()
    meta = reason_code_meta(payload["reason_code"])
    payload["reason_severity"] = str(payload.get("reason_severity", meta["severity"]) or "INFO")
    payload["reason_category"] = str(payload.get("reason_category", meta["category"]) or "unknown")


def candidate_decision_event(event: dict[str, Any], *, run_tag: str = "") -> dict[str, Any]:
    payload = stamp_event(
        event,
        schema_name=SCHEMA_CANDIDATE_DECISION,
        event_type=str((event or {}).get("event_type", "candidate_decision")),
        run_tag=run_tag,
    )
    payload.setdefault("decision_stage", "unknown")
    payload.setdefault("decision", "unknown")
    payload["blockchain"] = str(payload.get("blockchain", "") or "")
    payload["ticker"] = str(payload.get("ticker", "N/A") or "N/A")
    payload["contract_address"] = normalize_address(payload.get("contract_address", ""))
    _apply_reason(payload)
    return payload


def position_event(event: dict[str, Any], *, run_tag: str = "") -> dict[str, Any]:
    payload = stamp_event(
        event,
        schema_name=SCHEMA_POSITION_EVENT,
        event_type=str((event or {}).get("event_type", "position_event")),
        run_tag=run_tag,
    )
    payload.setdefault("decision_stage", "monitor")
    payload.setdefault("decision", "unknown")
    payload["blockchain"] = str(payload.get("blockchain", "") or "")
    payload["ticker"] = str(payload.get("ticker", "N/A") or "N/A")
    payload["contract_address"] = normalize_address(payload.get("contract_address", ""))
    payload["position_id"] = str(
        payload.get("position_id", "")
        or position_id_for(payload["blockchain"], payload["contract_address"], payload.get("trace_id", ""))
    )
    payload["phase"] = str(payload.get("phase", "") or "")
    payload["high_water_mark"] = _safe_float(payload.get("high_water_mark", 0.0))
    _apply_reason(payload)
    return payload


def sale_manifest_event(event: dict[str, Any], *, run_tag: str = "") -> dict[str, Any]:
    payload = stamp_event(
        event,
        schema_name=SCHEMA_SALE_MANIFEST,
        event_type=str((event or {}).get("event_type", "sale_manifest")),
        run_tag=run_tag,
    )
    rows = list(payload.get("disposals") or [])
    payload["disposals"] = rows
    payload["sold"] = sum(1 for row in rows if row.get("ok"))
    payload["failed"] = sum(1 for row in rows if not row.get("ok"))
    payload["realized_total"] = round(sum(_safe_float(row.get("realized_amount", 0.0)) for row in rows if row.get("ok")), 12)
    return payload
