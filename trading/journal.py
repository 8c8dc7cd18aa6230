"""Append-only JSONL trade journal and the latest sale-manifest snapshot."""

from __future__ import annotations

import json
import logging
import os
from typing import Any

import config
from trading.models import Candidate, Disposal, MonitorState, SaleManifest, format_amount
from utils.log_contracts import candidate_decision_event, position_event, sale_manifest_event
from utils.state_file import write_json_atomic_locked

logger = logging.getLogger(__name__)


class TradeJournal:
    def __init__(
        self,
        path: str | None = None,
        manifest_path: str | None = None,
        *,
        run_tag: str | None = None,
        enabled: bool = True,
    ) -> None:
        self.path = str(path or getattr(config, "TRADE_JOURNAL_FILE", os.path.join("logs", "trade_decisions.jsonl")))
        self.manifest_path = str(
            manifest_path or getattr(config, "SALE_MANIFEST_FILE", os.path.join("data", "last_sale_manifest.json"))
        )
        self.run_tag = str(run_tag if run_tag is not None else getattr(config, "RUN_TAG", "") or "")
        self.enabled = bool(enabled)

    def _append(self, row: dict[str, Any]) -> None:
        if not self.enabled:
            return
        try:
            os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(json.dumps(row, ensure_ascii=False, default=str) + "\n")
        except OSError:
            logger.exception("TRADE_JOURNAL write failed path=%s", self.path)

    def record_candidate(
        self,
        candidate: Candidate,
        *,
        decision_stage: str,
        decision: str,
        reason: str,
        **extra: Any,
    ) -> None:
        row = {
            "decision_stage": decision_stage,
            "decision": decision,
            "reason": reason,
            "blockchain": candidate.blockchain,
            "ticker": candidate.ticker,
            "contract_address": candidate.contract_address,
        }
        row.update(extra)
        self._append(candidate_decision_event(row, run_tag=self.run_tag))

    def record_transition(self, state: MonitorState, event: str) -> None:
        position = state.position
        self._append(
            position_event(
                {
                    "decision_stage": "sell" if event == "sold" else "monitor",
                    "decision": state.phase.value.lower(),
                    "reason": event,
                    "position_id": position.position_id,
                    "blockchain": position.blockchain,
                    "ticker": position.ticker,
                    "contract_address": position.contract_address,
                    "phase": state.phase.value,
                    "high_water_mark": format_amount(state.high_water_mark),
                    "last_value": None if state.last_value is None else format_amount(state.last_value),
                    "trigger_value": None if state.trigger_value is None else format_amount(state.trigger_value),
                    "stop_loss_fraction": format_amount(state.stop_loss_fraction),
                    "held_amount": format_amount(position.held_amount),
                    "polls": state.polls,
                    "feed_errors": state.feed_errors,
                },
                run_tag=self.run_tag,
            )
        )

    def record_disposal(self, disposal: Disposal) -> None:
        if disposal.ok:
            return
        row = disposal.as_dict()
        reason = "sell_unconfirmed" if disposal.unconfirmed else "sell_fail"
        row.update({"decision_stage": "sell", "decision": "failed", "reason": reason, "trigger": disposal.reason})
        self._append(position_event(row, run_tag=self.run_tag))

    def write_manifest(self, manifest: SaleManifest) -> dict[str, Any]:
        payload = sale_manifest_event(manifest.as_dict(), run_tag=self.run_tag)
        self._append(payload)
        if self.enabled:
            try:
                write_json_atomic_locked(self.manifest_path, payload)
            except (OSError, RuntimeError):
                logger.exception("SALE_MANIFEST write failed path=%s", self.manifest_path)
        return payload
