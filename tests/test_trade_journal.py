from __future__ import annotations

import json
import os
import tempfile
import unittest
from decimal import Decimal

from trading.journal import TradeJournal
from trading.models import Candidate, ChainRoute, Disposal, MonitorPhase, MonitorState, Position, SaleManifest

ROUTE = ChainRoute("Polygon", "137", "1307", "0xc2132D05D31c914a87C6611C10748AEb04B58e8F")


def _position(ticker: str, idx: int) -> Position:
    token = "0x" + f"{idx:040x}"
    return Position(
        ticker=ticker,
        contract_address=token,
        blockchain="Polygon",
        quote_asset=ROUTE.quote_asset_address,
        held_amount=Decimal("4.2"),
        route=ROUTE,
        token_path_out=(token, ROUTE.quote_asset_address),
        token_path_in=(ROUTE.quote_asset_address, token),
        buy_tx_hash=f"0xbuy{idx}",
    )


def _read_rows(path: str) -> list[dict]:
    with open(path, "r", encoding="utf-8") as f:
        return [json.loads(line) for line in f if line.strip()]


class TradeJournalTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.path = os.path.join(self._tmp.name, "logs", "trades.jsonl")
        self.manifest_path = os.path.join(self._tmp.name, "data", "manifest.json")
        self.journal = TradeJournal(self.path, self.manifest_path, run_tag="unit")

    def test_candidate_decisions_are_appended(self) -> None:
        candidate = Candidate("Solana", "SOL1", "So11111111111111111111111111111111111111112")
        self.journal.record_candidate(candidate, decision_stage="route", decision="skip", reason="missing_route")
        self.journal.record_candidate(candidate, decision_stage="discovery", decision="skip", reason="duplicate_candidate")

        rows = _read_rows(self.path)
        self.assertEqual([r["reason_code"] for r in rows], ["ROUTE_MISSING_MAPPING", "DISCOVERY_DUPLICATE"])
        self.assertEqual(rows[0]["contract_address"], "So11111111111111111111111111111111111111112")
        self.assertEqual(rows[0]["run_tag"], "unit")

    def test_transition_rows_carry_monitor_state(self) -> None:
        position = _position("AAA", 1)
        state = MonitorState(position=position, stop_loss_fraction=Decimal("0.1"), high_water_mark=Decimal("120"))
        state.phase = MonitorPhase.TRIGGERED
        state.last_value = Decimal("80")
        state.trigger_value = Decimal("80")
        self.journal.record_transition(state, "stop_loss")

        row = _read_rows(self.path)[0]
        self.assertEqual(row["schema_name"], "position_event.v1")
        self.assertEqual(row["phase"], "TRIGGERED")
        self.assertEqual(row["position_id"], position.position_id)
        self.assertEqual(row["trigger_value"], "80")
        self.assertEqual(row["reason_code"], "EXIT_STOP_LOSS")

    def test_manifest_snapshot_and_failed_disposal(self) -> None:
        sold = Disposal(position=_position("AAA", 1), reason="stop_loss", primary=True, realized_amount=Decimal("9.5"), attempts=1)
        failed = Disposal(position=_position("BBB", 2), reason="liquidation", error="rejected", error_code="E_EXEC_TX", attempts=3)
        self.journal.record_disposal(sold)
        self.journal.record_disposal(failed)
        payload = self.journal.write_manifest(SaleManifest([sold, failed]))

        rows = _read_rows(self.path)
        self.assertEqual(len(rows), 2)
        self.assertEqual(rows[0]["reason_code"], "EXEC_SELL_FAIL")
        self.assertEqual(rows[0]["trigger"], "liquidation")
        self.assertEqual(rows[1]["schema_name"], "sale_manifest.v1")
        self.assertEqual(rows[1]["decision_id"], payload["decision_id"])
        with open(self.manifest_path, "r", encoding="utf-8") as f:
            snapshot = json.load(f)
        self.assertEqual(snapshot["sold"], 1)
        self.assertEqual(snapshot["failed"], 1)
        self.assertEqual(snapshot["realized_total"], 9.5)
        self.assertEqual(snapshot["disposals"][1]["error_code"], "E_EXEC_TX")

    def test_unconfirmed_sell_is_journaled_with_its_hash(self) -> None:
        pending = Disposal(
            position=_position("CCC", 3),
            reason="stop_loss",
            primary=True,
            error="swap still unconfirmed",
            error_code="E_EXEC_UNCONFIRMED",
            attempts=1,
            pending_tx_hash="0xswap3",
        )
        self.journal.record_disposal(pending)

        row = _read_rows(self.path)[0]
        self.assertEqual(row["reason_code"], "EXEC_SELL_UNCONFIRMED")
        self.assertEqual(row["pending_tx_hash"], "0xswap3")
        self.assertEqual(row["trigger"], "stop_loss")

    def test_disabled_journal_writes_nothing(self) -> None:
        journal = TradeJournal(self.path, self.manifest_path, enabled=False)
        journal.record_candidate(Candidate("Polygon", "X", "0x" + "1" * 40), decision_stage="buy", decision="open", reason="buy_ok")
        journal.write_manifest(SaleManifest())
        self.assertFalse(os.path.exists(self.path))
        self.assertFalse(os.path.exists(self.manifest_path))


if __name__ == "__main__":
    unittest.main()
