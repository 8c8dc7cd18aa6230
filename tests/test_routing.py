from __future__ import annotations

import unittest

from trading.errors import ConfigurationGap
from trading.routing import resolve_route, supported_blockchains


class RoutingTests(unittest.TestCase):
    def test_polygon_route_is_complete(self) -> None:
        route = resolve_route("Polygon")
        self.assertEqual(route.chain_id, "137")
        self.assertEqual(route.dex_id, "1307")
        self.assertEqual(route.quote_asset_address, "0xc2132D05D31c914a87C6611C10748AEb04B58e8F")

    def test_lookup_ignores_case_and_padding(self) -> None:
        self.assertEqual(resolve_route("  ethereum ").dex_id, "1300")

    def test_partial_entries_name_what_is_missing(self) -> None:
        cases = {
            "Solana": "chain_id",
            "Binance Smart Chain": "quote_asset",
            "Base": "chain_id,quote_asset",
            "Fantom": "dex_id,quote_asset",
        }
        for chain, missing in cases.items():
            with self.subTest(chain=chain):
                with self.assertRaises(ConfigurationGap) as ctx:
                    resolve_route(chain)
                self.assertIn(f"missing={missing}", str(ctx.exception))
                self.assertEqual(ctx.exception.code, "E_CONFIG_GAP")

    def test_unknown_chain_is_a_gap(self) -> None:
        with self.assertRaises(ConfigurationGap):
            resolve_route("Tron")
        with self.assertRaises(ConfigurationGap):
            resolve_route("")

    def test_supported_chains_have_every_table_entry(self) -> None:
        self.assertEqual(supported_blockchains(), ["Ethereum", "Polygon"])


if __name__ == "__main__":
    unittest.main()
