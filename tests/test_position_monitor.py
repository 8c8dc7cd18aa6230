from __future__ import annotations

import unittest
from decimal import Decimal

from trading.errors import TransientFeedError
from trading.models import ChainRoute, MonitorPhase, Position, Quote
from trading.position_monitor import PositionMonitor

ROUTE = ChainRoute(
    blockchain="Polygon",
    chain_id="137",
    dex_id="1307",
    quote_asset_address="0xc2132D05D31c914a87C6611C10748AEb04B58e8F",
)


def make_position(token: str = "0x1111111111111111111111111111111111111111", ticker: str = "AAA") -> Position:
    return Position(
        ticker=ticker,
        contract_address=token,
        blockchain=ROUTE.blockchain,
        quote_asset=ROUTE.quote_asset_address,
        held_amount=Decimal("10"),
        route=ROUTE,
        token_path_out=(token, ROUTE.quote_asset_address),
        token_path_in=(ROUTE.quote_asset_address, token),
    )


class ScriptedOracle:
    """Replays a fixed list of values/exceptions; the last entry repeats once exhausted."""

    def __init__(self, script: list[object]) -> None:
        self.script = list(script)
        self.calls: list[tuple[str, tuple[str, ...], Decimal]] = []

    async def get_quote(self, dex_id: str, path, amount_in) -> Quote:
        idx = min(len(self.calls), len(self.script) - 1)
        self.calls.append((dex_id, tuple(path), Decimal(amount_in)))
        item = self.script[idx]
        if isinstance(item, BaseException):
            raise item
        return Quote(input_amount=Decimal(amount_in), output_amount=Decimal(str(item)), path=tuple(path))


async def _no_sleep(_seconds: float) -> None:
    return None


class PositionMonitorTests(unittest.IsolatedAsyncioTestCase):
    def _monitor(self, script: list[object], fraction: str = "0.10", **kwargs) -> tuple[PositionMonitor, ScriptedOracle]:
        oracle = ScriptedOracle(script)
        monitor = PositionMonitor(
            make_position(),
            oracle,  # type: ignore[arg-type]
            stop_loss_fraction=fraction,
            poll_interval_seconds=5.0,
            sleep=kwargs.pop("sleep", _no_sleep),
            **kwargs,
        )
        return monitor, oracle

    async def test_trailing_stop_fires_on_drop_from_peak(self) -> None:
        monitor, _oracle = self._monitor([100, 120, 115, 80])

        self.assertFalse(await monitor.poll())
        self.assertFalse(await monitor.poll())
        self.assertEqual(monitor.high_water_mark, Decimal("120"))
        self.assertFalse(await monitor.poll())  # 115 >= 108
        self.assertEqual(monitor.high_water_mark, Decimal("120"))
        self.assertTrue(await monitor.poll())

        self.assertIs(monitor.phase, MonitorPhase.TRIGGERED)
        self.assertEqual(monitor.state.trigger_value, Decimal("80"))
        self.assertEqual(monitor.state.trigger_reason, "stop_loss")

    async def test_threshold_boundary_is_strict(self) -> None:
        monitor, _oracle = self._monitor([100, 90, Decimal("89.99")])

        await monitor.poll()
        self.assertFalse(await monitor.poll())
        self.assertIs(monitor.phase, MonitorPhase.WATCHING)
        self.assertTrue(await monitor.poll())

    async def test_high_water_mark_tracks_running_max(self) -> None:
        values = [5, 7, 6, 7, 9, Decimal("8.5"), 12, 11, Decimal("11.5")]
        monitor, _oracle = self._monitor(values, fraction="0.5")
        running_max = Decimal("0")
        previous = Decimal("0")
        for value in values:
            await monitor.poll()
            running_max = max(running_max, Decimal(str(value)))
            self.assertEqual(monitor.high_water_mark, running_max)
            self.assertGreaterEqual(monitor.high_water_mark, previous)
            previous = monitor.high_water_mark
        self.assertIs(monitor.phase, MonitorPhase.WATCHING)

    async def test_rising_position_never_triggers(self) -> None:
        monitor, _oracle = self._monitor([1, 2, 3, 4, 5, 6], fraction="0.001")
        for _ in range(6):
            self.assertFalse(await monitor.poll())
        self.assertEqual(monitor.high_water_mark, Decimal("6"))

    async def test_feed_error_changes_nothing(self) -> None:
        monitor, _oracle = self._monitor([100, TransientFeedError("http_status_502"), 95])

        await monitor.poll()
        self.assertFalse(await monitor.poll())
        self.assertEqual(monitor.high_water_mark, Decimal("100"))
        self.assertEqual(monitor.state.last_value, Decimal("100"))
        self.assertEqual(monitor.state.feed_errors, 1)
        self.assertIs(monitor.phase, MonitorPhase.WATCHING)
        self.assertFalse(await monitor.poll())

    async def test_polls_after_trigger_are_inert(self) -> None:
        monitor, oracle = self._monitor([100, 50, 500, 1])
        await monitor.poll()
        await monitor.poll()
        calls_at_trigger = len(oracle.calls)

        self.assertTrue(await monitor.poll())
        self.assertTrue(await monitor.poll())
        self.assertEqual(len(oracle.calls), calls_at_trigger)
        self.assertEqual(monitor.high_water_mark, Decimal("100"))

    async def test_watch_polls_then_waits_fixed_interval(self) -> None:
        sleeps: list[float] = []

        async def fake_sleep(seconds: float) -> None:
            sleeps.append(seconds)

        monitor, oracle = self._monitor([100, TransientFeedError("timeout"), 101, 90], sleep=fake_sleep)
        result = await monitor.watch()

        self.assertIs(result, monitor)
        self.assertEqual(len(oracle.calls), 4)
        self.assertEqual(sleeps, [5.0, 5.0, 5.0])
        self.assertEqual(oracle.calls[0][0], "1307")
        self.assertEqual(oracle.calls[0][2], Decimal("10"))

    async def test_force_trigger_and_mark_sold(self) -> None:
        monitor, _oracle = self._monitor([100])
        with self.assertRaises(RuntimeError):
            monitor.mark_sold(Decimal("1"))

        monitor.force_trigger("liquidation")
        monitor.force_trigger("something_else")
        self.assertEqual(monitor.state.trigger_reason, "liquidation")

        monitor.mark_sold(Decimal("98.5"))
        self.assertIs(monitor.phase, MonitorPhase.SOLD)
        self.assertTrue(monitor.position.sold)
        self.assertEqual(monitor.state.realized_amount, Decimal("98.5"))

    async def test_transition_listener_sees_events_and_failures_are_contained(self) -> None:
        events: list[tuple[str, str]] = []

        def listener(state, event: str) -> None:
            events.append((state.phase.value, event))
            if event == "high_water_mark":
                raise OSError("disk full")

        monitor, _oracle = self._monitor([100, 10], on_transition=listener)
        with self.assertLogs("trading.position_monitor", level="ERROR"):
            await monitor.poll()
        await monitor.poll()

        self.assertEqual(events, [("WATCHING", "high_water_mark"), ("TRIGGERED", "stop_loss")])

    def test_rejects_out_of_range_fraction(self) -> None:
        for bad in ("0", "1", "-0.1", "1.5"):
            with self.assertRaises(ValueError):
                PositionMonitor(make_position(), ScriptedOracle([1]), stop_loss_fraction=bad)  # type: ignore[arg-type]


if __name__ == "__main__":
    unittest.main()
