from __future__ import annotations

import json
import multiprocessing
import os
import tempfile
import unittest
from decimal import Decimal

from utils.state_file import StateFileLockError, state_file_lock, write_json_atomic_locked


def _hold_lock_worker(path: str, ready: multiprocessing.Event, release: multiprocessing.Event) -> None:
    with state_file_lock(path, timeout_seconds=2.0, poll_seconds=0.01):
        ready.set()
        release.wait(2.0)


class StateFileLockingTests(unittest.TestCase):
    def test_atomic_locked_write_roundtrip(self) -> None:
        with tempfile.TemporaryDirectory() as tmp_dir:
            manifest_path = os.path.join(tmp_dir, "nested", "manifest.json")
            payload = {"sold": 2, "failed": 0, "disposals": [{"ticker": "AAA", "realized_amount": Decimal("9.5")}]}
            write_json_atomic_locked(manifest_path, payload, timeout_seconds=0.5, poll_seconds=0.01)
            with open(manifest_path, "r", encoding="utf-8") as f:
                loaded = json.load(f)
            self.assertEqual(loaded["disposals"][0]["realized_amount"], "9.5")
            self.assertEqual(loaded["sold"], 2)
            leftovers = [name for name in os.listdir(os.path.dirname(manifest_path)) if name.endswith(".tmp")]
            self.assertEqual(leftovers, [])

    def test_state_lock_is_exclusive(self) -> None:
        with tempfile.TemporaryDirectory() as tmp_dir:
            state_path = os.path.join(tmp_dir, "manifest.json")
            ctx = multiprocessing.get_context("spawn")
            ready = ctx.Event()
            release = ctx.Event()
            proc = ctx.Process(target=_hold_lock_worker, args=(state_path, ready, release))
            proc.start()
            try:
                self.assertTrue(ready.wait(5.0), "worker did not acquire state lock in time")
                with self.assertRaises(StateFileLockError):
                    with state_file_lock(state_path, timeout_seconds=0.08, poll_seconds=0.01):
                        pass
            finally:
                release.set()
                proc.join(5.0)
                if proc.is_alive():
                    proc.terminate()
                    proc.join(1.0)
            self.assertEqual(proc.exitcode, 0)


if __name__ == "__main__":
    unittest.main()
