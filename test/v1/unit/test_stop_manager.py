import threading
import time
import unittest
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[3]
sys.path.insert(0, str(PROJECT_ROOT / "v1"))

from runtime.stop_manager import RunStopRequested, StopManager


class StopManagerTests(unittest.TestCase):
    def test_request_stop_sets_reason_once(self):
        sm = StopManager()
        self.assertFalse(sm.should_stop())
        self.assertTrue(sm.request_stop("SIGINT"))
        self.assertTrue(sm.should_stop())
        self.assertEqual(sm.reason(), "SIGINT")
        self.assertFalse(sm.request_stop("OTHER"))
        self.assertEqual(sm.reason(), "SIGINT")

    def test_wait_returns_false_on_timeout_and_true_once_stopped(self):
        sm = StopManager()
        self.assertFalse(sm.wait(0))
        self.assertFalse(sm.wait(0.01))
        sm.request_stop("test")
        self.assertTrue(sm.wait(0))
        self.assertTrue(sm.wait(5.0))

    def test_wait_wakes_early_on_stop_from_another_thread(self):
        sm = StopManager()
        timer = threading.Timer(0.05, sm.request_stop, args=("CTRL_C_EVENT",))
        timer.start()
        t0 = time.monotonic()
        try:
            self.assertTrue(sm.wait(5.0))
        finally:
            timer.cancel()
        self.assertLess(time.monotonic() - t0, 2.0)

    def test_sleep_or_raise_unwinds_with_reason(self):
        sm = StopManager()
        sm.sleep_or_raise(0)
        sm.raise_if_requested()
        sm.request_stop("SIGTERM")
        with self.assertRaises(RunStopRequested) as ctx:
            sm.sleep_or_raise(1.0)
        self.assertEqual(str(ctx.exception), "SIGTERM")
        with self.assertRaises(RunStopRequested):
            sm.raise_if_requested()


if __name__ == "__main__":
    unittest.main()
