import unittest
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[3]
sys.path.insert(0, str(PROJECT_ROOT / "v1"))

from defense.strategy_data import MapMeta
from defense.viewport import ViewportTracker
from runtime.input_driver import ActionResult


class FakeStopManager:
    def __init__(self, stop_after_holds=None):
        self.waits = []
        self.stop_after_holds = stop_after_holds
        self.device = None

    def wait(self, seconds):
        self.waits.append(seconds)
        return False

    def should_stop(self):
        if self.stop_after_holds is None or self.device is None:
            return False
        return len(self.device.calls) >= self.stop_after_holds


class FakeDevice:
    def __init__(self):
        self.calls = []

    def key_hold(self, key, seconds):
        self.calls.append(("key_hold", key, seconds))
        return ActionResult(ok=True, method="fake")

    def key_click(self, key):
        self.calls.append(("key_click", key))
        return ActionResult(ok=True, method="fake")

    def scroll(self, delta):
        self.calls.append(("scroll", delta))
        return ActionResult(ok=True, method="fake")


def make_tracker(bottom, cell=10.0, max_hold_sec=1.5, stop_manager=None):
    device = FakeDevice()
    stop_manager = stop_manager or FakeStopManager()
    stop_manager.device = device
    tracker = ViewportTracker(
        MapMeta(grid_pixel_size=cell, offset_x=0.0, offset_y=0.0, bottom=bottom),
        device,
        stop_manager,
        safe_zone=(200, 200, 1720, 880),
        viewport_h=1080,
        speed_px_s=720.0,
        min_motion_px=5.0,
        settle_sec=0.4,
        max_hold_sec=max_hold_sec,
    )
    return tracker, device


class ViewportTests(unittest.TestCase):
    def test_grid_to_pixel_uses_footprint_center(self):
        tracker, _ = make_tracker(bottom=1200)
        self.assertEqual(tracker.to_absolute_pixel(2, 3, 2, 2), (30.0, 40.0))
        tracker.meta = MapMeta(grid_pixel_size=40.0, offset_x=160.0, offset_y=120.0, bottom=1860.0)
        self.assertEqual(tracker.to_absolute_pixel(0, 0, 1, 1), (180.0, 140.0))

    def test_bottom_zone_snaps_to_max_offset_in_one_hold(self):
        tracker, device = make_tracker(bottom=1200)
        self.assertEqual(tracker.max_offset_y, 120.0)
        self.assertTrue(tracker.in_bottom_zone(1000))
        holds = tracker.ensure_visible(1000)
        self.assertEqual(holds, 1)
        self.assertEqual(tracker.state.offset_y, 120.0)
        self.assertEqual(len(device.calls), 1)
        _, key, seconds = device.calls[0]
        self.assertEqual(key, "s")
        self.assertAlmostEqual(seconds, 120.0 / 720.0)

    def test_target_already_inside_safe_rows_is_a_no_op(self):
        tracker, device = make_tracker(bottom=3000)
        self.assertEqual(tracker.ensure_visible(500), 0)
        self.assertEqual(device.calls, [])
        self.assertEqual(tracker.state.offset_y, 0.0)

    def test_centering_scrolls_forward_to_safe_midpoint(self):
        tracker, device = make_tracker(bottom=3000)
        tracker.ensure_visible(1500)
        self.assertEqual(tracker.state.offset_y, 960.0)
        self.assertEqual(len(device.calls), 1)
        _, key, seconds = device.calls[0]
        self.assertEqual(key, "s")
        self.assertAlmostEqual(seconds, 960.0 / 720.0)

    def test_centering_scrolls_back_and_clamps_at_zero(self):
        tracker, device = make_tracker(bottom=3000)
        tracker.state.offset_y = 1500.0
        tracker.ensure_visible(400)
        self.assertEqual(tracker.state.offset_y, 0.0)
        keys = [c[1] for c in device.calls]
        self.assertEqual(keys, ["w", "w"])
        self.assertAlmostEqual(device.calls[0][2], 1.5)
        self.assertAlmostEqual(sum(c[2] for c in device.calls), 1500.0 / 720.0)

    def test_long_correction_is_split_below_hold_limit(self):
        tracker, device = make_tracker(bottom=5000, max_hold_sec=0.5)
        holds = tracker.ensure_visible(2500)
        self.assertEqual(holds, 1)
        self.assertEqual(tracker.state.offset_y, 1960.0)
        self.assertTrue(all(c[1] == "s" for c in device.calls))
        self.assertTrue(all(c[2] <= 0.5 for c in device.calls))
        self.assertEqual(len(device.calls), 6)
        self.assertAlmostEqual(sum(c[2] for c in device.calls), 1960.0 / 720.0)

    def test_split_hold_stops_between_chunks_on_stop_request(self):
        tracker, device = make_tracker(
            bottom=5000, max_hold_sec=0.5, stop_manager=FakeStopManager(stop_after_holds=2)
        )
        tracker.ensure_visible(2500)
        self.assertEqual(len(device.calls), 2)

    def test_stops_when_remaining_motion_is_below_epsilon(self):
        tracker, device = make_tracker(bottom=3000)
        # Above the safe rows at offset 0: the clamped offset cannot move.
        self.assertEqual(tracker.ensure_visible(100), 0)
        self.assertEqual(device.calls, [])
        self.assertEqual(tracker.state.offset_y, 0.0)

    def test_offset_always_stays_within_bounds(self):
        for bottom in (900, 1080, 1200, 2500, 4000):
            for start in (0.0, 300.0, 1000.0, 2920.0):
                for target in (0, 150, 700, 1100, 1900, 2600, 3990):
                    tracker, _ = make_tracker(bottom=bottom)
                    tracker.state.offset_y = min(start, tracker.max_offset_y)
                    tracker.ensure_visible(target)
                    self.assertGreaterEqual(tracker.state.offset_y, 0.0)
                    self.assertLessEqual(tracker.state.offset_y, tracker.max_offset_y)

    def test_horizontal_offset_is_never_corrected(self):
        tracker, _ = make_tracker(bottom=3000)
        tracker.state.offset_x = 37.0
        tracker.ensure_visible(2500)
        self.assertEqual(tracker.state.offset_x, 37.0)
        self.assertEqual(tracker.to_screen(100.0, 2500.0)[0], 63.0)

    def test_align_to_origin_zooms_out_and_pins_top_left(self):
        tracker, device = make_tracker(bottom=3000)
        tracker.state.offset_x = 12.0
        tracker.state.offset_y = 800.0
        tracker.align_to_origin()

        self.assertEqual(device.calls[0], ("key_click", "o"))
        scrolls = [c for c in device.calls if c[0] == "scroll"]
        self.assertEqual(len(scrolls), 7 * 12)
        self.assertTrue(all(c[1] == -120 for c in scrolls))
        holds = [(c[1], c[2]) for c in device.calls if c[0] == "key_hold"]
        self.assertEqual(holds, [("w", 0.5), ("a", 0.5)] * 4 + [("w", 0.8), ("a", 0.8)])
        self.assertEqual((tracker.state.offset_x, tracker.state.offset_y), (0.0, 0.0))


if __name__ == "__main__":
    unittest.main()
